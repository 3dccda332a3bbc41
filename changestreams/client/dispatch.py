from __future__ import annotations

import asyncio
from collections.abc import Callable


class LoopDispatcher:
    """Run actions on one designated event loop, the client's UI thread."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop if loop is not None else asyncio.get_running_loop()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop

    def __call__(self, action: Callable[[], None]) -> None:
        try:
            current = asyncio.get_running_loop()
        except RuntimeError:
            current = None
        if current is self._loop:
            action()
        else:
            self._loop.call_soon_threadsafe(action)


__all__ = ["LoopDispatcher"]
