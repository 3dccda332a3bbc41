"""Retry delay helpers shared by the listener and the client router."""

from __future__ import annotations

from collections.abc import Iterator


def exponential_backoff(
    initial: float, maximum: float, *, factor: float = 2.0
) -> Iterator[float]:
    """Yield an endless sequence of delays doubling from ``initial`` up to ``maximum``."""

    if initial <= 0:
        raise ValueError("initial delay must be positive")
    delay = min(initial, maximum)
    while True:
        yield delay
        delay = min(delay * factor, maximum)
