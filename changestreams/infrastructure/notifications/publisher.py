"""Ordered forwarding of change events to the hub manager."""

from __future__ import annotations

import asyncio
import logging

from changestreams.domain.entities import ChangeEvent

from .manager import ChangeHubManager, hub_manager

logger = logging.getLogger(__name__)


class ChangeEventPublisher:
    """Queue change events and broadcast them one at a time.

    A single forwarding task drains the queue, so subscribers receive the
    events in the order they were dispatched.
    """

    def __init__(self, manager: ChangeHubManager) -> None:
        self._manager = manager
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[ChangeEvent] | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the forwarding task on the running event loop."""

        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._task = self._loop.create_task(self._forward(self._queue))

    async def stop(self) -> None:
        """Stop forwarding; events still queued are discarded."""

        task = self._task
        self._task = None
        self._loop = None
        self._queue = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def dispatch(self, event: ChangeEvent) -> None:
        """Schedule ``event`` for broadcast; safe to call from any thread."""

        loop, queue = self._loop, self._queue
        if loop is None or queue is None:
            logger.warning(
                "Publisher not running; dropping %s %s %s",
                event.entity_name,
                event.operation,
                event.entity_id,
            )
            return

        try:
            running_loop = asyncio.get_running_loop()
        except RuntimeError:
            running_loop = None

        if running_loop is loop:
            queue.put_nowait(event)
        else:
            loop.call_soon_threadsafe(queue.put_nowait, event)

    async def join(self) -> None:
        """Wait until every dispatched event has been broadcast."""

        if self._queue is not None:
            await self._queue.join()

    async def _forward(self, queue: asyncio.Queue[ChangeEvent]) -> None:
        while True:
            event = await queue.get()
            try:
                delivered = await self._manager.broadcast(event.entity_name, event)
                logger.debug(
                    "Forwarded %s %s %s to %d subscribers",
                    event.entity_name,
                    event.operation,
                    event.entity_id,
                    delivered,
                )
            except Exception:
                logger.exception(
                    "Failed to broadcast %s event for %s", event.operation, event.entity_name
                )
            finally:
                queue.task_done()


change_event_publisher = ChangeEventPublisher(hub_manager)


__all__ = [
    "ChangeEventPublisher",
    "change_event_publisher",
]
