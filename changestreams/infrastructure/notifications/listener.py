"""Background listener forwarding PostgreSQL notifications to the hub."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import asyncpg

from changestreams.schemas import ChangeEventDecodeError, decode_change_event
from changestreams.utils import exponential_backoff

from .publisher import ChangeEventPublisher

logger = logging.getLogger(__name__)

Connector = Callable[[str], Awaitable[Any]]


class DatabaseChangeListener:
    """Hold one LISTEN connection for the lifetime of the process.

    The connection is re-established with exponential backoff whenever it is
    lost. Problems are logged and never propagated, so the API keeps serving
    requests while the listener recovers.
    """

    def __init__(
        self,
        dsn: str,
        publisher: ChangeEventPublisher,
        *,
        channel: str = "table_changed",
        retry_initial_delay: float = 1.0,
        retry_max_delay: float = 30.0,
        health_check_interval: float = 30.0,
        connect: Connector | None = None,
    ) -> None:
        self._dsn = dsn
        self._publisher = publisher
        self._channel = channel
        self._retry_initial_delay = retry_initial_delay
        self._retry_max_delay = retry_max_delay
        self._health_check_interval = health_check_interval
        self._connect = connect or asyncpg.connect
        self._task: asyncio.Task[None] | None = None
        self._connection: Any = None
        self._established = False
        self._listening = asyncio.Event()
        self.received_count = 0
        self.dropped_count = 0
        self.connect_attempts = 0

    @property
    def channel(self) -> str:
        return self._channel

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def listening(self) -> bool:
        return self._listening.is_set()

    async def start(self) -> None:
        """Spawn the background task; returns immediately."""

        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name="changestreams-listener"
        )

    async def stop(self) -> None:
        """Cancel the background task and close the dedicated connection."""

        task = self._task
        self._task = None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._listening.clear()

    async def wait_listening(self, timeout: float | None = None) -> bool:
        """Wait until LISTEN is active; return ``False`` on timeout."""

        try:
            await asyncio.wait_for(self._listening.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def _run(self) -> None:
        delays = exponential_backoff(self._retry_initial_delay, self._retry_max_delay)
        while True:
            self._established = False
            try:
                await self._listen_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning(
                    "Change listener on '%s' failed: %s", self._channel, exc
                )

            if self._established:
                delays = exponential_backoff(
                    self._retry_initial_delay, self._retry_max_delay
                )
            delay = next(delays)
            logger.info("Reconnecting change listener in %.1f seconds", delay)
            await asyncio.sleep(delay)

    async def _listen_once(self) -> None:
        self.connect_attempts += 1
        connection = await self._connect(self._dsn)
        lost = asyncio.Event()
        connection.add_termination_listener(lambda _connection: lost.set())
        self._connection = connection
        try:
            await connection.add_listener(self._channel, self._on_notification)
            self._established = True
            self._listening.set()
            logger.info("Listening for change notifications on '%s'", self._channel)

            while not lost.is_set():
                try:
                    await asyncio.wait_for(
                        lost.wait(), timeout=self._health_check_interval
                    )
                except asyncio.TimeoutError:
                    if connection.is_closed():
                        break
                    await connection.execute("SELECT 1")
            logger.warning("Change listener connection on '%s' was lost", self._channel)
        finally:
            self._listening.clear()
            self._connection = None
            await self._close(connection)

    @staticmethod
    async def _close(connection: Any) -> None:
        if connection.is_closed():
            return
        try:
            await connection.close(timeout=5)
        except Exception as exc:
            logger.debug("Ignoring error while closing listener connection: %s", exc)

    def _on_notification(
        self, connection: Any, pid: int, channel: str, payload: str
    ) -> None:
        try:
            event = decode_change_event(payload)
        except ChangeEventDecodeError as exc:
            self.dropped_count += 1
            logger.warning("Dropping malformed change notification %r: %s", payload, exc)
            return

        self.received_count += 1
        logger.info(
            "Received change notification: entity=%s id=%s operation=%s",
            event.entity_name,
            event.entity_id,
            event.operation,
        )
        self._publisher.dispatch(event)


__all__ = ["DatabaseChangeListener"]
