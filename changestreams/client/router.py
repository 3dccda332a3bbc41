"""Client-side routing of hub change events to interested consumers."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Callable
from enum import Enum
from typing import Any

from changestreams.config import ClientSettings
from changestreams.domain.entities import ChangeEvent, EntityName
from changestreams.schemas import ChangeEventDecodeError, decode_change_event
from changestreams.utils import exponential_backoff

from .transport import AiohttpHubConnector, HubConnection, HubConnector

logger = logging.getLogger(__name__)

ChangeHandler = Callable[[ChangeEvent], None]
StateListener = Callable[["ConnectionState"], None]


class ConnectionState(str, Enum):
    """Lifecycle of the router's hub connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class ChangeStreamRouter:
    """Own one hub connection, its entity subscriptions and event handlers.

    Subscriptions are reference counted so several views may share an
    entity. They survive reconnections: every new connection re-issues a
    ``subscribe`` for each active entity before any event is read from it.
    """

    def __init__(
        self,
        connector: HubConnector,
        *,
        reconnect_initial_delay: float = 0.5,
        reconnect_max_delay: float = 30.0,
        max_reconnect_attempts: int | None = None,
    ) -> None:
        self._connector = connector
        self._reconnect_initial_delay = reconnect_initial_delay
        self._reconnect_max_delay = reconnect_max_delay
        self._max_reconnect_attempts = max_reconnect_attempts
        self._subscriptions: Counter[EntityName] = Counter()
        self._handlers: list[ChangeHandler] = []
        self._state_listeners: list[StateListener] = []
        self._state = ConnectionState.DISCONNECTED
        self._connection: HubConnection | None = None
        self._connected = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @classmethod
    def from_settings(cls, settings: ClientSettings) -> "ChangeStreamRouter":
        connector = AiohttpHubConnector(
            settings.resolved_hub_url(),
            token=settings.access_token,
            timeout=settings.request_timeout,
        )
        return cls(
            connector,
            reconnect_initial_delay=settings.reconnect_initial_delay,
            reconnect_max_delay=settings.reconnect_max_delay,
        )

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def subscriptions(self) -> frozenset[EntityName]:
        return frozenset(self._subscriptions)

    def add_handler(self, handler: ChangeHandler) -> None:
        if handler not in self._handlers:
            self._handlers.append(handler)

    def remove_handler(self, handler: ChangeHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def add_state_listener(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    async def start(self) -> None:
        """Begin connecting in the background."""

        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name="changestreams-router"
        )

    async def stop(self) -> None:
        """Close the connection and stop reconnecting."""

        task = self._task
        self._task = None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._set_state(ConnectionState.DISCONNECTED)

    async def wait_connected(self, timeout: float | None = None) -> bool:
        """Wait for the CONNECTED state; return ``False`` on timeout."""

        try:
            await asyncio.wait_for(self._connected.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def subscribe(self, entity: EntityName | str) -> None:
        """Express interest in ``entity``; joins the hub group on first use."""

        entity = EntityName(entity)
        self._subscriptions[entity] += 1
        if self._subscriptions[entity] == 1:
            await self._send_command("subscribe", entity)

    async def unsubscribe(self, entity: EntityName | str) -> None:
        """Drop one interest in ``entity``; leaves the hub group on last use."""

        entity = EntityName(entity)
        if self._subscriptions[entity] <= 0:
            self._subscriptions.pop(entity, None)
            return
        self._subscriptions[entity] -= 1
        if self._subscriptions[entity] == 0:
            del self._subscriptions[entity]
            await self._send_command("unsubscribe", entity)

    async def _send_command(self, command: str, entity: EntityName) -> None:
        connection = self._connection
        if connection is None:
            # Sent by _resubscribe once a connection exists.
            return
        try:
            await connection.send_json({"type": command, "entityName": entity.value})
        except Exception as exc:
            logger.warning("Could not send %s for %s: %s", command, entity, exc)

    async def _resubscribe(self, connection: HubConnection) -> None:
        for entity in list(self._subscriptions):
            if entity in self._subscriptions:
                await connection.send_json(
                    {"type": "subscribe", "entityName": entity.value}
                )

    async def _run(self) -> None:
        delays = exponential_backoff(
            self._reconnect_initial_delay, self._reconnect_max_delay
        )
        failures = 0
        self._set_state(ConnectionState.CONNECTING)
        while True:
            try:
                connection = await self._connector()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                failures += 1
                logger.warning("Hub connection attempt %d failed: %s", failures, exc)
                if (
                    self._max_reconnect_attempts is not None
                    and failures >= self._max_reconnect_attempts
                ):
                    logger.error("Giving up on the change hub after %d attempts", failures)
                    self._set_state(ConnectionState.DISCONNECTED)
                    return
                self._set_state(ConnectionState.RECONNECTING)
                await asyncio.sleep(next(delays))
                continue

            failures = 0
            delays = exponential_backoff(
                self._reconnect_initial_delay, self._reconnect_max_delay
            )
            self._connection = connection
            try:
                await self._resubscribe(connection)
                self._set_state(ConnectionState.CONNECTED)
                async for message in connection.messages():
                    self._handle_message(message)
                logger.warning("Change hub closed the connection")
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("Change hub connection dropped: %s", exc)
            finally:
                self._connection = None
                self._connected.clear()
                await self._close(connection)

            self._set_state(ConnectionState.RECONNECTING)
            await asyncio.sleep(next(delays))

    @staticmethod
    async def _close(connection: HubConnection) -> None:
        try:
            await connection.close()
        except Exception as exc:
            logger.debug("Ignoring error while closing hub connection: %s", exc)

    def _handle_message(self, message: Any) -> None:
        if not isinstance(message, dict):
            logger.debug("Ignoring unexpected hub message: %r", message)
            return

        message_type = message.get("type")
        if message_type == "error":
            logger.warning("Change hub reported an error: %s", message.get("detail"))
            return
        if message_type != "change":
            return

        try:
            event = decode_change_event(message.get("data"))
        except ChangeEventDecodeError as exc:
            logger.warning("Dropping malformed change event: %s", exc)
            return

        if event.entity_name not in self._subscriptions:
            return

        logger.debug(
            "Received change: %s (%s) %s", event.entity_name, event.operation, event.entity_id
        )
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                logger.exception("Change handler %r failed", handler)

    def _set_state(self, state: ConnectionState) -> None:
        if state is ConnectionState.CONNECTED:
            self._connected.set()
        else:
            self._connected.clear()
        if state is self._state:
            return
        self._state = state
        logger.info("Change hub connection state: %s", state.value)
        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("State listener %r failed", listener)


__all__ = ["ChangeHandler", "ChangeStreamRouter", "ConnectionState"]
