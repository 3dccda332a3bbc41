"""Connection and group management for the change hub websockets."""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from collections import defaultdict
from typing import Any, DefaultDict, Set

from fastapi import WebSocket

from changestreams.domain.entities import ChangeEvent, EntityName
from changestreams.schemas import serialize_change_event

logger = logging.getLogger(__name__)


class ChangeHubManager:
    """Track hub connections and the entity groups each of them joined."""

    def __init__(self, *, send_timeout: float = 5.0) -> None:
        self.send_timeout = send_timeout
        self._lock = threading.Lock()
        self._connections: dict[str, WebSocket] = {}
        self._groups: DefaultDict[EntityName, Set[str]] = defaultdict(set)
        self._memberships: DefaultDict[str, Set[EntityName]] = defaultdict(set)

    async def connect(self, websocket: WebSocket) -> str:
        """Accept ``websocket`` and return the identifier assigned to it."""

        await websocket.accept()
        return self.register(websocket)

    def register(self, websocket: WebSocket) -> str:
        """Register an already accepted ``websocket``."""

        connection_id = uuid.uuid4().hex
        with self._lock:
            self._connections[connection_id] = websocket
        logger.debug("Hub connection %s registered", connection_id)
        return connection_id

    def disconnect(self, connection_id: str) -> None:
        """Forget ``connection_id`` and every group membership it holds."""

        with self._lock:
            self._connections.pop(connection_id, None)
            entities = self._memberships.pop(connection_id, set())
            for entity in entities:
                members = self._groups.get(entity)
                if members is None:
                    continue
                members.discard(connection_id)
                if not members:
                    self._groups.pop(entity, None)
        logger.debug(
            "Hub connection %s removed with %d subscriptions", connection_id, len(entities)
        )

    def subscribe(self, connection_id: str, entity: EntityName) -> bool:
        """Join ``connection_id`` to the ``entity`` group.

        Returns ``False`` when the connection is unknown or already joined.
        """

        with self._lock:
            if connection_id not in self._connections:
                return False
            members = self._groups[entity]
            if connection_id in members:
                return False
            members.add(connection_id)
            self._memberships[connection_id].add(entity)
        return True

    def unsubscribe(self, connection_id: str, entity: EntityName) -> bool:
        """Remove ``connection_id`` from the ``entity`` group if it had joined it."""

        with self._lock:
            members = self._groups.get(entity)
            if not members or connection_id not in members:
                return False
            members.discard(connection_id)
            if not members:
                self._groups.pop(entity, None)
            entities = self._memberships.get(connection_id)
            if entities is not None:
                entities.discard(entity)
                if not entities:
                    self._memberships.pop(connection_id, None)
        return True

    def subscribers(self, entity: EntityName) -> list[str]:
        with self._lock:
            return sorted(self._groups.get(entity, ()))

    def subscriptions(self, connection_id: str) -> set[EntityName]:
        with self._lock:
            return set(self._memberships.get(connection_id, ()))

    @property
    def connection_count(self) -> int:
        with self._lock:
            return len(self._connections)

    def subscriber_counts(self) -> dict[str, int]:
        """Return the number of subscribers per entity with at least one."""

        with self._lock:
            return {
                entity.value: len(members)
                for entity, members in self._groups.items()
                if members
            }

    async def broadcast(self, entity: EntityName, event: ChangeEvent) -> int:
        """Send ``event`` to every connection subscribed to ``entity``.

        Returns the number of connections that received it. Connections
        failing to receive the message within ``send_timeout`` are
        disconnected, so one stalled client cannot hold up the others.
        """

        with self._lock:
            targets = [
                (connection_id, self._connections[connection_id])
                for connection_id in self._groups.get(entity, ())
                if connection_id in self._connections
            ]
        if not targets:
            logger.debug("No subscribers for %s; dropping %s event", entity, event.operation)
            return 0

        message = {"type": "change", "data": serialize_change_event(event)}
        results = await asyncio.gather(
            *(
                self._send(connection_id, websocket, message)
                for connection_id, websocket in targets
            )
        )
        return sum(1 for delivered in results if delivered)

    async def _send(
        self, connection_id: str, websocket: WebSocket, message: dict[str, Any]
    ) -> bool:
        try:
            await asyncio.wait_for(websocket.send_json(message), timeout=self.send_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Dropping hub connection %s: send did not complete within %.1f seconds",
                connection_id,
                self.send_timeout,
            )
            self.disconnect(connection_id)
            return False
        except Exception as exc:
            logger.info("Dropping hub connection %s after failed send: %s", connection_id, exc)
            self.disconnect(connection_id)
            return False
        return True


hub_manager = ChangeHubManager()


__all__ = ["ChangeHubManager", "hub_manager"]
