"""Screen lifecycle hooks that tie a bound collection to the router."""

from __future__ import annotations

import logging
from typing import Any

from changestreams.domain.entities import ChangeEvent, EntityName

from .bindings import EntityBinding
from .router import ChangeStreamRouter

logger = logging.getLogger(__name__)


class ChangeStreamView:
    """Keep one collection live while its screen is visible."""

    def __init__(self, router: ChangeStreamRouter, binding: EntityBinding[Any, Any]) -> None:
        self._router = router
        self._binding = binding
        self._active = False

    @property
    def entity(self) -> EntityName:
        return self._binding.entity

    @property
    def active(self) -> bool:
        return self._active

    async def on_appearing(self) -> None:
        if self._active:
            return
        self._active = True
        self._router.add_handler(self._on_change)
        await self._router.subscribe(self.entity)
        logger.debug("View subscribed to %s", self.entity)

    async def on_disappearing(self) -> None:
        if not self._active:
            return
        self._active = False
        await self._router.unsubscribe(self.entity)
        self._router.remove_handler(self._on_change)
        logger.debug("View unsubscribed from %s", self.entity)

    def _on_change(self, event: ChangeEvent) -> None:
        if event.entity_name is not self.entity:
            return
        self._binding.apply(event)


__all__ = ["ChangeStreamView"]
