"""Typed bindings between entity names and the collections they feed."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Mapping, MutableSequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from changestreams.domain.entities import ChangeEvent, EntityName

from .reconciler import CollectionReconciler, FetchById, RunOnUiThread

logger = logging.getLogger(__name__)

T = TypeVar("T")
K = TypeVar("K")


def default_get_id(item: Any) -> Any:
    """Read ``id`` from a DTO attribute or a decoded JSON object."""

    if isinstance(item, Mapping):
        return item["id"]
    return item.id


@dataclass
class EntityBinding(Generic[T, K]):
    entity: EntityName
    reconciler: CollectionReconciler[T, K]

    @property
    def collection(self) -> MutableSequence[T]:
        return self.reconciler.collection

    def apply(self, event: ChangeEvent) -> bool:
        """Queue ``event`` if it belongs to this binding's entity."""

        if event.entity_name is not self.entity:
            return False
        return self.reconciler.submit(event)


def bind_collection(
    entity: EntityName | str,
    collection: MutableSequence[T],
    fetch_by_id: FetchById,
    run_on_ui_thread: RunOnUiThread,
    *,
    get_id: Callable[[T], Any] = default_get_id,
    parse_id: Callable[[str], Any] = int,
) -> EntityBinding[T, Any]:
    reconciler = CollectionReconciler(
        collection, fetch_by_id, get_id, run_on_ui_thread, parse_id=parse_id
    )
    return EntityBinding(EntityName(entity), reconciler)


class ChangeDispatcher:
    """Route change events to the binding registered for their entity."""

    def __init__(self, bindings: Iterable[EntityBinding[Any, Any]] = ()) -> None:
        self._bindings: dict[EntityName, EntityBinding[Any, Any]] = {}
        for binding in bindings:
            self.register(binding)

    @property
    def entities(self) -> frozenset[EntityName]:
        return frozenset(self._bindings)

    def register(self, binding: EntityBinding[Any, Any]) -> None:
        if binding.entity in self._bindings:
            raise ValueError(f"A binding for {binding.entity} is already registered")
        self._bindings[binding.entity] = binding

    def unregister(self, entity: EntityName | str) -> EntityBinding[Any, Any] | None:
        return self._bindings.pop(EntityName(entity), None)

    def binding_for(self, entity: EntityName | str) -> EntityBinding[Any, Any] | None:
        return self._bindings.get(EntityName(entity))

    def dispatch(self, event: ChangeEvent) -> bool:
        binding = self._bindings.get(event.entity_name)
        if binding is None:
            logger.debug("No binding for %s, ignoring change", event.entity_name)
            return False
        return binding.apply(event)

    __call__ = dispatch

    async def join(self) -> None:
        await asyncio.gather(
            *(binding.reconciler.join() for binding in self._bindings.values())
        )


__all__ = ["ChangeDispatcher", "EntityBinding", "bind_collection", "default_get_id"]
