"""Apply change events to in-memory collections bound to a UI."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import deque
from collections.abc import Callable, Hashable, MutableSequence
from typing import Any, Generic, TypeVar

import anyio

from changestreams.domain.entities import ChangeEvent, ChangeOperation

logger = logging.getLogger(__name__)

T = TypeVar("T")
K = TypeVar("K", bound=Hashable)

FetchById = Callable[[Any], Any]
RunOnUiThread = Callable[[Callable[[], None]], Any]


def _index_of(
    collection: MutableSequence[T], get_id: Callable[[T], Any], key: Any
) -> int:
    for index, item in enumerate(collection):
        if get_id(item) == key:
            return index
    return -1


async def _fetch(fetch_by_id: FetchById, key: Any) -> Any:
    if inspect.iscoroutinefunction(fetch_by_id) or inspect.iscoroutinefunction(
        getattr(fetch_by_id, "__call__", None)
    ):
        return await fetch_by_id(key)
    result = await anyio.to_thread.run_sync(fetch_by_id, key)
    if inspect.isawaitable(result):
        return await result
    return result


async def _safe_fetch(fetch_by_id: FetchById, event: ChangeEvent, key: Any) -> Any:
    try:
        item = await _fetch(fetch_by_id, key)
    except Exception as exc:
        logger.warning(
            "Fetching %s %s failed, skipping %s: %s",
            event.entity_name,
            event.entity_id,
            event.operation,
            exc,
        )
        return None
    if item is None:
        logger.debug(
            "%s %s is not visible, skipping %s",
            event.entity_name,
            event.entity_id,
            event.operation,
        )
    return item


async def _run_on_ui(run_on_ui_thread: RunOnUiThread, action: Callable[[], None]) -> None:
    result = run_on_ui_thread(action)
    if inspect.isawaitable(result):
        await result


async def reconcile(
    collection: MutableSequence[T],
    event: ChangeEvent,
    fetch_by_id: FetchById,
    get_id: Callable[[T], Any],
    run_on_ui_thread: RunOnUiThread,
    parse_id: Callable[[str], Any] = int,
) -> None:
    """Bring ``collection`` in line with ``event``.

    INSERT appends the fetched item unless an item with the same id is
    already present. UPDATE replaces the present item in place, keeping its
    position. DELETE removes the present item without fetching. Missing
    items, failed fetches and unparsable ids leave the collection untouched.

    The mutation itself runs through ``run_on_ui_thread`` and looks the id up
    again at that point, so concurrent reconciles never produce duplicates.
    This coroutine never raises for a bad event.
    """

    try:
        key = parse_id(event.entity_id)
    except (TypeError, ValueError):
        logger.warning(
            "Ignoring %s change with unparsable id %r", event.entity_name, event.entity_id
        )
        return

    try:
        present = _index_of(collection, get_id, key) >= 0
    except Exception:
        logger.exception(
            "Could not look up %s %s in the collection", event.entity_name, event.entity_id
        )
        return
    operation = event.operation

    if operation is ChangeOperation.INSERT:
        if present:
            return
        item = await _safe_fetch(fetch_by_id, event, key)
        if item is None:
            return

        def action() -> None:
            if _index_of(collection, get_id, key) < 0:
                collection.append(item)

    elif operation is ChangeOperation.UPDATE:
        if not present:
            return
        item = await _safe_fetch(fetch_by_id, event, key)
        if item is None:
            return

        def action() -> None:
            index = _index_of(collection, get_id, key)
            if index >= 0:
                collection[index] = item

    elif operation is ChangeOperation.DELETE:
        if not present:
            return

        def action() -> None:
            index = _index_of(collection, get_id, key)
            if index >= 0:
                del collection[index]

    else:
        logger.warning("Ignoring unknown operation %r", operation)
        return

    try:
        await _run_on_ui(run_on_ui_thread, action)
    except Exception:
        logger.exception(
            "Applying %s to %s %s failed", operation, event.entity_name, event.entity_id
        )


class CollectionReconciler(Generic[T, K]):
    """Reconcile one collection, applying events for the same id in order.

    Each id gets its own lane drained by a single task, so an UPDATE never
    overtakes the INSERT or DELETE that preceded it. Different ids are
    reconciled concurrently. :meth:`submit` must be called from the event
    loop that owns the reconciler.
    """

    def __init__(
        self,
        collection: MutableSequence[T],
        fetch_by_id: FetchById,
        get_id: Callable[[T], K],
        run_on_ui_thread: RunOnUiThread,
        *,
        parse_id: Callable[[str], K] = int,
    ) -> None:
        self.collection = collection
        self._fetch_by_id = fetch_by_id
        self._get_id = get_id
        self._run_on_ui_thread = run_on_ui_thread
        self._parse_id = parse_id
        self._lanes: dict[K, deque[ChangeEvent]] = {}
        self._workers: dict[K, asyncio.Task[None]] = {}

    @property
    def pending(self) -> int:
        return len(self._workers)

    def submit(self, event: ChangeEvent) -> bool:
        """Queue ``event``; return ``False`` when its id cannot be parsed."""

        try:
            key = self._parse_id(event.entity_id)
        except (TypeError, ValueError):
            logger.warning(
                "Ignoring %s change with unparsable id %r",
                event.entity_name,
                event.entity_id,
            )
            return False

        self._lanes.setdefault(key, deque()).append(event)
        if key not in self._workers:
            self._workers[key] = asyncio.get_running_loop().create_task(
                self._drain(key)
            )
        return True

    async def _drain(self, key: K) -> None:
        lane = self._lanes[key]
        try:
            while lane:
                event = lane.popleft()
                await reconcile(
                    self.collection,
                    event,
                    self._fetch_by_id,
                    self._get_id,
                    self._run_on_ui_thread,
                    parse_id=self._parse_id,
                )
        finally:
            self._lanes.pop(key, None)
            self._workers.pop(key, None)

    async def join(self) -> None:
        """Wait until every queued event has been applied."""

        while self._workers:
            await asyncio.gather(*list(self._workers.values()), return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel outstanding lanes; queued events are discarded."""

        workers = list(self._workers.values())
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        self._lanes.clear()
        self._workers.clear()


__all__ = ["CollectionReconciler", "FetchById", "RunOnUiThread", "reconcile"]
