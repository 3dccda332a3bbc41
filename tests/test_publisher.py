"""Tests for ordered forwarding of change events."""

import asyncio
import logging
from datetime import datetime, timezone

import anyio
import pytest

from changestreams.domain.entities import ChangeEvent, ChangeOperation, EntityName
from changestreams.infrastructure.notifications import ChangeEventPublisher, ChangeHubManager


class _RecordingManager:
    def __init__(self, *, fail_on=None):
        self.broadcasts = []
        self.fail_on = fail_on
        self.received = asyncio.Event()

    async def broadcast(self, entity, event):
        # Later events must still wait for slower earlier ones.
        await asyncio.sleep(0.01 if event.entity_id == "1" else 0)
        if event.entity_id == self.fail_on:
            raise RuntimeError("hub unavailable")
        self.broadcasts.append((entity, event.entity_id))
        self.received.set()
        return 1


class _Socket:
    def __init__(self, *, stalled=False):
        self.stalled = stalled
        self.received = []

    async def send_json(self, message):
        if self.stalled:
            await asyncio.Event().wait()
        self.received.append(message["data"]["entityId"])


def _event(entity_id, operation=ChangeOperation.UPDATE, entity=EntityName.PROJECTS):
    return ChangeEvent(
        entity_name=entity,
        operation=operation,
        entity_id=entity_id,
        changed_at=datetime(2024, 2, 1, tzinfo=timezone.utc),
    )


@pytest.mark.anyio
async def test_events_are_broadcast_in_dispatch_order():
    manager = _RecordingManager()
    publisher = ChangeEventPublisher(manager)
    await publisher.start()
    try:
        for entity_id in ("1", "2", "3"):
            publisher.dispatch(_event(entity_id))
        await publisher.join()
    finally:
        await publisher.stop()

    assert manager.broadcasts == [
        (EntityName.PROJECTS, "1"),
        (EntityName.PROJECTS, "2"),
        (EntityName.PROJECTS, "3"),
    ]


@pytest.mark.anyio
async def test_dispatch_from_a_worker_thread():
    manager = _RecordingManager()
    publisher = ChangeEventPublisher(manager)
    await publisher.start()
    try:
        await anyio.to_thread.run_sync(publisher.dispatch, _event("7"))
        with anyio.fail_after(1):
            await manager.received.wait()
    finally:
        await publisher.stop()

    assert manager.broadcasts == [(EntityName.PROJECTS, "7")]


@pytest.mark.anyio
async def test_broadcast_failure_does_not_stop_forwarding():
    manager = _RecordingManager(fail_on="2")
    publisher = ChangeEventPublisher(manager)
    await publisher.start()
    try:
        publisher.dispatch(_event("2"))
        publisher.dispatch(_event("3"))
        await publisher.join()
    finally:
        await publisher.stop()

    assert manager.broadcasts == [(EntityName.PROJECTS, "3")]


def test_dispatch_before_start_is_dropped(caplog):
    manager = _RecordingManager()
    publisher = ChangeEventPublisher(manager)

    with caplog.at_level(logging.WARNING):
        publisher.dispatch(_event("1"))

    assert not publisher.running
    assert "Publisher not running" in caplog.text
    assert manager.broadcasts == []


@pytest.mark.anyio
async def test_stalled_subscriber_does_not_hold_up_ordered_delivery():
    manager = ChangeHubManager(send_timeout=0.05)
    stalled = _Socket(stalled=True)
    notes = _Socket()
    projects = _Socket()
    stalled_id = manager.register(stalled)
    notes_id = manager.register(notes)
    projects_id = manager.register(projects)
    manager.subscribe(stalled_id, EntityName.NOTES)
    manager.subscribe(notes_id, EntityName.NOTES)
    manager.subscribe(projects_id, EntityName.PROJECTS)

    publisher = ChangeEventPublisher(manager)
    await publisher.start()
    try:
        publisher.dispatch(_event("1", entity=EntityName.NOTES))
        publisher.dispatch(_event("2"))
        publisher.dispatch(_event("3", entity=EntityName.NOTES))
        publisher.dispatch(_event("4"))
        with anyio.fail_after(2):
            await publisher.join()
    finally:
        await publisher.stop()

    assert projects.received == ["2", "4"]
    assert notes.received == ["1", "3"]
    assert stalled.received == []
    assert manager.subscribers(EntityName.NOTES) == [notes_id]
    assert manager.connection_count == 2
