"""Tests for the LISTEN loop feeding the publisher."""

import json

import anyio
import pytest

from changestreams.domain.entities import ChangeOperation, EntityName
from changestreams.infrastructure.notifications import DatabaseChangeListener


class _FakeConnection:
    """Stand-in for an asyncpg connection."""

    def __init__(self):
        self.listeners = {}
        self.termination_listeners = []
        self.executed = []
        self.closed = False

    def add_termination_listener(self, callback):
        self.termination_listeners.append(callback)

    async def add_listener(self, channel, callback):
        self.listeners[channel] = callback

    async def execute(self, query):
        self.executed.append(query)

    def is_closed(self):
        return self.closed

    async def close(self, timeout=None):
        self.closed = True

    def notify(self, payload, channel="table_changed"):
        self.listeners[channel](self, 4242, channel, payload)

    def terminate(self):
        self.closed = True
        for callback in self.termination_listeners:
            callback(self)


class _FakeConnector:
    def __init__(self, *outcomes):
        self._outcomes = list(outcomes)
        self.dsns = []
        self.connections = []

    async def __call__(self, dsn):
        self.dsns.append(dsn)
        outcome = self._outcomes.pop(0) if self._outcomes else _FakeConnection()
        if isinstance(outcome, Exception):
            raise outcome
        self.connections.append(outcome)
        return outcome


class _RecordingPublisher:
    def __init__(self):
        self.events = []

    def dispatch(self, event):
        self.events.append(event)


async def _eventually(predicate, timeout=1.0):
    with anyio.fail_after(timeout):
        while not predicate():
            await anyio.sleep(0.005)


def _payload(entity_id="12", operation="INSERT", entity="Companies"):
    return json.dumps(
        {
            "entityName": entity,
            "operation": operation,
            "entityId": entity_id,
            "changedAt": "2024-04-01T08:00:00.000000Z",
        }
    )


def _listener(connector, publisher, **kwargs):
    kwargs.setdefault("retry_initial_delay", 0.01)
    kwargs.setdefault("retry_max_delay", 0.05)
    return DatabaseChangeListener(
        "postgresql://app@db/app", publisher, connect=connector, **kwargs
    )


@pytest.mark.anyio
async def test_notifications_are_decoded_and_dispatched():
    connection = _FakeConnection()
    connector = _FakeConnector(connection)
    publisher = _RecordingPublisher()
    listener = _listener(connector, publisher)

    await listener.start()
    try:
        assert await listener.wait_listening(timeout=1)
        connection.notify(_payload())
    finally:
        await listener.stop()

    assert connector.dsns == ["postgresql://app@db/app"]
    assert "table_changed" in connection.listeners
    [event] = publisher.events
    assert event.entity_name is EntityName.COMPANIES
    assert event.operation is ChangeOperation.INSERT
    assert event.entity_id == "12"
    assert listener.received_count == 1


@pytest.mark.anyio
async def test_malformed_notification_is_dropped_and_listening_continues():
    connection = _FakeConnection()
    publisher = _RecordingPublisher()
    listener = _listener(_FakeConnector(connection), publisher)

    await listener.start()
    try:
        assert await listener.wait_listening(timeout=1)
        connection.notify("{not json")
        connection.notify(_payload(entity="Invoices"))
        connection.notify(_payload(entity_id="13", operation="DELETE"))
        assert listener.listening
    finally:
        await listener.stop()

    assert listener.dropped_count == 2
    assert [event.entity_id for event in publisher.events] == ["13"]


@pytest.mark.anyio
async def test_listener_reconnects_after_connection_loss():
    first, second = _FakeConnection(), _FakeConnection()
    connector = _FakeConnector(first, second)
    publisher = _RecordingPublisher()
    listener = _listener(connector, publisher)

    await listener.start()
    try:
        assert await listener.wait_listening(timeout=1)
        first.terminate()
        await _eventually(lambda: len(connector.connections) == 2 and listener.listening)
        second.notify(_payload(entity_id="99", operation="UPDATE"))
    finally:
        await listener.stop()

    assert listener.connect_attempts == 2
    assert [event.entity_id for event in publisher.events] == ["99"]


@pytest.mark.anyio
async def test_listener_retries_when_the_database_is_unreachable():
    connection = _FakeConnection()
    connector = _FakeConnector(OSError("refused"), OSError("refused"), connection)
    listener = _listener(connector, _RecordingPublisher())

    await listener.start()
    try:
        assert await listener.wait_listening(timeout=1)
    finally:
        await listener.stop()

    assert listener.connect_attempts == 3
    assert connector.connections == [connection]


@pytest.mark.anyio
async def test_idle_connection_is_probed():
    connection = _FakeConnection()
    listener = _listener(
        _FakeConnector(connection), _RecordingPublisher(), health_check_interval=0.01
    )

    await listener.start()
    try:
        await _eventually(lambda: "SELECT 1" in connection.executed)
    finally:
        await listener.stop()


@pytest.mark.anyio
async def test_stop_closes_the_connection():
    connection = _FakeConnection()
    listener = _listener(_FakeConnector(connection), _RecordingPublisher())

    await listener.start()
    assert await listener.wait_listening(timeout=1)
    await listener.stop()

    assert connection.closed
    assert not listener.running
    assert not listener.listening
