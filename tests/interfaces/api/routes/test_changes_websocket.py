"""Tests for the change hub websocket and status routes."""

import os
import sys
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[4]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

os.environ.setdefault("DATABASE_URL", "sqlite://")

pytest.importorskip("fastapi")
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient
from jose import jwt

from changestreams.config import reset_settings_cache
from changestreams.domain.entities import ChangeEvent, ChangeOperation, EntityName
from changestreams.infrastructure.notifications import (
    change_event_publisher,
    hub_manager,
)
from changestreams.infrastructure.security import ALGORITHM

from main import create_app


@pytest.fixture(autouse=True)
def _hub_settings(monkeypatch):
    monkeypatch.setenv("CHANGE_LISTENER_ENABLED", "false")
    monkeypatch.setenv("INSTALL_CHANGE_TRIGGERS", "false")
    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture
def client():
    with TestClient(create_app()) as test_client:
        yield test_client


def _wait_for_no_connections():
    deadline = time.monotonic() + 1.0
    while hub_manager.connection_count and time.monotonic() < deadline:
        time.sleep(0.01)
    return hub_manager.connection_count


def _event(entity_id="11", operation=ChangeOperation.UPDATE):
    return ChangeEvent(
        entity_name=EntityName.NOTES,
        operation=operation,
        entity_id=entity_id,
        changed_at=datetime(2024, 8, 1, 14, 0, tzinfo=timezone.utc),
    )


def test_subscribed_client_receives_published_changes(client):
    with client.websocket_connect("/changes") as websocket:
        websocket.send_json({"type": "subscribe", "entityName": "Notes"})
        assert websocket.receive_json() == {"type": "subscribed", "entityName": "Notes"}

        change_event_publisher.dispatch(_event())

        assert websocket.receive_json() == {
            "type": "change",
            "data": {
                "entityName": "Notes",
                "operation": "UPDATE",
                "entityId": "11",
                "changedAt": "2024-08-01T14:00:00Z",
            },
        }


def test_unsubscribed_client_stops_receiving(client):
    with client.websocket_connect("/changes") as websocket:
        websocket.send_json({"type": "subscribe", "entityName": "Notes"})
        websocket.receive_json()
        websocket.send_json({"type": "unsubscribe", "entityName": "Notes"})
        assert websocket.receive_json() == {"type": "unsubscribed", "entityName": "Notes"}

        change_event_publisher.dispatch(_event())
        websocket.send_json({"type": "ping"})

        assert websocket.receive_json() == {"type": "pong"}


def test_invalid_commands_are_reported(client):
    with client.websocket_connect("/changes") as websocket:
        websocket.send_json({"type": "subscribe", "entityName": "Invoices"})
        unknown_entity = websocket.receive_json()

        websocket.send_json({"type": "subscribe"})
        missing_entity = websocket.receive_json()

        websocket.send_text("not json")
        malformed = websocket.receive_json()

        websocket.send_json({"type": "ping"})
        pong = websocket.receive_json()

    assert unknown_entity["type"] == "error"
    assert "entityName" in unknown_entity["detail"]
    assert missing_entity["type"] == "error"
    assert malformed == {"type": "error", "detail": "Malformed JSON"}
    assert pong == {"type": "pong"}


def test_status_reports_connections_and_subscribers(client):
    with client.websocket_connect("/changes") as websocket:
        websocket.send_json({"type": "subscribe", "entityName": "Projects"})
        websocket.receive_json()

        response = client.get("/changes/status")

    assert response.status_code == 200
    body = response.json()
    assert body["connections"] == 1
    assert body["subscribers"] == {"Projects": 1}
    assert body["listener_running"] is False
    assert body["notifications_received"] == 0


def test_disconnect_releases_memberships(client):
    with client.websocket_connect("/changes") as websocket:
        websocket.send_json({"type": "subscribe", "entityName": "Users"})
        websocket.receive_json()

    assert _wait_for_no_connections() == 0
    assert hub_manager.subscribers(EntityName.USERS) == []


def test_token_is_required_when_enabled(monkeypatch):
    monkeypatch.setenv("HUB_REQUIRE_TOKEN", "true")
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    reset_settings_cache()

    with TestClient(create_app()) as test_client:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with test_client.websocket_connect("/changes?token=invalid"):
                pass
        assert exc_info.value.code == 1008

        token = jwt.encode(
            {"sub": "42", "exp": datetime.now(tz=timezone.utc) + timedelta(minutes=5)},
            "test-secret",
            algorithm=ALGORITHM,
        )
        with test_client.websocket_connect(f"/changes?token={token}") as websocket:
            websocket.send_json({"type": "ping"})
            assert websocket.receive_json() == {"type": "pong"}


def test_send_timeout_is_applied_from_settings(monkeypatch):
    monkeypatch.setenv("HUB_SEND_TIMEOUT", "0.5")
    reset_settings_cache()

    with TestClient(create_app()):
        assert hub_manager.send_timeout == 0.5
