"""Websocket hub streaming row change events to subscribed clients."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError

from changestreams.config import get_settings
from changestreams.infrastructure.notifications import hub_manager
from changestreams.infrastructure.security import decode_access_token
from changestreams.interfaces.api.schemas import HubCommand, HubStatusRead

logger = logging.getLogger(__name__)

router = APIRouter(tags=["changes"])


def _describe_validation_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid command"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg", "Invalid command")
    return f"{location}: {message}" if location else message


def _is_authorized(websocket: WebSocket) -> bool:
    if not get_settings().hub_require_token:
        return True
    token = websocket.query_params.get("token")
    if not token:
        return False
    try:
        decode_access_token(token)
    except ValueError:
        return False
    return True


async def _handle_command(
    websocket: WebSocket, connection_id: str, message: Any
) -> None:
    try:
        command = HubCommand.model_validate(message)
    except ValidationError as exc:
        await websocket.send_json(
            {"type": "error", "detail": _describe_validation_error(exc)}
        )
        return

    if command.type == "ping":
        await websocket.send_json({"type": "pong"})
        return

    entity = command.entity_name
    if command.type == "subscribe":
        if hub_manager.subscribe(connection_id, entity):
            logger.info("Connection %s subscribed to %s", connection_id, entity)
        await websocket.send_json({"type": "subscribed", "entityName": entity.value})
    else:
        if hub_manager.unsubscribe(connection_id, entity):
            logger.info("Connection %s unsubscribed from %s", connection_id, entity)
        await websocket.send_json({"type": "unsubscribed", "entityName": entity.value})


@router.websocket("/changes")
async def changes_websocket(websocket: WebSocket) -> None:
    """Accept a hub connection and process its subscription commands."""

    if not _is_authorized(websocket):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    connection_id = await hub_manager.connect(websocket)
    try:
        while True:
            try:
                message = await websocket.receive_json()
            except WebSocketDisconnect:
                raise
            except (KeyError, ValueError):
                await websocket.send_json({"type": "error", "detail": "Malformed JSON"})
                continue
            await _handle_command(websocket, connection_id, message)
    except WebSocketDisconnect:
        logger.debug("Hub connection %s closed by client", connection_id)
    finally:
        hub_manager.disconnect(connection_id)


@router.get("/changes/status", response_model=HubStatusRead)
def read_hub_status(request: Request) -> HubStatusRead:
    """Return connection and subscription counters for monitoring."""

    listener = getattr(request.app.state, "change_listener", None)
    return HubStatusRead(
        connections=hub_manager.connection_count,
        subscribers=hub_manager.subscriber_counts(),
        channel=get_settings().change_channel,
        listener_running=bool(listener and listener.running),
        listener_listening=bool(listener and listener.listening),
        notifications_received=listener.received_count if listener else 0,
        notifications_dropped=listener.dropped_count if listener else 0,
    )
