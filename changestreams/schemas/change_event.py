"""Wire representation of change events shared by the hub and its clients."""

from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from changestreams.domain.entities import ChangeEvent, ChangeOperation, EntityName
from changestreams.utils import ensure_utc, isoformat_utc


class ChangeEventDecodeError(ValueError):
    """Raised when a notification payload is not a valid change event."""


class ChangeEventPayload(BaseModel):
    """JSON payload published by the change triggers."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    entity_name: EntityName = Field(..., alias="entityName")
    operation: ChangeOperation
    entity_id: str = Field(..., alias="entityId", min_length=1)
    changed_at: datetime = Field(..., alias="changedAt")

    @field_validator("entity_id", mode="before")
    @classmethod
    def _stringify_entity_id(cls, value: Any) -> Any:
        if isinstance(value, bool):
            return value
        if isinstance(value, int):
            return str(value)
        if isinstance(value, str):
            return value.strip()
        return value

    def to_entity(self) -> ChangeEvent:
        return ChangeEvent(
            entity_name=self.entity_name,
            operation=self.operation,
            entity_id=self.entity_id,
            changed_at=ensure_utc(self.changed_at),
        )


def decode_change_event(raw: str | bytes | Mapping[str, Any]) -> ChangeEvent:
    """Parse ``raw`` into a :class:`ChangeEvent` or raise :class:`ChangeEventDecodeError`."""

    data: Any = raw
    if isinstance(raw, (str, bytes, bytearray)):
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ChangeEventDecodeError(f"Payload is not valid JSON: {exc}") from exc

    if not isinstance(data, Mapping):
        raise ChangeEventDecodeError("Payload must be a JSON object")

    try:
        payload = ChangeEventPayload.model_validate(dict(data))
    except ValidationError as exc:
        raise ChangeEventDecodeError(f"Invalid change event: {exc}") from exc
    return payload.to_entity()


def serialize_change_event(event: ChangeEvent) -> dict[str, str]:
    """Return the JSON-serializable wire representation of ``event``."""

    return {
        "entityName": event.entity_name.value,
        "operation": event.operation.value,
        "entityId": event.entity_id,
        "changedAt": isoformat_utc(event.changed_at),
    }


__all__ = [
    "ChangeEventDecodeError",
    "ChangeEventPayload",
    "decode_change_event",
    "serialize_change_event",
]
