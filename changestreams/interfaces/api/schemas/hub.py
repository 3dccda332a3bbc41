"""Pydantic models describing hub websocket commands and status."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from changestreams.domain.entities import EntityName


class HubCommand(BaseModel):
    """Message sent by a client over the hub websocket."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["subscribe", "unsubscribe", "ping"]
    entity_name: EntityName | None = Field(default=None, alias="entityName")

    @model_validator(mode="after")
    def _require_entity_for_membership(self) -> "HubCommand":
        if self.type != "ping" and self.entity_name is None:
            raise ValueError(f"'{self.type}' requires an entityName")
        return self


class HubStatusRead(BaseModel):
    """Snapshot of the hub and listener state."""

    connections: int = Field(..., description="Open hub websocket connections")
    subscribers: dict[str, int] = Field(
        default_factory=dict, description="Subscribed connections per entity"
    )
    channel: str
    listener_running: bool
    listener_listening: bool
    notifications_received: int = 0
    notifications_dropped: int = 0


__all__ = ["HubCommand", "HubStatusRead"]
