"""Domain entity describing a single row-level database change."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class EntityName(str, Enum):
    """Closed set of entities whose changes are streamed to clients."""

    USERS = "Users"
    COMPANIES = "Companies"
    PROJECTS = "Projects"
    SCREENS = "Screens"
    SCREEN_ACTIONS = "ScreenActions"
    NOTES = "Notes"
    EMPLOYEES = "Employees"

    def __str__(self) -> str:
        return self.value


class ChangeOperation(str, Enum):
    """SQL operation that produced a change event."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ChangeEvent:
    """Notification emitted after a tracked row was inserted, updated or deleted.

    ``entity_id`` is always the text form of the primary key so every table
    shares one payload shape regardless of its key type.
    """

    entity_name: EntityName
    operation: ChangeOperation
    entity_id: str
    changed_at: datetime


__all__ = ["ChangeEvent", "ChangeOperation", "EntityName"]
