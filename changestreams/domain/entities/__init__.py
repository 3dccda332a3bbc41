"""Domain entities exposed by the application."""

from .change_event import ChangeEvent, ChangeOperation, EntityName

__all__ = ["ChangeEvent", "ChangeOperation", "EntityName"]
