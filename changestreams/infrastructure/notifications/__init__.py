"""Realtime change notification helpers for the infrastructure layer."""

from .listener import DatabaseChangeListener
from .manager import ChangeHubManager, hub_manager
from .publisher import ChangeEventPublisher, change_event_publisher

__all__ = [
    "ChangeEventPublisher",
    "ChangeHubManager",
    "DatabaseChangeListener",
    "change_event_publisher",
    "hub_manager",
]
