"""Schemas shared by the server and client sides of the change stream."""

from .change_event import (
    ChangeEventDecodeError,
    ChangeEventPayload,
    decode_change_event,
    serialize_change_event,
)

__all__ = [
    "ChangeEventDecodeError",
    "ChangeEventPayload",
    "decode_change_event",
    "serialize_change_event",
]
