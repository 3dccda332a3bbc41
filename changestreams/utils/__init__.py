"""Utility helpers for reusable functionality."""

from .backoff import exponential_backoff
from .datetime import ensure_utc, isoformat_utc, now_utc

__all__ = ["ensure_utc", "exponential_backoff", "isoformat_utc", "now_utc"]
