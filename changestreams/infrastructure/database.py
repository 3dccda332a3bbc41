"""Database configuration for the change stream infrastructure."""

from __future__ import annotations

import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url

from changestreams.config import Settings, get_settings
from changestreams.infrastructure.triggers import install_change_triggers

settings = get_settings()

logger = logging.getLogger(__name__)


def build_listener_dsn(settings: Settings) -> str:
    """Return the asyncpg DSN used by the dedicated listener connection.

    SQLAlchemy URLs carry a driver suffix (``postgresql+psycopg2``) that
    asyncpg does not understand, so it is stripped unless an explicit
    ``LISTENER_DSN`` is configured.
    """

    if settings.listener_dsn:
        return settings.listener_dsn

    url = make_url(settings.database_url)
    if url.get_backend_name() != "postgresql":
        raise ValueError(
            f"The change listener requires PostgreSQL, got '{url.get_backend_name()}'"
        )
    return url.set(drivername="postgresql").render_as_string(hide_password=False)


engine = create_engine(settings.database_url, pool_pre_ping=True)


def initialize_database() -> bool:
    """Install the change triggers when enabled; return whether they were installed."""

    if not settings.install_change_triggers:
        logger.info("Change trigger installation disabled by configuration")
        return False
    return install_change_triggers(engine, channel=settings.change_channel)


__all__ = ["build_listener_dsn", "engine", "initialize_database", "settings"]
