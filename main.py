import logging
from contextlib import asynccontextmanager

import anyio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from changestreams.config import get_settings
from changestreams.infrastructure.database import (
    build_listener_dsn,
    engine,
    initialize_database,
)
from changestreams.infrastructure.notifications import (
    DatabaseChangeListener,
    change_event_publisher,
    hub_manager,
)
from changestreams.interfaces.api.routes import register_routes

logger = logging.getLogger(__name__)


def _build_listener() -> DatabaseChangeListener | None:
    settings = get_settings()
    if not settings.change_listener_enabled:
        logger.info("Change listener disabled by configuration")
        return None
    try:
        dsn = build_listener_dsn(settings)
    except ValueError as exc:
        logger.warning("Change listener not started: %s", exc)
        return None
    return DatabaseChangeListener(
        dsn,
        change_event_publisher,
        channel=settings.change_channel,
        retry_initial_delay=settings.listener_retry_initial_delay,
        retry_max_delay=settings.listener_retry_max_delay,
        health_check_interval=settings.listener_health_check_interval,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Install the change triggers and run the listener while the app is up."""

    try:
        await anyio.to_thread.run_sync(initialize_database)
    except SQLAlchemyError:
        logger.exception("Could not install change triggers; continuing without them")

    hub_manager.send_timeout = get_settings().hub_send_timeout
    await change_event_publisher.start()
    listener = _build_listener()
    if listener is not None:
        await listener.start()
    app.state.change_listener = listener
    try:
        yield
    finally:
        if listener is not None:
            await listener.stop()
        await change_event_publisher.stop()
        engine.dispose()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application hosting the change hub."""

    app = FastAPI(lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_settings().cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_routes(app)
    return app


app = create_app()
