from fastapi import FastAPI

from .changes import router as changes_router


def register_routes(app: FastAPI) -> None:
    """Register every API router on the FastAPI application."""

    app.include_router(changes_router)
