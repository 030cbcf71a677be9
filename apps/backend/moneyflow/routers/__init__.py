"""Router aggregation helpers."""

from fastapi import FastAPI

from . import recurring


def register_routers(app: FastAPI) -> None:
    """Attach all API routes to the FastAPI application."""

    app.include_router(recurring.router, prefix="/api")
