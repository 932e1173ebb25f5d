"""FastAPI application factory."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ._config import Settings
from ._errors import register_error_handlers
from ._manager import ConnectionManager
from ._routes import _admin, _connections, _health, _query, _schema
from ._routes._dependencies import get_manager, get_settings, get_sweeper
from ._sweeper import ExpirySweeper


def _make_lifespan(manager: ConnectionManager, sweeper: ExpirySweeper):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Start the sweeper; on shutdown stop it and close every connection."""
        app.state.manager = manager
        app.state.sweeper = sweeper
        sweeper.start()
        try:
            yield
        finally:
            await sweeper.stop()
            await manager.disconnect_all()

    return lifespan


def create_app(
    manager: ConnectionManager | None = None,
    settings: Settings | None = None,
    cors_origins: list[str] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = manager.settings if manager is not None else Settings()
    if manager is None:
        manager = ConnectionManager(settings=settings)
    sweeper = ExpirySweeper(
        manager,
        interval_seconds=settings.sweep_interval_seconds,
        idle_timeout_seconds=settings.session_timeout_seconds,
    )

    app = FastAPI(
        title="DevQuery REST API",
        description="Multi-engine database connection manager",
        lifespan=_make_lifespan(manager, sweeper),
    )

    app.dependency_overrides[get_manager] = lambda: manager
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_sweeper] = lambda: sweeper

    # CORS (consumer configurable)
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    register_error_handlers(app)

    api_v1 = APIRouter(prefix="/api/v1")
    api_v1.include_router(_health.router)
    api_v1.include_router(_connections.router)
    api_v1.include_router(_query.router)
    api_v1.include_router(_schema.router)
    api_v1.include_router(_admin.router)

    app.include_router(api_v1)

    return app
