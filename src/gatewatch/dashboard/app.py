"""FastAPI dashboard application factory with a WebSocket hub."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import FastAPI

from gatewatch.config_store import ConfigStore
from gatewatch.dashboard.presenter import Presenter
from gatewatch.dashboard.routes import api, ws

if TYPE_CHECKING:
    from gatewatch.orchestrator import PollOrchestrator


def create_dashboard_app(
    config_store: ConfigStore,
    presenter: Presenter,
    orchestrator: PollOrchestrator | None = None,
) -> FastAPI:
    """Create and configure the FastAPI dashboard application.

    Args:
        config_store: Store read and mutated by the config endpoints.
        presenter: Source of snapshots and alerts; its hub serves ``/ws``.
        orchestrator: Poll loop reported by ``GET /api/status``.

    Returns:
        Configured FastAPI application with the JSON API and WebSocket routes.
    """
    app = FastAPI(title="Gate.io Market Mover Watcher")

    # Shared state for route handlers
    app.state.config_store = config_store
    app.state.presenter = presenter
    app.state.hub = presenter.hub
    app.state.orchestrator = orchestrator

    app.include_router(api.router, prefix="/api")
    app.include_router(ws.router)

    return app
