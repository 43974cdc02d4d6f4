"""JSON API endpoints for the dashboard: snapshot, alerts and configuration."""

from __future__ import annotations

import asyncio

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from gatewatch.commands import apply_setting
from gatewatch.exceptions import CommandError, ConfigError, ConfigWriteError

log = structlog.get_logger(__name__)

router = APIRouter()


class ConfigUpdate(BaseModel):
    """Body of ``POST /api/config``; keys are the ``config set`` keys."""

    key: str
    value: str


@router.get("/snapshot")
async def get_snapshot(request: Request) -> JSONResponse:
    """Latest top-movers snapshot, or null before the first cycle."""
    presenter = request.app.state.presenter
    snapshot = presenter.latest_snapshot
    return JSONResponse(content=snapshot.to_dict() if snapshot is not None else None)


@router.get("/alerts")
async def get_alerts(request: Request, limit: int = 100) -> JSONResponse:
    """Recent alerts, newest first."""
    presenter = request.app.state.presenter
    alerts = presenter.alerts[: max(0, limit)]
    return JSONResponse(content=[a.to_dict() for a in alerts])


@router.get("/config")
async def get_config(request: Request) -> JSONResponse:
    """Current configuration document."""
    config_store = request.app.state.config_store
    return JSONResponse(content=config_store.current.model_dump(mode="json"))


@router.post("/config")
async def update_config(request: Request, update: ConfigUpdate) -> JSONResponse:
    """Apply one setting through the config store and return the new document."""
    config_store = request.app.state.config_store
    try:
        config = await asyncio.to_thread(apply_setting, config_store, update.key, update.value)
    except ConfigWriteError as e:
        log.error("dashboard_config_write_failed", key=update.key, error=str(e))
        return JSONResponse(status_code=503, content={"error": str(e)})
    except (CommandError, ConfigError) as e:
        log.warning("dashboard_config_update_rejected", key=update.key, error=str(e))
        return JSONResponse(status_code=400, content={"error": str(e)})

    log.info("config_updated_via_dashboard", key=update.key)
    return JSONResponse(content=config.model_dump(mode="json"))


@router.get("/status")
async def get_status(request: Request) -> JSONResponse:
    """Poll loop status plus dashboard visibility."""
    orchestrator = request.app.state.orchestrator
    presenter = request.app.state.presenter
    status = orchestrator.get_status() if orchestrator is not None else {"running": False}
    status["visible"] = presenter.is_visible()
    status["dashboard_clients"] = len(request.app.state.hub.connections)
    return JSONResponse(content=status)
