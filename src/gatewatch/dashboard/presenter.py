"""Presentation boundary between the poll loop and the dashboard.

The orchestrator only talks to Presenter. While the presenter is visible,
snapshots and alerts are broadcast to WebSocket clients; while it is
closed, the orchestrator prints the top-mover tables to the log instead.
"""

from __future__ import annotations

import structlog

from gatewatch.dashboard.routes.ws import DashboardHub
from gatewatch.models import AlertEvent, StatsSnapshot

log = structlog.get_logger(__name__)

ALERT_BACKLOG = 200


class Presenter:
    """Holds the latest view state and pushes updates through the hub.

    Args:
        hub: WebSocket hub shared with the FastAPI app.
        alert_backlog: Number of alerts kept for ``GET /api/alerts``.
    """

    def __init__(self, hub: DashboardHub | None = None, alert_backlog: int = ALERT_BACKLOG) -> None:
        self.hub = hub or DashboardHub()
        self._visible = False
        self._latest: StatsSnapshot | None = None
        self._alerts: list[AlertEvent] = []
        self._alert_backlog = alert_backlog
        self._poll_interval_seconds: int | None = None

    @property
    def latest_snapshot(self) -> StatsSnapshot | None:
        return self._latest

    @property
    def alerts(self) -> list[AlertEvent]:
        """Alerts received while running, newest first."""
        return list(self._alerts)

    @property
    def poll_interval_seconds(self) -> int | None:
        return self._poll_interval_seconds

    def is_visible(self) -> bool:
        return self._visible

    def open(self) -> None:
        if not self._visible:
            self._visible = True
            log.info("presenter_opened")

    def close(self) -> None:
        if self._visible:
            self._visible = False
            log.info("presenter_closed")

    def toggle(self) -> bool:
        """Flip visibility and return the new state."""
        if self._visible:
            self.close()
        else:
            self.open()
        return self._visible

    async def push_snapshot(self, snapshot: StatsSnapshot) -> None:
        self._latest = snapshot
        if self._visible:
            await self.hub.broadcast("snapshot", snapshot.to_dict())

    async def push_alert(self, alert: AlertEvent) -> None:
        self._alerts.insert(0, alert)
        del self._alerts[self._alert_backlog:]
        if self._visible:
            await self.hub.broadcast("alert", alert.to_dict())

    async def set_poll_interval_seconds(self, seconds: int) -> None:
        if seconds == self._poll_interval_seconds:
            return
        self._poll_interval_seconds = seconds
        if self._visible:
            await self.hub.broadcast("poll_interval", {"seconds": seconds})
