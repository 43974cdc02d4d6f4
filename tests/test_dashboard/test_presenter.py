"""Tests for the Presenter boundary and the WebSocket hub."""

import json
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from gatewatch.dashboard.presenter import Presenter
from gatewatch.dashboard.routes.ws import DashboardHub
from gatewatch.models import AlertDirection, AlertEvent, StatsSnapshot


def _snapshot() -> StatsSnapshot:
    return StatsSnapshot(top_increasing=(), top_decreasing=(), timestamp=datetime(2024, 1, 1))


def _alert(symbol: str = "BTC_USDT") -> AlertEvent:
    return AlertEvent(
        timestamp=datetime(2024, 1, 1),
        direction=AlertDirection.INCREASE,
        title="Gate.io change alert (increase)",
        message=f"{symbol} | ...",
        symbol=symbol,
    )


@pytest.fixture
def hub() -> MagicMock:
    mock_hub = MagicMock(spec=DashboardHub)
    mock_hub.broadcast = AsyncMock()
    return mock_hub


class TestPresenter:
    def test_starts_hidden(self) -> None:
        assert not Presenter().is_visible()

    def test_open_close_toggle(self) -> None:
        presenter = Presenter()
        presenter.open()
        assert presenter.is_visible()
        assert presenter.toggle() is False
        assert presenter.toggle() is True
        presenter.close()
        assert not presenter.is_visible()

    @pytest.mark.asyncio
    async def test_snapshot_kept_but_not_broadcast_while_hidden(self, hub: MagicMock) -> None:
        presenter = Presenter(hub)
        snapshot = _snapshot()

        await presenter.push_snapshot(snapshot)

        assert presenter.latest_snapshot is snapshot
        hub.broadcast.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_snapshot_broadcast_while_visible(self, hub: MagicMock) -> None:
        presenter = Presenter(hub)
        presenter.open()
        snapshot = _snapshot()

        await presenter.push_snapshot(snapshot)

        hub.broadcast.assert_awaited_once_with("snapshot", snapshot.to_dict())

    @pytest.mark.asyncio
    async def test_alert_backlog_newest_first_and_bounded(self, hub: MagicMock) -> None:
        presenter = Presenter(hub, alert_backlog=2)
        for symbol in ("A_USDT", "B_USDT", "C_USDT"):
            await presenter.push_alert(_alert(symbol))

        assert [a.symbol for a in presenter.alerts] == ["C_USDT", "B_USDT"]

    @pytest.mark.asyncio
    async def test_poll_interval_broadcast_only_on_change(self, hub: MagicMock) -> None:
        presenter = Presenter(hub)
        presenter.open()

        await presenter.set_poll_interval_seconds(5)
        await presenter.set_poll_interval_seconds(5)
        await presenter.set_poll_interval_seconds(10)

        assert hub.broadcast.await_count == 2
        assert presenter.poll_interval_seconds == 10


class TestDashboardHub:
    @pytest.mark.asyncio
    async def test_broadcast_drops_broken_connections(self) -> None:
        hub = DashboardHub()
        good, bad = AsyncMock(), AsyncMock()
        bad.send_text.side_effect = RuntimeError("closed")
        await hub.connect(good)
        await hub.connect(bad)

        await hub.broadcast("alert", {"symbol": "BTC_USDT"})

        good.send_text.assert_awaited_once_with(
            json.dumps({"type": "alert", "data": {"symbol": "BTC_USDT"}})
        )
        assert hub.connections == [good]

    @pytest.mark.asyncio
    async def test_disconnect(self) -> None:
        hub = DashboardHub()
        ws = AsyncMock()
        await hub.connect(ws)
        hub.disconnect(ws)
        hub.disconnect(ws)

        assert hub.connections == []
