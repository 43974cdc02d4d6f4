"""Tests for the poll orchestrator.

Tests verify:
- One cycle runs filter -> window -> threshold -> rank over the same batch
- Filtered-out tickers never reach windows, alerts or rankings
- Alerts are dispatched through the fan-out; a failing channel does not abort the cycle
- Ticker fetch failures skip the cycle; pair refresh failures keep the old cache
- CSV rows are appended once per cycle
- Undersized windows are auto-raised through the config store
- The loop re-arms its wait when the poll interval changes and stops on the stop event
"""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from gatewatch.config_store import ConfigStore
from gatewatch.dashboard.presenter import Presenter
from gatewatch.exceptions import MarketDataError, NotificationError
from gatewatch.market_data.pair_cache import PairMetadataCache
from gatewatch.market_data.ranker import RankingAggregator
from gatewatch.market_data.threshold import ThresholdEngine
from gatewatch.market_data.window import SlidingWindowTracker
from gatewatch.models import AlertDirection
from gatewatch.notify.base import Notifier
from gatewatch.notify.fanout import NotifierFanout
from gatewatch.orchestrator import PollOrchestrator, format_table
from gatewatch.storage.csv_sink import CsvSink

PAIRS = [
    {"id": "BTC_USDT", "base": "BTC", "quote": "USDT", "trade_status": "tradable"},
    {"id": "ETH_USDT", "base": "ETH", "quote": "USDT", "trade_status": "tradable"},
    {"id": "OLD_USDT", "base": "OLD", "quote": "USDT", "trade_status": "untradable"},
    {"id": "ETH_BTC", "base": "ETH", "quote": "BTC", "trade_status": "tradable"},
]


def _ticker(symbol: str, change: float, quote_volume: str = "500000") -> dict:
    return {
        "symbol": symbol,
        "last_price": "1.5",
        "change_percent": str(change),
        "base_volume_24h": "1000",
        "quote_volume_24h": quote_volume,
    }


class _RecordingChannel(Notifier):
    def __init__(self, name: str, error: Exception | None = None) -> None:
        self.name = name
        self._error = error
        self.received = []

    @property
    def enabled(self) -> bool:
        return True

    async def notify(self, alert) -> None:
        if self._error is not None:
            raise self._error
        self.received.append(alert)


@pytest.fixture
def source() -> AsyncMock:
    mock_source = AsyncMock()
    mock_source.list_pair_metadata = AsyncMock(return_value=PAIRS)
    mock_source.list_tickers = AsyncMock(return_value=[])
    return mock_source


@pytest.fixture
def channel() -> _RecordingChannel:
    return _RecordingChannel("console")


@pytest.fixture
def presenter() -> Presenter:
    return Presenter()


@pytest.fixture
def orchestrator(
    store: ConfigStore,
    source: AsyncMock,
    channel: _RecordingChannel,
    presenter: Presenter,
    tmp_path: Path,
) -> PollOrchestrator:
    # interval 5s / lookback 20s -> alerts compare against 4 cycles ago
    store.save(lambda c: setattr(c.thresholds, "increase_percent", 7.0))
    store.save(lambda c: setattr(c.thresholds, "decrease_percent", 9.0))
    return PollOrchestrator(
        config_store=store,
        source=source,
        pair_cache=PairMetadataCache(),
        engine=ThresholdEngine(store, SlidingWindowTracker()),
        ranker=RankingAggregator(),
        fanout=NotifierFanout([channel]),
        csv_sink=CsvSink(tmp_path / "csv"),
        presenter=presenter,
    )


async def _run_cycles(orchestrator: PollOrchestrator, source: AsyncMock, batches: list[list[dict]]):
    stats = None
    for batch in batches:
        source.list_tickers.return_value = batch
        stats = await orchestrator.poll_once()
    return stats


class TestPollCycle:
    @pytest.mark.asyncio
    async def test_alert_fires_after_lookback(
        self, orchestrator: PollOrchestrator, source: AsyncMock, channel: _RecordingChannel
    ) -> None:
        batches = [[_ticker("BTC_USDT", v)] for v in (1, 2, 3, 4, 9)]

        stats = await _run_cycles(orchestrator, source, batches)

        assert stats.alerts == 1
        assert len(channel.received) == 1
        assert channel.received[0].direction is AlertDirection.INCREASE
        assert channel.received[0].delta == pytest.approx(8.0)

    @pytest.mark.asyncio
    async def test_filtered_tickers_excluded_everywhere(
        self, orchestrator: PollOrchestrator, source: AsyncMock, channel: _RecordingChannel
    ) -> None:
        # OLD_USDT is untradable, ETH_BTC has the wrong quote, XYZ_USDT has no metadata,
        # LOW_USDT is below the default quote-volume floor
        batches = [
            [
                _ticker("OLD_USDT", v * 10),
                _ticker("ETH_BTC", v * 10),
                _ticker("XYZ_USDT", v * 10),
                _ticker("ETH_USDT", v * 10, quote_volume="10"),
                _ticker("BTC_USDT", 0.5),
            ]
            for v in (1, 2, 3, 4, 9)
        ]

        stats = await _run_cycles(orchestrator, source, batches)

        tracker = orchestrator._engine.tracker
        assert tracker.symbols() == ["BTC_USDT"]
        assert channel.received == []
        snapshot = orchestrator.latest_snapshot
        assert [r.symbol for r in snapshot.top_increasing] == ["BTC_USDT"]
        assert [r.symbol for r in snapshot.top_decreasing] == ["BTC_USDT"]
        assert stats.rejected == {"tradable": 1, "quote": 1, "metadata": 1, "min_quote_volume": 1}

    @pytest.mark.asyncio
    async def test_ranking_reflects_same_batch(
        self, orchestrator: PollOrchestrator, source: AsyncMock
    ) -> None:
        await _run_cycles(
            orchestrator,
            source,
            [[_ticker("ETH_USDT", -4.0), _ticker("BTC_USDT", 6.0)]],
        )

        snapshot = orchestrator.latest_snapshot
        assert [r.symbol for r in snapshot.top_increasing] == ["BTC_USDT", "ETH_USDT"]
        assert [r.symbol for r in snapshot.top_decreasing] == ["ETH_USDT", "BTC_USDT"]

    @pytest.mark.asyncio
    async def test_failing_channel_does_not_abort_cycle(
        self, store: ConfigStore, source: AsyncMock, tmp_path: Path
    ) -> None:
        healthy = _RecordingChannel("console")
        broken = _RecordingChannel("telegram", error=NotificationError("HTTP 502"))
        store.save(lambda c: setattr(c.thresholds, "increase_percent", 1.0))
        orchestrator = PollOrchestrator(
            config_store=store,
            source=source,
            pair_cache=PairMetadataCache(),
            engine=ThresholdEngine(store, SlidingWindowTracker()),
            ranker=RankingAggregator(),
            fanout=NotifierFanout([broken, healthy]),
            csv_sink=CsvSink(tmp_path),
        )

        stats = await _run_cycles(
            orchestrator, source, [[_ticker("BTC_USDT", v)] for v in (1, 2, 3, 4, 9)]
        )

        assert stats is not None
        assert len(healthy.received) == 1

    @pytest.mark.asyncio
    async def test_ticker_fetch_failure_skips_cycle(
        self, orchestrator: PollOrchestrator, source: AsyncMock
    ) -> None:
        source.list_tickers.side_effect = MarketDataError("timeout")

        assert await orchestrator.poll_once() is None
        assert orchestrator.latest_snapshot is None

    @pytest.mark.asyncio
    async def test_pair_refresh_failure_keeps_cache(
        self, orchestrator: PollOrchestrator, source: AsyncMock
    ) -> None:
        await orchestrator.poll_once()
        cache = orchestrator._pair_cache
        assert len(cache) == 4

        # Force staleness, then fail the refresh
        cache._refreshed_at = 0.0
        source.list_pair_metadata.side_effect = MarketDataError("503")
        source.list_tickers.return_value = [_ticker("BTC_USDT", 1.0)]

        stats = await orchestrator.poll_once()

        assert len(cache) == 4
        assert stats.passed == 1

    @pytest.mark.asyncio
    async def test_pairs_not_refetched_while_fresh(
        self, orchestrator: PollOrchestrator, source: AsyncMock
    ) -> None:
        await orchestrator.poll_once()
        await orchestrator.poll_once()

        assert source.list_pair_metadata.await_count == 1

    @pytest.mark.asyncio
    async def test_malformed_numbers_counted(
        self, orchestrator: PollOrchestrator, source: AsyncMock
    ) -> None:
        ticker = _ticker("BTC_USDT", 1.0)
        ticker["last_price"] = "n/a"

        stats = await _run_cycles(orchestrator, source, [[ticker]])

        assert stats.malformed_fields == 1

    @pytest.mark.asyncio
    async def test_csv_rows_appended_per_cycle(
        self, orchestrator: PollOrchestrator, source: AsyncMock, tmp_path: Path
    ) -> None:
        await _run_cycles(orchestrator, source, [[_ticker("BTC_USDT", 1.0)]] * 2)

        files = list((tmp_path / "csv").glob("stats_*.csv"))
        assert len(files) == 1
        lines = files[0].read_text(encoding="utf-8").splitlines()
        # header + (top_up + top_down) per cycle
        assert len(lines) == 1 + 2 * 2

    @pytest.mark.asyncio
    async def test_window_auto_raised_before_cycle(
        self, orchestrator: PollOrchestrator, store: ConfigStore
    ) -> None:
        store.save(lambda c: setattr(c.polling, "samples_window", 2))

        await orchestrator.poll_once()

        assert store.current.polling.samples_window == 5

    @pytest.mark.asyncio
    async def test_snapshot_published_to_presenter_and_subscribers(
        self, orchestrator: PollOrchestrator, source: AsyncMock, presenter: Presenter
    ) -> None:
        received = []

        async def _subscriber(snapshot) -> None:
            received.append(snapshot)

        orchestrator.subscribe_snapshots(_subscriber)
        await _run_cycles(orchestrator, source, [[_ticker("BTC_USDT", 1.0)]])

        assert received == [orchestrator.latest_snapshot]
        assert presenter.latest_snapshot is orchestrator.latest_snapshot
        assert presenter.poll_interval_seconds == 5

    @pytest.mark.asyncio
    async def test_get_status(self, orchestrator: PollOrchestrator, source: AsyncMock) -> None:
        await _run_cycles(orchestrator, source, [[_ticker("BTC_USDT", 1.0)]])

        status = orchestrator.get_status()

        assert status["cycles"] == 1
        assert status["tracked_symbols"] == 1
        assert status["cached_pairs"] == 4
        assert status["last_cycle"]["passed"] == 1
        assert status["malformed_fields_total"] == 0


class TestRunLoop:
    @pytest.mark.asyncio
    async def test_stop_event_ends_loop(self, orchestrator: PollOrchestrator) -> None:
        stop = asyncio.Event()
        task = asyncio.create_task(orchestrator.run(stop))
        await asyncio.sleep(0.05)
        assert orchestrator.is_running

        stop.set()
        await asyncio.wait_for(task, timeout=1.0)

        assert not orchestrator.is_running

    @pytest.mark.asyncio
    async def test_interval_change_rearms_wait(
        self, orchestrator: PollOrchestrator, store: ConfigStore, source: AsyncMock
    ) -> None:
        store.save(lambda c: setattr(c.polling, "interval_seconds", 60))
        stop = asyncio.Event()
        task = asyncio.create_task(orchestrator.run(stop))
        await asyncio.sleep(0.05)
        assert source.list_tickers.await_count == 1

        # Shrinking the interval wakes the 60s wait; the elapsed time already exceeds 1s
        # after the sleep below, so the next cycle starts right away
        await asyncio.sleep(1.0)
        store.save(lambda c: setattr(c.polling, "interval_seconds", 1))
        await asyncio.sleep(0.1)

        assert source.list_tickers.await_count == 2
        stop.set()
        await asyncio.wait_for(task, timeout=1.0)

    @pytest.mark.asyncio
    async def test_unexpected_cycle_error_does_not_stop_loop(
        self, orchestrator: PollOrchestrator, store: ConfigStore, source: AsyncMock
    ) -> None:
        store.save(lambda c: setattr(c.polling, "interval_seconds", 1))
        source.list_tickers.side_effect = [RuntimeError("bug"), []]
        stop = asyncio.Event()
        task = asyncio.create_task(orchestrator.run(stop))

        await asyncio.sleep(1.3)
        stop.set()
        await asyncio.wait_for(task, timeout=1.0)

        assert source.list_tickers.await_count == 2


class TestFormatTable:
    def test_renders_rank_and_symbol(self) -> None:
        table = format_table("Top increasing", ())
        assert table.splitlines()[0] == "Top increasing"
        assert len(table.splitlines()) == 2
