"""Poll orchestrator -- wires the pipeline and runs the poll loop.

Each cycle runs on one configuration snapshot:
  1. CONFIG: take the current snapshot, auto-raise samples_window if needed
  2. PAIRS: refresh pair metadata when the cache is empty or stale
  3. FETCH: list tickers (a failed fetch skips the cycle)
  4. FILTER -> WINDOW -> THRESHOLD for every ticker, collecting alerts
  5. RANK: build the StatsSnapshot, append CSV rows, publish it
  6. ALERT: dispatch collected alerts through the notifier fan-out

The next cycle is armed from the current poll interval. A configuration
change that alters the interval wakes the wait, so the new cadence takes
effect without a restart.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable

from gatewatch.config import WatcherConfig
from gatewatch.config_store import ConfigStore
from gatewatch.dashboard.presenter import Presenter
from gatewatch.exceptions import MarketDataError
from gatewatch.exchange.source import MarketDataSource
from gatewatch.logging import cycle_context, get_logger
from gatewatch.market_data.filters import FilterPipeline
from gatewatch.market_data.pair_cache import PairMetadataCache
from gatewatch.market_data.ranker import RankingAggregator, format_trimmed
from gatewatch.market_data.threshold import ThresholdEngine
from gatewatch.models import (
    AlertEvent,
    CycleStats,
    NumericParser,
    PairMetadata,
    RankedRow,
    StatsSnapshot,
    TickerSample,
)
from gatewatch.notify.fanout import NotifierFanout
from gatewatch.storage.csv_sink import CsvSink

logger = get_logger(__name__)

SnapshotSubscriber = Callable[[StatsSnapshot], Awaitable[None]]


def format_table(title: str, rows: tuple[RankedRow, ...]) -> str:
    """Render one ranked list as a fixed-width text table."""
    lines = [title, f"{'#':>3}  {'PAIR':<16} {'CHG%':>9} {'QUOTE VOL':>18} {'LAST':>16}"]
    for rank, row in enumerate(rows, start=1):
        lines.append(
            f"{rank:>3}  {row.symbol:<16} {row.change_percent:>9.2f} "
            f"{format_trimmed(row.quote_volume, 3):>18} {format_trimmed(row.last_price, 8):>16}"
        )
    return "\n".join(lines)


class PollOrchestrator:
    """Runs the poll -> filter -> window -> threshold -> rank -> notify loop.

    Args:
        config_store: Source of configuration snapshots.
        source: Market data provider.
        pair_cache: Pair metadata, refreshed on its own cadence.
        engine: Sliding windows plus threshold detection.
        ranker: Top-movers aggregation.
        fanout: Notification channels.
        csv_sink: Daily CSV log of the ranked lists.
        presenter: Optional dashboard presenter.
    """

    def __init__(
        self,
        config_store: ConfigStore,
        source: MarketDataSource,
        pair_cache: PairMetadataCache,
        engine: ThresholdEngine,
        ranker: RankingAggregator,
        fanout: NotifierFanout,
        csv_sink: CsvSink | None = None,
        presenter: Presenter | None = None,
    ) -> None:
        self._config_store = config_store
        self._source = source
        self._pair_cache = pair_cache
        self._engine = engine
        self._ranker = ranker
        self._fanout = fanout
        self._csv_sink = csv_sink
        self._presenter = presenter
        self._snapshot_subscribers: list[SnapshotSubscriber] = []

        self._running = False
        self._wake = asyncio.Event()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._interval_seconds: int | None = None
        self._cycles = 0
        self._malformed_total = 0
        self._last_cycle_at: float | None = None
        self._last_stats: CycleStats | None = None
        self._latest_snapshot: StatsSnapshot | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def latest_snapshot(self) -> StatsSnapshot | None:
        return self._latest_snapshot

    def subscribe_snapshots(self, callback: SnapshotSubscriber) -> None:
        self._snapshot_subscribers.append(callback)

    # ──────────────────────────────────────────────
    # Loop control
    # ──────────────────────────────────────────────

    async def run(self, stop_event: asyncio.Event) -> None:
        """Poll until stop_event is set or stop() is called."""
        self._loop = asyncio.get_running_loop()
        self._running = True
        self._interval_seconds = self._config_store.current.polling.interval_seconds
        unsubscribe = self._config_store.subscribe(self._on_config_changed)
        stop_watcher = asyncio.create_task(self._wake_on_stop(stop_event))
        logger.info("orchestrator_starting", interval_seconds=self._interval_seconds)

        try:
            while self._running and not stop_event.is_set():
                started = self._loop.time()
                try:
                    await self.poll_once()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error("poll_cycle_error", error=str(e), exc_info=True)
                await self._wait_for_next_cycle(stop_event, started)
        finally:
            self._running = False
            unsubscribe()
            stop_watcher.cancel()
            logger.info("orchestrator_stopped", cycles=self._cycles)

    def stop(self) -> None:
        """Signal the loop to exit after the current cycle."""
        self._running = False
        self._wake.set()

    async def _wake_on_stop(self, stop_event: asyncio.Event) -> None:
        await stop_event.wait()
        self.stop()

    async def _wait_for_next_cycle(self, stop_event: asyncio.Event, started: float) -> None:
        """Sleep until started + interval, re-arming when the interval changes."""
        assert self._loop is not None
        while self._running and not stop_event.is_set():
            interval = self._config_store.current.polling.interval_seconds
            remaining = started + interval - self._loop.time()
            if remaining <= 0:
                return
            self._wake.clear()
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                return

    def _on_config_changed(self, config: WatcherConfig) -> None:
        interval = config.polling.interval_seconds
        if interval == self._interval_seconds:
            return
        logger.info(
            "poll_interval_changed",
            old=self._interval_seconds,
            new=interval,
        )
        self._interval_seconds = interval
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self._wake.set)

    # ──────────────────────────────────────────────
    # One cycle
    # ──────────────────────────────────────────────

    async def poll_once(self) -> CycleStats | None:
        """Run one full cycle. Returns None when the ticker fetch failed."""
        self._cycles += 1
        with cycle_context(self._cycles):
            # a window correction saves the document; keep that off the event loop
            config = await asyncio.to_thread(
                self._engine.ensure_window_capacity, self._config_store.current
            )
            if self._presenter is not None:
                await self._presenter.set_poll_interval_seconds(config.polling.interval_seconds)

            await self._refresh_pairs()

            try:
                raw_tickers = await self._source.list_tickers()
            except MarketDataError as e:
                logger.warning("ticker_fetch_failed", error=str(e))
                return None

            stats, passed, alerts = self._evaluate(raw_tickers, config)
            snapshot = self._ranker.build_snapshot(passed)
            self._latest_snapshot = snapshot

            await self._write_csv(snapshot)
            await self._publish(snapshot)

            for alert in alerts:
                await self._fanout.notify(alert)

            self._last_cycle_at = time.time()
            self._last_stats = stats
            logger.info(
                "poll_completed",
                tickers=stats.tickers,
                passed=stats.passed,
                alerts=stats.alerts,
                rejected=stats.rejected,
            )
            return stats

    def _evaluate(
        self, raw_tickers: list[dict], config: WatcherConfig
    ) -> tuple[CycleStats, list[TickerSample], list[AlertEvent]]:
        """Filter, window and threshold every ticker against one snapshot."""
        parser = NumericParser()
        pipeline = FilterPipeline(config.filters)
        stats = CycleStats(tickers=len(raw_tickers))
        passed: list[TickerSample] = []
        alerts: list[AlertEvent] = []

        for raw in raw_tickers:
            sample = TickerSample.from_raw(raw, parser)
            if not sample.symbol:
                continue
            stats.seen += 1
            if not pipeline.passes(sample, self._pair_cache.get(sample.symbol)):
                continue
            passed.append(sample)
            alerts.extend(self._engine.process(sample, config))

        stats.passed = len(passed)
        stats.alerts = len(alerts)
        stats.rejected = dict(pipeline.rejections)
        stats.malformed_fields = parser.failures
        self._malformed_total += parser.failures
        if parser.failures:
            logger.warning("malformed_numeric_fields", count=parser.failures)
        return stats, passed, alerts

    async def _refresh_pairs(self) -> None:
        if not self._pair_cache.needs_refresh():
            return
        try:
            raw_pairs = await self._source.list_pair_metadata()
        except MarketDataError as e:
            logger.warning(
                "pair_metadata_refresh_failed",
                error=str(e),
                cached=len(self._pair_cache),
            )
            return

        parser = NumericParser()
        self._pair_cache.replace([PairMetadata.from_raw(raw, parser) for raw in raw_pairs])
        if parser.failures:
            logger.warning("malformed_pair_metadata_fields", count=parser.failures)

    async def _write_csv(self, snapshot: StatsSnapshot) -> None:
        if self._csv_sink is None:
            return
        rows = self._ranker.csv_rows(snapshot)
        if not rows:
            return
        try:
            await asyncio.to_thread(self._csv_sink.append_rows, rows, snapshot.timestamp)
        except OSError as e:
            logger.error("csv_write_failed", error=str(e), directory=str(self._csv_sink.directory))

    async def _publish(self, snapshot: StatsSnapshot) -> None:
        for callback in list(self._snapshot_subscribers):
            try:
                await callback(snapshot)
            except Exception:
                logger.warning("snapshot_subscriber_failed", exc_info=True)

        if self._presenter is not None:
            await self._presenter.push_snapshot(snapshot)
        if self._presenter is None or not self._presenter.is_visible():
            self._log_tables(snapshot)

    @staticmethod
    def _log_tables(snapshot: StatsSnapshot) -> None:
        logger.info(
            "top_movers",
            table="\n"
            + format_table("Top increasing (24h %)", snapshot.top_increasing)
            + "\n\n"
            + format_table("Top decreasing (24h %)", snapshot.top_decreasing),
        )

    def get_status(self) -> dict:
        """Return the loop state for the dashboard and logs."""
        stats = self._last_stats
        return {
            "running": self._running,
            "cycles": self._cycles,
            "interval_seconds": self._interval_seconds,
            "last_cycle_at": self._last_cycle_at,
            "tracked_symbols": len(self._engine.tracker),
            "cached_pairs": len(self._pair_cache),
            "malformed_fields_total": self._malformed_total,
            "last_cycle": {
                "tickers": stats.tickers,
                "passed": stats.passed,
                "alerts": stats.alerts,
                "malformed_fields": stats.malformed_fields,
                "rejected": stats.rejected,
            }
            if stats is not None
            else None,
        }
