"""Threshold engine -- detects large moves of the 24h change metric.

For every filtered symbol on every tick:
  steps    = max(1, round(lookback_seconds / interval_seconds))
  push change_percent into the symbol's window
  if len(window) >= steps + 1:
      delta = window[-1] - window[-1 - steps]
      increase alert iff delta >= increase_percent
      decrease alert iff delta <= -decrease_percent

Both checks are independent. With positive thresholds they can never fire
together; with zero thresholds a flat delta fires both.

The window must hold steps + 1 samples. When the configured window is
smaller, ensure_window_capacity() raises it through the ConfigStore, which
persists the correction like any other save.
"""

from datetime import datetime

from gatewatch.config import PollingConfig, WatcherConfig
from gatewatch.config_store import ConfigStore
from gatewatch.exceptions import ConfigWriteError
from gatewatch.logging import get_logger
from gatewatch.market_data.ranker import format_trimmed
from gatewatch.market_data.window import SlidingWindowTracker
from gatewatch.models import AlertDirection, AlertEvent, TickerSample

logger = get_logger(__name__)

ALERT_TITLE = "Gate.io change alert ({direction})"


def lookback_steps(polling: PollingConfig) -> int:
    """Number of poll intervals spanned by the lookback horizon (at least 1)."""
    interval = max(1, polling.interval_seconds)
    return max(1, round(polling.lookback_seconds / interval))


def required_window(polling: PollingConfig) -> int:
    """Smallest window able to compare the newest sample with its baseline."""
    return lookback_steps(polling) + 1


class ThresholdEngine:
    """Pushes samples into sliding windows and emits alert events.

    Args:
        config_store: Store used to persist window-size corrections.
        tracker: Per-symbol windows; owned by the poll cycle.
    """

    def __init__(self, config_store: ConfigStore, tracker: SlidingWindowTracker) -> None:
        self._config_store = config_store
        self._tracker = tracker
        self._warned_inexact: tuple[int, int] | None = None

    @property
    def tracker(self) -> SlidingWindowTracker:
        return self._tracker

    def ensure_window_capacity(self, config: WatcherConfig) -> WatcherConfig:
        """Raise samples_window to steps + 1 when it is too small.

        Returns the snapshot the cycle should use: the corrected one after a
        save, otherwise the one passed in. Running it again on the corrected
        snapshot is a no-op.
        """
        polling = config.polling
        steps = lookback_steps(polling)
        needed = steps + 1

        if polling.samples_window < needed:
            logger.info(
                "samples_window_auto_raised",
                old=polling.samples_window,
                new=needed,
                steps=steps,
            )

            def _raise_window(cfg) -> None:
                cfg.polling.samples_window = max(cfg.polling.samples_window, needed)

            try:
                return self._config_store.save(_raise_window)
            except ConfigWriteError as e:
                logger.warning("samples_window_correction_not_saved", error=str(e))
                return config.model_copy(
                    update={"polling": polling.model_copy(update={"samples_window": needed})}
                )

        key = (polling.interval_seconds, polling.lookback_seconds)
        if polling.lookback_seconds % polling.interval_seconds != 0 and key != self._warned_inexact:
            self._warned_inexact = key
            logger.info(
                "lookback_not_multiple_of_interval",
                lookback_seconds=polling.lookback_seconds,
                interval_seconds=polling.interval_seconds,
                steps=steps,
                effective_seconds=steps * polling.interval_seconds,
            )
        return config

    def process(self, sample: TickerSample, config: WatcherConfig) -> list[AlertEvent]:
        """Record one filtered sample and return any alerts it triggers."""
        polling = config.polling
        self._tracker.eager_shrink = polling.eager_window_shrink
        self._tracker.set_capacity(sample.symbol, polling.samples_window)
        values = self._tracker.push(sample.symbol, sample.change_percent)

        steps = lookback_steps(polling)
        if len(values) < steps + 1:
            return []

        newest = values[-1]
        baseline = values[-1 - steps]
        delta = newest - baseline

        thresholds = config.thresholds
        alerts: list[AlertEvent] = []
        if delta >= thresholds.increase_percent:
            alerts.append(
                self._build_alert(sample, AlertDirection.INCREASE, newest, baseline, delta, polling)
            )
        if delta <= -thresholds.decrease_percent:
            alerts.append(
                self._build_alert(sample, AlertDirection.DECREASE, newest, baseline, delta, polling)
            )
        return alerts

    @staticmethod
    def _build_alert(
        sample: TickerSample,
        direction: AlertDirection,
        newest: float,
        baseline: float,
        delta: float,
        polling: PollingConfig,
    ) -> AlertEvent:
        message = (
            f"{sample.symbol} | "
            f"24h% now={newest:.2f}, {polling.lookback_seconds}s-ago={baseline:.2f}, "
            f"delta={delta:.2f}% "
            f"| last={format_trimmed(sample.last_price, 8)} "
            f"| vol24h(quote)={sample.quote_volume_24h:.3f}"
        )
        return AlertEvent(
            timestamp=datetime.now().astimezone(),
            direction=direction,
            title=ALERT_TITLE.format(direction=direction.value),
            message=message,
            symbol=sample.symbol,
            newest=newest,
            baseline=baseline,
            delta=delta,
            last_price=sample.last_price,
            quote_volume=sample.quote_volume_24h,
        )
