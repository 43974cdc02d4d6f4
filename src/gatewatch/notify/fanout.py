"""Alert fan-out with per-channel failure isolation.

Every enabled channel gets its own delivery task and its own error
boundary. A failing channel is recorded in the FanoutReport and logged;
it never cancels, delays or hides delivery to the other channels, and it
never propagates into the poll cycle. Only cancellation propagates.
"""

import asyncio
from dataclasses import dataclass, field

from gatewatch.logging import get_logger
from gatewatch.models import AlertEvent
from gatewatch.notify.base import Notifier

logger = get_logger(__name__)


@dataclass(frozen=True)
class ChannelResult:
    """Outcome of delivering one alert to one channel."""

    name: str
    ok: bool
    error: str | None = None


@dataclass
class FanoutReport:
    """Per-channel results for one alert."""

    results: list[ChannelResult] = field(default_factory=list)

    @property
    def delivered(self) -> list[str]:
        return [r.name for r in self.results if r.ok]

    @property
    def failed(self) -> list[ChannelResult]:
        return [r for r in self.results if not r.ok]

    @property
    def all_ok(self) -> bool:
        return not self.failed


class NotifierFanout:
    """Dispatches each alert to every enabled channel concurrently."""

    def __init__(self, channels: list[Notifier]) -> None:
        self._channels = list(channels)

    @property
    def channels(self) -> list[Notifier]:
        return list(self._channels)

    async def notify(self, alert: AlertEvent) -> FanoutReport:
        active: list[Notifier] = []
        for channel in self._channels:
            try:
                if channel.enabled:
                    active.append(channel)
            except Exception:
                logger.warning("notifier_enabled_check_failed", channel=channel.name, exc_info=True)

        results = await asyncio.gather(*(self._deliver(ch, alert) for ch in active))
        report = FanoutReport(results=list(results))

        if report.failed:
            logger.warning(
                "alert_fanout_partial_failure",
                symbol=alert.symbol,
                delivered=report.delivered,
                failed={r.name: r.error for r in report.failed},
            )
        return report

    @staticmethod
    async def _deliver(channel: Notifier, alert: AlertEvent) -> ChannelResult:
        try:
            await channel.notify(alert)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(
                "notifier_delivery_failed",
                channel=channel.name,
                symbol=alert.symbol,
                error=str(e),
            )
            return ChannelResult(name=channel.name, ok=False, error=str(e) or type(e).__name__)
        return ChannelResult(name=channel.name, ok=True)
