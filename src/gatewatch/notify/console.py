"""Console/log channel with a bounded replay history for the dashboard."""

from collections import deque
from collections.abc import Awaitable, Callable

from gatewatch.config import WatcherConfig
from gatewatch.logging import get_logger
from gatewatch.models import AlertEvent
from gatewatch.notify.base import Notifier

logger = get_logger(__name__)

HISTORY_LIMIT = 1000

AlertSubscriber = Callable[[AlertEvent], Awaitable[None]]


class ConsoleNotifier(Notifier):
    """Logs alerts, keeps the newest HISTORY_LIMIT and fans them to subscribers.

    Args:
        config_provider: Returns the current configuration snapshot.
        history_limit: Number of alerts kept for replay.
    """

    name = "console"

    def __init__(
        self,
        config_provider: Callable[[], WatcherConfig],
        history_limit: int = HISTORY_LIMIT,
    ) -> None:
        self._config_provider = config_provider
        self._history: deque[AlertEvent] = deque(maxlen=history_limit)
        self._subscribers: list[AlertSubscriber] = []

    @property
    def enabled(self) -> bool:
        return self._config_provider().notifications.console.enabled

    @property
    def history(self) -> list[AlertEvent]:
        """Replay history, newest first."""
        return list(self._history)

    def subscribe(self, callback: AlertSubscriber) -> None:
        self._subscribers.append(callback)

    async def notify(self, alert: AlertEvent) -> None:
        logger.warning(
            "alert",
            title=alert.title,
            direction=alert.direction.value,
            symbol=alert.symbol,
            delta=round(alert.delta, 4),
            message=alert.message,
        )
        self._history.appendleft(alert)

        for callback in list(self._subscribers):
            try:
                await callback(alert)
            except Exception:
                logger.warning("alert_subscriber_failed", exc_info=True)
