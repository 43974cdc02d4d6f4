"""Abstract notification channel interface."""

from abc import ABC, abstractmethod

from gatewatch.models import AlertEvent


class Notifier(ABC):
    """One alert delivery channel.

    enabled is evaluated on every dispatch, so toggling a channel in the
    configuration document takes effect on the next alert.
    """

    name: str = "notifier"

    @property
    @abstractmethod
    def enabled(self) -> bool:
        ...

    @abstractmethod
    async def notify(self, alert: AlertEvent) -> None:
        """Deliver one alert. Raise on failure; the fan-out isolates errors."""
        ...
