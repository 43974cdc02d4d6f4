"""Notification layer -- console and Telegram channels behind an isolating fan-out."""

from gatewatch.notify.base import Notifier
from gatewatch.notify.console import ConsoleNotifier
from gatewatch.notify.fanout import ChannelResult, FanoutReport, NotifierFanout
from gatewatch.notify.telegram import TelegramNotifier

__all__ = [
    "ChannelResult",
    "ConsoleNotifier",
    "FanoutReport",
    "Notifier",
    "NotifierFanout",
    "TelegramNotifier",
]
