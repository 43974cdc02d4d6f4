"""Tests for TelegramNotifier payloads, gating and retries (no network)."""

from contextlib import asynccontextmanager
from datetime import datetime

import aiohttp
import pytest

from gatewatch.config import HttpSettings, WatcherConfig
from gatewatch.exceptions import NotificationError
from gatewatch.models import AlertDirection, AlertEvent
from gatewatch.notify.telegram import TelegramNotifier


class _FakeResponse:
    def __init__(self, status: int, body: str = "") -> None:
        self.status = status
        self._body = body

    async def text(self) -> str:
        return self._body


class _FakeSession:
    """Stands in for aiohttp.ClientSession; replays one outcome per post."""

    def __init__(self, outcomes: list) -> None:
        self._outcomes = list(outcomes)
        self.calls: list[tuple[str, dict]] = []
        self.closed = False

    @asynccontextmanager
    async def post(self, url: str, json: dict):
        self.calls.append((url, json))
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        yield _FakeResponse(outcome)

    async def close(self) -> None:
        self.closed = True


FAST_HTTP = HttpSettings(notify_max_retries=3, notify_initial_backoff=0.001, notify_max_backoff=0.002)


def _config(enabled: bool = True, token: str = "123:abc", chat_id: str = "42") -> WatcherConfig:
    return WatcherConfig.model_validate(
        {"notifications": {"telegram": {"enabled": enabled, "bot_token": token, "chat_id": chat_id}}}
    )


@pytest.fixture
def alert() -> AlertEvent:
    return AlertEvent(
        timestamp=datetime.now(),
        direction=AlertDirection.INCREASE,
        title="Gate.io change alert (increase)",
        message="BTC_USDT | delta=8.00%",
        symbol="BTC_USDT",
    )


class TestTelegramNotifier:
    @pytest.mark.asyncio
    async def test_posts_markdown_payload(self, alert: AlertEvent) -> None:
        session = _FakeSession([200])
        notifier = TelegramNotifier(_config, FAST_HTTP, session=session)

        await notifier.notify(alert)

        url, payload = session.calls[0]
        assert url == "https://api.telegram.org/bot123:abc/sendMessage"
        assert payload == {
            "chat_id": "42",
            "text": "*Gate.io change alert (increase)*\nBTC_USDT | delta=8.00%",
            "parse_mode": "Markdown",
        }

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "config",
        [_config(enabled=False), _config(token=""), _config(chat_id="  ")],
    )
    async def test_noop_when_disabled_or_missing_credentials(
        self, config: WatcherConfig, alert: AlertEvent
    ) -> None:
        session = _FakeSession([])
        notifier = TelegramNotifier(lambda: config, FAST_HTTP, session=session)

        await notifier.notify(alert)

        assert not notifier.enabled
        assert session.calls == []

    @pytest.mark.asyncio
    async def test_retries_rate_limit_then_succeeds(self, alert: AlertEvent) -> None:
        session = _FakeSession([429, 502, 200])
        notifier = TelegramNotifier(_config, FAST_HTTP, session=session)

        await notifier.notify(alert)

        assert len(session.calls) == 3

    @pytest.mark.asyncio
    async def test_client_error_does_not_retry(self, alert: AlertEvent) -> None:
        session = _FakeSession([400])
        notifier = TelegramNotifier(_config, FAST_HTTP, session=session)

        with pytest.raises(NotificationError, match="HTTP 400"):
            await notifier.notify(alert)
        assert len(session.calls) == 1

    @pytest.mark.asyncio
    async def test_network_errors_exhaust_retries(self, alert: AlertEvent) -> None:
        session = _FakeSession([aiohttp.ClientConnectionError("down")] * 3)
        notifier = TelegramNotifier(_config, FAST_HTTP, session=session)

        with pytest.raises(NotificationError):
            await notifier.notify(alert)
        assert len(session.calls) == 3

    @pytest.mark.asyncio
    async def test_close_leaves_injected_session_open(self) -> None:
        session = _FakeSession([])
        notifier = TelegramNotifier(_config, FAST_HTTP, session=session)

        await notifier.close()

        assert not session.closed
