"""Telegram bot channel -- posts alerts to the Bot API with aiohttp.

Credentials are read from the configuration on every call. The channel is
a no-op while disabled or missing a token/chat id. 429 and 5xx responses
are retried with jittered exponential backoff; any other failure raises
NotificationError for the fan-out to record.
"""

import asyncio
import random
from collections.abc import Callable

import aiohttp

from gatewatch.config import HttpSettings, WatcherConfig
from gatewatch.exceptions import NotificationError
from gatewatch.logging import get_logger
from gatewatch.models import AlertEvent
from gatewatch.notify.base import Notifier

logger = get_logger(__name__)

API_URL = "https://api.telegram.org/bot{token}/sendMessage"


class TelegramNotifier(Notifier):
    """Sends alerts to a Telegram chat.

    Args:
        config_provider: Returns the current configuration snapshot.
        http: Timeout and retry settings.
        session: Optional shared aiohttp session (created lazily otherwise).
    """

    name = "telegram"

    def __init__(
        self,
        config_provider: Callable[[], WatcherConfig],
        http: HttpSettings | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._config_provider = config_provider
        self._http = http or HttpSettings()
        self._session = session
        self._owns_session = session is None

    @property
    def enabled(self) -> bool:
        telegram = self._config_provider().notifications.telegram
        return telegram.enabled and telegram.has_credentials

    async def notify(self, alert: AlertEvent) -> None:
        telegram = self._config_provider().notifications.telegram
        if not telegram.enabled or not telegram.has_credentials:
            return

        url = API_URL.format(token=telegram.bot_token.strip())
        payload = {
            "chat_id": telegram.chat_id.strip(),
            "text": f"*{alert.title}*\n{alert.message}",
            "parse_mode": "Markdown",
        }
        await self._post_with_retry(url, payload)

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._http.timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    async def _post_with_retry(self, url: str, payload: dict) -> None:
        session = self._get_session()
        attempts = max(1, self._http.notify_max_retries)
        backoff = self._http.notify_initial_backoff
        last_error = ""

        for attempt in range(1, attempts + 1):
            try:
                async with session.post(url, json=payload) as resp:
                    if 200 <= resp.status < 300:
                        return
                    body = await _safe_text(resp)
                    last_error = f"HTTP {resp.status}: {body[:200]}"
                    logger.warning(
                        "telegram_send_failed",
                        status=resp.status,
                        attempt=attempt,
                    )
                    if resp.status != 429 and not 500 <= resp.status < 600:
                        break
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = f"{type(e).__name__}: {e}"
                logger.warning("telegram_network_error", error=str(e), attempt=attempt)

            if attempt < attempts:
                await asyncio.sleep(_jitter(backoff))
                backoff = min(backoff * 2.0, self._http.notify_max_backoff)

        raise NotificationError(f"telegram delivery failed: {last_error}")


def _jitter(base: float) -> float:
    return base * (0.8 + 0.4 * random.random())


async def _safe_text(resp: aiohttp.ClientResponse) -> str:
    try:
        return await resp.text()
    except (aiohttp.ClientError, UnicodeDecodeError):
        return "<no body>"
