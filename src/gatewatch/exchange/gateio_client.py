"""Gate.io spot market data via ccxt async.

Uses ccxt's raw public spot endpoints (GET /spot/tickers and
GET /spot/currency_pairs) rather than the unified fetch_tickers(), because
the watcher needs Gate.io's own change_percentage field and listing
metadata exactly as published. The spot base URL is re-read from the
configuration before every call so an edited endpoint applies on the
next tick.
"""

from collections.abc import Callable

import ccxt.async_support as ccxt_async

from gatewatch.exceptions import MarketDataError
from gatewatch.exchange.source import MarketDataSource
from gatewatch.logging import get_logger

logger = get_logger(__name__)


class GateIoSource(MarketDataSource):
    """Concrete Gate.io spot data source using ccxt async.

    Args:
        base_url_provider: Returns the current spot REST base URL.
        timeout_seconds: Per-request timeout.
    """

    def __init__(
        self,
        base_url_provider: Callable[[], str],
        timeout_seconds: float = 15.0,
    ) -> None:
        self._base_url_provider = base_url_provider
        self._exchange = ccxt_async.gate(
            {
                "enableRateLimit": True,
                "timeout": int(timeout_seconds * 1000),
            }
        )

    @property
    def exchange(self) -> ccxt_async.gate:
        """Access the underlying ccxt exchange instance."""
        return self._exchange

    async def connect(self) -> None:
        # Public endpoints only: nothing to authenticate or preload.
        logger.info("gateio_source_ready", base_url=self._base_url())

    async def close(self) -> None:
        """Clean up ccxt async resources. Must be called to avoid leaking sessions."""
        logger.info("closing_gateio_connection")
        await self._exchange.close()

    async def list_tickers(self) -> list[dict]:
        raw = await self._call("tickers", self._exchange.publicSpotGetTickers)
        tickers = [
            {
                "symbol": item.get("currency_pair", ""),
                "last_price": item.get("last"),
                "change_percent": item.get("change_percentage"),
                "base_volume_24h": item.get("base_volume"),
                "quote_volume_24h": item.get("quote_volume"),
            }
            for item in raw
            if isinstance(item, dict)
        ]
        logger.debug("fetched_tickers", count=len(tickers))
        return tickers

    async def list_pair_metadata(self) -> list[dict]:
        raw = await self._call("currency_pairs", self._exchange.publicSpotGetCurrencyPairs)
        pairs = [
            {
                "id": item.get("id", ""),
                "base": item.get("base", ""),
                "quote": item.get("quote", ""),
                "trade_status": item.get("trade_status", ""),
                "buy_start": item.get("buy_start", 0),
                "sell_start": item.get("sell_start", 0),
                "delisting_time": item.get("delisting_time", 0),
            }
            for item in raw
            if isinstance(item, dict)
        ]
        logger.debug("fetched_pair_metadata", count=len(pairs))
        return pairs

    def _base_url(self) -> str:
        return self._base_url_provider().rstrip("/")

    async def _call(self, endpoint: str, method: Callable) -> list:
        self._exchange.urls["api"]["public"]["spot"] = self._base_url()
        try:
            result = await method()
        except ccxt_async.BaseError as e:
            raise MarketDataError(f"{endpoint} request failed: {e}") from e
        if not isinstance(result, list):
            raise MarketDataError(f"{endpoint} returned {type(result).__name__}, expected list")
        return result
