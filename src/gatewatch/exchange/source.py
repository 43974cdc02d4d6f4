"""Abstract market data source interface.

The poll cycle depends only on this contract; exchange-specific payload
shapes stay inside the concrete implementation. Numeric values are returned
as the exchange sends them (text) and parsed downstream.
"""

from abc import ABC, abstractmethod


class MarketDataSource(ABC):
    """Abstract base class for spot market data providers."""

    @abstractmethod
    async def connect(self) -> None:
        """Initialize the underlying client."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release network resources."""
        ...

    @abstractmethod
    async def list_tickers(self) -> list[dict]:
        """Fetch every spot ticker.

        Returns dicts with keys: symbol, last_price, change_percent,
        base_volume_24h, quote_volume_24h (numeric values as text).
        """
        ...

    @abstractmethod
    async def list_pair_metadata(self) -> list[dict]:
        """Fetch metadata for every spot pair.

        Returns dicts with keys: id, base, quote, trade_status, buy_start,
        sell_start, delisting_time.
        """
        ...
