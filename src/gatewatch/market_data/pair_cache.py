"""Cached pair metadata with a slow refresh cadence.

Listing data (quote currency, trade status, listing time) changes rarely,
so the orchestrator refreshes it every ten minutes, or immediately when
the cache is empty, rather than on every tick.
"""

import time

from gatewatch.logging import get_logger
from gatewatch.models import PairMetadata

logger = get_logger(__name__)

DEFAULT_REFRESH_SECONDS = 600.0


class PairMetadataCache:
    """In-memory symbol -> PairMetadata map with staleness detection."""

    def __init__(self, refresh_seconds: float = DEFAULT_REFRESH_SECONDS) -> None:
        self._refresh_seconds = refresh_seconds
        self._pairs: dict[str, PairMetadata] = {}
        self._refreshed_at: float | None = None

    @property
    def refreshed_at(self) -> float | None:
        return self._refreshed_at

    def needs_refresh(self, now: float | None = None) -> bool:
        """True when the cache is empty or older than the refresh period."""
        if not self._pairs or self._refreshed_at is None:
            return True
        now = time.time() if now is None else now
        return now - self._refreshed_at > self._refresh_seconds

    def replace(self, pairs: list[PairMetadata], now: float | None = None) -> int:
        """Swap in a fresh pair list; entries without an id are dropped."""
        fresh = {p.symbol: p for p in pairs if p.symbol}
        self._pairs = fresh
        self._refreshed_at = time.time() if now is None else now
        logger.info("pair_metadata_refreshed", count=len(fresh))
        return len(fresh)

    def get(self, symbol: str) -> PairMetadata | None:
        return self._pairs.get(symbol)

    def __len__(self) -> int:
        return len(self._pairs)

    def __contains__(self, symbol: object) -> bool:
        return symbol in self._pairs
