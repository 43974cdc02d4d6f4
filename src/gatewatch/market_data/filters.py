"""Filter pipeline deciding which tickers take part in a poll cycle.

Filters are independent pure predicates evaluated in a fixed order and
short-circuited at the first failure:

  1. include           -- non-empty include list must contain the symbol
  2. exclude           -- exclude list must not contain the symbol
  3. metadata          -- pair metadata must be known
  4. quote             -- non-empty quote allow-list must contain the quote
  5. new_only          -- when enabled, listed within new_since_days
  6. min_quote_volume  -- 24h quote volume floor (skipped when 0)
  7. min_base_volume   -- 24h base volume floor (skipped when 0)
  8. tradable          -- trade status must be "tradable" (empty = unknown, passes)

A ticker that fails is excluded from windowing, ranking and alerting for
the tick, not merely hidden from display.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass

from gatewatch.config import FiltersConfig
from gatewatch.models import PairMetadata, TickerSample

_SECONDS_PER_DAY = 86_400
TRADABLE_STATUS = "tradable"


@dataclass(frozen=True)
class FilterCriteria:
    """FiltersConfig prepared for fast case-insensitive lookups."""

    include: frozenset[str]
    exclude: frozenset[str]
    quotes: frozenset[str]
    min_quote_volume: float
    min_base_volume: float
    new_only: bool
    listed_since: float  # Unix seconds

    @classmethod
    def from_config(cls, filters: FiltersConfig, now: float | None = None) -> "FilterCriteria":
        now = time.time() if now is None else now
        return cls(
            include=frozenset(s.strip().upper() for s in filters.include_symbols if s.strip()),
            exclude=frozenset(s.strip().upper() for s in filters.exclude_symbols if s.strip()),
            quotes=frozenset(q.strip().upper() for q in filters.allowed_quote_currencies if q.strip()),
            min_quote_volume=filters.min_quote_volume_24h,
            min_base_volume=filters.min_base_volume_24h,
            new_only=filters.new_only,
            listed_since=now - max(1, filters.new_since_days) * _SECONDS_PER_DAY,
        )


Predicate = Callable[[FilterCriteria, TickerSample, PairMetadata | None], bool]


def _include(c: FilterCriteria, sample: TickerSample, meta: PairMetadata | None) -> bool:
    return not c.include or sample.symbol.upper() in c.include


def _exclude(c: FilterCriteria, sample: TickerSample, meta: PairMetadata | None) -> bool:
    return sample.symbol.upper() not in c.exclude


def _metadata(c: FilterCriteria, sample: TickerSample, meta: PairMetadata | None) -> bool:
    return meta is not None


def _quote(c: FilterCriteria, sample: TickerSample, meta: PairMetadata | None) -> bool:
    if not c.quotes:
        return True
    return meta is not None and meta.quote.upper() in c.quotes


def _new_only(c: FilterCriteria, sample: TickerSample, meta: PairMetadata | None) -> bool:
    if not c.new_only:
        return True
    return meta is not None and meta.buy_start > 0 and meta.buy_start >= c.listed_since


def _min_quote_volume(c: FilterCriteria, sample: TickerSample, meta: PairMetadata | None) -> bool:
    return c.min_quote_volume <= 0 or sample.quote_volume_24h >= c.min_quote_volume


def _min_base_volume(c: FilterCriteria, sample: TickerSample, meta: PairMetadata | None) -> bool:
    return c.min_base_volume <= 0 or sample.base_volume_24h >= c.min_base_volume


def _tradable(c: FilterCriteria, sample: TickerSample, meta: PairMetadata | None) -> bool:
    if meta is None:
        return False
    status = meta.trade_status.strip()
    return not status or status.lower() == TRADABLE_STATUS


PREDICATES: tuple[tuple[str, Predicate], ...] = (
    ("include", _include),
    ("exclude", _exclude),
    ("metadata", _metadata),
    ("quote", _quote),
    ("new_only", _new_only),
    ("min_quote_volume", _min_quote_volume),
    ("min_base_volume", _min_base_volume),
    ("tradable", _tradable),
)


class FilterPipeline:
    """Ordered predicate chain bound to one configuration snapshot.

    Build one per poll cycle so every ticker in the cycle is judged against
    the same criteria.
    """

    def __init__(self, filters: FiltersConfig, now: float | None = None) -> None:
        self._criteria = FilterCriteria.from_config(filters, now)
        self.rejections: dict[str, int] = {}

    @property
    def criteria(self) -> FilterCriteria:
        return self._criteria

    def first_failure(self, sample: TickerSample, meta: PairMetadata | None) -> str | None:
        """Name of the first failing predicate, or None if the ticker passes."""
        for name, predicate in PREDICATES:
            if not predicate(self._criteria, sample, meta):
                return name
        return None

    def passes(self, sample: TickerSample, meta: PairMetadata | None) -> bool:
        failed = self.first_failure(sample, meta)
        if failed is not None:
            self.rejections[failed] = self.rejections.get(failed, 0) + 1
            return False
        return True
