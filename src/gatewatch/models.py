"""Shared data models for the market mover watcher.

Exchange payloads carry numbers as text. They are parsed with NumericParser,
which never raises: malformed, missing or non-finite values become 0.0 and
are counted so the data-quality problem stays visible in the logs.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class AlertDirection(str, Enum):
    """Direction of a threshold crossing."""

    INCREASE = "increase"
    DECREASE = "decrease"
    NEUTRAL = "neutral"


class NumericParser:
    """Tolerant text-to-float parser that counts every coercion to 0.0."""

    def __init__(self) -> None:
        self.failures = 0

    def parse(self, raw: object) -> float:
        if isinstance(raw, bool):
            self.failures += 1
            return 0.0
        if isinstance(raw, (int, float)):
            value = float(raw)
        else:
            try:
                value = float(str(raw).strip())
            except (TypeError, ValueError):
                self.failures += 1
                return 0.0
        if not math.isfinite(value):
            self.failures += 1
            return 0.0
        return value

    def parse_int(self, raw: object) -> int:
        return int(self.parse(raw))


@dataclass(frozen=True)
class TickerSample:
    """One per-symbol tick from the market snapshot."""

    symbol: str
    last_price: float
    change_percent: float
    base_volume_24h: float
    quote_volume_24h: float

    @classmethod
    def from_raw(cls, raw: dict, parser: NumericParser) -> "TickerSample":
        """Build from a MarketDataSource ticker dict (text-numeric values)."""
        return cls(
            symbol=str(raw.get("symbol") or "").strip(),
            last_price=parser.parse(raw.get("last_price")),
            change_percent=parser.parse(raw.get("change_percent")),
            base_volume_24h=parser.parse(raw.get("base_volume_24h")),
            quote_volume_24h=parser.parse(raw.get("quote_volume_24h")),
        )


@dataclass(frozen=True)
class PairMetadata:
    """Currency pair metadata; buy_start doubles as the listing time."""

    symbol: str
    base: str
    quote: str
    trade_status: str
    buy_start: int = 0  # Unix seconds
    sell_start: int = 0
    delisting_time: int = 0

    @classmethod
    def from_raw(cls, raw: dict, parser: NumericParser) -> "PairMetadata":
        return cls(
            symbol=str(raw.get("id") or "").strip(),
            base=str(raw.get("base") or ""),
            quote=str(raw.get("quote") or ""),
            trade_status=str(raw.get("trade_status") or ""),
            buy_start=parser.parse_int(raw.get("buy_start", 0)),
            sell_start=parser.parse_int(raw.get("sell_start", 0)),
            delisting_time=parser.parse_int(raw.get("delisting_time", 0)),
        )


@dataclass(frozen=True)
class AlertEvent:
    """A threshold crossing detected for one symbol.

    Direction is carried as a field so consumers never parse it out of text.
    """

    timestamp: datetime
    direction: AlertDirection
    title: str
    message: str
    symbol: str = ""
    newest: float = 0.0
    baseline: float = 0.0
    delta: float = 0.0
    last_price: float = 0.0
    quote_volume: float = 0.0

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "direction": self.direction.value,
            "title": self.title,
            "message": self.message,
            "symbol": self.symbol,
            "newest": self.newest,
            "baseline": self.baseline,
            "delta": self.delta,
            "last_price": self.last_price,
            "quote_volume": self.quote_volume,
        }


@dataclass(frozen=True)
class RankedRow:
    """One entry of a top-movers list."""

    symbol: str
    change_percent: float
    quote_volume: float
    last_price: float
    timestamp: datetime

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "change_percent": self.change_percent,
            "quote_volume": self.quote_volume,
            "last_price": self.last_price,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class StatsSnapshot:
    """Ranked top movers for one poll cycle."""

    top_increasing: tuple[RankedRow, ...]
    top_decreasing: tuple[RankedRow, ...]
    timestamp: datetime

    def to_dict(self) -> dict:
        return {
            "top_increasing": [r.to_dict() for r in self.top_increasing],
            "top_decreasing": [r.to_dict() for r in self.top_decreasing],
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class CycleStats:
    """Counters for one poll cycle, logged when the cycle completes."""

    tickers: int = 0
    seen: int = 0
    passed: int = 0
    alerts: int = 0
    malformed_fields: int = 0
    rejected: dict[str, int] = field(default_factory=dict)
