"""Top-movers ranking for one poll cycle.

Ranks the cycle's filtered tickers by 24h change percentage:
  top_increasing = stable sort descending, first N
  top_decreasing = stable sort ascending, first N

Python's sort is stable in both directions, so equal values keep the
order in which the cycle scanned them. Tests rely on that determinism.
"""

from collections.abc import Sequence
from datetime import datetime

from gatewatch.models import RankedRow, StatsSnapshot, TickerSample

DEFAULT_TOP_N = 10

TOP_UP = "top_up"
TOP_DOWN = "top_down"


def format_trimmed(value: float, places: int) -> str:
    """Fixed-point text with trailing zeros removed (e.g. 1.50000000 -> 1.5)."""
    text = f"{value:.{places}f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


class RankingAggregator:
    """Builds StatsSnapshots and their CSV rows.

    Args:
        top_n: Length of each ranked list.
    """

    def __init__(self, top_n: int = DEFAULT_TOP_N) -> None:
        self._top_n = top_n

    def rank(
        self, samples: Sequence[TickerSample]
    ) -> tuple[list[TickerSample], list[TickerSample]]:
        """Return (top_increasing, top_decreasing) in scan-stable order."""
        top_up = sorted(samples, key=lambda s: s.change_percent, reverse=True)[: self._top_n]
        top_down = sorted(samples, key=lambda s: s.change_percent)[: self._top_n]
        return top_up, top_down

    def build_snapshot(
        self, samples: Sequence[TickerSample], timestamp: datetime | None = None
    ) -> StatsSnapshot:
        """Rank the cycle's samples and assemble an immutable snapshot."""
        timestamp = timestamp or datetime.now().astimezone()
        top_up, top_down = self.rank(samples)
        return StatsSnapshot(
            top_increasing=tuple(self._row(s, timestamp) for s in top_up),
            top_decreasing=tuple(self._row(s, timestamp) for s in top_down),
            timestamp=timestamp,
        )

    @staticmethod
    def csv_rows(snapshot: StatsSnapshot) -> list[list[str]]:
        """One row per ranked entry per list, tagged top_up / top_down."""
        stamp = snapshot.timestamp.strftime("%Y-%m-%d %H:%M:%S")
        rows: list[list[str]] = []
        for tag, ranked in ((TOP_UP, snapshot.top_increasing), (TOP_DOWN, snapshot.top_decreasing)):
            for rank, row in enumerate(ranked, start=1):
                rows.append(
                    [
                        stamp,
                        tag,
                        str(rank),
                        row.symbol,
                        format_trimmed(row.last_price, 8),
                        format_trimmed(row.quote_volume, 3),
                        format_trimmed(row.change_percent, 2),
                    ]
                )
        return rows

    @staticmethod
    def _row(sample: TickerSample, timestamp: datetime) -> RankedRow:
        return RankedRow(
            symbol=sample.symbol,
            change_percent=sample.change_percent,
            quote_volume=sample.quote_volume_24h,
            last_price=sample.last_price,
            timestamp=timestamp,
        )
