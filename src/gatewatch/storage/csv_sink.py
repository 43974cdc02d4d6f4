"""Daily CSV log of the ranked top movers.

One file per local day (stats_YYYY-MM-DD.csv); the header is written when
the file is created and every poll cycle appends its rows.
"""

import csv
from datetime import datetime
from pathlib import Path

from gatewatch.logging import get_logger

logger = get_logger(__name__)

CSV_HEADER = ["time", "type", "rank", "pair", "last", "quote_volume", "change_percentage"]


class CsvSink:
    """Appends ranked rows to a per-day CSV file.

    Args:
        directory: Folder holding the daily files (created on demand).
    """

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, day: datetime) -> Path:
        return self._directory / f"stats_{day:%Y-%m-%d}.csv"

    def append_rows(self, rows: list[list[str]], now: datetime | None = None) -> Path:
        """Append rows to today's file, writing the header for a new file."""
        now = now or datetime.now()
        path = self.path_for(now)
        self._directory.mkdir(parents=True, exist_ok=True)
        new_file = not path.exists()

        with path.open("a", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            if new_file:
                writer.writerow(CSV_HEADER)
            writer.writerows(rows)

        logger.debug("csv_rows_appended", path=str(path), rows=len(rows))
        return path
