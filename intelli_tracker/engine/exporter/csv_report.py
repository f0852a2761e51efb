"""Change report written as a spreadsheet-friendly CSV file."""

from __future__ import annotations

import csv
import math
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Iterable

from ...config import ReportSettings
from ...models import ACTIVITY_LOG_FIELD, DUE_DATE_FIELD, DiffRow, LogEntry
from ..dates import parse_loose
from .base import BaseExporter

BOM = "\ufeff"


def due_sort_key(row: DiffRow) -> float:
    parsed = parse_loose(row.fields.get(DUE_DATE_FIELD))
    return parsed.timestamp() if parsed else math.inf


def sort_by_due_date(rows: Iterable[DiffRow]) -> list[DiffRow]:
    """Ascending by due date; rows without a parseable date keep their order at the end."""

    return sorted(rows, key=due_sort_key)


def format_log_cell(entries: Iterable[LogEntry], days_window: int, now: datetime) -> str:
    """Entries dated within the last ``days_window`` days, one per line."""

    cutoff = now - timedelta(days=days_window)
    lines = []
    for entry in entries:
        stamp = parse_loose(entry.timestamp)
        if stamp is not None and stamp >= cutoff:
            lines.append(entry.formatted())
    return "\n".join(lines)


class CsvReportExporter(BaseExporter):
    """Buffer diff rows and write them as ``updates_<timestamp>.csv``."""

    def __init__(
        self,
        output_dir: Path,
        settings: ReportSettings,
        timestamp: int,
        days_window: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.output_dir = output_dir
        self.settings = settings
        self.days_window = settings.days_window if days_window is None else days_window
        self.clock = clock
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.path = self.output_dir / f"updates_{timestamp}.csv"
        self._rows: list[DiffRow] = []
        self._closed = False

    def export(self, row: DiffRow) -> None:
        self._rows.append(row)

    def render_row(self, row: DiffRow, now: datetime) -> dict[str, str]:
        payload = row.as_dict()
        rendered: dict[str, str] = {}
        for column in self.settings.columns:
            if column == ACTIVITY_LOG_FIELD:
                rendered[column] = format_log_cell(row.activity_log, self.days_window, now)
            else:
                rendered[column] = _cell(payload.get(column))
        return rendered

    def flush(self) -> None:
        now = datetime.fromtimestamp(self.clock(), tz=timezone.utc)
        with self.path.open("w", encoding="utf-8", newline="") as stream:
            if self.settings.include_bom:
                stream.write(BOM)
            writer = csv.DictWriter(
                stream,
                fieldnames=self.settings.columns,
                delimiter=self.settings.delimiter,
                quoting=csv.QUOTE_ALL,
                lineterminator="\r\n",
            )
            writer.writeheader()
            for row in sort_by_due_date(self._rows):
                writer.writerow(self.render_row(row, now))

    def close(self) -> None:
        if self._closed:
            return
        self.flush()
        self._closed = True


def _cell(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


__all__ = ["BOM", "CsvReportExporter", "format_log_cell", "sort_by_due_date"]
