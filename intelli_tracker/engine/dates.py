"""Loose date parsing for free-text timestamps scraped from item pages."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable

from dateutil import parser as date_parser


def parse_loose(value: object) -> datetime | None:
    """Parse ``value`` leniently; return ``None`` when it is not a date."""

    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            dt = date_parser.parse(text)
        except (ValueError, OverflowError):
            return None
    if dt.tzinfo is None:
        local_tz = datetime.now().astimezone().tzinfo or timezone.utc
        dt = dt.replace(tzinfo=local_tz)
    return dt.astimezone(timezone.utc)


def most_recent_date_string(values: Iterable[str]) -> str:
    """Return the original string of the latest parseable date, or ``""``."""

    best: tuple[datetime, str] | None = None
    for value in values:
        parsed = parse_loose(value)
        if parsed is None:
            continue
        if best is None or parsed > best[0]:
            best = (parsed, value)
    return best[1] if best else ""


__all__ = ["most_recent_date_string", "parse_loose"]
