# Overview: Naive-UTC clock helpers and business-day arithmetic for lifecycle deadlines.

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_utc_naive(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 instant (used for --as-of on the sweep commands).

    Blank input gives None. Offsets and a trailing 'Z' are converted to UTC;
    naive input is taken to be UTC already.
    """
    text = (value or "").strip()
    if not text:
        return None
    if text[-1] in "zZ":
        text = f"{text[:-1]}+00:00"
    return _as_utc_naive(datetime.fromisoformat(text))


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Render a stored (naive UTC) datetime as 'YYYY-MM-DDTHH:MM:SSZ'."""
    if dt is None:
        return None
    return _as_utc_naive(dt).replace(microsecond=0).isoformat() + "Z"


def to_iso_date(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def add_business_days(start: date, business_days: int) -> date:
    """
    Count forward business_days weekdays from start (start itself excluded).

    Saturdays and Sundays are skipped; public holidays are not modelled.
    """
    current = start
    counted = 0
    while counted < business_days:
        current += timedelta(days=1)
        if current.weekday() < 5:
            counted += 1
    return current


def end_of_day(value: date) -> datetime:
    """Last representable instant of a calendar day (naive UTC)."""
    return datetime.combine(value, time.max)
