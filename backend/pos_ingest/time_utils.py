# Overview: UTC clock, terminal timestamp parsing and ISO serialisation.

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: str | None) -> datetime | None:
    """
    Parse a terminal timestamp into a UTC-naive datetime.

    Blank -> None. A trailing "Z" or an explicit offset is converted to UTC;
    a timestamp without an offset is taken as UTC already. Raises ValueError
    for anything fromisoformat rejects.
    """
    if value is None or not value.strip():
        return None

    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.replace(tzinfo=None)


def utc_day_bounds(moment: datetime) -> tuple[datetime, datetime]:
    """[start, end) of the UTC calendar day containing moment."""
    start = datetime.combine(moment.date(), time.min)
    return start, start + timedelta(days=1)


def to_utc_z(dt: datetime | None) -> str | None:
    """ISO-8601 with a trailing 'Z', to the second. Naive values are UTC."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.replace(microsecond=0).isoformat() + "Z"


def to_iso_date(d: date | None) -> str | None:
    return d.isoformat() if d is not None else None
