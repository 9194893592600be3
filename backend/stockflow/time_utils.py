from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 string into a UTC-naive datetime.

    Dates without a time and naive datetimes are taken as UTC; "Z" and
    "+HH:MM" offsets are converted.
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """UTC ISO-8601 with a trailing 'Z', second precision."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def period_key(dt: datetime, bucket: str) -> str:
    """Report period label: "2026-03-01" (day), "2026-W09" (week) or "2026-03" (month)."""
    if bucket == "month":
        return f"{dt.year:04d}-{dt.month:02d}"
    if bucket == "week":
        year, week, _ = dt.isocalendar()
        return f"{year:04d}-W{week:02d}"
    return dt.date().isoformat()
