"""Timestamp parsing/formatting shared by readers and the normalizer."""

from __future__ import annotations

import calendar
import time
from datetime import datetime, timezone
from typing import Any, Optional

from dateutil import parser as dparser


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def from_struct_time(st: Optional[time.struct_time]) -> Optional[datetime]:
    """feedparser's *_parsed values are UTC struct_time tuples."""
    if not st:
        return None
    try:
        return datetime.fromtimestamp(calendar.timegm(st), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _as_utc(dt: datetime) -> Optional[datetime]:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    try:
        return dt.astimezone(timezone.utc)
    except (OverflowError, ValueError):
        return None


def parse_timestamp(value: Any, *, now: Optional[datetime] = None) -> Optional[datetime]:
    """Parse ISO strings, RFC 822 dates and loose text like "31 December 2025".

    Naive values are treated as UTC. Missing year/month/day components are taken
    from January 1st of the current year. Returns None when unparseable or when
    the instant falls outside the representable UTC range.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return _as_utc(value)
    s = str(value).strip()
    if not s:
        return None
    ref = now or utc_now()
    default = datetime(ref.year, 1, 1, tzinfo=timezone.utc)
    try:
        parsed = dparser.parse(s, default=default)
    except (ValueError, OverflowError):
        return None
    return _as_utc(parsed)


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    """Format as ``YYYY-MM-DDTHH:MM:SS.mmmZ`` (UTC, millisecond precision)."""
    if dt is None:
        return None
    u = _as_utc(dt)
    if u is None:
        return None
    return u.strftime("%Y-%m-%dT%H:%M:%S") + f".{u.microsecond // 1000:03d}Z"
