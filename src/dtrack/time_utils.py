"""UTC helpers shared by deadlines and the notification scheduler.

All timestamps are stored in UTC. SQLite hands back naive datetimes, so
anything read from the database goes through ``as_utc`` before comparison.
"""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo

_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """Attach UTC to a naive datetime, or convert an aware one to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_due_date(value: str | datetime | date) -> datetime:
    """
    Parse a due date into an aware UTC datetime.

    A date-only value (``YYYY-MM-DD`` or a ``date``) means the end of that day,
    23:59:59 UTC.

    Raises:
        ValueError: If the string is not ISO 8601.
    """
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time(23, 59, 59), tzinfo=timezone.utc)

    text = value.strip()
    if _DATE_ONLY.match(text):
        text = f"{text}T23:59:59"
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(text))


def day_boundaries(now: datetime, tz: tzinfo | None = None) -> tuple[datetime, datetime]:
    """Return (start, end) of the calendar day containing ``now`` in ``tz``, as UTC."""
    zone = tz or timezone.utc
    local = now.astimezone(zone)
    start = datetime.combine(local.date(), time.min, tzinfo=zone)
    return start.astimezone(timezone.utc), (start + timedelta(days=1)).astimezone(timezone.utc)


def get_zone(name: str) -> tzinfo:
    """Resolve an IANA zone name, treating 'UTC' specially."""
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)
