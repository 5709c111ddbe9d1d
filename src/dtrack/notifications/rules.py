"""Pure scheduling rules: reminder windows, overdue throttling and idempotency markers.

Nothing here touches the database or the clock; callers pass ``now``.

``deadlines.notifications_sent`` maps a notification kind to a marker::

    {"1_day": {"sent_at": "2026-03-01T09:00:00+00:00", "user_ids": [1, 2]}}

Older rows may hold a bare ISO timestamp string instead of the dict. Both
forms are read; only the dict form is written.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from dtrack.time_utils import as_utc

OVERDUE_KIND = "overdue"

# (kind, lead time), longest lead first
REMINDER_LEADS: tuple[tuple[str, timedelta], ...] = (
    ("2_days", timedelta(hours=48)),
    ("1_day", timedelta(hours=24)),
    ("12_hours", timedelta(hours=12)),
    ("1_hour", timedelta(hours=1)),
)

PRIORITY_MAP = {
    "low": "low",
    "medium": "normal",
    "high": "high",
    "urgent": "urgent",
}


def reminder_window(now: datetime, lead: timedelta, window_minutes: int = 30) -> tuple[datetime, datetime]:
    """Inclusive due-date range that triggers a reminder with this lead time."""
    half = timedelta(minutes=window_minutes)
    return now + lead - half, now + lead + half


def marker_sent_at(notifications_sent: dict[str, Any] | None, kind: str) -> datetime | None:
    """When the ``kind`` notification was last sent, or None."""
    marker = (notifications_sent or {}).get(kind)
    if not marker:
        return None
    raw = marker.get("sent_at") if isinstance(marker, dict) else marker
    if not isinstance(raw, str):
        return None
    try:
        return as_utc(datetime.fromisoformat(raw.replace("Z", "+00:00")))
    except ValueError:
        return None


def has_marker(notifications_sent: dict[str, Any] | None, kind: str) -> bool:
    return bool((notifications_sent or {}).get(kind))


def with_marker(
    notifications_sent: dict[str, Any] | None, kind: str, now: datetime, user_ids: list[int]
) -> dict[str, Any]:
    """Return a new map with the ``kind`` marker set. The input is not mutated."""
    updated = dict(notifications_sent or {})
    updated[kind] = {"sent_at": now.isoformat(), "user_ids": sorted(set(user_ids))}
    return updated


def should_notify(
    notifications_sent: dict[str, Any] | None,
    due_date: datetime,
    now: datetime,
    *,
    renotify_hours: int = 24,
    cutoff_hours: int = 168,
) -> bool:
    """
    Decide whether an overdue notification is due.

    True when no overdue marker exists. Otherwise true only when the last
    one is at least ``renotify_hours`` old and the deadline is no more than
    ``cutoff_hours`` overdue.
    """
    last_sent = marker_sent_at(notifications_sent, OVERDUE_KIND)
    if last_sent is None:
        return True
    hours_since = (now - last_sent).total_seconds() / 3600
    hours_overdue = (now - as_utc(due_date)).total_seconds() / 3600
    return hours_since >= renotify_hours and hours_overdue <= cutoff_hours


def notification_priority(deadline_priority: str) -> str:
    return PRIORITY_MAP.get(deadline_priority, "normal")


def _plural(n: int, unit: str) -> str:
    return f"{n} {unit}{'' if n == 1 else 's'}"


def format_time_remaining(hours: int) -> str:
    """'2 days', '1 day', '12 hours', '1 hour'."""
    if hours >= 24:
        return _plural(hours // 24, "day")
    return _plural(hours, "hour")


def format_overdue_duration(due_date: datetime, now: datetime) -> str:
    """'3 days and 4 hours' or '5 hours'."""
    total_hours = int((now - as_utc(due_date)).total_seconds() // 3600)
    days, hours = divmod(max(total_hours, 0), 24)
    if days > 0:
        return f"{_plural(days, 'day')} and {_plural(hours, 'hour')}"
    return _plural(hours, "hour")


def summary_priority(summary: dict[str, int]) -> str:
    if summary.get("overdue_deadlines", 0) > 0:
        return "high"
    if summary.get("due_today", 0) > 0:
        return "normal"
    return "low"


def summary_message(summary: dict[str, int]) -> str:
    """One-line daily summary, e.g. '3 active deadlines, 1 due today'."""
    parts = []
    total = summary.get("total_deadlines", 0)
    if total > 0:
        parts.append(f"{total} active deadline{'s' if total > 1 else ''}")
    if summary.get("due_today", 0) > 0:
        parts.append(f"{summary['due_today']} due today")
    if summary.get("upcoming_deadlines", 0) > 0:
        parts.append(f"{summary['upcoming_deadlines']} due this week")
    if summary.get("overdue_deadlines", 0) > 0:
        parts.append(f"{summary['overdue_deadlines']} overdue")
    if summary.get("completed_today", 0) > 0:
        parts.append(f"{summary['completed_today']} completed today")
    if not parts:
        return "Daily Summary: No active deadlines. Great job!"
    return "Daily Summary: " + ", ".join(parts)
