"""User directory and notification preference bundle.

Preferences are stored as a JSON bundle on ``users.notification_preferences``
and always read merged over ``DEFAULT_PREFERENCES``. Nested channel maps
(``reminders``/``in_app_reminders``) merge per key.

The ``is_*``/``has_*`` coroutines are what the scheduler calls. A missing user
yields False. A database failure yields the per-kind default (enabled for
everything except the daily summary email) so transient errors do not
silence reminders.
"""

from __future__ import annotations

import copy
from collections.abc import Callable
import logging
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from dtrack.db.models import User

logger = logging.getLogger(__name__)

REMINDER_KINDS = ("2_days", "1_day", "12_hours", "1_hour")

DEFAULT_PREFERENCES: dict[str, Any] = {
    "email_enabled": True,
    "in_app_enabled": True,
    "reminders": {kind: True for kind in REMINDER_KINDS},
    "in_app_reminders": {kind: True for kind in REMINDER_KINDS},
    "overdue_notifications": True,
    "in_app_overdue": True,
    "daily_summary": False,
    "in_app_daily_summary": True,
}

_NESTED_KEYS = ("reminders", "in_app_reminders")


# ---------------------------------------------------------------------------
# Directory lookups
# ---------------------------------------------------------------------------


async def get_user_by_id(db: AsyncSession, user_id: int) -> User | None:
    """Fetch a user by ID."""
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def email_exists(db: AsyncSession, email: str) -> bool:
    """Case-insensitive email existence check."""
    result = await db.execute(select(func.count()).select_from(User).where(func.lower(User.email) == email.lower()))
    return result.scalar_one() > 0


async def username_exists(db: AsyncSession, username: str) -> bool:
    result = await db.execute(select(func.count()).select_from(User).where(User.username == username))
    return result.scalar_one() > 0


# ---------------------------------------------------------------------------
# Preference bundle
# ---------------------------------------------------------------------------


def merge_preferences(stored: dict[str, Any] | None, updates: dict[str, Any] | None = None) -> dict[str, Any]:
    """Layer ``stored`` then ``updates`` over the defaults, merging nested maps per key."""
    merged = copy.deepcopy(DEFAULT_PREFERENCES)
    for layer in (stored or {}, updates or {}):
        for key, value in layer.items():
            if key in _NESTED_KEYS and isinstance(value, dict):
                merged[key] = {**merged.get(key, {}), **value}
            else:
                merged[key] = value
    return merged


def reminder_enabled(prefs: dict[str, Any], kind: str) -> bool:
    return bool(prefs.get("email_enabled", True)) and bool(prefs.get("reminders", {}).get(kind, True))


def in_app_reminder_enabled(prefs: dict[str, Any], kind: str) -> bool:
    return bool(prefs.get("in_app_enabled", True)) and bool(prefs.get("in_app_reminders", {}).get(kind, True))


def overdue_enabled(prefs: dict[str, Any]) -> bool:
    return bool(prefs.get("email_enabled", True)) and bool(prefs.get("overdue_notifications", True))


def in_app_overdue_enabled(prefs: dict[str, Any]) -> bool:
    return bool(prefs.get("in_app_enabled", True)) and bool(prefs.get("in_app_overdue", True))


def daily_summary_enabled(prefs: dict[str, Any]) -> bool:
    return bool(prefs.get("email_enabled", True)) and bool(prefs.get("daily_summary", False))


def in_app_daily_summary_enabled(prefs: dict[str, Any]) -> bool:
    # Bundles written before in-app summaries existed lack the key
    return bool(prefs.get("in_app_enabled", True)) and bool(prefs.get("in_app_daily_summary", True))


async def get_notification_preferences(db: AsyncSession, user_id: int) -> dict[str, Any] | None:
    """Return the merged preference bundle, or None if the user does not exist."""
    user = await get_user_by_id(db, user_id)
    if user is None:
        return None
    return merge_preferences(user.notification_preferences)


async def update_notification_preferences(
    db: AsyncSession, user_id: int, updates: dict[str, Any]
) -> dict[str, Any]:
    """
    Merge ``updates`` into the stored bundle and return the full merged result.

    Raises:
        ValueError: If the user does not exist.
    """
    user = await get_user_by_id(db, user_id)
    if user is None:
        msg = "User not found"
        raise ValueError(msg)

    merged = merge_preferences(user.notification_preferences, updates)
    user.notification_preferences = merged
    await db.flush()
    return merged


async def _check(
    db: AsyncSession, user_id: int, predicate: Callable[..., bool], default: bool, *args: str
) -> bool:
    try:
        prefs = await get_notification_preferences(db, user_id)
    except SQLAlchemyError:
        logger.warning("Preference lookup failed for user %s, using default=%s", user_id, default, exc_info=True)
        return default
    if prefs is None:
        return False
    return bool(predicate(prefs, *args))


async def is_reminder_enabled(db: AsyncSession, user_id: int, kind: str) -> bool:
    return await _check(db, user_id, reminder_enabled, True, kind)


async def is_in_app_reminder_enabled(db: AsyncSession, user_id: int, kind: str) -> bool:
    return await _check(db, user_id, in_app_reminder_enabled, True, kind)


async def has_overdue_notifications_enabled(db: AsyncSession, user_id: int) -> bool:
    return await _check(db, user_id, overdue_enabled, True)


async def has_in_app_overdue_notifications_enabled(db: AsyncSession, user_id: int) -> bool:
    return await _check(db, user_id, in_app_overdue_enabled, True)


async def has_daily_summary_enabled(db: AsyncSession, user_id: int) -> bool:
    return await _check(db, user_id, daily_summary_enabled, False)


async def has_in_app_daily_summary_enabled(db: AsyncSession, user_id: int) -> bool:
    return await _check(db, user_id, in_app_daily_summary_enabled, True)
