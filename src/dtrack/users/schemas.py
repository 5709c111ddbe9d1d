"""Request/response schemas for user preference endpoints."""

from __future__ import annotations

from pydantic import BaseModel, field_validator

from dtrack.users.service import REMINDER_KINDS


class NotificationPreferences(BaseModel):
    email_enabled: bool = True
    in_app_enabled: bool = True
    reminders: dict[str, bool] = {}
    in_app_reminders: dict[str, bool] = {}
    overdue_notifications: bool = True
    in_app_overdue: bool = True
    daily_summary: bool = False
    in_app_daily_summary: bool = True


class NotificationPreferencesUpdate(BaseModel):
    """Partial update. Omitted keys keep their stored value."""

    email_enabled: bool | None = None
    in_app_enabled: bool | None = None
    reminders: dict[str, bool] | None = None
    in_app_reminders: dict[str, bool] | None = None
    overdue_notifications: bool | None = None
    in_app_overdue: bool | None = None
    daily_summary: bool | None = None
    in_app_daily_summary: bool | None = None

    @field_validator("reminders", "in_app_reminders")
    @classmethod
    def _known_kinds(cls, v: dict[str, bool] | None) -> dict[str, bool] | None:
        if v is not None:
            unknown = sorted(set(v) - set(REMINDER_KINDS))
            if unknown:
                msg = f"Unknown reminder kinds: {', '.join(unknown)}"
                raise ValueError(msg)
        return v
