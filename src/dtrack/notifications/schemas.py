"""Pydantic schemas for notification endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, field_validator

from dtrack.time_utils import as_utc


class NotificationResponse(BaseModel):
    id: int
    deadline_id: int | None = None
    type: str
    title: str
    message: str
    data: dict[str, Any] = {}
    priority: str
    action_url: str | None = None
    is_read: bool
    expires_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("expires_at", "created_at")
    @classmethod
    def _utc(cls, v: datetime | None) -> datetime | None:
        return as_utc(v) if v is not None else None


class NotificationListResponse(BaseModel):
    notifications: list[NotificationResponse]
    total: int
    page: int
    per_page: int
    unread_count: int


class UnreadCountResponse(BaseModel):
    unread_count: int


class CountResponse(BaseModel):
    count: int
