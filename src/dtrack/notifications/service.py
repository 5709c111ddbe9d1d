"""In-app notification service.

Notifications are:
1. Persisted in the database
2. Pushed to the user via WebSocket (Redis pub/sub on ``ws:user:{id}``) when a client is given
3. Hidden from listings once ``expires_at`` has passed, and deleted by the cleanup pass

Types: reminder, overdue, deadline_shared, deadline_updated, daily_summary, system
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import ColumnElement, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from dtrack.db.models import Deadline, Notification
from dtrack.notifications.rules import (
    format_overdue_duration,
    format_time_remaining,
    notification_priority,
    summary_message,
    summary_priority,
)
from dtrack.redis_client import user_channel
from dtrack.time_utils import as_utc, utcnow

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

VALID_TYPES = {"reminder", "overdue", "deadline_shared", "deadline_updated", "daily_summary", "system"}
VALID_PRIORITIES = {"low", "normal", "high", "urgent"}
ORDER_FIELDS = {"created_at", "updated_at", "priority", "is_read"}


def _visible(now: datetime) -> ColumnElement[bool]:
    return or_(Notification.expires_at.is_(None), Notification.expires_at > now)


async def create_notification(
    db: AsyncSession,
    user_id: int,
    type_: str,
    title: str,
    message: str,
    *,
    deadline_id: int | None = None,
    data: dict[str, Any] | None = None,
    priority: str = "normal",
    action_url: str | None = None,
    expires_at: datetime | None = None,
    redis: Redis | None = None,
) -> Notification:
    """Create a notification and push it via WebSocket."""
    if type_ not in VALID_TYPES:
        raise ValueError(f"Invalid notification type: {type_}. Must be one of {sorted(VALID_TYPES)}")
    if priority not in VALID_PRIORITIES:
        raise ValueError(f"Invalid notification priority: {priority}. Must be one of {sorted(VALID_PRIORITIES)}")

    now = utcnow()
    notification = Notification(
        user_id=user_id,
        deadline_id=deadline_id,
        type=type_,
        title=title,
        message=message,
        data=data or {},
        priority=priority,
        action_url=action_url,
        is_read=False,
        expires_at=expires_at,
        created_at=now,
        updated_at=now,
    )
    db.add(notification)
    await db.flush()

    if redis is not None:
        ws_payload = {
            "event": "notification",
            "data": {
                "id": str(notification.id),
                "type": notification.type,
                "title": notification.title,
                "message": notification.message,
                "priority": notification.priority,
                "deadlineId": notification.deadline_id,
                "timestamp": now.isoformat(),
                "read": False,
                "actionUrl": notification.action_url,
            },
        }
        try:
            await redis.publish(user_channel(user_id), json.dumps(ws_payload))
        except Exception:
            logger.warning("Failed to push notification via WebSocket", exc_info=True)

    return notification


async def get_notifications(
    db: AsyncSession,
    user_id: int,
    *,
    page: int = 1,
    per_page: int = 20,
    is_read: bool | None = None,
    type_: str | None = None,
    priority: str | None = None,
    order_by: str = "created_at",
    order: str = "desc",
    now: datetime | None = None,
) -> tuple[list[Notification], int]:
    """Get user's unexpired notifications (paginated, most recent first by default)."""
    now = now or utcnow()
    conditions = [Notification.user_id == user_id, _visible(now)]
    if is_read is not None:
        conditions.append(Notification.is_read.is_(is_read))
    if type_:
        conditions.append(Notification.type == type_)
    if priority:
        conditions.append(Notification.priority == priority)

    total_result = await db.execute(select(func.count()).select_from(Notification).where(*conditions))
    total = total_result.scalar_one()

    column = getattr(Notification, order_by if order_by in ORDER_FIELDS else "created_at")
    direction = column.asc() if order.lower() == "asc" else column.desc()
    tiebreak = Notification.id.asc() if order.lower() == "asc" else Notification.id.desc()
    result = await db.execute(
        select(Notification)
        .where(*conditions)
        .order_by(direction, tiebreak)
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    return list(result.scalars().all()), total


async def get_unread_count(db: AsyncSession, user_id: int, now: datetime | None = None) -> int:
    """Get count of unread, unexpired notifications."""
    result = await db.execute(
        select(func.count())
        .select_from(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False), _visible(now or utcnow()))
    )
    return result.scalar_one()


async def mark_as_read(db: AsyncSession, user_id: int, notification_id: int) -> Notification | None:
    """Mark a single notification as read. Returns it, or None if not found."""
    result = await db.execute(
        select(Notification).where(Notification.id == notification_id, Notification.user_id == user_id)
    )
    notification = result.scalar_one_or_none()
    if notification is None:
        return None
    notification.is_read = True
    notification.updated_at = utcnow()
    await db.flush()
    return notification


async def mark_all_as_read(db: AsyncSession, user_id: int) -> int:
    """Mark all unread notifications as read. Returns count updated."""
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        .values(is_read=True, updated_at=utcnow())
    )
    await db.flush()
    return result.rowcount


async def delete_notification(db: AsyncSession, user_id: int, notification_id: int) -> bool:
    result = await db.execute(
        delete(Notification).where(Notification.id == notification_id, Notification.user_id == user_id)
    )
    return (result.rowcount or 0) > 0


async def delete_read(db: AsyncSession, user_id: int) -> int:
    """Delete every read notification for a user. Returns count deleted."""
    result = await db.execute(
        delete(Notification).where(Notification.user_id == user_id, Notification.is_read.is_(True))
    )
    return result.rowcount or 0


async def cleanup_expired(db: AsyncSession, now: datetime | None = None) -> int:
    """Delete notifications whose ``expires_at`` has passed. Returns count deleted."""
    result = await db.execute(
        delete(Notification).where(Notification.expires_at.is_not(None), Notification.expires_at <= (now or utcnow()))
    )
    return result.rowcount or 0


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


async def notify_deadline_shared(
    db: AsyncSession, copy: Deadline, original: Deadline, redis: Redis | None = None
) -> Notification:
    """Tell a collaborator they received their own copy of a deadline."""
    return await create_notification(
        db,
        copy.owner_id,
        "deadline_shared",
        f"New Deadline: {copy.title}",
        (
            f'You\'ve been added as a collaborator and received a copy of "{original.title}". '
            "You can now track your progress independently."
        ),
        deadline_id=copy.id,
        data={
            "original_deadline_id": original.id,
            "copy_deadline_id": copy.id,
            "action_type": "deadline_copy_created",
        },
        priority="normal",
        action_url=f"/deadlines/{copy.id}",
        redis=redis,
    )


async def notify_reminder(
    db: AsyncSession, user_id: int, deadline: Deadline, kind: str, lead_hours: int, redis: Redis | None = None
) -> Notification:
    time_remaining = format_time_remaining(lead_hours)
    return await create_notification(
        db,
        user_id,
        "reminder",
        f"Deadline Reminder: {deadline.title}",
        f'Your deadline "{deadline.title}" is due in {time_remaining}. Don\'t forget to complete it!',
        deadline_id=deadline.id,
        data={
            "deadline_id": deadline.id,
            "due_date": as_utc(deadline.due_date).isoformat(),
            "time_remaining": time_remaining,
            "notification_type": kind,
            "priority": deadline.priority,
        },
        priority=notification_priority(deadline.priority),
        action_url=f"/deadlines/{deadline.id}",
        redis=redis,
    )


async def notify_overdue(
    db: AsyncSession, user_id: int, deadline: Deadline, now: datetime, redis: Redis | None = None
) -> Notification:
    duration = format_overdue_duration(deadline.due_date, now)
    return await create_notification(
        db,
        user_id,
        "overdue",
        f"Deadline Overdue: {deadline.title}",
        f'DEADLINE OVERDUE! "{deadline.title}" was due {duration} ago. This deadline needs immediate attention.',
        deadline_id=deadline.id,
        data={
            "deadline_id": deadline.id,
            "due_date": as_utc(deadline.due_date).isoformat(),
            "overdue_duration": duration,
            "priority": deadline.priority,
            "notification_type": "overdue_alert",
        },
        priority="urgent",
        action_url=f"/deadlines/{deadline.id}",
        redis=redis,
    )


async def notify_daily_summary(
    db: AsyncSession, user_id: int, summary: dict[str, int], now: datetime, redis: Redis | None = None
) -> Notification:
    return await create_notification(
        db,
        user_id,
        "daily_summary",
        "Daily Deadline Summary",
        summary_message(summary),
        data={"summary": summary, "generated_at": now.isoformat()},
        priority=summary_priority(summary),
        action_url="/deadlines",
        redis=redis,
    )


class InAppNotifier:
    """Binds the notification builders to an optional Redis client for WebSocket push."""

    def __init__(self, redis: Redis | None = None) -> None:
        self.redis = redis

    async def create(
        self,
        db: AsyncSession,
        user_id: int,
        type_: str,
        title: str,
        message: str,
        *,
        deadline_id: int | None = None,
        data: dict[str, Any] | None = None,
        priority: str = "normal",
        action_url: str | None = None,
        expires_at: datetime | None = None,
    ) -> Notification:
        return await create_notification(
            db,
            user_id,
            type_,
            title,
            message,
            deadline_id=deadline_id,
            data=data,
            priority=priority,
            action_url=action_url,
            expires_at=expires_at,
            redis=self.redis,
        )

    async def reminder(self, db: AsyncSession, user_id: int, deadline: Deadline, kind: str, lead_hours: int) -> Notification:
        return await notify_reminder(db, user_id, deadline, kind, lead_hours, redis=self.redis)

    async def overdue(self, db: AsyncSession, user_id: int, deadline: Deadline, now: datetime) -> Notification:
        return await notify_overdue(db, user_id, deadline, now, redis=self.redis)

    async def daily_summary(self, db: AsyncSession, user_id: int, summary: dict[str, int], now: datetime) -> Notification:
        return await notify_daily_summary(db, user_id, summary, now, redis=self.redis)

    async def cleanup_expired(self, db: AsyncSession, now: datetime | None = None) -> int:
        return await cleanup_expired(db, now)
