"""Notification API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from dtrack.auth.dependencies import get_current_user
from dtrack.database import get_session
from dtrack.db.models import User
from dtrack.notifications.schemas import (
    CountResponse,
    NotificationListResponse,
    NotificationResponse,
    UnreadCountResponse,
)
from dtrack.notifications.service import (
    VALID_PRIORITIES,
    VALID_TYPES,
    delete_notification,
    delete_read,
    get_notifications,
    get_unread_count,
    mark_all_as_read,
    mark_as_read,
)
from dtrack.schemas import Envelope

router = APIRouter(prefix="/api/v1/notifications", tags=["Notifications"])


@router.get("", response_model=Envelope[NotificationListResponse])
async def list_notifications(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    is_read: bool | None = Query(None),
    type: str | None = Query(None),  # noqa: A002
    priority: str | None = Query(None),
    order_by: str = Query("created_at"),
    order: str = Query("desc", pattern="^(asc|desc|ASC|DESC)$"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> Envelope[NotificationListResponse]:
    """List the user's unexpired notifications (paginated)."""
    if type is not None and type not in VALID_TYPES:
        raise HTTPException(status_code=400, detail=f"Invalid notification type: {type}")
    if priority is not None and priority not in VALID_PRIORITIES:
        raise HTTPException(status_code=400, detail=f"Invalid notification priority: {priority}")

    notifications, total = await get_notifications(
        db,
        user.id,
        page=page,
        per_page=per_page,
        is_read=is_read,
        type_=type,
        priority=priority,
        order_by=order_by,
        order=order,
    )
    unread = await get_unread_count(db, user.id)
    return Envelope(
        message="Notifications retrieved",
        data=NotificationListResponse(
            notifications=[NotificationResponse.model_validate(n) for n in notifications],
            total=total,
            page=page,
            per_page=per_page,
            unread_count=unread,
        ),
    )


@router.get("/unread-count", response_model=Envelope[UnreadCountResponse])
async def unread_count(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> Envelope[UnreadCountResponse]:
    count = await get_unread_count(db, user.id)
    return Envelope(message="Unread count retrieved", data=UnreadCountResponse(unread_count=count))


@router.put("/mark-all-read", response_model=Envelope[CountResponse])
async def mark_all_read(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> Envelope[CountResponse]:
    """Mark all notifications as read."""
    count = await mark_all_as_read(db, user.id)
    await db.commit()
    return Envelope(message=f"Marked {count} notifications as read", data=CountResponse(count=count))


@router.put("/{notification_id}/read", response_model=Envelope[NotificationResponse])
async def mark_notification_read(
    notification_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> Envelope[NotificationResponse]:
    """Mark a notification as read."""
    notification = await mark_as_read(db, user.id, notification_id)
    if notification is None:
        raise HTTPException(status_code=404, detail="Notification not found")
    await db.commit()
    return Envelope(message="Notification marked as read", data=NotificationResponse.model_validate(notification))


@router.delete("/read", response_model=Envelope[CountResponse])
async def delete_all_read(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> Envelope[CountResponse]:
    count = await delete_read(db, user.id)
    await db.commit()
    return Envelope(message=f"Deleted {count} read notifications", data=CountResponse(count=count))


@router.delete("/{notification_id}", response_model=Envelope[None])
async def delete_one(
    notification_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> Envelope[None]:
    if not await delete_notification(db, user.id, notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    await db.commit()
    return Envelope(message="Notification deleted")
