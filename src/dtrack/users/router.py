"""User preference router: /api/v1/users/me/notification-preferences."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from dtrack.auth.dependencies import get_current_user
from dtrack.database import get_session
from dtrack.db.models import User
from dtrack.schemas import Envelope
from dtrack.users.schemas import NotificationPreferences, NotificationPreferencesUpdate
from dtrack.users.service import get_notification_preferences, update_notification_preferences

router = APIRouter(prefix="/api/v1/users", tags=["Users"])


@router.get("/me/notification-preferences", response_model=Envelope[NotificationPreferences])
async def get_preferences(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> Envelope[NotificationPreferences]:
    """Get the merged notification preference bundle."""
    prefs = await get_notification_preferences(db, user.id)
    if prefs is None:
        raise HTTPException(status_code=404, detail="User not found")
    return Envelope(message="Notification preferences retrieved", data=NotificationPreferences(**prefs))


@router.put("/me/notification-preferences", response_model=Envelope[NotificationPreferences])
async def update_preferences(
    body: NotificationPreferencesUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> Envelope[NotificationPreferences]:
    """Merge-update the bundle. Nested reminder maps merge per key."""
    try:
        prefs = await update_notification_preferences(db, user.id, body.model_dump(exclude_none=True))
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    await db.commit()
    return Envelope(message="Notification preferences updated", data=NotificationPreferences(**prefs))
