"""Friendship directory.

A friendship row may be stored in either direction, so every lookup checks
both ``(a, b)`` and ``(b, a)``.
"""

from __future__ import annotations

from sqlalchemy import ColumnElement, and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from dtrack.db.models import Friendship, User


def _pair(a: int, b: int) -> ColumnElement[bool]:
    return or_(
        and_(Friendship.user_id == a, Friendship.friend_id == b),
        and_(Friendship.user_id == b, Friendship.friend_id == a),
    )


async def get_friendship_status(db: AsyncSession, user_a: int, user_b: int) -> Friendship | None:
    """Return the friendship row between two users, in either direction."""
    result = await db.execute(select(Friendship).where(_pair(user_a, user_b)).limit(1))
    return result.scalar_one_or_none()


async def are_friends(db: AsyncSession, user_a: int, user_b: int) -> bool:
    friendship = await get_friendship_status(db, user_a, user_b)
    return friendship is not None and friendship.status == "accepted"


async def list_friends(db: AsyncSession, user_id: int) -> list[User]:
    """Users with an accepted friendship to ``user_id``, ordered by username."""
    result = await db.execute(
        select(Friendship).where(
            or_(Friendship.user_id == user_id, Friendship.friend_id == user_id),
            Friendship.status == "accepted",
        )
    )
    friend_ids = {f.friend_id if f.user_id == user_id else f.user_id for f in result.scalars()}
    if not friend_ids:
        return []
    users = await db.execute(select(User).where(User.id.in_(friend_ids)).order_by(User.username))
    return list(users.scalars().all())
