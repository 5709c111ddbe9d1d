"""ORM models for users, friendships, deadlines, collaborators and notifications.

Tables are created by the Alembic migrations under ``alembic/versions``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    false,
    func,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column

from dtrack.db.base import Base, BigIntPK, JSONType, UTCDateTime

DEADLINE_STATUSES = ("pending", "in_progress", "completed", "overdue")
DEADLINE_PRIORITIES = ("low", "medium", "high", "urgent")
COLLABORATOR_ROLES = ("owner", "collaborator")
FRIENDSHIP_STATUSES = ("pending", "accepted", "declined", "blocked")


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """Maps to the 'users' table."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    username: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    full_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    password_hash: Mapped[str | None] = mapped_column(String(256), nullable=True)
    notification_preferences: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, server_default=func.now(), onupdate=func.now()
    )


# ---------------------------------------------------------------------------
# Friendships
# ---------------------------------------------------------------------------


class Friendship(Base):
    """A friendship edge. Lookups are symmetric on (user_id, friend_id)."""

    __tablename__ = "friendships"
    __table_args__ = (
        UniqueConstraint("user_id", "friend_id", name="uq_friendships_pair"),
        CheckConstraint(
            "status IN ('pending', 'accepted', 'declined', 'blocked')",
            name="ck_friendships_status",
        ),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    friend_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending", server_default="pending")
    requested_by: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, server_default=func.now(), onupdate=func.now()
    )


# ---------------------------------------------------------------------------
# Deadlines
# ---------------------------------------------------------------------------


class Deadline(Base):
    """A deadline owned by one user.

    Copies created for collaborators point back at the deadline they were
    cloned from through ``origin_deadline_id``.
    """

    __tablename__ = "deadlines"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'in_progress', 'completed', 'overdue')",
            name="ck_deadlines_status",
        ),
        CheckConstraint(
            "priority IN ('low', 'medium', 'high', 'urgent')",
            name="ck_deadlines_priority",
        ),
        CheckConstraint(
            "completion_percentage >= 0 AND completion_percentage <= 100",
            name="ck_deadlines_completion",
        ),
        Index("idx_deadlines_owner", "owner_id"),
        Index("idx_deadlines_due_status", "due_date", "status"),
        Index("idx_deadlines_origin", "origin_deadline_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    due_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="medium", server_default="medium")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending", server_default="pending")
    category: Mapped[str | None] = mapped_column(String(50), nullable=True)
    subject: Mapped[str | None] = mapped_column(String(100), nullable=True)
    estimated_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    actual_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    completion_percentage: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    origin_deadline_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("deadlines.id", ondelete="SET NULL"), nullable=True
    )
    notifications_sent: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, server_default=func.now(), onupdate=func.now()
    )
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class DeadlineCollaborator(Base):
    """Access row for a (deadline, user) pair. The only source of shared access."""

    __tablename__ = "deadline_collaborators"
    __table_args__ = (
        UniqueConstraint("deadline_id", "user_id", name="uq_deadline_collaborators_pair"),
        CheckConstraint("role IN ('owner', 'collaborator')", name="ck_deadline_collaborators_role"),
        Index("idx_deadline_collaborators_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    deadline_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("deadlines.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="collaborator", server_default="collaborator")
    can_edit: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    can_delete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    joined_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now())


# ---------------------------------------------------------------------------
# In-app notifications
# ---------------------------------------------------------------------------


class Notification(Base):
    """Persisted in-app notifications."""

    __tablename__ = "notifications"
    __table_args__ = (
        Index("idx_notifications_user", "user_id"),
        Index("idx_notifications_deadline", "deadline_id"),
        Index("idx_notifications_created", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    deadline_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("deadlines.id", ondelete="CASCADE"), nullable=True
    )
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="normal", server_default="normal")
    action_url: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, server_default=func.now(), onupdate=func.now()
    )
