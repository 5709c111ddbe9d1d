"""Deadline persistence: validation, CRUD, status transitions, copies and listings.

Access control lives in ``dtrack.deadlines.collaboration``. Functions here
assume the caller has already checked it. Nothing commits; routers and the
scheduler own the transaction boundary.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import ColumnElement, Select, delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from dtrack.db.models import DEADLINE_PRIORITIES, DEADLINE_STATUSES, Deadline, DeadlineCollaborator
from dtrack.errors import ValidationError
from dtrack.time_utils import parse_due_date, utcnow

logger = structlog.get_logger()

# Fields cloned into a collaborator's copy
COPY_FIELDS = (
    "description",
    "due_date",
    "priority",
    "category",
    "subject",
    "estimated_hours",
    "notes",
)

EDITABLE_FIELDS = frozenset({
    "title",
    "description",
    "due_date",
    "priority",
    "status",
    "category",
    "subject",
    "estimated_hours",
    "actual_hours",
    "completion_percentage",
    "notes",
})

SORT_FIELDS = {
    "due_date": Deadline.due_date,
    "created_at": Deadline.created_at,
    "updated_at": Deadline.updated_at,
    "priority": Deadline.priority,
    "title": Deadline.title,
    "status": Deadline.status,
}

_MAX_LENGTHS = {"title": 255, "description": 1000, "category": 50, "subject": 100, "notes": 1000}

_COPY_MARKER = re.compile(r"\s*\(My Copy\)|\s*\(Copy\)")


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_deadline_input(data: dict[str, Any], *, partial: bool = False) -> dict[str, Any]:
    """
    Validate and normalise deadline fields.

    Unknown keys are dropped. Strings are stripped. ``due_date`` is parsed
    to an aware UTC datetime.

    Raises:
        ValidationError: With one message per invalid field.
    """
    errors: list[str] = []
    clean: dict[str, Any] = {}

    for key, value in data.items():
        if key not in EDITABLE_FIELDS:
            continue
        if isinstance(value, str):
            value = value.strip()
        clean[key] = value

    if not partial:
        if not clean.get("title"):
            errors.append("Title is required")
        if clean.get("due_date") in (None, ""):
            errors.append("Due date is required")
    elif "title" in clean and not clean["title"]:
        errors.append("Title cannot be empty")

    for field, limit in _MAX_LENGTHS.items():
        value = clean.get(field)
        if isinstance(value, str) and len(value) > limit:
            errors.append(f"{field.replace('_', ' ').capitalize()} must be at most {limit} characters")

    if clean.get("due_date") not in (None, ""):
        try:
            clean["due_date"] = parse_due_date(clean["due_date"])
        except (TypeError, ValueError):
            errors.append("Due date must be a valid ISO 8601 date")
    elif "due_date" in clean and partial:
        errors.append("Due date cannot be empty")

    if "priority" in clean and clean["priority"] not in DEADLINE_PRIORITIES:
        errors.append(f"Priority must be one of: {', '.join(DEADLINE_PRIORITIES)}")
    if "status" in clean and clean["status"] not in DEADLINE_STATUSES:
        errors.append(f"Status must be one of: {', '.join(DEADLINE_STATUSES)}")

    for field in ("estimated_hours", "actual_hours"):
        value = clean.get(field)
        if value is not None and (not isinstance(value, int | float) or value < 0):
            errors.append(f"{field.replace('_', ' ').capitalize()} must be a non-negative number")

    pct = clean.get("completion_percentage")
    if pct is not None and (not isinstance(pct, int | float) or not 0 <= pct <= 100):
        errors.append("Completion percentage must be between 0 and 100")

    if errors:
        raise ValidationError("Validation failed", errors)

    # Empty optional strings are stored as NULL
    for field in ("description", "category", "subject", "notes"):
        if clean.get(field) == "":
            clean[field] = None
    return clean


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------


async def get_deadline(db: AsyncSession, deadline_id: int) -> Deadline | None:
    result = await db.execute(select(Deadline).where(Deadline.id == deadline_id))
    return result.scalar_one_or_none()


async def create_deadline(db: AsyncSession, owner_id: int, data: dict[str, Any]) -> Deadline:
    """Create a deadline and its owner access row."""
    clean = validate_deadline_input(data)
    now = utcnow()
    deadline = Deadline(
        owner_id=owner_id,
        title=clean["title"],
        description=clean.get("description"),
        due_date=clean["due_date"],
        priority=clean.get("priority", "medium"),
        status=clean.get("status", "pending"),
        category=clean.get("category"),
        subject=clean.get("subject"),
        estimated_hours=clean.get("estimated_hours"),
        actual_hours=clean.get("actual_hours"),
        completion_percentage=clean.get("completion_percentage", 0),
        notes=clean.get("notes"),
        notifications_sent={},
        created_at=now,
        updated_at=now,
        completed_at=now if clean.get("status") == "completed" else None,
    )
    db.add(deadline)
    await db.flush()
    await add_owner_row(db, deadline.id, owner_id)
    logger.info("deadline_created", deadline_id=deadline.id, owner_id=owner_id)
    return deadline


async def add_owner_row(db: AsyncSession, deadline_id: int, owner_id: int) -> DeadlineCollaborator:
    row = DeadlineCollaborator(
        deadline_id=deadline_id,
        user_id=owner_id,
        role="owner",
        can_edit=True,
        can_delete=True,
        joined_at=utcnow(),
    )
    db.add(row)
    await db.flush()
    return row


def apply_status(deadline: Deadline, status: str, now: datetime | None = None) -> None:
    """Set status, stamping ``completed_at`` on entry to completed and clearing it on exit."""
    now = now or utcnow()
    if status == "completed" and deadline.status != "completed":
        deadline.completed_at = now
    elif status != "completed":
        deadline.completed_at = None
    deadline.status = status
    deadline.updated_at = now


async def update_deadline(db: AsyncSession, deadline: Deadline, data: dict[str, Any]) -> Deadline:
    """Apply a partial update. Raises ValidationError."""
    clean = validate_deadline_input(data, partial=True)
    now = utcnow()
    status = clean.pop("status", None)
    for key, value in clean.items():
        setattr(deadline, key, value)
    if status is not None:
        apply_status(deadline, status, now)
    deadline.updated_at = now
    await db.flush()
    return deadline


async def set_status(db: AsyncSession, deadline: Deadline, status: str) -> Deadline:
    if status not in DEADLINE_STATUSES:
        raise ValidationError("Validation failed", [f"Status must be one of: {', '.join(DEADLINE_STATUSES)}"])
    apply_status(deadline, status)
    await db.flush()
    return deadline


async def delete_deadline(db: AsyncSession, deadline_id: int) -> bool:
    """Delete a deadline. Collaborator rows and notifications cascade; copies are detached."""
    result = await db.execute(delete(Deadline).where(Deadline.id == deadline_id))
    return (result.rowcount or 0) > 0


# ---------------------------------------------------------------------------
# Copies
# ---------------------------------------------------------------------------


def strip_copy_marker(title: str) -> str:
    """Remove any "(My Copy)" / "(Copy)" marker from a title."""
    return _COPY_MARKER.sub("", title).strip()


def copy_title(title: str, suffix: str) -> str:
    """Build a copy title with exactly one suffix, fitting the 255 char column."""
    base = strip_copy_marker(title)
    return base[: 255 - len(suffix)] + suffix


async def create_copy(db: AsyncSession, source: Deadline, new_owner_id: int, title_suffix: str) -> Deadline:
    """Clone ``source`` into a fresh pending deadline owned by ``new_owner_id``."""
    now = utcnow()
    copy = Deadline(
        owner_id=new_owner_id,
        title=copy_title(source.title, title_suffix),
        status="pending",
        completion_percentage=0,
        origin_deadline_id=source.id,
        notifications_sent={},
        created_at=now,
        updated_at=now,
        **{field: getattr(source, field) for field in COPY_FIELDS},
    )
    db.add(copy)
    await db.flush()
    await add_owner_row(db, copy.id, new_owner_id)
    return copy


async def get_direct_copies(db: AsyncSession, deadline_id: int) -> list[Deadline]:
    result = await db.execute(
        select(Deadline).where(Deadline.origin_deadline_id == deadline_id).order_by(Deadline.id)
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------


def accessible_to(user_id: int) -> ColumnElement[bool]:
    """WHERE clause: deadlines the user owns or has a collaborator row on."""
    shared = select(DeadlineCollaborator.deadline_id).where(DeadlineCollaborator.user_id == user_id)
    return or_(Deadline.owner_id == user_id, Deadline.id.in_(shared))


def _apply_filters(stmt: Select[Any], filters: dict[str, Any]) -> Select[Any]:
    for field in ("status", "priority", "category", "subject"):
        value = filters.get(field)
        if value:
            stmt = stmt.where(getattr(Deadline, field) == value)
    search = filters.get("search")
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(Deadline.title.ilike(pattern), Deadline.description.ilike(pattern)))
    return stmt


async def list_accessible_deadlines(
    db: AsyncSession,
    user_id: int,
    *,
    filters: dict[str, Any] | None = None,
    page: int = 1,
    limit: int = 20,
    sort_by: str = "due_date",
    sort_order: str = "asc",
) -> tuple[list[Deadline], int]:
    """Deadlines the user owns or collaborates on (paginated)."""
    filters = filters or {}
    base = _apply_filters(select(Deadline).where(accessible_to(user_id)), filters)

    total_result = await db.execute(select(func.count()).select_from(base.subquery()))
    total = total_result.scalar_one()

    column = SORT_FIELDS.get(sort_by, Deadline.due_date)
    ordering = column.desc() if sort_order.lower() == "desc" else column.asc()
    result = await db.execute(base.order_by(ordering, Deadline.id).offset((page - 1) * limit).limit(limit))
    return list(result.scalars().all()), total


async def get_upcoming_deadlines(
    db: AsyncSession, user_id: int, days: int = 7, now: datetime | None = None
) -> list[Deadline]:
    """Accessible, not completed deadlines due within ``days``."""
    now = now or utcnow()
    result = await db.execute(
        select(Deadline)
        .where(
            accessible_to(user_id),
            Deadline.due_date >= now,
            Deadline.due_date <= now + timedelta(days=days),
            Deadline.status != "completed",
        )
        .order_by(Deadline.due_date, Deadline.id)
    )
    return list(result.scalars().all())


async def get_overdue_deadlines(db: AsyncSession, user_id: int, now: datetime | None = None) -> list[Deadline]:
    """Accessible deadlines past due and not completed."""
    now = now or utcnow()
    result = await db.execute(
        select(Deadline)
        .where(accessible_to(user_id), Deadline.due_date < now, Deadline.status != "completed")
        .order_by(Deadline.due_date, Deadline.id)
    )
    return list(result.scalars().all())


async def get_stats(db: AsyncSession, user_id: int) -> dict[str, int]:
    """Counts of accessible deadlines per status plus a total."""
    result = await db.execute(
        select(Deadline.status, func.count()).where(accessible_to(user_id)).group_by(Deadline.status)
    )
    stats = {status: 0 for status in DEADLINE_STATUSES}
    for status, count in result.all():
        stats[status] = count
    stats["total"] = sum(stats.values())
    return stats
