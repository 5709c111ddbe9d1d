"""Collaboration engine: access grants, collaborator adds and per-user copies.

``deadline_collaborators`` rows are the only source of shared access. A copy
is an independent deadline whose ``origin_deadline_id`` points at the
deadline it was cloned from; owning a copy never grants access to the
original. The collaborator list shown to clients is derived on read from
the rows plus the owners of direct copies.

Adding collaborators runs each candidate through the exclusion rules in a
fixed order, then either grants a row or forks a copy. Every candidate ends
in exactly one of ``added``, ``skipped``, ``denied`` or ``failed``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from dtrack.config import get_settings
from dtrack.db.models import Deadline, DeadlineCollaborator, User
from dtrack.deadlines.service import create_copy, get_deadline, get_direct_copies
from dtrack.email.service import EmailService
from dtrack.errors import NoValidCollaboratorsError, NotFoundError, PermissionDeniedError, ValidationError
from dtrack.friends.service import get_friendship_status
from dtrack.notifications.service import notify_deadline_shared
from dtrack.time_utils import utcnow

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = structlog.get_logger()

SKIP_SELF = "Cannot add yourself as collaborator"
SKIP_OWNER = "Cannot add deadline owner as collaborator - they already own this deadline"
SKIP_EXISTING = "User is already a collaborator"
SKIP_HAS_COPY = "User already has a copy of this deadline"
SKIP_MISSING = "User not found"
SKIP_NOT_FRIENDS = "User is not in your friends list"
DENY_ROOT_OWNER = "Cannot add original owner to a copy of their own deadline"


@dataclass(frozen=True)
class AccessGrant:
    role: str
    can_edit: bool
    can_delete: bool


@dataclass(frozen=True)
class Recipient:
    user_id: int
    email: str
    username: str
    full_name: str | None
    role: str


def _default_suffix() -> str:
    return get_settings().copy_title_suffix


@dataclass
class CopyOptions:
    title_suffix: str = field(default_factory=_default_suffix)
    notify_collaborators: bool = True


@dataclass
class CollaborationResult:
    added: list[dict[str, Any]] = field(default_factory=list)
    skipped: list[dict[str, Any]] = field(default_factory=list)
    denied: list[dict[str, Any]] = field(default_factory=list)
    failed: list[dict[str, Any]] = field(default_factory=list)

    @property
    def copies_created(self) -> int:
        return sum(1 for a in self.added if a.get("is_copy"))

    def to_dict(self, original_deadline_id: int, total_requested: int) -> dict[str, Any]:
        return {
            "original_deadline_id": original_deadline_id,
            "collaborators_added": self.added,
            "copies_created": self.copies_created,
            "denied_collaborators": self.denied,
            "skipped_collaborators": self.skipped,
            "failed_collaborators": self.failed,
            "total_requested": total_requested,
            "total_added": len(self.added),
            "total_denied": len(self.denied),
            "total_skipped": len(self.skipped),
            "total_failed": len(self.failed),
        }


# ---------------------------------------------------------------------------
# Access
# ---------------------------------------------------------------------------


async def _require_deadline(db: AsyncSession, deadline_id: int) -> Deadline:
    deadline = await get_deadline(db, deadline_id)
    if deadline is None:
        raise NotFoundError("Deadline not found")
    return deadline


async def _get_row(db: AsyncSession, deadline_id: int, user_id: int) -> DeadlineCollaborator | None:
    result = await db.execute(
        select(DeadlineCollaborator).where(
            DeadlineCollaborator.deadline_id == deadline_id,
            DeadlineCollaborator.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def resolve_access(db: AsyncSession, deadline_id: int, user_id: int) -> AccessGrant | None:
    """
    Return the user's grant on a deadline, or None.

    Owning a copy of the deadline is not access to it.

    Raises:
        NotFoundError: If the deadline does not exist.
    """
    deadline = await _require_deadline(db, deadline_id)
    if deadline.owner_id == user_id:
        return AccessGrant(role="owner", can_edit=True, can_delete=True)
    row = await _get_row(db, deadline_id, user_id)
    if row is None:
        return None
    return AccessGrant(role=row.role, can_edit=row.can_edit, can_delete=row.can_delete)


async def can_edit(db: AsyncSession, deadline_id: int, user_id: int) -> bool:
    grant = await resolve_access(db, deadline_id, user_id)
    return grant is not None and (grant.role == "owner" or grant.can_edit)


async def can_delete(db: AsyncSession, deadline_id: int, user_id: int) -> bool:
    grant = await resolve_access(db, deadline_id, user_id)
    return grant is not None and (grant.role == "owner" or grant.can_delete)


async def resolve_root(db: AsyncSession, deadline: Deadline) -> Deadline:
    """Follow ``origin_deadline_id`` to the first deadline without an origin."""
    current = deadline
    seen = {current.id}
    while current.origin_deadline_id is not None:
        parent = await get_deadline(db, current.origin_deadline_id)
        if parent is None or parent.id in seen:
            break
        seen.add(parent.id)
        current = parent
    return current


# ---------------------------------------------------------------------------
# Adding collaborators
# ---------------------------------------------------------------------------


async def _copy_owned_by(db: AsyncSession, deadline_id: int, user_id: int) -> Deadline | None:
    result = await db.execute(
        select(Deadline)
        .where(Deadline.origin_deadline_id == deadline_id, Deadline.owner_id == user_id)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def _screen_candidate(
    db: AsyncSession,
    deadline: Deadline,
    requester_id: int,
    candidate_id: int,
    *,
    create_copies: bool,
) -> dict[str, Any] | None:
    """Return a skipped entry for the candidate, or None if it may proceed."""
    if candidate_id == requester_id:
        return {"user_id": candidate_id, "reason": SKIP_SELF}
    if candidate_id == deadline.owner_id:
        return {"user_id": candidate_id, "reason": SKIP_OWNER}

    row = await _get_row(db, deadline.id, candidate_id)
    if row is not None:
        return {"user_id": candidate_id, "reason": SKIP_EXISTING, "existing_role": row.role}
    if create_copies:
        existing_copy = await _copy_owned_by(db, deadline.id, candidate_id)
        if existing_copy is not None:
            return {"user_id": candidate_id, "reason": SKIP_HAS_COPY, "copy_deadline_id": existing_copy.id}

    user = await db.get(User, candidate_id)
    if user is None:
        return {"user_id": candidate_id, "reason": SKIP_MISSING}

    friendship = await get_friendship_status(db, requester_id, candidate_id)
    if friendship is None or friendship.status != "accepted":
        return {"user_id": candidate_id, "reason": SKIP_NOT_FRIENDS}
    return None


async def _grant_row(db: AsyncSession, deadline_id: int, user_id: int) -> None:
    db.add(
        DeadlineCollaborator(
            deadline_id=deadline_id,
            user_id=user_id,
            role="collaborator",
            can_edit=True,
            can_delete=False,
            joined_at=utcnow(),
        )
    )
    await db.flush()




async def add_collaborators(
    db: AsyncSession,
    deadline_id: int,
    requester_id: int,
    candidate_ids: list[int],
    *,
    create_copies: bool = True,
    copy_options: CopyOptions | None = None,
    redis: Redis | None = None,
) -> CollaborationResult:
    """
    Add collaborators to a deadline, optionally forking a copy per candidate.

    Partial failures land in the result; this only raises for request-level
    problems.

    Raises:
        NotFoundError: The deadline does not exist.
        PermissionDeniedError: The requester cannot edit the deadline.
        ValidationError: The candidate list is empty.
        NoValidCollaboratorsError: Every candidate was skipped.
    """
    deadline = await _require_deadline(db, deadline_id)
    if not await can_edit(db, deadline_id, requester_id):
        raise PermissionDeniedError("You do not have permission to add collaborators to this deadline")
    if not candidate_ids:
        raise ValidationError("Validation failed", ["At least one collaborator is required"])

    options = copy_options or CopyOptions()
    result = CollaborationResult()
    valid: list[int] = []
    for candidate_id in dict.fromkeys(candidate_ids):
        skip = await _screen_candidate(db, deadline, requester_id, candidate_id, create_copies=create_copies)
        if skip is not None:
            result.skipped.append(skip)
        else:
            valid.append(candidate_id)

    if not valid:
        raise NoValidCollaboratorsError(result.skipped, len(candidate_ids))

    root = await resolve_root(db, deadline) if create_copies else deadline
    root_owner_id = root.owner_id
    is_copy = root.id != deadline.id
    created: list[Deadline] = []

    for candidate_id in valid:
        if create_copies and candidate_id == root_owner_id and is_copy:
            result.denied.append({
                "user_id": candidate_id,
                "original_deadline_id": root.id,
                "is_original_owner": True,
                "reason": DENY_ROOT_OWNER,
            })
            logger.info("collaborator_denied_root_owner", deadline_id=deadline.id, user_id=candidate_id)
            continue

        try:
            async with db.begin_nested():
                if not create_copies or candidate_id == root_owner_id:
                    await _grant_row(db, deadline.id, candidate_id)
                    entry: dict[str, Any] = {
                        "user_id": candidate_id,
                        "deadline_id": deadline.id,
                        "original_deadline_id": root.id,
                        "is_copy": False,
                        "is_original_owner": candidate_id == root_owner_id,
                    }
                else:
                    copy = await create_copy(db, deadline, candidate_id, options.title_suffix)
                    created.append(copy)
                    entry = {
                        "user_id": candidate_id,
                        "deadline_id": copy.id,
                        "copy_deadline_id": copy.id,
                        "original_deadline_id": deadline.id,
                        "is_copy": True,
                        "is_original_owner": False,
                    }
        except SQLAlchemyError as exc:
            logger.error("collaborator_add_failed", deadline_id=deadline.id, user_id=candidate_id, error=str(exc))
            result.failed.append({"user_id": candidate_id, "error": str(exc)})
            continue
        result.added.append(entry)

    if options.notify_collaborators:
        for copy in created:
            try:
                async with db.begin_nested():
                    await notify_deadline_shared(db, copy, deadline, redis=redis)
            except SQLAlchemyError:
                logger.warning("deadline_shared_notification_failed", copy_deadline_id=copy.id, exc_info=True)

    logger.info(
        "collaborators_added",
        deadline_id=deadline.id,
        added=len(result.added),
        skipped=len(result.skipped),
        denied=len(result.denied),
        failed=len(result.failed),
    )
    return result


async def send_shared_emails(
    db: AsyncSession, email: EmailService, result: CollaborationResult, requester_id: int
) -> int:
    """
    Email each new copy owner about their copy. Returns the number delivered.

    Call after the copies are committed so every link points at a stored
    deadline. Delivery is best-effort; failures are logged.
    """
    settings = get_settings()
    sharer = await db.get(User, requester_id)
    sharer_name = (sharer.full_name or sharer.username) if sharer else "A friend"
    delivered = 0
    for entry in result.added:
        if not entry.get("is_copy"):
            continue
        copy = await get_deadline(db, entry["copy_deadline_id"])
        if copy is None:
            continue
        recipient = await db.get(User, copy.owner_id)
        original = await get_deadline(db, entry["original_deadline_id"])
        if recipient is None or original is None:
            continue
        sent = await email.send_template(
            recipient.email,
            "deadline_shared",
            {
                "name": recipient.full_name or recipient.username,
                "title": copy.title,
                "original_title": original.title,
                "sharer": sharer_name,
                "url": f"{settings.frontend_base_url}/deadlines/{copy.id}",
            },
        )
        if sent.success:
            delivered += 1
        else:
            logger.warning("deadline_shared_email_failed", copy_deadline_id=copy.id, error=sent.error)
    return delivered


# ---------------------------------------------------------------------------
# Listing and maintenance
# ---------------------------------------------------------------------------


async def get_notification_recipients(db: AsyncSession, deadline_id: int) -> list[Recipient]:
    """Owner first, then every real collaborator row. Copy owners are not included."""
    deadline = await _require_deadline(db, deadline_id)
    rows = await db.execute(
        select(DeadlineCollaborator, User)
        .join(User, User.id == DeadlineCollaborator.user_id)
        .where(DeadlineCollaborator.deadline_id == deadline_id)
        .order_by(DeadlineCollaborator.id)
    )

    recipients: dict[int, Recipient] = {}
    owner = await db.get(User, deadline.owner_id)
    if owner is not None:
        recipients[owner.id] = Recipient(owner.id, owner.email, owner.username, owner.full_name, "owner")
    for row, user in rows.all():
        if user.id not in recipients:
            recipients[user.id] = Recipient(user.id, user.email, user.username, user.full_name, row.role)
    return list(recipients.values())


async def get_collaborators(db: AsyncSession, deadline_id: int) -> list[dict[str, Any]]:
    """Real collaborator rows (excluding the owner) plus one provenance entry per direct copy."""
    await _require_deadline(db, deadline_id)
    rows = await db.execute(
        select(DeadlineCollaborator, User)
        .join(User, User.id == DeadlineCollaborator.user_id)
        .where(DeadlineCollaborator.deadline_id == deadline_id, DeadlineCollaborator.role != "owner")
        .order_by(DeadlineCollaborator.id)
    )
    entries = [
        {
            "user_id": user.id,
            "username": user.username,
            "full_name": user.full_name,
            "email": user.email,
            "role": row.role,
            "can_edit": row.can_edit,
            "can_delete": row.can_delete,
            "joined_at": row.joined_at,
            "has_copy": False,
            "copy_deadline_id": None,
        }
        for row, user in rows.all()
    ]

    for copy in await get_direct_copies(db, deadline_id):
        owner = await db.get(User, copy.owner_id)
        if owner is None:
            continue
        entries.append({
            "user_id": owner.id,
            "username": owner.username,
            "full_name": owner.full_name,
            "email": owner.email,
            "role": "copy_collaborator",
            "can_edit": False,
            "can_delete": False,
            "joined_at": copy.created_at,
            "has_copy": True,
            "copy_deadline_id": copy.id,
        })
    return entries


async def remove_collaborator(db: AsyncSession, deadline_id: int, requester_id: int, user_id: int) -> None:
    """
    Remove a collaborator row. Requires edit permission.

    Raises:
        NotFoundError: Deadline or collaborator row missing.
        PermissionDeniedError: Requester cannot edit, or the target is the owner.
    """
    await _require_deadline(db, deadline_id)
    if not await can_edit(db, deadline_id, requester_id):
        raise PermissionDeniedError("You do not have permission to remove collaborators from this deadline")
    row = await _get_row(db, deadline_id, user_id)
    if row is None:
        raise NotFoundError("Collaborator not found")
    if row.role == "owner":
        raise PermissionDeniedError("Cannot remove the deadline owner")
    await db.delete(row)
    await db.flush()
    logger.info("collaborator_removed", deadline_id=deadline_id, user_id=user_id, by=requester_id)


async def update_collaborator(
    db: AsyncSession,
    deadline_id: int,
    requester_id: int,
    user_id: int,
    *,
    can_edit: bool | None = None,
    can_delete: bool | None = None,
) -> DeadlineCollaborator:
    """Change a collaborator's permission flags. Owner only."""
    deadline = await _require_deadline(db, deadline_id)
    if deadline.owner_id != requester_id:
        raise PermissionDeniedError("Only the deadline owner can change collaborator permissions")
    row = await _get_row(db, deadline_id, user_id)
    if row is None:
        raise NotFoundError("Collaborator not found")
    if row.role == "owner":
        raise PermissionDeniedError("Cannot change the owner's permissions")
    if can_edit is not None:
        row.can_edit = can_edit
    if can_delete is not None:
        row.can_delete = can_delete
    await db.flush()
    return row
