"""Deadline router: all /api/v1/deadlines/* endpoints."""

from __future__ import annotations

import math
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from dtrack.auth.dependencies import get_current_user
from dtrack.database import get_session
from dtrack.db.models import Deadline, User
from dtrack.deadlines.collaboration import (
    AccessGrant,
    CopyOptions,
    add_collaborators,
    get_collaborators,
    remove_collaborator,
    resolve_access,
    send_shared_emails,
    update_collaborator,
)
from dtrack.deadlines.schemas import (
    AddCollaboratorsRequest,
    CollaboratorResponse,
    CollaboratorUpdateRequest,
    DeadlineCreateRequest,
    DeadlineDetailResponse,
    DeadlineListResponse,
    DeadlineResponse,
    DeadlineStatsResponse,
    DeadlineUpdateRequest,
    StatusUpdateRequest,
)
from dtrack.deadlines.service import (
    create_deadline,
    delete_deadline,
    get_deadline,
    get_overdue_deadlines,
    get_stats,
    get_upcoming_deadlines,
    list_accessible_deadlines,
    set_status,
    update_deadline,
)
from dtrack.email.service import get_email_service
from dtrack.errors import NoValidCollaboratorsError, NotFoundError, PermissionDeniedError
from dtrack.redis_client import get_redis_or_none
from dtrack.schemas import Envelope, fail, ok

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/deadlines", tags=["Deadlines"])


async def _require_access(db: AsyncSession, deadline_id: int, user_id: int) -> tuple[Deadline, AccessGrant]:
    grant = await resolve_access(db, deadline_id, user_id)
    if grant is None:
        raise PermissionDeniedError("Access denied to this deadline")
    deadline = await get_deadline(db, deadline_id)
    if deadline is None:
        raise NotFoundError("Deadline not found")
    return deadline, grant


async def _detail(db: AsyncSession, deadline: Deadline, grant: AccessGrant) -> DeadlineDetailResponse:
    collaborators = await get_collaborators(db, deadline.id)
    return DeadlineDetailResponse.model_validate({
        **DeadlineResponse.model_validate(deadline).model_dump(),
        "collaborators": collaborators,
        "user_access": {"role": grant.role, "can_edit": grant.can_edit, "can_delete": grant.can_delete},
    })


# ---------------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------------


@router.get("", response_model=Envelope[DeadlineListResponse])
async def list_deadlines(
    status: str | None = Query(None),
    priority: str | None = Query(None),
    category: str | None = Query(None),
    subject: str | None = Query(None),
    search: str | None = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: str = Query("due_date"),
    sort_order: str = Query("asc", pattern="^(asc|desc|ASC|DESC)$"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> Envelope[DeadlineListResponse]:
    """List deadlines the user owns or collaborates on."""
    filters = {"status": status, "priority": priority, "category": category, "subject": subject, "search": search}
    deadlines, total = await list_accessible_deadlines(
        db, user.id, filters=filters, page=page, limit=limit, sort_by=sort_by, sort_order=sort_order
    )
    return Envelope(
        message="Deadlines retrieved",
        data=DeadlineListResponse(
            deadlines=[DeadlineResponse.model_validate(d) for d in deadlines],
            total=total,
            page=page,
            limit=limit,
            pages=math.ceil(total / limit) if total else 0,
        ),
    )


@router.post("", status_code=201, response_model=Envelope[DeadlineResponse])
async def create(
    body: DeadlineCreateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> Envelope[DeadlineResponse]:
    """Create a deadline owned by the current user."""
    deadline = await create_deadline(db, user.id, body.model_dump(exclude_unset=True))
    await db.commit()
    return Envelope(message="Deadline created successfully", data=DeadlineResponse.model_validate(deadline))


@router.get("/upcoming", response_model=Envelope[list[DeadlineResponse]])
async def upcoming(
    days: int = Query(7, ge=1, le=365),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> Envelope[list[DeadlineResponse]]:
    deadlines = await get_upcoming_deadlines(db, user.id, days)
    return Envelope(message="Upcoming deadlines retrieved", data=[DeadlineResponse.model_validate(d) for d in deadlines])


@router.get("/overdue", response_model=Envelope[list[DeadlineResponse]])
async def overdue(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> Envelope[list[DeadlineResponse]]:
    deadlines = await get_overdue_deadlines(db, user.id)
    return Envelope(message="Overdue deadlines retrieved", data=[DeadlineResponse.model_validate(d) for d in deadlines])


@router.get("/stats", response_model=Envelope[DeadlineStatsResponse])
async def stats(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> Envelope[DeadlineStatsResponse]:
    counts = await get_stats(db, user.id)
    return Envelope(message="Deadline statistics retrieved", data=DeadlineStatsResponse(**counts))


# ---------------------------------------------------------------------------
# Single deadline
# ---------------------------------------------------------------------------


@router.get("/{deadline_id}", response_model=Envelope[DeadlineDetailResponse])
async def get_one(
    deadline_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> Envelope[DeadlineDetailResponse]:
    """Deadline detail with the collaborator list and the caller's access."""
    deadline, grant = await _require_access(db, deadline_id, user.id)
    return Envelope(message="Deadline retrieved", data=await _detail(db, deadline, grant))


@router.put("/{deadline_id}", response_model=Envelope[DeadlineResponse])
async def update(
    deadline_id: int,
    body: DeadlineUpdateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> Envelope[DeadlineResponse]:
    deadline, grant = await _require_access(db, deadline_id, user.id)
    if not grant.can_edit:
        raise PermissionDeniedError("You do not have permission to edit this deadline")
    deadline = await update_deadline(db, deadline, body.model_dump(exclude_unset=True))
    await db.commit()
    return Envelope(message="Deadline updated successfully", data=DeadlineResponse.model_validate(deadline))


@router.patch("/{deadline_id}/status", response_model=Envelope[DeadlineResponse])
async def change_status(
    deadline_id: int,
    body: StatusUpdateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> Envelope[DeadlineResponse]:
    deadline, grant = await _require_access(db, deadline_id, user.id)
    if not grant.can_edit:
        raise PermissionDeniedError("You do not have permission to edit this deadline")
    deadline = await set_status(db, deadline, body.status)
    await db.commit()
    return Envelope(message="Deadline status updated", data=DeadlineResponse.model_validate(deadline))


@router.delete("/{deadline_id}", response_model=Envelope[None])
async def delete(
    deadline_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> Envelope[None]:
    _, grant = await _require_access(db, deadline_id, user.id)
    if not grant.can_delete:
        raise PermissionDeniedError("You do not have permission to delete this deadline")
    await delete_deadline(db, deadline_id)
    await db.commit()
    logger.info("deadline_deleted", deadline_id=deadline_id, by=user.id)
    return Envelope(message="Deadline deleted successfully")


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


@router.get("/{deadline_id}/collaborators", response_model=Envelope[list[CollaboratorResponse]])
async def list_collaborators(
    deadline_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> Envelope[list[CollaboratorResponse]]:
    await _require_access(db, deadline_id, user.id)
    entries = await get_collaborators(db, deadline_id)
    return Envelope(message="Collaborators retrieved", data=[CollaboratorResponse(**e) for e in entries])


@router.post("/{deadline_id}/collaborators", response_model=None)
async def add(
    deadline_id: int,
    body: AddCollaboratorsRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> JSONResponse | dict[str, Any]:
    """
    Add collaborators, forking a personal copy for each by default.

    Answers 200 when at least one candidate was added, otherwise 400 with the
    same per-candidate breakdown.
    """
    options = CopyOptions(notify_collaborators=body.copy_options.notify_collaborators)
    if body.copy_options.title_suffix:
        options.title_suffix = body.copy_options.title_suffix

    redis = get_redis_or_none()
    try:
        result = await add_collaborators(
            db,
            deadline_id,
            user.id,
            body.collaborators,
            create_copies=body.create_copies,
            copy_options=options,
            redis=redis,
        )
    except NoValidCollaboratorsError as e:
        return JSONResponse(
            status_code=400,
            content=fail(
                e.message,
                e.errors,
                data={
                    "skipped_collaborators": e.skipped,
                    "total_requested": e.total_requested,
                    "total_skipped": len(e.skipped),
                },
            ),
        )
    await db.commit()
    if options.notify_collaborators and result.copies_created:
        await send_shared_emails(db, get_email_service(redis), result, user.id)

    data = result.to_dict(deadline_id, len(body.collaborators))
    if not result.added:
        return JSONResponse(status_code=400, content=fail("No collaborators were successfully added", data=data))

    message = f"Successfully added {len(result.added)} collaborator(s)"
    if body.create_copies:
        message += " with individual copies"
    not_added = len(result.skipped) + len(result.denied) + len(result.failed)
    if not_added:
        message += f". {not_added} request(s) denied/skipped"
    return ok(data, message)


@router.patch("/{deadline_id}/collaborators/{user_id}", response_model=Envelope[CollaboratorResponse])
async def update_permissions(
    deadline_id: int,
    user_id: int,
    body: CollaboratorUpdateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> Envelope[CollaboratorResponse]:
    await update_collaborator(db, deadline_id, user.id, user_id, can_edit=body.can_edit, can_delete=body.can_delete)
    await db.commit()
    entries = await get_collaborators(db, deadline_id)
    entry = next(e for e in entries if e["user_id"] == user_id and not e["has_copy"])
    return Envelope(message="Collaborator updated", data=CollaboratorResponse(**entry))


@router.delete("/{deadline_id}/collaborators/{user_id}", response_model=Envelope[None])
async def remove(
    deadline_id: int,
    user_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> Envelope[None]:
    await remove_collaborator(db, deadline_id, user.id, user_id)
    await db.commit()
    return Envelope(message="Collaborator removed successfully")
