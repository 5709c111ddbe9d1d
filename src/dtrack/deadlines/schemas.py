"""Pydantic schemas for deadline endpoints.

Request bodies only check types. Field rules (lengths, enums, date parsing)
live in ``dtrack.deadlines.service.validate_deadline_input`` so every
violation comes back in one 400 envelope.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from dtrack.time_utils import as_utc


class DeadlineCreateRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    due_date: str | datetime | None = None
    priority: str | None = None
    status: str | None = None
    category: str | None = None
    subject: str | None = None
    estimated_hours: int | None = None
    actual_hours: int | None = None
    completion_percentage: int | None = None
    notes: str | None = None


class DeadlineUpdateRequest(DeadlineCreateRequest):
    """Partial update; only fields present in the body are applied."""


class StatusUpdateRequest(BaseModel):
    status: str


class CopyOptionsRequest(BaseModel):
    title_suffix: str | None = Field(None, max_length=50)
    notify_collaborators: bool = True


class AddCollaboratorsRequest(BaseModel):
    collaborators: list[int]
    create_copies: bool = True
    copy_options: CopyOptionsRequest = CopyOptionsRequest()


class CollaboratorUpdateRequest(BaseModel):
    can_edit: bool | None = None
    can_delete: bool | None = None


class DeadlineResponse(BaseModel):
    id: int
    owner_id: int
    title: str
    description: str | None = None
    due_date: datetime
    priority: str
    status: str
    category: str | None = None
    subject: str | None = None
    estimated_hours: int | None = None
    actual_hours: int | None = None
    completion_percentage: int
    notes: str | None = None
    origin_deadline_id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None

    model_config = {"from_attributes": True}

    @field_validator("due_date", "created_at", "updated_at", "completed_at")
    @classmethod
    def _utc(cls, v: datetime | None) -> datetime | None:
        return as_utc(v) if v is not None else None


class CollaboratorResponse(BaseModel):
    user_id: int
    username: str
    full_name: str | None = None
    email: str
    role: str
    can_edit: bool
    can_delete: bool
    joined_at: datetime | None = None
    has_copy: bool = False
    copy_deadline_id: int | None = None


class AccessResponse(BaseModel):
    role: str
    can_edit: bool
    can_delete: bool


class DeadlineDetailResponse(DeadlineResponse):
    collaborators: list[CollaboratorResponse] = []
    user_access: AccessResponse


class DeadlineListResponse(BaseModel):
    deadlines: list[DeadlineResponse]
    total: int
    page: int
    limit: int
    pages: int


class DeadlineStatsResponse(BaseModel):
    total: int
    pending: int
    in_progress: int
    completed: int
    overdue: int
