"""Pydantic schemas for request/response validation."""
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Base64Bytes, Field, ConfigDict, model_validator

from .models import (
    UserRole,
    IssueStatus,
    IssuePriority,
    IssueChangeType,
)


# Identity Schemas

class Identity(BaseModel):
    """Resolved identity of the acting user."""

    id: UUID
    full_name: str
    email: str
    role: UserRole
    is_admin: bool = False

    model_config = ConfigDict(from_attributes=True, frozen=True)

    @property
    def is_staff(self) -> bool:
        """Workers and officers handle issues; citizens only report them."""
        return self.role in (UserRole.WORKER, UserRole.OFFICER)

    @property
    def has_admin_scope(self) -> bool:
        return self.role == UserRole.OFFICER and self.is_admin


class UserCreate(BaseModel):
    """Schema for signing up a new user."""

    full_name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    role: UserRole = UserRole.CITIZEN


class UserResponse(BaseModel):
    """Schema for user profile responses."""

    id: UUID
    full_name: str
    email: str
    role: UserRole
    is_admin: bool

    model_config = ConfigDict(from_attributes=True)


class SignInRequest(BaseModel):
    """Development sign-in by e-mail (credentials are checked by the auth provider)."""

    email: str = Field(..., min_length=3, max_length=255)


class SessionResponse(BaseModel):
    """Session token issued at signup or sign-in."""

    token: str
    user: UserResponse


# Issue Schemas

class Attachment(BaseModel):
    """Image attached to a submission, base64 encoded over the wire."""

    filename: str = Field(..., min_length=1, max_length=255)
    content: Base64Bytes


class IssueCreate(BaseModel):
    """Schema for a citizen submitting a new issue.

    Status and assignee are not accepted: new issues always start pending and
    unassigned.
    """

    title: str = Field(..., max_length=200)
    description: Optional[str] = None
    category: str = Field("other", max_length=50)
    priority: IssuePriority = IssuePriority.MEDIUM
    location: str = Field(..., max_length=500)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    attachments: list[Attachment] = Field(default_factory=list)

    @model_validator(mode="after")
    def _coordinates_complete(self) -> "IssueCreate":
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be provided together")
        return self


class IssueRecord(BaseModel):
    """Snapshot of an issue as stored, cached and sent over the feed."""

    id: UUID
    title: str
    description: Optional[str] = None
    category: str
    priority: IssuePriority
    status: IssueStatus
    location: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    images: list[str] = Field(default_factory=list)
    reported_by: UUID
    assigned_to: Optional[UUID] = None
    reporter_name: Optional[str] = None
    assignee_name: Optional[str] = None
    reported_at: datetime
    updated_at: datetime
    sla_deadline: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class IssueTransition(BaseModel):
    """Schema for requesting a status transition.

    The status is kept as a plain string so that out-of-range values reach the
    state machine and are rejected there.
    """

    new_status: str


class IssueAssign(BaseModel):
    """Schema for assigning an issue to a worker or officer."""

    assignee_id: UUID


class SubmissionResponse(BaseModel):
    """Result of a submission; failed uploads do not block the issue."""

    issue: IssueRecord
    failed_uploads: list[str] = Field(default_factory=list)


class DashboardStats(BaseModel):
    """Counters shown at the top of every dashboard."""

    total: int = 0
    pending: int = 0
    in_progress: int = 0
    resolved: int = 0
    overdue: int = 0


class IssueListResponse(BaseModel):
    """Schema for role-scoped issue lists."""

    items: list[IssueRecord]
    total: int
    stats: DashboardStats


# Issue Update (progress note) Schemas

class IssueUpdateCreate(BaseModel):
    """Schema for appending a progress note."""

    message: str = Field(..., max_length=5000)


class IssueUpdateRecord(BaseModel):
    """Progress note as stored, cached and sent over the feed."""

    id: UUID
    issue_id: UUID
    user_id: Optional[UUID] = None
    author_name: Optional[str] = None
    message: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class IssueHistoryRecord(BaseModel):
    """Schema for issue history entries."""

    id: UUID
    issue_id: UUID
    change_type: IssueChangeType
    field_name: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    changed_by: Optional[UUID] = None
    changed_at: datetime

    model_config = ConfigDict(from_attributes=True)
