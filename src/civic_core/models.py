"""SQLAlchemy database models."""
from datetime import datetime, timezone
from uuid import uuid4
import enum

from sqlalchemy import (
    Column,
    String,
    Text,
    Float,
    DateTime,
    ForeignKey,
    Enum,
    CheckConstraint,
    Boolean,
    JSON,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship

# Base class for all models
Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the naive DateTime columns below."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class UserRole(str, enum.Enum):
    """Role assigned at signup. Never changed by the user afterwards."""

    CITIZEN = "citizen"
    WORKER = "worker"
    OFFICER = "officer"


class IssueStatus(str, enum.Enum):
    """Issue lifecycle status enum.

    Closed set: pending (initial) -> in_progress -> resolved.
    """

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"


class IssuePriority(str, enum.Enum):
    """Issue priority enum."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class IssueChangeType(str, enum.Enum):
    """Issue history change type enum."""

    CREATED = "created"
    STATUS_CHANGED = "status_changed"
    ASSIGNED = "assigned"
    REASSIGNED = "reassigned"


class User(Base):
    """
    User profile with display name and role.

    Credentials live with the external auth provider; this table only holds
    the identity the rest of the system needs.
    """

    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    full_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True, index=True)
    role = Column(
        Enum(UserRole, values_callable=lambda obj: [e.value for e in obj]),
        nullable=False,
        default=UserRole.CITIZEN,
        index=True
    )
    # Administrative scope: only meaningful for officers
    is_admin = Column(Boolean, nullable=False, default=False)

    # Audit fields
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    session_tokens = relationship("SessionToken", back_populates="user", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("is_admin = false OR role = 'officer'", name="admin_requires_officer"),
    )

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role.value})>"


class SessionToken(Base):
    """
    Opaque session token for API and feed authentication.

    Tokens are hashed before storage (like passwords).
    """

    __tablename__ = "session_tokens"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token_hash = Column(String(255), nullable=False, unique=True, index=True)  # SHA-256 hash of token
    last_used_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    revoked_at = Column(DateTime, nullable=True)  # Soft delete via revocation

    user = relationship("User", back_populates="session_tokens")

    @property
    def is_active(self) -> bool:
        """Check if token is active (not revoked and not expired)."""
        if self.revoked_at:
            return False
        if self.expires_at and self.expires_at < utcnow():
            return False
        return True

    def __repr__(self) -> str:
        return f"<SessionToken for user_id={self.user_id}>"


class Issue(Base):
    """
    A reported civic problem tracked through its lifecycle.

    Lifecycle: pending -> in_progress -> resolved. Issues are never hard-deleted;
    resolution is a terminal status, not removal.
    """

    __tablename__ = "issues"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)

    # Core fields
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(50), nullable=False, default="other", index=True)
    priority = Column(
        Enum(IssuePriority, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=IssuePriority.MEDIUM,
        index=True
    )
    status = Column(
        Enum(IssueStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=IssueStatus.PENDING,
        index=True
    )

    # Location
    location = Column(String(500), nullable=False)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    # Opaque upload references
    images = Column(JSONType, nullable=False, default=list)

    # People
    reported_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    assigned_to = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    # Timestamps
    reported_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    sla_deadline = Column(DateTime, nullable=True, index=True)

    # Relationships
    reporter = relationship("User", foreign_keys=[reported_by])
    assignee = relationship("User", foreign_keys=[assigned_to])
    updates = relationship(
        "IssueUpdate",
        back_populates="issue",
        cascade="all, delete-orphan",
        order_by="IssueUpdate.created_at",
    )
    history = relationship("IssueHistory", back_populates="issue", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("length(trim(title)) > 0", name="title_not_blank"),
        CheckConstraint(
            "(latitude IS NULL AND longitude IS NULL) OR (latitude IS NOT NULL AND longitude IS NOT NULL)",
            name="coordinates_complete"
        ),
    )

    def __repr__(self) -> str:
        return f"<Issue {self.id}: {self.status.value} - {self.title[:30]}>"


class IssueUpdate(Base):
    """
    Progress note attached to an issue.

    Append-only: there is no edit or delete path.
    """

    __tablename__ = "issue_updates"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    issue_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("issues.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    message = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    issue = relationship("Issue", back_populates="updates")
    user = relationship("User")

    __table_args__ = (
        CheckConstraint("length(trim(message)) > 0", name="message_not_blank"),
    )

    def __repr__(self) -> str:
        return f"<IssueUpdate {self.issue_id}: {self.message[:30]}>"


class IssueHistory(Base):
    """
    Issue change history for audit trail.

    Records creation, status changes and assignments.
    """

    __tablename__ = "issue_history"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    issue_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("issues.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Change details
    change_type = Column(
        Enum(IssueChangeType, values_callable=lambda obj: [e.value for e in obj]),
        nullable=False
    )
    field_name = Column(String(50), nullable=True)
    old_value = Column(Text, nullable=True)
    new_value = Column(Text, nullable=True)

    # Audit
    changed_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    changed_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    issue = relationship("Issue", back_populates="history")
    user = relationship("User")

    def __repr__(self) -> str:
        return f"<IssueHistory {self.issue_id}: {self.change_type.value}>"
