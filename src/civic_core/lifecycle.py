"""Issue Lifecycle Core: submission, transitions, assignment and progress notes.

Validates every command against the state machine and the role rules, then
hands it to the store. The store publishes the resulting change-feed event;
the core never talks to subscribers directly.

Visibility rule used throughout: a user can see an issue if they reported it,
are assigned to it, or are an officer with administrative scope.
"""
import logging
from datetime import timedelta
from typing import Iterable, Mapping, Optional, Protocol, Union
from uuid import UUID

from .errors import AuthorizationError, IssueNotFoundError, UploadError, ValidationError
from .filters import IssueOrder, for_identity
from .models import IssuePriority, IssueStatus, UserRole, utcnow
from .schemas import (
    Attachment,
    Identity,
    IssueCreate,
    IssueHistoryRecord,
    IssueRecord,
    IssueUpdateRecord,
    SubmissionResponse,
)
from .state_machine import authorize_transition, status_after_assignment, validate_transition
from .store import IssueStore
from .uploads import UploadStore

logger = logging.getLogger("civic-core.lifecycle")

MAX_ATTACHMENTS = 3

# Resolution target per priority, in hours (default for Settings.sla_hours)
DEFAULT_SLA_HOURS: dict[IssuePriority, int] = {
    IssuePriority.CRITICAL: 24,
    IssuePriority.HIGH: 72,
    IssuePriority.MEDIUM: 168,
    IssuePriority.LOW: 336,
}


class IdentityDirectory(Protocol):
    def get_user(self, user_id: UUID) -> Optional[Identity]: ...


def can_view(viewer: Identity, issue: IssueRecord) -> bool:
    """Reporter, assignee, or admin officer."""
    if viewer.has_admin_scope:
        return True
    return viewer.id == issue.reported_by or (issue.assigned_to is not None and viewer.id == issue.assigned_to)


def _require_text(value: Optional[str], field: str, label: str) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{label} is required.", field=field)
    return text


class IssueLifecycle:
    """Validates and applies issue lifecycle commands."""

    def __init__(
        self,
        store: IssueStore,
        identities: IdentityDirectory,
        uploads: Optional[UploadStore] = None,
        sla_hours: Optional[Mapping[IssuePriority, int]] = None,
    ):
        self.store = store
        self.identities = identities
        self.uploads = uploads
        self.sla_hours = dict(sla_hours) if sla_hours is not None else {}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _load(self, issue_id: UUID) -> IssueRecord:
        issue = self.store.get(issue_id)
        if issue is None:
            raise IssueNotFoundError(issue_id)
        return issue

    def get_issue(self, issue_id: UUID, viewer: Identity) -> IssueRecord:
        """
        Load an issue the viewer is allowed to see.

        Raises:
            IssueNotFoundError: Unknown issue
            AuthorizationError: Viewer is not reporter, assignee or admin
        """
        issue = self._load(issue_id)
        if not can_view(viewer, issue):
            raise AuthorizationError("You do not have access to this issue.")
        return issue

    def list_issues(
        self,
        viewer: Identity,
        admin_view: bool = False,
        order_by: IssueOrder = IssueOrder.NEWEST,
    ) -> list[IssueRecord]:
        """Role-scoped issue list, using the same predicate as the live feed."""
        return self.store.query(for_identity(viewer, admin_view), order_by)

    def list_updates(self, issue_id: UUID, viewer: Identity) -> list[IssueUpdateRecord]:
        self.get_issue(issue_id, viewer)
        return self.store.list_updates(issue_id)

    def list_history(self, issue_id: UUID, viewer: Identity, limit: int = 50) -> list[IssueHistoryRecord]:
        self.get_issue(issue_id, viewer)
        return self.store.list_history(issue_id, limit)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def submit_issue(
        self,
        reporter: Identity,
        data: IssueCreate,
        attachments: Optional[Iterable[Attachment]] = None,
    ) -> SubmissionResponse:
        """
        File a new issue on behalf of a citizen.

        The issue always starts pending and unassigned. Attachments are stored
        one by one; a failed upload is reported in the result but does not
        stop the submission.

        Args:
            reporter: Submitting citizen
            data: Issue fields
            attachments: Extra attachments (in addition to data.attachments)

        Returns:
            SubmissionResponse with the stored issue and failed upload names

        Raises:
            AuthorizationError: Reporter is not a citizen
            ValidationError: Blank title/category/location, or too many attachments
        """
        if reporter.role != UserRole.CITIZEN:
            logger.warning(f"Blocked submission by {reporter.role.value} {reporter.id}")
            raise AuthorizationError("Only citizens can report issues.")

        title = _require_text(data.title, "title", "Title")
        category = _require_text(data.category, "category", "Category").lower()
        location = _require_text(data.location, "location", "Location")

        files = list(data.attachments) + list(attachments or [])
        if len(files) > MAX_ATTACHMENTS:
            raise ValidationError(f"At most {MAX_ATTACHMENTS} images can be attached.", field="attachments")

        images: list[str] = []
        failed_uploads: list[str] = []
        for attachment in files:
            if self.uploads is None:
                failed_uploads.append(attachment.filename)
                continue
            try:
                images.append(self.uploads.store(attachment.filename, attachment.content))
            except UploadError as e:
                logger.warning(f"Upload of {attachment.filename} failed, continuing submission: {e}")
                failed_uploads.append(attachment.filename)

        reported_at = utcnow()
        hours = self.sla_hours.get(data.priority)
        sla_deadline = reported_at + timedelta(hours=hours) if hours else None

        issue = self.store.insert(
            {
                "title": title,
                "description": (data.description or "").strip() or None,
                "category": category,
                "priority": data.priority,
                "status": IssueStatus.PENDING,
                "location": location,
                "latitude": data.latitude,
                "longitude": data.longitude,
                "images": images,
                "reported_by": reporter.id,
                "assigned_to": None,
                "reported_at": reported_at,
                "sla_deadline": sla_deadline,
            },
            changed_by=reporter.id,
        )
        return SubmissionResponse(issue=issue, failed_uploads=failed_uploads)

    def transition(
        self,
        issue_id: UUID,
        requested_status: Union[str, IssueStatus],
        actor: Identity,
    ) -> IssueRecord:
        """
        Move an issue to a new status.

        Raises:
            AuthorizationError: Citizen actor, or staff that is neither assignee nor admin
            ValidationError: Status outside pending/in_progress/resolved
            IssueNotFoundError: Unknown issue (admin actors only; others are refused first)
        """
        issue = self.store.get(issue_id)
        authorize_transition(actor, issue.assigned_to if issue else None)
        if issue is None:
            raise IssueNotFoundError(issue_id)

        new_status = validate_transition(issue.status, requested_status)
        if new_status == issue.status:
            return issue

        logger.info(f"Issue {issue_id} transition by {actor.id}: {issue.status.value} -> {new_status.value}")
        return self.store.update(issue_id, {"status": new_status}, changed_by=actor.id)

    def assign(self, issue_id: UUID, assignee_id: UUID, actor: Identity) -> IssueRecord:
        """
        Assign an issue to a worker or officer.

        A pending issue moves to in_progress. An existing assignee is
        overwritten; concurrent assignments are last-write-wins.

        Raises:
            AuthorizationError: Actor is not an officer
            ValidationError: Assignee unknown or a citizen
            IssueNotFoundError: Unknown issue
        """
        if actor.role != UserRole.OFFICER:
            logger.warning(f"Blocked assignment by {actor.role.value} {actor.id}")
            raise AuthorizationError("Only officers can assign issues.")

        assignee = self.identities.get_user(assignee_id)
        if assignee is None:
            raise ValidationError(f"Assignee not found: {assignee_id}", field="assignee_id")
        if not assignee.is_staff:
            raise ValidationError("Issues can only be assigned to workers or officers.", field="assignee_id")

        issue = self._load(issue_id)
        fields = {"assigned_to": assignee.id}
        new_status = status_after_assignment(issue.status)
        if new_status != issue.status:
            fields["status"] = new_status

        if issue.assigned_to and issue.assigned_to != assignee.id:
            logger.info(f"Reassigning issue {issue_id} from {issue.assigned_to} to {assignee.id}")
        return self.store.update(issue_id, fields, changed_by=actor.id)

    def add_update(self, issue_id: UUID, author: Identity, message: str) -> IssueUpdateRecord:
        """
        Append a progress note.

        Raises:
            ValidationError: Empty or whitespace-only message (nothing is written)
            AuthorizationError: Author cannot see the issue
            IssueNotFoundError: Unknown issue
        """
        text = (message or "").strip()
        if not text:
            raise ValidationError("Update message cannot be empty.", field="message")

        self.get_issue(issue_id, author)
        return self.store.insert_update(issue_id, author.id, text)
