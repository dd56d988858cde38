"""State machine validation for issue lifecycle status transitions.

Issues move between pending, in_progress and resolved. Movement is not
forward-only: a resolved issue can be reopened and an in-progress issue can be
put back in the queue. What the state machine does enforce is *who* may move
an issue:

- Citizens never change status
- Workers and officers change status on issues assigned to them
- Officers with administrative scope change status on any issue
"""
import logging
from typing import Optional, Union
from uuid import UUID

from .errors import AuthorizationError, ValidationError
from .models import IssueStatus, UserRole
from .schemas import Identity

logger = logging.getLogger("civic-core.state_machine")


class StateTransitionError(ValidationError):
    """Raised when a requested status is not a reachable issue status."""

    def __init__(
        self,
        message: str,
        current_status: IssueStatus,
        requested_status: str,
        allowed_transitions: list[IssueStatus]
    ):
        super().__init__(message, field="status")
        self.current_status = current_status
        self.requested_status = requested_status
        self.allowed_transitions = allowed_transitions


# State machine transition matrix
# Maps current status → list of allowed next statuses
TRANSITION_MATRIX: dict[IssueStatus, list[IssueStatus]] = {
    IssueStatus.PENDING: [
        IssueStatus.PENDING,       # No-op (allowed)
        IssueStatus.IN_PROGRESS,   # Forward: work started
        IssueStatus.RESOLVED,      # Forward: fixed without a work phase
    ],
    IssueStatus.IN_PROGRESS: [
        IssueStatus.IN_PROGRESS,   # No-op (allowed)
        IssueStatus.PENDING,       # Back: returned to the queue
        IssueStatus.RESOLVED,      # Forward: fixed
    ],
    IssueStatus.RESOLVED: [
        IssueStatus.RESOLVED,      # No-op (allowed)
        IssueStatus.PENDING,       # Back: reopened, needs triage
        IssueStatus.IN_PROGRESS,   # Back: fix did not hold
    ],
}

_missing = set(IssueStatus) - set(TRANSITION_MATRIX)
if _missing:
    raise RuntimeError(f"Transition matrix is missing statuses: {sorted(s.value for s in _missing)}")


def parse_status(value: Union[str, IssueStatus], current_status: Optional[IssueStatus] = None) -> IssueStatus:
    """
    Coerce a requested status into the closed IssueStatus set.

    Args:
        value: Requested status (enum member or its string value)
        current_status: Current status, used only for the error message

    Returns:
        The matching IssueStatus

    Raises:
        StateTransitionError: If the value is outside the three defined statuses
    """
    if isinstance(value, IssueStatus):
        return value
    try:
        return IssueStatus(value)
    except ValueError:
        valid = ", ".join(s.value for s in IssueStatus)
        error_msg = f"Invalid status '{value}'. Status must be one of: {valid}."
        logger.warning(f"Rejected status value: {error_msg}")
        raise StateTransitionError(
            message=error_msg,
            current_status=current_status,
            requested_status=str(value),
            allowed_transitions=get_allowed_transitions(current_status) if current_status else list(IssueStatus),
        )


def is_transition_valid(current_status: IssueStatus, new_status: IssueStatus) -> bool:
    """Check if a status transition is valid."""
    return new_status in TRANSITION_MATRIX.get(current_status, [])


def get_allowed_transitions(current_status: IssueStatus) -> list[IssueStatus]:
    """
    Get list of allowed transitions from current status.

    Args:
        current_status: Current lifecycle status

    Returns:
        List of allowed next statuses (excluding no-op same status)
    """
    return [s for s in TRANSITION_MATRIX.get(current_status, []) if s != current_status]


def is_terminal_status(status: IssueStatus) -> bool:
    """Resolved is terminal for display and SLA purposes; it can still be reopened."""
    return status == IssueStatus.RESOLVED


def authorize_transition(actor: Identity, assignee_id: Optional[UUID]) -> None:
    """
    Check that the actor may change the status of an issue.

    Args:
        actor: Identity of the user requesting the transition
        assignee_id: Current assignee of the issue (None if unassigned)

    Raises:
        AuthorizationError: If the actor is a citizen, or staff that is neither
            the assignee nor an officer with administrative scope
    """
    if actor.role == UserRole.CITIZEN:
        logger.warning(f"Blocked transition by citizen {actor.id}")
        raise AuthorizationError("Citizens cannot change issue status.")

    if actor.has_admin_scope:
        return

    if assignee_id is None or assignee_id != actor.id:
        logger.warning(f"Blocked transition by {actor.role.value} {actor.id}: not the assignee")
        raise AuthorizationError(
            "Only the assigned worker or officer, or an administrator, can change the status of this issue."
        )


def validate_transition(
    current_status: IssueStatus,
    requested_status: Union[str, IssueStatus],
) -> IssueStatus:
    """
    Validate a requested status change.

    The matrix links every status to every other, so the only failure is a
    status outside the closed set. Who may make the change is checked
    separately by authorize_transition, which callers run first.

    Args:
        current_status: Current lifecycle status
        requested_status: Requested new status

    Returns:
        The parsed target status

    Raises:
        StateTransitionError: If the requested status is invalid
    """
    new_status = parse_status(requested_status, current_status)

    if current_status == new_status:
        logger.debug(f"No-op transition: {current_status.value} → {new_status.value}")
    else:
        logger.debug(f"Valid transition: {current_status.value} → {new_status.value}")
    return new_status


def status_after_assignment(current_status: IssueStatus) -> IssueStatus:
    """Assigning a pending issue starts work on it; other statuses are kept."""
    if current_status == IssueStatus.PENDING:
        return IssueStatus.IN_PROGRESS
    return current_status


# Status sort order for list queries
# Lower number = higher priority (shown first)
STATUS_SORT_ORDER: dict[IssueStatus, int] = {
    IssueStatus.IN_PROGRESS: 1,   # Actively worked on
    IssueStatus.PENDING: 2,       # Waiting for triage
    IssueStatus.RESOLVED: 3,      # Done
}
