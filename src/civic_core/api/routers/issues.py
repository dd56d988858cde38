"""Issues API router.

Lifecycle: pending -> in_progress -> resolved, with any move between the three
allowed for the assignee or an administrator. Citizens report issues and
follow their progress; they never change status.
"""
import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from ...display import compute_stats
from ...errors import LifecycleError
from ...filters import IssueOrder
from ...lifecycle import IssueLifecycle
from ...schemas import (
    Identity,
    IssueAssign,
    IssueCreate,
    IssueHistoryRecord,
    IssueListResponse,
    IssueRecord,
    IssueTransition,
    IssueUpdateCreate,
    IssueUpdateRecord,
    SubmissionResponse,
)
from ...state_machine import get_allowed_transitions
from ..dependencies import get_current_identity, get_lifecycle, http_error

logger = logging.getLogger("civic-core.issues")

router = APIRouter(prefix="/issues", tags=["issues"])


@router.post("/", response_model=SubmissionResponse, status_code=status.HTTP_201_CREATED)
def submit_issue(
    data: IssueCreate,
    current_user: Identity = Depends(get_current_identity),
    lifecycle: IssueLifecycle = Depends(get_lifecycle),
):
    """Report a new issue. Failed image uploads are listed but do not block the report."""
    try:
        return lifecycle.submit_issue(current_user, data)
    except LifecycleError as e:
        raise http_error(e)


@router.get("/", response_model=IssueListResponse)
def list_issues(
    scope: str = Query("mine", pattern="^(mine|all)$", description="'all' requires admin scope"),
    order_by: IssueOrder = IssueOrder.NEWEST,
    current_user: Identity = Depends(get_current_identity),
    lifecycle: IssueLifecycle = Depends(get_lifecycle),
):
    """
    Role-scoped issue list with dashboard counters.

    Citizens see what they reported; workers and officers see what is
    assigned to them; administrators may ask for every issue.
    """
    try:
        items = lifecycle.list_issues(current_user, admin_view=(scope == "all"), order_by=order_by)
    except LifecycleError as e:
        raise http_error(e)
    return IssueListResponse(items=items, total=len(items), stats=compute_stats(items))


@router.get("/{issue_id}", response_model=IssueRecord)
def get_issue(
    issue_id: UUID,
    current_user: Identity = Depends(get_current_identity),
    lifecycle: IssueLifecycle = Depends(get_lifecycle),
):
    try:
        return lifecycle.get_issue(issue_id, current_user)
    except LifecycleError as e:
        raise http_error(e)


@router.post("/{issue_id}/transition", response_model=IssueRecord)
def transition_issue(
    issue_id: UUID,
    data: IssueTransition,
    current_user: Identity = Depends(get_current_identity),
    lifecycle: IssueLifecycle = Depends(get_lifecycle),
):
    """Transition an issue to a new status."""
    try:
        return lifecycle.transition(issue_id, data.new_status, current_user)
    except LifecycleError as e:
        raise http_error(e)


@router.post("/{issue_id}/assign", response_model=IssueRecord)
def assign_issue(
    issue_id: UUID,
    data: IssueAssign,
    current_user: Identity = Depends(get_current_identity),
    lifecycle: IssueLifecycle = Depends(get_lifecycle),
):
    """Assign an issue to a worker or officer (officers only). Pending issues start progress."""
    try:
        return lifecycle.assign(issue_id, data.assignee_id, current_user)
    except LifecycleError as e:
        raise http_error(e)


@router.get("/{issue_id}/transitions")
def get_issue_transitions(
    issue_id: UUID,
    current_user: Identity = Depends(get_current_identity),
    lifecycle: IssueLifecycle = Depends(get_lifecycle),
):
    """Statuses the issue can move to from its current status."""
    try:
        issue = lifecycle.get_issue(issue_id, current_user)
    except LifecycleError as e:
        raise http_error(e)
    return {
        "current_status": issue.status.value,
        "allowed_transitions": [s.value for s in get_allowed_transitions(issue.status)],
    }


@router.get("/{issue_id}/updates", response_model=list[IssueUpdateRecord])
def list_issue_updates(
    issue_id: UUID,
    current_user: Identity = Depends(get_current_identity),
    lifecycle: IssueLifecycle = Depends(get_lifecycle),
):
    """Progress notes, oldest first."""
    try:
        return lifecycle.list_updates(issue_id, current_user)
    except LifecycleError as e:
        raise http_error(e)


@router.post("/{issue_id}/updates", response_model=IssueUpdateRecord, status_code=status.HTTP_201_CREATED)
def add_issue_update(
    issue_id: UUID,
    data: IssueUpdateCreate,
    current_user: Identity = Depends(get_current_identity),
    lifecycle: IssueLifecycle = Depends(get_lifecycle),
):
    try:
        return lifecycle.add_update(issue_id, current_user, data.message)
    except LifecycleError as e:
        raise http_error(e)


@router.get("/{issue_id}/history", response_model=list[IssueHistoryRecord])
def get_issue_history(
    issue_id: UUID,
    limit: int = Query(50, ge=1, le=500),
    current_user: Identity = Depends(get_current_identity),
    lifecycle: IssueLifecycle = Depends(get_lifecycle),
):
    """Audit trail of creation, status changes and (re)assignments, newest first."""
    try:
        return lifecycle.list_history(issue_id, current_user, limit)
    except LifecycleError as e:
        raise http_error(e)
