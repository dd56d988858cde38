"""Role-scoped filter predicates shared by queries, feed subscriptions and caches.

A dashboard must see exactly the same set of issues whether they came from the
initial query or from the live feed. Both paths therefore use one
``RowFilter`` object: ``apply`` turns it into a SQL WHERE clause and
``matches`` evaluates it against a feed row.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional
from uuid import UUID

from sqlalchemy import case
from sqlalchemy.orm import Query

from .errors import AuthorizationError
from .models import Issue, UserRole
from .schemas import Identity
from .state_machine import STATUS_SORT_ORDER

logger = logging.getLogger("civic-core.filters")


@dataclass(frozen=True)
class RowFilter:
    """Equality predicate on one column, or no predicate at all."""

    field: Optional[str] = None
    value: Optional[UUID] = None

    @property
    def is_unfiltered(self) -> bool:
        return self.field is None

    def matches(self, row: Mapping[str, Any]) -> bool:
        """Evaluate the predicate against a row (JSON or native values)."""
        if self.field is None:
            return True
        if row is None:
            return False
        candidate = row.get(self.field)
        if candidate is None:
            return False
        return str(candidate) == str(self.value)

    def apply(self, query: Query, model) -> Query:
        """Add the predicate to a SQLAlchemy query on ``model``."""
        if self.field is None:
            return query
        return query.filter(getattr(model, self.field) == self.value)

    def describe(self) -> str:
        if self.field is None:
            return "all rows"
        return f"{self.field}=eq.{self.value}"


ALL_ROWS = RowFilter()


def for_identity(identity: Identity, admin_view: bool = False) -> RowFilter:
    """
    Build the dashboard predicate for a user.

    Args:
        identity: The viewing user
        admin_view: Request the unfiltered administrative view

    Returns:
        citizen → reported_by == self; worker/officer → assigned_to == self;
        admin view → no filter

    Raises:
        AuthorizationError: If the administrative view is requested without admin scope
    """
    if admin_view:
        if not identity.has_admin_scope:
            logger.warning(f"Blocked admin view for {identity.role.value} {identity.id}")
            raise AuthorizationError("The all-issues view is limited to administrators.")
        return ALL_ROWS
    if identity.role == UserRole.CITIZEN:
        return RowFilter(field="reported_by", value=identity.id)
    return RowFilter(field="assigned_to", value=identity.id)


def for_issue(issue_id: UUID) -> RowFilter:
    """Predicate for the update trail of one issue."""
    return RowFilter(field="issue_id", value=issue_id)


class IssueOrder(str, enum.Enum):
    """Supported list orderings."""

    NEWEST = "newest"          # reported_at descending (default, matches feed prepend)
    SLA_DEADLINE = "sla"       # earliest deadline first, no deadline last
    STATUS = "status"          # in_progress, pending, resolved


def _status_sort_expression():
    """CASE expression mapping status to STATUS_SORT_ORDER."""
    return case(
        *[(Issue.status == status, order) for status, order in STATUS_SORT_ORDER.items()],
        else_=99
    )


def order_issues(query: Query, order: IssueOrder = IssueOrder.NEWEST) -> Query:
    """Apply an IssueOrder to an issue query."""
    if order == IssueOrder.SLA_DEADLINE:
        return query.order_by(Issue.sla_deadline.is_(None), Issue.sla_deadline.asc(), Issue.reported_at.desc())
    if order == IssueOrder.STATUS:
        return query.order_by(_status_sort_expression(), Issue.reported_at.desc())
    return query.order_by(Issue.reported_at.desc())
