"""Presentation lookup tables for statuses, priorities, categories and SLAs.

Each table is keyed by a closed enum and checked for completeness at import
time, so a new status or priority cannot silently fall through to a default.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from .models import IssuePriority, IssueStatus, utcnow
from .schemas import DashboardStats, IssueRecord
from .state_machine import is_terminal_status


@dataclass(frozen=True)
class StatusDisplay:
    label: str
    icon: str
    color: str


@dataclass(frozen=True)
class PriorityDisplay:
    label: str
    color: str
    description: str


@dataclass(frozen=True)
class CategoryDisplay:
    label: str
    color: str


STATUS_DISPLAY: dict[IssueStatus, StatusDisplay] = {
    IssueStatus.PENDING: StatusDisplay("Pending", "alert-circle", "bg-red-100 text-red-800"),
    IssueStatus.IN_PROGRESS: StatusDisplay("In progress", "clock", "bg-yellow-100 text-yellow-800"),
    IssueStatus.RESOLVED: StatusDisplay("Resolved", "check-circle", "bg-green-100 text-green-800"),
}

PRIORITY_DISPLAY: dict[IssuePriority, PriorityDisplay] = {
    IssuePriority.LOW: PriorityDisplay("Low", "bg-green-100 text-green-800", "Non-urgent, can wait"),
    IssuePriority.MEDIUM: PriorityDisplay("Medium", "bg-yellow-100 text-yellow-800", "Moderate urgency"),
    IssuePriority.HIGH: PriorityDisplay("High", "bg-red-100 text-red-800", "Urgent attention needed"),
    IssuePriority.CRITICAL: PriorityDisplay("Critical", "bg-red-600 text-white", "Emergency situation"),
}

# Categories are open-ended; unknown ones use OTHER_CATEGORY
CATEGORY_DISPLAY: dict[str, CategoryDisplay] = {
    "roads": CategoryDisplay("Roads & Infrastructure", "bg-blue-100 text-blue-800"),
    "lighting": CategoryDisplay("Street Lighting", "bg-yellow-100 text-yellow-800"),
    "waste": CategoryDisplay("Waste Management", "bg-green-100 text-green-800"),
    "vandalism": CategoryDisplay("Vandalism", "bg-red-100 text-red-800"),
    "noise": CategoryDisplay("Noise Complaints", "bg-purple-100 text-purple-800"),
    "water": CategoryDisplay("Water & Sewage", "bg-cyan-100 text-cyan-800"),
    "parks": CategoryDisplay("Parks & Recreation", "bg-emerald-100 text-emerald-800"),
    "other": CategoryDisplay("Other", "bg-gray-100 text-gray-800"),
}
OTHER_CATEGORY = CATEGORY_DISPLAY["other"]

for _table, _enum in ((STATUS_DISPLAY, IssueStatus), (PRIORITY_DISPLAY, IssuePriority)):
    _missing = set(_enum) - set(_table)
    if _missing:
        raise RuntimeError(f"{_enum.__name__} display table is missing: {sorted(m.value for m in _missing)}")


SLA_DUE_SOON = timedelta(hours=24)


@dataclass(frozen=True)
class SlaStatus:
    text: str
    color: str


NO_SLA = SlaStatus("No SLA", "bg-gray-100 text-gray-800")
OVERDUE = SlaStatus("Overdue", "bg-red-100 text-red-800")
DUE_SOON = SlaStatus("Due Soon", "bg-orange-100 text-orange-800")
ON_TIME = SlaStatus("On Time", "bg-green-100 text-green-800")


def status_display(status: IssueStatus) -> StatusDisplay:
    return STATUS_DISPLAY[IssueStatus(status)]


def priority_display(priority: IssuePriority) -> PriorityDisplay:
    return PRIORITY_DISPLAY[IssuePriority(priority)]


def category_display(category: Optional[str]) -> CategoryDisplay:
    return CATEGORY_DISPLAY.get((category or "").lower(), OTHER_CATEGORY)


def sla_status(deadline: Optional[datetime], now: Optional[datetime] = None) -> SlaStatus:
    """Classify an SLA deadline as No SLA, Overdue, Due Soon (< 24h) or On Time."""
    if deadline is None:
        return NO_SLA
    remaining = deadline - (now or utcnow())
    if remaining < timedelta(0):
        return OVERDUE
    if remaining < SLA_DUE_SOON:
        return DUE_SOON
    return ON_TIME


def is_overdue(issue: IssueRecord, now: Optional[datetime] = None) -> bool:
    """Past its deadline and not resolved."""
    if issue.sla_deadline is None or is_terminal_status(issue.status):
        return False
    return issue.sla_deadline < (now or utcnow())


def compute_stats(issues: Iterable[IssueRecord], now: Optional[datetime] = None) -> DashboardStats:
    """Dashboard counters for a list of issues."""
    now = now or utcnow()
    stats = DashboardStats()
    for issue in issues:
        stats.total += 1
        if issue.status == IssueStatus.PENDING:
            stats.pending += 1
        elif issue.status == IssueStatus.IN_PROGRESS:
            stats.in_progress += 1
        elif issue.status == IssueStatus.RESOLVED:
            stats.resolved += 1
        if is_overdue(issue, now):
            stats.overdue += 1
    return stats
