"""Issue Store: the system of record for issues, progress notes and history.

The store owns persistence and nothing else. Every committed mutation is
published to the change feed (when one is attached), the way a database
replication stream would, so subscribers hear about writes no matter which
client made them.
"""
import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Protocol
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload, sessionmaker

from . import models
from .errors import IssueNotFoundError, StoreError
from .feed import ChangeFeed, FeedEventKind, ISSUES_TOPIC, ISSUE_UPDATES_TOPIC
from .filters import IssueOrder, RowFilter, order_issues
from .schemas import IssueHistoryRecord, IssueRecord, IssueUpdateRecord

logger = logging.getLogger("civic-core.store")

# Columns the lifecycle core is allowed to change after creation
MUTABLE_FIELDS = frozenset({"status", "assigned_to"})


class IssueStore(Protocol):
    """Contract the lifecycle core expects from the store."""

    def query(self, predicate: RowFilter, order_by: IssueOrder = IssueOrder.NEWEST) -> list[IssueRecord]: ...

    def get(self, issue_id: UUID) -> Optional[IssueRecord]: ...

    def insert(self, values: dict[str, Any], changed_by: Optional[UUID] = None) -> IssueRecord: ...

    def update(self, issue_id: UUID, fields: dict[str, Any], changed_by: Optional[UUID] = None) -> IssueRecord: ...

    def insert_update(self, issue_id: UUID, user_id: UUID, message: str) -> IssueUpdateRecord: ...

    def list_updates(self, issue_id: UUID) -> list[IssueUpdateRecord]: ...

    def list_history(self, issue_id: UUID, limit: int = 50) -> list[IssueHistoryRecord]: ...


def issue_to_record(issue: models.Issue) -> IssueRecord:
    """Convert an Issue row (inside its session) to an IssueRecord."""
    return IssueRecord(
        id=issue.id,
        title=issue.title,
        description=issue.description,
        category=issue.category,
        priority=issue.priority,
        status=issue.status,
        location=issue.location,
        latitude=issue.latitude,
        longitude=issue.longitude,
        images=list(issue.images or []),
        reported_by=issue.reported_by,
        assigned_to=issue.assigned_to,
        reporter_name=issue.reporter.full_name if issue.reporter else None,
        assignee_name=issue.assignee.full_name if issue.assignee else None,
        reported_at=issue.reported_at,
        updated_at=issue.updated_at,
        sla_deadline=issue.sla_deadline,
    )


def update_to_record(update: models.IssueUpdate) -> IssueUpdateRecord:
    """Convert an IssueUpdate row (inside its session) to an IssueUpdateRecord."""
    return IssueUpdateRecord(
        id=update.id,
        issue_id=update.issue_id,
        user_id=update.user_id,
        author_name=update.user.full_name if update.user else None,
        message=update.message,
        created_at=update.created_at,
    )


class SqlIssueStore:
    """SQLAlchemy implementation of IssueStore.

    Opens one short-lived session per operation so it can be called from
    worker threads. Concurrent writers to the same issue are last-write-wins.
    """

    def __init__(self, session_factory: sessionmaker, feed: Optional[ChangeFeed] = None):
        self._session_factory = session_factory
        self._feed = feed

    @contextmanager
    def _session(self, action: str) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        except SQLAlchemyError as e:
            db.rollback()
            detail = getattr(e, "orig", None) or e
            logger.error(f"Store failure while trying to {action}: {detail}")
            raise StoreError(f"Could not {action}: {detail}") from e
        finally:
            db.close()

    def _publish(self, topic: str, kind: FeedEventKind, row: dict, old: Optional[dict] = None) -> None:
        if self._feed is not None:
            self._feed.publish(topic, kind, row, old)

    @staticmethod
    def _issue_query(db: Session):
        return db.query(models.Issue).options(
            joinedload(models.Issue.reporter),
            joinedload(models.Issue.assignee),
        )

    def query(self, predicate: RowFilter, order_by: IssueOrder = IssueOrder.NEWEST) -> list[IssueRecord]:
        """
        Query issues matching a role predicate.

        Args:
            predicate: Same RowFilter the caller subscribes to the feed with
            order_by: List ordering

        Returns:
            Ordered list of IssueRecord
        """
        with self._session("load issues") as db:
            query = predicate.apply(self._issue_query(db), models.Issue)
            issues = order_issues(query, order_by).all()
            return [issue_to_record(issue) for issue in issues]

    def get(self, issue_id: UUID) -> Optional[IssueRecord]:
        with self._session("load issue") as db:
            issue = self._issue_query(db).filter(models.Issue.id == issue_id).first()
            return issue_to_record(issue) if issue else None

    def insert(self, values: dict[str, Any], changed_by: Optional[UUID] = None) -> IssueRecord:
        """
        Persist a new issue and publish an insert event.

        Args:
            values: Column values for the new issue
            changed_by: User recorded on the history entry

        Returns:
            The stored IssueRecord
        """
        with self._session("create issue") as db:
            issue = models.Issue(**values)
            db.add(issue)
            db.flush()

            db.add(models.IssueHistory(
                issue_id=issue.id,
                change_type=models.IssueChangeType.CREATED,
                new_value=f"{issue.category}: {issue.title}",
                changed_by=changed_by,
            ))
            db.commit()

            issue = self._issue_query(db).filter(models.Issue.id == issue.id).one()
            record = issue_to_record(issue)

        logger.info(f"Created issue {record.id}: {record.title}")
        self._publish(ISSUES_TOPIC, FeedEventKind.INSERT, record.model_dump(mode="json"))
        return record

    def update(self, issue_id: UUID, fields: dict[str, Any], changed_by: Optional[UUID] = None) -> IssueRecord:
        """
        Apply a partial update and publish an update event.

        No version check is made: concurrent writers are last-write-wins.

        Args:
            issue_id: Issue UUID
            fields: Subset of MUTABLE_FIELDS with their new values
            changed_by: User recorded on the history entries

        Returns:
            The updated IssueRecord

        Raises:
            IssueNotFoundError: If the issue does not exist
            ValueError: If a field outside MUTABLE_FIELDS is given
        """
        unknown = set(fields) - MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        with self._session("update issue") as db:
            issue = self._issue_query(db).filter(models.Issue.id == issue_id).first()
            if not issue:
                raise IssueNotFoundError(issue_id)

            old = issue_to_record(issue)

            if "assigned_to" in fields and fields["assigned_to"] != issue.assigned_to:
                change_type = (
                    models.IssueChangeType.REASSIGNED if issue.assigned_to else models.IssueChangeType.ASSIGNED
                )
                db.add(models.IssueHistory(
                    issue_id=issue.id,
                    change_type=change_type,
                    field_name="assigned_to",
                    old_value=str(issue.assigned_to) if issue.assigned_to else None,
                    new_value=str(fields["assigned_to"]) if fields["assigned_to"] else None,
                    changed_by=changed_by,
                ))
                issue.assigned_to = fields["assigned_to"]

            if "status" in fields and fields["status"] != issue.status:
                db.add(models.IssueHistory(
                    issue_id=issue.id,
                    change_type=models.IssueChangeType.STATUS_CHANGED,
                    field_name="status",
                    old_value=issue.status.value,
                    new_value=fields["status"].value,
                    changed_by=changed_by,
                ))
                issue.status = fields["status"]

            issue.updated_at = models.utcnow()
            db.commit()

            db.expire_all()
            issue = self._issue_query(db).filter(models.Issue.id == issue_id).one()
            record = issue_to_record(issue)

        logger.info(f"Updated issue {issue_id}: {', '.join(f'{k}={v}' for k, v in fields.items())}")
        self._publish(
            ISSUES_TOPIC,
            FeedEventKind.UPDATE,
            record.model_dump(mode="json"),
            old.model_dump(mode="json"),
        )
        return record

    def insert_update(self, issue_id: UUID, user_id: UUID, message: str) -> IssueUpdateRecord:
        """Append a progress note and publish an insert event on the update trail."""
        with self._session("add update") as db:
            if not db.query(models.Issue.id).filter(models.Issue.id == issue_id).first():
                raise IssueNotFoundError(issue_id)

            update = models.IssueUpdate(issue_id=issue_id, user_id=user_id, message=message)
            db.add(update)
            db.commit()

            update = (
                db.query(models.IssueUpdate)
                .options(joinedload(models.IssueUpdate.user))
                .filter(models.IssueUpdate.id == update.id)
                .one()
            )
            record = update_to_record(update)

        logger.info(f"Added update {record.id} to issue {issue_id}")
        self._publish(ISSUE_UPDATES_TOPIC, FeedEventKind.INSERT, record.model_dump(mode="json"))
        return record

    def list_updates(self, issue_id: UUID) -> list[IssueUpdateRecord]:
        """Progress notes for an issue, oldest first."""
        with self._session("load updates") as db:
            updates = (
                db.query(models.IssueUpdate)
                .options(joinedload(models.IssueUpdate.user))
                .filter(models.IssueUpdate.issue_id == issue_id)
                .order_by(models.IssueUpdate.created_at.asc())
                .all()
            )
            return [update_to_record(u) for u in updates]

    def list_history(self, issue_id: UUID, limit: int = 50) -> list[IssueHistoryRecord]:
        """History entries for an issue, newest first."""
        with self._session("load history") as db:
            history = (
                db.query(models.IssueHistory)
                .filter(models.IssueHistory.issue_id == issue_id)
                .order_by(models.IssueHistory.changed_at.desc())
                .limit(limit)
                .all()
            )
            return [IssueHistoryRecord.model_validate(h) for h in history]
