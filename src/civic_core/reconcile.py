"""Reconciliation of locally cached projections against change-feed events.

Every dashboard, whatever the role, keeps its issues in an ``IssueCache`` and
the focused issue's progress notes in an ``UpdateTrail``. Both apply feed
events idempotently: replaying an event leaves the cache exactly as applying
it once did. Feed data always wins over anything applied locally.
"""
import bisect
import logging
from typing import Iterable, Optional
from uuid import UUID

from .feed import FeedEvent, FeedEventKind
from .filters import RowFilter, ALL_ROWS
from .schemas import IssueRecord, IssueUpdateRecord

logger = logging.getLogger("civic-core.reconcile")


class IssueCache:
    """Ordered issues keyed by id, most recent first."""

    def __init__(self, predicate: RowFilter = ALL_ROWS, records: Iterable[IssueRecord] = ()):
        self.predicate = predicate
        self._items: list[IssueRecord] = []
        self.replace_all(records)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, issue_id: UUID) -> bool:
        return self._position(issue_id) is not None

    @property
    def items(self) -> list[IssueRecord]:
        return list(self._items)

    def ids(self) -> list[UUID]:
        return [item.id for item in self._items]

    def get(self, issue_id: UUID) -> Optional[IssueRecord]:
        position = self._position(issue_id)
        return self._items[position] if position is not None else None

    def _position(self, issue_id) -> Optional[int]:
        key = str(issue_id)
        for index, item in enumerate(self._items):
            if str(item.id) == key:
                return index
        return None

    def replace_all(self, records: Iterable[IssueRecord]) -> None:
        """Rebuild from a query result, keeping its order and dropping duplicate ids."""
        seen: set[UUID] = set()
        items = []
        for record in records:
            if record.id in seen:
                continue
            seen.add(record.id)
            items.append(record)
        self._items = items

    def upsert(self, record: IssueRecord) -> bool:
        """Replace a record by id, prepending it if absent.

        Serves both feed inserts (guarded against duplicates) and feed updates
        (defensively inserted when unknown).
        """
        position = self._position(record.id)
        if position is None:
            self._items.insert(0, record)
            return True
        if self._items[position] == record:
            return False
        self._items[position] = record
        return True

    def remove(self, issue_id) -> bool:
        position = self._position(issue_id)
        if position is None:
            return False
        del self._items[position]
        return True

    def apply(self, event: FeedEvent) -> bool:
        """
        Apply one feed event.

        - insert: prepend (replace in place if already present)
        - update: replace by id (prepend if absent)
        - delete: remove by id (no-op if absent)
        - a row that no longer matches this cache's predicate is removed

        Returns:
            True if the cache changed
        """
        if event.kind == FeedEventKind.DELETE:
            changed = self.remove(event.row_id)
            logger.debug(f"Reconciled delete {event.row_id}: changed={changed}")
            return changed

        record = IssueRecord.model_validate(event.row)
        if not self.predicate.matches(event.row):
            changed = self.remove(record.id)
            logger.debug(f"Reconciled {event.kind.value} {record.id} out of scope: changed={changed}")
            return changed

        changed = self.upsert(record)
        logger.debug(f"Reconciled {event.kind.value} {record.id}: changed={changed}")
        return changed


class UpdateTrail:
    """Append-only progress notes for one issue, oldest first, unique by id."""

    def __init__(self, issue_id: UUID, records: Iterable[IssueUpdateRecord] = ()):
        self.issue_id = issue_id
        self._items: list[IssueUpdateRecord] = []
        self._ids: set[UUID] = set()
        for record in records:
            self.append(record)

    def __len__(self) -> int:
        return len(self._items)

    @property
    def items(self) -> list[IssueUpdateRecord]:
        return list(self._items)

    def append(self, record: IssueUpdateRecord) -> bool:
        """Insert in created_at order; a record whose id is already present is ignored."""
        if record.issue_id != self.issue_id:
            return False
        if record.id in self._ids:
            return False
        keys = [item.created_at for item in self._items]
        self._items.insert(bisect.bisect_right(keys, record.created_at), record)
        self._ids.add(record.id)
        return True

    def apply(self, event: FeedEvent) -> bool:
        """Apply an issue_updates event. Only inserts exist for progress notes."""
        if event.kind != FeedEventKind.INSERT:
            logger.debug(f"Ignored {event.kind.value} on append-only update trail {self.issue_id}")
            return False
        return self.append(IssueUpdateRecord.model_validate(event.row))
