"""Role-specific live dashboard projections.

A ``DashboardProjection`` is one client session's view: the role-scoped issue
list, the focused issue's progress notes, loading state and user-facing
notices. It is a single-threaded asyncio actor. Store calls are awaited in
worker threads, feed callbacks are delivered on the projection's own loop,
and nothing here is shared with other projections except through the feed.

Usage::

    async with DashboardProjection(lifecycle, feed, viewer) as dashboard:
        await dashboard.focus(dashboard.issues[0].id)
        await dashboard.add_update("Crew dispatched")
"""
import asyncio
import enum
import logging
from dataclasses import dataclass, field as dataclass_field
from typing import Any, Callable, Iterable, Optional, Union
from uuid import UUID, uuid4

from .display import compute_stats
from .errors import AuthorizationError, FeedError, LifecycleError, StoreError, ValidationError
from .feed import ChangeFeed, FeedEvent, Subscription, ISSUES_TOPIC, ISSUE_UPDATES_TOPIC
from .filters import IssueOrder, RowFilter, for_identity, for_issue
from .lifecycle import IssueLifecycle
from .models import IssueStatus
from .reconcile import IssueCache, UpdateTrail
from .schemas import (
    Attachment,
    DashboardStats,
    Identity,
    IssueCreate,
    IssueRecord,
    IssueUpdateRecord,
    SubmissionResponse,
)
from .state_machine import parse_status

logger = logging.getLogger("civic-core.dashboard")


class NoticeKind(str, enum.Enum):
    """How a failure is surfaced to the user."""

    VALIDATION = "validation"        # inline field feedback
    AUTHORIZATION = "authorization"  # blocking message
    STORE = "store"                  # dismissible notification
    FEED = "feed"                    # connection lost, resyncing


@dataclass
class Notice:
    kind: NoticeKind
    message: str
    field: Optional[str] = None
    id: UUID = dataclass_field(default_factory=uuid4)

    @property
    def blocking(self) -> bool:
        return self.kind == NoticeKind.AUTHORIZATION


_NOTICE_KINDS: list[tuple[type, NoticeKind]] = [
    (ValidationError, NoticeKind.VALIDATION),
    (AuthorizationError, NoticeKind.AUTHORIZATION),
    (FeedError, NoticeKind.FEED),
    (StoreError, NoticeKind.STORE),
]


class DashboardProjection:
    """Live, role-scoped projection of issues for one viewer."""

    def __init__(
        self,
        lifecycle: IssueLifecycle,
        feed: ChangeFeed,
        viewer: Identity,
        admin_view: bool = False,
        order_by: IssueOrder = IssueOrder.NEWEST,
    ):
        self.lifecycle = lifecycle
        self.feed = feed
        self.viewer = viewer
        self.order_by = order_by
        self.admin_view = admin_view
        # Raises AuthorizationError immediately for a non-admin asking for all issues
        self.predicate: RowFilter = for_identity(viewer, admin_view)

        self.loading = False
        self.notices: list[Notice] = []

        self._cache = IssueCache(self.predicate)
        self._buffer: list[FeedEvent] = []
        self._refresh_generation = 0
        self._applied_generation = 0
        self._refreshes_in_flight = 0
        self._issue_subscription: Optional[Subscription] = None

        self._trail: Optional[UpdateTrail] = None
        self._updates_subscription: Optional[Subscription] = None

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._resync_task: Optional[asyncio.Task] = None
        self._closed = False

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def issues(self) -> list[IssueRecord]:
        return self._cache.items

    @property
    def updates(self) -> list[IssueUpdateRecord]:
        return self._trail.items if self._trail else []

    @property
    def focused_issue_id(self) -> Optional[UUID]:
        return self._trail.issue_id if self._trail else None

    @property
    def focused_issue(self) -> Optional[IssueRecord]:
        return self._cache.get(self._trail.issue_id) if self._trail else None

    @property
    def pending_resync(self) -> Optional[asyncio.Task]:
        """Resync scheduled after a feed drop, if any."""
        return self._resync_task

    def get(self, issue_id: UUID) -> Optional[IssueRecord]:
        return self._cache.get(issue_id)

    def stats(self) -> DashboardStats:
        return compute_stats(self._cache.items)

    def dismiss(self, notice: Notice) -> None:
        self.notices = [n for n in self.notices if n.id != notice.id]

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    async def __aenter__(self) -> "DashboardProjection":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def open(self) -> None:
        """Subscribe to the issue feed, then load the initial snapshot."""
        self._loop = asyncio.get_running_loop()
        self._closed = False
        try:
            self._subscribe_issues()
            await self.refresh()
        except BaseException:
            await self.close()
            raise

    async def close(self) -> None:
        """Release every subscription. Safe to call more than once."""
        self._closed = True
        if self._issue_subscription is not None:
            self.feed.unsubscribe(self._issue_subscription)
            self._issue_subscription = None
        if self._updates_subscription is not None:
            self.feed.unsubscribe(self._updates_subscription)
            self._updates_subscription = None
        task = self._resync_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._buffer.clear()
        logger.debug(f"Dashboard for {self.viewer.id} closed")

    def _subscribe_issues(self) -> None:
        self._issue_subscription = self.feed.subscribe(
            ISSUES_TOPIC,
            self.predicate,
            self._on_issue_event,
            on_error=self._on_feed_error,
            loop=self._loop,
        )

    async def refresh(self) -> bool:
        """
        Re-query the store and rebuild the cache.

        Feed events keep being applied while queries are in flight, and are
        also buffered until the last of them finishes. A snapshot is only
        applied if no newer one already was, and the buffer is replayed over
        it, so nothing committed between a query and its result is lost.
        Replaying in commit order leaves each row at its latest event.

        Returns:
            True on success, False if the store failed (a notice is added)
        """
        self._refresh_generation += 1
        generation = self._refresh_generation
        self._refreshes_in_flight += 1
        self.loading = True
        try:
            records = await self._call(self.lifecycle.list_issues, self.viewer, self.admin_view, self.order_by)
        except LifecycleError as e:
            self._notify(e)
            return False
        else:
            self._apply_snapshot(generation, records)
            return True
        finally:
            self._refreshes_in_flight -= 1
            if self._refreshes_in_flight == 0:
                self.loading = False
                self._buffer.clear()

    def _apply_snapshot(self, generation: int, records: list[IssueRecord]) -> None:
        if generation < self._applied_generation:
            logger.debug(f"Dashboard for {self.viewer.id} discarded stale snapshot {generation}")
            return
        self._applied_generation = generation
        self._cache.replace_all(records)
        for event in self._buffer:
            self._cache.apply(event)
        logger.debug(f"Dashboard for {self.viewer.id} loaded {len(self._cache)} issues ({len(self._buffer)} replayed)")

    async def resync(self) -> bool:
        """Resubscribe with the same predicate and reload everything."""
        if self._closed:
            return False
        if self._issue_subscription is not None:
            self.feed.unsubscribe(self._issue_subscription)
        self._subscribe_issues()
        refreshed = await self.refresh()

        if self._trail is not None:
            issue_id = self._trail.issue_id
            if self._updates_subscription is not None:
                self.feed.unsubscribe(self._updates_subscription)
                self._updates_subscription = None
            refreshed = await self.focus(issue_id) and refreshed

        if refreshed:
            self.notices = [n for n in self.notices if n.kind != NoticeKind.FEED]
        return refreshed

    def _on_issue_event(self, event: FeedEvent) -> None:
        if self._closed:
            return
        if self._refreshes_in_flight:
            self._buffer.append(event)
        self._cache.apply(event)

    def _on_update_event(self, event: FeedEvent) -> None:
        if self._closed or self._trail is None:
            return
        self._trail.apply(event)

    def _on_feed_error(self, error: FeedError) -> None:
        if self._closed:
            return
        self._notify(error)
        if self._resync_task is None or self._resync_task.done():
            self._resync_task = self._loop.create_task(self.resync())

    # ------------------------------------------------------------------
    # Update trail
    # ------------------------------------------------------------------

    async def focus(self, issue_id: UUID) -> bool:
        """
        Select an issue and load its progress notes, kept live via the feed.

        Returns:
            True on success, False if the issue is not visible or the store failed
        """
        self._loop = self._loop or asyncio.get_running_loop()
        if self._updates_subscription is not None:
            self.feed.unsubscribe(self._updates_subscription)
            self._updates_subscription = None

        trail = UpdateTrail(issue_id)
        self._trail = trail
        self._updates_subscription = self.feed.subscribe(
            ISSUE_UPDATES_TOPIC,
            for_issue(issue_id),
            self._on_update_event,
            on_error=self._on_feed_error,
            loop=self._loop,
        )
        try:
            records = await self._call(self.lifecycle.list_updates, issue_id, self.viewer)
        except LifecycleError as e:
            self._notify(e)
            if self._trail is trail:
                self.unfocus()
            return False

        for record in records:
            trail.append(record)
        return True

    def unfocus(self) -> None:
        if self._updates_subscription is not None:
            self.feed.unsubscribe(self._updates_subscription)
            self._updates_subscription = None
        self._trail = None

    async def add_update(self, message: str) -> Optional[IssueUpdateRecord]:
        """
        Append a progress note to the focused issue.

        The stored record is appended locally as soon as the store confirms
        it; the feed echo is deduplicated by id.
        """
        if self._trail is None:
            self._notify(ValidationError("Select an issue before adding an update.", field="issue_id"))
            return None
        issue_id = self._trail.issue_id
        try:
            record = await self._call(self.lifecycle.add_update, issue_id, self.viewer, message)
        except LifecycleError as e:
            self._notify(e)
            return None

        if self._trail is not None and self._trail.issue_id == issue_id:
            self._trail.append(record)
        return record

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def submit(
        self,
        data: IssueCreate,
        attachments: Optional[Iterable[Attachment]] = None,
    ) -> Optional[SubmissionResponse]:
        """Submit a new issue; it lands at the head of the list."""
        try:
            result = await self._call(self.lifecycle.submit_issue, self.viewer, data, attachments)
        except LifecycleError as e:
            self._notify(e)
            return None

        if self.predicate.matches(result.issue.model_dump(mode="json")):
            self._cache.upsert(result.issue)
        if result.failed_uploads:
            self.notices.append(Notice(
                NoticeKind.STORE,
                f"Some images could not be uploaded: {', '.join(result.failed_uploads)}",
                field="attachments",
            ))
        return result

    async def transition(self, issue_id: UUID, status: Union[str, IssueStatus]) -> Optional[IssueRecord]:
        """
        Change an issue's status with an optimistic local update.

        The local entry shows the new status immediately. If the command fails,
        the entry is restored unless a feed event has already replaced it.
        """
        previous = self._cache.get(issue_id)
        optimistic = None
        try:
            target = parse_status(status, previous.status if previous else None)
        except ValidationError as e:
            self._notify(e)
            return None

        if previous is not None and previous.status != target:
            optimistic = previous.model_copy(update={"status": target})
            self._cache.upsert(optimistic)

        return await self._command(
            lambda: self.lifecycle.transition(issue_id, target, self.viewer),
            previous,
            optimistic,
        )

    async def assign(self, issue_id: UUID, assignee_id: UUID) -> Optional[IssueRecord]:
        """Assign an issue (officers). No optimistic update: the assignee name is server-side."""
        return await self._command(
            lambda: self.lifecycle.assign(issue_id, assignee_id, self.viewer),
            None,
            None,
        )

    async def _command(
        self,
        call: Callable[[], IssueRecord],
        previous: Optional[IssueRecord],
        optimistic: Optional[IssueRecord],
    ) -> Optional[IssueRecord]:
        try:
            record = await self._call(call)
        except LifecycleError as e:
            if optimistic is not None and self._cache.get(optimistic.id) is optimistic:
                self._cache.upsert(previous)
                logger.debug(f"Rolled back optimistic change to {optimistic.id}")
            self._notify(e)
            return None
        return record

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    async def _call(func: Callable, *args: Any) -> Any:
        return await asyncio.to_thread(func, *args)

    def _notify(self, error: LifecycleError) -> None:
        kind = NoticeKind.STORE
        for error_type, notice_kind in _NOTICE_KINDS:
            if isinstance(error, error_type):
                kind = notice_kind
                break
        self.notices.append(Notice(kind, str(error), field=getattr(error, "field", None)))
        level = logging.INFO if kind == NoticeKind.VALIDATION else logging.WARNING
        logger.log(level, f"Dashboard for {self.viewer.id}: {kind.value} notice: {error}")
