"""Tests for live dashboard projections."""
import asyncio
import threading

import pytest

from civic_core.dashboard import DashboardProjection, NoticeKind
from civic_core.errors import AuthorizationError, StoreError
from civic_core.feed import ISSUES_TOPIC, ISSUE_UPDATES_TOPIC
from civic_core.models import IssueStatus


@pytest.mark.asyncio
async def test_submission_lands_at_head_of_citizen_dashboard(lifecycle, feed, citizen, pothole):
    older = lifecycle.submit_issue(citizen, pothole).issue

    async with DashboardProjection(lifecycle, feed, citizen) as dashboard:
        result = await dashboard.submit(pothole)

        assert [i.id for i in dashboard.issues] == [result.issue.id, older.id]
        assert dashboard.issues[0].status == IssueStatus.PENDING
        assert dashboard.issues[0].assigned_to is None


@pytest.mark.asyncio
async def test_assignment_reaches_worker_and_citizen(lifecycle, feed, citizen, officer, worker, reported_issue):
    async with DashboardProjection(lifecycle, feed, citizen) as citizen_view, \
            DashboardProjection(lifecycle, feed, worker) as worker_view:
        assert worker_view.issues == []

        lifecycle.assign(reported_issue.id, worker.id, officer)

        assert worker_view.get(reported_issue.id).status == IssueStatus.IN_PROGRESS
        assert citizen_view.get(reported_issue.id).status == IssueStatus.IN_PROGRESS
        assert citizen_view.get(reported_issue.id).assignee_name == "Wes Worker"


@pytest.mark.asyncio
async def test_reassigned_issue_leaves_previous_assignee(lifecycle, feed, officer, worker, other_worker, reported_issue):
    lifecycle.assign(reported_issue.id, worker.id, officer)

    async with DashboardProjection(lifecycle, feed, worker) as dashboard:
        assert reported_issue.id in [i.id for i in dashboard.issues]

        lifecycle.assign(reported_issue.id, other_worker.id, officer)

        assert dashboard.issues == []


@pytest.mark.asyncio
async def test_events_during_initial_load_are_not_lost(lifecycle, feed, citizen, pothole, monkeypatch):
    """A report committed between the query and its result still shows up."""
    original = lifecycle.list_issues
    late = []

    def slow_list_issues(*args, **kwargs):
        records = original(*args, **kwargs)
        late.append(lifecycle.submit_issue(citizen, pothole).issue)
        return records

    monkeypatch.setattr(lifecycle, "list_issues", slow_list_issues)

    async with DashboardProjection(lifecycle, feed, citizen) as dashboard:
        assert [i.id for i in dashboard.issues] == [late[0].id]


@pytest.mark.asyncio
async def test_overlapping_refreshes_keep_events_committed_in_between(lifecycle, feed, citizen, pothole, monkeypatch):
    """An older snapshot that finishes last must not wipe newer rows."""
    async with DashboardProjection(lifecycle, feed, citizen) as dashboard:
        original = lifecycle.list_issues
        entered = threading.Event()
        release_first = threading.Event()
        calls = []

        def held_list_issues(*args, **kwargs):
            records = original(*args, **kwargs)
            calls.append(records)
            if len(calls) == 1:
                entered.set()
                release_first.wait(5)
            return records

        monkeypatch.setattr(lifecycle, "list_issues", held_list_issues)

        first = asyncio.create_task(dashboard.refresh())
        assert await asyncio.to_thread(entered.wait, 5)
        assert await dashboard.refresh()
        assert dashboard.loading

        late = lifecycle.submit_issue(citizen, pothole).issue
        assert [i.id for i in dashboard.issues] == [late.id]

        release_first.set()
        assert await first

        assert [i.id for i in dashboard.issues] == [late.id]
        assert not dashboard.loading


@pytest.mark.asyncio
async def test_failed_refresh_keeps_events_delivered_meanwhile(lifecycle, feed, citizen, pothole, monkeypatch):
    async with DashboardProjection(lifecycle, feed, citizen) as dashboard:
        submitted = []

        def failing_list_issues(*args, **kwargs):
            submitted.append(lifecycle.submit_issue(citizen, pothole).issue)
            raise StoreError("Could not list issues: connection reset")

        monkeypatch.setattr(lifecycle, "list_issues", failing_list_issues)

        assert not await dashboard.refresh()

        assert [i.id for i in dashboard.issues] == [submitted[0].id]
        assert not dashboard.loading
        [notice] = dashboard.notices
        assert notice.kind == NoticeKind.STORE


@pytest.mark.asyncio
async def test_admin_view_sees_everything(lifecycle, feed, citizen, other_citizen, admin, pothole):
    lifecycle.submit_issue(citizen, pothole)

    async with DashboardProjection(lifecycle, feed, admin, admin_view=True) as dashboard:
        lifecycle.submit_issue(other_citizen, pothole)

        assert dashboard.stats().total == 2
        assert dashboard.stats().pending == 2


def test_admin_view_requires_admin_scope(lifecycle, feed, officer):
    with pytest.raises(AuthorizationError):
        DashboardProjection(lifecycle, feed, officer, admin_view=True)


class TestCommands:

    @pytest.mark.asyncio
    async def test_transition_by_assignee(self, lifecycle, feed, officer, worker, reported_issue):
        lifecycle.assign(reported_issue.id, worker.id, officer)

        async with DashboardProjection(lifecycle, feed, worker) as dashboard:
            record = await dashboard.transition(reported_issue.id, "resolved")

            assert record.status == IssueStatus.RESOLVED
            assert dashboard.get(reported_issue.id).status == IssueStatus.RESOLVED
            assert dashboard.notices == []

    @pytest.mark.asyncio
    async def test_citizen_transition_rolls_back(self, lifecycle, feed, store, citizen, reported_issue):
        async with DashboardProjection(lifecycle, feed, citizen) as dashboard:
            assert await dashboard.transition(reported_issue.id, "resolved") is None

            assert dashboard.get(reported_issue.id).status == IssueStatus.PENDING
            assert store.get(reported_issue.id).status == IssueStatus.PENDING
            [notice] = dashboard.notices
            assert notice.kind == NoticeKind.AUTHORIZATION
            assert notice.blocking

    @pytest.mark.asyncio
    async def test_store_failure_reverts_optimistic_status(self, lifecycle, feed, officer, worker, reported_issue, monkeypatch):
        lifecycle.assign(reported_issue.id, worker.id, officer)
        seen_during_call = []

        async with DashboardProjection(lifecycle, feed, worker) as dashboard:
            def failing_update(issue_id, fields, changed_by=None):
                seen_during_call.append(dashboard.get(issue_id).status)
                raise StoreError("Could not update issue: connection reset")

            monkeypatch.setattr(lifecycle.store, "update", failing_update)

            assert await dashboard.transition(reported_issue.id, "resolved") is None

            assert seen_during_call == [IssueStatus.RESOLVED]
            assert dashboard.get(reported_issue.id).status == IssueStatus.IN_PROGRESS
            [notice] = dashboard.notices
            assert notice.kind == NoticeKind.STORE
            assert not notice.blocking

            dashboard.dismiss(notice)
            assert dashboard.notices == []

    @pytest.mark.asyncio
    async def test_invalid_status_is_inline_feedback(self, lifecycle, feed, admin, reported_issue):
        async with DashboardProjection(lifecycle, feed, admin, admin_view=True) as dashboard:
            assert await dashboard.transition(reported_issue.id, "closed") is None

            assert dashboard.get(reported_issue.id).status == IssueStatus.PENDING
            assert dashboard.notices[0].kind == NoticeKind.VALIDATION
            assert dashboard.notices[0].field == "status"

    @pytest.mark.asyncio
    async def test_assign_from_officer_dashboard(self, lifecycle, feed, officer, worker, reported_issue):
        async with DashboardProjection(lifecycle, feed, officer) as dashboard:
            record = await dashboard.assign(reported_issue.id, worker.id)

            assert record.assigned_to == worker.id
            # Assigned to someone else: not part of this officer's own list
            assert dashboard.issues == []


class TestUpdateTrail:

    @pytest.mark.asyncio
    async def test_notes_from_others_arrive_live(self, lifecycle, feed, citizen, officer, worker, reported_issue):
        lifecycle.assign(reported_issue.id, worker.id, officer)

        async with DashboardProjection(lifecycle, feed, worker) as dashboard:
            assert await dashboard.focus(reported_issue.id)

            lifecycle.add_update(reported_issue.id, citizen, "It is getting bigger")

            assert [u.message for u in dashboard.updates] == ["It is getting bigger"]

    @pytest.mark.asyncio
    async def test_own_note_is_not_duplicated_by_echo(self, lifecycle, feed, citizen, reported_issue):
        async with DashboardProjection(lifecycle, feed, citizen) as dashboard:
            await dashboard.focus(reported_issue.id)

            note = await dashboard.add_update("Still there")

            assert [u.id for u in dashboard.updates] == [note.id]

    @pytest.mark.asyncio
    async def test_whitespace_note_is_rejected(self, lifecycle, feed, citizen, reported_issue):
        async with DashboardProjection(lifecycle, feed, citizen) as dashboard:
            await dashboard.focus(reported_issue.id)

            assert await dashboard.add_update("   ") is None

            assert dashboard.updates == []
            assert dashboard.notices[0].kind == NoticeKind.VALIDATION

    @pytest.mark.asyncio
    async def test_focus_on_hidden_issue_fails_softly(self, lifecycle, feed, other_citizen, reported_issue):
        async with DashboardProjection(lifecycle, feed, other_citizen) as dashboard:
            assert not await dashboard.focus(reported_issue.id)

            assert dashboard.focused_issue_id is None
            assert dashboard.notices[0].kind == NoticeKind.AUTHORIZATION


class TestConnection:

    @pytest.mark.asyncio
    async def test_close_releases_every_subscription(self, lifecycle, feed, citizen, reported_issue):
        async with DashboardProjection(lifecycle, feed, citizen) as dashboard:
            await dashboard.focus(reported_issue.id)
            assert feed.subscriber_count() == 2

        assert feed.subscriber_count() == 0

    @pytest.mark.asyncio
    async def test_subscriptions_released_on_error(self, lifecycle, feed, citizen):
        with pytest.raises(RuntimeError):
            async with DashboardProjection(lifecycle, feed, citizen):
                raise RuntimeError("view crashed")

        assert feed.subscriber_count() == 0

    @pytest.mark.asyncio
    async def test_dropped_feed_resubscribes_and_requeries(self, lifecycle, feed, officer, worker, reported_issue):
        async with DashboardProjection(lifecycle, feed, worker) as dashboard:
            [subscription] = feed.subscriptions(ISSUES_TOPIC)

            feed.drop(subscription, "connection reset")
            assert dashboard.notices[0].kind == NoticeKind.FEED

            # Committed while no subscription is active
            lifecycle.assign(reported_issue.id, worker.id, officer)

            assert await dashboard.pending_resync
            assert [i.id for i in dashboard.issues] == [reported_issue.id]
            assert dashboard.notices == []
            assert feed.subscriber_count(ISSUES_TOPIC) == 1

    @pytest.mark.asyncio
    async def test_store_failure_during_open_degrades_to_empty_list(self, lifecycle, feed, citizen, reported_issue,
                                                                    monkeypatch):
        original = lifecycle.list_issues

        def failing_list_issues(*args, **kwargs):
            raise StoreError("Could not list issues: database unavailable")

        monkeypatch.setattr(lifecycle, "list_issues", failing_list_issues)

        async with DashboardProjection(lifecycle, feed, citizen) as dashboard:
            assert dashboard.issues == []
            assert not dashboard.loading
            assert [n.kind for n in dashboard.notices] == [NoticeKind.STORE]
            assert feed.subscriber_count(ISSUES_TOPIC) == 1

            monkeypatch.setattr(lifecycle, "list_issues", original)

            assert await dashboard.refresh()
            assert [i.id for i in dashboard.issues] == [reported_issue.id]

    @pytest.mark.asyncio
    async def test_failed_resync_keeps_feed_notice_until_next_resync(self, lifecycle, feed, officer, worker,
                                                                     reported_issue, monkeypatch):
        async with DashboardProjection(lifecycle, feed, worker) as dashboard:
            original = lifecycle.list_issues

            def failing_list_issues(*args, **kwargs):
                raise StoreError("Could not list issues: database unavailable")

            monkeypatch.setattr(lifecycle, "list_issues", failing_list_issues)

            [subscription] = feed.subscriptions(ISSUES_TOPIC)
            feed.drop(subscription, "connection reset")
            lifecycle.assign(reported_issue.id, worker.id, officer)

            assert not await dashboard.pending_resync
            assert dashboard.issues == []
            assert NoticeKind.FEED in [n.kind for n in dashboard.notices]
            assert feed.subscriber_count(ISSUES_TOPIC) == 1

            monkeypatch.setattr(lifecycle, "list_issues", original)

            assert await dashboard.resync()
            assert [i.id for i in dashboard.issues] == [reported_issue.id]
            assert NoticeKind.FEED not in [n.kind for n in dashboard.notices]

    @pytest.mark.asyncio
    async def test_dropped_update_trail_refocuses_same_issue(self, lifecycle, feed, citizen, reported_issue):
        async with DashboardProjection(lifecycle, feed, citizen) as dashboard:
            assert await dashboard.focus(reported_issue.id)
            [subscription] = feed.subscriptions(ISSUE_UPDATES_TOPIC)

            feed.drop(subscription, "connection reset")
            # Committed while the trail has no subscription
            missed = lifecycle.add_update(reported_issue.id, citizen, "Cones were knocked over")

            assert await dashboard.pending_resync
            assert dashboard.focused_issue_id == reported_issue.id
            assert [u.id for u in dashboard.updates] == [missed.id]
            assert feed.subscriber_count(ISSUE_UPDATES_TOPIC) == 1
            assert dashboard.notices == []
