"""Tests for the in-process change feed."""
import asyncio
import threading
from uuid import uuid4

import pytest

from civic_core.errors import FeedError
from civic_core.feed import ISSUES_TOPIC, ISSUE_UPDATES_TOPIC, ChangeFeed, FeedEventKind
from civic_core.filters import ALL_ROWS, RowFilter


@pytest.fixture
def feed():
    return ChangeFeed()


class TestPublish:

    def test_delivers_only_matching_rows(self, feed):
        user_id = uuid4()
        received = []
        feed.subscribe(ISSUES_TOPIC, RowFilter("assigned_to", user_id), received.append)

        feed.publish(ISSUES_TOPIC, FeedEventKind.INSERT, {"id": "1", "assigned_to": str(user_id)})
        feed.publish(ISSUES_TOPIC, FeedEventKind.INSERT, {"id": "2", "assigned_to": str(uuid4())})

        assert [e.row_id for e in received] == ["1"]

    def test_old_row_match_announces_departure(self, feed):
        """A subscriber hears about a row that stopped matching."""
        user_id = uuid4()
        received = []
        feed.subscribe(ISSUES_TOPIC, RowFilter("assigned_to", user_id), received.append)

        delivered = feed.publish(
            ISSUES_TOPIC,
            FeedEventKind.UPDATE,
            {"id": "1", "assigned_to": str(uuid4())},
            old={"id": "1", "assigned_to": str(user_id)},
        )

        assert delivered == 1
        assert received[0].kind == FeedEventKind.UPDATE
        assert received[0].old["assigned_to"] == str(user_id)

    def test_topics_are_isolated(self, feed):
        received = []
        feed.subscribe(ISSUE_UPDATES_TOPIC, ALL_ROWS, received.append)

        feed.publish(ISSUES_TOPIC, FeedEventKind.INSERT, {"id": "1"})

        assert received == []

    def test_failing_callback_does_not_block_others(self, feed):
        received = []

        def broken(event):
            raise RuntimeError("boom")

        feed.subscribe(ISSUES_TOPIC, ALL_ROWS, broken)
        feed.subscribe(ISSUES_TOPIC, ALL_ROWS, received.append)

        assert feed.publish(ISSUES_TOPIC, FeedEventKind.INSERT, {"id": "1"}) == 2
        assert len(received) == 1


class TestSubscriptionLifecycle:

    def test_unsubscribe_stops_delivery(self, feed):
        received = []
        subscription = feed.subscribe(ISSUES_TOPIC, ALL_ROWS, received.append)

        feed.unsubscribe(subscription)
        feed.unsubscribe(subscription)
        feed.publish(ISSUES_TOPIC, FeedEventKind.INSERT, {"id": "1"})

        assert received == []
        assert feed.subscriber_count() == 0
        assert not subscription.active

    def test_drop_reports_feed_error(self, feed):
        errors = []
        subscription = feed.subscribe(ISSUES_TOPIC, ALL_ROWS, lambda e: None, on_error=errors.append)

        feed.drop(subscription, "connection reset")

        assert len(errors) == 1
        assert isinstance(errors[0], FeedError)
        assert "connection reset" in str(errors[0])
        assert feed.subscriber_count(ISSUES_TOPIC) == 0


class TestLoopDelivery:

    @pytest.mark.asyncio
    async def test_publish_from_worker_thread_runs_on_subscriber_loop(self, feed):
        loop = asyncio.get_running_loop()
        seen_on = []
        delivered = asyncio.Event()

        def on_event(event):
            seen_on.append(asyncio.get_running_loop())
            delivered.set()

        feed.subscribe(ISSUES_TOPIC, ALL_ROWS, on_event, loop=loop)
        await asyncio.to_thread(feed.publish, ISSUES_TOPIC, FeedEventKind.INSERT, {"id": "1"})
        await asyncio.wait_for(delivered.wait(), timeout=1)

        assert seen_on == [loop]

    @pytest.mark.asyncio
    async def test_events_queued_before_unsubscribe_are_discarded(self, feed):
        received = []
        subscription = feed.subscribe(ISSUES_TOPIC, ALL_ROWS, received.append, loop=asyncio.get_running_loop())

        publisher = threading.Thread(target=feed.publish, args=(ISSUES_TOPIC, FeedEventKind.INSERT, {"id": "1"}))
        publisher.start()
        publisher.join()
        feed.unsubscribe(subscription)
        await asyncio.sleep(0)

        assert received == []
