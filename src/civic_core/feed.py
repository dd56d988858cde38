"""In-process change feed.

Subscribers register a topic, a ``RowFilter`` and callbacks. Every committed
mutation is published once and fanned out to each subscriber whose predicate
matches either the new row or the previous row, so a subscriber also learns
when a row stops matching (for example when an issue is reassigned away).

Callbacks run on the subscriber's own event loop when one was given at
subscribe time, which keeps dashboard state single-threaded even though store
writes happen in worker threads.
"""
import asyncio
import enum
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel

from .errors import FeedError
from .filters import RowFilter

logger = logging.getLogger("civic-core.feed")

ISSUES_TOPIC = "issues"
ISSUE_UPDATES_TOPIC = "issue_updates"


class FeedEventKind(str, enum.Enum):
    """Row-level mutation kinds."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class FeedEvent(BaseModel):
    """A single row mutation delivered to subscribers."""

    topic: str
    kind: FeedEventKind
    row: dict[str, Any]
    old: Optional[dict[str, Any]] = None

    @property
    def row_id(self) -> Optional[str]:
        source = self.row or self.old or {}
        value = source.get("id")
        return str(value) if value is not None else None


EventCallback = Callable[[FeedEvent], None]
ErrorCallback = Callable[[FeedError], None]


@dataclass(eq=False)
class Subscription:
    """Handle returned by ``ChangeFeed.subscribe``."""

    topic: str
    predicate: RowFilter
    on_event: EventCallback
    on_error: Optional[ErrorCallback] = None
    loop: Optional[asyncio.AbstractEventLoop] = None
    active: bool = True
    id: UUID = field(default_factory=uuid4)


class ChangeFeed:
    """Topic-based publish/subscribe with per-subscription row filters."""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscriptions: dict[UUID, Subscription] = {}

    def subscribe(
        self,
        topic: str,
        predicate: RowFilter,
        on_event: EventCallback,
        on_error: Optional[ErrorCallback] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> Subscription:
        """
        Register a subscriber.

        Args:
            topic: Feed topic (ISSUES_TOPIC or ISSUE_UPDATES_TOPIC)
            predicate: Row filter evaluated against every published row
            on_event: Called with each matching FeedEvent
            on_error: Called with a FeedError when the subscription drops
            loop: Event loop the callbacks must run on (None: publisher's thread)

        Returns:
            Subscription handle for unsubscribe()
        """
        subscription = Subscription(
            topic=topic,
            predicate=predicate,
            on_event=on_event,
            on_error=on_error,
            loop=loop,
        )
        with self._lock:
            self._subscriptions[subscription.id] = subscription
        logger.debug(f"Subscribed {subscription.id} to {topic} ({predicate.describe()})")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Release a subscription. Unsubscribing twice is harmless."""
        with self._lock:
            self._subscriptions.pop(subscription.id, None)
        subscription.active = False
        logger.debug(f"Unsubscribed {subscription.id} from {subscription.topic}")

    def subscriptions(self, topic: Optional[str] = None) -> list[Subscription]:
        """Active subscriptions, optionally for one topic."""
        with self._lock:
            return [s for s in self._subscriptions.values() if topic is None or s.topic == topic]

    def subscriber_count(self, topic: Optional[str] = None) -> int:
        return len(self.subscriptions(topic))

    def publish(
        self,
        topic: str,
        kind: FeedEventKind,
        row: dict[str, Any],
        old: Optional[dict[str, Any]] = None,
    ) -> int:
        """
        Fan a committed mutation out to matching subscribers.

        Args:
            topic: Feed topic
            kind: Mutation kind
            row: New row (JSON-compatible); for deletes, the deleted row
            old: Previous row for updates, if known

        Returns:
            Number of subscribers the event was delivered to
        """
        event = FeedEvent(topic=topic, kind=kind, row=row, old=old)
        with self._lock:
            targets = [
                s for s in self._subscriptions.values()
                if s.topic == topic and (s.predicate.matches(row) or (old is not None and s.predicate.matches(old)))
            ]

        for subscription in targets:
            self._dispatch(subscription, subscription.on_event, event)

        logger.debug(f"Published {kind.value} on {topic} for {event.row_id} to {len(targets)} subscribers")
        return len(targets)

    def drop(self, subscription: Subscription, reason: str = "subscription dropped") -> None:
        """
        Terminate a subscription as a transport failure would.

        The subscriber's on_error callback receives a FeedError; it is expected
        to resubscribe and re-query, since events may have been missed.
        """
        with self._lock:
            self._subscriptions.pop(subscription.id, None)
        subscription.active = False
        logger.warning(f"Feed subscription {subscription.id} on {subscription.topic} dropped: {reason}")
        if subscription.on_error is not None:
            self._dispatch(subscription, subscription.on_error, FeedError(reason))

    def _dispatch(self, subscription: Subscription, callback: Callable, payload) -> None:
        loop = subscription.loop
        if loop is not None:
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None
            if running is not loop:
                try:
                    loop.call_soon_threadsafe(self._invoke, subscription, callback, payload)
                except RuntimeError:
                    logger.warning(f"Event loop for subscription {subscription.id} is closed; event discarded")
                return
        self._invoke(subscription, callback, payload)

    @staticmethod
    def _invoke(subscription: Subscription, callback: Callable, payload) -> None:
        if not subscription.active and not isinstance(payload, FeedError):
            return
        try:
            callback(payload)
        except Exception:
            logger.exception(f"Feed callback for subscription {subscription.id} failed")
