"""Live feed over WebSockets.

Each connection subscribes to the change feed before loading its snapshot,
sends ``{"type": "snapshot", "items": [...]}``, then forwards every matching
event as ``{"type": "event", "event": {...}}``. Events committed while the
snapshot loads are delivered after it; clients apply them idempotently.
The subscription is released when the socket closes.
"""
import asyncio
import logging
from typing import Callable, Optional, Sequence
from uuid import UUID

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel

from ...errors import AuthorizationError, FeedError, IssueNotFoundError, LifecycleError
from ...feed import ChangeFeed, FeedEvent, ISSUES_TOPIC, ISSUE_UPDATES_TOPIC
from ...filters import RowFilter, for_identity, for_issue
from ...identity import SqlIdentityResolver
from ...lifecycle import IssueLifecycle
from ...schemas import Identity
from ..dependencies import get_feed, get_identity_resolver, get_lifecycle

logger = logging.getLogger("civic-core.feed-api")

router = APIRouter(prefix="/feed", tags=["feed"])


async def _authenticate(
    websocket: WebSocket,
    token: Optional[str],
    identities: SqlIdentityResolver,
) -> Optional[Identity]:
    try:
        identity = await asyncio.to_thread(identities.get_current_user, token)
    except LifecycleError as e:
        await _reject(websocket, status.WS_1011_INTERNAL_ERROR, str(e))
        return None
    if identity is None:
        await _reject(websocket, status.WS_1008_POLICY_VIOLATION, "Invalid or expired session")
    return identity


async def _reject(websocket: WebSocket, code: int, reason: str) -> None:
    logger.info(f"Closing feed socket with {code}: {reason}")
    await websocket.send_json({"type": "error", "message": reason})
    await websocket.close(code=code, reason=reason)


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    """Consume client frames until the client goes away."""
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return


async def _stream(
    websocket: WebSocket,
    feed: ChangeFeed,
    topic: str,
    predicate: RowFilter,
    load_snapshot: Callable[[], Sequence[BaseModel]],
) -> None:
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()
    subscription = feed.subscribe(topic, predicate, queue.put_nowait, on_error=queue.put_nowait, loop=loop)
    receiver = None
    try:
        try:
            snapshot = await asyncio.to_thread(load_snapshot)
        except LifecycleError as e:
            await _reject(websocket, status.WS_1011_INTERNAL_ERROR, str(e))
            return
        await websocket.send_json({"type": "snapshot", "items": [r.model_dump(mode="json") for r in snapshot]})

        receiver = asyncio.create_task(_wait_for_disconnect(websocket))
        while True:
            getter = asyncio.create_task(queue.get())
            done, _ = await asyncio.wait({getter, receiver}, return_when=asyncio.FIRST_COMPLETED)
            if getter not in done:
                getter.cancel()
                break

            item = getter.result()
            if isinstance(item, FeedError):
                await _reject(websocket, status.WS_1011_INTERNAL_ERROR, str(item))
                break
            if isinstance(item, FeedEvent):
                await websocket.send_json({"type": "event", "event": item.model_dump(mode="json")})
    except WebSocketDisconnect:
        pass
    finally:
        feed.unsubscribe(subscription)
        if receiver is not None and not receiver.done():
            receiver.cancel()
        logger.debug(f"Feed socket on {topic} closed ({predicate.describe()})")


@router.websocket("/issues")
async def issue_feed(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    scope: str = Query("mine"),
    feed: ChangeFeed = Depends(get_feed),
    identities: SqlIdentityResolver = Depends(get_identity_resolver),
    lifecycle: IssueLifecycle = Depends(get_lifecycle),
):
    """Role-scoped issue list, kept live."""
    await websocket.accept()
    identity = await _authenticate(websocket, token, identities)
    if identity is None:
        return

    admin_view = scope == "all"
    try:
        predicate = for_identity(identity, admin_view)
    except AuthorizationError as e:
        await _reject(websocket, status.WS_1008_POLICY_VIOLATION, str(e))
        return

    await _stream(
        websocket,
        feed,
        ISSUES_TOPIC,
        predicate,
        lambda: lifecycle.list_issues(identity, admin_view),
    )


@router.websocket("/issues/{issue_id}/updates")
async def issue_update_feed(
    websocket: WebSocket,
    issue_id: UUID,
    token: Optional[str] = Query(None),
    feed: ChangeFeed = Depends(get_feed),
    identities: SqlIdentityResolver = Depends(get_identity_resolver),
    lifecycle: IssueLifecycle = Depends(get_lifecycle),
):
    """Progress notes of one issue, kept live."""
    await websocket.accept()
    identity = await _authenticate(websocket, token, identities)
    if identity is None:
        return

    try:
        await asyncio.to_thread(lifecycle.get_issue, issue_id, identity)
    except (AuthorizationError, IssueNotFoundError) as e:
        await _reject(websocket, status.WS_1008_POLICY_VIOLATION, str(e))
        return
    except LifecycleError as e:
        await _reject(websocket, status.WS_1011_INTERNAL_ERROR, str(e))
        return

    await _stream(
        websocket,
        feed,
        ISSUE_UPDATES_TOPIC,
        for_issue(issue_id),
        lambda: lifecycle.list_updates(issue_id, identity),
    )
