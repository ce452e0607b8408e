"""GET /events — long-lived SSE stream of state change notifications."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from family_rewards.api.dependencies import get_app_settings, get_broadcaster
from family_rewards.config import Settings
from family_rewards.protocol.emitter import HEARTBEAT_FRAME, emit
from family_rewards.protocol.events import ConnectedEvent
from family_rewards.streaming.broadcaster import ChangeBroadcaster, Subscription

router = APIRouter()
logger = logging.getLogger(__name__)


def _sse_headers() -> dict[str, str]:
    """Standard SSE response headers."""
    return {
        "Cache-Control": "no-cache",
        "Connection": "keep-alive",
        "X-Accel-Buffering": "no",
    }


async def event_stream(
    broadcaster: ChangeBroadcaster,
    subscription: Subscription,
    heartbeat_seconds: float,
    is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
) -> AsyncIterator[str]:
    """Yield SSE frames for one subscription until it is closed or the client leaves.

    The ``connected`` acknowledgment always comes first; after that, events
    arrive in the order the broadcaster published them.  Idle periods are
    filled with ``: ping`` comments.
    """
    try:
        yield emit(ConnectedEvent(subscriber_id=subscription.id))
        while not subscription.closed:
            try:
                event = await asyncio.wait_for(subscription.queue.get(), timeout=heartbeat_seconds)
            except asyncio.TimeoutError:
                if is_disconnected is not None and await is_disconnected():
                    break
                yield HEARTBEAT_FRAME
                continue

            if event is None:
                break
            yield emit(event)
    finally:
        broadcaster.unsubscribe(subscription)


@router.get("/events")
async def stream_events(
    request: Request,
    broadcaster: ChangeBroadcaster = Depends(get_broadcaster),
    settings: Settings = Depends(get_app_settings),
) -> StreamingResponse:
    """
    Subscribe to state changes via SSE.

    The subscription is registered before the response starts, so no
    mutation accepted after this call returns can be missed.
    """
    subscription = broadcaster.subscribe()
    return StreamingResponse(
        event_stream(
            broadcaster,
            subscription,
            heartbeat_seconds=settings.sse_heartbeat_seconds,
            is_disconnected=request.is_disconnected,
        ),
        media_type="text/event-stream",
        headers=_sse_headers(),
    )
