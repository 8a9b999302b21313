"""
Live Event Feed

    GET /api/events/{event_id}/feed  (Server-Sent Events)

Streams the event's ``media.uploaded``, ``media.deleted`` and ``event.deleted``
notifications as they are published on the application's ``EventBus``:

    data: {"type": "...", "data": {...}, "timestamp": "..."}\n\n

A ``: keepalive`` comment is sent while idle. The stream ends after
``event.deleted`` or when the client disconnects.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from eventlens.auth import get_optional_actor
from eventlens.config import settings
from eventlens.dependencies import get_event_bus, get_event_service
from eventlens.policy import UserContext
from eventlens.services.event_bus import EventBus
from eventlens.services.event_service import EventService

router = APIRouter(tags=["Live Feed"])
logger = logging.getLogger(__name__)


async def _event_stream(request: Request, bus: EventBus, event_id: str, keepalive: float):
    """Yield SSE frames for one event; unsubscribes on disconnect or when the event is deleted."""
    queue = bus.subscribe()
    try:
        connected = {
            "type": "connected",
            "data": {"event_id": event_id},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        yield f"data: {json.dumps(connected)}\n\n"

        while True:
            if await request.is_disconnected():
                logger.debug("Feed client for event %s disconnected", event_id)
                break

            try:
                payload = await asyncio.wait_for(queue.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue

            if payload["data"].get("event_id") != event_id:
                continue
            yield f"data: {json.dumps(payload)}\n\n"
            if payload["type"] == "event.deleted":
                break
    finally:
        bus.unsubscribe(queue)


@router.get("/events/{event_id}/feed")
async def event_feed(
    request: Request,
    event_id: str,
    actor: UserContext | None = Depends(get_optional_actor),
    service: EventService = Depends(get_event_service),
    bus: EventBus = Depends(get_event_bus),
) -> StreamingResponse:
    """Live uploads and deletions for an event the caller may view; hidden events are 404."""
    await service.get_event(actor, event_id)
    return StreamingResponse(
        _event_stream(request, bus, event_id, settings.feed_keepalive_interval),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )
