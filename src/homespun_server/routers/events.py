"""Server-sent events endpoint for session push events."""

import asyncio
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sse_starlette.sse import EventSourceResponse

from homespun_server.dependencies import get_event_hub
from homespun_server.models.events import SessionEventResponse
from homespun_server.sessions import SessionEventHub

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["events"])

# Interval at which the stream checks for client disconnects
_POLL_SECONDS = 1.0


@router.get("/events", summary="Stream session events")
async def stream_events(
    request: Request,
    hub: Annotated[SessionEventHub, Depends(get_event_hub)],
    session_id: Annotated[
        str | None, Query(description="Only stream events for this session")
    ] = None,
) -> EventSourceResponse:
    """Stream session events via Server-Sent Events.

    Each SSE message has the event type as its ``event`` field and a JSON
    ``SessionEventResponse`` as its data.

    Args:
        request: The FastAPI request object
        hub: Injected SessionEventHub
        session_id: Optional session filter

    Returns:
        EventSourceResponse streaming session events
    """
    queue = hub.subscribe(session_id)

    async def event_generator():
        try:
            while True:
                if await request.is_disconnected():
                    break
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=_POLL_SECONDS)
                except asyncio.TimeoutError:
                    continue
                yield {
                    "event": event.event.value,
                    "data": SessionEventResponse.from_event(event).model_dump_json(),
                }
        finally:
            hub.unsubscribe(queue)
            logger.debug(f"Event stream closed (filter={session_id})")

    return EventSourceResponse(event_generator())
