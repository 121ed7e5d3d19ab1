"""Session push events and their fan-out to subscribers.

The registry reports every observable change through ``SessionEvent``
objects. ``SessionEventHub`` is a registry listener that copies each event
into one bounded queue per subscriber (one per SSE stream).
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 1000


class SessionEventType(str, Enum):
    SESSION_STARTED = "session_started"
    SESSION_STOPPED = "session_stopped"
    SESSION_STATUS_CHANGED = "session_status_changed"
    MESSAGE_RECEIVED = "message_received"
    STREAMING_CONTENT_STARTED = "streaming_content_started"
    STREAMING_CONTENT_DELTA = "streaming_content_delta"
    STREAMING_CONTENT_STOPPED = "streaming_content_stopped"
    RESULT_RECEIVED = "result_received"


@dataclass(frozen=True)
class SessionEvent:
    event: SessionEventType
    session_id: str
    data: dict[str, Any] = field(default_factory=dict)


class SessionEventHub:
    """Fans session events out to per-subscriber queues.

    Publishing never blocks: a subscriber whose queue is full misses the
    event and a warning is logged.
    """

    def __init__(self, max_queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self.max_queue_size = max_queue_size
        self._subscribers: dict[asyncio.Queue[SessionEvent], str | None] = {}

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, session_id: str | None = None) -> asyncio.Queue[SessionEvent]:
        """Register a new subscriber.

        Args:
            session_id: Only deliver events for this session. None delivers
                every event.

        Returns:
            The queue events will be delivered to.
        """
        queue: asyncio.Queue[SessionEvent] = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers[queue] = session_id
        logger.debug(f"Event subscriber added (filter={session_id})")
        return queue

    def unsubscribe(self, queue: asyncio.Queue[SessionEvent]) -> None:
        self._subscribers.pop(queue, None)

    def publish(self, event: SessionEvent) -> None:
        """Deliver an event to every matching subscriber."""
        for queue, session_filter in list(self._subscribers.items()):
            if session_filter is not None and session_filter != event.session_id:
                continue
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(
                    f"Event queue full, dropping {event.event.value} "
                    f"for session {event.session_id}"
                )
