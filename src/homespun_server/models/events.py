"""Pydantic models for SSE session events."""

from typing import Any

from pydantic import BaseModel, Field

from homespun_server.sessions.events import SessionEvent


class SessionEventResponse(BaseModel):
    """Payload of one server-sent session event.

    The SSE ``event`` field carries the same value as ``event`` here.
    """

    event: str = Field(..., description="Event type, e.g. streaming_content_delta")
    session_id: str
    data: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_event(cls, event: SessionEvent) -> "SessionEventResponse":
        return cls(event=event.event.value, session_id=event.session_id, data=event.data)
