"""Pydantic models for API requests and responses."""

from homespun_server.models.events import SessionEventResponse
from homespun_server.models.health import HealthResponse
from homespun_server.models.sessions import (
    ContentResponse,
    CreateSessionRequest,
    MessageResponse,
    ResumableSessionListResponse,
    ResumableSessionResponse,
    ResumeSessionRequest,
    SendMessageRequest,
    SendMessageResponse,
    SessionDetailResponse,
    SessionListResponse,
    SessionSummary,
)

__all__ = [
    "HealthResponse",
    "SessionEventResponse",
    "CreateSessionRequest",
    "ResumeSessionRequest",
    "SendMessageRequest",
    "SendMessageResponse",
    "ContentResponse",
    "MessageResponse",
    "SessionSummary",
    "SessionListResponse",
    "SessionDetailResponse",
    "ResumableSessionResponse",
    "ResumableSessionListResponse",
]
