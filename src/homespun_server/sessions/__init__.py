"""Agent session management for homespun-server.

This package provides the session registry, streaming content
reconstruction, push events, and resumption metadata for agent
conversations.
"""

from homespun_server.sessions.accumulator import StreamingContentAccumulator
from homespun_server.sessions.discovery import SessionDiscovery
from homespun_server.sessions.errors import (
    SessionConfigurationError,
    SessionError,
    SessionNotActiveError,
    SessionNotFoundError,
)
from homespun_server.sessions.events import (
    SessionEvent,
    SessionEventHub,
    SessionEventType,
)
from homespun_server.sessions.metadata_store import SessionMetadataStore
from homespun_server.sessions.options import PLAN_MODE_TOOLS, SessionOptionsFactory
from homespun_server.sessions.registry import SessionRegistry
from homespun_server.sessions.types import (
    AgentSession,
    ContentType,
    DiscoveredSession,
    MessageContent,
    MessageRole,
    ResumableSession,
    SessionMessage,
    SessionMetadata,
    SessionMode,
    SessionStatus,
    ToolResultData,
)

__all__ = [
    # Core classes
    "SessionRegistry",
    "SessionOptionsFactory",
    "StreamingContentAccumulator",
    "SessionMetadataStore",
    "SessionDiscovery",
    "SessionEventHub",
    "PLAN_MODE_TOOLS",
    # Events
    "SessionEvent",
    "SessionEventType",
    # Session types
    "AgentSession",
    "SessionMessage",
    "MessageContent",
    "MessageRole",
    "ContentType",
    "SessionMode",
    "SessionStatus",
    "SessionMetadata",
    "DiscoveredSession",
    "ResumableSession",
    "ToolResultData",
    # Errors
    "SessionError",
    "SessionNotFoundError",
    "SessionNotActiveError",
    "SessionConfigurationError",
]
