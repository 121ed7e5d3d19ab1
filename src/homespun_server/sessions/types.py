"""Data types for agent session management.

This module defines the sessions held by the registry, their message history,
and the metadata persisted for resumption.
"""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from homespun_server.services.tool_results import ToolResultData


def utc_now() -> str:
    """Current UTC time as an ISO 8601 string with a ``Z`` suffix."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def generate_id() -> str:
    """Generate a new session or message identifier."""
    return str(uuid.uuid4())


class SessionStatus(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    PROCESSING = "processing"
    STOPPED = "stopped"
    ERROR = "error"


class SessionMode(str, Enum):
    """Plan sessions are read-only; build sessions may use every tool."""

    PLAN = "plan"
    BUILD = "build"


class ContentType(str, Enum):
    TEXT = "text"
    THINKING = "thinking"
    TOOL_USE = "tool_use"
    TOOL_RESULT = "tool_result"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class MessageContent:
    """One display block of a session message.

    Streaming blocks are mutated in place while ``is_streaming`` is True.
    """

    type: ContentType
    text: str | None = None
    tool_name: str | None = None
    tool_use_id: str | None = None
    tool_input: str | None = None
    tool_result: str | None = None
    tool_success: bool | None = None
    parsed_tool_result: ToolResultData | None = None
    is_streaming: bool = False
    index: int = -1

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        return data


@dataclass
class SessionMessage:
    """A user or assistant turn in a session's history."""

    session_id: str
    role: MessageRole
    content: list[MessageContent] = field(default_factory=list)
    message_id: str = field(default_factory=generate_id)
    created_at: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "message_id": self.message_id,
            "session_id": self.session_id,
            "role": self.role.value,
            "content": [c.to_dict() for c in self.content],
            "created_at": self.created_at,
        }


@dataclass
class AgentSession:
    """A logical conversation with the agent.

    Owned exclusively by the ``SessionRegistry``. ``conversation_id`` is the
    resumption id reported by the agent process; it is None until the first
    exchange completes.
    """

    session_id: str
    entity_id: str
    project_id: str
    working_directory: str
    model: str
    mode: SessionMode
    status: SessionStatus = SessionStatus.STARTING
    system_prompt: str | None = None
    conversation_id: str | None = None
    messages: list[SessionMessage] = field(default_factory=list)
    total_cost_usd: float = 0.0
    total_duration_ms: int = 0
    error_message: str | None = None
    created_at: str = field(default_factory=utc_now)
    last_activity_at: str = field(default_factory=utc_now)

    def touch(self) -> None:
        """Update the last activity timestamp."""
        self.last_activity_at = utc_now()


@dataclass
class SessionMetadata:
    """Configuration persisted per conversation for later resumption."""

    conversation_id: str
    entity_id: str
    project_id: str
    working_directory: str
    mode: SessionMode
    model: str
    system_prompt: str | None = None
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "conversation_id": self.conversation_id,
            "entity_id": self.entity_id,
            "project_id": self.project_id,
            "working_directory": self.working_directory,
            "mode": self.mode.value,
            "model": self.model,
            "system_prompt": self.system_prompt,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionMetadata":
        return cls(
            conversation_id=data["conversation_id"],
            entity_id=data.get("entity_id", ""),
            project_id=data.get("project_id", ""),
            working_directory=data.get("working_directory", ""),
            mode=SessionMode(data.get("mode", SessionMode.BUILD.value)),
            model=data.get("model", "sonnet"),
            system_prompt=data.get("system_prompt"),
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
        )


@dataclass
class DiscoveredSession:
    """A conversation file persisted by the agent CLI on disk."""

    conversation_id: str
    file_path: str
    last_modified: str
    message_count: int


@dataclass
class ResumableSession:
    """A discovered conversation joined with any stored metadata."""

    conversation_id: str
    last_activity_at: str
    message_count: int
    mode: SessionMode | None = None
    model: str | None = None
