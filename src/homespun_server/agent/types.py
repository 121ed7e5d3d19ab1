"""Data types for the agent CLI wire protocol.

Messages and content blocks decoded from the agent process are immutable
dataclasses. ``Message`` and ``ContentBlock`` are closed unions; consumers
dispatch on them with ``isinstance``.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


class PermissionMode(str, Enum):
    """Tool permission policy passed to the agent process."""

    DEFAULT = "default"
    ACCEPT_EDITS = "acceptEdits"
    PLAN = "plan"
    BYPASS_PERMISSIONS = "bypassPermissions"


class SettingSource(str, Enum):
    """Settings files the agent process is allowed to load."""

    USER = "user"
    PROJECT = "project"
    LOCAL = "local"


# --- Content blocks ---


@dataclass(frozen=True)
class TextBlock:
    """Plain text emitted by the assistant."""

    text: str


@dataclass(frozen=True)
class ThinkingBlock:
    """Extended reasoning emitted by the assistant."""

    thinking: str
    signature: str = ""


@dataclass(frozen=True)
class ToolUseBlock:
    """A tool invocation requested by the assistant."""

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResultBlock:
    """The result of a tool invocation, sent back in a user message."""

    tool_use_id: str
    content: str | list[dict[str, Any]] | None = None
    is_error: bool | None = None


@dataclass(frozen=True)
class UnknownBlock:
    """Placeholder for block types this client does not understand."""

    type: str = ""


ContentBlock = TextBlock | ThinkingBlock | ToolUseBlock | ToolResultBlock | UnknownBlock


# --- Messages ---


@dataclass(frozen=True)
class UserMessage:
    content: str | list[ContentBlock]
    parent_tool_use_id: str | None = None


@dataclass(frozen=True)
class AssistantMessage:
    content: list[ContentBlock]
    model: str
    parent_tool_use_id: str | None = None


@dataclass(frozen=True)
class SystemMessage:
    subtype: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ResultMessage:
    """Terminal message of an exchange, carrying cost and the resumption id."""

    subtype: str
    duration_ms: int
    duration_api_ms: int
    is_error: bool
    num_turns: int
    session_id: str
    total_cost_usd: float | None = None
    usage: dict[str, Any] | None = None
    result: str | None = None


@dataclass(frozen=True)
class StreamEvent:
    """A partial-message event (content block start, delta or stop)."""

    uuid: str
    session_id: str
    event: dict[str, Any]
    parent_tool_use_id: str | None = None


@dataclass(frozen=True)
class ControlRequest:
    control_type: str = "unknown"
    data: dict[str, Any] | None = None
    parent_tool_use_id: str | None = None


Message = (
    UserMessage
    | AssistantMessage
    | SystemMessage
    | ResultMessage
    | StreamEvent
    | ControlRequest
)


@dataclass
class AgentOptions:
    """Configuration for a single agent process invocation.

    Every field maps onto a command line flag or the process environment.
    ``None`` and empty values are omitted from the command line.
    """

    system_prompt: str | None = None
    allowed_tools: list[str] = field(default_factory=list)
    disallowed_tools: list[str] = field(default_factory=list)
    max_turns: int | None = None
    model: str | None = None
    permission_mode: PermissionMode | None = None
    resume: str | None = None
    continue_conversation: bool = False
    fork_session: bool = False
    mcp_servers: dict[str, Any] = field(default_factory=dict)
    cwd: str | Path | None = None
    add_dirs: list[str | Path] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    extra_args: dict[str, str | None] = field(default_factory=dict)
    include_partial_messages: bool = False
    setting_sources: list[SettingSource] | None = None
    cli_path: str | Path | None = None
    max_buffer_size: int | None = None
