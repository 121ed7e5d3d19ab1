"""Pydantic models for session API requests and responses."""

from typing import Any

from pydantic import BaseModel, Field, field_validator

from homespun_server.agent.types import PermissionMode
from homespun_server.sessions.metadata_store import is_valid_conversation_id
from homespun_server.sessions.types import (
    AgentSession,
    MessageContent,
    ResumableSession,
    SessionMessage,
    SessionMode,
)


class CreateSessionRequest(BaseModel):
    """Request body for starting a new session."""

    entity_id: str = Field(..., description="Entity (issue or pull request) id")
    project_id: str = Field(..., description="Owning project id")
    working_directory: str = Field(..., description="Directory the agent runs in")
    mode: SessionMode = Field(
        SessionMode.PLAN, description="plan (read-only tools) or build"
    )
    model: str | None = Field(None, description="Model name (default: server default)")
    system_prompt: str | None = Field(None, description="Optional system prompt")


class ResumeSessionRequest(BaseModel):
    """Request body for resuming an existing agent conversation."""

    conversation_id: str = Field(..., description="The agent's conversation id")
    entity_id: str = Field(..., description="Entity (issue or pull request) id")
    project_id: str = Field(..., description="Owning project id")
    working_directory: str = Field(..., description="Directory the agent runs in")

    @field_validator("conversation_id")
    @classmethod
    def validate_conversation_id(cls, v: str) -> str:
        """Validate that the id cannot name a path outside the metadata store."""
        if not is_valid_conversation_id(v):
            raise ValueError("Conversation id cannot be empty or contain path separators")
        return v


class SendMessageRequest(BaseModel):
    """Request body for sending a message to a session."""

    message: str = Field(..., min_length=1, description="The user message")
    permission_mode: PermissionMode | None = Field(
        None, description="Override of the session's permission mode"
    )


class ToolResultResponse(BaseModel):
    tool_name: str
    summary: str
    is_success: bool
    typed_data: dict[str, Any] = Field(default_factory=dict)


class ContentResponse(BaseModel):
    """A single content block of a message."""

    type: str
    text: str | None = None
    tool_name: str | None = None
    tool_use_id: str | None = None
    tool_input: str | None = None
    tool_result: str | None = None
    tool_success: bool | None = None
    parsed_tool_result: ToolResultResponse | None = None
    is_streaming: bool = False
    index: int = -1

    @classmethod
    def from_content(cls, content: MessageContent) -> "ContentResponse":
        return cls.model_validate(content.to_dict())


class MessageResponse(BaseModel):
    """Response model for a single message."""

    message_id: str
    role: str
    content: list[ContentResponse]
    created_at: str

    @classmethod
    def from_message(cls, message: SessionMessage) -> "MessageResponse":
        return cls(
            message_id=message.message_id,
            role=message.role.value,
            content=[ContentResponse.from_content(c) for c in message.content],
            created_at=message.created_at,
        )


class SessionSummary(BaseModel):
    """A session item in list responses."""

    session_id: str
    entity_id: str
    project_id: str
    model: str
    mode: str
    status: str
    conversation_id: str | None = None
    created_at: str
    last_activity_at: str
    message_count: int
    total_cost_usd: float

    @classmethod
    def from_session(cls, session: AgentSession) -> "SessionSummary":
        return cls(
            session_id=session.session_id,
            entity_id=session.entity_id,
            project_id=session.project_id,
            model=session.model,
            mode=session.mode.value,
            status=session.status.value,
            conversation_id=session.conversation_id,
            created_at=session.created_at,
            last_activity_at=session.last_activity_at,
            message_count=len(session.messages),
            total_cost_usd=session.total_cost_usd,
        )


class SessionListResponse(BaseModel):
    """Response model for listing sessions."""

    sessions: list[SessionSummary]


class SessionDetailResponse(SessionSummary):
    """Response model for a session with full message history."""

    working_directory: str
    system_prompt: str | None = None
    total_duration_ms: int
    error_message: str | None = None
    messages: list[MessageResponse]

    @classmethod
    def from_session(cls, session: AgentSession) -> "SessionDetailResponse":
        summary = SessionSummary.from_session(session)
        return cls(
            **summary.model_dump(),
            working_directory=session.working_directory,
            system_prompt=session.system_prompt,
            total_duration_ms=session.total_duration_ms,
            error_message=session.error_message,
            messages=[MessageResponse.from_message(m) for m in session.messages],
        )


class SendMessageResponse(BaseModel):
    """Response for an accepted message."""

    session_id: str
    status: str = Field("accepted", description="The message was queued")


class ResumableSessionResponse(BaseModel):
    conversation_id: str
    last_activity_at: str
    message_count: int
    mode: str | None = None
    model: str | None = None

    @classmethod
    def from_resumable(cls, resumable: ResumableSession) -> "ResumableSessionResponse":
        return cls(
            conversation_id=resumable.conversation_id,
            last_activity_at=resumable.last_activity_at,
            message_count=resumable.message_count,
            mode=resumable.mode.value if resumable.mode else None,
            model=resumable.model,
        )


class ResumableSessionListResponse(BaseModel):
    sessions: list[ResumableSessionResponse]
