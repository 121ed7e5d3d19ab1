"""Sessions router for agent session operations.

This module provides REST API endpoints for:
- Starting and resuming sessions
- Listing sessions, per project or overall
- Listing conversations that can be resumed
- Retrieving session details with message history
- Sending messages (processed in the background)
- Restarting failed sessions
- Stopping sessions
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from homespun_server.dependencies import get_session_registry
from homespun_server.models.sessions import (
    CreateSessionRequest,
    ResumableSessionListResponse,
    ResumableSessionResponse,
    ResumeSessionRequest,
    SendMessageRequest,
    SendMessageResponse,
    SessionDetailResponse,
    SessionListResponse,
    SessionSummary,
)
from homespun_server.sessions import (
    SessionConfigurationError,
    SessionError,
    SessionNotActiveError,
    SessionNotFoundError,
    SessionRegistry,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/sessions", tags=["sessions"])


def _error(status_code: int, code: str, message: str, **details) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"error": {"code": code, "message": message, "details": details}},
    )


def _session_error(session_id: str, exc: SessionError) -> HTTPException:
    """Translate a registry error into an HTTP error response."""
    if isinstance(exc, SessionNotFoundError):
        return _error(404, "session_not_found", str(exc), session_id=session_id)
    if isinstance(exc, SessionNotActiveError):
        return _error(409, "session_not_active", str(exc), session_id=session_id)
    if isinstance(exc, SessionConfigurationError):
        return _error(400, "session_misconfigured", str(exc), session_id=session_id)
    return _error(500, "session_error", str(exc), session_id=session_id)


@router.post(
    "",
    response_model=SessionDetailResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start a new session",
)
async def create_session(
    request: CreateSessionRequest,
    registry: Annotated[SessionRegistry, Depends(get_session_registry)],
) -> SessionDetailResponse:
    """Start a new agent session.

    No agent process is spawned until the first message is sent.

    Args:
        request: Session creation parameters
        registry: Injected SessionRegistry

    Returns:
        The created session
    """
    session = await registry.start_session(
        entity_id=request.entity_id,
        project_id=request.project_id,
        working_directory=request.working_directory,
        mode=request.mode,
        model=request.model,
        system_prompt=request.system_prompt,
    )
    return SessionDetailResponse.from_session(session)


@router.get("", response_model=SessionListResponse, summary="List all sessions")
async def list_sessions(
    registry: Annotated[SessionRegistry, Depends(get_session_registry)],
) -> SessionListResponse:
    """List all live sessions, newest first."""
    return SessionListResponse(
        sessions=[SessionSummary.from_session(s) for s in registry.list_sessions()]
    )


@router.get(
    "/project/{project_id}",
    response_model=SessionListResponse,
    summary="List sessions for a project",
)
async def list_project_sessions(
    project_id: str,
    registry: Annotated[SessionRegistry, Depends(get_session_registry)],
) -> SessionListResponse:
    """List live sessions belonging to a project."""
    return SessionListResponse(
        sessions=[
            SessionSummary.from_session(s)
            for s in registry.sessions_for_project(project_id)
        ]
    )


@router.get(
    "/resumable",
    response_model=ResumableSessionListResponse,
    summary="List resumable conversations",
)
async def list_resumable_sessions(
    registry: Annotated[SessionRegistry, Depends(get_session_registry)],
    working_directory: Annotated[str, Query(description="Working directory")],
    entity_id: Annotated[str, Query(description="Entity id")] = "",
) -> ResumableSessionListResponse:
    """List conversations the agent CLI has recorded for a working directory."""
    resumable = registry.get_resumable_sessions(entity_id, working_directory)
    return ResumableSessionListResponse(
        sessions=[ResumableSessionResponse.from_resumable(r) for r in resumable]
    )


@router.post(
    "/resume",
    response_model=SessionDetailResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Resume an agent conversation",
)
async def resume_session(
    request: ResumeSessionRequest,
    registry: Annotated[SessionRegistry, Depends(get_session_registry)],
) -> SessionDetailResponse:
    """Create a session that continues an existing agent conversation.

    Args:
        request: Resume parameters
        registry: Injected SessionRegistry

    Returns:
        The new session with its resumption id set
    """
    session = await registry.resume_session(
        conversation_id=request.conversation_id,
        entity_id=request.entity_id,
        project_id=request.project_id,
        working_directory=request.working_directory,
    )
    return SessionDetailResponse.from_session(session)


@router.get(
    "/{session_id}",
    response_model=SessionDetailResponse,
    summary="Get session details",
)
async def get_session(
    session_id: str,
    registry: Annotated[SessionRegistry, Depends(get_session_registry)],
) -> SessionDetailResponse:
    """Get a session with its full message history.

    Raises:
        HTTPException: 404 if session not found
    """
    session = registry.get_session(session_id)
    if session is None:
        raise _error(
            404, "session_not_found", f"Session {session_id} not found",
            session_id=session_id,
        )
    return SessionDetailResponse.from_session(session)


@router.post(
    "/{session_id}/messages",
    response_model=SendMessageResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Send a message to a session",
)
async def send_message(
    session_id: str,
    request: SendMessageRequest,
    registry: Annotated[SessionRegistry, Depends(get_session_registry)],
) -> SendMessageResponse:
    """Queue a user message for a session.

    The exchange runs in the background; progress is reported through the
    events stream.

    Raises:
        HTTPException: 404 if session not found
        HTTPException: 409 if session is stopped or failed
    """
    try:
        registry.dispatch_message(session_id, request.message, request.permission_mode)
    except SessionError as e:
        raise _session_error(session_id, e)
    logger.info(f"Accepted message for session {session_id}")
    return SendMessageResponse(session_id=session_id)


@router.post(
    "/{session_id}/restart",
    response_model=SessionDetailResponse,
    summary="Restart a failed session",
)
async def restart_session(
    session_id: str,
    registry: Annotated[SessionRegistry, Depends(get_session_registry)],
) -> SessionDetailResponse:
    """Return a failed or cancelled session to running status.

    Raises:
        HTTPException: 404 if session not found
        HTTPException: 409 if a message is being processed
    """
    try:
        session = await registry.restart_session(session_id)
    except SessionError as e:
        raise _session_error(session_id, e)
    return SessionDetailResponse.from_session(session)


@router.delete(
    "/{session_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Stop a session",
)
async def stop_session(
    session_id: str,
    registry: Annotated[SessionRegistry, Depends(get_session_registry)],
) -> Response:
    """Stop a session, cancelling any in-flight exchange.

    Raises:
        HTTPException: 404 if session not found
    """
    if registry.get_session(session_id) is None:
        raise _error(
            404, "session_not_found", f"Session {session_id} not found",
            session_id=session_id,
        )
    await registry.stop_session(session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
