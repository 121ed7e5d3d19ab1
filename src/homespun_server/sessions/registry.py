"""SessionRegistry for concurrent agent conversations.

This module provides the SessionRegistry class which handles:
- Starting and resuming sessions with per-session agent options
- Running message exchanges, one at a time per session
- Reconstructing streamed assistant content and linking tool results
- Tracking resumption ids and persisting session metadata
- Cancelling, stopping and restarting sessions
- Reporting every change to registered listeners
"""

import asyncio
import dataclasses
import logging
from typing import Any, Callable

from homespun_server.agent.client import AgentClient
from homespun_server.agent.errors import CliConnectionError
from homespun_server.agent.types import (
    AgentOptions,
    AssistantMessage,
    ControlRequest,
    Message,
    PermissionMode,
    ResultMessage,
    StreamEvent,
    SystemMessage,
    ToolResultBlock,
    UserMessage,
)
from homespun_server.services.tool_results import ToolResultParser, content_to_text
from homespun_server.sessions.accumulator import StreamingContentAccumulator
from homespun_server.sessions.discovery import SessionDiscovery
from homespun_server.sessions.errors import (
    SessionConfigurationError,
    SessionNotActiveError,
    SessionNotFoundError,
)
from homespun_server.sessions.events import SessionEvent, SessionEventType
from homespun_server.sessions.metadata_store import SessionMetadataStore
from homespun_server.sessions.options import SessionOptionsFactory
from homespun_server.sessions.types import (
    AgentSession,
    ContentType,
    MessageContent,
    MessageRole,
    ResumableSession,
    SessionMessage,
    SessionMetadata,
    SessionMode,
    SessionStatus,
    generate_id,
)

logger = logging.getLogger(__name__)

SessionListener = Callable[[SessionEvent], None]
ClientFactory = Callable[[AgentOptions], AgentClient]

_INACTIVE_STATUSES = (SessionStatus.STOPPED, SessionStatus.ERROR)


class SessionRegistry:
    """Owns every live agent session and runs their message exchanges.

    Each exchange spawns a fresh agent process through ``client_factory``,
    passing the conversation id from the previous exchange as the resume id.
    Exchanges on one session are serialized; different sessions run
    independently.
    """

    def __init__(
        self,
        options_factory: SessionOptionsFactory,
        metadata_store: SessionMetadataStore | None = None,
        discovery: SessionDiscovery | None = None,
        client_factory: ClientFactory = AgentClient,
        tool_result_parser: ToolResultParser | None = None,
        default_model: str = "sonnet",
    ):
        """Initialize the SessionRegistry.

        Args:
            options_factory: Builds the base agent options for new sessions
            metadata_store: Optional store for resumption metadata
            discovery: Optional discovery of on-disk conversations
            client_factory: Creates the agent client for each exchange
            tool_result_parser: Summarizes tool results (default: new parser)
            default_model: Model used when none is given or stored
        """
        self.options_factory = options_factory
        self.metadata_store = metadata_store
        self.discovery = discovery
        self.client_factory = client_factory
        self.tool_result_parser = tool_result_parser or ToolResultParser()
        self.default_model = default_model

        self._sessions: dict[str, AgentSession] = {}
        self._options: dict[str, AgentOptions] = {}
        self._tool_uses: dict[str, dict[str, str]] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._exchanges: dict[str, asyncio.Task[None]] = {}
        self._background: set[asyncio.Task[None]] = set()
        self._listeners: list[SessionListener] = []

    # --- Listeners ---

    def add_listener(self, listener: SessionListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: SessionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(
        self, event_type: SessionEventType, session_id: str, data: dict[str, Any] | None = None
    ) -> None:
        event = SessionEvent(event=event_type, session_id=session_id, data=data or {})
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"Session listener failed on {event_type.value}")

    def _set_status(self, session: AgentSession, status: SessionStatus) -> None:
        session.status = status
        session.touch()
        self._emit(
            SessionEventType.SESSION_STATUS_CHANGED,
            session.session_id,
            {"status": status.value, "error_message": session.error_message},
        )

    # --- Lifecycle ---

    def _register(self, session: AgentSession, options: AgentOptions) -> AgentSession:
        self._sessions[session.session_id] = session
        self._options[session.session_id] = options
        self._tool_uses[session.session_id] = {}
        self._locks[session.session_id] = asyncio.Lock()

        session.status = SessionStatus.RUNNING
        self._emit(
            SessionEventType.SESSION_STARTED,
            session.session_id,
            {
                "entity_id": session.entity_id,
                "project_id": session.project_id,
                "mode": session.mode.value,
                "model": session.model,
                "conversation_id": session.conversation_id,
            },
        )
        return session

    async def start_session(
        self,
        entity_id: str,
        project_id: str,
        working_directory: str,
        mode: SessionMode = SessionMode.PLAN,
        model: str | None = None,
        system_prompt: str | None = None,
    ) -> AgentSession:
        """Create a new session. No agent process is spawned until a message is sent.

        Args:
            entity_id: Id of the entity (issue, pull request) the session works on
            project_id: Id of the owning project
            working_directory: Directory the agent runs in
            mode: Plan (read-only tools) or build
            model: Model name (default: registry default)
            system_prompt: Optional system prompt

        Returns:
            The new session, in running status
        """
        model = model or self.default_model
        session = AgentSession(
            session_id=generate_id(),
            entity_id=entity_id,
            project_id=project_id,
            working_directory=working_directory,
            model=model,
            mode=mode,
            system_prompt=system_prompt,
        )
        options = self.options_factory.create_options(
            mode, working_directory, model, system_prompt
        )
        self._register(session, options)
        logger.info(
            f"Started {mode.value} session {session.session_id} for entity {entity_id}"
        )
        return session

    async def resume_session(
        self,
        conversation_id: str,
        entity_id: str,
        project_id: str,
        working_directory: str,
    ) -> AgentSession:
        """Create a new session that continues an existing agent conversation.

        Mode, model and system prompt are recovered from stored metadata when
        available; otherwise build mode and the default model are used.

        Args:
            conversation_id: The agent's id for the conversation to continue
            entity_id: Id of the entity the session works on
            project_id: Id of the owning project
            working_directory: Directory the agent runs in

        Returns:
            The new session, with its resumption id seeded
        """
        metadata = self.metadata_store.load(conversation_id) if self.metadata_store else None
        mode = metadata.mode if metadata else SessionMode.BUILD
        model = metadata.model if metadata else self.default_model
        system_prompt = metadata.system_prompt if metadata else None

        session = AgentSession(
            session_id=generate_id(),
            entity_id=entity_id,
            project_id=project_id,
            working_directory=working_directory,
            model=model,
            mode=mode,
            system_prompt=system_prompt,
            conversation_id=conversation_id,
        )
        options = self.options_factory.create_options(
            mode, working_directory, model, system_prompt
        )
        options.resume = conversation_id
        self._register(session, options)
        logger.info(
            f"Resumed conversation {conversation_id} as session {session.session_id}"
        )
        return session

    async def stop_session(self, session_id: str) -> None:
        """Stop a session, cancelling any in-flight exchange.

        Unknown or already stopped sessions are ignored.

        Args:
            session_id: The session to stop
        """
        session = self._sessions.pop(session_id, None)
        if session is None:
            logger.warning(f"Stop requested for unknown session {session_id}")
            return

        task = self._exchanges.get(session_id)
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait([task])

        self._options.pop(session_id, None)
        self._tool_uses.pop(session_id, None)
        self._locks.pop(session_id, None)

        session.status = SessionStatus.STOPPED
        session.touch()
        self._emit(SessionEventType.SESSION_STOPPED, session_id)
        logger.info(f"Stopped session {session_id}")

    async def restart_session(self, session_id: str) -> AgentSession:
        """Return a failed or cancelled session to running status.

        Raises:
            SessionNotFoundError: If the session does not exist
            SessionNotActiveError: If an exchange is in progress
        """
        session = self._get_or_raise(session_id)
        if session.status == SessionStatus.PROCESSING:
            raise SessionNotActiveError(
                f"Session {session_id} is processing a message", session_id
            )
        if session.status != SessionStatus.RUNNING:
            session.error_message = None
            self._set_status(session, SessionStatus.RUNNING)
            logger.info(f"Restarted session {session_id}")
        return session

    async def shutdown(self) -> None:
        """Stop every session and wait for background sends to finish."""
        for session_id in list(self._sessions):
            await self.stop_session(session_id)
        if self._background:
            await asyncio.wait(list(self._background))
        self._listeners.clear()

    # --- Messaging ---

    def _get_or_raise(self, session_id: str) -> AgentSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found", session_id)
        return session

    def _require_active(self, session_id: str) -> AgentSession:
        session = self._get_or_raise(session_id)
        if session.status in _INACTIVE_STATUSES:
            raise SessionNotActiveError(
                f"Session {session_id} is not active (status: {session.status.value})",
                session_id,
            )
        if session_id not in self._options:
            raise SessionConfigurationError(
                f"Session {session_id} has no agent options", session_id
            )
        return session

    def build_exchange_options(
        self, session_id: str, permission_mode: PermissionMode | None = None
    ) -> AgentOptions:
        """Build the options for the next exchange of a session.

        The stored options are copied with the session's resumption id,
        partial messages enabled and the permission mode overridden when
        one is given.

        Raises:
            SessionNotFoundError: If the session does not exist
            SessionConfigurationError: If the session has no stored options
        """
        session = self._get_or_raise(session_id)
        base = self._options.get(session_id)
        if base is None:
            raise SessionConfigurationError(
                f"Session {session_id} has no agent options", session_id
            )
        return dataclasses.replace(
            base,
            allowed_tools=list(base.allowed_tools),
            disallowed_tools=list(base.disallowed_tools),
            add_dirs=list(base.add_dirs),
            env=dict(base.env),
            mcp_servers=dict(base.mcp_servers),
            extra_args=dict(base.extra_args),
            resume=session.conversation_id or base.resume,
            permission_mode=permission_mode or base.permission_mode,
            include_partial_messages=True,
        )

    async def send_message(
        self,
        session_id: str,
        message: str,
        permission_mode: PermissionMode | None = None,
    ) -> None:
        """Send a user message and run the exchange to completion.

        Waits for any exchange already running on the session. If the
        exchange is cancelled by ``stop_session`` this returns normally; if
        the caller is cancelled the session is marked stopped and the
        cancellation propagates.

        Args:
            session_id: The session to send to
            message: The user message text
            permission_mode: Override of the session's permission mode

        Raises:
            SessionNotFoundError: If the session does not exist
            SessionNotActiveError: If the session is stopped or failed
            SessionConfigurationError: If the session has no stored options
            AgentSdkError: If the exchange fails; the session is left in
                error status
        """
        self._require_active(session_id)
        lock = self._locks[session_id]

        async with lock:
            session = self._require_active(session_id)
            options = self.build_exchange_options(session_id, permission_mode)

            user_message = SessionMessage(
                session_id=session_id,
                role=MessageRole.USER,
                content=[MessageContent(type=ContentType.TEXT, text=message)],
            )
            session.messages.append(user_message)
            self._emit(
                SessionEventType.MESSAGE_RECEIVED, session_id, user_message.to_dict()
            )
            self._set_status(session, SessionStatus.PROCESSING)

            task = asyncio.create_task(self._run_exchange(session, options, message))
            self._exchanges[session_id] = task
            try:
                await task
            except asyncio.CancelledError:
                if not task.done():
                    task.cancel()
                    await asyncio.wait([task])
                if session.status == SessionStatus.PROCESSING:
                    self._set_status(session, SessionStatus.STOPPED)
                current = asyncio.current_task()
                if current is not None and current.cancelling():
                    raise
                logger.info(f"Exchange on session {session_id} was cancelled")
            finally:
                if self._exchanges.get(session_id) is task:
                    del self._exchanges[session_id]

    def dispatch_message(
        self,
        session_id: str,
        message: str,
        permission_mode: PermissionMode | None = None,
    ) -> asyncio.Task[None]:
        """Validate and then send a message in the background.

        Returns:
            The background task running ``send_message``

        Raises:
            SessionNotFoundError: If the session does not exist
            SessionNotActiveError: If the session is stopped or failed
            SessionConfigurationError: If the session has no stored options
        """
        self._require_active(session_id)
        task = asyncio.create_task(
            self.send_message(session_id, message, permission_mode)
        )
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task[None]) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(f"Background message failed: {exc}")

    async def _run_exchange(
        self, session: AgentSession, options: AgentOptions, message: str
    ) -> None:
        session_id = session.session_id
        tool_uses = self._tool_uses.setdefault(session_id, {})
        assistant = SessionMessage(session_id=session_id, role=MessageRole.ASSISTANT)

        def emit(event_type: SessionEventType, data: dict[str, Any]) -> None:
            self._emit(event_type, session_id, data)

        accumulator = StreamingContentAccumulator(assistant, tool_uses, emit)
        client = self.client_factory(options)
        result: ResultMessage | None = None

        try:
            await client.connect(message)
            async for agent_message in client.receive_response():
                session.touch()
                if isinstance(agent_message, ResultMessage):
                    self._commit_assistant(session, accumulator)
                    self._apply_result(session, agent_message)
                    result = agent_message
                else:
                    self._handle_message(session, accumulator, agent_message)

            if result is None:
                raise CliConnectionError(
                    "Agent process ended before sending a result"
                )
            self._set_status(session, SessionStatus.RUNNING)
        except asyncio.CancelledError:
            logger.debug(f"Exchange on session {session_id} cancelled")
            raise
        except Exception as e:
            logger.error(f"Exchange on session {session_id} failed: {e}", exc_info=True)
            session.error_message = str(e)
            self._set_status(session, SessionStatus.ERROR)
            raise
        finally:
            await client.disconnect()

    def _handle_message(
        self,
        session: AgentSession,
        accumulator: StreamingContentAccumulator,
        message: Message,
    ) -> None:
        if isinstance(message, StreamEvent):
            accumulator.handle_stream_event(message)
        elif isinstance(message, AssistantMessage):
            accumulator.apply_assistant_message(message)
        elif isinstance(message, UserMessage):
            self._handle_tool_results(session, accumulator, message)
        elif isinstance(message, SystemMessage):
            logger.debug(f"System message ({message.subtype}) on {session.session_id}")
        elif isinstance(message, ControlRequest):
            logger.warning(
                f"Unhandled control request ({message.control_type}) "
                f"on {session.session_id}"
            )

    def _commit_assistant(
        self, session: AgentSession, accumulator: StreamingContentAccumulator
    ) -> None:
        """Append the assistant message built so far, if it has content."""
        assistant = accumulator.finish()
        if assistant.content:
            session.messages.append(assistant)
            self._emit(
                SessionEventType.MESSAGE_RECEIVED,
                session.session_id,
                assistant.to_dict(),
            )
        accumulator.reset(
            SessionMessage(session_id=session.session_id, role=MessageRole.ASSISTANT)
        )

    def _handle_tool_results(
        self,
        session: AgentSession,
        accumulator: StreamingContentAccumulator,
        message: UserMessage,
    ) -> None:
        if isinstance(message.content, str):
            return
        results = [b for b in message.content if isinstance(b, ToolResultBlock)]
        if not results:
            return

        # Tool results follow the assistant turn that requested them
        self._commit_assistant(session, accumulator)

        tool_uses = self._tool_uses.get(session.session_id, {})
        content = []
        for block in results:
            tool_name = tool_uses.get(block.tool_use_id, "unknown")
            is_error = bool(block.is_error)
            content.append(
                MessageContent(
                    type=ContentType.TOOL_RESULT,
                    tool_name=tool_name,
                    tool_use_id=block.tool_use_id,
                    tool_result=content_to_text(block.content),
                    tool_success=not is_error,
                    parsed_tool_result=self.tool_result_parser.parse(
                        tool_name, block.content, is_error
                    ),
                )
            )

        tool_message = SessionMessage(
            session_id=session.session_id, role=MessageRole.USER, content=content
        )
        session.messages.append(tool_message)
        self._emit(
            SessionEventType.MESSAGE_RECEIVED, session.session_id, tool_message.to_dict()
        )

    def _apply_result(self, session: AgentSession, result: ResultMessage) -> None:
        session.total_cost_usd += result.total_cost_usd or 0.0
        session.total_duration_ms += result.duration_ms

        if result.session_id and result.session_id != session.conversation_id:
            session.conversation_id = result.session_id
            self._save_metadata(session)

        self._emit(
            SessionEventType.RESULT_RECEIVED,
            session.session_id,
            {
                "conversation_id": result.session_id,
                "is_error": result.is_error,
                "num_turns": result.num_turns,
                "cost_usd": result.total_cost_usd,
                "duration_ms": result.duration_ms,
                "total_cost_usd": session.total_cost_usd,
                "total_duration_ms": session.total_duration_ms,
            },
        )

    def _save_metadata(self, session: AgentSession) -> None:
        if self.metadata_store is None or not session.conversation_id:
            return
        metadata = SessionMetadata(
            conversation_id=session.conversation_id,
            entity_id=session.entity_id,
            project_id=session.project_id,
            working_directory=session.working_directory,
            mode=session.mode,
            model=session.model,
            system_prompt=session.system_prompt,
        )
        try:
            self.metadata_store.save(metadata)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to save metadata for {session.session_id}: {e}")

    # --- Lookups ---

    def get_session(self, session_id: str) -> AgentSession | None:
        return self._sessions.get(session_id)

    def get_session_by_entity(self, entity_id: str) -> AgentSession | None:
        for session in self._sessions.values():
            if session.entity_id == entity_id:
                return session
        return None

    def list_sessions(self) -> list[AgentSession]:
        """All registered sessions, newest first."""
        return sorted(self._sessions.values(), key=lambda s: s.created_at, reverse=True)

    def sessions_for_project(self, project_id: str) -> list[AgentSession]:
        return [s for s in self.list_sessions() if s.project_id == project_id]

    def get_resumable_sessions(
        self, entity_id: str, working_directory: str
    ) -> list[ResumableSession]:
        """List conversations on disk that can be resumed.

        Args:
            entity_id: Entity the caller wants to resume for (used for logging)
            working_directory: Directory the conversations ran in

        Returns:
            Discovered conversations joined with stored metadata
        """
        if self.discovery is None:
            return []

        resumable = []
        for discovered in self.discovery.discover(working_directory):
            metadata = (
                self.metadata_store.load(discovered.conversation_id)
                if self.metadata_store
                else None
            )
            resumable.append(
                ResumableSession(
                    conversation_id=discovered.conversation_id,
                    last_activity_at=discovered.last_modified,
                    message_count=discovered.message_count,
                    mode=metadata.mode if metadata else None,
                    model=metadata.model if metadata else None,
                )
            )

        logger.debug(
            f"Found {len(resumable)} resumable sessions for entity {entity_id}"
        )
        return resumable
