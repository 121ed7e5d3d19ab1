"""Unit tests for SessionRegistry."""

import asyncio

import pytest

from homespun_server.agent.errors import CliConnectionError
from homespun_server.agent.types import (
    AssistantMessage,
    PermissionMode,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage,
)
from homespun_server.sessions import (
    PLAN_MODE_TOOLS,
    SessionDiscovery,
    SessionEventType,
    SessionMetadataStore,
    SessionNotActiveError,
    SessionNotFoundError,
    SessionOptionsFactory,
    SessionRegistry,
)
from homespun_server.sessions.discovery import encode_project_path
from homespun_server.sessions.types import (
    ContentType,
    MessageRole,
    SessionMetadata,
    SessionMode,
    SessionStatus,
)


async def start(registry, mode=SessionMode.PLAN, **kwargs):
    params = {
        "entity_id": "issue-1",
        "project_id": "proj-1",
        "working_directory": "/repo",
        "mode": mode,
    }
    params.update(kwargs)
    return await registry.start_session(**params)


def event_types(events):
    return [e.event for e in events]


def text_stream(make_stream_event, text):
    return [
        make_stream_event(
            {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}}
        ),
        make_stream_event(
            {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": text}}
        ),
        make_stream_event({"type": "content_block_stop", "index": 0}),
    ]


class TestStartSession:
    """Tests for session creation."""

    @pytest.mark.asyncio
    async def test_start_session_is_running_without_spawning(self, registry, client_factory, events):
        """Test that a started session is running and no client was created."""
        session = await start(registry)

        assert session.status == SessionStatus.RUNNING
        assert session.model == "sonnet"
        assert session.conversation_id is None
        assert registry.get_session(session.session_id) is session
        assert client_factory.clients == []
        assert event_types(events) == [SessionEventType.SESSION_STARTED]

    @pytest.mark.asyncio
    async def test_plan_mode_restricts_tools(self, registry):
        """Test that plan sessions allow exactly the read-only tool list."""
        session = await start(registry, mode=SessionMode.PLAN)
        options = registry.build_exchange_options(session.session_id)

        assert options.allowed_tools == [
            "Read",
            "Glob",
            "Grep",
            "WebFetch",
            "WebSearch",
            "Task",
            "AskUserQuestion",
        ]
        assert options.allowed_tools == PLAN_MODE_TOOLS

    @pytest.mark.asyncio
    async def test_build_mode_leaves_tools_unrestricted(self, registry):
        """Test that build sessions have no allowed tool list."""
        session = await start(registry, mode=SessionMode.BUILD)

        assert registry.build_exchange_options(session.session_id).allowed_tools == []

    @pytest.mark.asyncio
    async def test_lookups(self, registry):
        """Test lookup by entity and by project."""
        first = await start(registry, entity_id="a", project_id="p1")
        second = await start(registry, entity_id="b", project_id="p2")

        assert registry.get_session_by_entity("b") is second
        assert registry.get_session_by_entity("zzz") is None
        assert registry.sessions_for_project("p1") == [first]
        assert {s.session_id for s in registry.list_sessions()} == {
            first.session_id,
            second.session_id,
        }


class TestSendMessage:
    """Tests for message exchanges."""

    @pytest.mark.asyncio
    async def test_streamed_text_and_resumption_id(
        self, registry, client_factory, events, make_stream_event, make_result
    ):
        """Test the start/delta/stop + result scenario."""
        client_factory.add_script(*text_stream(make_stream_event, "Hi"), make_result("abc"))
        session = await start(registry)

        await registry.send_message(session.session_id, "hello")

        assert session.status == SessionStatus.RUNNING
        assert session.conversation_id == "abc"
        user, assistant = session.messages
        assert user.role == MessageRole.USER
        assert user.content[0].text == "hello"
        assert assistant.role == MessageRole.ASSISTANT
        assert assistant.content[0].text == "Hi"
        assert assistant.content[0].is_streaming is False

        client = client_factory.clients[0]
        assert client.prompt == "hello"
        assert client.options.resume is None
        assert client.options.include_partial_messages is True
        assert client.disconnected

        types = event_types(events)
        assert types.count(SessionEventType.RESULT_RECEIVED) == 1
        result_at = types.index(SessionEventType.RESULT_RECEIVED)
        assert all(
            t not in types[result_at:]
            for t in (
                SessionEventType.STREAMING_CONTENT_STARTED,
                SessionEventType.STREAMING_CONTENT_DELTA,
                SessionEventType.STREAMING_CONTENT_STOPPED,
                SessionEventType.MESSAGE_RECEIVED,
            )
        )

    @pytest.mark.asyncio
    async def test_next_exchange_resumes_conversation(self, registry, client_factory, make_result):
        """Test that the resumption id from a result is used for the next exchange."""
        client_factory.add_script(make_result("abc", cost=0.01, duration_ms=1000))
        client_factory.add_script(make_result("abc", cost=0.02, duration_ms=500))
        session = await start(registry)

        await registry.send_message(session.session_id, "one")
        await registry.send_message(session.session_id, "two")

        assert client_factory.clients[1].options.resume == "abc"
        assert session.total_cost_usd == pytest.approx(0.03)
        assert session.total_duration_ms == 1500

    @pytest.mark.asyncio
    async def test_tool_results_are_linked_to_tool_names(
        self, registry, client_factory, make_stream_event, make_result
    ):
        """Test that tool results resolve names from earlier tool use blocks."""
        client_factory.add_script(
            make_stream_event(
                {
                    "type": "content_block_start",
                    "index": 0,
                    "content_block": {"type": "tool_use", "id": "t1", "name": "Bash"},
                }
            ),
            make_stream_event({"type": "content_block_stop", "index": 0}),
            AssistantMessage(
                content=[ToolUseBlock(id="t1", name="Bash", input={"command": "ls"})],
                model="sonnet",
            ),
            UserMessage(
                content=[
                    ToolResultBlock(tool_use_id="t1", content="$ ls\nREADME.md"),
                    ToolResultBlock(tool_use_id="t2", content="???", is_error=True),
                ]
            ),
            AssistantMessage(content=[TextBlock(text="Done")], model="sonnet"),
            make_result("abc"),
        )
        session = await start(registry)

        await registry.send_message(session.session_id, "list files")

        roles = [m.role for m in session.messages]
        assert roles == [
            MessageRole.USER,
            MessageRole.ASSISTANT,
            MessageRole.USER,
            MessageRole.ASSISTANT,
        ]
        tool_results = session.messages[2].content
        assert [c.type for c in tool_results] == [ContentType.TOOL_RESULT] * 2
        assert tool_results[0].tool_name == "Bash"
        assert tool_results[0].tool_success is True
        assert tool_results[0].parsed_tool_result.summary == "$ ls"
        assert tool_results[1].tool_name == "unknown"
        assert tool_results[1].tool_success is False
        assert session.messages[3].content[0].text == "Done"

    @pytest.mark.asyncio
    async def test_tool_names_carry_across_exchanges(
        self, registry, client_factory, make_result
    ):
        """Test that a tool use from one exchange links a result in the next."""
        client_factory.add_script(
            AssistantMessage(content=[ToolUseBlock(id="t1", name="Read")], model="sonnet"),
            make_result("abc"),
        )
        client_factory.add_script(
            UserMessage(content=[ToolResultBlock(tool_use_id="t1", content="x")]),
            make_result("abc"),
        )
        session = await start(registry)

        await registry.send_message(session.session_id, "one")
        await registry.send_message(session.session_id, "two")

        assert session.messages[-1].content[0].tool_name == "Read"

    @pytest.mark.asyncio
    async def test_permission_mode_override(self, registry, client_factory):
        """Test that the per-message permission mode replaces the default."""
        session = await start(registry)

        await registry.send_message(session.session_id, "hi", PermissionMode.PLAN)

        assert client_factory.clients[0].options.permission_mode == PermissionMode.PLAN
        stored = registry.build_exchange_options(session.session_id)
        assert stored.permission_mode == PermissionMode.BYPASS_PERMISSIONS

    @pytest.mark.asyncio
    async def test_unknown_session(self, registry):
        """Test that sending to an unknown session fails."""
        with pytest.raises(SessionNotFoundError):
            await registry.send_message("missing", "hi")

    @pytest.mark.asyncio
    async def test_failure_sets_error_status(self, registry, client_factory, events):
        """Test that a failed exchange leaves the session in error with history intact."""
        client_factory.add_script(CliConnectionError("Connection lost"))
        session = await start(registry)

        with pytest.raises(CliConnectionError):
            await registry.send_message(session.session_id, "hello")

        assert session.status == SessionStatus.ERROR
        assert "Connection lost" in session.error_message
        assert [m.role for m in session.messages] == [MessageRole.USER]
        assert client_factory.clients[0].disconnected

        with pytest.raises(SessionNotActiveError):
            await registry.send_message(session.session_id, "again")

    @pytest.mark.asyncio
    async def test_missing_result_is_a_failure(self, registry, client_factory):
        """Test that an exchange ending without a result fails."""
        client_factory.add_script(
            AssistantMessage(content=[TextBlock(text="partial")], model="sonnet")
        )
        session = await start(registry)

        with pytest.raises(CliConnectionError, match="before sending a result"):
            await registry.send_message(session.session_id, "hello")

        assert session.status == SessionStatus.ERROR

    @pytest.mark.asyncio
    async def test_restart_after_error(self, registry, client_factory, make_result):
        """Test that a failed session can be restarted and used again."""
        client_factory.add_script(CliConnectionError("boom"))
        client_factory.add_script(make_result("abc"))
        session = await start(registry)
        with pytest.raises(CliConnectionError):
            await registry.send_message(session.session_id, "one")

        await registry.restart_session(session.session_id)
        assert session.status == SessionStatus.RUNNING
        assert session.error_message is None

        await registry.send_message(session.session_id, "two")
        assert session.conversation_id == "abc"

    @pytest.mark.asyncio
    async def test_exchanges_on_one_session_never_overlap(
        self, registry, client_factory, make_result, pause
    ):
        """Test that a second message waits for the first exchange to finish."""
        client_factory.add_script(pause, make_result("abc"))
        client_factory.add_script(make_result("abc"))
        session = await start(registry)

        first = asyncio.create_task(registry.send_message(session.session_id, "one"))
        await pause.reached.wait()
        second = asyncio.create_task(registry.send_message(session.session_id, "two"))
        for _ in range(5):
            await asyncio.sleep(0)

        assert len(client_factory.clients) == 1
        assert session.status == SessionStatus.PROCESSING

        pause.release.set()
        await asyncio.gather(first, second)

        assert len(client_factory.clients) == 2
        assert client_factory.clients[1].prompt == "two"
        assert client_factory.clients[1].options.resume == "abc"

    @pytest.mark.asyncio
    async def test_sessions_run_independently(self, registry, client_factory, make_result, pause):
        """Test that a blocked exchange does not hold up another session."""
        client_factory.add_script(pause, make_result("a"))
        client_factory.add_script(make_result("b"))
        first = await start(registry, entity_id="a")
        second = await start(registry, entity_id="b")

        blocked = asyncio.create_task(registry.send_message(first.session_id, "one"))
        await pause.reached.wait()
        await registry.send_message(second.session_id, "two")

        assert second.conversation_id == "b"
        assert first.status == SessionStatus.PROCESSING

        pause.release.set()
        await blocked

    @pytest.mark.asyncio
    async def test_dispatch_runs_in_background(self, registry, client_factory, make_result):
        """Test that dispatch validates eagerly and sends in a task."""
        client_factory.add_script(make_result("abc"))
        session = await start(registry)

        task = registry.dispatch_message(session.session_id, "hi")
        await task

        assert session.conversation_id == "abc"
        with pytest.raises(SessionNotFoundError):
            registry.dispatch_message("missing", "hi")

    @pytest.mark.asyncio
    async def test_listener_errors_do_not_break_exchange(self, registry, make_result, client_factory):
        """Test that a failing listener is isolated."""

        def broken(event):
            raise RuntimeError("listener bug")

        registry.add_listener(broken)
        client_factory.add_script(make_result("abc"))
        session = await start(registry)

        await registry.send_message(session.session_id, "hi")

        assert session.status == SessionStatus.RUNNING

    @pytest.mark.asyncio
    async def test_malformed_stream_events_do_not_fail_exchange(
        self, registry, client_factory, make_stream_event, make_result
    ):
        """Test that odd stream payloads are dropped and the reply still lands."""
        client_factory.add_script(
            make_stream_event({"type": "content_block_start", "index": 0, "content_block": "text"}),
            make_stream_event({"type": "content_block_delta", "index": 0, "delta": "oops"}),
            make_stream_event(
                {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}}
            ),
            make_stream_event(
                {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": 5}}
            ),
            make_stream_event(
                {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hi"}}
            ),
            make_stream_event({"type": "content_block_stop", "index": 0}),
            make_result("abc"),
        )
        session = await start(registry)

        await registry.send_message(session.session_id, "hello")

        assert session.status == SessionStatus.RUNNING
        assert session.error_message is None
        assert session.messages[-1].content[0].text == "Hi"


class TestStopSession:
    """Tests for stopping and cancellation."""

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, registry, events):
        """Test that stopping twice has the same effect as once."""
        session = await start(registry)

        await registry.stop_session(session.session_id)
        await registry.stop_session(session.session_id)
        await registry.stop_session("never-existed")

        assert registry.get_session(session.session_id) is None
        assert session.status == SessionStatus.STOPPED
        assert event_types(events).count(SessionEventType.SESSION_STOPPED) == 1

    @pytest.mark.asyncio
    async def test_stop_cancels_in_flight_exchange(
        self, registry, client_factory, make_result, pause
    ):
        """Test that stopping cancels the exchange and the sender returns normally."""
        client_factory.add_script(pause, make_result("abc"))
        session = await start(registry)

        sender = asyncio.create_task(registry.send_message(session.session_id, "hi"))
        await pause.reached.wait()
        await registry.stop_session(session.session_id)
        await sender

        assert session.status == SessionStatus.STOPPED
        assert session.conversation_id is None
        assert client_factory.clients[0].disconnected
        with pytest.raises(SessionNotFoundError):
            await registry.send_message(session.session_id, "again")

    @pytest.mark.asyncio
    async def test_stop_fails_waiting_sender(self, registry, client_factory, make_result, pause):
        """Test that a message queued behind a stopped exchange is rejected."""
        client_factory.add_script(pause, make_result("abc"))
        session = await start(registry)

        first = asyncio.create_task(registry.send_message(session.session_id, "one"))
        await pause.reached.wait()
        second = asyncio.create_task(registry.send_message(session.session_id, "two"))
        await asyncio.sleep(0)
        await registry.stop_session(session.session_id)
        await first

        with pytest.raises(SessionNotFoundError):
            await second
        assert len(client_factory.clients) == 1

    @pytest.mark.asyncio
    async def test_caller_cancellation_stops_session(
        self, registry, client_factory, make_result, pause
    ):
        """Test that cancelling the caller cancels the exchange and marks the session stopped."""
        client_factory.add_script(pause, make_result("abc"))
        session = await start(registry)

        sender = asyncio.create_task(registry.send_message(session.session_id, "hi"))
        await pause.reached.wait()
        sender.cancel()
        with pytest.raises(asyncio.CancelledError):
            await sender

        assert session.status == SessionStatus.STOPPED
        assert client_factory.clients[0].disconnected
        assert registry.get_session(session.session_id) is session
        with pytest.raises(SessionNotActiveError):
            await registry.send_message(session.session_id, "again")

    @pytest.mark.asyncio
    async def test_shutdown_stops_everything(self, registry, client_factory, make_result, pause):
        """Test that shutdown stops all sessions and in-flight exchanges."""
        client_factory.add_script(pause, make_result("abc"))
        first = await start(registry)
        await start(registry)

        task = registry.dispatch_message(first.session_id, "hi")
        await pause.reached.wait()
        await registry.shutdown()

        assert task.done()
        assert registry.list_sessions() == []
        assert first.status == SessionStatus.STOPPED


class TestResumption:
    """Tests for resuming conversations and persisted metadata."""

    @pytest.fixture
    def store(self, tmp_path):
        return SessionMetadataStore(tmp_path / "metadata")

    @pytest.fixture
    def projects_dir(self, tmp_path):
        return tmp_path / "projects"

    @pytest.fixture
    def persistent_registry(self, store, projects_dir, client_factory):
        return SessionRegistry(
            options_factory=SessionOptionsFactory(),
            metadata_store=store,
            discovery=SessionDiscovery(projects_dir),
            client_factory=client_factory,
        )

    @pytest.mark.asyncio
    async def test_metadata_saved_when_conversation_id_assigned(
        self, persistent_registry, store, client_factory, make_result
    ):
        """Test that the first result persists the session configuration."""
        client_factory.add_script(make_result("abc"))
        session = await start(
            persistent_registry, mode=SessionMode.BUILD, model="opus", system_prompt="Be terse"
        )

        await persistent_registry.send_message(session.session_id, "hi")

        metadata = store.load("abc")
        assert metadata is not None
        assert metadata.mode == SessionMode.BUILD
        assert metadata.model == "opus"
        assert metadata.system_prompt == "Be terse"
        assert metadata.entity_id == "issue-1"

    @pytest.mark.asyncio
    async def test_resume_uses_stored_metadata(
        self, persistent_registry, store, client_factory, make_result
    ):
        """Test that a resumed session recovers mode and model and seeds the resume id."""
        store.save(
            SessionMetadata(
                conversation_id="conv-1",
                entity_id="issue-1",
                project_id="proj-1",
                working_directory="/repo",
                mode=SessionMode.PLAN,
                model="opus",
            )
        )
        client_factory.add_script(make_result("conv-1"))

        session = await persistent_registry.resume_session(
            "conv-1", "issue-1", "proj-1", "/repo"
        )
        await persistent_registry.send_message(session.session_id, "continue")

        assert session.conversation_id == "conv-1"
        assert session.mode == SessionMode.PLAN
        assert session.model == "opus"
        assert client_factory.clients[0].options.resume == "conv-1"

    @pytest.mark.asyncio
    async def test_resume_without_metadata_uses_defaults(self, persistent_registry):
        """Test resume defaults to build mode and the default model."""
        session = await persistent_registry.resume_session("conv-x", "e", "p", "/repo")

        assert session.mode == SessionMode.BUILD
        assert session.model == "sonnet"
        assert persistent_registry.build_exchange_options(session.session_id).resume == "conv-x"

    @pytest.mark.asyncio
    async def test_resumable_sessions(self, persistent_registry, store, projects_dir):
        """Test that discovered conversations are joined with metadata."""
        project_dir = projects_dir / encode_project_path("/repo")
        project_dir.mkdir(parents=True)
        (project_dir / "conv-1.jsonl").write_text(
            '{"type": "user"}\n{"type": "assistant"}\n{"type": "summary"}\n'
        )
        (project_dir / "conv-2.jsonl").write_text('{"type": "user"}\n')
        store.save(
            SessionMetadata(
                conversation_id="conv-1",
                entity_id="issue-1",
                project_id="proj-1",
                working_directory="/repo",
                mode=SessionMode.PLAN,
                model="opus",
            )
        )

        resumable = {
            r.conversation_id: r
            for r in persistent_registry.get_resumable_sessions("issue-1", "/repo")
        }

        assert set(resumable) == {"conv-1", "conv-2"}
        assert resumable["conv-1"].message_count == 2
        assert resumable["conv-1"].mode == SessionMode.PLAN
        assert resumable["conv-1"].model == "opus"
        assert resumable["conv-2"].mode is None

    @pytest.mark.asyncio
    async def test_path_like_conversation_id_keeps_session_running(
        self, persistent_registry, store, client_factory, make_result
    ):
        """Test that an id unusable as a file name skips metadata but not the exchange."""
        client_factory.add_script(make_result("a/b"))
        session = await start(persistent_registry)

        await persistent_registry.send_message(session.session_id, "hi")

        assert session.status == SessionStatus.RUNNING
        assert session.error_message is None
        assert session.conversation_id == "a/b"
        assert store.list_all() == []

    @pytest.mark.asyncio
    async def test_resume_with_path_like_id_uses_defaults(self, persistent_registry):
        """Test that resuming an id unusable as a file name does not fail."""
        session = await persistent_registry.resume_session("../escape", "e", "p", "/repo")

        assert session.status == SessionStatus.RUNNING
        assert session.mode == SessionMode.BUILD
        assert session.conversation_id == "../escape"
