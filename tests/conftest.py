"""Pytest configuration and shared fixtures for homespun-server tests.

This module provides common fixtures used across all test modules,
including test app creation, async client setup, and a scripted stand-in
for the agent CLI client.
"""

import asyncio

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from homespun_server import create_app
from homespun_server.agent.types import ResultMessage, StreamEvent
from homespun_server.config import HomespunServerSettings
from homespun_server.sessions import SessionOptionsFactory, SessionRegistry


class Pause:
    """Script step that blocks the fake client until released."""

    def __init__(self):
        self.reached = asyncio.Event()
        self.release = asyncio.Event()


class FakeAgentClient:
    """Replays a scripted list of messages instead of running the CLI.

    Script steps are agent messages to yield, exceptions to raise, or
    ``Pause`` objects to wait on.
    """

    def __init__(self, options, script):
        self.options = options
        self.script = script
        self.prompt = None
        self.connected = False
        self.disconnected = False

    async def connect(self, prompt=None):
        self.connected = True
        self.prompt = prompt

    async def receive_response(self):
        for step in self.script:
            if isinstance(step, Pause):
                step.reached.set()
                await step.release.wait()
            elif isinstance(step, Exception):
                raise step
            else:
                yield step
                if isinstance(step, ResultMessage):
                    return

    async def disconnect(self):
        self.disconnected = True


class ScriptedClientFactory:
    """Creates one FakeAgentClient per exchange, consuming queued scripts."""

    def __init__(self):
        self.scripts = []
        self.clients = []

    def add_script(self, *steps):
        self.scripts.append(list(steps))

    def __call__(self, options):
        script = self.scripts.pop(0) if self.scripts else [_result()]
        client = FakeAgentClient(options, script)
        self.clients.append(client)
        return client


def _stream_event(event, session_id="abc"):
    """Build a stream event message around a raw event payload."""
    return StreamEvent(uuid="u1", session_id=session_id, event=event)


def _result(session_id="abc", cost=0.01, duration_ms=1200, is_error=False):
    """Build a successful result message."""
    return ResultMessage(
        subtype="error" if is_error else "success",
        duration_ms=duration_ms,
        duration_api_ms=duration_ms - 200,
        is_error=is_error,
        num_turns=1,
        session_id=session_id,
        total_cost_usd=cost,
    )


@pytest.fixture
def test_settings(tmp_path):
    """Create test settings with isolated temporary directories.

    Args:
        tmp_path: Pytest fixture providing a temporary directory.

    Returns:
        HomespunServerSettings: Settings instance configured for testing.
    """
    return HomespunServerSettings(
        host="127.0.0.1",
        port=8000,
        data_dir=str(tmp_path),
        metadata_dir="session_metadata",
        claude_projects_dir=str(tmp_path / "claude_projects"),
        claude_path="/usr/bin/true",
        log_level="DEBUG",
        cors_origins=["*"],
    )


@pytest.fixture
def make_stream_event():
    """Factory fixture for stream event messages."""
    return _stream_event


@pytest.fixture
def make_result():
    """Factory fixture for result messages."""
    return _result


@pytest.fixture
def pause():
    """A fresh Pause step for scripting a blocked exchange."""
    return Pause()


@pytest.fixture
def client_factory():
    """A factory producing scripted fake agent clients."""
    return ScriptedClientFactory()


@pytest.fixture
def events():
    """A list that collects every event emitted by a registry."""
    return []


@pytest.fixture
def registry(client_factory, events):
    """A session registry wired to the scripted client factory."""
    reg = SessionRegistry(
        options_factory=SessionOptionsFactory(),
        client_factory=client_factory,
    )
    reg.add_listener(events.append)
    return reg


@pytest.fixture
def test_app(test_settings):
    """Create a FastAPI test application instance.

    Args:
        test_settings: Test settings fixture.

    Returns:
        FastAPI: Configured test application.
    """
    return create_app(settings=test_settings)


@pytest_asyncio.fixture
async def async_client(test_app):
    """Create an async HTTP client for testing FastAPI endpoints.

    Args:
        test_app: Test application fixture.

    Yields:
        AsyncClient: Async HTTP client for making test requests.
    """
    # Trigger the lifespan startup manually for tests
    async with test_app.router.lifespan_context(test_app):
        transport = ASGITransport(app=test_app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
