"""Pytest configuration for integration tests.

This module provides integration-test-specific fixtures that ensure
proper test isolation and mocking for API endpoint tests.
"""

import asyncio
from unittest.mock import patch

import pytest


@pytest.fixture(autouse=True)
def mock_agent_client(client_factory):
    """Replace AgentClient for all integration tests.

    This fixture patches the AgentClient class before the app lifespan runs,
    so every exchange the registry starts replays a script from the shared
    ``client_factory`` instead of spawning the CLI.
    """
    with patch("homespun_server.app.AgentClient", client_factory):
        yield client_factory


@pytest.fixture
def wait_for_session(async_client):
    """Poll a session until it satisfies a condition.

    Messages are processed in the background, so tests wait on the
    observable session state rather than on the request.
    """

    async def wait(session_id, condition, timeout=2.0):
        deadline = asyncio.get_running_loop().time() + timeout
        while True:
            response = await async_client.get(f"/api/v1/sessions/{session_id}")
            data = response.json()
            if response.status_code == 200 and condition(data):
                return data
            if asyncio.get_running_loop().time() > deadline:
                raise AssertionError(f"Session {session_id} never reached state: {data}")
            await asyncio.sleep(0.01)

    return wait
