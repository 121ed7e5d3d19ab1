"""Async client for a single agent CLI conversation.

This module pairs a ``SubprocessCliTransport`` with the message decoder and
exposes the exchange-level operations used by the session registry.
"""

import json
import logging
from typing import Any, AsyncIterator

from homespun_server.agent.errors import CliConnectionError, MalformedMessageError
from homespun_server.agent.parser import parse_message
from homespun_server.agent.transport import SubprocessCliTransport
from homespun_server.agent.types import AgentOptions, Message, ResultMessage

logger = logging.getLogger(__name__)


class AgentClient:
    """Bidirectional client for the agent CLI.

    A client owns at most one process. It is created per exchange by the
    session registry and disposed of once the exchange ends.

    Example:
        async with AgentClient(options) as client:
            await client.query("Hello")
            async for message in client.receive_response():
                ...

    Attributes:
        options: Options for the agent process.
    """

    def __init__(self, options: AgentOptions | None = None) -> None:
        """Initialize the client.

        Args:
            options: Process options. Defaults to ``AgentOptions()``.
        """
        self.options = options or AgentOptions()
        self._transport: SubprocessCliTransport | None = None

    @property
    def transport(self) -> SubprocessCliTransport | None:
        return self._transport

    async def connect(self, prompt: str | None = None) -> None:
        """Start the agent process in streaming mode.

        When ``prompt`` is given it is sent as the first user turn.

        Raises:
            CliNotFoundError: If the CLI executable is missing.
            CliConnectionError: If the process cannot be started.
        """
        if self._transport is not None:
            return
        self._transport = SubprocessCliTransport(self.options, streaming=True)
        await self._transport.connect()
        if prompt is not None:
            await self.query(prompt)

    async def query(self, prompt: str, session_id: str = "default") -> None:
        """Send one user turn to the agent.

        Args:
            prompt: The user message text.
            session_id: Conversation id echoed in the request envelope.

        Raises:
            CliConnectionError: If the client is not connected.
        """
        if self._transport is None:
            raise CliConnectionError("Not connected. Call connect() first.")
        request = {
            "type": "user",
            "message": {"role": "user", "content": prompt},
            "parent_tool_use_id": None,
            "session_id": session_id,
        }
        await self._transport.write(json.dumps(request))
        logger.debug(f"Sent user turn ({len(prompt)} chars)")

    async def receive_messages(self) -> AsyncIterator[Message]:
        """Yield every decoded message until the process ends.

        Objects that do not match a known message shape are logged and
        skipped.
        """
        if self._transport is None:
            raise CliConnectionError("Not connected. Call connect() first.")
        async for data in self._transport.read_messages():
            try:
                yield parse_message(data)
            except MalformedMessageError as e:
                logger.warning(f"Skipping malformed agent message: {e}")

    async def receive_response(self) -> AsyncIterator[Message]:
        """Yield messages up to and including the next ``ResultMessage``."""
        async for message in self.receive_messages():
            yield message
            if isinstance(message, ResultMessage):
                return

    async def disconnect(self) -> None:
        """Terminate the agent process. Safe to call more than once."""
        if self._transport is not None:
            await self._transport.close()

    async def __aenter__(self) -> "AgentClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.disconnect()
