"""Client for the agent CLI line-delimited JSON protocol.

This package provides the subprocess transport, the message decoder and the
exchange-level client used to drive the ``claude`` CLI.
"""

from homespun_server.agent.client import AgentClient
from homespun_server.agent.errors import (
    AgentSdkError,
    CliConnectionError,
    CliNotFoundError,
    MalformedMessageError,
    ProcessExitError,
    ProtocolDecodeError,
)
from homespun_server.agent.parser import parse_content_block, parse_message
from homespun_server.agent.transport import SubprocessCliTransport, find_cli
from homespun_server.agent.types import (
    AgentOptions,
    AssistantMessage,
    ContentBlock,
    ControlRequest,
    Message,
    PermissionMode,
    ResultMessage,
    SettingSource,
    StreamEvent,
    SystemMessage,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    UnknownBlock,
    UserMessage,
)

__all__ = [
    # Client
    "AgentClient",
    "SubprocessCliTransport",
    "find_cli",
    "parse_message",
    "parse_content_block",
    # Options
    "AgentOptions",
    "PermissionMode",
    "SettingSource",
    # Messages
    "Message",
    "UserMessage",
    "AssistantMessage",
    "SystemMessage",
    "ResultMessage",
    "StreamEvent",
    "ControlRequest",
    # Content blocks
    "ContentBlock",
    "TextBlock",
    "ThinkingBlock",
    "ToolUseBlock",
    "ToolResultBlock",
    "UnknownBlock",
    # Errors
    "AgentSdkError",
    "CliNotFoundError",
    "CliConnectionError",
    "ProcessExitError",
    "ProtocolDecodeError",
    "MalformedMessageError",
]
