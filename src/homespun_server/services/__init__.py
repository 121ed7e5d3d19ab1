"""Services for homespun-server."""

from homespun_server.services.tool_results import (
    ToolResultData,
    ToolResultParser,
    content_to_text,
)

__all__ = ["ToolResultData", "ToolResultParser", "content_to_text"]
