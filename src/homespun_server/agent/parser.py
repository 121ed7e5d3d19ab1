"""Decoder from raw protocol JSON objects to typed messages.

This module converts a single JSON object read from the agent process into
one of the ``Message`` dataclasses. It is pure and stateless.
"""

import logging
import math
from typing import Any

from homespun_server.agent.errors import MalformedMessageError
from homespun_server.agent.types import (
    AssistantMessage,
    ContentBlock,
    ControlRequest,
    Message,
    ResultMessage,
    StreamEvent,
    SystemMessage,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    UnknownBlock,
    UserMessage,
)

logger = logging.getLogger(__name__)

_USAGE_INT_FIELDS = (
    "input_tokens",
    "output_tokens",
    "cache_creation_input_tokens",
    "cache_read_input_tokens",
)


def _require(data: dict[str, Any], key: str, message_type: str) -> Any:
    if key not in data or data[key] is None:
        raise MalformedMessageError(
            f"Missing required field '{key}' in {message_type} message",
            field=key,
            data=data,
        )
    return data[key]


def _to_float(value: Any, key: str, data: dict[str, Any]) -> float:
    """Coerce a number or numeric string to a finite float."""
    number = math.nan
    if isinstance(value, (int, float, str)) and not isinstance(value, bool):
        try:
            number = float(value.strip() if isinstance(value, str) else value)
        except (ValueError, OverflowError):
            pass
    if not math.isfinite(number):
        raise MalformedMessageError(
            f"Field '{key}' is not numeric: {value!r}", field=key, data=data
        )
    return number


def _to_int(value: Any, key: str, data: dict[str, Any]) -> int:
    """Coerce a number or numeric string to int."""
    if isinstance(value, bool):
        return int(value)
    return int(_to_float(value, key, data))


def _parse_usage(usage: Any) -> dict[str, Any] | None:
    if not isinstance(usage, dict):
        return None
    parsed = dict(usage)
    for key in _USAGE_INT_FIELDS:
        if key in parsed and parsed[key] is not None:
            parsed[key] = _to_int(parsed[key], key, usage)
    return parsed


def parse_content_block(block: dict[str, Any]) -> ContentBlock:
    """Decode one content block, falling back to ``UnknownBlock``.

    Args:
        block: Raw content block object.

    Returns:
        The decoded content block.
    """
    block_type = block.get("type", "")

    if block_type == "text":
        return TextBlock(text=block.get("text", ""))
    elif block_type == "thinking":
        return ThinkingBlock(
            thinking=block.get("thinking", ""),
            signature=block.get("signature", ""),
        )
    elif block_type == "tool_use":
        return ToolUseBlock(
            id=block.get("id", ""),
            name=block.get("name", ""),
            input=block.get("input") or {},
        )
    elif block_type == "tool_result":
        return ToolResultBlock(
            tool_use_id=block.get("tool_use_id", ""),
            content=block.get("content"),
            is_error=block.get("is_error"),
        )
    else:
        logger.debug(f"Unknown content block type: {block_type}")
        return UnknownBlock(type=block_type)


def _parse_blocks(raw: Any) -> list[ContentBlock]:
    if not isinstance(raw, list):
        return []
    return [parse_content_block(b) for b in raw if isinstance(b, dict)]


def parse_message(data: dict[str, Any]) -> Message:
    """Decode a raw protocol object into a typed message.

    Args:
        data: One JSON object read from the agent process.

    Returns:
        The decoded message.

    Raises:
        MalformedMessageError: If the object has no known ``type`` or lacks a
            field required by its type.
    """
    if not isinstance(data, dict):
        raise MalformedMessageError(
            f"Invalid message data type (expected dict, got {type(data).__name__})"
        )

    message_type = data.get("type")
    if not message_type:
        raise MalformedMessageError(
            "Message missing 'type' field", field="type", data=data
        )

    if message_type == "user":
        message = _require(data, "message", "user")
        content = message.get("content", "") if isinstance(message, dict) else ""
        if isinstance(content, list):
            content = _parse_blocks(content)
        elif not isinstance(content, str):
            content = str(content)
        return UserMessage(
            content=content,
            parent_tool_use_id=data.get("parent_tool_use_id"),
        )

    elif message_type == "assistant":
        message = _require(data, "message", "assistant")
        if not isinstance(message, dict):
            raise MalformedMessageError(
                "Assistant message payload is not an object",
                field="message",
                data=data,
            )
        return AssistantMessage(
            content=_parse_blocks(message.get("content")),
            model=_require(message, "model", "assistant"),
            parent_tool_use_id=data.get("parent_tool_use_id"),
        )

    elif message_type == "system":
        return SystemMessage(
            subtype=_require(data, "subtype", "system"),
            data=data,
        )

    elif message_type == "result":
        session_id = _require(data, "session_id", "result")
        if not isinstance(session_id, str):
            raise MalformedMessageError(
                f"Result session_id is not a string: {session_id!r}",
                field="session_id",
                data=data,
            )
        cost = data.get("total_cost_usd")
        return ResultMessage(
            subtype=_require(data, "subtype", "result"),
            duration_ms=_to_int(_require(data, "duration_ms", "result"), "duration_ms", data),
            duration_api_ms=_to_int(data.get("duration_api_ms", 0), "duration_api_ms", data),
            is_error=bool(data.get("is_error", False)),
            num_turns=_to_int(data.get("num_turns", 0), "num_turns", data),
            session_id=session_id,
            total_cost_usd=(
                _to_float(cost, "total_cost_usd", data) if cost is not None else None
            ),
            usage=_parse_usage(data.get("usage")),
            result=data.get("result"),
        )

    elif message_type in ("stream", "stream_event"):
        event = _require(data, "event", "stream_event")
        if not isinstance(event, dict):
            raise MalformedMessageError(
                "Stream event payload is not an object", field="event", data=data
            )
        return StreamEvent(
            uuid=data.get("uuid", ""),
            session_id=data.get("session_id", ""),
            event=event,
            parent_tool_use_id=data.get("parent_tool_use_id"),
        )

    elif message_type == "control_request":
        request = data.get("request")
        control_type = data.get("control_type")
        if control_type is None and isinstance(request, dict):
            control_type = request.get("subtype")
        return ControlRequest(
            control_type=control_type or "unknown",
            data=request if isinstance(request, dict) else None,
            parent_tool_use_id=data.get("parent_tool_use_id"),
        )

    raise MalformedMessageError(
        f"Unknown message type: {message_type}", field="type", data=data
    )
