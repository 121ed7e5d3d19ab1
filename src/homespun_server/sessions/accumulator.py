"""Reconstruction of assistant messages from partial stream events.

With partial messages enabled the agent emits ``content_block_start``,
``content_block_delta`` and ``content_block_stop`` events ahead of each
complete assistant message. ``StreamingContentAccumulator`` applies those
events to an in-progress ``SessionMessage`` so listeners can render content
as it arrives.
"""

import json
import logging
from typing import Any, Callable

from homespun_server.agent.types import (
    AssistantMessage,
    StreamEvent,
    TextBlock,
    ThinkingBlock,
    ToolUseBlock,
)
from homespun_server.sessions.events import SessionEventType
from homespun_server.sessions.types import ContentType, MessageContent, SessionMessage

logger = logging.getLogger(__name__)

EmitCallback = Callable[[SessionEventType, dict[str, Any]], None]

_BLOCK_TYPES = {
    "text": ContentType.TEXT,
    "thinking": ContentType.THINKING,
    "tool_use": ContentType.TOOL_USE,
}

# Delta type to the payload field carrying its increment
_DELTA_FIELDS = {
    "text_delta": "text",
    "thinking_delta": "thinking",
    "input_json_delta": "partial_json",
}


def _text_field(block: dict[str, Any], key: str) -> str:
    value = block.get(key, "")
    return value if isinstance(value, str) else ""


class StreamingContentAccumulator:
    """Applies block start/delta/stop events to one assistant message.

    Each block moves through start, zero or more deltas, then stop. Deltas
    and stops addressed to an unknown or already closed block are dropped.
    An event without an index goes to the most recently opened block that
    is still open.

    Attributes:
        message: The assistant message being built.
        tool_uses: The session's tool-use id to tool name map, shared with
            the registry.
    """

    def __init__(
        self,
        message: SessionMessage,
        tool_uses: dict[str, str],
        emit: EmitCallback,
    ) -> None:
        self.message = message
        self.tool_uses = tool_uses
        self._emit = emit
        self._streamed = False

    def reset(self, message: SessionMessage) -> None:
        """Start accumulating into a new message."""
        self.message = message
        self._streamed = False

    def _open_blocks(self) -> list[MessageContent]:
        return [c for c in self.message.content if c.is_streaming]

    def _find_open_block(self, index: int | None) -> MessageContent | None:
        open_blocks = self._open_blocks()
        if index is None:
            return open_blocks[-1] if open_blocks else None
        for block in open_blocks:
            if block.index == index:
                return block
        return None

    def handle_stream_event(self, stream_event: StreamEvent) -> None:
        """Apply one partial-message event."""
        event = stream_event.event
        event_type = event.get("type")

        if event_type == "content_block_start":
            self._start_block(event)
        elif event_type == "content_block_delta":
            self._apply_delta(event)
        elif event_type == "content_block_stop":
            self._stop_block(event)
        else:
            logger.debug(f"Ignoring stream event: {event_type}")

    def _start_block(self, event: dict[str, Any]) -> None:
        block = event.get("content_block")
        if not isinstance(block, dict):
            logger.debug(f"Ignoring block start without a content block: {block!r}")
            return
        block_type = block.get("type")
        content_type = _BLOCK_TYPES.get(block_type) if isinstance(block_type, str) else None
        if content_type is None:
            logger.debug(f"Ignoring start of unsupported block: {block.get('type')}")
            return

        index = event.get("index")
        content = MessageContent(
            type=content_type,
            is_streaming=True,
            index=index if isinstance(index, int) else -1,
        )
        if content_type == ContentType.TEXT:
            content.text = _text_field(block, "text")
        elif content_type == ContentType.THINKING:
            content.text = _text_field(block, "thinking")
        else:
            name = block.get("name")
            tool_name = name if isinstance(name, str) and name else "unknown"
            tool_use_id = block.get("id")
            content.tool_name = tool_name
            content.tool_use_id = tool_use_id if isinstance(tool_use_id, str) else None
            content.tool_input = ""
            if content.tool_use_id:
                self.tool_uses[content.tool_use_id] = tool_name

        self.message.content.append(content)
        self._streamed = True
        self._emit(
            SessionEventType.STREAMING_CONTENT_STARTED,
            {
                "message_id": self.message.message_id,
                "index": content.index,
                "content": content.to_dict(),
            },
        )

    def _apply_delta(self, event: dict[str, Any]) -> None:
        index = event.get("index")
        block = self._find_open_block(index if isinstance(index, int) else None)
        if block is None:
            logger.debug(f"Dropping delta for closed or unknown block index {index}")
            return

        delta = event.get("delta")
        if not isinstance(delta, dict):
            logger.debug(f"Dropping delta with non-object payload: {delta!r}")
            return

        delta_type = delta.get("type")
        field = _DELTA_FIELDS.get(delta_type) if isinstance(delta_type, str) else None
        if field is None:
            logger.debug(f"Ignoring delta type: {delta_type}")
            return

        increment = delta.get(field, "")
        if not isinstance(increment, str):
            logger.debug(f"Dropping {delta_type} with non-string {field}: {increment!r}")
            return

        if delta_type == "input_json_delta":
            block.tool_input = (block.tool_input or "") + increment
        else:
            block.text = (block.text or "") + increment

        self._emit(
            SessionEventType.STREAMING_CONTENT_DELTA,
            {
                "message_id": self.message.message_id,
                "index": block.index,
                "content_type": block.type.value,
                "delta": increment,
            },
        )

    def _stop_block(self, event: dict[str, Any]) -> None:
        index = event.get("index")
        block = self._find_open_block(index if isinstance(index, int) else None)
        if block is None:
            logger.debug(f"Dropping stop for closed or unknown block index {index}")
            return
        self._close(block)

    def _close(self, block: MessageContent) -> None:
        block.is_streaming = False
        self._emit(
            SessionEventType.STREAMING_CONTENT_STOPPED,
            {
                "message_id": self.message.message_id,
                "index": block.index,
                "content": block.to_dict(),
            },
        )

    def apply_assistant_message(self, assistant: AssistantMessage) -> None:
        """Apply a complete assistant message.

        Blocks already streamed for it are closed. When nothing was streamed
        its blocks are converted directly.
        """
        for block in assistant.content:
            if isinstance(block, ToolUseBlock) and block.id:
                self.tool_uses[block.id] = block.name or "unknown"

        if self._streamed:
            self.finish()
            self._streamed = False
            return

        for block in assistant.content:
            if isinstance(block, TextBlock):
                content = MessageContent(type=ContentType.TEXT, text=block.text)
            elif isinstance(block, ThinkingBlock):
                content = MessageContent(type=ContentType.THINKING, text=block.thinking)
            elif isinstance(block, ToolUseBlock):
                content = MessageContent(
                    type=ContentType.TOOL_USE,
                    tool_name=block.name or "unknown",
                    tool_use_id=block.id,
                    tool_input=json.dumps(block.input),
                )
            else:
                continue
            self.message.content.append(content)

    def finish(self) -> SessionMessage:
        """Close any blocks still open and return the message."""
        for block in self._open_blocks():
            self._close(block)
        return self.message
