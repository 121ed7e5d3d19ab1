"""Tool result summarization service.

This module turns the raw content of a tool result block into a
``ToolResultData`` summary suitable for compact display, for example
"Found 3 files" for a Glob call or "$ ls -la" for a Bash call.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Any

logger = logging.getLogger(__name__)

_FILE_PATH_MESSAGE = re.compile(
    r"(?:File|Created|Updated|Written|Edited)[^:]*:\s*(.+)", re.IGNORECASE
)
_STANDALONE_PATH = re.compile(r"^(/[^\s]+|[A-Za-z]:\\[^\s]+)")
_PATH_IN_CONTENT = re.compile(r"(/[\w./\-]+\.\w+|[A-Za-z]:\\[\w\\./\-]+\.\w+)")
_COMMAND_PREFIX = re.compile(r"^\$\s*(.+)$", re.MULTILINE)

_LANGUAGES = {
    ".cs": "csharp",
    ".js": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".py": "python",
    ".rb": "ruby",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".html": "html",
    ".css": "css",
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".md": "markdown",
    ".sql": "sql",
    ".sh": "bash",
}


@dataclass
class ToolResultData:
    """Structured summary of a tool result for display.

    Attributes:
        tool_name: Name of the tool that produced the result.
        summary: One-line human readable summary.
        is_success: Whether the tool reported success.
        typed_data: Tool specific fields (file path, line count, ...).
    """

    tool_name: str
    summary: str
    is_success: bool = True
    typed_data: dict[str, Any] = field(default_factory=dict)


def content_to_text(content: Any) -> str:
    """Flatten tool result content (a string or a list of blocks) to text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for item in content:
            if isinstance(item, dict):
                parts.append(str(item.get("text", "")))
            else:
                parts.append(str(item))
        return "\n".join(p for p in parts if p)
    return str(content)


def _truncate(text: str, max_length: int) -> str:
    if not text:
        return ""
    first_line = text.split("\n")[0].strip()
    if len(first_line) <= max_length:
        return first_line
    return first_line[: max_length - 3] + "..."


def _truncate_path(path: str, max_length: int = 40) -> str:
    if len(path) <= max_length:
        return path
    name = PurePath(path).name
    if len(name) >= max_length - 3:
        return "..." + name[-(max_length - 3) :]
    return ".../" + name


def _extract_file_path(content: str) -> str | None:
    match = _FILE_PATH_MESSAGE.search(content)
    if match:
        return match.group(1).strip()
    match = _STANDALONE_PATH.search(content)
    if match:
        return match.group(0)
    match = _PATH_IN_CONTENT.search(content)
    if match:
        return match.group(0)
    return None


def _count_lines(content: str) -> int:
    return len(content.split("\n")) if content else 0


def _first_meaningful_line(content: str) -> str | None:
    for line in content.split("\n"):
        stripped = line.strip()
        if len(stripped) < 3 or set(stripped) <= set("-=#"):
            continue
        return stripped
    return None


def _plural(count: int, word: str, suffix: str = "s") -> str:
    return f"{count} {word}{'' if count == 1 else suffix}"


class ToolResultParser:
    """Builds display summaries for tool results, dispatching on tool name."""

    def parse(self, tool_name: str, content: Any, is_error: bool) -> ToolResultData:
        """Summarize one tool result.

        Args:
            tool_name: Name of the tool (case-insensitive).
            content: Raw content from the tool result block.
            is_error: Whether the tool reported an error.

        Returns:
            ToolResultData: The summary. Unknown tools get a generic summary.
        """
        if content is None:
            return self._generic(tool_name, "(no output)", is_error)

        text = content_to_text(content)
        name = tool_name.lower()

        if name == "read":
            return self._read(text, is_error)
        elif name in ("write", "edit"):
            return self._write(name, text, is_error)
        elif name == "bash":
            return self._bash(text, is_error)
        elif name in ("task", "explore"):
            return self._agent(name, text, is_error)
        elif name == "grep":
            return self._grep(text, is_error)
        elif name == "glob":
            return self._glob(text, is_error)
        elif name in ("webfetch", "websearch"):
            display = "WebFetch" if name == "webfetch" else "WebSearch"
            return ToolResultData(
                tool_name=display,
                summary="Request failed" if is_error else "Content retrieved",
                is_success=not is_error,
                typed_data={"content": text},
            )
        return self._generic(tool_name, text, is_error)

    def _read(self, text: str, is_error: bool) -> ToolResultData:
        line_count = _count_lines(text)
        if is_error:
            return ToolResultData(
                tool_name="Read",
                summary=_truncate(text, 60),
                is_success=False,
                typed_data={"file_path": "unknown", "total_lines": line_count},
            )
        file_path = _extract_file_path(text) or "file"
        return ToolResultData(
            tool_name="Read",
            summary=f"{_truncate_path(file_path)} ({line_count} lines)",
            typed_data={
                "file_path": file_path,
                "total_lines": line_count,
                "language": _LANGUAGES.get(PurePath(file_path).suffix.lower()),
            },
        )

    def _write(self, name: str, text: str, is_error: bool) -> ToolResultData:
        file_path = _extract_file_path(text) or "file"
        short_path = _truncate_path(file_path)
        if name == "edit":
            display, done, operation = "Edit", "Edited", "edited"
        else:
            display, done = "Write", "Wrote"
            lowered = text.lower()
            operation = next(
                (op for op in ("created", "updated", "written") if op in lowered),
                "created",
            )
        if is_error:
            summary = f"Failed to {name} {short_path}"
        else:
            summary = f"{done} {short_path}"
        return ToolResultData(
            tool_name=display,
            summary=summary,
            is_success=not is_error,
            typed_data={"file_path": file_path, "operation": operation, "message": text},
        )

    def _bash(self, text: str, is_error: bool) -> ToolResultData:
        match = _COMMAND_PREFIX.search(text)
        command = match.group(1).strip() if match else None
        if is_error:
            summary = "Command failed"
        elif command:
            summary = f"$ {_truncate(command, 40)}"
        else:
            summary = _truncate(text, 50) if text.strip() else "Command completed"
        return ToolResultData(
            tool_name="Bash",
            summary=summary,
            is_success=not is_error,
            typed_data={"command": command, "output": text, "is_error": is_error},
        )

    def _agent(self, name: str, text: str, is_error: bool) -> ToolResultData:
        summary = _first_meaningful_line(text) or "Task completed"
        return ToolResultData(
            tool_name="Explore" if name == "explore" else "Task",
            summary=_truncate(summary, 60),
            is_success=not is_error,
            typed_data={"summary": summary, "detailed_output": text},
        )

    def _grep(self, text: str, is_error: bool) -> ToolResultData:
        matches: list[dict[str, Any]] = []
        for line in text.split("\n"):
            if not line.strip():
                continue
            file_path, sep, rest = line.partition(":")
            if not sep or not file_path:
                matches.append({"file_path": line.strip()})
                continue
            line_no, sep2, match_text = rest.partition(":")
            if sep2 and line_no.isdigit():
                matches.append(
                    {"file_path": file_path, "line_number": int(line_no), "content": match_text}
                )
            else:
                matches.append({"file_path": file_path, "content": rest})
        count = len(matches)
        return ToolResultData(
            tool_name="Grep",
            summary=f"Found {_plural(count, 'match', 'es')}" if count else "No matches found",
            is_success=not is_error,
            typed_data={"matches": matches, "total_matches": count},
        )

    def _glob(self, text: str, is_error: bool) -> ToolResultData:
        files = [line.strip() for line in text.split("\n") if line.strip()]
        count = len(files)
        return ToolResultData(
            tool_name="Glob",
            summary=f"Found {_plural(count, 'file')}" if count else "No files found",
            is_success=not is_error,
            typed_data={"files": files, "total_files": count},
        )

    def _generic(self, tool_name: str, text: str, is_error: bool) -> ToolResultData:
        display = tool_name[:1].upper() + tool_name[1:] if tool_name else "Tool"
        return ToolResultData(
            tool_name=display,
            summary=f"{display} failed" if is_error else _truncate(text, 50),
            is_success=not is_error,
            typed_data={"content": text},
        )
