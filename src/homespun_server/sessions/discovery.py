"""Discovery of conversations persisted by the agent CLI.

The CLI stores each conversation as a JSONL file under
``<projects_dir>/<encoded working directory>/<conversation_id>.jsonl``, where
the working directory is encoded by replacing path separators and dots with
dashes.
"""

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path

from homespun_server.sessions.types import DiscoveredSession

logger = logging.getLogger(__name__)

_ENCODE_PATTERN = re.compile(r"[/\\.:]")


def encode_project_path(working_directory: str) -> str:
    """Encode a working directory the way the CLI names its project folders."""
    return _ENCODE_PATTERN.sub("-", str(working_directory))


class SessionDiscovery:
    """Finds resumable conversations for a working directory."""

    def __init__(self, projects_dir: Path):
        self.projects_dir = projects_dir

    def project_dir_for(self, working_directory: str) -> Path:
        return self.projects_dir / encode_project_path(working_directory)

    def discover(self, working_directory: str) -> list[DiscoveredSession]:
        """List conversations recorded for a working directory.

        Args:
            working_directory: The directory the conversations ran in

        Returns:
            Discovered conversations, most recently modified first
        """
        project_dir = self.project_dir_for(working_directory)
        if not project_dir.is_dir():
            logger.debug(f"No agent history at {project_dir}")
            return []

        sessions = []
        for file_path in project_dir.glob("*.jsonl"):
            try:
                mtime = file_path.stat().st_mtime
            except OSError as e:
                logger.warning(f"Failed to stat {file_path}: {e}")
                continue
            sessions.append(
                DiscoveredSession(
                    conversation_id=file_path.stem,
                    file_path=str(file_path),
                    last_modified=datetime.fromtimestamp(mtime, timezone.utc)
                    .isoformat()
                    .replace("+00:00", "Z"),
                    message_count=self.count_messages(file_path),
                )
            )

        sessions.sort(key=lambda s: s.last_modified, reverse=True)
        logger.debug(f"Discovered {len(sessions)} conversations in {project_dir}")
        return sessions

    def count_messages(self, file_path: Path) -> int:
        """Count user and assistant entries in a conversation file."""
        count = 0
        try:
            with open(file_path, "r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entry = json.loads(line)
                    except json.JSONDecodeError:
                        continue
                    if isinstance(entry, dict) and entry.get("type") in ("user", "assistant"):
                        count += 1
        except OSError as e:
            logger.warning(f"Failed to read {file_path}: {e}")
        return count
