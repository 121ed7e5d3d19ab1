"""JSON file store for session metadata.

Each conversation's metadata is persisted as ``<conversation_id>.json`` in the
metadata directory so that a resumed conversation recovers the mode, model and
system prompt it was started with.
"""

import json
import logging
from pathlib import Path

from homespun_server.sessions.types import SessionMetadata, utc_now

logger = logging.getLogger(__name__)


def is_valid_conversation_id(conversation_id: str) -> bool:
    """Return True if the id can name a file inside the metadata directory."""
    return bool(conversation_id) and not any(
        s in conversation_id for s in ("/", "\\", "..")
    )


class SessionMetadataStore:
    """Loads and saves ``SessionMetadata`` as one JSON file per conversation."""

    def __init__(self, metadata_dir: Path):
        """Initialize the store.

        Args:
            metadata_dir: Directory where metadata files are stored
        """
        self.metadata_dir = metadata_dir
        self.metadata_dir.mkdir(parents=True, exist_ok=True)

    def _path_for(self, conversation_id: str) -> Path:
        if not is_valid_conversation_id(conversation_id):
            raise ValueError(f"Invalid conversation id: {conversation_id!r}")
        return self.metadata_dir / f"{conversation_id}.json"

    def save(self, metadata: SessionMetadata) -> None:
        """Save metadata, replacing any existing file for the conversation.

        Args:
            metadata: The metadata to persist

        Raises:
            ValueError: If the conversation id is not usable as a file name
        """
        file_path = self._path_for(metadata.conversation_id)
        metadata.updated_at = utc_now()

        with open(file_path, "w", encoding="utf-8") as f:
            json.dump(metadata.to_dict(), f, indent=2, ensure_ascii=False)

        logger.debug(f"Saved metadata for conversation {metadata.conversation_id}")

    def load(self, conversation_id: str) -> SessionMetadata | None:
        """Load metadata for a conversation.

        Args:
            conversation_id: The agent's conversation id

        Returns:
            The stored metadata, or None if there is none, it is unreadable or
            the id is not usable as a file name
        """
        if not is_valid_conversation_id(conversation_id):
            logger.warning(f"Ignoring metadata lookup for invalid id {conversation_id!r}")
            return None
        file_path = self._path_for(conversation_id)
        if not file_path.exists():
            return None

        try:
            with open(file_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return SessionMetadata.from_dict(data)
        except (OSError, ValueError, KeyError) as e:
            logger.warning(f"Failed to load metadata for {conversation_id}: {e}")
            return None

    def list_all(self) -> list[SessionMetadata]:
        """List all stored metadata, newest first."""
        results = []
        for file_path in self.metadata_dir.glob("*.json"):
            metadata = self.load(file_path.stem)
            if metadata is not None:
                results.append(metadata)
        results.sort(key=lambda m: m.updated_at, reverse=True)
        return results

    def delete(self, conversation_id: str) -> bool:
        """Delete stored metadata.

        Returns:
            True if a file was deleted
        """
        if not is_valid_conversation_id(conversation_id):
            return False
        file_path = self._path_for(conversation_id)
        if not file_path.exists():
            return False
        file_path.unlink()
        logger.info(f"Deleted metadata for conversation {conversation_id}")
        return True
