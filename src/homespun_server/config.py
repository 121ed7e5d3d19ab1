"""Configuration module for homespun-server using pydantic-settings."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from homespun_server.agent.types import PermissionMode
from homespun_server.sessions.types import SessionMode


class HomespunServerSettings(BaseSettings):
    """Main configuration settings for homespun-server.

    All settings can be overridden via environment variables with the HOMESPUN_ prefix.
    For example, HOMESPUN_DEFAULT_MODEL will override the default_model setting.
    """

    # Server
    host: str = "127.0.0.1"
    port: int = 8000

    # Agent CLI
    claude_path: str | None = None
    default_model: str = "sonnet"
    default_mode: SessionMode = SessionMode.PLAN
    permission_mode: PermissionMode = PermissionMode.BYPASS_PERMISSIONS
    max_buffer_size: int = 1024 * 1024
    agent_env: dict[str, str] = Field(default_factory=dict)

    # Data directories (relative to data_dir)
    data_dir: str = "."
    metadata_dir: str = "session_metadata"

    # Where the agent CLI keeps its own conversation history
    claude_projects_dir: str = str(Path.home() / ".claude" / "projects")

    # CORS
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="HOMESPUN_")

    # --- Resolved paths (computed from data_dir + relative dirs) ---

    @property
    def resolved_metadata_dir(self) -> Path:
        """Get the full path to the session metadata directory."""
        return Path(self.data_dir) / self.metadata_dir

    @property
    def resolved_claude_projects_dir(self) -> Path:
        """Get the full path to the agent CLI's projects directory."""
        return Path(self.claude_projects_dir).expanduser()
