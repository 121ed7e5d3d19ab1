"""Factory for per-session agent options."""

import logging
from pathlib import Path

from homespun_server.agent.types import AgentOptions, PermissionMode, SettingSource
from homespun_server.sessions.types import SessionMode

logger = logging.getLogger(__name__)

# Read-only tools available to plan mode sessions
PLAN_MODE_TOOLS = [
    "Read",
    "Glob",
    "Grep",
    "WebFetch",
    "WebSearch",
    "Task",
    "AskUserQuestion",
]


class SessionOptionsFactory:
    """Builds the base ``AgentOptions`` stored for a session.

    Server wide settings (CLI path, extra environment, buffer size and the
    default permission mode) are applied to every session.
    """

    def __init__(
        self,
        permission_mode: PermissionMode = PermissionMode.BYPASS_PERMISSIONS,
        cli_path: str | None = None,
        env: dict[str, str] | None = None,
        max_buffer_size: int | None = None,
    ) -> None:
        self.permission_mode = permission_mode
        self.cli_path = cli_path
        self.env = dict(env or {})
        self.max_buffer_size = max_buffer_size

    def create_options(
        self,
        mode: SessionMode,
        working_directory: str,
        model: str,
        system_prompt: str | None = None,
    ) -> AgentOptions:
        """Create options for a session.

        Args:
            mode: Plan restricts the agent to read-only tools; build leaves
                the tool set unrestricted.
            working_directory: Directory the agent process runs in.
            model: Model name passed to the CLI.
            system_prompt: Optional system prompt.

        Returns:
            AgentOptions: A fresh options object owned by the caller.
        """
        allowed_tools = list(PLAN_MODE_TOOLS) if mode == SessionMode.PLAN else []
        logger.debug(
            f"Creating {mode.value} options for {working_directory} (model={model})"
        )
        return AgentOptions(
            cwd=Path(working_directory),
            model=model,
            system_prompt=system_prompt,
            allowed_tools=allowed_tools,
            permission_mode=self.permission_mode,
            setting_sources=[SettingSource.USER],
            include_partial_messages=True,
            env=dict(self.env),
            cli_path=self.cli_path,
            max_buffer_size=self.max_buffer_size,
        )
