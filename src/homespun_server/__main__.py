"""Command-line entry point: ``homespun-server`` or ``python -m homespun_server``.

Flags override the matching ``HOMESPUN_*`` environment variables.
"""

import argparse
import logging
import os
import sys
from typing import Any, Sequence

import uvicorn

from homespun_server import __version__, create_app
from homespun_server.agent.types import PermissionMode
from homespun_server.config import HomespunServerSettings
from homespun_server.sessions.types import SessionMode

logger = logging.getLogger(__name__)

# Import string uvicorn needs to rebuild the app in its reload worker.
APP_FACTORY = "homespun_server.app:create_app"

# (flag, settings field, argparse options)
SETTING_FLAGS: list[tuple[str, str, dict[str, Any]]] = [
    ("--host", "host", {"help": "Address to bind (default: 127.0.0.1)"}),
    ("--port", "port", {"type": int, "help": "Port to bind (default: 8000)"}),
    ("--claude-path", "claude_path", {"help": "Claude CLI executable (default: found on PATH)"}),
    ("--model", "default_model", {"help": "Model for new sessions (default: sonnet)"}),
    (
        "--mode",
        "default_mode",
        {"choices": [m.value for m in SessionMode], "help": "Mode for new sessions"},
    ),
    (
        "--permission-mode",
        "permission_mode",
        {"choices": [m.value for m in PermissionMode], "help": "Tool permission policy"},
    ),
    ("--data-dir", "data_dir", {"help": "Base directory for server data (default: .)"}),
    (
        "--claude-projects-dir",
        "claude_projects_dir",
        {"help": "Where the CLI keeps conversation files (default: ~/.claude/projects)"},
    ),
    (
        "--log-level",
        "log_level",
        {
            "choices": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            "type": str.upper,
            "help": "Logging level (default: INFO)",
        },
    ),
]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="homespun-server",
        description="Headless FastAPI server for coding-agent sessions",
        epilog="Every option can also be set with a HOMESPUN_<SETTING> environment variable.",
    )
    parser.add_argument("--version", action="version", version=f"homespun-server {__version__}")
    for flag, field, options in SETTING_FLAGS:
        parser.add_argument(flag, dest=field, default=None, **options)
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Restart on code changes (development only)",
    )
    return parser


def overrides_from_args(args: argparse.Namespace) -> dict[str, Any]:
    """Collect the settings given on the command line, skipping unset flags."""
    return {
        field: getattr(args, field)
        for _, field, _ in SETTING_FLAGS
        if getattr(args, field) is not None
    }


def main(argv: Sequence[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    overrides = overrides_from_args(args)
    settings = HomespunServerSettings(**overrides)
    log_level = settings.log_level.lower()

    if args.reload:
        # The reload worker is a fresh process that only sees the environment.
        for field, value in overrides.items():
            os.environ[f"HOMESPUN_{field.upper()}"] = str(value)
        logger.info(f"Starting with reload on {settings.host}:{settings.port}")
        uvicorn.run(
            APP_FACTORY,
            factory=True,
            host=settings.host,
            port=settings.port,
            log_level=log_level,
            reload=True,
        )
        return

    uvicorn.run(
        create_app(settings=settings),
        host=settings.host,
        port=settings.port,
        log_level=log_level,
    )


if __name__ == "__main__":
    sys.exit(main())
