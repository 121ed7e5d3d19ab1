"""homespun-server: Headless FastAPI server for coding-agent sessions.

This package drives the Claude Code CLI over its line-delimited JSON
protocol and provides a REST API and SSE event stream for starting,
messaging, resuming and stopping agent sessions.
"""

__version__ = "0.1.0"

from homespun_server.app import create_app  # noqa: E402

__all__ = ["create_app", "__version__"]
