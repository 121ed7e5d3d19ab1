"""Health check endpoint router."""

import logging

from fastapi import APIRouter, Request

from homespun_server import __version__
from homespun_server.agent.errors import CliNotFoundError
from homespun_server.agent.transport import find_cli
from homespun_server.models.health import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Health check endpoint.

    Returns the current health status and version of the homespun-server,
    whether the agent CLI can be located, and the number of live sessions.

    Args:
        request: The FastAPI request object.

    Returns:
        HealthResponse: Health status and version information.
    """
    settings = request.app.state.settings

    cli_path = None
    try:
        cli_path = find_cli(settings.claude_path)
    except CliNotFoundError as e:
        logger.debug(f"Agent CLI lookup failed: {e}")

    active_sessions = 0
    if hasattr(request.app.state, "session_registry"):
        active_sessions = len(request.app.state.session_registry.list_sessions())

    return HealthResponse(
        status="ok",
        version=__version__,
        cli_available=cli_path is not None,
        cli_path=cli_path,
        active_sessions=active_sessions,
    )
