"""Health check response model."""

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Response model for the health check endpoint.

    Attributes:
        status: Health status indicator ("ok" or "error").
        version: The version of homespun-server.
        cli_available: Whether the agent CLI executable could be located.
        cli_path: Path of the located agent CLI, if any.
        active_sessions: Number of sessions held by the registry.
    """

    status: str = Field(..., description="Health status of the service")
    version: str = Field(..., description="Version of homespun-server")
    cli_available: bool = Field(
        default=False,
        description="Whether the agent CLI executable was found",
    )
    cli_path: str | None = Field(
        default=None,
        description="Path to the agent CLI executable",
    )
    active_sessions: int = Field(
        default=0,
        description="Number of live sessions",
    )
