"""FastAPI application factory and lifespan management.

This module contains the create_app() factory function that creates and configures
the FastAPI application instance, including lifespan management for startup/shutdown
and router registration.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from homespun_server import __version__
from homespun_server.agent import AgentClient
from homespun_server.config import HomespunServerSettings
from homespun_server.routers import events, health, sessions
from homespun_server.sessions import (
    SessionDiscovery,
    SessionEventHub,
    SessionMetadataStore,
    SessionOptionsFactory,
    SessionRegistry,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Lifespan context manager for FastAPI application.

    The session registry owns every live session, so it is created once at
    startup and stored in app.state together with the event hub that fans
    its events out to SSE clients. On shutdown every session is stopped,
    which terminates any running agent processes.

    Args:
        app: The FastAPI application instance.

    Yields:
        None: Control is yielded while the app is running.
    """
    settings: HomespunServerSettings = app.state.settings

    options_factory = SessionOptionsFactory(
        permission_mode=settings.permission_mode,
        cli_path=settings.claude_path,
        env=settings.agent_env,
        max_buffer_size=settings.max_buffer_size,
    )
    registry = SessionRegistry(
        options_factory=options_factory,
        metadata_store=SessionMetadataStore(settings.resolved_metadata_dir),
        discovery=SessionDiscovery(settings.resolved_claude_projects_dir),
        client_factory=AgentClient,
        default_model=settings.default_model,
    )
    hub = SessionEventHub()
    registry.add_listener(hub.publish)

    app.state.session_registry = registry
    app.state.event_hub = hub
    logger.info(
        f"Session registry ready (model={settings.default_model}, "
        f"permission_mode={settings.permission_mode.value})"
    )

    yield

    # Shutdown: stop all sessions and their agent processes
    await registry.shutdown()
    logger.info("Session registry shut down")


def create_app(settings: HomespunServerSettings | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    This factory function creates a FastAPI instance with all routers,
    middleware, and configuration applied. It can accept an optional
    settings object for testing or explicit configuration.

    Args:
        settings: Optional HomespunServerSettings instance. If not provided,
                  settings will be loaded from environment variables.

    Returns:
        FastAPI: Configured FastAPI application instance.
    """
    if settings is None:
        from homespun_server.dependencies import get_settings

        settings = get_settings()

    app = FastAPI(
        title="homespun-server",
        description="Headless FastAPI server for coding-agent sessions",
        version=__version__,
        lifespan=lifespan,
    )

    # Store settings in app.state for lifespan access
    app.state.settings = settings

    # Configure CORS
    # Note: FastAPI's type hints for add_middleware are overly strict
    app.add_middleware(
        CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register routers
    app.include_router(health.router)
    app.include_router(sessions.router)
    app.include_router(events.router)

    return app
