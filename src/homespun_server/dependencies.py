"""Dependency injection providers for FastAPI endpoints.

This module provides FastAPI dependency functions that are used across
multiple routers to inject common dependencies like settings and services.
"""

from functools import lru_cache

from fastapi import HTTPException, Request

from homespun_server.config import HomespunServerSettings
from homespun_server.sessions import SessionEventHub, SessionRegistry


@lru_cache
def get_settings() -> HomespunServerSettings:
    """Get the application settings instance.

    This function is cached so that the same settings instance is reused
    across all requests. Settings are loaded from environment variables
    with the HOMESPUN_ prefix.

    Returns:
        HomespunServerSettings: The application configuration settings.
    """
    return HomespunServerSettings()


def get_session_registry(request: Request) -> SessionRegistry:
    """Get the session registry from app state.

    The registry is created once during application startup and shared by
    all requests, since it owns the live sessions.

    Args:
        request: The FastAPI request object.

    Returns:
        SessionRegistry: The session registry instance.

    Raises:
        HTTPException: If the registry is not initialized (503 Service Unavailable).
    """
    if not hasattr(request.app.state, "session_registry"):
        raise HTTPException(
            status_code=503,
            detail="Session registry not initialized",
        )
    return request.app.state.session_registry


def get_event_hub(request: Request) -> SessionEventHub:
    """Get the session event hub from app state.

    Args:
        request: The FastAPI request object.

    Returns:
        SessionEventHub: The event hub instance.

    Raises:
        HTTPException: If the hub is not initialized (503 Service Unavailable).
    """
    if not hasattr(request.app.state, "event_hub"):
        raise HTTPException(
            status_code=503,
            detail="Event hub not initialized",
        )
    return request.app.state.event_hub
