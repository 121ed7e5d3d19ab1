"""Errors raised by the session registry for invalid caller requests."""


class SessionError(Exception):
    """Base class for session registry errors."""

    def __init__(self, message: str, session_id: str | None = None) -> None:
        self.session_id = session_id
        super().__init__(message)


class SessionNotFoundError(SessionError):
    """No session with the given id is registered."""


class SessionNotActiveError(SessionError):
    """The session's status does not allow the requested operation."""


class SessionConfigurationError(SessionError):
    """The session has no stored agent options."""
