"""Exception hierarchy for the agent CLI protocol client."""

from typing import Any


class AgentSdkError(Exception):
    """Base class for all errors raised by the agent client."""


class CliNotFoundError(AgentSdkError):
    """The agent CLI executable could not be located or spawned."""

    def __init__(self, message: str, cli_path: str | None = None) -> None:
        self.cli_path = cli_path
        if cli_path:
            message = f"{message}: {cli_path}"
        super().__init__(message)


class CliConnectionError(AgentSdkError):
    """The connection to the agent process failed or was lost."""


class ProcessExitError(AgentSdkError):
    """The agent process exited with a non-zero code.

    Attributes:
        exit_code: Process exit code, if known.
        stderr: Tail of the process's standard error output.
    """

    def __init__(
        self, message: str, exit_code: int | None = None, stderr: str | None = None
    ) -> None:
        self.exit_code = exit_code
        self.stderr = stderr
        if exit_code is not None:
            message = f"{message} (exit code: {exit_code})"
        if stderr:
            message = f"{message}\nError output: {stderr}"
        super().__init__(message)


class ProtocolDecodeError(AgentSdkError):
    """A single output line from the agent process was not valid JSON.

    Attributes:
        line: The raw line, truncated for display.
    """

    def __init__(self, line: str, original_error: Exception | None = None) -> None:
        self.line = line
        self.original_error = original_error
        super().__init__(f"Failed to decode JSON: {line[:100]}...")


class MalformedMessageError(AgentSdkError):
    """A decoded JSON object did not match any known message shape.

    Attributes:
        field: Name of the missing or invalid field.
        data: The offending object.
    """

    def __init__(
        self, message: str, field: str | None = None, data: dict[str, Any] | None = None
    ) -> None:
        self.field = field
        self.data = data
        super().__init__(message)
