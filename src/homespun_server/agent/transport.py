"""Subprocess transport for the agent CLI.

This module spawns the ``claude`` CLI as a child process and speaks its
line-delimited JSON protocol over standard I/O:

- stdout is read line by line, one JSON object per line
- stdin carries outbound user turns (streaming mode) or the prompt (print mode)
- stderr is drained continuously and its tail kept for error reports
"""

import asyncio
import contextlib
import json
import logging
import os
import shutil
import signal
import sys
from collections import deque
from pathlib import Path
from typing import Any, AsyncIterator

from homespun_server.agent.errors import (
    CliConnectionError,
    CliNotFoundError,
    ProcessExitError,
    ProtocolDecodeError,
)
from homespun_server.agent.types import AgentOptions

logger = logging.getLogger(__name__)

DEFAULT_MAX_BUFFER_SIZE = 1024 * 1024
DEFAULT_MAX_CONSECUTIVE_DECODE_ERRORS = 10

_ENTRYPOINT = "sdk-py"
_STDERR_TAIL_LINES = 100
_TERMINATE_GRACE_SECONDS = 5.0

_INSTALL_HINT = (
    "Claude Code CLI not found. Install with:\n"
    "  npm install -g @anthropic-ai/claude-code\n"
    "or pass cli_path explicitly"
)


def find_cli(cli_path: str | Path | None = None) -> str:
    """Locate the agent CLI executable.

    Args:
        cli_path: Explicit path. Used as-is when given.

    Returns:
        Path to the executable.

    Raises:
        CliNotFoundError: If no executable can be found.
    """
    if cli_path:
        return str(cli_path)

    found = shutil.which("claude")
    if found:
        return found

    home = Path.home()
    candidates = [
        home / ".npm-global" / "bin" / "claude",
        Path("/usr/local/bin/claude"),
        home / ".local" / "bin" / "claude",
        home / "node_modules" / ".bin" / "claude",
        home / ".yarn" / "bin" / "claude",
    ]
    for candidate in candidates:
        if candidate.is_file():
            return str(candidate)

    raise CliNotFoundError(_INSTALL_HINT)


class SubprocessCliTransport:
    """Owns one agent CLI process and its standard I/O streams.

    In streaming mode (the default) stdin stays open and ``write`` sends one
    JSON line per call. In print mode the prompt passed to ``connect`` is
    written to stdin, which is then closed.

    Attributes:
        options: The invocation options.
        streaming: Whether stdin stays open for further turns.
        decode_errors: Malformed lines seen so far, in order.
    """

    def __init__(
        self,
        options: AgentOptions,
        streaming: bool = True,
        max_consecutive_decode_errors: int = DEFAULT_MAX_CONSECUTIVE_DECODE_ERRORS,
    ) -> None:
        self.options = options
        self.streaming = streaming
        self.max_consecutive_decode_errors = max_consecutive_decode_errors
        self.decode_errors: list[ProtocolDecodeError] = []

        self._cli_path = find_cli(options.cli_path)
        self._max_buffer_size = options.max_buffer_size or DEFAULT_MAX_BUFFER_SIZE
        self._process: asyncio.subprocess.Process | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._stderr_tail: deque[str] = deque(maxlen=_STDERR_TAIL_LINES)
        self._closed = False

    @property
    def is_ready(self) -> bool:
        """True while the process is running and the transport is open."""
        return (
            self._process is not None
            and self._process.returncode is None
            and not self._closed
        )

    @property
    def stderr_output(self) -> str:
        """The retained tail of the process's stderr."""
        return "\n".join(self._stderr_tail)

    def build_command(self) -> list[str]:
        """Build the CLI argument list from the options."""
        opts = self.options
        cmd = [self._cli_path, "--output-format", "stream-json", "--verbose"]

        if opts.system_prompt:
            cmd.extend(["--system-prompt", opts.system_prompt])
        if opts.allowed_tools:
            cmd.extend(["--allowedTools", ",".join(opts.allowed_tools)])
        if opts.max_turns:
            cmd.extend(["--max-turns", str(opts.max_turns)])
        if opts.disallowed_tools:
            cmd.extend(["--disallowedTools", ",".join(opts.disallowed_tools)])
        if opts.model:
            cmd.extend(["--model", opts.model])
        if opts.permission_mode:
            cmd.extend(["--permission-mode", opts.permission_mode.value])
        if opts.continue_conversation:
            cmd.append("--continue")
        if opts.resume:
            cmd.extend(["--resume", opts.resume])
        if opts.fork_session:
            cmd.append("--fork-session")
        for directory in opts.add_dirs:
            cmd.extend(["--add-dir", str(directory)])
        if opts.mcp_servers:
            cmd.extend(["--mcp-config", json.dumps({"mcpServers": opts.mcp_servers})])
        if opts.include_partial_messages:
            cmd.append("--include-partial-messages")

        sources = opts.setting_sources or []
        cmd.extend(["--setting-sources", ",".join(s.value for s in sources)])

        for flag, value in opts.extra_args.items():
            if value is None:
                cmd.append(f"--{flag}")
            else:
                cmd.extend([f"--{flag}", value])

        if self.streaming:
            cmd.extend(["--input-format", "stream-json"])
        else:
            cmd.append("--print")

        return cmd

    def _build_env(self) -> dict[str, str]:
        env = {**os.environ, **self.options.env}
        env["CLAUDE_CODE_ENTRYPOINT"] = _ENTRYPOINT
        if self.options.cwd:
            env["PWD"] = str(self.options.cwd)
        env.setdefault("HOME", str(Path.home()))
        return env

    async def connect(self, prompt: str | None = None) -> None:
        """Spawn the agent process.

        Args:
            prompt: Prompt for print mode. Ignored in streaming mode.

        Raises:
            CliNotFoundError: If the executable cannot be spawned.
            CliConnectionError: If the working directory is missing or the
                process cannot be started.
        """
        if self._process is not None:
            return

        cwd = self.options.cwd
        if cwd is not None and not Path(cwd).is_dir():
            raise CliConnectionError(f"Working directory does not exist: {cwd}")

        cmd = self.build_command()
        logger.debug(f"Spawning agent CLI: {cmd[0]} ({len(cmd) - 1} args)")

        try:
            self._process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd) if cwd is not None else None,
                env=self._build_env(),
                limit=self._max_buffer_size,
                start_new_session=True,
            )
        except FileNotFoundError as e:
            raise CliNotFoundError("Claude Code CLI not found at", self._cli_path) from e
        except OSError as e:
            raise CliConnectionError(f"Failed to start Claude Code CLI: {e}") from e

        self._stderr_task = asyncio.create_task(self._drain_stderr())
        logger.info(f"Agent CLI started (pid={self._process.pid})")

        if not self.streaming:
            if prompt is not None:
                await self.write(prompt)
            await self.end_input()

    async def _drain_stderr(self) -> None:
        """Read stderr until EOF so the pipe never fills up."""
        assert self._process is not None and self._process.stderr is not None
        stderr = self._process.stderr
        while True:
            try:
                line = await stderr.readline()
            except ValueError:
                # Over-long stderr line; the reader discards it
                continue
            if not line:
                break
            text = line.decode(errors="replace").rstrip()
            if text:
                self._stderr_tail.append(text)
                logger.debug(f"agent stderr: {text}")

    async def write(self, data: str) -> None:
        """Write one line to the process's stdin.

        Raises:
            CliConnectionError: If the transport is not ready or the pipe is
                broken.
        """
        if not self.is_ready:
            raise CliConnectionError("Transport is not ready for writing")
        assert self._process is not None
        stdin = self._process.stdin
        if stdin is None or stdin.is_closing():
            raise CliConnectionError("Process stdin is closed")

        if not data.endswith("\n"):
            data += "\n"
        try:
            stdin.write(data.encode())
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise CliConnectionError(f"Failed to write to process stdin: {e}") from e

    async def end_input(self) -> None:
        """Close stdin, signalling that no further turns follow."""
        if self._process is None or self._process.stdin is None:
            return
        stdin = self._process.stdin
        if stdin.is_closing():
            return
        stdin.close()
        with contextlib.suppress(BrokenPipeError, ConnectionResetError):
            await stdin.wait_closed()

    def _record_decode_error(self, raw: str, error: Exception | None) -> None:
        decode_error = ProtocolDecodeError(raw, error)
        self.decode_errors.append(decode_error)
        logger.warning(str(decode_error))

    async def read_messages(self) -> AsyncIterator[dict[str, Any]]:
        """Yield JSON objects from stdout until the process ends.

        Malformed lines are logged and recorded in ``decode_errors``; reading
        continues past them.

        Raises:
            CliConnectionError: If the transport was never connected or too
                many consecutive lines fail to decode.
            ProcessExitError: If the process exits with a non-zero code.
        """
        if self._process is None or self._process.stdout is None:
            raise CliConnectionError("Not connected")

        stdout = self._process.stdout
        consecutive_errors = 0

        while True:
            try:
                line = await stdout.readline()
            except ValueError as e:
                self._record_decode_error(
                    f"<line exceeded {self._max_buffer_size} bytes>", e
                )
                consecutive_errors += 1
            else:
                if not line:
                    break
                raw = line.decode(errors="replace").strip()
                if not raw:
                    continue
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError as e:
                    self._record_decode_error(raw, e)
                    consecutive_errors += 1
                else:
                    if isinstance(data, dict):
                        consecutive_errors = 0
                        yield data
                        continue
                    self._record_decode_error(raw, None)
                    consecutive_errors += 1

            if consecutive_errors > self.max_consecutive_decode_errors:
                raise CliConnectionError(
                    f"Connection lost: {consecutive_errors} consecutive "
                    "undecodable lines from agent process"
                )

        if self._closed:
            return

        returncode = await self._process.wait()
        if self._stderr_task is not None:
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(asyncio.shield(self._stderr_task), 1.0)

        if returncode != 0:
            raise ProcessExitError(
                "Agent process failed",
                exit_code=returncode,
                stderr=self.stderr_output or None,
            )

    def _terminate(self, force: bool = False) -> None:
        """Signal the whole process group, or just the process off POSIX."""
        assert self._process is not None
        with contextlib.suppress(ProcessLookupError):
            if sys.platform != "win32":
                os.killpg(self._process.pid, signal.SIGKILL if force else signal.SIGTERM)
            elif force:
                self._process.kill()
            else:
                self._process.terminate()

    async def close(self) -> None:
        """Terminate the process tree and release the pipes. Idempotent."""
        if self._closed:
            return
        self._closed = True

        proc = self._process
        if proc is None:
            return

        with contextlib.suppress(CliConnectionError, OSError):
            await self.end_input()

        if proc.returncode is None:
            self._terminate()
            try:
                await asyncio.wait_for(proc.wait(), timeout=_TERMINATE_GRACE_SECONDS)
            except asyncio.TimeoutError:
                logger.warning(f"Agent process {proc.pid} did not exit, killing")
                self._terminate(force=True)
                with contextlib.suppress(ProcessLookupError):
                    await proc.wait()

        if self._stderr_task is not None and not self._stderr_task.done():
            self._stderr_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._stderr_task

        logger.debug(f"Agent process {proc.pid} closed (returncode={proc.returncode})")
