"""Subprocess-based shell executor."""

from __future__ import annotations

import asyncio
import os
import time

from nimbus.logging import get_logger
from nimbus.terminal.result import ShellResult

_log = get_logger("terminal")

TRUNCATION_MARKER = "\n... (output truncated)"


def _clip(text: str, limit: int) -> tuple[str, bool]:
    if len(text) <= limit:
        return text, False
    return text[:limit] + TRUNCATION_MARKER, True


class SubprocessShellExecutor:
    """Execute command lines with ``asyncio.create_subprocess_shell``.

    stdout and stderr are captured separately. On timeout the process is
    killed and a ``timeout`` result is returned rather than raising.
    """

    def __init__(self, default_cwd: str = ".") -> None:
        self._default_cwd = default_cwd

    async def execute(
        self,
        command: str,
        cwd: str | None = None,
        timeout: float | None = 120.0,
        stdout_limit: int = 30000,
        stderr_limit: int = 5000,
    ) -> ShellResult:
        start_time = time.perf_counter()
        working_dir = cwd or self._default_cwd

        def elapsed() -> float:
            return (time.perf_counter() - start_time) * 1000

        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=working_dir,
                env=os.environ.copy(),
            )
        except FileNotFoundError:
            return ShellResult(
                command=command,
                exit_code=127,
                stdout="",
                stderr=f"Working directory not found: {working_dir}",
                truncated=False,
                status="error",
                duration_ms=elapsed(),
            )
        except PermissionError:
            return ShellResult(
                command=command,
                exit_code=126,
                stdout="",
                stderr=f"Permission denied: {command}",
                truncated=False,
                status="error",
                duration_ms=elapsed(),
            )

        try:
            stdout_data, stderr_data = await asyncio.wait_for(
                process.communicate(), timeout=timeout
            )
        except asyncio.TimeoutError:
            try:
                process.kill()
                await process.wait()
            except ProcessLookupError:
                pass
            _log.warning("Command timed out after %ss: %.200s", timeout, command)
            return ShellResult(
                command=command,
                exit_code=None,
                stdout="",
                stderr=f"Command timed out after {timeout}s",
                truncated=False,
                status="timeout",
                duration_ms=elapsed(),
            )
        except asyncio.CancelledError:
            # Don't leave the child running when the turn is cancelled
            try:
                process.kill()
            except ProcessLookupError:
                pass
            raise

        stdout, stdout_cut = _clip(stdout_data.decode("utf-8", errors="replace"), stdout_limit)
        stderr, stderr_cut = _clip(stderr_data.decode("utf-8", errors="replace"), stderr_limit)
        exit_code = process.returncode
        duration_ms = elapsed()
        _log.debug("Command exited %s in %.0fms: %.200s", exit_code, duration_ms, command)

        return ShellResult(
            command=command,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            truncated=stdout_cut or stderr_cut,
            status="ok" if exit_code == 0 else "error",
            duration_ms=duration_ms,
        )
