"""Shell executor protocol."""

from __future__ import annotations

from typing import Protocol

from nimbus.terminal.result import ShellResult


class ShellExecutor(Protocol):
    """Runs a shell command line and captures its output."""

    async def execute(
        self,
        command: str,
        cwd: str | None = None,
        timeout: float | None = 120.0,
        stdout_limit: int = 30000,
        stderr_limit: int = 5000,
    ) -> ShellResult:
        """Execute a command line through the platform shell.

        Args:
            command: Full command line (pipes and redirects allowed).
            cwd: Working directory. If None, uses the executor's default.
            timeout: Timeout in seconds. None means no timeout.
            stdout_limit: Maximum characters of stdout to keep.
            stderr_limit: Maximum characters of stderr to keep.
        """
        ...
