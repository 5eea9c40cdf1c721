"""Shell execution result dataclass."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class ShellResult:
    """Result of one shell command.

    Attributes:
        command: The command line that was run.
        exit_code: Process exit code, or None when killed on timeout.
        stdout: Captured standard output (possibly truncated).
        stderr: Captured standard error (possibly truncated).
        truncated: True if either stream was cut at its limit.
        status: "ok", "error" or "timeout".
        duration_ms: Wall-clock duration in milliseconds.
    """

    command: str
    exit_code: int | None
    stdout: str
    stderr: str
    truncated: bool
    status: str
    duration_ms: float

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "success": self.success,
            "exit_code": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
        }
        if self.truncated:
            result["truncated"] = True
        if self.status == "timeout":
            result["error"] = self.stderr
        return result

    def __repr__(self) -> str:
        if self.success:
            lines = self.stdout.count("\n") + 1 if self.stdout else 0
            return f"<ShellResult ok, {lines} lines>"
        return f"<ShellResult {self.status}, exit={self.exit_code}>"
