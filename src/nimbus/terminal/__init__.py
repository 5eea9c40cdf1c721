"""Shell command execution for the Bash tool."""

from nimbus.terminal.protocol import ShellExecutor
from nimbus.terminal.result import ShellResult
from nimbus.terminal.subprocess_executor import SubprocessShellExecutor

__all__ = ["ShellExecutor", "ShellResult", "SubprocessShellExecutor"]
