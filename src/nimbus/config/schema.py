"""Configuration schema dataclasses for Nimbus.

Defines the structure of configuration at all levels (system, user, project).
Every field has a default so partial configs merge cleanly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

DEFAULT_SENSITIVE_PATHS = [
    # User data
    "Downloads",
    "Documents",
    "Desktop",
    "Pictures",
    "Videos",
    "Music",
    "AppData",
    "Application Data",
    # Credentials
    ".ssh",
    ".aws",
    ".config",
    ".gnupg",
    ".npmrc",
    ".netrc",
    # OS
    "Program Files",
    "Program Files (x86)",
    "Windows",
    "System32",
    "/etc",
    "/var",
    "/usr",
    "/root",
    "/home",
]

DEFAULT_DANGEROUS_EXTENSIONS = [".exe", ".bat", ".cmd", ".ps1", ".vbs", ".sh", ".bash", ".zsh"]

DEFAULT_BLOCKED_COMMANDS = ["rm -rf /", "mkfs", ":(){", "format c:"]


@dataclass
class LLMConfig:
    """Model provider configuration.

    Example config.yaml:
        llm:
          provider: messages
          api_base: http://localhost:8080
          model: claude-sonnet-4-5
          thinking_budget: 4000
    """

    provider: str = "messages"  # "messages" (HTTP Messages API) or "litellm"
    model: str = "claude-sonnet-4-5"
    api_base: str | None = None  # Endpoint or proxy; messages provider uses localhost:8080
    api_key: str | None = None  # Sent as x-api-key; prefer api_key_env
    api_key_env: str = "ANTHROPIC_API_KEY"  # Env var consulted when api_key unset
    max_tokens: int = 8192
    thinking_budget: int | None = None  # Enables reasoning deltas when set
    request_timeout: float = 300.0  # Seconds for one streamed turn


@dataclass
class AgentConfig:
    """Turn loop configuration."""

    max_turns: int = 50
    history_limit: int = 100  # Trim once history grows past this many messages
    history_trim_to: int = 80  # Target size after trimming


@dataclass
class SandboxConfig:
    """Capability gate configuration.

    ``blocked_paths`` extends the built-in always-blocked set; it cannot shrink it.
    """

    require_approval: bool = True  # Sensitive paths need approval
    sensitive_paths: list[str] = field(default_factory=lambda: list(DEFAULT_SENSITIVE_PATHS))
    blocked_paths: list[str] = field(default_factory=list)
    dangerous_extensions: list[str] = field(
        default_factory=lambda: list(DEFAULT_DANGEROUS_EXTENSIONS)
    )
    audit_limit: int = 1000


@dataclass
class ToolsConfig:
    """Limits applied by tool handlers."""

    bash_timeout: float = 120.0  # Seconds
    bash_stdout_limit: int = 30000
    bash_stderr_limit: int = 5000
    blocked_commands: list[str] = field(default_factory=lambda: list(DEFAULT_BLOCKED_COMMANDS))
    fetch_timeout: float = 15.0
    fetch_text_limit: int = 15000
    fetch_html_limit: int = 30000
    glob_limit: int = 200
    grep_file_limit: int = 50
    grep_match_limit: int = 100


@dataclass
class BridgeConfig:
    """Remote command bridge configuration."""

    timeout: float = 30.0  # Seconds before a pending command is rejected
    path: str = "/browser"  # WebSocket route the extension connects to


@dataclass
class ServerConfig:
    """HTTP server configuration."""

    host: str = "127.0.0.1"
    port: int = 3001
    heartbeat_interval: float = 15.0  # Seconds between SSE keep-alive comments


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # DEBUG, INFO, WARNING, ERROR
    verbose: int | None = None  # 0..4, overrides level
    file: str | None = None  # Log file path


@dataclass
class Config:
    """Root configuration object."""

    llm: LLMConfig = field(default_factory=LLMConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)
    sandbox: SandboxConfig = field(default_factory=SandboxConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    bridge: BridgeConfig = field(default_factory=BridgeConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Unknown top-level keys, kept for extensions
    extra: dict[str, Any] = field(default_factory=dict)
