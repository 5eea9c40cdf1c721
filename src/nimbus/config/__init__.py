"""Configuration management for Nimbus.

Provides hierarchical YAML-based configuration with:
- System-level config (/etc/nimbus/ or %PROGRAMDATA%)
- User-level config (~/.config/nimbus/, ~/.nimbus/ or %APPDATA%)
- Project-level config ($project_root/.nimbus/)
- Environment variable overrides (highest priority)

Example usage:
    from nimbus.config import load_config

    config = load_config(project_root="/path/to/project")
    print(config.llm.model, config.agent.max_turns)
"""

from nimbus.config.loader import (
    deep_merge,
    get_config,
    load_config,
    reset_config,
)
from nimbus.config.paths import (
    get_config_paths,
    get_project_config_path,
    get_system_config_path,
    get_user_config_path,
)
from nimbus.config.schema import (
    AgentConfig,
    BridgeConfig,
    Config,
    LLMConfig,
    LoggingConfig,
    SandboxConfig,
    ServerConfig,
    ToolsConfig,
)

__all__ = [
    # Main API
    "Config",
    "load_config",
    "get_config",
    "reset_config",
    "deep_merge",
    # Schema types
    "LLMConfig",
    "AgentConfig",
    "SandboxConfig",
    "ToolsConfig",
    "BridgeConfig",
    "ServerConfig",
    "LoggingConfig",
    # Path utilities
    "get_config_paths",
    "get_system_config_path",
    "get_user_config_path",
    "get_project_config_path",
]
