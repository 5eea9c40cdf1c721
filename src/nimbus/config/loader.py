"""Configuration file loading and caching.

Handles:
- YAML file parsing
- Cascading merge of system, user and project files
- Environment variable overrides
- Conversion from dict to the typed Config dataclass
"""

from __future__ import annotations

import dataclasses
import logging
import os
from pathlib import Path
from typing import Any, TypeVar

import yaml

from nimbus.config.paths import get_config_paths
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

_log = logging.getLogger("nimbus.config")

_cached_config: Config | None = None

# Top-level key -> section dataclass
_SECTIONS: dict[str, type] = {
    "llm": LLMConfig,
    "agent": AgentConfig,
    "sandbox": SandboxConfig,
    "tools": ToolsConfig,
    "bridge": BridgeConfig,
    "server": ServerConfig,
    "logging": LoggingConfig,
}

# Environment variable -> (section, key, converter)
_ENV_OVERRIDES: dict[str, tuple[str, str, type]] = {
    "NIMBUS_LOG": ("logging", "file", str),
    "NIMBUS_PROXY_URL": ("llm", "api_base", str),
    "NIMBUS_MODEL": ("llm", "model", str),
    "NIMBUS_PROVIDER": ("llm", "provider", str),
    "NIMBUS_MAX_TURNS": ("agent", "max_turns", int),
    "PORT": ("server", "port", int),
}

T = TypeVar("T")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning empty dict if not found or invalid.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed YAML as dict, or empty dict on error.
    """
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        _log.warning("Invalid YAML in %s: %s", path, e)
        return {}
    except PermissionError:
        _log.debug("Permission denied reading %s", path)
        return {}
    except OSError as e:
        _log.warning("Error reading %s: %s", path, e)
        return {}
    return data if isinstance(data, dict) else {}


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge ``override`` into a copy of ``base``.

    Nested mappings merge recursively, lists are replaced wholesale, and a
    None in ``override`` leaves the base value alone.
    """
    merged = dict(base)
    for key, value in override.items():
        if value is None:
            continue
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def env_overrides() -> dict[str, Any]:
    """Build a config dict from environment variables.

    Unparseable numeric values are logged and ignored.
    """
    overrides: dict[str, Any] = {}
    for var, (section, key, convert) in _ENV_OVERRIDES.items():
        raw = os.environ.get(var)
        if not raw:
            continue
        try:
            value = convert(raw)
        except ValueError:
            _log.warning("Ignoring %s=%r: expected %s", var, raw, convert.__name__)
            continue
        overrides.setdefault(section, {})[key] = value
    return overrides


def _build_section(cls: type[T], data: Any) -> T:
    """Instantiate a section dataclass from a mapping, dropping unknown keys."""
    if not isinstance(data, dict):
        return cls()
    known = {f.name for f in dataclasses.fields(cls)}  # type: ignore[arg-type]
    unknown = set(data) - known
    if unknown:
        _log.debug("Ignoring unknown %s keys: %s", cls.__name__, sorted(unknown))
    return cls(**{k: v for k, v in data.items() if k in known and v is not None})


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert a merged dict to the typed Config dataclass."""
    sections = {name: _build_section(cls, data.get(name)) for name, cls in _SECTIONS.items()}

    sandbox: SandboxConfig = sections["sandbox"]
    sandbox.dangerous_extensions = [
        ext.lower() if ext.startswith(".") else f".{ext.lower()}"
        for ext in sandbox.dangerous_extensions
    ]

    extra = {k: v for k, v in data.items() if k not in _SECTIONS}
    return Config(**sections, extra=extra)


def load_config(project_root: str | None = None, reload: bool = False) -> Config:
    """Load and merge config from all sources.

    Priority order (highest to lowest):
    1. Environment variables
    2. Project config ($project_root/.nimbus/config.yaml)
    3. User config (~/.config/nimbus/ or ~/.nimbus/ or %APPDATA%)
    4. System config (/etc/nimbus/ or %PROGRAMDATA%)

    Args:
        project_root: Project directory for project-level config.
        reload: Force reload even if cached.

    Returns:
        Merged Config object.
    """
    global _cached_config

    if _cached_config is not None and not reload and project_root is None:
        return _cached_config

    merged: dict[str, Any] = {}
    for path in get_config_paths(project_root):
        config_data = load_yaml_file(path)
        if config_data:
            _log.debug("Loaded config from %s", path)
            merged = deep_merge(merged, config_data)

    merged = deep_merge(merged, env_overrides())
    config = dict_to_config(merged)

    # Only the global config is cached
    if project_root is None:
        _cached_config = config

    return config


def get_config() -> Config:
    """Get the cached global config, loading it on first use."""
    if _cached_config is None:
        return load_config()
    return _cached_config


def reset_config() -> None:
    """Drop the cached config so the next get_config() reloads from disk."""
    global _cached_config
    _cached_config = None
