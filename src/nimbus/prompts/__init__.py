"""System prompt for the agent.

Prompts are markdown files in this package with ``str.format`` placeholders.
"""

from __future__ import annotations

import os
import platform
from importlib.resources import files

_PROMPTS_PKG = files("nimbus.prompts")


def load_prompt(name: str) -> str:
    """Load a prompt by name (without .md extension)."""
    return _PROMPTS_PKG.joinpath(f"{name}.md").read_text(encoding="utf-8")


def build_system_prompt(cwd: str | None = None) -> str:
    """Render the system prompt for a working directory."""
    return load_prompt("system").format(
        cwd=cwd or os.getcwd(),
        platform=f"{platform.system()} {platform.release()}".strip(),
    )


__all__ = ["load_prompt", "build_system_prompt"]
