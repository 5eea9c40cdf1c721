"""Root pytest configuration for all tests."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from typing import Any

import pytest

from nimbus.config import SandboxConfig, ToolsConfig
from nimbus.session import CapabilityGate, DeletionManager, InMemorySessionStore
from nimbus.terminal import SubprocessShellExecutor
from nimbus.tools import ToolContext

# Configure pytest-asyncio to use auto mode
# This is redundant with pyproject.toml but ensures it's set
pytest_plugins = ("pytest_asyncio",)


@pytest.fixture(scope="session")
def anyio_backend():
    """Set anyio backend to asyncio."""
    return "asyncio"


# ============================================================================
# Provider event builders
# ============================================================================


def text_events(text: str, index: int = 0) -> list[dict[str, Any]]:
    """Events for one text block streamed in two halves."""
    half = len(text) // 2
    return [
        {"type": "content_block_start", "index": index, "content_block": {"type": "text", "text": ""}},
        {"type": "content_block_delta", "index": index, "delta": {"type": "text_delta", "text": text[:half]}},
        {"type": "content_block_delta", "index": index, "delta": {"type": "text_delta", "text": text[half:]}},
        {"type": "content_block_stop", "index": index},
    ]


def tool_events(tool_id: str, name: str, tool_input: dict[str, Any], index: int = 0) -> list[dict[str, Any]]:
    """Events for one tool_use block with its input JSON split across deltas."""
    raw = json.dumps(tool_input)
    cut = len(raw) // 2
    return [
        {
            "type": "content_block_start",
            "index": index,
            "content_block": {"type": "tool_use", "id": tool_id, "name": name, "input": {}},
        },
        {"type": "content_block_delta", "index": index, "delta": {"type": "input_json_delta", "partial_json": raw[:cut]}},
        {"type": "content_block_delta", "index": index, "delta": {"type": "input_json_delta", "partial_json": raw[cut:]}},
        {"type": "content_block_stop", "index": index},
    ]


def stop_event(reason: str) -> dict[str, Any]:
    return {"type": "message_delta", "delta": {"stop_reason": reason}}


class ScriptedProvider:
    """StreamingProvider that replays one scripted event list per call.

    A script entry that is an exception instance is raised instead of streamed.
    Every call's arguments are recorded in ``calls``.
    """

    def __init__(self, turns: list[list[dict[str, Any]] | Exception], model: str = "scripted") -> None:
        self._turns = list(turns)
        self._model = model
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    @property
    def model(self) -> str:
        return self._model

    async def stream(
        self,
        messages: list[dict[str, Any]],
        *,
        system: str | None = None,
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        self.calls.append({"messages": json.loads(json.dumps(messages)), "system": system, "tools": tools})
        if not self._turns:
            raise AssertionError("ScriptedProvider ran out of turns")
        turn = self._turns.pop(0)
        if isinstance(turn, Exception):
            raise turn
        for event in turn:
            yield event

    async def aclose(self) -> None:
        self.closed = True


# ============================================================================
# Session fixtures
# ============================================================================


@pytest.fixture
def sandbox_config() -> SandboxConfig:
    """Sandbox config with one sensitive segment, independent of tmp_path location."""
    return SandboxConfig(sensitive_paths=["secrets"], blocked_paths=[])


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore(history_limit=100, history_trim_to=80)


@pytest.fixture
def gate(store, sandbox_config) -> CapabilityGate:
    return CapabilityGate(store, sandbox_config)


@pytest.fixture
def deletions(store) -> DeletionManager:
    return DeletionManager(store)


@pytest.fixture
def make_ctx(store, gate, deletions, tmp_path: Path) -> Callable[..., ToolContext]:
    """Factory for ToolContexts rooted at tmp_path."""

    def factory(session_id: str = "s1", **overrides: Any) -> ToolContext:
        fields: dict[str, Any] = {
            "session_id": session_id,
            "store": store,
            "gate": gate,
            "deletions": deletions,
            "executor": SubprocessShellExecutor(str(tmp_path)),
            "config": ToolsConfig(),
            "cwd": tmp_path,
        }
        fields.update(overrides)
        return ToolContext(**fields)

    return factory


@pytest.fixture
def ctx(make_ctx) -> ToolContext:
    return make_ctx()
