"""Tool handler base types.

Every tool is a :class:`Handler` subclass bound to one member of the closed
:class:`ToolName` enumeration. Its input is a pydantic model, validated
before ``run`` is called; the same model produces the JSON schema sent to
the provider.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar, Generic, TypeVar

import httpx
from pydantic import BaseModel, ConfigDict

from nimbus.config.schema import ToolsConfig
from nimbus.session.sandbox import Denied, RequiresApproval

if TYPE_CHECKING:
    from nimbus.bridge import RemoteCommandBridge
    from nimbus.session.deletions import DeletionManager
    from nimbus.session.sandbox import CapabilityGate
    from nimbus.session.store import Session, SessionStore
    from nimbus.terminal import ShellExecutor


class ToolName(str, Enum):
    """Every tool the model may call."""

    # Files
    READ = "Read"
    WRITE = "Write"
    EDIT = "Edit"
    GLOB = "Glob"
    GREP = "Grep"
    LIST_DIR = "ListDir"
    MAKE_DIR = "MakeDir"
    MOVE = "Move"
    COPY = "Copy"
    # Two-phase deletion
    DELETE = "Delete"
    CONFIRM_DELETE = "ConfirmDelete"
    CANCEL_DELETE = "CancelDelete"
    # System
    BASH = "Bash"
    WAIT = "Wait"
    # Web
    WEB_FETCH = "WebFetch"
    WEB_SEARCH = "WebSearch"
    # Tasks
    TODO_WRITE = "TodoWrite"
    TODO_READ = "TodoRead"
    PROGRESS = "Progress"
    # Browser (via bridge)
    BROWSER_NAVIGATE = "BrowserNavigate"
    BROWSER_CLICK = "BrowserClick"
    BROWSER_TYPE = "BrowserType"
    BROWSER_READ = "BrowserRead"
    BROWSER_SCREENSHOT = "BrowserScreenshot"
    BROWSER_SCROLL = "BrowserScroll"
    BROWSER_GET_TABS = "BrowserGetTabs"
    BROWSER_SWITCH_TAB = "BrowserSwitchTab"
    BROWSER_FILL_FORM = "BrowserFillForm"
    BROWSER_GET_ELEMENTS = "BrowserGetElements"


class ToolInput(BaseModel):
    """Base model for tool inputs. Unknown keys from the model are ignored."""

    model_config = ConfigDict(extra="ignore")


class NoInput(ToolInput):
    """Input for tools that take no arguments."""


InputT = TypeVar("InputT", bound=ToolInput)


@dataclass
class ToolContext:
    """Everything a handler may touch while running one call.

    Attributes:
        session_id: Session the call belongs to.
        store: Session store.
        gate: Capability gate consulted before path access.
        deletions: Two-phase deletion manager.
        bridge: Browser bridge (None when running without a server).
        executor: Shell executor for Bash.
        config: Tool limits.
        cwd: Base directory for relative paths.
        http: Shared HTTP client for web tools (one is created per call when None).
    """

    session_id: str
    store: SessionStore
    gate: CapabilityGate
    deletions: DeletionManager
    executor: ShellExecutor
    bridge: RemoteCommandBridge | None = None
    config: ToolsConfig = field(default_factory=ToolsConfig)
    cwd: Path = field(default_factory=Path.cwd)
    http: httpx.AsyncClient | None = None

    @property
    def session(self) -> Session:
        return self.store.get_or_create(self.session_id)

    def resolve(self, path: str) -> Path:
        """Expand ``~`` and make ``path`` absolute against the context cwd."""
        expanded = Path(os.path.expanduser(path))
        if not expanded.is_absolute():
            expanded = self.cwd / expanded
        return Path(os.path.normpath(expanded))

    def check(self, path: Path | str, operation: str) -> dict[str, Any] | None:
        """Ask the gate about ``path``.

        Returns None when the operation may proceed, otherwise the structured
        result the handler must return instead of touching the path.
        """
        outcome = self.gate.classify(self.session_id, str(path), operation)
        if isinstance(outcome, Denied):
            return {"error": outcome.reason, "blocked": True, "path": str(path)}
        if isinstance(outcome, RequiresApproval):
            return {
                "requires_permission": True,
                "permission_id": outcome.pending_id,
                "path": outcome.path,
                "operation": outcome.operation,
                "reason": outcome.reason,
                "message": f"Permission required to {operation} {outcome.path}",
                "instruction": (
                    "Ask the user to approve this request, then retry the same tool call."
                ),
            }
        return None


class Handler(ABC, Generic[InputT]):
    """One tool: a name, a description, an input model and an async ``run``."""

    name: ClassVar[ToolName]
    description: ClassVar[str]
    input_model: ClassVar[type[ToolInput]] = NoInput

    def validate(self, raw: dict[str, Any]) -> InputT:
        """Validate raw model input. Raises pydantic.ValidationError."""
        return self.input_model.model_validate(raw)  # type: ignore[return-value]

    @abstractmethod
    async def run(self, params: InputT, ctx: ToolContext) -> dict[str, Any]:
        """Execute the tool and return a JSON-serializable result."""
        ...

    def schema(self) -> dict[str, Any]:
        """Tool schema in the ``{name, description, input_schema}`` shape."""
        input_schema = self.input_model.model_json_schema()
        input_schema.pop("title", None)
        for prop in input_schema.get("properties", {}).values():
            prop.pop("title", None)
        input_schema.setdefault("properties", {})
        return {
            "name": self.name.value,
            "description": self.description,
            "input_schema": input_schema,
        }
