"""Maps tool calls to handlers and normalizes their outcomes.

``execute`` never raises for a tool failure: unknown tools, invalid input
and handler exceptions all come back as ``{"error": message}`` so the turn
loop can hand them to the model as data.
"""

from __future__ import annotations

import time
from collections.abc import Iterable
from typing import Any

from pydantic import ValidationError

from nimbus.logging import get_logger
from nimbus.tools import browser, deletion, files, system, web
from nimbus.tools.base import Handler, ToolContext, ToolName

_log = get_logger("tools")


def default_handlers() -> list[Handler[Any]]:
    """One handler per ToolName."""
    return [
        *files.HANDLERS,
        *deletion.HANDLERS,
        *system.HANDLERS,
        *web.HANDLERS,
        *browser.HANDLERS,
    ]


def _format_validation_error(tool: str, error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "input"
        problems.append(f"{location}: {item['msg']}")
    return f"Invalid input for {tool}: " + "; ".join(problems)


class ToolDispatcher:
    """Runs tool calls against a fixed set of handlers.

    Args:
        handlers: Handlers to register. Defaults to the full tool set, which
            must cover every ToolName.
    """

    def __init__(self, handlers: Iterable[Handler[Any]] | None = None) -> None:
        self._handlers: dict[ToolName, Handler[Any]] = {}
        for handler in handlers if handlers is not None else default_handlers():
            if handler.name in self._handlers:
                raise ValueError(f"Duplicate handler for {handler.name.value}")
            self._handlers[handler.name] = handler
        if handlers is None:
            missing = set(ToolName) - set(self._handlers)
            if missing:
                raise RuntimeError(f"No handler for: {sorted(t.value for t in missing)}")

    @property
    def names(self) -> list[str]:
        return [name.value for name in self._handlers]

    def schemas(self) -> list[dict[str, Any]]:
        """Tool schemas for the provider request."""
        return [handler.schema() for handler in self._handlers.values()]

    def handler_for(self, name: str) -> Handler[Any] | None:
        try:
            return self._handlers.get(ToolName(name))
        except ValueError:
            return None

    async def execute(
        self, name: str, raw_input: dict[str, Any], ctx: ToolContext
    ) -> dict[str, Any]:
        """Validate and run one tool call, always returning a result dict."""
        handler = self.handler_for(name)
        if handler is None:
            return {"error": f"Unknown tool: {name}"}

        try:
            params = handler.validate(raw_input if isinstance(raw_input, dict) else {})
        except ValidationError as e:
            return {"error": _format_validation_error(name, e)}

        start = time.perf_counter()
        try:
            result = await handler.run(params, ctx)
        except Exception as e:
            _log.warning("[%s] %s failed: %s", ctx.session_id, name, e)
            return {"error": str(e) or type(e).__name__}

        elapsed_ms = (time.perf_counter() - start) * 1000
        _log.debug("[%s] %s finished in %.0fms", ctx.session_id, name, elapsed_ms)
        if not isinstance(result, dict):
            return {"result": result}
        return result
