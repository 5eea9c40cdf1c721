"""Shell, wait, task list and progress tools."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Literal

from pydantic import BaseModel, Field

from nimbus.logging import get_logger
from nimbus.tools.base import Handler, NoInput, ToolContext, ToolInput, ToolName

_log = get_logger("tools")

MAX_WAIT_SECONDS = 30.0


class BashInput(ToolInput):
    command: str = Field(min_length=1, description="Shell command line to run")
    timeout: float | None = Field(None, gt=0, description="Timeout in ms (default: 120000)")
    cwd: str | None = Field(None, description="Working directory (optional)")


class WaitInput(ToolInput):
    seconds: float = Field(1.0, description="Seconds to wait (default: 1, max: 30)")


class TodoItem(BaseModel):
    content: str
    status: Literal["pending", "in_progress", "completed"] = "pending"
    id: str | None = None
    priority: str | None = None


class TodoWriteInput(ToolInput):
    todos: list[TodoItem] = Field(description="The complete, updated task list")


class ProgressInput(ToolInput):
    step: str = Field(description="Short name of the current step")
    details: str = Field("", description="What is happening")
    percent: float | None = Field(None, ge=0, le=100, description="Completion percentage")


class BashHandler(Handler[BashInput]):
    name = ToolName.BASH
    description = "Run a shell command and return its exit code, stdout and stderr."
    input_model = BashInput

    async def run(self, params: BashInput, ctx: ToolContext) -> dict[str, Any]:
        lowered = params.command.lower()
        for pattern in ctx.config.blocked_commands:
            if pattern.lower() in lowered:
                return {"error": f"Command blocked for safety: contains '{pattern}'"}

        cwd = None
        if params.cwd:
            cwd_path = ctx.resolve(params.cwd)
            if (blocked := ctx.check(cwd_path, "execute")) is not None:
                return blocked
            cwd = str(cwd_path)

        timeout = params.timeout / 1000 if params.timeout else ctx.config.bash_timeout
        result = await ctx.executor.execute(
            params.command,
            cwd=cwd or str(ctx.cwd),
            timeout=timeout,
            stdout_limit=ctx.config.bash_stdout_limit,
            stderr_limit=ctx.config.bash_stderr_limit,
        )
        return result.to_dict()


class WaitHandler(Handler[WaitInput]):
    name = ToolName.WAIT
    description = "Wait for a number of seconds (at most 30)."
    input_model = WaitInput

    async def run(self, params: WaitInput, ctx: ToolContext) -> dict[str, Any]:
        seconds = min(max(params.seconds, 0.1), MAX_WAIT_SECONDS)
        await asyncio.sleep(seconds)
        return {"success": True, "waited": seconds, "message": f"Waited {seconds:g} seconds"}


def _summarize(todos: list[dict[str, Any]]) -> dict[str, int]:
    counts = {"pending": 0, "in_progress": 0, "completed": 0}
    for todo in todos:
        counts[todo["status"]] = counts.get(todo["status"], 0) + 1
    return {**counts, "total": len(todos)}


class TodoWriteHandler(Handler[TodoWriteInput]):
    name = ToolName.TODO_WRITE
    description = "Replace the session's task list."
    input_model = TodoWriteInput

    async def run(self, params: TodoWriteInput, ctx: ToolContext) -> dict[str, Any]:
        todos = [t.model_dump(exclude_none=True) for t in params.todos]
        ctx.session.todos = todos
        return {"success": True, "summary": _summarize(todos), "todos": todos}


class TodoReadHandler(Handler[NoInput]):
    name = ToolName.TODO_READ
    description = "Read the session's task list."

    async def run(self, params: NoInput, ctx: ToolContext) -> dict[str, Any]:
        todos = ctx.session.todos
        return {"todos": todos, "count": len(todos)}


class ProgressHandler(Handler[ProgressInput]):
    name = ToolName.PROGRESS
    description = "Report progress on a multi-step task to the user."
    input_model = ProgressInput

    async def run(self, params: ProgressInput, ctx: ToolContext) -> dict[str, Any]:
        entry = {
            "step": params.step,
            "details": params.details,
            "percent": params.percent,
            "timestamp": time.time(),
        }
        ctx.session.add_progress(entry)
        _log.info(
            "[%s] progress %s%s: %s",
            ctx.session_id,
            params.step,
            f" ({params.percent:g}%)" if params.percent is not None else "",
            params.details,
        )
        return {"reported": True, **entry, "message": f"Progress: {params.step}"}


HANDLERS: list[Handler[Any]] = [
    BashHandler(),
    WaitHandler(),
    TodoWriteHandler(),
    TodoReadHandler(),
    ProgressHandler(),
]
