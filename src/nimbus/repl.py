"""Interactive chat REPL: one in-process session rendered with rich."""

from __future__ import annotations

import asyncio
import json
import shlex
from typing import TYPE_CHECKING, Any

from prompt_toolkit import PromptSession
from prompt_toolkit.auto_suggest import AutoSuggestFromHistory
from prompt_toolkit.history import FileHistory
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from nimbus.session import DeletionError
from nimbus.session.agent import AgentEvent, EventType

if TYPE_CHECKING:
    from pathlib import Path

    from nimbus.runtime import NimbusRuntime

console = Console()

RESULT_PREVIEW = 400


def _preview(value: Any, limit: int = RESULT_PREVIEW) -> str:
    text = value if isinstance(value, str) else json.dumps(value, default=str)
    return text if len(text) <= limit else text[:limit] + "..."


class EventRenderer:
    """Prints agent events as they stream in."""

    def __init__(self, out: Console | None = None) -> None:
        self.console = out or console
        self._in_text = False

    def _end_text(self) -> None:
        if self._in_text:
            self.console.print()
            self._in_text = False

    def render(self, event: AgentEvent) -> None:
        data = event.data
        if event.type is EventType.TEXT:
            self.console.print(data["content"], end="", markup=False, highlight=False)
            self._in_text = True
        elif event.type is EventType.THINKING:
            self.console.print(data["content"], end="", style="dim italic", markup=False)
        elif event.type is EventType.TOOL_USE:
            self._end_text()
            name = escape(data["name"])
            preview = escape(_preview(data["input"], 200))
            self.console.print(f"[cyan]> {name}[/cyan] [dim]{preview}[/dim]")
        elif event.type is EventType.TOOL_RESULT:
            result = data["result"]
            if result.get("requires_permission"):
                self.console.print(
                    f"[yellow]  permission needed ({result['permission_id']}): "
                    f"{result['operation']} {escape(result['path'])}[/yellow]"
                )
            elif result.get("requires_confirmation"):
                self.console.print(
                    f"[yellow]  deletion pending ({result['deletion_id']}): "
                    f"{escape(result['path'])}[/yellow]"
                )
            elif "error" in result:
                self.console.print(f"[red]  error: {escape(str(result['error']))}[/red]")
            else:
                self.console.print(f"[dim]  {escape(_preview(result))}[/dim]", highlight=False)
        elif event.type is EventType.ERROR:
            self._end_text()
            self.console.print(f"[bold red]Error:[/bold red] {escape(data['message'])}")
        elif event.type is EventType.DONE:
            self._end_text()
            self.console.print(f"[dim]({data['turns']} turn(s))[/dim]")


class CommandHandler:
    """Handles slash commands in the chat REPL."""

    def __init__(self, runtime: NimbusRuntime, session_id: str) -> None:
        self.runtime = runtime
        self.session_id = session_id
        self.quit = False

    async def handle(self, line: str) -> None:
        """Handle a slash command."""
        try:
            parts = shlex.split(line)
        except ValueError as e:
            console.print(f"[red]{escape(str(e))}[/red]")
            return
        if not parts:
            return

        cmd = parts[0].lower()
        args = parts[1:]

        handlers = {
            "/help": self._cmd_help,
            "/pending": self._cmd_pending,
            "/approve": self._cmd_approve,
            "/deny": self._cmd_deny,
            "/deletions": self._cmd_deletions,
            "/confirm-delete": self._cmd_confirm_delete,
            "/cancel-delete": self._cmd_cancel_delete,
            "/clear": self._cmd_clear,
            "/quit": self._cmd_quit,
        }

        handler = handlers.get(cmd)
        if handler:
            await handler(args)
        else:
            console.print(f"[red]Unknown command: {escape(cmd)}[/red]")
            console.print("Type [bold]/help[/bold] for available commands.")

    async def _cmd_help(self, args: list[str]) -> None:
        """Show available commands."""
        table = Table(title="Available Commands")
        table.add_column("Command", style="bold")
        table.add_column("Description")

        commands = [
            ("/help", "Show this help message"),
            ("/pending", "List permission requests for this session"),
            ("/approve <id>", "Approve a permission request"),
            ("/deny <id>", "Deny a permission request"),
            ("/deletions", "List pending deletions for this session"),
            ("/confirm-delete <id>", "Carry out a pending deletion"),
            ("/cancel-delete <id>", "Discard a pending deletion"),
            ("/clear", "Forget history and decisions for this session"),
            ("/quit", "Exit"),
        ]
        for cmd, desc in commands:
            table.add_row(cmd, desc)
        console.print(table)

    async def _cmd_pending(self, args: list[str]) -> None:
        pending = self.runtime.gate.list_pending(self.session_id)
        if not pending:
            console.print("[dim]No pending permissions.[/dim]")
            return
        table = Table(title="Pending Permissions")
        table.add_column("ID", style="bold")
        table.add_column("Operation")
        table.add_column("Path")
        table.add_column("Reason")
        for p in pending:
            table.add_row(p.id, p.operation, escape(p.path), escape(p.reason))
        console.print(table)

    def _require_id(self, args: list[str], usage: str) -> str | None:
        if not args:
            console.print(f"[red]Usage: {usage}[/red]")
            return None
        return args[0]

    async def _cmd_approve(self, args: list[str]) -> None:
        pending_id = self._require_id(args, "/approve <id>")
        if pending_id is None:
            return
        pending = self.runtime.gate.approve(pending_id)
        if pending is None:
            console.print(f"[red]Permission not found: {escape(pending_id)}[/red]")
        else:
            console.print(f"[green]Approved[/green] {escape(pending.path)}")

    async def _cmd_deny(self, args: list[str]) -> None:
        pending_id = self._require_id(args, "/deny <id>")
        if pending_id is None:
            return
        pending = self.runtime.gate.deny(pending_id)
        if pending is None:
            console.print(f"[red]Permission not found: {escape(pending_id)}[/red]")
        else:
            console.print(f"[yellow]Denied[/yellow] {escape(pending.path)}")

    async def _cmd_deletions(self, args: list[str]) -> None:
        pending = self.runtime.deletions.list_pending(self.session_id)
        if not pending:
            console.print("[dim]No pending deletions.[/dim]")
            return
        table = Table(title="Pending Deletions")
        table.add_column("ID", style="bold")
        table.add_column("Path")
        table.add_column("Files", justify="right")
        table.add_column("Bytes", justify="right")
        table.add_column("Reason")
        for d in pending:
            table.add_row(d.id, escape(d.path), str(d.file_count), str(d.size), escape(d.reason))
        console.print(table)

    async def _cmd_confirm_delete(self, args: list[str]) -> None:
        deletion_id = self._require_id(args, "/confirm-delete <id>")
        if deletion_id is None:
            return
        try:
            result = await self.runtime.deletions.confirm(deletion_id)
        except DeletionError as e:
            console.print(f"[red]{escape(str(e))}[/red]")
            return
        console.print(f"[green]{escape(result['message'])}[/green]")

    async def _cmd_cancel_delete(self, args: list[str]) -> None:
        deletion_id = self._require_id(args, "/cancel-delete <id>")
        if deletion_id is None:
            return
        try:
            pending = self.runtime.deletions.cancel(deletion_id)
        except DeletionError as e:
            console.print(f"[red]{escape(str(e))}[/red]")
            return
        console.print(f"Cancelled deletion of {escape(pending.path)}")

    async def _cmd_clear(self, args: list[str]) -> None:
        self.runtime.clear_session(self.session_id)
        console.print("[dim]Session cleared.[/dim]")

    async def _cmd_quit(self, args: list[str]) -> None:
        self.quit = True


class ChatRepl:
    """Prompt loop: plain lines go to the agent, ``/`` lines are commands."""

    def __init__(
        self,
        runtime: NimbusRuntime,
        session_id: str = "cli",
        history_file: Path | None = None,
    ) -> None:
        self.runtime = runtime
        self.session_id = session_id
        self.commands = CommandHandler(runtime, session_id)
        self.renderer = EventRenderer()

        history = FileHistory(str(history_file)) if history_file else None
        self.session: PromptSession[str] = PromptSession(
            history=history,
            auto_suggest=AutoSuggestFromHistory(),
        )

    async def ask(self, prompt: str) -> None:
        """Run one prompt, rendering events until the run ends."""
        async for event in self.runtime.run(self.session_id, prompt):
            self.renderer.render(event)

    async def run(self) -> None:
        """Run the interactive REPL."""
        console.print(f"[bold]Nimbus[/bold] - model [cyan]{self.runtime.provider.model}[/cyan]")
        console.print("Type [bold]/help[/bold] for commands, [bold]/quit[/bold] to exit.\n")

        loop = asyncio.get_running_loop()
        while not self.commands.quit:
            try:
                line = await loop.run_in_executor(None, lambda: self.session.prompt("you> "))
            except KeyboardInterrupt:
                continue
            except EOFError:
                break

            line = line.strip()
            if not line:
                continue
            if line.startswith("/"):
                await self.commands.handle(line)
                continue

            await self.ask(line)
