"""Command-line interface for Nimbus."""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Sequence
from pathlib import Path

import nimbus


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="nimbus",
        description="Nimbus - streaming tool-using agent with a capability gate",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {nimbus.__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=None,
        help="Increase verbosity (can be repeated)",
    )
    parser.add_argument(
        "--project",
        type=Path,
        default=None,
        help="Project root for config lookup and tool paths (default: cwd)",
    )
    parser.add_argument(
        "--model",
        help="Override llm.model",
    )

    subparsers = parser.add_subparsers(dest="mode", help="Operating mode")

    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the HTTP/SSE API and the browser bridge",
    )
    serve_parser.add_argument("--host", help="Bind address (default: server.host)")
    serve_parser.add_argument("--port", type=int, help="Port (default: server.port)")

    chat_parser = subparsers.add_parser(
        "chat",
        help="Interactive chat in the terminal",
    )
    chat_parser.add_argument(
        "--session",
        default="cli",
        help="Session id (default: cli)",
    )
    chat_parser.add_argument(
        "--history-file",
        type=Path,
        help="File for prompt history",
    )

    return parser


async def _serve(runtime: nimbus.NimbusRuntime, host: str | None, port: int | None) -> int:
    from nimbus.server import serve

    async with runtime:
        await serve(runtime, host=host, port=port)
    return 0


async def _chat(runtime: nimbus.NimbusRuntime, session_id: str, history: Path | None) -> int:
    from nimbus.repl import ChatRepl

    async with runtime:
        await ChatRepl(runtime, session_id, history_file=history).run()
    return 0


def run_cli(args: Sequence[str]) -> int:
    """Run the CLI with the given arguments."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if parsed.mode is None:
        parser.print_help()
        return 1

    from nimbus.config import load_config
    from nimbus.logging import setup_logging
    from nimbus.runtime import NimbusRuntime

    project = str(parsed.project) if parsed.project else None
    config = load_config(project_root=project)
    if parsed.verbose is not None:
        config.logging.verbose = parsed.verbose
    if parsed.model:
        config.llm.model = parsed.model
    setup_logging(config.logging, force_stderr=parsed.mode == "serve")

    try:
        runtime = NimbusRuntime(config, cwd=project)
    except ValueError as e:
        print(f"nimbus: {e}", file=sys.stderr)
        return 2

    if parsed.mode == "serve":
        return asyncio.run(_serve(runtime, parsed.host, parsed.port))
    elif parsed.mode == "chat":
        return asyncio.run(_chat(runtime, parsed.session, parsed.history_file))
    else:
        parser.print_help()
        return 1


def main() -> int:
    """Main entry point for the nimbus CLI."""
    try:
        return run_cli(sys.argv[1:])
    except KeyboardInterrupt:
        return 130
