"""Filesystem tools: read, write, edit, search, list, create, move, copy.

Each handler resolves its paths against the context cwd and asks the
capability gate before touching them. Glob, Grep and Copy also filter each
entry they walk, so a tree search never reads what a direct Read would be
refused. Blocking filesystem work runs in a worker thread so the event loop
keeps serving other sessions.
"""

from __future__ import annotations

import asyncio
import re
import shutil
from pathlib import Path
from typing import Any

from pydantic import Field

from nimbus.tools.base import Handler, ToolContext, ToolInput, ToolName

GREP_LINE_LIMIT = 300


class ReadInput(ToolInput):
    file_path: str = Field(description="Absolute or relative path of the file to read")
    offset: int = Field(0, ge=0, description="1-based line to start from (optional)")
    limit: int | None = Field(None, ge=1, description="Number of lines to read (optional)")


class WriteInput(ToolInput):
    file_path: str = Field(description="Path of the file to write")
    content: str = Field(description="Full file content")


class EditInput(ToolInput):
    file_path: str = Field(description="Path of the file to edit")
    old_string: str = Field(min_length=1, description="Exact text to replace")
    new_string: str = Field(description="Replacement text")
    replace_all: bool = Field(False, description="Replace every occurrence (default: first only)")


class GlobInput(ToolInput):
    pattern: str = Field(description="Glob pattern, e.g. '**/*.py'")
    path: str | None = Field(None, description="Directory to search (default: working directory)")


class GrepInput(ToolInput):
    pattern: str = Field(description="Regular expression (case-insensitive)")
    path: str | None = Field(None, description="File or directory to search")
    include: str | None = Field(None, description="Glob limiting which files are searched")


class PathInput(ToolInput):
    path: str = Field(description="Directory path")


class TransferInput(ToolInput):
    source: str = Field(description="Source path")
    destination: str = Field(description="Destination path")


def _read_numbered(path: Path, offset: int, limit: int | None) -> dict[str, Any]:
    content = path.read_text(encoding="utf-8", errors="replace")
    lines = content.split("\n")
    selected = lines[offset - 1 :] if offset > 0 else lines
    if limit:
        selected = selected[:limit]
    start = offset or 1
    numbered = "\n".join(f"{start + i:>5}│ {line}" for i, line in enumerate(selected))
    return {"content": numbered, "total_lines": len(lines)}


class ReadHandler(Handler[ReadInput]):
    name = ToolName.READ
    description = "Read a text file. Returns line-numbered content and the total line count."
    input_model = ReadInput

    async def run(self, params: ReadInput, ctx: ToolContext) -> dict[str, Any]:
        path = ctx.resolve(params.file_path)
        if (blocked := ctx.check(path, "read")) is not None:
            return blocked
        return await asyncio.to_thread(_read_numbered, path, params.offset, params.limit)


class WriteHandler(Handler[WriteInput]):
    name = ToolName.WRITE
    description = "Write a file, creating parent directories as needed. Overwrites existing files."
    input_model = WriteInput

    async def run(self, params: WriteInput, ctx: ToolContext) -> dict[str, Any]:
        path = ctx.resolve(params.file_path)
        if (blocked := ctx.check(path, "write")) is not None:
            return blocked

        def write() -> int:
            path.parent.mkdir(parents=True, exist_ok=True)
            return path.write_text(params.content, encoding="utf-8")

        await asyncio.to_thread(write)
        return {"success": True, "path": str(path), "bytes": len(params.content.encode("utf-8"))}


class EditHandler(Handler[EditInput]):
    name = ToolName.EDIT
    description = "Replace an exact string in a file."
    input_model = EditInput

    async def run(self, params: EditInput, ctx: ToolContext) -> dict[str, Any]:
        path = ctx.resolve(params.file_path)
        if (blocked := ctx.check(path, "write")) is not None:
            return blocked

        content = await asyncio.to_thread(path.read_text, encoding="utf-8")
        occurrences = content.count(params.old_string)
        if occurrences == 0:
            return {"error": f'String not found: "{params.old_string[:100]}"'}

        if params.replace_all:
            updated = content.replace(params.old_string, params.new_string)
        else:
            updated = content.replace(params.old_string, params.new_string, 1)
        await asyncio.to_thread(path.write_text, updated, encoding="utf-8")
        return {
            "success": True,
            "path": str(path),
            "replacements": occurrences if params.replace_all else 1,
        }


def _escapes_root(pattern: str) -> bool:
    return ".." in re.split(r"[\\/]", pattern)


def _readable(ctx: ToolContext, path: Path) -> bool:
    """Whether the session may read ``path`` and, for a symlink, its target."""
    if not ctx.gate.permits(ctx.session_id, str(path), "read"):
        return False
    real = path.resolve()
    return real == path or ctx.gate.permits(ctx.session_id, str(real), "read")


def _visible(ctx: ToolContext, root: Path, path: Path) -> bool:
    """A walked entry is visible when it stays under ``root`` and is readable."""
    if not path.resolve().is_relative_to(root.resolve()):
        return False
    return _readable(ctx, path)


class GlobHandler(Handler[GlobInput]):
    name = ToolName.GLOB
    description = "Find files matching a glob pattern."
    input_model = GlobInput

    async def run(self, params: GlobInput, ctx: ToolContext) -> dict[str, Any]:
        root = ctx.resolve(params.path or ".")
        if (blocked := ctx.check(root, "search")) is not None:
            return blocked
        if _escapes_root(params.pattern):
            return {"error": f"Pattern must stay inside the search directory: {params.pattern}"}

        matches = await asyncio.to_thread(
            lambda: sorted(str(p) for p in root.glob(params.pattern) if _visible(ctx, root, p))
        )
        return {"files": matches[: ctx.config.glob_limit], "count": len(matches)}


def _grep(
    ctx: ToolContext,
    root: Path,
    regex: re.Pattern[str],
    include: str | None,
) -> list[dict[str, Any]]:
    file_limit = ctx.config.grep_file_limit
    match_limit = ctx.config.grep_match_limit
    if include:
        found = root.glob(include)
    elif root.is_file():
        found = iter([root])
    else:
        found = root.rglob("*")
    candidates = sorted(
        p for p in found if p.is_file() and (p == root or _visible(ctx, root, p))
    )

    results: list[dict[str, Any]] = []
    for file in candidates[:file_limit]:
        try:
            text = file.read_text(encoding="utf-8")
        except (UnicodeDecodeError, OSError):
            continue  # binary or unreadable
        for number, line in enumerate(text.split("\n"), start=1):
            if regex.search(line):
                results.append(
                    {"file": str(file), "line": number, "content": line[:GREP_LINE_LIMIT]}
                )
        if len(results) >= match_limit:
            return results[:match_limit]
    return results


class GrepHandler(Handler[GrepInput]):
    name = ToolName.GREP
    description = "Search file contents with a case-insensitive regular expression."
    input_model = GrepInput

    async def run(self, params: GrepInput, ctx: ToolContext) -> dict[str, Any]:
        root = ctx.resolve(params.path or ".")
        if (blocked := ctx.check(root, "search")) is not None:
            return blocked

        if params.include and _escapes_root(params.include):
            return {"error": f"Pattern must stay inside the search directory: {params.include}"}

        regex = re.compile(params.pattern, re.IGNORECASE)
        matches = await asyncio.to_thread(_grep, ctx, root, regex, params.include)
        return {"matches": matches, "count": len(matches)}


def _list_dir(path: Path) -> list[dict[str, Any]]:
    items = []
    for entry in sorted(path.iterdir(), key=lambda p: p.name):
        is_dir = entry.is_dir()
        size = None
        if not is_dir:
            try:
                size = entry.stat().st_size
            except OSError:
                pass
        items.append({"name": entry.name, "type": "directory" if is_dir else "file", "size": size})
    return items


class ListDirHandler(Handler[PathInput]):
    name = ToolName.LIST_DIR
    description = "List the entries of a directory with their type and size."
    input_model = PathInput

    async def run(self, params: PathInput, ctx: ToolContext) -> dict[str, Any]:
        path = ctx.resolve(params.path)
        if (blocked := ctx.check(path, "list")) is not None:
            return blocked
        items = await asyncio.to_thread(_list_dir, path)
        return {"items": items, "count": len(items)}


class MakeDirHandler(Handler[PathInput]):
    name = ToolName.MAKE_DIR
    description = "Create a directory, including missing parents."
    input_model = PathInput

    async def run(self, params: PathInput, ctx: ToolContext) -> dict[str, Any]:
        path = ctx.resolve(params.path)
        if (blocked := ctx.check(path, "write")) is not None:
            return blocked
        await asyncio.to_thread(path.mkdir, parents=True, exist_ok=True)
        return {"success": True, "path": str(path)}


class MoveHandler(Handler[TransferInput]):
    name = ToolName.MOVE
    description = "Move or rename a file or directory."
    input_model = TransferInput

    async def run(self, params: TransferInput, ctx: ToolContext) -> dict[str, Any]:
        source = ctx.resolve(params.source)
        destination = ctx.resolve(params.destination)
        for path, operation in ((source, "write"), (destination, "write")):
            if (blocked := ctx.check(path, operation)) is not None:
                return blocked
        if not source.exists():
            raise FileNotFoundError(f"Path not found: {source}")
        await asyncio.to_thread(shutil.move, str(source), str(destination))
        return {"success": True, "source": str(source), "destination": str(destination)}


def _copy(ctx: ToolContext, source: Path, destination: Path) -> None:
    def hidden(directory: str, names: list[str]) -> set[str]:
        return {name for name in names if not _readable(ctx, Path(directory) / name)}

    if source.is_dir():
        shutil.copytree(source, destination, ignore=hidden, dirs_exist_ok=True)
    else:
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, destination)


class CopyHandler(Handler[TransferInput]):
    name = ToolName.COPY
    description = "Copy a file or a directory tree."
    input_model = TransferInput

    async def run(self, params: TransferInput, ctx: ToolContext) -> dict[str, Any]:
        source = ctx.resolve(params.source)
        destination = ctx.resolve(params.destination)
        for path, operation in ((source, "read"), (destination, "write")):
            if (blocked := ctx.check(path, operation)) is not None:
                return blocked
        if not source.exists():
            raise FileNotFoundError(f"Path not found: {source}")
        await asyncio.to_thread(_copy, ctx, source, destination)
        return {"success": True, "source": str(source), "destination": str(destination)}


HANDLERS: list[Handler[Any]] = [
    ReadHandler(),
    WriteHandler(),
    EditHandler(),
    GlobHandler(),
    GrepHandler(),
    ListDirHandler(),
    MakeDirHandler(),
    MoveHandler(),
    CopyHandler(),
]
