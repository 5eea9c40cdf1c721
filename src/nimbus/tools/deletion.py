"""Deletion tools. The model can request, confirm and cancel; nothing deletes directly."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from nimbus.tools.base import Handler, ToolContext, ToolInput, ToolName


class DeleteInput(ToolInput):
    path: str = Field(description="File or directory to delete")
    recursive: bool = Field(False, description="Delete directory contents (default: false)")
    reason: str = Field("No reason provided", description="Why this deletion is needed")


class DeletionIdInput(ToolInput):
    deletion_id: str = Field(description="Id returned by Delete")


class DeleteHandler(Handler[DeleteInput]):
    name = ToolName.DELETE
    description = (
        "Request deletion of a file or directory. Nothing is deleted until the user "
        "confirms; returns a deletion_id for ConfirmDelete or CancelDelete."
    )
    input_model = DeleteInput

    async def run(self, params: DeleteInput, ctx: ToolContext) -> dict[str, Any]:
        path = ctx.resolve(params.path)
        if (blocked := ctx.check(path, "delete")) is not None:
            return blocked

        pending = await ctx.deletions.request(
            ctx.session_id, path, recursive=params.recursive, reason=params.reason
        )
        noun = "directory" if pending.is_directory else "file"
        return {
            "requires_confirmation": True,
            "deletion_id": pending.id,
            "path": pending.path,
            "is_directory": pending.is_directory,
            "size": pending.size,
            "file_count": pending.file_count,
            "reason": pending.reason,
            "message": (
                f"Deletion of {noun} {pending.path} ({pending.file_count} files) is pending. "
                "Ask the user to confirm before calling ConfirmDelete."
            ),
        }


class ConfirmDeleteHandler(Handler[DeletionIdInput]):
    name = ToolName.CONFIRM_DELETE
    description = "Carry out a pending deletion after the user confirmed it."
    input_model = DeletionIdInput

    async def run(self, params: DeletionIdInput, ctx: ToolContext) -> dict[str, Any]:
        return await ctx.deletions.confirm(params.deletion_id, ctx.session_id)


class CancelDeleteHandler(Handler[DeletionIdInput]):
    name = ToolName.CANCEL_DELETE
    description = "Cancel a pending deletion without deleting anything."
    input_model = DeletionIdInput

    async def run(self, params: DeletionIdInput, ctx: ToolContext) -> dict[str, Any]:
        pending = ctx.deletions.cancel(params.deletion_id, ctx.session_id)
        return {"success": True, "cancelled": pending.id, "path": pending.path}


HANDLERS: list[Handler[Any]] = [DeleteHandler(), ConfirmDeleteHandler(), CancelDeleteHandler()]
