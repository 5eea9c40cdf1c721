"""Two-phase deletion: request, then confirm or cancel.

Nothing in Nimbus removes files except :meth:`DeletionManager.confirm`.
A request snapshots what would be deleted and records a PendingDeletion;
confirm re-checks the path and performs the deletion; cancel discards the
request. Each pending id is consumed at most once.
"""

from __future__ import annotations

import asyncio
import os
import shutil
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Any

from nimbus.logging import get_logger
from nimbus.session.store import PendingDeletion

if TYPE_CHECKING:
    from nimbus.session.store import SessionStore

_log = get_logger("deletions")


class DeletionError(Exception):
    """A deletion request, confirm or cancel could not be carried out."""


class DeletionNotFound(DeletionError, LookupError):
    """No pending deletion exists for the id (never created or already consumed)."""

    def __init__(self, deletion_id: str) -> None:
        self.deletion_id = deletion_id
        super().__init__(f"No pending deletion found with id: {deletion_id}")


def _new_deletion_id() -> str:
    return f"del_{uuid.uuid4().hex[:16]}"


def snapshot(path: Path) -> tuple[bool, int, int]:
    """Measure a path: (is_directory, total size in bytes, file count)."""
    if not path.is_dir() or path.is_symlink():
        return False, path.lstat().st_size, 1

    size = 0
    count = 0
    for root, _dirs, files in os.walk(path):
        for name in files:
            try:
                size += (Path(root) / name).lstat().st_size
            except OSError:
                continue
            count += 1
    return True, size, count


def _remove(path: Path, recursive: bool) -> None:
    if path.is_dir() and not path.is_symlink():
        if recursive:
            shutil.rmtree(path)
        else:
            path.rmdir()
    else:
        path.unlink()


class DeletionManager:
    """Owns the request/confirm/cancel protocol for destructive deletes."""

    def __init__(self, store: SessionStore) -> None:
        self._store = store
        self._in_flight: set[str] = set()

    async def request(
        self,
        session_id: str,
        path: str | Path,
        recursive: bool = False,
        reason: str = "No reason provided",
    ) -> PendingDeletion:
        """Record a deletion request without touching the filesystem.

        Raises:
            FileNotFoundError: The path does not exist.
            DeletionError: A non-empty directory was given without ``recursive``.
        """
        target = Path(path)
        if not target.exists() and not target.is_symlink():
            raise FileNotFoundError(f"Path not found: {target}")

        is_directory, size, file_count = await asyncio.to_thread(snapshot, target)
        if is_directory and not recursive and any(target.iterdir()):
            raise DeletionError(
                f"Directory is not empty: {target}. Set recursive=true to delete its contents."
            )

        pending = PendingDeletion(
            id=_new_deletion_id(),
            session_id=session_id,
            path=str(target),
            recursive=recursive,
            reason=reason,
            is_directory=is_directory,
            size=size,
            file_count=file_count,
        )
        self._store.add_deletion(pending)
        _log.info(
            "Deletion %s requested: %s (%d files, %d bytes)",
            pending.id,
            pending.path,
            file_count,
            size,
        )
        return pending

    def _lookup(self, deletion_id: str, session_id: str | None) -> PendingDeletion:
        pending = self._store.get_deletion(deletion_id)
        if pending is None or (session_id is not None and pending.session_id != session_id):
            raise DeletionNotFound(deletion_id)
        return pending

    async def confirm(self, deletion_id: str, session_id: str | None = None) -> dict[str, Any]:
        """Execute a pending deletion.

        The entry is removed only once the deletion succeeds, so a failed
        attempt can be retried. When ``session_id`` is given, ids owned by
        other sessions are treated as unknown.

        Raises:
            DeletionNotFound: Unknown or already consumed id.
            DeletionError: The path vanished, or the deletion itself failed.
        """
        pending = self._lookup(deletion_id, session_id)
        if deletion_id in self._in_flight:
            raise DeletionError(f"Deletion {deletion_id} is already in progress")

        target = Path(pending.path)
        if not target.exists() and not target.is_symlink():
            raise DeletionError(f"Path no longer exists: {pending.path}")

        self._in_flight.add(deletion_id)
        try:
            await asyncio.to_thread(_remove, target, pending.recursive)
        except OSError as e:
            _log.warning("Deletion %s failed: %s", deletion_id, e)
            raise DeletionError(f"Failed to delete: {e}") from e
        finally:
            self._in_flight.discard(deletion_id)

        self._store.pop_deletion(deletion_id)
        _log.info("Deleted %s (%s)", pending.path, deletion_id)
        noun = "directory" if pending.is_directory else "file"
        return {
            "success": True,
            "deleted": pending.path,
            "file_count": pending.file_count,
            "message": f"Deleted {noun} {pending.path}",
        }

    def cancel(self, deletion_id: str, session_id: str | None = None) -> PendingDeletion:
        """Discard a pending deletion without touching the filesystem.

        ``session_id`` scopes the lookup the same way as in ``confirm``.

        Raises:
            DeletionNotFound: Unknown or already consumed id.
            DeletionError: A confirm for this id is running.
        """
        if deletion_id in self._in_flight:
            raise DeletionError(f"Deletion {deletion_id} is already in progress")
        pending = self._lookup(deletion_id, session_id)
        self._store.pop_deletion(deletion_id)
        _log.info("Deletion %s cancelled: %s", deletion_id, pending.path)
        return pending

    def list_pending(self, session_id: str | None = None) -> list[PendingDeletion]:
        return sorted(self._store.deletions(session_id), key=lambda d: d.created_at)
