"""Session state and the store that owns it.

All session-keyed state lives behind :class:`SessionStore`: conversation
history, approved and denied path sets, and the pending permission and
deletion tables. Components receive the store by injection.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

from nimbus.core.messages import ConversationHistory

PROGRESS_LIMIT = 50


@dataclass
class PendingPermission:
    """A sensitive operation waiting for an out-of-band approve or deny."""

    id: str
    session_id: str
    path: str
    operation: str
    reason: str
    requested_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "path": self.path,
            "operation": self.operation,
            "reason": self.reason,
            "requestedAt": self.requested_at,
        }


@dataclass
class PendingDeletion:
    """A requested deletion waiting for confirm or cancel."""

    id: str
    session_id: str
    path: str
    recursive: bool
    reason: str
    is_directory: bool
    size: int
    file_count: int
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "path": self.path,
            "recursive": self.recursive,
            "reason": self.reason,
            "isDirectory": self.is_directory,
            "size": self.size,
            "fileCount": self.file_count,
            "createdAt": self.created_at,
        }


@dataclass
class Session:
    """Per-conversation state.

    Attributes:
        session_id: Caller-supplied conversation id.
        history: Bounded conversation log.
        approved: Normalized path prefixes approved for this session.
        denied: Normalized path prefixes denied for this session.
        todos: Task list maintained by the TodoWrite tool.
        progress: Recent Progress tool entries (newest last).
        turn_lock: Serializes runs so two prompts never interleave in history.
    """

    session_id: str
    history: ConversationHistory = field(default_factory=ConversationHistory)
    approved: set[str] = field(default_factory=set)
    denied: set[str] = field(default_factory=set)
    todos: list[dict[str, Any]] = field(default_factory=list)
    progress: list[dict[str, Any]] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    turn_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def add_progress(self, entry: dict[str, Any]) -> None:
        self.progress.append(entry)
        if len(self.progress) > PROGRESS_LIMIT:
            del self.progress[: len(self.progress) - PROGRESS_LIMIT]


class SessionStore(Protocol):
    """Session-keyed state shared by the gate, dispatcher and turn loop.

    Every method is synchronous so callers on the event loop see each
    operation as atomic per key.
    """

    def get(self, session_id: str) -> Session | None: ...

    def get_or_create(self, session_id: str) -> Session: ...

    def remove(self, session_id: str) -> Session | None: ...

    def session_ids(self) -> list[str]: ...

    def add_permission(self, pending: PendingPermission) -> None: ...

    def get_permission(self, pending_id: str) -> PendingPermission | None: ...

    def pop_permission(self, pending_id: str) -> PendingPermission | None: ...

    def permissions(self, session_id: str | None = None) -> list[PendingPermission]: ...

    def add_deletion(self, pending: PendingDeletion) -> None: ...

    def get_deletion(self, deletion_id: str) -> PendingDeletion | None: ...

    def pop_deletion(self, deletion_id: str) -> PendingDeletion | None: ...

    def deletions(self, session_id: str | None = None) -> list[PendingDeletion]: ...


class InMemorySessionStore:
    """Process-lifetime SessionStore backed by dicts."""

    def __init__(self, history_limit: int = 100, history_trim_to: int = 80) -> None:
        self._history_limit = history_limit
        self._history_trim_to = history_trim_to
        self._sessions: dict[str, Session] = {}
        self._permissions: dict[str, PendingPermission] = {}
        self._deletions: dict[str, PendingDeletion] = {}

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def get_or_create(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            session = Session(
                session_id=session_id,
                history=ConversationHistory(self._history_limit, self._history_trim_to),
            )
            self._sessions[session_id] = session
        return session

    def remove(self, session_id: str) -> Session | None:
        """Drop a session along with its pending permissions and deletions."""
        for pending_id in [p.id for p in self.permissions(session_id)]:
            del self._permissions[pending_id]
        for deletion_id in [d.id for d in self.deletions(session_id)]:
            del self._deletions[deletion_id]
        return self._sessions.pop(session_id, None)

    def session_ids(self) -> list[str]:
        return list(self._sessions)

    def add_permission(self, pending: PendingPermission) -> None:
        self._permissions[pending.id] = pending

    def get_permission(self, pending_id: str) -> PendingPermission | None:
        return self._permissions.get(pending_id)

    def pop_permission(self, pending_id: str) -> PendingPermission | None:
        return self._permissions.pop(pending_id, None)

    def permissions(self, session_id: str | None = None) -> list[PendingPermission]:
        return [
            p for p in self._permissions.values() if session_id is None or p.session_id == session_id
        ]

    def add_deletion(self, pending: PendingDeletion) -> None:
        self._deletions[pending.id] = pending

    def get_deletion(self, deletion_id: str) -> PendingDeletion | None:
        return self._deletions.get(deletion_id)

    def pop_deletion(self, deletion_id: str) -> PendingDeletion | None:
        return self._deletions.pop(deletion_id, None)

    def deletions(self, session_id: str | None = None) -> list[PendingDeletion]:
        return [
            d for d in self._deletions.values() if session_id is None or d.session_id == session_id
        ]
