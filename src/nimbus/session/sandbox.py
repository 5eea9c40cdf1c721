"""Capability gate for path-touching tool operations.

The gate classifies a (session, path, operation) triple as Allowed, Denied
or RequiresApproval. It is synchronous and in-memory so it can sit on the
hot path of every tool call.

Classification order:
1. Always-blocked patterns (built in, not overridable) -> Denied
2. Session's denied prefixes -> Denied
3. Session's approved prefixes -> Allowed
4. Sensitive patterns (user data, credentials, OS dirs) -> RequiresApproval
5. Writing or executing a dangerous file type -> RequiresApproval
6. Anything else -> Allowed

RequiresApproval never blocks: it records a PendingPermission and returns
immediately. A later approve() or deny() call, made out of band by a
human, updates the session's path sets.
"""

from __future__ import annotations

import posixpath
import time
import uuid
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Union

from nimbus.config.schema import SandboxConfig
from nimbus.logging import get_logger
from nimbus.session.store import PendingPermission

if TYPE_CHECKING:
    from nimbus.session.store import Session, SessionStore

_log = get_logger("sandbox")

ALWAYS_BLOCKED = (
    "System32",
    "Windows/System32",
    "/etc/passwd",
    "/etc/shadow",
    "/etc/sudoers",
    ".ssh/id_rsa",
    ".ssh/id_ed25519",
    ".gnupg/private-keys",
)

# Operations that can turn a file into something runnable
EXECUTABLE_OPERATIONS = frozenset({"write", "execute"})


@dataclass(frozen=True, slots=True)
class Allowed:
    """The operation may proceed."""

    def to_dict(self) -> dict[str, Any]:
        return {"allowed": True}


@dataclass(frozen=True, slots=True)
class Denied:
    """The operation must not proceed."""

    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {"allowed": False, "blocked": True, "reason": self.reason}


@dataclass(frozen=True, slots=True)
class RequiresApproval:
    """The operation needs a human decision; ``pending_id`` identifies the request."""

    pending_id: str
    path: str
    operation: str
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": False,
            "requires_permission": True,
            "permission_id": self.pending_id,
            "path": self.path,
            "operation": self.operation,
            "reason": self.reason,
        }


Classification = Union[Allowed, Denied, RequiresApproval]


def normalize_path(path: str) -> str:
    """Normalize a path for matching: forward slashes, collapsed, lower-cased."""
    text = path.replace("\\", "/")
    if not text:
        return ""
    normalized = posixpath.normpath(text)
    # normpath keeps a leading "//"; treat it like a single root
    if normalized.startswith("//"):
        normalized = "/" + normalized.lstrip("/")
    return normalized.lower()


def matches_pattern(normalized_path: str, pattern: str) -> bool:
    """Check a normalized path against a location pattern.

    Absolute patterns (``/etc``) match the path itself or anything below it.
    Relative patterns (``.ssh``, ``Windows/System32``) match when their
    segments appear as whole segments anywhere in the path, so ``.ssh``
    matches ``/home/u/.ssh/config`` but not ``/home/u/not.ssh``.
    """
    norm_pattern = normalize_path(pattern).rstrip("/")
    if not norm_pattern:
        return False
    if norm_pattern.startswith("/"):
        return normalized_path == norm_pattern or normalized_path.startswith(norm_pattern + "/")
    return f"/{norm_pattern}/" in f"/{normalized_path.strip('/')}/"


def _new_permission_id() -> str:
    return f"perm_{uuid.uuid4().hex[:16]}"


class CapabilityGate:
    """Classifies path operations and tracks per-session approve/deny decisions.

    Args:
        store: Session store owning path sets and pending permissions.
        config: Sandbox configuration (defaults when None).
    """

    def __init__(self, store: SessionStore, config: SandboxConfig | None = None) -> None:
        config = config or SandboxConfig()
        self._store = store
        self.require_approval = config.require_approval
        self.blocked_patterns = [*ALWAYS_BLOCKED, *config.blocked_paths]
        self.sensitive_patterns = list(config.sensitive_paths)
        self.dangerous_extensions = {ext.lower() for ext in config.dangerous_extensions}
        self._audit: deque[dict[str, Any]] = deque(maxlen=config.audit_limit)

    # Pattern checks

    def is_blocked(self, path: str) -> bool:
        normalized = normalize_path(path)
        return any(matches_pattern(normalized, p) for p in self.blocked_patterns)

    def is_sensitive(self, path: str) -> bool:
        normalized = normalize_path(path)
        return any(matches_pattern(normalized, p) for p in self.sensitive_patterns)

    def is_dangerous(self, path: str) -> bool:
        _, ext = posixpath.splitext(normalize_path(path))
        return ext in self.dangerous_extensions

    # Classification

    def _verdict(self, session: Session | None, path: str, operation: str) -> str:
        """Which classification rule applies, without recording anything."""
        normalized = normalize_path(path)
        if self.is_blocked(path):
            return "blocked"
        if session is not None:
            if any(normalized.startswith(prefix) for prefix in session.denied):
                return "denied"
            if any(normalized.startswith(prefix) for prefix in session.approved):
                return "approved"
        if self.require_approval and self.is_sensitive(path):
            return "sensitive"
        if operation in EXECUTABLE_OPERATIONS and self.is_dangerous(path):
            return "dangerous"
        return "allowed"

    def classify(self, session_id: str, path: str, operation: str) -> Classification:
        """Decide whether ``operation`` on ``path`` may proceed for this session."""
        session = self._store.get_or_create(session_id)
        self._record("attempt", session_id, path, operation)

        verdict = self._verdict(session, path, operation)
        if verdict == "blocked":
            self._record("blocked", session_id, path, operation)
            return Denied(f"Access to {path} is blocked for security reasons")
        if verdict == "denied":
            self._record("denied", session_id, path, operation)
            return Denied(f"Access to {path} was denied by user")
        if verdict == "sensitive":
            return self._request(session_id, path, operation, "Sensitive location")
        if verdict == "dangerous":
            return self._request(
                session_id, path, operation, "Potentially dangerous file type"
            )

        if verdict == "approved":
            self._record("allowed", session_id, path, operation, detail="approved")
        else:
            self._record("allowed", session_id, path, operation)
        return Allowed()

    def permits(self, session_id: str, path: str, operation: str) -> bool:
        """True when ``classify`` would return Allowed.

        Unlike ``classify`` this opens no pending request and writes no audit
        entry. Tools use it to filter the entries they find while walking a
        directory the session was already allowed to search or copy.
        """
        return self._verdict(self._store.get(session_id), path, operation) in ("approved", "allowed")

    def _request(
        self, session_id: str, path: str, operation: str, reason: str
    ) -> RequiresApproval:
        normalized = normalize_path(path)
        # Repeated attempts reuse the open request instead of piling up duplicates
        for existing in self._store.permissions(session_id):
            if existing.operation == operation and normalize_path(existing.path) == normalized:
                return RequiresApproval(existing.id, existing.path, operation, existing.reason)

        pending = PendingPermission(
            id=_new_permission_id(),
            session_id=session_id,
            path=path,
            operation=operation,
            reason=reason,
        )
        self._store.add_permission(pending)
        self._record("permission_requested", session_id, path, operation, detail=pending.id)
        _log.info("Permission %s requested: %s %s (%s)", pending.id, operation, path, reason)
        return RequiresApproval(pending.id, path, operation, reason)

    # Decisions

    def approve(self, pending_id: str) -> PendingPermission | None:
        """Approve a pending permission.

        Adds the normalized path to the owning session's approved set and
        removes it from the denied set. Returns None for unknown or already
        resolved ids.
        """
        pending = self._store.pop_permission(pending_id)
        if pending is None:
            return None
        normalized = normalize_path(pending.path)
        session = self._store.get_or_create(pending.session_id)
        session.denied.discard(normalized)
        session.approved.add(normalized)
        self._record("approved", pending.session_id, pending.path, pending.operation)
        _log.info("Permission %s approved: %s", pending_id, pending.path)
        return pending

    def deny(self, pending_id: str) -> PendingPermission | None:
        """Deny a pending permission. Returns None for unknown or resolved ids."""
        pending = self._store.pop_permission(pending_id)
        if pending is None:
            return None
        normalized = normalize_path(pending.path)
        session = self._store.get_or_create(pending.session_id)
        session.approved.discard(normalized)
        session.denied.add(normalized)
        self._record("rejected", pending.session_id, pending.path, pending.operation)
        _log.info("Permission %s denied: %s", pending_id, pending.path)
        return pending

    def list_pending(self, session_id: str | None = None) -> list[PendingPermission]:
        return sorted(self._store.permissions(session_id), key=lambda p: p.requested_at)

    def clear_session(self, session_id: str) -> None:
        """Forget every decision and pending request for a session."""
        self._store.remove(session_id)
        self._record("session_cleared", session_id, "", "")

    # Audit

    def _record(
        self, event: str, session_id: str, path: str, operation: str, detail: str | None = None
    ) -> None:
        entry = {
            "timestamp": time.time(),
            "event": event,
            "session_id": session_id,
            "path": path,
            "operation": operation,
        }
        if detail:
            entry["detail"] = detail
        self._audit.append(entry)
        if event != "attempt":
            _log.debug("sandbox %s: %s %s [%s]", event, operation, path, session_id)

    def audit_log(self, limit: int = 100) -> list[dict[str, Any]]:
        """Return the most recent audit entries, oldest first."""
        if limit <= 0:
            return []
        return list(self._audit)[-limit:]
