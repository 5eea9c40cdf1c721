"""Session-scoped state, the capability gate, two-phase deletion and the turn loop."""

from nimbus.session.deletions import DeletionError, DeletionManager, DeletionNotFound
from nimbus.session.sandbox import (
    Allowed,
    CapabilityGate,
    Classification,
    Denied,
    RequiresApproval,
    normalize_path,
)
from nimbus.session.store import (
    InMemorySessionStore,
    PendingDeletion,
    PendingPermission,
    Session,
    SessionStore,
)

__all__ = [
    "Allowed",
    "CapabilityGate",
    "Classification",
    "DeletionError",
    "DeletionManager",
    "DeletionNotFound",
    "Denied",
    "InMemorySessionStore",
    "PendingDeletion",
    "PendingPermission",
    "RequiresApproval",
    "Session",
    "SessionStore",
    "normalize_path",
]
