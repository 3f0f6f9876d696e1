"""Reconciliation error taxonomy.

Every failure the reconciler surfaces to its caller is a `ReconcileError`.
`transient` tells the scheduler whether a plain retry on the next resync can
succeed, or whether the declared spec has to change first.
"""

from __future__ import annotations

from typing import Optional


class ReconcileError(Exception):
    """Base class for reconciliation failures"""

    transient = True


class InvalidRepoURL(ReconcileError):
    """`spec.repo` is not a GitHub repository URL."""

    transient = False

    def __init__(self, url: str, reason: str = "not a valid GitHub repository URL"):
        self.url = url
        self.reason = reason
        super().__init__(f"{url!r}: {reason}")


class RemoteAPIError(ReconcileError):
    """A GitHub call failed (network, auth, rate-limit, 4xx/5xx)."""

    def __init__(self, operation: str, message: str, status: Optional[int] = None):
        self.operation = operation
        self.status = status
        self.message = message
        prefix = f"{operation} failed"
        if status is not None:
            prefix += f" (status {status})"
        super().__init__(f"{prefix}: {message}")


class DanglingDeletion(ReconcileError):
    """Deletion was requested but no matching GitHub issue exists to close."""

    def __init__(self, key: str, title: str):
        self.key = key
        self.title = title
        super().__init__(
            f"{key}: deletion requested but no issue titled {title!r} was found; "
            "finalizer retained"
        )


class PersistenceConflict(ReconcileError):
    """A local write raced with another writer (stale resource version)."""

    def __init__(self, key: str, what: str):
        self.key = key
        self.what = what
        super().__init__(f"{key}: conflict while persisting {what}")


__all__ = [
    "ReconcileError",
    "InvalidRepoURL",
    "RemoteAPIError",
    "DanglingDeletion",
    "PersistenceConflict",
]
