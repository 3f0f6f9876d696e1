"""Persistence for declared GithubIssue resources"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.models import GithubIssue
from app.models.github_issue import utcnow
from app.services.errors import PersistenceConflict

logger = logging.getLogger(__name__)


class ResourceStore:
    """Read/write GithubIssue rows with optimistic concurrency.

    Every write is checked against `resource_version`; a concurrent writer
    turns into `PersistenceConflict` rather than a lost update.
    """

    def __init__(self, db: Session):
        self.db = db

    def get(self, namespace: str, name: str) -> Optional[GithubIssue]:
        """Fetch a resource, bypassing any copy cached in the session"""
        return (
            self.db.query(GithubIssue)
            .filter(GithubIssue.namespace == namespace, GithubIssue.name == name)
            .populate_existing()
            .first()
        )

    def list_keys(self) -> List[Tuple[str, str]]:
        rows = self.db.query(GithubIssue.namespace, GithubIssue.name).all()
        return [(ns, name) for ns, name in rows]

    def _commit(self, key: str, what: str):
        try:
            self.db.commit()
        except StaleDataError as e:
            self.db.rollback()
            logger.warning(f"Stale write for {key} ({what}): {e}")
            raise PersistenceConflict(key, what) from e

    def update(self, resource: GithubIssue) -> bool:
        """Persist metadata changes (finalizers).

        Returns True when the resource was removed: deletion had been requested
        and no finalizer is left to block it.
        """
        key = resource.key
        removed = resource.is_being_deleted and not resource.finalizers
        if removed:
            self.db.delete(resource)
        self._commit(key, "metadata")
        if removed:
            logger.info(f"Removed {key} (deletion requested, no finalizers left)")
        return removed

    def update_status(self, resource: GithubIssue, conditions: List[Dict[str, Any]]):
        """Persist the condition list only"""
        key = resource.key
        resource.conditions = list(conditions)
        self._commit(key, "status")

    def request_deletion(self, resource: GithubIssue) -> bool:
        """Mark the resource for deletion. Returns True if it was removed right away."""
        if resource.deletion_timestamp is None:
            resource.deletion_timestamp = utcnow()
        return self.update(resource)
