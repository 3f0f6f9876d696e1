"""Deletion-guard finalizer on GithubIssue resources"""
import logging

from app.models import GithubIssue

logger = logging.getLogger(__name__)

# Blocks removal of a resource until its GitHub issue has been closed.
CLOSE_ISSUE_FINALIZER = "issues.dvir.io/finalizer"


def add_finalizer(store, resource: GithubIssue, finalizer: str = CLOSE_ISSUE_FINALIZER) -> bool:
    """Add `finalizer` and persist. Returns False if it was already present."""
    if resource.has_finalizer(finalizer):
        return False
    logger.info(f"Adding finalizer {finalizer} to {resource.key}")
    resource.finalizers = list(resource.finalizers or []) + [finalizer]
    store.update(resource)
    return True


def remove_finalizer(store, resource: GithubIssue, finalizer: str = CLOSE_ISSUE_FINALIZER) -> bool:
    """Remove `finalizer` and persist. Returns False if it was already absent."""
    if not resource.has_finalizer(finalizer):
        return False
    logger.info(f"Removing finalizer {finalizer} from {resource.key}")
    resource.finalizers = [f for f in resource.finalizers if f != finalizer]
    store.update(resource)
    return True
