"""Services"""

from app.services.github_client import GitHubClient
from app.services.reconciler import Reconciler, ReconcileResult
from app.services.resource_store import ResourceStore

__all__ = ["GitHubClient", "Reconciler", "ReconcileResult", "ResourceStore"]
