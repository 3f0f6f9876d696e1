"""GithubIssue reconciliation.

One `reconcile()` call converges one declared resource toward GitHub:

- resource gone -> nothing to do
- deletion requested -> close the matching issue, then drop the finalizer
- otherwise -> make sure the finalizer is persisted, then create the issue
  (no match) or sync its body (match), and project IsOpen / HasPR back into
  the resource status

Nothing is cached between calls; GitHub and the store are re-read every time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from app.models import GithubIssue
from app.services.conditions import Condition, dump_conditions, load_conditions
from app.services.errors import (
    DanglingDeletion,
    InvalidRepoURL,
    PersistenceConflict,
    RemoteAPIError,
)
from app.services.finalizers import CLOSE_ISSUE_FINALIZER, add_finalizer, remove_finalizer
from app.services.github_client import GitHubClient, RemoteIssue
from app.services.matcher import find_issue
from app.services.repo_url import RepoRef, parse_repo_url
from app.services.status import (
    creation_failed_condition,
    has_pr_condition,
    is_open_condition,
    merge_conditions,
    project_issue,
)

DEFAULT_RESYNC_SECONDS = 60.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ReconcileResult:
    # Seconds until the next invocation; None means don't requeue.
    requeue_after: Optional[float] = None


class Reconciler:
    """Create/update/close a GitHub issue so it matches a GithubIssue resource"""

    def __init__(
        self,
        store,
        github: GitHubClient,
        *,
        resync_interval: float = DEFAULT_RESYNC_SECONDS,
        github_host: str = "github.com",
        finalizer: str = CLOSE_ISSUE_FINALIZER,
        clock: Callable[[], datetime] = _utcnow,
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.github = github
        self.resync_interval = resync_interval
        self.github_host = github_host
        self.finalizer = finalizer
        self.clock = clock
        self.log = logger or logging.getLogger(__name__)

    def _requeue(self) -> ReconcileResult:
        return ReconcileResult(requeue_after=self.resync_interval)

    def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        """Run one reconciliation pass for `namespace/name`.

        Raises a `ReconcileError` subclass on failure; the caller decides when
        to retry.
        """
        resource = self.store.get(namespace, name)
        if resource is None:
            self.log.info(f"GithubIssue {namespace}/{name} not found; nothing to do")
            return ReconcileResult()

        key = resource.key
        if resource.is_being_deleted and not resource.has_finalizer(self.finalizer):
            self.log.info(f"{key} is being deleted and has no finalizer; nothing to do")
            return ReconcileResult()

        try:
            ref = parse_repo_url(resource.repo, host=self.github_host)
        except InvalidRepoURL as e:
            self.log.error(f"{key}: invalid repo URL: {e}")
            raise

        self.log.info(f"{key}: fetching issues from {ref.full_name}")
        issues = self.github.list_issues(ref.owner, ref.repo)
        match = find_issue(resource.title, issues)

        if resource.is_being_deleted:
            return self._finalize(resource, ref, match)

        # Persist the guard before any issue can be created for this resource.
        add_finalizer(self.store, resource, self.finalizer)

        if match is None:
            return self._create(resource, ref)
        return self._sync_existing(resource, ref, match)

    def _finalize(
        self, resource: GithubIssue, ref: RepoRef, match: Optional[RemoteIssue]
    ) -> ReconcileResult:
        key = resource.key
        if match is None:
            err = DanglingDeletion(key, resource.title)
            self.log.error(str(err))
            raise err

        if match.state == "closed":
            self.log.info(f"{key}: issue #{match.number} already closed")
        else:
            self.log.info(f"{key}: closing issue #{match.number}")
            self.github.close_issue(ref.owner, ref.repo, match.number)

        remove_finalizer(self.store, resource, self.finalizer)
        self.log.info(f"{key}: finalized")
        return ReconcileResult()

    def _create(self, resource: GithubIssue, ref: RepoRef) -> ReconcileResult:
        key = resource.key
        self.log.info(f"{key}: creating issue {resource.title!r} in {ref.full_name}")
        try:
            created = self.github.create_issue(
                ref.owner, ref.repo, resource.title, resource.description or ""
            )
        except RemoteAPIError as e:
            self.log.error(f"{key}: failed creating issue: {e}")
            self._persist_on_error(
                resource, [creation_failed_condition(e), has_pr_condition(None)]
            )
            raise

        self._update_status(resource, project_issue(created, []))
        self.log.info(f"{key}: created issue #{created.number}")
        return self._requeue()

    def _sync_existing(
        self, resource: GithubIssue, ref: RepoRef, match: RemoteIssue
    ) -> ReconcileResult:
        key = resource.key
        issue = match
        desired_body = resource.description or ""
        if (match.body or "") != desired_body:
            self.log.info(f"{key}: updating body of issue #{match.number}")
            try:
                issue = self.github.edit_issue(ref.owner, ref.repo, match.number, body=desired_body)
            except RemoteAPIError as e:
                self.log.error(f"{key}: failed editing issue #{match.number}: {e}")
                self._persist_on_error(resource, [is_open_condition(match.state or None)])
                raise
        else:
            self.log.debug(f"{key}: issue #{match.number} body already up to date")

        try:
            timeline = self.github.get_timeline(ref.owner, ref.repo, issue.number)
        except RemoteAPIError as e:
            # HasPR keeps its last known value until the next resync.
            self.log.warning(f"{key}: could not fetch timeline for issue #{issue.number}: {e}")
            self._update_status(resource, [is_open_condition(issue.state)])
            return self._requeue()

        self._update_status(resource, project_issue(issue, timeline))
        return self._requeue()

    def _update_status(self, resource: GithubIssue, updates: Iterable[Condition]) -> bool:
        """Merge `updates` into the stored conditions; write only if a status changed."""
        current = load_conditions(resource.conditions)
        merged, changed = merge_conditions(current, updates, self.clock())
        if not changed:
            self.log.debug(f"{resource.key}: status unchanged")
            return False
        self.log.info(f"{resource.key}: updating status")
        self.store.update_status(resource, dump_conditions(merged))
        return True

    def _persist_on_error(self, resource: GithubIssue, updates: Iterable[Condition]):
        """Best-effort status write while a remote error is already being raised."""
        try:
            self._update_status(resource, updates)
        except PersistenceConflict as e:
            self.log.warning(f"{resource.key}: status not written: {e}")
