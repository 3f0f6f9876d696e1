"""Background scheduler for GithubIssue reconciliation"""

import logging
import threading
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from app.config import settings
from app.models.base import SessionLocal
from app.services.errors import ReconcileError
from app.services.github_client import GitHubClient
from app.services.reconciler import ReconcileResult, Reconciler
from app.services.resource_store import ResourceStore

logger = logging.getLogger(__name__)


class ReconcileScheduler:
    """Scheduler that reconciles each GithubIssue on change and on a fixed resync.

    Every resource identity gets its own interval job with max_instances=1, and
    jobs plus on-demand passes share a per-identity lock, so one identity never
    reconciles concurrently while different ones may.
    """

    def __init__(
        self,
        session_factory=SessionLocal,
        github: Optional[GitHubClient] = None,
        resync_interval_seconds: Optional[int] = None,
    ):
        self.scheduler = BackgroundScheduler()
        self.session_factory = session_factory
        self._github = github
        self.resync_interval_seconds = resync_interval_seconds or settings.resync_interval_seconds
        # Best-effort in-memory index of jobs we created.
        # APScheduler itself is the source of truth (see get_job()).
        self.jobs = {}
        # One lock per identity, shared by scheduled jobs and on-demand passes.
        self._locks = {}
        self._locks_guard = threading.Lock()

    @property
    def github(self) -> GitHubClient:
        if self._github is None:
            self._github = GitHubClient(settings.github_token, base_url=settings.github_api_url)
        return self._github

    def reconciler_for(self, db: Session) -> Reconciler:
        """Build a Reconciler bound to one DB session"""
        return Reconciler(
            ResourceStore(db),
            self.github,
            resync_interval=float(self.resync_interval_seconds),
            github_host=settings.github_host,
        )

    @staticmethod
    def job_id(namespace: str, name: str) -> str:
        return f"reconcile:{namespace}/{name}"

    def start(self):
        """Start the scheduler"""
        self.scheduler.start()
        logger.info("Reconcile scheduler started")

        # Every stored resource gets reconciled once right away.
        self.schedule_all(run_now=True)

    def stop(self):
        """Stop the scheduler"""
        self.scheduler.shutdown()
        logger.info("Reconcile scheduler stopped")

    def schedule_all(self, run_now: bool = False):
        """Schedule reconcile jobs for all stored resources"""
        db = self.session_factory()
        try:
            keys = ResourceStore(db).list_keys()
        finally:
            db.close()

        wanted = {self.job_id(ns, name) for ns, name in keys}
        for job_id in list(self.jobs.keys()):
            if job_id not in wanted:
                self._remove_job(job_id)

        for namespace, name in keys:
            self.schedule(namespace, name, run_now=run_now)

    def schedule(self, namespace: str, name: str, run_now: bool = False):
        """(Re)create the resync job for one resource"""
        job_id = self.job_id(namespace, name)

        # Remove existing job if it exists (don't rely solely on self.jobs)
        existing = self.scheduler.get_job(job_id)
        if existing is not None:
            self.scheduler.remove_job(job_id)

        kwargs = {}
        if run_now:
            kwargs["next_run_time"] = datetime.now(timezone.utc)
        self.scheduler.add_job(
            func=self._reconcile_job,
            trigger=IntervalTrigger(seconds=self.resync_interval_seconds),
            id=job_id,
            args=[namespace, name],
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            **kwargs,
        )
        self.jobs[job_id] = True
        logger.debug(
            f"Scheduled reconcile for {namespace}/{name} every {self.resync_interval_seconds}s"
        )

    def enqueue(self, namespace: str, name: str):
        """Reconcile a resource as soon as possible (change delivery)"""
        job = self.scheduler.get_job(self.job_id(namespace, name))
        if job is None:
            self.schedule(namespace, name, run_now=True)
        else:
            job.modify(next_run_time=datetime.now(timezone.utc))
        logger.info(f"Enqueued reconcile for {namespace}/{name}")

    def unschedule(self, namespace: str, name: str):
        """Remove the reconcile job for a resource"""
        self._remove_job(self.job_id(namespace, name))

    def _remove_job(self, job_id: str):
        existing = self.scheduler.get_job(job_id)
        if existing is not None:
            self.scheduler.remove_job(job_id)
        self.jobs.pop(job_id, None)
        logger.info(f"Unscheduled {job_id}")

    def _identity_lock(self, namespace: str, name: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault((namespace, name), threading.Lock())

    def run_once(self, namespace: str, name: str) -> ReconcileResult:
        """Run one reconcile pass now, serialized with the resource's scheduled job.

        Errors propagate to the caller.
        """
        with self._identity_lock(namespace, name):
            db = self.session_factory()
            try:
                return self.reconciler_for(db).reconcile(namespace, name)
            finally:
                db.close()

    def _reconcile_job(self, namespace: str, name: str):
        """Job function: one reconcile pass for one resource"""
        try:
            result = self.run_once(namespace, name)
            if result.requeue_after is None:
                # Resource is gone (or finalized); stop resyncing it.
                self.unschedule(namespace, name)
        except ReconcileError as e:
            if e.transient:
                logger.warning(f"Reconcile of {namespace}/{name} failed, retrying on resync: {e}")
            else:
                logger.error(f"Reconcile of {namespace}/{name} failed until its spec changes: {e}")
        except Exception as e:
            logger.error(f"Reconcile of {namespace}/{name} crashed: {e}")


# Global scheduler instance
scheduler = ReconcileScheduler()
