import unittest
from dataclasses import replace
from datetime import datetime, timezone

from app.models import GithubIssue
from app.services.errors import (
    DanglingDeletion,
    InvalidRepoURL,
    PersistenceConflict,
    RemoteAPIError,
)
from app.services.finalizers import CLOSE_ISSUE_FINALIZER
from app.services.github_client import RemoteIssue, TimelineEvent
from app.services.reconciler import Reconciler

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _resource(title="T1", description="d", finalizers=None, deleting=False, conditions=None,
              repo="https://github.com/acme/widgets"):
    return GithubIssue(
        namespace="default",
        name="issue-a",
        repo=repo,
        title=title,
        description=description,
        finalizers=list(finalizers or []),
        deletion_timestamp=datetime(2024, 5, 1) if deleting else None,
        conditions=list(conditions or []),
    )


class _FakeStore:
    def __init__(self, resource, events=None):
        self.resource = resource
        self.events = events if events is not None else []
        self.metadata_writes = []
        self.status_writes = []
        self.fail_status = False

    def get(self, namespace, name):
        r = self.resource
        if r is not None and (r.namespace, r.name) == (namespace, name):
            return r
        return None

    def update(self, resource):
        self.events.append("persist_metadata")
        self.metadata_writes.append(list(resource.finalizers))
        if resource.is_being_deleted and not resource.finalizers:
            self.resource = None
            return True
        return False

    def update_status(self, resource, conditions):
        self.events.append("persist_status")
        if self.fail_status:
            raise PersistenceConflict(resource.key, "status")
        self.status_writes.append(conditions)
        resource.conditions = list(conditions)


class _FakeGitHub:
    def __init__(self, issues=None, timelines=None, events=None):
        self.issues = list(issues or [])
        self.timelines = dict(timelines or {})
        self.events = events if events is not None else []
        self.calls = []
        self.failures = {}

    def _maybe_fail(self, op):
        exc = self.failures.get(op)
        if exc is not None:
            raise exc

    def list_issues(self, owner, repo):
        self.calls.append(("list", owner, repo))
        self._maybe_fail("list")
        return list(self.issues)

    def create_issue(self, owner, repo, title, body):
        self.calls.append(("create", title, body))
        self.events.append("create")
        self._maybe_fail("create")
        issue = RemoteIssue(id=1000 + len(self.issues), number=len(self.issues) + 1,
                            title=title, body=body, state="open")
        self.issues.append(issue)
        return issue

    def edit_issue(self, owner, repo, number, body=None, state=None):
        self.calls.append(("edit", number, body, state))
        self._maybe_fail("edit")
        for i, issue in enumerate(self.issues):
            if issue.number == number:
                updated = replace(
                    issue,
                    body=issue.body if body is None else body,
                    state=issue.state if state is None else state,
                )
                self.issues[i] = updated
                return updated
        raise RemoteAPIError("edit", "not found", status=404)

    def close_issue(self, owner, repo, number):
        self.calls.append(("close", number))
        self._maybe_fail("close")
        return self.edit_issue(owner, repo, number, state="closed")

    def get_timeline(self, owner, repo, number):
        self.calls.append(("timeline", number))
        self._maybe_fail("timeline")
        return list(self.timelines.get(number, []))

    def ops(self):
        return [c[0] for c in self.calls]


def _condition(resource, type_):
    for c in resource.conditions:
        if c["type"] == type_:
            return c
    return None


class ReconcilerTestCase(unittest.TestCase):
    def make(self, resource, issues=None, timelines=None):
        events = []
        self.store = _FakeStore(resource, events)
        self.github = _FakeGitHub(issues, timelines, events)
        self.events = events
        return Reconciler(self.store, self.github, resync_interval=60, clock=lambda: NOW)


class CreatePathTests(ReconcilerTestCase):
    def test_creates_issue_when_no_title_matches(self):
        resource = _resource(title="T1", description="d")
        r = self.make(resource, issues=[RemoteIssue(id=1, number=1, title="Other")])

        result = r.reconcile("default", "issue-a")

        creates = [c for c in self.github.calls if c[0] == "create"]
        self.assertEqual(creates, [("create", "T1", "d")])
        self.assertEqual(result.requeue_after, 60)
        self.assertEqual(_condition(resource, "IsOpen")["status"], "True")
        self.assertEqual(_condition(resource, "HasPR")["status"], "False")
        self.assertIn(CLOSE_ISSUE_FINALIZER, resource.finalizers)

    def test_finalizer_is_persisted_before_issue_is_created(self):
        resource = _resource()
        r = self.make(resource)

        r.reconcile("default", "issue-a")

        self.assertLess(self.events.index("persist_metadata"), self.events.index("create"))

    def test_finalizer_not_added_twice(self):
        resource = _resource(finalizers=[CLOSE_ISSUE_FINALIZER])
        r = self.make(resource)

        r.reconcile("default", "issue-a")

        self.assertEqual(self.store.metadata_writes, [])
        self.assertEqual(resource.finalizers, [CLOSE_ISSUE_FINALIZER])

    def test_create_failure_marks_issue_not_open_and_raises(self):
        resource = _resource(title="T1", description="d")
        r = self.make(resource, issues=[])
        self.github.failures["create"] = RemoteAPIError("create", "github went belly up", status=500)

        with self.assertRaises(RemoteAPIError):
            r.reconcile("default", "issue-a")

        is_open = _condition(resource, "IsOpen")
        self.assertEqual(is_open["status"], "False")
        self.assertEqual(is_open["reason"], "creation failed")
        self.assertEqual(_condition(resource, "HasPR")["status"], "False")
        self.assertIn(CLOSE_ISSUE_FINALIZER, resource.finalizers)

    def test_create_failure_still_raises_remote_error_when_status_write_conflicts(self):
        resource = _resource()
        r = self.make(resource)
        self.github.failures["create"] = RemoteAPIError("create", "boom", status=502)
        self.store.fail_status = True

        with self.assertRaises(RemoteAPIError):
            r.reconcile("default", "issue-a")

    def test_title_match_is_whole_title_and_case_insensitive(self):
        resource = _resource(title="Bug", description="")
        r = self.make(resource, issues=[RemoteIssue(id=1, number=1, title="Bug report")])

        r.reconcile("default", "issue-a")

        self.assertIn("create", self.github.ops())

        resource = _resource(title="Bug", description="")
        r = self.make(resource, issues=[RemoteIssue(id=1, number=1, title="bug", state="open")])

        r.reconcile("default", "issue-a")

        self.assertNotIn("create", self.github.ops())


class ExistingIssueTests(ReconcilerTestCase):
    def test_matched_open_issue_is_not_recreated(self):
        resource = _resource(title="T1", description="")
        r = self.make(resource, issues=[RemoteIssue(id=1, number=7, title="T1", state="open")])

        result = r.reconcile("default", "issue-a")

        self.assertNotIn("create", self.github.ops())
        self.assertNotIn("edit", self.github.ops())
        self.assertEqual(result.requeue_after, 60)
        self.assertEqual(_condition(resource, "IsOpen")["status"], "True")
        self.assertEqual(_condition(resource, "HasPR")["status"], "False")

    def test_body_is_edited_only_when_it_differs(self):
        resource = _resource(title="T1", description="new body")
        r = self.make(resource, issues=[RemoteIssue(id=1, number=7, title="T1", body="old")])

        r.reconcile("default", "issue-a")

        self.assertIn(("edit", 7, "new body", None), self.github.calls)

        self.github.calls.clear()
        r.reconcile("default", "issue-a")
        self.assertNotIn("edit", self.github.ops())

    def test_closed_remote_issue_projects_is_open_false(self):
        resource = _resource(title="T1", description="")
        r = self.make(resource, issues=[RemoteIssue(id=1, number=7, title="T1", state="closed")])

        r.reconcile("default", "issue-a")

        is_open = _condition(resource, "IsOpen")
        self.assertEqual(is_open["status"], "False")
        self.assertEqual(is_open["reason"], "issue is closed")

    def test_edit_failure_projects_known_state_and_raises(self):
        resource = _resource(title="T1", description="changed")
        r = self.make(resource, issues=[RemoteIssue(id=1, number=7, title="T1", body="x", state="closed")])
        self.github.failures["edit"] = RemoteAPIError("edit", "boom", status=500)

        with self.assertRaises(RemoteAPIError):
            r.reconcile("default", "issue-a")

        self.assertEqual(_condition(resource, "IsOpen")["status"], "False")
        self.assertIsNone(_condition(resource, "HasPR"))

    def test_edit_failure_without_known_state_is_unknown(self):
        resource = _resource(title="T1", description="changed")
        r = self.make(resource, issues=[RemoteIssue(id=1, number=7, title="T1", body="x", state="")])
        self.github.failures["edit"] = RemoteAPIError("edit", "boom", status=500)

        with self.assertRaises(RemoteAPIError):
            r.reconcile("default", "issue-a")

        self.assertEqual(_condition(resource, "IsOpen")["status"], "Unknown")

    def test_connect_then_disconnect_means_no_pr(self):
        resource = _resource(title="T1", description="")
        timeline = [TimelineEvent("connected"), TimelineEvent("disconnected")]
        r = self.make(resource, issues=[RemoteIssue(id=1, number=7, title="T1")], timelines={7: timeline})

        r.reconcile("default", "issue-a")

        self.assertEqual(_condition(resource, "HasPR")["status"], "False")

    def test_disconnect_then_connect_means_pr(self):
        resource = _resource(title="T1", description="")
        timeline = [TimelineEvent("disconnected"), TimelineEvent("connected")]
        r = self.make(resource, issues=[RemoteIssue(id=1, number=7, title="T1")], timelines={7: timeline})

        r.reconcile("default", "issue-a")

        self.assertEqual(_condition(resource, "HasPR")["status"], "True")

    def test_direct_pull_request_link_means_pr(self):
        resource = _resource(title="T1", description="")
        issue = RemoteIssue(id=1, number=7, title="T1", pull_request_url="https://github.com/acme/widgets/pull/7")
        r = self.make(resource, issues=[issue])

        r.reconcile("default", "issue-a")

        self.assertEqual(_condition(resource, "HasPR")["status"], "True")

    def test_timeline_failure_is_not_a_reconcile_failure(self):
        prior = [{
            "type": "HasPR",
            "status": "True",
            "reason": "issue has a pull request",
            "message": "",
            "lastTransitionTime": "2024-01-01T00:00:00+00:00",
        }]
        resource = _resource(title="T1", description="", conditions=prior)
        r = self.make(resource, issues=[RemoteIssue(id=1, number=7, title="T1", state="open")])
        self.github.failures["timeline"] = RemoteAPIError("timeline", "boom", status=502)

        result = r.reconcile("default", "issue-a")

        self.assertEqual(result.requeue_after, 60)
        self.assertEqual(_condition(resource, "HasPR")["status"], "True")
        self.assertEqual(_condition(resource, "IsOpen")["status"], "True")

    def test_unchanged_state_does_not_write_status_again(self):
        resource = _resource(title="T1", description="")
        r = self.make(resource, issues=[RemoteIssue(id=1, number=7, title="T1")])

        r.reconcile("default", "issue-a")
        r.reconcile("default", "issue-a")
        r.reconcile("default", "issue-a")

        self.assertEqual(len(self.store.status_writes), 1)


class DeletionTests(ReconcilerTestCase):
    def test_deletion_closes_matching_issue_and_removes_finalizer(self):
        resource = _resource(title="T1", finalizers=[CLOSE_ISSUE_FINALIZER], deleting=True)
        r = self.make(resource, issues=[RemoteIssue(id=1, number=7, title="T1", state="open")])

        result = r.reconcile("default", "issue-a")

        self.assertEqual([c for c in self.github.calls if c[0] == "close"], [("close", 7)])
        self.assertNotIn(CLOSE_ISSUE_FINALIZER, resource.finalizers)
        self.assertIsNone(self.store.resource)
        self.assertIsNone(result.requeue_after)

        # Second pass: the resource is gone.
        self.github.calls.clear()
        result = r.reconcile("default", "issue-a")
        self.assertEqual(self.github.calls, [])
        self.assertIsNone(result.requeue_after)

    def test_deleting_resource_without_finalizer_is_noop(self):
        resource = _resource(title="T1", finalizers=[], deleting=True)
        r = self.make(resource, issues=[RemoteIssue(id=1, number=7, title="T1")])

        result = r.reconcile("default", "issue-a")

        self.assertEqual(self.github.calls, [])
        self.assertEqual(self.store.metadata_writes, [])
        self.assertIsNone(result.requeue_after)

    def test_deletion_without_match_is_dangling_and_keeps_finalizer(self):
        resource = _resource(title="T1", finalizers=[CLOSE_ISSUE_FINALIZER], deleting=True)
        r = self.make(resource, issues=[RemoteIssue(id=1, number=7, title="Other")])

        with self.assertRaises(DanglingDeletion):
            r.reconcile("default", "issue-a")

        self.assertNotIn("close", self.github.ops())
        self.assertEqual(resource.finalizers, [CLOSE_ISSUE_FINALIZER])
        self.assertIsNotNone(self.store.resource)

    def test_close_failure_keeps_finalizer(self):
        resource = _resource(title="T1", finalizers=[CLOSE_ISSUE_FINALIZER], deleting=True)
        r = self.make(resource, issues=[RemoteIssue(id=1, number=7, title="T1")])
        self.github.failures["close"] = RemoteAPIError("close", "boom", status=503)

        with self.assertRaises(RemoteAPIError):
            r.reconcile("default", "issue-a")

        self.assertEqual(resource.finalizers, [CLOSE_ISSUE_FINALIZER])
        self.assertEqual(self.store.metadata_writes, [])

    def test_already_closed_issue_is_not_closed_again(self):
        resource = _resource(title="T1", finalizers=[CLOSE_ISSUE_FINALIZER], deleting=True)
        r = self.make(resource, issues=[RemoteIssue(id=1, number=7, title="T1", state="closed")])

        r.reconcile("default", "issue-a")

        self.assertNotIn("close", self.github.ops())
        self.assertIsNone(self.store.resource)

    def test_deletion_never_creates(self):
        resource = _resource(title="T1", finalizers=[CLOSE_ISSUE_FINALIZER], deleting=True)
        r = self.make(resource, issues=[])

        with self.assertRaises(DanglingDeletion):
            r.reconcile("default", "issue-a")

        self.assertNotIn("create", self.github.ops())


class ResolveAndIdentifyTests(ReconcilerTestCase):
    def test_missing_resource_is_noop(self):
        r = self.make(None)

        result = r.reconcile("default", "ghost")

        self.assertIsNone(result.requeue_after)
        self.assertEqual(self.github.calls, [])

    def test_invalid_repo_url_fails_without_remote_calls(self):
        resource = _resource(repo="https://gitlab.com/acme/widgets")
        r = self.make(resource)

        with self.assertRaises(InvalidRepoURL) as ctx:
            r.reconcile("default", "issue-a")

        self.assertFalse(ctx.exception.transient)
        self.assertEqual(self.github.calls, [])

    def test_list_failure_is_surfaced(self):
        resource = _resource()
        r = self.make(resource)
        self.github.failures["list"] = RemoteAPIError("list", "timeout")

        with self.assertRaises(RemoteAPIError) as ctx:
            r.reconcile("default", "issue-a")

        self.assertTrue(ctx.exception.transient)
        self.assertNotIn("create", self.github.ops())

    def test_repo_owner_and_name_are_passed_to_github(self):
        resource = _resource(repo="https://github.com/acme/widgets.git")
        r = self.make(resource)

        r.reconcile("default", "issue-a")

        self.assertEqual(self.github.calls[0], ("list", "acme", "widgets"))


if __name__ == "__main__":
    unittest.main()
