"""Project observed GitHub issue state onto IsOpen / HasPR conditions"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple

from app.services.conditions import (
    Condition,
    ConditionStatus,
    ConditionType,
    is_status_equal,
    set_condition,
)
from app.services.github_client import (
    EVENT_CONNECTED,
    EVENT_CROSS_REFERENCED,
    EVENT_DISCONNECTED,
    RemoteIssue,
    TimelineEvent,
)


def is_open_condition(state: Optional[str]) -> Condition:
    """IsOpen from the remote state string ("open", "closed", ...)."""
    if state is None:
        return Condition(
            type=ConditionType.IS_OPEN.value,
            status=ConditionStatus.UNKNOWN,
            reason="issue state unknown",
            message="Issue state could not be determined",
        )
    if state == "open":
        return Condition(
            type=ConditionType.IS_OPEN.value,
            status=ConditionStatus.TRUE,
            reason="issue is open",
            message="Issue is open",
        )
    return Condition(
        type=ConditionType.IS_OPEN.value,
        status=ConditionStatus.FALSE,
        reason=f"issue is {state}",
        message=f"Issue is {state}",
    )


def creation_failed_condition(error: Optional[BaseException] = None) -> Condition:
    message = "Issue could not be created"
    if error is not None:
        message = f"{message}: {error}"
    return Condition(
        type=ConditionType.IS_OPEN.value,
        status=ConditionStatus.FALSE,
        reason="creation failed",
        message=message,
    )


def timeline_has_pr(timeline: Sequence[TimelineEvent]) -> bool:
    """Scan newest to oldest; the most recent link/unlink event decides."""
    for event in reversed(timeline):
        if event.kind in (EVENT_CONNECTED, EVENT_CROSS_REFERENCED):
            return True
        if event.kind == EVENT_DISCONNECTED:
            return False
    return False


def has_pr_condition(issue: Optional[RemoteIssue], timeline: Sequence[TimelineEvent] = ()) -> Condition:
    """HasPR: a direct pull-request link wins, otherwise fall back to the timeline."""
    if issue is not None and issue.pull_request_url is not None:
        has_pr = True
    else:
        has_pr = timeline_has_pr(timeline)
    if has_pr:
        return Condition(
            type=ConditionType.HAS_PR.value,
            status=ConditionStatus.TRUE,
            reason="issue has a pull request",
            message="Issue has a linked pull request",
        )
    return Condition(
        type=ConditionType.HAS_PR.value,
        status=ConditionStatus.FALSE,
        reason="issue has no pull request",
        message="Issue has no linked pull request",
    )


def project_issue(issue: RemoteIssue, timeline: Sequence[TimelineEvent]) -> List[Condition]:
    return [is_open_condition(issue.state), has_pr_condition(issue, timeline)]


def merge_conditions(
    current: List[Condition], updates: Iterable[Condition], now: datetime
) -> Tuple[List[Condition], bool]:
    """Upsert `updates` into `current`.

    Returns (conditions, changed). An update whose status already matches the
    stored one is skipped, so `changed` is False when nothing needs writing.
    """
    merged = list(current)
    changed = False
    for cond in updates:
        if is_status_equal(merged, cond.type, cond.status):
            continue
        merged = set_condition(merged, cond, now)
        changed = True
    return merged, changed
