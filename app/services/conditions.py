"""Status conditions stored on GithubIssue resources"""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional


class ConditionType(str, enum.Enum):
    IS_OPEN = "IsOpen"
    HAS_PR = "HasPR"


class ConditionStatus(str, enum.Enum):
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


@dataclass(frozen=True)
class Condition:
    type: str
    status: ConditionStatus
    reason: str = ""
    message: str = ""
    last_transition_time: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": str(self.type),
            "status": self.status.value,
            "reason": self.reason,
            "message": self.message,
            "lastTransitionTime": (
                self.last_transition_time.isoformat() if self.last_transition_time else None
            ),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Condition":
        ts = data.get("lastTransitionTime")
        return cls(
            type=str(data["type"]),
            status=ConditionStatus(data.get("status", ConditionStatus.UNKNOWN.value)),
            reason=data.get("reason") or "",
            message=data.get("message") or "",
            last_transition_time=datetime.fromisoformat(ts) if ts else None,
        )


def load_conditions(raw: Optional[Iterable[Dict[str, Any]]]) -> List[Condition]:
    return [Condition.from_dict(c) for c in (raw or [])]


def dump_conditions(conditions: Iterable[Condition]) -> List[Dict[str, Any]]:
    return [c.to_dict() for c in conditions]


def find_condition(conditions: Iterable[Condition], type_: str) -> Optional[Condition]:
    for c in conditions:
        if c.type == type_:
            return c
    return None


def is_status_equal(conditions: Iterable[Condition], type_: str, status: ConditionStatus) -> bool:
    """True when a condition of `type_` exists and already has `status`."""
    current = find_condition(conditions, type_)
    return current is not None and current.status == status


def set_condition(conditions: List[Condition], new: Condition, now: datetime) -> List[Condition]:
    """Upsert `new` by type and return the resulting list.

    lastTransitionTime moves only when the status value changes; otherwise the
    existing timestamp is kept and reason/message are refreshed.
    """
    result = []
    found = False
    for c in conditions:
        if c.type != new.type:
            result.append(c)
            continue
        found = True
        if c.status != new.status:
            result.append(replace(new, last_transition_time=now))
        else:
            result.append(replace(new, last_transition_time=c.last_transition_time or now))
    if not found:
        result.append(replace(new, last_transition_time=now))
    return result
