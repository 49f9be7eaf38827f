"""Control payloads the decider writes into history for its own bookkeeping.

Two protocols live entirely inside the append-only history:

- closing: every complete/cancel/fail decision is preceded by a reserved marker
  recording the same intent, so a replay can detect "already decided to close"
  without re-running handlers.
- retrying: a retry timer carries the next attempt in its control payload, and
  when it fires a retry marker records that attempt as the durable count. The
  rescheduled activity gets an id naming its chain root and attempt, which is
  how a later failure finds its way back to the chain.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

COMPLETE_MARKER = "__workflow_complete"
CANCEL_MARKER = "__workflow_cancel"
FAIL_MARKER = "__workflow_fail"

CLOSE_MARKERS: tuple[str, ...] = (COMPLETE_MARKER, CANCEL_MARKER, FAIL_MARKER)

RETRY_PREFIX = "__retry:"
RETRY_ID_PREFIX = "__retry-"

RESERVED_MARKER_PREFIXES: tuple[str, ...] = (*CLOSE_MARKERS, RETRY_PREFIX)


def is_reserved_marker_name(name: str) -> bool:
    return name.startswith(RESERVED_MARKER_PREFIXES)


class CloseAction(str, Enum):
    COMPLETE = "complete"
    CANCEL = "cancel"
    FAIL = "fail"


_MARKER_BY_ACTION: dict[CloseAction, str] = {
    CloseAction.COMPLETE: COMPLETE_MARKER,
    CloseAction.CANCEL: CANCEL_MARKER,
    CloseAction.FAIL: FAIL_MARKER,
}


class CloseWorkflowControl(BaseModel):
    """Details of a closure marker. Payload fields hold already-encoded strings."""

    model_config = ConfigDict(frozen=True)

    action: CloseAction
    result: str | None = None
    reason: str | None = None
    details: str | None = None

    @property
    def marker_name(self) -> str:
        return _MARKER_BY_ACTION[self.action]

    @classmethod
    def complete(cls, result: str | None) -> CloseWorkflowControl:
        return cls(action=CloseAction.COMPLETE, result=result)

    @classmethod
    def cancel(cls, details: str | None) -> CloseWorkflowControl:
        return cls(action=CloseAction.CANCEL, details=details)

    @classmethod
    def fail(cls, reason: str | None, details: str | None) -> CloseWorkflowControl:
        return cls(action=CloseAction.FAIL, reason=reason, details=details)


class RetryControl(BaseModel):
    """Control payload of a retry timer."""

    model_config = ConfigDict(frozen=True)

    activity_name: str
    scheduled_event_id: int
    root_scheduled_event_id: int
    attempt: int = Field(ge=1)

    @property
    def marker_name(self) -> str:
        return retry_marker_name(self.activity_name, self.root_scheduled_event_id)

    @property
    def timer_id(self) -> str:
        return retry_timer_id(self.activity_name, self.root_scheduled_event_id, self.attempt)

    @property
    def activity_id(self) -> str:
        return retry_activity_id(self.root_scheduled_event_id, self.attempt)


def retry_marker_name(activity_name: str, root_scheduled_event_id: int) -> str:
    return f"{RETRY_PREFIX}{activity_name}:{root_scheduled_event_id}"


def retry_timer_id(activity_name: str, root_scheduled_event_id: int, attempt: int) -> str:
    # Ids may not contain ':'. One timer per attempt keeps each one's state separate.
    suffix = f"-{root_scheduled_event_id}-{attempt}"
    return f"{RETRY_ID_PREFIX}{activity_name}"[: 256 - len(suffix)] + suffix


def is_retry_timer_id(timer_id: str) -> bool:
    return timer_id.startswith(RETRY_ID_PREFIX)


def retry_activity_id(root_scheduled_event_id: int, attempt: int) -> str:
    return f"{RETRY_ID_PREFIX}{root_scheduled_event_id}-{attempt}"


def retry_chain_root(activity_id: str) -> int | None:
    """Return the chain root named by a rescheduled activity's id, if it is one."""

    if not activity_id.startswith(RETRY_ID_PREFIX):
        return None
    root, sep, attempt = activity_id[len(RETRY_ID_PREFIX) :].partition("-")
    if not sep or not root.isdigit() or not attempt.isdigit():
        return None
    return int(root)


def is_retry_activity_id(activity_id: str) -> bool:
    return retry_chain_root(activity_id) is not None
