from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True, order=True)
class VersionedName:
    """A `(name, version)` pair identifying a workflow or activity type."""

    name: str
    version: str

    def to_swf(self) -> dict[str, str]:
        return {"name": self.name, "version": self.version}

    @staticmethod
    def from_swf(obj: Mapping[str, object]) -> VersionedName:
        return VersionedName(name=str(obj.get("name", "")), version=str(obj.get("version", "")))

    def __str__(self) -> str:
        return f"{self.name}:{self.version}"


WorkflowType = VersionedName
ActivityType = VersionedName


class EventType(str, Enum):
    """History event kinds the decider knows how to interpret."""

    WORKFLOW_EXECUTION_STARTED = "WorkflowExecutionStarted"
    WORKFLOW_EXECUTION_CANCEL_REQUESTED = "WorkflowExecutionCancelRequested"
    WORKFLOW_EXECUTION_SIGNALED = "WorkflowExecutionSignaled"
    COMPLETE_WORKFLOW_EXECUTION_FAILED = "CompleteWorkflowExecutionFailed"
    CANCEL_WORKFLOW_EXECUTION_FAILED = "CancelWorkflowExecutionFailed"
    FAIL_WORKFLOW_EXECUTION_FAILED = "FailWorkflowExecutionFailed"
    CONTINUE_AS_NEW_WORKFLOW_EXECUTION_FAILED = "ContinueAsNewWorkflowExecutionFailed"

    DECISION_TASK_SCHEDULED = "DecisionTaskScheduled"
    DECISION_TASK_STARTED = "DecisionTaskStarted"
    DECISION_TASK_COMPLETED = "DecisionTaskCompleted"
    DECISION_TASK_TIMED_OUT = "DecisionTaskTimedOut"

    ACTIVITY_TASK_SCHEDULED = "ActivityTaskScheduled"
    SCHEDULE_ACTIVITY_TASK_FAILED = "ScheduleActivityTaskFailed"
    ACTIVITY_TASK_STARTED = "ActivityTaskStarted"
    ACTIVITY_TASK_COMPLETED = "ActivityTaskCompleted"
    ACTIVITY_TASK_FAILED = "ActivityTaskFailed"
    ACTIVITY_TASK_TIMED_OUT = "ActivityTaskTimedOut"
    ACTIVITY_TASK_CANCELED = "ActivityTaskCanceled"
    ACTIVITY_TASK_CANCEL_REQUESTED = "ActivityTaskCancelRequested"

    TIMER_STARTED = "TimerStarted"
    START_TIMER_FAILED = "StartTimerFailed"
    TIMER_FIRED = "TimerFired"
    TIMER_CANCELED = "TimerCanceled"

    MARKER_RECORDED = "MarkerRecorded"
    RECORD_MARKER_FAILED = "RecordMarkerFailed"

    START_CHILD_WORKFLOW_EXECUTION_INITIATED = "StartChildWorkflowExecutionInitiated"
    START_CHILD_WORKFLOW_EXECUTION_FAILED = "StartChildWorkflowExecutionFailed"
    CHILD_WORKFLOW_EXECUTION_STARTED = "ChildWorkflowExecutionStarted"
    CHILD_WORKFLOW_EXECUTION_COMPLETED = "ChildWorkflowExecutionCompleted"
    CHILD_WORKFLOW_EXECUTION_FAILED = "ChildWorkflowExecutionFailed"
    CHILD_WORKFLOW_EXECUTION_TIMED_OUT = "ChildWorkflowExecutionTimedOut"
    CHILD_WORKFLOW_EXECUTION_CANCELED = "ChildWorkflowExecutionCanceled"
    CHILD_WORKFLOW_EXECUTION_TERMINATED = "ChildWorkflowExecutionTerminated"


_KNOWN_EVENT_TYPES: dict[str, EventType] = {e.value: e for e in EventType}


CLOSE_FAILED_EVENT_TYPES: frozenset[EventType] = frozenset(
    {
        EventType.COMPLETE_WORKFLOW_EXECUTION_FAILED,
        EventType.CANCEL_WORKFLOW_EXECUTION_FAILED,
        EventType.FAIL_WORKFLOW_EXECUTION_FAILED,
    }
)


def attributes_key(event_type: str) -> str:
    """Return the wire key holding the attributes of an event type.

    `ActivityTaskScheduled` -> `activityTaskScheduledEventAttributes`.
    """

    return event_type[:1].lower() + event_type[1:] + "EventAttributes"


@dataclass(frozen=True, slots=True)
class HistoryEvent:
    """One immutable entry of a workflow execution history."""

    event_id: int
    event_type: str
    timestamp: datetime | None = None
    attributes: Mapping[str, object] = field(default_factory=dict)

    @property
    def kind(self) -> EventType | None:
        """The known event kind, or None for kinds this version does not know."""

        return _KNOWN_EVENT_TYPES.get(self.event_type)

    def get(self, key: str, default: object = None) -> object:
        return self.attributes.get(key, default)

    def get_str(self, key: str) -> str | None:
        value = self.attributes.get(key)
        return value if isinstance(value, str) else None

    def get_int(self, key: str) -> int | None:
        value = self.attributes.get(key)
        if isinstance(value, bool):
            return None
        return value if isinstance(value, int) else None

    @staticmethod
    def from_swf(raw: Mapping[str, object]) -> HistoryEvent | None:
        """Parse a wire event. Returns None for malformed entries."""

        event_id = raw.get("eventId")
        event_type = raw.get("eventType")
        if not isinstance(event_id, int) or not isinstance(event_type, str) or not event_type:
            logger.warning("Skipping malformed history event", extra={"raw_event": repr(raw)[:200]})
            return None

        timestamp = raw.get("eventTimestamp")
        attributes = raw.get(attributes_key(event_type))
        return HistoryEvent(
            event_id=event_id,
            event_type=event_type,
            timestamp=timestamp if isinstance(timestamp, datetime) else None,
            attributes=dict(attributes) if isinstance(attributes, Mapping) else {},
        )


def parse_history(raw_events: list[Mapping[str, object]]) -> list[HistoryEvent]:
    """Parse wire events, drop malformed ones and order by event id."""

    parsed = [HistoryEvent.from_swf(raw) for raw in raw_events]
    return sorted((e for e in parsed if e is not None), key=lambda e: e.event_id)
