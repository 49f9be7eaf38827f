"""Deterministic reduction of a workflow history into per-unit lifecycle states.

A *unit* is anything the decider tracks through history: an activity invocation
(keyed by activity id), a timer (timer id), a child workflow (workflow id) or a
marker (marker name). The state of every unit is a pure fold over the history:
the same events always produce the same states.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

from .events import EventType, HistoryEvent

logger = logging.getLogger(__name__)


class WorkflowEventState(str, Enum):
    NOT_STARTED = "not_started"
    INITIAL = "initial"
    ACTIVE = "active"
    CANCELED = "canceled"
    SUCCESS = "success"
    ERROR = "error"
    TIMEOUT = "timeout"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset(
    {
        WorkflowEventState.CANCELED,
        WorkflowEventState.SUCCESS,
        WorkflowEventState.ERROR,
        WorkflowEventState.TIMEOUT,
    }
)

ALLOWED_TRANSITIONS: dict[WorkflowEventState, set[WorkflowEventState]] = {
    WorkflowEventState.NOT_STARTED: {
        WorkflowEventState.INITIAL,
        WorkflowEventState.ACTIVE,
        # Failures to initiate (e.g. ScheduleActivityTaskFailed) and markers.
        WorkflowEventState.SUCCESS,
        WorkflowEventState.ERROR,
    },
    WorkflowEventState.INITIAL: {WorkflowEventState.ACTIVE, *_TERMINAL_STATES},
    WorkflowEventState.ACTIVE: set(_TERMINAL_STATES),
    WorkflowEventState.CANCELED: set(),
    WorkflowEventState.SUCCESS: set(),
    WorkflowEventState.ERROR: set(),
    WorkflowEventState.TIMEOUT: set(),
}


class IllegalTransitionError(ValueError):
    pass


def can_transition(current: WorkflowEventState, to: WorkflowEventState) -> bool:
    return to in ALLOWED_TRANSITIONS.get(current, set())


def transition(*, current: WorkflowEventState, to: WorkflowEventState) -> WorkflowEventState:
    if not can_transition(current, to):
        raise IllegalTransitionError(f"Illegal transition: {current.value} -> {to.value}")
    return to


class UnitCategory(str, Enum):
    ACTIVITY = "activity"
    TIMER = "timer"
    CHILD_WORKFLOW = "child_workflow"
    MARKER = "marker"


@dataclass(frozen=True, slots=True)
class UnitState:
    """State of one unit plus the raw attributes of its latest relevant event.

    Payload fields (`result`, `details`, `input`) are kept raw; decoding happens
    only when a caller asks for it.
    """

    category: UnitCategory
    unit_id: str
    state: WorkflowEventState = WorkflowEventState.NOT_STARTED
    initiating_event: HistoryEvent | None = None
    last_event: HistoryEvent | None = None
    input: str | None = None
    result: str | None = None
    reason: str | None = None
    details: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal


# event type -> (category, target state, how the unit is referenced)
#
# Reference kinds:
#   "id"        the unit id is carried directly by the event (attribute name given)
#   "ref"       the event references the initiating event id (attribute name given)
_ACTIVITY = UnitCategory.ACTIVITY
_TIMER = UnitCategory.TIMER
_CHILD = UnitCategory.CHILD_WORKFLOW
_S = WorkflowEventState

TRANSITION_TABLE: dict[EventType, tuple[UnitCategory, WorkflowEventState, str, str]] = {
    EventType.ACTIVITY_TASK_SCHEDULED: (_ACTIVITY, _S.INITIAL, "id", "activityId"),
    EventType.SCHEDULE_ACTIVITY_TASK_FAILED: (_ACTIVITY, _S.ERROR, "id", "activityId"),
    EventType.ACTIVITY_TASK_STARTED: (_ACTIVITY, _S.ACTIVE, "ref", "scheduledEventId"),
    EventType.ACTIVITY_TASK_COMPLETED: (_ACTIVITY, _S.SUCCESS, "ref", "scheduledEventId"),
    EventType.ACTIVITY_TASK_FAILED: (_ACTIVITY, _S.ERROR, "ref", "scheduledEventId"),
    EventType.ACTIVITY_TASK_TIMED_OUT: (_ACTIVITY, _S.TIMEOUT, "ref", "scheduledEventId"),
    EventType.ACTIVITY_TASK_CANCELED: (_ACTIVITY, _S.CANCELED, "ref", "scheduledEventId"),
    EventType.TIMER_STARTED: (_TIMER, _S.ACTIVE, "id", "timerId"),
    EventType.START_TIMER_FAILED: (_TIMER, _S.ERROR, "id", "timerId"),
    EventType.TIMER_FIRED: (_TIMER, _S.SUCCESS, "id", "timerId"),
    EventType.TIMER_CANCELED: (_TIMER, _S.CANCELED, "id", "timerId"),
    EventType.START_CHILD_WORKFLOW_EXECUTION_INITIATED: (_CHILD, _S.INITIAL, "id", "workflowId"),
    EventType.START_CHILD_WORKFLOW_EXECUTION_FAILED: (_CHILD, _S.ERROR, "id", "workflowId"),
    EventType.CHILD_WORKFLOW_EXECUTION_STARTED: (_CHILD, _S.ACTIVE, "ref", "initiatedEventId"),
    EventType.CHILD_WORKFLOW_EXECUTION_COMPLETED: (_CHILD, _S.SUCCESS, "ref", "initiatedEventId"),
    EventType.CHILD_WORKFLOW_EXECUTION_FAILED: (_CHILD, _S.ERROR, "ref", "initiatedEventId"),
    EventType.CHILD_WORKFLOW_EXECUTION_TIMED_OUT: (_CHILD, _S.TIMEOUT, "ref", "initiatedEventId"),
    EventType.CHILD_WORKFLOW_EXECUTION_CANCELED: (_CHILD, _S.CANCELED, "ref", "initiatedEventId"),
    EventType.CHILD_WORKFLOW_EXECUTION_TERMINATED: (
        _CHILD,
        _S.CANCELED,
        "ref",
        "initiatedEventId",
    ),
}


@dataclass(slots=True)
class HistoryState:
    """Result of reducing a history: unit states and recorded markers."""

    units: dict[tuple[UnitCategory, str], UnitState] = field(default_factory=dict)
    markers: dict[str, list[HistoryEvent]] = field(default_factory=dict)
    failed_markers: dict[str, list[HistoryEvent]] = field(default_factory=dict)

    # initiating event id -> unit id, per category
    _initiated: dict[tuple[UnitCategory, int], str] = field(default_factory=dict)

    def get(self, category: UnitCategory, unit_id: str) -> UnitState:
        if category is UnitCategory.MARKER:
            return self.marker_state(unit_id)
        return self.units.get((category, unit_id), UnitState(category=category, unit_id=unit_id))

    def unit_id_for(self, category: UnitCategory, initiating_event_id: int) -> str | None:
        return self._initiated.get((category, initiating_event_id))

    def marker_state(self, name: str) -> UnitState:
        """Markers are records, not lifecycles: the latest recording wins."""

        recorded = self.markers.get(name)
        if recorded:
            latest = recorded[-1]
            return UnitState(
                category=UnitCategory.MARKER,
                unit_id=name,
                state=WorkflowEventState.SUCCESS,
                initiating_event=recorded[0],
                last_event=latest,
                details=latest.get_str("details"),
            )
        failed = self.failed_markers.get(name)
        if failed:
            return UnitState(
                category=UnitCategory.MARKER,
                unit_id=name,
                state=WorkflowEventState.ERROR,
                initiating_event=failed[0],
                last_event=failed[-1],
                reason=failed[-1].get_str("cause"),
            )
        return UnitState(category=UnitCategory.MARKER, unit_id=name)

    def apply(self, event: HistoryEvent) -> None:
        kind = event.kind
        if kind is None:
            logger.debug(
                "Ignoring unknown event type",
                extra={"event_id": event.event_id, "event_type": event.event_type},
            )
            return

        if kind is EventType.MARKER_RECORDED:
            name = event.get_str("markerName")
            if name is not None:
                self.markers.setdefault(name, []).append(event)
            return
        if kind is EventType.RECORD_MARKER_FAILED:
            name = event.get_str("markerName")
            if name is not None:
                self.failed_markers.setdefault(name, []).append(event)
            return

        entry = TRANSITION_TABLE.get(kind)
        if entry is None:
            return
        category, target, ref_kind, attr = entry

        unit_id = self._resolve_unit_id(event, category, ref_kind, attr)
        if unit_id is None:
            logger.debug(
                "Skipping event with unresolvable unit reference",
                extra={"event_id": event.event_id, "event_type": event.event_type},
            )
            return

        key = (category, unit_id)
        current = self.units.get(key) or UnitState(category=category, unit_id=unit_id)
        if not can_transition(current.state, target):
            # Terminal states are frozen; anything else out of order is ignored too.
            return

        if ref_kind == "id" and target in {WorkflowEventState.INITIAL, WorkflowEventState.ACTIVE}:
            if current.initiating_event is None:
                self._initiated[(category, event.event_id)] = unit_id

        self.units[key] = _advance(current, target, event)

    def _resolve_unit_id(
        self, event: HistoryEvent, category: UnitCategory, ref_kind: str, attr: str
    ) -> str | None:
        if ref_kind == "id":
            return event.get_str(attr)
        ref = event.get_int(attr)
        if ref is not None:
            resolved = self._initiated.get((category, ref))
            if resolved is not None:
                return resolved
        if category is UnitCategory.CHILD_WORKFLOW:
            execution = event.get("workflowExecution")
            if isinstance(execution, dict):
                workflow_id = execution.get("workflowId")
                if isinstance(workflow_id, str):
                    return workflow_id
        return None


def _advance(current: UnitState, target: WorkflowEventState, event: HistoryEvent) -> UnitState:
    initiating = current.initiating_event or event
    payload_input = current.input
    if current.initiating_event is None:
        payload_input = event.get_str("input")

    result = current.result
    reason = current.reason
    details = current.details
    kind = event.kind
    if target is WorkflowEventState.SUCCESS:
        result = event.get_str("result")
    elif target is WorkflowEventState.ERROR:
        reason = event.get_str("reason") or event.get_str("cause")
        details = event.get_str("details")
    elif target is WorkflowEventState.TIMEOUT:
        reason = event.get_str("timeoutType")
        details = event.get_str("details")
    elif target is WorkflowEventState.CANCELED:
        details = event.get_str("details")
        if kind is EventType.CHILD_WORKFLOW_EXECUTION_TERMINATED:
            reason = "TERMINATED"

    return UnitState(
        category=current.category,
        unit_id=current.unit_id,
        state=target,
        initiating_event=initiating,
        last_event=event,
        input=payload_input,
        result=result,
        reason=reason,
        details=details,
    )


def reduce_history(events: Iterable[HistoryEvent]) -> HistoryState:
    """Fold an ordered event sequence into a `HistoryState` in a single pass."""

    state = HistoryState()
    for event in events:
        state.apply(event)
    return state
