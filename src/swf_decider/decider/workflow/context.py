"""The read-only view of one polled decision task."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any

from .controls import CLOSE_MARKERS, CloseWorkflowControl
from .events import EventType, HistoryEvent, WorkflowType, parse_history
from .mapper import DataMapper, JsonDataMapper
from .state import HistoryState, UnitCategory, UnitState, reduce_history


@dataclass(frozen=True, slots=True)
class WorkflowExecution:
    workflow_id: str
    run_id: str

    @staticmethod
    def from_swf(obj: Mapping[str, object] | None) -> WorkflowExecution:
        obj = obj or {}
        return WorkflowExecution(
            workflow_id=str(obj.get("workflowId", "")), run_id=str(obj.get("runId", ""))
        )


@dataclass(frozen=True, slots=True)
class MarkerRecord:
    """A recorded marker. Details are decoded only on request."""

    name: str
    details: str | None
    event: HistoryEvent
    mapper: DataMapper = field(default_factory=JsonDataMapper, compare=False, repr=False)

    def decode(self, type_: Any = Any) -> Any:
        return self.mapper.deserialize(self.details, type_)


class DecisionTaskContext:
    """Everything a decision task delivers: type, history, cursors and token.

    Handlers only read from it. State derived from the history is computed once,
    on first access, by a single forward scan.
    """

    def __init__(
        self,
        *,
        task_token: str,
        workflow_type: WorkflowType,
        events: Iterable[HistoryEvent],
        workflow_execution: WorkflowExecution | None = None,
        previous_started_event_id: int = 0,
        started_event_id: int | None = None,
        mapper: DataMapper | None = None,
    ) -> None:
        self.task_token = task_token
        self.workflow_type = workflow_type
        self.workflow_execution = workflow_execution or WorkflowExecution("", "")
        self.events: tuple[HistoryEvent, ...] = tuple(sorted(events, key=lambda e: e.event_id))
        self.previous_started_event_id = previous_started_event_id
        self.started_event_id = started_event_id
        self.mapper: DataMapper = mapper or JsonDataMapper()

    @classmethod
    def from_swf(
        cls, task: Mapping[str, Any], *, mapper: DataMapper | None = None
    ) -> DecisionTaskContext:
        """Build a context from a `PollForDecisionTask` response (all pages merged)."""

        return cls(
            task_token=str(task["taskToken"]),
            workflow_type=WorkflowType.from_swf(task.get("workflowType") or {}),
            workflow_execution=WorkflowExecution.from_swf(task.get("workflowExecution")),
            events=parse_history(list(task.get("events") or [])),
            previous_started_event_id=int(task.get("previousStartedEventId") or 0),
            started_event_id=task.get("startedEventId"),
            mapper=mapper,
        )

    def __repr__(self) -> str:
        return (
            f"DecisionTaskContext(workflow_type={self.workflow_type}, "
            f"workflow_id={self.workflow_execution.workflow_id!r}, "
            f"events={len(self.events)}, previous_started_event_id={self.previous_started_event_id})"
        )

    def log_extra(self) -> dict[str, object]:
        return {
            "workflow_type": str(self.workflow_type),
            "workflow_id": self.workflow_execution.workflow_id,
            "run_id": self.workflow_execution.run_id,
            "task_token": self.task_token,
        }

    # -- history views -----------------------------------------------------

    @cached_property
    def new_events(self) -> tuple[HistoryEvent, ...]:
        """Events after the previously acknowledged decision cursor."""

        return tuple(e for e in self.events if e.event_id > self.previous_started_event_id)

    @cached_property
    def _by_id(self) -> dict[int, HistoryEvent]:
        return {e.event_id: e for e in self.events}

    @cached_property
    def history(self) -> HistoryState:
        return reduce_history(self.events)

    def event(self, event_id: int) -> HistoryEvent | None:
        return self._by_id.get(event_id)

    def events_of(self, *kinds: EventType) -> list[HistoryEvent]:
        wanted = set(kinds)
        return [e for e in self.events if e.kind in wanted]

    # -- unit states -------------------------------------------------------

    def activity_state(self, activity_id: str) -> UnitState:
        return self.history.get(UnitCategory.ACTIVITY, activity_id)

    def timer_state(self, timer_id: str) -> UnitState:
        return self.history.get(UnitCategory.TIMER, timer_id)

    def child_workflow_state(self, workflow_id: str) -> UnitState:
        return self.history.get(UnitCategory.CHILD_WORKFLOW, workflow_id)

    def marker_state(self, name: str) -> UnitState:
        return self.history.get(UnitCategory.MARKER, name)

    def activity_id_for(self, scheduled_event_id: int) -> str | None:
        return self.history.unit_id_for(UnitCategory.ACTIVITY, scheduled_event_id)

    # -- payloads ----------------------------------------------------------

    def decode(self, raw: str | None, type_: Any = Any) -> Any:
        return self.mapper.deserialize(raw, type_)

    @property
    def workflow_started_event(self) -> HistoryEvent | None:
        for event in self.events:
            if event.kind is EventType.WORKFLOW_EXECUTION_STARTED:
                return event
        return None

    def workflow_input(self, type_: Any = Any) -> Any:
        started = self.workflow_started_event
        if started is None:
            return None
        return self.decode(started.get_str("input"), type_)

    # -- markers -----------------------------------------------------------

    def markers(self, name: str) -> list[MarkerRecord]:
        return [
            MarkerRecord(name=name, details=e.get_str("details"), event=e, mapper=self.mapper)
            for e in self.history.markers.get(name, [])
        ]

    def find_marker(self, name: str) -> MarkerRecord | None:
        """Return the latest marker recorded under `name`, or None if it never was."""

        recorded = self.markers(name)
        return recorded[-1] if recorded else None

    def has_marker(self, name: str) -> bool:
        return bool(self.history.markers.get(name))

    def marker_details(self, name: str, type_: Any = Any, default: Any = None) -> Any:
        """Decode the details of the latest `name` marker.

        Returns `default` when the marker is absent. Raises DecodeError when it is
        present but its details cannot be decoded as `type_`.
        """

        marker = self.find_marker(name)
        if marker is None:
            return default
        return marker.decode(type_)

    def closing_intent(self) -> CloseWorkflowControl | None:
        """The latest closure decision already recorded in history, if any."""

        latest: MarkerRecord | None = None
        for name in CLOSE_MARKERS:
            marker = self.find_marker(name)
            if marker is not None and (latest is None or marker.event.event_id > latest.event.event_id):
                latest = marker
        if latest is None:
            return None
        return latest.decode(CloseWorkflowControl)
