"""Ordered, append-only builder of the decisions answering one decision task."""

from __future__ import annotations

import re
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from swf_decider.decider.errors import DecisionError, DuplicateDecisionIdError, ReservedMarkerNameError
from .controls import (
    CloseAction,
    CloseWorkflowControl,
    RetryControl,
    is_reserved_marker_name,
    is_retry_activity_id,
    is_retry_timer_id,
)
from .durations import DurationEncoder, DurationLike
from .events import ActivityType, WorkflowType
from .mapper import DataMapper, JsonDataMapper
from .options import ActivityOptions, WorkflowOptions
from .retry import RetryController, RetryPolicy

if TYPE_CHECKING:
    from .context import DecisionTaskContext

MAX_REASON_LENGTH = 256
MAX_DETAILS_LENGTH = 32768
MAX_ID_LENGTH = 256

_INVALID_ID_CHARS = re.compile(r"[:/|\x00-\x1f\x7f-\x9f]")


class DecisionType(str, Enum):
    SCHEDULE_ACTIVITY_TASK = "ScheduleActivityTask"
    REQUEST_CANCEL_ACTIVITY_TASK = "RequestCancelActivityTask"
    START_TIMER = "StartTimer"
    CANCEL_TIMER = "CancelTimer"
    RECORD_MARKER = "RecordMarker"
    START_CHILD_WORKFLOW_EXECUTION = "StartChildWorkflowExecution"
    SIGNAL_EXTERNAL_WORKFLOW_EXECUTION = "SignalExternalWorkflowExecution"
    REQUEST_CANCEL_EXTERNAL_WORKFLOW_EXECUTION = "RequestCancelExternalWorkflowExecution"
    COMPLETE_WORKFLOW_EXECUTION = "CompleteWorkflowExecution"
    CANCEL_WORKFLOW_EXECUTION = "CancelWorkflowExecution"
    FAIL_WORKFLOW_EXECUTION = "FailWorkflowExecution"
    CONTINUE_AS_NEW_WORKFLOW_EXECUTION = "ContinueAsNewWorkflowExecution"

    @property
    def attributes_key(self) -> str:
        return self.value[:1].lower() + self.value[1:] + "DecisionAttributes"


CLOSE_DECISION_TYPES: frozenset[DecisionType] = frozenset(
    {
        DecisionType.COMPLETE_WORKFLOW_EXECUTION,
        DecisionType.CANCEL_WORKFLOW_EXECUTION,
        DecisionType.FAIL_WORKFLOW_EXECUTION,
        DecisionType.CONTINUE_AS_NEW_WORKFLOW_EXECUTION,
    }
)


@dataclass(frozen=True, slots=True)
class Decision:
    """One outbound instruction. Attributes mirror the wire format."""

    decision_type: DecisionType
    attributes: Mapping[str, Any] = field(default_factory=dict)

    def to_swf(self) -> dict[str, Any]:
        return {
            "decisionType": self.decision_type.value,
            self.decision_type.attributes_key: _compact(self.attributes),
        }


def _compact(obj: Mapping[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in obj.items():
        if value is None:
            continue
        if isinstance(value, Mapping):
            value = _compact(value)
        elif isinstance(value, tuple):
            value = list(value)
        out[key] = value
    return out


def check_id(value: str | None, *, label: str) -> str:
    """Validate an identifier the way the service does."""

    if value is None:
        raise DecisionError(f"{label} is required")
    if not value or len(value) > MAX_ID_LENGTH:
        raise DecisionError(f"{label} must be 1 to {MAX_ID_LENGTH} characters long: {value!r}")
    if value != value.strip():
        raise DecisionError(f"{label} must not start or end with whitespace: {value!r}")
    if _INVALID_ID_CHARS.search(value):
        raise DecisionError(f"{label} must not contain ':', '/', '|' or control characters: {value!r}")
    if value == "arn":
        raise DecisionError(f"{label} must not be the literal string 'arn'")
    return value


def _new_id() -> str:
    return uuid.uuid4().hex


def _truncate(value: str | None, limit: int) -> str | None:
    if value is None or len(value) <= limit:
        return value
    return value[:limit]


class DecisionBuilder:
    """Collects the decisions for a single decision task.

    Every operation appends exactly one decision (closing operations append a
    closure marker first) and returns the builder so calls can be chained. The
    builder is single-use: `get()` seals it.
    """

    def __init__(
        self,
        context: DecisionTaskContext | None = None,
        *,
        mapper: DataMapper | None = None,
        durations: DurationEncoder | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._context = context
        self._mapper: DataMapper = mapper or (context.mapper if context else JsonDataMapper())
        self._durations = durations or DurationEncoder()
        self._retry_policy = retry_policy
        self._decisions: list[Decision] = []
        self._activity_ids: set[str] = set()
        self._timer_ids: set[str] = set()
        self._child_workflow_ids: set[str] = set()
        self._sealed = False

    def __repr__(self) -> str:
        return f"DecisionBuilder(decisions={[d.decision_type.value for d in self._decisions]})"

    def __len__(self) -> int:
        return len(self._decisions)

    @property
    def context(self) -> DecisionTaskContext | None:
        return self._context

    @property
    def is_closing(self) -> bool:
        return any(d.decision_type in CLOSE_DECISION_TYPES for d in self._decisions)

    def get(self) -> tuple[Decision, ...]:
        """Return the decisions in the order they were added and seal the builder."""

        self._sealed = True
        return tuple(self._decisions)

    # -- internals -----------------------------------------------------------

    def _append(self, decision_type: DecisionType, attributes: dict[str, Any]) -> DecisionBuilder:
        if self._sealed:
            raise RuntimeError("DecisionBuilder already submitted; create a new one per task")
        self._decisions.append(Decision(decision_type=decision_type, attributes=attributes))
        return self

    def _serialize(self, value: object) -> str | None:
        return self._mapper.serialize(value)

    @staticmethod
    def _claim(ids: set[str], value: str, *, label: str) -> None:
        if value in ids:
            raise DuplicateDecisionIdError(f"Duplicate {label} in decision batch: {value!r}")
        ids.add(value)

    def _workflow_options(self, options: WorkflowOptions | None) -> dict[str, Any]:
        params = options or WorkflowOptions()
        attrs: dict[str, Any] = {
            "taskList": {"name": params.task_list} if params.task_list else None,
            "taskPriority": None if params.task_priority is None else str(params.task_priority),
            "executionStartToCloseTimeout": None,
            "taskStartToCloseTimeout": None,
            "childPolicy": params.child_policy.value if params.child_policy else None,
            "tagList": list(params.tag_list) or None,
            "lambdaRole": params.lambda_role,
        }
        if params.execution_start_to_close_timeout is not None:
            attrs["executionStartToCloseTimeout"] = self._durations.optional(
                params.execution_start_to_close_timeout
            )
        if params.task_start_to_close_timeout is not None:
            attrs["taskStartToCloseTimeout"] = self._durations.optional(
                params.task_start_to_close_timeout
            )
        return attrs

    # -- activities ----------------------------------------------------------

    def schedule_activity_task(
        self,
        activity_type: ActivityType,
        input: object = None,
        *,
        activity_id: str | None = None,
        options: ActivityOptions | None = None,
    ) -> DecisionBuilder:
        if activity_type is None:
            raise DecisionError("activity_type is required")
        activity_id = check_id(activity_id or _new_id(), label="activity_id")
        if is_retry_activity_id(activity_id):
            raise ReservedMarkerNameError(f"Activity id {activity_id!r} is reserved for activity retries")
        self._claim(self._activity_ids, activity_id, label="activity_id")

        attrs: dict[str, Any] = {
            "activityType": activity_type.to_swf(),
            "activityId": activity_id,
            "input": self._serialize(input),
        }
        if options is not None:
            attrs.update(
                {
                    "control": options.control,
                    "taskList": {"name": options.task_list} if options.task_list else None,
                    "taskPriority": None
                    if options.task_priority is None
                    else str(options.task_priority),
                    "heartbeatTimeout": self._durations.optional(options.heartbeat_timeout),
                    "scheduleToCloseTimeout": self._durations.optional(
                        options.schedule_to_close_timeout
                    ),
                    "scheduleToStartTimeout": self._durations.optional(
                        options.schedule_to_start_timeout
                    ),
                    "startToCloseTimeout": self._durations.optional(options.start_to_close_timeout),
                }
            )
        return self._append(DecisionType.SCHEDULE_ACTIVITY_TASK, attrs)

    def schedule_activity_task_from(
        self, scheduled: Mapping[str, Any], *, activity_id: str | None = None
    ) -> DecisionBuilder:
        """Schedule a fresh copy of a previously scheduled activity.

        `scheduled` holds the attributes of an `ActivityTaskScheduled` event; its
        input, control, task list and timeouts are reused verbatim.
        """

        activity_id = check_id(activity_id or _new_id(), label="activity_id")
        self._claim(self._activity_ids, activity_id, label="activity_id")
        attrs = {
            key: scheduled.get(key)
            for key in (
                "activityType",
                "input",
                "control",
                "taskList",
                "taskPriority",
                "heartbeatTimeout",
                "scheduleToCloseTimeout",
                "scheduleToStartTimeout",
                "startToCloseTimeout",
            )
        }
        if not attrs["activityType"]:
            raise DecisionError("scheduled activity attributes have no activityType")
        attrs["activityId"] = activity_id
        return self._append(DecisionType.SCHEDULE_ACTIVITY_TASK, attrs)

    def request_cancel_activity_task(self, activity_id: str) -> DecisionBuilder:
        check_id(activity_id, label="activity_id")
        return self._append(DecisionType.REQUEST_CANCEL_ACTIVITY_TASK, {"activityId": activity_id})

    def retry_activity(
        self,
        scheduled_event_id: int,
        activity: ActivityType | str | None = None,
        *,
        policy: RetryPolicy | None = None,
    ) -> RetryControl | None:
        """Start a backoff timer to re-run a failed activity, if the policy allows.

        Returns None, without adding a decision, once retries are exhausted. See
        `RetryController.retry_activity`.
        """

        if self._context is None:
            raise DecisionError("retry_activity needs the decision task context")
        controller = RetryController(self._context, default_policy=self._retry_policy)
        return controller.retry_activity(self, scheduled_event_id, activity, policy=policy)

    # -- timers --------------------------------------------------------------

    def start_timer(
        self,
        timer_id: str | None = None,
        duration: DurationLike | None = None,
        control: object = None,
    ) -> DecisionBuilder:
        timer_id = check_id(timer_id or _new_id(), label="timer_id")
        if is_retry_timer_id(timer_id):
            raise ReservedMarkerNameError(f"Timer id {timer_id!r} is reserved for activity retries")
        return self._start_timer(timer_id, duration, self._serialize(control))

    def _start_timer(
        self, timer_id: str, duration: DurationLike | None, control: str | None
    ) -> DecisionBuilder:
        self._claim(self._timer_ids, timer_id, label="timer_id")
        return self._append(
            DecisionType.START_TIMER,
            {
                "timerId": timer_id,
                "startToFireTimeout": self._durations.required(duration, label=f"timer {timer_id}"),
                "control": control,
            },
        )

    def start_retry_timer(self, control: RetryControl, duration: DurationLike) -> DecisionBuilder:
        return self._start_timer(control.timer_id, duration, control.model_dump_json())

    def cancel_timer(self, timer_id: str) -> DecisionBuilder:
        check_id(timer_id, label="timer_id")
        return self._append(DecisionType.CANCEL_TIMER, {"timerId": timer_id})

    # -- markers -------------------------------------------------------------

    def record_marker(self, marker_name: str, details: object = None) -> DecisionBuilder:
        if not marker_name:
            raise DecisionError("marker_name is required")
        if is_reserved_marker_name(marker_name):
            raise ReservedMarkerNameError(f"Marker name {marker_name!r} is reserved")
        return self._record_marker(marker_name, self._serialize(details))

    def record_retry_marker(self, control: RetryControl) -> DecisionBuilder:
        return self._record_marker(control.marker_name, str(control.attempt))

    def _record_marker(self, marker_name: str, details: str | None) -> DecisionBuilder:
        return self._append(
            DecisionType.RECORD_MARKER, {"markerName": marker_name, "details": details}
        )

    # -- other workflows -----------------------------------------------------

    def start_child_workflow(
        self,
        workflow_type: WorkflowType,
        workflow_id: str | None = None,
        input: object = None,
        *,
        options: WorkflowOptions | None = None,
        control: object = None,
    ) -> DecisionBuilder:
        if workflow_type is None:
            raise DecisionError("workflow_type is required")
        workflow_id = check_id(workflow_id or _new_id(), label="workflow_id")
        self._claim(self._child_workflow_ids, workflow_id, label="workflow_id")
        attrs: dict[str, Any] = {
            "workflowType": workflow_type.to_swf(),
            "workflowId": workflow_id,
            "input": self._serialize(input),
            "control": self._serialize(control),
        }
        attrs.update(self._workflow_options(options))
        return self._append(DecisionType.START_CHILD_WORKFLOW_EXECUTION, attrs)

    def signal_external_workflow(
        self,
        workflow_id: str,
        signal_name: str,
        input: object = None,
        *,
        run_id: str | None = None,
        control: object = None,
    ) -> DecisionBuilder:
        check_id(workflow_id, label="workflow_id")
        if not signal_name:
            raise DecisionError("signal_name is required")
        return self._append(
            DecisionType.SIGNAL_EXTERNAL_WORKFLOW_EXECUTION,
            {
                "workflowId": workflow_id,
                "runId": run_id,
                "signalName": signal_name,
                "input": self._serialize(input),
                "control": self._serialize(control),
            },
        )

    def request_cancel_external_workflow(
        self, workflow_id: str, run_id: str, control: object = None
    ) -> DecisionBuilder:
        check_id(workflow_id, label="workflow_id")
        if not run_id:
            raise DecisionError("run_id is required")
        return self._append(
            DecisionType.REQUEST_CANCEL_EXTERNAL_WORKFLOW_EXECUTION,
            {"workflowId": workflow_id, "runId": run_id, "control": self._serialize(control)},
        )

    # -- closing -------------------------------------------------------------

    def complete_workflow(self, result: object = None) -> DecisionBuilder:
        control = CloseWorkflowControl.complete(self._serialize(result))
        self._record_marker(control.marker_name, control.model_dump_json())
        return self.close_from(control)

    def cancel_workflow(self, details: str | None = None) -> DecisionBuilder:
        control = CloseWorkflowControl.cancel(details)
        self._record_marker(control.marker_name, control.model_dump_json())
        return self.close_from(control)

    def fail_workflow(self, reason: str | None = None, details: str | None = None) -> DecisionBuilder:
        control = CloseWorkflowControl.fail(
            _truncate(reason, MAX_REASON_LENGTH), _truncate(details, MAX_DETAILS_LENGTH)
        )
        self._record_marker(control.marker_name, control.model_dump_json())
        return self.close_from(control)

    def close_from(self, control: CloseWorkflowControl) -> DecisionBuilder:
        """Append only the terminal decision described by a recorded closure intent."""

        if control.action is CloseAction.COMPLETE:
            return self._append(
                DecisionType.COMPLETE_WORKFLOW_EXECUTION, {"result": control.result}
            )
        if control.action is CloseAction.CANCEL:
            return self._append(DecisionType.CANCEL_WORKFLOW_EXECUTION, {"details": control.details})
        return self._append(
            DecisionType.FAIL_WORKFLOW_EXECUTION,
            {"reason": control.reason, "details": control.details},
        )

    def continue_as_new_workflow(
        self,
        input: object = None,
        *,
        version: str | None = None,
        options: WorkflowOptions | None = None,
        tags: Sequence[str] | None = None,
    ) -> DecisionBuilder:
        attrs: dict[str, Any] = {"input": self._serialize(input), "workflowTypeVersion": version}
        attrs.update(self._workflow_options(options))
        if tags is not None:
            attrs["tagList"] = list(tags)
        return self._append(DecisionType.CONTINUE_AS_NEW_WORKFLOW_EXECUTION, attrs)
