"""Workflow templates and the registry resolving them by workflow type.

A template is an explicit table of event handlers for one workflow type.
Handlers are declared once, validated when the template is built, and looked
up by `(category, name)` at dispatch time; nothing is discovered at runtime.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass
from enum import Enum
from functools import cached_property
from typing import Any

from swf_decider.decider.errors import ConfigurationError, UnknownWorkflowTypeError
from .context import DecisionTaskContext
from .controls import is_reserved_marker_name, is_retry_timer_id
from .decisions import DecisionBuilder
from .events import CLOSE_FAILED_EVENT_TYPES, ActivityType, EventType, HistoryEvent, WorkflowType
from .retry import RetryController, RetryPolicy

logger = logging.getLogger(__name__)


class EventCategory(str, Enum):
    WORKFLOW_STARTED = "workflow_started"
    WORKFLOW_CANCEL_REQUESTED = "workflow_cancel_requested"
    SIGNAL_RECEIVED = "signal_received"
    ACTIVITY_COMPLETED = "activity_completed"
    ACTIVITY_FAILED = "activity_failed"
    ACTIVITY_TIMED_OUT = "activity_timed_out"
    ACTIVITY_CANCELED = "activity_canceled"
    TIMER_FIRED = "timer_fired"
    TIMER_CANCELED = "timer_canceled"
    MARKER_RECORDED = "marker_recorded"
    CHILD_WORKFLOW_COMPLETED = "child_workflow_completed"
    CHILD_WORKFLOW_FAILED = "child_workflow_failed"
    CHILD_WORKFLOW_TIMED_OUT = "child_workflow_timed_out"
    CHILD_WORKFLOW_CANCELED = "child_workflow_canceled"
    CHILD_WORKFLOW_TERMINATED = "child_workflow_terminated"


EVENT_CATEGORIES: dict[EventType, EventCategory] = {
    EventType.WORKFLOW_EXECUTION_STARTED: EventCategory.WORKFLOW_STARTED,
    EventType.WORKFLOW_EXECUTION_CANCEL_REQUESTED: EventCategory.WORKFLOW_CANCEL_REQUESTED,
    EventType.WORKFLOW_EXECUTION_SIGNALED: EventCategory.SIGNAL_RECEIVED,
    EventType.ACTIVITY_TASK_COMPLETED: EventCategory.ACTIVITY_COMPLETED,
    EventType.ACTIVITY_TASK_FAILED: EventCategory.ACTIVITY_FAILED,
    EventType.ACTIVITY_TASK_TIMED_OUT: EventCategory.ACTIVITY_TIMED_OUT,
    EventType.ACTIVITY_TASK_CANCELED: EventCategory.ACTIVITY_CANCELED,
    EventType.TIMER_FIRED: EventCategory.TIMER_FIRED,
    EventType.TIMER_CANCELED: EventCategory.TIMER_CANCELED,
    EventType.MARKER_RECORDED: EventCategory.MARKER_RECORDED,
    EventType.CHILD_WORKFLOW_EXECUTION_COMPLETED: EventCategory.CHILD_WORKFLOW_COMPLETED,
    EventType.CHILD_WORKFLOW_EXECUTION_FAILED: EventCategory.CHILD_WORKFLOW_FAILED,
    EventType.CHILD_WORKFLOW_EXECUTION_TIMED_OUT: EventCategory.CHILD_WORKFLOW_TIMED_OUT,
    EventType.CHILD_WORKFLOW_EXECUTION_CANCELED: EventCategory.CHILD_WORKFLOW_CANCELED,
    EventType.CHILD_WORKFLOW_EXECUTION_TERMINATED: EventCategory.CHILD_WORKFLOW_TERMINATED,
}

_ACTIVITY_CATEGORIES = frozenset(
    {
        EventCategory.ACTIVITY_COMPLETED,
        EventCategory.ACTIVITY_FAILED,
        EventCategory.ACTIVITY_TIMED_OUT,
        EventCategory.ACTIVITY_CANCELED,
    }
)
_CHILD_CATEGORIES = frozenset(
    {
        EventCategory.CHILD_WORKFLOW_COMPLETED,
        EventCategory.CHILD_WORKFLOW_FAILED,
        EventCategory.CHILD_WORKFLOW_TIMED_OUT,
        EventCategory.CHILD_WORKFLOW_CANCELED,
        EventCategory.CHILD_WORKFLOW_TERMINATED,
    }
)


class EventContext:
    """What a handler sees for one history event.

    Payloads are decoded lazily with the task's data mapper; ids are resolved
    through the event that initiated the unit (scheduled activity, started
    timer, initiated child workflow).
    """

    def __init__(
        self, event: HistoryEvent, task: DecisionTaskContext, category: EventCategory
    ) -> None:
        self.event = event
        self.task = task
        self.category = category

    def __repr__(self) -> str:
        return (
            f"EventContext(category={self.category.value}, event_id={self.event.event_id}, "
            f"name={self.name!r})"
        )

    # -- ids -----------------------------------------------------------------

    @property
    def event_id(self) -> int:
        return self.event.event_id

    @cached_property
    def initiating_event(self) -> HistoryEvent | None:
        """The event that created the unit this event belongs to."""

        if self.category in _ACTIVITY_CATEGORIES:
            ref = self.event.get_int("scheduledEventId")
        elif self.category in _CHILD_CATEGORIES:
            ref = self.event.get_int("initiatedEventId")
        elif self.category in {EventCategory.TIMER_FIRED, EventCategory.TIMER_CANCELED}:
            ref = self.event.get_int("startedEventId")
        else:
            return None
        return self.task.event(ref) if ref is not None else None

    @property
    def scheduled_event_id(self) -> int | None:
        return self.event.get_int("scheduledEventId")

    @property
    def activity_id(self) -> str | None:
        initiating = self.initiating_event
        if initiating is not None and self.category in _ACTIVITY_CATEGORIES:
            return initiating.get_str("activityId")
        return None

    @property
    def activity_type(self) -> ActivityType | None:
        initiating = self.initiating_event
        if initiating is None or self.category not in _ACTIVITY_CATEGORIES:
            return None
        raw = initiating.get("activityType")
        return ActivityType.from_swf(raw) if isinstance(raw, Mapping) else None

    @property
    def timer_id(self) -> str | None:
        return self.event.get_str("timerId")

    @property
    def marker_name(self) -> str | None:
        return self.event.get_str("markerName")

    @property
    def signal_name(self) -> str | None:
        return self.event.get_str("signalName")

    @property
    def child_workflow_id(self) -> str | None:
        execution = self.event.get("workflowExecution")
        if isinstance(execution, Mapping):
            workflow_id = execution.get("workflowId")
            return workflow_id if isinstance(workflow_id, str) else None
        return None

    @property
    def child_workflow_type(self) -> WorkflowType | None:
        raw = self.event.get("workflowType")
        return WorkflowType.from_swf(raw) if isinstance(raw, Mapping) else None

    @cached_property
    def name(self) -> str | None:
        """The name handlers can be narrowed to for this event's category."""

        if self.category in _ACTIVITY_CATEGORIES:
            activity_type = self.activity_type
            return activity_type.name if activity_type else None
        if self.category in _CHILD_CATEGORIES:
            child_type = self.child_workflow_type
            return child_type.name if child_type else None
        if self.category in {EventCategory.TIMER_FIRED, EventCategory.TIMER_CANCELED}:
            return self.timer_id
        if self.category is EventCategory.MARKER_RECORDED:
            return self.marker_name
        if self.category is EventCategory.SIGNAL_RECEIVED:
            return self.signal_name
        return None

    # -- payloads ------------------------------------------------------------

    @property
    def raw_input(self) -> str | None:
        if self.category in {
            EventCategory.WORKFLOW_STARTED,
            EventCategory.SIGNAL_RECEIVED,
        }:
            return self.event.get_str("input")
        initiating = self.initiating_event
        return initiating.get_str("input") if initiating is not None else None

    @property
    def raw_control(self) -> str | None:
        initiating = self.initiating_event
        if initiating is not None:
            return initiating.get_str("control")
        return self.event.get_str("control")

    @property
    def raw_result(self) -> str | None:
        return self.event.get_str("result")

    @property
    def reason(self) -> str | None:
        return self.event.get_str("reason") or self.event.get_str("timeoutType") or self.event.get_str(
            "cause"
        )

    @property
    def details(self) -> str | None:
        return self.event.get_str("details")

    @property
    def input(self) -> Any:
        return self.decode_input()

    @property
    def result(self) -> Any:
        return self.decode_result()

    def decode_input(self, type_: Any = Any) -> Any:
        return self.task.decode(self.raw_input, type_)

    def decode_result(self, type_: Any = Any) -> Any:
        return self.task.decode(self.raw_result, type_)

    def decode_control(self, type_: Any = Any) -> Any:
        return self.task.decode(self.raw_control, type_)

    def decode_details(self, type_: Any = Any) -> Any:
        return self.task.decode(self.details, type_)


HandlerCallback = Callable[[EventContext, DecisionBuilder], None]


@dataclass(frozen=True, slots=True)
class EventHandler:
    """A handler for one event category, optionally narrowed to one name.

    The name is an activity type name, child workflow type name, timer id,
    marker name or signal name depending on the category.
    """

    category: EventCategory
    callback: HandlerCallback
    name: str | None = None

    @property
    def key(self) -> tuple[EventCategory, str | None]:
        return (self.category, self.name)


class WorkflowTemplate:
    """The decision logic of one workflow type."""

    def __init__(
        self,
        workflow_type: WorkflowType,
        handlers: Iterable[EventHandler],
        *,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.workflow_type = workflow_type
        self.retry_policy = retry_policy
        self._handlers: dict[tuple[EventCategory, str | None], EventHandler] = {}
        for handler in handlers:
            if handler.key in self._handlers:
                category, name = handler.key
                target = f"{category.value}" + (f"[{name}]" if name else "")
                raise ConfigurationError(
                    f"Workflow {workflow_type}: more than one handler declared for {target}"
                )
            self._handlers[handler.key] = handler
        if not self._handlers:
            raise ConfigurationError(f"Workflow {workflow_type}: no event handlers declared")

    def __repr__(self) -> str:
        return f"WorkflowTemplate({self.workflow_type}, handlers={len(self._handlers)})"

    @property
    def handlers(self) -> tuple[EventHandler, ...]:
        return tuple(self._handlers.values())

    def dispatch(
        self, context: DecisionTaskContext, decisions: DecisionBuilder | None = None
    ) -> DecisionBuilder:
        """Dispatch every new event of the task to its handler, in history order.

        Handlers append to `decisions`; a builder bound to `context` is created
        when none is given.
        """

        if decisions is None:
            decisions = DecisionBuilder(context, retry_policy=self.retry_policy)

        closing = context.closing_intent()
        if closing is not None:
            # Already decided to close on an earlier task; handlers must not run again.
            if any(e.kind in CLOSE_FAILED_EVENT_TYPES for e in context.new_events):
                logger.info(
                    "Re-issuing workflow closure after a failed close decision",
                    extra={"action": closing.action.value, **context.log_extra()},
                )
                decisions.close_from(closing)
            return decisions

        for event in context.new_events:
            if decisions.is_closing:
                break
            self._dispatch(event, context, decisions)
        return decisions

    def _dispatch(
        self, event: HistoryEvent, context: DecisionTaskContext, decisions: DecisionBuilder
    ) -> None:
        kind = event.kind
        category = EVENT_CATEGORIES.get(kind) if kind is not None else None
        if category is None:
            return

        event_context = EventContext(event, context, category)
        name = event_context.name

        if category is EventCategory.MARKER_RECORDED and name and is_reserved_marker_name(name):
            return

        if name is not None:
            exact = self._handlers.get((category, name))
            if exact is not None:
                self._invoke(exact, event_context, decisions)
                return

        if category is EventCategory.TIMER_FIRED and name and is_retry_timer_id(name):
            RetryController(context, default_policy=self.retry_policy).reschedule(decisions, event)
            return

        handler = self._handlers.get((category, None))
        if handler is None:
            logger.debug(
                "No handler for event",
                extra={"category": category.value, "event_id": event.event_id, "event_name": name},
            )
            return
        self._invoke(handler, event_context, decisions)

    @staticmethod
    def _invoke(
        handler: EventHandler, event_context: EventContext, decisions: DecisionBuilder
    ) -> None:
        logger.debug(
            "Dispatching event",
            extra={
                "category": handler.category.value,
                "event_id": event_context.event_id,
                "event_name": event_context.name,
            },
        )
        handler.callback(event_context, decisions)


class TemplateRegistry:
    """Immutable mapping of workflow type -> template, shared by all workers."""

    def __init__(self, templates: Iterable[WorkflowTemplate]) -> None:
        registry: dict[WorkflowType, WorkflowTemplate] = {}
        for template in templates:
            if template.workflow_type in registry:
                raise ConfigurationError(
                    f"Workflow type {template.workflow_type} is declared by more than one template"
                )
            registry[template.workflow_type] = template
        if not registry:
            raise ConfigurationError("At least one workflow template is required")
        self._templates: Mapping[WorkflowType, WorkflowTemplate] = registry

    def __contains__(self, workflow_type: object) -> bool:
        return workflow_type in self._templates

    def __iter__(self) -> Iterator[WorkflowTemplate]:
        return iter(self._templates.values())

    def __len__(self) -> int:
        return len(self._templates)

    @property
    def workflow_types(self) -> tuple[WorkflowType, ...]:
        return tuple(self._templates)

    def resolve(self, workflow_type: WorkflowType) -> WorkflowTemplate:
        template = self._templates.get(workflow_type)
        if template is None:
            raise UnknownWorkflowTypeError(name=workflow_type.name, version=workflow_type.version)
        return template
