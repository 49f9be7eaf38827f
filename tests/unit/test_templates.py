"""Unit tests for workflow templates, the registry and event dispatch."""

from __future__ import annotations

from unittest.mock import Mock

import pytest
from swf_history import ACT_A, WF_A, HistoryBuilder

from swf_decider.decider.errors import ConfigurationError, UnknownWorkflowTypeError
from swf_decider.decider.workflow.controls import CloseWorkflowControl, RetryControl
from swf_decider.decider.workflow.decisions import DecisionBuilder, DecisionType
from swf_decider.decider.workflow.events import WorkflowType
from swf_decider.decider.workflow.templates import (
    EventCategory,
    EventContext,
    EventHandler,
    TemplateRegistry,
    WorkflowTemplate,
)


def _noop(event: EventContext, decisions: DecisionBuilder) -> None:
    return None


def _template(*handlers: EventHandler, workflow_type: WorkflowType = WF_A) -> WorkflowTemplate:
    return WorkflowTemplate(workflow_type, handlers)


def _decide(template: WorkflowTemplate, history: HistoryBuilder, previous: int = 0) -> tuple:
    context = history.context(previous_started_event_id=previous)
    return template.dispatch(context, DecisionBuilder(context)).get()


def test_duplicate_handlers_are_rejected() -> None:
    with pytest.raises(ConfigurationError):
        _template(
            EventHandler(EventCategory.ACTIVITY_COMPLETED, _noop, name="ActA"),
            EventHandler(EventCategory.ACTIVITY_COMPLETED, _noop, name="ActA"),
        )


def test_template_without_handlers_is_rejected() -> None:
    with pytest.raises(ConfigurationError):
        _template()


def test_duplicate_workflow_types_are_rejected() -> None:
    first = _template(EventHandler(EventCategory.WORKFLOW_STARTED, _noop))
    second = _template(EventHandler(EventCategory.WORKFLOW_STARTED, _noop))

    with pytest.raises(ConfigurationError):
        TemplateRegistry([first, second])


def test_empty_registry_is_rejected() -> None:
    with pytest.raises(ConfigurationError):
        TemplateRegistry([])


def test_registry_resolves_by_name_and_version() -> None:
    template = _template(EventHandler(EventCategory.WORKFLOW_STARTED, _noop))
    registry = TemplateRegistry([template])

    assert registry.resolve(WorkflowType("wfA", "1")) is template
    assert WF_A in registry
    assert len(registry) == 1
    assert registry.workflow_types == (WF_A,)

    with pytest.raises(UnknownWorkflowTypeError) as exc:
        registry.resolve(WorkflowType("wfA", "2"))
    assert exc.value.version == "2"


def test_started_handler_receives_decoded_input(started_history: HistoryBuilder) -> None:
    seen: list[object] = []

    def on_started(event: EventContext, decisions: DecisionBuilder) -> None:
        seen.append(event.input)
        decisions.schedule_activity_task(ACT_A, 42)

    decisions = _decide(_template(EventHandler(EventCategory.WORKFLOW_STARTED, on_started)), started_history)

    assert seen == ["x"]
    assert len(decisions) == 1
    assert decisions[0].decision_type is DecisionType.SCHEDULE_ACTIVITY_TASK
    assert decisions[0].attributes["input"] == "42"
    assert len(decisions[0].attributes["activityId"]) == 32


def test_no_new_events_means_no_decisions(started_history: HistoryBuilder) -> None:
    callback = Mock()
    template = _template(EventHandler(EventCategory.WORKFLOW_STARTED, callback))

    assert _decide(template, started_history, previous=3) == ()
    callback.assert_not_called()


def test_events_without_handlers_are_ignored(started_history: HistoryBuilder) -> None:
    template = _template(EventHandler(EventCategory.TIMER_FIRED, _noop))
    assert _decide(template, started_history) == ()


def test_named_handler_wins_over_category_handler(history: HistoryBuilder) -> None:
    history.started()
    history.decision_task()
    history.decision_completed()
    a1 = history.activity_scheduled("a1", input='"in"')
    history.activity_completed(a1, result='"done"')
    other = history.activity_scheduled("a2", activity_type=WorkflowType("ActB", "1"))
    history.activity_completed(other)
    previous = history.last_decision_started or 0
    history.decision_task()

    calls: list[tuple[str, object, object]] = []

    def on_act_a(event: EventContext, decisions: DecisionBuilder) -> None:
        calls.append(("ActA", event.input, event.result))

    def on_any(event: EventContext, decisions: DecisionBuilder) -> None:
        calls.append(("any", event.activity_id, event.name))

    template = _template(
        EventHandler(EventCategory.ACTIVITY_COMPLETED, on_act_a, name="ActA"),
        EventHandler(EventCategory.ACTIVITY_COMPLETED, on_any),
    )
    _decide(template, history, previous)

    assert calls == [("ActA", "in", "done"), ("any", "a2", "ActB")]


def test_signal_handlers_are_matched_by_signal_name(started_history: HistoryBuilder) -> None:
    started_history.decision_completed()
    started_history.signal("cancel", input='"please"')
    started_history.signal("other")
    started_history.decision_task()

    def on_cancel(event: EventContext, decisions: DecisionBuilder) -> None:
        decisions.cancel_workflow(details=event.input)

    template = _template(EventHandler(EventCategory.SIGNAL_RECEIVED, on_cancel, name="cancel"))
    decisions = _decide(template, started_history, previous=3)

    assert [d.decision_type for d in decisions] == [
        DecisionType.RECORD_MARKER,
        DecisionType.CANCEL_WORKFLOW_EXECUTION,
    ]
    assert decisions[1].attributes == {"details": "please"}


def test_dispatch_stops_once_closing(started_history: HistoryBuilder) -> None:
    started_history.signal("s1")
    started_history.signal("s2")
    handled: list[str | None] = []

    def on_signal(event: EventContext, decisions: DecisionBuilder) -> None:
        handled.append(event.name)
        decisions.complete_workflow()

    template = _template(EventHandler(EventCategory.SIGNAL_RECEIVED, on_signal))
    decisions = _decide(template, started_history)

    assert handled == ["s1"]
    assert decisions[-1].decision_type is DecisionType.COMPLETE_WORKFLOW_EXECUTION


def test_reserved_markers_are_not_dispatched(started_history: HistoryBuilder) -> None:
    started_history.decision_completed()
    started_history.marker("__retry:ActA:5", details="1")
    started_history.marker("progress", details="1")
    started_history.decision_task()
    callback = Mock()

    _decide(_template(EventHandler(EventCategory.MARKER_RECORDED, callback)), started_history, previous=3)

    assert callback.call_count == 1
    (event, _), _ = callback.call_args
    assert event.marker_name == "progress"


def test_fired_retry_timer_is_handled_by_the_decider(history: HistoryBuilder) -> None:
    history.started()
    history.decision_task()
    history.decision_completed()
    scheduled = history.activity_scheduled("a1", input="42")
    history.activity_failed(scheduled)
    history.decision_task()
    history.decision_completed()
    control = RetryControl(
        activity_name="ActA", scheduled_event_id=scheduled, root_scheduled_event_id=scheduled, attempt=1
    )
    timer = history.timer_started(control.timer_id, control=control.model_dump_json())
    history.timer_fired(control.timer_id, timer)
    previous = history.last_decision_started or 0
    history.decision_task()

    on_timer = Mock()
    template = _template(EventHandler(EventCategory.TIMER_FIRED, on_timer))
    decisions = _decide(template, history, previous)

    on_timer.assert_not_called()
    assert [d.decision_type for d in decisions] == [
        DecisionType.RECORD_MARKER,
        DecisionType.SCHEDULE_ACTIVITY_TASK,
    ]


def test_failed_activity_is_retried_from_a_handler(history: HistoryBuilder) -> None:
    history.started()
    history.decision_task()
    history.decision_completed()
    scheduled = history.activity_scheduled("a1")
    history.activity_failed(scheduled)
    previous = history.last_decision_started or 0
    history.decision_task()

    def on_failed(event: EventContext, decisions: DecisionBuilder) -> None:
        assert event.reason == "boom"
        if decisions.retry_activity(event.scheduled_event_id, event.activity_type) is None:
            decisions.fail_workflow("exhausted")

    template = _template(EventHandler(EventCategory.ACTIVITY_FAILED, on_failed))
    decisions = _decide(template, history, previous)

    assert [d.decision_type for d in decisions] == [DecisionType.START_TIMER]
    assert decisions[0].attributes["timerId"] == f"__retry-ActA-{scheduled}-1"


def test_closure_is_replayed_without_running_handlers(history: HistoryBuilder) -> None:
    history.started()
    history.decision_task()
    history.decision_completed()
    control = CloseWorkflowControl.complete('"done"')
    history.marker(control.marker_name, details=control.model_dump_json())
    history.add("CompleteWorkflowExecutionFailed", cause="UNHANDLED_DECISION")
    history.signal("late")
    previous = history.last_decision_started or 0
    history.decision_task()

    callback = Mock()
    template = _template(EventHandler(EventCategory.SIGNAL_RECEIVED, callback))
    decisions = _decide(template, history, previous)

    callback.assert_not_called()
    assert len(decisions) == 1
    assert decisions[0].decision_type is DecisionType.COMPLETE_WORKFLOW_EXECUTION
    assert decisions[0].attributes == {"result": '"done"'}


def test_recorded_closure_without_failure_adds_nothing(history: HistoryBuilder) -> None:
    history.started()
    history.decision_task()
    history.decision_completed()
    control = CloseWorkflowControl.fail("Broken", None)
    history.marker(control.marker_name, details=control.model_dump_json())
    history.signal("late")
    previous = history.last_decision_started or 0
    history.decision_task()

    callback = Mock()
    template = _template(EventHandler(EventCategory.SIGNAL_RECEIVED, callback))

    assert _decide(template, history, previous) == ()
    callback.assert_not_called()


def test_dispatch_creates_a_builder_when_none_is_given(started_history: HistoryBuilder) -> None:
    def on_started(event: EventContext, decisions: DecisionBuilder) -> None:
        decisions.start_timer("wait", 60)

    handler = EventHandler(EventCategory.WORKFLOW_STARTED, on_started)
    template = _template(handler)

    builder = template.dispatch(started_history.context())

    assert template.handlers == (handler,)
    assert len(builder) == 1
    assert builder.get()[0].attributes["timerId"] == "wait"
