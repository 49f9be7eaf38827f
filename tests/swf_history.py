"""Builds wire-format workflow histories for tests.

Events are appended in order and get consecutive ids, the way the service
numbers them. Attributes set to None are dropped, as on the wire.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from swf_decider.decider.workflow.context import DecisionTaskContext
from swf_decider.decider.workflow.events import ActivityType, WorkflowType, attributes_key

WF_A = WorkflowType("wfA", "1")
ACT_A = ActivityType("ActA", "1")

_EPOCH = datetime(2025, 1, 1, tzinfo=UTC)


class HistoryBuilder:
    def __init__(
        self,
        workflow_type: WorkflowType = WF_A,
        *,
        workflow_id: str = "wf-1",
        run_id: str = "run-1",
    ) -> None:
        self.workflow_type = workflow_type
        self.workflow_id = workflow_id
        self.run_id = run_id
        self.raw: list[dict[str, Any]] = []
        self.last_decision_started: int | None = None
        self.last_decision_completed: int | None = None

    def add(self, event_type: str, **attributes: Any) -> int:
        event_id = len(self.raw) + 1
        self.raw.append(
            {
                "eventId": event_id,
                "eventType": event_type,
                "eventTimestamp": _EPOCH + timedelta(seconds=event_id),
                attributes_key(event_type): {k: v for k, v in attributes.items() if v is not None},
            }
        )
        return event_id

    # -- workflow ------------------------------------------------------------

    def started(self, input: str | None = None) -> int:
        return self.add(
            "WorkflowExecutionStarted",
            input=input,
            workflowType=self.workflow_type.to_swf(),
            taskList={"name": "decisions"},
            childPolicy="TERMINATE",
        )

    def signal(self, name: str, input: str | None = None) -> int:
        return self.add("WorkflowExecutionSignaled", signalName=name, input=input)

    def decision_task(self) -> int:
        scheduled = self.add("DecisionTaskScheduled", taskList={"name": "decisions"})
        self.last_decision_started = self.add("DecisionTaskStarted", scheduledEventId=scheduled)
        return self.last_decision_started

    def decision_completed(self) -> int:
        assert self.last_decision_started is not None
        self.last_decision_completed = self.add(
            "DecisionTaskCompleted",
            scheduledEventId=self.last_decision_started - 1,
            startedEventId=self.last_decision_started,
        )
        return self.last_decision_completed

    # -- activities ----------------------------------------------------------

    def activity_scheduled(
        self,
        activity_id: str,
        activity_type: ActivityType = ACT_A,
        *,
        input: str | None = None,
        control: str | None = None,
    ) -> int:
        return self.add(
            "ActivityTaskScheduled",
            activityType=activity_type.to_swf(),
            activityId=activity_id,
            input=input,
            control=control,
            taskList={"name": "activities"},
            startToCloseTimeout="300",
            decisionTaskCompletedEventId=self.last_decision_completed,
        )

    def activity_started(self, scheduled_event_id: int) -> int:
        return self.add(
            "ActivityTaskStarted", scheduledEventId=scheduled_event_id, identity="worker-1"
        )

    def activity_completed(self, scheduled_event_id: int, result: str | None = None) -> int:
        started = self.activity_started(scheduled_event_id)
        return self.add(
            "ActivityTaskCompleted",
            scheduledEventId=scheduled_event_id,
            startedEventId=started,
            result=result,
        )

    def activity_failed(
        self, scheduled_event_id: int, reason: str = "boom", details: str | None = None
    ) -> int:
        started = self.activity_started(scheduled_event_id)
        return self.add(
            "ActivityTaskFailed",
            scheduledEventId=scheduled_event_id,
            startedEventId=started,
            reason=reason,
            details=details,
        )

    def activity_timed_out(self, scheduled_event_id: int, timeout_type: str = "START_TO_CLOSE") -> int:
        started = self.activity_started(scheduled_event_id)
        return self.add(
            "ActivityTaskTimedOut",
            scheduledEventId=scheduled_event_id,
            startedEventId=started,
            timeoutType=timeout_type,
        )

    # -- timers and markers --------------------------------------------------

    def timer_started(self, timer_id: str, *, timeout: str = "30", control: str | None = None) -> int:
        return self.add(
            "TimerStarted",
            timerId=timer_id,
            startToFireTimeout=timeout,
            control=control,
            decisionTaskCompletedEventId=self.last_decision_completed,
        )

    def timer_fired(self, timer_id: str, started_event_id: int) -> int:
        return self.add("TimerFired", timerId=timer_id, startedEventId=started_event_id)

    def marker(self, name: str, details: str | None = None) -> int:
        return self.add(
            "MarkerRecorded",
            markerName=name,
            details=details,
            decisionTaskCompletedEventId=self.last_decision_completed,
        )

    # -- output --------------------------------------------------------------

    def task(self, *, previous_started_event_id: int = 0, token: str = "token-1") -> dict[str, Any]:
        return {
            "taskToken": token,
            "startedEventId": self.last_decision_started,
            "workflowExecution": {"workflowId": self.workflow_id, "runId": self.run_id},
            "workflowType": self.workflow_type.to_swf(),
            "events": list(self.raw),
            "previousStartedEventId": previous_started_event_id,
        }

    def context(self, *, previous_started_event_id: int = 0) -> DecisionTaskContext:
        return DecisionTaskContext.from_swf(self.task(previous_started_event_id=previous_started_event_id))
