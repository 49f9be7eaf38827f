#!/usr/bin/env python3
"""Example workflow template: charge a card, then ship the order.

Run a worker for it with:

    DECIDER_DOMAIN=orders DECIDER_TASK_LIST=orders-decisions \
        swf-decider run --templates order_workflow:templates

(with this directory on PYTHONPATH).

* the workflow input is an `Order`
* `ChargeCard` failures are retried with backoff, then fail the workflow
* a `cancel` signal cancels the workflow unless it already closed
"""

from __future__ import annotations

from datetime import timedelta

from pydantic import BaseModel

from swf_decider import (
    ActivityType,
    DecisionBuilder,
    EventCategory,
    EventContext,
    EventHandler,
    WorkflowTemplate,
    WorkflowType,
)
from swf_decider.decider.workflow.options import ActivityOptions
from swf_decider.decider.workflow.retry import FixedDelayRetryPolicy

ORDER_WORKFLOW = WorkflowType("ProcessOrder", "1")
CHARGE_CARD = ActivityType("ChargeCard", "1")
SHIP_ORDER = ActivityType("ShipOrder", "1")

_ACTIVITY_OPTIONS = ActivityOptions(
    start_to_close_timeout=timedelta(minutes=5),
    schedule_to_start_timeout=timedelta(minutes=10),
)


class Order(BaseModel):
    order_id: str
    amount_cents: int


def on_started(event: EventContext, decisions: DecisionBuilder) -> None:
    order = event.decode_input(Order)
    decisions.schedule_activity_task(CHARGE_CARD, order, options=_ACTIVITY_OPTIONS)


def on_charged(event: EventContext, decisions: DecisionBuilder) -> None:
    order = event.decode_input(Order)
    decisions.schedule_activity_task(SHIP_ORDER, order, options=_ACTIVITY_OPTIONS)


def on_shipped(event: EventContext, decisions: DecisionBuilder) -> None:
    decisions.complete_workflow(event.result)


def on_activity_failed(event: EventContext, decisions: DecisionBuilder) -> None:
    scheduled_event_id = event.scheduled_event_id
    if scheduled_event_id is None or decisions.retry_activity(scheduled_event_id) is None:
        decisions.fail_workflow(
            reason=f"{event.name} failed",
            details=event.details,
        )


def on_cancel_signal(event: EventContext, decisions: DecisionBuilder) -> None:
    decisions.cancel_workflow(details="canceled by signal")


templates = [
    WorkflowTemplate(
        ORDER_WORKFLOW,
        [
            EventHandler(EventCategory.WORKFLOW_STARTED, on_started),
            EventHandler(EventCategory.ACTIVITY_COMPLETED, on_charged, name=CHARGE_CARD.name),
            EventHandler(EventCategory.ACTIVITY_COMPLETED, on_shipped, name=SHIP_ORDER.name),
            EventHandler(EventCategory.ACTIVITY_FAILED, on_activity_failed),
            EventHandler(EventCategory.ACTIVITY_TIMED_OUT, on_activity_failed),
            EventHandler(EventCategory.SIGNAL_RECEIVED, on_cancel_signal, name="cancel"),
        ],
        retry_policy=FixedDelayRetryPolicy(delay=timedelta(seconds=30), max_attempts=3),
    )
]
