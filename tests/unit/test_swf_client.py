"""Unit tests for the SWF client wrapper (boto3 client mocked)."""

from __future__ import annotations

from unittest.mock import Mock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError
from swf_history import HistoryBuilder

from swf_decider.decider.errors import RemoteClientError, RemoteServiceError
from swf_decider.decider.swf.client import SwfClient, is_client_side
from swf_decider.decider.workflow.decisions import DecisionBuilder
from swf_decider.decider.workflow.events import ActivityType


def _client_error(code: str, error_type: str = "Sender") -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": "message", "Type": error_type}},
        "RespondDecisionTaskCompleted",
    )


def test_domain_is_required() -> None:
    with pytest.raises(ValueError):
        SwfClient(domain="", swf=Mock())


def test_poll_without_task_returns_none() -> None:
    swf = Mock()
    swf.poll_for_decision_task.return_value = {"startedEventId": 0, "previousStartedEventId": 0}
    client = SwfClient(domain="d", swf=swf)

    assert client.poll_for_decision_task(task_list="decisions", identity="w") is None
    swf.poll_for_decision_task.assert_called_once_with(
        domain="d",
        taskList={"name": "decisions"},
        identity="w",
        maximumPageSize=1000,
        reverseOrder=False,
    )


def test_poll_follows_pages(started_history: HistoryBuilder) -> None:
    started_history.decision_completed()
    started_history.signal("s1")
    started_history.decision_task()
    task = started_history.task(previous_started_event_id=3)
    events = task.pop("events")

    swf = Mock()
    swf.poll_for_decision_task.side_effect = [
        {**task, "events": events[:4], "nextPageToken": "page-2"},
        {**task, "events": events[4:]},
    ]
    client = SwfClient(domain="d", swf=swf)

    context = client.poll_for_decision_task(task_list="decisions", identity="w")

    assert context is not None
    assert context.task_token == "token-1"
    assert [e.event_id for e in context.events] == list(range(1, 8))
    assert [e.event_id for e in context.new_events] == [4, 5, 6, 7]
    assert context.workflow_input() == "x"
    assert swf.poll_for_decision_task.call_count == 2
    assert swf.poll_for_decision_task.call_args.kwargs["nextPageToken"] == "page-2"


def test_respond_sends_wire_decisions() -> None:
    swf = Mock()
    client = SwfClient(domain="d", swf=swf)
    decisions = DecisionBuilder().schedule_activity_task(ActivityType("A", "1"), activity_id="a1").get()

    client.respond_decision_task_completed(task_token="tok", decisions=decisions)

    swf.respond_decision_task_completed.assert_called_once_with(
        taskToken="tok",
        decisions=[
            {
                "decisionType": "ScheduleActivityTask",
                "scheduleActivityTaskDecisionAttributes": {
                    "activityType": {"name": "A", "version": "1"},
                    "activityId": "a1",
                },
            }
        ],
    )


def test_client_side_errors_are_classified() -> None:
    assert is_client_side(_client_error("Anything", "Sender"))
    assert is_client_side(_client_error("ValidationException", "Receiver"))
    assert not is_client_side(_client_error("InternalFailure", "Receiver"))


def test_client_error_on_respond_raises_remote_client_error() -> None:
    swf = Mock()
    swf.respond_decision_task_completed.side_effect = _client_error("ValidationException")
    client = SwfClient(domain="d", swf=swf)

    with pytest.raises(RemoteClientError) as exc:
        client.respond_decision_task_completed(task_token="tok", decisions=())
    assert exc.value.code == "ValidationException"


def test_service_errors_raise_remote_service_error() -> None:
    swf = Mock()
    swf.respond_decision_task_completed.side_effect = _client_error("InternalFailure", "Receiver")
    swf.poll_for_decision_task.side_effect = EndpointConnectionError(endpoint_url="https://swf")
    client = SwfClient(domain="d", swf=swf)

    with pytest.raises(RemoteServiceError):
        client.respond_decision_task_completed(task_token="tok", decisions=())
    with pytest.raises(RemoteServiceError):
        client.poll_for_decision_task(task_list="decisions", identity="w")
