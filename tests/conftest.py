"""Shared fixtures for decider tests."""

from __future__ import annotations

from unittest.mock import Mock

import pytest
from swf_history import WF_A, HistoryBuilder

from swf_decider.decider.runner import DeciderConfig
from swf_decider.decider.swf.client import SwfClient
from swf_decider.decider.workflow.retry import FixedDelayRetryPolicy


@pytest.fixture
def history() -> HistoryBuilder:
    """A fresh history for workflow type wfA/1."""
    return HistoryBuilder(WF_A)


@pytest.fixture
def started_history(history: HistoryBuilder) -> HistoryBuilder:
    """A history that has just started, with `"x"` as input, and awaits its first decision."""
    history.started(input='"x"')
    history.decision_task()
    return history


@pytest.fixture
def swf_client() -> Mock:
    """A mocked service client; nothing talks to AWS."""
    client = Mock(spec=SwfClient)
    client.domain = "test-domain"
    return client


@pytest.fixture
def decider_config() -> DeciderConfig:
    return DeciderConfig(
        domain="test-domain",
        task_list="decisions",
        identity="test-worker",
        retry_policy=FixedDelayRetryPolicy(max_attempts=2),
        poll_error_backoff_seconds=0.01,
    )
