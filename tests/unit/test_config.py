"""Unit tests for decider settings loading."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest
from pydantic import ValidationError

from swf_decider.decider.config import DeciderSettings
from swf_decider.decider.runner import HandlerErrorPolicy
from swf_decider.decider.workflow.retry import ExponentialRetryPolicy, NoRetryPolicy

_ENV_VARS = (
    "DECIDER_DOMAIN",
    "DECIDER_TASK_LIST",
    "DECIDER_IDENTITY",
    "DECIDER_LOG_LEVEL",
    "DECIDER_HANDLER_ERROR_POLICY",
    "DECIDER_RETRY_MAX_ATTEMPTS",
    "DECIDER_DURATION_SCALE",
)


@pytest.fixture(autouse=True)
def _clean_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


def test_settings_loads_from_dotenv(tmp_path: Path) -> None:
    (tmp_path / ".env").write_text(
        "\n".join(
            [
                "DECIDER_DOMAIN=orders",
                "DECIDER_TASK_LIST=orders-decisions",
                "DECIDER_LOG_LEVEL=DEBUG",
                "DECIDER_HANDLER_ERROR_POLICY=abandon",
                "",
            ]
        ),
        encoding="utf-8",
    )

    settings = DeciderSettings()

    assert settings.domain == "orders"
    assert settings.task_list == "orders-decisions"
    assert settings.log_level == "DEBUG"
    assert settings.handler_error_policy is HandlerErrorPolicy.ABANDON
    assert ":" in settings.identity


def test_settings_requires_domain(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DECIDER_TASK_LIST", "orders-decisions")

    with pytest.raises(ValidationError):
        DeciderSettings()


def test_to_config(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DECIDER_DOMAIN", "orders")
    monkeypatch.setenv("DECIDER_TASK_LIST", "orders-decisions")
    monkeypatch.setenv("DECIDER_IDENTITY", "worker-7")
    monkeypatch.setenv("DECIDER_DURATION_SCALE", "0.5")

    config = DeciderSettings().to_config()

    assert config.domain == "orders"
    assert config.task_list == "orders-decisions"
    assert config.identity == "worker-7"
    assert config.handler_error_policy is HandlerErrorPolicy.FAIL_WORKFLOW
    assert isinstance(config.retry_policy, ExponentialRetryPolicy)
    assert config.retry_policy.max_attempts == 5
    assert config.duration_transformer(timedelta(seconds=10)) == timedelta(seconds=5)


def test_to_config_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DECIDER_DOMAIN", "orders")
    monkeypatch.setenv("DECIDER_RETRY_MAX_ATTEMPTS", "0")

    settings = DeciderSettings()
    with pytest.raises(ValueError):
        settings.to_config()

    config = settings.to_config(task_list="cli-list", identity="cli-worker")
    assert config.task_list == "cli-list"
    assert config.identity == "cli-worker"
    assert isinstance(config.retry_policy, NoRetryPolicy)
