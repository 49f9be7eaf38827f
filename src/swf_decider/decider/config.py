"""Configuration for the decider worker.

Configuration is loaded from:
- environment variables (prefixed with `DECIDER_`)
- and a local `.env` file (if present)

AWS credentials and the default region follow the usual boto3 chain
(`AWS_PROFILE`, `AWS_ACCESS_KEY_ID`, ...); only an explicit region override
lives here.
"""

from __future__ import annotations

import os
import socket
from datetime import timedelta

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from swf_decider.decider.runner import DeciderConfig, HandlerErrorPolicy
from swf_decider.decider.workflow.durations import identity_duration, scale_durations
from swf_decider.decider.workflow.retry import ExponentialRetryPolicy, NoRetryPolicy, RetryPolicy


def default_identity() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


class DeciderSettings(BaseSettings):
    """Settings for a decider process.

    Environment variables:
    - DECIDER_DOMAIN      (required)
    - DECIDER_TASK_LIST   (required unless given on the command line)
    - DECIDER_IDENTITY    (optional, defaults to `<hostname>:<pid>`)
    - DECIDER_AWS_REGION  (optional)
    - DECIDER_LOG_LEVEL   (optional)
    - DECIDER_RETRY_*, DECIDER_DURATION_SCALE, DECIDER_HANDLER_ERROR_POLICY (optional)

    Notes:
        Tests can point at a specific env file with
        `DeciderSettings(_env_file=path_to_env)`.
    """

    domain: str = Field(default="", description="SWF domain to poll")
    task_list: str = Field(default="", description="Decision task list to poll")
    identity: str = Field(
        default_factory=default_identity,
        description="Identity reported to the service with every poll",
    )
    aws_region: str | None = Field(default=None, description="AWS region override")

    log_level: str = Field(default="INFO", description="Root logging level")

    handler_error_policy: HandlerErrorPolicy = Field(
        default=HandlerErrorPolicy.FAIL_WORKFLOW,
        description="What to do when a workflow handler raises: fail_workflow | abandon",
    )

    retry_max_attempts: int = Field(default=5, ge=0)
    retry_initial_delay_seconds: float = Field(default=5.0, ge=0)
    retry_backoff_multiplier: float = Field(default=2.0, ge=1.0)
    retry_max_delay_seconds: float = Field(default=600.0, ge=0)

    duration_scale: float = Field(
        default=1.0,
        ge=0,
        description="Multiplier applied to every timer and timeout (handy in staging)",
    )
    poll_error_backoff_seconds: float = Field(default=5.0, ge=0)

    model_config = SettingsConfigDict(
        env_prefix="DECIDER_",
        env_file=".env",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _require_domain(self) -> DeciderSettings:
        # The task list may still come from the command line; DeciderConfig checks it.
        if not self.domain.strip():
            raise ValueError("DECIDER_DOMAIN is required")
        return self

    @property
    def retry_policy(self) -> RetryPolicy:
        if self.retry_max_attempts == 0:
            return NoRetryPolicy()
        return ExponentialRetryPolicy(
            initial_delay=timedelta(seconds=self.retry_initial_delay_seconds),
            multiplier=self.retry_backoff_multiplier,
            max_delay=timedelta(seconds=self.retry_max_delay_seconds),
            max_attempts=self.retry_max_attempts,
        )

    def to_config(self, *, task_list: str | None = None, identity: str | None = None) -> DeciderConfig:
        """Build the runtime config; CLI flags may override the task list and identity."""

        return DeciderConfig(
            domain=self.domain,
            task_list=task_list or self.task_list,
            identity=identity or self.identity,
            retry_policy=self.retry_policy,
            duration_transformer=(
                identity_duration
                if self.duration_scale == 1.0
                else scale_durations(self.duration_scale)
            ),
            handler_error_policy=self.handler_error_policy,
            poll_error_backoff_seconds=self.poll_error_backoff_seconds,
        )
