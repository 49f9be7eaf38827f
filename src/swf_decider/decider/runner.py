"""Decision task driver: poll, decide, respond.

One `Decider` owns one background thread. Each loop iteration polls for a
decision task, runs the workflow template over it with a fresh
`DecisionBuilder`, and submits the resulting batch. Failures never escape the
loop; every handled task ends in an explicit `TaskOutcome`.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum

from swf_decider.decider.errors import (
    HandlerError,
    RemoteClientError,
    UnknownWorkflowTypeError,
)
from swf_decider.decider.swf.client import SwfClient
from swf_decider.decider.workflow.context import DecisionTaskContext
from swf_decider.decider.workflow.decisions import Decision, DecisionBuilder
from swf_decider.decider.workflow.durations import (
    DurationEncoder,
    DurationTransformer,
    identity_duration,
)
from swf_decider.decider.workflow.mapper import DataMapper, JsonDataMapper
from swf_decider.decider.workflow.retry import DEFAULT_RETRY_POLICY, RetryPolicy
from swf_decider.decider.workflow.templates import TemplateRegistry

logger = logging.getLogger(__name__)


class WorkerState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    EXECUTING = "executing"
    SUBMITTING = "submitting"
    STOPPED = "stopped"


class TaskOutcome(str, Enum):
    SUBMITTED = "submitted"
    # Left for the service to time out and redeliver.
    RETRY_LATER = "retry_later"
    ABANDONED = "abandoned"


class HandlerErrorPolicy(str, Enum):
    FAIL_WORKFLOW = "fail_workflow"
    ABANDON = "abandon"


@dataclass(frozen=True, slots=True)
class DecisionTaskResult:
    outcome: TaskOutcome
    decisions: tuple[Decision, ...] = ()
    error: Exception | None = None


@dataclass(frozen=True, slots=True)
class DeciderConfig:
    domain: str
    task_list: str
    identity: str
    retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY
    duration_transformer: DurationTransformer = identity_duration
    mapper: DataMapper = field(default_factory=JsonDataMapper)
    handler_error_policy: HandlerErrorPolicy = HandlerErrorPolicy.FAIL_WORKFLOW
    poll_error_backoff_seconds: float = 5.0

    def __post_init__(self) -> None:
        if not self.domain.strip():
            raise ValueError("domain is required")
        if not self.task_list.strip():
            raise ValueError("task_list is required")
        if self.poll_error_backoff_seconds < 0:
            raise ValueError("poll_error_backoff_seconds must be >= 0")


class Decider:
    """Polls one task list and answers decision tasks with registered templates."""

    def __init__(
        self, client: SwfClient, registry: TemplateRegistry, config: DeciderConfig
    ) -> None:
        self._client = client
        self._registry = registry
        self._config = config
        self._durations = DurationEncoder(config.duration_transformer)

        self._lock = threading.Lock()
        self._stop_requested = threading.Event()
        self._state = WorkerState.IDLE
        self._thread: threading.Thread | None = None

    @property
    def config(self) -> DeciderConfig:
        return self._config

    @property
    def state(self) -> WorkerState:
        with self._lock:
            return self._state

    @property
    def is_alive(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def _set_state(self, state: WorkerState) -> None:
        with self._lock:
            self._state = state

    # -- lifecycle -----------------------------------------------------------

    def start(self) -> None:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                raise RuntimeError("Decider is already running")
            self._stop_requested.clear()
            self._thread = threading.Thread(
                target=self._run,
                name=f"decider-{self._config.task_list}",
                daemon=True,
            )
            self._thread.start()
        logger.info(
            "Decider started",
            extra={
                "domain": self._config.domain,
                "task_list": self._config.task_list,
                "identity": self._config.identity,
                "workflow_types": [str(t) for t in self._registry.workflow_types],
            },
        )

    def stop(self, timeout: float | None = None) -> None:
        """Ask the loop to stop and wait for the thread.

        The request is observed at the top of the next iteration, so a poll that
        is in flight completes first.
        """

        self._stop_requested.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        if thread is None or not thread.is_alive():
            self._set_state(WorkerState.STOPPED)
        logger.info("Decider stopped", extra={"task_list": self._config.task_list})

    def join(self, timeout: float | None = None) -> None:
        thread = self._thread
        if thread is not None:
            thread.join(timeout)

    def _run(self) -> None:
        while not self._stop_requested.is_set():
            try:
                self.poll_and_execute_task()
            except Exception:
                logger.exception(
                    "Polling for a decision task failed",
                    extra={
                        "task_list": self._config.task_list,
                        "backoff_seconds": self._config.poll_error_backoff_seconds,
                    },
                )
                self._set_state(WorkerState.IDLE)
                self._stop_requested.wait(self._config.poll_error_backoff_seconds)
        self._set_state(WorkerState.STOPPED)

    # -- one task ------------------------------------------------------------

    def poll_and_execute_task(self) -> DecisionTaskResult | None:
        """Poll once and handle the task, if any. Returns None on an empty poll.

        Poll failures propagate; the background loop logs them and backs off.
        """

        self._set_state(WorkerState.POLLING)
        context = self._client.poll_for_decision_task(
            task_list=self._config.task_list, identity=self._config.identity
        )
        if context is None:
            self._set_state(WorkerState.IDLE)
            return None
        try:
            return self.execute_task(context)
        finally:
            self._set_state(WorkerState.IDLE)

    def execute_task(self, context: DecisionTaskContext) -> DecisionTaskResult:
        self._set_state(WorkerState.EXECUTING)

        try:
            template = self._registry.resolve(context.workflow_type)
        except UnknownWorkflowTypeError as e:
            logger.error(
                "No workflow template for decision task; abandoning it",
                extra={"error": str(e), **context.log_extra()},
            )
            return DecisionTaskResult(outcome=TaskOutcome.ABANDONED, error=e)

        retry_policy = template.retry_policy or self._config.retry_policy
        builder = self._new_builder(context, retry_policy)
        try:
            template.dispatch(context, builder)
            decisions = builder.get()
        except Exception as e:
            error = HandlerError(f"{type(e).__name__}: {e}")
            error.__cause__ = e
            if self._config.handler_error_policy is HandlerErrorPolicy.ABANDON:
                logger.exception(
                    "Workflow handler failed; abandoning decision task",
                    extra=context.log_extra(),
                )
                return DecisionTaskResult(outcome=TaskOutcome.ABANDONED, error=error)

            logger.exception(
                "Workflow handler failed; failing the workflow execution",
                extra=context.log_extra(),
            )
            decisions = self._failure_decisions(context, retry_policy, e)
            return self._submit(context, decisions, error=error)

        return self._submit(context, decisions)

    def _new_builder(self, context: DecisionTaskContext, retry_policy: RetryPolicy) -> DecisionBuilder:
        return DecisionBuilder(
            context,
            mapper=self._config.mapper,
            durations=self._durations,
            retry_policy=retry_policy,
        )

    def _failure_decisions(
        self, context: DecisionTaskContext, retry_policy: RetryPolicy, error: Exception
    ) -> tuple[Decision, ...]:
        # The partially built batch is discarded.
        builder = self._new_builder(context, retry_policy)
        builder.fail_workflow(reason=type(error).__name__, details=str(error))
        return builder.get()

    def _submit(
        self,
        context: DecisionTaskContext,
        decisions: Sequence[Decision],
        *,
        error: Exception | None = None,
    ) -> DecisionTaskResult:
        self._set_state(WorkerState.SUBMITTING)
        try:
            self._client.respond_decision_task_completed(
                task_token=context.task_token, decisions=decisions
            )
        except RemoteClientError as e:
            logger.warning(
                "Decision task rejected by the service; leaving it to time out",
                extra={"error": str(e), "code": e.code, **context.log_extra()},
            )
            return DecisionTaskResult(
                outcome=TaskOutcome.RETRY_LATER, decisions=tuple(decisions), error=e
            )
        except Exception as e:
            logger.exception("Failed to submit decisions", extra=context.log_extra())
            return DecisionTaskResult(
                outcome=TaskOutcome.ABANDONED, decisions=tuple(decisions), error=e
            )

        logger.info(
            "Submitted decisions",
            extra={
                "decisions": [d.decision_type.value for d in decisions],
                **context.log_extra(),
            },
        )
        return DecisionTaskResult(
            outcome=TaskOutcome.SUBMITTED, decisions=tuple(decisions), error=error
        )
