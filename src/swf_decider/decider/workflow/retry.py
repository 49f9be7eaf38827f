"""Activity retries with backoff, derived entirely from history.

The decider keeps no local state between polls, so the attempt counter is
re-derived on every replay:

1. When an activity fails, `retry_activity` reads the latest retry marker of the
   activity's retry chain (default 0), adds one and asks the policy for a delay.
   If the policy allows another try, a retry timer is started whose control
   payload carries the new attempt.
2. When the retry timer fires, the attempt is read back from the timer's own
   control payload, recorded as the chain's retry marker, and the activity is
   scheduled again from its original `ActivityTaskScheduled` attributes.

A chain is identified by the scheduled event id of its first invocation. A
re-scheduled activity carries that id and its attempt in its activity id, so
parallel chains of the same activity type stay apart.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Protocol

from swf_decider.decider.errors import DecisionError
from .controls import RetryControl, retry_chain_root, retry_marker_name
from .events import ActivityType, EventType, HistoryEvent

if TYPE_CHECKING:
    from .context import DecisionTaskContext
    from .decisions import DecisionBuilder

logger = logging.getLogger(__name__)


class RetryPolicy(Protocol):
    """Maps a 1-based attempt number to the delay before that attempt.

    Returns None once retries are exhausted.
    """

    def duration_to_next_try(self, attempt: int) -> timedelta | None: ...


@dataclass(frozen=True, slots=True)
class NoRetryPolicy:
    def duration_to_next_try(self, attempt: int) -> timedelta | None:
        return None


@dataclass(frozen=True, slots=True)
class FixedDelayRetryPolicy:
    delay: timedelta = timedelta(seconds=30)
    max_attempts: int = 3

    def duration_to_next_try(self, attempt: int) -> timedelta | None:
        if attempt < 1 or attempt > self.max_attempts:
            return None
        return self.delay


@dataclass(frozen=True, slots=True)
class ExponentialRetryPolicy:
    """`initial_delay * multiplier ** (attempt - 1)`, capped at `max_delay`."""

    initial_delay: timedelta = timedelta(seconds=5)
    multiplier: float = 2.0
    max_delay: timedelta = timedelta(minutes=10)
    max_attempts: int = 5

    def __post_init__(self) -> None:
        if self.multiplier < 1.0:
            raise ValueError("multiplier must be >= 1")
        if self.max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")

    def duration_to_next_try(self, attempt: int) -> timedelta | None:
        if attempt < 1 or attempt > self.max_attempts:
            return None
        seconds = self.initial_delay.total_seconds() * (self.multiplier ** (attempt - 1))
        return min(timedelta(seconds=seconds), self.max_delay)


DEFAULT_RETRY_POLICY: RetryPolicy = ExponentialRetryPolicy()


class RetryController:
    def __init__(
        self, context: DecisionTaskContext, *, default_policy: RetryPolicy | None = None
    ) -> None:
        self._context = context
        self._default_policy = default_policy or DEFAULT_RETRY_POLICY

    def chain_root(self, scheduled_event_id: int) -> int:
        """Return the scheduled event id that started this activity's retry chain."""

        scheduled = self._context.event(scheduled_event_id)
        if scheduled is None or scheduled.kind is not EventType.ACTIVITY_TASK_SCHEDULED:
            return scheduled_event_id
        root = retry_chain_root(scheduled.get_str("activityId") or "")
        return scheduled_event_id if root is None else root

    def attempts_so_far(self, activity_name: str, root_scheduled_event_id: int) -> int:
        marker_name = retry_marker_name(activity_name, root_scheduled_event_id)
        return int(self._context.marker_details(marker_name, int, default=0))

    def retry_activity(
        self,
        builder: DecisionBuilder,
        scheduled_event_id: int,
        activity: ActivityType | str | None = None,
        *,
        policy: RetryPolicy | None = None,
    ) -> RetryControl | None:
        """Start a retry timer for the activity scheduled at `scheduled_event_id`.

        Returns the retry control written into the timer, or None when the policy
        says retries are exhausted (no decision is added; callers usually fail the
        workflow then).
        """

        activity_name = self._activity_name(scheduled_event_id, activity)
        root = self.chain_root(scheduled_event_id)
        attempt = self.attempts_so_far(activity_name, root) + 1

        delay = (policy or self._default_policy).duration_to_next_try(attempt)
        if delay is None:
            logger.info(
                "Retries exhausted",
                extra={"activity": activity_name, "attempt": attempt, **self._context.log_extra()},
            )
            return None

        control = RetryControl(
            activity_name=activity_name,
            scheduled_event_id=scheduled_event_id,
            root_scheduled_event_id=root,
            attempt=attempt,
        )
        builder.start_retry_timer(control, delay)
        logger.info(
            "Scheduled activity retry",
            extra={
                "activity": activity_name,
                "attempt": attempt,
                "delay_seconds": delay.total_seconds(),
                **self._context.log_extra(),
            },
        )
        return control

    def reschedule(self, builder: DecisionBuilder, timer_fired: HistoryEvent) -> RetryControl:
        """Handle a fired retry timer: record the attempt and run the activity again."""

        started_id = timer_fired.get_int("startedEventId")
        started = self._context.event(started_id) if started_id is not None else None
        if started is None or started.kind is not EventType.TIMER_STARTED:
            raise DecisionError(
                f"Cannot find the TimerStarted event of retry timer {timer_fired.get_str('timerId')!r}"
            )
        control: RetryControl = self._context.decode(started.get_str("control"), RetryControl)

        scheduled = self._context.event(control.scheduled_event_id)
        if scheduled is None or scheduled.kind is not EventType.ACTIVITY_TASK_SCHEDULED:
            raise DecisionError(
                f"Cannot find scheduled event {control.scheduled_event_id} to retry "
                f"{control.activity_name!r}"
            )

        builder.record_retry_marker(control)
        builder.schedule_activity_task_from(scheduled.attributes, activity_id=control.activity_id)
        return control

    def _activity_name(self, scheduled_event_id: int, activity: ActivityType | str | None) -> str:
        if isinstance(activity, str):
            return activity
        if activity is not None:
            return activity.name
        scheduled = self._context.event(scheduled_event_id)
        if scheduled is None or scheduled.kind is not EventType.ACTIVITY_TASK_SCHEDULED:
            raise DecisionError(f"Event {scheduled_event_id} is not an ActivityTaskScheduled event")
        activity_type = scheduled.get("activityType")
        if not isinstance(activity_type, dict) or not activity_type.get("name"):
            raise DecisionError(f"Event {scheduled_event_id} has no activity type")
        return str(activity_type["name"])
