from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum

from .durations import DurationLike


class ChildPolicy(str, Enum):
    TERMINATE = "TERMINATE"
    REQUEST_CANCEL = "REQUEST_CANCEL"
    ABANDON = "ABANDON"


@dataclass(frozen=True, slots=True)
class ActivityOptions:
    """Per-invocation overrides for a scheduled activity.

    Timeouts left as None are sent as "NONE" (no timeout) once options are given;
    omit options altogether to keep the defaults registered with the activity type.
    """

    task_list: str | None = None
    task_priority: int | None = None
    control: str | None = None
    heartbeat_timeout: DurationLike | None = None
    schedule_to_close_timeout: DurationLike | None = None
    schedule_to_start_timeout: DurationLike | None = None
    start_to_close_timeout: DurationLike | None = None


@dataclass(frozen=True, slots=True)
class WorkflowOptions:
    """Options for child workflows and continue-as-new.

    Unlike activity timeouts, None here means "use the registered default".
    """

    task_list: str | None = None
    task_priority: int | None = None
    execution_start_to_close_timeout: DurationLike | None = None
    task_start_to_close_timeout: DurationLike | None = None
    child_policy: ChildPolicy | None = None
    tag_list: Sequence[str] = field(default_factory=tuple)
    lambda_role: str | None = None
