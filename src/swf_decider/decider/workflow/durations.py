from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import timedelta

logger = logging.getLogger(__name__)

NO_TIMEOUT = "NONE"

DurationLike = timedelta | int | float

DurationTransformer = Callable[[timedelta], timedelta]


def identity_duration(duration: timedelta) -> timedelta:
    return duration


def scale_durations(factor: float) -> DurationTransformer:
    """Return a transformer multiplying every duration by `factor`.

    Mostly useful to shrink timers in test and staging environments.
    """

    if factor < 0:
        raise ValueError("duration scale factor must be >= 0")

    def _scale(duration: timedelta) -> timedelta:
        return duration * factor

    return _scale


def to_timedelta(value: DurationLike) -> timedelta:
    if isinstance(value, timedelta):
        duration = value
    elif isinstance(value, bool):
        raise TypeError("duration must be a timedelta or a number of seconds, not bool")
    elif isinstance(value, (int, float)):
        duration = timedelta(seconds=value)
    else:
        raise TypeError(f"duration must be a timedelta or a number of seconds, not {type(value).__name__}")
    if duration < timedelta(0):
        raise ValueError(f"duration must not be negative: {duration}")
    return duration


def encode_seconds(duration: timedelta) -> str:
    """Wire encoding: whole seconds as a string."""

    return str(int(duration.total_seconds()))


class DurationEncoder:
    """Normalize durations through a transformer and encode them for the wire."""

    def __init__(self, transformer: DurationTransformer = identity_duration) -> None:
        self._transform = transformer

    def required(self, value: DurationLike | None, *, label: str) -> str:
        """Encode a duration the service requires (e.g. a timer's fire timeout).

        A missing value is replaced by zero rather than failing the whole batch.
        """

        if value is None:
            logger.warning(
                "Required duration was null, using a zero duration instead", extra={"label": label}
            )
            return encode_seconds(self._transform(timedelta(0)))
        return encode_seconds(self._transform(to_timedelta(value)))

    def optional(self, value: DurationLike | None) -> str:
        """Encode an optional timeout; None means "no timeout"."""

        if value is None:
            return NO_TIMEOUT
        return encode_seconds(self._transform(to_timedelta(value)))
