"""Exception hierarchy for the decider.

Configuration problems fail fast at construction time. Everything raised while a
decision task is being handled is turned into an explicit outcome by the runner,
so callers never need to inspect exception subclasses to choose recovery.
"""

from __future__ import annotations

from dataclasses import dataclass


class DeciderError(Exception):
    """Base class for all decider errors."""


class ConfigurationError(DeciderError):
    """Invalid template/registry/settings configuration."""


@dataclass(frozen=True, slots=True)
class UnknownWorkflowTypeError(ConfigurationError):
    """Raised when no template is registered for a polled workflow type."""

    name: str
    version: str

    def __str__(self) -> str:
        return f"No workflow template registered for {self.name!r} version {self.version!r}"


class DecodeError(DeciderError):
    """A payload (input, result, marker details, control) could not be decoded."""


class DecisionError(DeciderError, ValueError):
    """A decision could not be added to the batch."""


class DuplicateDecisionIdError(DecisionError):
    pass


class ReservedMarkerNameError(DecisionError):
    pass


class HandlerError(DeciderError):
    """Wraps any exception raised by user code while building decisions."""


class RemoteError(DeciderError):
    """Base class for failures talking to the workflow service."""


@dataclass(frozen=True, slots=True)
class RemoteClientError(RemoteError):
    """The service rejected the request as a client-side problem.

    These are logged and the task is left to time out and be redelivered.
    """

    code: str
    message: str

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class RemoteServiceError(RemoteError):
    """Any other failure talking to the service (server side, network, ...)."""
