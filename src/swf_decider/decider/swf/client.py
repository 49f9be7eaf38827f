"""Amazon SWF client wrapper for the decider.

This intentionally wraps boto3 to keep service calls out of the decision logic
and make tests easy: inject a mocked `swf` client and nothing talks to AWS.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from swf_decider.decider.errors import RemoteClientError, RemoteServiceError
from swf_decider.decider.workflow.context import DecisionTaskContext
from swf_decider.decider.workflow.decisions import Decision
from swf_decider.decider.workflow.mapper import DataMapper

logger = logging.getLogger(__name__)

# Long polls hold the connection for up to 60 seconds.
_READ_TIMEOUT_SECONDS = 70

# Error codes the service uses for requests it rejects as the caller's fault.
CLIENT_ERROR_CODES: frozenset[str] = frozenset(
    {
        "ValidationException",
        "UnknownResourceFault",
        "OperationNotPermittedFault",
        "TypeDeprecatedFault",
        "LimitExceededFault",
        "AccessDeniedException",
    }
)


def is_client_side(error: ClientError) -> bool:
    info = error.response.get("Error", {})
    if info.get("Type") == "Sender":
        return True
    return info.get("Code", "") in CLIENT_ERROR_CODES


class SwfClient:
    """Small wrapper around the boto3 `swf` client for the calls a decider needs."""

    def __init__(
        self,
        *,
        domain: str,
        region_name: str | None = None,
        swf: Any | None = None,
        mapper: DataMapper | None = None,
    ) -> None:
        if not domain:
            raise ValueError("SWF domain is required")

        self._domain = domain
        self._mapper = mapper
        if swf is not None:
            self._swf = swf
            logger.debug("Using injected SWF client")
            return

        self._swf = boto3.client(
            "swf",
            region_name=region_name,
            config=Config(read_timeout=_READ_TIMEOUT_SECONDS, retries={"max_attempts": 3}),
        )
        logger.info("Created SWF client", extra={"domain": domain, "region": region_name})

    @property
    def domain(self) -> str:
        return self._domain

    def poll_for_decision_task(
        self, *, task_list: str, identity: str, page_size: int = 1000
    ) -> DecisionTaskContext | None:
        """Long-poll for one decision task and assemble its full history.

        Returns None when the poll timed out without a task.

        Raises:
            RemoteClientError / RemoteServiceError on failure.
        """

        request: dict[str, Any] = {
            "domain": self._domain,
            "taskList": {"name": task_list},
            "identity": identity,
            "maximumPageSize": page_size,
            "reverseOrder": False,
        }
        first = self._call("poll_for_decision_task", **request)
        if not first.get("taskToken"):
            return None

        task = dict(first)
        events = list(first.get("events") or [])
        next_page = first.get("nextPageToken")
        while next_page:
            page = self._call("poll_for_decision_task", nextPageToken=next_page, **request)
            events.extend(page.get("events") or [])
            next_page = page.get("nextPageToken")
        task["events"] = events

        logger.debug(
            "Polled decision task",
            extra={
                "workflow_type": (task.get("workflowType") or {}).get("name"),
                "events": len(events),
            },
        )
        return DecisionTaskContext.from_swf(task, mapper=self._mapper)

    def respond_decision_task_completed(
        self,
        *,
        task_token: str,
        decisions: Sequence[Decision],
        execution_context: str | None = None,
    ) -> None:
        request: dict[str, Any] = {
            "taskToken": task_token,
            "decisions": [d.to_swf() for d in decisions],
        }
        if execution_context is not None:
            request["executionContext"] = execution_context
        self._call("respond_decision_task_completed", **request)

    def _call(self, operation: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response: dict[str, Any] = getattr(self._swf, operation)(**kwargs)
        except ClientError as e:
            info = e.response.get("Error", {})
            code = str(info.get("Code", "Unknown"))
            message = str(info.get("Message", ""))
            if is_client_side(e):
                raise RemoteClientError(code=code, message=message) from e
            raise RemoteServiceError(f"{operation} failed: {code}: {message}") from e
        except BotoCoreError as e:
            raise RemoteServiceError(f"{operation} failed: {e}") from e
        return response
