"""Unit tests for structured JSON logging."""

from __future__ import annotations

import json
import logging
import sys

from swf_decider.decider.logging import JsonFormatter, configure_logging


def test_json_formatter_nests_extra_fields() -> None:
    record = logging.LogRecord("swf_decider.test", logging.INFO, __file__, 1, "Submitted %s", ("x",), None)
    record.workflow_id = "wf-1"

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "Submitted x"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "swf_decider.test"
    assert payload["extra"] == {"workflow_id": "wf-1"}


def test_json_formatter_includes_exceptions() -> None:
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        record = logging.LogRecord("t", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())

    payload = json.loads(JsonFormatter().format(record))
    assert "RuntimeError: boom" in payload["exception"]


def test_configure_logging_replaces_handlers_and_quiets_botocore() -> None:
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        configure_logging("debug")
        configure_logging("debug")

        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JsonFormatter)
        assert root.level == logging.DEBUG
        assert logging.getLogger("botocore").level == logging.INFO
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
        for handler in saved_handlers:
            root.addHandler(handler)
        root.setLevel(saved_level)
