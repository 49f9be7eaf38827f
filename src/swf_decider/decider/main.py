"""CLI entrypoint for running a decider worker."""

from __future__ import annotations

import argparse
import importlib
import logging
import sys

from pydantic import ValidationError

from swf_decider import __version__
from swf_decider.decider.config import DeciderSettings
from swf_decider.decider.errors import ConfigurationError
from swf_decider.decider.logging import configure_logging
from swf_decider.decider.runner import Decider, DeciderConfig, WorkerState
from swf_decider.decider.swf.client import SwfClient
from swf_decider.decider.workflow.templates import TemplateRegistry, WorkflowTemplate

logger = logging.getLogger(__name__)


def load_registry(reference: str) -> TemplateRegistry:
    """Load templates from a `package.module:attribute` reference.

    The attribute may be a `TemplateRegistry`, a single `WorkflowTemplate`, an
    iterable of templates, or a zero-argument callable returning any of those.
    """

    module_name, sep, attribute = reference.partition(":")
    if not sep or not module_name or not attribute:
        raise ConfigurationError(f"Templates must be given as 'module:attribute', got {reference!r}")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import templates module {module_name!r}: {e}") from e

    try:
        target = getattr(module, attribute)
    except AttributeError as e:
        raise ConfigurationError(f"Module {module_name!r} has no attribute {attribute!r}") from e

    if callable(target) and not isinstance(target, (TemplateRegistry, WorkflowTemplate)):
        target = target()

    if isinstance(target, TemplateRegistry):
        return target
    if isinstance(target, WorkflowTemplate):
        return TemplateRegistry([target])
    try:
        templates = list(target)
    except TypeError as e:
        raise ConfigurationError(
            f"{reference!r} is not a TemplateRegistry, WorkflowTemplate or iterable of templates"
        ) from e
    if not all(isinstance(t, WorkflowTemplate) for t in templates):
        raise ConfigurationError(f"{reference!r} contains objects that are not WorkflowTemplates")
    return TemplateRegistry(templates)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="swf-decider",
        description="Amazon SWF decider driven by declarative workflow templates",
    )
    parser.add_argument("--version", action="version", version=f"swf-decider {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Poll a task list and answer decision tasks")
    run.add_argument(
        "--templates",
        required=True,
        help="Workflow templates as 'package.module:attribute'",
    )
    run.add_argument(
        "--task-list",
        default=None,
        help="Decision task list to poll (overrides DECIDER_TASK_LIST)",
    )
    run.add_argument(
        "--identity",
        default=None,
        help="Worker identity reported to the service (overrides DECIDER_IDENTITY)",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = DeciderSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your environment or .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level)

    if args.command == "run":
        try:
            registry = load_registry(args.templates)
            config = settings.to_config(task_list=args.task_list, identity=args.identity)
        except (ConfigurationError, ValueError) as e:
            print(f"Configuration error: {e}", file=sys.stderr)
            return 2
        return _run(settings, registry, config)

    parser.error(f"Unknown command: {args.command}")
    return 2


def _run(settings: DeciderSettings, registry: TemplateRegistry, config: DeciderConfig) -> int:
    decider: Decider | None = None
    try:
        client = SwfClient(domain=config.domain, region_name=settings.aws_region, mapper=config.mapper)
        decider = Decider(client, registry, config)
        decider.start()
        # Join in short slices so Ctrl+C is delivered promptly.
        while decider.is_alive and decider.state is not WorkerState.STOPPED:
            decider.join(timeout=1.0)
        if decider.state is not WorkerState.STOPPED:
            logger.error("Decider thread exited unexpectedly", extra={"state": decider.state.value})
            return 1
        return 0
    except KeyboardInterrupt:
        logger.info("Interrupted; stopping decider")
        if decider is not None:
            decider.stop()
        return 0
    except Exception:
        logger.exception("Decider failed")
        return 1
