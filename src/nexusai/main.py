"""
Command-line entry point for running, resuming and pausing daily pipelines.

Stage handlers live outside this package. They are loaded from a
``module:attribute`` reference (``--stages`` or ``NEXUS_STAGES``) naming either
a ``StageRegistry``, a mapping of stage name to handler, or a zero-argument
callable returning one of those. ``StageRegistry.from_functions`` builds a
registry whose stages run inside the stage executor.
"""

import argparse
import asyncio
import importlib
import json
import os
import sys
from collections.abc import Mapping

from opentelemetry.sdk.metrics import MeterProvider

from .config.container import setup_container
from .config.settings import Settings, get_settings
from .core.pipeline import PipelineResult
from .core.stages import StageRegistry
from .errors import NexusError
from .observability.logging import get_logger, setup_logging
from .observability.metrics import setup_metrics
from .observability.tracing import get_tracing_manager, setup_tracing

logger = get_logger(__name__)


def load_stage_registry(reference: str) -> StageRegistry:
    """Resolve ``module:attribute`` into a ``StageRegistry``."""
    module_name, _, attribute = reference.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"Stage reference must look like 'module:attribute', got {reference!r}")

    target = getattr(importlib.import_module(module_name), attribute)
    if callable(target) and not isinstance(target, StageRegistry | Mapping):
        target = target()
    if isinstance(target, StageRegistry):
        return target
    if isinstance(target, Mapping):
        return StageRegistry(target)
    raise TypeError(f"{reference} is neither a StageRegistry nor a stage mapping")


def init_observability(settings: Settings) -> None:
    obs = settings.observability
    setup_logging(obs.log_level)

    if obs.enable_metrics:
        provider = MeterProvider()
        setup_metrics(provider.get_meter(obs.service_name, obs.service_version))

    if obs.enable_tracing:
        setup_tracing(obs.service_name, obs.service_version, obs.otlp_endpoint)
        logger.info("Tracing initialized", otlp_endpoint=obs.otlp_endpoint)


def _result_summary(result: PipelineResult) -> dict:
    return {
        "success": result.success,
        "pipeline_id": result.pipeline_id,
        "status": result.status.value,
        "completed_stages": result.completed_stages,
        "skipped_stages": result.skipped_stages,
        "quality_context": result.quality_context.to_dict(),
        "total_duration_ms": round(result.total_duration_ms, 1),
        "total_cost": result.total_cost,
        "error": result.error,
        "queued_for_date": result.queued_for_date,
        "quality_decision": result.quality_decision.to_dict() if result.quality_decision else None,
    }


async def run_command(args: argparse.Namespace, settings: Settings) -> dict:
    container = setup_container(settings)

    async with container.lifespan():
        if args.command == "pause":
            state = await container.require("state_manager").pause(args.date, args.reason)
            return {"pipeline_id": args.date, "status": state.status.value}

        container.register_singleton("stage_registry", load_stage_registry(args.stages))
        runner = container.require("pipeline_runner")

        if args.command == "resume":
            result = await runner.resume(args.date, args.from_stage)
        else:
            pipeline_id = args.date or container.require("topic_queue").today()
            result = await runner.execute(pipeline_id)

        return _result_summary(result)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="nexusai", description="Daily content pipeline")
    parser.add_argument(
        "--stages",
        default=os.environ.get("NEXUS_STAGES"),
        help="Stage handlers as module:attribute (default: $NEXUS_STAGES)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Execute today's pipeline from the first stage")
    run.add_argument("--date", default=None, help="Pipeline id (YYYY-MM-DD); defaults to today")

    resume = sub.add_parser("resume", help="Resume a failed or paused pipeline")
    resume.add_argument("date", help="Pipeline id (YYYY-MM-DD)")
    resume.add_argument("--from-stage", default=None, help="Stage to resume from")

    pause = sub.add_parser("pause", help="Pause a pipeline for human review")
    pause.add_argument("date", help="Pipeline id (YYYY-MM-DD)")
    pause.add_argument("--reason", default="Paused for human review")

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if args.command != "pause" and not args.stages:
        print("error: --stages or NEXUS_STAGES is required", file=sys.stderr)
        return 2

    settings = get_settings()
    init_observability(settings)

    try:
        summary = asyncio.run(run_command(args, settings))
    except NexusError as e:
        logger.error("Pipeline command failed", error_code=e.code, severity=e.severity.value)
        print(json.dumps({"error": e.to_dict()}, indent=2, default=str))
        return 1
    finally:
        get_tracing_manager().shutdown()

    print(json.dumps(summary, indent=2, default=str))
    return 0 if summary.get("success", True) else 1


def cli_main():
    """CLI entry point."""
    try:
        sys.exit(main(sys.argv[1:]))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    cli_main()
