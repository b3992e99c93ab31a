"""
nexusai - resilience core of a daily content-production pipeline.

A fixed sequence of stages (news sourcing through publishing and
notifications) runs once per day. This package keeps that run alive when
external providers misbehave:

- errors carry a severity that decides between retry, provider fallback,
  degraded continuation and halting the run
- the pipeline state is persisted stage by stage so a failed or paused run
  resumes from any stage
- topics of failed runs are queued for the next day; conditions needing an
  operator go to a human review queue
- a quality gate turns the run's quality signals into a publish decision

Quick Start:
    >>> from nexusai.config import setup_container
    >>> from nexusai.core import StageRegistry
    >>>
    >>> container = setup_container()
    >>> registry = StageRegistry.from_functions(stage_functions)
    >>> container.register_singleton("stage_registry", registry)
    >>> async with container.lifespan():
    ...     result = await container.require("pipeline_runner").execute("2026-01-20")
    >>> result.status, result.quality_decision.decision

Configuration:
    - NEXUS_STORAGE__BACKEND=local|memory|s3
    - NEXUS_PIPELINE__TIMEZONE=UTC
    - NEXUS_OBSERVABILITY__LOG_LEVEL=INFO
"""

__version__ = "0.1.0"

from .config.settings import Settings
from .core.pipeline import PipelineResult, PipelineRunner
from .errors import ErrorCode, ErrorSeverity, NexusError

__all__ = [
    "ErrorCode",
    "ErrorSeverity",
    "NexusError",
    "PipelineResult",
    "PipelineRunner",
    "Settings",
]
