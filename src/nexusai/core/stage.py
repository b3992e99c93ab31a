"""
Stage executor: the uniform envelope around one stage function.

Features:
- Wall-clock timing, cost capture and quality measurements in one place
- Per-stage timeout mapped onto the error taxonomy
- Unclassified exceptions become CRITICAL before leaving the stage
- No retry or fallback here; stages that need them call the executors
  themselves
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Generic, TypeVar

from ..errors import ErrorCode, ErrorSeverity, NexusError
from ..observability.logging import get_logger
from ..observability.metrics import get_metrics_collector
from ..observability.probe import probe
from ..observability.tracing import get_tracing_manager
from ..quality.context import QualityContext
from .costs import CostSummary, CostTracker
from .fallback import FallbackResult, ProviderTier

logger = get_logger(__name__)

In = TypeVar("In")
Out = TypeVar("Out")


@dataclass
class StageConfig:
    timeout_ms: int | None = 300_000
    retries: int = 3
    options: dict[str, Any] = field(default_factory=dict)


@dataclass
class ProviderInfo:
    name: str
    tier: ProviderTier = ProviderTier.PRIMARY
    attempts: int = 1

    @classmethod
    def unknown(cls) -> "ProviderInfo":
        return cls("unknown", ProviderTier.PRIMARY, 1)

    @classmethod
    def from_fallback(cls, outcome: FallbackResult) -> "ProviderInfo":
        """Describe the provider that served a fallback-executor call."""
        return cls(outcome.provider, outcome.tier, max(len(outcome.attempts), 1))

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "tier": self.tier.value, "attempts": self.attempts}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProviderInfo":
        return cls(data["name"], ProviderTier(data.get("tier", "primary")), data.get("attempts", 1))


@dataclass
class QualityMetrics:
    stage: str
    measurements: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return {"stage": self.stage, "measurements": self.measurements, "timestamp": self.timestamp}


@dataclass
class StageInput(Generic[In]):
    pipeline_id: str
    previous_stage: str | None
    data: In
    config: StageConfig = field(default_factory=StageConfig)
    quality_context: QualityContext | None = None


@dataclass
class StageOutput(Generic[Out]):
    success: bool
    data: Out
    quality: QualityMetrics
    cost: CostSummary
    duration_ms: float
    provider: ProviderInfo
    artifacts: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class StageReport(Generic[Out]):
    """What a stage function returns to the executor.

    Stage functions may also return their payload directly; it is then
    treated as ``StageReport(data=payload)``.
    """

    data: Out
    provider: ProviderInfo | None = None
    measurements: dict[str, Any] = field(default_factory=dict)
    artifacts: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class StageContext:
    """Handed to the stage function next to its input data."""

    pipeline_id: str
    stage: str
    config: StageConfig
    tracker: CostTracker
    previous_stage: str | None = None
    quality_context: QualityContext | None = None


class QualityStatus(str, Enum):
    PASS = "PASS"
    WARN = "WARN"
    FAIL = "FAIL"


@dataclass
class QualityCheck:
    status: QualityStatus
    reason: str = ""
    metrics: dict[str, Any] = field(default_factory=dict)


StageFn = Callable[[Any, StageContext], Awaitable[Any]]
QualityCheckFn = Callable[[str, StageReport], QualityCheck]


def _timeout_error(stage: str, timeout_ms: int) -> NexusError:
    return NexusError.retryable_error(
        ErrorCode.STAGE_TIMEOUT,
        f"Stage {stage} exceeded its {timeout_ms}ms timeout",
        stage,
        {"timeout_ms": timeout_ms},
    )


async def execute_stage(
    stage_input: StageInput,
    stage: str,
    execute_fn: StageFn,
    *,
    quality_check: QualityCheckFn | None = None,
    timeout_severity: ErrorSeverity = ErrorSeverity.RETRYABLE,
) -> StageOutput:
    """Run one stage function inside the standard envelope.

    Args:
        stage_input: pipeline id, previous stage, payload and config
        stage: stage name
        execute_fn: ``(data, ctx) -> StageReport | payload``
        quality_check: optional per-stage check; FAIL raises DEGRADED
            NEXUS_QUALITY_GATE_FAIL, WARN becomes a warning
        timeout_severity: severity of NEXUS_STAGE_TIMEOUT for this stage

    Raises:
        NexusError: classified failures pass through, others become CRITICAL
    """
    started = time.perf_counter()
    tracker = CostTracker(stage_input.pipeline_id, stage)
    ctx = StageContext(
        pipeline_id=stage_input.pipeline_id,
        stage=stage,
        config=stage_input.config,
        tracker=tracker,
        previous_stage=stage_input.previous_stage,
        quality_context=stage_input.quality_context,
    )
    metrics = get_metrics_collector()

    logger.info(
        "Stage started",
        pipeline_id=stage_input.pipeline_id,
        stage=stage,
        previous_stage=stage_input.previous_stage,
    )

    try:
        with get_tracing_manager().span(f"stage.{stage}", {"pipeline_id": stage_input.pipeline_id}):
            with probe(f"stage.{stage}", pipeline_id=stage_input.pipeline_id):
                timeout_ms = stage_input.config.timeout_ms
                try:
                    if timeout_ms:
                        raw = await asyncio.wait_for(
                            execute_fn(stage_input.data, ctx), timeout=timeout_ms / 1000.0
                        )
                    else:
                        raw = await execute_fn(stage_input.data, ctx)
                except TimeoutError as e:
                    error = _timeout_error(stage, timeout_ms)
                    error.severity = ErrorSeverity(timeout_severity)
                    raise error from e

        report = raw if isinstance(raw, StageReport) else StageReport(data=raw)
        warnings = list(report.warnings)

        if quality_check is not None:
            check = quality_check(stage, report)
            if check.status is QualityStatus.FAIL:
                raise NexusError.degraded(
                    ErrorCode.QUALITY_GATE_FAIL,
                    check.reason or f"Quality check failed for {stage}",
                    stage,
                    {"metrics": check.metrics},
                )
            if check.status is QualityStatus.WARN:
                warnings.append(check.reason or f"{stage}-quality-warning")

        duration_ms = (time.perf_counter() - started) * 1000
        provider = report.provider or ProviderInfo.unknown()
        cost = tracker.summary()

        output = StageOutput(
            success=True,
            data=report.data,
            quality=QualityMetrics(stage, dict(report.measurements)),
            cost=cost,
            duration_ms=duration_ms,
            provider=provider,
            artifacts=list(report.artifacts),
            warnings=warnings,
        )

        metrics.record_stage(stage, duration_ms / 1000, True, provider.tier.value)
        logger.info(
            "Stage completed",
            pipeline_id=stage_input.pipeline_id,
            stage=stage,
            duration_ms=round(duration_ms, 1),
            provider=provider.name,
            tier=provider.tier.value,
            cost=cost.total_cost,
            warnings=len(warnings),
        )
        return output

    except Exception as e:
        error = NexusError.from_error(e, stage)
        duration_ms = (time.perf_counter() - started) * 1000
        metrics.record_stage(stage, duration_ms / 1000, False)
        logger.error(
            "Stage failed",
            pipeline_id=stage_input.pipeline_id,
            stage=stage,
            error_code=error.code,
            severity=error.severity.value,
            duration_ms=round(duration_ms, 1),
        )
        if error is e:
            raise
        raise error from e
