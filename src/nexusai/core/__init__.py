"""Executors, stage envelope and the pipeline state machine."""

from .costs import CostSummary, CostTracker, validate_pipeline_id
from .fallback import FallbackAttempt, FallbackResult, ProviderResult, ProviderTier, with_fallback
from .pipeline import PipelineResult, PipelineRunner, is_fatal
from .retry import RetryOptions, RetryResult, with_retry
from .stage import (
    ProviderInfo,
    QualityCheck,
    QualityMetrics,
    QualityStatus,
    StageConfig,
    StageContext,
    StageInput,
    StageOutput,
    StageReport,
    execute_stage,
)
from .stages import (
    STAGE_ORDER,
    STAGE_POLICY,
    Stage,
    StagePolicy,
    StageRegistry,
    parse_stage,
    stage_handler,
)
from .state import PipelineState, PipelineStateManager, RunStatus, StageRecord, StageStatus

__all__ = [
    "CostSummary",
    "CostTracker",
    "validate_pipeline_id",
    "FallbackAttempt",
    "FallbackResult",
    "ProviderResult",
    "ProviderTier",
    "with_fallback",
    "PipelineResult",
    "PipelineRunner",
    "is_fatal",
    "RetryOptions",
    "RetryResult",
    "with_retry",
    "ProviderInfo",
    "QualityCheck",
    "QualityMetrics",
    "QualityStatus",
    "StageConfig",
    "StageContext",
    "StageInput",
    "StageOutput",
    "StageReport",
    "execute_stage",
    "STAGE_ORDER",
    "STAGE_POLICY",
    "Stage",
    "StagePolicy",
    "StageRegistry",
    "parse_stage",
    "stage_handler",
    "PipelineState",
    "PipelineStateManager",
    "RunStatus",
    "StageRecord",
    "StageStatus",
]
