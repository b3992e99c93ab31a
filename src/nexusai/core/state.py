"""
Persisted pipeline state.

Store layout:

- ``pipelines/{date}``: run summary (status, current stage, start time,
  total cost, quality decision)
- ``pipelines/{date}_state``: full state with the per-stage record map and
  the quality context
- ``pipeline-outputs/{date}_{stage}``: a stage's output payload, kept so a
  resumed run can feed it to the next stage

Runs are never deleted; the state documents double as the audit trail.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from ..errors import ErrorCode, NexusError
from ..observability.logging import get_logger
from ..quality.context import QualityContext
from ..storage.documents import DocumentStore
from .stage import ProviderInfo
from .stages import STAGE_ORDER

logger = get_logger(__name__)

PIPELINES_COLLECTION = "pipelines"
OUTPUTS_COLLECTION = "pipeline-outputs"


def utc_now() -> str:
    return datetime.now(UTC).isoformat()


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"


RESUMABLE_STATUSES = frozenset({RunStatus.FAILED, RunStatus.PAUSED})


class StageStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class StageRecord:
    status: StageStatus
    start_time: str | None = None
    end_time: str | None = None
    duration_ms: float | None = None
    cost: float = 0.0
    provider: ProviderInfo | None = None
    error: dict[str, Any] | None = None
    retry_attempts: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration_ms": self.duration_ms,
            "cost": self.cost,
            "provider": self.provider.to_dict() if self.provider else None,
            "error": self.error,
            "retry_attempts": self.retry_attempts,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StageRecord":
        provider = data.get("provider")
        return cls(
            status=StageStatus(data["status"]),
            start_time=data.get("start_time"),
            end_time=data.get("end_time"),
            duration_ms=data.get("duration_ms"),
            cost=data.get("cost", 0.0),
            provider=ProviderInfo.from_dict(provider) if provider else None,
            error=data.get("error"),
            retry_attempts=data.get("retry_attempts", 0),
        )


@dataclass
class PipelineState:
    pipeline_id: str
    status: RunStatus
    start_time: str
    current_stage: str | None = None
    end_time: str | None = None
    stages: dict[str, StageRecord] = field(default_factory=dict)
    quality_context: QualityContext = field(default_factory=QualityContext)
    total_cost: float = 0.0
    error: dict[str, Any] | None = None
    quality_decision: dict[str, Any] | None = None

    def started_at(self) -> datetime:
        return datetime.fromisoformat(self.start_time)

    def record(self, stage: str, record: StageRecord) -> None:
        self.stages[stage] = record
        self.current_stage = stage

    def stage_status(self, stage: str) -> StageStatus | None:
        record = self.stages.get(stage)
        return record.status if record else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "pipeline_id": self.pipeline_id,
            "status": self.status.value,
            "current_stage": self.current_stage,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "stages": {name: rec.to_dict() for name, rec in self.stages.items()},
            "quality_context": self.quality_context.to_dict(),
            "total_cost": self.total_cost,
            "error": self.error,
            "quality_decision": self.quality_decision,
        }

    def summary(self) -> dict[str, Any]:
        return {
            "pipeline_id": self.pipeline_id,
            "status": self.status.value,
            "current_stage": self.current_stage,
            "started_at": self.start_time,
            "ended_at": self.end_time,
            "total_cost": self.total_cost,
            "error": self.error,
            "quality_decision": self.quality_decision,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PipelineState":
        return cls(
            pipeline_id=data["pipeline_id"],
            status=RunStatus(data["status"]),
            start_time=data["start_time"],
            current_stage=data.get("current_stage"),
            end_time=data.get("end_time"),
            stages={
                name: StageRecord.from_dict(rec) for name, rec in data.get("stages", {}).items()
            },
            quality_context=QualityContext.from_dict(data.get("quality_context")),
            total_cost=data.get("total_cost", 0.0),
            error=data.get("error"),
            quality_decision=data.get("quality_decision"),
        )


class PipelineStateManager:
    """Reads and writes run state through the document store."""

    def __init__(self, store: DocumentStore):
        self.store = store

    @staticmethod
    def _state_id(pipeline_id: str) -> str:
        return f"{pipeline_id}_state"

    async def initialize(self, pipeline_id: str) -> PipelineState:
        """Write a fresh ``running`` state at the first stage, replacing any previous one."""
        state = PipelineState(
            pipeline_id=pipeline_id,
            status=RunStatus.RUNNING,
            start_time=utc_now(),
            current_stage=STAGE_ORDER[0].value,
        )
        await self.save(state)
        logger.info("Pipeline state initialized", pipeline_id=pipeline_id)
        return state

    async def find(self, pipeline_id: str) -> PipelineState | None:
        doc = await self.store.get(PIPELINES_COLLECTION, self._state_id(pipeline_id))
        return PipelineState.from_dict(doc) if doc else None

    async def load(self, pipeline_id: str) -> PipelineState:
        state = await self.find(pipeline_id)
        if state is None:
            raise NexusError.critical(
                ErrorCode.STATE_NOT_FOUND,
                f"Pipeline state not found: {pipeline_id}",
                "orchestrator",
                {"pipeline_id": pipeline_id},
            )
        return state

    async def save(self, state: PipelineState) -> None:
        """Persist the full state document, then the summary document."""
        await self.store.set(PIPELINES_COLLECTION, self._state_id(state.pipeline_id), state.to_dict())
        await self.store.set(PIPELINES_COLLECTION, state.pipeline_id, state.summary())

    async def mark_running(self, state: PipelineState) -> None:
        state.status = RunStatus.RUNNING
        state.end_time = None
        state.error = None
        await self.save(state)

    async def mark_complete(self, state: PipelineState) -> None:
        state.status = RunStatus.COMPLETED
        state.end_time = utc_now()
        await self.save(state)

    async def mark_failed(self, state: PipelineState, error: NexusError) -> None:
        state.status = RunStatus.FAILED
        state.end_time = utc_now()
        state.error = {
            "code": error.code,
            "message": error.message,
            "severity": error.severity.value,
            "stage": error.stage,
        }
        await self.save(state)

    async def mark_paused(self, state: PipelineState, reason: str) -> None:
        state.status = RunStatus.PAUSED
        state.end_time = utc_now()
        state.error = {"code": None, "message": reason, "severity": None, "stage": state.current_stage}
        await self.save(state)

    async def pause(self, pipeline_id: str, reason: str = "Paused for human review") -> PipelineState:
        """Hold a run so that it can be resumed later; a paused run is left as is."""
        state = await self.load(pipeline_id)
        if state.status is RunStatus.COMPLETED:
            raise NexusError.critical(
                ErrorCode.PIPELINE_COMPLETED,
                f"Pipeline {pipeline_id} has already completed",
                "orchestrator",
                {"pipeline_id": pipeline_id},
            )
        if state.status is not RunStatus.PAUSED:
            await self.mark_paused(state, reason)
            logger.info("Pipeline paused", pipeline_id=pipeline_id, reason=reason)
        return state

    async def persist_stage_output(self, pipeline_id: str, stage: str, data: Any) -> None:
        await self.store.set(
            OUTPUTS_COLLECTION,
            f"{pipeline_id}_{stage}",
            {"pipeline_id": pipeline_id, "stage": stage, "data": data, "timestamp": utc_now()},
        )

    async def load_stage_output(self, pipeline_id: str, stage: str) -> Any:
        """The persisted output payload of ``stage``; ``{}`` when none was kept."""
        doc = await self.store.get(OUTPUTS_COLLECTION, f"{pipeline_id}_{stage}")
        return doc.get("data", {}) if doc else {}
