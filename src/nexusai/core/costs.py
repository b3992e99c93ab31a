"""
Per-stage cost accounting.

A ``CostTracker`` is created for each stage execution and handed to the stage
function, which records every billable capability call on it. Costs are kept
exact and rounded to 4 decimals only when summarized.
"""

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any

from ..errors import ErrorCode, NexusError
from ..observability.logging import get_logger

logger = get_logger(__name__)

COST_PRECISION = 4


def round_cost(cost: float) -> float:
    return round(cost, COST_PRECISION)


def validate_pipeline_id(pipeline_id: str) -> str:
    """Pipeline ids are calendar dates in ``YYYY-MM-DD`` form."""
    try:
        parsed = date.fromisoformat(pipeline_id)
    except (TypeError, ValueError):
        parsed = None

    if parsed is None or parsed.isoformat() != pipeline_id:
        raise NexusError.critical(
            ErrorCode.VALIDATION,
            f'Invalid pipelineId "{pipeline_id}". Expected a valid YYYY-MM-DD date.',
            "cost-tracker",
            {"pipeline_id": pipeline_id, "expected_format": "YYYY-MM-DD"},
        )
    return pipeline_id


@dataclass
class ServiceCost:
    service: str
    cost: float
    call_count: int
    input_tokens: int = 0
    output_tokens: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "service": self.service,
            "cost": self.cost,
            "call_count": self.call_count,
            "tokens": {"input": self.input_tokens, "output": self.output_tokens},
        }


@dataclass
class CostSummary:
    stage: str
    total_cost: float
    breakdown: list[ServiceCost] = field(default_factory=list)
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage,
            "total_cost": self.total_cost,
            "breakdown": [b.to_dict() for b in self.breakdown],
            "timestamp": self.timestamp,
        }

    @classmethod
    def empty(cls, stage: str) -> "CostSummary":
        return cls(stage=stage, total_cost=0.0)


@dataclass
class _CostEntry:
    service: str
    cost: float
    input_tokens: int
    output_tokens: int
    timestamp: str


class CostTracker:
    """Records the capability calls made while one stage runs."""

    def __init__(self, pipeline_id: str, stage: str):
        self.pipeline_id = validate_pipeline_id(pipeline_id)
        self.stage = stage
        self._entries: list[_CostEntry] = []

    def record_api_call(
        self,
        service: str,
        cost: float,
        input_tokens: int = 0,
        output_tokens: int = 0,
    ) -> None:
        self._entries.append(
            _CostEntry(service, cost, input_tokens, output_tokens, datetime.now(UTC).isoformat())
        )
        logger.debug(
            "API cost recorded",
            pipeline_id=self.pipeline_id,
            stage=self.stage,
            service=service,
            cost=round_cost(cost),
        )

    def summary(self) -> CostSummary:
        by_service: dict[str, ServiceCost] = {}
        for entry in self._entries:
            item = by_service.setdefault(entry.service, ServiceCost(entry.service, 0.0, 0))
            item.cost += entry.cost
            item.call_count += 1
            item.input_tokens += entry.input_tokens
            item.output_tokens += entry.output_tokens

        for item in by_service.values():
            item.cost = round_cost(item.cost)

        total = round_cost(sum(entry.cost for entry in self._entries))
        return CostSummary(stage=self.stage, total_cost=total, breakdown=list(by_service.values()))
