"""
Pre-publish quality gate.

Never publish low-quality content: skipping a day beats a bad video. The gate
is a pure function of the run's quality context and the pending critical
review items; it performs no I/O of its own.

Blocking conditions (any one routes the run to HUMAN_REVIEW):
- a pending pronunciation or quality review item
- TTS fallback used
- word count outside the acceptable range
- more than 3 unresolved pronunciation unknowns
- both thumbnail and visual fallbacks used
- more than 30% of visuals served by a fallback
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..observability.logging import get_logger
from .context import QualityContext

if TYPE_CHECKING:
    from ..queues.review import ReviewItem

logger = get_logger(__name__)

# Stage the run is held before when a human decision is pending
PAUSE_BEFORE_STAGE = "youtube"

# Roughly ten visual elements per video; more than 30% of them is >3
VISUAL_FALLBACK_LIMIT = 3
MINOR_SIGNAL_LIMIT = 2


class QualityDecision(str, Enum):
    AUTO_PUBLISH = "AUTO_PUBLISH"
    AUTO_PUBLISH_WITH_WARNING = "AUTO_PUBLISH_WITH_WARNING"
    HUMAN_REVIEW = "HUMAN_REVIEW"


@dataclass
class QualityGateResult:
    decision: QualityDecision
    reason: str
    issues: list[str] = field(default_factory=list)
    review_item_ids: list[str] | None = None
    pause_before_stage: str | None = None

    @property
    def publishable(self) -> bool:
        return self.decision is not QualityDecision.HUMAN_REVIEW

    def to_dict(self) -> dict[str, Any]:
        return {
            "decision": self.decision.value,
            "reason": self.reason,
            "issues": list(self.issues),
            "review_item_ids": self.review_item_ids,
            "pause_before_stage": self.pause_before_stage,
        }


def _fallback_stage(entry: str) -> str:
    return entry.split(":", 1)[0]


def non_critical_fallbacks(ctx: QualityContext) -> list[str]:
    """Fallback entries other than TTS, whose fallback always blocks."""
    return [fb for fb in ctx.fallbacks_used if _fallback_stage(fb) != "tts"]


def blocking_issues(ctx: QualityContext) -> list[str]:
    """Every blocking condition present in ``ctx``, in rule order."""
    stages = [_fallback_stage(fb) for fb in ctx.fallbacks_used]
    issues = []

    if "tts" in stages:
        issues.append("TTS fallback used")
    if any("word-count" in flag for flag in ctx.flags):
        issues.append("Word count outside acceptable range")
    if any("pronunciation" in flag and ">3" in flag for flag in ctx.flags):
        issues.append(">3 pronunciation unknowns unresolved")
    if "thumbnail" in stages and "visual-gen" in stages:
        issues.append("Both thumbnail and visual fallbacks used")
    if stages.count("visual-gen") > VISUAL_FALLBACK_LIMIT:
        issues.append(">30% visual fallbacks used")

    return issues


def decide(
    quality_context: QualityContext,
    pending_critical_reviews: Sequence["ReviewItem"] = (),
) -> QualityGateResult:
    """Turn a run's quality signals into a publish decision.

    Args:
        quality_context: signals accumulated across the run
        pending_critical_reviews: pending review items of type
            pronunciation or quality

    Returns:
        QualityGateResult; HUMAN_REVIEW results caused by review items carry
        their ids and the stage to pause before.
    """
    ctx = quality_context

    if pending_critical_reviews:
        count = len(pending_critical_reviews)
        return QualityGateResult(
            decision=QualityDecision.HUMAN_REVIEW,
            reason=f"{count} pending review items require human decision",
            issues=[
                f"Pending {_value(item.type)} review from {item.stage} stage"
                for item in pending_critical_reviews
            ],
            review_item_ids=[item.id for item in pending_critical_reviews],
            pause_before_stage=PAUSE_BEFORE_STAGE,
        )

    if ctx.is_clean():
        return QualityGateResult(QualityDecision.AUTO_PUBLISH, "No quality issues detected")

    issues = blocking_issues(ctx)
    if issues:
        return QualityGateResult(
            QualityDecision.HUMAN_REVIEW, "Major quality issues detected", issues
        )

    fallbacks = non_critical_fallbacks(ctx)
    if len(ctx.degraded_stages) > MINOR_SIGNAL_LIMIT and len(fallbacks) > MINOR_SIGNAL_LIMIT:
        return QualityGateResult(
            QualityDecision.HUMAN_REVIEW,
            "Multiple quality concerns",
            [
                f"{len(ctx.degraded_stages)} degraded stages",
                f"{len(fallbacks)} fallbacks used",
                f"{len(ctx.flags)} flags raised",
            ],
        )

    return QualityGateResult(
        QualityDecision.AUTO_PUBLISH_WITH_WARNING,
        "Minor quality issues detected",
        [f"Degraded stage: {s}" for s in ctx.degraded_stages]
        + [f"Fallback used: {fb}" for fb in fallbacks]
        + [f"Flag: {flag}" for flag in ctx.flags],
    )


def _value(member: Any) -> str:
    return member.value if isinstance(member, Enum) else str(member)
