"""Quality signals and the pre-publish quality gate."""

from .context import QualityContext
from .gate import QualityDecision, QualityGateResult, blocking_issues, decide, non_critical_fallbacks

__all__ = [
    "QualityContext",
    "QualityDecision",
    "QualityGateResult",
    "blocking_issues",
    "decide",
    "non_critical_fallbacks",
]
