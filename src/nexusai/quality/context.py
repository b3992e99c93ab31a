"""Quality signals accumulated across the stages of one run."""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class QualityContext:
    """Append-only lists read by the quality gate.

    - ``degraded_stages``: stages that finished below target quality
    - ``fallbacks_used``: ``"<stage>:<provider>"`` entries
    - ``flags``: free-form signals such as ``"word-count-low"``
    """

    degraded_stages: list[str] = field(default_factory=list)
    fallbacks_used: list[str] = field(default_factory=list)
    flags: list[str] = field(default_factory=list)

    def add_degraded(self, stage: str) -> None:
        self.degraded_stages.append(stage)

    def add_fallback(self, stage: str, provider: str) -> None:
        self.fallbacks_used.append(f"{stage}:{provider}")

    def add_flags(self, flags: list[str]) -> None:
        self.flags.extend(flags)

    def is_clean(self) -> bool:
        return not (self.degraded_stages or self.fallbacks_used or self.flags)

    def copy(self) -> "QualityContext":
        return QualityContext(
            list(self.degraded_stages), list(self.fallbacks_used), list(self.flags)
        )

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "degraded_stages": list(self.degraded_stages),
            "fallbacks_used": list(self.fallbacks_used),
            "flags": list(self.flags),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "QualityContext":
        data = data or {}
        return cls(
            degraded_stages=list(data.get("degraded_stages", [])),
            fallbacks_used=list(data.get("fallbacks_used", [])),
            flags=list(data.get("flags", [])),
        )
