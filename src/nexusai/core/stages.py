"""
Stage identities, execution order and per-stage policy.

``Stage`` is a closed enumeration; ``STAGE_ORDER`` is the single source of
truth for sequencing and for validating resume points. A ``StageRegistry``
binds every stage in the order to a handler and refuses to be built with a
gap, so an order entry without a handler cannot exist at run time.
``StageRegistry.from_functions`` builds the handlers from ``(data, ctx)``
stage functions, each wrapped by ``execute_stage``.
"""

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from enum import Enum

from ..errors import ErrorCode, ErrorSeverity, NexusError
from .stage import QualityCheckFn, StageFn, StageInput, StageOutput, execute_stage


class Stage(str, Enum):
    NEWS_SOURCING = "news-sourcing"
    RESEARCH = "research"
    SCRIPT_GEN = "script-gen"
    PRONUNCIATION = "pronunciation"
    TTS = "tts"
    TIMESTAMP_EXTRACTION = "timestamp-extraction"
    VISUAL_GEN = "visual-gen"
    RENDER = "render"
    THUMBNAIL = "thumbnail"
    YOUTUBE = "youtube"
    TWITTER = "twitter"
    NOTIFICATIONS = "notifications"

    def __str__(self) -> str:
        return self.value


STAGE_ORDER: tuple[Stage, ...] = (
    Stage.NEWS_SOURCING,
    Stage.RESEARCH,
    Stage.SCRIPT_GEN,
    Stage.PRONUNCIATION,
    Stage.TTS,
    Stage.TIMESTAMP_EXTRACTION,
    Stage.VISUAL_GEN,
    Stage.RENDER,
    Stage.THUMBNAIL,
    Stage.YOUTUBE,
    Stage.TWITTER,
    Stage.NOTIFICATIONS,
)

# Runs after every other stage, including after a fatal failure
FINAL_STAGE = Stage.NOTIFICATIONS


@dataclass(frozen=True)
class StagePolicy:
    max_retries: int
    base_delay_ms: int
    criticality: ErrorSeverity


STAGE_POLICY: dict[Stage, StagePolicy] = {
    Stage.NEWS_SOURCING: StagePolicy(3, 2000, ErrorSeverity.CRITICAL),
    Stage.RESEARCH: StagePolicy(3, 2000, ErrorSeverity.CRITICAL),
    Stage.SCRIPT_GEN: StagePolicy(3, 2000, ErrorSeverity.CRITICAL),
    Stage.PRONUNCIATION: StagePolicy(2, 1000, ErrorSeverity.DEGRADED),
    Stage.TTS: StagePolicy(5, 3000, ErrorSeverity.CRITICAL),
    Stage.TIMESTAMP_EXTRACTION: StagePolicy(3, 2000, ErrorSeverity.CRITICAL),
    Stage.VISUAL_GEN: StagePolicy(3, 2000, ErrorSeverity.DEGRADED),
    Stage.RENDER: StagePolicy(3, 5000, ErrorSeverity.CRITICAL),
    Stage.THUMBNAIL: StagePolicy(3, 2000, ErrorSeverity.DEGRADED),
    Stage.YOUTUBE: StagePolicy(5, 3000, ErrorSeverity.CRITICAL),
    Stage.TWITTER: StagePolicy(2, 1000, ErrorSeverity.RECOVERABLE),
    Stage.NOTIFICATIONS: StagePolicy(3, 1000, ErrorSeverity.RECOVERABLE),
}


def parse_stage(name: str | Stage) -> Stage:
    """Resolve a stage name, raising NEXUS_INVALID_STAGE for unknown names."""
    try:
        return Stage(name)
    except ValueError:
        raise NexusError.critical(
            ErrorCode.INVALID_STAGE,
            f"Invalid stage name: {name}",
            "orchestrator",
            {"valid_stages": [s.value for s in STAGE_ORDER]},
        ) from None


def stage_index(stage: Stage) -> int:
    return STAGE_ORDER.index(stage)


StageHandler = Callable[[StageInput], Awaitable[StageOutput]]


def stage_handler(
    stage: Stage | str,
    execute_fn: StageFn,
    quality_check: QualityCheckFn | None = None,
) -> StageHandler:
    """Bind a ``(data, ctx)`` stage function to the stage executor."""
    name = parse_stage(stage).value

    async def handler(stage_input: StageInput) -> StageOutput:
        return await execute_stage(stage_input, name, execute_fn, quality_check=quality_check)

    handler.__name__ = f"{name}_handler"
    return handler


class StageRegistry:
    """Exhaustive mapping from ``Stage`` to its handler."""

    def __init__(self, handlers: Mapping[Stage | str, StageHandler]):
        bound = {parse_stage(name): handler for name, handler in handlers.items()}

        missing = [stage.value for stage in STAGE_ORDER if stage not in bound]
        if missing:
            raise ValueError(f"No handler registered for stages: {', '.join(missing)}")

        self._handlers: dict[Stage, StageHandler] = bound

    @classmethod
    def from_functions(
        cls,
        functions: Mapping[Stage | str, StageFn],
        quality_checks: Mapping[Stage | str, QualityCheckFn] | None = None,
    ) -> "StageRegistry":
        """Registry whose handlers all run through ``execute_stage``."""
        checks = {parse_stage(name): check for name, check in (quality_checks or {}).items()}
        return cls(
            {
                parse_stage(name): stage_handler(name, fn, checks.get(parse_stage(name)))
                for name, fn in functions.items()
            }
        )

    def __getitem__(self, stage: Stage) -> StageHandler:
        return self._handlers[stage]

    def __contains__(self, stage: object) -> bool:
        return stage in self._handlers
