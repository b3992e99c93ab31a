"""
Pipeline state machine.

Runs the stages of one daily pipeline strictly in ``STAGE_ORDER``, one at a
time, persisting a ``StageRecord`` before and after every stage so that a
failed or paused run can be resumed from any stage.

Failure handling per stage:
- CRITICAL severity, or any severity other than DEGRADED/RECOVERABLE at a
  CRITICAL stage: the run is marked failed, the selected topic is queued for
  the next day and no publish decision is made
- DEGRADED: the stage is recorded as failed, added to the degraded stages
  and the run continues
- RECOVERABLE: the stage is recorded as failed, flagged ``<stage>:failed``
  and the run continues

Errors raised while persisting a stage's outcome count as failures of that
stage. Unclassified errors are CRITICAL.

The notifications stage always runs last, including after an abort, and its
outcome never changes the run status.
"""

import time
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from ..config.settings import Settings
from ..errors import ErrorCode, ErrorSeverity, NexusError
from ..observability.logging import bind_run, bind_stage, get_logger, set_trace_id
from ..observability.metrics import get_metrics_collector
from ..observability.tracing import add_span_attributes, trace_span
from ..quality.context import QualityContext
from ..quality.gate import QualityGateResult, decide
from ..queues.review import ReviewQueue
from ..queues.topics import QueuedTopic, TopicQueue
from .costs import round_cost, validate_pipeline_id
from .fallback import ProviderTier
from .retry import RetryOptions, with_retry
from .stage import StageConfig, StageInput, StageOutput
from .stages import (
    FINAL_STAGE,
    STAGE_ORDER,
    STAGE_POLICY,
    Stage,
    StageRegistry,
    parse_stage,
    stage_index,
)
from .state import (
    RESUMABLE_STATUSES,
    PipelineState,
    PipelineStateManager,
    RunStatus,
    StageRecord,
    StageStatus,
    utc_now,
)

logger = get_logger(__name__)


@dataclass
class PipelineResult:
    success: bool
    pipeline_id: str
    status: RunStatus
    stage_outputs: dict[str, StageOutput] = field(default_factory=dict)
    completed_stages: list[str] = field(default_factory=list)
    skipped_stages: list[str] = field(default_factory=list)
    quality_context: QualityContext = field(default_factory=QualityContext)
    total_duration_ms: float = 0.0
    total_cost: float = 0.0
    error: dict[str, Any] | None = None
    queued_for_date: str | None = None
    quality_decision: QualityGateResult | None = None


@dataclass
class _Run:
    """Mutable bookkeeping for one execute or resume call."""

    state: PipelineState
    previous_stage: str | None = None
    previous_data: Any = field(default_factory=dict)
    topic: str | None = None
    stage_outputs: dict[str, StageOutput] = field(default_factory=dict)
    completed_stages: list[str] = field(default_factory=list)
    skipped_stages: list[str] = field(default_factory=list)
    abort_error: NexusError | None = None

    @property
    def aborted(self) -> bool:
        return self.abort_error is not None

    @property
    def quality_context(self) -> QualityContext:
        return self.state.quality_context

    def total_cost(self) -> float:
        return round_cost(sum(record.cost for record in self.state.stages.values()))


def is_fatal(error: NexusError, stage: Stage) -> bool:
    """Whether a stage failure ends the run."""
    if error.severity is ErrorSeverity.CRITICAL:
        return True
    if error.severity in (ErrorSeverity.DEGRADED, ErrorSeverity.RECOVERABLE):
        return False
    return STAGE_POLICY[stage].criticality is ErrorSeverity.CRITICAL


def topic_of(data: Any) -> str | None:
    """Topic title carried by a stage payload, if any."""
    if not isinstance(data, dict):
        return None
    for key in ("topic", "title", "queued_topic"):
        value = data.get(key)
        if isinstance(value, dict):
            value = value.get("title")
        if isinstance(value, str) and value:
            return value
    return None


def _checked_output(output: Any, stage: Stage) -> StageOutput:
    if not isinstance(output, StageOutput):
        raise NexusError.critical(
            ErrorCode.STAGE_INVALID_OUTPUT,
            f"Stage {stage.value} returned {type(output).__name__} instead of StageOutput",
            stage.value,
            {"returned_type": type(output).__name__},
        )
    return output


def _error_record(error: NexusError) -> dict[str, Any]:
    return {
        "code": error.code,
        "message": error.message,
        "severity": error.severity.value,
        "stage": error.stage,
    }


class PipelineRunner:
    """Executes, resumes and pauses daily pipeline runs.

    All collaborators are passed in; the runner holds no pipeline data
    between calls.
    """

    def __init__(
        self,
        registry: StageRegistry,
        state_manager: PipelineStateManager,
        topic_queue: TopicQueue,
        review_queue: ReviewQueue,
        settings: Settings | None = None,
    ):
        self.registry = registry
        self.state_manager = state_manager
        self.topic_queue = topic_queue
        self.review_queue = review_queue
        self.settings = settings or Settings()
        self.metrics = get_metrics_collector()

    # Entry points

    @trace_span("pipeline.execute")
    async def execute(self, pipeline_id: str) -> PipelineResult:
        """Run every stage for ``pipeline_id`` from the beginning.

        Raises:
            NexusError: NEXUS_PIPELINE_ALREADY_RUNNING when a non-stale run
                holds the date, NEXUS_VALIDATION_ERROR for a malformed id
        """
        validate_pipeline_id(pipeline_id)
        started = time.perf_counter()
        self._bind(pipeline_id)

        await self._check_lock(pipeline_id)
        logger.info("Pipeline started", pipeline_id=pipeline_id, stage_count=len(STAGE_ORDER))

        queued = await self._claim_queued_topic(pipeline_id)
        state = await self.state_manager.initialize(pipeline_id)

        run = _Run(state=state)
        if queued is not None:
            run.topic = queued.topic
            run.previous_data = {"queued_topic": queued.topic, "from_queue": True}

        await self._run_stages(run, STAGE_ORDER)

        if queued is not None and not run.aborted:
            try:
                await self.topic_queue.clear_queued_topic(pipeline_id)
                logger.info(
                    "Queued topic cleared after successful processing",
                    pipeline_id=pipeline_id,
                    topic=queued.topic,
                )
            except NexusError as e:
                logger.warning("Failed to clear queued topic", pipeline_id=pipeline_id, error=e.code)

        return await self._finish(run, started)

    @trace_span("pipeline.resume")
    async def resume(self, pipeline_id: str, from_stage: str | Stage | None = None) -> PipelineResult:
        """Continue a failed or paused run.

        Stages before the resume point keep their persisted records and the
        output of the stage just before it is fed to the resume stage.
        Without ``from_stage`` the run resumes after its last succeeded stage.

        Raises:
            NexusError: NEXUS_STATE_NOT_FOUND, NEXUS_PIPELINE_ALREADY_RUNNING,
                NEXUS_PIPELINE_COMPLETED, NEXUS_PIPELINE_INVALID_STATE or
                NEXUS_INVALID_STAGE
        """
        started = time.perf_counter()
        self._bind(pipeline_id)

        state = await self.state_manager.load(pipeline_id)
        self._check_resumable(state)

        if from_stage is not None:
            start = stage_index(parse_stage(from_stage))
        else:
            start = self._after_last_succeeded(state)

        previous_stage = STAGE_ORDER[start - 1].value if start > 0 else None
        previous_data: Any = {}
        if previous_stage is not None:
            previous_data = await self.state_manager.load_stage_output(pipeline_id, previous_stage)

        run = _Run(state=state, previous_stage=previous_stage, previous_data=previous_data)
        run.completed_stages = [
            s.value
            for s in STAGE_ORDER[:start]
            if s is not FINAL_STAGE and state.stage_status(s.value) is StageStatus.SUCCEEDED
        ]
        if start > stage_index(Stage.NEWS_SOURCING):
            sourced = await self.state_manager.load_stage_output(pipeline_id, Stage.NEWS_SOURCING.value)
            run.topic = topic_of(sourced)

        previous_status = state.status
        await self.state_manager.mark_running(state)
        resume_stage = STAGE_ORDER[start].value if start < len(STAGE_ORDER) else FINAL_STAGE.value
        logger.info(
            "Resuming pipeline",
            pipeline_id=pipeline_id,
            from_stage=resume_stage,
            previous_status=previous_status.value,
            completed_stages=len(run.completed_stages),
        )
        add_span_attributes(pipeline_id=pipeline_id, from_stage=resume_stage)

        await self._run_stages(run, STAGE_ORDER[start:])
        return await self._finish(run, started)

    async def pause(self, pipeline_id: str, reason: str = "Paused for human review") -> PipelineState:
        """Hold a run so that it can be resumed later.

        Raises:
            NexusError: NEXUS_STATE_NOT_FOUND or NEXUS_PIPELINE_COMPLETED
        """
        return await self.state_manager.pause(pipeline_id, reason)

    # Run setup

    def _bind(self, pipeline_id: str) -> None:
        set_trace_id(f"pipeline:{pipeline_id}")
        bind_run(pipeline_id)

    async def _check_lock(self, pipeline_id: str) -> None:
        existing = await self.state_manager.find(pipeline_id)
        if existing is None or existing.status is not RunStatus.RUNNING:
            return

        elapsed = datetime.now(UTC) - existing.started_at()
        limit = timedelta(hours=self.settings.pipeline.lock_timeout_hours)
        if elapsed < limit:
            logger.warning(
                "Pipeline already running",
                pipeline_id=pipeline_id,
                elapsed_s=round(elapsed.total_seconds()),
            )
            raise NexusError.critical(
                ErrorCode.PIPELINE_ALREADY_RUNNING,
                f"Pipeline {pipeline_id} is already running",
                "orchestrator",
                {"pipeline_id": pipeline_id, "started_at": existing.start_time},
            )

        logger.warning(
            "Found stale pipeline, allowing override",
            pipeline_id=pipeline_id,
            elapsed_s=round(elapsed.total_seconds()),
        )

    async def _claim_queued_topic(self, pipeline_id: str) -> QueuedTopic | None:
        """Today's queued topic with its retry counted, or None for fresh sourcing."""
        try:
            queued = await self.topic_queue.check_today_queued_topic(pipeline_id)
            if queued is None:
                return None

            updated = await self.topic_queue.increment_retry_count(pipeline_id)
        except NexusError as e:
            logger.warning(
                "Failed to check queued topics, proceeding with fresh sourcing",
                pipeline_id=pipeline_id,
                error=e.code,
            )
            return None

        if updated is None:
            logger.warning(
                "Queued topic abandoned, proceeding with fresh sourcing",
                pipeline_id=pipeline_id,
                topic=queued.topic,
            )
            return None

        logger.info(
            "Using queued topic from previous failure",
            pipeline_id=pipeline_id,
            topic=updated.topic,
            retry_count=updated.retry_count,
            original_date=updated.original_date,
        )
        return updated

    def _check_resumable(self, state: PipelineState) -> None:
        if state.status in RESUMABLE_STATUSES:
            return

        pipeline_id = state.pipeline_id
        context = {"pipeline_id": pipeline_id, "status": state.status.value}
        if state.status is RunStatus.RUNNING:
            raise NexusError.critical(
                ErrorCode.PIPELINE_ALREADY_RUNNING,
                f"Pipeline {pipeline_id} is currently running",
                "orchestrator",
                context,
            )
        if state.status is RunStatus.COMPLETED:
            raise NexusError.critical(
                ErrorCode.PIPELINE_COMPLETED,
                f"Pipeline {pipeline_id} has already completed successfully",
                "orchestrator",
                context,
            )
        raise NexusError.critical(
            ErrorCode.PIPELINE_INVALID_STATE,
            f"Pipeline {pipeline_id} is in non-resumable state: {state.status.value}",
            "orchestrator",
            context,
        )

    @staticmethod
    def _after_last_succeeded(state: PipelineState) -> int:
        for index in range(len(STAGE_ORDER) - 1, -1, -1):
            stage = STAGE_ORDER[index]
            if stage is not FINAL_STAGE and state.stage_status(stage.value) is StageStatus.SUCCEEDED:
                return index + 1
        return 0

    # Stage execution

    def _stage_input(self, run: _Run, stage: Stage, data: Any) -> StageInput:
        return StageInput(
            pipeline_id=run.state.pipeline_id,
            previous_stage=run.previous_stage,
            data=data,
            config=StageConfig(
                timeout_ms=self.settings.pipeline.stage_timeout_ms,
                retries=STAGE_POLICY[stage].max_retries,
            ),
            quality_context=run.quality_context.copy(),
        )

    def _retry_options(self, stage: Stage, record: StageRecord) -> RetryOptions:
        policy = STAGE_POLICY[stage]
        scale = self.settings.pipeline.retry_delay_scale

        def on_retry(attempt: int, delay_ms: float, error: BaseException) -> None:
            record.retry_attempts = attempt

        return RetryOptions(
            max_retries=policy.max_retries,
            base_delay_ms=policy.base_delay_ms * scale,
            max_delay_ms=self.settings.retry.max_delay_ms * scale,
            stage=stage.value,
            on_retry=on_retry,
        )

    async def _call_stage(self, run: _Run, stage: Stage, data: Any) -> StageOutput:
        """Run one stage handler under its retry policy, recording the outcome."""
        pipeline_id = run.state.pipeline_id
        handler = self.registry[stage]
        stage_input = self._stage_input(run, stage, data)

        record = StageRecord(status=StageStatus.RUNNING, start_time=utc_now())
        run.state.record(stage.value, record)

        bind_stage(stage.value)
        started = time.perf_counter()
        try:
            await self.state_manager.save(run.state)
            outcome = await with_retry(lambda: handler(stage_input), self._retry_options(stage, record))
            output = _checked_output(outcome.result, stage)

            await self.state_manager.persist_stage_output(pipeline_id, stage.value, output.data)

            record.status = StageStatus.SUCCEEDED
            record.end_time = utc_now()
            record.duration_ms = output.duration_ms
            record.cost = output.cost.total_cost
            record.provider = output.provider
            record.retry_attempts = outcome.attempts - 1

            if output.provider.tier is ProviderTier.FALLBACK:
                run.quality_context.add_fallback(stage.value, output.provider.name)
                logger.warning(
                    "Stage completed with fallback provider",
                    pipeline_id=pipeline_id,
                    stage=stage.value,
                    provider=output.provider.name,
                    attempts=output.provider.attempts,
                )
            if output.warnings:
                run.quality_context.add_flags(output.warnings)
            await self.state_manager.save(run.state)
        except Exception as e:
            error = NexusError.from_error(e, stage.value)
            record.status = StageStatus.FAILED
            record.end_time = utc_now()
            record.duration_ms = (time.perf_counter() - started) * 1000
            record.error = _error_record(error)
            await self._save_quietly(run.state)
            if error is e:
                raise
            raise error from e
        finally:
            bind_stage(None)

        return output

    async def _save_quietly(self, state: PipelineState) -> None:
        """Save after a stage failure, logging store errors instead of raising them."""
        try:
            await self.state_manager.save(state)
        except Exception as e:
            logger.error(
                "Failed to persist stage failure",
                pipeline_id=state.pipeline_id,
                stage=state.current_stage,
                error_type=type(e).__name__,
                error=str(e),
            )

    async def _run_stages(self, run: _Run, stages: tuple[Stage, ...]) -> None:
        pipeline_id = run.state.pipeline_id

        for stage in stages:
            if stage is FINAL_STAGE:
                continue

            try:
                output = await self._call_stage(run, stage, run.previous_data)
            except Exception as e:
                error = NexusError.from_error(e, stage.value)
                if is_fatal(error, stage):
                    logger.error(
                        "Critical stage failure - aborting pipeline",
                        pipeline_id=pipeline_id,
                        stage=stage.value,
                        error_code=error.code,
                        severity=error.severity.value,
                    )
                    run.abort_error = error
                    break

                self._record_continuable(run, stage, error)
                continue

            run.stage_outputs[stage.value] = output
            run.completed_stages.append(stage.value)
            run.previous_stage = stage.value
            run.previous_data = output.data
            if stage is Stage.NEWS_SOURCING and run.topic is None:
                run.topic = topic_of(output.data)

    def _record_continuable(self, run: _Run, stage: Stage, error: NexusError) -> None:
        criticality = STAGE_POLICY[stage].criticality
        recoverable = error.severity is ErrorSeverity.RECOVERABLE or (
            error.severity is not ErrorSeverity.DEGRADED
            and criticality is ErrorSeverity.RECOVERABLE
        )

        if recoverable:
            run.quality_context.add_flags([f"{stage.value}:failed"])
            message = "Stage failed with recoverable error, continuing pipeline"
        else:
            run.quality_context.add_degraded(stage.value)
            message = "Stage failed with degraded error, continuing with quality flag"

        run.skipped_stages.append(stage.value)
        logger.warning(
            message,
            pipeline_id=run.state.pipeline_id,
            stage=stage.value,
            error_code=error.code,
            severity=error.severity.value,
        )

    async def _run_notifications(self, run: _Run, decision: QualityGateResult | None) -> None:
        summary = {
            "aborted": run.aborted,
            "abort_reason": run.abort_error.message if run.abort_error else None,
            "completed_stages": list(run.completed_stages),
            "skipped_stages": list(run.skipped_stages),
            "total_cost": run.total_cost(),
            "quality_decision": decision.decision.value if decision else None,
        }
        previous = run.previous_stage
        run.previous_stage = run.completed_stages[-1] if run.completed_stages else None

        try:
            output = await self._call_stage(run, FINAL_STAGE, summary)
        except NexusError as e:
            logger.error(
                "Notification stage failed (non-fatal)",
                pipeline_id=run.state.pipeline_id,
                error_code=e.code,
            )
            return
        finally:
            run.previous_stage = previous

        run.stage_outputs[FINAL_STAGE.value] = output
        if not run.aborted:
            run.completed_stages.append(FINAL_STAGE.value)

    # Completion

    async def _queue_topic(self, run: _Run) -> str | None:
        error = run.abort_error
        if error is None or not run.topic:
            return None
        try:
            target = await self.topic_queue.queue_failed_topic(
                run.topic, error.code, error.stage or "unknown", run.state.pipeline_id
            )
        except NexusError as e:
            logger.error(
                "Failed to queue topic for retry",
                pipeline_id=run.state.pipeline_id,
                topic=run.topic,
                error=e.code,
            )
            return None

        logger.info(
            "Failed topic queued for retry",
            pipeline_id=run.state.pipeline_id,
            topic=run.topic,
            queued_for_date=target,
        )
        return target

    async def _finish(self, run: _Run, started: float) -> PipelineResult:
        state = run.state
        pipeline_id = state.pipeline_id

        decision = None
        if not run.aborted:
            try:
                pending = await self.review_queue.get_pending_critical_reviews()
            except NexusError as e:
                logger.warning(
                    "Failed to check pending reviews, continuing with quality checks",
                    pipeline_id=pipeline_id,
                    error=e.code,
                )
                pending = []
            decision = decide(state.quality_context, pending)
            state.quality_decision = decision.to_dict()

        await self._run_notifications(run, decision)

        state.total_cost = run.total_cost()
        queued_for_date = await self._queue_topic(run)
        if run.aborted:
            await self.state_manager.mark_failed(state, run.abort_error)
        else:
            await self.state_manager.mark_complete(state)

        duration_ms = (time.perf_counter() - started) * 1000
        self.metrics.record_pipeline(state.status.value, duration_ms / 1000, state.total_cost)

        log = logger.error if run.aborted else logger.info
        log(
            "Pipeline failed" if run.aborted else "Pipeline completed",
            pipeline_id=pipeline_id,
            status=state.status.value,
            total_duration_ms=round(duration_ms, 1),
            total_cost=state.total_cost,
            completed_stages=len(run.completed_stages),
            skipped_stages=len(run.skipped_stages),
            degraded_stages=len(state.quality_context.degraded_stages),
            fallbacks_used=len(state.quality_context.fallbacks_used),
            decision=decision.decision.value if decision else None,
        )
        bind_run(None)

        return PipelineResult(
            success=not run.aborted,
            pipeline_id=pipeline_id,
            status=state.status,
            stage_outputs=run.stage_outputs,
            completed_stages=run.completed_stages,
            skipped_stages=run.skipped_stages,
            quality_context=state.quality_context,
            total_duration_ms=duration_ms,
            total_cost=state.total_cost,
            error=_error_record(run.abort_error) if run.abort_error else None,
            queued_for_date=queued_for_date,
            quality_decision=decision,
        )
