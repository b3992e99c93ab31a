"""
Tests for logging, metrics, tracing and probes.
"""

import logging

import pytest
from opentelemetry.sdk.metrics import MeterProvider

from nexusai.core.retry import RetryOptions, with_retry
from nexusai.errors import NexusError
from nexusai.observability.logging import (
    StructuredFormatter,
    bind_run,
    bind_stage,
    get_logger,
    get_run_context,
    set_trace_id,
)
from nexusai.observability.metrics import get_metrics_collector, setup_metrics
from nexusai.observability.probe import clear_trace_metrics, get_trace_metrics, probe
from nexusai.observability.tracing import get_tracing_manager, setup_tracing, trace_span


def format_record(logger_name, msg, **fields):
    record = logging.LogRecord(logger_name, logging.INFO, __file__, 10, msg, None, None)
    for key, value in fields.items():
        setattr(record, key, value)
    return StructuredFormatter().format(record)


class TestStructuredLogging:
    """Structured formatter and run context."""

    def test_line_carries_trace_and_run(self):
        set_trace_id("pipeline:2026-01-20")
        bind_run("2026-01-20", "tts")

        line = format_record("nexusai.core.pipeline", "Stage completed", provider="chirp", ms=12.34)

        assert "level=INFO" in line
        assert "trace=pipeline:2026-01-20" in line
        assert "pipeline=2026-01-20 stage=tts" in line
        assert "mod=pipeline" in line
        assert "ms=12.3" in line
        assert 'msg="Stage completed"' in line
        assert " provider=chirp" in line

    def test_run_context(self):
        bind_run("2026-01-20")
        bind_stage("render")
        assert get_run_context()["stage"] == "render"
        bind_stage(None)
        assert get_run_context() == {"trace_id": None, "pipeline_id": "2026-01-20", "stage": None}

    def test_reserved_fields_are_dropped(self, caplog):
        logger = get_logger("nexusai.test")
        with caplog.at_level(logging.INFO, logger="nexusai.test"):
            logger.info("hello", name="shadow", topic="GPU prices")

        record = caplog.records[-1]
        assert record.name == "nexusai.test"
        assert record.topic == "GPU prices"


class TestMetrics:
    """Metrics collector on a real SDK meter."""

    @pytest.mark.asyncio
    async def test_retries_are_counted(self):
        collector = setup_metrics(MeterProvider().get_meter("test"))
        attempts = iter([NexusError.retryable_error("NEXUS_RATE", "busy")])

        async def op():
            error = next(attempts, None)
            if error:
                raise error
            return "ok"

        await with_retry(op, RetryOptions(max_retries=2, base_delay_ms=0, max_delay_ms=0, stage="research"))
        collector.record_stage("research", 0.2, True, "fallback")
        collector.record_stage("research", 0.1, False)

        summary = collector.get_stage_summary()["research"]
        assert summary == {
            "runs": 2,
            "failures": 1,
            "failure_rate": 0.5,
            "fallbacks": 1,
            "retries": 1,
        }

    def test_default_collector_is_no_op(self):
        collector = get_metrics_collector()
        collector.record_pipeline("completed", 1.0, 0.5)
        assert collector is get_metrics_collector()


class TestTracing:
    """Spans around pipeline operations."""

    @pytest.mark.asyncio
    async def test_trace_span_sets_trace_id(self):
        setup_tracing("nexusai-test")
        seen = {}

        @trace_span("pipeline.test")
        async def operation():
            from nexusai.observability.logging import get_trace_id

            seen["trace_id"] = get_trace_id()
            return "done"

        assert await operation() == "done"
        assert len(seen["trace_id"]) == 32

    @pytest.mark.asyncio
    async def test_span_marks_errors_and_reraises(self):
        manager = get_tracing_manager()
        with pytest.raises(RuntimeError):
            with manager.span("stage.render"):
                raise RuntimeError("boom")

    def test_trace_span_rejects_sync_functions(self):
        with pytest.raises(TypeError):

            @trace_span()
            def not_async():
                pass


class TestProbe:
    """Operation probes."""

    def test_samples_are_kept_per_trace(self):
        with probe("store.get", trace_id="t-1", collection="pipelines"):
            pass

        sample = get_trace_metrics("t-1")["store.get"]
        assert sample["success"] is True
        assert sample["labels"] == {"collection": "pipelines"}

        clear_trace_metrics("t-1")
        assert get_trace_metrics("t-1") == {}

    def test_failures_are_recorded(self):
        with pytest.raises(OSError):
            with probe("store.set", trace_id="t-2"):
                raise OSError("disk")

        sample = get_trace_metrics("t-2")["store.set"]
        assert sample["success"] is False
        assert sample["error_type"] == "OSError"
        clear_trace_metrics("t-2")
