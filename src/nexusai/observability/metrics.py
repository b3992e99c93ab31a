"""
Pipeline metrics on top of OpenTelemetry.

Features:
- Stage, retry and fallback instruments for the resilience core
- Run-level outcome and cost histograms
- No-op meter when metrics were never configured, so library code can
  record unconditionally
"""

from collections import defaultdict
from typing import Any

from opentelemetry.metrics import Counter as OTelCounter
from opentelemetry.metrics import Histogram, Meter, NoOpMeter

from .logging import get_logger

logger = get_logger(__name__)

METRIC_PREFIX = "nexus"


class MetricsCollector:
    """Owns the pipeline instruments and a small in-process summary."""

    def __init__(self, meter: Meter):
        self.meter = meter
        self._counters: dict[str, OTelCounter] = {}
        self._histograms: dict[str, Histogram] = {}

        self._stage_runs: defaultdict[str, int] = defaultdict(int)
        self._stage_failures: defaultdict[str, int] = defaultdict(int)
        self._stage_fallbacks: defaultdict[str, int] = defaultdict(int)
        self._retries: defaultdict[str, int] = defaultdict(int)

        self._setup_default_metrics()

    def _setup_default_metrics(self):
        self.counter("stage_runs_total", "Stage executions", "1")
        self.counter("stage_failures_total", "Failed stage executions", "1")
        self.histogram("stage_duration_seconds", "Stage wall-clock duration", "s")
        self.counter("retry_attempts_total", "Retries scheduled by the retry executor", "1")
        self.counter("fallback_transitions_total", "Provider fallback transitions", "1")
        self.counter("pipeline_runs_total", "Finished pipeline runs", "1")
        self.histogram("pipeline_duration_seconds", "Pipeline run duration", "s")
        self.histogram("pipeline_cost_usd", "Pipeline run cost", "USD")

    def counter(self, name: str, description: str = "", unit: str = "1") -> OTelCounter:
        """Get or create a counter metric."""
        if name not in self._counters:
            self._counters[name] = self.meter.create_counter(
                f"{METRIC_PREFIX}_{name}", description=description, unit=unit
            )
        return self._counters[name]

    def histogram(self, name: str, description: str = "", unit: str = "1") -> Histogram:
        """Get or create a histogram metric."""
        if name not in self._histograms:
            self._histograms[name] = self.meter.create_histogram(
                f"{METRIC_PREFIX}_{name}", description=description, unit=unit
            )
        return self._histograms[name]

    def record_stage(self, stage: str, duration: float, success: bool, tier: str | None = None):
        attributes = {"stage": stage, "success": str(success).lower()}
        if tier:
            attributes["tier"] = tier

        self._counters["stage_runs_total"].add(1, attributes)
        self._histograms["stage_duration_seconds"].record(duration, attributes)

        self._stage_runs[stage] += 1
        if not success:
            self._counters["stage_failures_total"].add(1, {"stage": stage})
            self._stage_failures[stage] += 1
        if tier == "fallback":
            self._stage_fallbacks[stage] += 1

    def record_retry(self, stage: str | None, error_code: str):
        self._counters["retry_attempts_total"].add(
            1, {"stage": stage or "unknown", "error_code": error_code}
        )
        self._retries[stage or "unknown"] += 1

    def record_fallback(self, stage: str | None, from_provider: str, to_provider: str):
        self._counters["fallback_transitions_total"].add(
            1, {"stage": stage or "unknown", "from": from_provider, "to": to_provider}
        )

    def record_pipeline(self, status: str, duration: float, cost: float):
        attributes = {"status": status}
        self._counters["pipeline_runs_total"].add(1, attributes)
        self._histograms["pipeline_duration_seconds"].record(duration, attributes)
        self._histograms["pipeline_cost_usd"].record(cost, attributes)

    def get_stage_summary(self) -> dict[str, Any]:
        """Per-stage run, failure, fallback and retry counts seen by this process."""
        summary = {}
        for stage, runs in self._stage_runs.items():
            failures = self._stage_failures[stage]
            summary[stage] = {
                "runs": runs,
                "failures": failures,
                "failure_rate": failures / runs if runs else 0.0,
                "fallbacks": self._stage_fallbacks[stage],
                "retries": self._retries[stage],
            }
        return summary


_metrics_collector: MetricsCollector | None = None


def setup_metrics(meter: Meter) -> MetricsCollector:
    """Install the process-wide metrics collector."""
    global _metrics_collector
    _metrics_collector = MetricsCollector(meter)
    return _metrics_collector


def get_metrics_collector() -> MetricsCollector:
    """Return the configured collector, or a no-op one."""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector(NoOpMeter(METRIC_PREFIX))
    return _metrics_collector


def reset_metrics() -> None:
    global _metrics_collector
    _metrics_collector = None
