"""
Observability for the pipeline: structured logs, metrics, traces and probes.

Usage:
    >>> from nexusai.observability import get_logger, probe
    >>>
    >>> logger = get_logger(__name__)
    >>> with probe("store.get", collection="pipelines"):
    ...     ...
    >>> logger.info("Stage completed", stage="tts", tier="primary")

Configuration:
    - NEXUS_OBSERVABILITY__LOG_LEVEL=INFO
    - NEXUS_OBSERVABILITY__ENABLE_TRACING=true
    - NEXUS_OBSERVABILITY__OTLP_ENDPOINT=http://collector:4317
"""

from .logging import bind_run, bind_stage, get_logger, set_trace_id, setup_logging
from .metrics import get_metrics_collector, setup_metrics
from .probe import probe
from .tracing import get_tracing_manager, setup_tracing, trace_span

__all__ = [
    "get_logger",
    "setup_logging",
    "set_trace_id",
    "bind_run",
    "bind_stage",
    "setup_metrics",
    "get_metrics_collector",
    "probe",
    "trace_span",
    "setup_tracing",
    "get_tracing_manager",
]
