"""
Operation probes: timing, structured logging and Prometheus counters.

``probe`` wraps storage calls and stage executions so every operation leaves a
single timing line in the logs and a sample in the ``nexus_ops_*`` Prometheus
series. Timings are also kept per trace id for the run summary.
"""

import contextlib
import time
from typing import Any

from prometheus_client import Counter, Histogram

from .logging import get_logger, get_trace_id

log = get_logger("nexusai.probe")

OPS = Counter("nexus_ops_total", "Probed operations", ["op", "ok"])
OP_LATENCY = Histogram("nexus_op_latency_seconds", "Probed operation latency", ["op"])

_METRICS_STORE: dict[str, dict[str, Any]] = {}


@contextlib.contextmanager
def probe(op: str, trace_id: str | None = None, **labels):
    """Time the enclosed block.

    Args:
        op: Operation name, e.g. ``"store.set"`` or ``"stage.tts"``
        trace_id: Correlation id; defaults to the active logging trace id
        **labels: Extra fields written to the log line
    """
    trace_id = trace_id or get_trace_id()
    start_time = time.perf_counter()
    ok = "true"
    error_type = None

    try:
        yield
    except Exception as e:
        ok = "false"
        error_type = type(e).__name__
        raise
    finally:
        duration_ms = (time.perf_counter() - start_time) * 1000

        log.debug("probe", op=op, ms=duration_ms, ok=ok, error=error_type, **labels)

        OPS.labels(op=op, ok=ok).inc()
        OP_LATENCY.labels(op=op).observe(duration_ms / 1000.0)

        if trace_id:
            _METRICS_STORE.setdefault(trace_id, {})[op] = {
                "duration_ms": duration_ms,
                "success": ok == "true",
                "error_type": error_type,
                "labels": labels,
                "timestamp": time.time(),
            }


def get_trace_metrics(trace_id: str) -> dict[str, Any]:
    """All probe samples recorded under ``trace_id``."""
    return _METRICS_STORE.get(trace_id, {})


def clear_trace_metrics(trace_id: str) -> None:
    _METRICS_STORE.pop(trace_id, None)
