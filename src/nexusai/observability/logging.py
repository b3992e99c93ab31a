"""
Structured logging for the pipeline with trace and run correlation.

Every line carries the active trace id and, while a pipeline run is in
progress, the run's pipeline id and current stage. Call sites pass structured
fields as keyword arguments:

    logger.info("Stage completed", stage="tts", duration_ms=812.4)
"""

import logging
import sys
from contextvars import ContextVar
from datetime import UTC, datetime

trace_id_ctx: ContextVar[str | None] = ContextVar("trace_id", default=None)
pipeline_id_ctx: ContextVar[str | None] = ContextVar("pipeline_id", default=None)
stage_ctx: ContextVar[str | None] = ContextVar("stage", default=None)

_loggers: dict[str, "StructuredLogger"] = {}

# LogRecord attributes that must not be overwritten through ``extra``
_RESERVED_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "getMessage",
        "exc_info",
        "exc_text",
        "stack_info",
        "message",
    }
)

_FORMATTER_SKIP = _RESERVED_ATTRS | {"trace_id", "pipeline_id", "stage", "op", "ms", "duration_ms"}


class StructuredFormatter(logging.Formatter):
    """Render records as ``t=... level=... trace=... msg="..." k=v`` lines."""

    def format(self, record: logging.LogRecord) -> str:
        trace_id = getattr(record, "trace_id", None) or trace_id_ctx.get() or "-"
        pipeline_id = getattr(record, "pipeline_id", None) or pipeline_id_ctx.get()
        stage = getattr(record, "stage", None) or stage_ctx.get()

        mod = record.name.split(".")[-1]
        op = getattr(record, "op", None) or record.funcName or "-"

        duration = getattr(record, "ms", getattr(record, "duration_ms", None))
        ms_part = f" ms={duration:.1f}" if isinstance(duration, int | float) else ""

        run_part = ""
        if pipeline_id:
            run_part += f" pipeline={pipeline_id}"
        if stage:
            run_part += f" stage={stage}"

        extra_fields = "".join(
            f" {key}={value}"
            for key, value in record.__dict__.items()
            if key not in _FORMATTER_SKIP
        )

        line = (
            f"t={datetime.now(UTC).isoformat()} level={record.levelname} trace={trace_id}"
            f"{run_part} mod={mod} op={op}{ms_part} "
            f'msg="{record.getMessage()}"{extra_fields}'
        )
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class StructuredLogger:
    """Thin wrapper over a stdlib logger that accepts structured fields."""

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(name)

    def _log(self, level: int, msg: str, exc_info: bool = False, **kwargs):
        extra = {k: v for k, v in kwargs.items() if k not in _RESERVED_ATTRS}
        extra["trace_id"] = trace_id_ctx.get()
        self.logger.log(level, msg, extra=extra, exc_info=exc_info)

    def debug(self, msg: str, **kwargs):
        self._log(logging.DEBUG, msg, **kwargs)

    def info(self, msg: str, **kwargs):
        self._log(logging.INFO, msg, **kwargs)

    def warning(self, msg: str, **kwargs):
        self._log(logging.WARNING, msg, **kwargs)

    def error(self, msg: str, **kwargs):
        self._log(logging.ERROR, msg, **kwargs)

    def exception(self, msg: str, **kwargs):
        """Log at ERROR level with the active exception's traceback."""
        self._log(logging.ERROR, msg, exc_info=True, **kwargs)

    def critical(self, msg: str, **kwargs):
        self._log(logging.CRITICAL, msg, **kwargs)



def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger for the given module."""
    if name not in _loggers:
        _loggers[name] = StructuredLogger(name)
    return _loggers[name]


def setup_logging(level: str = "INFO") -> None:
    """Install the structured formatter on the root logger."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper()))

    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("opentelemetry").setLevel(logging.WARNING)


def set_trace_id(trace_id: str) -> None:
    trace_id_ctx.set(trace_id)


def get_trace_id() -> str | None:
    return trace_id_ctx.get()


def clear_trace_id() -> None:
    trace_id_ctx.set(None)


def bind_run(pipeline_id: str | None, stage: str | None = None) -> None:
    """Attach the active pipeline run (and optionally stage) to log lines."""
    pipeline_id_ctx.set(pipeline_id)
    stage_ctx.set(stage)


def bind_stage(stage: str | None) -> None:
    stage_ctx.set(stage)


def get_run_context() -> dict[str, str | None]:
    return {
        "trace_id": trace_id_ctx.get(),
        "pipeline_id": pipeline_id_ctx.get(),
        "stage": stage_ctx.get(),
    }
