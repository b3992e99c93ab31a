"""
Error taxonomy shared by every pipeline component.

Failures are classified by severity rather than by exception type. The retry
executor only reacts to RETRYABLE, the fallback executor only to FALLBACK, the
stage executor converts anything unclassified into CRITICAL, and the pipeline
decides between "record and continue" and "halt and queue" from the severity
that reaches it.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any


class ErrorSeverity(str, Enum):
    """How a failure should be handled by the layers above it."""

    RETRYABLE = "RETRYABLE"
    FALLBACK = "FALLBACK"
    DEGRADED = "DEGRADED"
    RECOVERABLE = "RECOVERABLE"
    CRITICAL = "CRITICAL"


class ErrorCode:
    """Stable error codes in NEXUS_{DOMAIN}_{TYPE} form."""

    UNKNOWN = "NEXUS_UNKNOWN_ERROR"
    VALIDATION = "NEXUS_VALIDATION_ERROR"

    RETRY_EXHAUSTED = "NEXUS_RETRY_EXHAUSTED"
    RETRY_INVALID_OPTIONS = "NEXUS_RETRY_INVALID_OPTIONS"

    FALLBACK_EXHAUSTED = "NEXUS_FALLBACK_EXHAUSTED"
    FALLBACK_NO_PROVIDERS = "NEXUS_FALLBACK_NO_PROVIDERS"
    PROVIDER_INVALID_NAME = "NEXUS_PROVIDER_INVALID_NAME"

    STAGE_TIMEOUT = "NEXUS_STAGE_TIMEOUT"
    STAGE_INVALID_OUTPUT = "NEXUS_STAGE_INVALID_OUTPUT"
    QUALITY_GATE_FAIL = "NEXUS_QUALITY_GATE_FAIL"

    QUEUE_TOPIC_NOT_FOUND = "NEXUS_QUEUE_TOPIC_NOT_FOUND"
    QUEUE_TOPIC_SAVE_FAILED = "NEXUS_QUEUE_TOPIC_SAVE_FAILED"
    QUEUE_TOPIC_CLEAR_FAILED = "NEXUS_QUEUE_TOPIC_CLEAR_FAILED"

    REVIEW_ITEM_NOT_FOUND = "NEXUS_REVIEW_ITEM_NOT_FOUND"
    REVIEW_ITEM_ALREADY_RESOLVED = "NEXUS_REVIEW_ITEM_ALREADY_RESOLVED"
    REVIEW_ITEM_SAVE_FAILED = "NEXUS_REVIEW_ITEM_SAVE_FAILED"
    REVIEW_INVALID_TYPE = "NEXUS_REVIEW_INVALID_TYPE"
    REVIEW_INVALID_STATUS = "NEXUS_REVIEW_INVALID_STATUS"

    PIPELINE_ALREADY_RUNNING = "NEXUS_PIPELINE_ALREADY_RUNNING"
    PIPELINE_COMPLETED = "NEXUS_PIPELINE_COMPLETED"
    PIPELINE_INVALID_STATE = "NEXUS_PIPELINE_INVALID_STATE"
    INVALID_STAGE = "NEXUS_INVALID_STAGE"
    STATE_NOT_FOUND = "NEXUS_STATE_NOT_FOUND"

    LLM_TIMEOUT = "NEXUS_LLM_TIMEOUT"
    LLM_RATE_LIMIT = "NEXUS_LLM_RATE_LIMIT"
    LLM_GENERATION_FAILED = "NEXUS_LLM_GENERATION_FAILED"
    TTS_TIMEOUT = "NEXUS_TTS_TIMEOUT"
    TTS_RATE_LIMIT = "NEXUS_TTS_RATE_LIMIT"
    TTS_SYNTHESIS_FAILED = "NEXUS_TTS_SYNTHESIS_FAILED"
    IMAGE_TIMEOUT = "NEXUS_IMAGE_TIMEOUT"
    IMAGE_RATE_LIMIT = "NEXUS_IMAGE_RATE_LIMIT"
    IMAGE_GENERATION_FAILED = "NEXUS_IMAGE_GENERATION_FAILED"


class NexusError(Exception):
    """A classified pipeline failure.

    Every error raised inside the pipeline carries a stable ``code``, its
    ``severity``, the ``stage`` it originated from and optional structured
    ``context``. Matching is done on ``severity``; use the factory methods
    rather than the constructor where possible.
    """

    def __init__(
        self,
        code: str,
        message: str,
        severity: ErrorSeverity = ErrorSeverity.CRITICAL,
        stage: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.severity = ErrorSeverity(severity)
        self.stage = stage
        self.context = dict(context or {})
        self.timestamp = datetime.now(UTC).isoformat()

    @property
    def retryable(self) -> bool:
        return self.severity is ErrorSeverity.RETRYABLE

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"NexusError(code={self.code!r}, severity={self.severity.value}, "
            f"stage={self.stage!r}, message={self.message!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Serializable form used in persisted stage records and logs."""
        return {
            "code": self.code,
            "message": self.message,
            "severity": self.severity.value,
            "stage": self.stage,
            "context": self.context,
            "timestamp": self.timestamp,
        }

    @classmethod
    def retryable_error(
        cls, code: str, message: str, stage: str | None = None, context: dict[str, Any] | None = None
    ) -> "NexusError":
        return cls(code, message, ErrorSeverity.RETRYABLE, stage, context)

    @classmethod
    def fallback(
        cls, code: str, message: str, stage: str | None = None, context: dict[str, Any] | None = None
    ) -> "NexusError":
        return cls(code, message, ErrorSeverity.FALLBACK, stage, context)

    @classmethod
    def degraded(
        cls, code: str, message: str, stage: str | None = None, context: dict[str, Any] | None = None
    ) -> "NexusError":
        return cls(code, message, ErrorSeverity.DEGRADED, stage, context)

    @classmethod
    def recoverable(
        cls, code: str, message: str, stage: str | None = None, context: dict[str, Any] | None = None
    ) -> "NexusError":
        return cls(code, message, ErrorSeverity.RECOVERABLE, stage, context)

    @classmethod
    def critical(
        cls, code: str, message: str, stage: str | None = None, context: dict[str, Any] | None = None
    ) -> "NexusError":
        return cls(code, message, ErrorSeverity.CRITICAL, stage, context)

    @classmethod
    def from_error(cls, error: BaseException, stage: str | None = None) -> "NexusError":
        """Classify an arbitrary exception.

        Already classified errors pass through unchanged (only a missing stage
        is filled in). Anything else is wrapped as CRITICAL NEXUS_UNKNOWN_ERROR.
        """
        if isinstance(error, NexusError):
            if error.stage is None and stage is not None:
                error.stage = stage
            return error

        wrapped = cls.critical(
            ErrorCode.UNKNOWN,
            str(error) or type(error).__name__,
            stage,
            {"original_type": type(error).__name__, "original_message": str(error)},
        )
        wrapped.__cause__ = error
        return wrapped


def get_severity(error: BaseException) -> ErrorSeverity:
    """Severity of ``error``; unclassified errors are CRITICAL."""
    if isinstance(error, NexusError):
        return error.severity
    return ErrorSeverity.CRITICAL


def is_retryable(error: BaseException) -> bool:
    return get_severity(error) is ErrorSeverity.RETRYABLE


def should_fallback(error: BaseException) -> bool:
    return get_severity(error) is ErrorSeverity.FALLBACK


def can_continue(error: BaseException) -> bool:
    """True when the pipeline may record the failure and move on."""
    return get_severity(error) in (ErrorSeverity.DEGRADED, ErrorSeverity.RECOVERABLE)
