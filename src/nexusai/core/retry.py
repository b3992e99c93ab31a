"""
Retry executor for a single async operation.

Only failures classified RETRYABLE are retried; every other failure is
re-raised on the spot. When the attempt budget runs out the last error is
re-raised unchanged, so the caller still sees the provider's own code and
severity.

Backoff for attempt ``i`` (0-based) is ``min(base * 2**i, max)`` scaled by a
jitter factor in ``[0.5, 1.0)``.
"""

import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from ..errors import ErrorCode, NexusError, is_retryable
from ..observability.logging import get_logger
from ..observability.metrics import get_metrics_collector

logger = get_logger(__name__)

T = TypeVar("T")

OnRetry = Callable[[int, float, BaseException], None]


@dataclass
class RetryOptions:
    """Retry policy.

    Attributes:
        max_retries: additional attempts after the first one
        base_delay_ms: delay before the first retry, before jitter
        max_delay_ms: cap on the un-jittered delay
        stage: stage name used for logging and metrics
        on_retry: ``(attempt_number, delay_ms, error)`` observer, called
            before each wait. Exceptions it raises are logged and ignored.
    """

    max_retries: int = 3
    base_delay_ms: float = 1000
    max_delay_ms: float = 30000
    stage: str | None = None
    on_retry: OnRetry | None = None

    def validate(self) -> None:
        for field_name in ("max_retries", "base_delay_ms", "max_delay_ms"):
            if getattr(self, field_name) < 0:
                raise NexusError.critical(
                    ErrorCode.RETRY_INVALID_OPTIONS,
                    f"{field_name} must be non-negative",
                    self.stage,
                    {field_name: getattr(self, field_name)},
                )


@dataclass
class RetryResult(Generic[T]):
    result: T
    attempts: int
    total_delay_ms: float


def backoff_delay_ms(attempt_index: int, base_delay_ms: float, max_delay_ms: float) -> float:
    """Jittered exponential delay for the retry following attempt ``attempt_index``."""
    capped = min(base_delay_ms * (2**attempt_index), max_delay_ms)
    return capped * (0.5 + random.random() * 0.5)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    options: RetryOptions | None = None,
) -> RetryResult[T]:
    """Run ``operation`` under ``options``.

    Returns:
        RetryResult with the operation's value, the number of attempts made
        and the total time spent waiting.

    Raises:
        NexusError: RETRY_INVALID_OPTIONS for negative option values
        BaseException: the operation's last error, unchanged
    """
    options = options or RetryOptions()
    options.validate()

    metrics = get_metrics_collector()

    def wait(retry_state: RetryCallState) -> float:
        delay_ms = backoff_delay_ms(
            retry_state.attempt_number - 1, options.base_delay_ms, options.max_delay_ms
        )
        return delay_ms / 1000.0

    def before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception()
        delay_ms = retry_state.next_action.sleep * 1000.0
        code = getattr(error, "code", type(error).__name__)

        logger.warning(
            "Retrying after retryable failure",
            stage=options.stage,
            attempt=retry_state.attempt_number,
            max_retries=options.max_retries,
            delay_ms=round(delay_ms, 1),
            error_code=code,
        )
        metrics.record_retry(options.stage, code)

        if options.on_retry is not None:
            try:
                options.on_retry(retry_state.attempt_number, delay_ms, error)
            except Exception:
                logger.exception("on_retry callback failed", stage=options.stage)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(options.max_retries + 1),
        wait=wait,
        retry=retry_if_exception(is_retryable),
        before_sleep=before_sleep,
        reraise=True,
    )

    async for attempt in retrying:
        with attempt:
            result = await operation()

    state = attempt.retry_state
    if state.attempt_number > 1:
        logger.info(
            "Operation succeeded after retries",
            stage=options.stage,
            attempts=state.attempt_number,
        )

    return RetryResult(
        result=result,
        attempts=state.attempt_number,
        total_delay_ms=state.idle_for * 1000.0,
    )
