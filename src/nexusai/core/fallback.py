"""
Fallback executor: try interchangeable providers strictly in order.

A provider failing with FALLBACK severity hands over to the next provider.
Any other severity aborts the chain immediately and propagates unchanged.
When every provider has failed with FALLBACK, a CRITICAL
NEXUS_FALLBACK_EXHAUSTED error lists each attempt.
"""

import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Generic, TypeVar

from ..errors import ErrorCode, NexusError, should_fallback
from ..observability.logging import get_logger
from ..observability.metrics import get_metrics_collector
from .retry import RetryOptions, with_retry

logger = get_logger(__name__)

P = TypeVar("P")
T = TypeVar("T")

OnFallback = Callable[[str, str, BaseException], None]


class ProviderTier(str, Enum):
    PRIMARY = "primary"
    FALLBACK = "fallback"


@dataclass
class FallbackAttempt:
    provider: str
    success: bool
    duration_ms: float
    error: BaseException | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "success": self.success,
            "duration_ms": round(self.duration_ms, 1),
            "error": getattr(self.error, "code", type(self.error).__name__) if self.error else None,
            "message": str(self.error) if self.error else None,
        }


@dataclass
class ProviderResult(Generic[T]):
    """The value a provider produced, tagged with that provider's name."""

    result: T
    provider: str


@dataclass
class FallbackResult(Generic[T]):
    result: ProviderResult[T]
    tier: ProviderTier
    attempts: list[FallbackAttempt] = field(default_factory=list)

    @property
    def provider(self) -> str:
        return self.result.provider


def provider_name(provider: Any) -> str:
    """Name used for attribution; providers expose a ``name`` attribute."""
    name = getattr(provider, "name", None)
    return name if isinstance(name, str) and name else type(provider).__name__


async def with_fallback(
    providers: Sequence[P],
    operation: Callable[[P], Awaitable[T]],
    *,
    stage: str | None = None,
    on_fallback: OnFallback | None = None,
    retry: RetryOptions | None = None,
) -> FallbackResult[T]:
    """Call ``operation(provider)`` for each provider until one succeeds.

    Args:
        providers: ordered chain, primary first
        operation: the capability call to make against one provider
        stage: stage name for logging and error attribution
        on_fallback: ``(from_name, to_name, error)`` observer per transition
        retry: when given, each provider call runs under the retry executor,
            so RETRYABLE failures are retried on the same provider first

    Raises:
        NexusError: FALLBACK_NO_PROVIDERS for an empty chain,
            FALLBACK_EXHAUSTED when every provider failed with FALLBACK
        BaseException: any non-FALLBACK failure, unchanged
    """
    if not providers:
        raise NexusError.critical(
            ErrorCode.FALLBACK_NO_PROVIDERS, "No providers supplied to fallback executor", stage
        )

    metrics = get_metrics_collector()
    attempts: list[FallbackAttempt] = []

    for index, provider in enumerate(providers):
        name = provider_name(provider)
        started = time.perf_counter()

        try:
            if retry is not None:
                retry_options = replace(retry, stage=retry.stage or stage)
                outcome = await with_retry(lambda p=provider: operation(p), retry_options)
                value = outcome.result
            else:
                value = await operation(provider)
        except Exception as error:
            attempts.append(
                FallbackAttempt(name, False, (time.perf_counter() - started) * 1000, error)
            )

            if not should_fallback(error):
                logger.error(
                    "Provider failed with non-fallback error, aborting chain",
                    stage=stage,
                    provider=name,
                    error_code=getattr(error, "code", type(error).__name__),
                )
                raise

            if index + 1 < len(providers):
                next_name = provider_name(providers[index + 1])
                logger.warning(
                    "Provider failed, falling back",
                    stage=stage,
                    from_provider=name,
                    to_provider=next_name,
                    error_code=getattr(error, "code", None),
                )
                metrics.record_fallback(stage, name, next_name)
                if on_fallback is not None:
                    try:
                        on_fallback(name, next_name, error)
                    except Exception:
                        logger.exception("on_fallback callback failed", stage=stage)
            continue

        attempts.append(FallbackAttempt(name, True, (time.perf_counter() - started) * 1000))
        tier = ProviderTier.PRIMARY if index == 0 else ProviderTier.FALLBACK

        if tier is ProviderTier.FALLBACK:
            logger.info("Fallback provider succeeded", stage=stage, provider=name, position=index)

        return FallbackResult(ProviderResult(value, name), tier, attempts)

    tried = ", ".join(a.provider for a in attempts)
    raise NexusError.critical(
        ErrorCode.FALLBACK_EXHAUSTED,
        f"All providers failed: {tried}",
        stage,
        {"attempts": [a.to_dict() for a in attempts]},
    )
