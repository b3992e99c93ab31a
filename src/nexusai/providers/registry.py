"""
Provider registry: one ordered chain per capability.

Chains are ordered highest quality first and cheapest or most reliable last.
Names must be non-empty and unique within a chain, since they are used for
cost attribution, tier detection and fallback logging.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from ..core.fallback import ProviderTier
from ..errors import ErrorCode, NexusError
from ..observability.logging import get_logger

logger = get_logger(__name__)

P = TypeVar("P")


@dataclass(frozen=True)
class ProviderChain(Generic[P]):
    """A primary provider and its ordered fallbacks. Immutable."""

    primary: P
    fallbacks: tuple[P, ...] = ()

    @property
    def names(self) -> list[str]:
        return [p.name for p in all_of(self)]

    def tier_of(self, provider_name: str) -> ProviderTier:
        """``primary`` iff ``provider_name`` is this chain's primary."""
        if provider_name == self.primary.name:
            return ProviderTier.PRIMARY
        return ProviderTier.FALLBACK

    def estimate_cost(self, payload: Any) -> float:
        """Expected cost when the primary provider serves the call."""
        return self.primary.estimate_cost(payload)


def all_of(chain: ProviderChain[P]) -> list[P]:
    """Flatten a chain into ``[primary, *fallbacks]`` for the fallback executor."""
    return [chain.primary, *chain.fallbacks]


def validate_chain(capability: str, chain: ProviderChain) -> None:
    seen: set[str] = set()
    for provider in all_of(chain):
        name = getattr(provider, "name", None)
        if not isinstance(name, str) or not name.strip():
            raise NexusError.critical(
                ErrorCode.PROVIDER_INVALID_NAME,
                f"{capability} provider {type(provider).__name__} has no name",
                context={"capability": capability},
            )
        if name in seen:
            raise NexusError.critical(
                ErrorCode.PROVIDER_INVALID_NAME,
                f"Duplicate {capability} provider name: {name}",
                context={"capability": capability, "name": name},
            )
        seen.add(name)


@dataclass(frozen=True)
class ProviderRegistry:
    llm: ProviderChain
    tts: ProviderChain
    image: ProviderChain

    def chains(self) -> dict[str, ProviderChain]:
        return {"llm": self.llm, "tts": self.tts, "image": self.image}


def make_chain(capability: str, primary: P, fallbacks: Sequence[P] = ()) -> ProviderChain[P]:
    chain = ProviderChain(primary, tuple(fallbacks))
    validate_chain(capability, chain)
    return chain


def create_provider_registry(
    llm: tuple[Any, Sequence[Any]],
    tts: tuple[Any, Sequence[Any]],
    image: tuple[Any, Sequence[Any]],
) -> ProviderRegistry:
    """Build and validate the registry.

    Each argument is ``(primary, [fallbacks...])``. Typical wiring:

    - llm: flagship model, then previous-generation model
    - tts: premium voice, then HD voice, then standard voice
    - image: generative model, then template thumbnailer
    """
    registry = ProviderRegistry(
        llm=make_chain("llm", *llm),
        tts=make_chain("tts", *tts),
        image=make_chain("image", *image),
    )

    logger.info(
        "Provider registry created",
        **{f"{capability}_chain": ",".join(chain.names) for capability, chain in registry.chains().items()},
    )
    return registry
