"""Capability providers and the registry that orders them into chains."""

from .base import (
    ImageProvider,
    ImageResult,
    LLMProvider,
    LLMResult,
    Provider,
    TokenUsage,
    TTSProvider,
    TTSResult,
)
from .registry import ProviderChain, ProviderRegistry, all_of, create_provider_registry, make_chain

__all__ = [
    "Provider",
    "LLMProvider",
    "TTSProvider",
    "ImageProvider",
    "LLMResult",
    "TTSResult",
    "ImageResult",
    "TokenUsage",
    "ProviderChain",
    "ProviderRegistry",
    "all_of",
    "make_chain",
    "create_provider_registry",
]
