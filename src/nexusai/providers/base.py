"""
Capability provider contracts.

Concrete providers (model APIs, speech engines, image generators) live
outside this package. The orchestrator only relies on a provider's ``name``,
its cost estimate and the capability call itself.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass
class TokenUsage:
    input: int = 0
    output: int = 0


@dataclass
class LLMResult:
    text: str
    model: str
    cost: float
    tokens: TokenUsage = field(default_factory=TokenUsage)


@dataclass
class TTSResult:
    audio_uri: str
    duration_sec: float
    cost: float
    model: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ImageResult:
    image_uris: list[str]
    cost: float
    model: str
    metadata: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class Provider(Protocol):
    """Anything that can sit in a provider chain."""

    name: str

    def estimate_cost(self, payload: Any) -> float: ...


@runtime_checkable
class LLMProvider(Provider, Protocol):
    async def generate(self, prompt: str, **options: Any) -> LLMResult: ...


@runtime_checkable
class TTSProvider(Provider, Protocol):
    async def synthesize(self, text: str, **options: Any) -> TTSResult: ...


@runtime_checkable
class ImageProvider(Provider, Protocol):
    async def generate_image(self, prompt: str, **options: Any) -> ImageResult: ...
