"""
Tests for the fallback executor.
"""

import pytest

from nexusai.core.fallback import ProviderTier, provider_name, with_fallback
from nexusai.core.retry import RetryOptions
from nexusai.errors import ErrorCode, ErrorSeverity, NexusError


class FakeProvider:
    def __init__(self, name, outcomes=None):
        self.name = name
        self.outcomes = list(outcomes or [])
        self.calls = 0

    async def generate(self):
        self.calls += 1
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        return f"{self.name}-result"


async def call(provider):
    return await provider.generate()


class TestWithFallback:
    """Ordered provider selection."""

    @pytest.mark.asyncio
    async def test_primary_success(self):
        a, b = FakeProvider("A"), FakeProvider("B")

        outcome = await with_fallback([a, b], call, stage="script-gen")

        assert outcome.tier is ProviderTier.PRIMARY
        assert outcome.provider == "A"
        assert outcome.result.result == "A-result"
        assert b.calls == 0
        assert [a.success for a in outcome.attempts] == [True]

    @pytest.mark.asyncio
    async def test_falls_back_on_fallback_severity(self):
        a = FakeProvider("A", [NexusError.fallback(ErrorCode.TTS_TIMEOUT, "primary down")])
        b = FakeProvider("B")

        outcome = await with_fallback([a, b], call, stage="tts")

        assert outcome.tier is ProviderTier.FALLBACK
        assert outcome.provider == "B"
        assert [(x.provider, x.success) for x in outcome.attempts] == [("A", False), ("B", True)]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "severity",
        [ErrorSeverity.RETRYABLE, ErrorSeverity.DEGRADED, ErrorSeverity.RECOVERABLE, ErrorSeverity.CRITICAL],
    )
    async def test_other_severities_abort_chain(self, severity):
        error = NexusError("NEXUS_TEST", "bad request", severity)
        a, b = FakeProvider("A", [error]), FakeProvider("B")

        with pytest.raises(NexusError) as exc_info:
            await with_fallback([a, b], call)

        assert exc_info.value is error
        assert b.calls == 0

    @pytest.mark.asyncio
    async def test_plain_exception_aborts_chain(self):
        a, b = FakeProvider("A", [ValueError("boom")]), FakeProvider("B")

        with pytest.raises(ValueError):
            await with_fallback([a, b], call)

        assert b.calls == 0

    @pytest.mark.asyncio
    async def test_exhaustion_is_critical_with_attempts(self):
        providers = [
            FakeProvider("A", [NexusError.fallback("NEXUS_X", "a down")]),
            FakeProvider("B", [NexusError.fallback("NEXUS_X", "b down")]),
        ]

        with pytest.raises(NexusError) as exc_info:
            await with_fallback(providers, call, stage="thumbnail")

        error = exc_info.value
        assert error.code == ErrorCode.FALLBACK_EXHAUSTED
        assert error.severity is ErrorSeverity.CRITICAL
        assert error.stage == "thumbnail"
        assert "A, B" in error.message
        assert [a["provider"] for a in error.context["attempts"]] == ["A", "B"]

    @pytest.mark.asyncio
    async def test_empty_provider_list(self):
        with pytest.raises(NexusError) as exc_info:
            await with_fallback([], call)
        assert exc_info.value.code == ErrorCode.FALLBACK_NO_PROVIDERS

    @pytest.mark.asyncio
    async def test_on_fallback_receives_transition(self):
        seen = []
        error = NexusError.fallback("NEXUS_X", "down")
        providers = [FakeProvider("A", [error]), FakeProvider("B")]

        await with_fallback(providers, call, on_fallback=lambda f, t, e: seen.append((f, t, e)))

        assert seen == [("A", "B", error)]

    @pytest.mark.asyncio
    async def test_retry_runs_on_same_provider_first(self):
        a = FakeProvider("A", [NexusError.retryable_error("NEXUS_RATE", "busy"), "recovered"])
        b = FakeProvider("B")

        outcome = await with_fallback(
            [a, b], call, retry=RetryOptions(max_retries=2, base_delay_ms=0, max_delay_ms=0)
        )

        assert outcome.provider == "A"
        assert outcome.result.result == "recovered"
        assert a.calls == 2
        assert b.calls == 0


class TestProviderName:
    def test_uses_name_attribute(self):
        assert provider_name(FakeProvider("gemini")) == "gemini"

    def test_falls_back_to_type_name(self):
        assert provider_name(object()) == "object"
