"""
Tests for settings and the dependency container.
"""

from unittest.mock import AsyncMock

import pytest
from pydantic import ValidationError

from nexusai.config import Container, Settings, setup_container
from nexusai.core.pipeline import PipelineRunner
from nexusai.core.stages import STAGE_ORDER, StageRegistry
from nexusai.queues import ReviewQueue, TopicQueue
from nexusai.storage import MemoryStore


class TestSettings:
    """Defaults, environment overrides and validation."""

    def test_defaults(self):
        settings = Settings()

        assert settings.retry.max_delay_ms == 30000
        assert settings.pipeline.lock_timeout_hours == 4.0
        assert settings.queue.max_retries == 2
        assert settings.review.pronunciation_unknown_threshold == 3
        assert settings.storage.backend == "local"
        assert settings.observability.log_level == "INFO"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("NEXUS_STORAGE__BACKEND", "memory")
        monkeypatch.setenv("NEXUS_PIPELINE__TIMEZONE", "America/New_York")
        monkeypatch.setenv("NEXUS_OBSERVABILITY__LOG_LEVEL", "debug")
        monkeypatch.setenv("NEXUS_RETRY__MAX_DELAY_MS", "5000")

        settings = Settings()

        assert settings.storage.backend == "memory"
        assert settings.pipeline.timezone == "America/New_York"
        assert settings.observability.log_level == "DEBUG"
        assert settings.retry.max_delay_ms == 5000

    def test_s3_requires_bucket(self):
        with pytest.raises(ValidationError):
            Settings(storage={"backend": "s3"})

    def test_invalid_log_level(self):
        with pytest.raises(ValidationError):
            Settings(observability={"log_level": "LOUD"})


class TestContainer:
    """Service wiring and lifecycle."""

    def test_default_wiring(self, container, store):
        assert container.require("document_store") is store
        assert isinstance(container.require("topic_queue"), TopicQueue)

        review_queue = container.require("review_queue")
        assert isinstance(review_queue, ReviewQueue)
        assert review_queue.topic_queue is container.require("topic_queue")

    def test_services_are_cached(self, container):
        assert container.require("state_manager") is container.require("state_manager")

    def test_require_unknown_service(self, container):
        with pytest.raises(KeyError):
            container.require("pipeline_runner")

    def test_runner_needs_stage_registry(self, container):
        async def handler(stage_input):
            raise NotImplementedError

        container.register_singleton(
            "stage_registry", StageRegistry({stage: handler for stage in STAGE_ORDER})
        )

        runner = container.require("pipeline_runner")

        assert isinstance(runner, PipelineRunner)
        assert runner.settings is container.settings

    def test_memory_backend_from_settings(self, settings):
        assert isinstance(setup_container(settings).require("document_store"), MemoryStore)

    @pytest.mark.asyncio
    async def test_cleanup_closes_services(self, settings):
        container = Container(settings)
        closable = AsyncMock()
        failing = AsyncMock()
        failing.close.side_effect = RuntimeError("already closed")
        container.register_singleton("closable", closable)
        container.register_singleton("failing", failing)

        async with container.lifespan():
            pass

        closable.close.assert_awaited_once()
        failing.close.assert_awaited_once()


class TestStageRegistry:
    def test_missing_handler_rejected(self):
        async def handler(stage_input):
            return None

        handlers = {stage: handler for stage in STAGE_ORDER[:-1]}

        with pytest.raises(ValueError, match="notifications"):
            StageRegistry(handlers)
