"""
Tests for the failed-topic retry queue.
"""

from unittest.mock import AsyncMock, patch

import pytest

from nexusai.config.settings import Settings
from nexusai.errors import ErrorCode, NexusError
from nexusai.queues import QueueStatus, TopicQueue, next_day
from nexusai.queues.topics import QUEUED_TOPICS_COLLECTION


class TestQueueFailedTopic:
    """Queueing a topic after a failed run."""

    @pytest.mark.asyncio
    async def test_topic_is_queued_for_next_day(self, topic_queue, store):
        target = await topic_queue.queue_failed_topic("AI Regulation", "TTS failed", "tts", "2026-01-20")

        assert target == "2026-01-21"
        doc = await store.get(QUEUED_TOPICS_COLLECTION, "2026-01-21")
        assert doc["topic"] == "AI Regulation"
        assert doc["failure_reason"] == "TTS failed"
        assert doc["failure_stage"] == "tts"
        assert doc["original_date"] == "2026-01-20"
        assert doc["retry_count"] == 0
        assert doc["max_retries"] == 2
        assert doc["status"] == "pending"

    @pytest.mark.asyncio
    async def test_month_and_year_rollover(self, topic_queue):
        assert await topic_queue.queue_failed_topic("t", "r", "s", "2026-01-31") == "2026-02-01"
        assert await topic_queue.queue_failed_topic("t", "r", "s", "2026-12-31") == "2027-01-01"

    @pytest.mark.asyncio
    async def test_requeue_overwrites_existing_entry(self, topic_queue):
        await topic_queue.queue_failed_topic("first", "r", "tts", "2026-01-20")
        await topic_queue.queue_failed_topic("second", "r", "render", "2026-01-20")

        queued = await topic_queue.get_queued_topic("2026-01-21")
        assert queued.topic == "second"
        assert queued.retry_count == 0

    @pytest.mark.asyncio
    async def test_storage_failure_is_critical(self, topic_queue, store):
        with patch.object(store, "set", AsyncMock(side_effect=OSError("disk full"))):
            with pytest.raises(NexusError) as exc_info:
                await topic_queue.queue_failed_topic("t", "r", "s", "2026-01-20")

        assert exc_info.value.code == ErrorCode.QUEUE_TOPIC_SAVE_FAILED
        assert "disk full" in exc_info.value.message

    def test_next_day(self):
        assert next_day("2028-02-28") == "2028-02-29"


class TestRetryCounting:
    """Retry accounting and abandonment."""

    @pytest.mark.asyncio
    async def test_first_increment_marks_processing(self, topic_queue):
        await topic_queue.queue_failed_topic("t", "r", "tts", "2026-01-20")

        queued = await topic_queue.increment_retry_count("2026-01-21")

        assert queued.retry_count == 1
        assert queued.status is QueueStatus.PROCESSING
        stored = await topic_queue.get_queued_topic("2026-01-21")
        assert stored.status is QueueStatus.PROCESSING
        assert stored.retry_count == 1

    @pytest.mark.asyncio
    async def test_second_increment_abandons(self, topic_queue):
        await topic_queue.queue_failed_topic("t", "r", "tts", "2026-01-20")

        await topic_queue.increment_retry_count("2026-01-21")
        assert await topic_queue.increment_retry_count("2026-01-21") is None

        stored = await topic_queue.get_queued_topic("2026-01-21")
        assert stored.status is QueueStatus.ABANDONED
        assert stored.retry_count == 2

    @pytest.mark.asyncio
    async def test_abandoned_entry_is_left_alone(self, topic_queue):
        await topic_queue.queue_failed_topic("t", "r", "tts", "2026-01-20")
        await topic_queue.increment_retry_count("2026-01-21")
        await topic_queue.increment_retry_count("2026-01-21")

        assert await topic_queue.increment_retry_count("2026-01-21") is None
        stored = await topic_queue.get_queued_topic("2026-01-21")
        assert stored.retry_count == 2

    @pytest.mark.asyncio
    async def test_missing_entry(self, topic_queue):
        assert await topic_queue.increment_retry_count("2026-01-21") is None

    @pytest.mark.asyncio
    async def test_max_retries_comes_from_settings(self, store):
        queue = TopicQueue(store, Settings(queue={"max_retries": 3}))
        await queue.queue_failed_topic("t", "r", "tts", "2026-01-20")

        assert (await queue.increment_retry_count("2026-01-21")).retry_count == 1
        assert (await queue.increment_retry_count("2026-01-21")).retry_count == 2
        assert await queue.increment_retry_count("2026-01-21") is None


class TestLookups:
    """Reading entries back."""

    @pytest.mark.asyncio
    async def test_check_today_returns_pending_only(self, topic_queue):
        await topic_queue.queue_failed_topic("t", "r", "tts", "2026-01-20")

        assert (await topic_queue.check_today_queued_topic("2026-01-21")).topic == "t"

        await topic_queue.mark_topic_processing("2026-01-21")
        assert await topic_queue.check_today_queued_topic("2026-01-21") is None

    @pytest.mark.asyncio
    async def test_check_today_uses_configured_zone(self, store):
        queue = TopicQueue(store, Settings(pipeline={"timezone": "America/New_York"}))

        with patch.object(queue, "today", return_value="2026-03-01"):
            await queue.queue_failed_topic("t", "r", "tts", "2026-02-28")
            assert (await queue.check_today_queued_topic()).topic == "t"

        assert str(queue.timezone) == "America/New_York"

    @pytest.mark.asyncio
    async def test_get_queued_topics_lists_pending(self, topic_queue):
        await topic_queue.queue_failed_topic("a", "r", "tts", "2026-01-20")
        await topic_queue.queue_failed_topic("b", "r", "tts", "2026-01-21")
        await topic_queue.mark_topic_processing("2026-01-22")

        topics = await topic_queue.get_queued_topics()

        assert [t.topic for t in topics] == ["a"]


class TestMaintenance:
    """Moving, clearing and marking entries."""

    @pytest.mark.asyncio
    async def test_requeue_moves_entry(self, topic_queue):
        await topic_queue.queue_failed_topic("t", "r", "tts", "2026-01-20")
        await topic_queue.mark_topic_processing("2026-01-21")

        await topic_queue.requeue_topic("2026-01-21", "2026-01-25")

        assert await topic_queue.get_queued_topic("2026-01-21") is None
        moved = await topic_queue.get_queued_topic("2026-01-25")
        assert moved.topic == "t"
        assert moved.status is QueueStatus.PENDING

    @pytest.mark.asyncio
    async def test_requeue_missing_entry(self, topic_queue):
        with pytest.raises(NexusError) as exc_info:
            await topic_queue.requeue_topic("2026-01-21", "2026-01-25")
        assert exc_info.value.code == ErrorCode.QUEUE_TOPIC_NOT_FOUND

    @pytest.mark.asyncio
    async def test_clear(self, topic_queue):
        await topic_queue.queue_failed_topic("t", "r", "tts", "2026-01-20")
        await topic_queue.clear_queued_topic("2026-01-21")
        assert await topic_queue.get_queued_topic("2026-01-21") is None

    @pytest.mark.asyncio
    async def test_clear_failure(self, topic_queue, store):
        with patch.object(store, "delete", AsyncMock(side_effect=OSError("gone"))):
            with pytest.raises(NexusError) as exc_info:
                await topic_queue.clear_queued_topic("2026-01-21")
        assert exc_info.value.code == ErrorCode.QUEUE_TOPIC_CLEAR_FAILED

    @pytest.mark.asyncio
    async def test_mark_processing_keeps_retry_count(self, topic_queue):
        await topic_queue.queue_failed_topic("t", "r", "tts", "2026-01-20")
        await topic_queue.mark_topic_processing("2026-01-21")

        stored = await topic_queue.get_queued_topic("2026-01-21")
        assert stored.status is QueueStatus.PROCESSING
        assert stored.retry_count == 0

    @pytest.mark.asyncio
    async def test_mark_processing_missing_entry(self, topic_queue):
        with pytest.raises(NexusError) as exc_info:
            await topic_queue.mark_topic_processing("2026-01-21")
        assert exc_info.value.code == ErrorCode.QUEUE_TOPIC_NOT_FOUND
