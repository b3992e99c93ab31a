"""
Tests for the human review queue.
"""

from unittest.mock import AsyncMock, patch

import pytest

from nexusai.errors import ErrorCode, NexusError
from nexusai.queues import ReviewQueue, ReviewStatus, ReviewType
from nexusai.queues.review import ReviewItem


async def add(queue, review_type="pronunciation", item=None, pipeline_id="2026-01-20", stage="pronunciation"):
    return await queue.add_to_review_queue(
        review_type, pipeline_id, stage, item if item is not None else {"term": "Mistral"}
    )


class TestAddAndQuery:
    """Creating and listing items."""

    @pytest.mark.asyncio
    async def test_add_creates_pending_item(self, review_queue):
        review_id = await add(review_queue)

        item = await review_queue.get_review_item(review_id)
        assert item.status is ReviewStatus.PENDING
        assert item.type is ReviewType.PRONUNCIATION
        assert item.pipeline_id == "2026-01-20"
        assert item.resolution is None
        assert item.created_at

    @pytest.mark.asyncio
    async def test_ids_are_unique(self, review_queue):
        assert await add(review_queue) != await add(review_queue)

    @pytest.mark.asyncio
    async def test_invalid_type_rejected(self, review_queue):
        with pytest.raises(NexusError) as exc_info:
            await add(review_queue, review_type="vibes")
        assert exc_info.value.code == ErrorCode.REVIEW_INVALID_TYPE

    @pytest.mark.asyncio
    async def test_invalid_status_filter_rejected(self, review_queue):
        with pytest.raises(NexusError) as exc_info:
            await review_queue.get_review_queue(status="archived")
        assert exc_info.value.code == ErrorCode.REVIEW_INVALID_STATUS

    @pytest.mark.asyncio
    async def test_filters(self, review_queue):
        first = await add(review_queue, "quality", stage="script-gen")
        await add(review_queue, "topic", pipeline_id="2026-01-21", stage="news-sourcing")
        await review_queue.dismiss_review_item(first, "fine", "ops")

        assert len(await review_queue.get_review_queue()) == 2
        assert [i.type for i in await review_queue.get_review_queue(status="pending")] == [ReviewType.TOPIC]
        assert [i.id for i in await review_queue.get_review_queue(type="quality")] == [first]
        assert len(await review_queue.get_review_queue(pipeline_id="2026-01-21")) == 1

    @pytest.mark.asyncio
    async def test_storage_failure_on_add(self, review_queue, store):
        with patch.object(store, "set", AsyncMock(side_effect=OSError("quota"))):
            with pytest.raises(NexusError) as exc_info:
                await add(review_queue)
        assert exc_info.value.code == ErrorCode.REVIEW_ITEM_SAVE_FAILED


class TestResolution:
    """Items close exactly once."""

    @pytest.mark.asyncio
    async def test_resolve(self, review_queue):
        review_id = await add(review_queue)

        item = await review_queue.resolve_review_item(review_id, "added to dictionary", "ops@nexus.dev")

        assert item.status is ReviewStatus.RESOLVED
        assert item.resolution == "added to dictionary"
        assert item.resolved_by == "ops@nexus.dev"
        assert item.resolved_at
        stored = await review_queue.get_review_item(review_id)
        assert stored.status is ReviewStatus.RESOLVED

    @pytest.mark.asyncio
    async def test_resolve_twice_fails(self, review_queue):
        review_id = await add(review_queue)
        first = await review_queue.resolve_review_item(review_id, "ok", "ops")

        with pytest.raises(NexusError) as exc_info:
            await review_queue.resolve_review_item(review_id, "again", "night-shift")

        assert exc_info.value.code == ErrorCode.REVIEW_ITEM_ALREADY_RESOLVED
        stored = await review_queue.get_review_item(review_id)
        assert stored.status is ReviewStatus.RESOLVED
        assert stored.resolution == "ok"
        assert stored.resolved_by == "ops"
        assert stored.resolved_at == first.resolved_at

    @pytest.mark.asyncio
    async def test_dismiss_after_resolve_fails(self, review_queue):
        review_id = await add(review_queue)
        first = await review_queue.resolve_review_item(review_id, "ok", "ops")

        with pytest.raises(NexusError) as exc_info:
            await review_queue.dismiss_review_item(review_id, "nah", "night-shift")

        assert exc_info.value.code == ErrorCode.REVIEW_ITEM_ALREADY_RESOLVED
        stored = await review_queue.get_review_item(review_id)
        assert stored.status is ReviewStatus.RESOLVED
        assert stored.resolution == "ok"
        assert stored.resolved_by == "ops"
        assert stored.resolved_at == first.resolved_at

    @pytest.mark.asyncio
    async def test_unknown_item(self, review_queue):
        with pytest.raises(NexusError) as exc_info:
            await review_queue.resolve_review_item("missing", "ok", "ops")
        assert exc_info.value.code == ErrorCode.REVIEW_ITEM_NOT_FOUND


class TestCriticalReviews:
    """Only pronunciation and quality items block publication."""

    @pytest.mark.asyncio
    async def test_controversial_is_not_critical(self, review_queue):
        await add(review_queue, "controversial", stage="news-sourcing")

        assert await review_queue.get_pending_review_count() == 1
        assert not await review_queue.has_pending_critical_reviews()

    @pytest.mark.asyncio
    async def test_pending_critical_reviews(self, review_queue):
        quality = await add(review_queue, "quality", stage="script-gen")
        pronunciation = await add(review_queue, "pronunciation")
        await add(review_queue, "topic", stage="news-sourcing")
        await review_queue.resolve_review_item(pronunciation, "ok", "ops")

        critical = await review_queue.get_pending_critical_reviews()

        assert [item.id for item in critical] == [quality]
        assert await review_queue.has_pending_critical_reviews()


class TestTopicActions:
    """Operator actions on topic items."""

    @pytest.mark.asyncio
    async def test_skip_topic(self, review_queue):
        review_id = await add(review_queue, "topic", {"topic": "Crypto crash"}, stage="news-sourcing")

        item = await review_queue.skip_topic(review_id, "ops")

        assert item.resolution == "Topic skipped - will not cover"

    @pytest.mark.asyncio
    async def test_requeue_queues_the_topic(self, review_queue, topic_queue):
        review_id = await add(
            review_queue, "controversial", {"title": "Chip export rules"}, stage="news-sourcing"
        )

        item = await review_queue.requeue_topic_from_review(review_id, "2026-01-25", "ops")

        assert item.status is ReviewStatus.RESOLVED
        assert item.resolution == "Topic requeued for 2026-01-25"
        queued = await topic_queue.get_queued_topic("2026-01-25")
        assert queued.topic == "Chip export rules"
        assert queued.failure_reason == "review:controversial"
        assert queued.failure_stage == "news-sourcing"
        assert queued.original_date == "2026-01-20"

    @pytest.mark.asyncio
    async def test_requeue_rejects_non_topic_items(self, review_queue):
        review_id = await add(review_queue, "pronunciation")

        with pytest.raises(NexusError) as exc_info:
            await review_queue.requeue_topic_from_review(review_id, "2026-01-25", "ops")

        assert exc_info.value.code == ErrorCode.REVIEW_INVALID_TYPE
        assert (await review_queue.get_review_item(review_id)).status is ReviewStatus.PENDING

    @pytest.mark.asyncio
    async def test_requeue_without_topic_queue(self, store):
        queue = ReviewQueue(store)
        review_id = await add(queue, "topic", "Robotics", stage="news-sourcing")

        item = await queue.requeue_topic_from_review(review_id, "2026-01-25", "ops")

        assert item.status is ReviewStatus.RESOLVED

    @pytest.mark.asyncio
    async def test_approve_with_modifications(self, review_queue):
        review_id = await add(review_queue, "topic", "Robotics", stage="news-sourcing")

        item = await review_queue.approve_topic_with_modifications(review_id, "focus on safety", "ops")

        assert item.resolution == "Approved with modifications: focus on safety"


class TestPronunciationUnknowns:
    """Flagging unresolved pronunciation terms."""

    @pytest.mark.asyncio
    async def test_within_threshold_adds_nothing(self, review_queue):
        result = await review_queue.flag_pronunciation_unknowns("2026-01-20", ["a", "b", "c"], 40)

        assert result is None
        assert await review_queue.get_pending_review_count() == 0

    @pytest.mark.asyncio
    async def test_above_threshold_adds_item(self, review_queue):
        review_id = await review_queue.flag_pronunciation_unknowns(
            "2026-01-20", ["a", "b", "c", "d"], 40
        )

        item = await review_queue.get_review_item(review_id)
        assert item.type is ReviewType.PRONUNCIATION
        assert item.item == {"unknown_terms": ["a", "b", "c", "d"], "total_terms": 40, "known_terms": 36}
        assert item.is_critical


class TestReviewItemTopic:
    @pytest.mark.parametrize(
        "content,expected",
        [
            ("Plain title", "Plain title"),
            ({"topic": "From topic"}, "From topic"),
            ({"title": "From title"}, "From title"),
            ({"topic": {"title": "Nested"}}, "Nested"),
            ({"term": "x"}, None),
            (None, None),
        ],
    )
    def test_topic_extraction(self, content, expected):
        item = ReviewItem(id="r", type=ReviewType.TOPIC, pipeline_id="2026-01-20", stage="s", item=content)
        assert item.topic == expected
