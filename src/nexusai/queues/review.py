"""
Human review queue.

Stages raise review items for conditions that need an operator's decision.
Only pending ``pronunciation`` and ``quality`` items block automatic
publication; ``controversial`` and ``topic`` items are informational until an
operator acts on them.

An item is resolved or dismissed exactly once. Like the topic queue, the
pending check and the write are not isolated; one operator per item is
assumed.
"""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from ..config.settings import Settings
from ..errors import ErrorCode, NexusError
from ..observability.logging import get_logger
from ..storage.documents import DocumentStore
from .topics import TopicQueue

logger = get_logger(__name__)

REVIEW_QUEUE_COLLECTION = "review-queue"
PRONUNCIATION_UNKNOWN_THRESHOLD = 3


class ReviewType(str, Enum):
    PRONUNCIATION = "pronunciation"
    QUALITY = "quality"
    CONTROVERSIAL = "controversial"
    TOPIC = "topic"
    OTHER = "other"


class ReviewStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


CRITICAL_REVIEW_TYPES = frozenset({ReviewType.PRONUNCIATION, ReviewType.QUALITY})
TOPIC_REVIEW_TYPES = frozenset({ReviewType.TOPIC, ReviewType.CONTROVERSIAL})


@dataclass
class ReviewItem:
    id: str
    type: ReviewType
    pipeline_id: str
    stage: str
    item: Any
    context: dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    status: ReviewStatus = ReviewStatus.PENDING
    resolution: str | None = None
    resolved_at: str | None = None
    resolved_by: str | None = None

    @property
    def is_critical(self) -> bool:
        return self.type in CRITICAL_REVIEW_TYPES

    @property
    def topic(self) -> str | None:
        """The topic title carried by a topic-related item, if any."""
        content = self.item
        if isinstance(content, dict):
            content = content.get("topic", content.get("title"))
        if isinstance(content, dict):
            content = content.get("title")
        return content if isinstance(content, str) and content else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "pipeline_id": self.pipeline_id,
            "stage": self.stage,
            "item": self.item,
            "context": self.context,
            "created_at": self.created_at,
            "status": self.status.value,
            "resolution": self.resolution,
            "resolved_at": self.resolved_at,
            "resolved_by": self.resolved_by,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ReviewItem":
        return cls(
            id=data["id"],
            type=ReviewType(data["type"]),
            pipeline_id=data["pipeline_id"],
            stage=data["stage"],
            item=data.get("item"),
            context=data.get("context") or {},
            created_at=data["created_at"],
            status=ReviewStatus(data["status"]),
            resolution=data.get("resolution"),
            resolved_at=data.get("resolved_at"),
            resolved_by=data.get("resolved_by"),
        )


def parse_review_type(value: str | ReviewType) -> ReviewType:
    try:
        return ReviewType(value)
    except ValueError:
        raise NexusError.critical(
            ErrorCode.REVIEW_INVALID_TYPE,
            f"Invalid review item type: {value}",
            "review",
            {"valid_types": [t.value for t in ReviewType]},
        ) from None


def parse_review_status(value: str | ReviewStatus) -> ReviewStatus:
    try:
        return ReviewStatus(value)
    except ValueError:
        raise NexusError.critical(
            ErrorCode.REVIEW_INVALID_STATUS,
            f"Invalid review item status: {value}",
            "review",
            {"valid_statuses": [s.value for s in ReviewStatus]},
        ) from None


class ReviewQueue:
    """Review items stored one document per item."""

    def __init__(
        self,
        store: DocumentStore,
        topic_queue: TopicQueue | None = None,
        settings: Settings | None = None,
    ):
        self.store = store
        self.topic_queue = topic_queue
        self.collection = settings.review.collection if settings else REVIEW_QUEUE_COLLECTION
        self.pronunciation_unknown_threshold = (
            settings.review.pronunciation_unknown_threshold
            if settings
            else PRONUNCIATION_UNKNOWN_THRESHOLD
        )

    def _save_failed(self, message: str, error: Exception, **fields: Any) -> NexusError:
        logger.error(message, error=str(error), **fields)
        return NexusError.critical(
            ErrorCode.REVIEW_ITEM_SAVE_FAILED, f"{message}: {error}", "review", fields
        )

    async def add_to_review_queue(
        self,
        type: str | ReviewType,
        pipeline_id: str,
        stage: str,
        item: Any,
        context: dict[str, Any] | None = None,
    ) -> str:
        """Create a pending review item and return its id."""
        review = ReviewItem(
            id=str(uuid.uuid4()),
            type=parse_review_type(type),
            pipeline_id=pipeline_id,
            stage=stage,
            item=item,
            context=dict(context or {}),
        )

        try:
            await self.store.set(self.collection, review.id, review.to_dict())
        except Exception as e:
            raise self._save_failed(
                "Failed to add review item", e, type=review.type.value, pipeline_id=pipeline_id
            ) from e

        logger.info(
            "Review item added",
            id=review.id,
            type=review.type.value,
            pipeline_id=pipeline_id,
            stage=stage,
        )
        return review.id

    async def get_review_queue(
        self,
        status: str | ReviewStatus | None = None,
        type: str | ReviewType | None = None,
        pipeline_id: str | None = None,
    ) -> list[ReviewItem]:
        """Items matching every given filter, oldest first."""
        filters: dict[str, Any] = {}
        if status is not None:
            filters["status"] = parse_review_status(status).value
        if type is not None:
            filters["type"] = parse_review_type(type).value
        if pipeline_id is not None:
            filters["pipeline_id"] = pipeline_id

        try:
            docs = await self.store.query(self.collection, filters)
        except Exception as e:
            raise NexusError.critical(
                ErrorCode.REVIEW_ITEM_NOT_FOUND,
                f"Failed to query review queue: {e}",
                "review",
                {"filters": filters},
            ) from e

        items = sorted((ReviewItem.from_dict(doc) for doc in docs), key=lambda i: i.created_at)
        logger.debug("Review queue queried", count=len(items), **filters)
        return items

    async def get_review_item(self, review_id: str) -> ReviewItem | None:
        doc = await self.store.get(self.collection, review_id)
        return ReviewItem.from_dict(doc) if doc else None

    async def _require_pending(self, review_id: str) -> ReviewItem:
        item = await self.get_review_item(review_id)
        if item is None:
            raise NexusError.critical(
                ErrorCode.REVIEW_ITEM_NOT_FOUND,
                f"Review item {review_id} not found",
                "review",
                {"id": review_id},
            )
        if item.status is not ReviewStatus.PENDING:
            raise NexusError.critical(
                ErrorCode.REVIEW_ITEM_ALREADY_RESOLVED,
                f"Review item {review_id} is already {item.status.value}",
                "review",
                {"id": review_id, "status": item.status.value},
            )
        return item

    async def _close(
        self, review_id: str, status: ReviewStatus, resolution: str, resolved_by: str
    ) -> ReviewItem:
        item = await self._require_pending(review_id)
        item.status = status
        item.resolution = resolution
        item.resolved_at = datetime.now(UTC).isoformat()
        item.resolved_by = resolved_by

        try:
            await self.store.set(self.collection, review_id, item.to_dict())
        except Exception as e:
            raise self._save_failed(
                f"Failed to mark review item {status.value}", e, id=review_id
            ) from e

        logger.info(
            f"Review item {status.value}",
            id=review_id,
            type=item.type.value,
            resolution=resolution,
            resolved_by=resolved_by,
        )
        return item

    async def resolve_review_item(
        self, review_id: str, resolution: str, resolved_by: str
    ) -> ReviewItem:
        """Resolve a pending item.

        Raises:
            NexusError: NEXUS_REVIEW_ITEM_NOT_FOUND for an unknown id,
                NEXUS_REVIEW_ITEM_ALREADY_RESOLVED if it is no longer pending
        """
        return await self._close(review_id, ReviewStatus.RESOLVED, resolution, resolved_by)

    async def dismiss_review_item(
        self, review_id: str, reason: str, resolved_by: str
    ) -> ReviewItem:
        return await self._close(review_id, ReviewStatus.DISMISSED, reason, resolved_by)

    async def get_pending_review_count(self) -> int:
        return len(await self.get_review_queue(status=ReviewStatus.PENDING))

    async def get_pending_critical_reviews(self) -> list[ReviewItem]:
        pending = await self.get_review_queue(status=ReviewStatus.PENDING)
        return [item for item in pending if item.is_critical]

    async def has_pending_critical_reviews(self) -> bool:
        return bool(await self.get_pending_critical_reviews())

    async def skip_topic(self, review_id: str, resolved_by: str) -> ReviewItem:
        item = await self.resolve_review_item(review_id, "Topic skipped - will not cover", resolved_by)
        logger.info("Topic skipped via review queue", id=review_id, resolved_by=resolved_by)
        return item

    async def requeue_topic_from_review(
        self, review_id: str, new_date: str, resolved_by: str
    ) -> ReviewItem:
        """Resolve a topic-related item and queue its topic for ``new_date``."""
        item = await self.get_review_item(review_id)
        if item is None:
            raise NexusError.critical(
                ErrorCode.REVIEW_ITEM_NOT_FOUND,
                f"Review item {review_id} not found",
                "review",
                {"id": review_id},
            )
        if item.type not in TOPIC_REVIEW_TYPES:
            raise NexusError.critical(
                ErrorCode.REVIEW_INVALID_TYPE,
                f"Cannot requeue non-topic review item {review_id} (type: {item.type.value})",
                "review",
                {"id": review_id, "type": item.type.value},
            )

        resolved = await self.resolve_review_item(
            review_id, f"Topic requeued for {new_date}", resolved_by
        )

        if self.topic_queue is not None and item.topic:
            await self.topic_queue.schedule_topic(
                item.topic,
                new_date,
                failure_reason=f"review:{item.type.value}",
                failure_stage=item.stage,
                original_date=item.pipeline_id,
            )

        logger.info(
            "Topic requeued from review queue",
            id=review_id,
            new_date=new_date,
            topic=item.topic,
            resolved_by=resolved_by,
        )
        return resolved

    async def approve_topic_with_modifications(
        self, review_id: str, modifications: str, resolved_by: str
    ) -> ReviewItem:
        item = await self.resolve_review_item(
            review_id, f"Approved with modifications: {modifications}", resolved_by
        )
        logger.info(
            "Topic approved with modifications via review queue",
            id=review_id,
            modifications=modifications,
            resolved_by=resolved_by,
        )
        return item

    async def flag_pronunciation_unknowns(
        self, pipeline_id: str, unknown_terms: list[str], total_terms: int, context: dict[str, Any] | None = None
    ) -> str | None:
        """Raise a pronunciation item when unknown terms exceed the threshold.

        Returns:
            The new item id, or None when the count is within the threshold.
        """
        if len(unknown_terms) <= self.pronunciation_unknown_threshold:
            return None
        return await self.add_to_review_queue(
            ReviewType.PRONUNCIATION,
            pipeline_id,
            "pronunciation",
            {
                "unknown_terms": list(unknown_terms),
                "total_terms": total_terms,
                "known_terms": total_terms - len(unknown_terms),
            },
            context,
        )
