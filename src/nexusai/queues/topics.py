"""
Failed-topic retry queue.

A topic whose run failed critically is parked under the next day's date and
picked up by that day's run. Each entry is retried at most ``max_retries``
times before it is marked abandoned; abandoned entries are kept, not deleted.

``increment_retry_count`` and ``requeue_topic`` are read-then-write sequences
without isolation. One pipeline run per day is the only writer.
"""

from dataclasses import asdict, dataclass
from datetime import UTC, date, datetime, timedelta
from enum import Enum
from typing import Any
from zoneinfo import ZoneInfo

from ..config.settings import Settings
from ..errors import ErrorCode, NexusError
from ..observability.logging import get_logger
from ..storage.documents import DocumentStore

logger = get_logger(__name__)

QUEUE_MAX_RETRIES = 2
QUEUED_TOPICS_COLLECTION = "queued-topics"


class QueueStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    ABANDONED = "abandoned"


@dataclass
class QueuedTopic:
    topic: str
    failure_reason: str
    failure_stage: str
    original_date: str
    queued_date: str
    retry_count: int = 0
    max_retries: int = QUEUE_MAX_RETRIES
    status: QueueStatus = QueueStatus.PENDING

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QueuedTopic":
        return cls(
            topic=data["topic"],
            failure_reason=data["failure_reason"],
            failure_stage=data["failure_stage"],
            original_date=data["original_date"],
            queued_date=data["queued_date"],
            retry_count=data.get("retry_count", 0),
            max_retries=data.get("max_retries", QUEUE_MAX_RETRIES),
            status=QueueStatus(data.get("status", QueueStatus.PENDING.value)),
        )


def next_day(day: str) -> str:
    return (date.fromisoformat(day) + timedelta(days=1)).isoformat()


class TopicQueue:
    """Queued topics keyed by the date they should be retried on."""

    def __init__(self, store: DocumentStore, settings: Settings | None = None):
        self.store = store
        self.collection = settings.queue.collection if settings else QUEUED_TOPICS_COLLECTION
        self.max_retries = settings.queue.max_retries if settings else QUEUE_MAX_RETRIES
        self.timezone = ZoneInfo(settings.pipeline.timezone if settings else "UTC")

    def today(self) -> str:
        """Current date in the configured zone, ``YYYY-MM-DD``."""
        return datetime.now(self.timezone).date().isoformat()

    def _failure(self, code: str, message: str, error: Exception, **fields: Any) -> NexusError:
        logger.error(message, error=str(error), **fields)
        return NexusError.critical(code, f"{message}: {error}", "queue", fields)

    async def queue_failed_topic(
        self, topic: str, failure_reason: str, failure_stage: str, original_date: str
    ) -> str:
        """Park ``topic`` for retry on the day after ``original_date``.

        Overwrites any entry already queued for that day.

        Returns:
            The target retry date.
        """
        return await self.schedule_topic(
            topic, next_day(original_date), failure_reason, failure_stage, original_date
        )

    async def schedule_topic(
        self,
        topic: str,
        target_date: str,
        failure_reason: str,
        failure_stage: str,
        original_date: str,
    ) -> str:
        """Write a fresh pending entry for ``topic`` under ``target_date``."""
        queued = QueuedTopic(
            topic=topic,
            failure_reason=failure_reason,
            failure_stage=failure_stage,
            original_date=original_date,
            queued_date=datetime.now(UTC).isoformat(),
            max_retries=self.max_retries,
        )

        try:
            await self.store.set(self.collection, target_date, queued.to_dict())
        except Exception as e:
            raise self._failure(
                ErrorCode.QUEUE_TOPIC_SAVE_FAILED, "Failed to queue topic", e, topic=topic
            ) from e

        logger.info(
            "Topic queued for retry",
            target_date=target_date,
            topic=topic,
            failure_reason=failure_reason,
            failure_stage=failure_stage,
            original_date=original_date,
        )
        return target_date

    async def get_queued_topic(self, day: str) -> QueuedTopic | None:
        try:
            doc = await self.store.get(self.collection, day)
        except Exception as e:
            raise self._failure(
                ErrorCode.QUEUE_TOPIC_NOT_FOUND, "Failed to get queued topic", e, date=day
            ) from e
        return QueuedTopic.from_dict(doc) if doc else None

    async def get_queued_topics(self) -> list[QueuedTopic]:
        """Every pending entry, regardless of date."""
        try:
            docs = await self.store.query(self.collection, {"status": QueueStatus.PENDING.value})
        except Exception as e:
            raise self._failure(
                ErrorCode.QUEUE_TOPIC_NOT_FOUND, "Failed to list queued topics", e
            ) from e
        return [QueuedTopic.from_dict(doc) for doc in docs]

    async def check_today_queued_topic(self, today: str | None = None) -> QueuedTopic | None:
        """Today's entry, only if it is still pending."""
        topic = await self.get_queued_topic(today or self.today())
        if topic and topic.status is QueueStatus.PENDING:
            return topic
        return None

    async def increment_retry_count(self, day: str) -> QueuedTopic | None:
        """Count one more attempt on the entry for ``day``.

        Returns:
            The updated entry (now ``processing``), or None when the entry is
            missing, already abandoned, or has just run out of retries. In the
            last case the entry is stored as ``abandoned`` with
            ``retry_count == max_retries``.
        """
        queued = await self.get_queued_topic(day)
        if queued is None:
            logger.warning("Cannot increment retry count: topic not found", date=day)
            return None
        if queued.status is QueueStatus.ABANDONED:
            logger.warning("Topic already abandoned", date=day, topic=queued.topic)
            return None

        retry_count = queued.retry_count + 1
        try:
            if retry_count >= queued.max_retries:
                await self.store.update(
                    self.collection,
                    day,
                    {"status": QueueStatus.ABANDONED.value, "retry_count": queued.max_retries},
                )
                logger.warning(
                    "Topic abandoned after max retries",
                    date=day,
                    topic=queued.topic,
                    retry_count=queued.max_retries,
                    max_retries=queued.max_retries,
                )
                return None

            await self.store.update(
                self.collection,
                day,
                {"status": QueueStatus.PROCESSING.value, "retry_count": retry_count},
            )
        except Exception as e:
            raise self._failure(
                ErrorCode.QUEUE_TOPIC_SAVE_FAILED, "Failed to increment retry count", e, date=day
            ) from e

        queued.retry_count = retry_count
        queued.status = QueueStatus.PROCESSING
        logger.info(
            "Retry count incremented",
            date=day,
            topic=queued.topic,
            retry_count=retry_count,
            max_retries=queued.max_retries,
        )
        return queued

    async def requeue_topic(self, current_date: str, new_date: str) -> None:
        """Move an entry to another date as ``pending`` (written first, then removed)."""
        queued = await self.get_queued_topic(current_date)
        if queued is None:
            raise NexusError.critical(
                ErrorCode.QUEUE_TOPIC_NOT_FOUND,
                f"Cannot requeue: topic not found for {current_date}",
                "queue",
                {"date": current_date},
            )

        queued.queued_date = datetime.now(UTC).isoformat()
        queued.status = QueueStatus.PENDING
        try:
            await self.store.set(self.collection, new_date, queued.to_dict())
            await self.store.delete(self.collection, current_date)
        except Exception as e:
            raise self._failure(
                ErrorCode.QUEUE_TOPIC_SAVE_FAILED,
                "Failed to requeue topic",
                e,
                current_date=current_date,
                new_date=new_date,
            ) from e

        logger.info(
            "Topic requeued to new date",
            current_date=current_date,
            new_date=new_date,
            topic=queued.topic,
        )

    async def clear_queued_topic(self, day: str) -> None:
        try:
            await self.store.delete(self.collection, day)
        except Exception as e:
            raise self._failure(
                ErrorCode.QUEUE_TOPIC_CLEAR_FAILED, "Failed to clear queued topic", e, date=day
            ) from e
        logger.info("Queued topic cleared", date=day)

    async def mark_topic_processing(self, day: str) -> None:
        """Set ``processing`` without touching the retry count."""
        try:
            await self.store.update(
                self.collection, day, {"status": QueueStatus.PROCESSING.value}
            )
        except KeyError:
            raise NexusError.critical(
                ErrorCode.QUEUE_TOPIC_NOT_FOUND,
                f"Cannot mark processing: topic not found for {day}",
                "queue",
                {"date": day},
            ) from None
        except Exception as e:
            raise self._failure(
                ErrorCode.QUEUE_TOPIC_SAVE_FAILED, "Failed to mark topic as processing", e, date=day
            ) from e
        logger.debug("Topic marked as processing", date=day)
