"""Failed-topic retry queue and human review queue."""

from .review import (
    CRITICAL_REVIEW_TYPES,
    PRONUNCIATION_UNKNOWN_THRESHOLD,
    TOPIC_REVIEW_TYPES,
    ReviewItem,
    ReviewQueue,
    ReviewStatus,
    ReviewType,
)
from .topics import QUEUE_MAX_RETRIES, QueuedTopic, QueueStatus, TopicQueue, next_day

__all__ = [
    "CRITICAL_REVIEW_TYPES",
    "PRONUNCIATION_UNKNOWN_THRESHOLD",
    "QUEUE_MAX_RETRIES",
    "TOPIC_REVIEW_TYPES",
    "QueueStatus",
    "QueuedTopic",
    "ReviewItem",
    "ReviewQueue",
    "ReviewStatus",
    "ReviewType",
    "TopicQueue",
    "next_day",
]
