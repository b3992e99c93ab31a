"""
Durable document storage for pipeline state and queues.
"""

from .documents import (
    DocumentStore,
    LocalStore,
    MemoryStore,
    S3Store,
    create_document_store,
)

__all__ = [
    "DocumentStore",
    "MemoryStore",
    "LocalStore",
    "S3Store",
    "create_document_store",
]
