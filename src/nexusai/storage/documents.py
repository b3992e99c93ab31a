"""
Document store with pluggable backends.

Pipeline state, queued topics and review items are JSON documents addressed by
``(collection, doc_id)``. Three backends share one async interface:

- MemoryStore: process-local dicts, for tests and dry runs
- LocalStore: one JSON file per document under ``root/<collection>/<id>.json``
- S3Store: one JSON object per document under ``<prefix>/<collection>/<id>.json``

Read-modify-write sequences built on these operations are not isolated. The
pipeline assumes a single writer per document per day.
"""

import asyncio
import copy
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from ..observability.logging import get_logger
from ..observability.probe import probe

log = get_logger("nexusai.storage")

Document = dict[str, Any]
Filters = dict[str, Any]


def _matches(doc: Document, filters: Filters | None) -> bool:
    return all(doc.get(field) == value for field, value in (filters or {}).items())


def _check_id(doc_id: str) -> str:
    if not doc_id or "/" in doc_id or doc_id in {".", ".."}:
        raise ValueError(f"Invalid document id: {doc_id!r}")
    return doc_id


class DocumentStore(ABC):
    """Abstract interface for document storage."""

    backend: str = "abstract"

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Document | None:
        """Return the document, or None when it does not exist."""

    @abstractmethod
    async def set(self, collection: str, doc_id: str, doc: Document) -> None:
        """Create or replace a document."""

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> bool:
        """Delete a document; returns False when it did not exist."""

    @abstractmethod
    async def list_ids(self, collection: str) -> list[str]:
        """Ids of every document in a collection, sorted."""

    async def update(self, collection: str, doc_id: str, updates: Document) -> Document:
        """Shallow-merge ``updates`` into an existing document.

        Raises:
            KeyError: if the document does not exist
        """
        current = await self.get(collection, doc_id)
        if current is None:
            raise KeyError(f"{collection}/{doc_id}")
        current.update(updates)
        await self.set(collection, doc_id, current)
        return current

    async def query(self, collection: str, filters: Filters | None = None) -> list[Document]:
        """Documents whose fields equal every value in ``filters``."""
        results = []
        for doc_id in await self.list_ids(collection):
            doc = await self.get(collection, doc_id)
            if doc is not None and _matches(doc, filters):
                results.append(doc)
        return results

    async def close(self) -> None:
        """Release backend resources."""


class MemoryStore(DocumentStore):
    """In-process document store. Documents are deep-copied on every access."""

    backend = "memory"

    def __init__(self):
        self._collections: dict[str, dict[str, Document]] = {}

    async def get(self, collection: str, doc_id: str) -> Document | None:
        doc = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def set(self, collection: str, doc_id: str, doc: Document) -> None:
        self._collections.setdefault(collection, {})[_check_id(doc_id)] = copy.deepcopy(doc)

    async def delete(self, collection: str, doc_id: str) -> bool:
        return self._collections.get(collection, {}).pop(doc_id, None) is not None

    async def list_ids(self, collection: str) -> list[str]:
        return sorted(self._collections.get(collection, {}))

    def dump(self) -> dict[str, dict[str, Document]]:
        """Snapshot of every collection (test helper)."""
        return copy.deepcopy(self._collections)


class LocalStore(DocumentStore):
    """Filesystem document store."""

    backend = "local"

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        log.info("Local document store initialized", root=str(self.root))

    def _path(self, collection: str, doc_id: str) -> Path:
        return self.root / collection / f"{_check_id(doc_id)}.json"

    async def get(self, collection: str, doc_id: str) -> Document | None:
        path = self._path(collection, doc_id)
        if not path.exists():
            return None
        with probe("store.get", backend=self.backend, collection=collection):
            return json.loads(path.read_text(encoding="utf-8"))

    async def set(self, collection: str, doc_id: str, doc: Document) -> None:
        path = self._path(collection, doc_id)
        path.parent.mkdir(parents=True, exist_ok=True)

        with probe("store.set", backend=self.backend, collection=collection):
            tmp_path = path.with_suffix(".json.tmp")
            tmp_path.write_text(json.dumps(doc, indent=2, default=str), encoding="utf-8")
            tmp_path.replace(path)

        log.debug("Saved document", collection=collection, doc_id=doc_id)

    async def delete(self, collection: str, doc_id: str) -> bool:
        path = self._path(collection, doc_id)
        if not path.exists():
            return False
        path.unlink()
        log.debug("Deleted document", collection=collection, doc_id=doc_id)
        return True

    async def list_ids(self, collection: str) -> list[str]:
        folder = self.root / collection
        if not folder.exists():
            return []
        return sorted(p.stem for p in folder.glob("*.json"))


class S3Store(DocumentStore):
    """S3-compatible document store backed by boto3."""

    backend = "s3"

    def __init__(self, bucket: str, prefix: str = "", region: str = "us-east-1", **kwargs):
        """Initialize the store.

        Args:
            bucket: S3 bucket name
            prefix: Optional key prefix for all documents
            region: AWS region (default: us-east-1)
            **kwargs: Additional boto3 client parameters (endpoint_url, etc.)
        """
        import boto3
        from botocore.exceptions import ClientError

        self.ClientError = ClientError
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.region = region

        client_kwargs = {"region_name": region}
        client_kwargs.update(kwargs)
        self.s3_client = boto3.client("s3", **client_kwargs)

        log.info("S3 document store initialized", bucket=bucket, prefix=self.prefix, region=region)

    def _key(self, collection: str, doc_id: str) -> str:
        key = f"{collection}/{_check_id(doc_id)}.json"
        return f"{self.prefix}/{key}" if self.prefix else key

    def _collection_prefix(self, collection: str) -> str:
        return f"{self.prefix}/{collection}/" if self.prefix else f"{collection}/"

    def _get_sync(self, key: str) -> Document | None:
        try:
            response = self.s3_client.get_object(Bucket=self.bucket, Key=key)
        except self.ClientError as e:
            if e.response["Error"]["Code"] in ("NoSuchKey", "404"):
                return None
            log.error("Failed to read document from S3", key=key, error=str(e))
            raise
        return json.loads(response["Body"].read().decode("utf-8"))

    def _put_sync(self, key: str, doc: Document) -> None:
        body = json.dumps(doc, indent=2, default=str).encode("utf-8")
        try:
            self.s3_client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=body,
                ContentType="application/json",
                Metadata={"nexus-type": "document"},
            )
        except self.ClientError as e:
            log.error("Failed to save document to S3", key=key, error=str(e))
            raise

    def _list_sync(self, collection: str) -> list[str]:
        prefix = self._collection_prefix(collection)
        paginator = self.s3_client.get_paginator("list_objects_v2")

        ids = []
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            for obj in page.get("Contents", []):
                name = obj["Key"][len(prefix) :]
                if "/" not in name and name.endswith(".json"):
                    ids.append(name[: -len(".json")])
        return sorted(ids)

    async def get(self, collection: str, doc_id: str) -> Document | None:
        with probe("store.get", backend=self.backend, collection=collection):
            return await asyncio.to_thread(self._get_sync, self._key(collection, doc_id))

    async def set(self, collection: str, doc_id: str, doc: Document) -> None:
        with probe("store.set", backend=self.backend, collection=collection):
            await asyncio.to_thread(self._put_sync, self._key(collection, doc_id), doc)

    async def delete(self, collection: str, doc_id: str) -> bool:
        key = self._key(collection, doc_id)
        existing = await asyncio.to_thread(self._get_sync, key)
        if existing is None:
            return False
        await asyncio.to_thread(self.s3_client.delete_object, Bucket=self.bucket, Key=key)
        log.debug("Deleted document from S3", key=key)
        return True

    async def list_ids(self, collection: str) -> list[str]:
        with probe("store.list", backend=self.backend, collection=collection):
            return await asyncio.to_thread(self._list_sync, collection)


def create_document_store(storage_config) -> DocumentStore:
    """Build the backend selected by ``StorageConfig``."""
    if storage_config.backend == "memory":
        return MemoryStore()
    if storage_config.backend == "s3":
        extra = {}
        if storage_config.s3_endpoint_url:
            extra["endpoint_url"] = storage_config.s3_endpoint_url
        return S3Store(
            storage_config.s3_bucket,
            prefix=storage_config.s3_prefix,
            region=storage_config.s3_region,
            **extra,
        )
    return LocalStore(storage_config.local_root)
