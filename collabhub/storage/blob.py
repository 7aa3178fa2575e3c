"""Blob store contract used for document bytes.

The core only ever calls ``put`` and ``delete``; any I/O failure inside an
implementation must surface as :class:`BlobStoreError` so the service layer
can report it as a dependency failure.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass
from typing import Optional, Protocol

import structlog

__all__ = ["BlobRef", "BlobStore", "BlobStoreError", "InMemoryBlobStore"]

logger = structlog.get_logger(__name__)


class BlobStoreError(RuntimeError):
    """Raised when the blob backend cannot complete a request."""


@dataclass(frozen=True, slots=True)
class BlobRef:
    url: str
    id: str


class BlobStore(Protocol):
    def put(
        self,
        data: bytes,
        folder: str,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> BlobRef: ...

    def delete(self, blob_id: str, kind: str = "raw") -> None: ...


class InMemoryBlobStore:
    """Process-local blob store for development and tests."""

    def __init__(self, base_url: str = "memory://blobs"):
        self.base_url = base_url.rstrip("/")
        self._objects: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def put(
        self,
        data: bytes,
        folder: str,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> BlobRef:
        suffix = f"-{filename}" if filename else ""
        blob_id = f"{folder.strip('/')}/{uuid.uuid4().hex}{suffix}"
        with self._lock:
            self._objects[blob_id] = bytes(data)
        logger.info("blob_uploaded", blob_id=blob_id, size=len(data), backend="memory")
        return BlobRef(url=f"{self.base_url}/{blob_id}", id=blob_id)

    def delete(self, blob_id: str, kind: str = "raw") -> None:
        with self._lock:
            self._objects.pop(blob_id, None)
        logger.info("blob_deleted", blob_id=blob_id, kind=kind, backend="memory")

    def get(self, blob_id: str) -> bytes:
        with self._lock:
            try:
                return self._objects[blob_id]
            except KeyError:
                raise BlobStoreError(f"Blob {blob_id} not found") from None

    def __contains__(self, blob_id: object) -> bool:
        with self._lock:
            return blob_id in self._objects

    def __len__(self) -> int:
        with self._lock:
            return len(self._objects)
