"""Blob storage backends for project documents."""

from __future__ import annotations

from ..config import CollabSettings
from .blob import BlobRef, BlobStore, BlobStoreError, InMemoryBlobStore

__all__ = [
    "BlobRef",
    "BlobStore",
    "BlobStoreError",
    "InMemoryBlobStore",
    "build_blob_store",
]


def build_blob_store(settings: CollabSettings) -> BlobStore:
    """Instantiate the backend named by ``settings.blob_backend``."""

    if settings.blob_backend == "r2":
        from .r2_client import R2BlobStore, R2Config

        return R2BlobStore(R2Config.from_env())
    if settings.blob_backend == "memory":
        return InMemoryBlobStore()
    raise ValueError(f"Unknown blob backend: {settings.blob_backend!r}")
