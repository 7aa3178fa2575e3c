"""Cloudflare R2 blob store (S3-compatible API through boto3).

Document bytes are written under ``<folder>/<uuid>-<filename>`` keys. The
returned :class:`~collabhub.storage.blob.BlobRef` id is the object key.
"""

from __future__ import annotations

import hashlib
import logging
import os
import uuid
from dataclasses import dataclass
from typing import Optional

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from .blob import BlobRef, BlobStoreError

__all__ = ["R2Config", "R2BlobStore"]

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class R2Config:
    """Cloudflare R2 settings."""

    # https://<account_id>.r2.cloudflarestorage.com
    endpoint_url: str
    access_key_id: str
    secret_access_key: str
    bucket_name: str
    # Custom domain bound to the bucket for public URLs
    public_domain: Optional[str] = None
    max_file_size: int = 10 * 1024 * 1024

    @classmethod
    def from_env(cls) -> R2Config:
        endpoint_url = os.getenv("R2_ENDPOINT_URL")
        access_key_id = os.getenv("R2_ACCESS_KEY_ID")
        secret_access_key = os.getenv("R2_SECRET_ACCESS_KEY")
        bucket_name = os.getenv("R2_BUCKET_NAME")

        if not all([endpoint_url, access_key_id, secret_access_key, bucket_name]):
            raise ValueError(
                "R2 configuration required: set R2_ENDPOINT_URL, R2_ACCESS_KEY_ID, "
                "R2_SECRET_ACCESS_KEY, R2_BUCKET_NAME"
            )

        return cls(
            endpoint_url=endpoint_url,  # type: ignore
            access_key_id=access_key_id,  # type: ignore
            secret_access_key=secret_access_key,  # type: ignore
            bucket_name=bucket_name,  # type: ignore
            public_domain=os.getenv("R2_PUBLIC_DOMAIN"),
            max_file_size=int(os.getenv("R2_MAX_FILE_SIZE", "10485760")),
        )


class R2BlobStore:
    """``BlobStore`` backed by an R2 bucket."""

    def __init__(self, config: R2Config, client=None):
        self.config = config
        self._client = client or boto3.client(
            "s3",
            endpoint_url=config.endpoint_url,
            aws_access_key_id=config.access_key_id,
            aws_secret_access_key=config.secret_access_key,
            config=Config(
                signature_version="s3v4",
                s3={"addressing_style": "path"},
            ),
            region_name="auto",  # required by boto3, ignored by R2
        )

    def put(
        self,
        data: bytes,
        folder: str,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> BlobRef:
        size = len(data)
        if size > self.config.max_file_size:
            raise ValueError(
                f"File size {size} exceeds maximum {self.config.max_file_size}"
            )

        key = f"{folder.strip('/')}/{uuid.uuid4().hex}"
        if filename:
            key = f"{key}-{filename}"
        checksum = hashlib.sha256(data).hexdigest()

        extra_args = {"Metadata": {"sha256": checksum}}
        if content_type:
            extra_args["ContentType"] = content_type

        try:
            self._client.put_object(
                Bucket=self.config.bucket_name,
                Key=key,
                Body=data,
                **extra_args,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(
                "Failed to upload file to R2",
                extra={"key": key, "error": str(e)},
            )
            raise BlobStoreError(f"Upload of {key} failed") from e

        logger.info(
            "Uploaded file to R2",
            extra={"key": key, "bucket": self.config.bucket_name, "size": size},
        )
        return BlobRef(url=self.object_url(key), id=key)

    def delete(self, blob_id: str, kind: str = "raw") -> None:
        # R2 has no per-kind namespaces; kind is kept for the BlobStore contract.
        try:
            self._client.delete_object(
                Bucket=self.config.bucket_name,
                Key=blob_id,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(
                "Failed to delete file from R2",
                extra={"key": blob_id, "error": str(e)},
            )
            raise BlobStoreError(f"Delete of {blob_id} failed") from e

        logger.info("Deleted file from R2", extra={"key": blob_id, "kind": kind})

    def object_url(self, key: str) -> str:
        if self.config.public_domain:
            return f"https://{self.config.public_domain}/{key}"
        return f"{self.config.endpoint_url.rstrip('/')}/{self.config.bucket_name}/{key}"
