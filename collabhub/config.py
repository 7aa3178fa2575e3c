"""Runtime settings for the collaboration backend."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from .env import load_env

__all__ = ["CollabSettings", "DEFAULT_DATABASE_URL", "DEFAULT_MAX_UPLOAD_BYTES"]

DEFAULT_DATABASE_URL = "sqlite+pysqlite:///./collabhub.db"
DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024


def _split_csv(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass(slots=True)
class CollabSettings:
    """Collaboration service settings."""

    database_url: str = DEFAULT_DATABASE_URL
    log_level: str = "INFO"
    log_json: bool = False
    cors_origins: list[str] = field(
        default_factory=lambda: ["http://localhost:5173", "http://127.0.0.1:5173"]
    )
    # "memory" keeps blobs in-process, "r2" uses Cloudflare R2 (see storage.r2_client)
    blob_backend: str = "memory"
    notification_limit: int = 20
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    create_schema: bool = True

    @classmethod
    def from_env(cls) -> CollabSettings:
        load_env()
        database_url = (
            os.getenv("COLLAB_DB_URL")
            or os.getenv("DATABASE_URL")
            or DEFAULT_DATABASE_URL
        )
        cors_origins = _split_csv(os.getenv("COLLAB_CORS_ORIGINS"))
        settings = cls(
            database_url=database_url,
            log_level=os.getenv("COLLAB_LOG_LEVEL", "INFO").upper(),
            log_json=os.getenv("COLLAB_LOG_JSON", "false").lower() == "true",
            blob_backend=os.getenv("COLLAB_BLOB_BACKEND", "memory").lower(),
            notification_limit=int(os.getenv("COLLAB_NOTIFICATION_LIMIT", "20")),
            max_upload_bytes=int(
                os.getenv("COLLAB_MAX_UPLOAD_BYTES", str(DEFAULT_MAX_UPLOAD_BYTES))
            ),
            create_schema=os.getenv("COLLAB_CREATE_SCHEMA", "true").lower() == "true",
        )
        if cors_origins:
            settings.cors_origins = cors_origins
        return settings
