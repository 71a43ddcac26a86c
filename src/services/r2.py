"""Cloudflare R2 (S3-compatible) note storage backend."""

from __future__ import annotations

import asyncio
import hashlib
import logging

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from src.config import Settings, get_settings
from src.errors import StorageError
from src.services.storage import NoteStorage

logger = logging.getLogger("whoop_sync.r2")

# Reusable client, created lazily
_client: "boto3.client" | None = None


def _get_client(settings: Settings | None = None) -> "boto3.client":
    global _client
    if _client is not None:
        return _client

    s = settings or get_settings()
    _client = boto3.client(
        "s3",
        endpoint_url=f"https://{s.r2_account_id}.r2.cloudflarestorage.com",
        aws_access_key_id=s.r2_access_key_id,
        aws_secret_access_key=s.r2_secret_access_key,
        config=BotoConfig(
            signature_version="s3v4",
            retries={"max_attempts": 3, "mode": "standard"},
        ),
        region_name="auto",
    )
    return _client


def compute_file_hash(data: bytes) -> str:
    """Return hex-encoded SHA-256 hash of file contents."""
    return hashlib.sha256(data).hexdigest()


def object_key(path: str) -> str:
    """Map a note path onto an object key (no leading ``/`` or ``./``)."""
    key = path
    while key.startswith(("./", "/")):
        key = key[2:] if key.startswith("./") else key[1:]
    return key


class R2Storage(NoteStorage):
    """Stores notes as objects in an R2 bucket.

    Object stores have no directories, so ``ensure_directory`` does nothing.
    """

    NAME = "r2"

    def __init__(self, settings: Settings | None = None, client=None) -> None:
        self._settings = settings or get_settings()
        self._client = client or _get_client(self._settings)

    async def ensure_directory(self, path: str) -> None:
        return None

    async def write_file(self, path: str, content: str) -> None:
        data = content.encode("utf-8")
        key = object_key(path)
        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self._settings.r2_bucket_name,
                Key=key,
                Body=data,
                ContentType="text/markdown; charset=utf-8",
                Metadata={"file_hash": compute_file_hash(data)},
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to upload {key} to R2: {exc}") from exc

        logger.info("Uploaded %s (%d bytes) to R2", key, len(data))
