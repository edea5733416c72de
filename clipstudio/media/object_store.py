"""Object storage backends used to publish generated artifacts."""

from __future__ import annotations

import contextlib
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..config import AppConfig
from ..services.errors import StorageError


LOGGER = logging.getLogger(__name__)


class ObjectStore(Protocol):
    """Protocol describing an object storage backend."""

    def upload(self, data: bytes, key: str, content_type: str) -> str:
        """Store *data* under *key* and return its public URL."""

    def delete(self, key: str) -> None:
        """Remove *key*; missing objects are not an error."""


def thumbnail_key(clip_id: str) -> str:
    return f"thumbnails/clips/{clip_id}-thumb.jpg"


def _join_url(base_url: str, key: str) -> str:
    return f"{base_url.rstrip('/')}/{key.lstrip('/')}"


class LocalObjectStore:
    """Store objects as files below *root*, served by the web app under ``public_base_url``."""

    def __init__(self, root: Path, *, public_base_url: str = "/media") -> None:
        self._root = root.resolve()
        self._public_base_url = public_base_url

    @property
    def root(self) -> Path:
        return self._root

    def resolve(self, key: str) -> Path:
        candidate = (self._root / key).resolve()
        try:
            candidate.relative_to(self._root)
        except ValueError as error:
            raise StorageError(f"Object key '{key}' escapes the media root.") from error
        return candidate

    def upload(self, data: bytes, key: str, content_type: str) -> str:
        target = self.resolve(key)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            # Write beside the target and rename so readers never see a partial file.
            handle, staging = tempfile.mkstemp(dir=target.parent, prefix=".upload-")
            try:
                with os.fdopen(handle, "wb") as stream:
                    stream.write(data)
                os.replace(staging, target)
            except BaseException:
                with contextlib.suppress(OSError):
                    os.unlink(staging)
                raise
        except OSError as error:
            raise StorageError(f"Unable to store object '{key}': {error}") from error
        LOGGER.debug("Stored %s bytes at %s (%s)", len(data), target, content_type)
        return _join_url(self._public_base_url, key)

    def delete(self, key: str) -> None:
        target = self.resolve(key)
        try:
            target.unlink(missing_ok=True)
        except OSError as error:
            raise StorageError(f"Unable to delete object '{key}': {error}") from error


class S3ObjectStore:
    """S3-compatible backend (AWS S3, Cloudflare R2)."""

    def __init__(
        self,
        bucket: str,
        *,
        public_base_url: str,
        endpoint_url: Optional[str] = None,
        client: Any = None,
    ) -> None:
        if not bucket:
            raise ValueError("An S3 bucket name is required for the s3 object store.")
        self._bucket = bucket
        self._public_base_url = public_base_url
        self._client = client or boto3.client("s3", endpoint_url=endpoint_url)

    def upload(self, data: bytes, key: str, content_type: str) -> str:
        try:
            self._client.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as error:
            raise StorageError(f"S3 upload failed for '{key}'", diagnostic=str(error)) from error
        LOGGER.debug("Uploaded %s bytes to s3://%s/%s", len(data), self._bucket, key)
        return _join_url(self._public_base_url, key)

    def delete(self, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self._bucket, Key=key)
        except (BotoCoreError, ClientError) as error:
            raise StorageError(f"S3 delete failed for '{key}'", diagnostic=str(error)) from error


def build_object_store(config: AppConfig) -> ObjectStore:
    """Return the object store selected by *config*."""

    if config.object_store == "s3":
        return S3ObjectStore(
            config.s3_bucket or "",
            public_base_url=config.public_base_url,
            endpoint_url=config.s3_endpoint_url,
        )
    return LocalObjectStore(config.media_root, public_base_url=config.public_base_url)


__all__ = [
    "LocalObjectStore",
    "ObjectStore",
    "S3ObjectStore",
    "build_object_store",
    "thumbnail_key",
]
