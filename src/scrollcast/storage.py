# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Artifact storage backends for finished recordings.

Contract shared by every backend:

- ``store(local_path, content_type)`` returns a :class:`StoredArtifact`.
- On success the local file is gone (uploaded or moved).
- On failure the local file is left untouched so an operator can retry
  by hand, and the backend's own exception propagates unchanged.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import uuid
from abc import ABC, abstractmethod
from pathlib import Path

import boto3
from botocore.exceptions import ClientError

from . import StoredArtifact
from .errors import ArtifactNotFoundError, UploadError

logger = logging.getLogger(__name__)

VIDEO_CONTENT_TYPE = "video/webm"
URL_EXPIRATION = 24 * 60 * 60  # seconds


def _new_key(suffix: str = ".webm") -> str:
    return f"{uuid.uuid4()}{suffix}"


class ArtifactStore(ABC):
    """Storage collaborator used by the orchestrator's finalize stage."""

    @abstractmethod
    async def store(self, local_path: str | Path, content_type: str = VIDEO_CONTENT_TYPE) -> StoredArtifact:
        """Persist the file at *local_path* and return a reference to it."""


class S3ArtifactStore(ArtifactStore):
    """Single PUT to S3 plus a presigned GET URL."""

    def __init__(
        self,
        bucket: str,
        *,
        region: str = "us-east-1",
        url_expiration: int = URL_EXPIRATION,
        aws_access_key_id: str | None = None,
        aws_secret_access_key: str | None = None,
        client=None,
    ) -> None:
        self.bucket = bucket
        self.region = region
        self.url_expiration = url_expiration
        if client is None:
            client = boto3.client(
                "s3",
                region_name=region,
                aws_access_key_id=aws_access_key_id or None,
                aws_secret_access_key=aws_secret_access_key or None,
            )
        self._client = client

    async def store(self, local_path: str | Path, content_type: str = VIDEO_CONTENT_TYPE) -> StoredArtifact:
        path = Path(local_path)
        if not path.exists():
            raise ArtifactNotFoundError(str(path))
        if not self.bucket:
            raise UploadError("AWS_BUCKET_NAME is not configured", local_path=str(path))

        key = _new_key()
        logger.info(
            "Uploading file to S3 (bucket=%s key=%s content_type=%s)",
            self.bucket,
            key,
            content_type,
        )
        try:
            signed_url = await asyncio.to_thread(self._put_and_sign, path, key, content_type)
        except ClientError as exc:
            error = exc.response.get("Error", {})
            meta = exc.response.get("ResponseMetadata", {})
            logger.error(
                "S3 upload failed, keeping local file %s (code=%s status=%s request_id=%s): %s",
                path,
                error.get("Code"),
                meta.get("HTTPStatusCode"),
                meta.get("RequestId"),
                error.get("Message", str(exc)),
            )
            raise
        except Exception:
            logger.error("S3 upload failed, keeping local file %s", path, exc_info=True)
            raise

        path.unlink(missing_ok=True)
        logger.info("Local file cleaned up: %s", path.name)
        return StoredArtifact(reference_url=signed_url, key=key)

    def _put_and_sign(self, path: Path, key: str, content_type: str) -> str:
        with path.open("rb") as body:
            self._client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=body,
                ContentType=content_type,
            )
        logger.debug("PutObject succeeded for %s", key)
        return self._client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=self.url_expiration,
        )


class LocalArtifactStore(ArtifactStore):
    """Move recordings into a directory served at ``{base_url}/videos``."""

    def __init__(self, public_dir: str | Path, base_url: str = "http://localhost:3000") -> None:
        self.public_dir = Path(public_dir)
        self.base_url = base_url.rstrip("/")

    async def store(self, local_path: str | Path, content_type: str = VIDEO_CONTENT_TYPE) -> StoredArtifact:
        path = Path(local_path)
        if not path.exists():
            raise ArtifactNotFoundError(str(path))
        self.public_dir.mkdir(parents=True, exist_ok=True)
        key = _new_key(path.suffix or ".webm")
        destination = self.public_dir / key
        await asyncio.to_thread(shutil.move, str(path), str(destination))
        logger.info("Recording stored locally at %s (%s)", destination, content_type)
        return StoredArtifact(reference_url=f"{self.base_url}/videos/{key}", key=key)


def build_store(config) -> ArtifactStore:
    """Pick the storage backend named by ``config.storage_backend``."""
    if config.storage_backend == "local":
        return LocalArtifactStore(config.public_video_dir, base_url=config.base_url)
    return S3ArtifactStore(
        config.aws_bucket_name,
        region=config.aws_region,
        aws_access_key_id=config.aws_access_key_id,
        aws_secret_access_key=config.aws_secret_access_key,
    )
