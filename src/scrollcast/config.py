# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Service configuration from ``SCROLLCAST_*`` and ``AWS_*`` environment variables.

CLI flags are applied on top with :func:`dataclasses.replace` by the caller.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path

_TRUTHY = ("1", "true", "yes")
_ENVIRONMENTS = ("production", "development")
_STORAGE_BACKENDS = ("s3", "local")


@dataclass(frozen=True, slots=True)
class ServiceConfig:
    """Immutable process-wide configuration."""

    environment: str = "production"  # "development" exposes stack traces in error bodies
    host: str = "127.0.0.1"
    port: int = 3000
    base_url: str = "http://localhost:3000"
    log_dir: Path = Path("logs")
    log_file_name: str = "video-service.log"
    log_json: bool = False
    log_level: str = "INFO"
    video_dir: Path = Path("temp_videos")  # scratch recordings
    public_video_dir: Path = Path("videos")  # local backend output, served at /videos
    storage_backend: str = "s3"
    headless: bool = True
    aws_region: str = "us-east-1"
    aws_bucket_name: str = ""
    aws_access_key_id: str = ""
    aws_secret_access_key: str = ""

    def __post_init__(self) -> None:
        if self.environment not in _ENVIRONMENTS:
            raise ValueError(f"environment must be one of {_ENVIRONMENTS}, got {self.environment!r}")
        if self.storage_backend not in _STORAGE_BACKENDS:
            raise ValueError(f"storage_backend must be one of {_STORAGE_BACKENDS}, got {self.storage_backend!r}")
        if not 0 < self.port < 65536:
            raise ValueError(f"port must be in 1..65535, got {self.port}")

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def log_file(self) -> Path:
        return self.log_dir / self.log_file_name

    def ensure_dirs(self) -> None:
        """Create log and scratch video directories."""
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.video_dir.mkdir(parents=True, exist_ok=True)
        if self.storage_backend == "local":
            self.public_video_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ServiceConfig:
        env = os.environ if environ is None else environ

        def _get(name: str) -> str:
            return env.get(name, "").strip()

        kwargs: dict = {}
        if value := _get("SCROLLCAST_ENV").lower():
            kwargs["environment"] = value
        if value := _get("SCROLLCAST_HOST"):
            kwargs["host"] = value
        if value := _get("SCROLLCAST_PORT"):
            with suppress(ValueError):
                kwargs["port"] = int(value)
        if value := _get("SCROLLCAST_BASE_URL"):
            kwargs["base_url"] = value
        if value := _get("SCROLLCAST_LOG_DIR"):
            kwargs["log_dir"] = Path(value)
        if value := _get("SCROLLCAST_VIDEO_DIR"):
            kwargs["video_dir"] = Path(value)
        if value := _get("SCROLLCAST_PUBLIC_VIDEO_DIR"):
            kwargs["public_video_dir"] = Path(value)
        if value := _get("SCROLLCAST_STORAGE").lower():
            kwargs["storage_backend"] = value
        if value := _get("SCROLLCAST_HEADLESS").lower():
            kwargs["headless"] = value in _TRUTHY
        if value := _get("SCROLLCAST_LOG_JSON").lower():
            kwargs["log_json"] = value in _TRUTHY
        if value := _get("SCROLLCAST_LOG_LEVEL"):
            kwargs["log_level"] = value.upper()
        if value := _get("AWS_REGION"):
            kwargs["aws_region"] = value
        kwargs["aws_bucket_name"] = _get("AWS_BUCKET_NAME")
        kwargs["aws_access_key_id"] = _get("AWS_ACCESS_KEY_ID")
        kwargs["aws_secret_access_key"] = _get("AWS_SECRET_ACCESS_KEY")
        return cls(**kwargs)
