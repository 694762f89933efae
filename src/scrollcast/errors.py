# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""scrollcast exception hierarchy.

All scrollcast-specific errors inherit from ScrollcastError.  The heuristic
failures (consent, stability, element hiding) exist so they can be named in
logs; the orchestrator never lets them escape a capture.
"""

from __future__ import annotations


class ScrollcastError(Exception):
    """Base exception for all scrollcast errors."""


class ValidationError(ScrollcastError):
    """Capture request rejected before the browser pipeline runs."""

    def __init__(self, message: str, *, field_name: str = "") -> None:
        super().__init__(message)
        self.field_name = field_name


class InvalidSpeedError(ValidationError):
    """Scroll speed is not one of fast, medium or slow."""

    def __init__(self, speed: object) -> None:
        super().__init__(f"Invalid scrollSpeed: {speed!r}", field_name="scrollSpeed")
        self.speed = speed


class ConsentDismissalFailure(ScrollcastError):
    """A consent overlay strategy failed (downgraded to "not dismissed")."""


class StabilityTimeout(ScrollcastError):
    """DOM never went quiet within the polling bound (downgraded to "proceed")."""


class PerElementHideFailure(ScrollcastError):
    """Hiding one selector failed (logged and skipped)."""

    def __init__(self, selector: str, cause: Exception) -> None:
        super().__init__(f"Could not hide element with selector {selector}: {cause}")
        self.selector = selector


class BrowserOperationError(ScrollcastError):
    """Browser launch, context, navigation or evaluation failure."""


class ArtifactNotFoundError(ScrollcastError):
    """The recorded video is missing after finalization.

    *path* is empty when the recording context never produced a video handle.
    """

    def __init__(self, path: str = "", *, message: str = "") -> None:
        super().__init__(message or f"Video file not found at: {path}")
        self.path = path


class UploadError(ScrollcastError):
    """Storage backend could not accept the artifact; the local file is kept."""

    def __init__(self, message: str, *, local_path: str = "") -> None:
        super().__init__(message)
        self.local_path = local_path
