# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""scrollcast: record a web page auto-scrolling and store the video.

A capture runs in two browser contexts: a priming context that dismisses
cookie banners and collects session state, and a recording context seeded
with that state which scrolls the page while Playwright records video.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import StrEnum

from .errors import InvalidSpeedError, ValidationError

__version__ = "0.3.0"


class ScrollSpeed(StrEnum):
    FAST = "fast"
    MEDIUM = "medium"
    SLOW = "slow"


class ScrollDirection(StrEnum):
    DOWN = "down"
    UP = "up"
    LOOP = "loop"


_RESOLUTION_RE = re.compile(r"^\s*(\d+)\s*x\s*(\d+)\s*$", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class Viewport:
    """Browser viewport, also used as the recorded video size."""

    width: int
    height: int

    @classmethod
    def parse(cls, resolution: str) -> Viewport:
        """Parse a ``"WxH"`` resolution string."""
        m = _RESOLUTION_RE.match(resolution or "")
        if m is None:
            raise ValidationError(
                f"resolution must look like 1920x1080, got {resolution!r}",
                field_name="resolution",
            )
        width, height = int(m.group(1)), int(m.group(2))
        if width <= 0 or height <= 0:
            raise ValidationError("resolution dimensions must be positive", field_name="resolution")
        return cls(width=width, height=height)

    def as_dict(self) -> dict[str, int]:
        return {"width": self.width, "height": self.height}

    def __str__(self) -> str:
        return f"{self.width}x{self.height}"


@dataclass(frozen=True, slots=True)
class CaptureRequest:
    """A validated request for one scroll recording."""

    page_url: str
    scroll_speed: ScrollSpeed
    viewport: Viewport = field(default_factory=lambda: Viewport(1920, 1080))
    scroll_direction: ScrollDirection = ScrollDirection.DOWN
    elements_to_hide: tuple[str, ...] = ()
    explicit_duration: float | None = None  # seconds; overrides the estimate

    def __post_init__(self) -> None:
        if not self.page_url:
            raise ValidationError("url is required", field_name="url")
        try:
            speed = ScrollSpeed(self.scroll_speed)
        except ValueError:
            raise InvalidSpeedError(self.scroll_speed) from None
        try:
            direction = ScrollDirection(self.scroll_direction)
        except ValueError:
            raise ValidationError(
                f"scrollDirection must be down, up, or loop, got {self.scroll_direction!r}",
                field_name="scrollDirection",
            ) from None
        object.__setattr__(self, "scroll_speed", speed)
        object.__setattr__(self, "scroll_direction", direction)
        if self.explicit_duration is not None and self.explicit_duration <= 0:
            raise ValidationError(
                "Duration must be a positive number in seconds",
                field_name="duration",
            )


@dataclass(frozen=True, slots=True)
class StoredArtifact:
    """Where the storage backend put the recording."""

    reference_url: str
    key: str


__all__ = [
    "CaptureRequest",
    "ScrollDirection",
    "ScrollSpeed",
    "StoredArtifact",
    "Viewport",
    "__version__",
]
