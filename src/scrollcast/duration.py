# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Capture duration from page height and scroll speed.

Leaf module. Base rate is 1000px per second, stretched by a per-speed
multiplier.
"""

from __future__ import annotations

from .errors import InvalidSpeedError

_BASE_PX_PER_SECOND = 1000

SPEED_MULTIPLIERS: dict[str, int] = {
    "fast": 5,
    "medium": 10,
    "slow": 20,
}


def estimate_duration(page_height_px: float, speed: str) -> float:
    """Return capture seconds for a page of *page_height_px* at *speed*.

    Raises:
        InvalidSpeedError: *speed* is not fast, medium or slow.
    """
    # StrEnum members hash like their values
    multiplier = SPEED_MULTIPLIERS.get(speed) if isinstance(speed, str) else None
    if multiplier is None:
        raise InvalidSpeedError(speed)
    return (page_height_px / _BASE_PX_PER_SECOND) * multiplier


def resolve_duration(page_height_px: float, speed: str, explicit: float | None = None) -> float:
    """Caller-supplied duration wins over the height estimate."""
    if explicit:
        return float(explicit)
    return estimate_duration(page_height_px, speed)
