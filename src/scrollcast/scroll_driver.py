# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Timed, direction-aware scrolling while the recording context captures video.

``ScrollPlan`` holds the pure position math; ``ScrollCaptureDriver`` applies
it to a live page once per frame until the wall-clock budget is spent. The
loop is bounded by elapsed time, not by frame count, so a loaded machine
renders fewer frames over the same duration.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from playwright.async_api import Page

from . import ScrollDirection

logger = logging.getLogger(__name__)

FRAME_RATE = 60
MAX_SCROLL_PER_FRAME = 50  # px

_SCROLL_TO_JS = "(pos) => window.scrollTo(0, pos)"


@dataclass(frozen=True, slots=True)
class ScrollPlan:
    """Per-frame scroll arithmetic for one capture."""

    direction: ScrollDirection
    page_height: float
    scrollable: float  # addressable distance
    step: float  # px per frame
    start: float

    @classmethod
    def build(
        cls,
        direction: ScrollDirection | str,
        duration_s: float,
        page_height_px: float,
        *,
        frame_rate: int = FRAME_RATE,
        max_per_frame: float = MAX_SCROLL_PER_FRAME,
    ) -> ScrollPlan:
        direction = ScrollDirection(direction)
        total_frames = duration_s * frame_rate
        scrollable = min(page_height_px, max_per_frame * total_frames)
        step = scrollable / total_frames if total_frames > 0 else 0.0
        start = page_height_px if direction is ScrollDirection.UP else 0.0
        return cls(
            direction=direction,
            page_height=page_height_px,
            scrollable=scrollable,
            step=step,
            start=start,
        )

    def advance(self, position: float) -> float:
        """Next unclamped position."""
        if self.direction is ScrollDirection.DOWN:
            return position + self.step
        if self.direction is ScrollDirection.UP:
            return position - self.step
        position += self.step
        if position >= self.scrollable:
            position = 0.0
        return position

    def clamp(self, position: float) -> float:
        return min(max(position, 0.0), self.page_height)


@dataclass(frozen=True, slots=True)
class ScrollReport:
    frames: int
    elapsed_s: float
    final_position: float


class ScrollCaptureDriver:
    """Scrolls a page for a fixed wall-clock duration."""

    def __init__(
        self,
        *,
        frame_rate: int = FRAME_RATE,
        max_per_frame: float = MAX_SCROLL_PER_FRAME,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.frame_rate = frame_rate
        self.max_per_frame = max_per_frame
        self._clock = clock

    @property
    def frame_interval_ms(self) -> float:
        return 1000 / self.frame_rate

    async def run(
        self,
        page: Page,
        direction: ScrollDirection | str,
        duration_s: float,
        page_height_px: float,
    ) -> ScrollReport:
        """Scroll until *duration_s* has elapsed. Evaluation errors propagate."""
        plan = ScrollPlan.build(
            direction,
            duration_s,
            page_height_px,
            frame_rate=self.frame_rate,
            max_per_frame=self.max_per_frame,
        )
        logger.debug(
            "Scroll plan: direction=%s scrollable=%.0fpx step=%.2fpx",
            plan.direction,
            plan.scrollable,
            plan.step,
        )

        position = plan.start
        applied = plan.clamp(position)
        frames = 0
        start = self._clock()
        while self._clock() - start < duration_s:
            position = plan.advance(position)
            applied = plan.clamp(position)
            await page.evaluate(_SCROLL_TO_JS, applied)
            await page.wait_for_timeout(self.frame_interval_ms)
            frames += 1

        elapsed = self._clock() - start
        logger.info("Scroll recording completed (%d frames in %.1fs)", frames, elapsed)
        return ScrollReport(frames=frames, elapsed_s=elapsed, final_position=applied)
