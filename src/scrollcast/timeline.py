# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Capture state machine and its timed transition log.

Every orchestrator stage is a :class:`CaptureState`. A :class:`CaptureTimeline`
records when each state was entered; the time spent in a state runs until the
next transition. ``done`` and ``failed`` are terminal and end the timeline.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum


class CaptureState(StrEnum):
    IDLE = "idle"
    BROWSER_LAUNCHING = "browser_launching"
    PRIMING = "priming"
    SESSION_CAPTURED = "session_captured"
    PRIMING_CLOSED = "priming_closed"
    RECORDING_OPEN = "recording_open"
    STABILIZING = "stabilizing"
    ELEMENTS_HIDDEN = "elements_hidden"
    SCROLLING = "scrolling"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (CaptureState.DONE, CaptureState.FAILED)


_FAILURE_HINTS: dict[CaptureState, str] = {
    CaptureState.BROWSER_LAUNCHING: "Chromium may be missing. Run: playwright install chromium",
    CaptureState.PRIMING: "Page may be slow to load or keep long-polling connections open.",
    CaptureState.RECORDING_OPEN: "Second navigation failed; the site may block repeat visits.",
    CaptureState.SCROLLING: "Page stopped responding to scroll evaluation.",
    CaptureState.FINALIZING: "Video could not be written or stored; check the video directory and storage backend.",
}


def failure_hint(state: CaptureState) -> str:
    return _FAILURE_HINTS.get(state, f"Capture failed while {state.value.replace('_', ' ')}.")


@dataclass(frozen=True, slots=True)
class Transition:
    state: CaptureState
    at_ns: int


class CaptureTimeline:
    """Ordered, timestamped state transitions of one capture."""

    def __init__(self, clock: Callable[[], int] = time.monotonic_ns) -> None:
        self._clock = clock
        self._started_ns = clock()
        self._transitions: list[Transition] = []

    @property
    def state(self) -> CaptureState:
        return self._transitions[-1].state if self._transitions else CaptureState.IDLE

    @property
    def history(self) -> list[CaptureState]:
        return [t.state for t in self._transitions]

    @property
    def last_active(self) -> CaptureState:
        """Most recent non-terminal state; the stage a failed capture died in."""
        for t in reversed(self._transitions):
            if not t.state.terminal:
                return t.state
        return CaptureState.IDLE

    def enter(self, state: CaptureState) -> None:
        if self.state.terminal:
            raise RuntimeError(f"capture already {self.state}, cannot enter {state}")
        self._transitions.append(Transition(state, self._clock()))

    def durations_ms(self) -> dict[CaptureState, float]:
        """Milliseconds spent in each non-terminal state, the current one up to now."""
        now = self._clock()
        result: dict[CaptureState, float] = {}
        for current, following in zip(self._transitions, [*self._transitions[1:], None], strict=True):
            if current.state.terminal:
                continue
            end_ns = following.at_ns if following is not None else now
            result[current.state] = round((end_ns - current.at_ns) / 1e6, 1)
        return result

    def total_ms(self) -> float:
        end_ns = self._transitions[-1].at_ns if self.state.terminal else self._clock()
        return round((end_ns - self._started_ns) / 1e6, 1)

    def failure_report(self, failed_at: CaptureState) -> dict:
        """Log payload for a capture that failed in *failed_at*."""
        durations = self.durations_ms()
        return {
            "failed_at": failed_at.value,
            "completed": {s.value: ms for s, ms in durations.items() if s is not failed_at},
            "total_ms": self.total_ms(),
            "hint": failure_hint(failed_at),
        }
