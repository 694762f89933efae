# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Two-phase capture orchestration: prime, then record.

Stage order for one request::

    browser_launching -> priming -> session_captured -> priming_closed
    -> recording_open -> stabilizing -> elements_hidden -> scrolling
    -> finalizing -> done

Any stage may end in ``failed``. On failure the recording context, the
priming context and the browser are closed in that order, each attempt
guarded on its own, and the original exception is re-raised.

The only data carried from the priming context to the recording context is
its storage state (cookies + localStorage). The priming context is closed
before the recording context is opened.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path

import structlog
from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from . import CaptureRequest, StoredArtifact
from .browser_session import (
    BrowserConfig,
    SessionState,
    launch_browser,
    new_priming_context,
    new_recording_context,
    open_page,
)
from .consent import ConsentDismisser
from .duration import resolve_duration
from .errors import ArtifactNotFoundError, ConsentDismissalFailure, PerElementHideFailure
from .scroll_driver import ScrollCaptureDriver
from .stability import wait_until_stable
from .storage import VIDEO_CONTENT_TYPE, ArtifactStore
from .timeline import CaptureState, CaptureTimeline

logger = logging.getLogger(__name__)

_PAGE_HEIGHT_JS = "() => document.documentElement.scrollHeight"

_HIDE_ELEMENTS_JS = """(sel) => {
  const els = document.querySelectorAll(sel);
  els.forEach(el => { el.style.display = 'none'; });
  return els.length;
}"""


@dataclass
class CaptureRun:
    """Resources, progress and diagnostics of a single capture.

    One per request; nothing here is shared between concurrent captures.
    """

    request: CaptureRequest
    timeline: CaptureTimeline = field(default_factory=CaptureTimeline)
    playwright: Playwright | None = None
    browser: Browser | None = None
    priming: BrowserContext | None = None
    recording: BrowserContext | None = None
    session_state: SessionState | None = None
    consent_dismissed: bool = False
    consent_failures: list[ConsentDismissalFailure] = field(default_factory=list)
    hidden: dict[str, int] = field(default_factory=dict)
    duration_s: float | None = None
    video_path: Path | None = None
    artifact: StoredArtifact | None = None

    @property
    def state(self) -> CaptureState:
        return self.timeline.state

    @property
    def history(self) -> list[CaptureState]:
        return self.timeline.history

    def enter(self, state: CaptureState) -> None:
        self.timeline.enter(state)
        logger.debug("Capture state -> %s", state)


async def hide_elements(page: Page, selectors: tuple[str, ...] | list[str]) -> dict[str, int]:
    """Set ``display: none`` on every match of each selector.

    Returns {selector: hidden_count}. A selector that fails is logged and left
    out of the result; it never fails the capture.
    """
    hidden: dict[str, int] = {}
    if not selectors:
        return hidden
    logger.info("Hiding elements: %s", list(selectors))
    for selector in selectors:
        try:
            count = await page.evaluate(_HIDE_ELEMENTS_JS, selector)
        except Exception as exc:
            logger.warning("%s", PerElementHideFailure(selector, exc))
            continue
        if not count:
            logger.info("No elements matched selector %s, skipped", selector)
        hidden[selector] = int(count or 0)
    return hidden


class SessionOrchestrator:
    """Turns a :class:`CaptureRequest` into a stored video.

    One browser per call; nothing is pooled or shared between calls, so
    concurrent ``generate`` calls on one orchestrator are independent. The
    orchestrator holds configuration only; per-capture state and diagnostics
    live on the :class:`CaptureRun`.
    """

    def __init__(
        self,
        store: ArtifactStore,
        config: BrowserConfig | None = None,
        *,
        consent: ConsentDismisser | None = None,
        scroll_driver: ScrollCaptureDriver | None = None,
    ) -> None:
        self.store = store
        self.config = config or BrowserConfig()
        self.consent = consent or ConsentDismisser()
        self.scroll_driver = scroll_driver or ScrollCaptureDriver()

    async def generate(self, request: CaptureRequest) -> StoredArtifact:
        """Record *request* and return the storage backend's reference."""
        return await self.run_capture(CaptureRun(request=request))

    async def run_capture(self, run: CaptureRun) -> StoredArtifact:
        """Drive *run* through every stage; its diagnostics stay on *run*."""
        request = run.request
        with structlog.contextvars.bound_contextvars(capture_url=request.page_url):
            logger.info("Starting video generation for URL: %s", request.page_url)
            logger.info(
                "Parameters: scrollSpeed=%s, resolution=%s, scrollDirection=%s, hideElements=%s, duration=%s",
                request.scroll_speed,
                request.viewport,
                request.scroll_direction,
                list(request.elements_to_hide),
                request.explicit_duration,
            )
            try:
                artifact = await self._run(run)
            except Exception as exc:
                failed_at = run.timeline.last_active
                run.enter(CaptureState.FAILED)
                logger.error(
                    "Error in generate at stage %s: %s %s",
                    failed_at,
                    exc,
                    run.timeline.failure_report(failed_at),
                    exc_info=True,
                )
                raise
            finally:
                await self._release(run)
            run.enter(CaptureState.DONE)
            run.artifact = artifact
            durations = {state.value: ms for state, ms in run.timeline.durations_ms().items()}
            logger.info("Capture finished in %.0fms %s", run.timeline.total_ms(), durations)
            return artifact

    async def _run(self, run: CaptureRun) -> StoredArtifact:
        request = run.request
        cfg = self.config

        run.enter(CaptureState.BROWSER_LAUNCHING)
        run.playwright = await async_playwright().start()
        logger.info("Launching browser with viewport %s", request.viewport)
        run.browser = await launch_browser(run.playwright, cfg)
        logger.info("Browser launched successfully")

        run.enter(CaptureState.PRIMING)
        run.priming = await new_priming_context(run.browser, request.viewport)
        priming_page = await open_page(run.priming, cfg.timeout_ms)
        logger.info("Navigating to %s", request.page_url)
        await priming_page.goto(request.page_url, wait_until="networkidle")
        run.consent_dismissed = await self.consent.attempt_dismiss(priming_page, run.consent_failures)
        await priming_page.wait_for_load_state("networkidle")
        await priming_page.wait_for_timeout(cfg.priming_settle_ms)

        run.enter(CaptureState.SESSION_CAPTURED)
        run.session_state = await run.priming.storage_state()
        logger.info("Stored cookie state (%d cookies)", len(run.session_state.get("cookies", [])))

        run.enter(CaptureState.PRIMING_CLOSED)
        await run.priming.close()
        run.priming = None
        logger.info("Priming context closed")

        # No second consent pass here; the stored state usually suppresses the banner.
        run.enter(CaptureState.RECORDING_OPEN)
        run.recording = await new_recording_context(
            run.browser,
            request.viewport,
            cfg.video_dir,
            run.session_state,
        )
        page = await open_page(run.recording, cfg.timeout_ms)
        logger.info("Navigating to %s for recording", request.page_url)
        await page.goto(request.page_url, wait_until="networkidle")

        run.enter(CaptureState.STABILIZING)
        stability = await wait_until_stable(page, "body")
        logger.info("Page stability: settled=%s reason=%s", stability.settled, stability.reason)
        await page.wait_for_timeout(cfg.recording_settle_ms)

        run.enter(CaptureState.ELEMENTS_HIDDEN)
        run.hidden = await hide_elements(page, request.elements_to_hide)

        run.enter(CaptureState.SCROLLING)
        page_height = await page.evaluate(_PAGE_HEIGHT_JS)
        logger.info("Page height: %spx", page_height)
        run.duration_s = resolve_duration(page_height, request.scroll_speed, request.explicit_duration)
        logger.info("Final video duration: %s seconds", run.duration_s)
        await self.scroll_driver.run(page, request.scroll_direction, run.duration_s, page_height)

        run.enter(CaptureState.FINALIZING)
        return await self._finalize(run, page)

    async def _finalize(self, run: CaptureRun, page: Page) -> StoredArtifact:
        video = page.video
        if video is None:
            raise ArtifactNotFoundError(message="Recording context produced no video")
        run.video_path = Path(await video.path())

        await run.recording.close()
        run.recording = None
        logger.info("Recording context closed, video saved")

        await run.browser.close()
        run.browser = None
        logger.info("Browser closed")

        await asyncio.sleep(self.config.finalize_grace_s)

        if not run.video_path.exists():
            raise ArtifactNotFoundError(str(run.video_path))
        size_mb = run.video_path.stat().st_size / 1024 / 1024
        logger.info("Video file size: %.2f MB", size_mb)

        artifact = await self.store.store(run.video_path, VIDEO_CONTENT_TYPE)
        logger.info("Video stored: key=%s", artifact.key)
        return artifact

    @staticmethod
    async def _release(run: CaptureRun) -> None:
        """Close whatever is still open, newest first. Never raises."""
        if run.recording is not None:
            try:
                await run.recording.close()
                logger.info("Recording context closed after error")
            except Exception as exc:
                logger.error("Error closing recording context: %s", exc)
            run.recording = None

        if run.priming is not None:
            try:
                await run.priming.close()
                logger.info("Priming context closed after error")
            except Exception as exc:
                logger.error("Error closing priming context: %s", exc)
            run.priming = None

        if run.browser is not None:
            try:
                await run.browser.close()
                logger.info("Browser closed after error")
            except Exception as exc:
                logger.error("Error closing browser: %s", exc)
            run.browser = None

        if run.playwright is not None:
            try:
                await run.playwright.stop()
            except Exception as exc:
                logger.error("Error stopping playwright: %s", exc)
            run.playwright = None
