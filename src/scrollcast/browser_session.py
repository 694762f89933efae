# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Playwright browser lifecycle for scroll captures.

One Chromium process per capture. Two context flavours are built on it:
the priming context (no recording, service workers blocked) and the
recording context (video enabled, seeded with the priming context's
storage state).
"""

from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from playwright.async_api import Browser, BrowserContext, Page, Playwright

from . import Viewport
from .errors import BrowserOperationError

logger = logging.getLogger(__name__)

# Session state as returned by BrowserContext.storage_state()
SessionState = dict[str, Any]

DEFAULT_TIMEOUT_MS = 30000


@dataclass
class BrowserConfig:
    """Browser launch and per-capture timing configuration."""

    headless: bool = True
    timeout_ms: int = DEFAULT_TIMEOUT_MS  # navigation + action default
    priming_settle_ms: int = 2000  # after consent handling
    recording_settle_ms: int = 2000  # after stability, before hiding/scrolling
    finalize_grace_s: float = 1.0  # filesystem flush after context close
    video_dir: Path = field(default_factory=lambda: Path("temp_videos"))
    extra_args: list[str] = field(default_factory=list)


# ── Chromium auto-install ─────────────────────────────────────────

_chromium_install_attempted = False
_AUTO_INSTALL_TIMEOUT = 300  # seconds


async def _auto_install_chromium() -> bool:
    """Run ``playwright install chromium`` once per process.

    Returns True if install succeeded, False otherwise.
    """
    global _chromium_install_attempted  # noqa: PLW0603
    if _chromium_install_attempted:
        return False
    _chromium_install_attempted = True

    logger.info("Chromium not found, running 'playwright install chromium'")
    try:
        proc = await asyncio.create_subprocess_exec(
            sys.executable,
            "-m",
            "playwright",
            "install",
            "chromium",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        _stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=_AUTO_INSTALL_TIMEOUT)
        if proc.returncode == 0:
            logger.info("Chromium installed successfully")
            return True
        logger.warning(
            "playwright install chromium failed (rc=%d): %s",
            proc.returncode,
            stderr.decode(errors="replace")[:500],
        )
        return False
    except TimeoutError:
        logger.warning("Chromium install timed out after %ds", _AUTO_INSTALL_TIMEOUT)
        return False
    except Exception:
        logger.warning("Chromium auto-install failed", exc_info=True)
        return False


def chromium_launch_args(config: BrowserConfig) -> list[str]:
    """Chromium flags for unattended recording."""
    return [
        "--disable-blink-features=AutomationControlled",
        "--disable-extensions",
        "--disable-dev-shm-usage",
        "--disable-background-networking",
        "--disable-sync",
        "--no-first-run",
        "--deny-permission-prompts",
        "--disable-breakpad",
        "--noerrdialogs",
        *config.extra_args,
    ]


async def launch_browser(playwright: Playwright, config: BrowserConfig) -> Browser:
    """Launch Chromium, auto-installing on the first 'executable not found' error."""
    args = chromium_launch_args(config)
    try:
        return await playwright.chromium.launch(headless=config.headless, args=args)
    except Exception as exc:
        if "executable doesn't exist" not in str(exc).lower():
            raise
        if not await _auto_install_chromium():
            raise BrowserOperationError(
                "Chromium is not installed and auto-install failed. Please run: playwright install chromium"
            ) from exc
        return await playwright.chromium.launch(headless=config.headless, args=args)


async def new_priming_context(browser: Browser, viewport: Viewport) -> BrowserContext:
    """Unrecorded context used only to collect consent cookies."""
    return await browser.new_context(
        viewport=viewport.as_dict(),
        accept_downloads=True,
        service_workers="block",
    )


async def new_recording_context(
    browser: Browser,
    viewport: Viewport,
    video_dir: Path,
    storage_state: SessionState,
) -> BrowserContext:
    """Video-recording context seeded with *storage_state*."""
    return await browser.new_context(
        viewport=viewport.as_dict(),
        record_video_dir=str(video_dir),
        record_video_size=viewport.as_dict(),
        storage_state=storage_state,
    )


async def open_page(context: BrowserContext, timeout_ms: int) -> Page:
    """New page with default action and navigation timeouts applied."""
    page = await context.new_page()
    page.set_default_timeout(timeout_ms)
    page.set_default_navigation_timeout(timeout_ms)
    return page
