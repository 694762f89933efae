# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Best-effort cookie/consent overlay dismissal.

The dismisser walks an ordered list of strategies and stops at the first one
that finds something to click:

1. role=button elements whose accessible name matches an affirmative label
   (English and German variants)
2. interactive descendants of well-known banner containers
3. a "necessary cookies only" button as the last resort

Nothing here is allowed to fail a capture. A strategy that raises is skipped;
an error escaping the whole walk is logged and reported as "not dismissed".
"""

from __future__ import annotations

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Sequence
from contextlib import suppress
from dataclasses import dataclass

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Locator, Page

from .errors import ConsentDismissalFailure

logger = logging.getLogger(__name__)

CONSENT_SETTLE_MS = 2000
POST_CLICK_TIMEOUT_MS = 5000

AFFIRMATIVE_LABELS: tuple[str, ...] = (
    "Accept",
    "Accept all",
    "Accept cookies",
    "Allow cookies",
    "Allow all cookies",
    "OK",
    "Got it",
    "I understand",
    "Close",
    # German
    "Akzeptieren",
    "Alle akzeptieren",
    "Cookies zulassen",
    "Verstanden",
    "Schließen",
    "Nur notwendige Cookies",
    "Cookies akzeptieren",
)

BANNER_CONTAINERS: tuple[str, ...] = (
    "#cookiebot",
    ".cookiebot",
    "#cookiebanner",
    ".cookie-banner",
    ".cookie-notice",
    ".cookie-popup",
    ".cookie-consent",
    '[aria-label*="cookie"]',
    '[id*="cookie"]',
    '[class*="cookie"]',
    ".cc-window",
    ".CookieConsent",
)

NECESSARY_ONLY_PATTERN = re.compile(r"nur.+notwendige", re.IGNORECASE)


class ConsentStrategy(ABC):
    """One (detect, act) pair.

    ``detect`` returns a locator to click, or None when the strategy does not
    apply to the page. ``act`` clicks it and waits for the page to settle.
    """

    description: str = "consent strategy"

    @abstractmethod
    async def detect(self, page: Page) -> Locator | None:
        """Locator to click, or None."""

    async def act(self, page: Page, target: Locator) -> None:
        await click_and_settle(page, target)


@dataclass(frozen=True)
class RoleButtonStrategy(ConsentStrategy):
    """Click a role=button whose accessible name matches *pattern*."""

    pattern: re.Pattern[str]
    description: str = ""

    @classmethod
    def for_label(cls, label: str) -> RoleButtonStrategy:
        return cls(
            pattern=re.compile(re.escape(label), re.IGNORECASE),
            description=f"button text {label!r}",
        )

    async def detect(self, page: Page) -> Locator | None:
        button = page.get_by_role("button", name=self.pattern)
        if await button.count() > 0:
            return button.first
        return None


@dataclass(frozen=True)
class ContainerStrategy(ConsentStrategy):
    """Click the first interactive element inside a banner container."""

    container: str
    description: str = ""

    @classmethod
    def for_selector(cls, container: str) -> ContainerStrategy:
        return cls(container=container, description=f"selector {container!r}")

    @property
    def interactive_selector(self) -> str:
        c = self.container
        return f'{c} button, {c} [role="button"], {c} a[href="#"], {c} [type="button"]'

    async def detect(self, page: Page) -> Locator | None:
        elements = page.locator(self.interactive_selector)
        if await elements.count() > 0:
            return elements.first
        return None


def default_strategies() -> list[ConsentStrategy]:
    """Affirmative labels, then banner containers, then necessary-only."""
    strategies: list[ConsentStrategy] = [RoleButtonStrategy.for_label(label) for label in AFFIRMATIVE_LABELS]
    strategies.extend(ContainerStrategy.for_selector(sel) for sel in BANNER_CONTAINERS)
    strategies.append(
        RoleButtonStrategy(pattern=NECESSARY_ONLY_PATTERN, description="'necessary cookies only' button")
    )
    return strategies


async def _navigation_window(page: Page, timeout_ms: int) -> None:
    """Resolve on the next main-frame navigation or after *timeout_ms*."""
    with suppress(PlaywrightError):
        await page.wait_for_event(
            "framenavigated",
            predicate=lambda frame: frame == page.main_frame,
            timeout=timeout_ms,
        )


async def click_and_settle(page: Page, target: Locator, *, timeout_ms: int = POST_CLICK_TIMEOUT_MS) -> None:
    """Click *target*, give a triggered navigation up to *timeout_ms*, then wait for networkidle."""
    window = asyncio.ensure_future(_navigation_window(page, timeout_ms))
    try:
        await target.click()
        await window
    finally:
        if not window.done():
            window.cancel()
            with suppress(asyncio.CancelledError):
                await window
    await page.wait_for_load_state("networkidle")


class ConsentDismisser:
    """Runs consent strategies in priority order; first success wins.

    Holds configuration only, so one instance can serve concurrent captures.
    Per-call strategy failures go to the caller's *failures* list.
    """

    def __init__(
        self,
        strategies: Sequence[ConsentStrategy] | None = None,
        *,
        settle_ms: int = CONSENT_SETTLE_MS,
    ) -> None:
        self.strategies = list(strategies) if strategies is not None else default_strategies()
        self.settle_ms = settle_ms

    async def attempt_dismiss(self, page: Page, failures: list[ConsentDismissalFailure] | None = None) -> bool:
        """Return True if an overlay was clicked away."""
        logger.info("Attempting to handle cookie popups")
        if failures is None:
            failures = []
        try:
            await page.wait_for_timeout(self.settle_ms)
            for strategy in self.strategies:
                if await _try(strategy, page, failures):
                    logger.info("Clicked cookie consent via %s", strategy.description)
                    return True
            logger.info("No cookie popups found or handled")
            return False
        except Exception as exc:
            logger.warning("Error handling cookie popups: %s", exc)
            return False


async def _try(strategy: ConsentStrategy, page: Page, failures: list[ConsentDismissalFailure]) -> bool:
    try:
        target = await strategy.detect(page)
        if target is None:
            return False
        await strategy.act(page, target)
        return True
    except Exception as exc:
        failure = ConsentDismissalFailure(f"{strategy.description}: {exc}")
        failures.append(failure)
        logger.debug("Consent strategy failed: %s", failure)
        return False
