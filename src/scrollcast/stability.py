# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Wait for the DOM to stop mutating before recording starts.

The page does the watching: a MutationObserver feeds a credit counter that a
fixed-interval timer drains. Python only awaits the promise the script
returns. A timeout is not an error; the capture proceeds either way.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from playwright.async_api import Page

from .errors import StabilityTimeout

logger = logging.getLogger(__name__)

INITIAL_CREDIT = 5
POLL_INTERVAL_MS = 5
MAX_POLLS = 1000


@dataclass(frozen=True, slots=True)
class StabilityResult:
    settled: bool
    reason: str = ""  # "quiet" | "timeout" | "error"
    error: StabilityTimeout | None = None


# Resolves "quiet" once credit <= 0, "timeout" after maxPolls intervals.
_WAIT_NO_MUTATIONS_JS = """([selector, credit, intervalMs, maxPolls]) => new Promise(resolve => {
  const targets = Array.from(document.querySelectorAll(selector));
  const config = { attributes: true, childList: true, subtree: true };
  let mutations = credit;
  const observer = new MutationObserver(() => { mutations += 1; });
  targets.forEach(target => observer.observe(target, config));

  const drain = setInterval(() => {
    mutations -= 1;
    if (mutations <= 0) clearInterval(drain);
  }, intervalMs);

  let polls = 0;
  const poll = setInterval(() => {
    if (polls >= maxPolls) {
      clearInterval(poll);
      clearInterval(drain);
      observer.disconnect();
      resolve("timeout");
      return;
    }
    if (mutations <= 0) {
      clearInterval(poll);
      observer.disconnect();
      resolve("quiet");
      return;
    }
    polls += 1;
  }, intervalMs);
})"""


async def wait_until_stable(
    page: Page,
    root_selector: str = "body",
    *,
    initial_credit: int = INITIAL_CREDIT,
    interval_ms: int = POLL_INTERVAL_MS,
    max_polls: int = MAX_POLLS,
) -> StabilityResult:
    """Block until elements under *root_selector* stop mutating, or the poll bound is hit."""
    try:
        outcome = await page.evaluate(
            _WAIT_NO_MUTATIONS_JS,
            [root_selector, initial_credit, interval_ms, max_polls],
        )
    except Exception as exc:
        logger.warning("Stability check failed, continuing: %s", exc)
        return StabilityResult(settled=False, reason="error")

    if outcome == "quiet":
        return StabilityResult(settled=True, reason="quiet")

    timeout = StabilityTimeout(
        f"DOM under {root_selector!r} still mutating after {max_polls * interval_ms}ms"
    )
    logger.info("%s, proceeding anyway", timeout)
    return StabilityResult(settled=False, reason="timeout", error=timeout)
