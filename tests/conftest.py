# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

try:
    import scrollcast  # noqa: F401
except ImportError:
    raise ImportError("scrollcast is not installed. Run: pip install -e '.[dev]'") from None

import pytest


@pytest.fixture(autouse=True)
def _block_real_browser(request, monkeypatch):
    """Safety net: prevent real Playwright launches in unit tests.

    Tests that drive the orchestrator patch
    ``scrollcast.orchestrator.async_playwright`` themselves; that patch
    takes priority over this fixture.
    """
    if "real_browser" in request.keywords:
        return

    def _no_real_playwright():
        raise RuntimeError(
            "Test tried to start real Playwright. Patch 'scrollcast.orchestrator.async_playwright' in your test."
        )

    monkeypatch.setattr("scrollcast.orchestrator.async_playwright", _no_real_playwright)


@pytest.fixture
def video_file(tmp_path):
    """A finished recording as Playwright would leave it on disk."""
    path = tmp_path / "temp_videos" / "page@a1b2c3.webm"
    path.parent.mkdir(parents=True)
    path.write_bytes(b"\x1aE\xdf\xa3" + b"\x00" * 2048)
    return path
