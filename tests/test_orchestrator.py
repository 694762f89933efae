# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""End-to-end orchestrator tests against a mocked Playwright stack.

Covers the two-phase prime/record flow, the storage-state handoff, the
cleanup cascade and the storage handoff on success and failure.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from scrollcast import CaptureRequest, Viewport
from scrollcast.browser_session import BrowserConfig
from scrollcast.consent import ConsentDismisser
from scrollcast.errors import ArtifactNotFoundError, InvalidSpeedError, UploadError
from scrollcast.orchestrator import CaptureRun, CaptureState, SessionOrchestrator, hide_elements
from scrollcast.problem_details import ProblemType, from_exception
from scrollcast.scroll_driver import ScrollCaptureDriver
from tests._browser_fakes import (
    SESSION_STATE,
    FakeBrowserStack,
    RecordingStore,
    TickClock,
    empty_locator,
    make_page,
)


def _orchestrator(store, tmp_path, *, clock_tick: float = 1.0) -> SessionOrchestrator:
    return SessionOrchestrator(
        store,
        BrowserConfig(finalize_grace_s=0, video_dir=tmp_path / "temp_videos"),
        consent=ConsentDismisser(settle_ms=0),
        scroll_driver=ScrollCaptureDriver(clock=TickClock(clock_tick)),
    )


def _stack(video_file, **recording_kwargs) -> FakeBrowserStack:
    return FakeBrowserStack(
        priming_page=make_page(),
        recording_page=make_page(video_path=video_file, **recording_kwargs),
    )


class FailingStore:
    def __init__(self, exc: Exception) -> None:
        self.exc = exc

    async def store(self, local_path, content_type="video/webm"):
        raise self.exc


# ── End-to-end scenarios ──────────────────────────────────────────


class TestScenarios:
    async def test_height_derived_duration(self, tmp_path, video_file):
        stack = _stack(video_file, page_height=5000)
        store = RecordingStore()
        orch = _orchestrator(store, tmp_path, clock_tick=5.0)
        request = CaptureRequest(
            page_url="https://example.com",
            scroll_speed="fast",
            viewport=Viewport.parse("1920x1080"),
            scroll_direction="down",
        )
        run = CaptureRun(request)

        with patch("scrollcast.orchestrator.async_playwright") as mock_apw:
            stack.install(mock_apw)
            artifact = await orch.run_capture(run)

        assert artifact.reference_url == "https://cdn.example.com/signed/abc.webm"
        assert run.artifact is artifact
        assert run.duration_s == 25
        assert run.state == CaptureState.DONE
        assert store.calls == [(video_file, "video/webm")]
        assert not video_file.exists()

    async def test_explicit_duration_overrides_estimate(self, tmp_path, video_file):
        stack = _stack(video_file, page_height=200_000)
        orch = _orchestrator(RecordingStore(), tmp_path)
        run = CaptureRun(CaptureRequest(page_url="https://example.com", scroll_speed="slow", explicit_duration=10))

        with patch("scrollcast.orchestrator.async_playwright") as mock_apw:
            stack.install(mock_apw)
            await orch.run_capture(run)

        assert run.duration_s == 10.0
        # one frame per clock tick until 10s have elapsed
        assert len(stack.recording_page.scroll_positions) == 9

    async def test_no_consent_banner_proceeds(self, tmp_path, video_file):
        stack = _stack(video_file)
        orch = _orchestrator(RecordingStore(), tmp_path)
        run = CaptureRun(CaptureRequest(page_url="https://example.com", scroll_speed="fast", explicit_duration=2))

        with patch("scrollcast.orchestrator.async_playwright") as mock_apw:
            stack.install(mock_apw)
            await orch.run_capture(run)

        # every strategy looked, none clicked, nothing failed
        assert stack.priming_page.get_by_role.call_count > 0
        assert run.consent_dismissed is False
        assert run.consent_failures == []
        stack.recording_page.get_by_role.assert_not_called()
        assert run.state == CaptureState.DONE

    async def test_upload_error_keeps_local_file(self, tmp_path, video_file):
        stack = _stack(video_file)
        original = UploadError("Failed to upload video to S3: AccessDenied", local_path=str(video_file))
        orch = _orchestrator(FailingStore(original), tmp_path)
        run = CaptureRun(CaptureRequest(page_url="https://example.com", scroll_speed="fast", explicit_duration=2))

        with patch("scrollcast.orchestrator.async_playwright") as mock_apw:
            stack.install(mock_apw)
            with pytest.raises(UploadError) as excinfo:
                await orch.run_capture(run)

        assert excinfo.value is original
        assert video_file.exists()
        assert run.state == CaptureState.FAILED
        assert run.timeline.last_active == CaptureState.FINALIZING
        assert run.artifact is None

    async def test_unmatched_hide_selector_is_skipped(self, tmp_path, video_file):
        stack = _stack(video_file, hide_counts={".ad-banner": 3})
        orch = _orchestrator(RecordingStore(), tmp_path)
        request = CaptureRequest(
            page_url="https://example.com",
            scroll_speed="fast",
            elements_to_hide=(".ad-banner", "#nonexistent"),
            explicit_duration=2,
        )
        run = CaptureRun(request)

        with patch("scrollcast.orchestrator.async_playwright") as mock_apw:
            stack.install(mock_apw)
            artifact = await orch.run_capture(run)

        assert artifact.key == "abc.webm"
        assert run.hidden == {".ad-banner": 3, "#nonexistent": 0}
        hidden = [c.args[1] for c in stack.recording_page.evaluate.await_args_list if "display = 'none'" in c.args[0]]
        assert hidden == [".ad-banner", "#nonexistent"]


class TestConcurrentCaptures:
    async def test_runs_keep_their_own_diagnostics(self, tmp_path, video_file):
        other_video = video_file.with_name("page@d4e5f6.webm")
        other_video.write_bytes(video_file.read_bytes())
        broken = MagicMock()
        broken.count = AsyncMock(side_effect=RuntimeError("detached"))
        banner_page = make_page()
        banner_page.get_by_role = MagicMock(
            side_effect=lambda role, *, name: broken if name.search("Accept") else empty_locator()
        )
        first = FakeBrowserStack(priming_page=banner_page, recording_page=make_page(video_path=video_file))
        second = FakeBrowserStack(
            priming_page=make_page(), recording_page=make_page(video_path=other_video, hide_counts={".ad": 4})
        )
        orch = _orchestrator(RecordingStore(), tmp_path)
        run_a = CaptureRun(CaptureRequest(page_url="https://a.example", scroll_speed="fast", explicit_duration=2))
        run_b = CaptureRun(
            CaptureRequest(page_url="https://b.example", scroll_speed="fast", elements_to_hide=(".ad",), explicit_duration=2)
        )

        with patch("scrollcast.orchestrator.async_playwright") as mock_apw:
            mock_apw.return_value.start = AsyncMock(side_effect=[first.playwright, second.playwright])
            await asyncio.gather(orch.run_capture(run_a), orch.run_capture(run_b))

        assert run_a.consent_failures
        assert run_b.consent_failures == []
        assert run_a.hidden == {}
        assert run_b.hidden == {".ad": 4}
        assert run_a.state == run_b.state == CaptureState.DONE
        assert set(vars(orch)) == {"store", "config", "consent", "scroll_driver"}


# ── Two-phase session handoff ─────────────────────────────────────


class TestSessionHandoff:
    async def test_storage_state_carried_into_recording_context(self, tmp_path, video_file):
        stack = _stack(video_file)
        orch = _orchestrator(RecordingStore(), tmp_path)

        with patch("scrollcast.orchestrator.async_playwright") as mock_apw:
            stack.install(mock_apw)
            await orch.generate(CaptureRequest(page_url="https://example.com", scroll_speed="fast", explicit_duration=2))

        priming_kwargs, recording_kwargs = stack.new_context_kwargs
        assert "storage_state" not in priming_kwargs
        assert "record_video_dir" not in priming_kwargs
        assert priming_kwargs["service_workers"] == "block"
        assert recording_kwargs["storage_state"] == SESSION_STATE
        assert recording_kwargs["record_video_size"] == {"width": 1920, "height": 1080}
        assert recording_kwargs["record_video_dir"] == str(tmp_path / "temp_videos")

    async def test_priming_closed_before_recording_opens(self, tmp_path, video_file):
        stack = _stack(video_file)
        orch = _orchestrator(RecordingStore(), tmp_path)

        with patch("scrollcast.orchestrator.async_playwright") as mock_apw:
            stack.install(mock_apw)
            await orch.generate(CaptureRequest(page_url="https://example.com", scroll_speed="fast", explicit_duration=2))

        assert stack.events == [
            "priming.open",
            "priming.close",
            "recording.open",
            "recording.close",
            "browser.close",
            "playwright.stop",
        ]

    async def test_state_history(self, tmp_path, video_file):
        stack = _stack(video_file)
        orch = _orchestrator(RecordingStore(), tmp_path)
        run = CaptureRun(CaptureRequest(page_url="https://example.com", scroll_speed="fast", explicit_duration=2))

        with patch("scrollcast.orchestrator.async_playwright") as mock_apw:
            stack.install(mock_apw)
            await orch.run_capture(run)

        assert run.history == [
            CaptureState.BROWSER_LAUNCHING,
            CaptureState.PRIMING,
            CaptureState.SESSION_CAPTURED,
            CaptureState.PRIMING_CLOSED,
            CaptureState.RECORDING_OPEN,
            CaptureState.STABILIZING,
            CaptureState.ELEMENTS_HIDDEN,
            CaptureState.SCROLLING,
            CaptureState.FINALIZING,
            CaptureState.DONE,
        ]
        assert run.session_state == SESSION_STATE
        assert set(run.timeline.durations_ms()) == set(run.history[:-1])

    async def test_both_navigations_wait_for_networkidle(self, tmp_path, video_file):
        stack = _stack(video_file)
        orch = _orchestrator(RecordingStore(), tmp_path)

        with patch("scrollcast.orchestrator.async_playwright") as mock_apw:
            stack.install(mock_apw)
            await orch.generate(CaptureRequest(page_url="https://example.com/p", scroll_speed="fast", explicit_duration=2))

        stack.priming_page.goto.assert_awaited_once_with("https://example.com/p", wait_until="networkidle")
        stack.recording_page.goto.assert_awaited_once_with("https://example.com/p", wait_until="networkidle")
        stack.recording_page.set_default_timeout.assert_called_once_with(30000)


# ── Cleanup cascade ───────────────────────────────────────────────


class TestCleanup:
    async def test_recording_navigation_failure_closes_everything(self, tmp_path, video_file):
        boom = RuntimeError("net::ERR_NAME_NOT_RESOLVED")
        stack = _stack(video_file, goto_error=boom)
        orch = _orchestrator(RecordingStore(), tmp_path)
        run = CaptureRun(CaptureRequest(page_url="https://example.com", scroll_speed="fast"))

        with patch("scrollcast.orchestrator.async_playwright") as mock_apw:
            stack.install(mock_apw)
            with pytest.raises(RuntimeError) as excinfo:
                await orch.run_capture(run)

        assert excinfo.value is boom
        assert stack.events[-3:] == ["recording.close", "browser.close", "playwright.stop"]
        assert run.history[-2:] == [CaptureState.RECORDING_OPEN, CaptureState.FAILED]
        assert run.recording is None and run.browser is None and run.playwright is None

    async def test_priming_failure_closes_priming_then_browser(self, tmp_path, video_file):
        stack = FakeBrowserStack(
            priming_page=make_page(goto_error=RuntimeError("Timeout 30000ms exceeded")),
            recording_page=make_page(video_path=video_file),
        )
        orch = _orchestrator(RecordingStore(), tmp_path)

        with patch("scrollcast.orchestrator.async_playwright") as mock_apw:
            stack.install(mock_apw)
            with pytest.raises(RuntimeError, match="Timeout"):
                await orch.generate(CaptureRequest(page_url="https://example.com", scroll_speed="fast"))

        assert stack.events == ["priming.open", "priming.close", "browser.close", "playwright.stop"]

    async def test_close_failure_does_not_stop_later_closes(self, tmp_path, video_file):
        stack = _stack(video_file, scroll_error=RuntimeError("Target crashed"))
        stack.recording.close = AsyncMock(side_effect=RuntimeError("context already closed"))
        orch = _orchestrator(RecordingStore(), tmp_path)

        with patch("scrollcast.orchestrator.async_playwright") as mock_apw:
            stack.install(mock_apw)
            with pytest.raises(RuntimeError, match="Target crashed"):
                await orch.generate(CaptureRequest(page_url="https://example.com", scroll_speed="fast", explicit_duration=2))

        stack.recording.close.assert_awaited_once()
        assert stack.events[-2:] == ["browser.close", "playwright.stop"]

    async def test_launch_failure_stops_playwright(self, tmp_path):
        stack = FakeBrowserStack(priming_page=make_page(), recording_page=make_page())
        stack.playwright.chromium.launch = AsyncMock(side_effect=RuntimeError("spawn EACCES"))
        orch = _orchestrator(RecordingStore(), tmp_path)
        run = CaptureRun(CaptureRequest(page_url="https://example.com", scroll_speed="fast"))

        with patch("scrollcast.orchestrator.async_playwright") as mock_apw:
            stack.install(mock_apw)
            with pytest.raises(RuntimeError, match="EACCES"):
                await orch.run_capture(run)

        assert stack.events == ["playwright.stop"]
        assert run.history == [CaptureState.BROWSER_LAUNCHING, CaptureState.FAILED]

    async def test_invalid_speed_rejected_before_browser_work(self, tmp_path):
        with patch("scrollcast.orchestrator.async_playwright") as mock_apw:
            with pytest.raises(InvalidSpeedError) as excinfo:
                CaptureRequest(page_url="https://example.com", scroll_speed="warp")

        assert excinfo.value.field_name == "scrollSpeed"
        mock_apw.assert_not_called()


# ── Finalization ──────────────────────────────────────────────────


class TestFinalize:
    async def test_missing_video_file(self, tmp_path):
        missing = tmp_path / "temp_videos" / "gone.webm"
        stack = FakeBrowserStack(priming_page=make_page(), recording_page=make_page(video_path=missing))
        store = RecordingStore()
        orch = _orchestrator(store, tmp_path)

        with patch("scrollcast.orchestrator.async_playwright") as mock_apw:
            stack.install(mock_apw)
            with pytest.raises(ArtifactNotFoundError, match="Video file not found at"):
                await orch.generate(CaptureRequest(page_url="https://example.com", scroll_speed="fast", explicit_duration=2))

        assert store.calls == []
        # recording and browser were closed during finalization, not again in cleanup
        assert stack.events.count("recording.close") == 1
        assert stack.events.count("browser.close") == 1

    async def test_no_video_handle(self, tmp_path):
        stack = FakeBrowserStack(priming_page=make_page(), recording_page=make_page(video_path=None))
        orch = _orchestrator(RecordingStore(), tmp_path)

        with patch("scrollcast.orchestrator.async_playwright") as mock_apw:
            stack.install(mock_apw)
            with pytest.raises(ArtifactNotFoundError, match="produced no video") as excinfo:
                await orch.generate(CaptureRequest(page_url="https://example.com", scroll_speed="fast", explicit_duration=2))

        assert stack.events[-3:] == ["recording.close", "browser.close", "playwright.stop"]
        problem = from_exception(excinfo.value)
        assert problem.type == ProblemType.ARTIFACT_NOT_FOUND.uri
        assert problem.status == 500

    async def test_video_path_resolved_before_context_close(self, tmp_path, video_file):
        stack = _stack(video_file)
        order: list[str] = []
        stack.recording_page.video.path = AsyncMock(side_effect=lambda: order.append("path") or str(video_file))
        original_close = stack.recording.close.side_effect

        async def _close():
            order.append("close")
            await original_close()

        stack.recording.close = AsyncMock(side_effect=_close)
        orch = _orchestrator(RecordingStore(), tmp_path)
        run = CaptureRun(CaptureRequest(page_url="https://example.com", scroll_speed="fast", explicit_duration=2))

        with patch("scrollcast.orchestrator.async_playwright") as mock_apw:
            stack.install(mock_apw)
            await orch.run_capture(run)

        assert order == ["path", "close"]
        assert run.video_path == video_file


# ── hide_elements ─────────────────────────────────────────────────


class TestHideElements:
    async def test_counts_per_selector(self):
        page = make_page(hide_counts={".ad": 2, "#popup": 1})
        assert await hide_elements(page, [".ad", "#popup", ".none"]) == {".ad": 2, "#popup": 1, ".none": 0}

    async def test_failing_selector_left_out(self):
        page = make_page(hide_counts={".ad": 2}, hide_errors={"div[": RuntimeError("SyntaxError: not a valid selector")})
        assert await hide_elements(page, ["div[", ".ad"]) == {".ad": 2}

    async def test_empty_list_does_nothing(self):
        page = make_page()
        assert await hide_elements(page, ()) == {}
        page.evaluate.assert_not_awaited()


def test_orchestrator_defaults():
    orch = SessionOrchestrator(MagicMock())
    assert isinstance(orch.consent, ConsentDismisser)
    assert isinstance(orch.scroll_driver, ScrollCaptureDriver)
    assert orch.config.finalize_grace_s == 1.0
