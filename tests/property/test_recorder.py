"""Tests for the frame capture engine with Playwright and ffmpeg faked out.

The recorder must produce exactly one frame per scheduled timestamp, seek
before every capture, convert any failure into an unsuccessful result and
release the browser and frame directory on every path.
"""

import asyncio
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from storymaker.models.recording import RecorderProgress, RecorderRequest, frame_timestamps
from storymaker.services.animation import PROTOCOL_VERSION, load_control_script
from storymaker.services.recorder import StoryRecorder, thumbnail_path_for
from storymaker.utils.errors import EncodingError


# ==================== Fake Playwright ====================


class FakeConsoleMessage:
    def __init__(self, type: str, text: str) -> None:
        self.type = type
        self.text = text


class FakePageError:
    def __init__(self, message: str) -> None:
        self.message = message


class FakePage:
    """Records every interaction the recorder has with the page."""

    def __init__(
        self,
        signal_ready: bool = True,
        page_error: Optional[str] = None,
        stall_fonts: bool = False,
        stall_seek: bool = False,
    ) -> None:
        self.signal_ready = signal_ready
        self.page_error = page_error
        self.stall_fonts = stall_fonts
        self.stall_seek = stall_seek
        # One long animation, so every clamped target equals the frame time.
        self.timings: List[List[float]] = [[1e9, 1, 0]]
        self.exposed: Dict[str, Any] = {}
        self.handlers: Dict[str, Any] = {}
        self.seeks: List[float] = []
        self.events: List[str] = []
        self.goto_kwargs: Dict[str, Any] = {}
        self.closed = False

    def on(self, event: str, handler: Any) -> None:
        self.handlers[event] = handler

    async def expose_function(self, name: str, callback: Any) -> None:
        self.exposed[name] = callback

    async def goto(self, url: str, **kwargs: Any) -> None:
        self.goto_kwargs = {"url": url, **kwargs}
        self.handlers["console"](FakeConsoleMessage("log", "StoryMaker: Rendering content..."))
        self.handlers["console"](FakeConsoleMessage("warning", "slow font"))
        if self.page_error:
            self.handlers["pageerror"](FakePageError(self.page_error))
        if self.signal_ready:
            self.exposed["storyReady"]()
            self.exposed["storyReady"]()
            self.exposed["storyDone"]()

    async def evaluate(self, expression: str, arg: Any = None) -> Any:
        if expression == load_control_script():
            self.events.append("install")
            return PROTOCOL_VERSION
        if "timings()" in expression:
            if self.stall_seek:
                await asyncio.Event().wait()
            return self.timings
        if arg is not None:
            self.seeks.append(arg[0])
            self.events.append(f"seek:{arg[0]}")
            return len(arg)
        if "activate()" in expression:
            self.events.append("activate")
            return len(self.timings)
        if "document.fonts.ready" in expression:
            self.events.append("fonts")
            if self.stall_fonts:
                await asyncio.Event().wait()
        return True

    async def screenshot(self, path: str, **kwargs: Any) -> None:
        Path(path).write_bytes(b"\x89PNG")
        self.events.append(f"shot:{Path(path).name}")

    async def close(self) -> None:
        self.closed = True


class FakeContext:
    def __init__(self, page: FakePage) -> None:
        self.page = page
        self.kwargs: Dict[str, Any] = {}
        self.closed = False

    async def new_page(self) -> FakePage:
        return self.page

    async def close(self) -> None:
        self.closed = True


class FakeBrowser:
    def __init__(self, context: FakeContext) -> None:
        self.context = context
        self.closed = False

    async def new_context(self, **kwargs: Any) -> FakeContext:
        self.context.kwargs = kwargs
        return self.context

    async def close(self) -> None:
        self.closed = True


class FakeChromium:
    def __init__(self, browser: FakeBrowser, launch_error: Optional[Exception] = None) -> None:
        self.browser = browser
        self.launch_error = launch_error
        self.launch_kwargs: Dict[str, Any] = {}

    async def launch(self, **kwargs: Any) -> FakeBrowser:
        self.launch_kwargs = kwargs
        if self.launch_error:
            raise self.launch_error
        return self.browser


class FakePlaywright:
    def __init__(self, chromium: FakeChromium) -> None:
        self.chromium = chromium
        self.stopped = False

    async def stop(self) -> None:
        self.stopped = True


class FakePlaywrightManager:
    def __init__(self, playwright: FakePlaywright) -> None:
        self.playwright = playwright

    async def start(self) -> FakePlaywright:
        return self.playwright


class FakeEncoder:
    """Replaces the ffmpeg helpers; snapshots the frame directory on encode."""

    def __init__(self, encode_error: Optional[Exception] = None, thumbnail_error: Optional[Exception] = None) -> None:
        self.encode_error = encode_error
        self.thumbnail_error = thumbnail_error
        self.frames_dir: Optional[str] = None
        self.frame_files: List[str] = []
        self.encode_args: Dict[str, Any] = {}
        self.thumbnail_source: Optional[str] = None

    async def encode_frames(self, ffmpeg_path: str, frames_dir: str, frame_rate: int, output_path: str) -> None:
        self.frames_dir = frames_dir
        self.frame_files = sorted(os.listdir(frames_dir))
        self.encode_args = {"ffmpeg_path": ffmpeg_path, "frame_rate": frame_rate, "output_path": output_path}
        if self.encode_error:
            raise self.encode_error
        Path(output_path).write_bytes(b"mp4")

    async def extract_thumbnail(self, ffmpeg_path: str, frame_path: str, thumbnail_path: str) -> None:
        self.thumbnail_source = frame_path
        if self.thumbnail_error:
            raise self.thumbnail_error
        Path(thumbnail_path).write_bytes(b"jpg")


@pytest.fixture
def fake_browser(monkeypatch):
    """Install a fake Playwright and ffmpeg; returns a builder for the scenario."""

    def build(
        signal_ready: bool = True,
        page_error: Optional[str] = None,
        launch_error: Optional[Exception] = None,
        encode_error: Optional[Exception] = None,
        thumbnail_error: Optional[Exception] = None,
        stall_fonts: bool = False,
        stall_seek: bool = False,
    ) -> Dict[str, Any]:
        page = FakePage(
            signal_ready=signal_ready,
            page_error=page_error,
            stall_fonts=stall_fonts,
            stall_seek=stall_seek,
        )
        context = FakeContext(page)
        browser = FakeBrowser(context)
        chromium = FakeChromium(browser, launch_error=launch_error)
        playwright = FakePlaywright(chromium)
        encoder = FakeEncoder(encode_error=encode_error, thumbnail_error=thumbnail_error)

        monkeypatch.setattr(
            "storymaker.services.recorder.async_playwright",
            lambda: FakePlaywrightManager(playwright),
        )
        monkeypatch.setattr("storymaker.services.recorder.encode_frames", encoder.encode_frames)
        monkeypatch.setattr("storymaker.services.recorder.extract_thumbnail", encoder.extract_thumbnail)

        return {
            "page": page,
            "context": context,
            "browser": browser,
            "chromium": chromium,
            "playwright": playwright,
            "encoder": encoder,
        }

    return build


def make_recorder(**overrides: Any) -> StoryRecorder:
    options: Dict[str, Any] = {"ready_timeout_seconds": 0.05, "font_settle_ms": 0}
    options.update(overrides)
    return StoryRecorder(**options)


def make_request(tmp_path: Path, duration_ms: int = 1000, frame_rate: int = 25) -> RecorderRequest:
    return RecorderRequest(
        target_url="http://127.0.0.1:9999/default/?site=aje&postType=post&postSlug=x",
        output_path=str(tmp_path / "out" / "story.mp4"),
        width=1080,
        height=1920,
        frame_rate=frame_rate,
        duration_ms=duration_ms,
    )


def assert_released(fakes: Dict[str, Any]) -> None:
    assert fakes["page"].closed
    assert fakes["context"].closed
    assert fakes["browser"].closed
    assert fakes["playwright"].stopped


# ==================== Tests ====================


class TestSuccessfulRecording:
    @pytest.mark.asyncio
    async def test_produces_one_frame_per_timestamp(self, fake_browser, tmp_path: Path) -> None:
        fakes = fake_browser()
        request = make_request(tmp_path, duration_ms=1000, frame_rate=25)

        result = await make_recorder().record(request)

        assert result.success, result.error
        assert result.output_path == request.output_path
        assert result.thumbnail_path == thumbnail_path_for(request.output_path)
        assert Path(result.thumbnail_path).exists()

        encoder = fakes["encoder"]
        assert len(encoder.frame_files) == 25
        assert encoder.frame_files[0] == "frame_00000.png"
        assert encoder.frame_files[-1] == "frame_00024.png"
        assert encoder.encode_args["frame_rate"] == 25
        assert encoder.thumbnail_source.endswith("frame_00024.png")

        assert fakes["page"].seeks == frame_timestamps(1000, 25)
        assert fakes["page"].seeks[:3] == [0, 40, 80]

    @pytest.mark.asyncio
    async def test_seek_precedes_every_capture(self, fake_browser, tmp_path: Path) -> None:
        fakes = fake_browser()
        await make_recorder().record(make_request(tmp_path, duration_ms=200, frame_rate=25))

        events = fakes["page"].events
        assert events[:3] == ["fonts", "install", "activate"]
        capture_events = events[3:]
        assert len(capture_events) == 10
        for index in range(5):
            assert capture_events[2 * index].startswith("seek:")
            assert capture_events[2 * index + 1] == f"shot:frame_{index:05d}.png"

    @pytest.mark.asyncio
    async def test_browser_configuration(self, fake_browser, tmp_path: Path) -> None:
        fakes = fake_browser()
        recorder = make_recorder(executable_path="/opt/chrome", launch_timeout_ms=1234)
        await recorder.record(make_request(tmp_path))

        launch = fakes["chromium"].launch_kwargs
        assert launch["executable_path"] == "/opt/chrome"
        assert launch["timeout"] == 1234
        assert launch["headless"] is True
        assert "--window-size=1080,1920" in launch["args"]
        assert fakes["context"].kwargs["viewport"] == {"width": 1080, "height": 1920}
        assert fakes["page"].goto_kwargs["wait_until"] == "domcontentloaded"
        assert set(fakes["page"].exposed) == {"storyReady", "storyDone"}

    @pytest.mark.asyncio
    async def test_releases_resources_and_scratch_directory(self, fake_browser, tmp_path: Path) -> None:
        fakes = fake_browser()
        await make_recorder().record(make_request(tmp_path))

        assert_released(fakes)
        assert fakes["encoder"].frames_dir is not None
        assert not Path(fakes["encoder"].frames_dir).exists()

    @pytest.mark.asyncio
    async def test_progress_is_monotonic_and_ends_complete(self, fake_browser, tmp_path: Path) -> None:
        fake_browser()
        reports: List[RecorderProgress] = []

        await make_recorder().record(make_request(tmp_path), on_progress=reports.append)

        percents = [report.percent for report in reports]
        assert percents == sorted(percents)
        assert reports[0].phase == "initializing"
        assert reports[-1].phase == "complete"
        assert reports[-1].percent == 100

        capturing = [report for report in reports if report.phase == "capturing"]
        assert len(capturing) == 25
        assert all(report.total_frames == 25 for report in capturing)
        assert all(15 <= report.percent <= 75 for report in capturing)
        assert [report.current_frame for report in capturing] == list(range(1, 26))

    @pytest.mark.asyncio
    async def test_failing_progress_callback_does_not_abort(self, fake_browser, tmp_path: Path) -> None:
        fake_browser()

        def explode(progress: RecorderProgress) -> None:
            raise RuntimeError("store down")

        result = await make_recorder().record(make_request(tmp_path), on_progress=explode)
        assert result.success

    @pytest.mark.asyncio
    async def test_same_request_gives_same_schedule(self, fake_browser, tmp_path: Path) -> None:
        first = fake_browser()
        await make_recorder().record(make_request(tmp_path, duration_ms=1000, frame_rate=30))
        second = fake_browser()
        await make_recorder().record(make_request(tmp_path, duration_ms=1000, frame_rate=30))

        assert first["page"].seeks == second["page"].seeks
        assert len(first["encoder"].frame_files) == len(second["encoder"].frame_files) == 30


class TestFailedRecording:
    @pytest.mark.asyncio
    async def test_ready_timeout_fails_with_timeout_error(self, fake_browser, tmp_path: Path) -> None:
        fakes = fake_browser(signal_ready=False)

        result = await make_recorder(ready_timeout_seconds=0.05).record(make_request(tmp_path))

        assert not result.success
        assert "Timeout waiting for page to signal ready" in result.error
        assert fakes["encoder"].frames_dir is None
        assert_released(fakes)

    @pytest.mark.asyncio
    async def test_page_error_is_reported_when_ready_never_comes(self, fake_browser, tmp_path: Path) -> None:
        fake_browser(signal_ready=False, page_error="articleData is undefined")

        result = await make_recorder().record(make_request(tmp_path))

        assert not result.success
        assert "Timeout" in result.error
        assert "articleData is undefined" in result.error

    @pytest.mark.asyncio
    async def test_page_error_after_ready_is_not_fatal(self, fake_browser, tmp_path: Path) -> None:
        fake_browser(signal_ready=True, page_error="analytics blocked")
        result = await make_recorder().record(make_request(tmp_path))
        assert result.success

    @pytest.mark.asyncio
    async def test_launch_timeout(self, fake_browser, tmp_path: Path) -> None:
        fakes = fake_browser(launch_error=PlaywrightTimeoutError("launch timed out"))

        result = await make_recorder(launch_timeout_ms=500).record(make_request(tmp_path))

        assert not result.success
        assert result.error == "Timeout launching browser (500ms)"
        assert fakes["playwright"].stopped

    @pytest.mark.asyncio
    async def test_encoder_failure_carries_diagnostics(self, fake_browser, tmp_path: Path) -> None:
        fakes = fake_browser(encode_error=EncodingError(1, "Unknown encoder 'libx264'"))

        result = await make_recorder().record(make_request(tmp_path))

        assert not result.success
        assert "Unknown encoder 'libx264'" in result.error
        assert result.thumbnail_path is None
        assert_released(fakes)
        assert not Path(fakes["encoder"].frames_dir).exists()

    @pytest.mark.asyncio
    async def test_thumbnail_failure_is_not_fatal(self, fake_browser, tmp_path: Path) -> None:
        fake_browser(thumbnail_error=EncodingError(1, "bad frame", step="thumbnail"))

        result = await make_recorder().record(make_request(tmp_path))

        assert result.success
        assert result.thumbnail_path is None

    @pytest.mark.asyncio
    async def test_release_failures_are_swallowed(self, fake_browser, tmp_path: Path) -> None:
        fakes = fake_browser()

        async def broken_close() -> None:
            raise RuntimeError("target closed")

        fakes["page"].close = broken_close

        result = await make_recorder().record(make_request(tmp_path))

        assert result.success
        assert fakes["browser"].closed
        assert fakes["playwright"].stopped

    @pytest.mark.asyncio
    async def test_stalled_fonts_time_out_and_release(self, fake_browser, tmp_path: Path) -> None:
        fakes = fake_browser(stall_fonts=True)

        result = await asyncio.wait_for(
            make_recorder(font_timeout_seconds=0.05).record(make_request(tmp_path)),
            timeout=2,
        )

        assert not result.success
        assert result.error == "Timeout waiting for fonts to load (0.05s)"
        assert fakes["encoder"].frames_dir is None
        assert_released(fakes)

    @pytest.mark.asyncio
    async def test_stalled_seek_times_out_and_removes_frames(
        self, fake_browser, monkeypatch, tmp_path: Path
    ) -> None:
        fakes = fake_browser(stall_seek=True)
        created: List[str] = []
        real_mkdtemp = tempfile.mkdtemp

        def tracking_mkdtemp(**kwargs: Any) -> str:
            path = real_mkdtemp(**kwargs)
            created.append(path)
            return path

        monkeypatch.setattr("storymaker.services.recorder.tempfile.mkdtemp", tracking_mkdtemp)

        result = await asyncio.wait_for(
            make_recorder(eval_timeout_seconds=0.05).record(make_request(tmp_path)),
            timeout=2,
        )

        assert not result.success
        assert result.error.startswith("Timeout reading animation timings")
        assert created and not Path(created[0]).exists()
        assert_released(fakes)


class TestSeekTargets:
    @pytest.mark.asyncio
    async def test_each_animation_is_clamped_to_its_own_end(self, fake_browser, tmp_path: Path) -> None:
        fakes = fake_browser()
        page = fakes["page"]
        page.timings = [[1000, 2, 500], [800, float("inf"), 0], [100, 1, 0]]
        targets: List[List[float]] = []
        real_evaluate = page.evaluate

        async def capturing_evaluate(expression: str, arg: Any = None) -> Any:
            if "seekTo" in expression and arg is not None:
                targets.append(list(arg))
            return await real_evaluate(expression, arg)

        page.evaluate = capturing_evaluate

        result = await make_recorder().record(make_request(tmp_path, duration_ms=3000, frame_rate=1))

        assert result.success
        assert targets == [[0, 0, 0], [1000, 800, 100], [2000, 800, 100]]
