"""Frame-accurate story recorder.

Loads a rendered template in headless Chromium, waits for the page's ready
handshake, then steps every CSS animation through a fixed timeline, taking a
lossless screenshot at each step. The frames are stitched with ffmpeg.
"""

import asyncio
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Any, Callable, Optional

from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from storymaker.models.recording import (
    RecorderProgress,
    RecorderRequest,
    RecorderResult,
    frame_timestamps,
    phase_percent,
)
from storymaker.services.animation import AnimationController
from storymaker.services.encoder import encode_frames, extract_thumbnail, frame_filename
from storymaker.utils.errors import RecorderTimeoutError, RenderError

logger = logging.getLogger(__name__)
page_logger = logging.getLogger("storymaker.page")

ProgressCallback = Callable[[RecorderProgress], None]

READY_HOOK = "storyReady"
DONE_HOOK = "storyDone"


def thumbnail_path_for(output_path: str) -> str:
    """Thumbnail file that sits next to the video."""
    output = Path(output_path)
    return str(output.with_name(f"{output.stem}-thumb.jpg"))


class _ProgressReporter:
    """Calls the progress callback without letting it disturb the recording."""

    def __init__(self, callback: Optional[ProgressCallback]) -> None:
        self.callback = callback
        self.last_percent = 0.0

    def report(
        self,
        phase: str,
        fraction: float = 0.0,
        current_frame: Optional[int] = None,
        total_frames: Optional[int] = None,
    ) -> None:
        percent = max(self.last_percent, phase_percent(phase, fraction))
        self.last_percent = percent
        if self.callback is None:
            return
        try:
            self.callback(
                RecorderProgress(
                    phase=phase,
                    percent=percent,
                    current_frame=current_frame,
                    total_frames=total_frames,
                )
            )
        except Exception as e:
            logger.warning(f"Progress callback failed: {e}")


class StoryRecorder:
    """Records a rendered story page to an MP4 plus a JPEG thumbnail."""

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        executable_path: Optional[str] = None,
        sandbox: bool = False,
        launch_timeout_ms: int = 30000,
        navigation_timeout_ms: int = 30000,
        ready_timeout_seconds: float = 30.0,
        font_settle_ms: int = 100,
        font_timeout_seconds: float = 30.0,
        eval_timeout_seconds: float = 10.0,
    ) -> None:
        """
        Initialize the StoryRecorder.

        Args:
            ffmpeg_path: ffmpeg binary to encode with
            executable_path: Chromium binary overriding Playwright's bundled one
            sandbox: Whether to keep Chromium's process sandbox on
            launch_timeout_ms: Ceiling for browser start-up
            navigation_timeout_ms: Ceiling for reaching DOMContentLoaded
            ready_timeout_seconds: Ceiling for the page's ready handshake
            font_settle_ms: Pause after fonts load before the first frame
            font_timeout_seconds: Ceiling for document.fonts.ready
            eval_timeout_seconds: Ceiling for each animation control call
        """
        self.ffmpeg_path = ffmpeg_path
        self.executable_path = executable_path
        self.sandbox = sandbox
        self.launch_timeout_ms = launch_timeout_ms
        self.navigation_timeout_ms = navigation_timeout_ms
        self.ready_timeout_seconds = ready_timeout_seconds
        self.font_settle_ms = font_settle_ms
        self.font_timeout_seconds = font_timeout_seconds
        self.eval_timeout_seconds = eval_timeout_seconds

    async def record(
        self,
        request: RecorderRequest,
        on_progress: Optional[ProgressCallback] = None,
    ) -> RecorderResult:
        """
        Record ``request.target_url`` to ``request.output_path``.

        Never raises: every failure is returned as an unsuccessful result.
        The browser and the frame directory are released on every path.

        Args:
            request: What to record and at which size, rate and length
            on_progress: Optional callback receiving RecorderProgress reports

        Returns:
            RecorderResult with the video and thumbnail paths, or the error
        """
        reporter = _ProgressReporter(on_progress)
        ready = asyncio.Event()
        page_errors: list[str] = []

        playwright: Any = None
        browser: Any = None
        context: Any = None
        page: Any = None
        frames_dir: Optional[str] = None

        try:
            reporter.report("initializing", 0.0)
            playwright = await async_playwright().start()
            browser = await self._launch(playwright, request)
            reporter.report("initializing", 1 / 3)

            context = await browser.new_context(
                viewport={"width": request.width, "height": request.height},
                device_scale_factor=1,
            )
            page = await context.new_page()
            self._forward_page_output(page, page_errors)

            def on_ready() -> None:
                if not ready.is_set():
                    logger.info("Page signaled ready")
                    ready.set()

            def on_done() -> None:
                # Capture length is fixed by duration_ms; kept for older templates.
                logger.debug("Page signaled done")

            await page.expose_function(READY_HOOK, on_ready)
            await page.expose_function(DONE_HOOK, on_done)

            await self._navigate(page, request.target_url)
            reporter.report("initializing", 2 / 3)

            await self._wait_for_ready(ready, page_errors)
            await self._wait_for_fonts(page)
            await asyncio.sleep(self.font_settle_ms / 1000)
            reporter.report("initializing", 1.0)

            controller = AnimationController(page, timeout_seconds=self.eval_timeout_seconds)
            await controller.activate()

            frames_dir = tempfile.mkdtemp(prefix="storymaker-frames-")
            last_frame = await self._capture_frames(
                page, controller, request, frames_dir, reporter
            )

            reporter.report("stitching", 0.0)
            Path(request.output_path).parent.mkdir(parents=True, exist_ok=True)
            await encode_frames(
                self.ffmpeg_path, frames_dir, request.frame_rate, request.output_path
            )

            reporter.report("thumbnail", 0.0)
            thumbnail_path = await self._make_thumbnail(last_frame, request.output_path)

            reporter.report("complete", 1.0)
            return RecorderResult(
                success=True,
                output_path=request.output_path,
                thumbnail_path=thumbnail_path,
            )

        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error(f"Recording failed: {message}")
            return RecorderResult(
                success=False,
                output_path=request.output_path,
                error=message,
            )

        finally:
            await self._release(page, context, browser, playwright, frames_dir)

    async def _launch(self, playwright: Any, request: RecorderRequest) -> Any:
        try:
            browser = await playwright.chromium.launch(
                headless=True,
                executable_path=self.executable_path,
                chromium_sandbox=self.sandbox,
                args=[f"--window-size={request.width},{request.height}"],
                timeout=self.launch_timeout_ms,
            )
        except PlaywrightTimeoutError:
            raise RecorderTimeoutError(
                f"Timeout launching browser ({self.launch_timeout_ms}ms)"
            )
        logger.info("Browser launched")
        return browser

    async def _navigate(self, page: Any, url: str) -> None:
        logger.info(f"Loading template from: {url}")
        try:
            await page.goto(
                url,
                wait_until="domcontentloaded",
                timeout=self.navigation_timeout_ms,
            )
        except PlaywrightTimeoutError:
            raise RecorderTimeoutError(
                f"Timeout loading template ({self.navigation_timeout_ms}ms): {url}"
            )

    async def _wait_for_ready(self, ready: asyncio.Event, page_errors: list[str]) -> None:
        logger.info("Waiting for page to be ready...")
        try:
            await asyncio.wait_for(ready.wait(), timeout=self.ready_timeout_seconds)
        except asyncio.TimeoutError:
            message = (
                "Timeout waiting for page to signal ready "
                f"({self.ready_timeout_seconds:g}s)"
            )
            if page_errors:
                raise RenderError(f"{message}; last page error: {page_errors[-1]}")
            raise RecorderTimeoutError(message)

    async def _wait_for_fonts(self, page: Any) -> None:
        try:
            await asyncio.wait_for(
                page.evaluate("() => document.fonts.ready.then(() => true)"),
                timeout=self.font_timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise RecorderTimeoutError(
                f"Timeout waiting for fonts to load ({self.font_timeout_seconds:g}s)"
            )

    async def _capture_frames(
        self,
        page: Any,
        controller: AnimationController,
        request: RecorderRequest,
        frames_dir: str,
        reporter: _ProgressReporter,
    ) -> str:
        """Seek and screenshot every frame in order; returns the last frame's path."""
        timestamps = frame_timestamps(request.duration_ms, request.frame_rate)
        total = len(timestamps)
        logger.info(
            f"Capturing {total} frames at {request.frame_rate}fps "
            f"({request.frame_interval_ms:g}ms apart)"
        )

        frame_path = ""
        for index, timestamp in enumerate(timestamps):
            await controller.seek_to(timestamp)
            frame_path = str(Path(frames_dir) / frame_filename(index))
            await page.screenshot(path=frame_path, type="png", full_page=False)
            reporter.report(
                "capturing",
                index / total,
                current_frame=index + 1,
                total_frames=total,
            )

        logger.info(f"Captured {total} frames")
        return frame_path

    async def _make_thumbnail(self, frame_path: str, output_path: str) -> Optional[str]:
        thumbnail_path = thumbnail_path_for(output_path)
        try:
            await extract_thumbnail(self.ffmpeg_path, frame_path, thumbnail_path)
        except Exception as e:
            logger.warning(f"Thumbnail extraction failed, continuing without one: {e}")
            return None
        return thumbnail_path

    def _forward_page_output(self, page: Any, page_errors: list[str]) -> None:
        def on_console(message: Any) -> None:
            kind = message.type
            if kind == "error":
                page_logger.error(f"[Page Error] {message.text}")
            elif kind in ("warning", "warn"):
                page_logger.warning(f"[Page Warn] {message.text}")
            else:
                page_logger.info(f"[Page] {message.text}")

        def on_page_error(error: Any) -> None:
            text = getattr(error, "message", None) or str(error)
            page_errors.append(text)
            page_logger.error(f"[Page Error] {text}")

        page.on("console", on_console)
        page.on("pageerror", on_page_error)

    async def _release(
        self,
        page: Any,
        context: Any,
        browser: Any,
        playwright: Any,
        frames_dir: Optional[str],
    ) -> None:
        for label, resource in (("page", page), ("browser context", context), ("browser", browser)):
            if resource is None:
                continue
            try:
                await resource.close()
            except Exception as e:
                logger.warning(f"Failed to close {label}: {e}")

        if playwright is not None:
            try:
                await playwright.stop()
            except Exception as e:
                logger.warning(f"Failed to stop Playwright: {e}")

        if frames_dir is not None:
            try:
                shutil.rmtree(frames_dir)
            except OSError as e:
                logger.warning(f"Failed to remove frame directory {frames_dir}: {e}")


def create_story_recorder() -> StoryRecorder:
    """
    Create a StoryRecorder instance using application settings.

    Returns:
        Configured StoryRecorder instance
    """
    from storymaker.config import get_settings

    settings = get_settings()
    return StoryRecorder(
        ffmpeg_path=settings.ffmpeg_path,
        executable_path=settings.chromium_executable_path,
        sandbox=settings.browser_sandbox,
        launch_timeout_ms=settings.browser_launch_timeout_ms,
        navigation_timeout_ms=settings.navigation_timeout_ms,
        ready_timeout_seconds=settings.ready_timeout_seconds,
        font_settle_ms=settings.font_settle_ms,
        font_timeout_seconds=settings.font_timeout_seconds,
        eval_timeout_seconds=settings.page_eval_timeout_seconds,
    )
