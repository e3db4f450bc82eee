"""Background job processor: runs a recording for a job and publishes the result."""

import asyncio
import logging
import secrets
import time
from pathlib import Path
from typing import Any, Optional

from storymaker.models.job import Job, JobResult, VideoRequest
from storymaker.models.recording import RecorderProgress, RecorderRequest, RecorderResult
from storymaker.services.artifact_store import ArtifactStore
from storymaker.services.job_store import JobStore
from storymaker.services.recorder import StoryRecorder
from storymaker.services.template_server import TemplateServer
from storymaker.utils.errors import PersistenceError, RecorderError
from storymaker.utils.retry import with_retry

logger = logging.getLogger(__name__)

VIDEOS_ROUTE = "/videos"


def generate_video_filename() -> str:
    """Unique output file name, e.g. ``1760800000000-a1b2c3.mp4``."""
    return f"{int(time.time() * 1000)}-{secrets.token_hex(3)}.mp4"


def describe_progress(progress: RecorderProgress) -> str:
    """Short status line shown to pollers."""
    if progress.phase == "capturing" and progress.total_frames:
        return f"Capturing frame {progress.current_frame}/{progress.total_frames}"
    return {
        "initializing": "Starting browser...",
        "capturing": "Capturing frames...",
        "stitching": "Encoding video...",
        "thumbnail": "Creating thumbnail...",
        "complete": "Finalizing...",
    }[progress.phase]


class ProgressBridge:
    """
    Writes recorder progress into a job without ever blocking the recorder.

    Writes are coalesced: at most one is in flight and only the newest
    pending report is written next. Write failures are logged and dropped.
    """

    def __init__(self, store: JobStore, job_id: str) -> None:
        self.store = store
        self.job_id = job_id
        self._latest: Optional[RecorderProgress] = None
        self._task: Optional[asyncio.Task] = None

    def __call__(self, progress: RecorderProgress) -> None:
        self._latest = progress
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._drain())

    async def _drain(self) -> None:
        while self._latest is not None:
            progress, self._latest = self._latest, None
            try:
                await self.store.update(
                    self.job_id,
                    progress=describe_progress(progress),
                    progress_percent=progress.percent,
                )
            except Exception as e:
                logger.debug(f"Progress write for job {self.job_id} dropped: {e}")

    async def flush(self) -> None:
        """Wait until every pending report has been written or dropped."""
        if self._task is not None:
            await self._task


class JobProcessor:
    """Runs jobs as supervised background tasks."""

    def __init__(
        self,
        store: JobStore,
        recorder: StoryRecorder,
        template_server: TemplateServer,
        artifact_store: Optional[ArtifactStore] = None,
        videos_dir: str = "videos",
        public_base_url: Optional[str] = None,
        width: int = 1080,
        height: int = 1920,
        frame_rate: int = 25,
        duration_ms: int = 10000,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: Optional[float] = None,
    ) -> None:
        """
        Initialize the JobProcessor.

        Args:
            store: Job store shared with the API
            recorder: Recorder performing the captures
            template_server: Running server that renders the templates
            artifact_store: Upload target; None serves files locally
            videos_dir: Directory for output files and local fallback serving
            public_base_url: Base for local fallback URLs, overriding the request's
            width: Video width in pixels
            height: Video height in pixels
            frame_rate: Frames per second
            duration_ms: Video length in milliseconds
            max_attempts: Attempts for the final job write
            base_delay: First retry delay for the final job write
            max_delay: Ceiling for a single retry delay
        """
        self.store = store
        self.recorder = recorder
        self.template_server = template_server
        self.artifact_store = artifact_store
        self.videos_dir = Path(videos_dir)
        self.public_base_url = public_base_url
        self.width = width
        self.height = height
        self.frame_rate = frame_rate
        self.duration_ms = duration_ms
        self._finish = with_retry(
            max_attempts=max_attempts,
            base_delay=base_delay,
            max_delay=max_delay,
            exceptions=(PersistenceError,),
        )(self._write_outcome)
        self._tasks: set[asyncio.Task] = set()

    @property
    def active_jobs(self) -> int:
        return len(self._tasks)

    def submit(self, job: Job, base_url: str) -> asyncio.Task:
        """Start processing ``job`` in the background and return its task."""
        task = asyncio.create_task(
            self._supervise(job.id, job.request, base_url),
            name=f"storymaker-{job.id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait for every submitted job to finish."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def _supervise(self, job_id: str, request: VideoRequest, base_url: str) -> None:
        try:
            await self.process(job_id, request, base_url)
        except Exception as e:
            logger.exception(f"Job {job_id} could not be finalized: {e}")

    async def process(self, job_id: str, request: VideoRequest, base_url: str) -> Optional[Job]:
        """
        Record, publish and finalize one job.

        Args:
            job_id: Job to work on
            request: What to render
            base_url: Base URL of the API, for local fallback links

        Returns:
            The final job snapshot, or None if the job vanished meanwhile
        """
        bridge = ProgressBridge(self.store, job_id)

        try:
            await self.store.update(
                job_id, status="processing", progress="Queued for recording", progress_percent=0
            )

            target_url = self.template_server.build_url(request)
            output_path = str(self.videos_dir / generate_video_filename())
            logger.info(
                f"Job {job_id}: recording {request.site}/{request.post_type}/{request.slug} "
                f"(template: {request.template}) from {target_url}"
            )

            result = await self.recorder.record(
                RecorderRequest(
                    target_url=target_url,
                    output_path=output_path,
                    width=self.width,
                    height=self.height,
                    frame_rate=self.frame_rate,
                    duration_ms=self.duration_ms,
                ),
                on_progress=bridge,
            )
            await bridge.flush()

            if not result.success:
                raise RecorderError(result.error or "Recording failed")

            await self.store.update(job_id, progress="Uploading...")
            job_result = await self._publish(result, base_url)

        except Exception as e:
            await bridge.flush()
            message = str(e) or type(e).__name__
            logger.error(f"Job {job_id} failed: {message}")
            return await self._finish(job_id, status="failed", error=message, progress="Failed")

        logger.info(f"Job {job_id} completed: {job_result.url}")
        return await self._finish(
            job_id,
            status="completed",
            result=job_result,
            progress="Complete",
            progress_percent=100.0,
        )

    async def _write_outcome(self, job_id: str, **fields: Any) -> Optional[Job]:
        job = await self.store.update(job_id, **fields)
        if job is None:
            logger.warning(f"Job {job_id} was deleted before it finished")
        return job

    async def _publish(self, result: RecorderResult, base_url: str) -> JobResult:
        video_url = await self._publish_file(result.output_path, base_url)
        thumbnail_url = None
        if result.thumbnail_path:
            thumbnail_url = await self._publish_file(result.thumbnail_path, base_url)
        return JobResult(url=video_url, thumbnail_url=thumbnail_url)

    async def _publish_file(self, path: str, base_url: str) -> str:
        """Upload a file, falling back to the local static route."""
        name = Path(path).name

        if self.artifact_store is not None:
            try:
                data = await asyncio.to_thread(Path(path).read_bytes)
                url = await self.artifact_store.put(data, name)
            except Exception as e:
                logger.warning(f"Upload of {name} raised: {e}")
                url = None

            if url:
                self._discard_local(path)
                return url
            logger.warning(f"Upload of {name} failed, falling back to local URL")

        return self.local_url(name, base_url)

    def local_url(self, name: str, base_url: str) -> str:
        base = (self.public_base_url or base_url).rstrip("/")
        return f"{base}{VIDEOS_ROUTE}/{name}"

    def _discard_local(self, path: str) -> None:
        try:
            Path(path).unlink(missing_ok=True)
            logger.debug(f"Deleted local file: {path}")
        except OSError as e:
            logger.warning(f"Failed to delete local file {path}: {e}")


def create_job_processor(
    store: JobStore,
    recorder: StoryRecorder,
    template_server: TemplateServer,
    artifact_store: Optional[ArtifactStore] = None,
) -> JobProcessor:
    """
    Create a JobProcessor using application settings.

    Returns:
        Configured JobProcessor instance
    """
    from storymaker.config import get_settings

    settings = get_settings()
    return JobProcessor(
        store=store,
        recorder=recorder,
        template_server=template_server,
        artifact_store=artifact_store,
        videos_dir=settings.videos_dir,
        public_base_url=settings.public_base_url,
        width=settings.video_width,
        height=settings.video_height,
        frame_rate=settings.frame_rate,
        duration_ms=settings.duration_ms,
        max_attempts=settings.max_retry_attempts,
        base_delay=settings.base_delay_seconds,
        max_delay=settings.max_delay_seconds,
    )
