"""Pytest fixtures for StoryMaker tests."""

import asyncio
from pathlib import Path
from typing import Callable, Optional

import pytest

from storymaker.models.job import VideoRequest
from storymaker.models.recording import (
    RecorderProgress,
    RecorderRequest,
    RecorderResult,
    phase_percent,
)
from storymaker.services.recorder import thumbnail_path_for


class FakeTemplateServer:
    """Stands in for the aiohttp template server."""

    def __init__(self) -> None:
        self.started = False
        self.stopped = False

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True

    def build_url(self, request: VideoRequest) -> str:
        return (
            f"http://127.0.0.1:9999/{request.template}/"
            f"?site={request.site}&postType={request.post_type}&postSlug={request.slug}"
        )


class FakeRecorder:
    """Writes placeholder artifacts instead of driving a browser."""

    def __init__(
        self,
        success: bool = True,
        error: Optional[str] = None,
        thumbnail: bool = True,
        delay: float = 0.0,
    ) -> None:
        self.success = success
        self.error = error
        self.thumbnail = thumbnail
        self.delay = delay
        self.requests: list[RecorderRequest] = []

    async def record(
        self,
        request: RecorderRequest,
        on_progress: Optional[Callable[[RecorderProgress], None]] = None,
    ) -> RecorderResult:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)

        total = request.total_frames
        if on_progress:
            on_progress(RecorderProgress(phase="initializing", percent=phase_percent("initializing", 1.0)))
            for index in range(0, total, max(total // 5, 1)):
                on_progress(
                    RecorderProgress(
                        phase="capturing",
                        percent=phase_percent("capturing", index / total),
                        current_frame=index + 1,
                        total_frames=total,
                    )
                )

        if not self.success:
            return RecorderResult(success=False, output_path=request.output_path, error=self.error)

        Path(request.output_path).parent.mkdir(parents=True, exist_ok=True)
        Path(request.output_path).write_bytes(b"fake mp4")
        thumbnail_path = None
        if self.thumbnail:
            thumbnail_path = thumbnail_path_for(request.output_path)
            Path(thumbnail_path).write_bytes(b"fake jpg")

        if on_progress:
            on_progress(RecorderProgress(phase="complete", percent=100.0))
        return RecorderResult(
            success=True,
            output_path=request.output_path,
            thumbnail_path=thumbnail_path,
        )


@pytest.fixture
def sample_request_data() -> dict:
    """Sample create-video body as sent by API clients."""
    return {
        "site": "aje",
        "slug": "some-article-slug",
        "postType": "post",
        "template": "default",
    }


@pytest.fixture
def sample_request(sample_request_data: dict) -> VideoRequest:
    return VideoRequest.model_validate(sample_request_data)


@pytest.fixture
def template_server() -> FakeTemplateServer:
    return FakeTemplateServer()


@pytest.fixture
def make_recorder() -> Callable[..., FakeRecorder]:
    """Factory for fake recorders with a chosen outcome."""
    return FakeRecorder
