"""Pydantic data models for StoryMaker."""

from storymaker.models.job import Job, JobResult, JobStatus, VideoRequest
from storymaker.models.recording import (
    RecorderProgress,
    RecorderRequest,
    RecorderResult,
)

__all__ = [
    "Job",
    "JobResult",
    "JobStatus",
    "VideoRequest",
    "RecorderRequest",
    "RecorderProgress",
    "RecorderResult",
]
