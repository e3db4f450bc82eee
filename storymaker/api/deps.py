"""FastAPI dependencies for the StoryMaker API."""

from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from storymaker.config import Settings
from storymaker.services.artifact_store import ArtifactStore
from storymaker.services.job_processor import JobProcessor
from storymaker.services.job_store import JobStore
from storymaker.services.scheduler import CleanupScheduler
from storymaker.services.template_server import TemplateServer


@dataclass
class AppServices:
    """Long-lived service objects shared by every request."""

    settings: Settings
    store: JobStore
    template_server: TemplateServer
    processor: JobProcessor
    scheduler: CleanupScheduler
    artifact_store: Optional[ArtifactStore] = None


def get_services(request: Request) -> AppServices:
    """Dependency for the services built at startup."""
    return request.app.state.services


def get_job_store(request: Request) -> JobStore:
    """Dependency for the job store."""
    return get_services(request).store


def get_job_processor(request: Request) -> JobProcessor:
    """Dependency for the background job processor."""
    return get_services(request).processor
