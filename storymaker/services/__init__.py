"""Service layer for StoryMaker."""

from storymaker.services.animation import AnimationController
from storymaker.services.artifact_store import SupabaseArtifactStore, create_artifact_store
from storymaker.services.job_processor import JobProcessor, create_job_processor
from storymaker.services.job_store import (
    InMemoryJobStore,
    JobStore,
    SupabaseJobStore,
    create_job_store,
    create_supabase_client,
)
from storymaker.services.recorder import StoryRecorder, create_story_recorder
from storymaker.services.scheduler import CleanupScheduler, create_cleanup_scheduler
from storymaker.services.template_server import TemplateServer, create_template_server

__all__ = [
    "AnimationController",
    "SupabaseArtifactStore",
    "create_artifact_store",
    "JobProcessor",
    "create_job_processor",
    "JobStore",
    "InMemoryJobStore",
    "SupabaseJobStore",
    "create_job_store",
    "create_supabase_client",
    "StoryRecorder",
    "create_story_recorder",
    "CleanupScheduler",
    "create_cleanup_scheduler",
    "TemplateServer",
    "create_template_server",
]
