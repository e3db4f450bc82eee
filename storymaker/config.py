"""Application settings from environment variables."""

import logging
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic_settings import BaseSettings

# Load environment variables
load_dotenv()

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class Settings(BaseSettings):
    """Application settings from environment."""

    # Web service
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8080
    public_base_url: Optional[str] = None
    templates_dir: str = "templates"
    videos_dir: str = "videos"

    # Supabase (job table + artifact bucket)
    supabase_url: str = ""
    supabase_key: str = ""
    jobs_table: str = "story_jobs"
    jobs_namespace: str = "jobs"
    artifact_bucket: str = "videos"

    # Browser
    chromium_executable_path: Optional[str] = None
    browser_sandbox: bool = False
    browser_launch_timeout_ms: int = 30000
    navigation_timeout_ms: int = 30000
    ready_timeout_seconds: float = 30.0
    font_settle_ms: int = 100
    font_timeout_seconds: float = 30.0
    page_eval_timeout_seconds: float = 10.0

    # Recording
    video_width: int = 1080
    video_height: int = 1920
    frame_rate: int = 25
    duration_ms: int = 10000
    ffmpeg_path: str = "ffmpeg"

    # Job retention
    cleanup_interval_seconds: float = 3600.0
    job_retention_hours: float = 24.0

    # Retry
    max_retry_attempts: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0

    model_config = {"env_file": ".env", "extra": "ignore"}

    @property
    def supabase_enabled(self) -> bool:
        """True when both Supabase credentials are configured."""
        return bool(self.supabase_url and self.supabase_key)


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()


def configure_logging(level: str = "INFO") -> None:
    """Install a single root handler at the given level."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT, force=True)
