"""Utility modules for StoryMaker."""

from storymaker.utils.errors import (
    ConfigurationError,
    EncodingError,
    JobNotFoundError,
    JobStateError,
    PersistenceError,
    RecorderError,
    RecorderTimeoutError,
    RenderError,
    StorageError,
    StoryMakerError,
)
from storymaker.utils.retry import backoff_delays, with_retry

__all__ = [
    "StoryMakerError",
    "ConfigurationError",
    "RecorderError",
    "RecorderTimeoutError",
    "RenderError",
    "EncodingError",
    "StorageError",
    "PersistenceError",
    "JobNotFoundError",
    "JobStateError",
    "backoff_delays",
    "with_retry",
]
