"""Custom exception classes for StoryMaker."""

from typing import Optional


class StoryMakerError(Exception):
    """Base exception for all application errors."""

    pass


class ConfigurationError(StoryMakerError):
    """A video request is missing required fields."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        super().__init__(f"Missing required fields: {', '.join(missing)}")


class RecorderError(StoryMakerError):
    """Errors from the frame capture engine."""

    pass


class RecorderTimeoutError(RecorderError):
    """Browser launch, navigation or the ready handshake took too long."""

    pass


class RenderError(RecorderError):
    """The page under recording failed before signalling ready."""

    pass


class EncodingError(RecorderError):
    """ffmpeg exited with a non-zero status."""

    def __init__(self, returncode: int, stderr: str, step: str = "encode") -> None:
        self.returncode = returncode
        self.stderr = stderr
        self.step = step
        super().__init__(f"ffmpeg {step} failed with exit code {returncode}: {stderr}")


class StorageError(StoryMakerError):
    """Artifact upload failed."""

    pass


class PersistenceError(StoryMakerError):
    """The job store backend could not be reached or rejected a write."""

    pass


class JobNotFoundError(StoryMakerError):
    """No job exists with the given id."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class JobStateError(StoryMakerError):
    """A status update would move a job backwards in its lifecycle."""

    def __init__(self, job_id: str, current: str, requested: Optional[str]) -> None:
        self.job_id = job_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Job {job_id} cannot move from '{current}' to '{requested}'"
        )
