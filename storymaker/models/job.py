"""Job Pydantic models."""

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

JobStatus = Literal["pending", "processing", "completed", "failed"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})

# Lifecycle rank; terminal states share a rank so one can never follow the other.
_STATUS_RANK: dict[str, int] = {
    "pending": 0,
    "processing": 1,
    "completed": 2,
    "failed": 2,
}

REQUIRED_REQUEST_FIELDS: tuple[str, ...] = ("site", "slug", "postType", "template")


def utc_now() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def is_terminal(status: str) -> bool:
    """Whether no further transitions are possible from this status."""
    return status in TERMINAL_STATUSES


def can_transition(current: str, requested: str) -> bool:
    """
    Check a status change against the one-directional lifecycle.

    Repeating the current status is allowed (progress writes carry it);
    anything else must strictly advance pending -> processing -> terminal.
    A job can fail before it starts, but only completes from processing.
    """
    if current == requested:
        return True
    if requested == "completed":
        return current == "processing"
    return _STATUS_RANK[requested] > _STATUS_RANK[current]


class VideoRequest(BaseModel):
    """What to render: opaque identifiers handed to the template."""

    model_config = ConfigDict(populate_by_name=True)

    site: str = ""
    slug: str = ""
    post_type: str = Field(default="", alias="postType")
    template: str = ""

    def missing_fields(self) -> list[str]:
        """Wire names of required fields that are absent or blank."""
        values = self.model_dump(by_alias=True)
        return [
            name
            for name in REQUIRED_REQUEST_FIELDS
            if not str(values.get(name) or "").strip()
        ]


class JobResult(BaseModel):
    """Where the finished artifacts can be downloaded."""

    model_config = ConfigDict(populate_by_name=True)

    url: str = Field(min_length=1)
    thumbnail_url: Optional[str] = Field(default=None, alias="thumbnailUrl")


class Job(BaseModel):
    """A tracked unit of video generation work."""

    id: str = Field(min_length=1)
    status: JobStatus = "pending"
    request: VideoRequest
    progress: Optional[str] = None
    progress_percent: Optional[float] = Field(default=None, ge=0, le=100)
    result: Optional[JobResult] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def _outcome_matches_status(self) -> "Job":
        if self.status == "completed":
            if self.result is None or self.error is not None:
                raise ValueError("a completed job carries a result and no error")
        elif self.status == "failed":
            if not self.error or self.result is not None:
                raise ValueError("a failed job carries an error and no result")
        elif self.result is not None or self.error is not None:
            raise ValueError(f"a {self.status} job cannot carry a result or error")
        return self

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)
