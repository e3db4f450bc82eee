"""Recorder request, progress and result models."""

import math
from typing import Literal, Optional

from pydantic import BaseModel, Field

RecorderPhase = Literal["initializing", "capturing", "stitching", "thumbnail", "complete"]

# Overall percent range each phase occupies.
PHASE_RANGES: dict[str, tuple[float, float]] = {
    "initializing": (0.0, 15.0),
    "capturing": (15.0, 75.0),
    "stitching": (75.0, 90.0),
    "thumbnail": (90.0, 95.0),
    "complete": (100.0, 100.0),
}


class RecorderRequest(BaseModel):
    """Parameters for one recording."""

    target_url: str = Field(min_length=1)
    output_path: str = Field(min_length=1)
    width: int = Field(default=1080, gt=0)
    height: int = Field(default=1920, gt=0)
    frame_rate: int = Field(default=25, gt=0)
    duration_ms: int = Field(default=10000, gt=0)

    @property
    def total_frames(self) -> int:
        return total_frame_count(self.duration_ms, self.frame_rate)

    @property
    def frame_interval_ms(self) -> float:
        return 1000 / self.frame_rate


class RecorderProgress(BaseModel):
    """A progress report emitted by the recorder."""

    phase: RecorderPhase
    percent: float = Field(ge=0, le=100)
    current_frame: Optional[int] = None
    total_frames: Optional[int] = None


class RecorderResult(BaseModel):
    """Outcome of a recording."""

    success: bool
    output_path: str
    thumbnail_path: Optional[str] = None
    error: Optional[str] = None


def total_frame_count(duration_ms: int, frame_rate: int) -> int:
    """Number of frames needed to cover the duration at the frame rate."""
    return math.ceil(duration_ms / 1000 * frame_rate)


def frame_timestamps(duration_ms: int, frame_rate: int) -> list[float]:
    """Logical animation time, in ms, of every frame in capture order."""
    interval = 1000 / frame_rate
    return [index * interval for index in range(total_frame_count(duration_ms, frame_rate))]


def phase_percent(phase: str, fraction: float = 0.0) -> float:
    """Map a fraction of a phase onto the overall 0-100 scale."""
    start, end = PHASE_RANGES[phase]
    fraction = min(max(fraction, 0.0), 1.0)
    return round(start + (end - start) * fraction, 2)
