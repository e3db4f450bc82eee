"""Animation control: drive page animations by logical time instead of wall clock."""

import asyncio
import logging
import math
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional, Sequence

from storymaker.utils.errors import RecorderTimeoutError

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = 2
SCRIPT_PATH = Path(__file__).with_name("animation_control.js")

ACTIVATE_EXPRESSION = "() => window.__storyMakerAnimations.activate()"
TIMINGS_EXPRESSION = "() => window.__storyMakerAnimations.timings()"
SEEK_EXPRESSION = "(targets) => window.__storyMakerAnimations.seekTo(targets)"


@lru_cache
def load_control_script() -> str:
    """Source of the in-page control capability."""
    return SCRIPT_PATH.read_text(encoding="utf-8")


def effective_max_time(
    duration_ms: float,
    iterations: float,
    delay_ms: float = 0.0,
) -> float:
    """
    Latest time an animation can usefully be seeked to.

    Finite animations end at ``duration * iterations + delay``; animations
    with an unbounded iteration count are capped at a single iteration.
    """
    if math.isinf(iterations):
        return duration_ms
    return duration_ms * iterations + delay_ms


def clamp_seek_time(
    time_ms: float,
    duration_ms: float,
    iterations: float,
    delay_ms: float = 0.0,
) -> float:
    """Seek target for one animation, never past its effective maximum."""
    return min(time_ms, effective_max_time(duration_ms, iterations, delay_ms))


def seek_targets(time_ms: float, timings: Sequence[Sequence[float]]) -> list[float]:
    """One clamped target per ``(duration, iterations, delay)`` timing, in order."""
    return [
        clamp_seek_time(time_ms, duration, iterations, delay)
        for duration, iterations, delay in timings
    ]


class AnimationController:
    """
    Host-side handle on the animation control capability of one page.

    The page reports each controlled animation's timing; the seek targets
    are computed here and handed back. Every page call is bounded by
    ``timeout_seconds``.
    """

    def __init__(self, page: Any, timeout_seconds: float = 10.0) -> None:
        self.page = page
        self.timeout_seconds = timeout_seconds
        self.animation_count: Optional[int] = None

    async def _evaluate(self, action: str, expression: str, *args: Any) -> Any:
        try:
            return await asyncio.wait_for(
                self.page.evaluate(expression, *args), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            raise RecorderTimeoutError(
                f"Timeout {action} ({self.timeout_seconds:g}s)"
            )

    async def install(self) -> None:
        version = await self._evaluate("installing animation control", load_control_script())
        if version != PROTOCOL_VERSION:
            raise RuntimeError(
                f"Animation control version mismatch: page has {version}, "
                f"expected {PROTOCOL_VERSION}"
            )

    async def activate(self) -> int:
        """Install the capability and pause every running animation."""
        await self.install()
        count = await self._evaluate("pausing animations", ACTIVATE_EXPRESSION)
        self.animation_count = int(count or 0)
        logger.info(f"Animation control active: {self.animation_count} animations paused")
        return self.animation_count

    async def seek_to(self, time_ms: float) -> int:
        """Move every controlled animation to ``time_ms``; returns how many moved."""
        timings = await self._evaluate("reading animation timings", TIMINGS_EXPRESSION)
        targets = seek_targets(time_ms, timings or [])
        seeked = await self._evaluate(
            f"seeking animations to {time_ms:g}ms", SEEK_EXPRESSION, targets
        )
        return int(seeked or 0)
