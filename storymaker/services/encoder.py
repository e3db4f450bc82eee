"""ffmpeg invocations: frame sequence to H.264 video, last frame to thumbnail."""

import asyncio
import logging
from pathlib import Path

from storymaker.utils.errors import EncodingError

logger = logging.getLogger(__name__)

FRAME_PATTERN = "frame_%05d.png"
STDERR_TAIL_CHARS = 2000


def frame_filename(index: int) -> str:
    """Zero-padded file name of the frame at ``index``."""
    return FRAME_PATTERN % index


def build_encode_command(
    ffmpeg_path: str,
    frames_dir: str,
    frame_rate: int,
    output_path: str,
) -> list[str]:
    """
    Argument vector that stitches the numbered frames into an MP4.

    No scaling filter is applied so the video keeps the frame dimensions.
    """
    return [
        ffmpeg_path,
        "-y",
        "-framerate",
        str(frame_rate),
        "-i",
        str(Path(frames_dir) / FRAME_PATTERN),
        "-c:v",
        "libx264",
        "-preset",
        "fast",
        "-crf",
        "22",
        "-pix_fmt",
        "yuv420p",
        "-movflags",
        "+faststart",
        output_path,
    ]


def build_thumbnail_command(ffmpeg_path: str, frame_path: str, thumbnail_path: str) -> list[str]:
    """Argument vector that converts one frame into a JPEG thumbnail."""
    return [
        ffmpeg_path,
        "-y",
        "-i",
        frame_path,
        "-frames:v",
        "1",
        "-q:v",
        "2",
        thumbnail_path,
    ]


async def run_ffmpeg(command: list[str], step: str) -> None:
    """
    Run ffmpeg and wait for it.

    Raises:
        EncodingError: If ffmpeg exits non-zero; carries the tail of stderr
    """
    logger.debug(f"Running ffmpeg {step}: {' '.join(command)}")
    process = await asyncio.create_subprocess_exec(
        *command,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.PIPE,
    )
    _, stderr = await process.communicate()

    if process.returncode != 0:
        diagnostics = stderr.decode("utf-8", errors="replace").strip()
        raise EncodingError(process.returncode, diagnostics[-STDERR_TAIL_CHARS:], step=step)


async def encode_frames(
    ffmpeg_path: str,
    frames_dir: str,
    frame_rate: int,
    output_path: str,
) -> None:
    """Stitch the frames in ``frames_dir`` into ``output_path``."""
    await run_ffmpeg(
        build_encode_command(ffmpeg_path, frames_dir, frame_rate, output_path),
        step="encode",
    )
    logger.info(f"Encoded video: {output_path}")


async def extract_thumbnail(ffmpeg_path: str, frame_path: str, thumbnail_path: str) -> None:
    """Write a JPEG thumbnail of ``frame_path``."""
    await run_ffmpeg(
        build_thumbnail_command(ffmpeg_path, frame_path, thumbnail_path),
        step="thumbnail",
    )
    logger.info(f"Extracted thumbnail: {thumbnail_path}")
