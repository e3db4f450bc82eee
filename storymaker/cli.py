"""StoryMaker command line: record one story, or run the web service."""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional, Sequence

from storymaker.config import configure_logging, get_settings
from storymaker.models.job import VideoRequest
from storymaker.models.recording import RecorderProgress, RecorderRequest
from storymaker.services.recorder import create_story_recorder
from storymaker.services.template_server import create_template_server


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(
        prog="storymaker",
        description="StoryMaker - Video Story Generator",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    record = commands.add_parser("record", help="Record one story to a video file")
    record.add_argument("--template", required=True, help="Template name, e.g. default")
    record.add_argument("--site", required=True, help="Site id, e.g. aje")
    record.add_argument("--post-type", required=True, help="Post type, e.g. post")
    record.add_argument("--post-slug", required=True, help="Article slug")
    record.add_argument("--output", required=True, help="Output file, e.g. ./output/story.mp4")
    record.add_argument("--duration-ms", type=int, default=settings.duration_ms)
    record.add_argument("--frame-rate", type=int, default=settings.frame_rate)

    serve = commands.add_parser("serve", help="Run the web service")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)

    return parser


def print_progress(progress: RecorderProgress) -> None:
    if progress.phase == "capturing":
        print(
            f"\r  Capturing frame {progress.current_frame}/{progress.total_frames} "
            f"({progress.percent:.0f}%)",
            end="",
            flush=True,
        )
    else:
        print(f"\n  {progress.phase.capitalize()} ({progress.percent:.0f}%)", flush=True)


async def record_story(args: argparse.Namespace) -> int:
    """Serve the templates privately, record one story and report the outcome."""
    settings = get_settings()
    request = VideoRequest(
        site=args.site,
        slug=args.post_slug,
        post_type=args.post_type,
        template=args.template,
    )

    print("Configuration:")
    print(f"  Template: {request.template}")
    print(f"  Site: {request.site}")
    print(f"  Post Type: {request.post_type}")
    print(f"  Post Slug: {request.slug}")
    print(f"  Output: {args.output}\n")

    Path(args.output).parent.mkdir(parents=True, exist_ok=True)

    server = create_template_server()
    await server.start()
    try:
        result = await create_story_recorder().record(
            RecorderRequest(
                target_url=server.build_url(request),
                output_path=args.output,
                width=settings.video_width,
                height=settings.video_height,
                frame_rate=args.frame_rate,
                duration_ms=args.duration_ms,
            ),
            on_progress=print_progress,
        )
    finally:
        await server.stop()

    if not result.success:
        print(f"\n✗ Recording failed: {result.error}", file=sys.stderr)
        return 1

    print("\n✓ Story recorded successfully!")
    print(f"  Output: {result.output_path}")
    if result.thumbnail_path:
        print(f"  Thumbnail: {result.thumbnail_path}")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(get_settings().log_level)

    if args.command == "serve":
        from storymaker.main import run

        run(host=args.host, port=args.port)
        return 0

    return asyncio.run(record_story(args))


if __name__ == "__main__":
    sys.exit(main())
