"""StoryMaker web service."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from storymaker.api.deps import AppServices
from storymaker.api.routes import (
    generic_exception_handler,
    http_exception_handler,
    router,
    storymaker_exception_handler,
    validation_exception_handler,
)
from storymaker.config import Settings, configure_logging, get_settings
from storymaker.services.artifact_store import create_artifact_store
from storymaker.services.job_processor import VIDEOS_ROUTE, create_job_processor
from storymaker.services.job_store import create_job_store, create_supabase_client
from storymaker.services.recorder import create_story_recorder
from storymaker.services.scheduler import create_cleanup_scheduler
from storymaker.services.template_server import create_template_server
from storymaker.utils.errors import StoryMakerError

logger = logging.getLogger(__name__)


def build_services(settings: Settings) -> AppServices:
    """Construct the shared services once for the lifetime of the process."""
    supabase_client = create_supabase_client()
    store = create_job_store(supabase_client)
    artifact_store = create_artifact_store(supabase_client)
    template_server = create_template_server()
    processor = create_job_processor(
        store=store,
        recorder=create_story_recorder(),
        template_server=template_server,
        artifact_store=artifact_store,
    )
    return AppServices(
        settings=settings,
        store=store,
        template_server=template_server,
        processor=processor,
        scheduler=create_cleanup_scheduler(store),
        artifact_store=artifact_store,
    )


def create_app(services: Optional[AppServices] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        services: Prebuilt services; built from settings at startup when omitted

    Returns:
        Configured FastAPI app
    """
    settings = services.settings if services else get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(settings.log_level)
        app.state.services = services or build_services(settings)
        if app.state.services.artifact_store is not None:
            await app.state.services.artifact_store.check()
        await app.state.services.template_server.start()
        app.state.services.scheduler.start()
        logger.info("StoryMaker web service started")
        try:
            yield
        finally:
            await app.state.services.scheduler.stop()
            await app.state.services.template_server.stop()
            logger.info("StoryMaker web service stopped")

    app = FastAPI(title="StoryMaker Video Service", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StoryMakerError, storymaker_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.include_router(router)

    videos_dir = Path(settings.videos_dir)
    videos_dir.mkdir(parents=True, exist_ok=True)
    app.mount(VIDEOS_ROUTE, StaticFiles(directory=videos_dir), name="videos")

    return app


def run(host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Serve the app with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        create_app(),
        host=host or settings.host,
        port=port or settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
