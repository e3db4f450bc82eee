"""FastAPI routes for the StoryMaker Job API."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from storymaker.api.deps import AppServices, get_job_processor, get_job_store, get_services
from storymaker.models.job import Job, JobStatus, VideoRequest
from storymaker.services.job_processor import JobProcessor
from storymaker.services.job_store import JobStore
from storymaker.utils.errors import (
    ConfigurationError,
    JobNotFoundError,
    JobStateError,
    PersistenceError,
    StoryMakerError,
)

logger = logging.getLogger(__name__)

# Create router
router = APIRouter()


# ==================== Error Response Model ====================


class ErrorResponse(BaseModel):
    """Standard error response model."""

    detail: str
    error_type: str
    errors: Optional[List[Dict[str, Any]]] = None


# ==================== Exception Handlers ====================


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle request validation errors."""
    return JSONResponse(
        status_code=422,
        content={
            "detail": "Validation error",
            "error_type": "ValidationError",
            "errors": [
                {"loc": list(error.get("loc", [])), "msg": error.get("msg", "")}
                for error in exc.errors()
            ],
        },
    )


async def storymaker_exception_handler(request: Request, exc: StoryMakerError) -> JSONResponse:
    """Handle application-specific errors."""
    status_code = 500

    if isinstance(exc, ConfigurationError):
        status_code = 400
    elif isinstance(exc, JobNotFoundError):
        status_code = 404
    elif isinstance(exc, JobStateError):
        status_code = 409
    elif isinstance(exc, PersistenceError):
        status_code = 503

    if status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc}")

    return JSONResponse(
        status_code=status_code,
        content={
            "detail": str(exc),
            "error_type": type(exc).__name__,
        },
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTP exceptions with consistent format."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.detail,
            "error_type": "HTTPException",
        },
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception(f"Unexpected error: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "error_type": "InternalError",
        },
    )


# ==================== Request/Response Models ====================


class CamelModel(BaseModel):
    """Response model serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateVideoResponse(CamelModel):
    """Response model for create-video endpoint."""

    job_id: str
    status: JobStatus
    message: str


class JobStatusResponse(CamelModel):
    """Snapshot of a job for pollers."""

    job_id: str
    status: JobStatus
    progress: Optional[str] = None
    progress_percent: Optional[float] = None
    url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_job(cls, job: Job) -> "JobStatusResponse":
        return cls(
            job_id=job.id,
            status=job.status,
            progress=job.progress,
            progress_percent=job.progress_percent,
            url=job.result.url if job.result else None,
            thumbnail_url=job.result.thumbnail_url if job.result else None,
            error=job.error,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )


# ==================== Endpoints ====================


@router.post("/api/create-video", response_model=CreateVideoResponse, status_code=202)
async def create_video(
    payload: VideoRequest,
    request: Request,
    store: JobStore = Depends(get_job_store),
    processor: JobProcessor = Depends(get_job_processor),
) -> CreateVideoResponse:
    """
    Start generating a video for an article.

    Creates a pending job and hands it to the background processor.
    Returns immediately with a job id that can be polled.
    """
    missing = payload.missing_fields()
    if missing:
        raise ConfigurationError(missing)

    logger.info(
        f"Creating video for: {payload.site}/{payload.post_type}/{payload.slug} "
        f"(template: {payload.template})"
    )
    job = await store.create(payload)
    processor.submit(job, base_url=str(request.base_url))

    return CreateVideoResponse(
        job_id=job.id,
        status=job.status,
        message=f"Video generation started for: {payload.slug}",
    )


@router.get(
    "/api/jobs/{job_id}",
    response_model=JobStatusResponse,
    responses={404: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def get_job_status(
    job_id: str,
    store: JobStore = Depends(get_job_store),
) -> JobStatusResponse:
    """
    Get the status of a video job.

    Includes the video and thumbnail URLs when completed, or the error
    message when failed.
    """
    job = await store.get(job_id)
    if job is None:
        raise JobNotFoundError(job_id)
    return JobStatusResponse.from_job(job)


@router.delete("/api/jobs/{job_id}", status_code=204)
async def delete_job(
    job_id: str,
    store: JobStore = Depends(get_job_store),
) -> Response:
    """Remove a job record. Deleting an unknown job is not an error."""
    await store.delete(job_id)
    return Response(status_code=204)


@router.get("/health")
async def health() -> Dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}


@router.get("/")
async def service_info(services: AppServices = Depends(get_services)) -> Dict[str, Any]:
    """Describe the service and its endpoints."""
    return {
        "name": "StoryMaker Video Service",
        "storage": "Supabase Storage" if services.artifact_store else "Local filesystem",
        "jobStore": services.store.name,
        "activeJobs": services.processor.active_jobs,
        "endpoints": {
            "POST /api/create-video": "Start a video job (site, slug, postType, template)",
            "GET /api/jobs/{jobId}": "Poll a video job",
            "DELETE /api/jobs/{jobId}": "Delete a video job",
            "GET /videos/{filename}": "Serve generated videos when uploads are unavailable",
            "GET /health": "Health check",
        },
    }
