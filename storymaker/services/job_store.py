"""Job stores: one contract, a volatile and a durable (Supabase table) backend."""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Optional
from uuid import uuid4

from pydantic import ValidationError

from storymaker.models.job import (
    Job,
    JobResult,
    VideoRequest,
    can_transition,
    is_terminal,
    utc_now,
)
from storymaker.utils.errors import JobStateError, PersistenceError

logger = logging.getLogger(__name__)

# Fields callers may change through update(); id and created_at are fixed.
UPDATABLE_FIELDS = frozenset(
    {"status", "progress", "progress_percent", "result", "error"}
)


def generate_job_id() -> str:
    """Random, opaque job identifier."""
    return f"job-{uuid4().hex[:12]}"


def merge_job(job: Job, updates: dict[str, Any]) -> Job:
    """
    Apply a partial update to a job snapshot.

    Status may only move forward, progress_percent never decreases while the
    job is running, and updated_at never goes backwards.

    Raises:
        JobStateError: If the update would move the status backwards
        ValueError: If an unknown field is given or the result is inconsistent
    """
    unknown = set(updates) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update job fields: {', '.join(sorted(unknown))}")

    requested = updates.get("status", job.status)
    if not can_transition(job.status, requested):
        raise JobStateError(job.id, job.status, requested)

    data = job.model_dump()
    data.update(updates)

    if not is_terminal(requested):
        previous = job.progress_percent
        new = data.get("progress_percent")
        if previous is not None and (new is None or new < previous):
            data["progress_percent"] = previous

    data["updated_at"] = max(utc_now(), job.updated_at)

    try:
        return Job.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Invalid update for job {job.id}: {e}") from e


class JobStore(ABC):
    """Bookkeeping of job state."""

    name: str = "abstract"

    async def create(self, request: VideoRequest) -> Job:
        """
        Create a pending job for ``request``.

        Returns:
            The stored Job

        Raises:
            PersistenceError: If the job cannot be stored
        """
        now = utc_now()
        job = Job(
            id=generate_job_id(),
            status="pending",
            request=request,
            created_at=now,
            updated_at=now,
        )
        await self._insert(job)
        logger.info(f"Created job {job.id}")
        return job

    @abstractmethod
    async def _insert(self, job: Job) -> None:
        """Store a new job; fails if the id already exists."""

    @abstractmethod
    async def get(self, job_id: str) -> Optional[Job]:
        """Current snapshot of a job, or None if unknown."""

    @abstractmethod
    async def update(self, job_id: str, **updates: Any) -> Optional[Job]:
        """Merge ``updates`` into a job; None if the job is unknown."""

    @abstractmethod
    async def delete(self, job_id: str) -> bool:
        """Remove a job; True if it existed."""

    @abstractmethod
    async def cleanup(self, max_age: timedelta) -> int:
        """Delete terminal jobs not updated within ``max_age``; returns the count."""


class InMemoryJobStore(JobStore):
    """Process-local store; jobs are lost on restart."""

    name = "memory"

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}

    async def _insert(self, job: Job) -> None:
        if job.id in self._jobs:
            raise PersistenceError(f"Job id already exists: {job.id}")
        self._jobs[job.id] = job

    async def get(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    async def update(self, job_id: str, **updates: Any) -> Optional[Job]:
        job = self._jobs.get(job_id)
        if job is None:
            return None
        updated = merge_job(job, updates)
        self._jobs[job_id] = updated
        if "status" in updates:
            logger.info(f"Updated job {job_id}: status={updated.status}")
        return updated

    async def delete(self, job_id: str) -> bool:
        existed = self._jobs.pop(job_id, None) is not None
        if existed:
            logger.info(f"Deleted job {job_id}")
        return existed

    async def cleanup(self, max_age: timedelta) -> int:
        cutoff = utc_now() - max_age
        expired = [
            job_id
            for job_id, job in self._jobs.items()
            if job.is_terminal and job.updated_at < cutoff
        ]
        for job_id in expired:
            del self._jobs[job_id]

        if expired:
            logger.info(f"Cleaned up {len(expired)} old jobs")
        return len(expired)


class SupabaseJobStore(JobStore):
    """
    Durable store on a Supabase table.

    Rows are keyed by (namespace, job_id). Scalar fields are columns; the
    request and result objects are JSON-encoded strings.
    """

    name = "supabase"

    def __init__(
        self,
        supabase_client: Any,
        table_name: str = "story_jobs",
        namespace: str = "jobs",
    ) -> None:
        """
        Initialize the SupabaseJobStore.

        Args:
            supabase_client: Supabase client instance
            table_name: Table holding job rows
            namespace: Partition value written to every row
        """
        self.supabase = supabase_client
        self.table_name = table_name
        self.namespace = namespace

    def _table(self) -> Any:
        return self.supabase.table(self.table_name)

    async def _execute(self, query: Any, action: str) -> Any:
        """Run a blocking Supabase query off the event loop."""
        try:
            return await asyncio.to_thread(query.execute)
        except Exception as e:
            raise PersistenceError(f"Failed to {action}: {e}") from e

    def job_to_row(self, job: Job) -> dict[str, Any]:
        """Flatten a job into a table row."""
        return {
            "namespace": self.namespace,
            "job_id": job.id,
            "status": job.status,
            "request": job.request.model_dump_json(by_alias=True),
            "progress": job.progress,
            "progress_percent": job.progress_percent,
            "result": job.result.model_dump_json(by_alias=True) if job.result else None,
            "error": job.error,
            "created_at": job.created_at.isoformat(),
            "updated_at": job.updated_at.isoformat(),
        }

    def row_to_job(self, row: dict[str, Any]) -> Job:
        """Rebuild a job from a table row."""
        result = row.get("result")
        return Job(
            id=row["job_id"],
            status=row["status"],
            request=VideoRequest.model_validate(json.loads(row["request"])),
            progress=row.get("progress") or None,
            progress_percent=row.get("progress_percent"),
            result=JobResult.model_validate(json.loads(result)) if result else None,
            error=row.get("error") or None,
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    async def _insert(self, job: Job) -> None:
        result = await self._execute(
            self._table().insert(self.job_to_row(job)), f"create job {job.id}"
        )
        if not result.data:
            raise PersistenceError(f"Failed to create job {job.id}: insert returned no rows")

    async def get(self, job_id: str) -> Optional[Job]:
        result = await self._execute(
            self._table()
            .select("*")
            .eq("namespace", self.namespace)
            .eq("job_id", job_id),
            f"get job {job_id}",
        )
        if not result.data:
            return None
        return self.row_to_job(result.data[0])

    async def update(self, job_id: str, **updates: Any) -> Optional[Job]:
        job = await self.get(job_id)
        if job is None:
            return None

        updated = merge_job(job, updates)
        row = self.job_to_row(updated)
        del row["namespace"], row["job_id"], row["created_at"]

        await self._execute(
            self._table()
            .update(row)
            .eq("namespace", self.namespace)
            .eq("job_id", job_id),
            f"update job {job_id}",
        )
        if "status" in updates:
            logger.info(f"Updated job {job_id}: status={updated.status}")
        return updated

    async def delete(self, job_id: str) -> bool:
        result = await self._execute(
            self._table()
            .delete()
            .eq("namespace", self.namespace)
            .eq("job_id", job_id),
            f"delete job {job_id}",
        )
        existed = bool(result.data)
        if existed:
            logger.info(f"Deleted job {job_id}")
        return existed

    async def cleanup(self, max_age: timedelta) -> int:
        cutoff = (utc_now() - max_age).isoformat()
        result = await self._execute(
            self._table()
            .select("job_id")
            .eq("namespace", self.namespace)
            .in_("status", ["completed", "failed"])
            .lt("updated_at", cutoff),
            "list expired jobs",
        )

        deleted = 0
        for row in result.data or []:
            try:
                if await self.delete(row["job_id"]):
                    deleted += 1
            except PersistenceError as e:
                logger.warning(f"Failed to clean up job {row['job_id']}: {e}")

        if deleted:
            logger.info(f"Cleaned up {deleted} old jobs")
        return deleted


def create_supabase_client() -> Optional[Any]:
    """Supabase client from application settings, or None when unconfigured."""
    from storymaker.config import get_settings

    settings = get_settings()
    if not settings.supabase_enabled:
        return None

    from supabase import create_client

    return create_client(settings.supabase_url, settings.supabase_key)


def create_job_store(supabase_client: Optional[Any] = None) -> JobStore:
    """
    Create the job store selected by application settings.

    Args:
        supabase_client: Shared Supabase client; None selects the in-memory store

    Returns:
        SupabaseJobStore when a client is available, else InMemoryJobStore
    """
    from storymaker.config import get_settings

    settings = get_settings()
    if supabase_client is not None:
        logger.info(f"Using Supabase job store (table: {settings.jobs_table})")
        return SupabaseJobStore(
            supabase_client=supabase_client,
            table_name=settings.jobs_table,
            namespace=settings.jobs_namespace,
        )

    logger.info("Using in-memory job store (Supabase not configured)")
    return InMemoryJobStore()
