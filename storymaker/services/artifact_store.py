"""Artifact store: uploads finished videos and thumbnails to Supabase Storage."""

import asyncio
import logging
import mimetypes
from typing import Any, Optional, Protocol

from storymaker.utils.errors import StorageError
from storymaker.utils.retry import with_retry

logger = logging.getLogger(__name__)


class ArtifactStore(Protocol):
    """Anything that can publish bytes under a name and hand back a URL."""

    async def check(self) -> bool:
        ...

    async def put(self, data: bytes, name: str) -> Optional[str]:
        ...


def content_type_for(name: str) -> str:
    """MIME type for an artifact name."""
    guessed, _ = mimetypes.guess_type(name)
    return guessed or "application/octet-stream"


class SupabaseArtifactStore:
    """Uploads artifacts to a public Supabase Storage bucket."""

    def __init__(
        self,
        supabase_client: Any,
        bucket: str = "videos",
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: Optional[float] = None,
    ) -> None:
        """
        Initialize the SupabaseArtifactStore.

        Args:
            supabase_client: Supabase client instance
            bucket: Storage bucket receiving the artifacts
            max_attempts: Upload attempts before giving up
            base_delay: First retry delay in seconds (doubles each attempt)
            max_delay: Ceiling for a single retry delay
        """
        self.supabase = supabase_client
        self.bucket = bucket
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay

    async def check(self) -> bool:
        """
        Make sure the bucket exists, creating a public one if it is missing.

        Returns:
            True if uploads can go to the bucket; False (with a warning) otherwise
        """
        storage = self.supabase.storage
        try:
            await asyncio.to_thread(storage.get_bucket, self.bucket)
            logger.info(f"Storage bucket '{self.bucket}' is available")
            return True
        except Exception as e:
            logger.info(f"Storage bucket '{self.bucket}' not found ({e}), creating it")

        try:
            await asyncio.to_thread(storage.create_bucket, self.bucket, options={"public": True})
        except Exception as e:
            logger.warning(
                f"Storage bucket '{self.bucket}' is not usable, "
                f"videos will be served locally: {e}"
            )
            return False
        logger.info(f"Created storage bucket '{self.bucket}'")
        return True

    async def put(self, data: bytes, name: str) -> Optional[str]:
        """
        Upload ``data`` as ``name``.

        Returns:
            Public URL of the artifact, or None if every attempt failed
        """
        upload = with_retry(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            exceptions=(StorageError,),
        )(self._upload)

        size_mb = len(data) / (1024 * 1024)
        logger.info(f"Uploading {name} ({size_mb:.2f} MB) to bucket '{self.bucket}'")
        try:
            url = await upload(data, name)
        except StorageError as e:
            logger.error(f"Upload of {name} failed: {e}")
            return None

        logger.info(f"Upload complete: {url}")
        return url

    async def _upload(self, data: bytes, name: str) -> str:
        """
        Store the bytes and resolve their public URL.

        Raises:
            StorageError: If the upload or URL lookup fails
        """
        bucket = self.supabase.storage.from_(self.bucket)
        try:
            result = await asyncio.to_thread(
                bucket.upload,
                path=name,
                file=data,
                file_options={"content-type": content_type_for(name), "upsert": "true"},
            )
            if not result:
                raise StorageError("Upload returned empty result")
            public_url = bucket.get_public_url(name)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to upload {name}: {e}") from e

        if not public_url:
            raise StorageError(f"No public URL for {name}")
        return public_url


def create_artifact_store(supabase_client: Optional[Any] = None) -> Optional[ArtifactStore]:
    """
    Create the artifact store using application settings.

    Args:
        supabase_client: Shared Supabase client; None disables uploads

    Returns:
        Configured SupabaseArtifactStore, or None when uploads are disabled
    """
    from storymaker.config import get_settings

    if supabase_client is None:
        logger.warning("Supabase not configured - artifacts are served locally")
        return None

    settings = get_settings()
    logger.info(f"Using Supabase Storage bucket '{settings.artifact_bucket}'")
    return SupabaseArtifactStore(
        supabase_client=supabase_client,
        bucket=settings.artifact_bucket,
        max_attempts=settings.max_retry_attempts,
        base_delay=settings.base_delay_seconds,
        max_delay=settings.max_delay_seconds,
    )
