"""Output publishing collaborator.

Uploads the encoded file to object storage and returns a time-limited URL.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError

from vidpress.core.config import settings
from vidpress.core.storage import StorageService
from vidpress.modules.transcoding.exceptions import StorageError

logger = logging.getLogger(__name__)

UPLOAD_STEP = "upload_error"
OUTPUT_CONTENT_TYPE = "video/mp4"


@dataclass(frozen=True)
class PublishedArtifact:
    """Location of an uploaded output."""
    key: str
    url: str


def build_output_key(job_id: str, prefix: Optional[str] = None, timestamp_ms: Optional[int] = None) -> str:
    prefix = settings.OUTPUT_KEY_PREFIX if prefix is None else prefix
    timestamp_ms = int(time.time() * 1000) if timestamp_ms is None else timestamp_ms
    name = f"{timestamp_ms}_{job_id}_processed_video.mp4"
    return f"{prefix.strip('/')}/{name}" if prefix else name


class OutputPublisher:
    """Publishes encoded outputs through the configured storage backend."""

    def __init__(
        self,
        storage: Optional[StorageService] = None,
        url_ttl_seconds: Optional[int] = None,
        key_prefix: Optional[str] = None,
    ):
        self._storage = storage
        self.url_ttl_seconds = url_ttl_seconds or settings.SIGNED_URL_TTL_SECONDS
        self.key_prefix = settings.OUTPUT_KEY_PREFIX if key_prefix is None else key_prefix

    @property
    def storage(self) -> StorageService:
        if self._storage is None:
            self._storage = StorageService()
        return self._storage

    async def publish(self, file_path: str, job_id: str) -> PublishedArtifact:
        """Upload an output file.

        Args:
            file_path: Local path of the encoded file
            job_id: Job the file belongs to

        Returns:
            PublishedArtifact with the storage key and signed URL

        Raises:
            StorageError: If the upload fails
        """
        key = build_output_key(job_id, self.key_prefix)
        try:
            result = await self.storage.upload_file(
                file_path,
                key,
                content_type=OUTPUT_CONTENT_TYPE,
                expires_in=self.url_ttl_seconds,
            )
        except (BotoCoreError, ClientError, OSError) as e:
            raise StorageError(f"Failed to upload processed video: {e}", step=UPLOAD_STEP) from e

        if not result.success:
            raise StorageError(
                f"Failed to upload processed video: {result.error_message or 'unknown error'}",
                step=UPLOAD_STEP,
            )

        logger.info(
            "Output published",
            extra={"job_id": job_id, "key": key, "file_size": result.file_size},
        )
        return PublishedArtifact(key=result.key, url=result.url)

    async def expire(self, key: str) -> bool:
        """Delete a published output once its URL has expired."""
        deleted = await self.storage.delete_file(key)
        logger.info("Published output expired", extra={"key": key, "deleted": deleted})
        return deleted
