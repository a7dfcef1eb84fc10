"""Repositories for transcoding job and log tables."""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vidpress.modules.transcoding.models import (
    JobStatus,
    LogLevel,
    TERMINAL_STATUSES,
    TranscodeJob,
    TranscodeLog,
)


class TranscodeJobRepository:
    """Repository for TranscodeJob operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        job_id: str,
        server_id: str,
        uploader_id: str,
        channel_id: str,
        source_url: str,
        callback_queue: str,
    ) -> TranscodeJob:
        """Create a new job in ``pending`` state.

        Args:
            job_id: Opaque job identifier
            server_id: Requesting server
            uploader_id: Uploading user
            channel_id: Target channel
            source_url: Where the source video is fetched from
            callback_queue: Destination for the reply

        Returns:
            Created TranscodeJob
        """
        job = TranscodeJob(
            id=job_id,
            server_id=server_id,
            uploader_id=uploader_id,
            channel_id=channel_id,
            source_url=source_url,
            callback_queue=callback_queue,
            status=JobStatus.PENDING,
        )
        self.session.add(job)
        await self.session.flush()
        return job

    async def get_by_id(self, job_id: str) -> Optional[TranscodeJob]:
        """Get a job by ID."""
        result = await self.session.execute(
            select(TranscodeJob).where(TranscodeJob.id == job_id)
        )
        return result.scalar_one_or_none()

    async def update_status(
        self,
        job: TranscodeJob,
        status: JobStatus,
        **fields: Any,
    ) -> None:
        """Set a job's status and any result fields that go with it.

        Args:
            job: The job to update
            status: New status
            **fields: Column values such as ``result_url`` or ``error_message``
        """
        job.status = status
        now = datetime.now(timezone.utc)
        if status == JobStatus.PROCESSING:
            job.started_at = now
        elif status in TERMINAL_STATUSES:
            job.completed_at = now

        for name, value in fields.items():
            if not hasattr(TranscodeJob, name):
                raise AttributeError(f"TranscodeJob has no column '{name}'")
            setattr(job, name, value)
        await self.session.flush()


class TranscodeLogRepository:
    """Repository for TranscodeLog operations. Entries are never updated."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(
        self,
        job_id: str,
        step: str,
        message: str,
        level: LogLevel,
        timestamp: datetime,
        duration_ms: Optional[int] = None,
        details: Optional[dict] = None,
    ) -> TranscodeLog:
        entry = TranscodeLog(
            job_id=job_id,
            step=step,
            message=message,
            level=level,
            timestamp=timestamp,
            duration_ms=duration_ms,
            details=details,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def list_for_job(self, job_id: str, limit: int = 500) -> list[TranscodeLog]:
        """Get a job's log entries, oldest first."""
        result = await self.session.execute(
            select(TranscodeLog)
            .where(TranscodeLog.job_id == job_id)
            .order_by(TranscodeLog.timestamp, TranscodeLog.id)
            .limit(limit)
        )
        return list(result.scalars().all())
