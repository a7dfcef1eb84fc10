"""Job store collaborator.

The lifecycle tracker persists jobs and log entries through JobStore so the
pipeline can run against an in-memory store in tests.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vidpress.core.database import get_session_factory
from vidpress.modules.transcoding.exceptions import PersistenceError
from vidpress.modules.transcoding.models import JobStatus, LogLevel
from vidpress.modules.transcoding.repository import (
    TranscodeJobRepository,
    TranscodeLogRepository,
)


@dataclass
class JobRecord:
    """Persisted view of a job."""
    id: str
    server_id: str
    uploader_id: str
    channel_id: str
    source_url: str
    callback_queue: str
    status: JobStatus = JobStatus.PENDING
    result_url: Optional[str] = None
    output_duration: Optional[float] = None
    error_message: Optional[str] = None


@dataclass
class LogEntry:
    """One job event."""
    job_id: str
    step: str
    message: str
    level: LogLevel
    timestamp: datetime
    duration_ms: Optional[int] = None
    metadata: Optional[dict] = None


class JobStore(ABC):
    """Durable storage for jobs and their log entries.

    Implementations raise PersistenceError for any storage failure.
    """

    @abstractmethod
    async def create_job(self, record: JobRecord) -> None:
        ...

    @abstractmethod
    async def update_job(self, job_id: str, status: JobStatus, **fields: Any) -> None:
        ...

    @abstractmethod
    async def append_log(self, entry: LogEntry) -> None:
        ...


class DatabaseJobStore(JobStore):
    """JobStore backed by the SQLAlchemy repositories.

    Every call runs in its own session and commits before returning.
    """

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = get_session_factory()
        return self._session_factory

    async def create_job(self, record: JobRecord) -> None:
        try:
            async with self.session_factory() as session:
                await TranscodeJobRepository(session).create(
                    job_id=record.id,
                    server_id=record.server_id,
                    uploader_id=record.uploader_id,
                    channel_id=record.channel_id,
                    source_url=record.source_url,
                    callback_queue=record.callback_queue,
                )
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError(f"Failed to create job {record.id}: {e}") from e

    async def update_job(self, job_id: str, status: JobStatus, **fields: Any) -> None:
        try:
            async with self.session_factory() as session:
                repo = TranscodeJobRepository(session)
                job = await repo.get_by_id(job_id)
                if job is None:
                    raise PersistenceError(f"Job {job_id} not found")
                await repo.update_status(job, status, **fields)
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError(f"Failed to update job {job_id}: {e}") from e

    async def append_log(self, entry: LogEntry) -> None:
        try:
            async with self.session_factory() as session:
                await TranscodeLogRepository(session).append(
                    job_id=entry.job_id,
                    step=entry.step,
                    message=entry.message,
                    level=entry.level,
                    timestamp=entry.timestamp,
                    duration_ms=entry.duration_ms,
                    details=entry.metadata,
                )
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError(f"Failed to append log for job {entry.job_id}: {e}") from e
