"""Database models for transcoding jobs and their log entries."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, Enum as SQLEnum, Float, Index, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from vidpress.core.database import Base


class JobStatus(str, Enum):
    """Status of a transcoding job."""
    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.DONE, JobStatus.FAILED})


class LogLevel(str, Enum):
    """Severity of a job log entry."""
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class TranscodeJob(Base):
    """One request to transcode a single source video."""

    __tablename__ = "transcode_jobs"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )

    # Request origin
    server_id: Mapped[str] = mapped_column(String(255), nullable=False)
    uploader_id: Mapped[str] = mapped_column(String(255), nullable=False)
    channel_id: Mapped[str] = mapped_column(String(255), nullable=False)
    source_url: Mapped[str] = mapped_column(Text, nullable=False)
    callback_queue: Mapped[str] = mapped_column(String(255), nullable=False)

    status: Mapped[JobStatus] = mapped_column(
        SQLEnum(JobStatus, name="transcode_job_status", values_callable=lambda e: [m.value for m in e]),
        default=JobStatus.PENDING,
        nullable=False,
        index=True,
    )

    # Result
    result_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    output_duration: Mapped[Optional[float]] = mapped_column(Float, nullable=True)  # seconds
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<TranscodeJob(id={self.id}, status={self.status})>"


class TranscodeLog(Base):
    """Append-only log entry for a job."""

    __tablename__ = "transcode_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    step: Mapped[str] = mapped_column(String(100), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    level: Mapped[LogLevel] = mapped_column(
        SQLEnum(LogLevel, name="transcode_log_level", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # "metadata" is reserved on declarative classes
    details: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)

    __table_args__ = (
        Index("ix_transcode_logs_job_timestamp", "job_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<TranscodeLog(job_id={self.job_id}, step={self.step}, level={self.level})>"
