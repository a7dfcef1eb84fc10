"""Job lifecycle tracking.

The tracker owns status transitions and the job's event log. Every event is
written to operational logging; only warnings, errors and a fixed set of
important steps reach the job store. Store failures are counted and logged
but never propagate into the media pipeline.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional, Union

from vidpress.core.logging import log_error, log_info, log_warning
from vidpress.core.metrics import LOG_PERSIST_FAILURES_TOTAL
from vidpress.modules.transcoding.exceptions import InvalidStatusTransition, PersistenceError
from vidpress.modules.transcoding.models import JobStatus, LogLevel
from vidpress.modules.transcoding.store import JobRecord, JobStore, LogEntry

logger = logging.getLogger(__name__)

IMPORTANT_STEPS = frozenset({
    "validation_failed",
    "validation_error",
    "processing_start",
    "processing_complete",
    "processing_error",
    "encoding_error",
    "status_update",
})

PERSISTED_LEVELS = frozenset({LogLevel.WARN, LogLevel.ERROR})

ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING}),
    JobStatus.PROCESSING: frozenset({JobStatus.DONE, JobStatus.FAILED}),
    JobStatus.DONE: frozenset(),
    JobStatus.FAILED: frozenset(),
}


def should_persist(level: Union[LogLevel, str], step: str) -> bool:
    """Whether an event is written to the job store."""
    return LogLevel(level) in PERSISTED_LEVELS or step in IMPORTANT_STEPS


def can_transition(current: JobStatus, requested: JobStatus) -> bool:
    return requested in ALLOWED_TRANSITIONS[current]


class JobLifecycleTracker:
    """Owns job status and the append-only event log.

    Status is also kept in memory so transitions are checked even while the
    store is unavailable.
    """

    def __init__(self, store: JobStore):
        self.store = store
        self._statuses: dict[str, JobStatus] = {}

    def status_of(self, job_id: str) -> Optional[JobStatus]:
        return self._statuses.get(job_id)

    async def create_job(self, record: JobRecord) -> JobRecord:
        """Register a new job in ``pending`` state.

        Args:
            record: Job to create; its status is forced to pending

        Returns:
            The registered record
        """
        record.status = JobStatus.PENDING
        self._statuses[record.id] = JobStatus.PENDING
        try:
            await self.store.create_job(record)
        except PersistenceError as e:
            self._persist_failed("create_job", record.id, e)
        log_info(logger, "Job created", job_id=record.id, source_url=record.source_url)
        return record

    async def record_log(
        self,
        job_id: str,
        step: str,
        message: str,
        level: Union[LogLevel, str] = LogLevel.INFO,
        duration_ms: Optional[int] = None,
        metadata: Optional[dict] = None,
    ) -> bool:
        """Record a job event.

        Args:
            job_id: Job the event belongs to
            step: Step tag such as ``processing_start``
            message: Human-readable message
            level: Event severity
            duration_ms: Elapsed time in milliseconds, if measured
            metadata: Structured details

        Returns:
            True if the entry was written to the store
        """
        level = LogLevel(level)
        context = {"job_id": job_id, "step": step, "duration_ms": duration_ms}
        if metadata:
            context["details"] = metadata

        if level == LogLevel.ERROR:
            log_error(logger, message, **context)
        elif level == LogLevel.WARN:
            log_warning(logger, message, **context)
        else:
            log_info(logger, message, **context)

        if not should_persist(level, step):
            return False

        entry = LogEntry(
            job_id=job_id,
            step=step,
            message=message,
            level=level,
            timestamp=datetime.now(timezone.utc),
            duration_ms=duration_ms,
            metadata=metadata,
        )
        try:
            await self.store.append_log(entry)
        except PersistenceError as e:
            self._persist_failed("append_log", job_id, e)
            return False
        return True

    async def set_status(self, job_id: str, status: JobStatus, **fields: Any) -> None:
        """Move a job to a new status and emit a ``status_update`` entry.

        Args:
            job_id: Job to update
            status: Requested status
            **fields: Result fields stored with the status

        Raises:
            InvalidStatusTransition: If the lifecycle does not allow the change
        """
        current = self._statuses.get(job_id)
        if current is None:
            raise InvalidStatusTransition("unknown", status.value)
        if not can_transition(current, status):
            raise InvalidStatusTransition(current.value, status.value)

        self._statuses[job_id] = status
        try:
            await self.store.update_job(job_id, status, **fields)
        except PersistenceError as e:
            self._persist_failed("update_job", job_id, e)

        await self.record_log(
            job_id,
            "status_update",
            f"Status changed from {current.value} to {status.value}",
            metadata={"from": current.value, "to": status.value},
        )

    def _persist_failed(self, operation: str, job_id: str, error: PersistenceError) -> None:
        LOG_PERSIST_FAILURES_TOTAL.labels(operation=operation).inc()
        log_warning(
            logger,
            "Job store write failed, continuing",
            job_id=job_id,
            operation=operation,
            error=str(error),
        )
