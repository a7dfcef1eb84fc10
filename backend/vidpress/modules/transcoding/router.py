"""Read-only API for transcoding jobs and their logs."""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from vidpress.core.database import get_session
from vidpress.modules.transcoding.repository import (
    TranscodeJobRepository,
    TranscodeLogRepository,
)
from vidpress.modules.transcoding.schemas import (
    TranscodeJobResponse,
    TranscodeLogListResponse,
    TranscodeLogResponse,
)

router = APIRouter(prefix="/transcode", tags=["transcode"])


@router.get("/jobs/{job_id}", response_model=TranscodeJobResponse)
async def get_job(
    job_id: str,
    session: AsyncSession = Depends(get_session),
) -> TranscodeJobResponse:
    """Get a transcoding job by ID."""
    job = await TranscodeJobRepository(session).get_by_id(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return TranscodeJobResponse.model_validate(job)


@router.get("/jobs/{job_id}/logs", response_model=TranscodeLogListResponse)
async def get_job_logs(
    job_id: str,
    limit: int = Query(500, ge=1, le=1000, description="Maximum entries to return"),
    session: AsyncSession = Depends(get_session),
) -> TranscodeLogListResponse:
    """Get the persisted log entries of a job, oldest first."""
    job = await TranscodeJobRepository(session).get_by_id(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")

    entries = await TranscodeLogRepository(session).list_for_job(job_id, limit=limit)
    return TranscodeLogListResponse(
        job_id=job_id,
        entries=[TranscodeLogResponse.model_validate(e) for e in entries],
        total=len(entries),
    )
