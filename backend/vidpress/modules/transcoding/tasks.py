"""Celery tasks for the transcoding worker."""

import asyncio
import logging

from celery.signals import worker_process_init

from vidpress.core.celery_app import celery_app
from vidpress.core.config import settings
from vidpress.core.database import dispose_engine, init_models
from vidpress.core.tracing import setup_tracing
from vidpress.modules.transcoding.fetcher import SourceFetcher
from vidpress.modules.transcoding.ffmpeg import FFmpegToolkit
from vidpress.modules.transcoding.messaging import CallbackPublisher
from vidpress.modules.transcoding.publisher import OutputPublisher
from vidpress.modules.transcoding.service import PipelineOutcome, TranscodingPipeline
from vidpress.modules.transcoding.store import DatabaseJobStore
from vidpress.modules.transcoding.tracker import JobLifecycleTracker

logger = logging.getLogger(__name__)


def build_pipeline() -> TranscodingPipeline:
    """Wire the pipeline to the real collaborators.

    Each task runs in its own event loop, so the pipeline is built per task
    and concurrency across jobs is bounded by the Celery pool size.
    """
    return TranscodingPipeline(
        tracker=JobLifecycleTracker(DatabaseJobStore()),
        toolkit=FFmpegToolkit(),
        fetcher=SourceFetcher(),
        publisher=OutputPublisher(),
    )


async def _handle_request(payload: dict) -> PipelineOutcome:
    try:
        return await build_pipeline().handle(payload)
    finally:
        # Pooled connections belong to this task's event loop
        await dispose_engine()


@worker_process_init.connect
def _prepare_worker_process(**kwargs) -> None:
    """Create tables and tracing in each worker process."""
    setup_tracing(
        service_name=settings.PROJECT_NAME,
        service_version=settings.VERSION,
        enable_console_export=settings.TRACING_CONSOLE_EXPORT,
    )

    async def _init():
        try:
            await init_models()
        finally:
            await dispose_engine()

    asyncio.run(_init())


@celery_app.task(name="video.processing", bind=True)
def process_video_request(self, payload: dict) -> dict:
    """Transcode one requested video and reply to its callback queue.

    There are no retries: every failure is reported to the caller once.

    Args:
        payload: Request body, bare or wrapped in ``data``

    Returns:
        dict: The published response
    """
    outcome = asyncio.run(_handle_request(payload))
    body = outcome.response.to_message()

    if outcome.callback_queue:
        CallbackPublisher().publish(outcome.callback_queue, body)
    else:
        logger.warning(
            "Request has no callback queue, response not published",
            extra={"video_id": body["videoId"], "task_id": self.request.id},
        )

    if outcome.artifact_key and settings.DELETE_OUTPUT_AFTER_TTL:
        expire_output.apply_async(
            args=[outcome.artifact_key],
            countdown=settings.SIGNED_URL_TTL_SECONDS,
        )

    return body


@celery_app.task(name="video.expire_output")
def expire_output(key: str) -> bool:
    """Delete a published output after its signed URL has expired.

    Args:
        key: Storage key of the output

    Returns:
        bool: Whether the object was deleted
    """
    return asyncio.run(OutputPublisher().expire(key))
