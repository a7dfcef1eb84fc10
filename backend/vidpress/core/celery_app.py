"""Celery application configuration."""

from celery import Celery
from celery.signals import setup_logging as celery_setup_logging
from kombu import Exchange, Queue

from vidpress.core.config import settings
from vidpress.core.logging import setup_logging

celery_app = Celery(
    "vidpress",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["vidpress.modules.transcoding.tasks"],
)

video_exchange = Exchange(settings.VIDEO_EXCHANGE, type="topic", durable=True)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_ignore_result=settings.CELERY_RESULT_BACKEND is None,
    worker_prefetch_multiplier=1,
    worker_concurrency=settings.MAX_CONCURRENT_JOBS,
    # Requests are acknowledged on receipt. A worker lost mid-job drops the
    # message instead of redelivering it: jobs are never run twice.
    task_acks_late=False,
    task_reject_on_worker_lost=False,
    task_queues=[
        Queue(
            settings.VIDEO_REQUEST_QUEUE,
            exchange=video_exchange,
            routing_key=settings.VIDEO_REQUEST_ROUTING_KEY,
        ),
        Queue(
            settings.VIDEO_EXPIRY_QUEUE,
            exchange=video_exchange,
            routing_key=settings.VIDEO_EXPIRY_ROUTING_KEY,
        ),
    ],
    task_routes={
        "video.processing": {
            "queue": settings.VIDEO_REQUEST_QUEUE,
            "exchange": settings.VIDEO_EXCHANGE,
            "routing_key": settings.VIDEO_REQUEST_ROUTING_KEY,
        },
        "video.expire_output": {
            "queue": settings.VIDEO_EXPIRY_QUEUE,
            "exchange": settings.VIDEO_EXCHANGE,
            "routing_key": settings.VIDEO_EXPIRY_ROUTING_KEY,
        },
    },
)


@celery_setup_logging.connect
def _configure_worker_logging(**kwargs) -> None:
    """Use the application's structured logging in worker processes."""
    setup_logging(
        level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL,
        json_format=settings.LOG_JSON,
    )
