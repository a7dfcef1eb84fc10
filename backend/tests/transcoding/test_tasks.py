"""Tests for the Celery task wiring."""

from unittest.mock import MagicMock

import pytest

from fakes import VALID_REQUEST, FakeToolkit
from vidpress.core.celery_app import celery_app
from vidpress.core.config import settings
from vidpress.modules.transcoding import tasks
from vidpress.modules.transcoding.exceptions import EncodeError


@pytest.fixture
def wired(monkeypatch, make_pipeline):
    """Run the task against fakes and capture what it sends out."""
    state = {"toolkit": FakeToolkit()}
    published = []
    scheduled = []

    monkeypatch.setattr(tasks, "build_pipeline", lambda: make_pipeline(toolkit=state["toolkit"]))

    publisher = MagicMock()
    publisher.publish.side_effect = lambda queue, body: published.append((queue, body)) or True
    monkeypatch.setattr(tasks, "CallbackPublisher", lambda: publisher)
    monkeypatch.setattr(
        tasks.expire_output,
        "apply_async",
        lambda args, countdown: scheduled.append((args, countdown)),
    )
    monkeypatch.setattr(tasks.settings, "DELETE_OUTPUT_AFTER_TTL", True)
    monkeypatch.setattr(tasks.settings, "SIGNED_URL_TTL_SECONDS", 600)
    return state, published, scheduled


class TestProcessVideoRequest:

    def test_success_replies_and_schedules_expiry(self, wired) -> None:
        _, published, scheduled = wired

        body = tasks.process_video_request(VALID_REQUEST)

        assert body["success"] is True
        assert published == [("video.processed.server-1", body)]
        assert len(scheduled) == 1
        args, countdown = scheduled[0]
        assert args[0].endswith("_processed_video.mp4")
        assert countdown == 600

    def test_failure_replies_without_expiry(self, wired) -> None:
        state, published, scheduled = wired
        state["toolkit"] = FakeToolkit(encode_error=EncodeError("Encoder pass 1 failed", returncode=1))

        body = tasks.process_video_request({"data": VALID_REQUEST})

        assert body["success"] is False
        assert body["error"] == "Encoder pass 1 failed"
        assert published[0][0] == "video.processed.server-1"
        assert scheduled == []

    def test_rejected_request_still_replies(self, wired) -> None:
        _, published, _ = wired

        body = tasks.process_video_request({**VALID_REQUEST, "originalVideoUrl": "not-a-url"})

        assert body["success"] is False
        assert published == [("video.processed.server-1", body)]

    def test_no_callback_queue_means_no_reply(self, wired) -> None:
        _, published, _ = wired
        payload = {k: v for k, v in VALID_REQUEST.items() if k != "callbackQueue"}

        body = tasks.process_video_request(payload)

        assert body["success"] is False
        assert published == []

    def test_task_names(self) -> None:
        assert tasks.process_video_request.name == "video.processing"
        assert tasks.expire_output.name == "video.expire_output"


class TestWorkerConfiguration:
    """Broker settings that decide where tasks go and how often they run."""

    def test_every_task_routes_to_a_consumed_queue(self) -> None:
        consumed = set(celery_app.amqp.queues.consume_from)

        for name in ("video.processing", "video.expire_output"):
            route = celery_app.amqp.router.route({}, name)
            assert route["queue"].name in consumed

    def test_expiry_has_its_own_queue(self) -> None:
        route = celery_app.amqp.router.route({}, "video.expire_output")
        assert route["queue"].name == settings.VIDEO_EXPIRY_QUEUE
        assert route["queue"].name != settings.VIDEO_REQUEST_QUEUE

    def test_requests_are_not_redelivered_after_worker_loss(self) -> None:
        assert celery_app.conf.task_acks_late is False
        assert not celery_app.conf.task_reject_on_worker_lost
        assert tasks.process_video_request.acks_late is False
        assert not tasks.process_video_request.reject_on_worker_lost

    def test_worker_pool_bounds_concurrent_jobs(self) -> None:
        assert celery_app.conf.worker_concurrency == settings.MAX_CONCURRENT_JOBS
        assert celery_app.conf.worker_prefetch_multiplier == 1
