"""Tests for output publishing and response delivery."""

from unittest.mock import MagicMock

import boto3
import pytest
from botocore.stub import ANY, Stubber
from kombu.exceptions import OperationalError

from vidpress.core.storage import S3Storage, Storage, StorageConfig, StorageService
from vidpress.modules.transcoding.exceptions import StorageError
from vidpress.modules.transcoding.messaging import CallbackPublisher
from vidpress.modules.transcoding.publisher import OutputPublisher, build_output_key


def local_publisher(root) -> OutputPublisher:
    storage = Storage(StorageConfig(backend="local", local_path=str(root)))
    return OutputPublisher(storage=StorageService(storage), url_ttl_seconds=600, key_prefix="uploads")


def write_output(tmp_path) -> str:
    path = tmp_path / "output.mp4"
    path.write_bytes(b"\x00" * 4096)
    return str(path)


class TestBuildOutputKey:

    def test_key_layout(self) -> None:
        key = build_output_key("video_1", prefix="uploads", timestamp_ms=1700000000000)
        assert key == "uploads/1700000000000_video_1_processed_video.mp4"

    def test_prefix_slashes_are_normalized(self) -> None:
        key = build_output_key("video_1", prefix="/uploads/", timestamp_ms=1)
        assert key == "uploads/1_video_1_processed_video.mp4"

    def test_empty_prefix(self) -> None:
        assert build_output_key("video_1", prefix="", timestamp_ms=1) == "1_video_1_processed_video.mp4"


class TestOutputPublisher:

    @pytest.mark.asyncio
    async def test_publish_to_local_storage(self, tmp_path) -> None:
        root = tmp_path / "storage"
        publisher = local_publisher(root)

        artifact = await publisher.publish(write_output(tmp_path), "video_1")

        assert artifact.key.startswith("uploads/")
        assert artifact.key.endswith("_video_1_processed_video.mp4")
        assert artifact.url.startswith("file://")
        assert (root / artifact.key).stat().st_size == 4096

    @pytest.mark.asyncio
    async def test_missing_output_is_an_upload_error(self, tmp_path) -> None:
        publisher = local_publisher(tmp_path / "storage")

        with pytest.raises(StorageError) as exc_info:
            await publisher.publish(str(tmp_path / "missing.mp4"), "video_1")

        assert exc_info.value.step == "upload_error"

    @pytest.mark.asyncio
    async def test_expire_deletes_object(self, tmp_path) -> None:
        root = tmp_path / "storage"
        publisher = local_publisher(root)
        artifact = await publisher.publish(write_output(tmp_path), "video_1")

        assert await publisher.expire(artifact.key) is True
        assert not (root / artifact.key).exists()
        assert await publisher.expire(artifact.key) is False

    @pytest.mark.asyncio
    async def test_publish_to_s3_returns_presigned_url(self, tmp_path) -> None:
        backend = S3Storage(StorageConfig(backend="s3", bucket="vidpress-out", region="us-east-1"))
        backend._client = boto3.client(
            "s3",
            region_name="us-east-1",
            aws_access_key_id="testing",
            aws_secret_access_key="testing",
        )
        storage = Storage(StorageConfig(backend="local", local_path=str(tmp_path / "unused")))
        storage._backend = backend
        publisher = OutputPublisher(storage=StorageService(storage), url_ttl_seconds=600)

        with Stubber(backend._client) as stubber:
            stubber.add_response(
                "put_object",
                {"ETag": '"5d41402abc4b2a76b9719d911017c592"'},
                {"Bucket": "vidpress-out", "Key": ANY, "Body": ANY, "ContentType": "video/mp4"},
            )
            artifact = await publisher.publish(write_output(tmp_path), "video_1")

        assert "vidpress-out" in artifact.url
        assert "X-Amz-Expires=600" in artifact.url
        assert artifact.key in artifact.url


class TestCallbackPublisher:

    def make_app(self):
        app = MagicMock()
        producer = MagicMock()
        app.producer_or_acquire.return_value.__enter__.return_value = producer
        return app, producer

    def test_publishes_to_callback_routing_key(self) -> None:
        app, producer = self.make_app()
        body = {"videoId": "video_1", "success": True}

        assert CallbackPublisher(app=app).publish("video.processed.server-1", body) is True

        producer.publish.assert_called_once()
        args, kwargs = producer.publish.call_args
        assert args[0] == body
        assert kwargs["routing_key"] == "video.processed.server-1"
        assert kwargs["exchange"].name == "video_exchange"
        assert kwargs["retry"] is False

    def test_broker_failure_is_reported_not_raised(self) -> None:
        app, producer = self.make_app()
        producer.publish.side_effect = OperationalError("connection refused")

        assert CallbackPublisher(app=app).publish("q", {"videoId": "video_1"}) is False
