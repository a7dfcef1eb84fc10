"""Tests for the source fetcher and download error classification."""

import httpx
import pytest

from vidpress.modules.transcoding.exceptions import StorageError, ValidationError
from vidpress.modules.transcoding.fetcher import SourceFetcher, classify_fetch_error


URL = "https://cdn.example.com/uploads/clip.mp4"


def fetcher_for(handler, max_bytes: int = 1024 * 1024) -> SourceFetcher:
    return SourceFetcher(timeout=5.0, max_bytes=max_bytes, transport=httpx.MockTransport(handler))


class TestSourceFetcher:

    @pytest.mark.asyncio
    async def test_downloads_body_to_destination(self, tmp_path) -> None:
        body = b"\x00\x00\x00\x18ftypmp42" + b"\x01" * 5000
        fetcher = fetcher_for(lambda request: httpx.Response(200, content=body))
        destination = tmp_path / "source.mp4"

        written = await fetcher.fetch(URL, str(destination))

        assert written == len(body)
        assert destination.read_bytes() == body

    @pytest.mark.asyncio
    async def test_declared_size_over_limit_is_rejected(self, tmp_path) -> None:
        fetcher = fetcher_for(
            lambda request: httpx.Response(200, content=b"\x00" * 2048),
            max_bytes=1024,
        )
        with pytest.raises(ValidationError):
            await fetcher.fetch(URL, str(tmp_path / "source.mp4"))

    @pytest.mark.asyncio
    async def test_streamed_size_over_limit_is_rejected(self, tmp_path) -> None:
        async def chunks():
            for _ in range(4):
                yield b"\x00" * 512

        fetcher = fetcher_for(
            lambda request: httpx.Response(200, content=chunks()),
            max_bytes=1024,
        )
        with pytest.raises(ValidationError):
            await fetcher.fetch(URL, str(tmp_path / "source.mp4"))

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status, reason",
        [(404, "not_found"), (403, "forbidden"), (401, "forbidden"), (500, "generic")],
    )
    async def test_http_errors_are_classified(self, tmp_path, status: int, reason: str) -> None:
        fetcher = fetcher_for(lambda request: httpx.Response(status))

        with pytest.raises(StorageError) as exc_info:
            await fetcher.fetch(URL, str(tmp_path / "source.mp4"))

        assert exc_info.value.reason == reason
        assert exc_info.value.step == "download_error"

    @pytest.mark.asyncio
    async def test_timeout_is_classified(self, tmp_path) -> None:
        def handler(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        with pytest.raises(StorageError) as exc_info:
            await fetcher_for(handler).fetch(URL, str(tmp_path / "source.mp4"))

        assert exc_info.value.reason == "timeout"

    @pytest.mark.asyncio
    async def test_connection_error_is_generic(self, tmp_path) -> None:
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(StorageError) as exc_info:
            await fetcher_for(handler).fetch(URL, str(tmp_path / "source.mp4"))

        assert exc_info.value.reason == "generic"


class TestClassifyFetchError:

    def test_messages_are_user_facing(self) -> None:
        request = httpx.Request("GET", URL)
        not_found = httpx.HTTPStatusError(
            "404", request=request, response=httpx.Response(404, request=request)
        )

        assert classify_fetch_error(not_found).message == "Source video was not found"
        assert "Timed out" in classify_fetch_error(httpx.ConnectTimeout("slow")).message

    def test_local_write_failure_is_generic(self) -> None:
        error = classify_fetch_error(OSError(28, "No space left on device"))
        assert error.reason == "generic"
