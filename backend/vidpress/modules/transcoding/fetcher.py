"""Source download collaborator."""

import logging
import os
from typing import Optional

import httpx

from vidpress.core.config import settings
from vidpress.modules.transcoding.exceptions import StorageError, ValidationError

logger = logging.getLogger(__name__)

DOWNLOAD_STEP = "download_error"
CHUNK_SIZE = 1024 * 1024


def classify_fetch_error(error: Exception) -> StorageError:
    """Map a download failure to a StorageError with a user-facing message.

    Args:
        error: Exception raised while downloading

    Returns:
        StorageError with ``reason`` set to timeout, not_found, forbidden or generic
    """
    if isinstance(error, httpx.TimeoutException):
        return StorageError(
            "Timed out while downloading the source video",
            reason="timeout",
            step=DOWNLOAD_STEP,
        )

    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        if status == 404:
            return StorageError(
                "Source video was not found", reason="not_found", step=DOWNLOAD_STEP
            )
        if status in (401, 403):
            return StorageError(
                "Access to the source video was denied", reason="forbidden", step=DOWNLOAD_STEP
            )
        return StorageError(
            f"Source download failed with HTTP status {status}", step=DOWNLOAD_STEP
        )

    return StorageError(f"Could not download the source video: {error}", step=DOWNLOAD_STEP)


class SourceFetcher:
    """Streams a source video to local disk with a timeout and size limit."""

    def __init__(
        self,
        timeout: Optional[float] = None,
        max_bytes: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize fetcher.

        Args:
            timeout: Overall per-operation timeout in seconds
            max_bytes: Largest body accepted
            transport: Optional transport, used in tests
        """
        self.timeout = timeout if timeout is not None else settings.DOWNLOAD_TIMEOUT_SECONDS
        self.max_bytes = max_bytes if max_bytes is not None else settings.DOWNLOAD_MAX_BYTES
        self._transport = transport

    async def fetch(self, url: str, destination: str) -> int:
        """Download ``url`` into ``destination``.

        Args:
            url: http(s) URL of the source
            destination: Local path to write

        Returns:
            Number of bytes written

        Raises:
            StorageError: On network or HTTP failures
            ValidationError: If the body exceeds the size limit
        """
        written = 0
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                async with client.stream("GET", url) as response:
                    response.raise_for_status()

                    declared = response.headers.get("content-length")
                    if declared and declared.isdigit() and int(declared) > self.max_bytes:
                        raise ValidationError(
                            f"Source video is larger than the {self.max_bytes} byte limit"
                        )

                    os.makedirs(os.path.dirname(destination) or ".", exist_ok=True)
                    with open(destination, "wb") as f:
                        async for chunk in response.aiter_bytes(CHUNK_SIZE):
                            written += len(chunk)
                            if written > self.max_bytes:
                                raise ValidationError(
                                    f"Source video is larger than the {self.max_bytes} byte limit"
                                )
                            f.write(chunk)
        except (httpx.HTTPError, OSError) as e:
            raise classify_fetch_error(e) from e

        logger.info(
            "Source downloaded",
            extra={"url": url, "destination": destination, "bytes": written},
        )
        return written
