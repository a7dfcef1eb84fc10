"""Errors raised by the transcoding pipeline.

Every error that can end a job derives from TranscodingError and carries the
log step under which its terminal error entry is recorded.
"""

from typing import Optional


class TranscodingError(Exception):
    """Base class for failures that end a transcoding job."""

    step: str = "processing_error"

    def __init__(self, message: str, step: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if step is not None:
            self.step = step


class ValidationError(TranscodingError):
    """Request or downloaded source file rejected before processing."""


class ProbeError(TranscodingError):
    """Media could not be opened, parsed or is unsupported."""

    step = "analysis_error"


class EncodeError(TranscodingError):
    """The encoder exited with a failure."""

    step = "encoding_error"

    def __init__(
        self,
        message: str,
        returncode: Optional[int] = None,
        stderr_tail: str = "",
    ):
        super().__init__(message)
        self.returncode = returncode
        self.stderr_tail = stderr_tail


class StorageError(TranscodingError):
    """Fetching the source or publishing the output failed.

    ``reason`` is one of ``timeout``, ``not_found``, ``forbidden`` or
    ``generic``.
    """

    step = "storage_error"

    def __init__(self, message: str, reason: str = "generic", step: Optional[str] = None):
        super().__init__(message, step=step)
        self.reason = reason


class PersistenceError(Exception):
    """The job store could not be written or read."""


class InvalidStatusTransition(Exception):
    """A job status change that the lifecycle does not allow."""

    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot move job from '{current}' to '{requested}'")
        self.current = current
        self.requested = requested
