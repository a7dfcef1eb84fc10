"""Source file validation and temporary artifact cleanup."""

import glob
import logging
import os
import shutil
import stat
from typing import Optional

from vidpress.core.config import settings
from vidpress.core.logging import log_info, log_warning
from vidpress.modules.transcoding.models import LogLevel
from vidpress.modules.transcoding.tracker import JobLifecycleTracker

logger = logging.getLogger(__name__)


def check_source_file(path: str, min_bytes: int, max_bytes: int) -> Optional[str]:
    """Apply the source file rules in order.

    Args:
        path: Local file path
        min_bytes: Smallest acceptable size
        max_bytes: Largest acceptable size

    Returns:
        None if the file passes, otherwise the reason it was rejected

    Raises:
        OSError: If the file exists but cannot be stat'ed
    """
    if not os.path.lexists(path):
        return "Source file does not exist"

    st = os.stat(path)
    if not stat.S_ISREG(st.st_mode):
        return "Source path is not a regular file"
    if st.st_size < min_bytes:
        return f"Source file is too small ({st.st_size} bytes, minimum {min_bytes})"
    if st.st_size > max_bytes:
        return f"Source file is too large ({st.st_size} bytes, maximum {max_bytes})"
    return None


class SourceValidator:
    """Pre-flight checks on a downloaded source file."""

    def __init__(
        self,
        min_bytes: Optional[int] = None,
        max_bytes: Optional[int] = None,
    ):
        self.min_bytes = min_bytes if min_bytes is not None else settings.MIN_SOURCE_BYTES
        self.max_bytes = max_bytes if max_bytes is not None else settings.MAX_SOURCE_BYTES

    async def validate(self, path: str, job_id: str, tracker: JobLifecycleTracker) -> bool:
        """Validate a source file, writing exactly one log entry.

        Args:
            path: Local file path
            job_id: Job being validated
            tracker: Lifecycle tracker receiving the outcome

        Returns:
            True if the file may be processed
        """
        try:
            reason = check_source_file(path, self.min_bytes, self.max_bytes)
        except OSError as e:
            await tracker.record_log(
                job_id,
                "validation_error",
                f"Could not inspect source file: {e}",
                LogLevel.WARN,
            )
            return False

        if reason is not None:
            await tracker.record_log(job_id, "validation_failed", reason, LogLevel.WARN)
            return False

        await tracker.record_log(
            job_id,
            "validation_passed",
            "Source file passed validation",
            metadata={"size_bytes": os.path.getsize(path)},
        )
        return True


class TempArtifacts:
    """Scope that removes every registered temporary path on exit.

    Paths are registered when they are created; cleanup runs whether the
    block exits normally or with an exception. Removal failures are logged
    and never raised.

    Example:
        with TempArtifacts(job_id) as artifacts:
            source = artifacts.register(os.path.join(work_dir, "input.mp4"))
            ...
    """

    def __init__(self, job_id: Optional[str] = None):
        self.job_id = job_id
        self._paths: list[str] = []
        self._patterns: list[str] = []

    def register(self, path: str) -> str:
        """Track a file or directory for removal and return it."""
        if path not in self._paths:
            self._paths.append(path)
        return path

    def register_glob(self, pattern: str) -> str:
        """Track every path matching ``pattern`` at cleanup time."""
        if pattern not in self._patterns:
            self._patterns.append(pattern)
        return pattern

    def __enter__(self) -> "TempArtifacts":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.cleanup()
        return False

    def _expand(self) -> list[str]:
        paths = list(self._paths)
        for pattern in self._patterns:
            for match in sorted(glob.glob(pattern)):
                if match not in paths:
                    paths.append(match)
        # Files before the directories that contain them
        return sorted(paths, key=lambda p: p.count(os.sep), reverse=True)

    def cleanup(self) -> list[str]:
        """Remove all tracked paths that exist.

        Returns:
            Paths that were removed
        """
        removed = []
        for path in self._expand():
            if not os.path.lexists(path):
                continue
            try:
                if os.path.isdir(path) and not os.path.islink(path):
                    shutil.rmtree(path)
                else:
                    os.remove(path)
                removed.append(path)
            except OSError as e:
                log_warning(
                    logger,
                    "Failed to remove temporary file",
                    job_id=self.job_id,
                    path=path,
                    error=str(e),
                )

        if removed:
            log_info(logger, "Temporary files removed", job_id=self.job_id, count=len(removed))
        return removed
