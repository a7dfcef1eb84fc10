"""Pipeline coordinator.

Runs one transcoding request through fetch, validation, probing, parameter
selection, encoding and publishing. Each stage boundary is recorded through
the lifecycle tracker. The first failure fails the job and skips the rest,
and temporary files are removed on every exit path.
"""

import asyncio
import dataclasses
import logging
import os
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Optional

import pydantic

from vidpress.core.config import settings
from vidpress.core.logging import (
    clear_correlation_id,
    log_error,
    log_warning,
    set_correlation_id,
)
from vidpress.core.metrics import (
    ENCODES_IN_PROGRESS,
    JOB_DURATION_SECONDS,
    JOBS_TOTAL,
    STAGE_DURATION_SECONDS,
)
from vidpress.core.tracing import create_span, record_exception
from vidpress.modules.transcoding.exceptions import (
    InvalidStatusTransition,
    ProbeError,
    TranscodingError,
    ValidationError,
)
from vidpress.modules.transcoding.fetcher import SourceFetcher
from vidpress.modules.transcoding.ffmpeg import MediaToolkit, should_measure_loudness
from vidpress.modules.transcoding.files import SourceValidator, TempArtifacts
from vidpress.modules.transcoding.media import MediaProfile
from vidpress.modules.transcoding.models import JobStatus, LogLevel
from vidpress.modules.transcoding.publisher import OutputPublisher, PublishedArtifact
from vidpress.modules.transcoding.schemas import VideoProcessRequest, VideoProcessResponse
from vidpress.modules.transcoding.selector import SelectorConfig, select_encode_parameters
from vidpress.modules.transcoding.store import JobRecord
from vidpress.modules.transcoding.tracker import JobLifecycleTracker

logger = logging.getLogger(__name__)

UNEXPECTED_ERROR_MESSAGE = "Unexpected error while processing video"


@dataclass
class PipelineOutcome:
    """Result of handling one request."""
    response: VideoProcessResponse
    callback_queue: Optional[str] = None
    artifact_key: Optional[str] = None


def extract_request_payload(payload: Any) -> dict:
    """Unwrap a request that arrives as ``{"data": {...}}``."""
    if not isinstance(payload, dict):
        return {}
    data = payload.get("data")
    if isinstance(data, dict):
        return data
    return payload


def new_job_id() -> str:
    return f"video_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


def describe_validation_error(error: pydantic.ValidationError) -> str:
    parts = []
    for item in error.errors():
        field = ".".join(str(p) for p in item.get("loc", ())) or "request"
        parts.append(f"{field}: {item.get('msg', 'invalid value')}")
    return "Invalid request: " + "; ".join(parts)


def round_duration(seconds: float) -> int:
    """Round half up to whole seconds."""
    return int(seconds + 0.5)


class TranscodingPipeline:
    """Coordinates one transcoding job from request to response.

    At most ``max_concurrent_jobs`` jobs handled by one pipeline instance run
    their media stages at once; further jobs are created as ``pending`` and
    wait for a slot. The Celery worker builds a pipeline per task, so there
    the bound on concurrent encodes is the worker pool size
    (``worker_concurrency``), which uses the same setting.
    """

    def __init__(
        self,
        tracker: JobLifecycleTracker,
        toolkit: MediaToolkit,
        fetcher: SourceFetcher,
        publisher: OutputPublisher,
        validator: Optional[SourceValidator] = None,
        selector_config: Optional[SelectorConfig] = None,
        processing_dir: Optional[str] = None,
        max_concurrent_jobs: Optional[int] = None,
        loudness_max_duration: Optional[float] = None,
    ):
        self.tracker = tracker
        self.toolkit = toolkit
        self.fetcher = fetcher
        self.publisher = publisher
        self.validator = validator or SourceValidator()
        self.selector_config = selector_config or SelectorConfig.from_settings()
        self.processing_dir = processing_dir or settings.PROCESSING_DIR
        self.max_concurrent_jobs = max_concurrent_jobs or settings.MAX_CONCURRENT_JOBS
        self.loudness_max_duration = (
            loudness_max_duration
            if loudness_max_duration is not None
            else settings.LOUDNESS_MAX_DURATION_SECONDS
        )
        self._slots = asyncio.Semaphore(self.max_concurrent_jobs)

    async def handle(self, payload: Any) -> PipelineOutcome:
        """Handle one inbound request.

        Malformed requests are rejected before any job is created. Every
        other request yields a job that ends in ``done`` or ``failed``.

        Args:
            payload: Raw message body, bare or wrapped in ``data``

        Returns:
            PipelineOutcome with the response to publish
        """
        data = extract_request_payload(payload)
        callback_queue = data.get("callbackQueue") or data.get("callback_queue")
        if not isinstance(callback_queue, str) or not callback_queue.strip():
            callback_queue = None

        try:
            request = VideoProcessRequest.model_validate(data)
        except pydantic.ValidationError as e:
            message = describe_validation_error(e)
            log_warning(logger, "Rejected video processing request", error=message)
            JOBS_TOTAL.labels(status="rejected").inc()
            response = VideoProcessResponse(
                success=False,
                error=message,
                channel_id=str(data.get("channelId") or ""),
                server_id=str(data.get("serverId") or ""),
                uploader_id=str(data.get("uploaderId") or data.get("senderId") or ""),
            )
            return PipelineOutcome(response=response, callback_queue=callback_queue)

        job_id = new_job_id()
        set_correlation_id(job_id)
        try:
            return await self._run_job(job_id, request)
        finally:
            clear_correlation_id()

    async def _run_job(self, job_id: str, request: VideoProcessRequest) -> PipelineOutcome:
        await self.tracker.create_job(
            JobRecord(
                id=job_id,
                server_id=request.server_id,
                uploader_id=request.uploader_id,
                channel_id=request.channel_id,
                source_url=request.original_video_url,
                callback_queue=request.callback_queue,
            )
        )
        response = VideoProcessResponse(
            video_id=job_id,
            channel_id=request.channel_id,
            server_id=request.server_id,
            uploader_id=request.uploader_id,
        )
        outcome = PipelineOutcome(response=response, callback_queue=request.callback_queue)
        status_label = JobStatus.FAILED.value

        with create_span("transcode.job", {"job.id": job_id}):
            async with self._slots:
                ENCODES_IN_PROGRESS.inc()
                started = time.monotonic()
                try:
                    await self.tracker.set_status(job_id, JobStatus.PROCESSING)
                    await self.tracker.record_log(
                        job_id,
                        "processing_start",
                        "Video processing started",
                        metadata={"source_url": request.original_video_url},
                    )

                    artifact, duration = await self._process(job_id, request)

                    elapsed_ms = self._elapsed_ms(started)
                    await self.tracker.set_status(
                        job_id,
                        JobStatus.DONE,
                        result_url=artifact.url,
                        output_duration=duration,
                    )
                    await self.tracker.record_log(
                        job_id,
                        "processing_complete",
                        "Video processing completed",
                        duration_ms=elapsed_ms,
                        metadata={"output_duration": duration, "key": artifact.key},
                    )
                    response.success = True
                    response.processed_file_path = artifact.url
                    response.duration = round_duration(duration)
                    outcome.artifact_key = artifact.key
                    status_label = JobStatus.DONE.value
                except TranscodingError as e:
                    await self._fail(job_id, e.step, e.message, started, self._error_details(e))
                    response.error = e.message
                except InvalidStatusTransition:
                    raise
                except Exception as e:
                    log_error(logger, UNEXPECTED_ERROR_MESSAGE, exception=e, job_id=job_id)
                    record_exception(e)
                    await self._fail(
                        job_id,
                        "processing_error",
                        f"{UNEXPECTED_ERROR_MESSAGE}: {e}",
                        started,
                        {"exception": type(e).__name__},
                    )
                    response.error = UNEXPECTED_ERROR_MESSAGE
                finally:
                    ENCODES_IN_PROGRESS.dec()
                    JOB_DURATION_SECONDS.labels(status=status_label).observe(
                        time.monotonic() - started
                    )

        JOBS_TOTAL.labels(status=status_label).inc()
        return outcome

    async def _process(
        self,
        job_id: str,
        request: VideoProcessRequest,
    ) -> tuple[PublishedArtifact, float]:
        work_dir = os.path.join(self.processing_dir, job_id)

        with TempArtifacts(job_id) as artifacts:
            artifacts.register(work_dir)
            os.makedirs(work_dir, exist_ok=True)
            source_path = artifacts.register(os.path.join(work_dir, "source.mp4"))
            output_path = artifacts.register(os.path.join(work_dir, "output.mp4"))
            passlog_prefix = os.path.join(work_dir, "ffmpeg2pass")
            artifacts.register_glob(f"{passlog_prefix}*")

            with self._stage("fetch", job_id):
                input_size = await self.fetcher.fetch(request.original_video_url, source_path)
            await self.tracker.record_log(
                job_id,
                "download_complete",
                "Source video downloaded",
                metadata={"size_bytes": input_size},
            )

            if not await self.validator.validate(source_path, job_id, self.tracker):
                raise ValidationError("Downloaded source file is missing, empty or too large")

            with self._stage("probe", job_id):
                profile = await self.toolkit.probe(source_path)
                profile = await self._measure_loudness(job_id, source_path, profile)

            params = select_encode_parameters(
                profile, input_size=input_size, config=self.selector_config
            )
            await self.tracker.record_log(
                job_id,
                "parameters_selected",
                f"Encoding to {params.width}x{params.height} at {params.video_bitrate_kbps}k",
                metadata=params.as_log_metadata(),
            )

            with self._stage("encode", job_id):
                encode_started = time.monotonic()
                await self.toolkit.encode(
                    source_path,
                    output_path,
                    params,
                    passlog_prefix,
                    on_progress=self._progress_reporter(job_id),
                )
            await self.tracker.record_log(
                job_id,
                "encoding_complete",
                "Encoding finished",
                duration_ms=self._elapsed_ms(encode_started),
            )

            duration = await self._output_duration(job_id, output_path, profile)

            with self._stage("publish", job_id):
                artifact = await self.publisher.publish(output_path, job_id)

        return artifact, duration

    async def _measure_loudness(
        self,
        job_id: str,
        source_path: str,
        profile: MediaProfile,
    ) -> MediaProfile:
        """Attach loudness levels when they are worth measuring.

        Measurement failures only produce a warning.
        """
        if not should_measure_loudness(profile, self.loudness_max_duration):
            if profile.has_audio:
                await self.tracker.record_log(
                    job_id,
                    "audio_analysis_skipped",
                    f"Loudness measurement skipped for {profile.duration:.0f}s video",
                )
            return profile

        try:
            levels = await self.toolkit.measure_loudness(source_path)
        except ProbeError as e:
            await self.tracker.record_log(
                job_id,
                "audio_analysis_warning",
                f"Loudness measurement failed, continuing without it: {e.message}",
                LogLevel.WARN,
            )
            return profile

        await self.tracker.record_log(
            job_id,
            "audio_analysis",
            "Loudness measured",
            metadata={"max_volume": levels.max_volume, "mean_volume": levels.mean_volume},
        )
        return dataclasses.replace(profile, audio_levels=levels)

    async def _output_duration(
        self,
        job_id: str,
        output_path: str,
        source_profile: MediaProfile,
    ) -> float:
        try:
            return (await self.toolkit.probe(output_path)).duration
        except ProbeError as e:
            await self.tracker.record_log(
                job_id,
                "output_probe_warning",
                f"Could not read output duration, using source duration: {e.message}",
                LogLevel.WARN,
            )
            return source_profile.duration

    async def _fail(
        self,
        job_id: str,
        step: str,
        message: str,
        started: float,
        details: Optional[dict] = None,
    ) -> None:
        await self.tracker.set_status(job_id, JobStatus.FAILED, error_message=message)
        await self.tracker.record_log(
            job_id,
            step,
            message,
            LogLevel.ERROR,
            duration_ms=self._elapsed_ms(started),
            metadata=details,
        )

    @staticmethod
    def _error_details(error: TranscodingError) -> dict:
        details = {"error_type": type(error).__name__}
        reason = getattr(error, "reason", None)
        if reason:
            details["reason"] = reason
        returncode = getattr(error, "returncode", None)
        if returncode is not None:
            details["returncode"] = returncode
        stderr_tail = getattr(error, "stderr_tail", "")
        if stderr_tail:
            details["stderr_tail"] = stderr_tail
        return details

    def _progress_reporter(self, job_id: str):
        async def report(pass_number: int, pass_count: int, percent: int) -> None:
            await self.tracker.record_log(
                job_id,
                "encoding_progress",
                f"Encoder pass {pass_number}/{pass_count} at {percent}%",
                metadata={"pass": pass_number, "passes": pass_count, "percent": percent},
            )

        return report

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)

    @contextmanager
    def _stage(self, name: str, job_id: str):
        started = time.monotonic()
        with create_span(f"transcode.{name}", {"job.id": job_id}):
            try:
                yield
            finally:
                STAGE_DURATION_SECONDS.labels(stage=name).observe(time.monotonic() - started)
