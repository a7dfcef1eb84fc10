"""FFmpeg/ffprobe media toolkit.

The pipeline only talks to the MediaToolkit interface; FFmpegToolkit is the
implementation that runs the real binaries as subprocesses.
"""

import asyncio
import json
import logging
import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from vidpress.core.config import settings
from vidpress.modules.transcoding.exceptions import EncodeError, ProbeError
from vidpress.modules.transcoding.media import AudioLevels, EncodeParameters, MediaProfile

logger = logging.getLogger(__name__)

MAX_VOLUME_RE = re.compile(r"max_volume:\s*(-?\d+(?:\.\d+)?) dB")
MEAN_VOLUME_RE = re.compile(r"mean_volume:\s*(-?\d+(?:\.\d+)?) dB")

OUT_TIME_RE = re.compile(r"^(-)?(\d+):(\d{2}):(\d{2}(?:\.\d+)?)$")

STDERR_TAIL_LINES = 15

PROGRESS_STEP_PERCENT = 10

AUDIO_CODEC = "aac"
AUDIO_SAMPLE_RATE = 44100

# (pass number, pass count, percent of the pass encoded)
ProgressCallback = Callable[[int, int, int], Awaitable[None]]


@dataclass
class ProcessResult:
    """Outcome of one external tool invocation."""
    returncode: int
    stdout: str
    stderr: str

    def stderr_tail(self, lines: int = STDERR_TAIL_LINES) -> str:
        return "\n".join(self.stderr.strip().splitlines()[-lines:])


def _parse_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _is_attached_picture(stream: dict) -> bool:
    disposition = stream.get("disposition") or {}
    return bool(disposition.get("attached_pic"))


def parse_probe_output(data: dict) -> MediaProfile:
    """Build a MediaProfile from ffprobe's JSON report.

    Args:
        data: Parsed output of ``ffprobe -show_format -show_streams``

    Returns:
        MediaProfile without loudness data

    Raises:
        ProbeError: If there are no streams, no video, or no positive duration
    """
    streams = data.get("streams") or []
    if not streams:
        raise ProbeError("No streams found in source file")

    video_stream = next(
        (
            s for s in streams
            if s.get("codec_type") == "video" and not _is_attached_picture(s)
        ),
        None,
    )
    if video_stream is None:
        raise ProbeError("No video stream found")

    audio_stream = next((s for s in streams if s.get("codec_type") == "audio"), None)
    fmt = data.get("format") or {}

    duration = _parse_float(fmt.get("duration"))
    if duration is None:
        duration = _parse_float(video_stream.get("duration"))
    if duration is None or duration <= 0:
        raise ProbeError("Source file has no usable duration")

    width = int(video_stream.get("width") or 0)
    height = int(video_stream.get("height") or 0)
    if width <= 0 or height <= 0:
        raise ProbeError("Video stream has no frame size")

    bit_rate = _parse_float(fmt.get("bit_rate"))

    return MediaProfile(
        width=width,
        height=height,
        duration=duration,
        has_audio=audio_stream is not None,
        video_codec=video_stream.get("codec_name"),
        audio_codec=audio_stream.get("codec_name") if audio_stream else None,
        format_name=fmt.get("format_name"),
        bit_rate=int(bit_rate) if bit_rate is not None else None,
    )


def parse_volume_levels(stderr: str) -> Optional[AudioLevels]:
    """Extract volumedetect's max/mean volume from ffmpeg diagnostics."""
    max_match = MAX_VOLUME_RE.search(stderr)
    mean_match = MEAN_VOLUME_RE.search(stderr)
    if not max_match or not mean_match:
        return None
    return AudioLevels(
        max_volume=float(max_match.group(1)),
        mean_volume=float(mean_match.group(1)),
    )


def should_measure_loudness(profile: MediaProfile, max_duration: float) -> bool:
    """Loudness is only measured for clips with audio up to ``max_duration``."""
    return profile.has_audio and profile.duration <= max_duration


def parse_progress_seconds(line: str) -> Optional[float]:
    """Media time encoded so far, from one ``-progress`` key=value line.

    Returns None for other keys and for the placeholder values ffmpeg
    writes before the first frame ("N/A", negative times).
    """
    key, sep, value = line.strip().partition("=")
    if not sep:
        return None

    if key in ("out_time_us", "out_time_ms"):
        # Both keys carry microseconds
        micros = _parse_float(value)
        if micros is None or micros < 0:
            return None
        return micros / 1_000_000

    if key == "out_time":
        match = OUT_TIME_RE.match(value)
        if not match or match.group(1):
            return None
        hours, minutes, seconds = match.group(2, 3, 4)
        return int(hours) * 3600 + int(minutes) * 60 + float(seconds)

    return None


class ProgressThrottle:
    """Turns encoded media time into percentages, at most one per step."""

    def __init__(self, duration: float, step: int = PROGRESS_STEP_PERCENT):
        self.duration = duration
        self.step = step
        self._next = step

    def update(self, seconds: float) -> Optional[int]:
        """Percentage to report for ``seconds``, or None if the step is not reached."""
        if self.duration <= 0:
            return None
        percent = min(int(seconds * 100 / self.duration), 100)
        if percent < self._next:
            return None
        reported = percent - percent % self.step
        self._next = reported + self.step
        return reported


class MediaToolkit(ABC):
    """Narrow interface to the external analysis and encoding tool."""

    @abstractmethod
    async def probe(self, path: str) -> MediaProfile:
        """Read container and stream metadata.

        Raises:
            ProbeError: If the file cannot be opened or parsed
        """

    @abstractmethod
    async def measure_loudness(self, path: str) -> AudioLevels:
        """Run a decode-and-discard pass measuring audio volume.

        Raises:
            ProbeError: If the tool fails or the levels cannot be parsed
        """

    @abstractmethod
    async def encode(
        self,
        source: str,
        destination: str,
        params: EncodeParameters,
        passlog_prefix: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        """Encode ``source`` into ``destination``.

        ``on_progress`` is awaited as each pass crosses another step of its
        progress, when the source duration is known.

        Raises:
            EncodeError: If any encoder invocation fails
        """


class FFmpegToolkit(MediaToolkit):
    """MediaToolkit backed by the ffmpeg and ffprobe binaries."""

    def __init__(
        self,
        ffmpeg_path: Optional[str] = None,
        ffprobe_path: Optional[str] = None,
    ):
        """Initialize toolkit.

        Args:
            ffmpeg_path: Path to ffmpeg binary
            ffprobe_path: Path to ffprobe binary
        """
        self.ffmpeg_path = ffmpeg_path or settings.FFMPEG_PATH
        self.ffprobe_path = ffprobe_path or settings.FFPROBE_PATH

    # ------------------------------------------------------------------
    # Command builders
    # ------------------------------------------------------------------

    def build_probe_command(self, path: str) -> list[str]:
        return [
            self.ffprobe_path,
            "-v", "error",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            path,
        ]

    def build_loudness_command(self, path: str) -> list[str]:
        return [
            self.ffmpeg_path,
            "-hide_banner",
            "-nostats",
            "-i", path,
            "-vn", "-sn", "-dn",
            "-af", "volumedetect",
            "-f", "null",
            os.devnull,
        ]

    def _video_args(self, params: EncodeParameters) -> list[str]:
        return [
            "-map", "0:v:0",
            "-c:v", "libx264",
            "-preset", params.preset,
            "-profile:v", "high",
            "-level", "4.0",
            "-pix_fmt", "yuv420p",
            "-vf", ",".join(params.video_filters),
        ]

    def _rate_control_args(self, params: EncodeParameters) -> list[str]:
        return [
            "-maxrate", f"{params.video_bitrate_kbps}k",
            "-bufsize", f"{params.buffer_size_kbps}k",
        ]

    def _audio_args(self, params: EncodeParameters) -> list[str]:
        if not params.has_audio:
            return ["-an"]
        args = ["-map", "0:a:0"]
        if params.audio_filters:
            args.extend(["-af", ",".join(params.audio_filters)])
        args.extend([
            "-c:a", AUDIO_CODEC,
            "-ar", str(AUDIO_SAMPLE_RATE),
            "-b:a", params.audio_bitrate,
        ])
        return args

    def _output_args(self, destination: str) -> list[str]:
        return ["-movflags", "+faststart", "-f", "mp4", destination]

    def build_encode_commands(
        self,
        source: str,
        destination: str,
        params: EncodeParameters,
        passlog_prefix: str,
    ) -> list[list[str]]:
        """Build the encoder invocations for the configured strategy.

        Single-pass uses a constant rate factor under a bitrate ceiling.
        Two-pass runs a statistics-only pass with its output discarded,
        then encodes against an explicit bitrate target.

        Args:
            source: Input file path
            destination: Output file path
            params: Selected encode parameters
            passlog_prefix: Prefix for the rate-control statistics files

        Returns:
            One command per encoder invocation, in execution order
        """
        head = [
            self.ffmpeg_path,
            "-hide_banner",
            "-nostats",
            "-loglevel", "error",
            "-progress", "pipe:1",
            "-y",
            "-i", source,
        ]

        if params.passes == 1:
            return [
                head
                + self._video_args(params)
                + ["-crf", str(params.crf)]
                + self._rate_control_args(params)
                + self._audio_args(params)
                + self._output_args(destination)
            ]

        target = ["-b:v", f"{params.video_bitrate_kbps}k"] + self._rate_control_args(params)
        analysis_pass = (
            head
            + self._video_args(params)
            + target
            + ["-pass", "1", "-passlogfile", passlog_prefix]
            + ["-an", "-f", "null", os.devnull]
        )
        final_pass = (
            head
            + self._video_args(params)
            + target
            + ["-pass", "2", "-passlogfile", passlog_prefix]
            + self._audio_args(params)
            + self._output_args(destination)
        )
        return [analysis_pass, final_pass]

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _run(
        self,
        cmd: list[str],
        on_stdout_line: Optional[Callable[[str], Awaitable[None]]] = None,
    ) -> ProcessResult:
        """Run a command to completion, killing it if the task is cancelled.

        With ``on_stdout_line`` the standard output is streamed line by line
        to the handler instead of being collected.
        """
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            if on_stdout_line is None:
                stdout, stderr = await process.communicate()
            else:
                _, stderr = await asyncio.gather(
                    self._follow(process.stdout, on_stdout_line),
                    process.stderr.read(),
                )
                await process.wait()
                stdout = b""
        except BaseException:
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        return ProcessResult(
            returncode=process.returncode,
            stdout=stdout.decode("utf-8", errors="ignore"),
            stderr=stderr.decode("utf-8", errors="ignore"),
        )

    @staticmethod
    async def _follow(
        stream: asyncio.StreamReader,
        on_line: Callable[[str], Awaitable[None]],
    ) -> None:
        async for raw in stream:
            await on_line(raw.decode("utf-8", errors="ignore"))

    @staticmethod
    def _progress_handler(
        on_progress: ProgressCallback,
        pass_number: int,
        pass_count: int,
        duration: float,
    ) -> Callable[[str], Awaitable[None]]:
        throttle = ProgressThrottle(duration)

        async def handle(line: str) -> None:
            seconds = parse_progress_seconds(line)
            if seconds is None:
                return
            percent = throttle.update(seconds)
            if percent is not None:
                await on_progress(pass_number, pass_count, percent)

        return handle

    async def probe(self, path: str) -> MediaProfile:
        try:
            result = await self._run(self.build_probe_command(path))
        except OSError as e:
            raise ProbeError(f"Could not start ffprobe: {e}") from e

        if result.returncode != 0:
            raise ProbeError(f"ffprobe failed: {result.stderr_tail() or 'unreadable media'}")

        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise ProbeError(f"ffprobe returned invalid JSON: {e}") from e

        return parse_probe_output(data)

    async def measure_loudness(self, path: str) -> AudioLevels:
        try:
            result = await self._run(self.build_loudness_command(path))
        except OSError as e:
            raise ProbeError(f"Could not start ffmpeg: {e}") from e

        if result.returncode != 0:
            raise ProbeError(f"Audio analysis failed: {result.stderr_tail()}")

        levels = parse_volume_levels(result.stderr)
        if levels is None:
            raise ProbeError("Audio analysis produced no volume levels")
        return levels

    async def encode(
        self,
        source: str,
        destination: str,
        params: EncodeParameters,
        passlog_prefix: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        commands = self.build_encode_commands(source, destination, params, passlog_prefix)

        for pass_number, cmd in enumerate(commands, start=1):
            logger.info(
                "Starting encoder pass %d/%d",
                pass_number,
                len(commands),
                extra={"command": " ".join(cmd)[:300]},
            )
            handler = None
            if on_progress is not None and params.source_duration:
                handler = self._progress_handler(
                    on_progress, pass_number, len(commands), params.source_duration
                )
            try:
                result = await self._run(cmd, on_stdout_line=handler)
            except OSError as e:
                raise EncodeError(f"Could not start ffmpeg: {e}") from e

            if result.returncode != 0:
                raise EncodeError(
                    f"Encoder pass {pass_number} failed with exit code {result.returncode}",
                    returncode=result.returncode,
                    stderr_tail=result.stderr_tail(),
                )
