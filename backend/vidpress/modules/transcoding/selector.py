"""Encode parameter selection.

Maps what the prober learned about a source (duration, resolution, loudness,
file size) to the target resolution, bitrates and filter chains. Everything
here is pure and deterministic.

Table choices:

* Longer videos get a smaller bounding box, trading resolution for output
  size and encode time.
* Small originals may be upscaled up to 2x, large ones only up to 1.2x.
* Output dimensions are floored to multiples of 8 for the encoder's
  macroblock layout.
* The video bitrate comes from a total size budget spread over the
  duration, minus audio, clamped into a per-resolution window.
"""

import math
from dataclasses import dataclass
from typing import Optional

from vidpress.core.config import settings
from vidpress.modules.transcoding.exceptions import ProbeError
from vidpress.modules.transcoding.media import AudioLevels, EncodeParameters, MediaProfile


ALIGNMENT = 8

# (duration strictly above, max width, max height), checked in order
DURATION_CEILINGS: tuple[tuple[float, int, int], ...] = (
    (600.0, 1280, 720),
    (300.0, 1600, 900),
)
DEFAULT_CEILING = (1920, 1080)

# (original pixel count strictly below, max upscale factor), checked in order
UPSCALE_CAPS: tuple[tuple[int, float], ...] = (
    (480 * 360, 2.0),
    (640 * 480, 1.8),
    (1280 * 720, 1.5),
)
DEFAULT_UPSCALE_CAP = 1.2

# (target pixel count at most, audio bitrate), checked in order
AUDIO_BITRATE_TIERS: tuple[tuple[int, str], ...] = (
    (640 * 480, "64k"),
    (1280 * 720, "96k"),
)
DEFAULT_AUDIO_BITRATE = "128k"

SHARPEN_SCALE_THRESHOLD = 1.3

LOUDNORM_FILTER = "loudnorm=I=-16:TP=-1.5:LRA=11"


@dataclass(frozen=True)
class BitrateWindow:
    """Allowed video bitrate range for frames up to ``max_pixels``."""
    max_pixels: Optional[int]
    min_kbps: int
    max_kbps: int

    def clamp(self, kbps: int) -> int:
        return max(self.min_kbps, min(kbps, self.max_kbps))


BITRATE_WINDOWS: tuple[BitrateWindow, ...] = (
    BitrateWindow(max_pixels=640 * 480, min_kbps=240, max_kbps=800),
    BitrateWindow(max_pixels=854 * 480, min_kbps=250, max_kbps=1000),
    BitrateWindow(max_pixels=1280 * 720, min_kbps=250, max_kbps=1500),
    BitrateWindow(max_pixels=None, min_kbps=250, max_kbps=2200),
)


@dataclass(frozen=True)
class SelectorConfig:
    """Tunables for parameter selection."""
    target_size_bytes: int = int(9.4 * 1024 * 1024)
    size_ratio: Optional[float] = None
    safety_factor: float = 0.85
    low_volume_threshold_db: float = -20.0
    boost_margin_db: float = 12.0
    boost_cap_db: float = 15.0
    passes: int = 2
    preset: str = "fast"
    crf: int = 26

    @classmethod
    def from_settings(cls) -> "SelectorConfig":
        return cls(
            target_size_bytes=settings.TARGET_OUTPUT_BYTES,
            size_ratio=settings.OUTPUT_SIZE_RATIO,
            safety_factor=settings.SIZE_SAFETY_FACTOR,
            low_volume_threshold_db=settings.LOW_VOLUME_THRESHOLD_DB,
            boost_margin_db=settings.VOLUME_BOOST_MARGIN_DB,
            boost_cap_db=settings.VOLUME_BOOST_CAP_DB,
            passes=settings.ENCODE_PASSES,
            preset=settings.ENCODE_PRESET,
            crf=settings.ENCODE_CRF,
        )


@dataclass(frozen=True)
class ResolutionChoice:
    """Selected output frame size.

    ``scale_factor`` is the factor chosen before flooring to the alignment.
    """
    width: int
    height: int
    scale_factor: float
    ceiling: tuple[int, int]

    @property
    def pixel_count(self) -> int:
        return self.width * self.height


def resolution_ceiling(duration: float) -> tuple[int, int]:
    """Bounding box for a video of the given duration in seconds."""
    for threshold, width, height in DURATION_CEILINGS:
        if duration > threshold:
            return width, height
    return DEFAULT_CEILING


def max_upscale_factor(width: int, height: int) -> float:
    """Largest scale factor allowed for an original of this size."""
    pixels = width * height
    for threshold, cap in UPSCALE_CAPS:
        if pixels < threshold:
            return cap
    return DEFAULT_UPSCALE_CAP


def _align_down(value: float) -> int:
    # The epsilon keeps exact products such as 1920 * (1280 / 1920) from
    # landing just below an alignment boundary.
    return int(math.floor(value / ALIGNMENT + 1e-9)) * ALIGNMENT


def select_resolution(width: int, height: int, duration: float) -> ResolutionChoice:
    """Choose the output frame size.

    Args:
        width: Original width in pixels
        height: Original height in pixels
        duration: Duration in seconds

    Returns:
        ResolutionChoice with aligned dimensions

    Raises:
        ProbeError: If the original has no usable size or aligns to zero
    """
    if width <= 0 or height <= 0:
        raise ProbeError(f"Invalid source resolution {width}x{height}")

    ceiling_width, ceiling_height = resolution_ceiling(duration)
    scale = min(
        ceiling_width / width,
        ceiling_height / height,
        max_upscale_factor(width, height),
    )

    target_width = min(_align_down(width * scale), ceiling_width)
    target_height = min(_align_down(height * scale), ceiling_height)

    if target_width <= 0 or target_height <= 0:
        raise ProbeError(
            f"Source resolution {width}x{height} is too small to encode"
        )

    return ResolutionChoice(
        width=target_width,
        height=target_height,
        scale_factor=scale,
        ceiling=(ceiling_width, ceiling_height),
    )


def audio_bitrate_for(pixel_count: int) -> str:
    """Audio bitrate tier for a target frame size."""
    for max_pixels, bitrate in AUDIO_BITRATE_TIERS:
        if pixel_count <= max_pixels:
            return bitrate
    return DEFAULT_AUDIO_BITRATE


def bitrate_window_for(pixel_count: int) -> BitrateWindow:
    """Video bitrate window for a target frame size."""
    for window in BITRATE_WINDOWS:
        if window.max_pixels is None or pixel_count <= window.max_pixels:
            return window
    return BITRATE_WINDOWS[-1]


def parse_kbps(bitrate: str) -> int:
    """Convert a tag such as "96k" into kbps."""
    return int(bitrate.lower().rstrip("k"))


def size_budget_bytes(input_size: Optional[int], config: SelectorConfig) -> float:
    """Total output size to aim for."""
    if input_size and config.size_ratio:
        return input_size * config.size_ratio
    return float(config.target_size_bytes)


def select_bitrates(
    duration: float,
    target_width: int,
    target_height: int,
    input_size: Optional[int] = None,
    config: Optional[SelectorConfig] = None,
) -> tuple[int, str]:
    """Pick video and audio bitrates for the target frame.

    Args:
        duration: Duration in seconds
        target_width: Selected output width
        target_height: Selected output height
        input_size: Source size in bytes, when known
        config: Selection tunables

    Returns:
        Tuple of (video bitrate in kbps, audio bitrate tag)
    """
    config = config or SelectorConfig()
    if duration <= 0:
        raise ProbeError(f"Invalid duration {duration}")

    pixel_count = target_width * target_height
    audio_bitrate = audio_bitrate_for(pixel_count)

    budget_bits = size_budget_bytes(input_size, config) * config.safety_factor * 8
    total_kbps = budget_bits / duration / 1000
    video_kbps = int(math.floor(total_kbps - parse_kbps(audio_bitrate)))

    return bitrate_window_for(pixel_count).clamp(video_kbps), audio_bitrate


def gain_boost_db(
    levels: Optional[AudioLevels],
    config: Optional[SelectorConfig] = None,
) -> Optional[float]:
    """Gain to add for quiet audio, or None when no boost applies.

    The boost never fully compensates very quiet audio so the noise floor is
    not amplified with it.
    """
    config = config or SelectorConfig()
    if levels is None or levels.mean_volume >= config.low_volume_threshold_db:
        return None
    return min(-levels.mean_volume - config.boost_margin_db, config.boost_cap_db)


def build_audio_filters(
    levels: Optional[AudioLevels],
    config: Optional[SelectorConfig] = None,
) -> tuple[str, ...]:
    """Audio filter chain; loudness normalization is always the last stage."""
    config = config or SelectorConfig()
    filters: list[str] = []

    if levels is not None:
        boost = gain_boost_db(levels, config)
        if boost is not None:
            filters.append(f"volume={boost:g}dB")
        filters.extend([
            "afftdn=nr=20:nf=-40",
            "acompressor=threshold=-18dB:ratio=3:attack=5:release=50",
            "treble=g=2:f=8000:w=1",
            "bass=g=1:f=100:w=0.5",
        ])
    else:
        filters.extend([
            "afftdn=nr=15:nf=-35",
            "acompressor=threshold=-20dB:ratio=2:attack=5:release=50",
        ])

    filters.append(LOUDNORM_FILTER)
    return tuple(filters)


def build_video_filters(width: int, height: int, effective_scale: float) -> tuple[str, ...]:
    """Scale first, then a mild sharpen when upscaling noticeably."""
    filters = [f"scale={width}:{height}:flags=lanczos"]
    if effective_scale > SHARPEN_SCALE_THRESHOLD:
        filters.append("unsharp=3:3:0.3:3:3:0.2")
    return tuple(filters)


def select_encode_parameters(
    profile: MediaProfile,
    input_size: Optional[int] = None,
    config: Optional[SelectorConfig] = None,
) -> EncodeParameters:
    """Derive the full encoder configuration for a probed source.

    Args:
        profile: Probe result, optionally with measured loudness
        input_size: Source size in bytes, when known
        config: Selection tunables

    Returns:
        EncodeParameters for the encode orchestrator
    """
    config = config or SelectorConfig()

    resolution = select_resolution(profile.width, profile.height, profile.duration)
    video_kbps, audio_bitrate = select_bitrates(
        profile.duration,
        resolution.width,
        resolution.height,
        input_size=input_size,
        config=config,
    )
    effective_scale = resolution.width / profile.width

    return EncodeParameters(
        width=resolution.width,
        height=resolution.height,
        scale_factor=effective_scale,
        video_bitrate_kbps=video_kbps,
        audio_bitrate=audio_bitrate,
        video_filters=build_video_filters(resolution.width, resolution.height, effective_scale),
        audio_filters=build_audio_filters(profile.audio_levels, config) if profile.has_audio else (),
        has_audio=profile.has_audio,
        passes=config.passes,
        preset=config.preset,
        crf=config.crf,
        source_duration=profile.duration,
    )
