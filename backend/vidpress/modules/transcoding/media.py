"""Value objects describing a source file and how it will be encoded."""

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class AudioLevels:
    """Loudness measured by a decode-and-discard analysis pass, in dB."""
    max_volume: float
    mean_volume: float


@dataclass(frozen=True)
class MediaProfile:
    """What the prober learned about a source file."""
    width: int
    height: int
    duration: float  # seconds
    has_audio: bool
    video_codec: Optional[str] = None
    audio_codec: Optional[str] = None
    format_name: Optional[str] = None
    bit_rate: Optional[int] = None  # bps
    audio_levels: Optional[AudioLevels] = None

    @property
    def pixel_count(self) -> int:
        return self.width * self.height


@dataclass(frozen=True)
class EncodeParameters:
    """Everything the encoder needs beyond input and output paths."""
    width: int
    height: int
    scale_factor: float
    video_bitrate_kbps: int
    audio_bitrate: str  # e.g. "96k"
    video_filters: tuple[str, ...] = field(default_factory=tuple)
    audio_filters: tuple[str, ...] = field(default_factory=tuple)
    has_audio: bool = True
    passes: int = 2
    preset: str = "fast"
    crf: int = 26
    source_duration: Optional[float] = None  # seconds, for progress reporting

    @property
    def buffer_size_kbps(self) -> int:
        return int(self.video_bitrate_kbps * 1.5)

    def as_log_metadata(self) -> dict:
        """Flat representation for log entry metadata."""
        return {
            "width": self.width,
            "height": self.height,
            "scale_factor": round(self.scale_factor, 3),
            "video_bitrate_kbps": self.video_bitrate_kbps,
            "audio_bitrate": self.audio_bitrate,
            "video_filters": list(self.video_filters),
            "audio_filters": list(self.audio_filters),
            "passes": self.passes,
        }
