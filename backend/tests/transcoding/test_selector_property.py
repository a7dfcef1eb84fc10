"""Property-based tests for encode parameter selection.

Covers resolution alignment and ceilings, upscale caps, bitrate windows and
the audio filter chain.
"""

import pytest
from hypothesis import given, settings, strategies as st

from vidpress.modules.transcoding.exceptions import ProbeError
from vidpress.modules.transcoding.media import AudioLevels, MediaProfile
from vidpress.modules.transcoding.selector import (
    LOUDNORM_FILTER,
    SelectorConfig,
    bitrate_window_for,
    build_audio_filters,
    gain_boost_db,
    max_upscale_factor,
    resolution_ceiling,
    select_bitrates,
    select_encode_parameters,
    select_resolution,
)


dimension_strategy = st.integers(min_value=1, max_value=8192)
duration_strategy = st.floats(min_value=0.5, max_value=20000.0, allow_nan=False, allow_infinity=False)
volume_strategy = st.floats(min_value=-91.0, max_value=0.0, allow_nan=False, allow_infinity=False)
input_size_strategy = st.one_of(st.none(), st.integers(min_value=1024, max_value=500 * 1024 * 1024))


class TestResolutionSelection:
    """Output frames are aligned, bounded by the duration ceiling and never
    upscaled beyond the cap for the original's size."""

    @given(width=dimension_strategy, height=dimension_strategy, duration=duration_strategy)
    @settings(max_examples=300)
    def test_dimensions_are_aligned_and_within_ceiling(
        self, width: int, height: int, duration: float
    ) -> None:
        ceiling_width, ceiling_height = resolution_ceiling(duration)
        try:
            choice = select_resolution(width, height, duration)
        except ProbeError:
            # Only frames too thin to survive alignment are rejected
            scale = min(
                ceiling_width / width,
                ceiling_height / height,
                max_upscale_factor(width, height),
            )
            assert width * scale < 8 + 1e-6 or height * scale < 8 + 1e-6
            return

        assert choice.width > 0 and choice.height > 0
        assert choice.width % 8 == 0
        assert choice.height % 8 == 0
        assert choice.width <= ceiling_width
        assert choice.height <= ceiling_height

    @given(width=dimension_strategy, height=dimension_strategy, duration=duration_strategy)
    @settings(max_examples=300)
    def test_scale_respects_cap_and_ceiling(
        self, width: int, height: int, duration: float
    ) -> None:
        ceiling_width, ceiling_height = resolution_ceiling(duration)
        try:
            choice = select_resolution(width, height, duration)
        except ProbeError:
            return

        assert choice.scale_factor <= max_upscale_factor(width, height) + 1e-9
        assert choice.scale_factor <= ceiling_width / width + 1e-9
        assert choice.scale_factor <= ceiling_height / height + 1e-9

    @given(duration=duration_strategy)
    @settings(max_examples=100)
    def test_longer_videos_never_get_a_larger_ceiling(self, duration: float) -> None:
        shorter = resolution_ceiling(duration)
        longer = resolution_ceiling(duration + 301.0)
        assert longer[0] <= shorter[0]
        assert longer[1] <= shorter[1]

    def test_4k_two_minute_clip_is_bounded_by_1080p(self) -> None:
        choice = select_resolution(3840, 2160, 120.0)

        assert choice.ceiling == (1920, 1080)
        assert choice.scale_factor == pytest.approx(0.5)
        assert (choice.width, choice.height) == (1920, 1080)

    def test_small_original_upscales_to_cap(self) -> None:
        choice = select_resolution(640, 360, 60.0)

        assert choice.scale_factor == pytest.approx(1.8)
        assert (choice.width, choice.height) == (1152, 648)

    def test_long_video_uses_720p_ceiling(self) -> None:
        choice = select_resolution(1920, 1080, 700.0)
        assert (choice.width, choice.height) == (1280, 720)

    def test_medium_duration_uses_900p_ceiling(self) -> None:
        assert resolution_ceiling(300.0) == (1920, 1080)
        assert resolution_ceiling(300.5) == (1600, 900)
        assert resolution_ceiling(600.5) == (1280, 720)

    def test_upscale_cap_tiers(self) -> None:
        assert max_upscale_factor(320, 240) == 2.0
        assert max_upscale_factor(480, 360) == 1.8
        assert max_upscale_factor(640, 480) == 1.5
        assert max_upscale_factor(1280, 720) == 1.2

    def test_frame_that_aligns_to_zero_is_rejected(self) -> None:
        with pytest.raises(ProbeError):
            select_resolution(4, 4000, 30.0)

    def test_non_positive_dimensions_are_rejected(self) -> None:
        with pytest.raises(ProbeError):
            select_resolution(0, 720, 30.0)


class TestBitrateSelection:
    """Video bitrate always falls inside the resolution tier's window."""

    @given(
        width=st.integers(min_value=8, max_value=1920).map(lambda v: v - v % 8),
        height=st.integers(min_value=8, max_value=1080).map(lambda v: v - v % 8),
        duration=duration_strategy,
        input_size=input_size_strategy,
        size_ratio=st.one_of(st.none(), st.floats(min_value=0.05, max_value=1.0)),
    )
    @settings(max_examples=300)
    def test_video_bitrate_within_window(
        self,
        width: int,
        height: int,
        duration: float,
        input_size,
        size_ratio,
    ) -> None:
        config = SelectorConfig(size_ratio=size_ratio)
        video_kbps, audio_bitrate = select_bitrates(
            duration, width, height, input_size=input_size, config=config
        )
        window = bitrate_window_for(width * height)

        assert isinstance(video_kbps, int)
        assert window.min_kbps <= video_kbps <= window.max_kbps
        assert audio_bitrate in ("64k", "96k", "128k")

    def test_two_minute_1080p_budget(self) -> None:
        video_kbps, audio_bitrate = select_bitrates(120.0, 1920, 1080)

        assert audio_bitrate == "128k"
        assert video_kbps == 430

    def test_long_video_is_clamped_to_window_minimum(self) -> None:
        video_kbps, audio_bitrate = select_bitrates(700.0, 1280, 720)

        assert audio_bitrate == "96k"
        assert video_kbps == 250

    def test_short_video_is_clamped_to_window_maximum(self) -> None:
        video_kbps, _ = select_bitrates(5.0, 640, 480)
        assert video_kbps == 800

    def test_audio_tiers_follow_frame_size(self) -> None:
        assert select_bitrates(60.0, 640, 480)[1] == "64k"
        assert select_bitrates(60.0, 1280, 720)[1] == "96k"
        assert select_bitrates(60.0, 1920, 1080)[1] == "128k"

    def test_size_ratio_uses_input_size(self) -> None:
        config = SelectorConfig(size_ratio=0.5, safety_factor=1.0)
        # 15 MB * 0.5 over 60 s is 1000 kbps total
        video_kbps, _ = select_bitrates(
            60.0, 1280, 720, input_size=15_000_000, config=config
        )
        assert video_kbps == 1000 - 96

    def test_zero_duration_is_rejected(self) -> None:
        with pytest.raises(ProbeError):
            select_bitrates(0.0, 1280, 720)


class TestAudioFilters:
    """Gain boost is bounded and loudness normalization is always last."""

    @given(mean=volume_strategy)
    @settings(max_examples=200)
    def test_boost_applied_iff_below_threshold(self, mean: float) -> None:
        config = SelectorConfig()
        boost = gain_boost_db(AudioLevels(max_volume=0.0, mean_volume=mean), config)

        if mean < config.low_volume_threshold_db:
            assert boost is not None
            assert boost <= config.boost_cap_db
        else:
            assert boost is None

    @given(mean=volume_strategy, measured=st.booleans())
    @settings(max_examples=200)
    def test_loudnorm_is_terminal_and_boost_precedes_it(self, mean: float, measured: bool) -> None:
        levels = AudioLevels(max_volume=0.0, mean_volume=mean) if measured else None
        filters = build_audio_filters(levels)

        assert filters[-1] == LOUDNORM_FILTER
        assert filters.count(LOUDNORM_FILTER) == 1
        volume_stages = [i for i, f in enumerate(filters) if f.startswith("volume=")]
        assert len(volume_stages) <= 1
        if volume_stages:
            assert volume_stages[0] == 0

    def test_quiet_audio_gets_capped_boost(self) -> None:
        levels = AudioLevels(max_volume=-10.0, mean_volume=-28.0)

        assert gain_boost_db(levels) == 15.0
        assert build_audio_filters(levels)[0] == "volume=15dB"

    def test_boost_below_cap_uses_margin(self) -> None:
        levels = AudioLevels(max_volume=-8.0, mean_volume=-24.5)

        assert gain_boost_db(levels) == pytest.approx(12.5)
        assert build_audio_filters(levels)[0] == "volume=12.5dB"

    def test_normal_audio_gets_full_chain_without_boost(self) -> None:
        filters = build_audio_filters(AudioLevels(max_volume=-1.0, mean_volume=-16.0))

        assert filters == (
            "afftdn=nr=20:nf=-40",
            "acompressor=threshold=-18dB:ratio=3:attack=5:release=50",
            "treble=g=2:f=8000:w=1",
            "bass=g=1:f=100:w=0.5",
            LOUDNORM_FILTER,
        )

    def test_unmeasured_audio_gets_light_chain(self) -> None:
        filters = build_audio_filters(None)

        assert filters == (
            "afftdn=nr=15:nf=-35",
            "acompressor=threshold=-20dB:ratio=2:attack=5:release=50",
            LOUDNORM_FILTER,
        )


class TestEncodeParameters:
    """Full parameter selection for a probed source."""

    def test_upscaled_source_is_sharpened(self) -> None:
        profile = MediaProfile(width=640, height=360, duration=60.0, has_audio=True)
        params = select_encode_parameters(profile)

        assert params.video_filters == (
            "scale=1152:648:flags=lanczos",
            "unsharp=3:3:0.3:3:3:0.2",
        )
        assert params.buffer_size_kbps == int(params.video_bitrate_kbps * 1.5)

    def test_downscaled_source_is_not_sharpened(self) -> None:
        profile = MediaProfile(width=3840, height=2160, duration=120.0, has_audio=True)
        params = select_encode_parameters(profile)

        assert params.video_filters == ("scale=1920:1080:flags=lanczos",)
        assert (params.width, params.height) == (1920, 1080)
        assert params.video_bitrate_kbps == 430
        assert params.source_duration == 120.0

    def test_silent_source_has_no_audio_chain(self) -> None:
        profile = MediaProfile(width=1280, height=720, duration=30.0, has_audio=False)
        params = select_encode_parameters(profile)

        assert params.has_audio is False
        assert params.audio_filters == ()

    def test_strategy_follows_config(self) -> None:
        profile = MediaProfile(width=1280, height=720, duration=30.0, has_audio=True)
        params = select_encode_parameters(profile, config=SelectorConfig(passes=1, crf=23))

        assert params.passes == 1
        assert params.crf == 23
