"""Tests for detection profiles."""

import pytest

from audiocheckr.profiles import (
    ConfidenceModifier,
    ProfileBuilder,
    ProfilePreset,
    available_profiles,
    get_profile,
)
from audiocheckr.types import DetectorType


class TestProfileBuilder:
    def test_defaults(self):
        profile = ProfileBuilder().build()
        assert profile.name == "custom"
        assert profile.global_sensitivity == 1.0
        assert profile.min_confidence == 0.5
        assert profile.adjust_confidence(DetectorType.MQA, 0.7) == pytest.approx(0.7)

    def test_sensitivity_and_confidence_clamped(self):
        profile = ProfileBuilder().global_sensitivity(5.0).min_confidence(-1.0).build()
        assert profile.global_sensitivity == 2.0
        assert profile.min_confidence == 0.0

    def test_multiplier_and_sensitivity_compose(self):
        profile = (ProfileBuilder()
                   .global_sensitivity(0.5)
                   .detector_multiplier(DetectorType.PRE_ECHO, 1.5)
                   .build())
        assert profile.adjust_confidence(DetectorType.PRE_ECHO, 0.8) == pytest.approx(0.6)

    def test_adjusted_confidence_clamped_to_one(self):
        profile = ProfileBuilder().global_sensitivity(2.0).build()
        assert profile.adjust_confidence(DetectorType.BIT_DEPTH, 0.9) == 1.0

    def test_disable(self):
        profile = ProfileBuilder().disable_detector(DetectorType.ENF).build()
        assert profile.is_disabled(DetectorType.ENF)
        assert not profile.is_suppressed(DetectorType.ENF)
        assert profile.adjust_confidence(DetectorType.ENF, 0.9) == 0.0

    def test_suppress_keeps_multiplier(self):
        profile = (ProfileBuilder()
                   .detector_multiplier(DetectorType.STEREO_FIELD, 0.5)
                   .suppress_detector(DetectorType.STEREO_FIELD)
                   .build())
        assert profile.is_suppressed(DetectorType.STEREO_FIELD)
        assert profile.modifier(DetectorType.STEREO_FIELD).multiplier == 0.5

    def test_codec_signature_follows_cutoff_modifier(self):
        profile = ProfileBuilder().detector_multiplier(DetectorType.SPECTRAL_CUTOFF, 0.5).build()
        assert profile.adjust_confidence(DetectorType.CODEC_SIGNATURE, 0.8) == pytest.approx(0.4)

        disabled = ProfileBuilder().disable_detector(DetectorType.SPECTRAL_CUTOFF).build()
        assert disabled.is_disabled(DetectorType.CODEC_SIGNATURE)

    def test_own_codec_modifier_wins(self):
        profile = (ProfileBuilder()
                   .disable_detector(DetectorType.SPECTRAL_CUTOFF)
                   .detector_multiplier(DetectorType.CODEC_SIGNATURE, 1.0)
                   .build())
        assert not profile.is_disabled(DetectorType.CODEC_SIGNATURE)
        assert profile.adjust_confidence(DetectorType.CODEC_SIGNATURE, 0.8) == pytest.approx(0.8)

    def test_threshold_override(self):
        profile = (ProfileBuilder()
                   .min_confidence(0.6)
                   .threshold_override(DetectorType.MQA, 0.9)
                   .build())
        assert profile.threshold_for(DetectorType.MQA) == 0.9
        assert profile.threshold_for(DetectorType.ENF) == 0.6

    def test_from_profile_round_trip(self):
        base = get_profile("electronic")
        rebuilt = ProfileBuilder.from_profile(base).build()
        assert rebuilt == base

    def test_profile_is_immutable(self):
        profile = ProfileBuilder().build()
        with pytest.raises(Exception):
            profile.name = "other"
        with pytest.raises(TypeError):
            profile.modifiers[DetectorType.ENF] = ConfidenceModifier.disabled()


class TestPresets:
    def test_available(self):
        assert available_profiles() == [
            "standard", "highres", "electronic", "noise", "classical", "podcast"]

    @pytest.mark.parametrize("name", ["high_res", "High-Res", "HIGHRES", "highres"])
    def test_lookup_is_lenient(self, name):
        assert get_profile(name).name == "highres"

    def test_unknown_raises(self):
        with pytest.raises(ValueError, match="Unknown profile"):
            get_profile("jazz")

    def test_every_preset_builds(self):
        for preset in ProfilePreset:
            assert preset.build().name == preset.value

    def test_podcast_disables_music_detectors(self):
        profile = get_profile("podcast")
        for detector in (DetectorType.SPECTRAL_CUTOFF, DetectorType.UPSAMPLING,
                         DetectorType.PRE_ECHO, DetectorType.STEREO_FIELD,
                         DetectorType.PHASE_COHERENCE):
            assert profile.is_disabled(detector)
        assert not profile.is_disabled(DetectorType.BIT_DEPTH)

    def test_noise_suppresses_stereo(self):
        profile = get_profile("noise")
        assert profile.is_suppressed(DetectorType.STEREO_FIELD)
        assert profile.is_disabled(DetectorType.UPSAMPLING)

    def test_adjust_is_pure(self):
        profile = get_profile("classical")
        first = profile.adjust_confidence(DetectorType.BIT_DEPTH, 0.6)
        second = profile.adjust_confidence(DetectorType.BIT_DEPTH, 0.6)
        assert first == second == pytest.approx(min(1.0, 0.6 * 1.3 * 1.1))
