"""Tests for true peak, clipping and loudness analysis."""

import numpy as np
import pytest

from audiocheckr.true_peak import (
    ClippingStats,
    TruePeakDetector,
    classify_clip,
    detect_clipping,
    likely_cause,
    loudness_stats,
    severity_score,
    to_db,
    true_peak,
)
from audiocheckr.types import DetectorType, SampleBuffer, Severity

SR = 44100


def _sine(amplitude, freq=997.0, seconds=3):
    t = np.arange(seconds * SR) / SR
    return amplitude * np.sin(2 * np.pi * freq * t)


class TestTruePeak:
    def test_inter_sample_peak(self):
        # Quarter-rate sine sampled 45 degrees off its crests
        n = np.arange(4096)
        x = 1.2 * np.sin(np.pi / 2 * n + np.pi / 4)
        fade = np.hanning(512)
        x[:256] *= fade[:256]
        x[-256:] *= fade[256:]
        assert np.max(np.abs(x)) < 0.85
        peak, overs = true_peak(x)
        assert peak == pytest.approx(1.2, abs=0.05)
        assert overs > 0

    def test_empty(self):
        assert true_peak(np.array([])) == (0.0, 0)

    def test_to_db(self):
        assert to_db(1.0) == 0.0
        assert to_db(0.0) == -200.0


class TestClipping:
    def test_runs_and_counts(self):
        x = np.array([0.0, 0.5, 1.0, 1.0, 1.0, 1.0, 0.5, 0.0, -1.0, -1.0, 0.0])
        stats = detect_clipping(x)
        assert stats.clipped_samples == 6
        assert stats.positive == 4
        assert stats.negative == 2
        assert stats.max_run == 4
        assert stats.counts() == {'hard_digital': 1, 'soft_analog': 0, 'limiter': 1, 'unknown': 0}
        assert likely_cause(stats) == 'unknown'

    def test_no_clipping(self):
        stats = detect_clipping(_sine(0.5, seconds=1))
        assert stats == ClippingStats()
        assert likely_cause(stats) is None

    def test_one_sided_overload(self):
        x = np.tile([0.0, 1.0, 1.0, 1.0, 1.0, 1.0, 0.0], 3)
        assert likely_cause(detect_clipping(x)) == 'adc_overload'

    def test_limiter(self):
        x = np.tile([0.0, 1.0, 1.0, 0.0, -1.0, -1.0], 5)
        assert likely_cause(detect_clipping(x)) == 'mastering_limiting'

    def test_soft_clip_shape(self):
        x = np.concatenate([np.linspace(0.5, 0.99, 8), [1.0, 1.01, 1.02, 1.03, 1.04], [0.5]])
        assert classify_clip(x, 8, 5) == 'soft_analog'

    def test_severity_score(self):
        assert severity_score(0.0, 0, 0, False) == 0.0
        assert severity_score(0.01, 50, 100, True) == 1.0
        assert severity_score(0.001, 0, 10, False) == pytest.approx(0.3)


class TestLoudness:
    def test_short_or_silent(self):
        assert loudness_stats(np.zeros(100), SR, 0.0) is None
        assert loudness_stats(np.zeros(SR), SR, 0.0) is None

    def test_steady_sine(self):
        stats = loudness_stats(_sine(0.1), SR, to_db(0.1))
        assert stats.integrated_lufs == pytest.approx(to_db(0.1 / np.sqrt(2)) - 0.691, abs=0.1)
        assert stats.dynamic_range_db == pytest.approx(0.0, abs=0.1)


class TestTruePeakDetector:
    def test_quiet_sine_passes(self):
        assert TruePeakDetector().analyze(SampleBuffer(_sine(0.1), SR, 16)) is None

    def test_clipped_sine(self):
        x = np.clip(_sine(1.5), -1.0, 1.0)
        det = TruePeakDetector().analyze(SampleBuffer(x, SR, 16))
        assert det is not None
        assert det.detector == DetectorType.TRUE_PEAK
        assert det.severity == Severity.WARNING
        assert det.data["likely_cause"] == 'recording_overload'
        assert det.data["loudness_war"] is True
        assert det.data["clip_events"]["hard_digital"] > 0
        assert det.raw_confidence >= 0.86

    def test_few_clipped_samples_are_info(self):
        x = _sine(0.1)
        x[SR:SR + 3] = 1.0
        det = TruePeakDetector().analyze(SampleBuffer(x, SR, 16))
        assert det is not None
        assert det.severity == Severity.INFO
        assert det.data["clipped_samples"] == 3

    def test_inter_sample_overs_without_clipping(self):
        rng = np.random.default_rng(12)
        x = rng.normal(0.0, 0.01, SR)
        n = np.arange(2000)
        burst = 1.3 * np.sin(np.pi / 2 * n + np.pi / 4)
        fade = np.hanning(512)
        burst[:256] *= fade[:256]
        burst[-256:] *= fade[256:]
        x[SR // 2:SR // 2 + 2000] += burst
        assert np.max(np.abs(x)) < 0.99

        det = TruePeakDetector().analyze(SampleBuffer(x, SR, 24))
        assert det is not None
        assert det.severity == Severity.WARNING
        assert det.data["clipped_samples"] == 0
        assert det.data["inter_sample_overs"] > 500
        assert det.data["true_peak_dbtp"] > 2.0
        assert any("inter-sample overs" in line for line in det.evidence)

    def test_small_overs_are_info(self):
        n = np.arange(4096)
        x = 1.05 * np.sin(np.pi / 2 * n + np.pi / 4)
        fade = np.hanning(512)
        x[:256] *= fade[:256]
        x[-256:] *= fade[256:]
        det = TruePeakDetector().analyze(SampleBuffer(x, SR, 24))
        assert det is not None
        assert det.severity == Severity.INFO
        assert det.data["true_peak_dbtp"] < 1.0
