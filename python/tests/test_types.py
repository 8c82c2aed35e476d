"""Tests for audiocheckr core types."""

import numpy as np
import pytest

from audiocheckr.types import (
    AnalysisResult,
    DetectorType,
    Finding,
    RawDetection,
    SampleBuffer,
    Severity,
    Verdict,
)


class TestSampleBuffer:
    def test_from_interleaved_splits_channels(self):
        inter = np.array([0.1, -0.1, 0.2, -0.2, 0.3, -0.3])
        buf = SampleBuffer.from_interleaved(inter, 2, 44100, 16)
        assert buf.n_channels == 2
        assert buf.n_frames == 3
        np.testing.assert_allclose(buf.channel(0), [0.1, 0.2, 0.3])
        np.testing.assert_allclose(buf.channel(1), [-0.1, -0.2, -0.3])

    def test_mono_is_channel_mean(self):
        buf = SampleBuffer.from_channels([np.ones(10), np.zeros(10)], 48000, 24)
        np.testing.assert_allclose(buf.mono(), 0.5)

    def test_arrays_are_read_only(self):
        source = np.zeros(100)
        buf = SampleBuffer(source, 44100, 16)
        with pytest.raises(ValueError):
            buf.channels[0, 0] = 1.0
        with pytest.raises(ValueError):
            buf.mono()[0] = 1.0

    def test_copies_input(self):
        source = np.zeros(100)
        buf = SampleBuffer(source, 44100, 16)
        source[0] = 1.0
        assert buf.channel(0)[0] == 0.0

    def test_duration_and_nyquist(self):
        buf = SampleBuffer(np.zeros(96000), 96000, 24)
        assert buf.duration == pytest.approx(1.0)
        assert buf.nyquist == 48000.0

    def test_invalid_sample_rate(self):
        with pytest.raises(ValueError):
            SampleBuffer(np.zeros(10), 0, 16)

    def test_from_channels_truncates_to_shortest(self):
        buf = SampleBuffer.from_channels([np.zeros(10), np.zeros(7)], 44100, 16)
        assert buf.n_frames == 7


class TestRawDetection:
    def test_confidence_clamped(self):
        det = RawDetection(DetectorType.MQA, 1.7, Severity.WARNING, "x")
        assert det.raw_confidence == 1.0
        det = RawDetection(DetectorType.MQA, -0.2, Severity.WARNING, "x")
        assert det.raw_confidence == 0.0

    def test_nan_rejected(self):
        with pytest.raises(ValueError):
            RawDetection(DetectorType.MQA, float("nan"), Severity.WARNING, "x")

    def test_evidence_becomes_tuple(self):
        det = RawDetection(DetectorType.ENF, 0.5, Severity.INFO, "x", evidence=["a", "b"])
        assert det.evidence == ("a", "b")


class TestEnums:
    def test_severity_weights(self):
        assert Severity.INFO.weight == 0.05
        assert Severity.WARNING.weight == 0.25
        assert Severity.CRITICAL.weight == 0.6

    def test_verdict_rank_order(self):
        ranks = [v.rank for v in (Verdict.LOSSLESS, Verdict.PROBABLY_LOSSLESS, Verdict.UNCERTAIN,
                                  Verdict.PROBABLY_LOSSY, Verdict.LOSSY)]
        assert ranks == [0, 1, 2, 3, 4]

    @pytest.mark.parametrize("name", ["bit_depth", "BIT_DEPTH", "bit-depth", " Bit_Depth "])
    def test_detector_parse(self, name):
        assert DetectorType.parse(name) == DetectorType.BIT_DEPTH

    def test_detector_parse_unknown(self):
        with pytest.raises(ValueError):
            DetectorType.parse("nope")


class TestFindingAndResult:
    def test_finding_penalty(self):
        raw = RawDetection(DetectorType.UPSAMPLING, 0.8, Severity.CRITICAL, "x")
        finding = Finding.from_raw(raw, 0.8)
        assert finding.penalty == pytest.approx(0.48)
        assert finding.raw_confidence == 0.8

    def test_result_lookup_helpers(self):
        raw = RawDetection(DetectorType.UPSAMPLING, 0.8, Severity.CRITICAL, "x")
        other = RawDetection(DetectorType.ENF, 0.4, Severity.INFO, "y")
        result = AnalysisResult(
            profile_name="standard",
            verdict=Verdict.UNCERTAIN,
            quality_score=0.52,
            findings=(Finding.from_raw(raw, 0.8),),
            suppressed=(Finding.from_raw(other, 0.4, "below threshold"),),
        )
        assert len(result.findings_for(DetectorType.UPSAMPLING)) == 1
        assert result.findings_for(DetectorType.ENF) == []
        assert len(result.suppressed_for(DetectorType.ENF)) == 1
        assert result.has_critical
