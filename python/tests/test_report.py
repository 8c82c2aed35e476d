"""Tests for result rendering."""

import json

import pytest

from audiocheckr.pipeline import DetectionPipeline
from audiocheckr.report import format_json, format_text, result_to_dict
from audiocheckr.types import AnalysisResult, DetectorType, Finding, Severity, Verdict


@pytest.fixture(scope="module")
def padded_result(padded_16_in_24):
    return DetectionPipeline().analyze(padded_16_in_24)


def _clean(**kwargs):
    defaults = dict(profile_name="standard", verdict=Verdict.LOSSLESS, quality_score=1.0,
                    sample_rate=44100, bit_depth=16, duration=3.0)
    defaults.update(kwargs)
    return AnalysisResult(**defaults)


class TestResultToDict:
    def test_fields(self, padded_result):
        d = result_to_dict(padded_result, "song.wav")
        assert d["file"] == "song.wav"
        assert d["verdict"] == "lossy"
        assert d["profile"] == "standard"
        assert d["bit_depth"] == 24
        assert d["insufficient_data"] is False
        assert d["findings"][0]["detector"] == "bit_depth"
        assert d["findings"][0]["severity"] == "critical"
        assert "suppressed" in d

    def test_without_suppressed(self, padded_result):
        d = result_to_dict(padded_result, include_suppressed=False)
        assert "file" not in d
        assert "suppressed" not in d

    def test_json_round_trip(self, padded_result):
        d = result_to_dict(padded_result)
        assert json.loads(format_json(d)) == d

    def test_json_list(self):
        text = format_json([result_to_dict(_clean()), result_to_dict(_clean())])
        assert len(json.loads(text)) == 2

    def test_suppressed_reason(self):
        hidden = Finding(DetectorType.PRE_ECHO, 0.6, 0.3, Severity.WARNING, "echo",
                         suppressed_reason="confidence 0.30 below threshold 0.50")
        d = result_to_dict(_clean(suppressed=(hidden,)))
        assert d["suppressed"][0]["suppressed_reason"].startswith("confidence 0.30")


class TestFormatText:
    def test_lossy_report(self, padded_result):
        text = format_text(padded_result, "song.wav")
        assert "Audio Quality Report" in text
        assert "File: song.wav" in text
        assert "Format: 44100 Hz, 24-bit, 3.00s" in text
        assert "Verdict: LOSSY" in text
        assert "[CRITICAL]" in text
        assert "Quality score: 41%" in text

    def test_clean_report(self):
        text = format_text(_clean())
        assert "No issues found." in text
        assert "Verdict: LOSSLESS" in text
        assert "Quality score: 100%" in text

    def test_insufficient(self):
        finding = Finding(DetectorType.INPUT, 1.0, 1.0, Severity.INFO,
                          "Insufficient data for analysis", ("Audio is silent",))
        text = format_text(_clean(verdict=Verdict.UNCERTAIN, quality_score=None,
                                  findings=(finding,), insufficient_data=True))
        assert "Quality score: n/a" in text
        assert "Verdict: UNCERTAIN" in text
        assert "- Audio is silent" in text

    def test_suppressed_section(self):
        hidden = Finding(DetectorType.STEREO_FIELD, 0.7, 0.35, Severity.WARNING, "joint stereo",
                         suppressed_reason="suppressed by profile 'noise'")
        result = _clean(suppressed=(hidden,))
        assert "Suppressed:" not in format_text(result)
        text = format_text(result, show_suppressed=True)
        assert "Suppressed:" in text
        assert "(suppressed by profile 'noise')" in text

    def test_errors_section(self):
        text = format_text(_clean(errors=("enf: boom",)))
        assert "Errors:" in text
        assert "enf: boom" in text
