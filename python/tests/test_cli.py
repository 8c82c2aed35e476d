"""Tests for audiocheckr CLI."""

import json

import numpy as np
import pytest

from audiocheckr.cli import build_profile, collect_files, main
from audiocheckr.types import DetectorType, SampleBuffer
from conftest import make_wav, quantize


class _Args:
    """Minimal args namespace for testing CLI functions."""

    def __init__(self, **kwargs):
        for k, v in kwargs.items():
            setattr(self, k, v)


@pytest.fixture()
def clean_wav(tmp_path):
    rng = np.random.default_rng(101)
    x = quantize(rng.normal(0.0, 0.1, 2 * 44100), 16, rng)
    path = tmp_path / "clean.wav"
    path.write_bytes(make_wav(SampleBuffer(x, 44100, 16)))
    return path


@pytest.fixture()
def padded_wav(tmp_path, padded_16_in_24):
    path = tmp_path / "padded.wav"
    path.write_bytes(make_wav(padded_16_in_24))
    return path


def _run(argv):
    with pytest.raises(SystemExit) as exc:
        main(argv)
    return exc.value.code


class TestAnalyzeCommand:
    def test_clean_file_exits_zero(self, clean_wav, capsys):
        assert _run(["analyze", str(clean_wav)]) == 0
        out = capsys.readouterr().out
        assert "Audio Quality Report" in out
        assert "Verdict: LOSSLESS" in out

    def test_padded_file_exits_one(self, padded_wav, capsys):
        assert _run(["analyze", str(padded_wav)]) == 1
        assert "Verdict: LOSSY" in capsys.readouterr().out

    def test_json_to_stdout(self, padded_wav, capsys):
        assert _run(["analyze", str(padded_wav), "--json", "-"]) == 1
        report = json.loads(capsys.readouterr().out)
        assert report["file"] == str(padded_wav)
        assert report["verdict"] == "lossy"
        assert "suppressed" not in report

    def test_json_file_with_several_inputs(self, clean_wav, padded_wav, tmp_path, capsys):
        out = tmp_path / "report.json"
        code = _run(["analyze", str(clean_wav), str(padded_wav), "-j", str(out),
                     "--show-suppressed"])
        assert code == 1
        assert "Report saved to:" in capsys.readouterr().out
        reports = json.loads(out.read_text())
        assert [r["verdict"] for r in reports] == ["lossless", "lossy"]
        assert "suppressed" in reports[0]

    def test_disable_detector(self, padded_wav):
        assert _run(["analyze", str(padded_wav), "--disable", "bit_depth"]) == 0

    def test_min_confidence(self, padded_wav):
        assert _run(["analyze", str(padded_wav), "--min-confidence", "0.99"]) == 0

    def test_quick_and_workers(self, padded_wav, capsys):
        assert _run(["analyze", str(padded_wav), "-q", "-w", "4", "--json", "-"]) == 1
        report = json.loads(capsys.readouterr().out)
        assert "enf: quick mode" in report["skipped"]

    def test_spectrogram(self, clean_wav, tmp_path):
        out_dir = tmp_path / "spectrograms"
        assert _run(["analyze", str(clean_wav), "--spectrogram", str(out_dir), "--linear"]) == 0
        assert (out_dir / "clean.png").exists()

    def test_missing_file(self, tmp_path, capsys):
        assert _run(["analyze", str(tmp_path / "nope.wav")]) == 2
        assert "File not found" in capsys.readouterr().err

    def test_undecodable_file(self, tmp_path, capsys):
        bad = tmp_path / "bad.wav"
        bad.write_bytes(b"not audio")
        assert _run(["analyze", str(bad)]) == 2
        assert "bad.wav" in capsys.readouterr().err

    def test_unknown_profile(self, clean_wav, capsys):
        assert _run(["analyze", str(clean_wav), "-p", "metal"]) == 2
        assert "Unknown profile" in capsys.readouterr().err

    def test_empty_directory(self, tmp_path, capsys):
        assert _run(["analyze", str(tmp_path)]) == 2
        assert "No WAV files found" in capsys.readouterr().err


class TestProfilesCommand:
    def test_lists_presets(self, capsys):
        main(["profiles"])
        out = capsys.readouterr().out
        assert "Available profiles:" in out
        for name in ("standard", "highres", "electronic", "noise", "classical", "podcast"):
            assert name in out

    def test_no_command(self, capsys):
        assert _run([]) == 2


class TestHelpers:
    def test_collect_files_recurses(self, tmp_path):
        (tmp_path / "b").mkdir()
        (tmp_path / "b" / "two.WAV").write_bytes(b"")
        (tmp_path / "one.wav").write_bytes(b"")
        (tmp_path / "notes.txt").write_text("skip")
        files = collect_files([str(tmp_path)])
        assert [f.name for f in files] == ["two.WAV", "one.wav"]

    def test_explicit_paths_kept(self):
        assert [str(p) for p in collect_files(["a.wav", "b.flac"])] == ["a.wav", "b.flac"]

    def test_build_profile(self):
        args = _Args(profile="highres", min_confidence=0.8, disable="enf, pre-echo")
        profile = build_profile(args)
        assert profile.name == "highres"
        assert profile.min_confidence == 0.8
        assert profile.is_disabled(DetectorType.ENF)
        assert profile.is_disabled(DetectorType.PRE_ECHO)

    def test_build_profile_unchanged(self):
        args = _Args(profile="standard", min_confidence=None, disable=None)
        assert build_profile(args).name == "standard"

    def test_build_profile_bad_detector(self):
        with pytest.raises(ValueError):
            build_profile(_Args(profile="standard", min_confidence=None, disable="bogus"))
