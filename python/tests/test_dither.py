"""Tests for dither identification."""

import numpy as np
import pytest

from audiocheckr.dither import (
    DitherAlgorithm,
    DitherDetector,
    DitherScale,
    classify_dither,
    effective_bit_depth,
    pdf_shape,
)
from audiocheckr.types import DetectorType, SampleBuffer, Severity


def _quiet_16_in_24(sigma_lsb=4.0, seconds=3, seed=31):
    rng = np.random.default_rng(seed)
    sr = 44100
    x = np.round(rng.normal(0.0, sigma_lsb, seconds * sr)) / 32768.0
    return SampleBuffer(x, sr, 24)


class TestEffectiveBitDepth:
    def test_padded(self, padded_16_in_24):
        assert effective_bit_depth(padded_16_in_24.channel(0), 24) == 16

    def test_genuine(self, dithered_24):
        assert effective_bit_depth(dithered_24.channel(0), 24) == 24

    def test_twenty_bit(self):
        rng = np.random.default_rng(2)
        x = np.round(rng.normal(0.0, 0.1, 50000) * 2 ** 19) / 2 ** 19
        assert effective_bit_depth(x, 24) == 20

    def test_too_few_samples(self):
        assert effective_bit_depth(np.zeros(100), 24) == 24


class TestDitherScale:
    @pytest.mark.parametrize("mult,scale", [
        (0.5, DitherScale.HALF),
        (1.0, DitherScale.STANDARD),
        (1.3, DitherScale.ONE_TWENTY_FIVE),
        (2.0, DitherScale.DOUBLE),
        (3.0, DitherScale.UNKNOWN),
    ])
    def test_from_multiplier(self, mult, scale):
        assert DitherScale.from_multiplier(mult) == scale

    def test_labels(self):
        assert DitherScale.STANDARD.label == "1.0x"
        assert DitherScale.UNKNOWN.label == "unknown"


class TestClassifyDither:
    def test_rectangular(self):
        algo, conf = classify_dither(0.2, None, 0.9, 0.1)
        assert algo == DitherAlgorithm.RECTANGULAR
        assert conf == pytest.approx(min((0.9 * 0.8 + 0.98 * 0.5) / 1.5, 0.95))

    def test_triangular(self):
        algo, _ = classify_dither(0.0, None, 0.4, 0.9)
        assert algo == DitherAlgorithm.TRIANGULAR

    def test_triangular_high_pass(self):
        algo, _ = classify_dither(3.5, None, 0.4, 0.8)
        assert algo == DitherAlgorithm.TRIANGULAR_HIGH_PASS

    def test_lipshitz(self):
        algo, _ = classify_dither(7.0, None, 0.3, 0.1)
        assert algo == DitherAlgorithm.LIPSHITZ

    def test_shibata_peak(self):
        algo, conf = classify_dither(12.0, 15000.0, 0.3, 0.1)
        assert algo == DitherAlgorithm.SHIBATA
        assert conf == pytest.approx(0.6)

    def test_f_weighted(self):
        algo, _ = classify_dither(12.0, None, 0.3, 0.1)
        assert algo == DitherAlgorithm.F_WEIGHTED

    def test_steep_tilt_is_modified_e_weighted(self):
        algo, _ = classify_dither(16.0, None, 0.3, 0.1)
        assert algo == DitherAlgorithm.MODIFIED_E_WEIGHTED

    def test_truncation(self):
        algo, _ = classify_dither(0.0, None, 0.2, 0.2, level_entropy=0.1, unique_levels=3)
        assert algo == DitherAlgorithm.NONE

    def test_unknown_when_nothing_scores(self):
        algo, conf = classify_dither(0.0, None, 0.2, 0.2)
        assert algo == DitherAlgorithm.UNKNOWN
        assert conf == 0.0


class TestPdfShape:
    def test_uniform_noise_is_flat(self):
        rng = np.random.default_rng(4)
        lsb = 1.0 / 32768
        shape = pdf_shape(rng.uniform(-100.5, 100.5, 200000) * lsb, lsb)
        assert shape.flatness > 0.7

    def test_triangular_noise(self):
        rng = np.random.default_rng(5)
        lsb = 1.0 / 32768
        noise = (rng.uniform(-4, 4, 200000) + rng.uniform(-4, 4, 200000)) * lsb
        assert pdf_shape(noise, lsb).triangularity > 0.8

    def test_silence(self):
        shape = pdf_shape(np.zeros(100), 1.0 / 32768)
        assert shape.flatness == 0.0
        assert shape.unique_levels == 0


class TestDitherDetector:
    def test_triangular_dither_in_padded_file(self):
        det = DitherDetector().analyze(_quiet_16_in_24())
        assert det is not None
        assert det.detector == DetectorType.DITHERING
        assert det.severity == Severity.INFO
        assert det.data["algorithm"] == DitherAlgorithm.TRIANGULAR.value
        assert det.data["effective_bit_depth"] == 16
        assert det.data["container_bit_depth"] == 24

    def test_genuine_24_bit_skipped(self, dithered_24):
        assert DitherDetector().analyze(dithered_24) is None

    def test_loud_padded_content_has_no_quiet_noise(self, padded_16_in_24):
        assert DitherDetector().analyze(padded_16_in_24) is None
