"""MQA-style encoding detection.

MQA folds ultrasonic content into the low bits of a 24-bit 44.1/48 kHz
stream.  That leaves near-random low bytes and a noise floor that climbs
above 18 kHz instead of falling.
"""

import logging
from typing import Optional

import numpy as np
from scipy import signal

from .spectral import InsufficientData, compute_averaged_spectrum
from .types import DetectorType, RawDetection, SampleBuffer, Severity

logger = logging.getLogger(__name__)

MQA_RATES = (44100, 48000)
ORIGINAL_RATE_GUESS = {44100: 88200, 48000: 96000}


def lsb_entropy(samples: np.ndarray) -> float:
    """Normalized entropy (0-1) of the low byte of 24-bit samples."""
    ints = np.round(np.asarray(samples, dtype=np.float64) * 8388608.0).astype(np.int64)
    if len(ints) == 0:
        return 0.0
    counts = np.bincount((ints & 0xFF).astype(np.int64), minlength=256)
    p = counts[counts > 0] / len(ints)
    return float(-np.sum(p * np.log2(p)) / 8.0)


def band_power(samples: np.ndarray, sample_rate: int, lo: float, hi: float) -> float:
    """Mean power in [lo, hi] Hz from a 4th-order band-pass."""
    hi = min(hi, 0.49 * sample_rate)
    if hi <= lo:
        return 0.0
    sos = signal.butter(4, [lo, hi], btype='bandpass', fs=sample_rate, output='sos')
    return float(np.mean(signal.sosfilt(sos, samples) ** 2))


def noise_floor_elevation_db(samples: np.ndarray, sample_rate: int) -> float:
    """Power density of 18-20 kHz relative to 10-16 kHz, in dB."""
    spectrum = compute_averaged_spectrum(samples, sample_rate, fft_size=8192,
                                         average="mean", scale="power")
    if isinstance(spectrum, InsufficientData):
        return 0.0
    low = float(np.mean(spectrum.band(10000.0, 16000.0)))
    high = float(np.mean(spectrum.band(18000.0, 20000.0)))
    if low <= 1e-30 or high <= 1e-30:
        return 0.0
    return float(10.0 * np.log10(high / low))


class MqaDetector:
    """Low-bit payload and ultrasonic noise folded into a 24-bit stream."""

    THRESHOLDS = {
        'lsb_entropy': 0.85,
        'elevation_db': 15.0,
        'hf_level_db': -60.0,
        'min_confidence': 0.5,
    }
    ANALYSIS_WINDOW = 262144

    def analyze(self, buffer: SampleBuffer) -> Optional[RawDetection]:
        if buffer.bit_depth != 24 or buffer.sample_rate not in MQA_RATES:
            return None
        sr = buffer.sample_rate
        samples = buffer.channel(0)[:self.ANALYSIS_WINDOW]

        entropy = lsb_entropy(samples)
        elevation = noise_floor_elevation_db(samples, sr)
        hf_power = band_power(samples, sr, 18000.0, 20000.0)
        hf_level = float(10.0 * np.log10(hf_power)) if hf_power > 1e-30 else -200.0
        logger.debug(f"MQA: entropy={entropy:.3f} elevation={elevation:.1f} dB hf={hf_level:.1f} dBFS")

        if entropy <= self.THRESHOLDS['lsb_entropy'] or elevation <= self.THRESHOLDS['elevation_db']:
            return None

        t = self.THRESHOLDS
        confidence = (entropy - t['lsb_entropy']) / (1.0 - t['lsb_entropy']) * 0.4
        confidence += min(1.0, (elevation - t['elevation_db']) / 30.0) * 0.35
        if hf_level > t['hf_level_db']:
            confidence += min(1.0, (hf_level + 90.0) / 30.0) * 0.25
        if confidence <= t['min_confidence']:
            return None

        original = ORIGINAL_RATE_GUESS[sr]
        return RawDetection(
            detector=DetectorType.MQA,
            raw_confidence=confidence,
            severity=Severity.WARNING,
            summary=f"MQA-style encoding (likely {original} Hz original folded to {sr} Hz)",
            evidence=(
                f"High LSB entropy ({entropy:.2f}) in the lower 8 bits",
                f"Noise floor above 18 kHz elevated by {elevation:.1f} dB",
                f"HF band level {hf_level:.1f} dBFS",
            ),
            data={
                'lsb_entropy': round(entropy, 4),
                'noise_floor_elevation_db': round(elevation, 2),
                'hf_level_db': round(hf_level, 2),
                'original_rate': original,
            },
        )
