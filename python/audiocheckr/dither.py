"""
Dither identification for bit-reduced content.

When a file's effective resolution is below its container depth, the quiet
passages expose whatever was added before the final requantization.  The
noise in those passages is characterised by its spectrum (tilt and any
noise-shaping peak), its amplitude distribution (flat for RPDF, triangular
for TPDF) and its level relative to one effective LSB, and the combination
is matched against known dither algorithms.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

import numpy as np
from scipy import signal

from .spectral import InsufficientData, compute_averaged_spectrum
from .types import DetectorType, RawDetection, SampleBuffer, Severity

logger = logging.getLogger(__name__)


class DitherAlgorithm(Enum):
    NONE = "None"
    RECTANGULAR = "Rectangular (RPDF)"
    TRIANGULAR = "Triangular (TPDF)"
    TRIANGULAR_HIGH_PASS = "Triangular HP"
    LIPSHITZ = "Lipshitz"
    SHIBATA = "Shibata"
    LOW_SHIBATA = "Low Shibata"
    HIGH_SHIBATA = "High Shibata"
    F_WEIGHTED = "F-weighted"
    MODIFIED_E_WEIGHTED = "Modified E-weighted"
    IMPROVED_E_WEIGHTED = "Improved E-weighted"
    UNKNOWN = "Unknown"


class DitherScale(Enum):
    HALF = 0.5
    THREE_QUARTERS = 0.75
    STANDARD = 1.0
    ONE_TWENTY_FIVE = 1.25
    ONE_POINT_FIVE = 1.5
    DOUBLE = 2.0
    UNKNOWN = None

    @classmethod
    def from_multiplier(cls, mult: float) -> "DitherScale":
        for bound, scale in ((0.625, cls.HALF), (0.875, cls.THREE_QUARTERS),
                             (1.125, cls.STANDARD), (1.375, cls.ONE_TWENTY_FIVE),
                             (1.75, cls.ONE_POINT_FIVE), (2.25, cls.DOUBLE)):
            if mult < bound:
                return scale
        return cls.UNKNOWN

    @property
    def label(self) -> str:
        return "unknown" if self.value is None else f"{self.value}x"


@dataclass
class NoiseProfile:
    tilt_db_per_octave: float = 0.0
    shaping_peak_hz: Optional[float] = None
    low_band_ratio: float = 0.0
    mid_band_ratio: float = 0.0
    high_band_ratio: float = 0.0


@dataclass
class PdfShape:
    flatness: float = 0.0
    triangularity: float = 0.0
    unique_levels: int = 0
    level_entropy: float = 0.0


# ---------------------------------------------------------------------------
# Measurements
# ---------------------------------------------------------------------------

def effective_bit_depth(samples: np.ndarray, container_bits: int,
                        max_samples: int = 500000) -> int:
    """Container depth minus the number of permanently idle low bits."""
    scale = float(2 ** (container_bits - 1))
    ints = np.abs(np.round(np.asarray(samples[:max_samples]) * scale).astype(np.int64))
    ints = ints[ints != 0]
    if len(ints) < 1000:
        return container_bits
    activity = np.array([np.mean((ints >> bit) & 1) for bit in range(min(12, container_bits))])
    idle = 0
    for ratio in activity[:8]:
        if ratio >= 0.01:
            break
        idle += 1
    if container_bits == 24 and np.count_nonzero(activity[:8] < 0.02) >= 6:
        return 16
    return container_bits - idle


def extract_quiet_noise(samples: np.ndarray, sample_rate: int, lsb: float,
                        block: int = 4096, max_rms_lsb: float = 16.0) -> np.ndarray:
    """Concatenate quiet, non-silent blocks and high-pass them at 20 Hz."""
    samples = np.asarray(samples, dtype=np.float64)
    n_blocks = len(samples) // block
    if n_blocks == 0:
        return np.zeros(0)
    blocks = samples[:n_blocks * block].reshape(n_blocks, block)
    rms = np.sqrt(np.mean(blocks ** 2, axis=1))
    quiet = blocks[(rms > 0.0) & (rms < max_rms_lsb * lsb)]
    if len(quiet) == 0:
        return np.zeros(0)
    sos = signal.butter(2, 20.0, btype='highpass', fs=sample_rate, output='sos')
    return signal.sosfilt(sos, quiet.ravel())


def noise_spectrum_profile(noise: np.ndarray, sample_rate: int,
                           fft_size: int = 4096) -> Optional[NoiseProfile]:
    spectrum = compute_averaged_spectrum(noise, sample_rate, fft_size=fft_size,
                                         n_frames=max(2, len(noise) // fft_size),
                                         average="mean")
    if isinstance(spectrum, InsufficientData):
        return None
    freqs, db = spectrum.freqs, spectrum.values

    mask = (freqs > 100.0) & (freqs < 20000.0) & (db > -200.0)
    tilt = float(np.polyfit(np.log2(freqs[mask]), db[mask], 1)[0]) if np.count_nonzero(mask) >= 10 else 0.0

    peak_hz = None
    shaping = (freqs >= 10000.0) & (freqs < min(20000.0, spectrum.nyquist))
    if np.count_nonzero(shaping) > 1:
        band = db[shaping]
        if band.max() > band.mean() + 6.0:
            peak_hz = float(freqs[shaping][np.argmax(band)])

    power = 10.0 ** (db / 10.0)
    low = float(np.sum(power[(freqs > 0) & (freqs < 4000.0)]))
    mid = float(np.sum(power[(freqs >= 4000.0) & (freqs < 12000.0)]))
    high = float(np.sum(power[freqs >= 12000.0]))
    total = max(low + mid + high, 1e-30)
    return NoiseProfile(tilt, peak_hz, low / total, mid / total, high / total)


def pdf_shape(noise: np.ndarray, lsb: float, max_bins: int = 256) -> PdfShape:
    """Flatness and triangularity of the noise histogram in LSB units."""
    units = np.asarray(noise, dtype=np.float64) / lsb
    extent = float(np.max(np.abs(units))) if len(units) else 0.0
    if extent < 1e-9:
        return PdfShape()

    levels = np.round(units).astype(np.int64)
    _, level_counts = np.unique(levels, return_counts=True)
    p = level_counts / len(levels)
    entropy = float(-np.sum(p * np.log(p)) / np.log(256.0))

    half = int(np.ceil(extent + 0.5))
    n_bins = min(max_bins, 2 * half + 1)
    hist, _ = np.histogram(units, bins=n_bins, range=(-half - 0.5, half + 0.5))
    total = hist.sum()
    expected = total / n_bins
    flatness = float(1.0 / (1.0 + np.std(hist) / expected))

    actual = hist / total - 1.0 / n_bins
    center = (n_bins - 1) / 2.0
    triangle = 1.0 - np.abs(np.arange(n_bins) - center) / max(center, 1.0) - 0.5
    norm = np.sqrt(np.sum(triangle ** 2) * np.sum(actual ** 2))
    triangularity = float(max(0.0, np.sum(actual * triangle) / norm)) if norm > 0 else 0.0
    return PdfShape(flatness, triangularity, int(len(level_counts)), entropy)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def classify_dither(tilt: float, shaping_peak_hz: Optional[float], flatness: float,
                    triangularity: float, level_entropy: float = 1.0,
                    unique_levels: int = 256) -> Tuple[DitherAlgorithm, float]:
    """Score every algorithm and return the best with its confidence.

    Ties go to the algorithm scored first.
    """
    scores: Dict[DitherAlgorithm, float] = {}

    def add(algo, value):
        scores[algo] = scores.get(algo, 0.0) + value

    if abs(tilt) < 1.5 and flatness > 0.7:
        add(DitherAlgorithm.RECTANGULAR, flatness * 0.8 + (1.0 - abs(tilt) / 10.0) * 0.5)
    if abs(tilt) < 1.5 and triangularity > 0.5:
        add(DitherAlgorithm.TRIANGULAR, triangularity + (1.0 - abs(tilt) / 10.0) * 0.3)
    if 2.0 < tilt < 8.0 and triangularity > 0.3:
        add(DitherAlgorithm.TRIANGULAR_HIGH_PASS, tilt / 10.0 * 0.8 + triangularity * 0.5)

    if tilt > 4.0:
        if tilt < 10.0:
            add(DitherAlgorithm.LIPSHITZ, 0.6 + (1.0 - abs(tilt - 7.0) / 5.0) * 0.4)
        if shaping_peak_hz is not None:
            if 13000.0 < shaping_peak_hz < 17000.0:
                add(DitherAlgorithm.SHIBATA, 0.9)
            if 9000.0 < shaping_peak_hz < 14000.0:
                add(DitherAlgorithm.LOW_SHIBATA, 0.8)
            if 16000.0 < shaping_peak_hz < 21000.0:
                add(DitherAlgorithm.HIGH_SHIBATA, 0.8)
        if 6.0 < tilt < 15.0:
            add(DitherAlgorithm.F_WEIGHTED, 0.5 + (1.0 - abs(tilt - 10.0) / 8.0) * 0.4)
        if tilt > 10.0:
            add(DitherAlgorithm.MODIFIED_E_WEIGHTED, 0.6)
            add(DitherAlgorithm.IMPROVED_E_WEIGHTED, 0.55)

    # Plain truncation leaves almost no distinct levels in quiet passages
    if level_entropy < 0.3 and unique_levels < 10:
        add(DitherAlgorithm.NONE, 1.2)

    best, best_score = DitherAlgorithm.UNKNOWN, 0.0
    for algo, score in scores.items():
        if score > best_score:
            best, best_score = algo, score

    confidence = min(best_score / 1.5, 0.95)
    if best_score < 0.4:
        best = DitherAlgorithm.UNKNOWN
    return best, float(confidence)


# ---------------------------------------------------------------------------
# Detector
# ---------------------------------------------------------------------------

class DitherDetector:
    """Identifies the dither used when a file was reduced in bit depth."""

    THRESHOLDS = {
        'quiet_rms_lsb': 16.0,
        'min_noise_samples': 8192,
        'min_confidence': 0.5,
    }
    TPDF_RMS_LSB = 0.408

    def analyze(self, buffer: SampleBuffer) -> Optional[RawDetection]:
        container = buffer.bit_depth
        samples = buffer.channel(0)
        effective = effective_bit_depth(samples, container)
        if effective >= container:
            return None

        lsb = 1.0 / float(2 ** (effective - 1))
        noise = extract_quiet_noise(samples, buffer.sample_rate, lsb,
                                    max_rms_lsb=self.THRESHOLDS['quiet_rms_lsb'])
        if len(noise) < self.THRESHOLDS['min_noise_samples']:
            logger.debug(f"Dither analysis: only {len(noise)} quiet samples")
            return None

        profile = noise_spectrum_profile(noise, buffer.sample_rate)
        if profile is None:
            return None
        pdf = pdf_shape(noise, lsb)
        algorithm, confidence = classify_dither(
            profile.tilt_db_per_octave, profile.shaping_peak_hz, pdf.flatness,
            pdf.triangularity, pdf.level_entropy, pdf.unique_levels)

        rms = float(np.sqrt(np.mean(noise ** 2)))
        multiplier = rms / (self.TPDF_RMS_LSB * lsb)
        scale = DitherScale.from_multiplier(multiplier)

        if algorithm in (DitherAlgorithm.NONE, DitherAlgorithm.UNKNOWN):
            return None
        if confidence < self.THRESHOLDS['min_confidence']:
            return None

        floor_db = 20.0 * np.log10(rms) if rms > 1e-10 else -200.0
        evidence = [
            f"Effective bit depth {effective} in a {container}-bit container",
            f"Noise spectral tilt {profile.tilt_db_per_octave:.1f} dB/octave",
            f"PDF flatness {pdf.flatness:.2f}, triangularity {pdf.triangularity:.2f}",
            f"Dither scale {scale.label} (RMS {multiplier:.2f} x TPDF nominal)",
        ]
        if profile.shaping_peak_hz is not None:
            evidence.append(f"Noise-shaping peak at {profile.shaping_peak_hz:.0f} Hz")

        return RawDetection(
            detector=DetectorType.DITHERING,
            raw_confidence=confidence,
            severity=Severity.INFO,
            summary=f"{algorithm.value} dither applied when reducing to {effective}-bit",
            evidence=tuple(evidence),
            data={
                'algorithm': algorithm.value,
                'scale': scale.label,
                'effective_bit_depth': effective,
                'container_bit_depth': container,
                'noise_floor_db': round(float(floor_db), 1),
                'tilt_db_per_octave': round(profile.tilt_db_per_octave, 2),
                'shaping_peak_hz': (round(profile.shaping_peak_hz, 1)
                                    if profile.shaping_peak_hz is not None else None),
                'pdf_flatness': round(pdf.flatness, 3),
                'pdf_triangularity': round(pdf.triangularity, 3),
                'band_ratios': [round(profile.low_band_ratio, 4),
                                round(profile.mid_band_ratio, 4),
                                round(profile.high_band_ratio, 4)],
            },
        )
