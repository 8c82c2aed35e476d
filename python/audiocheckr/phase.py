"""Codec frame-boundary and phase analysis."""

import logging
from typing import Dict, Optional, Tuple

import numpy as np

from .spectral import frame_spectra
from .types import DetectorType, RawDetection, SampleBuffer, Severity

logger = logging.getLogger(__name__)

# MP3 granule, AAC frame, MP3 frame, AAC long block
CODEC_FRAME_SIZES = (576, 1024, 1152, 2048)


def boundary_ratio(samples: np.ndarray, frame_size: int) -> float:
    """Peak-to-median ratio of second-difference energy folded by ``frame_size``."""
    d2 = np.abs(np.diff(np.asarray(samples, dtype=np.float64), n=2))
    n = len(d2) // frame_size
    if n < 4:
        return 0.0
    folded = d2[:n * frame_size].reshape(n, frame_size).mean(axis=0)
    median = float(np.median(folded))
    if median <= 1e-15:
        return 0.0
    return float(np.max(folded) / median)


def phase_coherence(samples: np.ndarray, sample_rate: int, fft_size: int = 2048,
                    hop: int = 512, max_seconds: float = 10.0) -> Tuple[float, float]:
    """Inter-frame phase coherence (0-1) and instantaneous-frequency deviation (Hz)."""
    samples = np.asarray(samples[:int(max_seconds * sample_rate)], dtype=np.float64)
    if len(samples) < fft_size + 2 * hop:
        return 0.0, 0.0
    _, _, zxx = frame_spectra(samples, sample_rate, fft_size=fft_size, hop=hop)
    mag = np.abs(zxx)
    strong = mag[:, :-1] > np.median(mag)
    if not strong.any():
        return 0.0, 0.0

    k = np.arange(zxx.shape[0])[:, np.newaxis]
    expected = 2.0 * np.pi * k * hop / fft_size
    advance = np.angle(zxx[:, 1:]) - np.angle(zxx[:, :-1]) - expected
    deviation = np.angle(np.exp(1j * advance))[strong]
    coherence = float(np.abs(np.mean(np.exp(1j * deviation))))
    if_deviation = float(np.std(deviation) / (2.0 * np.pi * hop) * sample_rate)
    return coherence, if_deviation


class PhaseDetector:
    """Periodic discontinuities at lossy codec frame boundaries."""

    THRESHOLDS = {
        'boundary_ratio': 2.0,
    }

    def analyze(self, buffer: SampleBuffer) -> Optional[RawDetection]:
        mono = buffer.mono()
        ratios: Dict[int, float] = {size: boundary_ratio(mono, size) for size in CODEC_FRAME_SIZES}
        best_size = max(CODEC_FRAME_SIZES, key=lambda size: ratios[size])
        best = ratios[best_size]
        logger.debug(f"Frame boundary ratios: {ratios}")
        if best <= self.THRESHOLDS['boundary_ratio']:
            return None

        coherence, if_dev = phase_coherence(mono, buffer.sample_rate)
        confidence = float(np.clip(0.5 + (best - 2.0) / 4.0, 0.5, 0.85))
        return RawDetection(
            detector=DetectorType.PHASE_COHERENCE,
            raw_confidence=confidence,
            severity=Severity.WARNING,
            summary=f"Discontinuities repeat every {best_size} samples (codec frame boundaries)",
            evidence=(
                f"Second-difference energy peaks at {best:.1f}x the median when folded by {best_size}",
                f"Phase coherence {coherence:.2f}, instantaneous frequency deviation {if_dev:.1f} Hz",
            ),
            data={
                'frame_size': best_size,
                'boundary_ratios': {str(k): round(v, 3) for k, v in ratios.items()},
                'phase_coherence': round(coherence, 4),
                'if_deviation_hz': round(if_dev, 2),
            },
        )
