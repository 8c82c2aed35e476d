"""Stereo field analysis for joint-stereo encoding artifacts.

Joint stereo encoders spend few bits on the side channel and often drop it
entirely at high frequencies.  The tell is a stereo image that is wide in
the low band but collapses towards mono above about 12 kHz.
"""

import logging
from typing import Dict, Optional

import numpy as np

from .spectral import InsufficientData, compute_averaged_spectrum
from .types import DetectorType, RawDetection, SampleBuffer, Severity

logger = logging.getLogger(__name__)

BANDS = {
    'low': (20.0, 4000.0),
    'mid': (4000.0, 12000.0),
    'high': (12000.0, 22000.0),
}


def _power_db(power: float) -> float:
    return float(10.0 * np.log10(power)) if power > 1e-30 else -300.0


def band_side_mid_ratios(left: np.ndarray, right: np.ndarray,
                         sample_rate: int, fft_size: int = 4096) -> Optional[Dict[str, float]]:
    """Side-to-mid energy ratio in dB for each band."""
    mid = compute_averaged_spectrum((left + right) / 2.0, sample_rate, fft_size=fft_size,
                                    n_frames=60, average="mean", scale="power")
    side = compute_averaged_spectrum((left - right) / 2.0, sample_rate, fft_size=fft_size,
                                     n_frames=60, average="mean", scale="power")
    if isinstance(mid, InsufficientData) or isinstance(side, InsufficientData):
        return None
    ratios = {}
    for name, (lo, hi) in BANDS.items():
        hi = min(hi, mid.nyquist)
        if hi <= lo:
            continue
        m = float(np.sum(mid.band(lo, hi)))
        s = float(np.sum(side.band(lo, hi)))
        ratios[name] = _power_db(s) - _power_db(m)
    return ratios


class StereoFieldDetector:
    """Flags a stereo image that collapses at high frequencies."""

    THRESHOLDS = {
        'hf_collapse_db': 15.0,
        'lf_min_side_mid_db': -20.0,
    }

    def analyze(self, buffer: SampleBuffer) -> Optional[RawDetection]:
        if buffer.n_channels < 2:
            return None
        left, right = buffer.channel(0), buffer.channel(1)

        var_l, var_r = float(np.var(left)), float(np.var(right))
        if var_l > 1e-12 and var_r > 1e-12:
            correlation = float(np.corrcoef(left, right)[0, 1])
        else:
            correlation = 1.0
        width = float(np.sqrt(max(0.0, 1.0 - abs(correlation))))
        side_mid_db = _power_db(float(np.mean(((left - right) / 2) ** 2))) \
            - _power_db(float(np.mean(((left + right) / 2) ** 2)))

        ratios = band_side_mid_ratios(left, right, buffer.sample_rate)
        if not ratios or 'high' not in ratios:
            return None
        collapse = ratios['low'] - ratios['high']
        logger.debug(f"Stereo: r={correlation:.3f}, band side/mid {ratios}")

        if (collapse < self.THRESHOLDS['hf_collapse_db']
                or ratios['low'] <= self.THRESHOLDS['lf_min_side_mid_db']):
            return None

        confidence = float(np.clip(0.5 + (collapse - 15.0) / 30.0, 0.5, 0.85))
        return RawDetection(
            detector=DetectorType.STEREO_FIELD,
            raw_confidence=confidence,
            severity=Severity.WARNING,
            summary="Joint stereo: stereo image collapses above 12 kHz",
            evidence=(
                f"Side/mid {ratios['low']:.1f} dB below 4 kHz but {ratios['high']:.1f} dB above 12 kHz",
                f"Channel correlation {correlation:.3f}, width {width:.2f}",
            ),
            data={
                'correlation': round(correlation, 4),
                'width': round(width, 4),
                'side_mid_db': round(side_mid_db, 2),
                'band_side_mid_db': {k: round(v, 2) for k, v in ratios.items()},
                'hf_collapse_db': round(collapse, 2),
            },
        )
