"""
Upsampling and resampler detection.

An upsampled file carries no content above the Nyquist frequency of its
source rate: the spectrum falls off a cliff at, say, 22.05 kHz in a 96 kHz
file.  :class:`UpsamplingDetector` looks for that cliff and corroborates it
with a resample round trip and with the inter-sample peak behaviour of
band-limited material.

:class:`ResamplerDetector` goes one step further and describes the filter
that did the work: where it cuts, how wide its transition band is, how much
it rejects, and which resampler family that shape resembles.
"""

import logging
from dataclasses import dataclass
from fractions import Fraction
from typing import Callable, List, Optional, Tuple

import numpy as np
from scipy.signal import resample_poly

from .spectral import (
    MAX_FRAMES,
    AveragedSpectrum,
    InsufficientData,
    compute_averaged_spectrum,
    default_fft_size,
    smooth_db,
)
from .true_peak import oversample
from .types import DetectorType, RawDetection, SampleBuffer, Severity

logger = logging.getLogger(__name__)

SOURCE_RATES = (44100, 48000, 88200, 96000, 176400)


def candidate_source_rates(sample_rate: int) -> List[int]:
    """Common source rates strictly below ``sample_rate``."""
    return [r for r in SOURCE_RATES if r < sample_rate]


def _analysis_spectrum(buffer: SampleBuffer, fft_size: Optional[int] = None):
    fft_size = fft_size or default_fft_size(buffer.sample_rate)
    n_frames = min(MAX_FRAMES, max(30, buffer.n_frames // fft_size))
    return compute_averaged_spectrum(buffer.mono(), buffer.sample_rate,
                                     fft_size=fft_size, n_frames=n_frames)


# ---------------------------------------------------------------------------
# Upsampling
# ---------------------------------------------------------------------------

@dataclass
class NyquistDrop:
    source_rate: int
    reference_db: float
    above_db: float

    @property
    def drop_db(self) -> float:
        return self.reference_db - self.above_db


def nyquist_drop(spectrum: AveragedSpectrum, source_rate: int) -> Optional[NyquistDrop]:
    """Level drop across the Nyquist frequency of ``source_rate``.

    Returns None when the band above that Nyquist is narrower than 1 kHz
    inside the file's own usable range.
    """
    c_nyq = source_rate / 2.0
    hi = min(1.5 * c_nyq, 0.95 * spectrum.nyquist)
    lo = 1.05 * c_nyq
    if hi - lo < 1000.0:
        return None
    return NyquistDrop(
        source_rate=source_rate,
        reference_db=spectrum.band_level(0.5 * c_nyq, 0.9 * c_nyq),
        above_db=spectrum.band_level(lo, hi),
    )


def half_level_edge(spectrum: AveragedSpectrum, reference_db: float, start_hz: float,
                    smooth_hz: float = 250.0) -> Optional[float]:
    """First frequency above ``start_hz`` that sits 6 dB under ``reference_db``.

    Windowed-sinc resamplers put their half-amplitude point on the source
    Nyquist, so this edge tells neighbouring source rates apart.
    """
    smoothed = smooth_db(spectrum.values, smooth_hz / spectrum.bin_hz)
    below = np.nonzero((spectrum.freqs >= start_hz) & (smoothed < reference_db - 6.0))[0]
    if len(below) == 0:
        return None
    return float(spectrum.freqs[below[0]])


def round_trip_residual_db(samples: np.ndarray, sample_rate: int, source_rate: int,
                           max_samples: int = 1 << 17) -> float:
    """Energy lost by resampling down to ``source_rate`` and back, in dB."""
    segment = np.asarray(samples[:max_samples], dtype=np.float64)
    ratio = Fraction(source_rate, sample_rate)
    down = resample_poly(segment, ratio.numerator, ratio.denominator)
    back = resample_poly(down, ratio.denominator, ratio.numerator)[:len(segment)]
    edge = min(2048, len(segment) // 8)
    ref = segment[edge:len(back) - edge]
    diff = ref - back[edge:len(back) - edge]
    energy = float(np.sum(ref ** 2))
    if energy <= 0.0:
        return 0.0
    return float(10.0 * np.log10(max(float(np.sum(diff ** 2)), 1e-30) / energy))


def inter_sample_excess_db(samples: np.ndarray, block: int = 4096,
                           max_blocks: int = 32) -> float:
    """Mean excess of 4x-oversampled block peaks over sample peaks."""
    samples = np.asarray(samples, dtype=np.float64)
    n_blocks = min(max_blocks, len(samples) // block)
    if n_blocks == 0:
        return 0.0
    starts = np.linspace(0, len(samples) - block, n_blocks).astype(int)
    excess = []
    for s in starts:
        chunk = samples[s:s + block]
        sample_peak = float(np.max(np.abs(chunk)))
        if sample_peak < 1e-6:
            continue
        # Ignore the interpolator's edge transient
        up = oversample(chunk)[64:-64]
        excess.append(20.0 * np.log10(max(float(np.max(np.abs(up))), sample_peak) / sample_peak))
    return float(np.mean(excess)) if excess else 0.0


class UpsamplingDetector:
    """Content band-limited to a lower source rate's Nyquist."""

    THRESHOLDS = {
        'min_drop_db': 40.0,
        'null_residual_db': -30.0,
        'isp_excess_db': 0.05,
    }
    BASE_CONFIDENCE = 0.70
    DROP_SPAN = 0.15
    BOOST = 0.05
    MAX_CONFIDENCE = 0.95

    def __init__(self, fft_size: Optional[int] = None):
        self._fft_size = fft_size

    def analyze(self, buffer: SampleBuffer) -> Optional[RawDetection]:
        sr = buffer.sample_rate
        candidates = candidate_source_rates(sr)
        if not candidates:
            return None

        spectrum = _analysis_spectrum(buffer, self._fft_size)
        if isinstance(spectrum, InsufficientData):
            logger.debug(f"Upsampling check skipped: {spectrum.reason}")
            return None

        drops = [d for d in (nyquist_drop(spectrum, rate) for rate in candidates)
                 if d is not None and d.drop_db >= self.THRESHOLDS['min_drop_db']]
        if not drops:
            return None
        match = drops[0]
        if len(drops) > 1:
            # Every rate above the true source also shows a drop
            edge = half_level_edge(spectrum, match.reference_db, match.source_rate / 4.0)
            if edge is not None:
                match = min(drops, key=lambda d: abs(d.source_rate / 2.0 - edge))
                logger.debug(f"Half-level edge at {edge:.0f} Hz selects {match.source_rate} Hz")

        extra = min(match.drop_db - self.THRESHOLDS['min_drop_db'], 40.0) / 40.0
        confidence = self.BASE_CONFIDENCE + self.DROP_SPAN * extra
        evidence = [
            f"{match.drop_db:.1f} dB drop above {match.source_rate / 2000:.2f} kHz "
            f"(Nyquist of {match.source_rate} Hz)"
        ]

        mono = buffer.mono()
        residual = round_trip_residual_db(mono, sr, match.source_rate)
        if residual < self.THRESHOLDS['null_residual_db']:
            confidence += self.BOOST
            evidence.append(f"Round trip through {match.source_rate} Hz loses only {residual:.1f} dB")

        isp = inter_sample_excess_db(mono)
        if isp < self.THRESHOLDS['isp_excess_db']:
            confidence += self.BOOST
            evidence.append(f"Inter-sample peaks exceed sample peaks by only {isp:.3f} dB")

        confidence = min(confidence, self.MAX_CONFIDENCE)
        return RawDetection(
            detector=DetectorType.UPSAMPLING,
            raw_confidence=confidence,
            severity=Severity.CRITICAL if confidence >= 0.7 else Severity.WARNING,
            summary=f"Upsampled from {match.source_rate} Hz to {sr} Hz",
            evidence=tuple(evidence),
            data={
                'source_rate': match.source_rate,
                'drop_db': round(match.drop_db, 2),
                'round_trip_residual_db': round(residual, 2),
                'inter_sample_excess_db': round(isp, 4),
            },
        )


# ---------------------------------------------------------------------------
# Resampler engine
# ---------------------------------------------------------------------------

NULL_CANDIDATES = (8000, 11025, 16000, 22050, 32000, 44100, 48000,
                   88200, 96000, 176400, 192000)


@dataclass
class SpectralNull:
    source_rate: int
    frequency_hz: float
    depth_db: float
    confidence: float


@dataclass
class FilterShape:
    """Measured anti-aliasing filter characteristics."""
    edge_hz: float
    cutoff_hz: float
    transition_hz: float
    stopband_db: float
    ripple_db: float

    @property
    def cutoff_ratio(self) -> float:
        return self.cutoff_hz / self.edge_hz if self.edge_hz else 0.0


def analyze_null_region(spectrum: AveragedSpectrum, center_hz: float,
                        min_depth_db: float = 20.0) -> Tuple[bool, float, float]:
    """Depth and confidence of a possible null at ``center_hz``."""
    bin_hz = spectrum.bin_hz
    values = spectrum.values
    center = spectrum.hz_to_bin(center_hz)
    span = max(10, int(500.0 / bin_hz))
    start, end = max(0, center - span), min(len(values), center + span)
    before = values[start:max(start, center - 5)]
    after = values[min(end, center + 5):end]
    if len(before) == 0 or end - start <= 10:
        return False, 0.0, 0.0

    before_avg = float(np.mean(before))
    after_avg = float(np.mean(after)) if len(after) else before_avg
    null_min = float(np.min(values[max(0, center - 3):center + 3]))
    depth = before_avg - null_min
    if depth <= min_depth_db or after_avg >= before_avg - 8.0:
        return False, depth, 0.0
    depth_factor = min(1.0, depth / 30.0)
    transition_factor = min(1.0, (before_avg - after_avg) / 25.0)
    return True, depth, 0.6 * depth_factor + 0.4 * transition_factor


def find_spectral_null(spectrum: AveragedSpectrum, min_depth_db: float = 20.0,
                       min_confidence: float = 0.4) -> Optional[SpectralNull]:
    """Best null at the Nyquist frequency of a lower candidate rate."""
    best = None
    for rate in NULL_CANDIDATES:
        c_nyq = rate / 2.0
        if rate >= spectrum.sample_rate or c_nyq >= 0.97 * spectrum.nyquist:
            continue
        is_null, depth, conf = analyze_null_region(spectrum, c_nyq, min_depth_db)
        if is_null and conf > min_confidence and (best is None or conf > best.confidence):
            best = SpectralNull(rate, c_nyq, depth, conf)
    return best


def analyze_filter(spectrum: AveragedSpectrum, edge_hz: float) -> FilterShape:
    """Measure the filter whose band edge sits at ``edge_hz``."""
    freqs = spectrum.freqs
    smoothed = smooth_db(spectrum.values, max(1, int(50.0 / spectrum.bin_hz)))
    passband = smoothed[(freqs >= 1000.0) & (freqs < 5000.0)]
    pass_level = float(np.mean(passband)) if len(passband) else -20.0
    ripple = float(np.ptp(passband)) if len(passband) else 0.0

    if edge_hz < 0.95 * spectrum.nyquist:
        stop_level = spectrum.band_level(1.05 * edge_hz, min(1.5 * edge_hz, 0.98 * spectrum.nyquist))
    else:
        stop_level = float(np.median(spectrum.values[int(len(spectrum.values) * 0.95):]))

    # -3 dB point, searching down from just above the edge
    search = np.nonzero((freqs >= 0.5 * edge_hz) & (freqs <= min(1.02 * edge_hz, spectrum.nyquist))
                        & (smoothed > pass_level - 3.0))[0]
    if len(search) == 0:
        search = np.nonzero((freqs <= edge_hz) & (smoothed > pass_level - 3.0))[0]
    cutoff_bin = int(search[-1]) if len(search) else spectrum.hz_to_bin(edge_hz)
    stop_threshold = max(pass_level - 60.0, stop_level + 3.0)
    below = np.nonzero(smoothed[cutoff_bin:] < stop_threshold)[0]
    stop_bin = cutoff_bin + int(below[0]) if len(below) else len(smoothed) - 1

    return FilterShape(
        edge_hz=float(edge_hz),
        cutoff_hz=float(freqs[cutoff_bin]),
        transition_hz=float((stop_bin - cutoff_bin) * spectrum.bin_hz),
        stopband_db=pass_level - stop_level,
        ripple_db=ripple,
    )


def quality_tier(shape: FilterShape) -> str:
    if shape.stopband_db > 130.0 and shape.ripple_db < 0.1:
        return "Transparent"
    if shape.stopband_db > 100.0:
        return "Very High"
    if shape.stopband_db > 70.0:
        return "High"
    if shape.stopband_db > 50.0:
        return "Standard"
    return "Low"


def _between(value: float, lo: float, hi: float) -> bool:
    return lo < value < hi


# (engine, predicate, confidence); first match wins
ENGINE_SIGNATURES: List[Tuple[str, Callable[[FilterShape], bool], float]] = [
    ("SoX soxr (cutoff 91%)",
     lambda s: s.stopband_db > 100.0 and _between(s.cutoff_ratio, 0.89, 0.93), 0.70),
    ("SoX soxr (cutoff 95%)",
     lambda s: s.stopband_db > 100.0 and _between(s.cutoff_ratio, 0.93, 0.97), 0.70),
    ("libsamplerate (sinc best)",
     lambda s: s.stopband_db > 90.0 and s.cutoff_ratio >= 0.97 and s.ripple_db >= 0.1, 0.55),
    ("SoX soxr VHQ (Chebyshev)",
     lambda s: s.stopband_db > 100.0 and s.ripple_db < 0.1, 0.75),
    ("SoX soxr VHQ", lambda s: s.stopband_db > 130.0, 0.70),
    ("SoX soxr HQ", lambda s: s.stopband_db > 110.0, 0.65),
    ("SoX soxr", lambda s: s.stopband_db > 100.0, 0.60),
    ("FFmpeg swresample (Blackman-Nuttall)",
     lambda s: s.stopband_db > 80.0 and s.transition_hz < 2000.0, 0.70),
    ("FFmpeg swresample (Kaiser, beta 16)", lambda s: s.stopband_db > 90.0, 0.65),
    ("FFmpeg swresample (Kaiser, beta 12)", lambda s: s.stopband_db > 70.0, 0.60),
    ("FFmpeg swresample",
     lambda s: _between(s.cutoff_ratio, 0.80, 0.90) and _between(s.stopband_db, 50.0, 80.0), 0.60),
    ("Cubic interpolation",
     lambda s: _between(s.cutoff_ratio, 0.78, 0.88) and s.stopband_db < 60.0, 0.55),
    ("Linear interpolation", lambda s: s.stopband_db < 30.0, 0.50),
]


def classify_resampler(shape: FilterShape) -> Tuple[str, float]:
    for engine, matches, confidence in ENGINE_SIGNATURES:
        if matches(shape):
            return engine, confidence
    return "Generic windowed-sinc", 0.30


class ResamplerDetector:
    """Describes the resampling filter when one is evident."""

    THRESHOLDS = {
        'null_depth_db': 20.0,
        'null_confidence': 0.4,
        'downsample_cutoff_ratio': 0.85,
        'downsample_stopband_db': 40.0,
        'downsample_transition_ratio': 0.10,
    }

    def __init__(self, fft_size: Optional[int] = None):
        self._fft_size = fft_size

    def analyze(self, buffer: SampleBuffer) -> Optional[RawDetection]:
        sr = buffer.sample_rate
        fft_size = self._fft_size or max(16384, default_fft_size(sr))
        if buffer.n_frames < 2 * fft_size:
            return None
        spectrum = _analysis_spectrum(buffer, fft_size)
        if isinstance(spectrum, InsufficientData):
            return None

        null = find_spectral_null(spectrum, self.THRESHOLDS['null_depth_db'],
                                  self.THRESHOLDS['null_confidence'])
        if null is not None:
            shape = analyze_filter(spectrum, null.frequency_hz)
            direction = 'upsample'
            source_rate = null.source_rate
            confidence = null.confidence
            evidence = [f"Spectral null at {null.frequency_hz:.0f} Hz "
                        f"({null.depth_db:.1f} dB deep) suggests upsampling from {source_rate} Hz"]
        else:
            shape = analyze_filter(spectrum, spectrum.nyquist)
            if not self._is_downsample_filter(shape, spectrum.nyquist):
                return None
            direction = 'downsample'
            source_rate = None
            confidence = 0.5 + 0.3 * min(1.0, (shape.stopband_db - 40.0) / 60.0)
            evidence = [f"Anti-aliasing filter at {shape.cutoff_ratio * 100:.1f}% of Nyquist "
                        f"with {shape.stopband_db:.0f} dB rejection"]

        engine, engine_confidence = classify_resampler(shape)
        tier = quality_tier(shape)
        evidence.append(f"Transition band {shape.transition_hz:.0f} Hz, "
                        f"passband ripple {shape.ripple_db:.2f} dB")
        evidence.append(f"Resampler: {engine} ({engine_confidence * 100:.0f}% confidence), "
                        f"quality: {tier}")

        return RawDetection(
            detector=DetectorType.RESAMPLING,
            raw_confidence=confidence,
            severity=Severity.INFO,
            summary=f"Resampled ({direction}), {tier.lower()} quality filter",
            evidence=tuple(evidence),
            data={
                'direction': direction,
                'source_rate': source_rate,
                'engine': engine,
                'engine_confidence': engine_confidence,
                'quality': tier,
                'cutoff_hz': round(shape.cutoff_hz, 1),
                'cutoff_ratio': round(shape.cutoff_ratio, 4),
                'transition_hz': round(shape.transition_hz, 1),
                'stopband_db': round(shape.stopband_db, 2),
                'ripple_db': round(shape.ripple_db, 3),
            },
        )

    def _is_downsample_filter(self, shape: FilterShape, nyquist: float) -> bool:
        return (shape.cutoff_ratio >= self.THRESHOLDS['downsample_cutoff_ratio']
                and shape.stopband_db > self.THRESHOLDS['downsample_stopband_db']
                and shape.transition_hz < self.THRESHOLDS['downsample_transition_ratio'] * nyquist)
