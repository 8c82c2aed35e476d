"""
Electrical network frequency (ENF) analysis.

Recordings made near mains power pick up a faint 50 or 60 Hz hum whose
frequency wanders slowly and continuously.  Tracking that trace second by
second shows where a recording was cut, spliced or resynthesized:

  * frequency jumps between neighbouring windows
  * phase discontinuities while the frequency stays put
  * dropouts where the hum disappears
  * sudden changes of drift rate
  * harmonics that stop agreeing with the fundamental
"""

import logging
from dataclasses import dataclass
from fractions import Fraction
from typing import List, Optional, Tuple

import numpy as np
from scipy.fft import rfft, rfftfreq
from scipy.ndimage import maximum_filter1d
from scipy.signal import resample_poly

from .types import DetectorType, RawDetection, SampleBuffer, Severity

logger = logging.getLogger(__name__)

ANALYSIS_RATE = 1000
BASE_FREQUENCIES = (50.0, 60.0)
REGIONS = {50.0: "Europe (50 Hz)", 60.0: "North America (60 Hz)"}

# Relative weight of each anomaly type when scoring an edit
ANOMALY_WEIGHTS = {
    'frequency_jump': 0.8,
    'phase_discontinuity': 0.9,
    'signal_dropout': 0.6,
    'drift_rate_change': 0.4,
    'harmonic_anomaly': 0.3,
}


@dataclass
class EnfMeasurement:
    time_s: float
    frequency_hz: float
    strength_db: float
    snr_db: float
    phase: float
    harmonic_hz: Optional[float] = None

    @property
    def confidence(self) -> float:
        if self.snr_db > 14.0:
            return 0.9
        if self.snr_db > 6.0:
            return 0.6
        return 0.3

    @property
    def valid(self) -> bool:
        return self.confidence > 0.5


@dataclass
class EnfAnomaly:
    kind: str
    time_s: float
    duration_s: float
    severity: float
    description: str


def decimate_to(samples: np.ndarray, sample_rate: int, target: int = ANALYSIS_RATE) -> np.ndarray:
    ratio = Fraction(target, sample_rate)
    return resample_poly(np.asarray(samples, dtype=np.float64), ratio.numerator, ratio.denominator)


def _harmonic_mask(freqs: np.ndarray, width: float = 2.0) -> np.ndarray:
    mask = np.zeros(len(freqs), dtype=bool)
    for base in BASE_FREQUENCIES:
        for k in range(1, 9):
            mask |= np.abs(freqs - k * base) <= width
    return mask


def hum_spectrum(x: np.ndarray, rate: int = ANALYSIS_RATE) -> Tuple[np.ndarray, np.ndarray, float]:
    """Magnitude spectrum, its frequencies and the off-harmonic noise level.

    The noise level is the median of the 1 Hz running maximum so that a
    harmonic peak picked from a 1 Hz window is compared like with like.
    """
    spec = np.abs(rfft(x * np.hanning(len(x))))
    freqs = rfftfreq(len(x), 1.0 / rate)
    noise_mask = (freqs >= 40.0) & (freqs <= 300.0) & ~_harmonic_mask(freqs)
    if not noise_mask.any():
        return spec, freqs, 0.0
    width = max(1, int(round(1.0 / (freqs[1] - freqs[0]))))
    running_max = maximum_filter1d(spec, size=width)
    return spec, freqs, float(np.median(running_max[noise_mask]))


def detect_base_frequency(x: np.ndarray, rate: int = ANALYSIS_RATE) -> Tuple[Optional[float], float]:
    """Pick 50 or 60 Hz by harmonic SNR; returns ``(base, snr_db)``."""
    spec, freqs, noise = hum_spectrum(x, rate)
    if noise <= 0.0:
        return None, -100.0

    best, best_snr = None, -100.0
    for base in BASE_FREQUENCIES:
        peaks = []
        for k in range(1, 5):
            near = np.abs(freqs - k * base) <= 0.5
            if near.any() and k * base < rate / 2 - 10:
                peaks.append(float(np.max(spec[near])))
        if not peaks:
            continue
        snr_db = float(10.0 * np.log10(np.mean(np.square(peaks)) / noise ** 2))
        if snr_db > best_snr:
            best, best_snr = base, snr_db
    return best, best_snr


def _parabolic_peak(mag: np.ndarray, idx: int) -> float:
    if idx <= 0 or idx >= len(mag) - 1:
        return float(idx)
    a, b, c = np.log(mag[idx - 1:idx + 2] + 1e-20)
    denom = a - 2.0 * b + c
    return float(idx + 0.5 * (a - c) / denom) if denom != 0 else float(idx)


def _measure_peak(spec: np.ndarray, freqs: np.ndarray, target: float,
                  search_hz: float = 1.0) -> Tuple[float, float, float, float]:
    """Frequency, magnitude, local SNR (dB) and phase of the peak near ``target``."""
    mag = np.abs(spec)
    band = np.nonzero(np.abs(freqs - target) <= search_hz)[0]
    idx = int(band[np.argmax(mag[band])])
    bin_hz = freqs[1] - freqs[0]
    freq = _parabolic_peak(mag, idx) * bin_hz
    side = (np.abs(freqs - target) > 3.0) & (np.abs(freqs - target) <= 8.0)
    noise = float(np.median(mag[side])) + 1e-20
    return freq, float(mag[idx]), float(20.0 * np.log10(mag[idx] / noise + 1e-20)), float(np.angle(spec[idx]))


def track_frequency(x: np.ndarray, base: float, rate: int = ANALYSIS_RATE,
                    window_s: float = 1.0, hop_s: float = 0.5,
                    n_fft: int = 8192) -> List[EnfMeasurement]:
    window = int(window_s * rate)
    hop = int(hop_s * rate)
    win = np.hanning(window)
    norm = 2.0 / np.sum(win)
    freqs = rfftfreq(n_fft, 1.0 / rate)
    trace = []
    for start in range(0, len(x) - window + 1, hop):
        spec = rfft(x[start:start + window] * win, n=n_fft) * norm
        freq, mag, snr, phase = _measure_peak(spec, freqs, base)
        harmonic = None
        if 2 * base < rate / 2 - 10:
            h_freq, _, h_snr, _ = _measure_peak(spec, freqs, 2 * base, search_hz=2.0)
            if h_snr > 6.0:
                harmonic = h_freq
        trace.append(EnfMeasurement(
            time_s=start / rate,
            frequency_hz=freq,
            strength_db=float(20.0 * np.log10(mag + 1e-20)),
            snr_db=snr,
            phase=phase,
            harmonic_hz=harmonic,
        ))
    return trace


# ---------------------------------------------------------------------------
# Anomalies
# ---------------------------------------------------------------------------

def _wrap(phase: float) -> float:
    return float(np.angle(np.exp(1j * phase)))


def find_anomalies(trace: List[EnfMeasurement], hop_s: float = 0.5) -> List[EnfAnomaly]:
    anomalies: List[EnfAnomaly] = []
    if len(trace) < 3:
        return anomalies

    freqs = np.array([m.frequency_hz for m in trace])
    diffs = np.abs(np.diff(freqs))
    valid_pairs = [i for i in range(1, len(trace)) if trace[i].valid and trace[i - 1].valid]
    pair_diffs = np.array([diffs[i - 1] for i in valid_pairs]) if valid_pairs else np.zeros(0)
    sigma = 1.4826 * float(np.median(np.abs(pair_diffs - np.median(pair_diffs)))) if len(pair_diffs) else 0.0

    # Frequency jumps and phase discontinuities
    jumped = set()
    for i in valid_pairs:
        diff = float(diffs[i - 1])
        if diff > 0.1 and diff > 3.0 * sigma:
            jumped.add(i)
            anomalies.append(EnfAnomaly(
                'frequency_jump', trace[i - 1].time_s, hop_s, min(1.0, diff / 0.5),
                f"Frequency jump of {diff:.3f} Hz at {trace[i].time_s:.1f}s"))
    for i in valid_pairs:
        if i in jumped or (i - 1) in jumped or (i + 1) in jumped:
            continue
        f = 0.5 * (trace[i].frequency_hz + trace[i - 1].frequency_hz)
        residual = abs(_wrap(trace[i].phase - trace[i - 1].phase - 2.0 * np.pi * f * hop_s))
        if residual > np.pi / 2:
            anomalies.append(EnfAnomaly(
                'phase_discontinuity', trace[i - 1].time_s, hop_s, residual / np.pi,
                f"Phase discontinuity of {np.degrees(residual):.0f} degrees at {trace[i].time_s:.1f}s"))

    # Dropouts
    median_strength = float(np.median([m.strength_db for m in trace]))
    start = None
    for m in trace + [None]:
        weak = m is not None and m.strength_db < median_strength - 20.0
        if weak and start is None:
            start = m.time_s
        elif not weak and start is not None:
            end = m.time_s if m is not None else trace[-1].time_s + hop_s
            if end - start > 0.5:
                anomalies.append(EnfAnomaly(
                    'signal_dropout', start, end - start, min(1.0, (end - start) / 5.0),
                    f"ENF signal dropout for {end - start:.1f}s starting at {start:.1f}s"))
            start = None

    # Drift-rate changes over consecutive 3 s segments
    seg = max(3, int(round(3.0 / hop_s)))
    slopes = []
    for s in range(0, len(trace) - seg + 1, seg):
        chunk = trace[s:s + seg]
        if all(m.valid for m in chunk):
            t = np.array([m.time_s for m in chunk])
            slopes.append((chunk[0].time_s, float(np.polyfit(t, [m.frequency_hz for m in chunk], 1)[0])))
        else:
            slopes.append((chunk[0].time_s, None))
    for (t0, a), (t1, b) in zip(slopes, slopes[1:]):
        if a is None or b is None:
            continue
        if abs(b - a) > 0.02 and not any(t0 <= trace[i].time_s <= t1 + seg * hop_s for i in jumped):
            anomalies.append(EnfAnomaly(
                'drift_rate_change', t1, seg * hop_s, min(1.0, abs(b - a) / 0.1),
                f"Drift rate changes from {a:+.3f} to {b:+.3f} Hz/s at {t1:.1f}s"))

    # Harmonic disagreement
    disagree = [m for m in trace if m.valid and m.harmonic_hz is not None
                and abs(m.harmonic_hz / 2.0 - m.frequency_hz) > 0.1]
    if disagree and len(disagree) >= max(2, len(trace) // 10):
        first = disagree[0]
        anomalies.append(EnfAnomaly(
            'harmonic_anomaly', first.time_s, hop_s * len(disagree),
            min(1.0, len(disagree) / len(trace)),
            f"Second harmonic disagrees with the fundamental in {len(disagree)} windows"))

    anomalies.sort(key=lambda a: (a.time_s, a.kind))
    return anomalies


def stability_score(trace: List[EnfMeasurement]) -> float:
    valid = [m.frequency_hz for m in trace if m.valid]
    if len(valid) < 3:
        return 0.0
    cv = float(np.std(valid) / np.mean(valid))
    return float(np.clip(1.0 - cv * 500.0, 0.0, 1.0))


def harmonic_confidence(snr_ratio: float) -> float:
    if snr_ratio > 10.0:
        return 0.95
    if snr_ratio > 5.0:
        return 0.7 + (snr_ratio - 5.0) * 0.05
    if snr_ratio > 2.0:
        return 0.4 + (snr_ratio - 2.0) * 0.1
    return max(0.0, snr_ratio * 0.2)


def detection_confidence(harmonic_snrs: List[float], snr_db: float,
                         trace: List[EnfMeasurement]) -> float:
    strong = sum(1 for r in harmonic_snrs if harmonic_confidence(r) > 0.6)
    confidence = min(1.0, strong / 4.0) * 0.4
    if snr_db > 10.0:
        confidence += 0.3
    elif snr_db > 5.0:
        confidence += 0.2
    elif snr_db > 2.0:
        confidence += 0.1
    valid = sum(1 for m in trace if m.valid)
    if valid > 20:
        confidence += 0.3
    elif valid > 10:
        confidence += 0.2
    elif valid > 5:
        confidence += 0.1
    return min(0.95, confidence)


class EnfDetector:
    """Mains-hum trace and edit anomalies."""

    THRESHOLDS = {
        'min_snr_db': 6.0,
        'min_duration_s': 2.0,
    }

    def analyze(self, buffer: SampleBuffer) -> Optional[RawDetection]:
        if buffer.duration < self.THRESHOLDS['min_duration_s']:
            return None
        x = decimate_to(buffer.mono(), buffer.sample_rate)
        base, snr_db = detect_base_frequency(x)
        if base is None or snr_db < self.THRESHOLDS['min_snr_db']:
            logger.debug(f"No ENF trace (best SNR {snr_db:.1f} dB)")
            return None

        trace = track_frequency(x, base)
        anomalies = find_anomalies(trace)

        spec, freqs, noise = hum_spectrum(x)
        harmonic_snrs = []
        for k in range(1, 5):
            near = np.abs(freqs - k * base) <= 0.5
            if near.any() and k * base < ANALYSIS_RATE / 2 - 10:
                harmonic_snrs.append(float(np.max(spec[near])) / noise)

        confidence = detection_confidence(harmonic_snrs, snr_db, trace)
        stability = stability_score(trace)
        valid = [m.frequency_hz for m in trace if m.valid]
        mean_freq = float(np.mean(valid)) if valid else base

        evidence = [
            f"{base:.0f} Hz mains hum at {snr_db:.1f} dB SNR ({REGIONS[base]})",
            f"Trace mean {mean_freq:.3f} Hz, stability {stability:.2f}",
        ]
        evidence.extend(a.description for a in anomalies[:5])
        if anomalies:
            summary = f"ENF trace shows {len(anomalies)} anomalies (possible edits)"
        else:
            summary = f"Continuous {base:.0f} Hz ENF trace"

        return RawDetection(
            detector=DetectorType.ENF,
            # Clean traces carry no penalty
            raw_confidence=max(0.3, confidence) if anomalies else 0.0,
            severity=Severity.WARNING if anomalies else Severity.INFO,
            summary=summary,
            evidence=tuple(evidence),
            data={
                'base_frequency_hz': base,
                'trace_confidence': round(confidence, 3),
                'snr_db': round(snr_db, 2),
                'region': REGIONS[base],
                'mean_frequency_hz': round(mean_freq, 4),
                'stability': round(stability, 4),
                'anomalies': [
                    {'type': a.kind, 'time_s': round(a.time_s, 2),
                     'duration_s': round(a.duration_s, 2), 'severity': round(a.severity, 3)}
                    for a in anomalies
                ],
                'edit_score': round(max((ANOMALY_WEIGHTS[a.kind] * a.severity for a in anomalies),
                                        default=0.0), 3),
            },
        )
