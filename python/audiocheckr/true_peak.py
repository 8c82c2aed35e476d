"""
True peak, clipping and loudness analysis.

True peak is measured with 4x polyphase oversampling so that peaks between
samples are found.  Clipping is described as runs of samples at or above
full scale and each run is classified by shape.  Loudness statistics use
400 ms windows with a 200 ms hop.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np
from scipy.signal import resample_poly

from .types import DetectorType, RawDetection, SampleBuffer, Severity

logger = logging.getLogger(__name__)

OVERSAMPLE = 4
CLIP_LEVEL = 0.9999


def oversample(samples: np.ndarray, factor: int = OVERSAMPLE) -> np.ndarray:
    """Polyphase interpolation by an integer factor."""
    return resample_poly(np.asarray(samples, dtype=np.float64), factor, 1)


def true_peak(samples: np.ndarray, factor: int = OVERSAMPLE) -> Tuple[float, int]:
    """Return ``(true_peak_linear, inter_sample_overs)``.

    Inter-sample overs are interpolated points between original sample
    instants whose magnitude exceeds full scale.
    """
    samples = np.asarray(samples, dtype=np.float64)
    if len(samples) == 0:
        return 0.0, 0
    up = oversample(samples, factor)
    peak = max(float(np.max(np.abs(up))), float(np.max(np.abs(samples))))
    between = np.arange(len(up)) % factor != 0
    overs = int(np.count_nonzero(np.abs(up[between]) > 1.0))
    return peak, overs


def to_db(value: float) -> float:
    return float(20.0 * np.log10(value)) if value > 1e-10 else -200.0


# ---------------------------------------------------------------------------
# Clipping
# ---------------------------------------------------------------------------

@dataclass
class ClipEvent:
    start: int
    length: int
    kind: str
    positive: bool


@dataclass
class ClippingStats:
    clipped_samples: int = 0
    positive: int = 0
    negative: int = 0
    max_run: int = 0
    events: List[ClipEvent] = field(default_factory=list)

    def counts(self) -> Dict[str, int]:
        out = {'hard_digital': 0, 'soft_analog': 0, 'limiter': 0, 'unknown': 0}
        for event in self.events:
            out[event.kind] += 1
        return out

    @property
    def asymmetry(self) -> float:
        return self.positive / max(1, self.negative)

    def merge(self, other: "ClippingStats") -> None:
        self.clipped_samples += other.clipped_samples
        self.positive += other.positive
        self.negative += other.negative
        self.max_run = max(self.max_run, other.max_run)
        self.events.extend(other.events)


def _clip_runs(mask: np.ndarray) -> List[Tuple[int, int]]:
    padded = np.concatenate(([0], mask.astype(np.int8), [0]))
    edges = np.diff(padded)
    starts = np.nonzero(edges == 1)[0]
    ends = np.nonzero(edges == -1)[0]
    return list(zip(starts.tolist(), (ends - starts).tolist()))


def classify_clip(samples: np.ndarray, start: int, length: int) -> str:
    """Classify one clip run by the flatness of its top and its approach."""
    if length <= 3:
        return 'limiter'
    run = np.abs(samples[start:start + length])
    flatness = float(np.mean(np.abs(np.diff(run)) < 1e-6))
    if flatness > 0.95:
        return 'hard_digital'
    lead = np.abs(samples[max(0, start - 8):start])
    if len(lead) >= 2 and np.all(np.diff(lead) >= 0) and flatness < 0.5:
        return 'soft_analog'
    return 'unknown'


def detect_clipping(samples: np.ndarray, level: float = CLIP_LEVEL) -> ClippingStats:
    samples = np.asarray(samples, dtype=np.float64)
    mask = np.abs(samples) >= level
    clipped = int(np.count_nonzero(mask))
    if clipped == 0:
        return ClippingStats()
    runs = _clip_runs(mask)
    events = [ClipEvent(s, n, classify_clip(samples, s, n), bool(samples[s] > 0))
              for s, n in runs if n >= 2]
    return ClippingStats(
        clipped_samples=clipped,
        positive=int(np.count_nonzero(samples >= level)),
        negative=int(np.count_nonzero(samples <= -level)),
        max_run=max(n for _, n in runs),
        events=events,
    )


def likely_cause(stats: ClippingStats) -> Optional[str]:
    """Majority event type decides the cause."""
    if not stats.events:
        return None
    counts = stats.counts()
    half = len(stats.events) / 2
    if counts['limiter'] > half:
        return 'mastering_limiting'
    if counts['hard_digital'] > half:
        if stats.asymmetry > 2.0 or stats.asymmetry < 0.5:
            return 'adc_overload'
        return 'recording_overload'
    if counts['soft_analog'] > half:
        return 'distortion_effect'
    return 'unknown'


# ---------------------------------------------------------------------------
# Loudness
# ---------------------------------------------------------------------------

@dataclass
class LoudnessStats:
    integrated_lufs: float
    dynamic_range_db: float
    loudness_range_lu: float
    crest_factor_db: float
    plr_db: float
    compression_severity: float


def loudness_stats(samples: np.ndarray, sample_rate: int,
                   peak_dbtp: float) -> Optional[LoudnessStats]:
    """Window-RMS loudness approximation (400 ms windows, 200 ms hop)."""
    window = int(0.4 * sample_rate)
    hop = int(0.2 * sample_rate)
    if window == 0 or len(samples) < window:
        return None
    rms = np.array([np.sqrt(np.mean(samples[s:s + window] ** 2))
                    for s in range(0, len(samples) - window + 1, hop)])
    if not np.any(rms > 1e-10):
        return None

    # Simplified K-weighting offset
    integrated = to_db(float(np.mean(rms))) - 0.691
    ordered = np.sort(rms)
    p10 = ordered[len(ordered) // 10]
    p95 = ordered[len(ordered) * 95 // 100]
    spread = to_db(p95 / max(p10, 1e-10)) if p95 > 0 else 0.0
    gated = rms[rms > 10 ** ((integrated - 20.0) / 20.0)]
    if len(gated) > 2:
        lra = float(to_db(np.percentile(gated, 95)) - to_db(np.percentile(gated, 10)))
    else:
        lra = spread
    crest = peak_dbtp - integrated
    severity = min(1.0, max(0.0, (-integrated - 14.0) / 10.0) * 0.3
                   + max(0.0, (8.0 - spread) / 8.0) * 0.4
                   + max(0.0, (10.0 - crest) / 10.0) * 0.3)
    return LoudnessStats(
        integrated_lufs=float(integrated),
        dynamic_range_db=float(spread),
        loudness_range_lu=lra,
        crest_factor_db=float(crest),
        plr_db=float(crest),
        compression_severity=float(severity),
    )


# ---------------------------------------------------------------------------
# Detector
# ---------------------------------------------------------------------------

class TruePeakDetector:
    """True-peak overs, clipping and loudness-war mastering."""

    THRESHOLDS = {
        'loudness_war_lufs': -10.0,
        'loudness_war_dr': 6.0,
        'loudness_war_crest': 8.0,
        'warning_clip_ratio': 0.0001,
        'isp_warning_dbtp': 1.0,
    }

    def analyze(self, buffer: SampleBuffer) -> Optional[RawDetection]:
        peak = 0.0
        overs = 0
        clipping = ClippingStats()
        for ch in range(buffer.n_channels):
            samples = buffer.channel(ch)
            p, o = true_peak(samples)
            peak = max(peak, p)
            overs += o
            clipping.merge(detect_clipping(samples))
        total = buffer.n_frames * buffer.n_channels
        clip_ratio = clipping.clipped_samples / total if total else 0.0

        peak_db = to_db(peak)
        loudness = loudness_stats(buffer.mono(), buffer.sample_rate, peak_db)
        loudness_war = bool(
            loudness is not None
            and loudness.integrated_lufs > self.THRESHOLDS['loudness_war_lufs']
            and loudness.dynamic_range_db < self.THRESHOLDS['loudness_war_dr']
            and loudness.crest_factor_db < self.THRESHOLDS['loudness_war_crest']
        )

        if clipping.clipped_samples == 0 and overs == 0 and not loudness_war:
            return None

        score = severity_score(clip_ratio, overs, clipping.max_run, loudness_war)
        cause = likely_cause(clipping)
        if cause is None and loudness_war:
            cause = 'mastering_limiting'

        evidence = [f"True peak {peak_db:+.2f} dBTP"]
        if clipping.clipped_samples:
            evidence.append(f"{clipping.clipped_samples} clipped samples "
                            f"({clip_ratio * 100:.3f}%), longest run {clipping.max_run}")
        if overs:
            evidence.append(f"{overs} inter-sample overs")
        if loudness_war:
            evidence.append(
                f"Loudness war characteristics (DR: {loudness.dynamic_range_db:.1f} dB, "
                f"crest: {loudness.crest_factor_db:.1f} dB)")
        if cause:
            evidence.append(f"Likely cause: {cause.replace('_', ' ')}")

        if clipping.clipped_samples:
            summary = "Clipping detected"
        elif loudness_war:
            summary = "Heavily limited master"
        else:
            summary = f"Inter-sample peaks reach {peak_db:+.2f} dBTP"
        data = {
            'true_peak_dbtp': round(peak_db, 2),
            'inter_sample_overs': overs,
            'clipped_samples': clipping.clipped_samples,
            'clip_ratio': round(clip_ratio, 6),
            'max_run': clipping.max_run,
            'clip_events': clipping.counts(),
            'likely_cause': cause,
            'loudness_war': loudness_war,
            'severity_score': round(score, 3),
        }
        if loudness is not None:
            data.update({
                'integrated_lufs': round(loudness.integrated_lufs, 2),
                'dynamic_range_db': round(loudness.dynamic_range_db, 2),
                'loudness_range_lu': round(loudness.loudness_range_lu, 2),
                'crest_factor_db': round(loudness.crest_factor_db, 2),
                'plr_db': round(loudness.plr_db, 2),
                'compression_severity': round(loudness.compression_severity, 3),
            })

        if clipping.clipped_samples:
            warn = clip_ratio > self.THRESHOLDS['warning_clip_ratio']
        else:
            warn = overs > 0 and peak_db > self.THRESHOLDS['isp_warning_dbtp']
        return RawDetection(
            detector=DetectorType.TRUE_PEAK,
            raw_confidence=0.5 + 0.45 * score,
            severity=Severity.WARNING if warn else Severity.INFO,
            summary=summary,
            evidence=tuple(evidence),
            data=data,
        )


def severity_score(clip_ratio: float, overs: int, max_run: int, loudness_war: bool) -> float:
    """0-1 score from clip percentage, overs, run length and loudness."""
    score = min(clip_ratio * 100.0, 0.4)
    score += min(overs / 100.0, 0.2)
    score += min(max_run / 50.0, 0.2)
    if loudness_war:
        score += 0.2
    return float(min(1.0, score))
