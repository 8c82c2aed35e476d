"""
Codec-signature spectral detection.

Estimates the true frequency cutoff of a track and compares its shape with
the low-pass signatures left behind by lossy encoders:

  * MP3     - brick-wall low-pass between 15 and 20.5 kHz, keyed to bitrate
  * AAC     - a shelf below full level before a softer rolloff
  * Opus    - brick-wall at the 8 / 12 / 20 kHz internal band limits
  * Vorbis  - soft 15-45 dB/octave rolloff between 12 and 19 kHz

The pass/flag decision is sample-rate aware: genuine high-resolution content
often rolls off near 20 kHz, so ratio-of-Nyquist thresholds are only used at
standard rates.  When no table entry matches at a high rate the detector
stays silent instead of guessing a codec.
"""

import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Optional, Tuple

import numpy as np

from .spectral import (
    DB_FLOOR,
    DEFAULT_FRAMES,
    MAX_FRAMES,
    AveragedSpectrum,
    InsufficientData,
    compute_averaged_spectrum,
    default_fft_size,
    smooth_db,
)
from .types import DetectorType, RawDetection, SampleBuffer, Severity

logger = logging.getLogger(__name__)

HIGH_RATE = 88200

# Highest sample rate each encoder operates at natively
CODEC_MAX_SAMPLE_RATE = {
    "mp3": 48000,
    "aac": 48000,
    "opus": 48000,
    "vorbis": 192000,
}

# (upper cutoff bound in Hz, bitrate in kbps)
MP3_BITRATES = (
    (11000, 64), (14000, 96), (16000, 128), (17500, 160),
    (18500, 192), (19500, 224), (20000, 256), (20500, 320),
)
AAC_BITRATES = (
    (15000, 96), (16500, 128), (18000, 192), (19500, 256), (21000, 320),
)
# (upper cutoff bound in Hz, quality, nominal kbps)
VORBIS_QUALITIES = (
    (14000, "q3", 112), (16000, "q5", 160), (18000, "q6", 192), (19000, "q7", 224),
)
# (low Hz, high Hz, mode)
OPUS_MODES = (
    (7500, 8500, "wideband"),
    (11500, 12500, "super-wideband"),
    (19500, 20500, "fullband"),
)
MP3_TYPICAL_CUTOFFS = (16000, 18500, 19500, 20000)


def applicable_codecs(sample_rate: int) -> FrozenSet[str]:
    """Codecs whose signature can physically appear at ``sample_rate``."""
    return frozenset(c for c, max_sr in CODEC_MAX_SAMPLE_RATE.items() if sample_rate <= max_sr)


@dataclass(frozen=True)
class CutoffEstimate:
    """Shape of the high-frequency rolloff."""
    cutoff_hz: float
    reference_db: float
    steepness: float
    brick_wall: bool
    brick_wall_drop_db: float
    shelf: Optional[Tuple[float, float]] = None

    @property
    def has_shelf(self) -> bool:
        return self.shelf is not None


@dataclass(frozen=True)
class CodecMatch:
    """Best matching entry of the codec signature table."""
    codec: str
    bitrate_kbps: Optional[int] = None
    mode: Optional[str] = None

    @property
    def label(self) -> str:
        name = self.codec.upper() if self.codec in ("mp3", "aac") else self.codec.capitalize()
        if self.mode and self.bitrate_kbps:
            return f"{name} {self.mode} (~{self.bitrate_kbps} kbps)"
        if self.mode:
            return f"{name} {self.mode}"
        if self.bitrate_kbps:
            return f"{name} ~{self.bitrate_kbps} kbps"
        return name


# ---------------------------------------------------------------------------
# Cutoff estimation
# ---------------------------------------------------------------------------

def _level_at(freqs: np.ndarray, smoothed: np.ndarray, hz: float) -> float:
    return float(smoothed[int(np.argmin(np.abs(freqs - hz)))])


def detect_shelf(freqs: np.ndarray, smoothed: np.ndarray, reference_db: float,
                 cutoff_hz: float, band_hz: float = 500.0) -> Optional[Tuple[float, float]]:
    """Find a plateau 8-25 dB below the reference in the half octave-ish below the cutoff.

    Returns the (start, end) frequency range of the shelf, or None.
    """
    edges = np.arange(0.5 * cutoff_hz, cutoff_hz, band_hz)
    if len(edges) < 4:
        return None
    levels = []
    for lo in edges:
        mask = (freqs >= lo) & (freqs < lo + band_hz)
        levels.append(float(np.median(smoothed[mask])) if mask.any() else DB_FLOOR)
    levels = np.array(levels)
    attenuation = reference_db - levels

    start = 1
    while start < len(levels):
        if not 8.0 <= attenuation[start] <= 25.0:
            start += 1
            continue
        end = start
        while end + 1 < len(levels) and 8.0 <= attenuation[end + 1] <= 25.0:
            end += 1
        run = levels[start:end + 1]
        if (len(run) >= 3 and np.ptp(run) <= 4.0
                and levels[start - 1] - np.mean(run) >= 6.0):
            return float(edges[start]), float(edges[end] + band_hz)
        start = end + 1
    return None


def estimate_cutoff(spectrum: AveragedSpectrum, smoothing_hz: float = 200.0,
                    window_db: float = 30.0) -> Optional[CutoffEstimate]:
    """Locate the highest frequency within ``window_db`` of the 1-10 kHz peak.

    Returns None when the spectrum holds no usable reference (silence or a
    sample rate too low for the reference band).
    """
    freqs = spectrum.freqs
    smoothed = smooth_db(spectrum.values, round(smoothing_hz / spectrum.bin_hz))
    nyquist = spectrum.nyquist

    ref_mask = (freqs >= 1000.0) & (freqs <= min(10000.0, 0.9 * nyquist))
    if not ref_mask.any():
        return None
    reference = float(np.max(smoothed[ref_mask]))
    if reference <= DB_FLOOR + 10.0:
        return None

    above = np.nonzero((freqs >= 1000.0) & (smoothed >= reference - window_db))[0]
    if len(above) == 0:
        return None
    cutoff = float(freqs[above[-1]])

    # Rolloff steepness across one octave centred on the cutoff
    f_lo = cutoff / np.sqrt(2.0)
    f_hi = min(cutoff * np.sqrt(2.0), 0.99 * nyquist)
    if f_hi > cutoff * 1.02:
        drop = _level_at(freqs, smoothed, f_lo) - _level_at(freqs, smoothed, f_hi)
        steepness = max(0.0, drop / np.log2(f_hi / f_lo))
    else:
        steepness = 0.0

    # Brick-wall: a 40 dB plunge within +/-500 Hz of the cutoff
    upper = min(cutoff + 500.0, 0.99 * nyquist)
    if upper > cutoff + 100.0:
        brick_drop = _level_at(freqs, smoothed, cutoff - 500.0) - _level_at(freqs, smoothed, upper)
    else:
        brick_drop = 0.0

    return CutoffEstimate(
        cutoff_hz=cutoff,
        reference_db=reference,
        steepness=float(steepness),
        brick_wall=brick_drop >= 40.0,
        brick_wall_drop_db=float(brick_drop),
        shelf=detect_shelf(freqs, smoothed, reference, cutoff),
    )


# ---------------------------------------------------------------------------
# Policy and classification
# ---------------------------------------------------------------------------

def has_codec_signature(est: CutoffEstimate) -> bool:
    """Shape features that only a lossy encoder leaves behind."""
    if est.brick_wall and est.steepness > 40.0:
        return True
    if est.has_shelf:
        return True
    for lo, hi, _ in OPUS_MODES:
        if est.brick_wall and lo - 500 <= est.cutoff_hz <= hi + 500:
            return True
    return est.steepness > 50.0 and any(abs(est.cutoff_hz - f) <= 500 for f in MP3_TYPICAL_CUTOFFS)


def evaluate_cutoff_policy(est: CutoffEstimate, sample_rate: int) -> bool:
    """Sample-rate aware decision whether the cutoff looks like a lossy low-pass."""
    fc = est.cutoff_hz
    if sample_rate >= HIGH_RATE:
        if fc > 22000:
            return False
        if fc >= 20000:
            return est.brick_wall and est.steepness > 80.0
        if fc >= 18000:
            return est.brick_wall or est.steepness > 60.0
        if fc >= 15000:
            votes = sum([est.brick_wall, est.steepness > 50.0, est.has_shelf])
            return votes >= 2
        if fc >= 10000:
            return has_codec_signature(est)
        return est.brick_wall

    ratio = fc / (sample_rate / 2.0)
    if ratio >= 0.80:
        return False
    if ratio >= 0.70:
        return est.brick_wall or est.steepness > 40.0
    return True


def base_confidence(est: CutoffEstimate, sample_rate: int) -> float:
    fc = est.cutoff_hz
    if sample_rate >= HIGH_RATE:
        if fc < 12000:
            return 0.90
        if fc < 15000:
            return 0.75
        if fc < 18000:
            return 0.60
        return 0.50
    ratio = fc / (sample_rate / 2.0)
    if ratio < 0.70:
        return min(0.90, 0.75 + 1.5 * (0.70 - ratio))
    return 0.60


def _lookup(table, cutoff_hz):
    for bound, *rest in table:
        if cutoff_hz <= bound:
            return rest
    return table[-1][1:]


def classify_codec(est: CutoffEstimate,
                   allowed: Optional[Iterable[str]] = None) -> Optional[CodecMatch]:
    """Match a cutoff against the codec signature table.

    Returns None when nothing matches; there is no fallback codec.
    """
    allowed = set(CODEC_MAX_SAMPLE_RATE) if allowed is None else set(allowed)
    fc = est.cutoff_hz

    if "opus" in allowed and est.brick_wall:
        for lo, hi, mode in OPUS_MODES[:2]:
            if lo <= fc <= hi:
                return CodecMatch("opus", mode=mode)

    if "aac" in allowed and est.has_shelf:
        (bitrate,) = _lookup(AAC_BITRATES, fc)
        return CodecMatch("aac", bitrate_kbps=bitrate)

    if "mp3" in allowed and 15000 <= fc <= 20500:
        if (est.brick_wall and est.steepness > 50.0) or est.steepness > 70.0:
            (bitrate,) = _lookup(MP3_BITRATES, fc)
            return CodecMatch("mp3", bitrate_kbps=bitrate)

    if "opus" in allowed and est.brick_wall:
        lo, hi, mode = OPUS_MODES[2]
        if lo <= fc <= hi and est.steepness < 60.0:
            return CodecMatch("opus", mode=mode)

    if ("vorbis" in allowed and not est.brick_wall
            and 15.0 <= est.steepness <= 45.0 and 12000 <= fc <= 19000):
        quality, bitrate = _lookup(VORBIS_QUALITIES, fc)
        return CodecMatch("vorbis", bitrate_kbps=bitrate, mode=quality)

    return None


# ---------------------------------------------------------------------------
# Detector
# ---------------------------------------------------------------------------

class CodecSignatureDetector:
    """Spectral cutoff and lossy codec signature detector."""

    BOOSTS = {
        'brick_wall': 0.15,
        'steep': 0.10,         # steepness above 60 dB/octave
        'shelf': 0.10,
        'codec_match': 0.10,
    }
    MIN_CONFIDENCE = 0.55
    MAX_CONFIDENCE = 0.95

    def __init__(self, fft_size: Optional[int] = None, n_frames: int = DEFAULT_FRAMES):
        self._fft_size = fft_size
        self._n_frames = n_frames

    def analyze(self, buffer: SampleBuffer,
                allowed_codecs: Optional[Iterable[str]] = None) -> Optional[RawDetection]:
        """Return a codec or cutoff finding, or None when the spectrum looks clean."""
        sr = buffer.sample_rate
        fft_size = self._fft_size or default_fft_size(sr)
        n_frames = min(MAX_FRAMES, max(self._n_frames, buffer.n_frames // fft_size))
        spectrum = compute_averaged_spectrum(buffer.mono(), sr, fft_size=fft_size,
                                             n_frames=n_frames)
        if isinstance(spectrum, InsufficientData):
            logger.debug(f"Codec signature skipped: {spectrum.reason}")
            return None

        est = estimate_cutoff(spectrum)
        if est is None or not evaluate_cutoff_policy(est, sr):
            return None

        allowed = applicable_codecs(sr) if allowed_codecs is None else allowed_codecs
        match = classify_codec(est, allowed)
        if match is None and sr >= HIGH_RATE:
            logger.debug(f"Cutoff at {est.cutoff_hz:.0f} Hz matches no codec signature; no finding")
            return None

        confidence = self._confidence(est, sr, match)
        evidence = [
            f"Cutoff at {est.cutoff_hz:.0f} Hz ({est.cutoff_hz / (sr / 2) * 100:.1f}% of Nyquist)",
            f"Rolloff steepness {est.steepness:.1f} dB/octave",
        ]
        if est.brick_wall:
            evidence.append(f"Brick-wall drop of {est.brick_wall_drop_db:.1f} dB within 1 kHz")
        if est.has_shelf:
            evidence.append(f"Shelf between {est.shelf[0]:.0f} and {est.shelf[1]:.0f} Hz")

        data: Dict[str, object] = {
            'cutoff_hz': round(est.cutoff_hz, 1),
            'reference_db': round(est.reference_db, 2),
            'steepness_db_per_octave': round(est.steepness, 2),
            'brick_wall': est.brick_wall,
            'shelf': list(est.shelf) if est.shelf else None,
            'nyquist_ratio': round(est.cutoff_hz / (sr / 2), 4),
            'codec': match.codec if match else None,
            'bitrate_kbps': match.bitrate_kbps if match else None,
            'mode': match.mode if match else None,
        }

        if match is not None:
            evidence.append(f"Matches {match.label} signature")
            detector = DetectorType.CODEC_SIGNATURE
            summary = f"{match.label} transcode: low-pass at {est.cutoff_hz / 1000:.1f} kHz"
        else:
            detector = DetectorType.SPECTRAL_CUTOFF
            summary = f"Unidentified lossy codec: low-pass at {est.cutoff_hz / 1000:.1f} kHz"

        return RawDetection(
            detector=detector,
            raw_confidence=confidence,
            severity=Severity.CRITICAL if confidence >= 0.8 else Severity.WARNING,
            summary=summary,
            evidence=tuple(evidence),
            data=data,
        )

    def _confidence(self, est: CutoffEstimate, sample_rate: int,
                    match: Optional[CodecMatch]) -> float:
        conf = base_confidence(est, sample_rate)
        if est.brick_wall:
            conf += self.BOOSTS['brick_wall']
        if est.steepness > 60.0:
            conf += self.BOOSTS['steep']
        if est.has_shelf:
            conf += self.BOOSTS['shelf']
        if match is not None:
            conf += self.BOOSTS['codec_match']
        return float(np.clip(conf, self.MIN_CONFIDENCE, self.MAX_CONFIDENCE))
