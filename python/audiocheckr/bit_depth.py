"""
Bit-depth forensics.

Decides whether the container's claimed bit depth matches the effective
resolution of the samples.  Four independent sample-domain methods vote:

  1. LSB trailing-zero analysis  - padding leaves the low 8 bits empty
  2. Histogram uniqueness        - distinct 24-bit levels vs 16-bit levels
  3. Quantization noise floor    - finest grid on which a quiet section sits
  4. Value clustering            - low-byte entropy and concentration

A mismatch needs three strong votes, or two strong votes that also
outweigh the dissent by 1.5x, and then an overall confidence of at least
0.85.  Dithered 24-bit masters can look superficially like padded 16-bit
data, so weaker agreement trusts the claim.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from .types import DetectorType, RawDetection, SampleBuffer, Severity

logger = logging.getLogger(__name__)

SCALE_24 = 8388608.0
SCALE_16 = 32768.0

# Low-byte values that stay on (or one step off) the 16-bit grid
GRID_LOW_BYTES = np.array([0x00, 0x01, 0x7F, 0x80, 0x81, 0xFF])


@dataclass
class MethodResult:
    """Verdict of one bit-depth method."""
    name: str
    bits: int
    confidence: float
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_16_bit(self) -> bool:
        return self.bits <= 16


def _to_int24(samples: np.ndarray) -> np.ndarray:
    return np.round(np.asarray(samples, dtype=np.float64) * SCALE_24).astype(np.int64)


# ---------------------------------------------------------------------------
# 1. LSB trailing-zero analysis
# ---------------------------------------------------------------------------

def analyze_lsb(samples: np.ndarray, max_samples: int = 100000) -> MethodResult:
    """Fraction of 24-bit integers whose low 8 bits are empty."""
    ints = _to_int24(samples[:max_samples])
    ints = ints[ints != 0]
    if len(ints) < 1000:
        return MethodResult('lsb', 24, 0.3, {'note': 'Too few non-silent samples'})

    low = np.abs(ints) & 0xFF
    ratio_8plus = float(np.mean(low == 0))
    info_ratio = float(np.mean(~np.isin(low, GRID_LOW_BYTES)))
    details = {
        'ratio_8plus_zeros': round(ratio_8plus, 4),
        'lsb_information_ratio': round(info_ratio, 4),
        'n_samples': int(len(ints)),
    }

    if ratio_8plus > 0.95 and info_ratio < 0.02:
        return MethodResult('lsb', 16, 0.95, details)
    if ratio_8plus > 0.90 and info_ratio < 0.05:
        return MethodResult('lsb', 16, 0.85, details)
    if info_ratio > 0.30:
        return MethodResult('lsb', 24, 0.90, details)
    if info_ratio > 0.15:
        return MethodResult('lsb', 24, 0.75, details)
    return MethodResult('lsb', 24, 0.60, details)


# ---------------------------------------------------------------------------
# 2. Histogram uniqueness
# ---------------------------------------------------------------------------

def analyze_histogram(samples: np.ndarray, max_samples: int = 200000) -> MethodResult:
    """Compare the number of distinct levels at 16-bit and 24-bit resolution."""
    window = np.asarray(samples[:max_samples], dtype=np.float64)
    if len(window) == 0:
        return MethodResult('histogram', 24, 0.3, {'note': 'No samples'})

    unique_16 = np.unique(np.round(window * SCALE_16).astype(np.int64))
    unique_24 = np.unique(np.round(window * SCALE_24).astype(np.int64))
    ratio = len(unique_24) / max(1, len(unique_16))
    clustering = float(np.mean(np.isin(unique_24 % 256, (0, 1, 255))))
    details = {
        'unique_16': int(len(unique_16)),
        'unique_24': int(len(unique_24)),
        'unique_ratio': round(ratio, 3),
        'boundary_clustering': round(clustering, 4),
    }

    if ratio > 100.0:
        return MethodResult('histogram', 24, 0.95, details)
    if ratio < 1.2 and clustering > 0.85:
        return MethodResult('histogram', 16, 0.95, details)
    if ratio < 3.0 and clustering > 0.7:
        return MethodResult('histogram', 16, 0.80, details)
    if ratio > 10.0 and clustering < 0.3:
        return MethodResult('histogram', 24, 0.85, details)
    if clustering > 0.5:
        return MethodResult('histogram', 16, 0.55, details)
    return MethodResult('histogram', 24, 0.55, details)


# ---------------------------------------------------------------------------
# 3. Quantization noise floor
# ---------------------------------------------------------------------------

def _requantization_residual(section: np.ndarray, bits: int) -> float:
    scale = float(2 ** (bits - 1))
    residual = section - np.round(section * scale) / scale
    return float(np.sqrt(np.mean(residual ** 2)))


def analyze_noise_floor(samples: np.ndarray, section_size: int = 16384,
                        max_sections: int = 20) -> MethodResult:
    """Estimate the quantization noise floor of the quietest section.

    A section whose requantization residual vanishes on a ``b``-bit grid
    has a floor near ``-6.02 * b`` dBFS: about -96 dB for 16-bit sources and
    -144 dB for genuine 24-bit ones.
    """
    samples = np.asarray(samples, dtype=np.float64)
    n_sections = min(len(samples) // section_size, max_sections)
    if n_sections == 0:
        return MethodResult('noise_floor', 24, 0.3, {'note': 'Too short for section analysis'})

    sections = samples[:n_sections * section_size].reshape(n_sections, section_size)
    rms = np.sqrt(np.mean(sections ** 2, axis=1))
    active = np.nonzero(rms > 1e-8)[0]
    if len(active) == 0:
        return MethodResult('noise_floor', 24, 0.3, {'note': 'Only digital silence'})
    quietest = sections[active[np.argmin(rms[active])]]

    effective_bits = 32
    for bits in (16, 20, 24):
        lsb_rms = (1.0 / 2 ** (bits - 1)) / np.sqrt(12.0)
        if _requantization_residual(quietest, bits) < 0.01 * lsb_rms:
            effective_bits = bits
            break

    floor_db = -6.02 * effective_bits
    distance = abs(floor_db + 120.0)
    confidence = float(np.clip(0.5 + 0.45 * distance / 24.0, 0.5, 0.95))
    bits = 16 if floor_db > -120.0 else 24
    details = {
        'noise_floor_db': round(floor_db, 1),
        'grid_bits': effective_bits,
        'section_rms_db': round(float(20 * np.log10(rms[active].min())), 1),
    }
    return MethodResult('noise_floor', bits, confidence, details)


# ---------------------------------------------------------------------------
# 4. Value clustering
# ---------------------------------------------------------------------------

def analyze_value_clustering(samples: np.ndarray, max_samples: int = 100000) -> MethodResult:
    """Check whether values land on multiples of 256 in the 24-bit domain."""
    ints = _to_int24(samples[:max_samples])
    ints = ints[ints != 0]
    if len(ints) == 0:
        return MethodResult('clustering', 24, 0.3, {'note': 'No non-silent samples'})

    low = (np.abs(ints) & 0xFF).astype(np.int64)
    counts = np.bincount(low, minlength=256)
    probs = counts[counts > 0] / len(low)
    entropy = float(-np.sum(probs * np.log2(probs)) / 8.0)
    unique = int(np.count_nonzero(counts))
    concentration = float((counts[0x00] + counts[0x80]) / len(low))
    details = {
        'unique_low_bytes': unique,
        'concentration_00_80': round(concentration, 4),
        'normalized_entropy': round(entropy, 4),
    }

    if unique < 10 or concentration > 0.8:
        return MethodResult('clustering', 16, 0.90, details)
    if entropy > 0.95 and unique > 200:
        return MethodResult('clustering', 24, 0.85, details)
    if entropy < 0.5 or unique < 50:
        return MethodResult('clustering', 16, 0.75, details)
    if entropy > 0.8:
        return MethodResult('clustering', 24, 0.60, details)
    return MethodResult('clustering', 16, 0.55, details)


# ---------------------------------------------------------------------------
# Voting
# ---------------------------------------------------------------------------

def vote_bit_depth(results: List[MethodResult], strong: float = 0.8,
                   weight_ratio: float = 1.5) -> Tuple[bool, float]:
    """Conservative vote over the method results.

    Returns:
        (mismatch, combined_confidence) where combined confidence is the
        16-bit share of the confidence-weighted vote.
    """
    vote_16 = sum(r.confidence for r in results if r.is_16_bit)
    vote_24 = sum(r.confidence for r in results if not r.is_16_bit)
    strong_16 = sum(1 for r in results if r.is_16_bit and r.confidence >= strong)

    total = vote_16 + vote_24
    combined = min(0.98, vote_16 / total) if total > 0 else 0.0

    if strong_16 >= 3:
        return True, combined
    if strong_16 == 2 and vote_16 >= weight_ratio * vote_24:
        return True, combined
    return False, combined


class BitDepthDetector:
    """Effective versus claimed bit depth."""

    THRESHOLDS = {
        'strong_vote': 0.8,
        'weight_ratio': 1.5,
        'min_confidence': 0.85,
    }

    def analyze(self, buffer: SampleBuffer) -> Optional[RawDetection]:
        if buffer.bit_depth <= 16:
            return None
        samples = buffer.channel(0)

        results = [
            analyze_lsb(samples),
            analyze_histogram(samples),
            analyze_noise_floor(samples),
            analyze_value_clustering(samples),
        ]
        mismatch, confidence = vote_bit_depth(
            results, self.THRESHOLDS['strong_vote'], self.THRESHOLDS['weight_ratio'])

        evidence = [f"{r.name}: {r.bits}-bit ({r.confidence * 100:.0f}%)" for r in results]
        logger.debug(f"Bit depth votes: {', '.join(evidence)}; combined {confidence:.2f}")

        if not mismatch or confidence < self.THRESHOLDS['min_confidence']:
            return None

        evidence.append(
            f"File claims {buffer.bit_depth}-bit but the samples carry 16-bit resolution")
        return RawDetection(
            detector=DetectorType.BIT_DEPTH,
            raw_confidence=confidence,
            severity=Severity.CRITICAL,
            summary=f"Bit depth mismatch: {buffer.bit_depth}-bit container holds 16-bit audio",
            evidence=tuple(evidence),
            data={
                'claimed_bit_depth': buffer.bit_depth,
                'effective_bit_depth': 16,
                'methods': {r.name: {'bits': r.bits, 'confidence': r.confidence, **r.details}
                            for r in results},
            },
        )
