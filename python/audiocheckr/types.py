"""Type definitions for audiocheckr."""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np


class DetectorType(Enum):
    """Identity of every detector the pipeline knows about."""
    SPECTRAL_CUTOFF = "spectral_cutoff"
    CODEC_SIGNATURE = "codec_signature"
    BIT_DEPTH = "bit_depth"
    UPSAMPLING = "upsampling"
    DITHERING = "dithering"
    RESAMPLING = "resampling"
    STEREO_FIELD = "stereo_field"
    PRE_ECHO = "pre_echo"
    PHASE_COHERENCE = "phase_coherence"
    TRUE_PEAK = "true_peak"
    MQA = "mqa"
    ENF = "enf"
    INPUT = "input"

    @classmethod
    def parse(cls, name: str) -> "DetectorType":
        """Look up a detector by value or member name, case-insensitive."""
        key = name.strip().lower().replace("-", "_")
        for member in cls:
            if member.value == key or member.name.lower() == key:
                return member
        raise ValueError(f"Unknown detector: {name}")


class Severity(Enum):
    """Severity tier of a detection."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def weight(self) -> float:
        return SEVERITY_WEIGHTS[self]


SEVERITY_WEIGHTS = {
    Severity.INFO: 0.05,
    Severity.WARNING: 0.25,
    Severity.CRITICAL: 0.6,
}


class Verdict(Enum):
    """Overall verdict of an analysis."""
    LOSSLESS = "lossless"
    PROBABLY_LOSSLESS = "probably_lossless"
    UNCERTAIN = "uncertain"
    PROBABLY_LOSSY = "probably_lossy"
    LOSSY = "lossy"

    @property
    def rank(self) -> int:
        """0 for LOSSLESS up to 4 for LOSSY."""
        return list(Verdict).index(self)


@dataclass(frozen=True, eq=False)
class SampleBuffer:
    """Decoded audio, one row per channel. The arrays are read-only."""
    channels: np.ndarray
    sample_rate: int
    bit_depth: int

    def __post_init__(self):
        data = np.array(self.channels, dtype=np.float64, copy=True)
        if data.ndim == 1:
            data = data[np.newaxis, :]
        if data.ndim != 2:
            raise ValueError("channels must be a 1-D or 2-D array")
        if self.sample_rate <= 0:
            raise ValueError(f"Invalid sample rate: {self.sample_rate}")
        data.setflags(write=False)
        object.__setattr__(self, "channels", data)
        mono = data.mean(axis=0) if data.shape[0] > 1 else data[0].copy()
        mono.setflags(write=False)
        object.__setattr__(self, "_mono", mono)

    @classmethod
    def from_interleaved(cls, samples: np.ndarray, n_channels: int,
                         sample_rate: int, bit_depth: int) -> "SampleBuffer":
        samples = np.asarray(samples, dtype=np.float64)
        n_frames = len(samples) // n_channels
        frames = samples[:n_frames * n_channels].reshape(n_frames, n_channels)
        return cls(frames.T, sample_rate, bit_depth)

    @classmethod
    def from_channels(cls, channels: Sequence[np.ndarray], sample_rate: int,
                      bit_depth: int) -> "SampleBuffer":
        length = min(len(c) for c in channels)
        return cls(np.vstack([np.asarray(c, dtype=np.float64)[:length] for c in channels]),
                   sample_rate, bit_depth)

    @property
    def n_channels(self) -> int:
        return self.channels.shape[0]

    @property
    def n_frames(self) -> int:
        return self.channels.shape[1]

    @property
    def duration(self) -> float:
        return self.n_frames / self.sample_rate

    @property
    def nyquist(self) -> float:
        return self.sample_rate / 2.0

    def mono(self) -> np.ndarray:
        """Channel-averaged samples."""
        return self._mono

    def channel(self, index: int) -> np.ndarray:
        return self.channels[index]


@dataclass(frozen=True)
class RawDetection:
    """A single detector's output before any profile adjustment."""
    detector: DetectorType
    raw_confidence: float
    severity: Severity
    summary: str
    evidence: Tuple[str, ...] = ()
    data: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        conf = float(self.raw_confidence)
        if not np.isfinite(conf):
            raise ValueError("raw_confidence must be finite")
        object.__setattr__(self, "raw_confidence", min(1.0, max(0.0, conf)))
        object.__setattr__(self, "evidence", tuple(self.evidence))


@dataclass(frozen=True)
class Finding:
    """A detection after the active profile has been applied."""
    detector: DetectorType
    raw_confidence: float
    confidence: float
    severity: Severity
    summary: str
    evidence: Tuple[str, ...] = ()
    data: Dict[str, Any] = field(default_factory=dict)
    suppressed_reason: Optional[str] = None

    @classmethod
    def from_raw(cls, raw: RawDetection, confidence: float,
                 suppressed_reason: Optional[str] = None) -> "Finding":
        return cls(
            detector=raw.detector,
            raw_confidence=raw.raw_confidence,
            confidence=confidence,
            severity=raw.severity,
            summary=raw.summary,
            evidence=raw.evidence,
            data=raw.data,
            suppressed_reason=suppressed_reason,
        )

    @property
    def penalty(self) -> float:
        return self.severity.weight * self.confidence


@dataclass(frozen=True)
class AnalysisResult:
    """Complete analysis result."""
    profile_name: str
    verdict: Verdict
    quality_score: Optional[float]
    findings: Tuple[Finding, ...] = ()
    suppressed: Tuple[Finding, ...] = ()
    insufficient_data: bool = False
    sample_rate: int = 0
    bit_depth: int = 0
    duration: float = 0.0
    skipped: Tuple[str, ...] = ()
    errors: Tuple[str, ...] = ()

    def findings_for(self, detector: DetectorType) -> List[Finding]:
        return [f for f in self.findings if f.detector == detector]

    def suppressed_for(self, detector: DetectorType) -> List[Finding]:
        return [f for f in self.suppressed if f.detector == detector]

    @property
    def has_critical(self) -> bool:
        return any(f.severity == Severity.CRITICAL for f in self.findings)
