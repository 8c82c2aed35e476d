"""
Detection pipeline.

Runs every applicable detector over one SampleBuffer, applies the active
profile, thresholds the adjusted confidences and folds the surviving
findings into a quality score and verdict.

Stages:
  1. Input validation (short-circuits malformed input)
  2. Gating by sample rate, bit depth, channels and duration
  3. Collection (parallel or sequential)
  4. Profile adjustment and thresholding
  5. Weighted vote
"""

import concurrent.futures
import logging
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple

from .bit_depth import BitDepthDetector
from .codec import CodecSignatureDetector, applicable_codecs
from .dither import DitherDetector
from .enf import EnfDetector
from .mqa import MQA_RATES, MqaDetector
from .phase import PhaseDetector
from .profiles import Profile, get_profile
from .resampling import ResamplerDetector, UpsamplingDetector, candidate_source_rates
from .stereo import StereoFieldDetector
from .transients import PreEchoDetector
from .true_peak import TruePeakDetector
from .types import (
    AnalysisResult,
    DetectorType,
    Finding,
    RawDetection,
    SampleBuffer,
    Severity,
    Verdict,
)

logger = logging.getLogger(__name__)

MIN_DURATION_S = 0.1
MIN_PEAK = 1.0 / 8388608.0
ENF_MIN_DURATION_S = 2.0

# Detectors left out in quick mode
QUICK_SKIP = frozenset({DetectorType.PHASE_COHERENCE, DetectorType.ENF})

_DETECTOR_ORDER = {d: i for i, d in enumerate(DetectorType)}


@dataclass(frozen=True)
class DetectionContext:
    """What the buffer allows each detector to say."""
    sample_rate: int
    bit_depth: int
    n_channels: int
    duration: float

    @classmethod
    def from_buffer(cls, buffer: SampleBuffer) -> "DetectionContext":
        return cls(buffer.sample_rate, buffer.bit_depth, buffer.n_channels, buffer.duration)

    @property
    def allowed_codecs(self) -> FrozenSet[str]:
        return applicable_codecs(self.sample_rate)

    def skip_reason(self, detector: DetectorType) -> Optional[str]:
        """Why ``detector`` cannot apply to this buffer, or None."""
        if detector in (DetectorType.CODEC_SIGNATURE, DetectorType.SPECTRAL_CUTOFF):
            if not self.allowed_codecs:
                return f"no lossy codec operates at {self.sample_rate} Hz"
        elif detector == DetectorType.MQA:
            if self.bit_depth != 24 or self.sample_rate not in MQA_RATES:
                return "MQA applies only to 24-bit 44.1/48 kHz"
        elif detector == DetectorType.STEREO_FIELD:
            if self.n_channels < 2:
                return "needs two channels"
        elif detector == DetectorType.UPSAMPLING:
            if not candidate_source_rates(self.sample_rate):
                return f"no lower source rate than {self.sample_rate} Hz"
        elif detector == DetectorType.DITHERING:
            if self.bit_depth <= 16:
                return "needs a container deeper than 16 bits"
        elif detector == DetectorType.ENF:
            if self.duration < ENF_MIN_DURATION_S:
                return f"needs at least {ENF_MIN_DURATION_S:.0f} s"
        return None

    def is_applicable(self, detector: DetectorType) -> bool:
        return self.skip_reason(detector) is None


def validate_input(buffer: SampleBuffer) -> Optional[str]:
    """Reason the buffer is unusable, or None."""
    if buffer.n_frames == 0:
        return "No audio frames"
    if buffer.duration < MIN_DURATION_S:
        return f"Audio too short for analysis ({buffer.duration:.3f}s < {MIN_DURATION_S}s)"
    peak = float(abs(buffer.channels).max())
    if peak <= MIN_PEAK:
        return "Audio is silent (peak below one 24-bit LSB)"
    return None


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

def finding_penalty(finding: Finding) -> float:
    penalty = finding.penalty
    if finding.confidence < 0.9:
        penalty = min(penalty, 0.5)
    return penalty


def quality_score(findings) -> float:
    total = sum(finding_penalty(f) for f in findings)
    return min(1.0, max(0.0, 1.0 - total))


def determine_verdict(score: float, findings) -> Verdict:
    if score >= 0.9:
        return Verdict.LOSSLESS
    if score >= 0.7:
        return Verdict.PROBABLY_LOSSLESS
    if score >= 0.5:
        return Verdict.UNCERTAIN
    critical = [f for f in findings if f.severity == Severity.CRITICAL]
    if any(f.confidence >= 0.85 for f in critical):
        return Verdict.LOSSY
    if critical:
        return Verdict.PROBABLY_LOSSY
    return Verdict.UNCERTAIN


def _order_key(finding: Finding):
    return (-finding.confidence, _DETECTOR_ORDER[finding.detector])


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class DetectionPipeline:
    """Gate, run and combine the detectors for one buffer.

    Args:
        profile: Active profile; the standard preset when omitted.
        max_workers: Run detectors in a thread pool when greater than 1.
        quick: Skip the slower phase and ENF analyses.
    """

    def __init__(self, profile: Optional[Profile] = None, max_workers: int = 1,
                 quick: bool = False):
        self.profile = profile or get_profile("standard")
        self._max_workers = max_workers
        self._quick = quick
        self._detectors: Dict[DetectorType, object] = {
            DetectorType.CODEC_SIGNATURE: CodecSignatureDetector(),
            DetectorType.BIT_DEPTH: BitDepthDetector(),
            DetectorType.UPSAMPLING: UpsamplingDetector(),
            DetectorType.RESAMPLING: ResamplerDetector(),
            DetectorType.DITHERING: DitherDetector(),
            DetectorType.STEREO_FIELD: StereoFieldDetector(),
            DetectorType.PRE_ECHO: PreEchoDetector(),
            DetectorType.PHASE_COHERENCE: PhaseDetector(),
            DetectorType.TRUE_PEAK: TruePeakDetector(),
            DetectorType.MQA: MqaDetector(),
            DetectorType.ENF: EnfDetector(),
        }

    def analyze(self, buffer: SampleBuffer) -> AnalysisResult:
        """Analyze one decoded buffer."""
        problem = validate_input(buffer)
        if problem is not None:
            logger.debug(f"Input rejected: {problem}")
            return self._insufficient(buffer, problem)

        context = DetectionContext.from_buffer(buffer)
        tasks, skipped = self._plan(context, buffer)

        raw: List[RawDetection] = []
        errors: List[str] = []
        if self._max_workers > 1:
            with concurrent.futures.ThreadPoolExecutor(max_workers=self._max_workers) as executor:
                futures = {
                    key: executor.submit(self._run, key, fn, args)
                    for key, fn, args in tasks
                }
                outcomes = [futures[key].result() for key, _, _ in tasks]
        else:
            outcomes = [self._run(key, fn, args) for key, fn, args in tasks]

        for detection, error in outcomes:
            if error is not None:
                errors.append(error)
            elif detection is not None:
                raw.append(detection)

        findings, suppressed = self.apply_profile(raw)
        score = quality_score(findings)
        verdict = determine_verdict(score, findings)
        logger.debug(f"Score {score:.3f} -> {verdict.value} ({len(findings)} findings, "
                     f"{len(suppressed)} suppressed)")

        return AnalysisResult(
            profile_name=self.profile.name,
            verdict=verdict,
            quality_score=round(score, 6),
            findings=tuple(findings),
            suppressed=tuple(suppressed),
            sample_rate=buffer.sample_rate,
            bit_depth=buffer.bit_depth,
            duration=buffer.duration,
            skipped=tuple(skipped),
            errors=tuple(errors),
        )

    def _plan(self, context: DetectionContext,
              buffer: SampleBuffer) -> Tuple[List[Tuple[DetectorType, Callable, tuple]], List[str]]:
        tasks = []
        skipped = []
        for key, detector in self._detectors.items():
            if self._quick and key in QUICK_SKIP:
                skipped.append(f"{key.value}: quick mode")
                continue
            if key == DetectorType.CODEC_SIGNATURE:
                if (self.profile.is_disabled(DetectorType.CODEC_SIGNATURE)
                        and self.profile.is_disabled(DetectorType.SPECTRAL_CUTOFF)):
                    continue
            elif self.profile.is_disabled(key):
                continue
            reason = context.skip_reason(key)
            if reason is not None:
                logger.debug(f"Skipping {key.value}: {reason}")
                skipped.append(f"{key.value}: {reason}")
                continue
            if key == DetectorType.CODEC_SIGNATURE:
                tasks.append((key, detector.analyze, (buffer, context.allowed_codecs)))
            else:
                tasks.append((key, detector.analyze, (buffer,)))
        return tasks, skipped

    @staticmethod
    def _run(key: DetectorType, fn: Callable,
             args: tuple) -> Tuple[Optional[RawDetection], Optional[str]]:
        try:
            return fn(*args), None
        except Exception as e:
            logger.warning(f"{key.value} detector failed: {e}")
            return None, f"{key.value}: {e}"

    def apply_profile(self, detections: List[RawDetection]) -> Tuple[List[Finding], List[Finding]]:
        """Split raw detections into active and suppressed findings."""
        profile = self.profile
        findings: List[Finding] = []
        suppressed: List[Finding] = []
        for det in detections:
            if profile.is_disabled(det.detector):
                continue
            confidence = profile.adjust_confidence(det.detector, det.raw_confidence)
            if profile.is_suppressed(det.detector):
                suppressed.append(Finding.from_raw(det, confidence, f"suppressed by profile '{profile.name}'"))
                continue
            threshold = profile.threshold_for(det.detector)
            if confidence < threshold:
                suppressed.append(Finding.from_raw(
                    det, confidence, f"confidence {confidence:.2f} below threshold {threshold:.2f}"))
                continue
            findings.append(Finding.from_raw(det, confidence))
        findings.sort(key=_order_key)
        suppressed.sort(key=_order_key)
        return findings, suppressed

    def _insufficient(self, buffer: SampleBuffer, reason: str) -> AnalysisResult:
        finding = Finding(
            detector=DetectorType.INPUT,
            raw_confidence=1.0,
            confidence=1.0,
            severity=Severity.INFO,
            summary="Insufficient data for analysis",
            evidence=(reason,),
        )
        return AnalysisResult(
            profile_name=self.profile.name,
            verdict=Verdict.UNCERTAIN,
            quality_score=None,
            findings=(finding,),
            insufficient_data=True,
            sample_rate=buffer.sample_rate,
            bit_depth=buffer.bit_depth,
            duration=buffer.duration,
        )


def analyze(buffer: SampleBuffer, profile: Optional[Profile] = None, **kwargs) -> AnalysisResult:
    """Convenience wrapper around :class:`DetectionPipeline`."""
    return DetectionPipeline(profile=profile, **kwargs).analyze(buffer)
