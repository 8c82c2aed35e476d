"""
audiocheckr - Audio Quality Forensics

Detects audio whose claimed quality is not genuine: lossy transcodes
passed off as lossless, bit-depth padding, upsampling, dithering and
MQA-style low-bit encoding.
"""

from .types import (
    AnalysisResult,
    DetectorType,
    Finding,
    RawDetection,
    SampleBuffer,
    Severity,
    Verdict,
)
from .profiles import (
    ConfidenceModifier,
    Profile,
    ProfileBuilder,
    ProfilePreset,
    available_profiles,
    get_profile,
)
from .pipeline import DetectionContext, DetectionPipeline, analyze
from .decoder import DecodeError, decode_wav, load_wav

__version__ = "0.1.0"
__all__ = [
    "AnalysisResult",
    "DetectorType",
    "Finding",
    "RawDetection",
    "SampleBuffer",
    "Severity",
    "Verdict",
    "ConfidenceModifier",
    "Profile",
    "ProfileBuilder",
    "ProfilePreset",
    "available_profiles",
    "get_profile",
    "DetectionContext",
    "DetectionPipeline",
    "analyze",
    "DecodeError",
    "decode_wav",
    "load_wav",
]
