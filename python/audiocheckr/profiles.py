"""Detection profiles.

A profile bundles per-detector confidence adjustments tuned for a genre or
use case.  Profiles are immutable once built; use :class:`ProfileBuilder`
or one of the presets returned by :func:`get_profile`.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional

from .types import DetectorType


@dataclass(frozen=True)
class ConfidenceModifier:
    """Adjustment applied to one detector's confidence."""
    multiplier: float = 1.0
    suppress: bool = False
    threshold_override: Optional[float] = None

    @classmethod
    def disabled(cls) -> "ConfidenceModifier":
        return cls(multiplier=0.0, suppress=True)

    @property
    def is_disabled(self) -> bool:
        return self.multiplier == 0.0


@dataclass(frozen=True)
class Profile:
    """Named, immutable detector configuration."""
    name: str
    description: str = ""
    global_sensitivity: float = 1.0
    min_confidence: float = 0.5
    modifiers: Mapping[DetectorType, ConfidenceModifier] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "modifiers", MappingProxyType(dict(self.modifiers)))

    def modifier(self, detector: DetectorType) -> ConfidenceModifier:
        """Modifier for ``detector``.

        A codec signature is a spectral cutoff with a known source, so
        without an entry of its own it follows the spectral cutoff modifier.
        """
        mod = self.modifiers.get(detector)
        if mod is None and detector == DetectorType.CODEC_SIGNATURE:
            mod = self.modifiers.get(DetectorType.SPECTRAL_CUTOFF)
        return ConfidenceModifier() if mod is None else mod

    def is_disabled(self, detector: DetectorType) -> bool:
        return self.modifier(detector).is_disabled

    def is_suppressed(self, detector: DetectorType) -> bool:
        mod = self.modifier(detector)
        return mod.suppress and not mod.is_disabled

    def threshold_for(self, detector: DetectorType) -> float:
        override = self.modifier(detector).threshold_override
        return self.min_confidence if override is None else override

    def adjust_confidence(self, detector: DetectorType, raw_confidence: float) -> float:
        """Scale a raw confidence by the detector multiplier and global sensitivity."""
        mod = self.modifier(detector)
        if mod.is_disabled:
            return 0.0
        adjusted = raw_confidence * mod.multiplier * self.global_sensitivity
        return min(1.0, max(0.0, adjusted))


class ProfileBuilder:
    """Fluent builder for :class:`Profile`.

    Example::

        profile = (ProfileBuilder()
                   .name("live")
                   .detector_multiplier(DetectorType.PRE_ECHO, 0.5)
                   .disable_detector(DetectorType.ENF)
                   .build())
    """

    def __init__(self):
        self._name = "custom"
        self._description = "Custom profile"
        self._global_sensitivity = 1.0
        self._min_confidence = 0.5
        self._modifiers: Dict[DetectorType, ConfidenceModifier] = {}

    def name(self, name: str) -> "ProfileBuilder":
        self._name = name
        return self

    def description(self, description: str) -> "ProfileBuilder":
        self._description = description
        return self

    def global_sensitivity(self, value: float) -> "ProfileBuilder":
        self._global_sensitivity = min(2.0, max(0.0, value))
        return self

    def min_confidence(self, value: float) -> "ProfileBuilder":
        self._min_confidence = min(1.0, max(0.0, value))
        return self

    def detector_multiplier(self, detector: DetectorType, multiplier: float) -> "ProfileBuilder":
        current = self._modifiers.get(detector, ConfidenceModifier())
        self._modifiers[detector] = ConfidenceModifier(
            multiplier=max(0.0, multiplier),
            suppress=current.suppress,
            threshold_override=current.threshold_override,
        )
        return self

    def disable_detector(self, detector: DetectorType) -> "ProfileBuilder":
        self._modifiers[detector] = ConfidenceModifier.disabled()
        return self

    def suppress_detector(self, detector: DetectorType) -> "ProfileBuilder":
        current = self._modifiers.get(detector, ConfidenceModifier())
        self._modifiers[detector] = ConfidenceModifier(
            multiplier=current.multiplier,
            suppress=True,
            threshold_override=current.threshold_override,
        )
        return self

    def threshold_override(self, detector: DetectorType, threshold: float) -> "ProfileBuilder":
        current = self._modifiers.get(detector, ConfidenceModifier())
        self._modifiers[detector] = ConfidenceModifier(
            multiplier=current.multiplier,
            suppress=current.suppress,
            threshold_override=min(1.0, max(0.0, threshold)),
        )
        return self

    @classmethod
    def from_profile(cls, profile: Profile) -> "ProfileBuilder":
        """Start a builder from an existing profile's settings."""
        builder = cls()
        builder._name = profile.name
        builder._description = profile.description
        builder._global_sensitivity = profile.global_sensitivity
        builder._min_confidence = profile.min_confidence
        builder._modifiers = dict(profile.modifiers)
        return builder

    def build(self) -> Profile:
        return Profile(
            name=self._name,
            description=self._description,
            global_sensitivity=self._global_sensitivity,
            min_confidence=self._min_confidence,
            modifiers=dict(self._modifiers),
        )


# ---------------------------------------------------------------------------
# Presets
# ---------------------------------------------------------------------------

class ProfilePreset(Enum):
    """Built-in profiles."""
    STANDARD = "standard"
    HIGH_RES = "highres"
    ELECTRONIC = "electronic"
    NOISE = "noise"
    CLASSICAL = "classical"
    PODCAST = "podcast"

    def build(self) -> Profile:
        return _PRESET_FACTORIES[self]()


def _standard() -> Profile:
    return (ProfileBuilder()
            .name("standard")
            .description("Balanced defaults for general music")
            .build())


def _high_res() -> Profile:
    return (ProfileBuilder()
            .name("highres")
            .description("Verified high-resolution sources (reduced cutoff sensitivity)")
            .global_sensitivity(0.9)
            .min_confidence(0.6)
            .detector_multiplier(DetectorType.SPECTRAL_CUTOFF, 0.7)
            .detector_multiplier(DetectorType.BIT_DEPTH, 1.2)
            .build())


def _electronic() -> Profile:
    return (ProfileBuilder()
            .name("electronic")
            .description("Electronic, EDM, synthwave (tolerates sharp cutoffs)")
            .global_sensitivity(0.8)
            .min_confidence(0.6)
            .detector_multiplier(DetectorType.SPECTRAL_CUTOFF, 0.6)
            .disable_detector(DetectorType.PRE_ECHO)
            .detector_multiplier(DetectorType.PHASE_COHERENCE, 0.7)
            .build())


def _noise() -> Profile:
    return (ProfileBuilder()
            .name("noise")
            .description("Ambient, drone, noise (full-spectrum tolerance)")
            .global_sensitivity(0.5)
            .min_confidence(0.7)
            .detector_multiplier(DetectorType.SPECTRAL_CUTOFF, 0.3)
            .detector_multiplier(DetectorType.PRE_ECHO, 0.4)
            .disable_detector(DetectorType.UPSAMPLING)
            .suppress_detector(DetectorType.STEREO_FIELD)
            .build())


def _classical() -> Profile:
    return (ProfileBuilder()
            .name("classical")
            .description("Orchestral, acoustic (strict dynamic range)")
            .global_sensitivity(1.1)
            .min_confidence(0.5)
            .detector_multiplier(DetectorType.BIT_DEPTH, 1.3)
            .detector_multiplier(DetectorType.PRE_ECHO, 1.2)
            .detector_multiplier(DetectorType.PHASE_COHERENCE, 1.1)
            .build())


def _podcast() -> Profile:
    return (ProfileBuilder()
            .name("podcast")
            .description("Speech and voice content (limited detectors)")
            .global_sensitivity(0.5)
            .min_confidence(0.7)
            .disable_detector(DetectorType.SPECTRAL_CUTOFF)
            .disable_detector(DetectorType.UPSAMPLING)
            .disable_detector(DetectorType.PRE_ECHO)
            .disable_detector(DetectorType.STEREO_FIELD)
            .disable_detector(DetectorType.PHASE_COHERENCE)
            .detector_multiplier(DetectorType.BIT_DEPTH, 1.0)
            .detector_multiplier(DetectorType.CODEC_SIGNATURE, 1.0)
            .build())


_PRESET_FACTORIES = {
    ProfilePreset.STANDARD: _standard,
    ProfilePreset.HIGH_RES: _high_res,
    ProfilePreset.ELECTRONIC: _electronic,
    ProfilePreset.NOISE: _noise,
    ProfilePreset.CLASSICAL: _classical,
    ProfilePreset.PODCAST: _podcast,
}


def available_profiles() -> List[str]:
    return [preset.value for preset in ProfilePreset]


def get_profile(name: str) -> Profile:
    """Return the preset profile called ``name``.

    Raises:
        ValueError: if no preset matches.
    """
    key = name.strip().lower().replace("-", "").replace("_", "")
    for preset in ProfilePreset:
        if preset.value == key:
            return preset.build()
    raise ValueError(
        f"Unknown profile '{name}'. Available: {', '.join(available_profiles())}"
    )
