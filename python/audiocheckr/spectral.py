"""
Spectral frame engine.

Windows and transforms raw samples into frequency-domain frames spread
evenly across a track, then averages them bin-wise into one representative
spectrum.  The median is used by default so that transients and silent
passages do not drag the estimate around.

Slices shorter than one window produce an :class:`InsufficientData` value
rather than a zero-filled spectrum; callers treat that as inconclusive.
"""

import logging
from dataclasses import dataclass
from typing import Tuple, Union

import numpy as np
from scipy import signal
from scipy.fft import rfft, rfftfreq
from scipy.ndimage import uniform_filter1d

logger = logging.getLogger(__name__)

DEFAULT_FRAMES = 30
MAX_FRAMES = 100
DB_FLOOR = -200.0


@dataclass(frozen=True, eq=False)
class AveragedSpectrum:
    """One averaged spectrum with its bin-to-Hz mapping."""
    freqs: np.ndarray
    values: np.ndarray
    sample_rate: int
    fft_size: int
    n_frames: int
    scale: str = "db"

    @property
    def bin_hz(self) -> float:
        return self.sample_rate / self.fft_size

    @property
    def nyquist(self) -> float:
        return self.sample_rate / 2.0

    def hz_to_bin(self, hz: float) -> int:
        return int(np.clip(round(hz / self.bin_hz), 0, len(self.values) - 1))

    def band(self, lo_hz: float, hi_hz: float) -> np.ndarray:
        """Values of the bins whose centre lies in [lo_hz, hi_hz)."""
        mask = (self.freqs >= lo_hz) & (self.freqs < hi_hz)
        return self.values[mask]

    def band_level(self, lo_hz: float, hi_hz: float, stat: str = "median") -> float:
        """Median (or mean) level of a band, ``DB_FLOOR`` when the band is empty."""
        values = self.band(lo_hz, hi_hz)
        if len(values) == 0:
            return DB_FLOOR
        if stat == "mean":
            return float(np.mean(values))
        return float(np.median(values))


@dataclass(frozen=True)
class InsufficientData:
    """Returned instead of a spectrum when the slice is too short."""
    reason: str
    required: int = 0
    available: int = 0

    def __bool__(self):
        return False


SpectrumResult = Union[AveragedSpectrum, InsufficientData]


def default_fft_size(sample_rate: int) -> int:
    """Transform size giving roughly 6 Hz bins at common rates."""
    if sample_rate <= 48000:
        return 8192
    if sample_rate <= 96000:
        return 16384
    return 32768


def frame_starts(n_samples: int, fft_size: int, n_frames: int) -> np.ndarray:
    """Start offsets of up to ``n_frames`` windows spread evenly over the slice."""
    n_frames = int(np.clip(n_frames, 1, MAX_FRAMES))
    last = n_samples - fft_size
    if last <= 0:
        return np.array([0])
    return np.unique(np.linspace(0, last, n_frames).astype(int))


def compute_averaged_spectrum(samples: np.ndarray, sample_rate: int,
                              fft_size: int = 8192,
                              n_frames: int = DEFAULT_FRAMES,
                              window: str = "hann",
                              average: str = "median",
                              scale: str = "db") -> SpectrumResult:
    """Average ``n_frames`` windowed spectra of ``samples``.

    Args:
        samples: Mono sample slice.
        sample_rate: Sample rate in Hz.
        fft_size: Transform size (also the window length).
        n_frames: Number of frames spread across the slice, capped at 100.
        window: Any window name accepted by ``scipy.signal.get_window``.
        average: ``"median"`` or ``"mean"``.
        scale: ``"db"``, ``"power"`` or ``"magnitude"``.

    Returns:
        AveragedSpectrum, or InsufficientData when the slice is shorter
        than one window.
    """
    samples = np.asarray(samples, dtype=np.float64)
    if len(samples) < fft_size or fft_size < 16:
        return InsufficientData(
            reason=f"need {fft_size} samples for one frame, got {len(samples)}",
            required=fft_size,
            available=len(samples),
        )
    if average not in ("median", "mean"):
        raise ValueError(f"Unknown averaging mode: {average}")
    if scale not in ("db", "power", "magnitude"):
        raise ValueError(f"Unknown scale: {scale}")

    win = signal.get_window(window, fft_size)
    # A full-scale sine reads 0 dB
    norm = 2.0 / np.sum(win)

    starts = frame_starts(len(samples), fft_size, n_frames)
    frames = np.stack([samples[s:s + fft_size] for s in starts]) * win
    power = (np.abs(rfft(frames, axis=1)) * norm) ** 2

    if average == "median":
        avg_power = np.median(power, axis=0)
    else:
        avg_power = np.mean(power, axis=0)

    if scale == "power":
        values = avg_power
    elif scale == "magnitude":
        values = np.sqrt(avg_power)
    else:
        values = np.maximum(10.0 * np.log10(avg_power + 1e-30), DB_FLOOR)

    return AveragedSpectrum(
        freqs=rfftfreq(fft_size, 1.0 / sample_rate),
        values=values,
        sample_rate=sample_rate,
        fft_size=fft_size,
        n_frames=len(starts),
        scale=scale,
    )


def frame_spectra(samples: np.ndarray, sample_rate: int, fft_size: int = 2048,
                  hop: int = 512, window: str = "hann") -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Complex STFT frames (freqs, times, Zxx) without boundary padding."""
    f, t, zxx = signal.stft(samples, fs=sample_rate, window=window, nperseg=fft_size,
                            noverlap=fft_size - hop, boundary=None, padded=False)
    return f, t, zxx


def smooth_db(values: np.ndarray, width_bins: int) -> np.ndarray:
    """Moving-average smoothing of a dB spectrum."""
    width_bins = max(1, int(width_bins))
    if width_bins == 1:
        return np.asarray(values, dtype=np.float64)
    return uniform_filter1d(np.asarray(values, dtype=np.float64), size=width_bins, mode="nearest")


def rms_db(samples: np.ndarray) -> float:
    """RMS level in dBFS."""
    if len(samples) == 0:
        return DB_FLOOR
    rms = float(np.sqrt(np.mean(np.square(samples))))
    return float(20.0 * np.log10(rms)) if rms > 1e-10 else DB_FLOOR
