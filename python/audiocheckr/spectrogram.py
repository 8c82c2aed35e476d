"""Spectrogram rendering to PNG."""
import logging
from pathlib import Path
from typing import Union

import numpy as np
from PIL import Image
from scipy import signal

from .types import SampleBuffer

logger = logging.getLogger(__name__)

N_FFT = 2048
HOP = 512
N_MELS = 256
FLOOR_DB = 80.0

# Viridis anchor colours, interpolated linearly
_PALETTE_ANCHORS = np.array([
    [68, 1, 84],
    [72, 40, 120],
    [62, 74, 137],
    [49, 104, 142],
    [38, 130, 142],
    [31, 158, 137],
    [53, 183, 121],
    [109, 205, 89],
    [180, 222, 44],
    [253, 231, 37],
], dtype=np.float64)


def _mel_filterbank(sr: int, n_fft: int, n_mels: int = N_MELS) -> np.ndarray:
    """Mel-scale triangular filterbank matrix (n_mels x n_fft//2+1)."""
    def hz_to_mel(hz):
        return 2595.0 * np.log10(1.0 + hz / 700.0)

    def mel_to_hz(mel):
        return 700.0 * (10.0 ** (mel / 2595.0) - 1.0)

    n_bins = n_fft // 2 + 1
    freqs = np.linspace(0.0, sr / 2.0, n_bins)
    hz_points = mel_to_hz(np.linspace(hz_to_mel(0.0), hz_to_mel(sr / 2.0), n_mels + 2))

    fb = np.zeros((n_mels, n_bins))
    for m in range(n_mels):
        left, center, right = hz_points[m], hz_points[m + 1], hz_points[m + 2]
        rising = (freqs - left) / max(center - left, 1e-9)
        falling = (right - freqs) / max(right - center, 1e-9)
        fb[m] = np.clip(np.minimum(rising, falling), 0.0, None)
        if not fb[m].any():
            # Narrow low bands fall between bins; use the nearest one
            fb[m, int(np.argmin(np.abs(freqs - center)))] = 1.0
    return fb


def colorize(levels: np.ndarray) -> np.ndarray:
    """Map values in [0, 1] to RGB uint8 with a viridis-like palette."""
    levels = np.clip(levels, 0.0, 1.0)
    pos = levels * (len(_PALETTE_ANCHORS) - 1)
    lo = np.floor(pos).astype(int)
    hi = np.minimum(lo + 1, len(_PALETTE_ANCHORS) - 1)
    frac = (pos - lo)[..., np.newaxis]
    rgb = _PALETTE_ANCHORS[lo] * (1.0 - frac) + _PALETTE_ANCHORS[hi] * frac
    return np.round(rgb).astype(np.uint8)


def spectrogram_db(buffer: SampleBuffer, mel: bool = True) -> np.ndarray:
    """Normalized spectrogram in [0, 1], low frequencies in the last row."""
    samples = buffer.mono()
    if len(samples) < N_FFT:
        samples = np.pad(samples, (0, N_FFT - len(samples)))
    _, _, zxx = signal.stft(samples, fs=buffer.sample_rate, window='hann',
                            nperseg=N_FFT, noverlap=N_FFT - HOP, boundary=None, padded=False)
    power = np.abs(zxx) ** 2
    if mel:
        power = _mel_filterbank(buffer.sample_rate, N_FFT) @ power
    db = 10.0 * np.log10(power + 1e-20)
    db -= db.max()
    norm = (np.maximum(db, -FLOOR_DB) + FLOOR_DB) / FLOOR_DB
    return norm[::-1]


def render_spectrogram(buffer: SampleBuffer, path: Union[str, Path], mel: bool = True) -> Path:
    """Write a PNG spectrogram of ``buffer`` to ``path`` and return the path."""
    path = Path(path)
    image = Image.fromarray(colorize(spectrogram_db(buffer, mel=mel)))
    path.parent.mkdir(parents=True, exist_ok=True)
    image.save(path, format='PNG')
    logger.debug(f"Spectrogram written to {path} ({image.width}x{image.height})")
    return path
