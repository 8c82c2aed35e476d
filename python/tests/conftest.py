"""Shared pytest fixtures for audiocheckr tests."""

import io
import wave

import numpy as np
import pytest
from scipy import signal

from audiocheckr import DetectionPipeline, SampleBuffer


def quantize(x: np.ndarray, bits: int, rng=None) -> np.ndarray:
    """Round to a ``bits`` grid, with TPDF dither when ``rng`` is given."""
    scale = float(2 ** (bits - 1))
    scaled = np.asarray(x, dtype=np.float64) * scale
    if rng is not None:
        scaled = scaled + rng.uniform(-0.5, 0.5, len(scaled)) + rng.uniform(-0.5, 0.5, len(scaled))
    return np.clip(np.round(scaled), -scale, scale - 1) / scale


def make_wav(buffer_or_channels, sample_rate=None, bit_depth=16) -> bytes:
    """PCM WAV bytes from a SampleBuffer or a channels x frames array."""
    if isinstance(buffer_or_channels, SampleBuffer):
        channels = buffer_or_channels.channels
        sample_rate = buffer_or_channels.sample_rate
        bit_depth = buffer_or_channels.bit_depth
    else:
        channels = np.atleast_2d(np.asarray(buffer_or_channels, dtype=np.float64))

    scale = float(2 ** (bit_depth - 1))
    ints = np.clip(np.round(channels.T.reshape(-1) * scale), -scale, scale - 1).astype(np.int64)
    if bit_depth == 8:
        raw = (ints + 128).astype(np.uint8).tobytes()
    elif bit_depth == 24:
        u = (ints & 0xFFFFFF).astype(np.uint32)
        raw = np.stack([u & 0xFF, (u >> 8) & 0xFF, (u >> 16) & 0xFF], axis=1).astype(np.uint8).tobytes()
    else:
        raw = ints.astype(f"<i{bit_depth // 8}").tobytes()

    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels.shape[0])
        wf.setsampwidth(bit_depth // 8)
        wf.setframerate(sample_rate)
        wf.writeframes(raw)
    return buf.getvalue()


# ---------------------------------------------------------------------------
# Pipeline fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def pipeline():
    """Standard-profile pipeline."""
    return DetectionPipeline()


# ---------------------------------------------------------------------------
# Audio fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def hires_master():
    """3 s of 96 kHz noise with a gentle natural rolloff at 21 kHz (float)."""
    rng = np.random.default_rng(1)
    sr = 96000
    noise = rng.normal(0.0, 0.1, 3 * sr)
    sos = signal.butter(4, 21000, fs=sr, output="sos")
    return signal.sosfilt(sos, noise)


@pytest.fixture(scope="session")
def genuine_hires(hires_master):
    """Genuine 96 kHz / 24-bit recording."""
    rng = np.random.default_rng(2)
    return SampleBuffer(quantize(hires_master, 24, rng), 96000, 24)


@pytest.fixture(scope="session")
def honest_downsample(hires_master):
    """The hi-res master properly downsampled to 44.1 kHz / 24-bit."""
    rng = np.random.default_rng(3)
    down = signal.resample_poly(hires_master, 147, 320)
    return SampleBuffer(quantize(down, 24, rng), 44100, 24)


@pytest.fixture(scope="session")
def upsampled(honest_downsample):
    """44.1 kHz material upsampled to 96 kHz / 24-bit."""
    rng = np.random.default_rng(4)
    up = signal.resample_poly(honest_downsample.channel(0), 320, 147, window=("kaiser", 10.0))
    return SampleBuffer(quantize(up, 24, rng), 96000, 24)


@pytest.fixture(scope="session")
def mp3_like():
    """44.1 kHz / 16-bit noise behind a 16 kHz brick-wall low-pass."""
    rng = np.random.default_rng(5)
    sr = 44100
    noise = rng.normal(0.0, 0.1, 4 * sr)
    taps = signal.firwin(1023, 16000, window=("kaiser", 12.0), fs=sr)
    return SampleBuffer(quantize(np.convolve(noise, taps, mode="same"), 16), sr, 16)


@pytest.fixture(scope="session")
def padded_16_in_24():
    """16-bit noise zero-padded into a 24-bit container."""
    rng = np.random.default_rng(6)
    sr = 44100
    return SampleBuffer(quantize(rng.normal(0.0, 0.1, 3 * sr), 16), sr, 24)


@pytest.fixture(scope="session")
def dithered_24():
    """Full-band 24-bit noise with TPDF dither at the 24-bit floor."""
    rng = np.random.default_rng(7)
    sr = 44100
    return SampleBuffer(quantize(rng.normal(0.0, 0.1, 3 * sr), 24, rng), sr, 24)
