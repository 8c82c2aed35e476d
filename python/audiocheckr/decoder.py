"""WAV decoding into :class:`SampleBuffer`."""
import io
import logging
import wave
from pathlib import Path
from typing import Union

import numpy as np

from .types import SampleBuffer

logger = logging.getLogger(__name__)


class DecodeError(ValueError):
    """Audio could not be decoded."""


def _pcm_to_float(raw: bytes, sampwidth: int) -> np.ndarray:
    if sampwidth == 1:
        return np.frombuffer(raw, dtype=np.uint8).astype(np.float64) / 128.0 - 1.0
    if sampwidth == 2:
        return np.frombuffer(raw, dtype='<i2').astype(np.float64) / 32768.0
    if sampwidth == 3:
        # 24-bit: vectorized unpack of 3-byte little-endian samples
        raw_arr = np.frombuffer(raw[:len(raw) - len(raw) % 3], dtype=np.uint8).reshape(-1, 3)
        samples = (raw_arr[:, 0].astype(np.int32)
                   | (raw_arr[:, 1].astype(np.int32) << 8)
                   | (raw_arr[:, 2].astype(np.int32) << 16))
        samples = np.where(samples >= 0x800000, samples - 0x1000000, samples)
        return samples.astype(np.float64) / 8388608.0
    if sampwidth == 4:
        return np.frombuffer(raw, dtype='<i4').astype(np.float64) / 2147483648.0
    raise DecodeError(f"Unsupported sample width: {sampwidth}")


def decode_wav(audio_bytes: bytes) -> SampleBuffer:
    """Decode PCM WAV bytes (8/16/24/32-bit) keeping every channel.

    Raises:
        DecodeError: if the bytes are not a PCM WAV file this module reads.
    """
    try:
        with wave.open(io.BytesIO(audio_bytes), 'rb') as wf:
            sr = wf.getframerate()
            n_channels = wf.getnchannels()
            sampwidth = wf.getsampwidth()
            raw = wf.readframes(wf.getnframes())
    except (wave.Error, EOFError) as e:
        logger.error(f"Failed to decode WAV: {e}")
        raise DecodeError(f"Not a readable PCM WAV file: {e}") from e

    try:
        samples = _pcm_to_float(raw, sampwidth)
    except DecodeError as e:
        logger.error(f"Failed to decode WAV: {e}")
        raise
    if sr <= 0 or n_channels <= 0:
        raise DecodeError(f"Invalid WAV header (rate={sr}, channels={n_channels})")
    return SampleBuffer.from_interleaved(samples, n_channels, sr, sampwidth * 8)


def load_wav(path: Union[str, Path]) -> SampleBuffer:
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as e:
        logger.error(f"Cannot read {path}: {e}")
        raise DecodeError(f"Cannot read {path}: {e}") from e
    return decode_wav(data)
