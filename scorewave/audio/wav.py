from __future__ import annotations

import io
import wave
from pathlib import Path

import numpy as np

from scorewave.util.fileio import atomic_write_bytes

WAV_HEADER_BYTES = 44


def pcm16(samples: np.ndarray) -> np.ndarray:
    """Float samples -> int16, clamped to [-1, 1].

    Negative values scale by 32768 and non-negative by 32767, so +1.0 maps to
    32767 and -1.0 to -32768; fractions truncate toward zero.
    """
    v = np.clip(np.asarray(samples, dtype=np.float64), -1.0, 1.0)
    v = np.nan_to_num(v, nan=0.0)
    scaled = np.where(v < 0, v * 32768.0, v * 32767.0)
    return np.trunc(scaled).astype(np.int16)


def encode_wav(samples: np.ndarray, sample_rate: int) -> bytes:
    """Canonical 44-byte-header 16-bit PCM WAV.

    ``samples`` is ``(channels, frames)`` (or 1-D for mono) float data.
    """
    data = np.asarray(samples)
    if data.ndim == 1:
        data = data[None, :]
    if data.ndim != 2:
        raise ValueError(f"expected (channels, frames) samples, got shape {data.shape}")
    channels = data.shape[0]

    # Interleave frame by frame: L0 R0 L1 R1 ...
    frames = pcm16(data).T.astype("<i2").tobytes()

    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(2)
        wf.setframerate(int(sample_rate))
        wf.writeframes(frames)
    return buf.getvalue()


def write_wav(path: str | Path, samples: np.ndarray, *, sample_rate: int) -> Path:
    return atomic_write_bytes(path, encode_wav(samples, sample_rate))
