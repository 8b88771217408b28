from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

import numpy as np

from scorewave.audio.nodes import RENDER_QUANTUM

if TYPE_CHECKING:  # pragma: no cover
    from scorewave.instruments.voice import Voice

logger = logging.getLogger(__name__)

IMPULSE_SECONDS = 2.0
MASTER_GAIN = 0.5
WET_GAIN = 0.3

# Convolver loudness calibration (power-normalized impulse).
_GAIN_CALIBRATION = 0.00125
_GAIN_CALIBRATION_SAMPLE_RATE = 44100.0
_MIN_POWER = 0.000125


def make_impulse(
    sample_rate: int,
    *,
    seconds: float = IMPULSE_SECONDS,
    channels: int = 2,
    rng: np.random.Generator | None = None,
) -> np.ndarray:
    """Synthetic decaying-noise impulse response, shape ``(channels, length)``.

    Each channel is independent uniform noise in [-1, 1] shaped by ``(1 - n)**2``.
    """
    rng = rng if rng is not None else np.random.default_rng()
    length = int(sample_rate * seconds)
    n = np.arange(length, dtype=np.float64) / float(length)
    shape = (1.0 - n) ** 2
    noise = rng.uniform(-1.0, 1.0, size=(channels, length))
    return noise * shape[None, :]


def impulse_scale(impulse: np.ndarray, sample_rate: int) -> float:
    power = float(np.sqrt(np.sum(np.square(impulse)) / impulse.size)) if impulse.size else 0.0
    power = max(power, _MIN_POWER)
    return (1.0 / power) * _GAIN_CALIBRATION * (_GAIN_CALIBRATION_SAMPLE_RATE / sample_rate)


class PartitionedConvolver:
    """Uniformly partitioned overlap-save FFT convolution, one block per call.

    Mono input, one output channel per impulse channel. Latency-free: the block
    returned by :meth:`process` is exactly the convolution of everything fed so
    far, for the same frames.
    """

    def __init__(self, impulse: np.ndarray, *, block: int = RENDER_QUANTUM, scale: float = 1.0) -> None:
        impulse = np.atleast_2d(np.asarray(impulse, dtype=np.float64))
        self.block = int(block)
        self.channels = impulse.shape[0]
        parts = max(1, -(-impulse.shape[1] // self.block))
        padded = np.zeros((self.channels, parts * self.block), dtype=np.float64)
        padded[:, : impulse.shape[1]] = impulse * scale
        segs = padded.reshape(self.channels, parts, self.block)
        # Each partition zero-padded to 2*block before the FFT.
        self._spectra = np.fft.rfft(segs, n=2 * self.block, axis=-1)
        self._fdl = np.zeros_like(self._spectra[0])  # (parts, block+1), mono input history
        self._prev = np.zeros(self.block, dtype=np.float64)

    def process(self, x: np.ndarray) -> np.ndarray:
        if x.shape[0] != self.block:
            raise ValueError(f"expected {self.block} frames, got {x.shape[0]}")
        spec = np.fft.rfft(np.concatenate((self._prev, x)))
        self._fdl = np.roll(self._fdl, 1, axis=0)
        self._fdl[0] = spec
        self._prev = np.array(x, dtype=np.float64)
        acc = np.einsum("pk,cpk->ck", self._fdl, self._spectra)
        return np.fft.irfft(acc, n=2 * self.block, axis=-1)[:, self.block :]


class MasterBus:
    """Shared output stage: dry path plus a convolution reverb send.

    Voices connect to the bus and sum (mono) into it; ``render`` returns the
    output for one quantum: ``dry * 0.5`` on every channel plus
    ``convolve(dry * 0.5) * 0.3``. Voices past their stop frame are dropped.
    """

    def __init__(
        self,
        sample_rate: int,
        *,
        channels: int = 2,
        rng: np.random.Generator | None = None,
        gain: float = MASTER_GAIN,
        wet_gain: float = WET_GAIN,
    ) -> None:
        self.sample_rate = int(sample_rate)
        self.channels = int(channels)
        self.gain = float(gain)
        self.wet_gain = float(wet_gain)
        impulse = make_impulse(self.sample_rate, channels=self.channels, rng=rng)
        self.impulse = impulse
        self.convolver = PartitionedConvolver(impulse, scale=impulse_scale(impulse, self.sample_rate))
        self._inputs: list[Voice] = []
        self._lock = threading.Lock()
        logger.debug("master bus ready: %d ch impulse, %d frames", self.channels, impulse.shape[1])

    def connect(self, voice: Voice) -> None:
        with self._lock:
            self._inputs.append(voice)

    def input_count(self) -> int:
        with self._lock:
            return len(self._inputs)

    def clear(self) -> None:
        with self._lock:
            self._inputs.clear()

    def render(self, frame0: int, times: np.ndarray) -> np.ndarray:
        """Output for the quantum starting at absolute frame ``frame0``."""
        with self._lock:
            voices = list(self._inputs)
        mono = np.zeros(times.shape[0], dtype=np.float64)
        finished: list[Voice] = []
        for v in voices:
            if v.stop_frame <= frame0:
                finished.append(v)
                continue
            if v.start_frame >= frame0 + times.shape[0]:
                continue
            mono += v.render(frame0, times)
        if finished:
            with self._lock:
                self._inputs = [v for v in self._inputs if v not in finished]
        return self.process(mono)

    def process(self, mono: np.ndarray) -> np.ndarray:
        bus = mono * self.gain
        wet = self.convolver.process(bus) * self.wet_gain
        return bus[None, :] + wet
