from __future__ import annotations

"""Render contexts: one rendering pipeline, two clocks.

``AudioContext.render_quantum`` is the only place audio is produced. The
offline context calls it in a tight loop against a virtual clock; the live
context calls it from the output stream's callback, so the device drives the
clock. Voices therefore render identically in both modes.
"""

import logging
from enum import Enum
from typing import Any, Callable

import numpy as np

from scorewave.audio.nodes import RENDER_QUANTUM
from scorewave.audio.reverb import MasterBus

logger = logging.getLogger(__name__)


class AudioContext:
    def __init__(self, sample_rate: int, channels: int, *, rng: np.random.Generator | None = None) -> None:
        if sample_rate <= 0:
            raise ValueError(f"sample_rate must be > 0, got {sample_rate}")
        if channels <= 0:
            raise ValueError(f"channels must be > 0, got {channels}")
        self.sample_rate = int(sample_rate)
        self.channels = int(channels)
        self.master = MasterBus(self.sample_rate, channels=self.channels, rng=rng)
        self._frame = 0

    @property
    def current_frame(self) -> int:
        return self._frame

    @property
    def current_time(self) -> float:
        return self._frame / float(self.sample_rate)

    def render_quantum(self) -> np.ndarray:
        """Render the next 128 frames, shape ``(channels, 128)``."""
        frame0 = self._frame
        times = (frame0 + np.arange(RENDER_QUANTUM, dtype=np.float64)) / float(self.sample_rate)
        out = self.master.render(frame0, times)
        self._frame = frame0 + RENDER_QUANTUM
        return out


class OfflineContext(AudioContext):
    """Virtual-clock context producing one finished buffer of ``length`` frames."""

    def __init__(
        self,
        length: int,
        sample_rate: int = 44100,
        channels: int = 2,
        *,
        rng: np.random.Generator | None = None,
    ) -> None:
        if length <= 0:
            raise ValueError(f"length must be > 0, got {length}")
        super().__init__(sample_rate, channels, rng=rng)
        self.length = int(length)
        self._rendered = False

    def start_rendering(self) -> np.ndarray:
        if self._rendered:
            raise RuntimeError("offline context already rendered")
        self._rendered = True

        buf = np.zeros((self.channels, self.length), dtype=np.float64)
        pos = 0
        while pos < self.length:
            q = self.render_quantum()
            n = min(RENDER_QUANTUM, self.length - pos)
            buf[:, pos : pos + n] = q[:, :n]
            pos += n
        self.master.clear()
        return buf


class ContextState(str, Enum):
    SUSPENDED = "suspended"
    RUNNING = "running"
    CLOSED = "closed"


StreamFactory = Callable[..., Any]


def open_output_stream(
    *,
    samplerate: int,
    channels: int,
    blocksize: int,
    device: Any,
    callback: Callable[..., None],
) -> Any:
    import sounddevice as sd

    return sd.OutputStream(
        samplerate=samplerate,
        channels=channels,
        dtype="float32",
        blocksize=blocksize,
        device=device,
        callback=callback,
    )


class LiveContext(AudioContext):
    """Device-clock context backed by an output stream.

    Starts suspended; ``resume`` opens and starts the stream. The stream's
    callback pulls quanta through :meth:`pull`, which advances the clock.
    """

    def __init__(
        self,
        sample_rate: int = 44100,
        channels: int = 2,
        *,
        block_size: int = 512,
        device: Any = None,
        stream_factory: StreamFactory | None = None,
        rng: np.random.Generator | None = None,
    ) -> None:
        super().__init__(sample_rate, channels, rng=rng)
        self.block_size = int(block_size)
        self.device = device
        self.state = ContextState.SUSPENDED
        self._stream_factory = stream_factory or open_output_stream
        self._stream: Any | None = None
        self._pending = np.zeros((0, self.channels), dtype=np.float32)

    def pull(self, frames: int) -> np.ndarray:
        """Next ``frames`` output frames, shape ``(frames, channels)`` float32."""
        chunks = [self._pending]
        have = self._pending.shape[0]
        while have < frames:
            q = self.render_quantum().T.astype(np.float32)
            chunks.append(q)
            have += q.shape[0]
        data = np.concatenate(chunks, axis=0)
        self._pending = data[frames:]
        return data[:frames]

    def _callback(self, outdata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:
        if status:
            logger.debug("output stream status: %s", status)
        try:
            outdata[:] = self.pull(frames)
        except Exception:
            # An exception escaping the callback kills the stream.
            logger.exception("live render failed; emitting silence")
            outdata.fill(0)

    def resume(self) -> None:
        if self.state is ContextState.CLOSED:
            raise RuntimeError("live context is closed")
        if self.state is ContextState.RUNNING:
            return
        if self._stream is None:
            self._stream = self._stream_factory(
                samplerate=self.sample_rate,
                channels=self.channels,
                blocksize=self.block_size,
                device=self.device,
                callback=self._callback,
            )
        self._stream.start()
        self.state = ContextState.RUNNING
        logger.info("live output running (%d Hz, %d ch)", self.sample_rate, self.channels)

    def suspend(self) -> None:
        if self.state is not ContextState.RUNNING:
            return
        if self._stream is not None:
            self._stream.stop()
        self.state = ContextState.SUSPENDED

    def close(self) -> None:
        if self.state is ContextState.CLOSED:
            return
        stream, self._stream = self._stream, None
        self.state = ContextState.CLOSED
        self.master.clear()
        if stream is not None:
            stream.stop()
            stream.close()
        logger.info("live output closed")
