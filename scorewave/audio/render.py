from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from scorewave.audio.context import OfflineContext
from scorewave.audio.scheduler import RenderSession, offline_frame_count, offline_seconds, schedule_score
from scorewave.audio.wav import write_wav
from scorewave.model.types import Score
from scorewave.util.limits import MAX_RENDER_SECONDS

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_RATE = 44100
DEFAULT_CHANNELS = 2


class RenderError(RuntimeError):
    """Offline rendering could not produce a buffer."""


@dataclass(frozen=True)
class RenderedAudio:
    samples: np.ndarray  # (channels, frames) float64
    sample_rate: int

    @property
    def channels(self) -> int:
        return int(self.samples.shape[0])

    @property
    def frames(self) -> int:
        return int(self.samples.shape[1])

    @property
    def seconds(self) -> float:
        return self.frames / float(self.sample_rate)


def render_score(
    score: Score,
    *,
    sample_rate: int = DEFAULT_SAMPLE_RATE,
    channels: int = DEFAULT_CHANNELS,
    seed: int | None = None,
) -> RenderedAudio:
    """Render ``score`` offline to a finished buffer.

    The buffer covers the score plus a 2 s tail. Each call owns a fresh context
    (and a fresh reverb impulse unless ``seed`` is given).
    """
    seconds = offline_seconds(score)
    if seconds > MAX_RENDER_SECONDS:
        raise RenderError(f"render too long: {seconds:.1f}s > {MAX_RENDER_SECONDS}s")
    length = offline_frame_count(score, sample_rate)

    rng = np.random.default_rng(seed) if seed is not None else None
    try:
        ctx = OfflineContext(length, sample_rate, channels, rng=rng)
        session = RenderSession(ctx)
        n = schedule_score(session, score)
        logger.info("offline render: %d voices, %.2fs @ %d Hz", n, seconds, sample_rate)
        samples = ctx.start_rendering()
    except MemoryError as e:
        raise RenderError(f"out of memory rendering {seconds:.1f}s of audio") from e
    return RenderedAudio(samples=samples, sample_rate=int(sample_rate))


async def render_score_async(
    score: Score,
    *,
    sample_rate: int = DEFAULT_SAMPLE_RATE,
    channels: int = DEFAULT_CHANNELS,
    seed: int | None = None,
) -> RenderedAudio:
    """``render_score`` on a worker thread; resolves once the whole buffer exists."""
    return await asyncio.to_thread(
        render_score, score, sample_rate=sample_rate, channels=channels, seed=seed
    )


def render_score_wav(
    score: Score,
    out_wav: str | Path,
    *,
    sample_rate: int = DEFAULT_SAMPLE_RATE,
    seed: int | None = None,
) -> str:
    """Render ``score`` and write it as a 16-bit PCM WAV. Returns the path.

    Nothing is written if rendering fails.
    """
    audio = render_score(score, sample_rate=sample_rate, seed=seed)
    out = write_wav(out_wav, audio.samples, sample_rate=audio.sample_rate)
    return str(out)
