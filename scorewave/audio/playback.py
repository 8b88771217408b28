from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Any, Callable, Protocol

import numpy as np

from scorewave.audio.context import ContextState, LiveContext
from scorewave.audio.scheduler import RenderSession, schedule_score
from scorewave.model.types import Score
from scorewave.util.config import AppConfig

logger = logging.getLogger(__name__)

COMPLETION_TAIL_SECONDS = 1.0
FRAMES_PER_SECOND = 60.0

ActiveNotes = frozenset[tuple[int, int]]
ProgressListener = Callable[[float, ActiveNotes], None]


class PlaybackState(str, Enum):
    IDLE = "idle"
    STOPPED = "idle"  # alias: a stopped controller is idle
    PLAYING = "playing"
    COMPLETED = "completed"


class FrameTicker(Protocol):
    def request(self, callback: Callable[[], None]) -> Any:
        ...

    def cancel(self, token: Any) -> None:
        ...


class TimerFrameTicker:
    """Calls back roughly once per display frame on a timer thread."""

    def __init__(self, fps: float = FRAMES_PER_SECOND) -> None:
        self.interval = 1.0 / float(fps)

    def request(self, callback: Callable[[], None]) -> threading.Timer:
        t = threading.Timer(self.interval, callback)
        t.daemon = True
        t.start()
        return t

    def cancel(self, token: Any) -> None:
        token.cancel()


def active_notes_at(score: Score, beat: float) -> ActiveNotes:
    """(track_index, note_index) pairs sounding at ``beat``."""
    return frozenset(
        (ti, ni)
        for ti, track in enumerate(score.tracks)
        for ni, n in enumerate(track.notes)
        if n.start_time <= beat < n.start_time + n.duration
    )


def live_context_factory(config: AppConfig | None = None) -> Callable[[], LiveContext]:
    cfg = config or AppConfig()

    def _make() -> LiveContext:
        rng = np.random.default_rng(cfg.reverb_seed) if cfg.reverb_seed is not None else None
        return LiveContext(
            cfg.sample_rate,
            cfg.channels,
            block_size=cfg.block_size,
            device=cfg.output_device,
            rng=rng,
        )

    return _make


class PlaybackController:
    """Real-time playback of one score against a live context.

    ``IDLE -> PLAYING -> {STOPPED (== IDLE), COMPLETED}``; ``play`` is allowed
    again from either end state. Progress and the active-note set are refreshed
    by a polling loop that only re-arms while PLAYING.
    """

    def __init__(
        self,
        score: Score | None = None,
        *,
        context_factory: Callable[[], LiveContext] | None = None,
        ticker: FrameTicker | None = None,
        listener: ProgressListener | None = None,
    ) -> None:
        self._score = score
        self._context_factory = context_factory or live_context_factory()
        self._ticker: FrameTicker = ticker or TimerFrameTicker()
        self.listener = listener

        self._lock = threading.RLock()
        self._done = threading.Event()
        self._state = PlaybackState.IDLE
        self._progress = 0.0
        self._active: ActiveNotes = frozenset()
        self._context: LiveContext | None = None
        self._session: RenderSession | None = None
        self._frame_token: Any = None
        self._generation = 0

    @property
    def score(self) -> Score | None:
        return self._score

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def progress(self) -> float:
        return self._progress

    @property
    def active_notes(self) -> ActiveNotes:
        return self._active

    @property
    def context(self) -> LiveContext | None:
        return self._context

    @property
    def session(self) -> RenderSession | None:
        return self._session

    def load(self, score: Score | None) -> None:
        """Replace the score, tearing down any running session first."""
        self.stop()
        with self._lock:
            self._score = score

    def play(self) -> bool:
        """Start playback. Returns False (no-op) without a score or while playing."""
        with self._lock:
            score = self._score
            if score is None or self._state is PlaybackState.PLAYING:
                return False

            ctx = self._context
            if ctx is None or ctx.state is ContextState.CLOSED:
                ctx = self._context_factory()
                self._context = ctx
            if ctx.state is ContextState.SUSPENDED:
                ctx.resume()

            session = RenderSession(ctx)
            n = schedule_score(session, score)
            self._session = session
            self._state = PlaybackState.PLAYING
            self._progress = 0.0
            self._active = frozenset()
            self._done.clear()
            self._generation += 1
            self._arm(self._generation)
            logger.info("playing %d voices (%.2fs)", n, score.total_seconds)
        return True

    def stop(self) -> None:
        """Cut every voice and reset. Safe to call repeatedly or when idle."""
        with self._lock:
            self._generation += 1
            token, self._frame_token = self._frame_token, None
            if token is not None:
                self._ticker.cancel(token)
            session, self._session = self._session, None
            if session is not None:
                session.stop_all()
            ctx, self._context = self._context, None
            if ctx is not None:
                ctx.close()
            was_playing = self._state is PlaybackState.PLAYING
            self._state = PlaybackState.STOPPED
            self._progress = 0.0
            self._active = frozenset()
            self._done.set()
        if was_playing:
            logger.info("playback stopped")
        self._notify(0.0, frozenset())

    def wait(self, timeout: float | None = None) -> bool:
        """Block until playback completes or is stopped."""
        return self._done.wait(timeout)

    def _arm(self, generation: int) -> None:
        self._frame_token = self._ticker.request(lambda: self._tick(generation))

    def _tick(self, generation: int) -> None:
        with self._lock:
            # A frame requested before stop/complete may still fire: ignore it.
            if generation != self._generation or self._state is not PlaybackState.PLAYING:
                return
            score, session = self._score, self._session
            if score is None or session is None:
                return

            elapsed = session.context.current_time - session.start_time
            total = score.total_seconds
            if elapsed >= total + COMPLETION_TAIL_SECONDS:
                self._complete()
            else:
                self._progress = min(1.0, elapsed / total)
                self._active = active_notes_at(score, elapsed / score.seconds_per_beat)
                self._arm(generation)
            progress, active = self._progress, self._active
        self._notify(progress, active)

    def _complete(self) -> None:
        self._state = PlaybackState.COMPLETED
        self._progress = 1.0
        self._active = frozenset()
        self._frame_token = None
        self._session = None
        if self._context is not None:
            self._context.suspend()
        self._done.set()
        logger.info("playback completed")

    def _notify(self, progress: float, active: ActiveNotes) -> None:
        if self.listener is not None:
            self.listener(progress, active)
