from __future__ import annotations

from typing import Callable

import numpy as np
import pytest

from scorewave.audio.context import ContextState, LiveContext
from scorewave.audio.playback import PlaybackController, PlaybackState, active_notes_at
from scorewave.model.types import Instrument, Note, Score, Track

SR = 8000


class FakeStream:
    def __init__(self, **kwargs: object) -> None:
        self.kwargs = kwargs
        self.started = 0
        self.stopped = 0
        self.closed = False

    def start(self) -> None:
        self.started += 1

    def stop(self) -> None:
        self.stopped += 1

    def close(self) -> None:
        self.closed = True


class ManualTicker:
    """Frame ticker driven by the test instead of a timer."""

    def __init__(self) -> None:
        self.pending: dict[int, Callable[[], None]] = {}
        self._next = 0

    def request(self, callback: Callable[[], None]) -> int:
        self._next += 1
        self.pending[self._next] = callback
        return self._next

    def cancel(self, token: int) -> None:
        self.pending.pop(token, None)

    def fire(self) -> None:
        callbacks = list(self.pending.values())
        self.pending.clear()
        for cb in callbacks:
            cb()


class Rig:
    def __init__(self) -> None:
        self.streams: list[FakeStream] = []
        self.contexts: list[LiveContext] = []
        self.ticker = ManualTicker()
        self.updates: list[tuple[float, frozenset[tuple[int, int]]]] = []

    def stream_factory(self, **kwargs: object) -> FakeStream:
        self.streams.append(FakeStream(**kwargs))
        return self.streams[-1]

    def context_factory(self) -> LiveContext:
        ctx = LiveContext(SR, 2, stream_factory=self.stream_factory, rng=np.random.default_rng(0))
        self.contexts.append(ctx)
        return ctx

    def controller(self, score: Score | None) -> PlaybackController:
        return PlaybackController(
            score,
            context_factory=self.context_factory,
            ticker=self.ticker,
            listener=lambda p, a: self.updates.append((p, a)),
        )


def _score() -> Score:
    return Score(
        bpm=120,
        mood="m",
        key="C",
        tracks=(
            Track("keys", Instrument.PIANO, (Note("C4", 0, 1), Note("G4", 2, 1))),
            Track("beat", Instrument.DRUMS, (Note("C1", 0, 0.5),)),
        ),
        total_duration_beats=4,
    )


def test_active_notes_at() -> None:
    s = _score()
    assert active_notes_at(s, 0.0) == {(0, 0), (1, 0)}
    assert active_notes_at(s, 0.5) == {(0, 0)}
    assert active_notes_at(s, 1.0) == frozenset()
    assert active_notes_at(s, 2.5) == {(0, 1)}


def test_play_without_score_is_a_noop() -> None:
    rig = Rig()
    ctl = rig.controller(None)
    assert ctl.play() is False
    assert ctl.state is PlaybackState.IDLE
    assert rig.contexts == []


def test_play_schedules_every_note_and_resumes_output() -> None:
    rig = Rig()
    ctl = rig.controller(_score())
    assert ctl.play() is True

    assert ctl.state is PlaybackState.PLAYING
    assert ctl.session is not None and ctl.session.voice_count == 3
    assert ctl.context is not None and ctl.context.state is ContextState.RUNNING
    assert rig.streams[0].started == 1
    assert len(rig.ticker.pending) == 1

    # Second play while playing changes nothing.
    assert ctl.play() is False
    assert len(rig.contexts) == 1


def test_progress_and_active_notes_follow_the_device_clock() -> None:
    rig = Rig()
    ctl = rig.controller(_score())
    ctl.play()
    ctx = rig.contexts[0]

    ctx.pull(2000)  # 16 quanta -> 0.256 s -> beat 0.512
    rig.ticker.fire()
    assert ctl.progress == pytest.approx(2048 / SR / 2.0)
    assert ctl.active_notes == {(0, 0)}
    assert rig.updates[-1] == (ctl.progress, ctl.active_notes)
    assert len(rig.ticker.pending) == 1  # re-armed


def test_completion_one_second_after_the_end() -> None:
    rig = Rig()
    ctl = rig.controller(_score())
    ctl.play()
    ctx = rig.contexts[0]

    ctx.pull(int(2.5 * SR))
    rig.ticker.fire()
    assert ctl.state is PlaybackState.PLAYING
    assert ctl.progress == 1.0

    ctx.pull(int(0.5 * SR) + 128)
    rig.ticker.fire()
    assert ctl.state is PlaybackState.COMPLETED
    assert ctl.progress == 1.0
    assert ctl.active_notes == frozenset()
    assert rig.ticker.pending == {}
    assert ctx.state is ContextState.SUSPENDED
    assert rig.streams[0].stopped == 1
    assert ctl.wait(0) is True


def test_play_again_after_completion_reuses_the_context() -> None:
    rig = Rig()
    ctl = rig.controller(_score())
    ctl.play()
    ctx = rig.contexts[0]
    ctx.pull(3 * SR + 128)
    rig.ticker.fire()
    assert ctl.state is PlaybackState.COMPLETED

    assert ctl.play() is True
    assert len(rig.contexts) == 1
    assert rig.streams[0].started == 2
    assert ctl.session is not None
    assert ctl.session.start_time == pytest.approx(ctx.current_time)
    assert ctl.progress == 0.0


def test_stop_resets_and_is_idempotent() -> None:
    rig = Rig()
    ctl = rig.controller(_score())
    ctl.play()
    ctx = rig.contexts[0]
    ctx.pull(2000)
    rig.ticker.fire()
    session = ctl.session
    assert session is not None
    handles = session.handles

    ctl.stop()
    assert ctl.state is PlaybackState.IDLE
    assert PlaybackState.STOPPED is PlaybackState.IDLE
    assert ctl.progress == 0.0
    assert ctl.active_notes == frozenset()
    assert ctl.context is None
    assert ctx.state is ContextState.CLOSED
    assert rig.streams[0].closed
    assert rig.ticker.pending == {}
    assert handles and all(h.voice.stopped for h in handles)

    ctl.stop()
    assert ctl.state is PlaybackState.IDLE
    assert ctl.wait(0) is True


def test_stop_when_idle_is_harmless() -> None:
    rig = Rig()
    ctl = rig.controller(_score())
    ctl.stop()
    ctl.stop()
    assert ctl.state is PlaybackState.IDLE
    assert rig.contexts == []


def test_stale_frame_after_stop_is_ignored() -> None:
    rig = Rig()
    ctl = rig.controller(_score())
    ctl.play()
    stale = list(rig.ticker.pending.values())
    ctl.stop()

    rig.contexts[0].pull(2000)
    for cb in stale:
        cb()
    assert ctl.state is PlaybackState.IDLE
    assert ctl.progress == 0.0
    assert ctl.active_notes == frozenset()
    assert rig.ticker.pending == {}


def test_stale_frame_from_previous_run_is_ignored() -> None:
    rig = Rig()
    ctl = rig.controller(_score())
    ctl.play()
    stale = list(rig.ticker.pending.values())
    ctl.stop()

    assert ctl.play() is True
    assert len(rig.contexts) == 2  # closed context is replaced
    rig.contexts[1].pull(2000)
    for cb in stale:
        cb()
    assert ctl.progress == 0.0
    assert len(rig.ticker.pending) == 1


def test_load_stops_current_playback() -> None:
    rig = Rig()
    ctl = rig.controller(_score())
    ctl.play()

    other = Score(bpm=90, mood="x", key="D", tracks=(), total_duration_beats=2)
    ctl.load(other)
    assert ctl.state is PlaybackState.IDLE
    assert ctl.score is other
    assert rig.contexts[0].state is ContextState.CLOSED
