from __future__ import annotations

import numpy as np
import pytest

from scorewave.audio.context import OfflineContext
from scorewave.instruments.patches import PATCHES, DrumPatch, MelodicPatch, patch_for
from scorewave.instruments.voice import Voice, VoiceStateError, build_voice
from scorewave.model.types import Instrument
from scorewave.util.pitch import pitch_to_frequency

SR = 8000


def _ctx(seconds: float = 1.0) -> OfflineContext:
    return OfflineContext(int(seconds * SR), SR, rng=np.random.default_rng(0))


def _render(voice: Voice, frames: int) -> np.ndarray:
    out = []
    for f0 in range(0, frames, 128):
        out.append(voice.render(f0, (f0 + np.arange(128)) / SR))
    return np.concatenate(out)[:frames]


def test_every_instrument_has_a_patch() -> None:
    assert set(PATCHES) == set(Instrument)
    assert isinstance(patch_for("drums"), DrumPatch)
    for inst in Instrument:
        if inst is not Instrument.DRUMS:
            assert isinstance(patch_for(inst), MelodicPatch)


def test_drum_band_selection() -> None:
    drums = patch_for(Instrument.DRUMS)
    assert isinstance(drums, DrumPatch)
    assert drums.select(pitch_to_frequency("C1")).name == "kick"
    assert drums.select(99.9).name == "kick"
    assert drums.select(100.0).name == "snare"
    assert drums.select(299.0).name == "snare"
    assert drums.select(300.0).name == "hihat"
    assert drums.select(pitch_to_frequency("A5")).name == "hihat"


def test_piano_envelope_timeline() -> None:
    ctx = _ctx()
    h = build_voice(ctx, Instrument.PIANO, 440.0, 0.0, 1.0, 1.0)
    g = h.voice.gain

    assert g.value_at(0.0) == 0.0
    assert g.value_at(0.01) == pytest.approx(0.25)
    assert g.value_at(0.02) == pytest.approx(0.5)
    assert g.value_at(0.3) == pytest.approx(0.5)
    assert g.value_at(0.421) == pytest.approx(0.3)
    assert g.value_at(0.76) == pytest.approx(0.3 * (0.001 / 0.3) ** 0.5)
    assert g.value_at(1.1) == pytest.approx(0.001)
    assert h.voice.stop_frame == round(1.2 * SR)
    assert ctx.master.input_count() == 1


def test_velocity_scales_peak() -> None:
    h = build_voice(_ctx(), Instrument.BASS, 110.0, 0.0, 1.0, 0.5)
    assert h.voice.gain.value_at(0.02) == pytest.approx(0.6 * 0.5)


def test_guitar_filter_sweep() -> None:
    h = build_voice(_ctx(), Instrument.GUITAR, 196.0, 0.25, 1.0, 1.0)
    f = h.voice.filter
    assert f is not None
    assert f.frequency.value_at(0.25) == pytest.approx(3000.0)
    assert f.frequency.value_at(0.35) == pytest.approx((3000.0 * 300.0) ** 0.5)
    assert f.frequency.value_at(0.45) == pytest.approx(300.0)


def test_pad_sweep_follows_note_length() -> None:
    h = build_voice(_ctx(), Instrument.PAD, 220.0, 0.0, 2.0, 1.0)
    f = h.voice.filter
    assert f is not None
    assert f.frequency.value_at(1.0) == pytest.approx(800.0)
    assert f.frequency.value_at(2.0) == pytest.approx(1200.0)


def test_kick_voice() -> None:
    ctx = _ctx()
    h = build_voice(ctx, Instrument.DRUMS, 65.0, 0.5, 1.0, 1.0)
    v = h.voice
    assert v.label == "kick"
    assert v.filter is None
    assert v.stop_frame - v.start_frame == round(0.3 * SR)
    assert v.oscillator.frequency.value_at(0.5) == pytest.approx(150.0)
    assert v.oscillator.frequency.value_at(0.55) == pytest.approx(150.0 * (40.0 / 150.0) ** 0.5)
    assert v.oscillator.frequency.value_at(0.6) == pytest.approx(40.0)
    assert v.gain.value_at(0.8) == pytest.approx(0.001)

    # Nothing before the voice starts.
    assert not v.render(0, np.arange(128) / SR).any()


def test_kick_decays_to_silence() -> None:
    h = build_voice(_ctx(), Instrument.DRUMS, pitch_to_frequency("C1"), 0.0, 0.5, 1.0)
    y = _render(h.voice, int(0.4 * SR))
    stop = round(0.3 * SR)
    assert np.max(np.abs(y[: int(0.05 * SR)])) > 0.3
    assert np.max(np.abs(y[stop - 100 : stop])) < 0.005
    assert not y[stop:].any()


def test_snare_and_hihat_voices() -> None:
    snare = build_voice(_ctx(), Instrument.DRUMS, 150.0, 0.0, 1.0, 1.0).voice
    assert snare.label == "snare"
    assert snare.filter is not None and snare.filter.kind.value == "bandpass"
    assert snare.stop_frame == round(0.2 * SR)

    hihat = build_voice(_ctx(), Instrument.DRUMS, 880.0, 0.0, 1.0, 1.0).voice
    assert hihat.label == "hihat"
    assert hihat.filter is not None and hihat.filter.kind.value == "highpass"
    assert hihat.stop_frame == round(0.1 * SR)
    assert hihat.gain.value_at(0.05) == pytest.approx(0.001)


def test_stop_is_idempotent() -> None:
    ctx = _ctx()
    h = build_voice(ctx, Instrument.SYNTH, 440.0, 0.0, 1.0, 1.0)
    assert h.stop() is True
    assert h.stop() is False
    assert h.voice.stopped
    with pytest.raises(VoiceStateError):
        h.voice.stop(0)
    assert not h.voice.render(0, np.arange(128) / SR).any()


def test_stopping_a_finished_voice_is_harmless() -> None:
    ctx = _ctx()
    h = build_voice(ctx, Instrument.DRUMS, 880.0, 0.0, 1.0, 1.0)
    for _ in range(8):
        ctx.render_quantum()
    assert ctx.current_frame >= h.voice.stop_frame
    assert h.stop() is False
    assert not h.voice.stopped
    assert ctx.master.input_count() == 0


def test_negative_start_is_rejected() -> None:
    with pytest.raises(ValueError):
        build_voice(_ctx(), Instrument.PIANO, 440.0, -1.0, 1.0, 1.0)
