from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from scorewave.audio.nodes import FilterType, Waveform
from scorewave.model.types import Instrument


@dataclass(frozen=True)
class Envelope:
    attack: float  # seconds, 0 -> peak
    sustain: float  # fraction of peak held after the attack phase
    release: float  # seconds past the note end for the decay to reach the floor


@dataclass(frozen=True)
class FilterSweep:
    start_hz: float
    end_hz: float
    curve: str = "linear"  # linear|exponential
    seconds: float | None = None  # None = over the note's duration


@dataclass(frozen=True)
class FilterSpec:
    kind: FilterType
    frequency: float
    q: float = 1.0
    sweep: FilterSweep | None = None


@dataclass(frozen=True)
class MelodicPatch:
    waveform: Waveform
    filter: FilterSpec
    gain: float
    envelope: Envelope


@dataclass(frozen=True)
class DrumVoice:
    name: str
    waveform: Waveform
    start_hz: float
    end_hz: float
    sweep_curve: str | None  # None = fixed pitch
    sweep_seconds: float
    filter: FilterSpec | None
    gain: float
    decay: float  # seconds for the gain to reach the floor
    length: float  # seconds until the oscillator stops


@dataclass(frozen=True)
class DrumPatch:
    """Percussion selected by the note's frequency band rather than pitched."""

    kick: DrumVoice
    snare: DrumVoice
    hihat: DrumVoice
    kick_below_hz: float = 100.0
    snare_below_hz: float = 300.0

    def select(self, frequency: float) -> DrumVoice:
        if frequency < self.kick_below_hz:
            return self.kick
        if frequency < self.snare_below_hz:
            return self.snare
        return self.hihat


Patch = Union[MelodicPatch, DrumPatch]


def _lowpass(hz: float, **kw: object) -> FilterSpec:
    return FilterSpec(FilterType.LOWPASS, hz, **kw)  # type: ignore[arg-type]


PATCHES: dict[Instrument, Patch] = {
    Instrument.PIANO: MelodicPatch(
        waveform=Waveform.TRIANGLE,
        filter=_lowpass(1500.0),
        gain=0.5,
        envelope=Envelope(attack=0.02, sustain=0.6, release=0.1),
    ),
    Instrument.GUITAR: MelodicPatch(
        waveform=Waveform.SAWTOOTH,
        filter=_lowpass(3000.0, q=3.0, sweep=FilterSweep(3000.0, 300.0, curve="exponential", seconds=0.2)),
        gain=0.4,
        envelope=Envelope(attack=0.005, sustain=0.2, release=0.3),
    ),
    Instrument.PAD: MelodicPatch(
        waveform=Waveform.SAWTOOTH,
        filter=_lowpass(400.0, sweep=FilterSweep(400.0, 1200.0, curve="linear")),
        gain=0.3,
        envelope=Envelope(attack=0.4, sustain=0.8, release=0.8),
    ),
    Instrument.BASS: MelodicPatch(
        waveform=Waveform.SQUARE,
        filter=_lowpass(400.0),
        gain=0.6,
        envelope=Envelope(attack=0.02, sustain=0.8, release=0.1),
    ),
    Instrument.BELLS: MelodicPatch(
        waveform=Waveform.SINE,
        filter=FilterSpec(FilterType.HIGHPASS, 500.0),
        gain=0.4,
        envelope=Envelope(attack=0.01, sustain=0.1, release=0.5),
    ),
    Instrument.SYNTH: MelodicPatch(
        waveform=Waveform.TRIANGLE,
        filter=_lowpass(2000.0),
        gain=0.4,
        envelope=Envelope(attack=0.02, sustain=0.6, release=0.1),
    ),
    Instrument.DRUMS: DrumPatch(
        kick=DrumVoice(
            name="kick",
            waveform=Waveform.SINE,
            start_hz=150.0,
            end_hz=40.0,
            sweep_curve="exponential",
            sweep_seconds=0.1,
            filter=None,
            gain=0.8,
            decay=0.3,
            length=0.3,
        ),
        snare=DrumVoice(
            name="snare",
            waveform=Waveform.TRIANGLE,
            start_hz=300.0,
            end_hz=100.0,
            sweep_curve="linear",
            sweep_seconds=0.1,
            filter=FilterSpec(FilterType.BANDPASS, 1000.0),
            gain=0.6,
            decay=0.2,
            length=0.2,
        ),
        hihat=DrumVoice(
            name="hihat",
            waveform=Waveform.SQUARE,
            start_hz=800.0,
            end_hz=800.0,
            sweep_curve=None,
            sweep_seconds=0.0,
            filter=FilterSpec(FilterType.HIGHPASS, 7000.0),
            gain=0.3,
            decay=0.05,
            length=0.1,
        ),
    ),
}

_missing = [i.value for i in Instrument if i not in PATCHES]
if _missing:
    raise RuntimeError(f"instrument patches missing for: {', '.join(_missing)}")


def patch_for(instrument: Instrument | str) -> Patch:
    return PATCHES[Instrument(instrument)]
