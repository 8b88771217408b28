from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

from scorewave.audio.nodes import AutomationParam, BiquadFilter, Oscillator
from scorewave.instruments.patches import DrumPatch, FilterSpec, MelodicPatch, Patch, patch_for
from scorewave.model.types import Instrument

if TYPE_CHECKING:  # pragma: no cover
    from scorewave.audio.context import AudioContext
    from scorewave.audio.reverb import MasterBus

logger = logging.getLogger(__name__)

ENVELOPE_FLOOR = 0.001
SUSTAIN_POINT = 0.4  # fraction of the note duration, counted from the end of the attack
STOP_PADDING = 0.1  # seconds past release before the oscillator stops


class VoiceStateError(RuntimeError):
    """Raised when stopping a voice that has already stopped or finished."""


class Voice:
    """One note's signal chain: oscillator -> optional filter -> gain.

    Write-once: the timeline is fixed at build time; only an early stop can be
    applied afterwards.
    """

    def __init__(
        self,
        oscillator: Oscillator,
        filt: BiquadFilter | None,
        gain: AutomationParam,
        *,
        start: float,
        stop: float,
        sample_rate: int,
        label: str = "",
    ) -> None:
        self.oscillator = oscillator
        self.filter = filt
        self.gain = gain
        self.sample_rate = int(sample_rate)
        self.start_frame = int(round(start * self.sample_rate))
        self.stop_frame = max(self.start_frame, int(round(stop * self.sample_rate)))
        self.label = label
        self._stopped = False

    @property
    def stopped(self) -> bool:
        return self._stopped

    def render(self, frame0: int, times: np.ndarray) -> np.ndarray:
        n = times.shape[0]
        out = np.zeros(n, dtype=np.float64)
        lo = max(0, self.start_frame - frame0)
        hi = min(n, self.stop_frame - frame0)
        if hi <= lo:
            return out
        t = times[lo:hi]
        x = self.oscillator.render(t, self.sample_rate)
        if self.filter is not None:
            x = self.filter.process(x, float(t[0]), self.sample_rate)
        out[lo:hi] = x * self.gain.values(t)
        return out

    def stop(self, frame: int) -> None:
        if self._stopped:
            raise VoiceStateError(f"voice {self.label} already stopped")
        if self.stop_frame <= frame:
            raise VoiceStateError(f"voice {self.label} already finished")
        self._stopped = True
        self.stop_frame = max(int(frame), 0)


class VoiceHandle:
    """Stop handle a session keeps for each voice it scheduled."""

    def __init__(self, voice: Voice, context: AudioContext) -> None:
        self.voice = voice
        self.context = context

    def stop(self) -> bool:
        """Stop now. Returns False if the voice had already stopped or finished."""
        try:
            self.voice.stop(self.context.current_frame)
        except VoiceStateError as e:
            logger.debug("ignoring stop: %s", e)
            return False
        return True


def _filter_node(spec: FilterSpec | None, start: float, duration: float) -> BiquadFilter | None:
    if spec is None:
        return None
    node = BiquadFilter(spec.kind, spec.frequency, spec.q)
    sweep = spec.sweep
    if sweep is not None:
        end = start + (sweep.seconds if sweep.seconds is not None else duration)
        node.frequency.set_value_at_time(sweep.start_hz, start)
        if sweep.curve == "exponential":
            node.frequency.exponential_ramp_to_value_at_time(sweep.end_hz, end)
        else:
            node.frequency.linear_ramp_to_value_at_time(sweep.end_hz, end)
    return node


def _melodic_voice(
    patch: MelodicPatch, frequency: float, start: float, duration: float, velocity: float, sample_rate: int
) -> Voice:
    env = patch.envelope
    peak = patch.gain * velocity

    osc = Oscillator(patch.waveform, frequency)
    filt = _filter_node(patch.filter, start, duration)

    gain = AutomationParam(peak)
    gain.set_value_at_time(0.0, start)
    gain.linear_ramp_to_value_at_time(peak, start + env.attack)
    gain.set_value_at_time(peak * env.sustain, start + env.attack + duration * SUSTAIN_POINT)
    gain.exponential_ramp_to_value_at_time(ENVELOPE_FLOOR, start + duration + env.release)

    stop = start + duration + env.release + STOP_PADDING
    return Voice(osc, filt, gain, start=start, stop=stop, sample_rate=sample_rate, label=f"{patch.waveform.value}@{frequency:.1f}Hz")


def _drum_voice(patch: DrumPatch, frequency: float, start: float, velocity: float, sample_rate: int) -> Voice:
    dv = patch.select(frequency)

    osc = Oscillator(dv.waveform, dv.start_hz)
    if dv.sweep_curve is not None:
        osc.frequency.set_value_at_time(dv.start_hz, start)
        if dv.sweep_curve == "exponential":
            osc.frequency.exponential_ramp_to_value_at_time(dv.end_hz, start + dv.sweep_seconds)
        else:
            osc.frequency.linear_ramp_to_value_at_time(dv.end_hz, start + dv.sweep_seconds)
    filt = _filter_node(dv.filter, start, dv.length)

    level = dv.gain * velocity
    gain = AutomationParam(level)
    gain.set_value_at_time(level, start)
    gain.exponential_ramp_to_value_at_time(ENVELOPE_FLOOR, start + dv.decay)

    return Voice(osc, filt, gain, start=start, stop=start + dv.length, sample_rate=sample_rate, label=dv.name)


def build_voice(
    context: AudioContext,
    instrument: Instrument | Patch,
    frequency: float,
    start: float,
    duration: float,
    velocity: float,
    *,
    destination: MasterBus | None = None,
) -> VoiceHandle:
    """Build one note's signal chain, connect it and return its stop handle.

    ``start`` and ``duration`` are absolute seconds on the context's clock.
    ``destination`` defaults to the context's master bus.
    """
    patch = instrument if isinstance(instrument, (MelodicPatch, DrumPatch)) else patch_for(instrument)
    sr = context.sample_rate

    if isinstance(patch, MelodicPatch):
        voice = _melodic_voice(patch, frequency, start, duration, velocity, sr)
    elif isinstance(patch, DrumPatch):
        voice = _drum_voice(patch, frequency, start, velocity, sr)
    else:  # pragma: no cover - Patch is a closed union
        raise TypeError(f"unsupported patch: {patch!r}")

    if voice.start_frame < 0:
        raise ValueError(f"voice start must be >= 0, got {start}")

    (destination if destination is not None else context.master).connect(voice)
    return VoiceHandle(voice, context)
