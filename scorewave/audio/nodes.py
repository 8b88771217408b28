from __future__ import annotations

"""Signal-graph building blocks rendered in fixed 128-frame quanta.

Parameters follow the usual automation-timeline model (set / linear ramp /
exponential ramp events on absolute seconds). Filters compute their
coefficients once per quantum and carry their state across quanta, so a voice
renders the same samples no matter who pulls the quanta.
"""

import math
from dataclasses import dataclass
from enum import Enum

import numpy as np
from scipy.signal import lfilter, sawtooth, square

RENDER_QUANTUM = 128


class Waveform(str, Enum):
    SINE = "sine"
    SQUARE = "square"
    SAWTOOTH = "sawtooth"
    TRIANGLE = "triangle"


class FilterType(str, Enum):
    LOWPASS = "lowpass"
    HIGHPASS = "highpass"
    BANDPASS = "bandpass"


@dataclass(frozen=True)
class _Event:
    kind: str  # set|linear|exponential
    time: float
    value: float


class AutomationParam:
    """A scalar parameter with a timeline of automation events."""

    def __init__(self, default: float) -> None:
        self.default = float(default)
        self._events: list[_Event] = []

    def _insert(self, ev: _Event) -> None:
        # Stable: events at equal times keep insertion order.
        i = len(self._events)
        while i > 0 and self._events[i - 1].time > ev.time:
            i -= 1
        self._events.insert(i, ev)

    def set_value_at_time(self, value: float, time: float) -> "AutomationParam":
        self._insert(_Event("set", float(time), float(value)))
        return self

    def linear_ramp_to_value_at_time(self, value: float, time: float) -> "AutomationParam":
        self._insert(_Event("linear", float(time), float(value)))
        return self

    def exponential_ramp_to_value_at_time(self, value: float, time: float) -> "AutomationParam":
        if value == 0:
            raise ValueError("exponential ramp target must be non-zero")
        self._insert(_Event("exponential", float(time), float(value)))
        return self

    def value_at(self, t: float) -> float:
        return float(self.values(np.array([t], dtype=np.float64))[0])

    def values(self, times: np.ndarray) -> np.ndarray:
        """Vectorized parameter value at each absolute time in ``times``."""
        out = np.full(times.shape, self.default, dtype=np.float64)
        if not self._events:
            return out

        prev_t, prev_v = 0.0, self.default
        # Region before each event: ramp into it (if it is a ramp) or hold.
        for ev in self._events:
            mask = (times >= prev_t) & (times < ev.time)
            if mask.any():
                out[mask] = _segment(ev.kind, times[mask], prev_t, prev_v, ev.time, ev.value)
            prev_t, prev_v = ev.time, ev.value
        out[times >= prev_t] = prev_v
        return out


def _segment(kind: str, t: np.ndarray, t0: float, v0: float, t1: float, v1: float) -> np.ndarray | float:
    if kind == "set" or t1 <= t0:
        return v0
    frac = (t - t0) / (t1 - t0)
    if kind == "linear":
        return v0 + (v1 - v0) * frac
    # Exponential ramps cannot leave zero or cross zero: hold the start value.
    if v0 == 0 or (v0 > 0) != (v1 > 0):
        return v0
    return v0 * (v1 / v0) ** frac


class Oscillator:
    """Phase-accumulating oscillator. Frequency is sample-accurate."""

    def __init__(self, waveform: Waveform, frequency: float) -> None:
        self.waveform = Waveform(waveform)
        self.frequency = AutomationParam(frequency)
        self._phase = 0.0  # cycles, in [0, 1)

    def render(self, times: np.ndarray, sample_rate: int) -> np.ndarray:
        freq = self.frequency.values(times)
        # Phase at each sample is the phase before it plus everything accumulated so far.
        steps = freq / float(sample_rate)
        phase = self._phase + np.concatenate(([0.0], np.cumsum(steps[:-1])))
        self._phase = float((self._phase + steps.sum()) % 1.0)
        x = 2.0 * math.pi * (phase % 1.0)

        if self.waveform is Waveform.SINE:
            return np.sin(x)
        if self.waveform is Waveform.SQUARE:
            return square(x)
        if self.waveform is Waveform.SAWTOOTH:
            return sawtooth(x + math.pi)
        return sawtooth(x + math.pi / 2.0, width=0.5)


def biquad_coefficients(kind: FilterType, frequency: float, q: float, sample_rate: int) -> tuple[np.ndarray, np.ndarray]:
    """Cookbook biquad coefficients, normalized so ``a[0] == 1``.

    Low/high-pass Q is a resonance in dB; band-pass Q is linear.
    """
    nyquist = sample_rate / 2.0
    f = min(max(float(frequency), 1.0), nyquist * 0.999)
    w0 = 2.0 * math.pi * f / sample_rate
    cos_w0 = math.cos(w0)
    sin_w0 = math.sin(w0)

    if kind is FilterType.BANDPASS:
        alpha = sin_w0 / (2.0 * max(q, 1e-4))
        b = [alpha, 0.0, -alpha]
    else:
        alpha = sin_w0 / (2.0 * 10.0 ** (q / 20.0))
        if kind is FilterType.LOWPASS:
            b = [(1.0 - cos_w0) / 2.0, 1.0 - cos_w0, (1.0 - cos_w0) / 2.0]
        else:
            b = [(1.0 + cos_w0) / 2.0, -(1.0 + cos_w0), (1.0 + cos_w0) / 2.0]
    a0 = 1.0 + alpha
    a = np.array([1.0, -2.0 * cos_w0 / a0, (1.0 - alpha) / a0])
    return np.array(b) / a0, a


class BiquadFilter:
    def __init__(self, kind: FilterType, frequency: float, q: float = 1.0) -> None:
        self.kind = FilterType(kind)
        self.frequency = AutomationParam(frequency)
        self.q = float(q)
        self._zi = np.zeros(2, dtype=np.float64)

    def process(self, x: np.ndarray, t0: float, sample_rate: int) -> np.ndarray:
        b, a = biquad_coefficients(self.kind, self.frequency.value_at(t0), self.q, sample_rate)
        y, self._zi = lfilter(b, a, x, zi=self._zi)
        return y
