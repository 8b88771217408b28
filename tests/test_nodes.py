from __future__ import annotations

import math

import numpy as np
import pytest
from scipy.signal import freqz

from scorewave.audio.nodes import (
    AutomationParam,
    BiquadFilter,
    FilterType,
    Oscillator,
    Waveform,
    biquad_coefficients,
)


def test_param_holds_default_until_first_event() -> None:
    p = AutomationParam(5.0)
    assert p.value_at(3.0) == 5.0

    p.set_value_at_time(0.0, 1.0)
    p.linear_ramp_to_value_at_time(1.0, 2.0)
    got = p.values(np.array([0.5, 1.0, 1.5, 2.0, 3.0]))
    assert got == pytest.approx([5.0, 0.0, 0.5, 1.0, 1.0])


def test_linear_ramp_starts_from_previous_event() -> None:
    p = AutomationParam(0.0)
    p.set_value_at_time(0.2, 0.0)
    p.linear_ramp_to_value_at_time(1.0, 1.0)
    p.linear_ramp_to_value_at_time(0.0, 3.0)
    assert p.value_at(0.5) == pytest.approx(0.6)
    assert p.value_at(2.0) == pytest.approx(0.5)


def test_exponential_ramp_is_geometric() -> None:
    p = AutomationParam(1.0)
    p.set_value_at_time(1.0, 0.0)
    p.exponential_ramp_to_value_at_time(0.01, 1.0)
    assert p.value_at(0.5) == pytest.approx(0.1)
    assert p.value_at(1.0) == pytest.approx(0.01)


def test_exponential_ramp_from_zero_holds() -> None:
    p = AutomationParam(0.0)
    p.set_value_at_time(0.0, 0.0)
    p.exponential_ramp_to_value_at_time(1.0, 1.0)
    assert p.value_at(0.5) == 0.0
    assert p.value_at(1.0) == 1.0

    with pytest.raises(ValueError):
        p.exponential_ramp_to_value_at_time(0.0, 2.0)


def test_sine_oscillator_phase() -> None:
    sr = 8000
    osc = Oscillator(Waveform.SINE, 1000.0)
    y = osc.render(np.arange(8) / sr, sr)
    assert y == pytest.approx([math.sin(2 * math.pi * k / 8) for k in range(8)], abs=1e-12)


def test_oscillator_is_continuous_across_blocks() -> None:
    sr = 8000
    times = np.arange(256) / sr
    whole = Oscillator(Waveform.SAWTOOTH, 330.0).render(times, sr)

    split = Oscillator(Waveform.SAWTOOTH, 330.0)
    parts = np.concatenate([split.render(times[:128], sr), split.render(times[128:], sr)])
    assert np.allclose(whole, parts)


def test_waveform_shapes_start_where_expected() -> None:
    sr = 48000
    t = np.arange(4) / sr
    assert Oscillator(Waveform.SQUARE, 100.0).render(t, sr)[0] == 1.0
    assert Oscillator(Waveform.SAWTOOTH, 100.0).render(t, sr)[0] == pytest.approx(0.0)
    assert Oscillator(Waveform.TRIANGLE, 100.0).render(t, sr)[0] == pytest.approx(0.0)
    for wf in Waveform:
        y = Oscillator(wf, 440.0).render(np.arange(4800) / sr, sr)
        assert np.max(np.abs(y)) <= 1.0 + 1e-9


def test_biquad_responses() -> None:
    sr = 44100
    b, a = biquad_coefficients(FilterType.LOWPASS, 1000.0, 1.0, sr)
    assert a[0] == 1.0
    assert np.sum(b) / np.sum(a) == pytest.approx(1.0)  # unity at DC

    b, a = biquad_coefficients(FilterType.HIGHPASS, 1000.0, 1.0, sr)
    assert np.sum(b) == pytest.approx(0.0, abs=1e-12)  # blocks DC

    w0 = 2 * math.pi * 1000.0 / sr
    b, a = biquad_coefficients(FilterType.BANDPASS, 1000.0, 1.0, sr)
    _, h = freqz(b, a, worN=[w0])
    assert abs(h[0]) == pytest.approx(1.0)


def test_filter_state_carries_across_blocks() -> None:
    sr = 8000
    rng = np.random.default_rng(1)
    x = rng.standard_normal(256)

    whole = BiquadFilter(FilterType.LOWPASS, 800.0)
    y_whole = whole.process(x, 0.0, sr)

    split = BiquadFilter(FilterType.LOWPASS, 800.0)
    y_split = np.concatenate([split.process(x[:128], 0.0, sr), split.process(x[128:], 128 / sr, sr)])
    assert np.allclose(y_whole, y_split)
