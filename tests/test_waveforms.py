# -*- coding: utf-8 -*-
import numpy as np
import pytest

from lumen_errors import ConfigurationError, GamutTruncationWarning
from lumen_parameters import BasicModulationParams
from lumen_waveforms import cosine_window, primary_waveform, waveform_from_params


def test_cosine_window():
    ramp = cosine_window(5)
    assert ramp[0] == pytest.approx(0.0)
    assert ramp[-1] == pytest.approx(1.0)
    assert np.all(np.diff(ramp) > 0)
    assert cosine_window(0).shape == (0,)


def test_windowed_pulse():
    params = BasicModulationParams(contrast=0.5)
    waveform, timestep, duration = waveform_from_params(params)
    assert waveform.shape == (192,)
    assert timestep == 1 / 64 and duration == 3.0
    assert waveform[0] == pytest.approx(0.0)
    assert waveform[-1] == pytest.approx(0.0)
    np.testing.assert_allclose(waveform[32:160], 0.5)


def test_unwindowed_sinusoid_and_squarewave():
    common = dict(frequency=1.0, time_step=0.125, stimulus_duration=1.0,
                  cosine_window_in=False, cosine_window_out=False)
    sine, _, _ = waveform_from_params(BasicModulationParams(waveform="sinusoid", **common))
    np.testing.assert_allclose(sine, np.sin(2 * np.pi * np.arange(8) / 8), atol=1e-12)

    square, _, _ = waveform_from_params(BasicModulationParams(waveform="squarewave", contrast=0.25, **common))
    np.testing.assert_array_equal(np.unique(square), [-0.25, 0.25])
    assert square[1] == 0.25 and square[5] == -0.25


def test_phase_shift():
    params = BasicModulationParams(
        waveform="sinusoid", frequency=2.0, phase_degrees=90.0,
        cosine_window_in=False, cosine_window_out=False,
    )
    waveform, _, _ = waveform_from_params(params)
    assert waveform[0] == pytest.approx(1.0)


def test_waveform_requires_modulation_params():
    with pytest.raises(ConfigurationError):
        waveform_from_params({"type": "basic"})


def test_primary_waveform_combines_background_and_direction():
    background = np.full(3, 0.5)
    direction = np.array([0.5, 0.0, -0.5])
    t = np.linspace(0, 1, 9)
    waveforms = np.vstack([np.ones_like(t), np.sin(2 * np.pi * t)])

    out = primary_waveform(np.column_stack([background, direction]), waveforms)
    assert out.shape == (3, 9)
    np.testing.assert_allclose(out[1], 0.5)
    assert out.min() >= 0.0 and out.max() <= 1.0


def test_out_of_gamut_waveforms():
    values = np.array([[0.8], [0.2]])
    wave = np.array([[1.0, 1.5]])
    with pytest.raises(ConfigurationError, match="out of gamut"):
        primary_waveform(values, wave)
    with pytest.warns(GamutTruncationWarning):
        out = primary_waveform(values, wave, truncate_gamut=True)
    np.testing.assert_allclose(out, [[0.8, 1.0], [0.2, 0.3]])

    differential = primary_waveform(np.array([-0.5]), np.array([1.0, 2.0]), differential=True)
    np.testing.assert_allclose(differential, [[-0.5, -1.0]])


def test_primary_waveform_shape_mismatch():
    with pytest.raises(ConfigurationError):
        primary_waveform(np.ones((3, 2)), np.ones((3, 5)))
