# -*- coding: utf-8 -*-
"""
Lumen: Tuning the primaries of spectrally programmable light engines
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: lumen_waveforms.py — Temporal waveforms and primary waveform matrices.

A modulation is a set of K primary vectors (background, direction arms...)
and K temporal waveforms.  The primary waveform is the (P, T) matrix

    primary_waveform = primary_values (P, K) @ waveforms (K, T)

which must stay in gamut at every time point.
"""

from __future__ import annotations

import warnings
from typing import Tuple

import numpy as np

from lumen_errors import ConfigurationError, GamutTruncationWarning
from lumen_gamut import ABSOLUTE_GAMUT, DIFFERENTIAL_GAMUT, truncate
from lumen_parameters import BasicModulationParams

__all__ = ["cosine_window", "waveform_from_params", "primary_waveform"]

# Rounding slack before a sample counts as out of gamut
GAMUT_TOLERANCE = 1e-10


def cosine_window(n: int) -> np.ndarray:
    """Raised-cosine ramp from 0 to 1 over *n* samples."""
    if n <= 0:
        return np.zeros(0)
    return (np.cos(np.pi + np.linspace(0.0, 1.0, n) * np.pi) + 1.0) / 2.0


def waveform_from_params(params: BasicModulationParams) -> Tuple[np.ndarray, float, float]:
    """
    Generate the waveform described by *params*.

    pulse
        constant 1 for the whole duration
    sinusoid
        ``sin(2π f t + φ)``
    squarewave
        sign of the sinusoid (+1 / −1)

    The carrier is scaled by ``params.contrast`` and optionally faded in
    and/or out with a raised-cosine window.

    Returns:
        ``(waveform, timestep, duration)`` with *waveform* of shape (T,).
    """
    if not isinstance(params, BasicModulationParams):
        raise ConfigurationError(
            f"waveform_from_params needs BasicModulationParams, got {type(params).__name__}"
        )
    timebase = np.arange(params.n_samples) * params.time_step
    phase = np.deg2rad(params.phase_degrees)

    match params.waveform:
        case "pulse":
            waveform = np.ones_like(timebase)
        case "sinusoid":
            waveform = np.sin(2 * np.pi * params.frequency * timebase + phase)
        case "squarewave":
            waveform = np.where(np.sin(2 * np.pi * params.frequency * timebase + phase) >= 0, 1.0, -1.0)
        case other:
            raise ConfigurationError(f"Unknown waveform type: {other!r}")
    waveform = params.contrast * waveform

    n_window = min(params.n_window_samples, waveform.shape[0])
    if n_window > 0:
        ramp = cosine_window(n_window)
        if params.cosine_window_in:
            waveform[:n_window] *= ramp
        if params.cosine_window_out:
            waveform[-n_window:] *= ramp[::-1]
    return waveform, params.time_step, params.stimulus_duration


def primary_waveform(
    primary_values: np.ndarray,
    waveforms: np.ndarray,
    differential: bool = False,
    truncate_gamut: bool = False,
) -> np.ndarray:
    """
    Combine primary vectors and their waveforms into a (P, T) primary waveform.

    Args:
        primary_values: (P,) or (P, K) primary vectors.
        waveforms: (T,) or (K, T) waveforms, one row per primary vector.
        differential: Treat the result as differential primaries ([-1, 1]).
        truncate_gamut: Clamp out-of-gamut samples (with a
            GamutTruncationWarning) instead of raising.

    Raises:
        ConfigurationError: On shape mismatch, or on out-of-gamut samples when
            *truncate_gamut* is False.
    """
    values = np.asarray(primary_values, dtype=np.float64)
    wave = np.asarray(waveforms, dtype=np.float64)
    if values.ndim == 1:
        values = values[:, np.newaxis]
    if wave.ndim == 1:
        wave = wave[np.newaxis, :]
    if values.ndim != 2 or wave.ndim != 2 or values.shape[1] != wave.shape[0]:
        raise ConfigurationError(
            f"primary_waveform shape mismatch: primary values {np.shape(primary_values)}, "
            f"waveforms {np.shape(waveforms)}"
        )

    out = values @ wave
    bounds = DIFFERENTIAL_GAMUT if differential else ABSOLUTE_GAMUT
    outside = (out < bounds.lower - GAMUT_TOLERANCE) | (out > bounds.upper + GAMUT_TOLERANCE)
    if np.any(outside):
        if not truncate_gamut:
            raise ConfigurationError(
                f"primary waveform is out of gamut [{bounds.lower}, {bounds.upper}] "
                f"at {int(outside.sum())} sample(s)"
            )
        warnings.warn(
            f"primary waveform is out of gamut at {int(outside.sum())} sample(s); truncating.",
            GamutTruncationWarning,
            stacklevel=2,
        )
    # Clamp rounding slack too so the result is strictly in gamut
    out, _ = truncate(out, bounds)
    return out
