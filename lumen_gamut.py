# -*- coding: utf-8 -*-
"""
Lumen: Tuning the primaries of spectrally programmable light engines
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: lumen_gamut.py — Single source of truth for primary gamut clamping.

Every code path that produces primaries (linear estimator, iterative
estimator, contrast estimator, correction loop, waveforms) goes through
``truncate`` so that "in gamut" always means the same thing.

    absolute primaries      0 <= p <= 1
    differential primaries -1 <= p <= 1
"""

from __future__ import annotations

from typing import NamedTuple, Tuple

import numpy as np
from numba import njit

from lumen_errors import ConfigurationError, InvariantViolation

__all__ = [
    "GamutBounds",
    "ABSOLUTE_GAMUT",
    "DIFFERENTIAL_GAMUT",
    "truncate",
    "truncated_delta_primaries",
    "apply_delta",
    "in_gamut",
    "assert_in_gamut",
    "delta_bounds",
]


# ---------------------------------------------------------------------------
# Bounds
# ---------------------------------------------------------------------------
class GamutBounds(NamedTuple):
    """Closed interval ``[lower, upper]`` applied to every primary."""
    lower: float
    upper: float

    def validate(self) -> "GamutBounds":
        if not (np.isfinite(self.lower) and np.isfinite(self.upper)):
            raise ConfigurationError(f"GamutBounds must be finite, got {self}.")
        if self.lower >= self.upper:
            raise ConfigurationError(
                f"GamutBounds lower ({self.lower}) must be below upper ({self.upper})."
            )
        return self

    @property
    def width(self) -> float:
        return self.upper - self.lower


ABSOLUTE_GAMUT = GamutBounds(0.0, 1.0)
DIFFERENTIAL_GAMUT = GamutBounds(-1.0, 1.0)


# ---------------------------------------------------------------------------
# Kernels
# ---------------------------------------------------------------------------
@njit(cache=True)
def _clamp_kernel(values: np.ndarray, lower: float, upper: float) -> Tuple[np.ndarray, int]:
    """
    Clamp a flat float64 array into [lower, upper].

    Returns the clamped copy and the number of entries that moved.  NaN
    entries fail both comparisons and pass through unchanged.
    """
    out = np.empty_like(values)
    n_clamped = 0
    for i in range(values.shape[0]):
        v = values[i]
        if v < lower:
            out[i] = lower
            n_clamped += 1
        elif v > upper:
            out[i] = upper
            n_clamped += 1
        else:
            out[i] = v
    return out, n_clamped


def _as_float_array(x: np.ndarray) -> np.ndarray:
    return np.ascontiguousarray(x, dtype=np.float64)


# ---------------------------------------------------------------------------
# Public policy
# ---------------------------------------------------------------------------
def truncate(
    primaries: np.ndarray,
    bounds: GamutBounds = ABSOLUTE_GAMUT,
) -> Tuple[np.ndarray, bool]:
    """
    Clamp *primaries* into the gamut.

    Args:
        primaries: Primary vector (P,) or stack (P, N).
        bounds: Gamut interval.

    Returns:
        ``(clamped, was_truncated)`` where *clamped* is a new array with the
        same shape as the input.
    """
    arr = _as_float_array(primaries)
    flat, n_clamped = _clamp_kernel(arr.reshape(-1), float(bounds.lower), float(bounds.upper))
    return flat.reshape(arr.shape), bool(n_clamped > 0)


def in_gamut(primaries: np.ndarray, bounds: GamutBounds = ABSOLUTE_GAMUT) -> bool:
    arr = np.asarray(primaries, dtype=np.float64)
    return bool(np.all(arr >= bounds.lower) and np.all(arr <= bounds.upper))


def assert_in_gamut(
    primaries: np.ndarray,
    bounds: GamutBounds = ABSOLUTE_GAMUT,
    label: str = "primaries",
) -> None:
    """Raise InvariantViolation if any entry lies outside *bounds* (or is NaN)."""
    if not in_gamut(primaries, bounds):
        arr = np.asarray(primaries, dtype=np.float64)
        raise InvariantViolation(
            f"{label} out of gamut [{bounds.lower}, {bounds.upper}]: "
            f"min={np.nanmin(arr) if arr.size else 'n/a'}, "
            f"max={np.nanmax(arr) if arr.size else 'n/a'}, "
            f"nan={int(np.isnan(arr).sum())}"
        )


def delta_bounds(
    primaries_used: np.ndarray,
    bounds: GamutBounds = ABSOLUTE_GAMUT,
) -> Tuple[np.ndarray, np.ndarray]:
    """Box on deltas that keeps ``primaries_used + delta`` in gamut."""
    used = _as_float_array(primaries_used)
    return bounds.lower - used, bounds.upper - used


def truncated_delta_primaries(
    delta_primaries: np.ndarray,
    primaries_used: np.ndarray,
    bounds: GamutBounds = ABSOLUTE_GAMUT,
) -> np.ndarray:
    """The delta that is actually realised once ``used + delta`` is clamped."""
    used = _as_float_array(primaries_used)
    clamped, _ = truncate(used + _as_float_array(delta_primaries), bounds)
    return clamped - used


def apply_delta(
    primaries_used: np.ndarray,
    delta_primaries: np.ndarray,
    bounds: GamutBounds = ABSOLUTE_GAMUT,
) -> Tuple[np.ndarray, np.ndarray, bool]:
    """
    Step from *primaries_used* by *delta_primaries*, truncating to gamut.

    Returns ``(next_primaries, delta_applied, was_truncated)`` with
    ``next_primaries == primaries_used + delta_applied`` holding exactly in
    floating point and *next_primaries* inside *bounds*.

    Raises:
        ConfigurationError: On shape mismatch.
        InvariantViolation: If the delta is not finite.
    """
    used = _as_float_array(primaries_used)
    delta = _as_float_array(delta_primaries)
    if used.shape != delta.shape:
        raise ConfigurationError(
            f"apply_delta shape mismatch: primaries {used.shape}, delta {delta.shape}"
        )
    if not np.all(np.isfinite(delta)):
        raise InvariantViolation("apply_delta: delta primaries contain non-finite values.")

    clamped, was_truncated = truncate(used + delta, bounds)
    delta_applied = clamped - used
    next_primaries = used + delta_applied

    # used + (clamped - used) may round one ulp past a bound
    for _ in range(4):
        if in_gamut(next_primaries, bounds):
            return next_primaries, delta_applied, was_truncated
        clamped, _ = truncate(next_primaries, bounds)
        delta_applied = clamped - used
        next_primaries = used + delta_applied
        was_truncated = True

    assert_in_gamut(next_primaries, bounds, label="next primaries")
    return next_primaries, delta_applied, was_truncated
