# -*- coding: utf-8 -*-
"""
Lumen: Tuning the primaries of spectrally programmable light engines
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: lumen_devicemodel.py — Linear model of the light engine.

Forward model
-------------
    spd = M · p + dark

with M the calibration's (W, P) primary basis.  The model ignores
interactions between neighbouring mirror columns; the correction loop exists
to absorb what it gets wrong.

Inverse model
-------------
    minimise  ‖M·p + dark − t‖² + λ‖D·p‖²   subject to  lower ≤ p ≤ upper

D is the second-difference operator over adjacent primaries.  λ ("smoothness")
trades spectral fit against jaggedness of the primary vector; λ = 0 lets the
solver chase measurement noise.  The problem is stacked as

    [   M  ]       [ t − dark ]
    [ √λ·D ] · p = [    0     ]

and handed to ``scipy.optimize.lsq_linear`` (BVLS active set).
"""

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np
from numba import njit
from scipy.optimize import lsq_linear

from lumen_calibration import Calibration
from lumen_errors import ConfigurationError
from lumen_gamut import DIFFERENTIAL_GAMUT, GamutBounds, truncate

__all__ = [
    "LinearDeviceModel",
    "second_difference_operator",
    "bounded_regularized_lstsq",
    "rms_error",
    "check_vector",
]


# ---------------------------------------------------------------------------
# Kernels & helpers
# ---------------------------------------------------------------------------
@njit(cache=True)
def _rms_kernel(diff: np.ndarray) -> float:
    total = 0.0
    for i in range(diff.shape[0]):
        total += diff[i] * diff[i]
    return np.sqrt(total / diff.shape[0])


def rms_error(target: np.ndarray, actual: np.ndarray) -> float:
    """Root-mean-square difference of two equally shaped vectors."""
    t = np.ascontiguousarray(target, dtype=np.float64).ravel()
    a = np.ascontiguousarray(actual, dtype=np.float64).ravel()
    if t.shape != a.shape:
        raise ConfigurationError(f"rms_error shape mismatch: {t.shape} vs {a.shape}")
    if t.size == 0:
        raise ConfigurationError("rms_error: empty vectors")
    return float(_rms_kernel(t - a))


def check_vector(value: np.ndarray, length: int, label: str) -> np.ndarray:
    """
    Coerce *value* to a contiguous float64 vector of exactly *length*.

    No broadcasting: a column vector (N, 1) is accepted, anything else with
    the wrong size raises ConfigurationError.
    """
    arr = np.asarray(value, dtype=np.float64)
    if arr.ndim == 2 and arr.shape[1] == 1:
        arr = arr[:, 0]
    if arr.ndim != 1 or arr.shape[0] != length:
        raise ConfigurationError(f"{label} must have shape ({length},), got {np.shape(value)}")
    return np.ascontiguousarray(arr)


def second_difference_operator(n: int) -> np.ndarray:
    """(n-2, n) matrix whose rows are [1, -2, 1] stencils; empty for n < 3."""
    if n < 3:
        return np.zeros((0, n), dtype=np.float64)
    return np.diff(np.eye(n, dtype=np.float64), n=2, axis=0)


def bounded_regularized_lstsq(
    design: np.ndarray,
    rhs: np.ndarray,
    lower: np.ndarray,
    upper: np.ndarray,
    smoothness: float,
) -> np.ndarray:
    """
    Solve ``min ‖A·x − b‖² + λ‖D·x‖²`` inside the box ``[lower, upper]``.

    Args:
        design: A, shape (m, n).
        rhs: b, shape (m,).
        lower, upper: Box bounds, shape (n,) (must satisfy lower < upper).
        smoothness: λ ≥ 0.

    Returns:
        x of shape (n,), inside the box.
    """
    if smoothness < 0 or not np.isfinite(smoothness):
        raise ConfigurationError(f"smoothness must be finite and >= 0, got {smoothness}")
    n = design.shape[1]
    reg = np.sqrt(smoothness) * second_difference_operator(n)
    a = np.vstack([design, reg])
    b = np.concatenate([rhs, np.zeros(reg.shape[0], dtype=np.float64)])
    result = lsq_linear(a, b, bounds=(lower, upper), method="bvls")
    return np.clip(result.x, lower, upper)


# ═══════════════════════════════════════════════════════════════════════════════
# LinearDeviceModel
# ═══════════════════════════════════════════════════════════════════════════════
class LinearDeviceModel:
    """
    SPD ⇄ primaries under the calibration's linear approximation.

    The model holds a reference to the (immutable) calibration and never
    copies or mutates its arrays.
    """

    __slots__ = ("_cal",)

    def __init__(self, calibration: Calibration) -> None:
        if not isinstance(calibration, Calibration):
            raise ConfigurationError(
                f"LinearDeviceModel needs a Calibration, got {type(calibration).__name__}"
            )
        self._cal = calibration

    @property
    def calibration(self) -> Calibration:
        return self._cal

    @property
    def n_primaries(self) -> int:
        return self._cal.n_primaries

    @property
    def n_wavelengths(self) -> int:
        return self._cal.n_wavelengths

    # -- forward -----------------------------------------------------------
    def _check_primaries(self, primaries: np.ndarray) -> np.ndarray:
        p = np.asarray(primaries, dtype=np.float64)
        if p.ndim not in (1, 2) or p.shape[0] != self.n_primaries:
            raise ConfigurationError(
                f"primaries must have leading dimension {self.n_primaries}, got shape {p.shape}"
            )
        return p

    def differential_spd(self, primaries: np.ndarray) -> np.ndarray:
        """M · p, without the dark offset.  Accepts (P,) or (P, N)."""
        return self._cal.primary_basis @ self._check_primaries(primaries)

    def predict_spd(self, primaries: np.ndarray) -> np.ndarray:
        """M · p + dark.  Accepts (P,) or (P, N)."""
        p = self._check_primaries(primaries)
        spd = self._cal.primary_basis @ p
        if p.ndim == 1:
            return spd + self._cal.dark_spd
        return spd + self._cal.dark_spd[:, np.newaxis]

    def predict_spd_from_delta_primaries(
        self,
        delta_primaries: np.ndarray,
        primaries_used: np.ndarray,
        measured_spd: np.ndarray,
        bounds: Optional[GamutBounds] = None,
    ) -> np.ndarray:
        """
        Small-signal prediction around a measured operating point.

            predicted = measured + M · (truncate(used + δ) − used)

        Truncating before the model makes predictions gamut-aware: asking
        for more than the device can give predicts no further change.
        """
        bounds = self._cal.gamut if bounds is None else bounds
        used = check_vector(primaries_used, self.n_primaries, "primaries_used")
        delta = check_vector(delta_primaries, self.n_primaries, "delta_primaries")
        measured = check_vector(measured_spd, self.n_wavelengths, "measured_spd")
        clamped, _ = truncate(used + delta, bounds)
        return measured + self._cal.primary_basis @ (clamped - used)

    # -- inverse -----------------------------------------------------------
    def primary_bounds(
        self,
        primary_headroom: float = 0.0,
        differential: bool = False,
    ) -> Tuple[np.ndarray, np.ndarray]:
        bounds = DIFFERENTIAL_GAMUT if differential else self._cal.gamut
        if primary_headroom < 0 or 2 * primary_headroom >= bounds.width:
            raise ConfigurationError(
                f"primary_headroom must be in [0, {bounds.width / 2}), got {primary_headroom}"
            )
        lower = np.full(self.n_primaries, bounds.lower + primary_headroom)
        upper = np.full(self.n_primaries, bounds.upper - primary_headroom)
        return lower, upper

    def spd_to_primary(
        self,
        target_spd: np.ndarray,
        smoothness: float = 0.001,
        primary_headroom: float = 0.0,
        differential: bool = False,
    ) -> np.ndarray:
        """
        Primaries whose predicted SPD best matches *target_spd*.

        Args:
            target_spd: (W,) desired SPD.  In differential mode this is a
                differential SPD and the dark offset is not subtracted.
            smoothness: Regularization weight λ on second differences.
            primary_headroom: Keep primaries this far inside the gamut.
            differential: Solve for differential primaries in [-1, 1].

        Returns:
            (P,) primaries inside the (headroom-shrunk) gamut.

        Raises:
            ConfigurationError: On dimension mismatch or bad parameters.
        """
        target = check_vector(target_spd, self.n_wavelengths, "target_spd")
        if not np.all(np.isfinite(target)):
            raise ConfigurationError("target_spd contains non-finite values")
        lower, upper = self.primary_bounds(primary_headroom, differential)
        rhs = target if differential else target - self._cal.dark_spd
        return bounded_regularized_lstsq(self._cal.primary_basis, rhs, lower, upper, smoothness)

    def __repr__(self) -> str:
        return f"LinearDeviceModel({self._cal!r})"
