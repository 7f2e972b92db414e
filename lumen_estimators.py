# -*- coding: utf-8 -*-
"""
Lumen: Tuning the primaries of spectrally programmable light engines
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: lumen_estimators.py — Delta-primary estimators in SPD space.

Given the primaries used for a measurement and the SPD that came out, both
estimators propose a change δ that moves the measured SPD toward a target.

  linear_delta_primaries
      One bounded, regularized least-squares solve of M·δ ≈ target − measured,
      scaled by the learning rate.

  iterative_delta_primaries
      Bounded nonlinear least squares on the gamut-aware small-signal model

          predicted(δ) = measured + M · (truncate(used + δ) − used)

      aiming at the learning-rate damped target

          target_lr = measured + lr · (target − measured)

Both keep δ inside the box [lower − used, upper − used].  Neither applies
the step; that belongs to the correction loop and the gamut policy.
"""

from __future__ import annotations

import warnings
from typing import Callable, NamedTuple, Optional, Tuple

import numpy as np
from scipy.optimize import least_squares

from lumen_calibration import Calibration
from lumen_devicemodel import (
    LinearDeviceModel,
    bounded_regularized_lstsq,
    check_vector,
    rms_error,
)
from lumen_errors import ConfigurationError, NonConvergenceWarning
from lumen_gamut import (
    GamutBounds,
    delta_bounds,
    in_gamut,
    truncated_delta_primaries,
)

__all__ = [
    "DeltaEstimate",
    "check_learning_rate",
    "check_operating_point",
    "linear_delta_primaries",
    "iterative_delta_primaries",
    "refine_in_box",
]


class DeltaEstimate(NamedTuple):
    """Result of an iterative delta search."""
    delta: np.ndarray          # (P,) delta primaries, inside the box
    predicted: np.ndarray      # predicted SPD (or contrasts) for ``delta``
    converged: bool            # False when the evaluation budget ran out
    n_evaluations: int
    error: float               # RMS residual against the damped target


def check_learning_rate(learning_rate: float) -> float:
    lr = float(learning_rate)
    if not (0.0 < lr <= 1.0):
        raise ConfigurationError(f"learning_rate must be in (0, 1], got {learning_rate}")
    return lr


def check_operating_point(
    primaries_used: np.ndarray,
    calibration: Calibration,
    bounds: Optional[GamutBounds],
) -> tuple[np.ndarray, GamutBounds]:
    bounds = calibration.gamut if bounds is None else bounds
    used = check_vector(primaries_used, calibration.n_primaries, "primaries_used")
    if not in_gamut(used, bounds):
        raise ConfigurationError(
            f"primaries_used lie outside the gamut [{bounds.lower}, {bounds.upper}]"
        )
    return used, bounds


# ---------------------------------------------------------------------------
# Linear estimator
# ---------------------------------------------------------------------------
def linear_delta_primaries(
    primaries_used: np.ndarray,
    measured_spd: np.ndarray,
    target_spd: np.ndarray,
    learning_rate: float,
    smoothness: float,
    calibration: Calibration,
    bounds: Optional[GamutBounds] = None,
) -> np.ndarray:
    """
    Linear estimate of the primaries change that moves *measured_spd* to *target_spd*.

    Solves ``min ‖M·δ − (target − measured)‖² + λ‖D·δ‖²`` with
    ``δ ∈ [lower − used, upper − used]`` and returns ``learning_rate · δ``.
    Since the box contains 0 and is convex, the scaled delta is still
    feasible.

    Raises:
        ConfigurationError: On dimension mismatch or out-of-range parameters.
    """
    lr = check_learning_rate(learning_rate)
    used, bounds = check_operating_point(primaries_used, calibration, bounds)
    measured = check_vector(measured_spd, calibration.n_wavelengths, "measured_spd")
    target = check_vector(target_spd, calibration.n_wavelengths, "target_spd")

    lower, upper = delta_bounds(used, bounds)
    delta = bounded_regularized_lstsq(
        calibration.primary_basis, target - measured, lower, upper, smoothness,
    )
    return lr * delta


# ---------------------------------------------------------------------------
# Shared bounded refinement
# ---------------------------------------------------------------------------
def refine_in_box(
    residual: Callable[[np.ndarray], np.ndarray],
    jacobian: Callable[[np.ndarray], np.ndarray],
    x0: np.ndarray,
    lower: np.ndarray,
    upper: np.ndarray,
    max_function_evaluations: int = 200,
    tolerance: float = 1e-10,
    label: str = "delta search",
) -> Tuple[np.ndarray, bool, int]:
    """
    Bounded nonlinear least squares (trust-region reflective).

    The starting point is clipped into the box.  Running out of evaluations
    is not an error: the last (lowest cost) iterate is returned and a
    NonConvergenceWarning is emitted.

    Returns:
        ``(x, converged, n_evaluations)``
    """
    if max_function_evaluations < 1:
        raise ConfigurationError(
            f"max_function_evaluations must be >= 1, got {max_function_evaluations}"
        )
    start = np.clip(np.asarray(x0, dtype=np.float64), lower, upper)
    result = least_squares(
        residual,
        start,
        jac=jacobian,
        bounds=(lower, upper),
        method="trf",
        ftol=tolerance,
        xtol=tolerance,
        gtol=tolerance,
        max_nfev=max_function_evaluations,
    )
    converged = bool(result.status > 0)
    if not converged:
        warnings.warn(
            f"{label}: no convergence within {max_function_evaluations} evaluations "
            f"({result.message}); using best iterate (cost={result.cost:.3g}).",
            NonConvergenceWarning,
            stacklevel=3,
        )
    return np.clip(result.x, lower, upper), converged, int(result.nfev)


# ---------------------------------------------------------------------------
# Iterative estimator
# ---------------------------------------------------------------------------
def iterative_delta_primaries(
    delta_primaries0: Optional[np.ndarray],
    primaries_used: np.ndarray,
    measured_spd: np.ndarray,
    target_spd: np.ndarray,
    learning_rate: float,
    calibration: Calibration,
    bounds: Optional[GamutBounds] = None,
    max_function_evaluations: int = 200,
    tolerance: float = 1e-10,
) -> DeltaEstimate:
    """
    Search for the delta primaries that hit the damped target SPD.

    Args:
        delta_primaries0: Warm start (e.g. the linear estimate).  ``None``
            starts at zero.
        primaries_used: Primaries that produced *measured_spd*.
        measured_spd: (W,) measured SPD.
        target_spd: (W,) desired SPD.
        learning_rate: Fraction of the way from measured to target to aim for.
        calibration: Device calibration.
        bounds: Gamut, defaults to the calibration's.
        max_function_evaluations: Evaluation budget for the optimizer.
        tolerance: ftol/xtol/gtol for the optimizer.

    Returns:
        DeltaEstimate with the truncated delta and the SPD predicted for it.
    """
    lr = check_learning_rate(learning_rate)
    used, bounds = check_operating_point(primaries_used, calibration, bounds)
    measured = check_vector(measured_spd, calibration.n_wavelengths, "measured_spd")
    target = check_vector(target_spd, calibration.n_wavelengths, "target_spd")
    if delta_primaries0 is None:
        delta0 = np.zeros_like(used)
    else:
        delta0 = check_vector(delta_primaries0, calibration.n_primaries, "delta_primaries0")

    model = LinearDeviceModel(calibration)
    basis = calibration.primary_basis
    target_lr = measured + lr * (target - measured)
    lower, upper = delta_bounds(used, bounds)

    def residual(delta: np.ndarray) -> np.ndarray:
        return model.predict_spd_from_delta_primaries(delta, used, measured, bounds) - target_lr

    def jacobian(delta: np.ndarray) -> np.ndarray:
        candidate = used + delta
        free = (candidate >= bounds.lower) & (candidate <= bounds.upper)
        return basis * free[np.newaxis, :]

    delta, converged, n_eval = refine_in_box(
        residual, jacobian, delta0, lower, upper,
        max_function_evaluations, tolerance, label="iterative_delta_primaries",
    )

    # Return exactly what the search evaluated
    delta = truncated_delta_primaries(delta, used, bounds)
    predicted = model.predict_spd_from_delta_primaries(delta, used, measured, bounds)
    return DeltaEstimate(
        delta=delta,
        predicted=predicted,
        converged=converged,
        n_evaluations=n_eval,
        error=rms_error(target_lr, predicted),
    )
