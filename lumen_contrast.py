# -*- coding: utf-8 -*-
"""
Lumen: Tuning the primaries of spectrally programmable light engines
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: lumen_contrast.py — Photoreceptor contrast and contrast-space estimators.

Receptor excitations are ``T · spd`` for a (R, W) receptor sensitivity matrix
T.  Contrast is measured against a fixed background:

    contrast = (T·spd − T·background) / (T·background)

The estimators mirror those in ``lumen_estimators`` with the residual moved
into contrast space.  The background SPD is context, not a quantity being
corrected: it is measured (at most) once per correction run and reused for
every iteration.  If the light engine drifts during the run the background
excitations go stale; that limitation is accepted, not compensated.

``isolate_receptors`` works the other way round: it designs the primaries
change that produces given contrasts on some receptors while silencing the
others, which is how receptor-isolating directions are built.
"""

from __future__ import annotations

import warnings
from typing import Optional, Sequence, Tuple

import numpy as np
from scipy.optimize import minimize

from lumen_calibration import Calibration
from lumen_devicemodel import (
    LinearDeviceModel,
    bounded_regularized_lstsq,
    check_vector,
    rms_error,
)
from lumen_errors import ConfigurationError, NonConvergenceWarning
from lumen_estimators import (
    DeltaEstimate,
    check_operating_point,
    check_learning_rate,
    refine_in_box,
)
from lumen_gamut import GamutBounds, delta_bounds, truncated_delta_primaries

__all__ = [
    "check_receptors",
    "receptor_excitations",
    "contrasts_from_excitations",
    "spd_to_contrasts",
    "check_background_excitations",
    "contrast_sensitivity",
    "isolate_receptors",
    "linear_delta_primaries_contrast",
    "iterative_delta_primaries_contrast",
]

# Background excitations at or below this fraction of the largest one count as zero
ZERO_EXCITATION_RTOL = 1e-12


# ---------------------------------------------------------------------------
# Receptor math
# ---------------------------------------------------------------------------
def check_receptors(receptors: np.ndarray, n_wavelengths: int) -> np.ndarray:
    """Coerce T to a finite (R, W) float64 matrix."""
    t = np.asarray(receptors, dtype=np.float64)
    if t.ndim == 1:
        t = t[np.newaxis, :]
    if t.ndim != 2 or t.shape[1] != n_wavelengths or t.shape[0] < 1:
        raise ConfigurationError(
            f"receptor matrix must have shape (R, {n_wavelengths}), got {np.shape(receptors)}"
        )
    if not np.all(np.isfinite(t)):
        raise ConfigurationError("receptor matrix contains non-finite values")
    return np.ascontiguousarray(t)


def receptor_excitations(receptors: np.ndarray, spd: np.ndarray) -> np.ndarray:
    """T · spd for a single SPD (W,) or a stack (W, N)."""
    t = np.asarray(receptors, dtype=np.float64)
    s = np.asarray(spd, dtype=np.float64)
    if s.shape[0] != t.shape[-1]:
        raise ConfigurationError(
            f"SPD length {s.shape[0]} does not match receptor matrix width {t.shape[-1]}"
        )
    return t @ s


def contrasts_from_excitations(
    excitations: np.ndarray,
    background_excitations: np.ndarray,
) -> np.ndarray:
    """Fractional change of *excitations* relative to *background_excitations*."""
    exc = np.asarray(excitations, dtype=np.float64)
    bg = np.asarray(background_excitations, dtype=np.float64)
    if exc.ndim == 2:
        bg = bg.reshape(-1, 1)
    return (exc - bg) / bg


def check_background_excitations(
    receptors: np.ndarray,
    background_spd: np.ndarray,
    which_receptors: Optional[Sequence[int]] = None,
) -> np.ndarray:
    """
    Background excitations, rejecting receptors for which contrast is undefined.

    Args:
        receptors: (R, W) receptor matrix.
        background_spd: (W,) background SPD.
        which_receptors: Receptor indices that must have a usable background
            (default: all).

    Returns:
        (R,) background excitations.

    Raises:
        ConfigurationError: If any checked receptor has zero (or vanishing)
            background excitation.
    """
    bg_exc = receptor_excitations(receptors, background_spd)
    idx = np.arange(bg_exc.shape[0]) if which_receptors is None else np.asarray(which_receptors, dtype=int)
    if idx.size and (idx.min() < 0 or idx.max() >= bg_exc.shape[0]):
        raise ConfigurationError(
            f"receptor indices {idx.tolist()} out of range for {bg_exc.shape[0]} receptors"
        )
    scale = float(np.max(np.abs(bg_exc))) if bg_exc.size else 0.0
    dead = [int(i) for i in idx if abs(bg_exc[i]) <= ZERO_EXCITATION_RTOL * scale]
    if dead:
        raise ConfigurationError(
            f"background excitation is zero for receptor(s) {dead}; contrast is undefined"
        )
    return bg_exc


def spd_to_contrasts(
    spd: np.ndarray,
    background_spd: np.ndarray,
    receptors: np.ndarray,
) -> np.ndarray:
    """Contrasts of *spd* relative to *background_spd*."""
    bg_exc = check_background_excitations(receptors, background_spd)
    return contrasts_from_excitations(receptor_excitations(receptors, spd), bg_exc)


def contrast_sensitivity(
    receptors: np.ndarray,
    primary_basis: np.ndarray,
    background_excitations: np.ndarray,
) -> np.ndarray:
    """(R, P) change in contrast per unit change of each primary: ``T·M / (T·bg)``."""
    return (receptors @ primary_basis) / np.asarray(background_excitations)[:, np.newaxis]


def _contrast_context(
    calibration: Calibration,
    target_contrasts: np.ndarray,
    measured_spd: np.ndarray,
    background_spd: np.ndarray,
    receptors: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    t = check_receptors(receptors, calibration.n_wavelengths)
    target = check_vector(target_contrasts, t.shape[0], "target_contrasts")
    measured = check_vector(measured_spd, calibration.n_wavelengths, "measured_spd")
    background = check_vector(background_spd, calibration.n_wavelengths, "background_spd")
    bg_exc = check_background_excitations(t, background)
    measured_contrasts = contrasts_from_excitations(t @ measured, bg_exc)
    return t, target, measured, bg_exc, measured_contrasts


# ---------------------------------------------------------------------------
# Linear contrast estimator
# ---------------------------------------------------------------------------
def linear_delta_primaries_contrast(
    primaries_used: np.ndarray,
    measured_spd: np.ndarray,
    target_contrasts: np.ndarray,
    background_spd: np.ndarray,
    receptors: np.ndarray,
    learning_rate: float,
    smoothness: float,
    calibration: Calibration,
    bounds: Optional[GamutBounds] = None,
) -> np.ndarray:
    """
    Linear estimate of the primaries change that reaches *target_contrasts*.

    Contrast is linear in primaries with sensitivity
    ``C = diag(1 / T·background) · T · M``; solves
    ``min ‖C·δ − (target − measured)‖² + λ‖D·δ‖²`` in the delta box and
    scales by the learning rate.
    """
    lr = check_learning_rate(learning_rate)
    used, bounds = check_operating_point(primaries_used, calibration, bounds)
    t, target, _, bg_exc, measured_contrasts = _contrast_context(
        calibration, target_contrasts, measured_spd, background_spd, receptors,
    )
    sensitivity = contrast_sensitivity(t, calibration.primary_basis, bg_exc)
    lower, upper = delta_bounds(used, bounds)
    delta = bounded_regularized_lstsq(
        sensitivity, target - measured_contrasts, lower, upper, smoothness,
    )
    return lr * delta


# ---------------------------------------------------------------------------
# Iterative contrast estimator
# ---------------------------------------------------------------------------
def iterative_delta_primaries_contrast(
    delta_primaries0: Optional[np.ndarray],
    primaries_used: np.ndarray,
    target_contrasts: np.ndarray,
    measured_spd: np.ndarray,
    background_spd: np.ndarray,
    receptors: np.ndarray,
    learning_rate: float,
    calibration: Calibration,
    bounds: Optional[GamutBounds] = None,
    max_function_evaluations: int = 200,
    tolerance: float = 1e-10,
) -> DeltaEstimate:
    """
    Search for delta primaries that move the measured contrasts toward the target.

    The damped target is ``measured + lr · (target − measured)`` in contrast
    space; predicted contrasts come from the gamut-aware small-signal SPD
    prediction around *measured_spd*.

    Returns:
        DeltaEstimate whose ``predicted`` field is the predicted SPD and whose
        ``error`` is the RMS contrast residual against the damped target.

    Raises:
        ConfigurationError: On shape mismatch, bad learning rate, or zero
            background excitation.
    """
    lr = check_learning_rate(learning_rate)
    used, bounds = check_operating_point(primaries_used, calibration, bounds)
    t, target, measured, bg_exc, measured_contrasts = _contrast_context(
        calibration, target_contrasts, measured_spd, background_spd, receptors,
    )
    if delta_primaries0 is None:
        delta0 = np.zeros_like(used)
    else:
        delta0 = check_vector(delta_primaries0, calibration.n_primaries, "delta_primaries0")

    model = LinearDeviceModel(calibration)
    target_lr = measured_contrasts + lr * (target - measured_contrasts)
    sensitivity = contrast_sensitivity(t, calibration.primary_basis, bg_exc)
    lower, upper = delta_bounds(used, bounds)

    def predicted_contrasts(delta: np.ndarray) -> np.ndarray:
        spd = model.predict_spd_from_delta_primaries(delta, used, measured, bounds)
        return contrasts_from_excitations(t @ spd, bg_exc)

    def residual(delta: np.ndarray) -> np.ndarray:
        return predicted_contrasts(delta) - target_lr

    def jacobian(delta: np.ndarray) -> np.ndarray:
        candidate = used + delta
        free = (candidate >= bounds.lower) & (candidate <= bounds.upper)
        return sensitivity * free[np.newaxis, :]

    delta, converged, n_eval = refine_in_box(
        residual, jacobian, delta0, lower, upper,
        max_function_evaluations, tolerance, label="iterative_delta_primaries_contrast",
    )
    delta = truncated_delta_primaries(delta, used, bounds)
    predicted_spd = model.predict_spd_from_delta_primaries(delta, used, measured, bounds)
    return DeltaEstimate(
        delta=delta,
        predicted=predicted_spd,
        converged=converged,
        n_evaluations=n_eval,
        error=rms_error(target_lr, contrasts_from_excitations(t @ predicted_spd, bg_exc)),
    )


# ---------------------------------------------------------------------------
# Receptor isolation
# ---------------------------------------------------------------------------
def _indices(indices: Sequence[int], size: int, label: str) -> list[int]:
    out = [int(i) for i in indices]
    if any(i < 0 or i >= size for i in out):
        raise ConfigurationError(f"{label} {out} out of range for size {size}")
    return out


def isolate_receptors(
    receptors: np.ndarray,
    calibration: Calibration,
    background_primaries: np.ndarray,
    which_to_isolate: Sequence[int],
    target_contrasts: Sequence[float],
    which_to_ignore: Sequence[int] = (),
    which_to_minimize: Sequence[int] = (),
    which_primaries_to_pin: Sequence[int] = (),
    primary_headroom: float = 0.0,
    max_power_diff: Optional[float] = None,
    ambient_spd: Optional[np.ndarray] = None,
    regularization: float = 1e-3,
    tolerance: float = 1e-6,
) -> np.ndarray:
    """
    Delta primaries that produce *target_contrasts* on the isolated receptors.

    Receptors fall into four roles:

    * isolated    contrast pinned to the target
    * silenced    contrast pinned to zero (every receptor not named otherwise)
    * minimized   contrast kept small through the objective
    * ignored     unconstrained

    Contrasts are taken against ``M·background + ambient``.  The search runs
    over the unpinned primaries with the modulation kept inside
    ``[headroom, 1 − headroom]``; pinned primaries keep their background
    value.  With *max_power_diff*, the differential SPD may change by at most
    that much between adjacent wavelength samples.  The objective is the
    squared contrast of the minimized receptors plus
    ``regularization · ‖δ‖²``.

    Returns:
        (P,) delta primaries (zero at pinned primaries).

    Raises:
        ConfigurationError: Bad indices or shapes, a background outside the
            headroom, zero background excitation on a constrained receptor,
            or targets that cannot be reached within the gamut.
    """
    t = check_receptors(receptors, calibration.n_wavelengths)
    n_receptors = t.shape[0]
    n_primaries = calibration.n_primaries
    bg = check_vector(background_primaries, n_primaries, "background_primaries")
    ambient = (
        np.zeros(calibration.n_wavelengths) if ambient_spd is None
        else check_vector(ambient_spd, calibration.n_wavelengths, "ambient_spd")
    )

    isolate = _indices(which_to_isolate, n_receptors, "which_to_isolate")
    ignore = _indices(which_to_ignore, n_receptors, "which_to_ignore")
    to_minimize = _indices(which_to_minimize, n_receptors, "which_to_minimize")
    if not isolate:
        raise ConfigurationError("isolate_receptors needs at least one receptor to isolate")
    roles = isolate + ignore + to_minimize
    if len(set(roles)) != len(roles):
        raise ConfigurationError(f"receptor roles overlap: {roles}")
    silence = [i for i in range(n_receptors) if i not in roles]
    target = check_vector(target_contrasts, len(isolate), "target_contrasts")

    pinned = set(_indices(which_primaries_to_pin, n_primaries, "which_primaries_to_pin"))
    free = np.array([i for i in range(n_primaries) if i not in pinned], dtype=int)
    if free.size == 0:
        raise ConfigurationError("every primary is pinned; nothing to solve for")
    if not 0.0 <= primary_headroom < 0.5:
        raise ConfigurationError(f"primary_headroom must be in [0, 0.5), got {primary_headroom}")
    lower = primary_headroom - bg[free]
    upper = 1.0 - primary_headroom - bg[free]
    if np.any(lower > 0) or np.any(upper < 0):
        raise ConfigurationError(
            f"background primaries must lie within [{primary_headroom}, {1.0 - primary_headroom}]"
        )

    basis = calibration.primary_basis[:, free]
    bg_spd = calibration.primary_basis @ bg + ambient
    constrained = isolate + silence + to_minimize
    bg_exc = check_background_excitations(t, bg_spd, constrained)
    sensitivity = contrast_sensitivity(t[constrained], basis, bg_exc[constrained])
    n_eq = len(isolate) + len(silence)
    a_eq = sensitivity[:n_eq]
    b_eq = np.concatenate([target, np.zeros(len(silence))])
    a_min = sensitivity[n_eq:]
    hessian = 2.0 * (a_min.T @ a_min + regularization * np.eye(free.size))

    constraints = [{
        "type": "eq",
        "fun": lambda x: a_eq @ x - b_eq,
        "jac": lambda x: a_eq,
    }]
    if max_power_diff is not None:
        if not max_power_diff > 0:
            raise ConfigurationError(f"max_power_diff must be > 0, got {max_power_diff}")
        slope = np.diff(basis, axis=0)
        constraints.append({
            "type": "ineq",
            "fun": lambda x: np.concatenate([max_power_diff - slope @ x, max_power_diff + slope @ x]),
            "jac": lambda x: np.vstack([-slope, slope]),
        })

    result = minimize(
        lambda x: 0.5 * x @ hessian @ x,
        np.zeros(free.size),
        jac=lambda x: hessian @ x,
        method="SLSQP",
        bounds=list(zip(lower, upper)),
        constraints=constraints,
        options={"maxiter": 500, "ftol": 1e-12},
    )
    x = np.clip(result.x, lower, upper)
    residual = float(np.max(np.abs(a_eq @ x - b_eq)))
    if residual > tolerance:
        raise ConfigurationError(
            f"requested contrasts cannot be reached within the gamut "
            f"(contrast residual {residual:.3g}; {result.message})"
        )
    if not result.success:
        warnings.warn(
            f"isolate_receptors: {result.message}; using the last feasible iterate.",
            NonConvergenceWarning,
            stacklevel=2,
        )
    delta = np.zeros(n_primaries)
    delta[free] = x
    return delta
