# -*- coding: utf-8 -*-
"""
Lumen: Tuning the primaries of spectrally programmable light engines
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: lumen_validation.py — Measure a direction and compare it to what was asked for.

Differential SPDs cannot be measured directly, so a direction is validated
around a background: the background and ``background + direction`` are
measured, and the differential is their difference.  For each of the three
(background, combined, differential) the report holds the desired, predicted
and measured SPD.  With a receptor matrix the report adds excitations and
combined-vs-background contrasts; with a luminosity weighting vector it adds
luminance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, NamedTuple, Optional

import numpy as np

from lumen_contrast import (
    check_background_excitations,
    check_receptors,
    contrasts_from_excitations,
)
from lumen_correction import MeasureFn, measure_average
from lumen_devicemodel import check_vector, rms_error
from lumen_directions import Direction
from lumen_errors import ConfigurationError
from lumen_gamut import in_gamut

logger = logging.getLogger(__name__)

__all__ = ["SpdComparison", "DirectionValidation", "validate_direction"]


class SpdComparison(NamedTuple):
    """Desired / predicted / measured SPD of one condition."""
    desired: np.ndarray
    predicted: np.ndarray
    measured: np.ndarray

    @property
    def error(self) -> np.ndarray:
        """desired − measured"""
        return self.desired - self.measured

    @property
    def rms_error(self) -> float:
        return rms_error(self.desired, self.measured)


@dataclass(slots=True, frozen=True, eq=False)
class DirectionValidation:
    background: SpdComparison
    combined: SpdComparison
    differential: SpdComparison
    background_primaries: np.ndarray
    n_average: int
    excitations: Optional[Dict[str, np.ndarray]] = None   # each (R, 2): background, combined
    contrasts: Optional[Dict[str, np.ndarray]] = None     # each (R,)
    luminance: Optional[Dict[str, np.ndarray]] = None     # each (2,): background, combined
    diagnostics: List[Mapping[str, Any]] = field(default_factory=list)

    def summary(self) -> Dict[str, float]:
        out = {
            "background_rms": self.background.rms_error,
            "combined_rms": self.combined.rms_error,
            "differential_rms": self.differential.rms_error,
        }
        if self.contrasts is not None:
            out["contrast_rms"] = rms_error(self.contrasts["desired"], self.contrasts["measured"])
        return out


def validate_direction(
    direction: Direction,
    background_primaries: np.ndarray,
    measure: MeasureFn,
    receptors: Optional[np.ndarray] = None,
    luminance_weights: Optional[np.ndarray] = None,
    n_average: int = 1,
) -> DirectionValidation:
    """
    Measure *direction* around *background_primaries*.

    Args:
        direction: Direction to validate (positive arm).
        background_primaries: (P,) absolute background primaries.
        measure: Measurement collaborator.
        receptors: Optional (R, W) receptor sensitivities.
        luminance_weights: Optional (W,) luminosity weighting (e.g. V(λ)
            resampled to the calibration's wavelengths).
        n_average: Number of measurements averaged per condition.

    Raises:
        ConfigurationError: Bad shapes, out-of-gamut primaries, zero
            background excitation.
        MeasurementError: Propagated from the collaborator.
    """
    cal = direction.calibration
    if isinstance(n_average, bool) or int(n_average) != n_average or n_average < 1:
        raise ConfigurationError(f"n_average must be a positive integer, got {n_average!r}")
    bg = check_vector(background_primaries, cal.n_primaries, "background_primaries")
    combined_primaries = direction.primaries(bg)
    for label, p in (("background", bg), ("background + direction", combined_primaries)):
        if not in_gamut(p, cal.gamut):
            raise ConfigurationError(f"{label} primaries lie outside the gamut")
    t = None if receptors is None else check_receptors(receptors, cal.n_wavelengths)
    v = None if luminance_weights is None else check_vector(
        luminance_weights, cal.n_wavelengths, "luminance_weights",
    )

    diagnostics: List[Mapping[str, Any]] = []
    measured_bg = measure_average(measure, bg, cal.n_wavelengths, int(n_average), diagnostics)
    measured_combined = measure_average(
        measure, combined_primaries, cal.n_wavelengths, int(n_average), diagnostics,
    )

    predicted_bg = cal.primary_basis @ bg + cal.dark_spd
    background = SpdComparison(predicted_bg, predicted_bg, measured_bg)
    combined = SpdComparison(
        predicted_bg + direction.desired_spd,
        cal.primary_basis @ combined_primaries + cal.dark_spd,
        measured_combined,
    )
    differential = SpdComparison(
        direction.desired_spd,
        direction.to_predicted_spd(),
        measured_combined - measured_bg,
    )

    excitations = contrasts = luminance = None
    if t is not None:
        excitations = {}
        contrasts = {}
        for key in ("desired", "predicted", "measured"):
            bg_spd = getattr(background, key)
            bg_exc = check_background_excitations(t, bg_spd)
            exc = t @ getattr(combined, key)
            excitations[key] = np.column_stack([bg_exc, exc])
            contrasts[key] = contrasts_from_excitations(exc, bg_exc)
    if v is not None:
        luminance = {
            key: np.array([v @ getattr(background, key), v @ getattr(combined, key)])
            for key in ("desired", "predicted", "measured")
        }

    report = DirectionValidation(
        background=background,
        combined=combined,
        differential=differential,
        background_primaries=bg.copy(),
        n_average=int(n_average),
        excitations=excitations,
        contrasts=contrasts,
        luminance=luminance,
        diagnostics=diagnostics,
    )
    logger.info("direction validated: %s", report.summary())
    return report
