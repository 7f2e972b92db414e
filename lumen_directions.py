# -*- coding: utf-8 -*-
"""
Lumen: Tuning the primaries of spectrally programmable light engines
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: lumen_directions.py — Directions in primary space and their correction.

A Direction is a pair of differential primary vectors (positive and negative
arm) that are added to some background to produce a desired change in SPD.
The arms are stored separately because they need not be symmetric.  Since
differential primaries only make sense for one device, a direction carries
the calibration it was built for; directions combine only with directions
of the same calibration.

    2.0 * d            scaled direction
    d1 + d2, d1 - d2   direction algebra (same calibration)
    d1 == d2           same calibration and identical arms

Nominal directions are built from parameter sets by ``direction_from_params``
and then corrected against the device with ``correct_direction``.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, NamedTuple, Optional

import numpy as np

from __about__ import __version__
from lumen_calibration import Calibration
from lumen_contrast import check_receptors, isolate_receptors
from lumen_correction import (
    CorrectionConfig,
    CorrectionResult,
    CorrectionStatus,
    Corrector,
    MeasureFn,
)
from lumen_devicemodel import check_vector
from lumen_errors import ConfigurationError, CorrectionAborted
from lumen_gamut import in_gamut
from lumen_parameters import (
    BasicModulationParams,
    BipolarDirectionParams,
    DirectionParams,
    LightFluxDirectionParams,
    UnipolarDirectionParams,
    direction_name_from_params,
)

logger = logging.getLogger(__name__)

__all__ = ["Direction", "NominalDirection", "direction_from_params", "correct_direction"]


def _frozen_vector(value: Any, length: int, label: str) -> np.ndarray:
    arr = check_vector(value, length, label).copy()
    if not np.all(np.isfinite(arr)):
        raise ConfigurationError(f"{label} contains non-finite values")
    arr.flags.writeable = False
    return arr


@dataclass(slots=True, frozen=True, eq=False)
class Direction:
    """
    Differential direction in primary space.

    Attributes
    ----------
    differential_positive, differential_negative : np.ndarray
        (P,) primaries added to a background for the two arms.
    calibration : Calibration
        Calibration the direction was built for.
    describe : dict
        Provenance (``created_from``, ``correction``...).
    desired_spd : np.ndarray
        (W,) desired differential SPD of the positive arm.  Defaults to the
        SPD predicted from ``differential_positive``; correction keeps the
        nominal desired SPD so that it stays the reference.
    """
    differential_positive: np.ndarray
    differential_negative: np.ndarray
    calibration: Calibration
    describe: Mapping[str, Any] = field(default_factory=dict)
    desired_spd: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        if not isinstance(self.calibration, Calibration):
            raise ConfigurationError(
                f"Direction needs a Calibration, got {type(self.calibration).__name__}"
            )
        n = self.calibration.n_primaries
        pos = _frozen_vector(self.differential_positive, n, "Direction.differential_positive")
        neg = _frozen_vector(self.differential_negative, n, "Direction.differential_negative")
        object.__setattr__(self, "differential_positive", pos)
        object.__setattr__(self, "differential_negative", neg)
        object.__setattr__(self, "describe", dict(self.describe))
        if self.desired_spd is None:
            desired = self.calibration.primary_basis @ pos
        else:
            desired = self.desired_spd
        object.__setattr__(
            self, "desired_spd",
            _frozen_vector(desired, self.calibration.n_wavelengths, "Direction.desired_spd"),
        )

    # -- constructors ------------------------------------------------------
    @classmethod
    def null(cls, calibration: Calibration) -> "Direction":
        zeros = np.zeros(calibration.n_primaries)
        return cls(zeros, zeros, calibration, {"created_from": "null"})

    @classmethod
    def full_on(cls, calibration: Calibration) -> "Direction":
        ones = np.ones(calibration.n_primaries)
        return cls(ones, ones, calibration, {"created_from": "full_on"})

    # -- queries -----------------------------------------------------------
    def matching_calibration(self, other: "Direction") -> bool:
        if not isinstance(other, Direction):
            raise ConfigurationError(f"Direction expected, got {type(other).__name__}")
        return self.calibration.matches(other.calibration)

    def to_predicted_spd(self, negative: bool = False) -> np.ndarray:
        """Differential SPD ``M · differential`` of one arm (no dark offset)."""
        arm = self.differential_negative if negative else self.differential_positive
        return self.calibration.primary_basis @ arm

    def primaries(self, background_primaries: np.ndarray, negative: bool = False) -> np.ndarray:
        """Absolute primaries of ``background + arm``."""
        bg = check_vector(background_primaries, self.calibration.n_primaries, "background_primaries")
        return bg + (self.differential_negative if negative else self.differential_positive)

    # -- algebra -----------------------------------------------------------
    def _combine(self, other: "Direction", sign: float, operator: str) -> "Direction":
        if not isinstance(other, Direction):
            return NotImplemented
        if not self.matching_calibration(other):
            raise ConfigurationError(
                f"Directions have different calibrations: {self.calibration.cal_id!r} "
                f"vs {other.calibration.cal_id!r}"
            )
        return Direction(
            self.differential_positive + sign * other.differential_positive,
            self.differential_negative + sign * other.differential_negative,
            self.calibration,
            {"created_from": {"a": self, "b": other, "operator": operator}},
            desired_spd=self.desired_spd + sign * other.desired_spd,
        )

    def __add__(self, other: "Direction") -> "Direction":
        return self._combine(other, 1.0, "plus")

    def __sub__(self, other: "Direction") -> "Direction":
        return self._combine(other, -1.0, "minus")

    def __mul__(self, scalar: float) -> "Direction":
        if isinstance(scalar, Direction) or not np.isscalar(scalar) or isinstance(scalar, (str, bytes)):
            return NotImplemented
        s = float(scalar)
        return Direction(
            s * self.differential_positive,
            s * self.differential_negative,
            self.calibration,
            {"created_from": {"a": self, "b": s, "operator": "times"}},
            desired_spd=s * self.desired_spd,
        )

    __rmul__ = __mul__

    def __neg__(self) -> "Direction":
        return self * -1.0

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Direction):
            return NotImplemented
        return (
            self.matching_calibration(other)
            and np.array_equal(self.differential_positive, other.differential_positive)
            and np.array_equal(self.differential_negative, other.differential_negative)
        )

    __hash__ = None

    def __repr__(self) -> str:
        return (
            f"Direction(cal_id={self.calibration.cal_id!r}, primaries={self.calibration.n_primaries}, "
            f"|pos|={np.abs(self.differential_positive).max():.3g}, "
            f"|neg|={np.abs(self.differential_negative).max():.3g})"
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Nominal directions from parameters
# ═══════════════════════════════════════════════════════════════════════════════
class NominalDirection(NamedTuple):
    """A direction and the background it is meant to be shown around."""
    direction: Direction
    background_primaries: np.ndarray


def _isolating_delta(
    params: UnipolarDirectionParams | BipolarDirectionParams,
    receptors: Optional[np.ndarray],
    calibration: Calibration,
    background: np.ndarray,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    if receptors is None:
        raise ConfigurationError(f"{params.type} directions need a receptor matrix")
    t = check_receptors(receptors, calibration.n_wavelengths)
    if t.shape[0] != len(params.photoreceptor_classes):
        raise ConfigurationError(
            f"receptor matrix has {t.shape[0]} rows for "
            f"{len(params.photoreceptor_classes)} photoreceptor classes"
        )
    contrasts = params.modulation_contrast or (
        (params.base_modulation_contrast,) * len(params.which_receptors_to_isolate)
    )
    ambient = calibration.dark_spd if params.use_ambient else np.zeros(calibration.n_wavelengths)
    delta = isolate_receptors(
        t, calibration, background,
        params.which_receptors_to_isolate, contrasts,
        which_to_ignore=params.which_receptors_to_ignore,
        which_to_minimize=params.which_receptors_to_minimize,
        which_primaries_to_pin=params.which_primaries_to_pin,
        primary_headroom=params.primary_headroom,
        max_power_diff=params.max_power_diff,
        ambient_spd=ambient,
    )
    return delta, t, ambient


def direction_from_params(
    params: DirectionParams,
    background_primaries: np.ndarray,
    calibration: Calibration,
    receptors: Optional[np.ndarray] = None,
) -> NominalDirection:
    """
    Build the nominal direction a parameter set describes.

    * lightflux: the background scaled up by ``light_flux_down_factor``.
      The negative arm mirrors the positive one but only the positive
      modulation has to lie in the gamut.
    * bipolar: receptor isolation around the background, arms ``±δ``.
    * unipolar: the same isolation, but the background moves to the
      negative excursion ``background − δ`` and the positive arm becomes
      ``2δ`` with a zero negative arm.

    Args:
        params: Direction parameter set.
        background_primaries: (P,) background the direction is built around.
        calibration: Device calibration.
        receptors: (R, W) receptor sensitivities, one row per entry of
            ``params.photoreceptor_classes``, computed for the parameter
            set's field size and pupil diameter.  Required for unipolar and
            bipolar directions.

    Returns:
        NominalDirection; for unipolar directions its background differs
        from *background_primaries*.

    Raises:
        ConfigurationError: Modulation parameters, missing or mismatched
            receptors, unreachable contrasts, or a result outside the gamut.
    """
    if not isinstance(calibration, Calibration):
        raise ConfigurationError(f"Calibration expected, got {type(calibration).__name__}")
    bg = check_vector(background_primaries, calibration.n_primaries, "background_primaries").copy()
    if not in_gamut(bg, calibration.gamut):
        raise ConfigurationError("background_primaries lie outside the gamut")

    describe: dict[str, Any] = {"created_from": "params", "params": params}
    match params:
        case LightFluxDirectionParams():
            positive = bg * params.light_flux_down_factor - bg
            negative = -positive
            background = bg
            checked = [("positive modulation", bg + positive)]
        case BipolarDirectionParams():
            delta, t, ambient = _isolating_delta(params, receptors, calibration, bg)
            positive, negative, background = delta, -delta, bg
            checked = [("positive modulation", bg + delta), ("negative modulation", bg - delta)]
            describe.update(receptors=t, ambient_spd=ambient)
        case UnipolarDirectionParams():
            delta, t, ambient = _isolating_delta(params, receptors, calibration, bg)
            background = bg - delta
            positive, negative = 2.0 * delta, np.zeros_like(delta)
            checked = [("background", background), ("positive modulation", background + positive)]
            describe.update(receptors=t, ambient_spd=ambient)
        case BasicModulationParams():
            raise ConfigurationError("modulation parameters describe a waveform, not a direction")
        case _:
            raise ConfigurationError(f"Unsupported parameter set: {type(params).__name__}")

    for label, p in checked:
        if not in_gamut(p, calibration.gamut):
            raise ConfigurationError(f"{params.type} direction: {label} lies outside the gamut")

    if params.base_name:
        describe["name"] = direction_name_from_params(params)
    describe["background_primaries"] = background.copy()
    direction = Direction(positive, negative, calibration, describe)
    logger.info(
        "nominal %s direction %r: max |differential| %.3g",
        params.type, describe.get("name", ""), np.abs(positive).max(),
    )
    return NominalDirection(direction, background)


# ═══════════════════════════════════════════════════════════════════════════════
# Correction of a direction around a background
# ═══════════════════════════════════════════════════════════════════════════════
def correct_direction(
    direction: Direction,
    background_primaries: np.ndarray,
    measure: MeasureFn,
    config: Optional[CorrectionConfig] = None,
    **corrector_kw: Any,
) -> Direction:
    """
    Correct the positive arm of *direction* around a background.

    The corrector starts from ``background + differential_positive`` and aims
    at the background's predicted SPD plus the direction's desired
    differential SPD.  The corrected differential is the corrected primaries
    minus the background.

    Args:
        direction: Nominal direction.
        background_primaries: (P,) absolute background primaries.
        measure: Measurement collaborator (absolute primaries → SPD).
        config: Correction parameters; must not be differential.
        **corrector_kw: Forwarded to ``Corrector`` (release, should_abort...).

    Returns:
        New Direction with the corrected positive arm, the nominal negative
        arm and desired SPD, and the CorrectionResult in
        ``describe["correction"]``.

    Raises:
        ConfigurationError: Bad inputs, or background + direction out of gamut.
        MeasurementError: The run failed (the result is on ``.result``).
        CorrectionAborted: The run was aborted (the result is on ``.result``).
    """
    cfg = config if config is not None else CorrectionConfig()
    if cfg.differential:
        raise ConfigurationError("correct_direction measures absolute primaries; use differential=False")
    cal = direction.calibration
    bg = check_vector(background_primaries, cal.n_primaries, "background_primaries")
    if not in_gamut(bg, cal.gamut):
        raise ConfigurationError("background_primaries lie outside the gamut")
    start = direction.primaries(bg)
    if not in_gamut(start, cal.gamut):
        raise ConfigurationError("background + differential_positive lies outside the gamut")

    target_spd = cal.primary_basis @ bg + cal.dark_spd + direction.desired_spd
    corrector = Corrector(cal, measure, cfg, **corrector_kw)
    result: CorrectionResult = corrector.correct_to_spd(target_spd, initial_primaries=start)

    if result.status is CorrectionStatus.FAILED:
        error = result.error
        error.result = result
        raise error
    if result.status is CorrectionStatus.ABORTED:
        raise CorrectionAborted(
            f"direction correction aborted after {len(result.trace)} iterations", result=result,
        )

    corrected = result.corrected_primaries - bg
    logger.info(
        "direction corrected: rms error %.4g -> %.4g",
        result.trace[0].error, result.best_record.error,
    )
    describe = {
        "created_from": {"operator": "correction", "nominal": direction},
        "correction": result,
        "background_primaries": bg.copy(),
        "lumen_version": __version__,
    }
    return dataclasses.replace(
        direction,
        differential_positive=corrected,
        describe=describe,
    )
