# -*- coding: utf-8 -*-
"""
Lumen: Tuning the primaries of spectrally programmable light engines
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: lumen_simulation.py — Simulated light engine + spectroradiometer.

A stand-in measurement collaborator for offline runs and tests.  Measuring
primaries p returns

    spd_k = gain_k · (M·p) + dark + noise_k

where the gain drifts multiplicatively from one measurement to the next
(``gain_{k+1} = gain_k · (1 + gain_drift)``) and the noise is Gaussian with
standard deviation ``noise_sd``.  Both default to zero, in which case the
engine reproduces the calibration's linear model exactly.
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from lumen_calibration import Calibration
from lumen_correction import Measurement, measure_average
from lumen_errors import ConfigurationError, MeasurementError
from lumen_gamut import GamutBounds, in_gamut

logger = logging.getLogger(__name__)

__all__ = ["SimulatedLightEngine"]


class SimulatedLightEngine:
    """
    Callable measurement collaborator backed by a calibration.

    Parameters
    ----------
    calibration : Calibration
        Device calibration used as ground truth.
    noise_sd : float
        Standard deviation of additive Gaussian noise per wavelength sample.
    gain_drift : float
        Relative gain change per measurement (0 = stable source).
    seed : int, optional
        Seed for the noise generator.
    basis : np.ndarray, optional
        Override of the "true" (W, P) basis, e.g. to simulate a device that
        has drifted away from its calibration.
    temperature : float, optional
        Starting temperature reported in the diagnostics; None disables
        temperature diagnostics.
    fail_at : int, optional
        1-based index of a measurement that raises MeasurementError, to
        simulate a radiometer failure.
    """

    def __init__(
        self,
        calibration: Calibration,
        noise_sd: float = 0.0,
        gain_drift: float = 0.0,
        seed: Optional[int] = None,
        basis: Optional[np.ndarray] = None,
        temperature: Optional[float] = None,
        fail_at: Optional[int] = None,
    ) -> None:
        if noise_sd < 0:
            raise ConfigurationError(f"noise_sd must be >= 0, got {noise_sd}")
        if gain_drift <= -1:
            raise ConfigurationError(f"gain_drift must be > -1, got {gain_drift}")
        if fail_at is not None and fail_at < 1:
            raise ConfigurationError(f"fail_at must be >= 1, got {fail_at}")
        self.calibration = calibration
        self.noise_sd = float(noise_sd)
        self.gain_drift = float(gain_drift)
        if basis is None:
            self._basis = calibration.primary_basis
        else:
            self._basis = np.asarray(basis, dtype=np.float64)
            if self._basis.shape != calibration.primary_basis.shape:
                raise ConfigurationError(
                    f"basis override must have shape {calibration.primary_basis.shape}, "
                    f"got {self._basis.shape}"
                )
        self._rng = np.random.default_rng(seed)
        self._temperature = temperature
        self.gain = 1.0
        self.n_measurements = 0
        self.released = False
        self.fail_at = fail_at

    @property
    def bounds(self) -> GamutBounds:
        return self.calibration.gamut

    def __call__(self, primaries: np.ndarray) -> Measurement:
        if self.released:
            raise MeasurementError("SimulatedLightEngine: device has been released")
        p = np.asarray(primaries, dtype=np.float64).ravel()
        if p.shape != (self.calibration.n_primaries,):
            raise MeasurementError(
                f"SimulatedLightEngine: expected {self.calibration.n_primaries} primaries, got {p.shape}"
            )
        if not in_gamut(p, self.bounds):
            raise MeasurementError(
                "SimulatedLightEngine: primaries outside "
                f"[{self.bounds.lower}, {self.bounds.upper}] cannot be displayed"
            )

        self.n_measurements += 1
        if self.fail_at is not None and self.n_measurements == self.fail_at:
            raise MeasurementError(
                f"SimulatedLightEngine: simulated radiometer failure on measurement {self.n_measurements}"
            )

        spd = self.gain * (self._basis @ p) + self.calibration.dark_spd
        if self.noise_sd > 0:
            spd = spd + self._rng.normal(0.0, self.noise_sd, size=spd.shape)

        diagnostics = {"measurement": self.n_measurements, "gain": self.gain}
        if self._temperature is not None:
            # Warms up a little with every frame shown
            self._temperature += 0.05
            diagnostics["temperature"] = self._temperature
        self.gain *= 1.0 + self.gain_drift
        return Measurement(spd, diagnostics)

    def measure_average(self, primaries: np.ndarray, n_average: int = 1) -> np.ndarray:
        """Mean SPD over *n_average* consecutive measurements."""
        p = np.asarray(primaries, dtype=np.float64)
        return measure_average(self, p, self.calibration.n_wavelengths, n_average)

    def release(self) -> None:
        if not self.released:
            logger.info("SimulatedLightEngine released after %d measurements", self.n_measurements)
        self.released = True

    def __repr__(self) -> str:
        return (
            f"SimulatedLightEngine(cal_id={self.calibration.cal_id!r}, noise_sd={self.noise_sd}, "
            f"gain_drift={self.gain_drift}, measurements={self.n_measurements})"
        )
