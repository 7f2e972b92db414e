# -*- coding: utf-8 -*-
"""
Lumen: Tuning the primaries of spectrally programmable light engines
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: lumen_errors.py — Exception and warning taxonomy.

ConfigurationError and MeasurementError are fatal.  InvariantViolation marks
a bug and is never caught inside Lumen.  Optimizer non-convergence and gamut
truncation of waveforms are reported through ``warnings``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from lumen_correction import CorrectionResult

__all__ = [
    "LumenError",
    "ConfigurationError",
    "MeasurementError",
    "InvariantViolation",
    "CorrectionAborted",
    "NonConvergenceWarning",
    "GamutTruncationWarning",
]


class LumenError(Exception):
    pass


class ConfigurationError(LumenError, ValueError):
    """Bad shapes, bad parameter ranges or undefined contrasts."""


class MeasurementError(LumenError, RuntimeError):
    """The measurement collaborator failed or returned an unusable SPD."""


class InvariantViolation(LumenError, AssertionError):
    """Internal state corruption (e.g. next != used + delta)."""


class CorrectionAborted(LumenError, RuntimeError):
    """A correction run ended without completing its iteration budget."""

    def __init__(self, message: str, result: Optional[CorrectionResult] = None) -> None:
        super().__init__(message)
        self.result = result


class NonConvergenceWarning(RuntimeWarning):
    pass


class GamutTruncationWarning(UserWarning):
    pass
