# -*- coding: utf-8 -*-
"""
Lumen: Tuning the primaries of spectrally programmable light engines
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Module: lumen_correction.py — Measurement-in-the-loop primary correction.

The Corrector owns the hardware loop:

    INIT ─► MEASURING ─► ESTIMATING ─► APPLYING ─┐
               ▲                                 │  (n_iterations times)
               └─────────────────────────────────┘
                                                 └─► FINALIZING ─► DONE

    any state ─► FAILED   (MeasurementError from the collaborator)
    between iterations ─► ABORTED   (should_abort() or time budget)

Each iteration measures the current primaries, picks the learning rate from
the schedule, asks an estimator for a delta, steps through the gamut policy
and appends an IterationRecord to the trace.  The loop always runs the full
iteration budget; SPD measurement noise makes early stopping unreliable, so
the result is chosen afterwards as the iterate with the lowest error.

Measurement collaborators are plain callables::

    measure(primaries) -> spd | Measurement(spd, diagnostics)

that raise MeasurementError on failure.  An optional ``release`` callable is
invoked when a run fails or is aborted so the caller's device handles can be
shut down.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
import time
from dataclasses import dataclass, field
from typing import (
    Any, Callable, Dict, Iterator, List, Mapping, NamedTuple, Optional,
    Tuple, Union,
)

import numpy as np

from lumen_calibration import Calibration
from lumen_contrast import (
    check_background_excitations,
    check_receptors,
    contrasts_from_excitations,
    iterative_delta_primaries_contrast,
    linear_delta_primaries_contrast,
)
from lumen_devicemodel import LinearDeviceModel, check_vector, rms_error
from lumen_errors import ConfigurationError, InvariantViolation, MeasurementError
from lumen_estimators import iterative_delta_primaries, linear_delta_primaries
from lumen_gamut import DIFFERENTIAL_GAMUT, GamutBounds, apply_delta, in_gamut

logger = logging.getLogger(__name__)

__all__ = [
    "CorrectionState",
    "CorrectionStatus",
    "Measurement",
    "unpack_measurement",
    "measure_average",
    "CorrectionConfig",
    "learning_rate_for_iteration",
    "learning_rate_schedule",
    "IterationRecord",
    "CorrectionTrace",
    "select_best_iterate",
    "CorrectionResult",
    "Corrector",
    "correct_to_spd",
    "correct_to_contrast",
]


# ---------------------------------------------------------------------------
# States, measurements
# ---------------------------------------------------------------------------
class CorrectionState(enum.Enum):
    INIT = "init"
    MEASURING = "measuring"
    ESTIMATING = "estimating"
    APPLYING = "applying"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"
    ABORTED = "aborted"


class CorrectionStatus(enum.Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"


class Measurement(NamedTuple):
    """What a measurement collaborator may return instead of a bare SPD."""
    spd: np.ndarray
    diagnostics: Optional[Mapping[str, Any]] = None   # temperatures etc., logged only


MeasureFn = Callable[[np.ndarray], Union[np.ndarray, Measurement]]
AbortFn = Callable[[int, "CorrectionTrace"], bool]


def unpack_measurement(result: Any, n_wavelengths: int) -> Tuple[np.ndarray, Dict[str, Any]]:
    """Split a collaborator's return value into a checked (W,) SPD and diagnostics."""
    if isinstance(result, Measurement):
        spd, diagnostics = result.spd, dict(result.diagnostics or {})
    else:
        spd, diagnostics = result, {}
    spd = np.asarray(spd, dtype=np.float64)
    if spd.ndim == 2 and spd.shape[1] == 1:
        spd = spd[:, 0]
    if spd.shape != (n_wavelengths,):
        raise MeasurementError(
            f"measurement returned SPD of shape {spd.shape}, expected ({n_wavelengths},)"
        )
    if not np.all(np.isfinite(spd)):
        raise MeasurementError("measurement returned non-finite SPD values")
    return np.ascontiguousarray(spd), diagnostics


def measure_average(
    measure: MeasureFn,
    primaries: np.ndarray,
    n_wavelengths: int,
    n_average: int = 1,
    diagnostics: Optional[List[Mapping[str, Any]]] = None,
) -> np.ndarray:
    """
    Mean checked SPD over *n_average* consecutive measurements of *primaries*.

    Non-empty diagnostics of each measurement are appended to *diagnostics*
    when a list is given.
    """
    if n_average < 1:
        raise ConfigurationError(f"n_average must be >= 1, got {n_average}")
    spds = []
    for _ in range(n_average):
        spd, diag = unpack_measurement(measure(primaries.copy()), n_wavelengths)
        spds.append(spd)
        if diag and diagnostics is not None:
            diagnostics.append(diag)
    return np.mean(spds, axis=0)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------
@dataclass(slots=True, frozen=True)
class CorrectionConfig:
    """
    Parameters of a correction run.

    Attributes
    ----------
    n_iterations : int
        Number of measure/update iterations (fixed budget).
    learning_rate : float
        Initial learning rate, in (0, 1].
    learning_rate_decrease : bool
        Decay the learning rate linearly over the run.
    asymptotic_learning_rate_factor : float
        With decay, the last iteration uses
        ``(1 - asymptotic_learning_rate_factor) * learning_rate``.
    smoothness : float
        Regularization weight for the linear solves.
    iterative_search : bool
        Refine each linear estimate with the bounded nonlinear search.
    primary_headroom : float
        Headroom for the initial SPD → primaries solve.
    max_function_evaluations, optimizer_tolerance
        Budget and tolerance of the nonlinear search.
    differential : bool
        Correct differential primaries in [-1, 1] instead of [0, 1].
    time_budget : float | None
        Wall-clock seconds after which the run is aborted between iterations.
    """
    n_iterations: int = 20
    learning_rate: float = 0.8
    learning_rate_decrease: bool = True
    asymptotic_learning_rate_factor: float = 0.5
    smoothness: float = 0.001
    iterative_search: bool = True
    primary_headroom: float = 0.0
    max_function_evaluations: int = 200
    optimizer_tolerance: float = 1e-10
    differential: bool = False
    time_budget: Optional[float] = None

    def __post_init__(self) -> None:
        if isinstance(self.n_iterations, bool) or int(self.n_iterations) != self.n_iterations or self.n_iterations < 1:
            raise ConfigurationError(f"n_iterations must be a positive integer, got {self.n_iterations!r}")
        if not (0.0 < self.learning_rate <= 1.0):
            raise ConfigurationError(f"learning_rate must be in (0, 1], got {self.learning_rate!r}")
        if not (0.0 <= self.asymptotic_learning_rate_factor < 1.0):
            raise ConfigurationError(
                "asymptotic_learning_rate_factor must be in [0, 1), "
                f"got {self.asymptotic_learning_rate_factor!r}"
            )
        if not (np.isfinite(self.smoothness) and self.smoothness >= 0):
            raise ConfigurationError(f"smoothness must be finite and >= 0, got {self.smoothness!r}")
        if self.primary_headroom < 0:
            raise ConfigurationError(f"primary_headroom must be >= 0, got {self.primary_headroom!r}")
        if self.max_function_evaluations < 1:
            raise ConfigurationError(
                f"max_function_evaluations must be >= 1, got {self.max_function_evaluations!r}"
            )
        if not self.optimizer_tolerance > 0:
            raise ConfigurationError(f"optimizer_tolerance must be > 0, got {self.optimizer_tolerance!r}")
        if self.time_budget is not None and not self.time_budget > 0:
            raise ConfigurationError(f"time_budget must be > 0 seconds, got {self.time_budget!r}")
        object.__setattr__(self, "n_iterations", int(self.n_iterations))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "CorrectionConfig":
        """Build from a mapping; unknown keys are rejected."""
        names = {f.name for f in dataclasses.fields(cls)}
        unknown = set(data) - names
        if unknown:
            raise ConfigurationError(f"Unknown correction parameters: {sorted(unknown)}")
        return cls(**dict(data))

    def as_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


def learning_rate_for_iteration(iteration: int, config: CorrectionConfig) -> float:
    """
    Learning rate for 1-based *iteration*.

        rate_i = rate_0 · (1 − (i − 1) · factor / (N − 1))

    Constant ``rate_0`` without decay or for single-iteration runs.
    """
    if not 1 <= iteration <= config.n_iterations:
        raise ConfigurationError(
            f"iteration must be in [1, {config.n_iterations}], got {iteration}"
        )
    if not config.learning_rate_decrease or config.n_iterations == 1:
        return config.learning_rate
    fraction = (iteration - 1) / (config.n_iterations - 1)
    return config.learning_rate * (1.0 - fraction * config.asymptotic_learning_rate_factor)


def learning_rate_schedule(config: CorrectionConfig) -> np.ndarray:
    return np.array(
        [learning_rate_for_iteration(i, config) for i in range(1, config.n_iterations + 1)],
        dtype=np.float64,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Trace
# ═══════════════════════════════════════════════════════════════════════════════
@dataclass(slots=True, frozen=True, eq=False)
class IterationRecord:
    """One measure/update step of a correction run."""
    iteration: int
    primaries_used: np.ndarray
    measured_spd: np.ndarray
    delta_applied: np.ndarray
    next_primaries: np.ndarray
    error: float
    learning_rate: float
    measured_contrasts: Optional[np.ndarray] = None
    predicted_spd: Optional[np.ndarray] = None
    truncated: bool = False
    converged: bool = True
    diagnostics: Mapping[str, Any] = field(default_factory=dict)


class CorrectionTrace:
    """
    Append-only record of a correction run.

    ``append`` enforces the per-record consistency check
    ``next_primaries == primaries_used + delta_applied`` (exact) and a finite
    error metric; a violation raises InvariantViolation.
    """

    __slots__ = ("_records",)

    def __init__(self) -> None:
        self._records: List[IterationRecord] = []

    def append(self, record: IterationRecord) -> None:
        expected = len(self._records) + 1
        if record.iteration != expected:
            raise InvariantViolation(
                f"CorrectionTrace: iteration {record.iteration} appended, expected {expected}"
            )
        if not np.array_equal(record.next_primaries, record.primaries_used + record.delta_applied):
            raise InvariantViolation(
                f"CorrectionTrace: iteration {record.iteration} has "
                "next_primaries != primaries_used + delta_applied"
            )
        if not np.isfinite(record.error):
            raise InvariantViolation(
                f"CorrectionTrace: iteration {record.iteration} has non-finite error {record.error}"
            )
        self._records.append(record)

    # -- read interface ----------------------------------------------------
    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[IterationRecord]:
        return iter(self._records)

    def __getitem__(self, index: int) -> IterationRecord:
        return self._records[index]

    @property
    def records(self) -> Tuple[IterationRecord, ...]:
        return tuple(self._records)

    @property
    def errors(self) -> np.ndarray:
        return np.array([r.error for r in self._records], dtype=np.float64)

    @property
    def learning_rates(self) -> np.ndarray:
        return np.array([r.learning_rate for r in self._records], dtype=np.float64)

    def best_index(self) -> int:
        """Index of the first record with the minimum error."""
        if not self._records:
            raise IndexError("CorrectionTrace is empty.")
        return int(np.argmin(self.errors))

    def best(self) -> IterationRecord:
        return self._records[self.best_index()]

    def as_arrays(self) -> Dict[str, np.ndarray]:
        """Column-stacked view of the trace (one column per iteration)."""
        if not self._records:
            return {}
        return {
            "primaries_used": np.column_stack([r.primaries_used for r in self._records]),
            "measured_spd": np.column_stack([r.measured_spd for r in self._records]),
            "delta_applied": np.column_stack([r.delta_applied for r in self._records]),
            "next_primaries": np.column_stack([r.next_primaries for r in self._records]),
            "error": self.errors,
            "learning_rate": self.learning_rates,
        }

    def __repr__(self) -> str:
        if not self._records:
            return "CorrectionTrace(empty)"
        return (
            f"CorrectionTrace(iterations={len(self)}, best={self.best_index() + 1}, "
            f"min_error={self.errors.min():.4g})"
        )


def select_best_iterate(trace: CorrectionTrace) -> np.ndarray:
    """Primaries used in the lowest-error iteration (not its next_primaries)."""
    return trace.best().primaries_used


@dataclass(slots=True, frozen=True, eq=False)
class CorrectionResult:
    """
    Outcome of a correction run.

    ``corrected_primaries`` is only set when the run completed.  Failed and
    aborted runs keep their partial trace; ``best_record`` still points at
    the best partial iterate for diagnostics.
    """
    status: CorrectionStatus
    mode: str                              # "spd" or "contrast"
    trace: CorrectionTrace
    target: np.ndarray                     # target SPD or target contrasts
    initial_primaries: Optional[np.ndarray]
    config: CorrectionConfig
    corrected_primaries: Optional[np.ndarray] = None
    background_spd: Optional[np.ndarray] = None
    error: Optional[BaseException] = None
    elapsed: float = 0.0

    @property
    def completed(self) -> bool:
        return self.status is CorrectionStatus.COMPLETED

    @property
    def best_record(self) -> Optional[IterationRecord]:
        return self.trace.best() if len(self.trace) else None

    @property
    def measured_spd(self) -> Optional[np.ndarray]:
        """SPD measured for the returned primaries."""
        best = self.best_record
        return None if best is None else best.measured_spd


# ═══════════════════════════════════════════════════════════════════════════════
# Corrector
# ═══════════════════════════════════════════════════════════════════════════════
class _Estimate(NamedTuple):
    delta: np.ndarray
    predicted_spd: np.ndarray
    converged: bool


class _Aborted(Exception):
    pass


class Corrector:
    """
    Hardware-in-the-loop primary correction against an SPD or contrast target.

    Parameters
    ----------
    calibration : Calibration
        Read-only calibration shared by reference for the whole run.
    measure : callable
        ``measure(primaries) -> spd | Measurement``; raises MeasurementError.
    config : CorrectionConfig, optional
        Run parameters (defaults if omitted).
    release : callable, optional
        Called once when a run fails or is aborted.  Defaults to
        ``measure.release`` when the collaborator has one.
    should_abort : callable, optional
        ``should_abort(next_iteration, trace) -> bool``, polled between
        iterations.
    clock : callable, optional
        Monotonic clock used for the time budget.
    """

    def __init__(
        self,
        calibration: Calibration,
        measure: MeasureFn,
        config: Optional[CorrectionConfig] = None,
        release: Optional[Callable[[], None]] = None,
        should_abort: Optional[AbortFn] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not isinstance(calibration, Calibration):
            raise ConfigurationError(f"Corrector needs a Calibration, got {type(calibration).__name__}")
        if not callable(measure):
            raise ConfigurationError("Corrector: measure must be callable")
        self._cal = calibration
        self._model = LinearDeviceModel(calibration)
        self._measure_fn = measure
        self._config = config if config is not None else CorrectionConfig()
        self._release = release if release is not None else getattr(measure, "release", None)
        self._should_abort = should_abort
        self._clock = clock
        self._state = CorrectionState.INIT

    # -- properties --------------------------------------------------------
    @property
    def state(self) -> CorrectionState:
        return self._state

    @property
    def config(self) -> CorrectionConfig:
        return self._config

    @property
    def calibration(self) -> Calibration:
        return self._cal

    @property
    def bounds(self) -> GamutBounds:
        return DIFFERENTIAL_GAMUT if self._config.differential else self._cal.gamut

    def _enter(self, state: CorrectionState) -> None:
        logger.debug("correction state %s -> %s", self._state.value, state.value)
        self._state = state

    # -- collaborator calls -------------------------------------------------
    def _measure(self, primaries: np.ndarray) -> Tuple[np.ndarray, Dict[str, Any]]:
        self._enter(CorrectionState.MEASURING)
        spd, diagnostics = unpack_measurement(self._measure_fn(primaries.copy()), self._cal.n_wavelengths)
        if diagnostics:
            logger.debug("measurement diagnostics: %s", diagnostics)
        return spd, diagnostics

    def _release_device(self) -> None:
        if self._release is None:
            return
        try:
            self._release()
        except Exception:
            logger.exception("releasing the measurement device failed")

    def _check_abort(self, next_iteration: int, trace: CorrectionTrace, started: float) -> None:
        budget = self._config.time_budget
        if budget is not None and self._clock() - started >= budget:
            raise _Aborted(f"time budget of {budget} s exhausted before iteration {next_iteration}")
        if self._should_abort is not None and self._should_abort(next_iteration, trace):
            raise _Aborted(f"aborted by caller before iteration {next_iteration}")

    # -- initial primaries --------------------------------------------------
    def _initial_primaries(
        self,
        initial_primaries: Optional[np.ndarray],
        initial_target_spd: Optional[np.ndarray],
    ) -> np.ndarray:
        if initial_primaries is not None:
            seed = check_vector(initial_primaries, self._cal.n_primaries, "initial_primaries").copy()
            if not in_gamut(seed, self.bounds):
                raise ConfigurationError(
                    f"initial_primaries lie outside the gamut [{self.bounds.lower}, {self.bounds.upper}]"
                )
            return seed
        if initial_target_spd is None:
            raise ConfigurationError("either initial_primaries or an initial target SPD is required")
        return self._model.spd_to_primary(
            initial_target_spd,
            smoothness=self._config.smoothness,
            primary_headroom=self._config.primary_headroom,
            differential=self._config.differential,
        )

    # -- public entry points ------------------------------------------------
    def correct_to_spd(
        self,
        target_spd: np.ndarray,
        initial_primaries: Optional[np.ndarray] = None,
    ) -> CorrectionResult:
        """
        Correct primaries so that the measured SPD approaches *target_spd*.

        Args:
            target_spd: (W,) desired SPD.
            initial_primaries: Seed primaries.  If omitted, the seed is the
                device model's inverse of *target_spd*.

        Returns:
            CorrectionResult; its error metric is RMS(target − measured SPD).
        """
        self._enter(CorrectionState.INIT)
        cfg = self._config
        target = check_vector(target_spd, self._cal.n_wavelengths, "target_spd").copy()
        if not np.all(np.isfinite(target)):
            raise ConfigurationError("target_spd contains non-finite values")
        seed = self._initial_primaries(initial_primaries, target)
        bounds = self.bounds

        def metric(spd: np.ndarray) -> Tuple[float, Optional[np.ndarray]]:
            return rms_error(target, spd), None

        def estimate(used: np.ndarray, spd: np.ndarray, lr: float) -> _Estimate:
            delta = linear_delta_primaries(used, spd, target, lr, cfg.smoothness, self._cal, bounds)
            if not cfg.iterative_search:
                predicted = self._model.predict_spd_from_delta_primaries(delta, used, spd, bounds)
                return _Estimate(delta, predicted, True)
            refined = iterative_delta_primaries(
                delta, used, spd, target, lr, self._cal, bounds,
                max_function_evaluations=cfg.max_function_evaluations,
                tolerance=cfg.optimizer_tolerance,
            )
            return _Estimate(refined.delta, refined.predicted, refined.converged)

        return self._run("spd", target, seed, metric, estimate)

    def correct_to_contrast(
        self,
        target_contrasts: np.ndarray,
        receptors: np.ndarray,
        initial_target_spd: Optional[np.ndarray] = None,
        background_spd: Optional[np.ndarray] = None,
        background_primaries: Optional[np.ndarray] = None,
        initial_primaries: Optional[np.ndarray] = None,
    ) -> CorrectionResult:
        """
        Correct primaries so that measured receptor contrasts approach the target.

        The background SPD is either passed in or measured once, before the
        first iteration, from *background_primaries*.  It is not re-measured
        during the run.

        Args:
            target_contrasts: (R,) desired contrasts.
            receptors: (R, W) receptor sensitivities.
            initial_target_spd: SPD used to derive seed primaries when
                *initial_primaries* is not given.
            background_spd: (W,) background SPD.
            background_primaries: Primaries to measure the background from,
                used when *background_spd* is None.
            initial_primaries: Seed primaries.

        Raises:
            ConfigurationError: Bad shapes, missing inputs, or zero background
                excitation (checked before any hardware call when the
                background SPD is supplied).
        """
        self._enter(CorrectionState.INIT)
        cfg = self._config
        t = check_receptors(receptors, self._cal.n_wavelengths)
        target = check_vector(target_contrasts, t.shape[0], "target_contrasts").copy()
        if not np.all(np.isfinite(target)):
            raise ConfigurationError("target_contrasts contains non-finite values")

        if background_spd is not None:
            background = check_vector(background_spd, self._cal.n_wavelengths, "background_spd").copy()
            bg_exc = check_background_excitations(t, background)
            seed = self._initial_primaries(initial_primaries, initial_target_spd)
        elif background_primaries is not None:
            bg_primaries = check_vector(background_primaries, self._cal.n_primaries, "background_primaries")
            if not in_gamut(bg_primaries, self._cal.gamut):
                raise ConfigurationError("background_primaries lie outside the gamut")
            seed = self._initial_primaries(initial_primaries, initial_target_spd)
            try:
                background, _ = self._measure(bg_primaries)
            except MeasurementError as exc:
                return self._stop(
                    CorrectionStatus.FAILED, "contrast", target, seed, CorrectionTrace(),
                    exc, None, None,
                )
            try:
                bg_exc = check_background_excitations(t, background)
            except ConfigurationError:
                self._enter(CorrectionState.FAILED)
                self._release_device()
                raise
            logger.info("background measured once for this run; later drift is not tracked")
        else:
            raise ConfigurationError("contrast correction needs background_spd or background_primaries")

        bounds = self.bounds

        def metric(spd: np.ndarray) -> Tuple[float, Optional[np.ndarray]]:
            measured_contrasts = contrasts_from_excitations(t @ spd, bg_exc)
            return rms_error(target, measured_contrasts), measured_contrasts

        def estimate(used: np.ndarray, spd: np.ndarray, lr: float) -> _Estimate:
            delta = linear_delta_primaries_contrast(
                used, spd, target, background, t, lr, cfg.smoothness, self._cal, bounds,
            )
            if not cfg.iterative_search:
                predicted = self._model.predict_spd_from_delta_primaries(delta, used, spd, bounds)
                return _Estimate(delta, predicted, True)
            refined = iterative_delta_primaries_contrast(
                delta, used, target, spd, background, t, lr, self._cal, bounds,
                max_function_evaluations=cfg.max_function_evaluations,
                tolerance=cfg.optimizer_tolerance,
            )
            return _Estimate(refined.delta, refined.predicted, refined.converged)

        return self._run("contrast", target, seed, metric, estimate, background)

    # -- the loop -----------------------------------------------------------
    def _run(
        self,
        mode: str,
        target: np.ndarray,
        seed: np.ndarray,
        metric: Callable[[np.ndarray], Tuple[float, Optional[np.ndarray]]],
        estimate: Callable[[np.ndarray, np.ndarray, float], _Estimate],
        background: Optional[np.ndarray] = None,
    ) -> CorrectionResult:
        cfg = self._config
        bounds = self.bounds
        trace = CorrectionTrace()
        started = self._clock()
        primaries = seed

        logger.info(
            "starting %s correction: %d iterations, learning rate %.3g (decrease=%s), "
            "smoothness %.3g, iterative search=%s",
            mode, cfg.n_iterations, cfg.learning_rate, cfg.learning_rate_decrease,
            cfg.smoothness, cfg.iterative_search,
        )

        try:
            for iteration in range(1, cfg.n_iterations + 1):
                self._check_abort(iteration, trace, started)

                spd, diagnostics = self._measure(primaries)

                self._enter(CorrectionState.ESTIMATING)
                error, measured_contrasts = metric(spd)
                lr = learning_rate_for_iteration(iteration, cfg)
                est = estimate(primaries, spd, lr)

                self._enter(CorrectionState.APPLYING)
                next_primaries, delta_applied, truncated = apply_delta(primaries, est.delta, bounds)
                trace.append(IterationRecord(
                    iteration=iteration,
                    primaries_used=primaries,
                    measured_spd=spd,
                    delta_applied=delta_applied,
                    next_primaries=next_primaries,
                    error=error,
                    learning_rate=lr,
                    measured_contrasts=measured_contrasts,
                    predicted_spd=est.predicted_spd,
                    truncated=truncated,
                    converged=est.converged,
                    diagnostics=diagnostics,
                ))
                logger.info(
                    "iteration %d/%d: rms error %.4g, learning rate %.3f%s%s",
                    iteration, cfg.n_iterations, error, lr,
                    ", truncated" if truncated else "",
                    "" if est.converged else ", search did not converge",
                )
                primaries = next_primaries
        except MeasurementError as exc:
            logger.error("measurement failed during iteration %d: %s", len(trace) + 1, exc)
            return self._stop(
                CorrectionStatus.FAILED, mode, target, seed, trace, exc, background, started,
            )
        except _Aborted as exc:
            logger.warning("correction aborted: %s", exc)
            return self._stop(
                CorrectionStatus.ABORTED, mode, target, seed, trace, None, background, started,
            )
        except Exception:
            self._enter(CorrectionState.FAILED)
            self._release_device()
            raise

        self._enter(CorrectionState.FINALIZING)
        best_index = trace.best_index()
        corrected = select_best_iterate(trace)
        logger.info(
            "correction done: best iteration %d of %d, rms error %.4g",
            best_index + 1, len(trace), trace[best_index].error,
        )
        self._enter(CorrectionState.DONE)
        return CorrectionResult(
            status=CorrectionStatus.COMPLETED,
            mode=mode,
            trace=trace,
            target=target,
            initial_primaries=seed,
            config=cfg,
            corrected_primaries=corrected.copy(),
            background_spd=background,
            elapsed=self._clock() - started,
        )

    def _stop(
        self,
        status: CorrectionStatus,
        mode: str,
        target: np.ndarray,
        seed: Optional[np.ndarray],
        trace: CorrectionTrace,
        error: Optional[BaseException],
        background: Optional[np.ndarray],
        started: Optional[float],
    ) -> CorrectionResult:
        self._enter(CorrectionState.FAILED if status is CorrectionStatus.FAILED else CorrectionState.ABORTED)
        self._release_device()
        return CorrectionResult(
            status=status,
            mode=mode,
            trace=trace,
            target=target,
            initial_primaries=seed,
            config=self._config,
            background_spd=background,
            error=error,
            elapsed=0.0 if started is None else self._clock() - started,
        )


# ---------------------------------------------------------------------------
# Convenience wrappers
# ---------------------------------------------------------------------------
def correct_to_spd(
    target_spd: np.ndarray,
    calibration: Calibration,
    measure: MeasureFn,
    config: Optional[CorrectionConfig] = None,
    initial_primaries: Optional[np.ndarray] = None,
    **corrector_kw: Any,
) -> CorrectionResult:
    """One-shot ``Corrector(...).correct_to_spd(...)``."""
    corrector = Corrector(calibration, measure, config, **corrector_kw)
    return corrector.correct_to_spd(target_spd, initial_primaries=initial_primaries)


def correct_to_contrast(
    target_contrasts: np.ndarray,
    receptors: np.ndarray,
    calibration: Calibration,
    measure: MeasureFn,
    config: Optional[CorrectionConfig] = None,
    initial_target_spd: Optional[np.ndarray] = None,
    background_spd: Optional[np.ndarray] = None,
    background_primaries: Optional[np.ndarray] = None,
    initial_primaries: Optional[np.ndarray] = None,
    **corrector_kw: Any,
) -> CorrectionResult:
    """One-shot ``Corrector(...).correct_to_contrast(...)``."""
    corrector = Corrector(calibration, measure, config, **corrector_kw)
    return corrector.correct_to_contrast(
        target_contrasts,
        receptors,
        initial_target_spd=initial_target_spd,
        background_spd=background_spd,
        background_primaries=background_primaries,
        initial_primaries=initial_primaries,
    )
