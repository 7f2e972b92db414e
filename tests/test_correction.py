# -*- coding: utf-8 -*-
import itertools
import logging
import typing

import numpy as np
import pytest

from lumen_contrast import spd_to_contrasts
from lumen_correction import (
    CorrectionConfig,
    CorrectionResult,
    CorrectionState,
    CorrectionStatus,
    CorrectionTrace,
    Corrector,
    IterationRecord,
    Measurement,
    correct_to_contrast,
    correct_to_spd,
    learning_rate_for_iteration,
    learning_rate_schedule,
    select_best_iterate,
    unpack_measurement,
)
from lumen_devicemodel import LinearDeviceModel
from lumen_errors import ConfigurationError, CorrectionAborted, InvariantViolation, MeasurementError
from lumen_simulation import SimulatedLightEngine


def _record(iteration, used, delta, error):
    used = np.asarray(used, dtype=float)
    delta = np.asarray(delta, dtype=float)
    return IterationRecord(
        iteration=iteration,
        primaries_used=used,
        measured_spd=np.zeros(2),
        delta_applied=delta,
        next_primaries=used + delta,
        error=error,
        learning_rate=0.8,
    )


# ---------------------------------------------------------------------------
# Configuration and schedule
# ---------------------------------------------------------------------------
def test_config_defaults_and_validation():
    cfg = CorrectionConfig()
    assert cfg.n_iterations == 20
    assert cfg.learning_rate == 0.8
    assert cfg.smoothness == 0.001
    for bad in (
        {"n_iterations": 0},
        {"n_iterations": 2.5},
        {"learning_rate": 0.0},
        {"learning_rate": 1.2},
        {"asymptotic_learning_rate_factor": 1.0},
        {"smoothness": -1.0},
        {"time_budget": 0.0},
    ):
        with pytest.raises(ConfigurationError):
            CorrectionConfig(**bad)


def test_config_from_mapping():
    cfg = CorrectionConfig.from_mapping({"n_iterations": 5, "iterative_search": False})
    assert cfg.n_iterations == 5 and not cfg.iterative_search
    assert cfg.as_dict()["n_iterations"] == 5
    with pytest.raises(ConfigurationError, match="Unknown"):
        CorrectionConfig.from_mapping({"nIterations": 5})


def test_learning_rate_schedule_decreases_to_asymptote():
    cfg = CorrectionConfig(n_iterations=5, learning_rate=0.8, asymptotic_learning_rate_factor=0.5)
    rates = learning_rate_schedule(cfg)
    np.testing.assert_allclose(rates, [0.8, 0.7, 0.6, 0.5, 0.4])
    assert np.all(np.diff(rates) <= 0)
    assert rates[-1] == pytest.approx(0.8 * (1 - 0.5))


def test_learning_rate_constant_cases():
    assert learning_rate_for_iteration(1, CorrectionConfig(n_iterations=1)) == 0.8
    flat = CorrectionConfig(n_iterations=4, learning_rate_decrease=False)
    np.testing.assert_array_equal(learning_rate_schedule(flat), np.full(4, 0.8))
    with pytest.raises(ConfigurationError):
        learning_rate_for_iteration(5, flat)


# ---------------------------------------------------------------------------
# Trace
# ---------------------------------------------------------------------------
def test_best_iterate_uses_primaries_that_were_measured():
    trace = CorrectionTrace()
    trace.append(_record(1, [0.5, 0.5], [0.25, -0.25], 0.3))
    trace.append(_record(2, [0.75, 0.25], [0.125, 0.0], 0.1))
    trace.append(_record(3, [0.875, 0.25], [-0.125, 0.0], 0.2))
    assert trace.best_index() == 1
    np.testing.assert_array_equal(trace.best().primaries_used, [0.75, 0.25])
    np.testing.assert_array_equal(trace.errors, [0.3, 0.1, 0.2])
    assert trace.as_arrays()["primaries_used"].shape == (2, 3)


def test_trace_rejects_inconsistent_records():
    trace = CorrectionTrace()
    bad = IterationRecord(
        iteration=1,
        primaries_used=np.array([0.5]),
        measured_spd=np.zeros(1),
        delta_applied=np.array([0.1]),
        next_primaries=np.array([0.7]),
        error=0.0,
        learning_rate=1.0,
    )
    with pytest.raises(InvariantViolation):
        trace.append(bad)
    with pytest.raises(InvariantViolation):
        trace.append(_record(2, [0.5], [0.0], 0.0))
    with pytest.raises(InvariantViolation):
        trace.append(_record(1, [0.5], [0.0], np.nan))
    assert len(trace) == 0
    with pytest.raises(IndexError):
        trace.best()


def test_unpack_measurement():
    spd, diag = unpack_measurement(Measurement(np.ones((3, 1)), {"temperature": 30.0}), 3)
    assert spd.shape == (3,)
    assert diag == {"temperature": 30.0}
    with pytest.raises(MeasurementError):
        unpack_measurement(np.ones(4), 3)
    with pytest.raises(MeasurementError):
        unpack_measurement(np.array([1.0, np.inf, 0.0]), 3)


# ---------------------------------------------------------------------------
# SPD correction
# ---------------------------------------------------------------------------
def test_noiseless_round_trip(gaussian_cal, nominal_primaries):
    target = LinearDeviceModel(gaussian_cal).predict_spd(nominal_primaries)
    engine = SimulatedLightEngine(gaussian_cal)
    cfg = CorrectionConfig(n_iterations=3, learning_rate=1.0, learning_rate_decrease=False)

    corrector = Corrector(gaussian_cal, engine, cfg)
    result = corrector.correct_to_spd(target, initial_primaries=np.full(8, 0.5))

    assert result.status is CorrectionStatus.COMPLETED
    assert corrector.state is CorrectionState.DONE
    assert len(result.trace) == 3
    assert engine.n_measurements == 3
    assert result.best_record.error < 1e-6
    np.testing.assert_allclose(result.corrected_primaries, nominal_primaries, atol=1e-5)
    np.testing.assert_allclose(result.measured_spd, target, atol=1e-6)


def test_seed_from_target_spd(gaussian_cal, nominal_primaries):
    target = LinearDeviceModel(gaussian_cal).predict_spd(nominal_primaries)
    cfg = CorrectionConfig(n_iterations=1)
    result = correct_to_spd(target, gaussian_cal, SimulatedLightEngine(gaussian_cal), cfg)
    assert result.completed
    np.testing.assert_allclose(result.initial_primaries, nominal_primaries, atol=1e-2)


def test_linear_convergence_on_identity_device(identity_cal):
    target = np.array([0.2, 0.4, 0.6, 0.8])
    cfg = CorrectionConfig(
        n_iterations=6, learning_rate=0.5, learning_rate_decrease=False,
        smoothness=0.0, iterative_search=False,
    )
    result = correct_to_spd(
        target, identity_cal, SimulatedLightEngine(identity_cal), cfg,
        initial_primaries=np.full(4, 0.5),
    )
    errors = result.trace.errors
    assert np.all(np.diff(errors) < 0)
    np.testing.assert_allclose(errors[1:] / errors[:-1], 0.5, rtol=1e-6)
    assert result.best_record.iteration == 6


def test_gamut_and_consistency_hold_every_iteration(gaussian_cal):
    unreachable = 3.0 * LinearDeviceModel(gaussian_cal).predict_spd(np.ones(8))
    cfg = CorrectionConfig(n_iterations=4)
    result = correct_to_spd(
        unreachable, gaussian_cal, SimulatedLightEngine(gaussian_cal), cfg,
        initial_primaries=np.full(8, 0.5),
    )
    assert result.completed
    for record in result.trace:
        assert np.all(record.next_primaries >= 0.0) and np.all(record.next_primaries <= 1.0)
        assert np.all(record.primaries_used >= 0.0) and np.all(record.primaries_used <= 1.0)
        assert np.array_equal(record.next_primaries, record.primaries_used + record.delta_applied)
    np.testing.assert_allclose(result.trace[-1].next_primaries, np.ones(8), atol=1e-4)


def test_differential_correction_bounds(identity_cal):
    target = np.array([-0.5, 0.25, 0.0, 0.5])

    def measure_differential(p):
        return identity_cal.primary_basis @ p

    cfg = CorrectionConfig(n_iterations=3, learning_rate=1.0, learning_rate_decrease=False,
                           smoothness=0.0, differential=True)
    result = correct_to_spd(target, identity_cal, measure_differential, cfg)
    assert result.completed
    np.testing.assert_allclose(result.corrected_primaries, target, atol=1e-8)


def test_initial_primaries_must_be_in_gamut(identity_cal):
    engine = SimulatedLightEngine(identity_cal)
    with pytest.raises(ConfigurationError):
        correct_to_spd(np.zeros(4), identity_cal, engine, initial_primaries=np.full(4, 1.5))
    with pytest.raises(ConfigurationError):
        correct_to_spd(np.zeros(5), identity_cal, engine)
    assert engine.n_measurements == 0


# ---------------------------------------------------------------------------
# Failure and abort
# ---------------------------------------------------------------------------
def test_measurement_failure_returns_partial_trace(gaussian_cal, nominal_primaries):
    target = LinearDeviceModel(gaussian_cal).predict_spd(nominal_primaries)
    engine = SimulatedLightEngine(gaussian_cal, fail_at=2)
    corrector = Corrector(gaussian_cal, engine, CorrectionConfig(n_iterations=5))

    result = corrector.correct_to_spd(target, initial_primaries=np.full(8, 0.5))

    assert result.status is CorrectionStatus.FAILED
    assert corrector.state is CorrectionState.FAILED
    assert len(result.trace) == 1
    assert result.corrected_primaries is None
    assert isinstance(result.error, MeasurementError)
    assert result.best_record is result.trace[0]
    assert engine.released


def test_abort_between_iterations(identity_cal):
    released = []
    corrector = Corrector(
        identity_cal,
        SimulatedLightEngine(identity_cal),
        CorrectionConfig(n_iterations=5),
        release=lambda: released.append(True),
        should_abort=lambda iteration, trace: iteration == 3,
    )
    result = corrector.correct_to_spd(np.full(4, 0.3), initial_primaries=np.full(4, 0.5))
    assert result.status is CorrectionStatus.ABORTED
    assert corrector.state is CorrectionState.ABORTED
    assert len(result.trace) == 2
    assert result.corrected_primaries is None
    assert released == [True]


def test_time_budget_aborts(identity_cal):
    ticks = itertools.count(0.0, 10.0)
    corrector = Corrector(
        identity_cal,
        SimulatedLightEngine(identity_cal),
        CorrectionConfig(n_iterations=5, time_budget=5.0),
        clock=lambda: next(ticks),
    )
    result = corrector.correct_to_spd(np.full(4, 0.3), initial_primaries=np.full(4, 0.5))
    assert result.status is CorrectionStatus.ABORTED
    assert len(result.trace) == 0


def test_progress_is_logged(identity_cal, caplog):
    with caplog.at_level(logging.INFO, logger="lumen_correction"):
        correct_to_spd(
            np.full(4, 0.3), identity_cal, SimulatedLightEngine(identity_cal),
            CorrectionConfig(n_iterations=2), initial_primaries=np.full(4, 0.5),
        )
    assert "iteration 1/2" in caplog.text
    assert "correction done" in caplog.text


# ---------------------------------------------------------------------------
# Contrast correction
# ---------------------------------------------------------------------------
def test_zero_background_rejected_before_any_measurement(gaussian_cal, receptors):
    engine = SimulatedLightEngine(gaussian_cal)
    background = np.zeros(81)
    with pytest.raises(ConfigurationError, match="contrast is undefined"):
        correct_to_contrast(
            np.zeros(3), receptors, gaussian_cal, engine,
            background_spd=background, initial_primaries=np.full(8, 0.5),
        )
    assert engine.n_measurements == 0


def test_contrast_correction_converges(gaussian_cal, receptors, nominal_primaries):
    model = LinearDeviceModel(gaussian_cal)
    background_primaries = np.full(8, 0.5)
    background = model.predict_spd(background_primaries)
    target = spd_to_contrasts(model.predict_spd(nominal_primaries), background, receptors)
    engine = SimulatedLightEngine(gaussian_cal)
    cfg = CorrectionConfig(n_iterations=4, learning_rate=1.0, learning_rate_decrease=False)

    result = correct_to_contrast(
        target, receptors, gaussian_cal, engine, cfg,
        background_primaries=background_primaries,
        initial_primaries=background_primaries,
    )

    assert result.completed
    assert result.mode == "contrast"
    assert engine.n_measurements == 4 + 1          # background measured once
    np.testing.assert_allclose(result.background_spd, background)
    assert result.trace[0].error > 1e-3
    assert result.best_record.error < 1e-5
    np.testing.assert_allclose(result.best_record.measured_contrasts, target, atol=1e-5)


def test_contrast_correction_needs_a_background(gaussian_cal, receptors):
    with pytest.raises(ConfigurationError, match="background"):
        correct_to_contrast(
            np.zeros(3), receptors, gaussian_cal, SimulatedLightEngine(gaussian_cal),
            initial_primaries=np.full(8, 0.5),
        )


def test_dark_measured_background_releases_the_device(identity_cal):
    engine = SimulatedLightEngine(identity_cal)
    corrector = Corrector(identity_cal, engine)
    with pytest.raises(ConfigurationError, match="contrast is undefined"):
        corrector.correct_to_contrast(
            np.zeros(1), np.ones((1, 4)),
            background_primaries=np.zeros(4), initial_primaries=np.full(4, 0.5),
        )
    assert engine.n_measurements == 1
    assert engine.released
    assert corrector.state is CorrectionState.FAILED


# ---------------------------------------------------------------------------
# Convergence with the default schedule and best-iterate selection
# ---------------------------------------------------------------------------
def test_identity_device_converges_from_dark_seed(identity_cal):
    cfg = CorrectionConfig(n_iterations=3, learning_rate=1.0)
    result = correct_to_spd(
        np.full(4, 0.5), identity_cal, SimulatedLightEngine(identity_cal), cfg,
        initial_primaries=np.zeros(4),
    )
    assert result.completed
    assert result.trace.errors[0] == pytest.approx(0.5)
    np.testing.assert_allclose(result.corrected_primaries, 0.5, atol=1e-6)


@pytest.mark.parametrize("seed", [0.0, 0.3, 1.0])
def test_decaying_schedule_round_trip(gaussian_cal, nominal_primaries, seed):
    target = LinearDeviceModel(gaussian_cal).predict_spd(nominal_primaries)
    cfg = CorrectionConfig(n_iterations=5, learning_rate=1.0, learning_rate_decrease=True)
    result = correct_to_spd(
        target, gaussian_cal, SimulatedLightEngine(gaussian_cal), cfg,
        initial_primaries=np.full(8, seed),
    )
    assert result.completed
    assert len(result.trace) == 5
    assert result.best_record.error < 1e-6
    np.testing.assert_allclose(result.corrected_primaries, nominal_primaries, atol=1e-4)


def test_corrected_primaries_come_from_lowest_error_iteration(identity_cal):
    target = np.full(4, 0.5)
    offsets = iter([0.4, -0.3, 0.01, -0.2, 0.3])

    def measure(primaries):
        return Measurement(target + next(offsets), {})

    cfg = CorrectionConfig(n_iterations=5, smoothness=0.0, iterative_search=False)
    result = correct_to_spd(target, identity_cal, measure, cfg, initial_primaries=np.full(4, 0.5))

    assert result.completed
    np.testing.assert_allclose(result.trace.errors, [0.4, 0.3, 0.01, 0.2, 0.3])
    assert result.best_record.iteration == 3
    third = result.trace[2].primaries_used
    np.testing.assert_array_equal(select_best_iterate(result.trace), third)
    np.testing.assert_array_equal(result.corrected_primaries, third)
    assert not np.array_equal(result.corrected_primaries, result.trace[2].next_primaries)


def test_correction_aborted_carries_the_partial_result(identity_cal):
    corrector = Corrector(
        identity_cal, SimulatedLightEngine(identity_cal), CorrectionConfig(n_iterations=3),
        should_abort=lambda iteration, trace: iteration == 2,
    )
    result = corrector.correct_to_spd(np.full(4, 0.3), initial_primaries=np.full(4, 0.5))
    error = CorrectionAborted("stopped", result)
    assert error.result is result
    assert CorrectionAborted("stopped").result is None

    hints = typing.get_type_hints(CorrectionAborted.__init__, localns={"CorrectionResult": CorrectionResult})
    assert hints["result"] == typing.Optional[CorrectionResult]
