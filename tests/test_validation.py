# -*- coding: utf-8 -*-
import numpy as np
import pytest

from lumen_contrast import spd_to_contrasts
from lumen_devicemodel import LinearDeviceModel
from lumen_directions import Direction
from lumen_errors import ConfigurationError, MeasurementError
from lumen_simulation import SimulatedLightEngine
from lumen_validation import validate_direction


@pytest.fixture
def direction(gaussian_cal):
    pos = 0.1 * np.cos(np.arange(8.0))
    return Direction(pos, -pos, gaussian_cal)


def test_noiseless_validation_matches_prediction(direction, gaussian_cal):
    background = np.full(8, 0.5)
    report = validate_direction(direction, background, SimulatedLightEngine(gaussian_cal))

    np.testing.assert_allclose(report.background.measured, report.background.predicted)
    np.testing.assert_allclose(report.combined.measured, report.combined.desired)
    np.testing.assert_allclose(report.differential.measured, direction.desired_spd, atol=1e-12)
    np.testing.assert_allclose(report.differential.predicted, direction.to_predicted_spd())
    assert report.summary()["differential_rms"] < 1e-12
    assert report.excitations is None and report.contrasts is None and report.luminance is None


def test_receptor_and_luminance_report(direction, gaussian_cal, receptors):
    background = np.full(8, 0.5)
    v_lambda = receptors[1] + receptors[2]
    engine = SimulatedLightEngine(gaussian_cal, basis=1.05 * gaussian_cal.primary_basis, temperature=30.0)

    report = validate_direction(
        direction, background, engine,
        receptors=receptors, luminance_weights=v_lambda, n_average=3,
    )

    assert engine.n_measurements == 6
    assert len(report.diagnostics) == 6
    assert report.excitations["measured"].shape == (3, 2)
    model = LinearDeviceModel(gaussian_cal)
    desired = spd_to_contrasts(
        model.predict_spd(background) + direction.desired_spd, model.predict_spd(background), receptors,
    )
    np.testing.assert_allclose(report.contrasts["desired"], desired)
    assert report.luminance["measured"][0] == pytest.approx(1.05 * report.luminance["desired"][0], rel=0.05)
    assert report.summary()["combined_rms"] > 0


def test_validation_input_checks(direction, gaussian_cal):
    engine = SimulatedLightEngine(gaussian_cal)
    with pytest.raises(ConfigurationError):
        validate_direction(direction, np.full(8, 0.95), engine)
    with pytest.raises(ConfigurationError):
        validate_direction(direction, np.full(8, 0.5), engine, n_average=0)
    with pytest.raises(ConfigurationError):
        validate_direction(direction, np.full(8, 0.5), engine, receptors=np.ones((3, 10)))
    assert engine.n_measurements == 0

    with pytest.raises(MeasurementError):
        validate_direction(direction, np.full(8, 0.5), SimulatedLightEngine(gaussian_cal, fail_at=2))
