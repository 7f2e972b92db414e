# -*- coding: utf-8 -*-
import numpy as np
import pytest

from lumen_calibration import (
    Calibration,
    CalibrationProvider,
    DictCalibrationProvider,
    WavelengthSampling,
)
from lumen_errors import ConfigurationError


def _flat_mapping():
    return {
        "primary_basis": np.eye(3),
        "dark_spd": [0.0, 0.1, 0.0],
        "S": [400, 10, 3],
        "cal_id": "flat",
    }


def test_sampling_and_shapes(gaussian_cal):
    assert gaussian_cal.n_primaries == 8
    assert gaussian_cal.n_wavelengths == 81
    assert gaussian_cal.sampling == WavelengthSampling(380.0, 5.0, 81)
    assert gaussian_cal.wavelengths[0] == 380.0
    assert gaussian_cal.wavelengths[-1] == 780.0
    np.testing.assert_array_equal(gaussian_cal.null_primaries(), np.zeros(8))
    np.testing.assert_array_equal(gaussian_cal.full_on_primaries(), np.ones(8))


def test_arrays_are_read_only(gaussian_cal):
    with pytest.raises(ValueError):
        gaussian_cal.primary_basis[0, 0] = 1.0
    with pytest.raises(ValueError):
        gaussian_cal.dark_spd[0] = 1.0


def test_input_arrays_are_copied():
    basis = np.eye(2)
    cal = Calibration(basis, np.zeros(2), (400, 10, 2))
    basis[0, 0] = 5.0
    assert cal.primary_basis[0, 0] == 1.0


@pytest.mark.parametrize(
    "kwargs",
    [
        {"primary_basis": np.eye(3), "dark_spd": np.zeros(2), "sampling": (400, 10, 3)},
        {"primary_basis": np.eye(3), "dark_spd": np.zeros(3), "sampling": (400, 10, 4)},
        {"primary_basis": np.ones(3), "dark_spd": np.zeros(3), "sampling": (400, 10, 3)},
        {"primary_basis": np.eye(3), "dark_spd": [0, np.nan, 0], "sampling": (400, 10, 3)},
        {"primary_basis": np.eye(3), "dark_spd": np.zeros(3), "sampling": (400, -1, 3)},
    ],
)
def test_invalid_calibrations(kwargs):
    with pytest.raises(ConfigurationError):
        Calibration(**kwargs)


def test_from_mapping_flat():
    cal = Calibration.from_mapping(_flat_mapping())
    assert cal.cal_id == "flat"
    assert cal.n_primaries == 3
    np.testing.assert_array_equal(cal.dark_spd, [0.0, 0.1, 0.0])


def test_from_mapping_nested():
    cal = Calibration.from_mapping({
        "computed": {"pr650M": np.eye(2), "pr650MeanDark": [[0.5], [0.5]]},
        "describe": {"S": [500, 2, 2], "calID": "nested", "date": "2026-01-01"},
    })
    assert cal.cal_id == "nested"
    assert cal.describe == {"date": "2026-01-01"}
    np.testing.assert_array_equal(cal.dark_spd, [0.5, 0.5])


def test_from_mapping_rejects_unknown_and_missing_keys():
    bad = _flat_mapping()
    bad["pr650M"] = np.eye(3)
    with pytest.raises(ConfigurationError, match="Unknown"):
        Calibration.from_mapping(bad)
    missing = _flat_mapping()
    del missing["S"]
    with pytest.raises(ConfigurationError, match="missing"):
        Calibration.from_mapping(missing)


def test_matches():
    a = Calibration.from_mapping(_flat_mapping())
    b = Calibration.from_mapping(_flat_mapping())
    anonymous = Calibration(np.eye(3), np.zeros(3), (400, 10, 3))
    assert a.matches(b)
    assert anonymous.matches(anonymous)
    assert not anonymous.matches(Calibration(np.eye(3), np.zeros(3), (400, 10, 3)))


def test_zero_primaries_away_from_peak(gaussian_cal):
    trimmed = gaussian_cal.zero_primaries_away_from_peak(20, 20)
    wls = gaussian_cal.wavelengths
    peaks = wls[np.argmax(gaussian_cal.primary_basis, axis=0)]
    far = np.abs(wls[:, None] - peaks[None, :]) > 20
    assert np.all(trimmed.primary_basis[far] == 0.0)
    np.testing.assert_array_equal(trimmed.primary_basis[~far], gaussian_cal.primary_basis[~far])
    assert trimmed.describe["zeroed_away_from_peak"] == (20.0, 20.0)
    # The source calibration is untouched
    assert np.count_nonzero(gaussian_cal.primary_basis[far]) > 0


def test_dict_provider(gaussian_cal):
    provider = DictCalibrationProvider({"box": gaussian_cal, "raw": {
        "primary_basis": np.eye(2), "dark_spd": np.zeros(2), "S": (400, 10, 2),
    }})
    assert isinstance(provider, CalibrationProvider)
    assert provider.identifiers() == ("box", "raw")
    assert provider.contains("raw")
    raw = provider.load_calibration("raw")
    assert raw.cal_id == "raw"
    assert provider.load_calibration("raw") is raw
    assert provider.load_calibration("box") is gaussian_cal
    with pytest.raises(KeyError):
        provider.load_calibration("missing")
