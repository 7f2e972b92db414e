# -*- coding: utf-8 -*-
"""Shared fixtures: small synthetic calibrations and receptor sets."""

import numpy as np
import pytest

from lumen_calibration import Calibration

WAVELENGTHS = 380.0 + 5.0 * np.arange(81)          # 380..780 nm
PRIMARY_CENTERS = np.linspace(420.0, 700.0, 8)


def gaussian_columns(wls, centers, sigma):
    return np.exp(-0.5 * ((wls[:, None] - centers[None, :]) / sigma) ** 2)


@pytest.fixture
def gaussian_cal():
    """Eight well separated Gaussian primaries, small flat dark."""
    return Calibration(
        primary_basis=gaussian_columns(WAVELENGTHS, PRIMARY_CENTERS, 15.0),
        dark_spd=np.full(WAVELENGTHS.shape, 0.01),
        sampling=(380, 5, 81),
        cal_id="gauss8",
        describe={"device": "synthetic"},
    )


@pytest.fixture
def identity_cal():
    """4 primaries, 4 wavelengths, M = I, no dark."""
    return Calibration(
        primary_basis=np.eye(4),
        dark_spd=np.zeros(4),
        sampling=(400, 10, 4),
        cal_id="identity4",
    )


@pytest.fixture
def receptors():
    """Three broad receptor classes (roughly S, M, L)."""
    return gaussian_columns(WAVELENGTHS, np.array([450.0, 540.0, 570.0]), 40.0).T


@pytest.fixture
def nominal_primaries():
    return 0.5 + 0.1 * np.sin(np.arange(8.0))
