# -*- coding: utf-8 -*-
import numpy as np
import pytest

from lumen_errors import ConfigurationError, InvariantViolation
from lumen_gamut import (
    ABSOLUTE_GAMUT,
    DIFFERENTIAL_GAMUT,
    GamutBounds,
    apply_delta,
    assert_in_gamut,
    delta_bounds,
    in_gamut,
    truncate,
    truncated_delta_primaries,
)


def test_truncate_clamps_and_reports():
    clamped, truncated = truncate(np.array([-0.2, 0.5, 1.3]))
    np.testing.assert_array_equal(clamped, [0.0, 0.5, 1.0])
    assert truncated

    same, truncated = truncate(np.array([0.0, 0.25, 1.0]))
    np.testing.assert_array_equal(same, [0.0, 0.25, 1.0])
    assert not truncated


def test_truncate_keeps_shape_of_stacks():
    stack = np.array([[-1.0, 0.5], [2.0, 0.1]])
    clamped, truncated = truncate(stack, DIFFERENTIAL_GAMUT)
    assert clamped.shape == (2, 2)
    np.testing.assert_array_equal(clamped, [[-1.0, 0.5], [1.0, 0.1]])
    assert truncated


def test_bounds_validation():
    assert ABSOLUTE_GAMUT == GamutBounds(0.0, 1.0)
    assert DIFFERENTIAL_GAMUT == GamutBounds(-1.0, 1.0)
    assert not hasattr(GamutBounds, "ABSOLUTE")
    assert DIFFERENTIAL_GAMUT.width == 2.0
    with pytest.raises(ConfigurationError):
        GamutBounds(1.0, 0.0).validate()
    with pytest.raises(ConfigurationError):
        GamutBounds(0.0, np.inf).validate()


def test_apply_delta_is_exactly_consistent():
    rng = np.random.default_rng(3)
    for _ in range(50):
        used = rng.uniform(0.0, 1.0, size=16)
        delta = rng.normal(0.0, 0.7, size=16)
        nxt, applied, truncated = apply_delta(used, delta)
        assert np.array_equal(nxt, used + applied)
        assert in_gamut(nxt)
        if not truncated:
            np.testing.assert_allclose(applied, delta)


def test_apply_delta_truncation_flag():
    nxt, applied, truncated = apply_delta(np.array([0.9, 0.1]), np.array([0.5, -0.5]))
    assert truncated
    np.testing.assert_allclose(nxt, [1.0, 0.0])
    np.testing.assert_allclose(applied, [0.1, -0.1])


def test_apply_delta_rejects_bad_input():
    with pytest.raises(ConfigurationError):
        apply_delta(np.zeros(3), np.zeros(4))
    with pytest.raises(InvariantViolation):
        apply_delta(np.zeros(2), np.array([np.nan, 0.0]))


def test_delta_box_and_truncated_delta():
    used = np.array([0.25, 0.75])
    lower, upper = delta_bounds(used)
    np.testing.assert_allclose(lower, [-0.25, -0.75])
    np.testing.assert_allclose(upper, [0.75, 0.25])
    np.testing.assert_allclose(truncated_delta_primaries(np.array([1.0, 1.0]), used), [0.75, 0.25])


def test_assert_in_gamut():
    assert_in_gamut(np.array([0.0, 1.0]))
    with pytest.raises(InvariantViolation, match="out of gamut"):
        assert_in_gamut(np.array([0.0, 1.5]), label="next")
    with pytest.raises(InvariantViolation):
        assert_in_gamut(np.array([np.nan]))
