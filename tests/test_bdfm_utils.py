"""Tests for BDFM.utils and BDFM.exceptions."""

import numpy as np
import pytest

from BDFM import DimensionError, NumericalError, stack_obs


class TestStackObs:
    """Tests for stacking series in VAR format."""

    def test_single_series_two_lags(self):
        """Each row holds the current value followed by its lag."""
        nn = np.arange(5.0)[:, None]
        N = stack_obs(nn, 2)
        expected = np.array([[1, 0], [2, 1], [3, 2], [4, 3]], dtype=float)
        np.testing.assert_array_equal(N, expected)

    def test_multiple_series_block_order(self):
        """Lag blocks are laid out series-contiguously."""
        nn = np.column_stack([np.arange(4.0), 10 + np.arange(4.0)])
        N = stack_obs(nn, 2)
        assert N.shape == (3, 4)
        np.testing.assert_array_equal(N[0], [1, 11, 0, 10])
        np.testing.assert_array_equal(N[-1], [3, 13, 2, 12])

    def test_p_one_is_identity(self, rng):
        nn = rng.normal(size=(7, 3))
        np.testing.assert_array_equal(stack_obs(nn, 1), nn)

    def test_explicit_rows_accepted(self):
        N = stack_obs(np.ones((10, 2)), 3, r=8)
        assert N.shape == (8, 6)

    def test_row_mismatch_raises(self):
        with pytest.raises(DimensionError, match="do not agree"):
            stack_obs(np.ones((10, 2)), 3, r=5)

    def test_too_many_lags_raises(self):
        with pytest.raises(DimensionError):
            stack_obs(np.ones((3, 2)), 4)


class TestExceptions:
    """The error types also behave as their standard counterparts."""

    def test_dimension_error_is_value_error(self):
        assert issubclass(DimensionError, ValueError)

    def test_numerical_error_is_linalg_error(self):
        assert issubclass(NumericalError, np.linalg.LinAlgError)
