"""Tests for BDFM.DFM.linalg helpers."""

import numpy as np
import pytest
from scipy import sparse

from BDFM import DimensionError, NumericalError
from BDFM.DFM.linalg import (
    comp_form,
    inv_sympd,
    log_det_sympd,
    make_sparse,
    solve_sympd,
    sp_cols,
    sp_rows,
    spectral_radius,
    sprow,
)


class TestCompanionForm:
    """Tests for companion matrices and their spectral radius."""

    def test_layout(self):
        B = np.arange(8.0).reshape(2, 4)
        A = comp_form(B)
        assert A.shape == (4, 4)
        np.testing.assert_array_equal(A[:2], B)
        np.testing.assert_array_equal(A[2:], np.hstack([np.eye(2), np.zeros((2, 2))]))

    def test_one_lag_is_unchanged(self):
        B = np.array([[0.3, 0.1], [0.0, 0.2]])
        np.testing.assert_array_equal(comp_form(B), B)

    def test_bad_shape_raises(self):
        with pytest.raises(DimensionError):
            comp_form(np.ones((2, 3)))

    def test_spectral_radius_scalar(self):
        assert spectral_radius(np.array([[0.5]])) == pytest.approx(0.5)

    def test_spectral_radius_ar2(self):
        """AR(2) with roots 0.9 and 0.5."""
        B = np.array([[1.4, -0.45]])
        assert spectral_radius(B) == pytest.approx(0.9)


class TestSparseSelection:
    """Tests for sparse row and column selection."""

    def test_sp_rows(self, rng):
        A = rng.normal(size=(5, 3))
        out = sp_rows(make_sparse(A), [4, 1])
        assert sparse.issparse(out)
        np.testing.assert_allclose(out.toarray(), A[[4, 1]])

    def test_sp_cols(self, rng):
        A = rng.normal(size=(3, 5))
        out = sp_cols(A, [0, 3])
        np.testing.assert_allclose(out.toarray(), A[:, [0, 3]])

    def test_sprow_replaces_and_pads(self):
        A = make_sparse(np.ones((3, 4)))
        out = sprow(A, [2.0, 0.0], 1)
        np.testing.assert_array_equal(out.toarray()[1], [2, 0, 0, 0])
        np.testing.assert_array_equal(out.toarray()[0], np.ones(4))
        # cleared entries are not stored
        assert out.nnz == 9

    def test_sprow_too_long_raises(self):
        with pytest.raises(DimensionError):
            sprow(np.ones((2, 2)), [1.0, 2.0, 3.0], 0)


class TestSymmetricKernels:
    """Tests for positive definite solves and factorisations."""

    def test_inverse(self, rng):
        X = rng.normal(size=(20, 4))
        M = X.T @ X
        np.testing.assert_allclose(inv_sympd(M) @ M, np.eye(4), atol=1e-10)

    def test_solve(self, rng):
        X = rng.normal(size=(20, 3))
        M = X.T @ X
        b = rng.normal(size=3)
        np.testing.assert_allclose(M @ solve_sympd(M, b), b, atol=1e-10)

    def test_log_det(self, rng):
        X = rng.normal(size=(20, 3))
        M = X.T @ X
        assert log_det_sympd(M) == pytest.approx(np.linalg.slogdet(M)[1])

    def test_indefinite_raises(self):
        M = np.array([[1.0, 2.0], [2.0, 1.0]])
        with pytest.raises(NumericalError):
            inv_sympd(M)
        with pytest.raises(np.linalg.LinAlgError):
            solve_sympd(M, np.ones(2))
