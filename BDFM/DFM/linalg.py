"""Linear algebra helpers shared by the filters and samplers."""

from __future__ import annotations

import numpy as np
from scipy import linalg, sparse

from ..exceptions import DimensionError, NumericalError


def comp_form(B: np.ndarray) -> np.ndarray:
    """Return the companion form of the transition matrix ``B``.

    ``B`` has shape ``(m, m * p)``; the result is the square
    ``(m * p, m * p)`` matrix with ``B`` on top and an identity shift
    below it.
    """

    B = np.atleast_2d(np.asarray(B, dtype=float))
    r, c = B.shape
    if c < r or c % r != 0:
        raise DimensionError(
            f"B must have shape (m, m * p), got {B.shape}"
        )
    shift = np.hstack([np.eye(c - r), np.zeros((c - r, r))])
    return np.vstack([B, shift])


def spectral_radius(B: np.ndarray) -> float:
    """Largest eigenvalue modulus of the companion form of ``B``."""
    return float(np.max(np.abs(linalg.eigvals(comp_form(B)))))


# ----------------------------------------------------------------------
# Sparse selection
# ----------------------------------------------------------------------

def make_sparse(A: np.ndarray) -> sparse.csr_matrix:
    """Return a CSR matrix holding the non-zero entries of ``A``."""
    return sparse.csr_matrix(np.atleast_2d(np.asarray(A, dtype=float)))


def sp_rows(A, r) -> sparse.csr_matrix:
    """Select the rows ``r`` of ``A`` (in the given order)."""
    A = sparse.csr_matrix(A)
    r = np.asarray(r, dtype=int).reshape(-1)
    n_r = r.size
    J = sparse.csr_matrix(
        (np.ones(n_r), (np.arange(n_r), r)), shape=(n_r, A.shape[0])
    )
    return sparse.csr_matrix(J @ A)


def sp_cols(A, r) -> sparse.csr_matrix:
    """Select the columns ``r`` of ``A`` (in the given order)."""
    A = sparse.csr_matrix(A)
    r = np.asarray(r, dtype=int).reshape(-1)
    n_r = r.size
    J = sparse.csr_matrix(
        (np.ones(n_r), (r, np.arange(n_r))), shape=(A.shape[1], n_r)
    )
    return sparse.csr_matrix(A @ J)


def sprow(A, a, r: int) -> sparse.csr_matrix:
    """Return a copy of ``A`` whose row ``r`` is replaced by ``a``.

    ``a`` is padded with zeros when it is shorter than a row of ``A``.
    Entries that are non-zero in ``A`` and zero in ``a`` are cleared.
    """

    A = sparse.lil_matrix(A, dtype=float)
    a = np.asarray(a, dtype=float).reshape(-1)
    n_cols = A.shape[1]
    if a.size > n_cols:
        raise DimensionError(f"Row has {a.size} entries, matrix has {n_cols} columns")
    row = np.zeros(n_cols)
    row[: a.size] = a
    A[r, :] = row
    out = A.tocsr()
    out.eliminate_zeros()
    return out


# ----------------------------------------------------------------------
# Symmetric positive definite kernels
# ----------------------------------------------------------------------

def symmetrize(M: np.ndarray) -> np.ndarray:
    return 0.5 * (M + M.T)


def _cho_factor(M: np.ndarray):
    try:
        return linalg.cho_factor(M, lower=True, check_finite=True)
    except (np.linalg.LinAlgError, ValueError) as err:
        raise NumericalError(f"Matrix is not positive definite: {err}") from err


def inv_sympd(M: np.ndarray) -> np.ndarray:
    """Inverse of a symmetric positive definite matrix via Cholesky."""
    M = symmetrize(np.atleast_2d(np.asarray(M, dtype=float)))
    c = _cho_factor(M)
    return symmetrize(linalg.cho_solve(c, np.eye(M.shape[0])))


def solve_sympd(M: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Solve ``M x = b`` for symmetric positive definite ``M``."""
    M = symmetrize(np.atleast_2d(np.asarray(M, dtype=float)))
    return linalg.cho_solve(_cho_factor(M), b)


def log_det_sympd(M: np.ndarray) -> float:
    """Log determinant of a symmetric positive definite matrix."""
    M = symmetrize(np.atleast_2d(np.asarray(M, dtype=float)))
    c, _ = _cho_factor(M)
    return float(2.0 * np.sum(np.log(np.diag(c))))


def chol_lower(M: np.ndarray) -> np.ndarray:
    """Lower Cholesky factor, raising :class:`NumericalError` on failure."""
    M = symmetrize(np.atleast_2d(np.asarray(M, dtype=float)))
    try:
        return linalg.cholesky(M, lower=True)
    except (np.linalg.LinAlgError, ValueError) as err:
        raise NumericalError(f"Cholesky factorisation failed: {err}") from err


def solve(M: np.ndarray, b: np.ndarray) -> np.ndarray:
    """General linear solve raising :class:`NumericalError` on singular ``M``."""
    try:
        return linalg.solve(M, b)
    except (np.linalg.LinAlgError, ValueError) as err:
        raise NumericalError(f"Linear solve failed: {err}") from err
