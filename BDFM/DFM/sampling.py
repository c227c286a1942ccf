"""Random variate generators used by the Gibbs samplers.

All generators take an explicit :class:`numpy.random.Generator`.  Seed it
with :func:`numpy.random.default_rng` to make a run reproducible.
"""

from __future__ import annotations

import numpy as np
from scipy import linalg

from ..exceptions import DimensionError, NumericalError
from .linalg import chol_lower, inv_sympd

PSD_TOL = 1e-8


def mvrnrm(
    n: int,
    mu: np.ndarray,
    Sigma: np.ndarray,
    rng: np.random.Generator,
    tol: float = PSD_TOL,
) -> np.ndarray:
    """Draw ``n`` samples from a multivariate normal distribution.

    Parameters
    ----------
    n : int
        Number of samples.
    mu : ndarray
        Mean vector of length ``p``.
    Sigma : ndarray
        Covariance matrix ``(p, p)``; must be symmetric positive
        semi-definite.
    rng : numpy.random.Generator
        Source of randomness.
    tol : float, default 1e-8
        Relative tolerance for asymmetry and negative eigenvalues.
        Eigenvalues in ``[-tol * scale, 0)`` are treated as zero.

    Returns
    -------
    ndarray
        Draws with shape ``(p, n)``, one sample per column.
    """

    Sigma = np.atleast_2d(np.asarray(Sigma, dtype=float))
    mu = np.asarray(mu, dtype=float).reshape(-1)
    p = Sigma.shape[0]
    if Sigma.shape != (p, p) or mu.size != p:
        raise DimensionError(
            f"mu has length {mu.size} but Sigma has shape {Sigma.shape}"
        )
    scale = max(1.0, float(np.max(np.abs(Sigma)))) if p > 0 else 1.0
    if not np.all(np.isfinite(Sigma)):
        raise NumericalError("Covariance matrix contains non-finite values")
    if np.max(np.abs(Sigma - Sigma.T), initial=0.0) > tol * scale:
        raise NumericalError("Covariance matrix is not symmetric")
    eigval, eigvec = linalg.eigh(Sigma)
    if eigval.size and eigval.min() < -tol * scale:
        raise NumericalError(
            f"Covariance matrix is not positive semi-definite "
            f"(smallest eigenvalue {eigval.min():.3g})"
        )
    eigval = np.clip(eigval, 0.0, None)
    X = rng.standard_normal((p, n))
    X = eigvec @ (np.sqrt(eigval)[:, None] * X)
    return X + mu[:, None]


def rinvwish(
    n: int, v: float, S: np.ndarray, rng: np.random.Generator
) -> np.ndarray:
    """Draw ``n`` inverse-Wishart matrices via the Bartlett decomposition.

    Parameters
    ----------
    n : int
        Number of draws.
    v : float
        Degrees of freedom, must exceed ``p - 1``.
    S : ndarray
        Scale matrix ``(p, p)``, symmetric positive definite.
    rng : numpy.random.Generator
        Source of randomness.

    Returns
    -------
    ndarray
        Draws with shape ``(n, p, p)``.  The mean of a draw is
        ``S / (v - p - 1)`` for ``v > p + 1``.
    """

    S = np.atleast_2d(np.asarray(S, dtype=float))
    p = S.shape[0]
    if v <= p - 1:
        raise ValueError(f"Degrees of freedom {v} must exceed p - 1 = {p - 1}")
    L = chol_lower(inv_sympd(S))
    sims = np.zeros((n, p, p))
    rows, cols = np.tril_indices(p, k=-1)
    for j in range(n):
        A = np.zeros((p, p))
        A[np.diag_indices(p)] = np.sqrt(rng.chisquare(v - np.arange(p)))
        A[rows, cols] = rng.standard_normal(rows.size)
        LA = np.tril(L @ A)
        try:
            LA_inv = linalg.solve_triangular(LA, np.eye(p), lower=True)
        except np.linalg.LinAlgError as err:
            raise NumericalError(f"Bartlett factor is singular: {err}") from err
        sims[j] = LA_inv.T @ LA_inv
    return sims


def invchisq(nu: float, scale: float, rng: np.random.Generator) -> float:
    """Draw from a scaled inverse chi-squared distribution.

    Equivalent in law to ``1 / sum(x**2)`` with ``x`` made of ``nu``
    standard normals divided by ``sqrt(scale)``.
    """

    if nu <= 0:
        raise ValueError(f"nu must be positive, got {nu}")
    if scale <= 0:
        raise NumericalError(f"scale must be positive, got {scale}")
    return float(scale / rng.chisquare(nu))
