"""Regressions with missing observations and conjugate priors.

Rows with missing values are deleted, never imputed.  Each output column
uses its own mask so one series' gaps do not remove rows from another.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from ..exceptions import DimensionError
from .control import CancellationToken
from .linalg import inv_sympd, solve_sympd, symmetrize
from .sampling import invchisq, mvrnrm, rinvwish

logger = logging.getLogger(__name__)

DEFAULT_BURN = 500


@dataclass
class BRegResult:
    """Posterior summary of a Bayesian regression.

    Attributes
    ----------
    B : ndarray
        Element-wise posterior median of the coefficients ``(k, m)``.
    q : ndarray
        Posterior median of the shock covariance ``(k, k)`` or, for the
        diagonal model, of the shock variances ``(k,)``.
    B_store : ndarray
        Retained coefficient draws ``(reps, k, m)``.
    Q_store : ndarray
        Retained covariance draws ``(reps, k, k)`` or variance draws
        ``(reps, k)``.
    """

    B: np.ndarray
    q: np.ndarray
    B_store: np.ndarray
    Q_store: np.ndarray


@dataclass
class PrincipalComponents:
    """Principal components of a data set with missing values."""

    Sig: np.ndarray
    loadings: np.ndarray
    components: np.ndarray


# ----------------------------------------------------------------------
# Masking helpers
# ----------------------------------------------------------------------

def _check_xy(X: np.ndarray, Y: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    X = np.asarray(X, dtype=float)
    Y = np.asarray(Y, dtype=float)
    if X.ndim == 1:
        X = X[:, None]
    if Y.ndim == 1:
        Y = Y[:, None]
    if X.shape[0] != Y.shape[0]:
        raise DimensionError(
            f"X has {X.shape[0]} rows but Y has {Y.shape[0]}"
        )
    return X, Y


def observed_rows(X: np.ndarray, y: np.ndarray) -> np.ndarray:
    """Boolean mask of rows where all of ``X`` and ``y`` are finite."""
    return np.isfinite(X).all(axis=1) & np.isfinite(y)


def masked_column(X: np.ndarray, Y: np.ndarray, j: int) -> tuple[np.ndarray, np.ndarray]:
    """Return copies of ``X`` and ``Y[:, j]`` restricted to complete rows."""
    y = Y[:, j]
    keep = observed_rows(X, y)
    return X[keep], y[keep]


# ----------------------------------------------------------------------
# Least squares and principal components
# ----------------------------------------------------------------------

def quick_reg(X: np.ndarray, Y: np.ndarray) -> np.ndarray:
    """Least squares regression of each column of ``Y`` on ``X``.

    Rows where any predictor or the response is missing are dropped
    separately for every column of ``Y``.

    Returns
    -------
    ndarray
        Coefficients with shape ``(X.shape[1], Y.shape[1])``.
    """

    X, Y = _check_xy(X, Y)
    B = np.zeros((X.shape[1], Y.shape[1]))
    for j in range(Y.shape[1]):
        xx, y = masked_column(X, Y, j)
        B[:, j] = solve_sympd(xx.T @ xx, xx.T @ y)
    return B


def prin_comp(Y: np.ndarray, m: int) -> PrincipalComponents:
    """Principal components of ``Y`` using pairwise complete observations.

    The second moment matrix is built from pairwise products with
    missing pairs skipped, so it need not be positive semi-definite.
    Components of rows with missing values are ``NaN``.
    """

    Y = np.asarray(Y, dtype=float)
    k = Y.shape[1]
    if not 0 < m <= k:
        raise DimensionError(f"m must be between 1 and {k}, got {m}")
    Sig = np.zeros((k, k))
    for j in range(k):
        for i in range(j + 1):
            prod = Y[:, j] * Y[:, i]
            ok = np.isfinite(prod)
            val = prod[ok].sum() / ok.sum() if ok.any() else 0.0
            Sig[j, i] = val
            Sig[i, j] = val
    eigval, eigvec = np.linalg.eigh(Sig)
    eigvec = eigvec[:, ::-1]
    loadings = eigvec[:, :m]
    components = Y @ loadings
    return PrincipalComponents(Sig=Sig, loadings=loadings, components=components)


# ----------------------------------------------------------------------
# Conjugate draws
# ----------------------------------------------------------------------

def draw_row(
    xx: np.ndarray,
    yy: np.ndarray,
    prior_row: np.ndarray,
    lam: float,
    nu: float,
    rng: np.random.Generator,
) -> tuple[np.ndarray, float]:
    """One Normal / inverse chi-squared draw for a single equation.

    ``xx`` and ``yy`` must already be free of missing rows.  The variance
    draw uses ``scl = e'e + (mu - b)' lam (mu - b)`` with no additional
    prior scale term.  With no rows left the scale is zero, so the draw
    degenerates to the prior mean with zero variance.

    Returns
    -------
    beta : ndarray
        Coefficient draw.
    r : float
        Variance draw.
    """

    m = xx.shape[1]
    prior_row = np.asarray(prior_row, dtype=float).reshape(-1)
    if yy.size == 0:
        return prior_row.copy(), 0.0
    Lam = lam * np.eye(m)
    v_1 = inv_sympd(symmetrize(xx.T @ xx + Lam))
    mu = v_1 @ (xx.T @ yy + Lam @ prior_row)
    resid = yy - xx @ mu
    dev = mu - prior_row
    scl = float(resid @ resid + dev @ Lam @ dev)
    r = invchisq(nu, scl, rng)
    beta = mvrnrm(1, mu, v_1 * r, rng)[:, 0]
    return beta, r


def niw_posterior(
    X: np.ndarray, Y: np.ndarray, Bp: np.ndarray, lam: float
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Normal-inverse-Wishart posterior of ``Y = X B' + E``.

    Returns
    -------
    v_1 : ndarray
        ``(X'X + lam I)^{-1}``, the coefficient covariance up to ``q``.
    Mu : ndarray
        Posterior mean of ``B'`` with shape ``(m, k)``.
    scale : ndarray
        Inverse-Wishart scale ``I + E'E + (Mu - Bp')' lam (Mu - Bp')``.
    """

    m = X.shape[1]
    k = Y.shape[1]
    Lam = lam * np.eye(m)
    v_1 = inv_sympd(symmetrize(X.T @ X + Lam))
    Mu = v_1 @ (X.T @ Y + Lam @ Bp.T)
    resid = Y - X @ Mu
    dev = Mu - Bp.T
    scale = symmetrize(np.eye(k) + resid.T @ resid + dev.T @ Lam @ dev)
    return v_1, Mu, scale


def draw_coefficients(
    v_1: np.ndarray, Mu: np.ndarray, q: np.ndarray, rng: np.random.Generator
) -> np.ndarray:
    """Draw ``B`` with ``vec(B) ~ N(vec(Mu'), v_1 kron q)``."""
    m, k = Mu.shape
    mu = Mu.T.reshape(-1, order="F")
    Beta = mvrnrm(1, mu, symmetrize(np.kron(v_1, q)), rng)
    return Beta[:, 0].reshape((k, m), order="F")


def _breg_step(X, Y, Bp, lam, nu, rng):
    v_1, Mu, scale = niw_posterior(X, Y, Bp, lam)
    q = rinvwish(1, nu + Y.shape[0], scale, rng)[0]
    return draw_coefficients(v_1, Mu, q, rng), q


def breg(
    X: np.ndarray,
    Y: np.ndarray,
    Bp: np.ndarray,
    lam: float,
    nu: float,
    reps: int,
    burn: int = DEFAULT_BURN,
    rng: np.random.Generator | None = None,
    cancel: CancellationToken | None = None,
) -> BRegResult:
    """Bayesian multivariate regression with a Normal-inverse-Wishart prior.

    Does not accept missing values.

    Parameters
    ----------
    X : ndarray
        Regressors ``(T, m)``.
    Y : ndarray
        Dependent variables ``(T, k)``.
    Bp : ndarray
        Prior mean of the coefficients ``(k, m)``.
    lam : float
        Prior tightness; the prior precision is ``lam * I``.
    nu : float
        Prior degrees of freedom of the shock covariance.
    reps : int
        Number of retained draws.
    burn : int, default 500
        Number of discarded draws.
    rng : numpy.random.Generator, optional
        Source of randomness; a fresh unseeded generator if omitted.
    cancel : CancellationToken, optional
        Checked once per draw.
    """

    X, Y = _check_xy(X, Y)
    if not (np.isfinite(X).all() and np.isfinite(Y).all()):
        raise ValueError("breg does not accept missing values; use breg_diag")
    rng = np.random.default_rng() if rng is None else rng
    k, m = Y.shape[1], X.shape[1]
    Bp = np.asarray(Bp, dtype=float).reshape(k, m)

    B_store = np.zeros((reps, k, m))
    Q_store = np.zeros((reps, k, k))
    for rep in range(burn + reps):
        if cancel is not None:
            cancel.raise_if_cancelled(max(0, rep - burn))
        B, q = _breg_step(X, Y, Bp, lam, nu, rng)
        if rep >= burn:
            B_store[rep - burn] = B
            Q_store[rep - burn] = q
        logger.debug("breg iteration %d", rep)

    return BRegResult(
        B=np.median(B_store, axis=0),
        q=np.median(Q_store, axis=0),
        B_store=B_store,
        Q_store=Q_store,
    )


def breg_diag(
    X: np.ndarray,
    Y: np.ndarray,
    Bp: np.ndarray,
    lam: float,
    nu: float,
    reps: int,
    burn: int = DEFAULT_BURN,
    rng: np.random.Generator | None = None,
    cancel: CancellationToken | None = None,
) -> BRegResult:
    """Bayesian regression with independent shocks per equation.

    Accepts missing values: for each column of ``Y`` the rows where that
    column or any regressor is missing are dropped.  The variance draws
    use ``nu + T`` degrees of freedom for every column, where ``T`` counts
    all rows including the dropped ones.  Arguments are as in
    :func:`breg`; ``q`` in the result is the vector of shock variances.
    """

    X, Y = _check_xy(X, Y)
    rng = np.random.default_rng() if rng is None else rng
    T = X.shape[0]
    k, m = Y.shape[1], X.shape[1]
    Bp = np.asarray(Bp, dtype=float).reshape(k, m)

    columns = [masked_column(X, Y, j) for j in range(k)]
    B = np.zeros((k, m))
    q = np.zeros(k)
    B_store = np.zeros((reps, k, m))
    Q_store = np.zeros((reps, k))
    for rep in range(burn + reps):
        if cancel is not None:
            cancel.raise_if_cancelled(max(0, rep - burn))
        for j, (xx, yy) in enumerate(columns):
            B[j], q[j] = draw_row(xx, yy, Bp[j], lam, nu + T, rng)
        if rep >= burn:
            B_store[rep - burn] = B
            Q_store[rep - burn] = q

    return BRegResult(
        B=np.median(B_store, axis=0),
        q=np.median(Q_store, axis=0),
        B_store=B_store,
        Q_store=Q_store,
    )
