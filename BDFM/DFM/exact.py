"""Exact Kalman smoother and maximum likelihood updates.

Unlike the disturbance smoother in :mod:`BDFM.DFM.kalman`, this smoother
keeps the filtered and predicted state covariances of every period and
runs the Rauch-Tung-Striebel backward pass.  The smoothed covariances
enter the sufficient statistics of the closed-form parameter updates in
:func:`kest_exact` and :func:`kseas`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np
from scipy import sparse

from ..exceptions import DimensionError
from .kalman import KalmanConfig
from .linalg import (
    chol_lower,
    comp_form,
    log_det_sympd,
    solve,
    solve_sympd,
    sp_rows,
    symmetrize,
)

logger = logging.getLogger(__name__)


@dataclass
class KSmootherResult:
    """Output of :func:`ksmoother`.

    Attributes
    ----------
    Z : ndarray
        Smoothed states ``(T, sA)``.
    Z_filt : ndarray
        Filtered states ``(T, sA)``.
    Z_pred : ndarray
        Predicted states ``(T, sA)``.
    Ps : ndarray
        Smoothed state covariances ``(T, sA, sA)``.
    Ps_lag : ndarray
        ``Cov(z_t, z_{t-1} | Y)`` for ``t >= 1``; the first slice is zero.
    P_filt, P_pred : ndarray
        Filtered and predicted covariances ``(T, sA, sA)``.
    Ys : ndarray
        Fitted observations ``(T, k)``.
    Yf : ndarray
        Data with missing values replaced by their fitted values.
    loglik : float
        Gaussian log-likelihood (without the ``2 pi`` constant).
    """

    Z: np.ndarray
    Z_filt: np.ndarray
    Z_pred: np.ndarray
    Ps: np.ndarray
    Ps_lag: np.ndarray
    P_filt: np.ndarray = field(repr=False)
    P_pred: np.ndarray = field(repr=False)
    Ys: np.ndarray = field(repr=False)
    Yf: np.ndarray = field(repr=False)
    loglik: float = 0.0


@dataclass
class ExactMLResult:
    """One maximum likelihood update of a dynamic factor model.

    ``B``, ``q`` and ``H`` are normalised so that ``q`` is the identity
    up to rounding; ``X`` are the matching factors.
    """

    B: np.ndarray
    q: np.ndarray
    H: np.ndarray
    R: np.ndarray
    itc: np.ndarray
    X: np.ndarray
    Ys: np.ndarray
    loglik: float


@dataclass
class SeasonalResult:
    """One update of the single-factor seasonal adjustment model.

    Attributes
    ----------
    B : ndarray
        AR coefficients ``(1, p)``.
    q : float
        Factor shock variance, rescaled by the loading ``h``.
    M : ndarray
        Seasonal loadings ``(1, n_seasonal)``.
    r : float
        Observation noise variance.
    h : float
        Loading of the series on the factor.
    Y_sa : ndarray
        Seasonally adjusted series ``h * z_t``.
    Y_hat : ndarray
        Fitted series ``h * z_t + N M'``.
    loglik : float
        Log-likelihood of the smoothing pass.
    """

    B: np.ndarray
    q: float
    M: np.ndarray
    r: float
    h: float
    Y_sa: np.ndarray = field(repr=False)
    Y_hat: np.ndarray = field(repr=False)
    loglik: float = 0.0


# ----------------------------------------------------------------------
# Smoother
# ----------------------------------------------------------------------

def ksmoother(
    A: np.ndarray,
    Q: np.ndarray,
    HJ,
    R: np.ndarray,
    Y: np.ndarray,
    config: KalmanConfig | None = None,
) -> KSmootherResult:
    """Kalman filter and Rauch-Tung-Striebel smoother.

    Parameters
    ----------
    A : ndarray
        State transition matrix ``(sA, sA)``.
    Q : ndarray
        State shock covariance ``(sA, sA)``.
    HJ : ndarray or sparse matrix
        Observation matrix ``(k, sA)``.
    R : ndarray
        Observation shock covariance ``(k, k)``.
    Y : ndarray
        Observations ``(T, k)``; non-finite entries are missing.
    config : KalmanConfig, optional
        Filter settings.
    """

    config = config or KalmanConfig()
    A = np.asarray(A.toarray() if sparse.issparse(A) else A, dtype=float)
    Q = np.asarray(Q.toarray() if sparse.issparse(Q) else Q, dtype=float)
    HJ = sparse.csr_matrix(HJ, dtype=float)
    R = np.atleast_2d(np.asarray(R, dtype=float))
    Y = np.asarray(Y, dtype=float)
    if Y.ndim == 1:
        Y = Y[:, None]
    Tn, k = Y.shape
    sA = A.shape[0]
    if A.shape != (sA, sA) or Q.shape != (sA, sA):
        raise DimensionError(f"A {A.shape} and Q {Q.shape} must be square and agree")
    if HJ.shape != (k, sA) or R.shape != (k, k):
        raise DimensionError(
            f"Data dimensions {Y.shape} do not match HJ {HJ.shape} and R {R.shape}"
        )

    Zp = np.zeros(sA)
    P1 = config.initial_state_variance * np.eye(sA)
    Z_filt = np.zeros((Tn, sA))
    Z_pred = np.zeros((Tn, sA))
    P_filt = np.zeros((Tn, sA, sA))
    P_pred = np.zeros((Tn, sA, sA))
    loglik = 0.0
    for t in range(Tn):
        Z_pred[t] = Zp
        P_pred[t] = P1
        y_t = Y[t]
        ind = np.flatnonzero(np.isfinite(y_t))
        if ind.size == 0:
            Z_filt[t] = Zp
            P_filt[t] = P1
        else:
            Hn = sp_rows(HJ, ind)
            C = np.asarray(Hn @ P1).T
            S = symmetrize(np.asarray(Hn @ C) + R[np.ix_(ind, ind)])
            PE = y_t[ind] - np.asarray(Hn @ Zp).reshape(-1)
            SC = solve_sympd(S, C.T)
            Z_filt[t] = Zp + SC.T @ PE
            P_filt[t] = symmetrize(P1 - C @ SC)
            loglik += -0.5 * log_det_sympd(S) - 0.5 * float(PE @ solve_sympd(S, PE))
        Zp = A @ Z_filt[t]
        P1 = symmetrize(A @ P_filt[t] @ A.T + Q)

    Zs = Z_filt.copy()
    Ps = P_filt.copy()
    Ps_lag = np.zeros((Tn, sA, sA))
    for t in range(Tn - 1, 0, -1):
        # G = P_filt[t-1] A' P_pred[t]^{-1}
        G = solve(P_pred[t], A @ P_filt[t - 1]).T
        Zs[t - 1] = Z_filt[t - 1] + G @ (Zs[t] - Z_pred[t])
        Ps[t - 1] = symmetrize(P_filt[t - 1] - G @ (P_pred[t] - Ps[t]) @ G.T)
        Ps_lag[t] = Ps[t] @ G.T

    Ys = np.asarray(HJ @ Zs.T).T
    missing = ~np.isfinite(Y)
    Yf = np.where(missing, Ys, Y)
    logger.debug("ksmoother: T=%d, loglik=%.4f", Tn, loglik)
    return KSmootherResult(
        Z=Zs,
        Z_filt=Z_filt,
        Z_pred=Z_pred,
        Ps=Ps,
        Ps_lag=Ps_lag,
        P_filt=P_filt,
        P_pred=P_pred,
        Ys=Ys,
        Yf=Yf,
        loglik=loglik,
    )


# ----------------------------------------------------------------------
# Maximum likelihood updates
# ----------------------------------------------------------------------

def kest_exact(
    B: np.ndarray,
    q: np.ndarray,
    H: np.ndarray,
    R: np.ndarray,
    Y: np.ndarray,
    itc: np.ndarray | None = None,
    config: KalmanConfig | None = None,
) -> ExactMLResult:
    """Smooth under the current parameters and return updated ones.

    The state carries one lag more than the VAR so that the smoothed
    covariances contain the cross moments of current and lagged factors.

    Parameters
    ----------
    B : ndarray
        Transition matrix ``(m, m * p)``.
    q : ndarray
        Factor shock covariance ``(m, m)``.
    H : ndarray
        Loadings ``(k, m)``.
    R : ndarray
        Observation shock covariance ``(k, k)`` or its diagonal ``(k,)``.
    Y : ndarray
        Data ``(T, k)`` with missing values as ``NaN``.
    itc : ndarray, optional
        Intercepts ``(k,)``; zero if omitted.
    config : KalmanConfig, optional
        Filter settings.
    """

    B = np.atleast_2d(np.asarray(B, dtype=float))
    q = np.atleast_2d(np.asarray(q, dtype=float))
    H = np.atleast_2d(np.asarray(H, dtype=float))
    R = np.asarray(R, dtype=float)
    if R.ndim == 1:
        R = np.diag(R)
    Y = np.asarray(Y, dtype=float)
    Tn, k = Y.shape
    m, sA = B.shape
    p = sA // m
    itc = np.zeros(k) if itc is None else np.asarray(itc, dtype=float).reshape(-1)
    if sA % m != 0 or q.shape != (m, m) or H.shape != (k, m) or R.shape != (k, k):
        raise DimensionError(
            f"Incompatible parameters: B {B.shape}, q {q.shape}, H {H.shape}, R {R.shape}"
        )
    if itc.shape != (k,):
        raise DimensionError(f"itc must have {k} entries, got {itc.size}")

    n = m * (p + 1)
    A = comp_form(np.hstack([B, np.zeros((m, m))]))
    Q = np.zeros((n, n))
    Q[:m, :m] = q
    HJ = np.hstack([H, np.zeros((k, n - m))])
    smth = ksmoother(A, Q, HJ, R, Y - itc, config)
    Z, Ps = smth.Z, smth.Ps

    # transition equation
    x = Z[:, :m]
    Zx = Z[:, m:]
    axz = Ps[:, :m, m:].sum(axis=0)
    azz = Ps[:, m:, m:].sum(axis=0)
    axx = Ps[:, :m, :m].sum(axis=0)
    B_new = solve(Zx.T @ Zx + azz, Zx.T @ x + axz.T).T
    e = x - Zx @ B_new.T
    q_new = symmetrize(
        (e.T @ e + axx - axz @ B_new.T - B_new @ axz.T + B_new @ azz @ B_new.T) / Tn
    )

    # observation equation, series by series on observed periods
    X1 = np.hstack([np.ones((Tn, 1)), x])
    itc_new = np.zeros(k)
    H_new = np.zeros((k, m))
    R_new = np.zeros((k, k))
    for j in range(k):
        ind = np.isfinite(Y[:, j])
        y = Y[ind, j]
        xj = X1[ind]
        aj = np.zeros((m + 1, m + 1))
        aj[1:, 1:] = Ps[ind, :m, :m].sum(axis=0)
        h = solve(xj.T @ xj + aj, xj.T @ y)
        resid = y - xj @ h
        itc_new[j] = h[0]
        H_new[j] = h[1:]
        R_new[j, j] = (resid @ resid + h[1:] @ aj[1:, 1:] @ h[1:]) / y.size

    # normalise so the factor shocks have identity covariance
    Thet = chol_lower(q_new)
    ThetI = solve(Thet, np.eye(m))
    H_new = H_new @ Thet
    rot = np.kron(np.eye(p), ThetI) @ comp_form(B_new) @ np.kron(np.eye(p), Thet)
    B_new = rot[:m]
    q_new = symmetrize(ThetI @ q_new @ ThetI.T)
    X = x @ ThetI.T
    Ys = X @ H_new.T
    return ExactMLResult(
        B=B_new,
        q=q_new,
        H=H_new,
        R=R_new,
        itc=itc_new,
        X=X,
        Ys=Ys,
        loglik=smth.loglik,
    )


def kseas(
    B: np.ndarray,
    q: float,
    M: np.ndarray,
    r: float,
    Y: np.ndarray,
    N: np.ndarray,
    config: KalmanConfig | None = None,
) -> SeasonalResult:
    """One update of a single series with an AR(p) factor and seasonal terms.

    The model is ``y_t = h z_t + N_t M' + e_t`` with ``z_t`` an AR(p)
    process.  Seasonal effects are removed before smoothing, which gives
    the same states as smoothing with exogenous regressors, and are
    re-estimated jointly with ``h`` afterwards.

    Parameters
    ----------
    B : ndarray
        AR coefficients ``(1, p)``.
    q : float
        Factor shock variance.
    M : ndarray
        Seasonal loadings ``(1, n_seasonal)``.
    r : float
        Observation noise variance.
    Y : ndarray
        The series ``(T,)`` or ``(T, 1)``.
    N : ndarray
        Seasonal regressors ``(T, n_seasonal)``; must be fully observed.
    config : KalmanConfig, optional
        Filter settings.
    """

    B = np.atleast_2d(np.asarray(B, dtype=float))
    M = np.atleast_2d(np.asarray(M, dtype=float))
    y_all = np.asarray(Y, dtype=float).reshape(-1)
    N = np.asarray(N, dtype=float)
    if N.ndim == 1:
        N = N[:, None]
    Tn = y_all.size
    p = B.shape[1]
    nN = N.shape[1]
    if B.shape[0] != 1:
        raise DimensionError(f"B must have a single row, got {B.shape}")
    if N.shape[0] != Tn or M.shape != (1, nN):
        raise DimensionError(
            f"Incompatible seasonal terms: Y {y_all.shape}, N {N.shape}, M {M.shape}"
        )
    if not np.isfinite(N).all():
        raise ValueError("Seasonal regressors must not contain missing values")

    A = comp_form(np.hstack([B, np.zeros((1, 1))]))
    Q = np.zeros((p + 1, p + 1))
    Q[0, 0] = q
    HJ = np.zeros((1, p + 1))
    HJ[0, 0] = 1.0
    Ydm = y_all - N @ M[0]
    smth = ksmoother(A, Q, HJ, np.array([[r]]), Ydm[:, None], config)
    Z, Ps = smth.Z, smth.Ps

    x = Z[:, 0]
    Zx = Z[:, 1:]
    axz = Ps[:, 0, 1:].sum(axis=0)
    azz = Ps[:, 1:, 1:].sum(axis=0)
    axx = Ps[:, 0, 0].sum()
    b = solve(Zx.T @ Zx + azz, Zx.T @ x + axz)
    e = x - Zx @ b
    q_new = float((e @ e + axx - 2.0 * axz @ b + b @ azz @ b) / Tn)

    ind = np.isfinite(y_all)
    X1 = np.column_stack([x, N])
    y = y_all[ind]
    xx = X1[ind]
    a = np.zeros((nN + 1, nN + 1))
    a[0, 0] = Ps[ind, 0, 0].sum()
    beta = solve(xx.T @ xx + a, xx.T @ y)
    h = float(beta[0])
    resid = y - xx @ beta
    r_new = float((resid @ resid + h * a[0, 0] * h) / y.size)
    M_new = beta[1:][None, :]

    return SeasonalResult(
        B=b[None, :],
        q=h * q_new * h,
        M=M_new,
        r=r_new,
        h=h,
        Y_sa=h * x,
        Y_hat=h * x + N @ M_new[0],
        loglik=smth.loglik,
    )
