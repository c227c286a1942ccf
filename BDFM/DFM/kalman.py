"""Kalman filtering and disturbance smoothing for uniform frequency DFMs.

The filter handles an arbitrary missing-data pattern: at every period
only the observed rows of the loading matrix and the matching block of
the observation noise covariance enter the update.  The smoother follows
Durbin and Koopman (2012): a backward recursion for the smoothing
residual ``r`` followed by a forward pass that maps ``r`` into smoothed
states, so no state covariance is ever inverted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np
from scipy import sparse

from ..exceptions import DimensionError
from .linalg import inv_sympd, log_det_sympd, make_sparse, sp_rows, symmetrize

logger = logging.getLogger(__name__)


@dataclass
class KalmanConfig:
    """Settings shared by the filters.

    Parameters
    ----------
    initial_state_variance : float, default 1e5
        Diffuse initialisation: the initial state covariance is this
        multiple of the identity and the initial state mean is zero.
    """

    initial_state_variance: float = 1e5

    def __post_init__(self) -> None:
        if self.initial_state_variance <= 0:
            raise ValueError(
                f"initial_state_variance must be positive, got {self.initial_state_variance}"
            )


@dataclass
class FilterStep:
    """Quantities kept from one filter step for the backward pass.

    Matrices are sized to the number of series observed in that period.
    Periods without observations carry zero-sized placeholders.
    """

    H: sparse.csr_matrix
    S_inv: np.ndarray
    K: np.ndarray
    PE: np.ndarray

    @property
    def n_obs(self) -> int:
        return self.PE.shape[0]

    @classmethod
    def missing(cls, sA: int) -> "FilterStep":
        return cls(
            H=sparse.csr_matrix((0, sA)),
            S_inv=np.zeros((0, 0)),
            K=np.zeros((sA, 0)),
            PE=np.zeros(0),
        )


@dataclass
class DisturbanceSmootherResult:
    """Output of :func:`dsmooth`.

    Attributes
    ----------
    Ys : ndarray
        Fitted observations ``(T, k)`` from the smoothed factors.
    loglik : float
        Gaussian log-likelihood (without the ``2 pi`` constant).
    Z_filt : ndarray
        Filtered states ``(T, m * p)``.
    Z : ndarray
        Smoothed states ``(T, m * p)``.
    steps : list of FilterStep
        Per-period filter quantities.
    r : ndarray
        Smoothing residuals ``(T + 1, m * p)``.
    """

    Ys: np.ndarray
    loglik: float
    Z_filt: np.ndarray
    Z: np.ndarray
    steps: list[FilterStep] = field(repr=False)
    r: np.ndarray = field(repr=False)


# ----------------------------------------------------------------------
# Object interface
# ----------------------------------------------------------------------

class KalmanFilterDFM:
    """Kalman filter and disturbance smoother bound to a :class:`DFMModel`."""

    def __init__(self, model, config: KalmanConfig | None = None) -> None:
        if not model.is_initialized:
            raise ValueError("Model must be initialized before filtering")
        self.model = model
        self.config = config or KalmanConfig()
        self.result: DisturbanceSmootherResult | None = None

    def filter(self, Y: np.ndarray) -> DisturbanceSmootherResult:
        """Filter and smooth ``Y`` under the current model parameters."""
        m = self.model
        self.result = dsmooth(m.B, m.q, m.H, m.R_matrix, Y, self.config)
        return self.result

    def smooth(self, Y: np.ndarray) -> np.ndarray:
        """Return only the smoothed state path."""
        m = self.model
        return dsuf(m.B, m.q, m.H, m.R_matrix, Y, self.config)

    def log_likelihood(self, Y: np.ndarray) -> float:
        """Log-likelihood of ``Y`` under the current model parameters."""
        return self.filter(Y).loglik


# ----------------------------------------------------------------------
# Functional interface
# ----------------------------------------------------------------------

def dsmooth(
    B: np.ndarray,
    q: np.ndarray,
    H: np.ndarray,
    R: np.ndarray,
    Y: np.ndarray,
    config: KalmanConfig | None = None,
) -> DisturbanceSmootherResult:
    """Disturbance smoother for a uniform frequency factor model.

    Parameters
    ----------
    B : ndarray
        Transition matrix ``(m, m * p)``.
    q : ndarray
        Covariance of the factor shocks ``(m, m)``.
    H : ndarray
        Loadings ``(k, m)``.
    R : ndarray
        Covariance of the observation shocks ``(k, k)``.
    Y : ndarray
        Observations ``(T, k)``; non-finite entries are missing.
    config : KalmanConfig, optional
        Filter settings.
    """

    config = config or KalmanConfig()
    A, Q, HJ, R, Y = _system_matrices(B, q, H, R, Y)
    c = config.initial_state_variance
    Z_filt, steps, loglik = _filter_dfm(A, Q, HJ, R, Y, c)
    r, Zs = _disturbance_smooth(A, Q, steps, c)
    m = np.atleast_2d(B).shape[0]
    Ys = Zs[:, :m] @ np.asarray(H, dtype=float).T
    logger.debug("dsmooth: T=%d, loglik=%.4f", Y.shape[0], loglik)
    return DisturbanceSmootherResult(
        Ys=Ys, loglik=loglik, Z_filt=Z_filt, Z=Zs, steps=steps, r=r
    )


def dsuf(
    B: np.ndarray,
    q: np.ndarray,
    H: np.ndarray,
    R: np.ndarray,
    Y: np.ndarray,
    config: KalmanConfig | None = None,
) -> np.ndarray:
    """Smoothed state path ``(T, m * p)`` only; see :func:`dsmooth`."""
    config = config or KalmanConfig()
    A, Q, HJ, R, Y = _system_matrices(B, q, H, R, Y)
    c = config.initial_state_variance
    _, steps, _ = _filter_dfm(A, Q, HJ, R, Y, c)
    _, Zs = _disturbance_smooth(A, Q, steps, c)
    return Zs


# ----------------------------------------------------------------------
# Internal helper routines
# ----------------------------------------------------------------------

def _system_matrices(B, q, H, R, Y):
    B = np.atleast_2d(np.asarray(B, dtype=float))
    q = np.atleast_2d(np.asarray(q, dtype=float))
    H = np.atleast_2d(np.asarray(H, dtype=float))
    R = np.atleast_2d(np.asarray(R, dtype=float))
    Y = np.asarray(Y, dtype=float)
    if Y.ndim == 1:
        Y = Y[:, None]
    m = B.shape[0]
    sA = B.shape[1]
    k = H.shape[0]
    if sA % m != 0:
        raise DimensionError(f"B must have shape (m, m * p), got {B.shape}")
    if q.shape != (m, m):
        raise DimensionError(f"q must have shape ({m}, {m}), got {q.shape}")
    if H.shape[1] != m:
        raise DimensionError(f"H must have {m} columns, got {H.shape[1]}")
    if R.shape != (k, k):
        raise DimensionError(f"R must have shape ({k}, {k}), got {R.shape}")
    if Y.ndim != 2 or Y.shape[1] != k:
        raise DimensionError(f"Data dimensions {Y.shape} do not match {k} series")

    A = np.vstack([B, np.hstack([np.eye(sA - m), np.zeros((sA - m, m))])])
    Q = np.zeros((sA, sA))
    Q[:m, :m] = q
    HJ = make_sparse(np.hstack([H, np.zeros((k, sA - m))]))
    return A, Q, HJ, R, Y


def _filter_dfm(
    A: np.ndarray,
    Q: np.ndarray,
    HJ: sparse.csr_matrix,
    R: np.ndarray,
    Y: np.ndarray,
    c: float,
) -> tuple[np.ndarray, list[FilterStep], float]:
    Tn = Y.shape[0]
    sA = A.shape[0]
    P1 = c * np.eye(sA)
    Zp = np.zeros(sA)
    Z = np.zeros((Tn, sA))
    steps: list[FilterStep] = []
    loglik = 0.0
    for t in range(Tn):
        y_t = Y[t]
        ind = np.flatnonzero(np.isfinite(y_t))
        if ind.size == 0:
            Z[t] = Zp
            P0 = P1
            steps.append(FilterStep.missing(sA))
        else:
            Hn = sp_rows(HJ, ind)
            Rn = R[np.ix_(ind, ind)]
            HP = np.asarray(Hn @ P1)
            S = symmetrize(np.asarray(Hn @ HP.T) + Rn)
            Si = inv_sympd(S)
            K = HP.T @ Si
            PE = y_t[ind] - np.asarray(Hn @ Zp).reshape(-1)
            Z[t] = Zp + K @ PE
            P0 = symmetrize(P1 - K @ HP)
            loglik += -0.5 * log_det_sympd(S) - 0.5 * float(PE @ Si @ PE)
            steps.append(FilterStep(H=Hn, S_inv=Si, K=K, PE=PE))
        Zp = A @ Z[t]
        P1 = symmetrize(A @ P0 @ A.T + Q)
    return Z, steps, loglik


def _disturbance_smooth(
    A: np.ndarray, Q: np.ndarray, steps: list[FilterStep], c: float
) -> tuple[np.ndarray, np.ndarray]:
    Tn = len(steps)
    sA = A.shape[0]
    r = np.zeros((Tn + 1, sA))
    # r[t] pairs with step t; r[Tn] is the terminal zero
    for t in range(Tn, 0, -1):
        st = steps[t - 1]
        if st.n_obs == 0:
            r[t - 1] = A.T @ r[t]
            continue
        KH = np.asarray(st.H.T @ st.K.T).T
        L = A - A @ KH
        r[t - 1] = np.asarray(st.H.T @ (st.S_inv @ st.PE)).reshape(-1) + L.T @ r[t]

    Zs = np.zeros((Tn, sA))
    Zs[0] = c * r[0]
    for t in range(Tn - 1):
        Zs[t + 1] = A @ Zs[t] + Q @ r[t + 1]
    return r, Zs
