"""Forward simulation used for simulation smoothing.

Following Durbin and Koopman (2002), a draw of the factors given the
data is ``Z_sim + smooth(Y - Y_sim)`` where ``(Z_sim, Y_sim)`` is a path
simulated from the model.  :func:`fsim_uf` produces that path, copying
the missing-data pattern of the real data onto ``Y_sim``.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from ..exceptions import DimensionError
from .sampling import mvrnrm


@dataclass
class SimulatedPath:
    """A simulated state/observation pair.

    Attributes
    ----------
    Z : ndarray
        Simulated states ``(T, m * p)``.
    Yd : ndarray
        Simulated observations ``(T, k)``, ``NaN`` where the data are missing.
    Eps : ndarray
        Observation shocks ``(T, k)`` (drawn for every cell).
    """

    Z: np.ndarray
    Yd: np.ndarray
    Eps: np.ndarray


def fsim_uf(
    B: np.ndarray,
    q: np.ndarray,
    H: np.ndarray,
    R: np.ndarray,
    Y: np.ndarray,
    rng: np.random.Generator,
) -> SimulatedPath:
    """Simulate states and observations forward under ``(B, q, H, R)``.

    Parameters
    ----------
    B : ndarray
        Transition matrix ``(m, m * p)``.
    q : ndarray
        Factor shock covariance ``(m, m)``.
    H : ndarray
        Loadings ``(k, m)``.
    R : ndarray
        Observation shock covariance ``(k, k)``.
    Y : ndarray
        Data ``(T, k)``; only its missing-value pattern is used.
    rng : numpy.random.Generator
        Source of randomness.
    """

    B = np.atleast_2d(np.asarray(B, dtype=float))
    q = np.atleast_2d(np.asarray(q, dtype=float))
    H = np.atleast_2d(np.asarray(H, dtype=float))
    R = np.atleast_2d(np.asarray(R, dtype=float))
    Y = np.asarray(Y, dtype=float)
    if Y.ndim == 1:
        Y = Y[:, None]
    Tn = Y.shape[0]
    m, sA = B.shape
    p = sA // m
    k = H.shape[0]
    if Y.shape[1] != k or R.shape != (k, k) or H.shape[1] != m:
        raise DimensionError(
            f"Incompatible shapes: Y {Y.shape}, H {H.shape}, R {R.shape}, B {B.shape}"
        )

    Eps = mvrnrm(Tn, np.zeros(k), R, rng).T
    E = mvrnrm(Tn, np.zeros(m), q, rng).T
    z0 = mvrnrm(1, np.zeros(sA), np.kron(np.eye(p), q), rng)[:, 0]

    Z = np.zeros((Tn + 1, sA))
    Yd = np.full((Tn, k), np.nan)
    Z[0] = z0
    observed = np.isfinite(Y)
    for t in range(Tn):
        ind = observed[t]
        Yd[t, ind] = H[ind] @ Z[t, :m] + Eps[t, ind]
        Z[t + 1, :m] = B @ Z[t] + E[t]
        if p > 1:
            Z[t + 1, m:] = Z[t, : sA - m]
    return SimulatedPath(Z=Z[:Tn], Yd=Yd, Eps=Eps)
