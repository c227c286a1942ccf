"""Iterated maximum likelihood estimation."""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field

import numpy as np

from ..exceptions import DimensionError
from ..utils import stack_obs
from .exact import ExactMLResult, SeasonalResult, kest_exact, kseas
from .kalman import KalmanConfig
from .linalg import spectral_radius
from .regression import quick_reg

logger = logging.getLogger(__name__)


@dataclass
class MLConfig:
    """Stopping rule of the likelihood iterations.

    Parameters
    ----------
    max_iter : int, default 100
        Maximum number of updates.
    tol : float, default 1e-6
        Iterations stop once the log-likelihood changes by less than
        this amount.
    kalman : KalmanConfig
        Settings of the smoother.
    """

    max_iter: int = 100
    tol: float = 1e-6
    kalman: KalmanConfig = field(default_factory=KalmanConfig)

    def __post_init__(self) -> None:
        if self.max_iter < 1:
            raise ValueError(f"max_iter must be positive, got {self.max_iter}")
        if self.tol <= 0:
            raise ValueError(f"tol must be positive, got {self.tol}")


class MLEstimatorDFM:
    """Estimate a :class:`DFMModel` by iterating :func:`kest_exact`."""

    def __init__(self, model, config: MLConfig | None = None) -> None:
        self.model = model
        self.config = config or MLConfig()
        self.loglik_trace: list[float] = []
        self.converged = False
        self.result: ExactMLResult | None = None

    # ------------------------------------------------------------------
    def fit(self, Y: np.ndarray) -> ExactMLResult:
        """Iterate until the log-likelihood settles.

        The model is initialised from the data first if it has no
        parameters yet.  On return the model holds the normalised
        estimates and the smoothed factors.
        """

        Y = np.asarray(Y, dtype=float)
        mdl = self.model
        if not mdl.is_initialized:
            mdl.initialize(Y)
        self.loglik_trace = []
        self.converged = False
        B, q, H, R, itc = mdl.B, mdl.q, mdl.H, mdl.R, mdl.itc
        last_ll = -np.inf
        for it in range(self.config.max_iter):
            res = kest_exact(B, q, H, R, Y, itc, self.config.kalman)
            B, q, H, R, itc = res.B, res.q, res.H, res.R, res.itc
            self.loglik_trace.append(res.loglik)
            logger.debug("ML iteration %d: loglik=%.6f", it, res.loglik)
            if abs(res.loglik - last_ll) < self.config.tol:
                self.converged = True
                break
            last_ll = res.loglik

        if not self.converged:
            warnings.warn(
                f"Log-likelihood did not converge within {self.config.max_iter} iterations",
                RuntimeWarning,
                stacklevel=2,
            )
        logger.info(
            "ML estimation finished after %d iterations, loglik=%.4f",
            len(self.loglik_trace), self.loglik_trace[-1],
        )
        mdl.B, mdl.q, mdl.H, mdl.R, mdl.itc = B, q, H, np.diag(R).copy(), itc
        mdl.F = res.X
        self.result = res
        return res

    # ------------------------------------------------------------------
    def get_factors(self) -> np.ndarray:
        """Return the smoothed factor sequence."""
        if self.model.F is None:
            raise RuntimeError("Estimator has not been fitted yet")
        return self.model.F

    def get_loglik_trace(self) -> list[float]:
        return self.loglik_trace


def fit_seasonal(
    Y: np.ndarray,
    N: np.ndarray,
    p: int = 1,
    max_iter: int = 100,
    tol: float = 1e-6,
    config: KalmanConfig | None = None,
) -> SeasonalResult:
    """Seasonally adjust one series by iterating :func:`kseas`.

    Starting values come from least squares: seasonal loadings from a
    regression of ``Y`` on ``N`` and AR coefficients from the residuals.
    """

    y = np.asarray(Y, dtype=float).reshape(-1)
    N = np.asarray(N, dtype=float)
    if N.ndim == 1:
        N = N[:, None]
    if N.shape[0] != y.size:
        raise DimensionError(f"N has {N.shape[0]} rows but Y has {y.size}")

    M = quick_reg(N, y).T
    e = y - N @ M[0]
    Z = stack_obs(e, p + 1)
    B = quick_reg(Z[:, 1:], Z[:, 0]).T
    rho = spectral_radius(B)
    if rho >= 1.0:
        B = B * (0.95 / rho) ** np.arange(1, p + 1)
    u = Z[:, 0] - Z[:, 1:] @ B[0]
    u = u[np.isfinite(u)]
    q = float(np.mean(u ** 2))
    r = max(0.1 * float(np.nanvar(e)), 1e-8)

    last_ll = -np.inf
    for it in range(max_iter):
        res = kseas(B, q, M, r, y, N, config)
        B, M, r = res.B, res.M, res.r
        # the factor keeps a unit loading while smoothing
        q = res.q
        if abs(res.loglik - last_ll) < tol:
            logger.debug("fit_seasonal converged after %d iterations", it + 1)
            return res
        last_ll = res.loglik
    warnings.warn(
        f"Seasonal model did not converge within {max_iter} iterations",
        RuntimeWarning,
        stacklevel=2,
    )
    return res
