"""Model representation for the dynamic factor model.

The observation equation is ``y_t = itc + H f_t + e_t`` with
``e_t ~ N(0, diag(R))`` and the factors follow a VAR(p)
``f_t = B [f_{t-1}', ..., f_{t-p}']' + u_t`` with ``u_t ~ N(0, q)``.
The first ``m`` series normalise the factors: their loadings form the
identity block of ``H``.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from ..exceptions import DimensionError
from ..utils import stack_obs
from .linalg import comp_form, solve, spectral_radius, symmetrize
from .regression import prin_comp, quick_reg


@dataclass
class DFMConfig:
    """Dimensions of a dynamic factor model.

    Parameters
    ----------
    k : int
        Number of observed series.
    m : int
        Number of factors.
    p : int, default 1
        Number of lags in the factor VAR.
    """

    k: int
    m: int
    p: int = 1

    def __post_init__(self) -> None:
        if self.m < 1:
            raise ValueError(f"m must be positive, got {self.m}")
        if self.p < 1:
            raise ValueError(f"p must be positive, got {self.p}")
        if self.k < self.m:
            raise ValueError(
                f"Need at least as many series as factors, got k={self.k}, m={self.m}"
            )


@dataclass
class DFMModel:
    """Parameters of a dynamic factor model.

    Attributes
    ----------
    config : DFMConfig
        Model dimensions.
    B : ndarray
        Transition matrix ``(m, m * p)``.
    q : ndarray
        Factor shock covariance ``(m, m)``.
    H : ndarray
        Loadings ``(k, m)``.
    R : ndarray
        Observation shock variances ``(k,)``.
    itc : ndarray
        Intercepts ``(k,)``.
    F : ndarray, optional
        Factor path from the last initialisation or estimation.
    """

    config: DFMConfig
    B: np.ndarray | None = None
    q: np.ndarray | None = None
    H: np.ndarray | None = None
    R: np.ndarray | None = None
    itc: np.ndarray | None = None
    F: np.ndarray | None = None

    def __post_init__(self) -> None:
        k, m, p = self.config.k, self.config.m, self.config.p
        expected = {"B": (m, m * p), "q": (m, m), "H": (k, m), "R": (k,), "itc": (k,)}
        for name, shape in expected.items():
            value = getattr(self, name)
            if value is None:
                continue
            value = np.asarray(value, dtype=float)
            if name == "R" and value.ndim == 2:
                value = np.diag(value).copy()
            if value.shape != shape:
                raise DimensionError(
                    f"{name} must have shape {shape}, got {value.shape}"
                )
            setattr(self, name, value)
        if self.itc is None:
            self.itc = np.zeros(k)

    # ------------------------------------------------------------------
    @property
    def k(self) -> int:
        return self.config.k

    @property
    def m(self) -> int:
        return self.config.m

    @property
    def p(self) -> int:
        return self.config.p

    @property
    def is_initialized(self) -> bool:
        return all(x is not None for x in (self.B, self.q, self.H, self.R))

    @property
    def R_matrix(self) -> np.ndarray:
        return np.diag(self.R)

    @property
    def companion(self) -> np.ndarray:
        return comp_form(self.B)

    @property
    def is_stationary(self) -> bool:
        return spectral_radius(self.B) <= 1.0

    # ------------------------------------------------------------------
    def initialize(self, Y: np.ndarray, normalize: bool = True) -> None:
        """Initialise parameters from data.

        Factors are principal components of the data (missing cells set to
        zero), loadings and variances come from least squares on the
        observed cells and the factor VAR from least squares on the
        stacked factors.  With ``normalize`` the factors are rotated so
        the loadings of the first ``m`` series are the identity.
        """

        Y = np.asarray(Y, dtype=float)
        if Y.ndim != 2 or Y.shape[1] != self.k:
            raise DimensionError(f"Expected data with {self.k} columns, got {Y.shape}")
        m, p = self.m, self.p
        if Y.shape[0] < p + 2:
            raise DimensionError(f"Need more than {p + 1} periods, got {Y.shape[0]}")

        pc = prin_comp(Y, m)
        F = np.where(np.isfinite(Y), Y, 0.0) @ pc.loadings
        H = quick_reg(F, Y).T
        if normalize:
            Hm = H[:m]
            H = solve(Hm.T, H.T).T
            H[:m] = np.eye(m)
            F = F @ Hm.T

        resid = Y - F @ H.T
        R = np.array(
            [np.mean(resid[np.isfinite(resid[:, j]), j] ** 2) for j in range(self.k)]
        )
        R = np.maximum(R, 1e-8)

        Z = stack_obs(F, p + 1)
        B = quick_reg(Z[:, m:], Z[:, :m]).T
        rho = spectral_radius(B)
        if rho >= 1.0:
            # scaling lag j by s**j scales the companion eigenvalues by s
            s = 0.95 / rho
            for j in range(p):
                B[:, j * m : (j + 1) * m] *= s ** (j + 1)
        e = Z[:, :m] - Z[:, m:] @ B.T
        q = symmetrize(e.T @ e / e.shape[0])

        self.B, self.q, self.H, self.R, self.F = B, q, H, R, F
        self.itc = np.zeros(self.k)
