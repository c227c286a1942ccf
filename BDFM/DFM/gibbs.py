"""Gibbs sampler for dynamic factor models.

Each iteration draws the factors by simulation smoothing (Durbin and
Koopman, 2002), then the loadings and observation variances series by
series, then the factor VAR and its shock covariance.  Transition
matrices whose companion form has an eigenvalue outside the unit circle
are rejected and redrawn.

The chain state is an immutable :class:`GibbsState`; :func:`gibbs_step`
maps one state to the next given the data, the priors and a random
generator.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from ..exceptions import DimensionError
from .control import CancellationToken, retry_until
from .kalman import KalmanConfig, dsuf
from .linalg import spectral_radius
from .regression import draw_coefficients, draw_row, niw_posterior
from .sampling import rinvwish
from .simulation import fsim_uf

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------
# Configuration and containers
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class DFMPriors:
    """Conjugate prior hyperparameters.

    Parameters
    ----------
    Bp : ndarray
        Prior mean of the transition matrix ``(m, m * p)``.
    lam_B : float
        Prior tightness on the transition matrix.
    nu_q : float
        Prior degrees of freedom of the factor shock covariance.
    Hp : ndarray
        Prior mean of the loadings ``(k, m)``.
    lam_H : float
        Prior tightness on the loadings.
    nu_r : ndarray
        Prior degrees of freedom of each observation variance ``(k,)``.
    """

    Bp: np.ndarray
    lam_B: float
    nu_q: float
    Hp: np.ndarray
    lam_H: float
    nu_r: np.ndarray

    def __post_init__(self) -> None:
        Bp = np.atleast_2d(np.array(self.Bp, dtype=float))
        Hp = np.atleast_2d(np.array(self.Hp, dtype=float))
        nu_r = np.array(self.nu_r, dtype=float).reshape(-1)
        m = Bp.shape[0]
        if Bp.shape[1] % m != 0:
            raise DimensionError(f"Bp must have shape (m, m * p), got {Bp.shape}")
        if Hp.shape[1] != m:
            raise DimensionError(f"Hp must have {m} columns, got {Hp.shape}")
        if nu_r.size == 1:
            nu_r = np.full(Hp.shape[0], nu_r[0])
        if nu_r.size != Hp.shape[0]:
            raise DimensionError(
                f"nu_r must have {Hp.shape[0]} entries, got {nu_r.size}"
            )
        if self.lam_B < 0 or self.lam_H < 0:
            raise ValueError("Prior tightness must be non-negative")
        for arr in (Bp, Hp, nu_r):
            arr.setflags(write=False)
        object.__setattr__(self, "Bp", Bp)
        object.__setattr__(self, "Hp", Hp)
        object.__setattr__(self, "nu_r", nu_r)

    @classmethod
    def default(
        cls,
        k: int,
        m: int,
        p: int = 1,
        lam_B: float = 1.0,
        nu_q: float = 0.0,
        lam_H: float = 1.0,
        nu_r: float = 0.0,
    ) -> "DFMPriors":
        """Zero prior means with the given tightness and degrees of freedom."""
        return cls(
            Bp=np.zeros((m, m * p)),
            lam_B=lam_B,
            nu_q=nu_q,
            Hp=np.zeros((k, m)),
            lam_H=lam_H,
            nu_r=np.full(k, nu_r),
        )

    @property
    def m(self) -> int:
        return self.Bp.shape[0]

    @property
    def k(self) -> int:
        return self.Hp.shape[0]


@dataclass
class GibbsConfig:
    """Settings of the Gibbs sampler.

    Parameters
    ----------
    reps : int, default 1000
        Number of retained iterations.
    burn : int, default 500
        Number of discarded iterations.
    warn_after : int, default 10000
        Consecutive non-stationary draws before a warning is issued.
    max_rejections : int or None, default 1000000
        Consecutive non-stationary draws after which sampling fails.
        ``None`` keeps drawing indefinitely.
    n_jobs : int or None, default None
        Workers for the per-series loading draws.  Results do not depend
        on this setting.
    log_every : int, default 100
        Iterations between progress messages.
    kalman : KalmanConfig
        Settings of the disturbance smoother.
    """

    reps: int = 1000
    burn: int = 500
    warn_after: int = 10_000
    max_rejections: int | None = 1_000_000
    n_jobs: int | None = None
    log_every: int = 100
    kalman: KalmanConfig = field(default_factory=KalmanConfig)

    def __post_init__(self) -> None:
        if self.reps < 1:
            raise ValueError(f"reps must be positive, got {self.reps}")
        if self.burn < 0:
            raise ValueError(f"burn must be non-negative, got {self.burn}")
        if self.warn_after < 1:
            raise ValueError(f"warn_after must be positive, got {self.warn_after}")
        if self.max_rejections is not None and self.max_rejections < 1:
            raise ValueError(
                f"max_rejections must be positive or None, got {self.max_rejections}"
            )
        if self.log_every < 1:
            raise ValueError(f"log_every must be positive, got {self.log_every}")


@dataclass(frozen=True)
class GibbsState:
    """Parameters of one iteration of the chain.

    ``R`` holds the diagonal of the observation noise covariance.
    ``Zsim`` is the (normalised) factor draw of the iteration that
    produced this state, without the first ``p`` periods.
    """

    B: np.ndarray
    q: np.ndarray
    H: np.ndarray
    R: np.ndarray
    Zsim: np.ndarray | None = None


class DrawStore:
    """Retained draws of the chain, appended once per iteration."""

    def __init__(self) -> None:
        self._B: list[np.ndarray] = []
        self._Q: list[np.ndarray] = []
        self._H: list[np.ndarray] = []
        self._R: list[np.ndarray] = []

    def __len__(self) -> int:
        return len(self._B)

    def append(self, state: GibbsState) -> None:
        self._B.append(state.B)
        self._Q.append(state.q)
        self._H.append(state.H)
        self._R.append(state.R)

    def arrays(self) -> dict[str, np.ndarray]:
        if not self._B:
            raise RuntimeError("No draws stored")
        return {
            "B": np.stack(self._B),
            "Q": np.stack(self._Q),
            "H": np.stack(self._H),
            "R": np.stack(self._R),
        }


@dataclass
class GibbsResult:
    """Posterior medians and draws of a Gibbs run.

    Attributes
    ----------
    B, H, Q, R : ndarray
        Element-wise posterior medians.
    B_store : ndarray
        Draws ``(reps, m, m * p)``.
    H_store : ndarray
        Draws ``(reps, k, m)``.
    Q_store : ndarray
        Draws ``(reps, m, m)``.
    R_store : ndarray
        Draws ``(reps, k)``.
    Zsim : ndarray
        Factor draw of the final iteration ``(T - p, m * p)``.
    """

    B: np.ndarray
    H: np.ndarray
    Q: np.ndarray
    R: np.ndarray
    B_store: np.ndarray = field(repr=False)
    H_store: np.ndarray = field(repr=False)
    Q_store: np.ndarray = field(repr=False)
    R_store: np.ndarray = field(repr=False)
    Zsim: np.ndarray = field(repr=False)

    @classmethod
    def from_store(cls, store: DrawStore, last: GibbsState) -> "GibbsResult":
        draws = store.arrays()
        return cls(
            B=np.median(draws["B"], axis=0),
            H=np.median(draws["H"], axis=0),
            Q=np.median(draws["Q"], axis=0),
            R=np.median(draws["R"], axis=0),
            B_store=draws["B"],
            H_store=draws["H"],
            Q_store=draws["Q"],
            R_store=draws["R"],
            Zsim=last.Zsim,
        )

    def summary(self, quantiles: tuple[float, ...] = (0.05, 0.5, 0.95)) -> pd.DataFrame:
        """Posterior mean and quantiles of every parameter element.

        The index has levels ``parameter``, ``row`` and ``col``; ``R``
        entries use ``col = row``.
        """

        frames = []
        for name, store in (
            ("B", self.B_store),
            ("H", self.H_store),
            ("Q", self.Q_store),
            ("R", self.R_store),
        ):
            if store.ndim == 2:
                labels = [(name, i, i) for i in range(store.shape[1])]
            else:
                labels = [
                    (name, i, j)
                    for i in range(store.shape[1])
                    for j in range(store.shape[2])
                ]
            draws = pd.DataFrame(
                store.reshape(store.shape[0], -1),
                columns=pd.MultiIndex.from_tuples(labels, names=["parameter", "row", "col"]),
            )
            stats = draws.quantile(list(quantiles)).T
            stats.columns = [f"q{round(100 * qq):02d}" for qq in quantiles]
            stats.insert(0, "mean", draws.mean())
            frames.append(stats)
        return pd.concat(frames)


# ----------------------------------------------------------------------
# Object interface
# ----------------------------------------------------------------------

class GibbsSamplerDFM:
    """Estimate a :class:`DFMModel` by Gibbs sampling."""

    def __init__(
        self,
        model,
        priors: DFMPriors | None = None,
        config: GibbsConfig | None = None,
    ) -> None:
        if not model.is_initialized:
            raise ValueError("Model must be initialized before sampling")
        self.model = model
        self.priors = priors or DFMPriors.default(model.k, model.m, model.p)
        self.config = config or GibbsConfig()
        self.result: GibbsResult | None = None
        if self.priors.k != model.k or self.priors.Bp.shape != model.B.shape:
            raise DimensionError("Priors do not match the model dimensions")

    def fit(
        self,
        Y: np.ndarray,
        rng: np.random.Generator | None = None,
        cancel: CancellationToken | None = None,
    ) -> GibbsResult:
        """Run the chain and store posterior medians in the model."""
        m = self.model
        init = GibbsState(B=m.B, q=m.q, H=m.H, R=m.R)
        result = run_gibbs(init, Y, self.priors, self.config, rng=rng, cancel=cancel)
        m.B, m.H, m.q, m.R = result.B, result.H, result.Q, result.R
        m.F = result.Zsim[:, : m.m]
        self.result = result
        return result


# ----------------------------------------------------------------------
# Functional interface
# ----------------------------------------------------------------------

def est_dfm(
    B: np.ndarray,
    Bp: np.ndarray,
    lam_B: float,
    q: np.ndarray,
    nu_q: float,
    H: np.ndarray,
    Hp: np.ndarray,
    lam_H: float,
    R: np.ndarray,
    nu_r: np.ndarray,
    Y: np.ndarray,
    reps: int,
    burn: int,
    rng: np.random.Generator | None = None,
    cancel: CancellationToken | None = None,
    **config_kwargs,
) -> GibbsResult:
    """Estimate a dynamic factor model by Gibbs sampling.

    Parameters
    ----------
    B : ndarray
        Initial transition matrix ``(m, m * p)``.
    Bp, lam_B : ndarray, float
        Prior mean and tightness for ``B``.
    q : ndarray
        Initial factor shock covariance ``(m, m)``.
    nu_q : float
        Prior degrees of freedom for ``q``.
    H : ndarray
        Initial loadings ``(k, m)``.  The first ``m`` rows are held fixed
        and define the normalisation of the factors.
    Hp, lam_H : ndarray, float
        Prior mean and tightness for ``H``.
    R : ndarray
        Initial observation variances ``(k,)``.
    nu_r : ndarray
        Prior degrees of freedom for each element of ``R``.
    Y : ndarray
        Data ``(T, k)`` with missing values as ``NaN``.
    reps, burn : int
        Retained and discarded iterations.
    rng : numpy.random.Generator, optional
        Source of randomness.
    cancel : CancellationToken, optional
        Checked every iteration and every rejection attempt.
    **config_kwargs
        Further :class:`GibbsConfig` fields.
    """

    priors = DFMPriors(Bp=Bp, lam_B=lam_B, nu_q=nu_q, Hp=Hp, lam_H=lam_H, nu_r=nu_r)
    config = GibbsConfig(reps=reps, burn=burn, **config_kwargs)
    R = np.asarray(R, dtype=float)
    if R.ndim == 2:
        R = np.diag(R)
    init = GibbsState(
        B=np.atleast_2d(np.asarray(B, dtype=float)),
        q=np.atleast_2d(np.asarray(q, dtype=float)),
        H=np.atleast_2d(np.asarray(H, dtype=float)),
        R=R.reshape(-1),
    )
    return run_gibbs(init, Y, priors, config, rng=rng, cancel=cancel)


def run_gibbs(
    init: GibbsState,
    Y: np.ndarray,
    priors: DFMPriors,
    config: GibbsConfig,
    rng: np.random.Generator | None = None,
    cancel: CancellationToken | None = None,
) -> GibbsResult:
    """Burn-in and sampling loop starting from ``init``."""

    Y = np.asarray(Y, dtype=float)
    _check_inputs(init, Y, priors)
    rng = np.random.default_rng() if rng is None else rng
    store = DrawStore()
    state = init
    total = config.burn + config.reps
    logger.info(
        "Gibbs sampler: %d burn-in and %d retained iterations, T=%d, k=%d, m=%d",
        config.burn, config.reps, Y.shape[0], init.H.shape[0], init.B.shape[0],
    )
    for it in range(total):
        if cancel is not None:
            cancel.raise_if_cancelled(len(store))
        state = gibbs_step(state, Y, priors, rng, config=config, cancel=cancel,
                           completed=len(store))
        if it >= config.burn:
            store.append(state)
        if (it + 1) % config.log_every == 0:
            logger.debug("Gibbs iteration %d of %d", it + 1, total)
    return GibbsResult.from_store(store, state)


def gibbs_step(
    state: GibbsState,
    Y: np.ndarray,
    priors: DFMPriors,
    rng: np.random.Generator,
    config: GibbsConfig | None = None,
    cancel: CancellationToken | None = None,
    completed: int = 0,
) -> GibbsState:
    """One sweep of the sampler; returns the next state."""

    config = config or GibbsConfig()
    B, q, H, R = state.B, state.q, state.H, state.R
    m, sA = B.shape
    p = sA // m
    k = H.shape[0]

    # factors given data and parameters
    Rmat = np.diag(R)
    sim = fsim_uf(B, q, H, Rmat, Y, rng)
    Zs = dsuf(B, q, H, Rmat, Y - sim.Yd, config.kalman)
    Zsim = (Zs + sim.Z)[p:]
    Ytmp = Y[p:]

    # loadings and variances, normalising block first
    H_new = H.copy()
    R_new = R.copy()
    Ht = np.zeros((m, m))
    for j, (beta, r) in _draw_loadings(Ytmp, Zsim[:, :m], range(m), priors, rng, config.n_jobs):
        Ht[j] = beta
        if r is not None:
            R_new[j] = r
    Zsim = Zsim @ np.kron(np.eye(p), Ht.T)
    for j, (beta, r) in _draw_loadings(Ytmp, Zsim[:, :m], range(m, k), priors, rng, config.n_jobs):
        H_new[j] = beta
        if r is not None:
            R_new[j] = r

    # transition matrix and shock covariance
    B_new, q_new = _draw_transition(Zsim, priors, rng, config, cancel, completed)
    return GibbsState(B=B_new, q=q_new, H=H_new, R=R_new, Zsim=Zsim)


# ----------------------------------------------------------------------
# Internal helper routines
# ----------------------------------------------------------------------

def _check_inputs(init: GibbsState, Y: np.ndarray, priors: DFMPriors) -> None:
    m, sA = init.B.shape
    k = init.H.shape[0]
    p = sA // m
    if sA % m != 0:
        raise DimensionError(f"B must have shape (m, m * p), got {init.B.shape}")
    if init.q.shape != (m, m) or init.H.shape != (k, m) or init.R.shape != (k,):
        raise DimensionError(
            f"Incompatible parameters: B {init.B.shape}, q {init.q.shape}, "
            f"H {init.H.shape}, R {init.R.shape}"
        )
    if Y.ndim != 2 or Y.shape[1] != k:
        raise DimensionError(f"Data dimensions {Y.shape} do not match {k} series")
    if Y.shape[0] < p + 2:
        raise DimensionError(f"Need more than {p + 1} periods, got {Y.shape[0]}")
    if priors.Bp.shape != init.B.shape or priors.Hp.shape != init.H.shape:
        raise DimensionError("Priors do not match the parameter dimensions")


def _draw_loading(Y, X, j, priors, rng):
    y = Y[:, j]
    ind = np.isfinite(y)
    yy = y[ind]
    if yy.size == 0:
        # loading falls back to its prior mean; R_j is left as it was
        return priors.Hp[j].copy(), None
    return draw_row(X[ind], yy, priors.Hp[j], priors.lam_H, priors.nu_r[j] + yy.size, rng)


def _draw_loadings(Y, X, series, priors, rng, n_jobs):
    """Draw ``(H_j, R_j)`` for each ``j`` in ``series``; ``R_j`` is None
    when series ``j`` has no observations.

    Every series gets its own child generator so the draws are the same
    whether they run sequentially or in parallel.  Each worker returns
    one row; the caller writes disjoint rows.
    """

    series = list(series)
    if not series:
        return []
    children = rng.spawn(len(series))
    if n_jobs is None or n_jobs == 1:
        draws = [_draw_loading(Y, X, j, priors, c) for j, c in zip(series, children)]
    else:
        draws = Parallel(n_jobs=n_jobs, prefer="threads")(
            delayed(_draw_loading)(Y, X, j, priors, c) for j, c in zip(series, children)
        )
    return list(zip(series, draws))


def _draw_transition(Zsim, priors, rng, config, cancel, completed):
    m = priors.m
    T = Zsim.shape[0]
    yy = Zsim[1:, :m]
    xx = Zsim[:-1]
    v_1, Mu, scale = niw_posterior(xx, yy, priors.Bp, priors.lam_B)
    q = rinvwish(1, priors.nu_q + T, scale, rng)[0]
    B = retry_until(
        lambda: draw_coefficients(v_1, Mu, q, rng),
        lambda cand: spectral_radius(cand) <= 1.0,
        warn_after=config.warn_after,
        max_attempts=config.max_rejections,
        cancel=cancel,
        completed=completed,
    )
    return B, q
