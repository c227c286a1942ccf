"""Shared pytest fixtures for BDFM tests.

This module provides common fixtures used across all test modules,
including data generators and model factories.
"""

import numpy as np
import pytest

# ---------------------------------------------------------------------------
# Data generation fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def rng():
    """Provide a seeded random number generator for reproducibility."""
    return np.random.default_rng(42)


@pytest.fixture
def small_dims():
    """Small dimensions for fast tests."""
    return {"T": 60, "k": 5, "m": 1, "p": 1}


@pytest.fixture
def medium_dims():
    """Medium dimensions for estimation tests."""
    return {"T": 300, "k": 5, "m": 1, "p": 1}


def generate_dfm_data(
    T: int,
    k: int,
    m: int,
    p: int,
    rng: np.random.Generator,
    noise_scale: float = 0.3,
    dynamics_scale: float = 0.5,
    missing_frac: float = 0.0,
) -> dict:
    """Generate synthetic dynamic factor model data.

    Parameters
    ----------
    T : int
        Number of time periods.
    k : int
        Number of series.
    m : int
        Number of factors.
    p : int
        Number of VAR lags; only the first lag is non-zero.
    rng : np.random.Generator
        Random number generator.
    noise_scale : float, default 0.3
        Standard deviation of the observation noise.
    dynamics_scale : float, default 0.5
        Diagonal of the first-lag transition block.
    missing_frac : float, default 0.0
        Fraction of cells set to ``NaN`` at random.

    Returns
    -------
    dict
        Dictionary with keys: Y, F, H, B, q, R.
    """
    H = rng.normal(size=(k, m))
    H[:m] = np.eye(m)
    B = np.zeros((m, m * p))
    B[:, :m] = dynamics_scale * np.eye(m)
    q = np.eye(m)

    F = np.zeros((T, m))
    for t in range(1, T):
        lags = np.concatenate(
            [F[t - j] if t - j >= 0 else np.zeros(m) for j in range(1, p + 1)]
        )
        F[t] = B @ lags + rng.normal(size=m)

    Y = F @ H.T + noise_scale * rng.normal(size=(T, k))
    if missing_frac > 0:
        Y[rng.random(size=Y.shape) < missing_frac] = np.nan

    return {
        "Y": Y,
        "F": F,
        "H": H,
        "B": B,
        "q": q,
        "R": np.full(k, noise_scale ** 2),
    }


@pytest.fixture
def dfm_data(rng, small_dims):
    """Generate a small fully observed dataset."""
    return generate_dfm_data(rng=rng, **small_dims)


@pytest.fixture
def missing_data(rng, small_dims):
    """Generate a small dataset with scattered missing cells."""
    return generate_dfm_data(rng=rng, missing_frac=0.15, **small_dims)


# ---------------------------------------------------------------------------
# Model fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def dfm_config(small_dims):
    """Create a DFMConfig with small dimensions."""
    from BDFM.DFM import DFMConfig

    return DFMConfig(k=small_dims["k"], m=small_dims["m"], p=small_dims["p"])


@pytest.fixture
def initialized_model(dfm_config, dfm_data):
    """Create an initialized (but not fitted) DFMModel."""
    from BDFM.DFM import DFMModel

    model = DFMModel(dfm_config)
    model.initialize(dfm_data["Y"])
    return model
