"""Tests for BDFM.DFM.simulation."""

import numpy as np
import pytest

from BDFM import DimensionError
from BDFM.DFM import fsim_uf


class TestForwardSimulation:
    """Tests for fsim_uf."""

    def test_shapes(self, missing_data, rng):
        d = missing_data
        B = np.array([[0.5, 0.2]])
        sim = fsim_uf(B, d["q"], d["H"], np.diag(d["R"]), d["Y"], rng)
        T, k = d["Y"].shape
        assert sim.Z.shape == (T, 2)
        assert sim.Yd.shape == (T, k)
        assert sim.Eps.shape == (T, k)

    def test_missing_pattern_mirrored(self, missing_data, rng):
        d = missing_data
        sim = fsim_uf(d["B"], d["q"], d["H"], np.diag(d["R"]), d["Y"], rng)
        np.testing.assert_array_equal(np.isnan(sim.Yd), np.isnan(d["Y"]))

    def test_observation_equation(self, missing_data, rng):
        d = missing_data
        sim = fsim_uf(d["B"], d["q"], d["H"], np.diag(d["R"]), d["Y"], rng)
        observed = np.isfinite(d["Y"])
        resid = sim.Yd - sim.Z[:, :1] @ d["H"].T
        np.testing.assert_allclose(resid[observed], sim.Eps[observed], atol=1e-12)

    def test_lag_blocks_shift(self, dfm_data, rng):
        d = dfm_data
        B = np.array([[0.5, 0.2]])
        sim = fsim_uf(B, d["q"], d["H"], np.diag(d["R"]), d["Y"], rng)
        np.testing.assert_array_equal(sim.Z[1:, 1], sim.Z[:-1, 0])

    def test_reproducible(self, dfm_data):
        d = dfm_data
        args = (d["B"], d["q"], d["H"], np.diag(d["R"]), d["Y"])
        a = fsim_uf(*args, np.random.default_rng(7))
        b = fsim_uf(*args, np.random.default_rng(7))
        np.testing.assert_array_equal(a.Z, b.Z)

    def test_shape_mismatch(self, dfm_data, rng):
        d = dfm_data
        with pytest.raises(DimensionError):
            fsim_uf(d["B"], d["q"], d["H"], np.eye(2), d["Y"], rng)
