"""Tests for BDFM.DFM.kalman and the exact smoother in BDFM.DFM.exact.

Tests cover KalmanConfig, the disturbance smoother and its agreement with
the Rauch-Tung-Striebel smoother and with textbook scalar recursions.
"""

import numpy as np
import pytest

from BDFM import DimensionError
from BDFM.DFM import DFMModel, KalmanConfig, KalmanFilterDFM, dsmooth, dsuf, ksmoother
from BDFM.DFM.linalg import comp_form


def _state_space(B, q, H):
    m, sA = B.shape
    A = comp_form(B)
    Q = np.zeros((sA, sA))
    Q[:m, :m] = q
    HJ = np.hstack([H, np.zeros((H.shape[0], sA - m))])
    return A, Q, HJ


def _scalar_filter(y, b, q, h, r, c):
    """Textbook scalar Kalman filter and RTS smoother."""
    T = y.size
    a, P = 0.0, c
    a_f, P_f, a_p, P_p = (np.zeros(T) for _ in range(4))
    loglik = 0.0
    for t in range(T):
        a_p[t], P_p[t] = a, P
        F = h * P * h + r
        v = y[t] - h * a
        K = P * h / F
        a_f[t] = a + K * v
        P_f[t] = P - K * h * P
        loglik += -0.5 * np.log(F) - 0.5 * v * v / F
        a, P = b * a_f[t], b * P_f[t] * b + q
    a_s, P_s = a_f.copy(), P_f.copy()
    for t in range(T - 1, 0, -1):
        G = P_f[t - 1] * b / P_p[t]
        a_s[t - 1] = a_f[t - 1] + G * (a_s[t] - a_p[t])
        P_s[t - 1] = P_f[t - 1] - G * (P_p[t] - P_s[t]) * G
    return a_f, a_s, P_s, loglik


# ---------------------------------------------------------------------------
# KalmanConfig tests
# ---------------------------------------------------------------------------


class TestKalmanConfig:
    """Tests for KalmanConfig dataclass."""

    def test_default(self):
        assert KalmanConfig().initial_state_variance == 1e5

    def test_invalid_variance(self):
        with pytest.raises(ValueError):
            KalmanConfig(initial_state_variance=0.0)


# ---------------------------------------------------------------------------
# Disturbance smoother tests
# ---------------------------------------------------------------------------


class TestDisturbanceSmoother:
    """Tests for dsmooth and dsuf."""

    def test_output_shapes(self, dfm_data):
        Y = dfm_data["Y"]
        B = np.array([[0.5, 0.1]])
        res = dsmooth(B, dfm_data["q"], dfm_data["H"], np.diag(dfm_data["R"]), Y)
        T, k = Y.shape
        assert res.Z.shape == (T, 2)
        assert res.Z_filt.shape == (T, 2)
        assert res.Ys.shape == (T, k)
        assert res.r.shape == (T + 1, 2)
        assert len(res.steps) == T
        assert np.isfinite(res.loglik)

    def test_dsuf_matches_dsmooth(self, missing_data):
        d = missing_data
        R = np.diag(d["R"])
        res = dsmooth(d["B"], d["q"], d["H"], R, d["Y"])
        np.testing.assert_allclose(dsuf(d["B"], d["q"], d["H"], R, d["Y"]), res.Z)

    def test_scalar_ar1(self, rng):
        """AR(1) factor observed with noise against scalar recursions."""
        T = 50
        y = rng.normal(size=T)
        res = dsmooth(np.array([[0.5]]), np.eye(1), np.eye(1), np.eye(1), y[:, None])
        a_f, a_s, _, loglik = _scalar_filter(y, 0.5, 1.0, 1.0, 1.0, 1e5)
        np.testing.assert_allclose(res.Z_filt[:, 0], a_f, atol=1e-8)
        np.testing.assert_allclose(res.Z[:, 0], a_s, atol=1e-6)
        assert res.loglik == pytest.approx(loglik, rel=1e-10)

    def test_matches_rts_smoother(self, dfm_data):
        """Disturbance and RTS smoothing give the same states."""
        d = dfm_data
        B = np.array([[0.5, 0.2]])
        R = np.diag(d["R"])
        A, Q, HJ = _state_space(B, d["q"], d["H"])
        Zs = dsuf(B, d["q"], d["H"], R, d["Y"])
        ref = ksmoother(A, Q, HJ, R, d["Y"])
        np.testing.assert_allclose(Zs, ref.Z, atol=1e-5)

    def test_matches_rts_smoother_with_missing(self, missing_data):
        d = missing_data
        R = np.diag(d["R"])
        Y = d["Y"].copy()
        Y[10] = np.nan
        A, Q, HJ = _state_space(d["B"], d["q"], d["H"])
        res = dsmooth(d["B"], d["q"], d["H"], R, Y)
        ref = ksmoother(A, Q, HJ, R, Y)
        np.testing.assert_allclose(res.Z, ref.Z, atol=1e-5)
        assert res.loglik == pytest.approx(ref.loglik, rel=1e-8)

    def test_fully_missing_period_keeps_prediction(self, dfm_data):
        d = dfm_data
        Y = d["Y"].copy()
        Y[10] = np.nan
        B = np.array([[0.5]])
        res = dsmooth(B, d["q"], d["H"], np.diag(d["R"]), Y)
        np.testing.assert_allclose(res.Z_filt[10], B @ res.Z_filt[9])
        assert res.steps[10].n_obs == 0

    def test_leading_missing_periods(self, dfm_data):
        d = dfm_data
        Y = d["Y"].copy()
        Y[:3] = np.nan
        res = dsmooth(d["B"], d["q"], d["H"], np.diag(d["R"]), Y)
        assert np.isfinite(res.Z).all()
        np.testing.assert_array_equal(res.Z_filt[:3], 0.0)

    def test_dimension_mismatch(self, dfm_data):
        d = dfm_data
        with pytest.raises(DimensionError, match="Data dimensions"):
            dsmooth(d["B"], d["q"], d["H"], np.diag(d["R"]), d["Y"][:, :3])


# ---------------------------------------------------------------------------
# Exact smoother tests
# ---------------------------------------------------------------------------


class TestKSmoother:
    """Tests for the covariance-keeping smoother."""

    def test_covariances_symmetric(self, missing_data):
        d = missing_data
        A, Q, HJ = _state_space(np.array([[0.5, 0.1]]), d["q"], d["H"])
        res = ksmoother(A, Q, HJ, np.diag(d["R"]), d["Y"])
        for P in (res.Ps, res.P_filt, res.P_pred):
            np.testing.assert_allclose(P, np.transpose(P, (0, 2, 1)), atol=1e-10)
        assert np.all(np.linalg.eigvalsh(res.Ps[5:]) > -1e-8)

    def test_gap_filling(self, missing_data):
        d = missing_data
        A, Q, HJ = _state_space(d["B"], d["q"], d["H"])
        res = ksmoother(A, Q, HJ, np.diag(d["R"]), d["Y"])
        observed = np.isfinite(d["Y"])
        np.testing.assert_array_equal(res.Yf[observed], d["Y"][observed])
        np.testing.assert_allclose(res.Yf[~observed], res.Ys[~observed])
        np.testing.assert_array_equal(res.Ps_lag[0], 0.0)

    def test_scalar_smoothed_variance(self, rng):
        y = rng.normal(size=40)
        res = ksmoother(np.array([[0.5]]), np.eye(1), np.eye(1), np.eye(1), y[:, None])
        _, a_s, P_s, _ = _scalar_filter(y, 0.5, 1.0, 1.0, 1.0, 1e5)
        np.testing.assert_allclose(res.Z[:, 0], a_s, atol=1e-8)
        np.testing.assert_allclose(res.Ps[:, 0, 0], P_s, atol=1e-8)


# ---------------------------------------------------------------------------
# KalmanFilterDFM tests
# ---------------------------------------------------------------------------


class TestKalmanFilterDFM:
    """Tests for the model-bound filter."""

    def test_requires_initialized_model(self, dfm_config):
        with pytest.raises(ValueError, match="initialized"):
            KalmanFilterDFM(DFMModel(dfm_config))

    def test_filter_and_likelihood(self, initialized_model, dfm_data):
        kf = KalmanFilterDFM(initialized_model)
        res = kf.filter(dfm_data["Y"])
        assert kf.log_likelihood(dfm_data["Y"]) == res.loglik
        np.testing.assert_allclose(kf.smooth(dfm_data["Y"]), res.Z)

    def test_likelihood_follows_data_and_parameters(self, initialized_model, dfm_data, rng):
        from conftest import generate_dfm_data

        model = initialized_model
        kf = KalmanFilterDFM(model)
        Y1 = dfm_data["Y"]
        Y2 = generate_dfm_data(T=60, k=5, m=1, p=1, rng=rng, noise_scale=2.0)["Y"]
        ll1 = kf.log_likelihood(Y1)
        ll2 = kf.log_likelihood(Y2)
        assert ll1 == pytest.approx(dsmooth(model.B, model.q, model.H, model.R_matrix, Y1).loglik)
        assert ll2 == pytest.approx(dsmooth(model.B, model.q, model.H, model.R_matrix, Y2).loglik)
        assert ll1 != ll2

        model.R = 4.0 * model.R
        ll3 = kf.log_likelihood(Y1)
        assert ll3 == pytest.approx(dsmooth(model.B, model.q, model.H, model.R_matrix, Y1).loglik)
        assert ll3 != ll1
