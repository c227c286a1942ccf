from .model import DFMConfig, DFMModel
from .kalman import KalmanConfig, KalmanFilterDFM, dsmooth, dsuf
from .simulation import fsim_uf
from .regression import breg, breg_diag, prin_comp, quick_reg
from .gibbs import DFMPriors, GibbsConfig, GibbsResult, GibbsSamplerDFM, est_dfm
from .exact import kest_exact, kseas, ksmoother
from .ml import MLConfig, MLEstimatorDFM, fit_seasonal
from .control import CancellationToken

__all__ = [
    "DFMConfig",
    "DFMModel",
    "KalmanConfig",
    "KalmanFilterDFM",
    "dsmooth",
    "dsuf",
    "fsim_uf",
    "breg",
    "breg_diag",
    "prin_comp",
    "quick_reg",
    "DFMPriors",
    "GibbsConfig",
    "GibbsResult",
    "GibbsSamplerDFM",
    "est_dfm",
    "kest_exact",
    "kseas",
    "ksmoother",
    "MLConfig",
    "MLEstimatorDFM",
    "fit_seasonal",
    "CancellationToken",
]
