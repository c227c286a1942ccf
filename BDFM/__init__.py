__version__ = "0.1.0"

from .DFM import (
    DFMConfig,
    DFMModel,
    KalmanFilterDFM,
    GibbsSamplerDFM,
    MLEstimatorDFM,
    DFMPriors,
    GibbsConfig,
    MLConfig,
    CancellationToken,
    est_dfm,
    fit_seasonal,
)
from .exceptions import (
    BDFMError,
    DimensionError,
    NumericalError,
    StationarityError,
    SamplerCancelled,
    NonStationaryDrawWarning,
)
from .utils import stack_obs

__all__ = [
    "DFMConfig",
    "DFMModel",
    "KalmanFilterDFM",
    "GibbsSamplerDFM",
    "MLEstimatorDFM",
    "DFMPriors",
    "GibbsConfig",
    "MLConfig",
    "CancellationToken",
    "est_dfm",
    "fit_seasonal",
    "BDFMError",
    "DimensionError",
    "NumericalError",
    "StationarityError",
    "SamplerCancelled",
    "NonStationaryDrawWarning",
    "stack_obs",
]
