"""Exception and warning types raised by BDFM."""

from __future__ import annotations

import numpy as np


class BDFMError(Exception):
    """Base class for all errors raised by the package."""


class DimensionError(BDFMError, ValueError):
    """Input arrays have incompatible shapes."""


class NumericalError(BDFMError, np.linalg.LinAlgError):
    """A matrix could not be factorised, inverted or solved.

    Raised when a covariance handed to an eigendecomposition draw, a
    Cholesky factorisation or a positive-definite solve is not
    symmetric positive (semi-)definite.
    """


class StationarityError(BDFMError, RuntimeError):
    """No stationary transition matrix was drawn within the attempt limit."""

    def __init__(self, attempts: int) -> None:
        super().__init__(
            f"No stationary transition matrix after {attempts} consecutive draws"
        )
        self.attempts = attempts


class SamplerCancelled(BDFMError):
    """Sampling was interrupted through a :class:`CancellationToken`.

    Attributes
    ----------
    completed : int
        Number of draws that had been retained when cancellation was
        observed.  Partial iterations are never stored.
    """

    def __init__(self, completed: int = 0) -> None:
        super().__init__(f"Sampling cancelled after {completed} retained draws")
        self.completed = completed


class NonStationaryDrawWarning(RuntimeWarning):
    """Many consecutive transition-matrix draws were explosive."""
