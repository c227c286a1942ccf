import numpy as np

from .exceptions import DimensionError


def stack_obs(nn: np.ndarray, p: int, r: int = 0) -> np.ndarray:
    """Stack a time series in VAR format.

    Parameters
    ----------
    nn : ndarray
        Data array ``(T, n)`` with time in rows.
    p : int
        Number of lags to stack, the contemporaneous value counting as
        the first one.
    r : int, default 0
        Expected number of rows of the result.  ``0`` means "derive it
        from the data", i.e. ``T - p + 1``.

    Returns
    -------
    ndarray
        Array with shape ``(T - p + 1, n * p)`` whose row ``t`` holds
        ``[nn_{t+p-1}, nn_{t+p-2}, ..., nn_t]``.
    """

    nn = np.asarray(nn, dtype=float)
    if nn.ndim == 1:
        nn = nn[:, None]
    if nn.ndim != 2:
        raise DimensionError("nn must be a 2D array")
    rr, mn = nn.shape
    if p < 1 or p > rr:
        raise DimensionError(f"p must be between 1 and {rr}, got {p}")
    if r == 0:
        r = rr - p + 1
    if rr - p + 1 != r:
        raise DimensionError("Length of input nn and length of data r do not agree.")
    N = np.zeros((r, mn * p))
    indx = 0
    for j in range(1, p + 1):
        N[:, indx : indx + mn] = nn[p - j : rr - j + 1]
        indx += mn
    return N
