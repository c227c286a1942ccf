"""Cooperative cancellation and bounded retry for long-running samplers."""

from __future__ import annotations

import logging
import threading
import warnings
from typing import Callable, TypeVar

from ..exceptions import NonStationaryDrawWarning, SamplerCancelled, StationarityError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Thread-safe flag checked by the samplers between units of work.

    Call :meth:`cancel` from any thread; the sampler raises
    :class:`~BDFM.exceptions.SamplerCancelled` at its next check.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, completed: int = 0) -> None:
        if self._event.is_set():
            raise SamplerCancelled(completed)


def retry_until(
    draw: Callable[[], T],
    accept: Callable[[T], bool],
    *,
    warn_after: int = 10_000,
    max_attempts: int | None = 1_000_000,
    cancel: CancellationToken | None = None,
    completed: int = 0,
) -> T:
    """Call ``draw`` until ``accept`` holds for its result.

    Parameters
    ----------
    draw : callable
        Produces a candidate.
    accept : callable
        Predicate on a candidate.
    warn_after : int, default 10000
        Number of consecutive rejections after which a
        :class:`NonStationaryDrawWarning` is emitted.  Drawing continues.
    max_attempts : int or None, default 1000000
        Raise :class:`StationarityError` once this many candidates were
        rejected.  ``None`` retries without bound.
    cancel : CancellationToken, optional
        Checked before every attempt.
    completed : int, default 0
        Reported through :class:`SamplerCancelled` on cancellation.
    """

    attempts = 0
    while True:
        if cancel is not None:
            cancel.raise_if_cancelled(completed)
        candidate = draw()
        if accept(candidate):
            if attempts >= warn_after:
                logger.info("Accepted draw after %d rejections", attempts)
            return candidate
        attempts += 1
        if attempts == warn_after:
            logger.warning("Draws non-stationary: %d consecutive rejections", attempts)
            warnings.warn(
                f"Draws non-stationary: {attempts} consecutive rejections",
                NonStationaryDrawWarning,
                stacklevel=2,
            )
        if max_attempts is not None and attempts >= max_attempts:
            raise StationarityError(attempts)
