"""
Causal Savitzky-Golay Differentiator
====================================

One-sided local-polynomial fit over the most recent `window` samples.
Time indices run -(w-1) ... 0, so the fit at the newest sample never sees
a future value. Coefficient rows of H = (A^T A)^-1 A^T give the filter taps:

    H[0] . x          smoothed value at t
    H[1] . x / dt     first derivative
    2 H[2] . x / dt^2 second derivative (order >= 2)

H depends only on (window, order), so it is computed once per key and shared.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from kinetikos.core.errors import SingularMatrixError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Derivatives:
    """Smoothed value and derivatives at the newest sample."""
    smoothed_value: float
    first_derivative: Optional[float]
    second_derivative: Optional[float] = None


class CoefficientCache:
    """
    Write-once-per-key map (window, order) -> H.

    Readers never lock; the lock only serializes the first computation of a
    key. Stored arrays are read-only.
    """

    def __init__(self):
        self._coeffs: Dict[Tuple[int, int], np.ndarray] = {}
        self._lock = threading.Lock()

    def __contains__(self, key) -> bool:
        return key in self._coeffs

    def __len__(self) -> int:
        return len(self._coeffs)

    def get(self, window: int, order: int) -> np.ndarray:
        """
        Coefficient matrix of shape (order + 1, window).

        Raises:
            SingularMatrixError: when the normal equations have no unique solution
        """
        key = (window, order)
        H = self._coeffs.get(key)
        if H is not None:
            return H
        with self._lock:
            H = self._coeffs.get(key)
            if H is None:
                H = compute_coefficients(window, order)
                H.setflags(write=False)
                self._coeffs[key] = H
                logger.debug("Cached causal SG coefficients for window=%d order=%d", window, order)
        return H


COEFFICIENT_CACHE = CoefficientCache()


def compute_coefficients(window: int, order: int) -> np.ndarray:
    """
    Solve the causal least-squares problem for filter taps.

    Args:
        window: Number of samples w
        order: Polynomial order p (< w)

    Returns:
        H with shape (p + 1, w)
    """
    if window < 1 or order < 0 or order >= window:
        raise SingularMatrixError(
            f"Polynomial order must be in [0, window), got order={order} window={window}"
        )

    t = np.arange(-(window - 1), 1, dtype=np.float64)
    A = np.vander(t, order + 1, increasing=True)

    # lstsq against the identity gives (A^T A)^-1 A^T without forming A^T A
    H, _, rank, _ = np.linalg.lstsq(A, np.eye(window), rcond=None)
    if rank < order + 1 or not np.all(np.isfinite(H)):
        raise SingularMatrixError(
            f"Design matrix rank {rank} < {order + 1} for window={window}"
        )
    return H


def differentiate(
    values: Sequence[float],
    window: int,
    order: int,
    dt: float = 1.0,
    cache: Optional[CoefficientCache] = None,
) -> Optional[Derivatives]:
    """
    Causal smoothed value and derivatives at the last element of `values`.

    Args:
        values: Samples ordered oldest -> newest (only the last `window` are used)
        window: Filter window w
        order: Polynomial order p
        dt: Sampling interval used to scale derivatives
        cache: Coefficient cache (process-wide cache by default)

    Returns:
        Derivatives, or None when fewer than w samples exist, p >= w,
        the window holds a non-finite sample, or the system is singular.
    """
    if order < 0 or order >= window or len(values) < window or dt <= 0:
        return None

    cache = cache if cache is not None else COEFFICIENT_CACHE
    try:
        H = cache.get(window, order)
    except SingularMatrixError as e:
        logger.debug("Smoother unavailable: %s", e)
        return None

    x = np.asarray(list(values)[-window:], dtype=np.float64)
    if not np.all(np.isfinite(x)):
        return None

    smoothed = float(H[0] @ x)
    first = float(H[1] @ x) / dt if order >= 1 else None
    second = 2.0 * float(H[2] @ x) / (dt * dt) if order >= 2 else None

    if not np.isfinite(smoothed):
        return None
    if first is not None and not np.isfinite(first):
        first = None
    if second is not None and not np.isfinite(second):
        second = None

    return Derivatives(smoothed_value=smoothed, first_derivative=first, second_derivative=second)


class CausalSmoother:
    """Streaming wrapper: keeps the trailing buffer and differentiates on each update."""

    def __init__(self, window: int, order: int, dt: float = 1.0,
                 cache: Optional[CoefficientCache] = None):
        self.window = window
        self.order = order
        self.dt = dt
        self.cache = cache
        self._buffer = deque(maxlen=window)

    def update(self, value: float) -> Optional[Derivatives]:
        self._buffer.append(float(value))
        return differentiate(self._buffer, self.window, self.order, self.dt, self.cache)
