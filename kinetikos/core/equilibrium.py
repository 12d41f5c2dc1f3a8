"""
Equilibrium Price Engine
========================

Causal "fair value" p_eq(t) used as the rest point of the restoring force.

Methods:
    sma     rolling mean of the smoothed price over the trailing window
    loess   robust local-linear trend fitted to the trailing buffer only and
            evaluated at the newest sample (tricube distance weights,
            bisquare robustness iterations, optional cycle-subseries
            seasonal removal when a period is given)

Both return None until the window fills. Neither reads beyond t.
"""

from collections import deque
from typing import Optional, Sequence, Tuple

import numpy as np

_EPS = 1e-12


def _weighted_line(t: np.ndarray, y: np.ndarray, w: np.ndarray) -> Optional[Tuple[float, float]]:
    """Weighted least-squares line y = a + b t. None if the weights carry no mass."""
    sw = np.sum(w)
    if sw <= _EPS:
        return None
    tm = np.sum(w * t) / sw
    ym = np.sum(w * y) / sw
    stt = np.sum(w * (t - tm) ** 2)
    if stt <= _EPS:
        return float(ym), 0.0
    b = np.sum(w * (t - tm) * (y - ym)) / stt
    a = ym - b * tm
    return float(a), float(b)


def _seasonal_component(t: np.ndarray, detrended: np.ndarray, period: int) -> np.ndarray:
    """Cycle-subseries means, centered to zero mean."""
    phase = (t.astype(np.int64) % period)
    means = np.zeros(period)
    for p in range(period):
        members = detrended[phase == p]
        if len(members) > 0:
            means[p] = np.mean(members)
    means -= np.mean(means)
    return means[phase]


def local_trend(
    values: Sequence[float],
    period: Optional[int] = None,
    robust_iterations: int = 2,
) -> Optional[float]:
    """
    Robust trend level at the newest sample of a trailing buffer.

    Args:
        values: Buffer ordered oldest -> newest
        period: Seasonal period to remove before fitting (None = no seasonality)
        robust_iterations: Number of bisquare reweighting passes

    Returns:
        Trend value at the newest sample, or None if degenerate
    """
    y = np.asarray(values, dtype=np.float64)
    n = len(y)
    if n == 0 or not np.all(np.isfinite(y)):
        return None
    if n == 1:
        return float(y[0])

    t = np.arange(-(n - 1), 1, dtype=np.float64)
    u = np.abs(t) / n
    tricube = (1.0 - u ** 3) ** 3

    use_season = period is not None and period >= 2 and n >= 2 * period
    seasonal = np.zeros(n)
    robustness = np.ones(n)
    level = None

    for outer in range(robust_iterations + 1):
        for _ in range(2 if use_season else 1):
            fit = _weighted_line(t, y - seasonal, tricube * robustness)
            if fit is None:
                return level
            a, b = fit
            level = a
            if use_season:
                seasonal = _seasonal_component(t, y - (a + b * t), period)

        if outer == robust_iterations:
            break
        residuals = y - seasonal - (a + b * t)
        h = 6.0 * float(np.median(np.abs(residuals)))
        if h <= _EPS:
            break
        r = np.abs(residuals) / h
        robustness = np.where(r < 1.0, (1.0 - r * r) ** 2, 0.0)

    if level is None or not np.isfinite(level):
        return None
    return float(level)


class EquilibriumEstimator:
    """Streaming equilibrium estimator over smoothed prices."""

    def __init__(self, window: int, method: str = 'sma', period: Optional[int] = None):
        if window < 1:
            raise ValueError(f"window must be >= 1, got {window}")
        if method not in ('sma', 'loess'):
            raise ValueError(f"Unknown equilibrium method '{method}'")
        self.window = window
        self.method = method
        self.period = period
        self._buffer = deque(maxlen=window)

    def update(self, smoothed_price: Optional[float]) -> Optional[float]:
        """
        Add the newest smoothed price and return p_eq(t).

        A missing smoothed price clears the buffer: the window must be
        refilled with contiguous values.
        """
        if smoothed_price is None or not np.isfinite(smoothed_price):
            self._buffer.clear()
            return None
        self._buffer.append(float(smoothed_price))
        if len(self._buffer) < self.window:
            return None

        if self.method == 'sma':
            value = float(np.mean(self._buffer))
        else:
            value = local_trend(self._buffer, period=self.period)

        if value is None or not np.isfinite(value):
            return None
        return value
