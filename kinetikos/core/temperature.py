"""
Market Temperature
==================

Rolling OLS of volume changes on entropy changes over the trailing window:

    beta = (N Sxy - Sx Sy) / (N Sxx - Sx^2),   x = dEntropy, y = dVolume

mode "slope" reports beta = dV/dE, the thermodynamic analogue of
T = dU/dS with volume standing in for energy. mode "inverse" reports 1/|beta|.
"""

from collections import deque
from typing import Optional

import numpy as np

from kinetikos.core.errors import SingularMatrixError

TEMPERATURE_MODES = ('slope', 'inverse')


def ols_slope(x: np.ndarray, y: np.ndarray, eps: float = 1e-12) -> float:
    """
    Five-sum least-squares slope of y on x.

    Raises:
        SingularMatrixError: if N Sxx - Sx^2 < eps
    """
    n = len(x)
    sx, sy = float(np.sum(x)), float(np.sum(y))
    sxx, sxy = float(np.sum(x * x)), float(np.sum(x * y))
    denom = n * sxx - sx * sx
    if denom < eps:
        raise SingularMatrixError(f"Zero variance in regressor (denominator {denom:.3g})")
    return (n * sxy - sx * sy) / denom


class TemperatureEstimator:
    """Streaming temperature from (entropy, volume) pairs."""

    def __init__(self, window: int, mode: str = 'slope', eps: float = 1e-12):
        if window < 3:
            raise ValueError(f"temperature window must be >= 3, got {window}")
        if mode not in TEMPERATURE_MODES:
            raise ValueError(f"Unknown temperature mode '{mode}'")
        self.window = window
        self.mode = mode
        self.eps = eps
        self._entropy = deque(maxlen=window)
        self._volume = deque(maxlen=window)

    def update(self, entropy: Optional[float], volume: float) -> Optional[float]:
        """Add one point; None until `window` consecutive entropy values exist."""
        if entropy is None or not np.isfinite(entropy) or not np.isfinite(volume):
            self.reset()
            return None
        self._entropy.append(float(entropy))
        self._volume.append(float(volume))
        if len(self._entropy) < self.window:
            return None

        dE = np.diff(np.asarray(self._entropy))
        dV = np.diff(np.asarray(self._volume))
        try:
            beta = ols_slope(dE, dV, self.eps)
        except SingularMatrixError:
            return None

        if self.mode == 'inverse':
            if abs(beta) < self.eps:
                return None
            value = 1.0 / abs(beta)
        else:
            value = beta
        return float(value) if np.isfinite(value) else None

    def reset(self):
        self._entropy.clear()
        self._volume.clear()
