"""
Adaptive-Binning Shannon Entropy
================================

Entropy (bits) of the trailing window of a series, with a bin width chosen
from the window itself:

    Freedman-Diaconis   h = 2 IQR / n^(1/3)
    Scott (IQR = 0)     h = 3.49 sigma / n^(1/3)
    last resort         h = range / 10

A window with zero range has entropy 0 (one bin). Values outside [min, max]
cannot occur by construction but are clamped anyway; the result is clipped
into [0, log2(num_bins)].
"""

import math
from collections import deque
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

_EPS = 1e-12
# Ranges below this fraction of the window magnitude are treated as constant
_REL_EPS = 1e-9


@dataclass(frozen=True)
class EntropyResult:
    entropy: float
    num_bins: int
    bin_width: float


def bin_width(values: np.ndarray) -> float:
    """Freedman-Diaconis width with Scott and range/10 fallbacks. 0 for zero range."""
    n = len(values)
    value_range = float(np.max(values) - np.min(values))
    if value_range <= _REL_EPS * max(1.0, float(np.max(np.abs(values)))):
        return 0.0

    cube_root = n ** (1.0 / 3.0)
    q75, q25 = np.percentile(values, [75, 25])
    iqr = float(q75 - q25)
    if iqr > _EPS:
        return 2.0 * iqr / cube_root

    sigma = float(np.std(values))
    if sigma > _EPS:
        return 3.49 * sigma / cube_root

    return value_range / 10.0


def causal_entropy(values: Sequence[Optional[float]], max_bins: Optional[int] = None) -> Optional[EntropyResult]:
    """
    Shannon entropy of one window.

    Args:
        values: Window ordered oldest -> newest
        max_bins: Upper bound on the number of bins (default: window length)

    Returns:
        EntropyResult, or None if the window is empty or holds a missing value
    """
    if len(values) == 0 or any(v is None for v in values):
        return None
    x = np.asarray(values, dtype=np.float64)
    if not np.all(np.isfinite(x)):
        return None

    n = len(x)
    width = bin_width(x)
    if width <= 0:
        return EntropyResult(entropy=0.0, num_bins=1, bin_width=0.0)

    lo, hi = float(np.min(x)), float(np.max(x))
    cap = n if max_bins is None else max(1, int(max_bins))
    num_bins = min(cap, max(1, int(math.ceil((hi - lo) / width))))
    width = (hi - lo) / num_bins

    clamped = np.clip(x, lo, hi)
    idx = np.floor((clamped - lo) / width).astype(np.int64)
    idx = np.clip(idx, 0, num_bins - 1)

    counts = np.bincount(idx, minlength=num_bins)
    p = counts[counts > 0] / n
    h = float(-np.sum(p * np.log2(p)))

    upper = math.log2(num_bins) if num_bins > 1 else 0.0
    h = min(max(h, 0.0), upper)
    return EntropyResult(entropy=h, num_bins=num_bins, bin_width=width)


class EntropyEstimator:
    """Streaming entropy over the last `window` values, recomputed in full each step."""

    def __init__(self, window: int, max_bins: Optional[int] = None):
        if window < 2:
            raise ValueError(f"entropy window must be >= 2, got {window}")
        self.window = window
        self.max_bins = max_bins
        self._buffer = deque(maxlen=window)
        self.last_result: Optional[EntropyResult] = None

    def update(self, value: Optional[float]) -> Optional[float]:
        if value is not None and not np.isfinite(value):
            value = None
        self._buffer.append(value)
        if len(self._buffer) < self.window:
            self.last_result = None
            return None
        self.last_result = causal_entropy(self._buffer, self.max_bins)
        return None if self.last_result is None else self.last_result.entropy
