"""
Feature Normalization
=====================

Z-score scaling of state-vector features before regime fitting. The
parameters are returned alongside the data so the exact same transform can
be applied to later observations (and persisted with a fitted model).
"""

import numpy as np
from typing import Dict, Optional, Tuple

# Constant features keep their centered values rather than dividing by ~0
_MIN_STD = 1e-10


def compute_zscore(
    data: np.ndarray,
    axis: Optional[int] = 0,
    ddof: int = 0
) -> Tuple[np.ndarray, Dict[str, np.ndarray]]:
    """
    Z-score normalization: (x - mean) / std

    Args:
        data: Input array (T x D for axis=0 normalizes each column)
        axis: Axis along which to compute statistics (0=columns, None=global)
        ddof: Degrees of freedom for std calculation

    Returns:
        Tuple of (normalized_data, params_dict)
        params_dict contains 'mean' and 'std' for apply_zscore
    """
    data = np.asarray(data, dtype=np.float64)

    mean = np.nanmean(data, axis=axis, keepdims=True)
    std = np.nanstd(data, axis=axis, ddof=ddof, keepdims=True)
    std = np.where(std < _MIN_STD, 1.0, std)

    normalized = (data - mean) / std

    params = {
        'method': 'zscore',
        'mean': np.squeeze(mean, axis=axis) if axis is not None else mean,
        'std': np.squeeze(std, axis=axis) if axis is not None else std,
    }
    return normalized, params


def apply_zscore(data: np.ndarray, mean: np.ndarray, std: np.ndarray) -> np.ndarray:
    """Apply stored z-score parameters column-wise."""
    data = np.asarray(data, dtype=np.float64)
    return (data - np.asarray(mean)) / np.asarray(std)
