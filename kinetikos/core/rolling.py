"""
Generic Rolling Engine.

Apply any window function over trailing windows of a series:

    rolling.compute(entropy_engine, velocity, window=50)

Results are placed at the window END, so index t only ever sees
values[t - window + 1 : t + 1]. Positions without a full window, or where
the engine returns a non-finite value, hold None.
"""

import math
from typing import Any, Callable, Dict, List, Optional, Sequence


def _clean(val) -> Optional[float]:
    if val is None:
        return None
    val = float(val)
    return val if math.isfinite(val) else None


def compute(
    engine_fn: Callable[..., Dict[str, Optional[float]]],
    values: Sequence[Optional[float]],
    window: int,
    stride: int = 1,
    engine_params: Optional[Dict[str, Any]] = None,
) -> Dict[str, List[Optional[float]]]:
    """
    Apply an engine function over rolling windows.

    Args:
        engine_fn: Function with signature f(window_values, **params) -> dict
        values: Series ordered oldest -> newest (None allowed)
        window: Window size
        stride: Step size between windows
        engine_params: Optional params to pass to engine_fn

    Returns:
        dict with rolling_{key} lists of length len(values)
    """
    if window < 1 or stride < 1:
        raise ValueError(f"window and stride must be >= 1, got {window}, {stride}")
    values = list(values)
    n = len(values)
    engine_params = engine_params or {}

    results: Dict[str, List[Optional[float]]] = {}
    for end in range(window - 1, n, stride):
        chunk = values[end - window + 1:end + 1]
        output = engine_fn(chunk, **engine_params)
        for key, val in output.items():
            column = results.setdefault(f'rolling_{key}', [None] * n)
            column[end] = _clean(val)

    return results


def entropy_engine(chunk: Sequence[Optional[float]], max_bins: Optional[int] = None) -> Dict[str, Optional[float]]:
    """Window function form of causal_entropy."""
    from kinetikos.core.entropy import causal_entropy
    result = causal_entropy(chunk, max_bins)
    if result is None:
        return {'entropy': None, 'entropy_bins': None}
    return {'entropy': result.entropy, 'entropy_bins': float(result.num_bins)}


def rank_engine(chunk: Sequence[Optional[float]]) -> Dict[str, Optional[float]]:
    """Percentile rank of the newest value among the window (None values ignored)."""
    from kinetikos.core.regime.classifier import percentile_rank
    current = chunk[-1]
    if current is None:
        return {'rank': None}
    reference = [v for v in chunk if v is not None]
    return {'rank': percentile_rank(current, reference)}


def rolling_entropy(values: Sequence[Optional[float]], window: int,
                    max_bins: Optional[int] = None) -> List[Optional[float]]:
    """Batch entropy series, identical to feeding EntropyEstimator one value at a time."""
    out = compute(entropy_engine, values, window, engine_params={'max_bins': max_bins})
    return out.get('rolling_entropy', [None] * len(values))


def rolling_rank(values: Sequence[Optional[float]], window: int) -> List[Optional[float]]:
    """Causal percentile rank series over a trailing window."""
    out = compute(rank_engine, values, window)
    return out.get('rolling_rank', [None] * len(values))
