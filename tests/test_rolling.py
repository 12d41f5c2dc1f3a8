"""
Tests for the generic rolling wrapper.
"""

import numpy as np

from kinetikos.core.entropy import EntropyEstimator
from kinetikos.core.rolling import compute, rolling_entropy, rolling_rank


class TestCompute:

    def test_results_at_window_end(self):
        out = compute(lambda c: {'sum': sum(c)}, [1, 2, 3, 4], window=2)
        assert out['rolling_sum'] == [None, 3.0, 5.0, 7.0]

    def test_stride(self):
        out = compute(lambda c: {'last': c[-1]}, list(range(6)), window=2, stride=2)
        assert out['rolling_last'] == [None, 1.0, None, 3.0, None, 5.0]

    def test_non_finite_becomes_none(self):
        out = compute(lambda c: {'x': float('nan')}, [1, 2, 3], window=1)
        assert out['rolling_x'] == [None, None, None]

    def test_short_series(self):
        assert compute(lambda c: {'x': 1.0}, [1.0], window=5) == {}


class TestWrappers:

    def test_rolling_entropy_matches_streaming(self):
        rng = np.random.default_rng(5)
        values = list(rng.normal(size=80))
        est = EntropyEstimator(window=20)
        streaming = [est.update(v) for v in values]
        assert rolling_entropy(values, 20) == streaming

    def test_rolling_rank(self):
        ranks = rolling_rank([1.0, 2.0, 3.0, 0.5], window=3)
        assert ranks[:2] == [None, None]
        assert abs(ranks[2] - 200.0 / 3) < 1e-9
        assert ranks[3] == 0.0
