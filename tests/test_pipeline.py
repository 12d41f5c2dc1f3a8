"""
Tests for the state-vector pipeline: causality, finiteness, scenario behaviour.
"""

import math

import numpy as np
import polars as pl
import pytest

from kinetikos.core.cancellation import CancellationToken
from kinetikos.core.config import PipelineConfig
from kinetikos.core.errors import ComputationCancelled
from kinetikos.core.pipeline import (
    STATE_VECTOR_COLUMNS,
    Observation,
    StateVectorPipeline,
    compute_state_vectors,
    from_frame,
    state_matrix,
    to_frame,
)


def _all_finite_or_none(vectors):
    for sv in vectors:
        for name in STATE_VECTOR_COLUMNS:
            value = getattr(sv, name)
            if value is not None and not math.isfinite(value):
                return False
    return True


class TestCausality:

    def test_truncation_invariance(self, small_config, random_walk_observations):
        """Outputs for t < 200 do not depend on observations after 200."""
        full = compute_state_vectors(random_walk_observations, small_config)
        head = compute_state_vectors(random_walk_observations[:200], small_config)
        assert full[:200] == head

    def test_regression_method_truncation(self, random_walk_observations):
        cfg = PipelineConfig(smoothing_window=7, equilibrium_window=10, regression_window=20,
                             entropy_window=15, temperature_window=15, parameter_method='regression')
        full = compute_state_vectors(random_walk_observations, cfg)
        head = compute_state_vectors(random_walk_observations[:150], cfg)
        assert full[:150] == head

    def test_loess_equilibrium_truncation(self, small_config, random_walk_observations):
        small_config.equilibrium_method = 'loess'
        full = compute_state_vectors(random_walk_observations, small_config)
        head = compute_state_vectors(random_walk_observations[:120], small_config)
        assert full[:120] == head


class TestFiniteness:

    def test_random_input(self, small_config, random_walk_observations):
        vectors = compute_state_vectors(random_walk_observations, small_config)
        assert _all_finite_or_none(vectors)
        assert any(sv.complete for sv in vectors)

    @pytest.mark.parametrize('prices,volumes', [
        ([100.0] * 60, [1000.0] * 60),                                   # constant series
        (list(100.0 + np.arange(60)), [0.0] * 60),                       # zero volume
        ([0.0] * 30 + [1.0] * 30, [10.0] * 60),                          # zero price
        ([float('nan')] * 5 + [100.0] * 55, [1.0] * 60),                 # missing prices
        (list(np.where(np.arange(60) % 2, 1e9, 1e-9)), [1e12] * 60),     # extreme swings
    ])
    def test_edge_inputs(self, small_config, make_obs, prices, volumes):
        vectors = compute_state_vectors(make_obs(prices, volumes), small_config)
        assert _all_finite_or_none(vectors)

    def test_zero_volume_momentum(self, small_config, make_obs):
        vectors = compute_state_vectors(
            make_obs(100.0 + np.arange(40), [0.0] * 40), small_config
        )
        assert vectors[-1].mass == 0.0
        assert vectors[-1].momentum == 0.0


class TestStepContract:

    def test_burn_in_fields(self, small_config, make_obs):
        vectors = compute_state_vectors(
            make_obs(100.0 + np.arange(6), [100.0] * 6), small_config
        )
        assert vectors[0].smoothed_price is None
        assert vectors[4].smoothed_price == pytest.approx(104.0)
        assert vectors[4].velocity == pytest.approx(1.0)
        assert vectors[4].equilibrium_price is None
        assert vectors[5].stiffness is None

    def test_timestamps_must_increase(self, small_config):
        pipe = StateVectorPipeline(small_config)
        pipe.step(Observation(1.0, 100.0, 1.0))
        with pytest.raises(ValueError):
            pipe.step(Observation(1.0, 100.0, 1.0))

    def test_cancellation(self, small_config):
        token = CancellationToken()
        pipe = StateVectorPipeline(small_config, token=token)
        pipe.step(Observation(1.0, 100.0, 1.0))
        token.cancel()
        with pytest.raises(ComputationCancelled):
            pipe.step(Observation(2.0, 100.0, 1.0))

    def test_potential_formula(self, small_config, random_walk_observations):
        for sv in compute_state_vectors(random_walk_observations, small_config):
            if sv.potential is not None:
                expected = (0.5 * sv.stiffness * (sv.smoothed_price - sv.equilibrium_price) ** 2
                            - sv.force * sv.smoothed_price)
                assert sv.potential == pytest.approx(expected)
            if sv.momentum is not None:
                assert sv.momentum == pytest.approx(0.5 * sv.mass * sv.velocity ** 2)


class TestScenario:

    def test_trend_then_random_walk(self, small_config, make_obs):
        """Noise-free trend is ordered with low potential; a sign-flipping walk raises entropy and temperature."""
        n = 50
        trend_prices = 100.0 + np.arange(n, dtype=float)
        trend_volumes = 1000.0 + 10.0 * np.arange(n)

        rng = np.random.default_rng(9)
        steps = rng.choice([-1.0, 1.0], size=n) * rng.uniform(0.5, 2.0, size=n)
        walk_prices = trend_prices[-1] + np.cumsum(steps)
        walk_volumes = rng.uniform(500, 2000, size=n)

        vectors = compute_state_vectors(
            make_obs(np.concatenate([trend_prices, walk_prices]),
                              np.concatenate([trend_volumes, walk_volumes])),
            small_config,
        )
        trend, walk = vectors[:n], vectors[n:]

        # Zero acceleration puts the filter on F = k (s - p_eq) > 0, so potential ~ -F s
        late_potential = [sv.potential for sv in trend[30:]]
        assert all(p is not None for p in late_potential)
        assert max(late_potential) < 0.0

        trend_entropy = [sv.entropy for sv in trend if sv.entropy is not None]
        walk_entropy = [sv.entropy for sv in walk if sv.entropy is not None]
        assert trend_entropy and max(trend_entropy) == 0.0
        assert max(walk_entropy) > max(trend_entropy)

        assert all(sv.temperature is None for sv in trend)
        assert any(sv.temperature is not None for sv in walk)


class TestFrames:

    def test_frame_round_trip(self, small_config, random_walk_observations):
        vectors = compute_state_vectors(random_walk_observations[:80], small_config)
        df = to_frame(vectors)
        assert df.columns == STATE_VECTOR_COLUMNS
        assert df.height == 80
        assert all(dtype == pl.Float64 for dtype in df.dtypes)
        assert from_frame(df) == vectors

    def test_empty_frame(self):
        assert to_frame([]).height == 0

    def test_state_matrix(self, small_config, random_walk_observations):
        vectors = compute_state_vectors(random_walk_observations, small_config)
        X, idx = state_matrix(vectors)
        assert X.shape == (len(idx), 4)
        assert all(vectors[i].complete for i in idx)
