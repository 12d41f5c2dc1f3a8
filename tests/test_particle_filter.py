"""
Tests for the SIR parameter filter and the rolling-regression estimator.
"""

import logging

import numpy as np
import pytest

from kinetikos.core.config import ParameterFilterConfig
from kinetikos.core.errors import NonPositiveDefiniteError
from kinetikos.core.particle_filter import (
    ParameterFilter,
    RegressionParameterEstimator,
    effective_sample_size,
    systematic_resample,
)


class TestWeights:

    def test_weights_normalized_and_ess_bounded(self):
        pf = ParameterFilter(particle_count=300, rng=np.random.default_rng(0))
        rng = np.random.default_rng(1)
        for _ in range(50):
            pf.predict()
            pf.update(rng.normal(), price=100 + rng.normal(), p_eq=100.0)
            assert pf.weights.sum() == pytest.approx(1.0)
            assert np.all(pf.weights >= 0)
            assert 1.0 <= pf.ess() <= pf.n + 1e-9

    def test_ess_extremes(self):
        assert effective_sample_size(np.full(10, 0.1)) == pytest.approx(10.0)
        assert effective_sample_size(np.eye(10)[3]) == pytest.approx(1.0)

    def test_systematic_resample(self):
        rng = np.random.default_rng(0)
        assert list(systematic_resample(np.array([0.0, 0.0, 1.0, 0.0]), rng)) == [2, 2, 2, 2]
        np.testing.assert_array_equal(systematic_resample(np.full(5, 0.2), rng), np.arange(5))


class TestCollapse:

    def test_implausible_measurement_resets_weights(self, caplog):
        pf = ParameterFilter(particle_count=100, rng=np.random.default_rng(0))
        with caplog.at_level(logging.WARNING):
            pf.update(1e6, price=101.0, p_eq=100.0)
        assert pf.collapse_count == 1
        np.testing.assert_allclose(pf.weights, 1.0 / 100)
        assert pf.estimate() is not None
        assert any('collapse' in r.message for r in caplog.records)

    def test_non_finite_measurement_ignored(self):
        pf = ParameterFilter(particle_count=50, rng=np.random.default_rng(0))
        before = pf.weights.copy()
        pf.update(float('nan'), price=1.0, p_eq=1.0)
        np.testing.assert_array_equal(pf.weights, before)


class TestEstimation:

    def test_recovers_parameters(self):
        """Noisy m*a = F - k x with k=2, F=0.5."""
        rng = np.random.default_rng(3)
        pf = ParameterFilter(
            particle_count=1000,
            process_noise_cov=[[1e-4, 0.0], [0.0, 1e-4]],
            measurement_noise_var=0.01,
            rng=np.random.default_rng(4),
        )
        k_true, f_true = 2.0, 0.5
        for _ in range(300):
            x = rng.uniform(-1, 1)
            z = f_true - k_true * x + rng.normal(0, 0.1)
            est = pf.step(z, price=100.0 + x, p_eq=100.0)
        k, f = est
        assert k == pytest.approx(k_true, abs=0.5)
        assert f == pytest.approx(f_true, abs=0.3)

    def test_deterministic_with_seed(self):
        cfg = ParameterFilterConfig(particle_count=100, random_seed=11)
        a, b = ParameterFilter.from_config(cfg), ParameterFilter.from_config(cfg)
        for z in [0.1, -0.3, 0.2]:
            ea = a.step(z, 101.0, 100.0)
            eb = b.step(z, 101.0, 100.0)
        assert ea == eb

    def test_stiffness_positive(self):
        pf = ParameterFilter(particle_count=100, rng=np.random.default_rng(0))
        k, _ = pf.step(0.0, 100.0, 100.0)
        assert k > 0

    def test_bad_process_noise(self):
        with pytest.raises(NonPositiveDefiniteError):
            ParameterFilter(process_noise_cov=[[1.0, 2.0], [2.0, 1.0]])


class TestRegressionEstimator:

    def test_exact_line(self):
        est = RegressionParameterEstimator(window=20)
        xs = np.linspace(-1, 1, 20)
        for x in xs:
            out = est.step(0.5 - 2.0 * x, price=100.0 + x, p_eq=100.0)
        k, f = out
        assert k == pytest.approx(2.0)
        assert f == pytest.approx(0.5)

    def test_burn_in(self):
        est = RegressionParameterEstimator(window=5)
        assert est.step(1.0, 101.0, 100.0) is None

    def test_non_positive_stiffness_unavailable(self):
        est = RegressionParameterEstimator(window=10)
        for x in np.linspace(-1, 1, 10):
            out = est.step(1.0 + 3.0 * x, 100.0 + x, 100.0)
        assert out[0] is None
        assert out[1] == pytest.approx(1.0)

    def test_constant_displacement(self):
        est = RegressionParameterEstimator(window=5)
        for _ in range(5):
            out = est.step(1.0, 101.0, 100.0)
        assert out is None
