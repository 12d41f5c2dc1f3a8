import numpy as np
import pytest

from kinetikos.core.config import PipelineConfig
from kinetikos.core.pipeline import Observation


def make_observations(prices, volumes, start=0.0, step=1000.0):
    return [
        Observation(timestamp=start + i * step, price=float(p), volume=float(v))
        for i, (p, v) in enumerate(zip(prices, volumes))
    ]


@pytest.fixture
def make_obs():
    """Factory: (prices, volumes) -> Observations one second apart."""
    return make_observations


@pytest.fixture
def small_config():
    """Short windows so burn-in ends quickly."""
    return PipelineConfig(
        smoothing_window=5,
        polynomial_order=2,
        equilibrium_window=10,
        entropy_window=10,
        temperature_window=10,
        parameter_filter={'particle_count': 200, 'random_seed': 7},
    )


@pytest.fixture
def random_walk_observations():
    rng = np.random.default_rng(42)
    prices = 100.0 + np.cumsum(rng.normal(0, 1, 300))
    volumes = rng.uniform(500, 1500, 300)
    return make_observations(prices, volumes)


@pytest.fixture
def two_regime_data():
    """400 x 4 samples alternating between two well-separated Gaussian regimes."""
    rng = np.random.default_rng(0)
    labels = np.repeat([0, 1, 0, 1], 100)
    means = np.array([[0.0, 0.0, 0.0, 0.0], [5.0, 5.0, 5.0, 5.0]])
    X = means[labels] + rng.standard_normal((400, 4))
    return X, labels
