"""
Online Parameter Estimation
===========================

Tracks the latent restoring-force parameters of the price oscillator

    m * a(t) = F - k * (p(t-1) - p_eq(t-1)) + noise

with a Sequential Importance Resampling particle filter over x = [log k, F].
Stiffness is log-transformed so k = exp(log k) > 0 without rejection sampling.

    predict    x_t = x_{t-1} + w_t,  w_t ~ N(0, Q)   (Cholesky sampler)
    update     w_i *= N(z; h(x_i), R), renormalize, recover from collapse,
               systematic resampling when ESS < threshold
    estimate   k = exp(sum w log k),  F = sum w F

Particles are updated as one vectorized array operation per step; every
particle is independent of the others until normalization.

A causal rolling-regression estimator with the same step() contract is kept
as the simpler alternative (parameter_method: regression).
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from kinetikos.core.statistics import MvNormal, normal_logpdf

logger = logging.getLogger(__name__)

# exp() argument bound for log k; keeps k finite for any particle
_LOG_K_BOUND = 700.0


@dataclass
class ParticleSet:
    """Particle states (N, 2) as [log_k, F] and normalized weights (N,)."""
    states: np.ndarray
    weights: np.ndarray

    def __len__(self) -> int:
        return len(self.weights)


def effective_sample_size(weights: np.ndarray) -> float:
    """
    ESS = 1 / sum(w_i^2) for normalized weights.

    N means uniform weights; 1 means a single particle holds all the mass.
    """
    weights = np.asarray(weights, dtype=np.float64).ravel()
    total = np.sum(weights)
    if total <= 0 or not np.isfinite(total):
        return 1.0
    weights = weights / total
    return float(1.0 / np.sum(weights ** 2))


def systematic_resample(weights: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    """
    Low-variance resampling: one offset u0 ~ U[0, 1/N), N evenly spaced points.

    Returns:
        Indices of the selected particles (length N)
    """
    weights = np.asarray(weights, dtype=np.float64).ravel()
    n = len(weights)
    cumsum = np.cumsum(weights)
    cumsum /= cumsum[-1]
    cumsum[-1] = 1.0

    u = rng.uniform(0.0, 1.0 / n) + np.arange(n) / n
    indices = np.searchsorted(cumsum, u, side='left')
    return np.clip(indices, 0, n - 1)


class ParameterFilter:
    """
    SIR particle filter for [log k, F].

    Args:
        particle_count: Number of particles N
        initial_state_mean: Prior mean of [log k, F]
        initial_state_cov: Prior covariance (2x2)
        process_noise_cov: Random-walk covariance Q (2x2)
        measurement_noise_var: Measurement variance R
        ess_threshold: Resample when ESS falls below (default N/2)
        collapse_threshold: Total weight below which weights reset to uniform
        rng: numpy Generator (seeded by the caller for reproducibility)

    Raises:
        NonPositiveDefiniteError: if either covariance is not positive-definite
    """

    def __init__(
        self,
        particle_count: int = 500,
        initial_state_mean=(0.0, 0.0),
        initial_state_cov=((1.0, 0.0), (0.0, 1.0)),
        process_noise_cov=((0.01, 0.0), (0.0, 0.01)),
        measurement_noise_var: float = 1.0,
        ess_threshold: Optional[float] = None,
        collapse_threshold: float = 1e-9,
        rng: Optional[np.random.Generator] = None,
    ):
        if particle_count < 1:
            raise ValueError(f"particle_count must be >= 1, got {particle_count}")
        if measurement_noise_var <= 0:
            raise ValueError("measurement_noise_var must be > 0")

        self.n = particle_count
        self.rng = rng if rng is not None else np.random.default_rng()
        self.measurement_std = float(np.sqrt(measurement_noise_var))
        self.ess_threshold = particle_count / 2.0 if ess_threshold is None else float(ess_threshold)
        self._log_collapse = float(np.log(collapse_threshold))

        self.process_noise = MvNormal(np.zeros(2), process_noise_cov, rng=self.rng)
        initial = MvNormal(initial_state_mean, initial_state_cov, rng=self.rng)

        self.particles = ParticleSet(
            states=initial.sample(self.n),
            weights=np.full(self.n, 1.0 / self.n),
        )
        self.collapse_count = 0
        self.resample_count = 0

    @classmethod
    def from_config(cls, config, rng: Optional[np.random.Generator] = None) -> 'ParameterFilter':
        """Build from a ParameterFilterConfig."""
        if rng is None:
            rng = np.random.default_rng(config.random_seed)
        return cls(
            particle_count=config.particle_count,
            initial_state_mean=config.initial_state_mean,
            initial_state_cov=config.initial_state_cov,
            process_noise_cov=config.process_noise_cov,
            measurement_noise_var=config.measurement_noise_var,
            ess_threshold=config.effective_ess_threshold,
            rng=rng,
        )

    @property
    def states(self) -> np.ndarray:
        return self.particles.states

    @property
    def weights(self) -> np.ndarray:
        return self.particles.weights

    @staticmethod
    def measurement_function(states: np.ndarray, price: float, p_eq: float) -> np.ndarray:
        """h(x) = F - exp(log k) * (price - p_eq) for every particle."""
        k = np.exp(np.clip(states[:, 0], -_LOG_K_BOUND, _LOG_K_BOUND))
        return states[:, 1] - k * (price - p_eq)

    def predict(self):
        """Random-walk propagation with independent Cholesky-sampled noise per particle."""
        self.particles.states = self.particles.states + self.process_noise.sample(self.n)

    def update(self, measurement: float, price: float, p_eq: float):
        """
        Reweight by the Gaussian measurement likelihood, then resample if needed.

        Non-finite inputs leave the particle set untouched.
        """
        if not (np.isfinite(measurement) and np.isfinite(price) and np.isfinite(p_eq)):
            return

        predicted = self.measurement_function(self.particles.states, price, p_eq)
        loglik = normal_logpdf(measurement, predicted, self.measurement_std)

        with np.errstate(divide='ignore', invalid='ignore'):
            log_w = np.log(self.particles.weights) + loglik
        log_w = np.where(np.isfinite(log_w), log_w, -np.inf)

        peak = np.max(log_w)
        if not np.isfinite(peak):
            self._recover_collapse()
        else:
            log_total = peak + np.log(np.sum(np.exp(log_w - peak)))
            if log_total < self._log_collapse:
                self._recover_collapse()
            else:
                self.particles.weights = np.exp(log_w - log_total)

        if self.ess() < self.ess_threshold:
            self.resample()

    def _recover_collapse(self):
        self.collapse_count += 1
        logger.warning(
            "Particle weight collapse (all %d particles implausible); "
            "reinitializing weights uniformly", self.n
        )
        self.particles.weights = np.full(self.n, 1.0 / self.n)

    def resample(self):
        """Systematic resampling; weights reset to 1/N."""
        idx = systematic_resample(self.particles.weights, self.rng)
        self.particles.states = self.particles.states[idx].copy()
        self.particles.weights = np.full(self.n, 1.0 / self.n)
        self.resample_count += 1

    def ess(self) -> float:
        return effective_sample_size(self.particles.weights)

    def estimate(self) -> Optional[Tuple[float, float]]:
        """Weighted mean in [log k, F] space, returned as (k, F)."""
        mean = self.particles.weights @ self.particles.states
        log_k, force = float(mean[0]), float(mean[1])
        if not (np.isfinite(log_k) and np.isfinite(force)) or abs(log_k) > _LOG_K_BOUND:
            return None
        return float(np.exp(log_k)), force

    def step(self, measurement: float, price: float, p_eq: float) -> Optional[Tuple[float, float]]:
        """predict -> update -> estimate."""
        self.predict()
        self.update(measurement, price, p_eq)
        return self.estimate()


class RegressionParameterEstimator:
    """
    Rolling OLS of m*a on [1, displacement] over a trailing window.

    F = intercept, k = -slope. k is reported only when positive.
    """

    def __init__(self, window: int = 50, eps: float = 1e-12):
        if window < 2:
            raise ValueError("regression window must be >= 2")
        self.window = window
        self.eps = eps
        self._y = deque(maxlen=window)
        self._x = deque(maxlen=window)

    def step(self, measurement: float, price: float, p_eq: float) -> Optional[Tuple[Optional[float], float]]:
        if not (np.isfinite(measurement) and np.isfinite(price) and np.isfinite(p_eq)):
            return None
        self._y.append(float(measurement))
        self._x.append(float(price - p_eq))
        if len(self._y) < self.window:
            return None

        x = np.asarray(self._x)
        y = np.asarray(self._y)
        n = len(x)
        sx, sy = np.sum(x), np.sum(y)
        denom = n * np.sum(x * x) - sx * sx
        if abs(denom) < self.eps:
            return None
        slope = (n * np.sum(x * y) - sx * sy) / denom
        intercept = (sy - slope * sx) / n
        if not (np.isfinite(slope) and np.isfinite(intercept)):
            return None

        k = -float(slope)
        return (k if k > 0 else None), float(intercept)
