"""
State Vector Pipeline
=====================

Composes the causal estimators into one online step per observation:

    price  -> CausalSmoother        -> s, v, a
    s      -> EquilibriumEstimator  -> p_eq
    (m a, s[t-1], p_eq[t-1]) -> ParameterFilter -> k, F
    potential = 1/2 k (s - p_eq)^2 - F s
    momentum  = 1/2 m v^2,  m = volume / price
    v      -> EntropyEstimator      -> entropy
    (entropy, volume) -> TemperatureEstimator -> temperature

Every output passes through a finiteness guard: a field is a finite float
or None. A missing dependency makes only the fields that need it None.
"""

import logging
import math
from dataclasses import dataclass, fields
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np
import polars as pl

from kinetikos.core.cancellation import CancellationToken, check
from kinetikos.core.config import PipelineConfig
from kinetikos.core.entropy import EntropyEstimator
from kinetikos.core.equilibrium import EquilibriumEstimator
from kinetikos.core.particle_filter import ParameterFilter, RegressionParameterEstimator
from kinetikos.core.smoothing import CausalSmoother
from kinetikos.core.temperature import TemperatureEstimator

logger = logging.getLogger(__name__)

STATE_DIMENSIONS = ('potential', 'momentum', 'entropy', 'temperature')


@dataclass(frozen=True)
class Observation:
    timestamp: float
    price: float
    volume: float


@dataclass(frozen=True)
class StateVector:
    timestamp: float
    price: Optional[float]
    volume: Optional[float]
    smoothed_price: Optional[float] = None
    velocity: Optional[float] = None
    acceleration: Optional[float] = None
    equilibrium_price: Optional[float] = None
    stiffness: Optional[float] = None
    force: Optional[float] = None
    mass: Optional[float] = None
    potential: Optional[float] = None
    momentum: Optional[float] = None
    entropy: Optional[float] = None
    temperature: Optional[float] = None

    @property
    def state(self) -> Optional[Tuple[float, float, float, float]]:
        """(potential, momentum, entropy, temperature), or None if any is missing."""
        values = tuple(getattr(self, name) for name in STATE_DIMENSIONS)
        if any(v is None for v in values):
            return None
        return values

    @property
    def complete(self) -> bool:
        return self.state is not None


STATE_VECTOR_COLUMNS = [f.name for f in fields(StateVector)]


def _finite(value) -> Optional[float]:
    if value is None:
        return None
    value = float(value)
    return value if math.isfinite(value) else None


class StateVectorPipeline:
    """
    Online, causal state-vector computation.

    Args:
        config: PipelineConfig (defaults if None)
        token: Optional CancellationToken checked before every step

    Raises:
        NonPositiveDefiniteError: at construction, for a bad filter covariance
    """

    def __init__(self, config: Optional[PipelineConfig] = None,
                 token: Optional[CancellationToken] = None):
        self.config = config if config is not None else PipelineConfig()
        self.token = token
        cfg = self.config

        self.smoother = CausalSmoother(cfg.smoothing_window, cfg.polynomial_order, cfg.sampling_interval)
        self.equilibrium = EquilibriumEstimator(
            cfg.equilibrium_window, cfg.equilibrium_method, cfg.equilibrium_period
        )
        if cfg.parameter_method == 'particle':
            self.parameters = ParameterFilter.from_config(cfg.parameter_filter)
        else:
            self.parameters = RegressionParameterEstimator(cfg.regression_window)
        self.entropy = EntropyEstimator(cfg.entropy_window, cfg.max_bins)
        self.temperature = TemperatureEstimator(cfg.temperature_window, cfg.temperature_mode)

        self._last_timestamp: Optional[float] = None
        self._prev_smoothed: Optional[float] = None
        self._prev_equilibrium: Optional[float] = None
        self.steps = 0

    def step(self, observation: Observation) -> StateVector:
        """Consume one observation and return its state vector."""
        check(self.token)

        ts = float(observation.timestamp)
        if self._last_timestamp is not None and not ts > self._last_timestamp:
            raise ValueError(
                f"Timestamps must be strictly increasing: {ts} after {self._last_timestamp}"
            )
        self._last_timestamp = ts

        price = _finite(observation.price)
        volume = _finite(observation.volume)

        deriv = self.smoother.update(price if price is not None else float('nan'))
        s = v = a = None
        if deriv is not None:
            s = _finite(deriv.smoothed_value)
            v = _finite(deriv.first_derivative)
            a = _finite(deriv.second_derivative)

        p_eq = _finite(self.equilibrium.update(s))

        mass = None
        if price is not None and volume is not None and price > 0:
            mass = _finite(volume / price)

        k = force = None
        if (a is not None and mass is not None
                and self._prev_smoothed is not None and self._prev_equilibrium is not None):
            estimate = self.parameters.step(mass * a, self._prev_smoothed, self._prev_equilibrium)
            if estimate is not None:
                k, force = _finite(estimate[0]), _finite(estimate[1])

        potential = None
        if k is not None and force is not None and s is not None and p_eq is not None:
            potential = _finite(0.5 * k * (s - p_eq) ** 2 - force * s)

        momentum = None
        if mass is not None and v is not None:
            momentum = _finite(0.5 * mass * v * v)

        entropy = _finite(self.entropy.update(v))
        temperature = _finite(
            self.temperature.update(entropy, volume if volume is not None else float('nan'))
        )

        self._prev_smoothed = s
        self._prev_equilibrium = p_eq
        self.steps += 1

        return StateVector(
            timestamp=ts,
            price=price,
            volume=volume,
            smoothed_price=s,
            velocity=v,
            acceleration=a,
            equilibrium_price=p_eq,
            stiffness=k,
            force=force,
            mass=mass,
            potential=potential,
            momentum=momentum,
            entropy=entropy,
            temperature=temperature,
        )

    def run(self, observations: Iterable[Observation]) -> List[StateVector]:
        """Step through a whole sequence."""
        vectors = [self.step(obs) for obs in observations]
        complete = sum(1 for sv in vectors if sv.complete)
        logger.info("Pipeline produced %d state vectors (%d complete)", len(vectors), complete)
        if isinstance(self.parameters, ParameterFilter) and self.parameters.collapse_count:
            logger.warning("Particle filter recovered from %d weight collapses",
                           self.parameters.collapse_count)
        return vectors


def compute_state_vectors(observations: Iterable[Observation],
                          config: Optional[PipelineConfig] = None,
                          token: Optional[CancellationToken] = None) -> List[StateVector]:
    """Fresh pipeline over a full sequence."""
    return StateVectorPipeline(config, token).run(observations)


def to_frame(vectors: Sequence[StateVector]) -> pl.DataFrame:
    """State vectors as a polars DataFrame (None -> null)."""
    schema = {name: pl.Float64 for name in STATE_VECTOR_COLUMNS}
    columns = {name: [getattr(sv, name) for sv in vectors] for name in STATE_VECTOR_COLUMNS}
    return pl.DataFrame(columns, schema=schema)


def from_frame(df: pl.DataFrame) -> List[StateVector]:
    """Inverse of to_frame (extra columns ignored)."""
    missing = [c for c in STATE_VECTOR_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"State vector frame missing columns: {missing}")
    return [StateVector(**row) for row in df.select(STATE_VECTOR_COLUMNS).iter_rows(named=True)]


def state_matrix(vectors: Sequence[StateVector]) -> Tuple[np.ndarray, np.ndarray]:
    """
    Complete 4-D states as a (T, 4) array plus their indices in `vectors`.
    """
    idx = [i for i, sv in enumerate(vectors) if sv.complete]
    if not idx:
        return np.empty((0, len(STATE_DIMENSIONS))), np.empty(0, dtype=np.int64)
    X = np.array([vectors[i].state for i in idx], dtype=np.float64)
    return X, np.asarray(idx, dtype=np.int64)
