"""
Pipeline configuration.

Every tunable parameter lives here. Estimators receive plain values; the
dataclasses below own defaults, validation and manifest parsing.

Defaults: a 31-point quadratic smoother and 50-sample windows everywhere
else.
"""

import logging
import os
from dataclasses import dataclass, field, fields, is_dataclass
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


# camelCase spellings accepted from older manifests
KEY_ALIASES = {
    'smoothingWindow': 'smoothing_window',
    'sgWindow': 'smoothing_window',
    'polynomialOrder': 'polynomial_order',
    'sgPolyOrder': 'polynomial_order',
    'samplingInterval': 'sampling_interval',
    'equilibriumWindow': 'equilibrium_window',
    'equilibriumMethod': 'equilibrium_method',
    'parameterMethod': 'parameter_method',
    'parameterFilter': 'parameter_filter',
    'regressionWindow': 'regression_window',
    'entropyWindow': 'entropy_window',
    'temperatureWindow': 'temperature_window',
    'temperatureMode': 'temperature_mode',
    'regimeModel': 'regime_model',
    'particleCount': 'particle_count',
    'numParticles': 'particle_count',
    'processNoiseCov': 'process_noise_cov',
    'measurementNoiseVar': 'measurement_noise_var',
    'essThreshold': 'ess_threshold',
    'initialStateMean': 'initial_state_mean',
    'initialStateCov': 'initial_state_cov',
    'randomSeed': 'random_seed',
    'candidateStateCounts': 'candidate_state_counts',
    'mixtureComponents': 'mixture_components',
    'maxIterations': 'max_iterations',
    'nInit': 'n_init',
    'randomState': 'random_state',
    'nJobs': 'n_jobs',
    'percentileWindow': 'percentile_window',
    'refitInterval': 'refit_interval',
}

EQUILIBRIUM_METHODS = ('sma', 'loess')
PARAMETER_METHODS = ('particle', 'regression')
TEMPERATURE_MODES = ('slope', 'inverse')
CLASSIFIER_MODES = ('rolling', 'hindsight')


def _normalize_keys(raw: Dict[str, Any]) -> Dict[str, Any]:
    return {KEY_ALIASES.get(k, k): v for k, v in raw.items()}


def _build(cls, raw: Optional[Dict[str, Any]]):
    """Instantiate a config dataclass from a dict, rejecting unknown keys."""
    if raw is None:
        return cls()
    if is_dataclass(raw):
        return raw
    raw = _normalize_keys(dict(raw))
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ValueError(f"Unknown {cls.__name__} keys: {', '.join(unknown)}")
    return cls(**raw)


@dataclass
class ParameterFilterConfig:
    """SIR particle filter over [log k, F]."""
    particle_count: int = 500
    process_noise_cov: List[List[float]] = field(
        default_factory=lambda: [[0.01, 0.0], [0.0, 0.01]]
    )
    measurement_noise_var: float = 1.0
    ess_threshold: Optional[float] = None  # None -> particle_count / 2
    initial_state_mean: List[float] = field(default_factory=lambda: [0.0, 0.0])
    initial_state_cov: List[List[float]] = field(
        default_factory=lambda: [[1.0, 0.0], [0.0, 1.0]]
    )
    random_seed: Optional[int] = 0

    def __post_init__(self):
        if self.particle_count < 1:
            raise ValueError(f"particle_count must be >= 1, got {self.particle_count}")
        if self.measurement_noise_var <= 0:
            raise ValueError(
                f"measurement_noise_var must be > 0, got {self.measurement_noise_var}"
            )
        if len(self.initial_state_mean) != 2:
            raise ValueError("initial_state_mean must have 2 entries: [log_k, F]")

    @property
    def effective_ess_threshold(self) -> float:
        if self.ess_threshold is None:
            return self.particle_count / 2.0
        return float(self.ess_threshold)


@dataclass
class RegimeModelConfig:
    """Gaussian-mixture HMM and BIC model selection."""
    candidate_state_counts: List[int] = field(default_factory=lambda: [2, 3, 4, 5])
    mixture_components: int = 1
    max_iterations: int = 100
    tolerance: float = 1e-5
    n_init: int = 1
    random_state: Optional[int] = 42
    reg_covar: float = 1e-6
    standardize: bool = True
    n_jobs: int = 1

    def __post_init__(self):
        if not self.candidate_state_counts:
            raise ValueError("candidate_state_counts must not be empty")
        if any(k < 1 for k in self.candidate_state_counts):
            raise ValueError("candidate_state_counts must all be >= 1")
        if self.mixture_components < 1:
            raise ValueError("mixture_components must be >= 1")
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be >= 1")

    @property
    def effective_n_jobs(self) -> int:
        """n_jobs, overridden by KINETIKOS_WORKERS (0 = all cores)."""
        env = os.environ.get('KINETIKOS_WORKERS', '').strip()
        if not env:
            return self.n_jobs
        try:
            workers = int(env)
        except ValueError:
            logger.warning("Ignoring KINETIKOS_WORKERS=%r (not an integer); using n_jobs=%d", env, self.n_jobs)
            return self.n_jobs
        if workers < 0:
            logger.warning("Ignoring KINETIKOS_WORKERS=%d (negative); using n_jobs=%d", workers, self.n_jobs)
            return self.n_jobs
        return workers or (os.cpu_count() or 1)


@dataclass
class ClassifierConfig:
    """Regime scoring (rule-based ranks and HMM refit schedule)."""
    mode: str = 'rolling'
    percentile_window: int = 200
    refit_interval: int = 50  # rolling HMM: refit on the prefix every N vectors

    def __post_init__(self):
        if self.mode not in CLASSIFIER_MODES:
            raise ValueError(f"classifier mode must be one of {CLASSIFIER_MODES}, got '{self.mode}'")
        if self.percentile_window < 1:
            raise ValueError("percentile_window must be >= 1")
        if self.refit_interval < 1:
            raise ValueError("refit_interval must be >= 1")


@dataclass
class PipelineConfig:
    """Full state-vector pipeline configuration."""
    smoothing_window: int = 31
    polynomial_order: int = 2
    sampling_interval: float = 1.0
    equilibrium_window: int = 50
    equilibrium_method: str = 'sma'
    equilibrium_period: Optional[int] = None
    parameter_method: str = 'particle'
    regression_window: int = 50
    entropy_window: int = 50
    max_bins: Optional[int] = None
    temperature_window: int = 50
    temperature_mode: str = 'slope'
    parameter_filter: ParameterFilterConfig = field(default_factory=ParameterFilterConfig)
    regime_model: RegimeModelConfig = field(default_factory=RegimeModelConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)

    def __post_init__(self):
        self.parameter_filter = _build(ParameterFilterConfig, self.parameter_filter)
        self.regime_model = _build(RegimeModelConfig, self.regime_model)
        self.classifier = _build(ClassifierConfig, self.classifier)

        if self.smoothing_window < 1:
            raise ValueError(f"smoothing_window must be >= 1, got {self.smoothing_window}")
        if not 2 <= self.polynomial_order < self.smoothing_window:
            # Acceleration (the parameter measurement) needs a quadratic term
            raise ValueError(
                f"polynomial_order must be in [2, smoothing_window), "
                f"got {self.polynomial_order} with window {self.smoothing_window}"
            )
        if self.sampling_interval <= 0:
            raise ValueError("sampling_interval must be > 0")
        for name in ('equilibrium_window', 'regression_window'):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1")
        if self.entropy_window < 2:
            raise ValueError("entropy_window must be >= 2")
        if self.temperature_window < 3:
            raise ValueError("temperature_window must be >= 3 (two differences)")
        if self.equilibrium_method not in EQUILIBRIUM_METHODS:
            raise ValueError(f"equilibrium_method must be one of {EQUILIBRIUM_METHODS}")
        if self.parameter_method not in PARAMETER_METHODS:
            raise ValueError(f"parameter_method must be one of {PARAMETER_METHODS}")
        if self.temperature_mode not in TEMPERATURE_MODES:
            raise ValueError(f"temperature_mode must be one of {TEMPERATURE_MODES}")

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> 'PipelineConfig':
        """Build from a manifest dict (snake_case or camelCase keys)."""
        return _build(cls, raw)

    def to_dict(self) -> Dict[str, Any]:
        from dataclasses import asdict
        return asdict(self)
