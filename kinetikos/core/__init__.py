"""
Kinetikos Core
==============

Numerical engines. Arrays and dataclasses in, arrays and dataclasses out,
no file I/O.

Structure:
    smoothing.py        - Causal Savitzky-Golay differentiator + coefficient cache
    equilibrium.py      - Equilibrium price (sma / robust local trend)
    statistics.py       - Cholesky, multivariate normal sampler, normal pdf
    particle_filter.py  - SIR filter over [log k, F]; rolling-regression alternative
    entropy.py          - Adaptive-binning Shannon entropy
    temperature.py      - Rolling dVolume/dEntropy slope
    rolling.py          - Generic trailing-window wrapper
    normalization.py    - Z-score scaling for regime features
    pipeline.py         - StateVectorPipeline (composition of the above)
    regime/             - GM-HMM, BIC selection, classifiers
    cancellation.py     - Cancellation token, latest-request-wins runner
    config.py           - Configuration dataclasses
    errors.py           - Error taxonomy
"""

from kinetikos.core.config import PipelineConfig, ParameterFilterConfig, RegimeModelConfig, ClassifierConfig
from kinetikos.core.errors import (
    KinetikosError,
    SingularMatrixError,
    NonPositiveDefiniteError,
    ComputationCancelled,
    ModelSelectionError,
)
from kinetikos.core.cancellation import CancellationToken, LatestRequestRunner
from kinetikos.core.smoothing import CausalSmoother, differentiate, COEFFICIENT_CACHE
from kinetikos.core.equilibrium import EquilibriumEstimator
from kinetikos.core.particle_filter import ParameterFilter, RegressionParameterEstimator
from kinetikos.core.entropy import EntropyEstimator, causal_entropy
from kinetikos.core.temperature import TemperatureEstimator
from kinetikos.core.pipeline import (
    Observation,
    StateVector,
    StateVectorPipeline,
    STATE_DIMENSIONS,
    compute_state_vectors,
    to_frame,
)

# Rolling wrapper
from kinetikos.core.rolling import compute as rolling_compute

__all__ = [
    'PipelineConfig',
    'ParameterFilterConfig',
    'RegimeModelConfig',
    'ClassifierConfig',
    'KinetikosError',
    'SingularMatrixError',
    'NonPositiveDefiniteError',
    'ComputationCancelled',
    'ModelSelectionError',
    'CancellationToken',
    'LatestRequestRunner',
    'CausalSmoother',
    'differentiate',
    'COEFFICIENT_CACHE',
    'EquilibriumEstimator',
    'ParameterFilter',
    'RegressionParameterEstimator',
    'EntropyEstimator',
    'causal_entropy',
    'TemperatureEstimator',
    'Observation',
    'StateVector',
    'StateVectorPipeline',
    'STATE_DIMENSIONS',
    'compute_state_vectors',
    'to_frame',
    'rolling_compute',
]
