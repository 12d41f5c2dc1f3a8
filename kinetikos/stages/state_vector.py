"""
State Vector Entry Point.

Thin orchestrator that:
1. Loads and validates observations
2. Runs the causal StateVectorPipeline
3. Adds rolling percentile-rank columns for the four state dimensions
4. Writes state_vectors.parquet

Entry point does NOT contain compute logic - only orchestration.
"""

import logging
import time
from typing import Optional

import polars as pl

from kinetikos.core.cancellation import CancellationToken
from kinetikos.core.config import PipelineConfig
from kinetikos.core.pipeline import STATE_DIMENSIONS, StateVectorPipeline, to_frame
from kinetikos.core.rolling import rolling_rank
from kinetikos.io.reader import load_observations, observations_from_frame
from kinetikos.io.writer import write_output
from kinetikos.validation import validate_observations

logger = logging.getLogger(__name__)


def add_rank_columns(df: pl.DataFrame, window: int) -> pl.DataFrame:
    """rank_<dim>: percentile of each value within its trailing window (null until full)."""
    return df.with_columns([
        pl.Series(f'rank_{dim}', rolling_rank(df[dim].to_list(), window), dtype=pl.Float64)
        for dim in STATE_DIMENSIONS
    ])


def run(
    observations_path: str,
    output_dir: str,
    config: Optional[PipelineConfig] = None,
    verbose: bool = True,
    token: Optional[CancellationToken] = None,
) -> pl.DataFrame:
    """
    Compute state vectors for one observation series.

    Args:
        observations_path: .parquet / .csv file or directory holding observations
        output_dir: Where to write state_vectors.parquet
        config: PipelineConfig (defaults if None)
        verbose: Print progress
        token: Optional cancellation token

    Returns:
        state vector DataFrame

    Raises:
        ValidationError: if the observations are unusable
    """
    config = config if config is not None else PipelineConfig()

    if verbose:
        print("=" * 70)
        print("STAGE: STATE VECTOR")
        print("Potential / Momentum / Entropy / Temperature (causal)")
        print("=" * 70)

    obs = load_observations(observations_path)
    report = validate_observations(obs)
    for w in report.warnings:
        logger.warning(w)
    report.raise_on_error()

    if verbose:
        print(f"Observations: {obs.height:,}")
        print(f"Smoother:     window={config.smoothing_window} order={config.polynomial_order}")
        print(f"Parameters:   {config.parameter_method}")

    start = time.time()
    pipeline = StateVectorPipeline(config, token=token)
    vectors = pipeline.run(observations_from_frame(obs))

    df = add_rank_columns(to_frame(vectors), config.classifier.percentile_window)
    complete = sum(1 for sv in vectors if sv.complete)

    if verbose:
        print(f"Complete vectors: {complete:,}/{len(vectors):,} ({time.time() - start:.1f}s)")
        if isinstance(getattr(pipeline.parameters, 'collapse_count', None), int):
            print(f"Weight collapses: {pipeline.parameters.collapse_count}")

    write_output(df, output_dir, 'state_vectors', verbose=verbose)
    return df
