"""
Kinetikos: causal market state vector and regime engine.

Public API:
    from kinetikos import run
    run(observations_path, output_dir)

Two layers:
    kinetikos.stages     Runners: orchestrate I/O (read observations, call engines, write parquet)
    kinetikos.core       Engines: compute (no file I/O)

Also:
    kinetikos.io         Parquet/CSV/JSON I/O (reader, writer, manifest, model)
    kinetikos.validation Input validation (schema, strictly increasing timestamps)

State vector, per observation (causal):
    Potential    1/2 k (s - p_eq)^2 - F s
    Momentum     1/2 m v^2
    Entropy      adaptive-binning Shannon entropy of velocity
    Temperature  rolling dVolume/dEntropy
"""

from kinetikos.run import run

__all__ = ["run"]
