"""
Stage runners: orchestrate I/O around the core engines.

    state_vector.py  observations -> state_vectors.parquet
    regime.py        state_vectors.parquet -> regime scores / posteriors, summary.json
"""
