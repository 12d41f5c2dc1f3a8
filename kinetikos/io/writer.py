"""
Writer: all output writes go through here.

No other module should call df.write_parquet directly.
"""

import json
import logging
import math
import polars as pl
from pathlib import Path
from typing import Any, Optional

from kinetikos.io.reader import output_path

logger = logging.getLogger(__name__)


def _safe_write(df: pl.DataFrame, path: Path, verbose: bool = True, metadata: dict = None) -> bool:
    """
    Guard against writing invalid parquet files.

    Returns True if a file was written, False if skipped.
    """
    if df is None:
        return False

    if len(df.columns) == 0:
        if verbose:
            print(f"  !! Skipped {path} (empty schema, 0 columns)")
        return False

    kw = {"metadata": metadata} if metadata else {}
    # Zero-row frames still write their schema
    df.write_parquet(str(path), **kw)
    return True


def write_output(
    df: pl.DataFrame,
    output_dir: str,
    name: str,
    verbose: bool = True,
    metadata: dict = None,
) -> Optional[Path]:
    """
    Write a named parquet output.

    Args:
        df: DataFrame to write (None or empty-schema -> skip)
        output_dir: Output directory
        name: Output name (e.g. 'state_vectors', 'regime_posteriors')
        verbose: Print path on write
        metadata: Optional Parquet file-level key-value metadata

    Returns:
        Path to written file, or None if skipped
    """
    path = output_path(output_dir, name)

    if not _safe_write(df, path, verbose=verbose, metadata=metadata):
        return None

    if verbose:
        print(f"  -> {path} ({len(df)} rows)")
    logger.info("Wrote %s (%d rows)", path, len(df))
    return path


def _json_safe(obj: Any) -> Any:
    if isinstance(obj, float):
        return obj if math.isfinite(obj) else None
    if isinstance(obj, dict):
        return {str(k): _json_safe(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_json_safe(v) for v in obj]
    return obj


def write_json(payload: Any, output_dir: str, name: str, verbose: bool = True) -> Path:
    """Write a JSON output; non-finite floats become null."""
    path = output_path(output_dir, name)
    with open(path, 'w') as f:
        json.dump(_json_safe(payload), f, indent=2)
    if verbose:
        print(f"  -> {path}")
    logger.info("Wrote %s", path)
    return path
