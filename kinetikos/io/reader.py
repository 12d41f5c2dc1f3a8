"""
Reader: all observation and output reads go through here.

No other module should call pl.read_parquet / pl.read_csv directly.
"""

import polars as pl
from pathlib import Path
from typing import List, Optional

from kinetikos.core.pipeline import Observation

REQUIRED_COLUMNS = ('timestamp', 'price', 'volume')

# Output name -> filename
OUTPUT_FILES = {
    'state_vectors':     'state_vectors.parquet',
    'regime_posteriors': 'regime_posteriors.parquet',
    'regime_scores':     'regime_scores.parquet',
    'summary':           'summary.json',
    'regime_model':      'regime_model.json',
}


def _read_any(p: Path) -> pl.DataFrame:
    if p.suffix == '.parquet':
        return pl.read_parquet(str(p))
    if p.suffix == '.csv':
        return pl.read_csv(str(p), try_parse_dates=True)
    raise ValueError(f"Unsupported observations format: {p.suffix} (expected .parquet or .csv)")


def normalize_observations(df: pl.DataFrame) -> pl.DataFrame:
    """
    Coerce to (timestamp: Float64 epoch-ms, price: Float64, volume: Float64), sorted.

    Datetime/Date timestamps become epoch milliseconds. Extra columns are kept.
    """
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Observations missing required columns: {missing}")

    ts_dtype = df.schema['timestamp']
    if ts_dtype == pl.Date:
        ts = pl.col('timestamp').cast(pl.Datetime('ms')).dt.epoch('ms')
    elif isinstance(ts_dtype, pl.Datetime):
        ts = pl.col('timestamp').dt.epoch('ms')
    else:
        ts = pl.col('timestamp')

    return df.with_columns(
        ts.cast(pl.Float64).alias('timestamp'),
        pl.col('price').cast(pl.Float64),
        pl.col('volume').cast(pl.Float64),
    ).sort('timestamp')


def load_observations(data_path: str) -> pl.DataFrame:
    """
    Load observations from a .parquet/.csv file, or from observations.parquet
    (then observations.csv) inside a directory. Sorted by timestamp.
    """
    p = Path(data_path)
    if p.is_file():
        df = _read_any(p)
    elif (p / 'observations.parquet').exists():
        df = _read_any(p / 'observations.parquet')
    elif (p / 'observations.csv').exists():
        df = _read_any(p / 'observations.csv')
    else:
        raise FileNotFoundError(f"No observations file at {data_path}")
    return normalize_observations(df)


def observations_from_frame(df: pl.DataFrame) -> List[Observation]:
    """Rows of a normalized frame as Observation records (nulls become NaN)."""
    rows = df.select(REQUIRED_COLUMNS).iter_rows()
    nan = float('nan')
    return [
        Observation(
            timestamp=ts,
            price=nan if price is None else price,
            volume=nan if volume is None else volume,
        )
        for ts, price, volume in rows
    ]


def output_path(output_dir: str, name: str) -> Path:
    """Path of a named output inside output_dir (created if needed)."""
    d = Path(output_dir)
    d.mkdir(parents=True, exist_ok=True)
    return d / OUTPUT_FILES.get(name, f"{name}.parquet")


def load_output(output_dir: str, name: str) -> Optional[pl.DataFrame]:
    """Load a parquet output by name, or None if it was never written."""
    path = Path(output_dir) / OUTPUT_FILES.get(name, f"{name}.parquet")
    if path.suffix != '.parquet' or not path.exists():
        return None
    return pl.read_parquet(str(path))
