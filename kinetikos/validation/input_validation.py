"""
Input Data Validation

Validates an observations frame before the state-vector stage.

PRINCIPLE: the pipeline tolerates degenerate rows (they yield None fields),
but it cannot recover from a broken time axis or an unusable schema.

Usage:
    from kinetikos.validation import validate_observations

    report = validate_observations(df)
    if not report.valid:
        print(report.summary())
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List

import polars as pl

from kinetikos.io.reader import REQUIRED_COLUMNS


class ValidationError(Exception):
    """Raised when input validation fails."""

    def __init__(self, errors: List[str], warnings: List[str] = None):
        self.errors = errors
        self.warnings = warnings or []

        message = "Input validation failed:\n" + "\n".join(
            f"  ERROR: {e}" for e in errors
        )
        if warnings:
            message += "\n" + "\n".join(f"  WARNING: {w}" for w in warnings)

        super().__init__(message)


@dataclass
class InputValidationReport:
    """Report from input validation."""

    valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    total_observations: int = 0
    non_positive_prices: int = 0
    zero_volume_rows: int = 0
    first_timestamp: float = None
    last_timestamp: float = None

    def summary(self) -> str:
        """Human-readable summary."""
        lines = [
            "=" * 60,
            "INPUT VALIDATION REPORT",
            "=" * 60,
            "",
            f"Total observations: {self.total_observations:,}",
            f"  Non-positive prices: {self.non_positive_prices}",
            f"  Zero-volume rows: {self.zero_volume_rows}",
        ]
        if self.first_timestamp is not None:
            lines.append(f"Time span: {self.first_timestamp} .. {self.last_timestamp}")
        lines.append("")

        if self.errors:
            lines.append("ERRORS:")
            for e in self.errors:
                lines.append(f"  - {e}")
            lines.append("")

        if self.warnings:
            lines.append("WARNINGS:")
            for w in self.warnings:
                lines.append(f"  - {w}")
            lines.append("")

        status = "PASSED" if self.valid else "FAILED"
        lines.append(f"Status: {status}")
        lines.append("=" * 60)

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to serializable dict."""
        return {
            'valid': self.valid,
            'errors': self.errors,
            'warnings': self.warnings,
            'total_observations': self.total_observations,
            'non_positive_prices': self.non_positive_prices,
            'zero_volume_rows': self.zero_volume_rows,
            'first_timestamp': self.first_timestamp,
            'last_timestamp': self.last_timestamp,
        }

    def raise_on_error(self):
        if not self.valid:
            raise ValidationError(self.errors, self.warnings)


def validate_observations(df: pl.DataFrame) -> InputValidationReport:
    """
    Check an observations frame (timestamp, price, volume).

    Errors: missing columns, no rows, nulls or non-finite values, timestamps
    not strictly increasing, negative volume.
    Warnings: non-positive prices (mass unavailable), zero-volume rows.

    The frame is checked in its given row order.
    """
    report = InputValidationReport()

    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        report.errors.append(f"Missing required columns: {missing}")
        report.valid = False
        return report

    report.total_observations = df.height
    if df.height == 0:
        report.errors.append("No observations")
        report.valid = False
        return report

    for col in REQUIRED_COLUMNS:
        if not df.schema[col].is_numeric():
            report.errors.append(f"Column '{col}' must be numeric, got {df.schema[col]}")
    if report.errors:
        report.valid = False
        return report

    cols = df.select([pl.col(c).cast(pl.Float64) for c in REQUIRED_COLUMNS])

    for col in REQUIRED_COLUMNS:
        n_null = cols[col].null_count()
        n_bad = cols.filter(pl.col(col).is_not_null() & ~pl.col(col).is_finite()).height
        if n_null:
            report.errors.append(f"Column '{col}' has {n_null} null values")
        if n_bad:
            report.errors.append(f"Column '{col}' has {n_bad} NaN/infinite values")

    ts = cols['timestamp'].drop_nulls()
    if len(ts) > 1:
        n_bad_order = int((ts.diff().drop_nulls() <= 0).sum())
        if n_bad_order:
            report.errors.append(
                f"Timestamps must be strictly increasing ({n_bad_order} violations)"
            )
    if len(ts):
        report.first_timestamp = float(ts.min())
        report.last_timestamp = float(ts.max())

    n_neg_volume = cols.filter(pl.col('volume') < 0).height
    if n_neg_volume:
        report.errors.append(f"{n_neg_volume} rows have negative volume")

    report.non_positive_prices = cols.filter(pl.col('price') <= 0).height
    if report.non_positive_prices:
        report.warnings.append(
            f"{report.non_positive_prices} rows have price <= 0 (mass unavailable there)"
        )

    report.zero_volume_rows = cols.filter(pl.col('volume') == 0).height
    if report.zero_volume_rows:
        report.warnings.append(f"{report.zero_volume_rows} rows have zero volume")

    report.valid = len(report.errors) == 0
    return report
