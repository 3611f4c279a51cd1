# county_survey_regression/dataset.py
"""Dataset handling for the county survey regressions.

The fitters consume a ``polars.DataFrame`` that is already restricted to
complete cases for the columns they use. Helpers here do that filtering,
derive transformed responses, split a frame into training and application
periods, and extract numpy design arrays.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from pathlib import Path

import numpy as np
import polars as pl

logger = logging.getLogger(__name__)

__all__ = [
    "INTERCEPT_NAME",
    "add_sqrt_response",
    "complete_cases",
    "load_survey_csv",
    "predictor_matrix",
    "require_columns",
    "response_vector",
    "split_by_period",
    "validate_predictors",
]

_FLOAT_TYPES = (pl.Float32, pl.Float64)

# statsmodels' name for the column added by add_constant
INTERCEPT_NAME = "const"


def require_columns(df: pl.DataFrame, columns: Sequence[str]) -> None:
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns: {missing}")


def validate_predictors(response: str, predictors: Sequence[str]) -> list[str]:
    """Non-empty, unique predictor names that exclude the response and the intercept name."""
    predictors = list(predictors)
    if not predictors:
        raise ValueError("At least one predictor is required")
    dupes = sorted({p for p in predictors if predictors.count(p) > 1})
    if dupes:
        raise ValueError(f"Duplicate predictor names: {dupes}")
    if response in predictors:
        raise ValueError(f"Response '{response}' cannot also be a predictor")
    if INTERCEPT_NAME in predictors:
        raise ValueError(f"'{INTERCEPT_NAME}' is reserved for the intercept")
    return predictors


def load_survey_csv(path: Path | str, columns: Sequence[str] | None = None) -> pl.DataFrame:
    """Read the county survey CSV, optionally restricted to ``columns``."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Survey data not found: {path}")

    logger.info("Loading survey data from %s", path)
    df = pl.read_csv(path, infer_schema_length=10_000, null_values=["", "NA"])
    if columns is not None:
        require_columns(df, columns)
        df = df.select(list(columns))

    logger.info("  Loaded %s rows x %d columns", f"{df.height:,}", len(df.columns))
    return df


def complete_cases(df: pl.DataFrame, columns: Sequence[str]) -> pl.DataFrame:
    """Drop rows with a null (or NaN, for float columns) in any of ``columns``."""
    columns = list(dict.fromkeys(columns))
    require_columns(df, columns)

    conditions = []
    for col in columns:
        expr = pl.col(col).is_not_null()
        if df.schema[col] in _FLOAT_TYPES:
            expr = expr & pl.col(col).is_not_nan()
        conditions.append(expr)

    out = df.filter(pl.all_horizontal(conditions)) if conditions else df
    dropped = df.height - out.height
    if dropped:
        logger.info(
            "Complete-case filter dropped %s of %s rows (%.1f%%)",
            f"{dropped:,}",
            f"{df.height:,}",
            100 * dropped / df.height,
        )
    return out


def add_sqrt_response(df: pl.DataFrame, column: str, alias: str | None = None) -> pl.DataFrame:
    """Append ``sqrt(column)`` as a new column (default name ``sqrt_<column>``)."""
    require_columns(df, [column])
    alias = alias or f"sqrt_{column}"

    n_negative = df.filter(pl.col(column) < 0).height
    if n_negative:
        raise ValueError(f"{column} has {n_negative} negative value(s); square root is undefined")

    return df.with_columns(pl.col(column).cast(pl.Float64).sqrt().alias(alias))


def split_by_period(
    df: pl.DataFrame,
    period_column: str,
    training_periods: Iterable[object],
    application_periods: Iterable[object],
) -> tuple[pl.DataFrame, pl.DataFrame]:
    """Split ``df`` into disjoint training and application slices by period value."""
    require_columns(df, [period_column])
    training = list(dict.fromkeys(training_periods))
    application = list(dict.fromkeys(application_periods))

    overlap = sorted(set(training) & set(application), key=str)
    if overlap:
        raise ValueError(f"Training and application periods overlap: {overlap}")

    train_df = df.filter(pl.col(period_column).is_in(training))
    apply_df = df.filter(pl.col(period_column).is_in(application))
    if train_df.is_empty():
        raise ValueError(f"No rows for training periods {training} in column '{period_column}'")
    if apply_df.is_empty():
        raise ValueError(f"No rows for application periods {application} in column '{period_column}'")

    logger.info(
        "Period split on %s: %s training rows, %s application rows",
        period_column,
        f"{train_df.height:,}",
        f"{apply_df.height:,}",
    )
    return train_df, apply_df


def _finite_float_array(df: pl.DataFrame, columns: list[str]) -> np.ndarray:
    arr = df.select(columns).to_numpy().astype(np.float64)
    if not np.isfinite(arr).all():
        bad = [c for c, ok in zip(columns, np.isfinite(arr).all(axis=0)) if not ok]
        raise ValueError(f"Non-finite values in {bad}; filter to complete cases first")
    return arr


def predictor_matrix(df: pl.DataFrame, predictors: Sequence[str]) -> np.ndarray:
    """(n, p) float64 matrix of ``predictors`` in the given order, no intercept column."""
    predictors = list(predictors)
    require_columns(df, predictors)
    if not predictors:
        return np.empty((df.height, 0), dtype=np.float64)
    return _finite_float_array(df, predictors)


def response_vector(df: pl.DataFrame, response: str) -> np.ndarray:
    require_columns(df, [response])
    return _finite_float_array(df, [response])[:, 0]
