# county_survey_regression/results.py
"""Immutable value objects produced by the fitters.

Numpy arrays stored on these objects are flagged read-only when the object is
built; refitting always produces a new object.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np
import polars as pl

from county_survey_regression.dataset import INTERCEPT_NAME, predictor_matrix


def _readonly(values: Any) -> np.ndarray:
    arr = np.array(values, dtype=np.float64, copy=True)
    arr.setflags(write=False)
    return arr


def _freeze_arrays(obj: object, names: tuple[str, ...]) -> None:
    for name in names:
        value = getattr(obj, name)
        if value is not None:
            object.__setattr__(obj, name, _readonly(value))


def _json_float(x: float | None) -> float | None:
    if x is None:
        return None
    x = float(x)
    return x if np.isfinite(x) else None


@dataclass(frozen=True)
class FittedModel:
    """A fitted linear model.

    ``coefficients`` is aligned with ``predictors``. The per-parameter
    inference arrays (``std_errors``, ``t_values``, ``p_values``) are aligned
    with ``param_names`` (intercept first) and are ``None`` for lasso fits.
    """

    method: str
    response: str
    predictors: tuple[str, ...]
    intercept: float
    coefficients: np.ndarray
    nobs: int
    fitted_values: np.ndarray
    weights: np.ndarray
    weight_policy: str = "unit"
    penalty: float | None = None
    std_errors: np.ndarray | None = None
    t_values: np.ndarray | None = None
    p_values: np.ndarray | None = None
    residual_std_error: float | None = None
    df_resid: float | None = None
    ssr: float | None = None
    r_squared: float | None = None
    adj_r_squared: float | None = None
    f_statistic: float | None = None
    f_pvalue: float | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "predictors", tuple(self.predictors))
        _freeze_arrays(
            self,
            ("coefficients", "fitted_values", "weights", "std_errors", "t_values", "p_values"),
        )

    @property
    def param_names(self) -> tuple[str, ...]:
        return (INTERCEPT_NAME, *self.predictors)

    @property
    def params(self) -> np.ndarray:
        """Intercept followed by the predictor coefficients."""
        return np.concatenate([[self.intercept], self.coefficients])

    @property
    def n_params(self) -> int:
        return len(self.predictors) + 1

    def coefficient(self, name: str) -> float:
        if name == INTERCEPT_NAME:
            return float(self.intercept)
        try:
            idx = self.predictors.index(name)
        except ValueError:
            raise KeyError(f"Unknown coefficient '{name}'. Available: {list(self.param_names)}") from None
        return float(self.coefficients[idx])

    def nonzero_predictors(self) -> list[str]:
        return [p for p, c in zip(self.predictors, self.coefficients) if c != 0.0]

    def predict(self, df: pl.DataFrame) -> np.ndarray:
        """Apply the fitted coefficients to ``df``'s predictor columns."""
        X = predictor_matrix(df, list(self.predictors))
        return self.intercept + X @ self.coefficients

    def coefficient_table(self) -> pl.DataFrame:
        """One row per parameter: coefficient, std_error, t_stat, p_value."""
        n = self.n_params

        def _column(values: np.ndarray | None) -> list[float | None]:
            if values is None:
                return [None] * n
            return [float(v) for v in values]

        return pl.DataFrame(
            {
                "parameter": list(self.param_names),
                "coefficient": [float(v) for v in self.params],
                "std_error": _column(self.std_errors),
                "t_stat": _column(self.t_values),
                "p_value": _column(self.p_values),
            },
            schema={
                "parameter": pl.Utf8,
                "coefficient": pl.Float64,
                "std_error": pl.Float64,
                "t_stat": pl.Float64,
                "p_value": pl.Float64,
            },
        )

    def summary_dict(self) -> dict[str, Any]:
        """JSON-safe summary (non-finite values become ``None``)."""

        def _by_param(values: np.ndarray | None) -> dict[str, float | None] | None:
            if values is None:
                return None
            return {k: _json_float(v) for k, v in zip(self.param_names, values)}

        return {
            "method": self.method,
            "response": self.response,
            "weight_policy": self.weight_policy,
            "penalty": _json_float(self.penalty),
            "nobs": int(self.nobs),
            "params": _by_param(self.params),
            "bse": _by_param(self.std_errors),
            "tvalues": _by_param(self.t_values),
            "pvalues": _by_param(self.p_values),
            "residual_std_error": _json_float(self.residual_std_error),
            "df_resid": _json_float(self.df_resid),
            "rsquared": _json_float(self.r_squared),
            "rsquared_adj": _json_float(self.adj_r_squared),
            "fvalue": _json_float(self.f_statistic),
            "f_pvalue": _json_float(self.f_pvalue),
        }


@dataclass(frozen=True)
class DiagnosticSet:
    """Per-observation residual and influence statistics for a fit."""

    leverage: np.ndarray
    standardized_residuals: np.ndarray
    studentized_residuals: np.ndarray
    cooks_distance: np.ndarray
    n_params: int

    def __post_init__(self) -> None:
        _freeze_arrays(
            self,
            ("leverage", "standardized_residuals", "studentized_residuals", "cooks_distance"),
        )

    @property
    def nobs(self) -> int:
        return int(self.leverage.shape[0])

    def influential(self, threshold: float | None = None) -> np.ndarray:
        """Row indices whose Cook's distance exceeds ``threshold`` (default 4/n)."""
        if threshold is None:
            threshold = 4.0 / self.nobs
        return np.flatnonzero(self.cooks_distance > threshold)

    def to_frame(self) -> pl.DataFrame:
        return pl.DataFrame({
            "row": np.arange(self.nobs),
            "leverage": self.leverage,
            "standardized_residual": self.standardized_residuals,
            "studentized_residual": self.studentized_residuals,
            "cooks_distance": self.cooks_distance,
        })


@dataclass(frozen=True)
class JointTestResult:
    """Nested-model F test that the named coefficients are all zero."""

    coefficients: tuple[str, ...]
    f_statistic: float
    df_num: float
    df_denom: float
    p_value: float
    significance_level: float
    reject: bool


@dataclass(frozen=True)
class FoldAssignment:
    """Disjoint row-index groups covering ``range(n_observations)`` exactly once."""

    folds: tuple[np.ndarray, ...]
    n_observations: int
    seed: int

    def __post_init__(self) -> None:
        frozen = []
        for fold in self.folds:
            arr = np.array(fold, dtype=np.int64, copy=True)
            arr.setflags(write=False)
            frozen.append(arr)
        object.__setattr__(self, "folds", tuple(frozen))

    @property
    def n_folds(self) -> int:
        return len(self.folds)

    def sizes(self) -> list[int]:
        return [int(f.shape[0]) for f in self.folds]

    def training_indices(self, fold: int) -> np.ndarray:
        """Every row index not held out in ``fold``."""
        mask = np.ones(self.n_observations, dtype=bool)
        mask[self.folds[fold]] = False
        return np.flatnonzero(mask)


@dataclass(frozen=True)
class CrossValidationResult:
    """Cross-validated error along a descending penalty grid.

    ``fold_mse`` has shape ``(n_folds, n_penalties)``; ``mean_mse`` and
    ``se_mse`` reduce it over folds.
    """

    penalties: np.ndarray
    mean_mse: np.ndarray
    se_mse: np.ndarray
    fold_mse: np.ndarray
    lambda_min: float

    def __post_init__(self) -> None:
        _freeze_arrays(self, ("penalties", "mean_mse", "se_mse", "fold_mse"))

    @property
    def n_folds(self) -> int:
        return int(self.fold_mse.shape[0])

    @property
    def index_min(self) -> int:
        return int(np.flatnonzero(self.penalties == self.lambda_min)[0])

    def to_frame(self) -> pl.DataFrame:
        return pl.DataFrame({
            "penalty": self.penalties,
            "mean_mse": self.mean_mse,
            "se_mse": self.se_mse,
            "selected": self.penalties == self.lambda_min,
        })


@dataclass(frozen=True)
class CoefficientPath:
    """Lasso coefficients on the full training data, one row per penalty."""

    predictors: tuple[str, ...]
    penalties: np.ndarray
    coefficients: np.ndarray
    intercepts: np.ndarray

    def __post_init__(self) -> None:
        object.__setattr__(self, "predictors", tuple(self.predictors))
        _freeze_arrays(self, ("penalties", "coefficients", "intercepts"))

    def nonzero_counts(self) -> np.ndarray:
        return np.count_nonzero(self.coefficients, axis=1)

    def to_frame(self) -> pl.DataFrame:
        data: dict[str, Any] = {"penalty": self.penalties}
        for j, name in enumerate(self.predictors):
            data[name] = self.coefficients[:, j]
        return pl.DataFrame(data)


@dataclass(frozen=True)
class LassoSelection:
    """Output of the cross-validated lasso: CV curve, path, refit model, predictions."""

    folds: FoldAssignment
    cv: CrossValidationResult
    path: CoefficientPath
    model: FittedModel
    predictions: np.ndarray = field(repr=False)

    def __post_init__(self) -> None:
        _freeze_arrays(self, ("predictions",))

    @property
    def lambda_min(self) -> float:
        return self.cv.lambda_min
