# county_survey_regression/exceptions.py
"""Errors raised by the regression core.

Every error here is terminal for the fit that raised it: nothing is retried
and no partial result is returned.
"""

from __future__ import annotations


class RegressionCoreError(Exception):
    """Base class for regression core failures."""


class SingularDesignError(RegressionCoreError):
    """The (weighted) design matrix is not full column rank."""

    def __init__(self, rank: int, n_columns: int, columns: list[str] | None = None) -> None:
        self.rank = rank
        self.n_columns = n_columns
        self.columns = list(columns) if columns is not None else []
        detail = f" (columns: {self.columns})" if self.columns else ""
        super().__init__(f"Design matrix has rank {rank} < {n_columns} columns{detail}")


class NonPositiveWeightError(RegressionCoreError):
    """An OLS fitted value was <= 0, so the inverse-fitted weight is undefined."""

    def __init__(self, n_bad: int, min_fitted: float) -> None:
        self.n_bad = n_bad
        self.min_fitted = min_fitted
        super().__init__(
            f"{n_bad} OLS fitted value(s) are <= 0 (min={min_fitted:.6g}); cannot form weights 1/fitted"
        )


class InsufficientFoldSizeError(RegressionCoreError):
    """More folds were requested than there are observations."""

    def __init__(self, n_folds: int, n_observations: int) -> None:
        self.n_folds = n_folds
        self.n_observations = n_observations
        super().__init__(f"Cannot split {n_observations} observations into {n_folds} folds")


class EmptyPredictorSetError(RegressionCoreError):
    """Every candidate penalty zeroed every lasso coefficient."""
