# county_survey_regression/lasso_selection.py
"""k-fold cross-validated lasso: fold assignment, path CV, selection and apply.

Stages run in order and each returns an immutable artifact:

1. ``assign_folds``   -> FoldAssignment
2. ``cross_validate`` -> CrossValidationResult
3. ``select_and_apply`` refits on the full training slice at ``lambda_min``
   and predicts on the application slice -> LassoSelection

``lambda_min`` is the strict minimiser of mean CV error; ties go to the larger
penalty. The application slice's response is never read during selection;
``prediction_error`` scores the predictions afterwards.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import numpy as np
import polars as pl
from joblib import Parallel, delayed
from numpy.typing import NDArray
from sklearn.metrics import mean_squared_error, r2_score

from county_survey_regression.dataset import (
    predictor_matrix,
    require_columns,
    response_vector,
    validate_predictors,
)
from county_survey_regression.exceptions import EmptyPredictorSetError, InsufficientFoldSizeError
from county_survey_regression.results import (
    CoefficientPath,
    CrossValidationResult,
    FittedModel,
    FoldAssignment,
    LassoSelection,
)
from county_survey_regression.solver import fit_lasso, lasso_path_coefficients, penalty_grid

logger = logging.getLogger(__name__)

__all__ = [
    "assign_folds",
    "cross_validate",
    "normalize_penalties",
    "prediction_error",
    "select_and_apply",
    "select_penalty",
]

DEFAULT_N_PENALTIES = 100


# =============================================================================
# 1. FOLD ASSIGNMENT
# =============================================================================


def assign_folds(n_observations: int, n_folds: int, *, seed: int) -> FoldAssignment:
    """Randomly partition ``range(n_observations)`` into ``n_folds`` near-equal folds.

    Fold sizes differ by at most one. The same seed always gives the same folds.
    """
    if isinstance(seed, bool) or not isinstance(seed, (int, np.integer)):
        raise ValueError(f"seed must be an integer, got {seed!r}")
    if n_folds < 2:
        raise ValueError(f"n_folds must be >= 2, got {n_folds}")
    if n_folds > n_observations:
        raise InsufficientFoldSizeError(n_folds, n_observations)

    rng = np.random.default_rng(seed)
    order = rng.permutation(n_observations)
    folds = tuple(np.sort(chunk) for chunk in np.array_split(order, n_folds))
    return FoldAssignment(folds=folds, n_observations=n_observations, seed=int(seed))


# =============================================================================
# 2. PATH CROSS-VALIDATION
# =============================================================================


def normalize_penalties(penalties: Sequence[float] | NDArray[np.float64]) -> np.ndarray:
    """Validate a caller-supplied grid; return it de-duplicated and sorted descending."""
    arr = np.asarray(penalties, dtype=np.float64).ravel()
    if arr.size == 0:
        raise ValueError("Penalty grid is empty")
    if not np.isfinite(arr).all() or (arr < 0).any():
        raise ValueError("Penalties must be finite and >= 0")
    return np.unique(arr)[::-1].copy()


def _fold_path_mse(
    X: np.ndarray,
    y: np.ndarray,
    folds: FoldAssignment,
    fold: int,
    penalties: np.ndarray,
) -> np.ndarray:
    """Held-out MSE of fold ``fold`` at every penalty, fitting on the other folds."""
    train_idx = folds.training_indices(fold)
    test_idx = folds.folds[fold]

    intercepts, coefs = lasso_path_coefficients(X[train_idx], y[train_idx], penalties)
    preds = intercepts[:, None] + coefs @ X[test_idx].T
    mse = np.mean((preds - y[test_idx][None, :]) ** 2, axis=1)
    logger.debug("  Fold %d: %d train / %d held out", fold, train_idx.size, test_idx.size)
    return mse


def select_penalty(penalties: NDArray[np.float64], mean_mse: NDArray[np.float64]) -> float:
    """Penalty with the smallest mean CV error; ties go to the larger penalty."""
    penalties = np.asarray(penalties, dtype=np.float64)
    mean_mse = np.asarray(mean_mse, dtype=np.float64)
    if penalties.shape != mean_mse.shape or penalties.size == 0:
        raise ValueError("penalties and mean_mse must be non-empty and the same length")
    if not np.isfinite(mean_mse).all():
        raise ValueError("Cross-validated error contains non-finite values")

    order = np.argsort(-penalties, kind="stable")
    # argmin returns the first minimum, i.e. the largest penalty among ties
    best = int(np.argmin(mean_mse[order]))
    return float(penalties[order][best])


def cross_validate(
    dataset: pl.DataFrame,
    response: str,
    predictors: Sequence[str],
    folds: FoldAssignment,
    penalties: Sequence[float] | NDArray[np.float64] | None = None,
    *,
    n_penalties: int = DEFAULT_N_PENALTIES,
    n_jobs: int = 1,
) -> CrossValidationResult:
    """Mean and standard error of held-out MSE along a descending penalty grid.

    Without ``penalties`` the grid is generated from the full ``dataset`` with
    ``penalty_grid``. Per-fold errors are stacked by fold index before
    reducing, so the result does not depend on ``n_jobs`` or scheduling.
    """
    predictors = validate_predictors(response, predictors)
    X = predictor_matrix(dataset, predictors)
    y = response_vector(dataset, response)
    if folds.n_observations != X.shape[0]:
        raise ValueError(f"Folds cover {folds.n_observations} rows but dataset has {X.shape[0]}")

    if penalties is None:
        grid = penalty_grid(X, y, n_penalties=n_penalties)
    else:
        grid = normalize_penalties(penalties)

    logger.info(
        "Cross-validating lasso: %d folds x %d penalties (n=%d, p=%d, n_jobs=%d)",
        folds.n_folds,
        grid.size,
        X.shape[0],
        X.shape[1],
        n_jobs,
    )

    if n_jobs == 1:
        per_fold = [_fold_path_mse(X, y, folds, f, grid) for f in range(folds.n_folds)]
    else:
        per_fold = Parallel(n_jobs=n_jobs, prefer="threads")(
            delayed(_fold_path_mse)(X, y, folds, f, grid) for f in range(folds.n_folds)
        )

    fold_mse = np.vstack(per_fold)
    mean_mse = fold_mse.mean(axis=0)
    se_mse = fold_mse.std(axis=0, ddof=1) / np.sqrt(folds.n_folds)
    lambda_min = select_penalty(grid, mean_mse)

    result = CrossValidationResult(
        penalties=grid,
        mean_mse=mean_mse,
        se_mse=se_mse,
        fold_mse=fold_mse,
        lambda_min=lambda_min,
    )
    logger.info(
        "  lambda_min=%.6g (CV MSE=%.6g, SE=%.3g)",
        lambda_min,
        result.mean_mse[result.index_min],
        result.se_mse[result.index_min],
    )
    return result


# =============================================================================
# 3. SELECTION, REFIT, APPLY
# =============================================================================


def _lasso_model(
    X: np.ndarray,
    y: np.ndarray,
    response: str,
    predictors: list[str],
    penalty: float,
) -> FittedModel:
    intercept, coefs = fit_lasso(X, y, penalty)
    fitted = intercept + X @ coefs
    return FittedModel(
        method="lasso",
        response=response,
        predictors=tuple(predictors),
        intercept=intercept,
        coefficients=coefs,
        nobs=int(X.shape[0]),
        fitted_values=fitted,
        weights=np.ones(X.shape[0]),
        penalty=float(penalty),
        r_squared=float(r2_score(y, fitted)),
    )


def select_and_apply(
    training: pl.DataFrame,
    application: pl.DataFrame,
    response: str,
    predictors: Sequence[str],
    *,
    n_folds: int,
    seed: int,
    penalties: Sequence[float] | NDArray[np.float64] | None = None,
    n_penalties: int = DEFAULT_N_PENALTIES,
    n_jobs: int = 1,
) -> LassoSelection:
    """Cross-validate on ``training``, refit at ``lambda_min``, predict ``application``.

    Raises EmptyPredictorSetError when every penalty on the grid zeroes every
    coefficient of the full-training-data path.
    """
    predictors = validate_predictors(response, predictors)
    require_columns(application, predictors)
    if application.is_empty():
        raise ValueError("Application slice is empty")

    X = predictor_matrix(training, predictors)
    y = response_vector(training, response)

    folds = assign_folds(X.shape[0], n_folds, seed=seed)
    cv = cross_validate(
        training,
        response,
        predictors,
        folds,
        penalties,
        n_penalties=n_penalties,
        n_jobs=n_jobs,
    )

    intercepts, path_coefs = lasso_path_coefficients(X, y, cv.penalties)
    path = CoefficientPath(
        predictors=tuple(predictors),
        penalties=cv.penalties,
        coefficients=path_coefs,
        intercepts=intercepts,
    )
    if not path.nonzero_counts().any():
        raise EmptyPredictorSetError(
            f"Every one of {cv.penalties.size} penalties zeroes all {len(predictors)} coefficients"
        )

    model = _lasso_model(X, y, response, predictors, cv.lambda_min)
    kept = model.nonzero_predictors()
    if kept:
        logger.info(
            "Lasso refit at lambda_min=%.6g keeps %d/%d predictors: %s",
            cv.lambda_min,
            len(kept),
            len(predictors),
            kept,
        )
    else:
        logger.warning("Lasso refit at lambda_min=%.6g keeps no predictors (intercept-only model)", cv.lambda_min)

    predictions = model.predict(application)
    logger.info("Applied lasso model to %s application rows", f"{application.height:,}")

    return LassoSelection(folds=folds, cv=cv, path=path, model=model, predictions=predictions)


def prediction_error(
    predictions: NDArray[np.float64],
    application: pl.DataFrame,
    response: str,
) -> float:
    """Mean squared error of ``predictions`` against the application response."""
    y = response_vector(application, response)
    predictions = np.asarray(predictions, dtype=np.float64)
    if predictions.shape != y.shape:
        raise ValueError(f"{predictions.shape[0]} predictions for {y.shape[0]} application rows")
    return float(mean_squared_error(y, predictions))
