# county_survey_regression/solver.py
"""Least-squares solvers shared by the WLS and lasso fitters.

Penalties use the sum-of-squares scale

    sum_i (y_i - b0 - X_i . b)^2 + lam * sum_j |b_j|

with the intercept unpenalised. scikit-learn's ``Lasso`` minimises
``(1 / 2n) * RSS + alpha * ||b||_1``, so ``alpha = lam / (2n)``.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import numpy as np
import statsmodels.api as sm
from numpy.typing import NDArray
from sklearn.linear_model import Lasso
from statsmodels.regression.linear_model import RegressionResultsWrapper

from county_survey_regression.exceptions import EmptyPredictorSetError, SingularDesignError

logger = logging.getLogger(__name__)

LASSO_MAX_ITER = 10_000
LASSO_TOL = 1e-6


def _as_design(X: NDArray[np.float64], y: NDArray[np.float64]) -> tuple[np.ndarray, np.ndarray]:
    X = np.asarray(X, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    if X.ndim != 2:
        raise ValueError(f"Design matrix must be 2-D, got shape {X.shape}")
    if y.shape != (X.shape[0],):
        raise ValueError(f"Response length {y.shape} does not match design rows {X.shape[0]}")
    return X, y


def validate_weights(weights: NDArray[np.float64] | None, n: int) -> np.ndarray:
    """Unit weights when ``weights`` is None; otherwise finite, non-negative, length n."""
    if weights is None:
        return np.ones(n, dtype=np.float64)
    w = np.asarray(weights, dtype=np.float64)
    if w.shape != (n,):
        raise ValueError(f"Expected {n} weights, got shape {w.shape}")
    if not np.isfinite(w).all():
        raise ValueError("Weights must be finite")
    if (w < 0).any():
        raise ValueError("Weights must be non-negative")
    return w


def check_full_rank(
    X: NDArray[np.float64],
    weights: NDArray[np.float64] | None = None,
    column_names: Sequence[str] | None = None,
) -> None:
    """Raise SingularDesignError unless ``sqrt(W) X`` has full column rank."""
    X = np.asarray(X, dtype=np.float64)
    w = validate_weights(weights, X.shape[0])
    rank = int(np.linalg.matrix_rank(X * np.sqrt(w)[:, None]))
    if rank < X.shape[1]:
        raise SingularDesignError(rank, X.shape[1], list(column_names) if column_names else None)


def fit_least_squares(
    X: NDArray[np.float64],
    y: NDArray[np.float64],
    weights: NDArray[np.float64] | None = None,
    column_names: Sequence[str] | None = None,
) -> RegressionResultsWrapper:
    """Minimise ``sum_i w_i (y_i - X_i . b)^2``.

    ``X`` must already include the intercept column. Returns the statsmodels
    results object (OLS when ``weights`` is None, WLS otherwise).
    """
    X, y = _as_design(X, y)
    w = validate_weights(weights, X.shape[0])
    check_full_rank(X, w, column_names)

    if weights is None:
        return sm.OLS(y, X).fit()
    return sm.WLS(y, X, weights=w).fit()


def _unpenalized(X: np.ndarray, y: np.ndarray) -> tuple[float, np.ndarray]:
    res = fit_least_squares(sm.add_constant(X, has_constant="add"), y)
    params = np.asarray(res.params, dtype=np.float64)
    return float(params[0]), params[1:]


def _lasso_estimator(warm_start: bool = False) -> Lasso:
    return Lasso(
        alpha=1.0,
        fit_intercept=True,
        max_iter=LASSO_MAX_ITER,
        tol=LASSO_TOL,
        warm_start=warm_start,
        selection="cyclic",
    )


def _check_penalty(penalty: float) -> float:
    penalty = float(penalty)
    if not np.isfinite(penalty) or penalty < 0:
        raise ValueError(f"Penalty must be finite and >= 0, got {penalty}")
    return penalty


def fit_lasso(
    X: NDArray[np.float64],
    y: NDArray[np.float64],
    penalty: float,
) -> tuple[float, np.ndarray]:
    """L1-penalised fit at one penalty. ``X`` excludes the intercept column.

    Returns ``(intercept, coefficients)``. A zero penalty is an ordinary
    least-squares fit and so requires a full-rank design.
    """
    X, y = _as_design(X, y)
    penalty = _check_penalty(penalty)
    if penalty == 0.0:
        return _unpenalized(X, y)

    est = _lasso_estimator()
    est.set_params(alpha=penalty / (2 * X.shape[0]))
    est.fit(X, y)
    return float(est.intercept_), np.asarray(est.coef_, dtype=np.float64).copy()


def lasso_path_coefficients(
    X: NDArray[np.float64],
    y: NDArray[np.float64],
    penalties: Sequence[float] | NDArray[np.float64],
) -> tuple[np.ndarray, np.ndarray]:
    """Warm-started lasso fits along ``penalties`` (expected descending).

    Returns ``(intercepts, coefficients)`` with shapes ``(m,)`` and ``(m, p)``.
    """
    X, y = _as_design(X, y)
    lams = [_check_penalty(lam) for lam in penalties]
    n, p = X.shape

    intercepts = np.empty(len(lams), dtype=np.float64)
    coefs = np.empty((len(lams), p), dtype=np.float64)

    est = _lasso_estimator(warm_start=True)
    for i, lam in enumerate(lams):
        if lam == 0.0:
            intercepts[i], coefs[i] = _unpenalized(X, y)
            continue
        est.set_params(alpha=lam / (2 * n))
        est.fit(X, y)
        intercepts[i] = est.intercept_
        coefs[i] = est.coef_
    return intercepts, coefs


def penalty_grid(
    X: NDArray[np.float64],
    y: NDArray[np.float64],
    n_penalties: int = 100,
    min_ratio: float | None = None,
) -> np.ndarray:
    """Descending log-spaced penalties from the all-zero threshold ``lam_max``.

    ``lam_max = 2 * max_j |x_j' (y - mean(y))|`` on centred predictors.
    ``min_ratio`` defaults to 1e-4 when n > p and 1e-2 otherwise.
    """
    X, y = _as_design(X, y)
    if n_penalties < 1:
        raise ValueError(f"n_penalties must be >= 1, got {n_penalties}")
    n, p = X.shape
    if p == 0:
        raise EmptyPredictorSetError("No predictors supplied for the lasso path")

    if min_ratio is None:
        min_ratio = 1e-4 if n > p else 1e-2
    if not 0 < min_ratio < 1:
        raise ValueError(f"min_ratio must lie in (0, 1), got {min_ratio}")

    Xc = X - X.mean(axis=0)
    yc = y - y.mean()
    lam_max = float(2.0 * np.max(np.abs(Xc.T @ yc)))
    if lam_max <= 0.0:
        raise EmptyPredictorSetError("No predictor is correlated with the response; every penalty gives an empty model")

    grid = np.geomspace(lam_max, lam_max * min_ratio, num=n_penalties)
    logger.debug("Penalty grid: %d values from %.6g to %.6g", n_penalties, grid[0], grid[-1])
    return grid
