# county_survey_regression/weighted_regression.py
"""OLS and inverse-fitted-value WLS fits, residual diagnostics, nested F tests.

WLS weighting policy
--------------------
The WLS fit assumes the residual variance of each observation is proportional
to its OLS-predicted mean. Weights are therefore ``w_i = 1 / yhat_i`` taken
from a preliminary OLS fit on the same data. A non-positive ``yhat_i`` makes
the weight undefined and the fit fails with ``NonPositiveWeightError``; no
clipping or substitution is applied.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import numpy as np
import polars as pl
import statsmodels.api as sm
from numpy.typing import NDArray

from county_survey_regression.dataset import (
    INTERCEPT_NAME,
    predictor_matrix,
    response_vector,
    validate_predictors,
)
from county_survey_regression.exceptions import NonPositiveWeightError
from county_survey_regression.results import DiagnosticSet, FittedModel, JointTestResult
from county_survey_regression.solver import fit_least_squares

logger = logging.getLogger(__name__)

__all__ = [
    "WEIGHT_POLICY_INVERSE_FITTED",
    "WEIGHT_POLICY_UNIT",
    "compute_diagnostics",
    "fit_ols",
    "fit_wls",
    "inverse_fitted_weights",
    "joint_f_test",
]

WEIGHT_POLICY_UNIT = "unit"
WEIGHT_POLICY_INVERSE_FITTED = "inverse_ols_fitted"


def _design(df: pl.DataFrame, response: str, predictors: Sequence[str]) -> tuple[np.ndarray, np.ndarray]:
    X = sm.add_constant(predictor_matrix(df, predictors), has_constant="add")
    y = response_vector(df, response)
    n, k = X.shape
    if n <= k:
        raise ValueError(f"Need more observations ({n}) than parameters ({k})")
    return X, y


def _fit(
    df: pl.DataFrame,
    response: str,
    predictors: list[str],
    *,
    weights: np.ndarray | None,
    method: str,
    weight_policy: str,
) -> FittedModel:
    X, y = _design(df, response, predictors)
    res = fit_least_squares(X, y, weights=weights, column_names=[INTERCEPT_NAME, *predictors])
    params = np.asarray(res.params, dtype=np.float64)

    model = FittedModel(
        method=method,
        response=response,
        predictors=tuple(predictors),
        intercept=float(params[0]),
        coefficients=params[1:],
        nobs=int(res.nobs),
        fitted_values=np.asarray(res.fittedvalues, dtype=np.float64),
        weights=np.ones(X.shape[0]) if weights is None else weights,
        weight_policy=weight_policy,
        std_errors=np.asarray(res.bse, dtype=np.float64),
        t_values=np.asarray(res.tvalues, dtype=np.float64),
        p_values=np.asarray(res.pvalues, dtype=np.float64),
        residual_std_error=float(np.sqrt(res.scale)),
        df_resid=float(res.df_resid),
        ssr=float(res.ssr),
        r_squared=float(res.rsquared),
        adj_r_squared=float(res.rsquared_adj),
        f_statistic=float(res.fvalue),
        f_pvalue=float(res.f_pvalue),
    )
    logger.info(
        "%s %s ~ %d predictors: n=%d, R2=%.4f, adj R2=%.4f",
        method.upper(),
        response,
        len(predictors),
        model.nobs,
        model.r_squared,
        model.adj_r_squared,
    )
    return model


def fit_ols(dataset: pl.DataFrame, response: str, predictors: Sequence[str]) -> FittedModel:
    """Unweighted least squares of ``response`` on ``predictors`` plus an intercept."""
    predictors = validate_predictors(response, predictors)
    return _fit(
        dataset,
        response,
        predictors,
        weights=None,
        method="ols",
        weight_policy=WEIGHT_POLICY_UNIT,
    )


def inverse_fitted_weights(fitted_values: NDArray[np.float64]) -> np.ndarray:
    """``1 / fitted`` for strictly positive fitted values; raises otherwise."""
    fitted = np.asarray(fitted_values, dtype=np.float64)
    bad = ~(fitted > 0)
    if bad.any():
        raise NonPositiveWeightError(int(bad.sum()), float(np.nanmin(fitted)))
    return 1.0 / fitted


def fit_wls(dataset: pl.DataFrame, response: str, predictors: Sequence[str]) -> FittedModel:
    """Two-stage WLS: OLS fit, weights ``1 / yhat``, weighted refit."""
    predictors = validate_predictors(response, predictors)
    ols = _fit(
        dataset,
        response,
        predictors,
        weights=None,
        method="ols",
        weight_policy=WEIGHT_POLICY_UNIT,
    )
    weights = inverse_fitted_weights(ols.fitted_values)
    logger.info("  WLS weights 1/yhat: min=%.4g, max=%.4g", weights.min(), weights.max())

    return _fit(
        dataset,
        response,
        predictors,
        weights=weights,
        method="wls",
        weight_policy=WEIGHT_POLICY_INVERSE_FITTED,
    )


def _require_unpenalized(model: FittedModel) -> None:
    if model.penalty is not None or model.std_errors is None:
        raise ValueError(f"Operation requires an OLS/WLS model, got method '{model.method}'")


def compute_diagnostics(model: FittedModel, dataset: pl.DataFrame) -> DiagnosticSet:
    """Leverage, standardized/studentized residuals and Cook's distance.

    Uses the weighted hat matrix ``H = W^1/2 X (X'WX)^-1 X' W^1/2`` and the
    Pearson residuals ``e_i = sqrt(w_i) (y_i - yhat_i)``. ``dataset`` must be
    the frame the model was fit on.
    """
    _require_unpenalized(model)
    X, y = _design(dataset, model.response, list(model.predictors))
    if X.shape[0] != model.nobs:
        raise ValueError(f"Dataset has {X.shape[0]} rows but the model was fit on {model.nobs}")
    fitted = X @ model.params
    if not np.allclose(fitted, model.fitted_values, rtol=1e-6, atol=1e-8):
        raise ValueError("Dataset does not reproduce the model's fitted values; pass the fitting frame")

    n, p = X.shape
    sw = np.sqrt(model.weights)
    Xw = X * sw[:, None]
    xtwx_inv = np.linalg.inv(Xw.T @ Xw)
    leverage = np.einsum("ij,jk,ik->i", Xw, xtwx_inv, Xw)

    resid = sw * (y - fitted)
    df_resid = n - p
    sigma2 = float(resid @ resid) / df_resid

    with np.errstate(divide="ignore", invalid="ignore"):
        standardized = resid / np.sqrt(sigma2 * (1.0 - leverage))
        studentized = standardized * np.sqrt((df_resid - 1) / (df_resid - standardized**2))
        cooks = (standardized**2 / p) * (leverage / (1.0 - leverage))

    return DiagnosticSet(
        leverage=leverage,
        standardized_residuals=standardized,
        studentized_residuals=studentized,
        cooks_distance=cooks,
        n_params=p,
    )


def joint_f_test(
    model: FittedModel,
    dataset: pl.DataFrame,
    coefficients: Sequence[str],
    *,
    significance_level: float,
) -> JointTestResult:
    """F test that ``coefficients`` are jointly zero, by nested-model comparison.

    The restricted model drops the named predictors and keeps the full model's
    weights. A single name tests that coefficient against zero.
    """
    _require_unpenalized(model)
    if not 0.0 < significance_level < 1.0:
        raise ValueError(f"significance_level must lie in (0, 1), got {significance_level}")

    tested = list(dict.fromkeys(coefficients))
    if not tested:
        raise ValueError("At least one coefficient name is required")
    if INTERCEPT_NAME in tested:
        raise ValueError("The intercept cannot be constrained in the joint test")
    unknown = [c for c in tested if c not in model.predictors]
    if unknown:
        raise ValueError(f"Unknown coefficients {unknown}. Available: {list(model.predictors)}")

    X, y = _design(dataset, model.response, list(model.predictors))
    if X.shape[0] != model.nobs:
        raise ValueError(f"Dataset has {X.shape[0]} rows but the model was fit on {model.nobs}")

    weights = None if model.weight_policy == WEIGHT_POLICY_UNIT else model.weights
    keep = [0] + [i + 1 for i, p in enumerate(model.predictors) if p not in tested]
    kept_names = [INTERCEPT_NAME] + [p for p in model.predictors if p not in tested]

    full = fit_least_squares(X, y, weights=weights, column_names=list(model.param_names))
    restricted = fit_least_squares(X[:, keep], y, weights=weights, column_names=kept_names)
    f_stat, p_value, df_diff = full.compare_f_test(restricted)

    result = JointTestResult(
        coefficients=tuple(tested),
        f_statistic=float(f_stat),
        df_num=float(df_diff),
        df_denom=float(full.df_resid),
        p_value=float(p_value),
        significance_level=float(significance_level),
        reject=bool(p_value < significance_level),
    )
    logger.info(
        "Joint F test %s = 0: F(%d, %d)=%.4f, p=%.4g -> %s at %.3g",
        list(result.coefficients),
        int(result.df_num),
        int(result.df_denom),
        result.f_statistic,
        result.p_value,
        "reject" if result.reject else "fail to reject",
        result.significance_level,
    )
    return result
