# county_survey_regression/pipeline.py
"""
End-to-end regression analysis on the county survey data.

Data Flow
---------
1. Complete-case filter on the WLS columns, derive sqrt(response) if configured
2. Fit OLS -> weights 1/yhat -> WLS; residual diagnostics; nested F test
3. Complete-case filter on the lasso columns, split into training/application periods
4. 10-fold CV lasso on the training periods, refit at lambda_min
5. Predict the application periods and score them

Outputs
-------
- regression_summary.json
- wls_coefficients.parquet
- wls_diagnostics.parquet
- lasso_cv_curve.parquet
- lasso_coefficient_path.parquet
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import numpy as np
import polars as pl

from county_survey_regression.config import get_lasso_settings, get_wls_settings
from county_survey_regression.dataset import add_sqrt_response, complete_cases, split_by_period
from county_survey_regression.lasso_selection import prediction_error, select_and_apply
from county_survey_regression.results import DiagnosticSet, FittedModel, JointTestResult, LassoSelection
from county_survey_regression.weighted_regression import compute_diagnostics, fit_wls, joint_f_test

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnalysisSummary:
    """Every artifact of one analysis run."""

    n_rows_input: int
    n_rows_wls: int
    n_rows_training: int
    n_rows_application: int
    wls: FittedModel
    diagnostics: DiagnosticSet
    joint_test: JointTestResult | None
    lasso: LassoSelection
    application_mse: float


def _wls_frame(df: pl.DataFrame, config: dict[str, Any]) -> pl.DataFrame:
    settings = get_wls_settings(config)
    source = settings.sqrt_of or settings.response
    out = complete_cases(df, [source, *settings.predictors])
    if settings.sqrt_of:
        out = add_sqrt_response(out, settings.sqrt_of, alias=settings.response)
    return out


def run_analysis(df: pl.DataFrame, config: dict[str, Any]) -> AnalysisSummary:
    """Run the WLS and cross-validated lasso analyses described by ``config``."""
    wls_settings = get_wls_settings(config)
    lasso_settings = get_lasso_settings(config)

    logger.info("=" * 70)
    logger.info("STEP 1: WEIGHTED LEAST SQUARES (%s)", wls_settings.response)
    logger.info("=" * 70)

    wls_df = _wls_frame(df, config)
    wls_model = fit_wls(wls_df, wls_settings.response, wls_settings.predictors)
    diagnostics = compute_diagnostics(wls_model, wls_df)
    logger.info(
        "  %d observation(s) with Cook's distance > 4/n",
        diagnostics.influential().size,
    )

    joint = None
    if wls_settings.joint_test is not None:
        joint = joint_f_test(
            wls_model,
            wls_df,
            wls_settings.joint_test.coefficients,
            significance_level=wls_settings.joint_test.significance_level,
        )

    logger.info("")
    logger.info("=" * 70)
    logger.info("STEP 2: CROSS-VALIDATED LASSO (%s)", lasso_settings.response)
    logger.info("=" * 70)

    lasso_df = complete_cases(
        df,
        [lasso_settings.response, lasso_settings.period_column, *lasso_settings.predictors],
    )
    training, application = split_by_period(
        lasso_df,
        lasso_settings.period_column,
        lasso_settings.training_periods,
        lasso_settings.application_periods,
    )
    selection = select_and_apply(
        training,
        application,
        lasso_settings.response,
        lasso_settings.predictors,
        n_folds=lasso_settings.n_folds,
        seed=lasso_settings.seed,
        penalties=lasso_settings.penalties,
        n_penalties=lasso_settings.n_penalties,
        n_jobs=lasso_settings.n_jobs,
    )
    mse = prediction_error(selection.predictions, application, lasso_settings.response)
    logger.info("  Application-period MSE: %.6g", mse)

    return AnalysisSummary(
        n_rows_input=df.height,
        n_rows_wls=wls_df.height,
        n_rows_training=training.height,
        n_rows_application=application.height,
        wls=wls_model,
        diagnostics=diagnostics,
        joint_test=joint,
        lasso=selection,
        application_mse=mse,
    )


def summary_payload(summary: AnalysisSummary) -> dict[str, Any]:
    """JSON-safe dict of the run's headline results."""
    joint = summary.joint_test
    cv = summary.lasso.cv
    return {
        "created_utc": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "rows": {
            "input": summary.n_rows_input,
            "wls": summary.n_rows_wls,
            "lasso_training": summary.n_rows_training,
            "lasso_application": summary.n_rows_application,
        },
        "wls": summary.wls.summary_dict(),
        "diagnostics": {
            "max_leverage": float(np.max(summary.diagnostics.leverage)),
            "max_cooks_distance": float(np.nanmax(summary.diagnostics.cooks_distance)),
            "n_influential": int(summary.diagnostics.influential().size),
        },
        "joint_test": None
        if joint is None
        else {
            "coefficients": list(joint.coefficients),
            "f_statistic": joint.f_statistic,
            "df_num": joint.df_num,
            "df_denom": joint.df_denom,
            "p_value": joint.p_value,
            "significance_level": joint.significance_level,
            "reject": joint.reject,
        },
        "lasso": {
            "n_folds": cv.n_folds,
            "seed": summary.lasso.folds.seed,
            "n_penalties": int(cv.penalties.size),
            "lambda_min": cv.lambda_min,
            "cv_mse_at_lambda_min": float(cv.mean_mse[cv.index_min]),
            "cv_se_at_lambda_min": float(cv.se_mse[cv.index_min]),
            "nonzero_predictors": summary.lasso.model.nonzero_predictors(),
            "model": summary.lasso.model.summary_dict(),
            "application_mse": summary.application_mse,
        },
    }


def write_outputs(summary: AnalysisSummary, output_dir: Path | str) -> Path:
    """Write the JSON summary and parquet tables; returns the JSON path."""
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)

    summary.wls.coefficient_table().write_parquet(out / "wls_coefficients.parquet")
    summary.diagnostics.to_frame().write_parquet(out / "wls_diagnostics.parquet")
    summary.lasso.cv.to_frame().write_parquet(out / "lasso_cv_curve.parquet")
    summary.lasso.path.to_frame().write_parquet(out / "lasso_coefficient_path.parquet")

    json_path = out / "regression_summary.json"
    json_path.write_text(json.dumps(summary_payload(summary), indent=2) + "\n", encoding="utf-8")
    logger.info("Wrote results to %s", out)
    return json_path
