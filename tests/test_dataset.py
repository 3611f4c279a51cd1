"""Tests for dataset loading, filtering and period splits"""

import numpy as np
import polars as pl
import pytest

from county_survey_regression.dataset import (
    add_sqrt_response,
    complete_cases,
    load_survey_csv,
    predictor_matrix,
    response_vector,
    split_by_period,
    validate_predictors,
)


@pytest.fixture
def survey_df():
    return pl.DataFrame({
        "fips": ["17031", "17043", "17089", "17097", "17197", "17111"],
        "period": ["2021-01", "2021-01", "2021-02", "2021-02", "2021-03", "2021-03"],
        "cli": [1.2, None, 0.8, 2.5, 1.1, float("nan")],
        "wearing_mask": [90.0, 88.0, None, 92.0, 85.0, 80.0],
        "large_event": [5.0, 6.0, 7.0, 4.0, 8.0, 9.0],
    })


def test_complete_cases_drops_null_and_nan(survey_df):
    out = complete_cases(survey_df, ["cli", "wearing_mask"])

    assert out["fips"].to_list() == ["17031", "17097", "17197"]


def test_complete_cases_ignores_other_columns(survey_df):
    out = complete_cases(survey_df, ["large_event"])
    assert out.height == survey_df.height


def test_complete_cases_missing_column(survey_df):
    with pytest.raises(ValueError, match="Missing required columns"):
        complete_cases(survey_df, ["nope"])


def test_add_sqrt_response():
    df = pl.DataFrame({"cli": [0.0, 4.0, 2.25]})
    out = add_sqrt_response(df, "cli")

    assert out.columns == ["cli", "sqrt_cli"]
    np.testing.assert_allclose(out["sqrt_cli"].to_numpy(), [0.0, 2.0, 1.5])
    assert add_sqrt_response(df, "cli", alias="root").columns == ["cli", "root"]


def test_add_sqrt_response_rejects_negative():
    with pytest.raises(ValueError, match="negative"):
        add_sqrt_response(pl.DataFrame({"cli": [1.0, -0.5]}), "cli")


def test_split_by_period(survey_df):
    training, application = split_by_period(survey_df, "period", ["2021-01", "2021-02"], ["2021-03"])

    assert training.height == 4
    assert application["fips"].to_list() == ["17197", "17111"]


def test_split_by_period_rejects_overlap(survey_df):
    with pytest.raises(ValueError, match="overlap"):
        split_by_period(survey_df, "period", ["2021-01", "2021-03"], ["2021-03"])


def test_split_by_period_rejects_empty_slice(survey_df):
    with pytest.raises(ValueError, match="application"):
        split_by_period(survey_df, "period", ["2021-01"], ["2022-01"])


@pytest.mark.parametrize(
    "predictors",
    [[], ["a", "b", "a"], ["y", "a"], ["const", "a"]],
)
def test_validate_predictors_rejects(predictors):
    with pytest.raises(ValueError):
        validate_predictors("y", predictors)


def test_validate_predictors_returns_list():
    assert validate_predictors("y", ("a", "b")) == ["a", "b"]


def test_design_arrays_require_finite_values(survey_df):
    with pytest.raises(ValueError, match="Non-finite"):
        response_vector(survey_df, "cli")
    with pytest.raises(ValueError, match="Non-finite"):
        predictor_matrix(survey_df, ["wearing_mask"])

    X = predictor_matrix(survey_df, ["large_event"])
    assert X.shape == (6, 1)
    assert X.dtype == np.float64


def test_load_survey_csv(tmp_path):
    path = tmp_path / "survey.csv"
    path.write_text("fips,period,cli,wearing_mask\n17031,2021-01,1.2,90\n17043,2021-01,NA,\n")

    df = load_survey_csv(path)
    assert df.height == 2
    assert df["cli"].null_count() == 1
    assert df["wearing_mask"].null_count() == 1

    subset = load_survey_csv(path, columns=["fips", "cli"])
    assert subset.columns == ["fips", "cli"]


def test_load_survey_csv_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_survey_csv(tmp_path / "nope.csv")
