"""Tests for the least-squares and lasso solvers"""

import numpy as np
import pytest
import statsmodels.api as sm

from county_survey_regression.exceptions import EmptyPredictorSetError, SingularDesignError
from county_survey_regression.solver import (
    check_full_rank,
    fit_lasso,
    fit_least_squares,
    lasso_path_coefficients,
    penalty_grid,
)


def _orthonormal_design(rng, n=120, p=5):
    """Centred predictors with X'X = I, so the lasso solution is soft thresholding."""
    Z = rng.normal(size=(n, p))
    Z -= Z.mean(axis=0)
    Q, _ = np.linalg.qr(Z)
    return Q


def _soft_threshold(z, t):
    return np.sign(z) * np.maximum(np.abs(z) - t, 0.0)


def test_fit_least_squares_recovers_noiseless_line():
    x = np.linspace(0, 10, 25)
    X = sm.add_constant(x)
    y = 2.0 + 3.0 * x

    res = fit_least_squares(X, y)

    np.testing.assert_allclose(res.params, [2.0, 3.0], atol=1e-10)


def test_fit_least_squares_weighted_matches_statsmodels():
    rng = np.random.default_rng(0)
    x = rng.uniform(1, 5, size=50)
    X = sm.add_constant(x)
    y = 1.0 + 0.5 * x + rng.normal(0, 0.2, size=50)
    w = rng.uniform(0.5, 2.0, size=50)

    res = fit_least_squares(X, y, weights=w)
    expected = sm.WLS(y, X, weights=w).fit()

    np.testing.assert_allclose(res.params, expected.params)
    np.testing.assert_allclose(res.bse, expected.bse)


def test_duplicate_columns_are_singular():
    x = np.arange(10, dtype=float)
    X = np.column_stack([np.ones(10), x, x])
    y = x + 1.0

    with pytest.raises(SingularDesignError) as exc:
        fit_least_squares(X, y, column_names=["const", "a", "b"])
    assert exc.value.rank == 2
    assert exc.value.n_columns == 3

    with pytest.raises(SingularDesignError):
        fit_least_squares(X, y, weights=np.linspace(0.5, 1.5, 10))


def test_zero_weights_can_make_design_singular():
    X = np.column_stack([np.ones(4), [0.0, 1.0, 2.0, 3.0]])
    w = np.array([1.0, 0.0, 0.0, 0.0])

    with pytest.raises(SingularDesignError):
        check_full_rank(X, w)


@pytest.mark.parametrize("weights", [np.array([1.0, -1.0, 1.0]), np.array([1.0, np.nan, 1.0]), np.ones(2)])
def test_invalid_weights_rejected(weights):
    X = np.column_stack([np.ones(3), [1.0, 2.0, 4.0]])
    y = np.array([1.0, 2.0, 3.0])

    with pytest.raises(ValueError):
        fit_least_squares(X, y, weights=weights)


def test_fit_lasso_zero_penalty_is_ols():
    rng = np.random.default_rng(1)
    X = rng.normal(size=(80, 3))
    y = 4.0 + X @ np.array([1.0, -2.0, 0.5]) + rng.normal(0, 0.1, size=80)

    intercept, coefs = fit_lasso(X, y, 0.0)
    ols = sm.OLS(y, sm.add_constant(X)).fit()

    assert intercept == pytest.approx(ols.params[0])
    np.testing.assert_allclose(coefs, ols.params[1:])


def test_fit_lasso_uses_sum_of_squares_penalty_scale():
    rng = np.random.default_rng(2)
    X = _orthonormal_design(rng)
    y = 5.0 + X @ np.array([4.0, -3.0, 0.5, 0.0, 0.2]) + rng.normal(0, 0.05, size=X.shape[0])
    lam = 1.5

    intercept, coefs = fit_lasso(X, y, lam)

    # minimiser of ||y - b0 - Xb||^2 + lam * |b|_1 with X'X = I
    expected = _soft_threshold(X.T @ (y - y.mean()), lam / 2)
    np.testing.assert_allclose(coefs, expected, atol=1e-5)
    assert intercept == pytest.approx(y.mean(), abs=1e-5)


def test_fit_lasso_rejects_negative_penalty():
    X = np.random.default_rng(3).normal(size=(10, 2))
    with pytest.raises(ValueError):
        fit_lasso(X, X[:, 0], -1.0)


def test_penalty_grid_starts_at_all_zero_threshold():
    rng = np.random.default_rng(4)
    X = rng.normal(size=(60, 4))
    y = X[:, 0] * 2.0 + rng.normal(size=60)

    grid = penalty_grid(X, y, n_penalties=30)

    Xc = X - X.mean(axis=0)
    assert grid[0] == pytest.approx(2.0 * np.max(np.abs(Xc.T @ (y - y.mean()))))
    assert grid.size == 30
    assert np.all(np.diff(grid) < 0)
    assert grid[-1] == pytest.approx(grid[0] * 1e-4)

    _, coefs = fit_lasso(X, y, grid[0] * 1.001)
    assert np.count_nonzero(coefs) == 0


def test_penalty_grid_constant_response_is_empty():
    X = np.random.default_rng(5).normal(size=(20, 3))
    with pytest.raises(EmptyPredictorSetError):
        penalty_grid(X, np.full(20, 7.0))


def test_lasso_path_sparsity_is_monotone_in_penalty():
    rng = np.random.default_rng(6)
    X = _orthonormal_design(rng, n=150, p=8)
    beta = np.array([3.0, -2.5, 2.0, 1.0, -0.5, 0.25, 0.0, 0.0])
    y = 1.0 + X @ beta + rng.normal(0, 0.05, size=150)
    grid = penalty_grid(X, y, n_penalties=40)

    _, coefs = lasso_path_coefficients(X, y, grid)
    nonzero = np.count_nonzero(coefs, axis=1)

    # grid is descending, so counts must be non-decreasing along it
    assert np.all(np.diff(nonzero) >= 0)
    assert nonzero[-1] >= 6


def test_lasso_path_matches_single_fits():
    rng = np.random.default_rng(7)
    X = rng.normal(size=(100, 4))
    y = X @ np.array([1.5, 0.0, -1.0, 0.0]) + rng.normal(size=100)
    grid = penalty_grid(X, y, n_penalties=10)

    intercepts, coefs = lasso_path_coefficients(X, y, grid)

    for i in (0, 4, 9):
        b0, b = fit_lasso(X, y, grid[i])
        assert intercepts[i] == pytest.approx(b0, abs=1e-3)
        np.testing.assert_allclose(coefs[i], b, atol=1e-3)
