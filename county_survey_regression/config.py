"""
Configuration loader for regression analysis runs.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, cast

import yaml


@dataclass(frozen=True)
class JointTestSettings:
    coefficients: tuple[str, ...]
    significance_level: float


@dataclass(frozen=True)
class WlsSettings:
    """Response/predictors for the inverse-fitted-value WLS fit."""

    response: str
    predictors: tuple[str, ...]
    sqrt_of: str | None
    joint_test: JointTestSettings | None


@dataclass(frozen=True)
class LassoSettings:
    """Cross-validated lasso settings and the training/application period split."""

    response: str
    predictors: tuple[str, ...]
    period_column: str
    training_periods: tuple[Any, ...]
    application_periods: tuple[Any, ...]
    n_folds: int
    seed: int
    n_penalties: int
    penalties: tuple[float, ...] | None
    n_jobs: int


def load_config(config_path: Path | str | None = None) -> dict[str, Any]:
    """
    Load configuration from YAML file with environment variable substitution.

    Args:
        config_path: Path to config file. If None, uses default config/analysis.yaml

    Returns:
        Dictionary with configuration values

    Raises:
        FileNotFoundError: If the config file does not exist
        ValueError: If the YAML root is not a mapping
    """
    if config_path is None:
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config" / "analysis.yaml"

    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with config_path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if data is None:
        config: dict[str, Any] = {}
    elif not isinstance(data, dict):
        raise ValueError(f"Config root must be a mapping, got {type(data).__name__}")
    else:
        config = cast(dict[str, Any], data)

    return cast(dict[str, Any], _substitute_env_vars(config))


def _substitute_env_vars(obj: Any) -> Any:
    """Recursively substitute ${VAR} patterns with environment variables."""
    if isinstance(obj, dict):
        return {k: _substitute_env_vars(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_substitute_env_vars(item) for item in obj]
    if isinstance(obj, str) and obj.startswith("${") and obj.endswith("}"):
        var_name = obj[2:-1]
        return os.getenv(var_name, obj)  # fall back to original if unset
    return obj


def _section(config: dict[str, Any], name: str) -> dict[str, Any]:
    section = config.get(name)
    if not isinstance(section, dict):
        raise ValueError(f"Config section '{name}' must be a mapping")
    return section


def _name_list(section: dict[str, Any], key: str, where: str) -> tuple[str, ...]:
    values = section.get(key)
    if not isinstance(values, list) or not values or not all(isinstance(v, str) for v in values):
        raise ValueError(f"{where}.{key} must be a non-empty list of column names")
    return tuple(values)


def get_wls_settings(config: dict[str, Any]) -> WlsSettings:
    section = _section(config, "wls")
    response = section.get("response")
    if not isinstance(response, str) or not response:
        raise ValueError("wls.response must be a column name")

    joint_test = None
    raw_test = section.get("joint_test")
    if raw_test is not None:
        if not isinstance(raw_test, dict):
            raise ValueError("wls.joint_test must be a mapping")
        if "significance_level" not in raw_test:
            raise ValueError("wls.joint_test.significance_level is required")
        level = float(raw_test["significance_level"])
        if not 0.0 < level < 1.0:
            raise ValueError(f"wls.joint_test.significance_level must lie in (0, 1), got {level}")
        joint_test = JointTestSettings(
            coefficients=_name_list(raw_test, "coefficients", "wls.joint_test"),
            significance_level=level,
        )

    return WlsSettings(
        response=response,
        predictors=_name_list(section, "predictors", "wls"),
        sqrt_of=section.get("sqrt_of"),
        joint_test=joint_test,
    )


def get_lasso_settings(config: dict[str, Any]) -> LassoSettings:
    section = _section(config, "lasso")
    response = section.get("response")
    if not isinstance(response, str) or not response:
        raise ValueError("lasso.response must be a column name")

    period_column = section.get("period_column", "period")
    training = section.get("training_periods")
    application = section.get("application_periods")
    if not isinstance(training, list) or not training:
        raise ValueError("lasso.training_periods must be a non-empty list")
    if not isinstance(application, list) or not application:
        raise ValueError("lasso.application_periods must be a non-empty list")

    n_folds = int(section.get("n_folds", 10))
    if n_folds < 2:
        raise ValueError(f"lasso.n_folds must be >= 2, got {n_folds}")
    if "seed" not in section:
        raise ValueError("lasso.seed is required for reproducible fold assignment")

    penalties = section.get("penalties")
    if penalties is not None:
        penalties = tuple(float(p) for p in penalties)

    return LassoSettings(
        response=response,
        predictors=_name_list(section, "predictors", "lasso"),
        period_column=str(period_column),
        training_periods=tuple(training),
        application_periods=tuple(application),
        n_folds=n_folds,
        seed=int(section["seed"]),
        n_penalties=int(section.get("n_penalties", 100)),
        penalties=penalties,
        n_jobs=int(section.get("n_jobs", 1)),
    )


def get_output_dir(config: dict[str, Any]) -> Path:
    return Path(config.get("output", {}).get("dir", "data/results"))
