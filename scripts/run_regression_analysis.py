#!/usr/bin/env python3
"""
Run the county survey regression analysis (WLS + cross-validated lasso).

Usage:
    python scripts/run_regression_analysis.py --data path/to/county_survey.csv
    python scripts/run_regression_analysis.py --data survey.csv --config config/custom.yaml
    python scripts/run_regression_analysis.py --data survey.csv --output-dir data/runs/feb

The script:
1. Loads configuration from config/analysis.yaml (or custom config)
2. Loads the survey CSV (path from --data or data.path in the config)
3. Fits the WLS model and the cross-validated lasso, then writes results
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from county_survey_regression.config import get_output_dir, load_config
from county_survey_regression.dataset import load_survey_csv
from county_survey_regression.exceptions import RegressionCoreError
from county_survey_regression.pipeline import run_analysis, write_outputs

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunArgs:
    """Parsed CLI arguments for an analysis run."""

    config: Path | None
    data: Path | None
    output_dir: Path | None
    seed: int | None


def _parse_args(argv: list[str] | None = None) -> RunArgs:
    parser = argparse.ArgumentParser(
        description="Fit WLS and cross-validated lasso models to county survey data",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config file (default: config/analysis.yaml)",
    )
    parser.add_argument(
        "--data",
        type=Path,
        default=None,
        help="Survey CSV path (default: data.path from the config)",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help="Output directory (default: output.dir from the config)",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Override lasso.seed for fold assignment",
    )

    ns = parser.parse_args(argv)
    return RunArgs(config=ns.config, data=ns.data, output_dir=ns.output_dir, seed=ns.seed)


def _load_and_override_config(args: RunArgs) -> dict[str, Any]:
    try:
        config: dict[str, Any] = load_config(args.config)
    except FileNotFoundError as e:
        logger.error("Config file not found: %s", e)
        raise

    if args.seed is not None:
        config.setdefault("lasso", {})["seed"] = args.seed
    return config


def _resolve_data_path(config: dict[str, Any], override: Path | None) -> Path:
    if override is not None:
        return override
    raw = config.get("data", {}).get("path")
    if not raw or str(raw).startswith("${"):
        raise ValueError("No survey data path: pass --data or set data.path (or its environment variable)")
    return Path(raw)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    config = _load_and_override_config(args)

    data_path = _resolve_data_path(config, args.data)
    output_dir = args.output_dir or get_output_dir(config)

    logger.info("=" * 70)
    logger.info("COUNTY SURVEY REGRESSION ANALYSIS")
    logger.info("=" * 70)
    logger.info("Data: %s", data_path)
    logger.info("Output: %s", output_dir)

    df = load_survey_csv(data_path)
    try:
        summary = run_analysis(df, config)
    except RegressionCoreError as e:
        logger.error("Analysis failed: %s", e)
        return 1

    json_path = write_outputs(summary, output_dir)
    logger.info("✓ Analysis complete: %s", json_path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
