"""
Data Loader Module
==================

Handles CSV ingestion, variable selection and basic data quality checks.

Functions:
    - load_config: Load YAML configuration file
    - load_data: Load the oil futures CSV with optional shape validation
    - select_variables: Keep the response, its lag and the covariates
    - count_missing: Per-column missing value counts
    - validate_data: Check data quality constraints
"""

import os
import logging
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple

import pandas as pd
import numpy as np
import yaml

logger = logging.getLogger(__name__)

DEFAULT_RESPONSE = "log_cl1"
DEFAULT_LAG = "log_cl1_lag1"
DEFAULT_COVARIATES = [
    "log_bdi",      # shipping index
    "log_spx",      # equity index
    "log_dxy",      # currency index
    "log_ng1",      # commodity contract
    "log_gc1",      # commodity contract
    "log_bcom",     # broad commodity index
    "log_spgsci",   # resource index
    "log_sxxp",     # equity index
    "log_nky",      # equity index
]


def load_config(config_path: str = "config/config.yaml") -> Dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to the configuration file

    Returns:
        Dictionary containing configuration parameters

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is malformed
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}

    logger.info(f"Loaded configuration from {config_path}")
    return config


def get_variable_names(config: Dict[str, Any]) -> Tuple[str, str, List[str]]:
    """Return (response, lag, covariates) from the ``variables`` config section."""
    variables = config.get('variables', {})
    return (
        variables.get('response', DEFAULT_RESPONSE),
        variables.get('lag', DEFAULT_LAG),
        list(variables.get('covariates', DEFAULT_COVARIATES)),
    )


def load_data(
    file_path: str,
    expected_rows: Optional[int] = None,
    expected_columns: Optional[int] = None
) -> pd.DataFrame:
    """
    Load the raw CSV dataset.

    Args:
        file_path: Path to the CSV file
        expected_rows: Expected number of rows (optional validation)
        expected_columns: Expected number of columns (optional validation)

    Returns:
        DataFrame containing the loaded data, in file (chronological) order

    Raises:
        FileNotFoundError: If data file doesn't exist
        ValueError: If the shape doesn't match the expectations
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"Data file not found: {file_path}")

    df = pd.read_csv(file_path)
    logger.info(f"Loaded data from {file_path}: {df.shape[0]} rows × {df.shape[1]} columns")

    if expected_rows is not None and df.shape[0] != expected_rows:
        raise ValueError(f"Expected {expected_rows} rows, but found {df.shape[0]}")

    if expected_columns is not None and df.shape[1] != expected_columns:
        raise ValueError(
            f"Expected {expected_columns} columns, but found {df.shape[1]}. "
            f"Columns: {list(df.columns)}"
        )

    return df


def select_variables(
    df: pd.DataFrame,
    response: str,
    lag: str,
    covariates: List[str]
) -> pd.DataFrame:
    """
    Restrict the raw table to the response, its one-day lag and the covariates.

    If the lag column is not present in the file it is derived by shifting the
    response one row; the first row, which has no lag, is dropped.

    Args:
        df: Raw data
        response: Response column name
        lag: Lagged response column name
        covariates: Exogenous covariate column names

    Returns:
        DataFrame with columns [response, lag, *covariates] and a fresh 0..n-1 index
    """
    required = [response] + list(covariates)
    missing = [col for col in required if col not in df.columns]
    if missing:
        raise ValueError(f"Columns not found in data: {missing}")

    data = df.copy()
    if lag not in data.columns:
        logger.info(f"Lag column '{lag}' not in data, deriving it from '{response}'")
        data[lag] = data[response].shift(1)
        data = data.iloc[1:]

    data = data[[response, lag] + list(covariates)].reset_index(drop=True)
    logger.info(f"Selected {data.shape[1]} variables: response='{response}', lag='{lag}', "
                f"{len(covariates)} covariates")
    return data


def count_missing(df: pd.DataFrame) -> pd.Series:
    """Missing value count per column."""
    return df.isnull().sum()


def validate_data(df: pd.DataFrame, strict: bool = True) -> Tuple[bool, Dict[str, Any]]:
    """
    Check that the modeling table can be fed to the models.

    Problems found:
        - non-numeric columns
        - missing values (reported per column)
        - infinite values, e.g. the log of a zero price
        - duplicated rows

    Args:
        df: Modeling table
        strict: Raise instead of returning False

    Returns:
        Tuple of (is_valid, validation_report)
    """
    missing_counts = count_missing(df)
    report = {
        "n_rows": len(df),
        "variables": list(df.columns),
        "total_missing": int(missing_counts.sum()),
        "missing_by_column": {k: int(v) for k, v in missing_counts[missing_counts > 0].items()},
        "issues": []
    }

    numeric = df.select_dtypes(include=[np.number])
    non_numeric = [col for col in df.columns if col not in numeric.columns]
    if non_numeric:
        report["issues"].append(f"Non-numeric variables: {non_numeric}")

    if report["total_missing"]:
        report["issues"].append(
            f"{report['total_missing']} missing values in {sorted(report['missing_by_column'])}"
        )

    infinite = numeric.columns[np.isinf(numeric.values).any(axis=0)].tolist()
    if infinite:
        report["issues"].append(f"Infinite values in {infinite}")

    n_duplicated = int(df.duplicated().sum())
    if n_duplicated:
        report["issues"].append(f"{n_duplicated} duplicated rows")

    for issue in report["issues"]:
        logger.warning(issue)

    is_valid = not report["issues"]
    report["is_valid"] = is_valid

    if strict and not is_valid:
        raise ValueError(f"Data validation failed: {report['issues']}")

    return is_valid, report


def print_data_summary(df: pd.DataFrame) -> None:
    """
    Print the size and descriptive statistics of the modeling table.

    Args:
        df: Modeling table
    """
    print("\n" + "=" * 60)
    print("MODELING TABLE")
    print("=" * 60)
    print(f"Trading days: {len(df)}")
    print(f"Variables: {df.shape[1]} ({', '.join(df.columns)})")
    print("-" * 60)
    summary = df.describe().T[['mean', 'std', 'min', 'max']]
    summary['missing'] = count_missing(df)
    print(summary.round(4).to_string())
    print("=" * 60 + "\n")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)

    try:
        config = load_config()
        response, lag, covariates = get_variable_names(config)
        print(f"Response: {response}, lag: {lag}")
        print(f"Covariates: {covariates}")
    except FileNotFoundError as e:
        print(f"Config not found: {e}")
        config = {}

    data_path = config.get('data', {}).get('raw_path', "data/raw/oil_futures.csv")
    if os.path.exists(data_path):
        df = select_variables(load_data(data_path), *get_variable_names(config))
        print_data_summary(df)
        print(f"Missing values: {count_missing(df).sum()}")
    else:
        print(f"No data file found at {data_path}")
