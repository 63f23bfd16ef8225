"""
Shared fixtures: synthetic daily oil futures data.
"""

import matplotlib
matplotlib.use("Agg")

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

RESPONSE = "log_cl1"
LAG = "log_cl1_lag1"
COVARIATES = ["log_bdi", "log_spx", "log_dxy"]


def make_oil_data(n_rows: int = 300, covariates=None, seed: int = 42, include_lag: bool = True) -> pd.DataFrame:
    """
    Log price of the front-month contract driven by a few log covariates,
    with persistent, skewed noise. Row order is chronological.
    """
    covariates = covariates or COVARIATES
    rng = np.random.RandomState(seed)
    n = n_rows + 1

    data = {}
    for i, col in enumerate(covariates):
        data[col] = 3.0 + i + np.cumsum(0.01 * rng.randn(n))

    signal = sum(
        (0.5 if i % 2 == 0 else -0.4) * (data[col] - data[col].mean())
        for i, col in enumerate(covariates)
    )
    noise = np.zeros(n)
    shocks = 0.02 * np.sinh(0.8 * rng.randn(n))
    for t in range(1, n):
        noise[t] = 0.7 * noise[t - 1] + shocks[t]

    response = 4.2 + signal + noise

    df = pd.DataFrame({RESPONSE: response[1:]})
    if include_lag:
        df[LAG] = response[:-1]
    for col in covariates:
        df[col] = data[col][1:]
    return df.reset_index(drop=True)


def make_config(tmp_path: Path, covariates=None) -> dict:
    return {
        'variables': {
            'response': RESPONSE,
            'lag': LAG,
            'covariates': list(covariates or COVARIATES),
        },
        'statistical_tests': {'alpha': 0.05, 'adf_regression': 'ct'},
        'distribution_selection': {'max_iter': 500},
        'split': {'test_size': 0.2, 'random_state': 7},
        'model': {'family': 'SHASH', 'spline_df': 5, 'smoothing_penalty': 0.1, 'max_iter': 500},
        'forecast': {'critical_value': 2.575},
        'data': {'predictions_path': str(tmp_path / 'predictions')},
        'output': {
            'figures_path': str(tmp_path / 'reports' / 'figures'),
            'reports_path': str(tmp_path / 'reports'),
            'model_dir': str(tmp_path / 'models'),
        },
        'logging': {'level': 'WARNING', 'log_dir': str(tmp_path / 'logs')},
    }


@pytest.fixture
def oil_data():
    """Modeling table with response, lag and three covariates."""
    return make_oil_data()


@pytest.fixture
def config(tmp_path):
    """Pipeline configuration writing all output under tmp_path."""
    return make_config(tmp_path)
