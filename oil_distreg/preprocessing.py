"""
Data Preprocessing Module
=========================

Feature subsets, random train/holdout partitions and design matrices for the
distributional regression models.

Functions:
    - get_feature_subsets: Predictor lists with and without the lagged response
    - split_dataset: Random 80/20 train/holdout split
    - create_partitions: One independent partition per feature subset
    - DesignMatrixBuilder: Linear (standardized) or cubic B-spline design matrices
"""

import logging
from typing import Dict, Any, Tuple, Optional, List

import pandas as pd
import numpy as np
from sklearn.model_selection import train_test_split
from sklearn.preprocessing import SplineTransformer, StandardScaler

logger = logging.getLogger(__name__)

WITH_LAG = "with_lag"
WITHOUT_LAG = "without_lag"

INTERCEPT = "(Intercept)"


def get_feature_subsets(lag: str, covariates: List[str]) -> Dict[str, List[str]]:
    """
    Build the two predictor sets evaluated by the report.

    Args:
        lag: Name of the lagged response column
        covariates: Exogenous covariate names

    Returns:
        Ordered mapping of subset name to predictor list
    """
    return {
        WITH_LAG: [lag] + list(covariates),
        WITHOUT_LAG: list(covariates),
    }


def split_dataset(
    df: pd.DataFrame,
    test_size: float = 0.2,
    random_state: Optional[int] = None
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Randomly split rows into disjoint training and holdout sets.

    The original row index is kept so holdout rows can still be ordered
    chronologically.

    Args:
        df: Modeling table
        test_size: Fraction of rows held out
        random_state: Seed for the shuffle

    Returns:
        Tuple of (train_df, test_df)
    """
    if not 0 < test_size < 1:
        raise ValueError(f"test_size must be in (0, 1), got {test_size}")

    train_df, test_df = train_test_split(
        df, test_size=test_size, random_state=random_state, shuffle=True
    )
    logger.info(f"Split {len(df)} rows into {len(train_df)} train / {len(test_df)} holdout "
                f"(random_state={random_state})")
    return train_df, test_df


def create_partitions(
    df: pd.DataFrame,
    response: str,
    feature_subsets: Dict[str, List[str]],
    test_size: float = 0.2,
    random_state: int = 123
) -> Dict[str, Dict[str, Any]]:
    """
    Create one independent train/holdout partition per feature subset.

    The i-th subset is split with seed ``random_state + i``.

    Returns:
        Mapping of subset name to a partition dictionary with keys
        'name', 'predictors', 'train', 'test', 'random_state'
    """
    partitions = {}

    for i, (name, predictors) in enumerate(feature_subsets.items()):
        table = df[[response] + list(predictors)]
        seed = random_state + i
        train_df, test_df = split_dataset(table, test_size=test_size, random_state=seed)
        partitions[name] = {
            'name': name,
            'predictors': list(predictors),
            'train': train_df,
            'test': test_df,
            'random_state': seed,
        }

    return partitions


def second_difference_penalty(n_basis: int) -> np.ndarray:
    """Roughness penalty D'D with D the second-order difference matrix."""
    if n_basis < 3:
        return np.zeros((n_basis, n_basis))
    D = np.diff(np.eye(n_basis), n=2, axis=0)
    return D.T @ D


class DesignMatrixBuilder:
    """
    Builds the location design matrix for a distributional regression.

    Linear terms are standardized so the optimizer works on a well-conditioned
    scale. Smooth terms use a cubic B-spline basis with ``spline_df`` columns
    per predictor. The first column is always the intercept.
    """

    def __init__(
        self,
        predictors: Optional[List[str]] = None,
        smooth: bool = False,
        spline_df: int = 5,
        spline_degree: int = 3
    ):
        """
        Args:
            predictors: Predictor column names (empty for an intercept-only model)
            smooth: Use spline terms instead of linear terms
            spline_df: Basis columns per smooth term
            spline_degree: Polynomial degree of the spline pieces
        """
        self.predictors = list(predictors or [])
        self.smooth = smooth
        self.spline_df = spline_df
        self.spline_degree = spline_degree

        self.transformer = None
        self.feature_names: List[str] = [INTERCEPT]
        self._is_fitted = False

        if smooth and spline_df < spline_degree:
            raise ValueError(
                f"spline_df ({spline_df}) must be at least the spline degree ({spline_degree})"
            )

    @property
    def n_columns(self) -> int:
        return len(self.feature_names)

    def fit(self, df: pd.DataFrame) -> 'DesignMatrixBuilder':
        """
        Learn scaling or knot positions from the training rows.

        Args:
            df: Training data containing all predictors

        Returns:
            Self for method chaining
        """
        self.feature_names = [INTERCEPT]

        if self.predictors:
            values = df[self.predictors].values
            if self.smooth:
                # include_bias=False drops one basis function: n_knots + degree - 2 columns
                self.transformer = SplineTransformer(
                    n_knots=self.spline_df - self.spline_degree + 2,
                    degree=self.spline_degree,
                    knots='quantile',
                    extrapolation='linear',
                    include_bias=False
                )
                self.transformer.fit(values)
                self.feature_names += [
                    f"cs({col})_{k + 1}" for col in self.predictors for k in range(self.spline_df)
                ]
            else:
                self.transformer = StandardScaler()
                self.transformer.fit(values)
                self.feature_names += list(self.predictors)

        self._is_fitted = True
        return self

    def transform(self, df: pd.DataFrame) -> np.ndarray:
        """
        Build the design matrix for new rows.

        Returns:
            Array of shape (n_rows, n_columns), intercept first
        """
        if not self._is_fitted:
            raise ValueError("DesignMatrixBuilder must be fitted before transform. Call fit() first.")

        intercept = np.ones((len(df), 1))
        if not self.predictors:
            return intercept

        terms = self.transformer.transform(df[self.predictors].values)
        return np.hstack([intercept, terms])

    def fit_transform(self, df: pd.DataFrame) -> np.ndarray:
        self.fit(df)
        return self.transform(df)

    def penalty_matrix(self) -> Optional[np.ndarray]:
        """
        Block-diagonal roughness penalty over the spline coefficients.

        Returns:
            Square matrix matching the design columns, or None for linear designs
        """
        if not self.smooth or not self.predictors:
            return None

        block = second_difference_penalty(self.spline_df)
        P = np.zeros((self.n_columns, self.n_columns))
        for j in range(len(self.predictors)):
            start = 1 + j * self.spline_df
            stop = start + self.spline_df
            P[start:stop, start:stop] = block
        return P


def print_partition_summary(partitions: Dict[str, Dict[str, Any]]) -> None:
    """
    Print a summary of the train/holdout partitions.

    Args:
        partitions: Result of create_partitions
    """
    print("\n" + "=" * 50)
    print("DATA PARTITIONS")
    print("=" * 50)

    for name, partition in partitions.items():
        print(f"\n{name} (random_state={partition['random_state']}):")
        print(f"  - Predictors: {len(partition['predictors'])}")
        print(f"  - Training rows: {len(partition['train'])}")
        print(f"  - Holdout rows: {len(partition['test'])}")

    print("=" * 50 + "\n")
