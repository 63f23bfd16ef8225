"""
Exploratory Analysis Module - Phase 1
=====================================

Descriptive analysis and visualization of the modeling table.

Functions:
    - missing_value_table: Missing value count per variable
    - plot_response_series: Line chart of the response over trading days
    - plot_distributions: Histograms against a fitted normal density
    - plot_correlation_matrix: Rank correlation heatmap
    - descriptive_statistics: Mean, spread, skewness and kurtosis per variable
    - generate_eda_report: Missing values, statistics and all figures
"""

import logging
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple

import pandas as pd
import numpy as np
import matplotlib.pyplot as plt
import seaborn as sns
from scipy import stats

from .data_loader import count_missing

logger = logging.getLogger(__name__)

plt.style.use('seaborn-v0_8-whitegrid')
sns.set_palette("husl")


def missing_value_table(df: pd.DataFrame) -> pd.DataFrame:
    """
    Missing value count and percentage per variable.

    Args:
        df: Modeling table

    Returns:
        DataFrame indexed by variable with 'missing' and 'missing_pct'
    """
    missing = count_missing(df)
    return pd.DataFrame({
        'missing': missing.astype(int),
        'missing_pct': missing / max(len(df), 1) * 100
    })


def plot_response_series(
    df: pd.DataFrame,
    response: str,
    figsize: Tuple[int, int] = (14, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Line plot of the response in row (trading day) order.

    Args:
        df: Modeling table
        response: Response column name
        figsize: Figure size (width, height)
        save_path: Path to save the figure (optional)

    Returns:
        Matplotlib Figure object
    """
    fig, ax = plt.subplots(figsize=figsize)
    ax.plot(df.index, df[response], linewidth=0.9, alpha=0.9, label=response)

    # Add trend line
    z = np.polyfit(range(len(df)), df[response].values, 1)
    p = np.poly1d(z)
    ax.plot(df.index, p(range(len(df))), "r--", alpha=0.5,
            label=f'Trend (slope: {z[0]:.5f})')

    ax.set_xlabel('Trading Day')
    ax.set_ylabel(response)
    ax.set_title(f'Time Series: {response}', fontsize=14, fontweight='bold')
    ax.legend(loc='upper right', fontsize=8)
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Response series plot saved to {save_path}")

    return fig


def plot_distributions(
    df: pd.DataFrame,
    columns: Optional[List[str]] = None,
    n_panel_cols: int = 3,
    figsize: Tuple[int, int] = (14, 16),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Histogram of every variable with the normal density of the same mean and
    standard deviation drawn on top.

    Args:
        df: Modeling table
        columns: Variables to plot (default: every numeric column)
        n_panel_cols: Panels per row
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    columns = columns or df.select_dtypes(include=[np.number]).columns.tolist()
    n_panel_rows = -(-len(columns) // n_panel_cols)

    fig, axes = plt.subplots(n_panel_rows, n_panel_cols, figsize=figsize, squeeze=False)
    axes = axes.ravel()

    for ax, col in zip(axes, columns):
        values = df[col].dropna()
        sns.histplot(values, stat='density', bins=40, alpha=0.6, ax=ax)

        grid = np.linspace(values.min(), values.max(), 200)
        ax.plot(grid, stats.norm.pdf(grid, values.mean(), values.std()), 'r--', linewidth=1.2,
                label='Normal')
        ax.set_title(f"{col} (skew {stats.skew(values):.2f})", fontsize=10, fontweight='bold')
        ax.set_xlabel('')
        ax.legend(fontsize=7)

    for ax in axes[len(columns):]:
        ax.axis('off')

    plt.suptitle('Histograms of the Modeling Variables', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Histograms saved to {save_path}")

    return fig


def plot_correlation_matrix(
    df: pd.DataFrame,
    method: str = 'spearman',
    figsize: Tuple[int, int] = (11, 9),
    save_path: Optional[str] = None
) -> Tuple[plt.Figure, pd.DataFrame]:
    """
    Heatmap of pairwise rank correlations, lower triangle only.

    Args:
        df: Modeling table
        method: Method passed to DataFrame.corr
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Tuple of (Figure, correlation matrix)
    """
    corr = df.select_dtypes(include=[np.number]).corr(method=method)
    upper = np.triu(np.ones(corr.shape, dtype=bool), k=1)

    fig, ax = plt.subplots(figsize=figsize)
    sns.heatmap(
        corr, mask=upper, annot=True, fmt='.2f', cmap='coolwarm', vmin=-1, vmax=1,
        square=True, linewidths=0.5, cbar_kws={'shrink': 0.8, 'label': f'{method} rho'}, ax=ax
    )
    ax.set_title(f'{method.capitalize()} Correlations', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Correlation heatmap saved to {save_path}")

    return fig, corr


def descriptive_statistics(df: pd.DataFrame) -> pd.DataFrame:
    """Location, spread and shape of every numeric variable."""
    numeric = df.select_dtypes(include=[np.number])
    table = numeric.describe().T[['mean', 'std', 'min', '50%', 'max']].rename(columns={'50%': 'median'})
    table['skewness'] = stats.skew(numeric.values, nan_policy='omit')
    table['kurtosis'] = stats.kurtosis(numeric.values, fisher=False, nan_policy='omit')
    return table


def generate_eda_report(
    df: pd.DataFrame,
    response: str,
    output_dir: str = "reports/figures/",
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    Generate the descriptive part of the report.

    Args:
        df: Modeling table
        response: Response column name
        output_dir: Directory to save figures
        show_plots: Whether to display plots interactively

    Returns:
        Dictionary with missing_values, statistics, correlation_matrix and figures
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    logger.info("=" * 60)
    logger.info("STARTING EXPLORATORY DATA ANALYSIS (Phase 1)")
    logger.info("=" * 60)

    missing = missing_value_table(df)
    logger.info(f"Missing values: {int(missing['missing'].sum())} in {len(df)} rows")

    figures = []

    logger.info(f"Plotting {response} over trading days...")
    plot_response_series(df, response, save_path=str(output_dir / "01_response_series.png"))
    figures.append("01_response_series.png")

    logger.info("Plotting histograms...")
    plot_distributions(df, save_path=str(output_dir / "02_distributions.png"))
    figures.append("02_distributions.png")

    logger.info("Plotting rank correlations...")
    _, corr = plot_correlation_matrix(df, save_path=str(output_dir / "03_correlation_matrix.png"))
    figures.append("03_correlation_matrix.png")

    if show_plots:
        plt.show()
    else:
        plt.close('all')

    logger.info(f"EDA complete: {len(figures)} figures in {output_dir}")

    return {
        "data_shape": df.shape,
        "missing_values": missing,
        "statistics": descriptive_statistics(df),
        "correlation_matrix": corr,
        "figures": figures,
    }


def print_missing_values(missing: pd.DataFrame) -> None:
    """
    Print the missing value table.

    Args:
        missing: Output of missing_value_table
    """
    print("\n" + "=" * 50)
    print("MISSING VALUES")
    print("=" * 50)
    print(missing.round(2).to_string())
    print("-" * 50)
    print(f"Total missing: {int(missing['missing'].sum())}")
    print("=" * 50 + "\n")
