"""
Distribution Selection Module - Phase 3
========================================

Fits candidate response families to the response variable alone
(intercept-only models) and compares them by global deviance, AIC and SBC.

Selection rule: each family is ranked on GD, AIC and SBC; the lowest sum of
ranks wins, ties are broken by SBC and then AIC.
"""

import logging
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns

from .model import DistributionalRegressionModel

logger = logging.getLogger(__name__)

# Increasing parametric flexibility
CANDIDATE_FAMILIES = ['PE', 'JSUo', 'SEP1', 'SHASH']

CRITERIA = ['global_deviance', 'aic', 'sbc']


def fit_distribution(
    y: pd.Series,
    family: str,
    max_iter: int = 2000
) -> DistributionalRegressionModel:
    """
    Fit a single family to a univariate sample.

    Args:
        y: Response values
        family: Family name
        max_iter: Maximum optimizer iterations

    Returns:
        Intercept-only DistributionalRegressionModel
    """
    name = y.name or 'y'
    model = DistributionalRegressionModel(family=family, max_iter=max_iter, name=family)
    return model.fit(y.to_frame(name=name), name, predictors=[])


def compare_distributions(
    y: pd.Series,
    families: Optional[List[str]] = None,
    max_iter: int = 2000
) -> Tuple[pd.DataFrame, Dict[str, DistributionalRegressionModel]]:
    """
    Fit every candidate family and tabulate the fit criteria.

    Args:
        y: Response values
        families: Family names (default: CANDIDATE_FAMILIES)
        max_iter: Maximum optimizer iterations

    Returns:
        Tuple of (comparison table indexed by family, fitted models by family)
    """
    families = families or CANDIDATE_FAMILIES
    fits = {}
    rows = []

    for family in families:
        logger.info(f"Fitting {family} to '{y.name}'...")
        model = fit_distribution(y, family, max_iter=max_iter)
        fits[family] = model

        row = {
            'family': family,
            'df': model.n_parameters,
            'global_deviance': model.global_deviance,
            'aic': model.aic,
            'sbc': model.sbc,
            'converged': model.training_info['converged'],
        }
        row.update({parameter: value for parameter, value in model.parameters_.items()})
        row['mu'] = float(model.coef_[0])
        rows.append(row)

    table = pd.DataFrame(rows).set_index('family')
    return table, fits


def select_family(table: pd.DataFrame) -> str:
    """
    Pick the best family from a comparison table.

    Ranks each family on GD, AIC and SBC (1 = lowest). The lowest rank sum
    wins; ties go to the lower SBC, then the lower AIC.

    Args:
        table: Output of compare_distributions

    Returns:
        Name of the selected family
    """
    if table.empty:
        raise ValueError("Cannot select a family from an empty comparison table")

    ranks = table[CRITERIA].rank(method='min')
    scored = table.assign(rank_sum=ranks.sum(axis=1))
    ordered = scored.sort_values(['rank_sum', 'sbc', 'aic'], kind='mergesort')
    return str(ordered.index[0])


def plot_fitted_densities(
    y: pd.Series,
    fits: Dict[str, DistributionalRegressionModel],
    figsize: Tuple[int, int] = (12, 6),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Overlay every fitted density on the response histogram.

    Args:
        y: Response values
        fits: Fitted intercept-only models by family
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    fig, ax = plt.subplots(figsize=figsize)
    sns.histplot(y, stat='density', bins=50, alpha=0.4, ax=ax, color='gray', label='Observed')

    grid = np.linspace(y.min(), y.max(), 400)
    for family, model in fits.items():
        grid_df = pd.DataFrame({model.response_: grid})
        params = model.predict_parameters(grid_df)
        density = model.family_.pdf(grid, **{p: params[p].values for p in model.family_.parameters})
        ax.plot(grid, density, linewidth=1.8, label=f"{family} (SBC={model.sbc:.1f})")

    ax.set_xlabel(str(y.name))
    ax.set_ylabel('Density')
    ax.set_title(f'Fitted Distributions: {y.name}', fontsize=14, fontweight='bold')
    ax.legend(fontsize=9)
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Fitted density plot saved to {save_path}")

    return fig


def run_distribution_selection(
    y: pd.Series,
    config: Dict[str, Any],
    output_dir: str = "reports/figures/",
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    Execute Phase 3: fit, compare and select the response family.

    Args:
        y: Response values
        config: Configuration dictionary
        output_dir: Directory to save figures
        show_plots: Whether to display plots interactively

    Returns:
        Dictionary with the comparison table, selected family and figure names
    """
    selection_config = config.get('distribution_selection', {})
    families = selection_config.get('families', CANDIDATE_FAMILIES)

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    logger.info("=" * 60)
    logger.info("STARTING DISTRIBUTION SELECTION (Phase 3)")
    logger.info("=" * 60)

    table, fits = compare_distributions(
        y, families=families, max_iter=selection_config.get('max_iter', 2000)
    )
    selected = select_family(table)

    plot_fitted_densities(y, fits, save_path=str(output_dir / "10_fitted_distributions.png"))

    if show_plots:
        plt.show()
    else:
        plt.close('all')

    logger.info(f"Selected family: {selected}")

    return {
        'table': table,
        'selected_family': selected,
        'figures': ["10_fitted_distributions.png"],
    }


def print_distribution_comparison(result: Dict[str, Any]) -> None:
    """
    Print the family comparison table.

    Args:
        result: Result of run_distribution_selection
    """
    print("\n" + "=" * 70)
    print("DISTRIBUTION FAMILY COMPARISON")
    print("=" * 70)
    columns = ['df', 'global_deviance', 'aic', 'sbc', 'converged']
    print(result['table'][columns].round(4).to_string())
    print("-" * 70)
    print(f"Selected family (lowest rank sum over GD/AIC/SBC): {result['selected_family']}")
    print("=" * 70 + "\n")
