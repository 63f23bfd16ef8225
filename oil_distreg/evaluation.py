"""
Model Evaluation Module - Phase 5
==================================

Holdout error metrics and diagnostics for the distributional regression models.

Features:
    - MAE, RMSE and R² on each model's own holdout partition
    - Best-model rule: lowest RMSE, then lowest MAE, then fewest parameters
    - Actual vs Predicted plots
    - Quantile residual diagnostics
    - Metrics JSON export
"""

import logging
import json
from pathlib import Path
from typing import Dict, Any, Optional, Tuple

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from scipy import stats
from sklearn.metrics import mean_squared_error, mean_absolute_error, r2_score

from .model import DistributionalRegressionModel

logger = logging.getLogger(__name__)


def calculate_metrics(y_true: np.ndarray, y_pred: np.ndarray) -> Dict[str, float]:
    """
    Point-prediction error metrics.

    Args:
        y_true: Actual values
        y_pred: Predicted values (same length)

    Returns:
        Dictionary with mae, rmse, r2 and n_samples
    """
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)

    if y_true.shape != y_pred.shape:
        raise ValueError(f"Shape mismatch: y_true {y_true.shape} vs y_pred {y_pred.shape}")
    if len(y_true) == 0:
        raise ValueError("Cannot compute metrics on empty arrays")

    return {
        'mae': float(mean_absolute_error(y_true, y_pred)),
        'rmse': float(np.sqrt(mean_squared_error(y_true, y_pred))),
        'r2': float(r2_score(y_true, y_pred)) if len(y_true) > 1 else float('nan'),
        'n_samples': int(len(y_true)),
    }


def predict_holdout(
    model: DistributionalRegressionModel,
    partition: Dict[str, Any],
    response: str
) -> pd.DataFrame:
    """
    Predict a model's own holdout rows.

    Args:
        model: Trained model
        partition: Partition of the model's feature subset
        response: Response column name

    Returns:
        DataFrame with 'actual' and 'predicted', indexed by original row

    Raises:
        ValueError: If the partition belongs to a different feature subset
    """
    if partition['name'] != model.feature_subset:
        raise ValueError(
            f"{model.name} was trained on feature subset '{model.feature_subset}' "
            f"and cannot be evaluated on partition '{partition['name']}'"
        )

    test_df = partition['test']
    return pd.DataFrame({
        'actual': test_df[response].values,
        'predicted': model.predict(test_df)
    }, index=test_df.index)


def select_best_model(metrics: Dict[str, Dict[str, float]]) -> str:
    """
    Lowest RMSE wins; ties go to lower MAE, then to fewer parameters.

    Args:
        metrics: Per-model metrics, each with 'rmse', 'mae' and 'n_parameters'

    Returns:
        Name of the best model
    """
    if not metrics:
        raise ValueError("No model metrics to choose from")

    return min(
        metrics,
        key=lambda name: (metrics[name]['rmse'], metrics[name]['mae'],
                          metrics[name].get('n_parameters', 0))
    )


def plot_actual_vs_predicted(
    predictions: Dict[str, pd.DataFrame],
    metrics: Dict[str, Dict[str, float]],
    figsize: Tuple[int, int] = (12, 10),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Actual vs predicted scatter plots, one panel per model.

    Args:
        predictions: Holdout predictions by model
        metrics: Metrics by model
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    n_models = len(predictions)
    n_rows = (n_models + 1) // 2
    fig, axes = plt.subplots(n_rows, 2, figsize=figsize, squeeze=False)
    axes = axes.flatten()

    for i, (name, frame) in enumerate(predictions.items()):
        ax = axes[i]
        ax.scatter(frame['actual'], frame['predicted'], alpha=0.5, s=15)

        min_val = min(frame['actual'].min(), frame['predicted'].min())
        max_val = max(frame['actual'].max(), frame['predicted'].max())
        ax.plot([min_val, max_val], [min_val, max_val], 'r--', linewidth=2, label='Perfect')

        ax.set_xlabel('Actual')
        ax.set_ylabel('Predicted')
        ax.set_title(f"{name}\nMAE={metrics[name]['mae']:.5f}, RMSE={metrics[name]['rmse']:.5f}",
                     fontsize=10, fontweight='bold')
        ax.legend(loc='upper left', fontsize=8)

    # Hide unused subplots
    for idx in range(n_models, len(axes)):
        axes[idx].set_visible(False)

    plt.suptitle('Actual vs Predicted - Holdout Performance', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Actual vs Predicted plot saved to {save_path}")

    return fig


def plot_quantile_residuals(
    model: DistributionalRegressionModel,
    figsize: Tuple[int, int] = (12, 9),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Four-panel residual diagnostics on the training quantile residuals:
    against fitted values, against index, density and normal Q-Q.

    Args:
        model: Trained model
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    residuals = model.quantile_residuals()
    fitted = model.fitted_values_

    fig, axes = plt.subplots(2, 2, figsize=figsize)

    axes[0, 0].scatter(fitted, residuals, alpha=0.5, s=10)
    axes[0, 0].axhline(0, color='red', linestyle='--')
    axes[0, 0].set_xlabel('Fitted Values')
    axes[0, 0].set_ylabel('Quantile Residuals')
    axes[0, 0].set_title('Against Fitted Values', fontweight='bold')

    axes[0, 1].scatter(np.arange(len(residuals)), residuals, alpha=0.5, s=10)
    axes[0, 1].axhline(0, color='red', linestyle='--')
    axes[0, 1].set_xlabel('Index')
    axes[0, 1].set_ylabel('Quantile Residuals')
    axes[0, 1].set_title('Against Index', fontweight='bold')

    sns.histplot(residuals, kde=True, stat='density', bins=40, alpha=0.6, ax=axes[1, 0])
    grid = np.linspace(np.nanmin(residuals), np.nanmax(residuals), 200)
    axes[1, 0].plot(grid, stats.norm.pdf(grid), 'r--', label='N(0, 1)')
    axes[1, 0].set_xlabel('Quantile Residuals')
    axes[1, 0].set_title('Density Estimate', fontweight='bold')
    axes[1, 0].legend(fontsize=8)

    stats.probplot(residuals, dist='norm', plot=axes[1, 1])
    axes[1, 1].set_title('Normal Q-Q Plot', fontweight='bold')

    plt.suptitle(f'Quantile Residual Diagnostics - {model.name}', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Residual diagnostics saved to {save_path}")

    return fig


def plot_error_summary(
    metrics: Dict[str, Dict[str, float]],
    figsize: Tuple[int, int] = (12, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Bar chart of MAE and RMSE for each model.

    Args:
        metrics: Metrics by model
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    names = list(metrics.keys())
    x = np.arange(len(names))

    fig, axes = plt.subplots(1, 2, figsize=figsize)

    axes[0].bar(x, [metrics[n]['mae'] for n in names], 0.6, color='coral', alpha=0.8)
    axes[0].set_ylabel('MAE')
    axes[0].set_title('Mean Absolute Error', fontweight='bold')

    axes[1].bar(x, [metrics[n]['rmse'] for n in names], 0.6, color='steelblue', alpha=0.8)
    axes[1].set_ylabel('RMSE')
    axes[1].set_title('Root Mean Squared Error', fontweight='bold')

    for ax in axes:
        ax.set_xticks(x)
        ax.set_xticklabels(names, rotation=30, ha='right')

    plt.suptitle('Holdout Performance Summary', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Error summary plot saved to {save_path}")

    return fig


def evaluate_models(
    models: Dict[str, DistributionalRegressionModel],
    partitions: Dict[str, Dict[str, Any]],
    response: str,
    output_dir: str = "reports/",
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    Evaluate every model on its own holdout partition and generate reports.

    Args:
        models: Trained models by name
        partitions: Partitions by feature subset
        response: Response column name
        output_dir: Directory for output files
        show_plots: Whether to display plots interactively

    Returns:
        Dictionary with metrics, predictions, best_model, figures and metrics_file
    """
    output_dir = Path(output_dir)
    figures_dir = output_dir / "figures"
    metrics_dir = output_dir / "metrics"

    figures_dir.mkdir(parents=True, exist_ok=True)
    metrics_dir.mkdir(parents=True, exist_ok=True)

    logger.info("=" * 60)
    logger.info("STARTING MODEL EVALUATION (Phase 5)")
    logger.info("=" * 60)

    metrics = {}
    predictions = {}
    for name, model in models.items():
        frame = predict_holdout(model, partitions[model.feature_subset], response)
        predictions[name] = frame
        metrics[name] = calculate_metrics(frame['actual'].values, frame['predicted'].values)
        metrics[name].update({
            'n_parameters': model.n_parameters,
            'feature_subset': model.feature_subset,
            'global_deviance': model.global_deviance,
            'aic': model.aic,
            'sbc': model.sbc,
        })
        logger.info(f"{name}: MAE={metrics[name]['mae']:.6f}, RMSE={metrics[name]['rmse']:.6f}")

    best_model = select_best_model(metrics)

    metrics_file = metrics_dir / "evaluation_metrics.json"
    with open(metrics_file, 'w') as f:
        json.dump({'models': metrics, 'best_model': best_model}, f, indent=2)
    logger.info(f"Metrics saved to {metrics_file}")

    figures = []

    logger.info("Generating Actual vs Predicted plots...")
    plot_actual_vs_predicted(
        predictions, metrics, save_path=str(figures_dir / "eval_actual_vs_predicted.png")
    )
    figures.append("eval_actual_vs_predicted.png")

    logger.info("Generating quantile residual diagnostics...")
    for name, model in models.items():
        filename = f"eval_residuals_{name}.png"
        plot_quantile_residuals(model, save_path=str(figures_dir / filename))
        figures.append(filename)

    logger.info("Generating error summary...")
    plot_error_summary(metrics, save_path=str(figures_dir / "eval_error_summary.png"))
    figures.append("eval_error_summary.png")

    if show_plots:
        plt.show()
    else:
        plt.close('all')

    logger.info("=" * 60)
    logger.info(f"EVALUATION COMPLETE - best model: {best_model}")
    logger.info("=" * 60)

    return {
        'metrics': metrics,
        'predictions': predictions,
        'best_model': best_model,
        'figures': figures,
        'metrics_file': str(metrics_file)
    }


def print_evaluation_report(metrics: Dict[str, Dict[str, Any]], best_model: str) -> None:
    """
    Print a formatted evaluation report to console.

    Args:
        metrics: Metrics by model
        best_model: Name of the selected model
    """
    print("\n" + "=" * 78)
    print("MODEL EVALUATION REPORT (holdout)")
    print("=" * 78)
    print(f"{'Model':<10} {'Subset':<13} {'MAE':<12} {'RMSE':<12} {'R²':<10} {'AIC':<12} {'df':<5}")
    print("-" * 78)

    for name, m in metrics.items():
        print(f"{name:<10} {m['feature_subset']:<13} {m['mae']:<12.6f} {m['rmse']:<12.6f} "
              f"{m['r2']:<10.4f} {m['aic']:<12.2f} {m['n_parameters']:<5}")

    print("-" * 78)
    print(f"Best model (lowest RMSE, then MAE, then fewer parameters): {best_model}")
    print("=" * 78 + "\n")
