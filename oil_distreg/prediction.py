"""
Prediction Module - Phase 6
============================

Prediction intervals and the next-day forecast from the best model.

Features:
    - Symmetric 99% interval: prediction ± 2.575 × residual standard deviation
    - Next-day prediction from the most recent holdout record
    - Percent deviation from the realized value
    - Interval plot, CSV export and JSON report

The interval assumes i.i.d. Gaussian holdout residuals.
"""

import logging
import json
from pathlib import Path
from typing import Dict, Any, Optional, Tuple
from datetime import datetime

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
from scipy import stats

from .model import DistributionalRegressionModel
from .evaluation import predict_holdout

logger = logging.getLogger(__name__)

# Two-tailed 99% normal critical value
CRITICAL_VALUE_99 = 2.575


def confidence_level(critical_value: float) -> float:
    """Coverage of the two-tailed normal interval ± critical_value."""
    return float(2.0 * stats.norm.cdf(critical_value) - 1.0)


def residual_standard_deviation(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    """Sample standard deviation (ddof=1) of actual - predicted."""
    residuals = np.asarray(y_true, dtype=float) - np.asarray(y_pred, dtype=float)
    if len(residuals) < 2:
        raise ValueError("At least two residuals are required for a standard deviation")
    return float(np.std(residuals, ddof=1))


def compute_prediction_intervals(
    predictions: pd.DataFrame,
    critical_value: float = CRITICAL_VALUE_99
) -> Tuple[pd.DataFrame, float]:
    """
    Build the symmetric prediction interval for every holdout row.

    Args:
        predictions: DataFrame with 'actual' and 'predicted'
        critical_value: Normal critical value

    Returns:
        Tuple of (interval table sorted by row index, residual standard deviation)
    """
    sd = residual_standard_deviation(predictions['actual'].values, predictions['predicted'].values)
    margin = critical_value * sd

    intervals = predictions[['actual', 'predicted']].copy()
    intervals['residual'] = intervals['actual'] - intervals['predicted']
    intervals['lower'] = intervals['predicted'] - margin
    intervals['upper'] = intervals['predicted'] + margin
    intervals['covered'] = (intervals['actual'] >= intervals['lower']) & \
                           (intervals['actual'] <= intervals['upper'])

    return intervals.sort_index(), sd


def percent_deviation(predicted: float, actual: float) -> float:
    """(predicted - actual) / actual × 100; positive when the model over-predicts."""
    if actual == 0:
        raise ValueError("Percent deviation is undefined for an actual value of zero")
    return (predicted - actual) / actual * 100.0


def predict_next_step(
    model: DistributionalRegressionModel,
    holdout: pd.DataFrame,
    response: str
) -> Dict[str, Any]:
    """
    Predict the most recent holdout record (largest row index).

    Args:
        model: Trained model
        holdout: Holdout rows of the model's partition
        response: Response column name

    Returns:
        Dictionary with row_index, predicted, actual and percent_deviation
    """
    latest = holdout.loc[[holdout.index.max()]]
    predicted = float(model.predict(latest)[0])
    actual = float(latest[response].iloc[0])

    return {
        'row_index': int(latest.index[0]),
        'predicted': predicted,
        'actual': actual,
        'percent_deviation': percent_deviation(predicted, actual),
    }


def plot_prediction_intervals(
    intervals: pd.DataFrame,
    model_name: str,
    confidence_level: Optional[float] = None,
    figsize: Tuple[int, int] = (14, 6),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Holdout actuals, predictions and the prediction band in row order.

    Args:
        intervals: Output of compute_prediction_intervals
        model_name: Model label for the title
        confidence_level: Interval coverage for the legend (omitted when None)
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    label = f"{confidence_level:.0%} Interval" if confidence_level is not None else "Prediction Interval"

    fig, ax = plt.subplots(figsize=figsize)

    ax.fill_between(intervals.index, intervals['lower'], intervals['upper'],
                    alpha=0.25, color='steelblue', label=label)
    ax.plot(intervals.index, intervals['predicted'], 'b-', linewidth=1.2, label='Predicted')
    ax.scatter(intervals.index, intervals['actual'], color='black', s=8, label='Actual')

    outside = intervals[~intervals['covered']]
    if len(outside) > 0:
        ax.scatter(outside.index, outside['actual'], color='red', s=20, zorder=5,
                   label='Outside interval')

    coverage = intervals['covered'].mean()
    ax.set_xlabel('Trading Day')
    ax.set_ylabel('Response')
    ax.set_title(f'Holdout Prediction Intervals - {model_name} (coverage {coverage:.1%})',
                 fontsize=14, fontweight='bold')
    ax.legend(loc='upper left', fontsize=8)
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Prediction interval plot saved to {save_path}")

    return fig


def export_intervals(
    intervals: pd.DataFrame,
    output_path: str,
    include_timestamp: bool = True
) -> str:
    """
    Export the interval table to CSV.

    Args:
        intervals: Interval table
        output_path: Directory to save the file
        include_timestamp: Whether to add timestamp to filename

    Returns:
        Path to the saved file
    """
    output_path = Path(output_path)
    output_path.mkdir(parents=True, exist_ok=True)

    if include_timestamp:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        filename = f"prediction_intervals_{timestamp}.csv"
    else:
        filename = "prediction_intervals.csv"

    filepath = output_path / filename
    out = intervals.copy()
    out.index.name = 'row_index'
    out.to_csv(filepath)

    logger.info(f"Prediction intervals exported to {filepath}")
    return str(filepath)


def generate_prediction_report(
    model_name: str,
    next_step: Dict[str, Any],
    residual_sd: float,
    critical_value: float,
    intervals: pd.DataFrame,
    metrics: Optional[Dict[str, Any]] = None,
    output_path: Optional[str] = None
) -> Dict[str, Any]:
    """
    Generate the forecast report.

    Args:
        model_name: Name of the forecasting model
        next_step: Output of predict_next_step
        residual_sd: Holdout residual standard deviation
        critical_value: Normal critical value used for the interval
        intervals: Interval table
        metrics: Holdout metrics of the model (optional)
        output_path: Path to save the report as JSON (optional)

    Returns:
        Report dictionary
    """
    margin = critical_value * residual_sd
    report = {
        'generated_at': datetime.now().isoformat(),
        'model': model_name,
        'next_step': {
            **next_step,
            'lower': next_step['predicted'] - margin,
            'upper': next_step['predicted'] + margin,
        },
        'interval': {
            'critical_value': critical_value,
            'confidence_level': confidence_level(critical_value),
            'residual_sd': residual_sd,
            'margin_of_error': margin,
            'holdout_coverage': float(intervals['covered'].mean()),
            'n_holdout': int(len(intervals)),
        },
    }

    if metrics:
        report['holdout_metrics'] = {k: metrics[k] for k in ('mae', 'rmse', 'r2') if k in metrics}

    if output_path:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, 'w') as f:
            json.dump(report, f, indent=2)
        logger.info(f"Prediction report saved to {output_path}")

    return report


def run_forecast(
    model: DistributionalRegressionModel,
    partition: Dict[str, Any],
    response: str,
    metrics: Optional[Dict[str, Any]] = None,
    critical_value: float = CRITICAL_VALUE_99,
    output_dir: str = "data/predictions/",
    figures_dir: Optional[str] = None,
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    Execute the forecast workflow for the selected model.

    This function:
    1. Predicts the model's holdout rows
    2. Builds the residual-SD prediction interval
    3. Predicts the most recent holdout record
    4. Exports the interval table, report and plot

    Args:
        model: Best model from evaluation
        partition: Partition of the model's feature subset
        response: Response column name
        metrics: Holdout metrics of the model
        critical_value: Normal critical value for the interval
        output_dir: Directory for CSV/JSON output
        figures_dir: Directory for the interval plot (defaults to output_dir)
        show_plots: Whether to display plots interactively

    Returns:
        Dictionary containing intervals, next-step prediction and file paths
    """
    logger.info("=" * 60)
    logger.info(f"STARTING FORECAST (Phase 6) with {model.name}")
    logger.info("=" * 60)

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    figures_dir = Path(figures_dir) if figures_dir else output_dir
    figures_dir.mkdir(parents=True, exist_ok=True)

    predictions = predict_holdout(model, partition, response)
    level = confidence_level(critical_value)
    intervals, sd = compute_prediction_intervals(predictions, critical_value=critical_value)
    logger.info(f"Residual SD: {sd:.6f}, {level:.0%} margin: ±{critical_value * sd:.6f}")

    next_step = predict_next_step(model, partition['test'], response)
    logger.info(f"Next-step prediction for row {next_step['row_index']}: {next_step['predicted']:.6f}")

    csv_path = export_intervals(intervals, str(output_dir))
    report_path = output_dir / "prediction_report.json"
    report = generate_prediction_report(
        model.name, next_step, sd, critical_value, intervals, metrics,
        output_path=str(report_path)
    )

    figure = "forecast_prediction_intervals.png"
    plot_prediction_intervals(intervals, model.name, confidence_level=level,
                              save_path=str(figures_dir / figure))

    if show_plots:
        plt.show()
    else:
        plt.close('all')

    logger.info("=" * 60)
    logger.info("FORECAST COMPLETE")
    logger.info("=" * 60)

    return {
        'model': model.name,
        'intervals': intervals,
        'residual_sd': sd,
        'critical_value': critical_value,
        'confidence_level': level,
        'next_step': next_step,
        'csv_path': csv_path,
        'report_path': str(report_path),
        'report': report,
        'figures': [figure],
    }


def print_prediction_results(result: Dict[str, Any]) -> None:
    """
    Print formatted forecast results to console.

    Args:
        result: Result dictionary from run_forecast
    """
    next_step = result['next_step']
    margin = result['critical_value'] * result['residual_sd']

    print("\n" + "=" * 70)
    print(f"FORECAST - {result['model']}")
    print("=" * 70)
    print(f"Residual SD (holdout): {result['residual_sd']:.6f}")
    print(f"{result['confidence_level']:.0%} interval half-width: {margin:.6f}")
    print(f"Holdout coverage: {result['intervals']['covered'].mean():.1%}")
    print(f"Interval: [{next_step['predicted'] - margin:.6f}, {next_step['predicted'] + margin:.6f}]")
    print("-" * 70)
    print(f"Predicted Oil Price for the Next Day: {next_step['predicted']}")
    print(f"Percent Deviation from True Value for the Next Day: {next_step['percent_deviation']}%")
    print("-" * 70)
    print(f"Intervals exported to: {result['csv_path']}")
    print(f"Full report saved to: {result['report_path']}")
    print("=" * 70 + "\n")
