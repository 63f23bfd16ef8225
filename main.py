#!/usr/bin/env python3
"""
Oil Futures Distributional Regression - Main Pipeline
======================================================

Orchestrates the analysis report for the daily crude oil futures dataset.

Phases:
    1. EDA - Missing values, histograms, response series, rank correlations
    2. Statistical tests - Normality, stationarity, Spearman significance
    3. Distribution selection - PE / JSUo / SEP1 / SHASH by GD, AIC, SBC
    4. Training - Four SHASH regressions (linear/smooth × with/without lag)
    5. Evaluation - Holdout MAE/RMSE and best-model selection
    6. Forecast - 99% prediction interval and next-day prediction

Usage:
    # Run complete pipeline
    python main.py --data data/raw/oil_futures.csv

    # Run specific phase
    python main.py --data data/raw/oil_futures.csv --phase tests

    # Run with custom config
    python main.py --data data/raw/oil_futures.csv --config config/config.yaml
"""

import argparse
import logging
import sys
from pathlib import Path
from datetime import datetime
from typing import Dict, Any

import pandas as pd

from oil_distreg.data_loader import (
    load_config, load_data, select_variables, get_variable_names, validate_data,
    print_data_summary
)
from oil_distreg.eda import generate_eda_report, print_missing_values
from oil_distreg.stat_tests import run_statistical_tests, print_test_report
from oil_distreg.distribution_selection import run_distribution_selection, print_distribution_comparison
from oil_distreg.preprocessing import get_feature_subsets, create_partitions, print_partition_summary
from oil_distreg.model import train_all_models, print_model_summary
from oil_distreg.evaluation import evaluate_models, print_evaluation_report
from oil_distreg.prediction import run_forecast, print_prediction_results, CRITICAL_VALUE_99

PHASES = ['eda', 'tests', 'distributions', 'train', 'evaluate', 'predict']


def setup_logging(level: str = "INFO", log_dir: str = ".") -> None:
    """Configure logging for the pipeline."""
    Path(log_dir).mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(
                Path(log_dir) / f'pipeline_{datetime.now().strftime("%Y%m%d_%H%M%S")}.log'
            )
        ]
    )


def figures_path(config: Dict[str, Any]) -> str:
    return config.get('output', {}).get('figures_path', 'reports/figures/')


def prepare_data(data_path: str, config: Dict[str, Any]) -> pd.DataFrame:
    """
    Load the raw file and keep the response, lag and covariates.

    Args:
        data_path: Path to input CSV file
        config: Configuration dictionary

    Returns:
        Modeling table
    """
    data_config = config.get('data', {})
    raw = load_data(
        data_path,
        expected_rows=data_config.get('expected_rows'),
        expected_columns=data_config.get('expected_columns')
    )
    response, lag, covariates = get_variable_names(config)
    df = select_variables(raw, response, lag, covariates)
    print_data_summary(df)

    is_valid, _ = validate_data(df, strict=False)
    if not is_valid:
        print("⚠️  Data validation warnings detected. Proceeding anyway...")

    return df


def run_eda(df: pd.DataFrame, config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Execute Phase 1: Exploratory Data Analysis.

    Args:
        df: Modeling table
        config: Configuration dictionary

    Returns:
        EDA report dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 1: EXPLORATORY DATA ANALYSIS")
    print("=" * 70)

    response, _, _ = get_variable_names(config)
    output_dir = figures_path(config)

    report = generate_eda_report(df, response, output_dir=output_dir, show_plots=False)
    print_missing_values(report['missing_values'])

    print(f"\n✓ EDA complete. {len(report['figures'])} figures saved to {output_dir}")

    return report


def run_tests(df: pd.DataFrame, config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Execute Phase 2: Statistical Tests.

    Args:
        df: Modeling table
        config: Configuration dictionary

    Returns:
        Test result dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 2: STATISTICAL TESTS")
    print("=" * 70)

    response, _, _ = get_variable_names(config)
    results = run_statistical_tests(df, response, config)
    print_test_report(results, response)

    return results


def run_distribution_phase(df: pd.DataFrame, config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Execute Phase 3: Distribution Selection.

    Args:
        df: Modeling table
        config: Configuration dictionary

    Returns:
        Distribution comparison dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 3: DISTRIBUTION SELECTION")
    print("=" * 70)

    response, _, _ = get_variable_names(config)
    result = run_distribution_selection(df[response], config, output_dir=figures_path(config))
    print_distribution_comparison(result)

    return result


def run_training(df: pd.DataFrame, config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Execute Phase 4: Partitioning and Model Training.

    Args:
        df: Modeling table
        config: Configuration dictionary

    Returns:
        Dictionary with 'partitions' and 'models'
    """
    print("\n" + "=" * 70)
    print("PHASE 4: MODEL TRAINING")
    print("=" * 70)

    response, lag, covariates = get_variable_names(config)
    split_config = config.get('split', {})

    partitions = create_partitions(
        df,
        response,
        get_feature_subsets(lag, covariates),
        test_size=split_config.get('test_size', 0.2),
        random_state=split_config.get('random_state', 123)
    )
    print_partition_summary(partitions)

    model_dir = config.get('output', {}).get('model_dir', 'models/')
    models = train_all_models(partitions, response, config, model_dir=model_dir)

    for model in models.values():
        print_model_summary(model)

    return {'partitions': partitions, 'models': models}


def run_evaluation(training: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Execute Phase 5: Model Evaluation.

    Args:
        training: Result of run_training
        config: Configuration dictionary

    Returns:
        Evaluation result dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 5: MODEL EVALUATION")
    print("=" * 70)

    response, _, _ = get_variable_names(config)
    reports_dir = config.get('output', {}).get('reports_path', 'reports/')

    result = evaluate_models(
        training['models'], training['partitions'], response,
        output_dir=reports_dir, show_plots=False
    )
    print_evaluation_report(result['metrics'], result['best_model'])

    return result


def run_forecast_phase(
    training: Dict[str, Any],
    evaluation: Dict[str, Any],
    config: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Execute Phase 6: Forecast with the best model.

    Args:
        training: Result of run_training
        evaluation: Result of run_evaluation
        config: Configuration dictionary

    Returns:
        Forecast result dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 6: FORECAST")
    print("=" * 70)

    response, _, _ = get_variable_names(config)
    best_name = evaluation['best_model']
    model = training['models'][best_name]

    result = run_forecast(
        model,
        training['partitions'][model.feature_subset],
        response,
        metrics=evaluation['metrics'][best_name],
        critical_value=config.get('forecast', {}).get('critical_value', CRITICAL_VALUE_99),
        output_dir=config.get('data', {}).get('predictions_path', 'data/predictions/'),
        figures_dir=figures_path(config)
    )
    print_prediction_results(result)

    return result


def run_full_pipeline(
    data_path: str,
    config_path: str = "config/config.yaml",
    log_level: str = None
) -> Dict[str, Any]:
    """
    Execute the complete 6-phase pipeline.

    Args:
        data_path: Path to input CSV file
        config_path: Path to configuration file
        log_level: Overrides the configured logging level

    Returns:
        Dictionary containing all phase results
    """
    return run_pipeline(PHASES[-1], data_path, config_path, log_level)


def run_pipeline(
    phase: str,
    data_path: str,
    config_path: str = "config/config.yaml",
    log_level: str = None
) -> Dict[str, Any]:
    """
    Execute one phase together with the phases it depends on.

    Evaluation needs training and the forecast needs both. 'predict' runs
    every phase; EDA, tests and distribution selection otherwise run alone.

    Args:
        phase: Phase to run
        data_path: Path to input CSV file
        config_path: Path to configuration file
        log_level: Overrides the configured logging level

    Returns:
        Dictionary of phase results
    """
    if phase not in PHASES:
        raise ValueError(f"Unknown phase: {phase}. Choose from: {', '.join(PHASES)}")

    config = load_config(config_path)
    logging_config = config.get('logging', {})
    setup_logging(log_level or logging_config.get('level', 'INFO'), logging_config.get('log_dir', '.'))

    print("\n" + "=" * 70)
    print("OIL FUTURES DISTRIBUTIONAL REGRESSION PIPELINE")
    print(f"Started at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70)

    print("\n📊 Loading data...")
    df = prepare_data(data_path, config)

    results = {'config': config, 'data_shape': df.shape}
    full_run = phase == 'predict'

    if full_run or phase == 'eda':
        results['eda'] = run_eda(df, config)
    if full_run or phase == 'tests':
        results['tests'] = run_tests(df, config)
    if full_run or phase == 'distributions':
        results['distributions'] = run_distribution_phase(df, config)

    if phase in ('train', 'evaluate', 'predict'):
        results['training'] = run_training(df, config)
    if phase in ('evaluate', 'predict'):
        results['evaluation'] = run_evaluation(results['training'], config)
    if phase == 'predict':
        results['forecast'] = run_forecast_phase(results['training'], results['evaluation'], config)

    print("\n" + "=" * 70)
    print("PIPELINE COMPLETE")
    print("=" * 70)
    print(f"  • Input data: {df.shape[0]} rows × {df.shape[1]} columns")
    if 'distributions' in results:
        print(f"  • Selected family: {results['distributions']['selected_family']}")
    if 'evaluation' in results:
        print(f"  • Best model: {results['evaluation']['best_model']}")
    if 'forecast' in results:
        print(f"  • Output: {results['forecast']['csv_path']}")
    print(f"Completed at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70 + "\n")

    return results


def main():
    """Main entry point with argument parsing."""
    parser = argparse.ArgumentParser(
        description="Distributional regression report for daily oil futures prices",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --data data/raw/oil_futures.csv
  python main.py --data data/raw/oil_futures.csv --phase tests
  python main.py --data data/raw/oil_futures.csv --config config/custom.yaml
        """
    )

    parser.add_argument(
        '--data', '-d',
        type=str,
        required=True,
        help='Path to the input CSV file'
    )

    parser.add_argument(
        '--config', '-c',
        type=str,
        default='config/config.yaml',
        help='Path to configuration file (default: config/config.yaml)'
    )

    parser.add_argument(
        '--phase', '-p',
        type=str,
        choices=PHASES + ['all'],
        default='all',
        help='Phase to run (default: all)'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable debug logging'
    )

    args = parser.parse_args()

    if not Path(args.data).exists():
        print(f"Error: Data file not found: {args.data}")
        print("\nPlace the oil futures CSV file in the specified location.")
        sys.exit(1)

    if not Path(args.config).exists():
        print(f"Error: Config file not found: {args.config}")
        sys.exit(1)

    log_level = 'DEBUG' if args.verbose else None

    try:
        if args.phase == 'all':
            run_full_pipeline(args.data, args.config, log_level)
        else:
            run_pipeline(args.phase, args.data, args.config, log_level)

        return 0

    except Exception as e:
        logging.error(f"Pipeline failed: {e}", exc_info=True)
        print(f"\n❌ Pipeline failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
