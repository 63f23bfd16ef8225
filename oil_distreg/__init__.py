"""
Oil Futures Distributional Regression
======================================

Exploratory analysis and GAMLSS-style distributional regression for daily
crude oil futures prices, with a one-day-ahead probabilistic forecast.

Modules:
    - data_loader: CSV ingestion, variable selection and validation
    - eda: Descriptive plots and missing-value report (Phase 1)
    - stat_tests: Normality, stationarity and rank-correlation tests (Phase 2)
    - distributions: Response distribution families (PE, JSUo, SEP1, SHASH)
    - distribution_selection: Family comparison by GD/AIC/SBC (Phase 3)
    - preprocessing: Feature subsets, random partitions, design matrices
    - model: Distributional regression fitting (Phase 4)
    - evaluation: Holdout error metrics and diagnostics (Phase 5)
    - prediction: Prediction intervals and next-day forecast (Phase 6)
"""

__version__ = "1.0.0"
__author__ = "Oil Forecast Analytics Team"
