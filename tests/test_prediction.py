"""
Test Suite for Prediction Module
=================================
"""

import json
from pathlib import Path

import pytest
import numpy as np
import pandas as pd

from oil_distreg.prediction import (
    residual_standard_deviation, compute_prediction_intervals, percent_deviation,
    predict_next_step, run_forecast, print_prediction_results, plot_prediction_intervals,
    confidence_level, CRITICAL_VALUE_99
)


class ConstantModel:
    """Always predicts the same value."""

    def __init__(self, value, feature_subset='with_lag'):
        self.name = 'constant'
        self.value = value
        self.feature_subset = feature_subset

    def predict(self, df):
        return np.full(len(df), self.value)


@pytest.fixture
def holdout():
    """Holdout rows in shuffled order, as produced by a random split."""
    np.random.seed(42)
    index = [512, 7, 980, 33, 401, 250, 999, 64]
    return pd.DataFrame({
        'log_cl1': 4.0 + 0.05 * np.random.randn(len(index)),
        'log_spx': np.random.randn(len(index)),
    }, index=index)


@pytest.fixture
def partition(holdout):
    return {'name': 'with_lag', 'predictors': ['log_spx'], 'train': holdout, 'test': holdout}


class TestIntervals:
    """Tests for the residual-SD prediction interval."""

    def test_residual_sd_uses_ddof_1(self):
        y_true = np.array([1.0, 2.0, 3.0])
        y_pred = np.zeros(3)
        assert residual_standard_deviation(y_true, y_pred) == pytest.approx(1.0)

    def test_residual_sd_needs_two_values(self):
        with pytest.raises(ValueError):
            residual_standard_deviation(np.array([1.0]), np.array([0.0]))

    def test_interval_bounds(self, holdout):
        predictions = pd.DataFrame({
            'actual': holdout['log_cl1'].values,
            'predicted': holdout['log_cl1'].values + 0.01 * np.arange(len(holdout)),
        }, index=holdout.index)

        intervals, sd = compute_prediction_intervals(predictions)

        assert (intervals['lower'] <= intervals['predicted']).all()
        assert (intervals['predicted'] <= intervals['upper']).all()
        np.testing.assert_allclose(intervals['upper'] - intervals['lower'], 2 * CRITICAL_VALUE_99 * sd)
        assert list(intervals.index) == sorted(holdout.index)

    def test_interval_margin(self):
        predictions = pd.DataFrame({'actual': [1.0, 2.0, 3.0], 'predicted': [0.0, 0.0, 0.0]})
        intervals, sd = compute_prediction_intervals(predictions, critical_value=2.0)

        assert sd == pytest.approx(1.0)
        np.testing.assert_allclose(intervals['lower'], -2.0)
        np.testing.assert_allclose(intervals['upper'], 2.0)
        assert list(intervals['covered']) == [True, True, False]


class TestConfidenceLevel:
    """Tests for the interval coverage implied by the critical value."""

    @pytest.mark.parametrize("critical_value, level", [
        (CRITICAL_VALUE_99, 0.99), (1.96, 0.95), (1.645, 0.90)
    ])
    def test_normal_coverage(self, critical_value, level):
        assert confidence_level(critical_value) == pytest.approx(level, abs=1e-3)

    def test_plot_legend(self, holdout):
        predictions = pd.DataFrame({'actual': holdout['log_cl1'], 'predicted': 4.0})
        intervals, _ = compute_prediction_intervals(predictions, critical_value=1.96)

        fig = plot_prediction_intervals(intervals, 'constant', confidence_level=confidence_level(1.96))
        _, labels = fig.axes[0].get_legend_handles_labels()

        assert '95% Interval' in labels
        assert '99% Interval' not in labels


class TestNextStep:
    """Tests for the next-day prediction."""

    def test_percent_deviation_sign(self):
        assert percent_deviation(105.0, 100.0) == pytest.approx(5.0)
        assert percent_deviation(95.0, 100.0) == pytest.approx(-5.0)
        assert percent_deviation(4.0, 4.0) == 0.0

    def test_percent_deviation_zero_actual(self):
        with pytest.raises(ValueError):
            percent_deviation(1.0, 0.0)

    def test_uses_latest_row(self, holdout):
        result = predict_next_step(ConstantModel(4.2), holdout, 'log_cl1')

        assert result['row_index'] == 999
        assert result['actual'] == pytest.approx(holdout.loc[999, 'log_cl1'])
        assert result['predicted'] == pytest.approx(4.2)
        expected = (4.2 - result['actual']) / result['actual'] * 100
        assert result['percent_deviation'] == pytest.approx(expected)


class TestRunForecast:
    """Tests for the Phase 6 runner."""

    def test_outputs(self, partition, tmp_path, capsys):
        result = run_forecast(
            ConstantModel(4.0), partition, 'log_cl1',
            metrics={'mae': 0.04, 'rmse': 0.05, 'r2': 0.1},
            output_dir=str(tmp_path / "predictions"),
            figures_dir=str(tmp_path / "figures")
        )

        assert len(result['intervals']) == len(partition['test'])
        assert result['next_step']['row_index'] == 999
        assert Path(result["csv_path"]).exists()
        assert (tmp_path / "figures" / result['figures'][0]).exists()

        with open(result['report_path']) as f:
            report = json.load(f)
        assert report['model'] == 'constant'
        assert report['interval']['critical_value'] == CRITICAL_VALUE_99
        assert report['interval']['confidence_level'] == pytest.approx(0.99, abs=1e-4)
        assert report['holdout_metrics']['rmse'] == 0.05

        print_prediction_results(result)
        out = capsys.readouterr().out
        assert f"Predicted Oil Price for the Next Day: {result['next_step']['predicted']}" in out
        assert "Percent Deviation from True Value for the Next Day:" in out
        assert "99% interval half-width" in out

    def test_level_follows_critical_value(self, partition, tmp_path, capsys):
        result = run_forecast(
            ConstantModel(4.0), partition, 'log_cl1', critical_value=1.96,
            output_dir=str(tmp_path / "predictions"), figures_dir=str(tmp_path / "figures")
        )

        assert result['confidence_level'] == pytest.approx(0.95, abs=1e-3)
        assert result['report']['interval']['confidence_level'] == result['confidence_level']

        print_prediction_results(result)
        out = capsys.readouterr().out
        assert "95% interval half-width" in out

    def test_subset_mismatch(self, partition, tmp_path):
        with pytest.raises(ValueError):
            run_forecast(ConstantModel(4.0, feature_subset='without_lag'), partition, 'log_cl1',
                         output_dir=str(tmp_path))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
