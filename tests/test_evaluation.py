"""
Test Suite for Evaluation Module
=================================
"""

import json

import pytest
import numpy as np

from oil_distreg.evaluation import (
    calculate_metrics, predict_holdout, select_best_model, evaluate_models
)
from oil_distreg.model import train_all_models
from oil_distreg.preprocessing import create_partitions, get_feature_subsets, WITH_LAG, WITHOUT_LAG
from conftest import RESPONSE, LAG, COVARIATES


class OffsetModel:
    """Predicts the response shifted by a constant."""

    def __init__(self, response, offset=0.0, feature_subset=WITH_LAG):
        self.name = 'offset'
        self.response = response
        self.offset = offset
        self.feature_subset = feature_subset

    def predict(self, df):
        return df[self.response].values + self.offset


class TestCalculateMetrics:
    """Tests for MAE, RMSE and R²."""

    def test_perfect_prediction(self):
        y = np.array([1.0, 2.0, 3.0, 4.0])
        metrics = calculate_metrics(y, y)

        assert metrics['mae'] == 0.0
        assert metrics['rmse'] == 0.0
        assert metrics['r2'] == 1.0
        assert metrics['n_samples'] == 4

    def test_known_values(self):
        metrics = calculate_metrics(np.array([1.0, 2.0, 3.0, 4.0]), np.array([1.0, 2.0, 3.0, 6.0]))

        assert metrics['mae'] == pytest.approx(0.5)
        assert metrics['rmse'] == pytest.approx(1.0)

    def test_rmse_at_least_mae(self):
        np.random.seed(42)
        y_true = np.random.randn(100)
        y_pred = y_true + np.random.randn(100) * 0.3
        metrics = calculate_metrics(y_true, y_pred)

        assert metrics['mae'] > 0
        assert metrics['rmse'] >= metrics['mae']

    def test_shape_mismatch(self):
        with pytest.raises(ValueError, match="Shape mismatch"):
            calculate_metrics(np.zeros(3), np.zeros(4))

    def test_empty(self):
        with pytest.raises(ValueError):
            calculate_metrics(np.array([]), np.array([]))


class TestSelectBestModel:
    """Tests for the best-model rule."""

    def test_lowest_rmse(self):
        metrics = {
            'model_1': {'rmse': 0.020, 'mae': 0.010, 'n_parameters': 14},
            'model_2': {'rmse': 0.050, 'mae': 0.030, 'n_parameters': 13},
            'model_3': {'rmse': 0.018, 'mae': 0.012, 'n_parameters': 54},
        }
        assert select_best_model(metrics) == 'model_3'

    def test_tie_on_rmse_uses_mae(self):
        metrics = {
            'model_1': {'rmse': 0.02, 'mae': 0.015, 'n_parameters': 14},
            'model_2': {'rmse': 0.02, 'mae': 0.012, 'n_parameters': 54},
        }
        assert select_best_model(metrics) == 'model_2'

    def test_full_tie_uses_parameters(self):
        metrics = {
            'model_3': {'rmse': 0.02, 'mae': 0.01, 'n_parameters': 54},
            'model_1': {'rmse': 0.02, 'mae': 0.01, 'n_parameters': 14},
        }
        assert select_best_model(metrics) == 'model_1'

    def test_empty(self):
        with pytest.raises(ValueError):
            select_best_model({})


class TestPredictHoldout:
    """Tests for holdout prediction."""

    @pytest.fixture
    def partitions(self, oil_data):
        return create_partitions(oil_data, RESPONSE, get_feature_subsets(LAG, COVARIATES))

    def test_holdout_frame(self, partitions):
        model = OffsetModel(RESPONSE, offset=0.5)
        frame = predict_holdout(model, partitions[WITH_LAG], RESPONSE)

        assert list(frame.columns) == ['actual', 'predicted']
        assert list(frame.index) == list(partitions[WITH_LAG]['test'].index)
        np.testing.assert_allclose(frame['predicted'] - frame['actual'], 0.5)

    def test_subset_mismatch(self, partitions):
        model = OffsetModel(RESPONSE, feature_subset=WITH_LAG)
        with pytest.raises(ValueError, match="cannot be evaluated"):
            predict_holdout(model, partitions[WITHOUT_LAG], RESPONSE)


class TestEvaluateModels:
    """End-to-end evaluation of trained models."""

    def test_evaluate_models(self, oil_data, config, tmp_path):
        partitions = create_partitions(oil_data, RESPONSE, get_feature_subsets(LAG, COVARIATES))
        models = train_all_models(partitions, RESPONSE, config)

        results = evaluate_models(models, partitions, RESPONSE, output_dir=str(tmp_path))

        assert set(results['metrics']) == set(models)
        assert results['best_model'] in models
        for name, m in results['metrics'].items():
            assert m['n_samples'] == len(partitions[models[name].feature_subset]['test'])
            assert m['rmse'] >= m['mae'] >= 0

        with open(results['metrics_file']) as f:
            saved = json.load(f)
        assert saved['best_model'] == results['best_model']

        for figure in results['figures']:
            assert (tmp_path / "figures" / figure).exists()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
