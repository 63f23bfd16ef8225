"""
Test Suite for Model Module
============================

Tests for the DistributionalRegressionModel class and the report variants.
"""

import pytest
import numpy as np
import pandas as pd

from oil_distreg.model import (
    DistributionalRegressionModel, build_model, train_model, train_all_models, MODEL_VARIANTS,
    print_model_summary
)
from oil_distreg.data_loader import DEFAULT_COVARIATES
from oil_distreg.preprocessing import create_partitions, get_feature_subsets, WITH_LAG, WITHOUT_LAG
from conftest import RESPONSE, LAG, COVARIATES, make_oil_data, make_config


@pytest.fixture
def linear_data():
    """y = 1 + 0.5 x1 - 0.3 x2 + normal noise (sd 0.1)."""
    np.random.seed(42)
    n_samples = 400
    x1 = np.random.randn(n_samples)
    x2 = np.random.randn(n_samples)
    return pd.DataFrame({
        'x1': x1,
        'x2': x2,
        'y': 1.0 + 0.5 * x1 - 0.3 * x2 + 0.1 * np.random.randn(n_samples)
    })


@pytest.fixture
def fitted_model(linear_data):
    model = DistributionalRegressionModel(family='SHASH', max_iter=500, name='test')
    return model.fit(linear_data, 'y', ['x1', 'x2'])


class TestDistributionalRegressionModel:
    """Tests for fitting, prediction and reporting."""

    def test_init(self):
        model = DistributionalRegressionModel(family='JSUo', smooth=True, spline_df=6)
        assert model.family_.name == 'JSUo'
        assert model.smooth
        assert model.spline_df == 6
        assert not model._is_fitted

    def test_unknown_family(self):
        with pytest.raises(ValueError):
            DistributionalRegressionModel(family='NOPE')

    def test_fit_recovers_signal(self, fitted_model, linear_data):
        predictions = fitted_model.predict(linear_data)
        rmse = np.sqrt(np.mean((predictions - linear_data['y'].values) ** 2))

        assert fitted_model._is_fitted
        assert fitted_model.training_info['n_iterations'] > 0
        assert rmse < 0.12

    def test_scale_parameters(self, fitted_model):
        params = fitted_model.parameters_
        assert set(params) == {'sigma', 'nu', 'tau'}
        assert all(np.isfinite(value) and value > 0 for value in params.values())

    def test_predict_before_fit(self, linear_data):
        model = DistributionalRegressionModel()
        with pytest.raises(ValueError, match="must be trained"):
            model.predict(linear_data)

    def test_information_criteria(self, fitted_model, linear_data):
        info = fitted_model.training_info
        n = len(linear_data)
        df_model = fitted_model.n_parameters

        assert df_model == 3 + 3
        assert info['global_deviance'] == pytest.approx(-2 * info['log_likelihood'])
        assert fitted_model.aic == pytest.approx(fitted_model.global_deviance + 2 * df_model)
        assert fitted_model.sbc == pytest.approx(fitted_model.global_deviance + np.log(n) * df_model)

    def test_predict_parameters(self, fitted_model, linear_data):
        head = linear_data.head(5)
        params = fitted_model.predict_parameters(head)

        assert list(params.columns) == ['mu', 'sigma', 'nu', 'tau']
        assert list(params.index) == list(head.index)
        np.testing.assert_allclose(params['mu'].values, fitted_model.predict(head))
        assert (params['sigma'] == fitted_model.parameters_['sigma']).all()

    def test_coefficient_table(self, fitted_model):
        table = fitted_model.coefficient_table()

        assert list(table.index[:3]) == ['(Intercept)', 'x1', 'x2']
        assert len(table) == fitted_model.n_parameters
        assert list(table.columns) == ['estimate', 'std_error', 't_value', 'p_value']
        assert table.loc['x1', 'estimate'] == pytest.approx(0.5, rel=0.1)
        assert (table['std_error'] >= 0).all()

    def test_quantile_residuals(self, fitted_model, linear_data):
        summary = fitted_model.residual_summary()

        assert len(fitted_model.quantile_residuals()) == len(linear_data)
        assert summary['mean'] == pytest.approx(0.0, abs=0.1)
        assert summary['variance'] == pytest.approx(1.0, abs=0.2)
        assert summary['filliben_correlation'] > 0.99

    def test_save_load(self, fitted_model, linear_data, tmp_path):
        path = tmp_path / "models" / "model.joblib"
        fitted_model.save(str(path))

        loaded = DistributionalRegressionModel.load(str(path))
        np.testing.assert_allclose(loaded.predict(linear_data), fitted_model.predict(linear_data))
        assert loaded.training_info == fitted_model.training_info

    def test_save_untrained(self, tmp_path):
        with pytest.raises(ValueError, match="untrained"):
            DistributionalRegressionModel().save(str(tmp_path / "model.joblib"))

    def test_smooth_fit(self, linear_data):
        model = DistributionalRegressionModel(smooth=True, smoothing_penalty=0.1, max_iter=500)
        model.fit(linear_data, 'y', ['x1', 'x2'])

        assert model.n_parameters == 1 + 2 * 5 + 3
        predictions = model.predict(linear_data)
        assert np.sqrt(np.mean((predictions - linear_data['y'].values) ** 2)) < 0.15

    def test_effective_df_shrinks_with_penalty(self, linear_data):
        """Unpenalized terms keep spline_df degrees of freedom; the penalty removes some."""
        edf = {}
        for penalty in [0.0, 0.1, 10.0]:
            model = DistributionalRegressionModel(smooth=True, smoothing_penalty=penalty, max_iter=500)
            model.fit(linear_data, 'y', ['x1', 'x2'])
            edf[penalty] = model.effective_df_

        for term in ['x1', 'x2']:
            assert edf[0.0][term] == pytest.approx(5.0, abs=1e-3)
            assert edf[10.0][term] < edf[0.1][term] < 5.0
            assert edf[10.0][term] > 1.0

    def test_effective_df_reported(self, linear_data, capsys):
        model = DistributionalRegressionModel(smooth=True, smoothing_penalty=0.1, max_iter=500, name='smooth')
        model.fit(linear_data, 'y', ['x1', 'x2'])

        assert set(model.summary()['effective_df']) == {'x1', 'x2'}
        assert model.training_info['effective_df'] == model.effective_df_

        print_model_summary(model)
        out = capsys.readouterr().out
        assert "Effective df per smooth term" in out
        assert f"cs(x1): {model.effective_df_['x1']:.3f}" in out

    def test_linear_model_has_no_effective_df(self, fitted_model):
        assert fitted_model.effective_df_ == {}

    def test_estimates_do_not_depend_on_response_units(self, linear_data):
        """Rescaling the response rescales mu and sigma and leaves the shape alone."""
        scaled = linear_data.assign(y=100.0 * linear_data['y'] + 5.0)
        base = DistributionalRegressionModel(max_iter=500).fit(linear_data, 'y', ['x1', 'x2'])
        other = DistributionalRegressionModel(max_iter=500).fit(scaled, 'y', ['x1', 'x2'])

        np.testing.assert_allclose(other.predict(scaled), 100.0 * base.predict(linear_data) + 5.0,
                                   rtol=1e-3)
        assert other.parameters_['sigma'] == pytest.approx(100.0 * base.parameters_['sigma'], rel=1e-2)
        assert other.parameters_['nu'] == pytest.approx(base.parameters_['nu'], rel=1e-2)
        assert other.global_deviance == pytest.approx(
            base.global_deviance + 2 * len(linear_data) * np.log(100.0), rel=1e-4
        )


class TestConvergence:
    """The optimizer meets its gradient tolerance on tables of report size."""

    @pytest.fixture
    def report_partitions(self):
        data = make_oil_data(n_rows=1000, covariates=DEFAULT_COVARIATES)
        subsets = get_feature_subsets(LAG, DEFAULT_COVARIATES)
        return create_partitions(data, RESPONSE, subsets, test_size=0.2, random_state=123)

    @pytest.fixture
    def report_config(self, tmp_path):
        config = make_config(tmp_path, covariates=DEFAULT_COVARIATES)
        config['model']['max_iter'] = 2000
        return config

    def test_linear_model_converges(self, report_partitions, report_config):
        model = train_model('model_1', report_partitions[WITH_LAG], RESPONSE, report_config)
        info = model.training_info

        assert info['n_samples'] == 800
        assert model.n_parameters == 1 + 10 + 3
        assert info['converged'], info['optimizer_message']

    def test_standard_errors_finite(self, report_partitions, report_config):
        model = train_model('model_2', report_partitions[WITHOUT_LAG], RESPONSE, report_config)
        table = model.coefficient_table()

        assert model.training_info['converged'], model.training_info['optimizer_message']
        assert np.isfinite(table['std_error']).all()
        assert (table['std_error'] > 0).all()


class TestModelVariants:
    """Tests for the four report models."""

    def test_variants(self):
        assert list(MODEL_VARIANTS) == ['model_1', 'model_2', 'model_3', 'model_4']
        assert MODEL_VARIANTS['model_1'] == {'feature_subset': WITH_LAG, 'smooth': False}
        assert MODEL_VARIANTS['model_4'] == {'feature_subset': WITHOUT_LAG, 'smooth': True}

    def test_build_model(self, config):
        linear = build_model('model_2', config)
        smooth = build_model('model_3', config)

        assert linear.family == 'SHASH'
        assert not linear.smooth
        assert linear.smoothing_penalty == 0.0
        assert smooth.smooth
        assert smooth.smoothing_penalty == 0.1
        assert smooth.feature_subset == WITH_LAG

    def test_unknown_variant(self, config):
        with pytest.raises(ValueError, match="Unknown model variant"):
            build_model('model_9', config)

    def test_train_model_checks_partition(self, oil_data, config):
        partitions = create_partitions(oil_data, RESPONSE, get_feature_subsets(LAG, COVARIATES))
        with pytest.raises(ValueError):
            train_model('model_1', partitions[WITHOUT_LAG], RESPONSE, config)

    def test_train_all_models(self, oil_data, config, tmp_path):
        partitions = create_partitions(oil_data, RESPONSE, get_feature_subsets(LAG, COVARIATES))
        models = train_all_models(partitions, RESPONSE, config, model_dir=str(tmp_path))

        assert list(models) == list(MODEL_VARIANTS)
        assert models['model_1'].predictors_ == [LAG] + COVARIATES
        assert models['model_2'].predictors_ == COVARIATES
        assert models['model_3'].n_parameters == 1 + 5 * 4 + 3
        for name in MODEL_VARIANTS:
            assert (tmp_path / f"{name}.joblib").exists()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
