"""
Model Training Module - Phase 4
================================

Distributional regression (GAMLSS-style) fitted by maximum likelihood.

The location parameter ``mu`` is modelled by linear or cubic-spline terms of
the predictors; ``sigma``, ``nu`` and ``tau`` are constants on their link scale.
Smooth models are fitted by penalized likelihood with a second-difference
roughness penalty on each spline block.

The optimizer works on the mean negative log-likelihood of the standardized
response, so the gradient tolerance and the penalty weight do not depend on
the number of rows or the units of the response. Estimates are mapped back to
the response scale after fitting.

Features:
    - Any family from ``distributions`` (SHASH for the regression models)
    - Global deviance, AIC and SBC
    - Coefficient table with approximate standard errors
    - Normalized quantile residual diagnostics
    - Model persistence (save/load)
"""

import logging
from pathlib import Path
from typing import Dict, Any, Optional, List
from datetime import datetime

import numpy as np
import pandas as pd
import joblib
from scipy import optimize, stats
from statsmodels.tools.numdiff import approx_hess

from .distributions import get_family
from .preprocessing import DesignMatrixBuilder

logger = logging.getLogger(__name__)

# Returned for parameter vectors where the log-likelihood is not finite
INVALID_OBJECTIVE = 1e12

MODEL_VARIANTS: Dict[str, Dict[str, Any]] = {
    'model_1': {'feature_subset': 'with_lag', 'smooth': False},
    'model_2': {'feature_subset': 'without_lag', 'smooth': False},
    'model_3': {'feature_subset': 'with_lag', 'smooth': True},
    'model_4': {'feature_subset': 'without_lag', 'smooth': True},
}


class DistributionalRegressionModel:
    """
    Distributional regression model for a continuous response.

    Fits location coefficients and constant scale/shape parameters of the
    chosen response family by (penalized) maximum likelihood.
    """

    def __init__(
        self,
        family: str = "SHASH",
        smooth: bool = False,
        spline_df: int = 5,
        smoothing_penalty: float = 0.0,
        max_iter: int = 2000,
        tol: float = 1e-6,
        name: Optional[str] = None,
        feature_subset: Optional[str] = None
    ):
        """
        Initialize the model.

        Args:
            family: Response family name (PE, JSUo, SEP1, SHASH)
            smooth: Use cubic-spline terms for every predictor
            spline_df: Basis columns per spline term
            smoothing_penalty: Weight of the roughness penalty for smooth terms
            max_iter: Maximum optimizer iterations
            tol: Gradient tolerance on the mean negative log-likelihood
            name: Label used in reports
            feature_subset: Name of the feature subset the model is trained on
        """
        self.family = family
        self.smooth = smooth
        self.spline_df = spline_df
        self.smoothing_penalty = smoothing_penalty
        self.max_iter = max_iter
        self.tol = tol
        self.name = name or family
        self.feature_subset = feature_subset

        self.family_ = get_family(family)
        self.response_: Optional[str] = None
        self.predictors_: List[str] = []
        self.design_: Optional[DesignMatrixBuilder] = None
        self.coef_: Optional[np.ndarray] = None
        self.covariance_: Optional[np.ndarray] = None
        self.effective_df_: Dict[str, float] = {}
        self.parameters_: Dict[str, float] = {}
        self.fitted_values_: Optional[np.ndarray] = None
        self.residuals_: Optional[np.ndarray] = None
        self.training_info: Dict[str, Any] = {}
        self._is_fitted = False

    # ------------------------------------------------------------------
    # Likelihood
    # ------------------------------------------------------------------

    def _unpack(self, theta: np.ndarray, X: np.ndarray) -> Dict[str, Any]:
        p = X.shape[1]
        params = {'mu': X @ theta[:p]}
        for i, parameter in enumerate(self.family_.parameters[1:]):
            params[parameter] = self.family_.inverse_link(parameter, theta[p + i])
        return params

    def _log_likelihood(self, theta: np.ndarray, X: np.ndarray, y: np.ndarray) -> float:
        params = self._unpack(theta, X)
        with np.errstate(all='ignore'):
            return float(np.sum(self.family_.logpdf(y, **params)))

    def _objective(
        self,
        theta: np.ndarray,
        X: np.ndarray,
        y: np.ndarray,
        penalty: Optional[np.ndarray]
    ) -> float:
        # Mean over rows: the penalty weight is per observation
        loglik = self._log_likelihood(theta, X, y)
        if not np.isfinite(loglik):
            return INVALID_OBJECTIVE

        value = -loglik / len(y)
        if penalty is not None:
            beta = theta[:X.shape[1]]
            value += 0.5 * self.smoothing_penalty * float(beta @ penalty @ beta)
        return value

    @staticmethod
    def _residual_sd(X: np.ndarray, y: np.ndarray) -> float:
        beta, *_ = np.linalg.lstsq(X, y, rcond=None)
        residual_sd = float(np.std(y - X @ beta, ddof=1)) if len(y) > 1 else 1.0
        return residual_sd if np.isfinite(residual_sd) and residual_sd > 0 else 1.0

    def _initial_values(self, X: np.ndarray, y: np.ndarray) -> np.ndarray:
        beta, *_ = np.linalg.lstsq(X, y, rcond=None)
        residual_sd = max(self._residual_sd(X, y), 1e-6)

        start = [self.family_.link('sigma', residual_sd)]
        for parameter in self.family_.shape_parameters:
            start.append(self.family_.link(parameter, self.family_.start[parameter]))
        return np.concatenate([beta, np.asarray(start, dtype=float)])

    def _to_response_scale(self, theta: np.ndarray, p: int, center: float, scale: float) -> np.ndarray:
        # Every family is location-scale in (mu, sigma) and sigma has a log link
        theta = theta.copy()
        theta[:p] *= scale
        theta[0] += center
        theta[p] += np.log(scale)
        return theta

    def _effective_df(self, hessian: np.ndarray, penalty: Optional[np.ndarray]) -> Dict[str, float]:
        """
        Effective degrees of freedom of each smooth term.

        The trace of (H + λP)^-1 H over the term's coefficient block, where H
        is the Hessian of the negative log-likelihood alone. Without a penalty
        every term has ``spline_df`` degrees of freedom.
        """
        if penalty is None:
            return {}

        full_penalty = np.zeros_like(hessian)
        p = penalty.shape[0]
        full_penalty[:p, :p] = self.smoothing_penalty * penalty

        influence = np.linalg.pinv(hessian) @ (hessian - full_penalty)
        diagonal = np.diag(influence)

        edf = {}
        for j, col in enumerate(self.predictors_):
            start = 1 + j * self.spline_df
            edf[col] = float(np.sum(diagonal[start:start + self.spline_df]))
        return edf

    # ------------------------------------------------------------------
    # Fitting and prediction
    # ------------------------------------------------------------------

    def fit(
        self,
        df: pd.DataFrame,
        response: str,
        predictors: Optional[List[str]] = None
    ) -> 'DistributionalRegressionModel':
        """
        Fit the model on the provided data.

        Args:
            df: Training data
            response: Response column name
            predictors: Predictor column names (empty for an intercept-only fit)

        Returns:
            Self for method chaining
        """
        start_time = datetime.now()
        predictors = list(predictors or [])

        logger.info(f"Fitting {self.name}: family={self.family}, smooth={self.smooth}, "
                    f"{len(predictors)} predictors, {len(df)} rows")

        self.response_ = response
        self.predictors_ = predictors
        self.design_ = DesignMatrixBuilder(predictors, smooth=self.smooth, spline_df=self.spline_df)

        X = self.design_.fit_transform(df)
        y = df[response].values.astype(float)
        penalty = self.design_.penalty_matrix()

        center = float(np.mean(y))
        scale = self._residual_sd(X, y)
        z = (y - center) / scale

        theta0 = self._initial_values(X, z)
        result = optimize.minimize(
            self._objective,
            theta0,
            args=(X, z, penalty),
            method='BFGS',
            jac='3-point',
            options={'maxiter': self.max_iter, 'gtol': self.tol}
        )

        if not result.success:
            logger.warning(f"{self.name}: optimizer did not converge ({result.message})")

        p = X.shape[1]
        n = len(y)
        self.coef_ = self._to_response_scale(result.x, p, center, scale)

        hessian = approx_hess(result.x, self._objective, args=(X, z, penalty))
        if np.all(np.isfinite(hessian)):
            jacobian = np.ones(len(result.x))
            jacobian[:p] = scale
            self.covariance_ = np.linalg.pinv(hessian * n) * np.outer(jacobian, jacobian)
            self.effective_df_ = self._effective_df(hessian, penalty)
        else:
            logger.warning(f"{self.name}: Hessian is not finite, standard errors unavailable")
            self.covariance_ = None
            self.effective_df_ = {}

        for i, parameter in enumerate(self.family_.parameters[1:]):
            self.parameters_[parameter] = float(self.family_.inverse_link(parameter, self.coef_[p + i]))

        df_model = len(self.coef_)
        loglik = self._log_likelihood(self.coef_, X, y)
        global_deviance = -2.0 * loglik

        fitted_params = self._unpack(self.coef_, X)
        with np.errstate(all='ignore'):
            residuals = self.family_.quantile_residuals(y, **fitted_params)

        end_time = datetime.now()
        self.training_info = {
            'training_duration_seconds': (end_time - start_time).total_seconds(),
            'trained_at': end_time.isoformat(),
            'n_samples': n,
            'n_parameters': df_model,
            'converged': bool(result.success),
            'n_iterations': int(result.nit),
            'optimizer_message': str(result.message),
            'log_likelihood': loglik,
            'global_deviance': global_deviance,
            'aic': global_deviance + 2.0 * df_model,
            'sbc': global_deviance + np.log(n) * df_model,
            'effective_df': dict(self.effective_df_),
        }
        self.fitted_values_ = fitted_params['mu']
        self.residuals_ = residuals
        self._is_fitted = True

        logger.info(f"{self.name}: GD={global_deviance:.3f}, AIC={self.training_info['aic']:.3f}, "
                    f"SBC={self.training_info['sbc']:.3f}, iterations={result.nit}")

        return self

    def _check_fitted(self) -> None:
        if not self._is_fitted:
            raise ValueError("Model must be trained before prediction. Call fit() first.")

    def predict_parameters(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Predict all distribution parameters for new rows.

        Returns:
            DataFrame with one column per family parameter, indexed like ``df``
        """
        self._check_fitted()
        X = self.design_.transform(df)
        params = self._unpack(self.coef_, X)
        return pd.DataFrame(
            {name: np.broadcast_to(value, (len(df),)) for name, value in params.items()},
            index=df.index
        )

    def predict(self, df: pd.DataFrame) -> np.ndarray:
        """
        Predict the location parameter (response scale).

        Args:
            df: Rows containing all predictors

        Returns:
            Array of predicted mu values
        """
        self._check_fitted()
        X = self.design_.transform(df)
        return X @ self.coef_[:X.shape[1]]

    def quantile_residuals(self, df: Optional[pd.DataFrame] = None) -> np.ndarray:
        """
        Normalized quantile residuals; training residuals when ``df`` is None.
        """
        self._check_fitted()
        if df is None:
            return self.residuals_
        params = self.predict_parameters(df)
        with np.errstate(all='ignore'):
            return self.family_.quantile_residuals(
                df[self.response_].values.astype(float),
                **{name: params[name].values for name in self.family_.parameters}
            )

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    @property
    def n_parameters(self) -> int:
        self._check_fitted()
        return len(self.coef_)

    @property
    def global_deviance(self) -> float:
        return self.training_info['global_deviance']

    @property
    def aic(self) -> float:
        return self.training_info['aic']

    @property
    def sbc(self) -> float:
        return self.training_info['sbc']

    def coefficient_table(self) -> pd.DataFrame:
        """
        Estimates on the link scale with approximate standard errors.

        Location coefficients of linear terms refer to standardized predictors.
        """
        self._check_fitted()
        names = list(self.design_.feature_names)
        names += [f"{p} ({self.family_.links[p]})" for p in self.family_.parameters[1:]]

        if self.covariance_ is not None:
            std_error = np.sqrt(np.clip(np.diag(self.covariance_), 0, None))
        else:
            std_error = np.full(len(self.coef_), np.nan)

        with np.errstate(divide='ignore', invalid='ignore'):
            t_value = self.coef_ / std_error
        dof = max(self.training_info['n_samples'] - len(self.coef_), 1)
        p_value = 2 * stats.t.sf(np.abs(t_value), dof)

        return pd.DataFrame({
            'estimate': self.coef_,
            'std_error': std_error,
            't_value': t_value,
            'p_value': p_value
        }, index=names)

    def residual_summary(self) -> Dict[str, float]:
        """Moments and Filliben correlation of the training quantile residuals."""
        self._check_fitted()
        residuals = self.residuals_[np.isfinite(self.residuals_)]
        _, (_, _, filliben) = stats.probplot(residuals, dist='norm')
        return {
            'mean': float(np.mean(residuals)),
            'variance': float(np.var(residuals, ddof=1)),
            'skewness': float(stats.skew(residuals)),
            'kurtosis': float(stats.kurtosis(residuals, fisher=False)),
            'filliben_correlation': float(filliben),
        }

    def summary(self) -> Dict[str, Any]:
        self._check_fitted()
        return {
            'name': self.name,
            'family': self.family,
            'feature_subset': self.feature_subset,
            'smooth': self.smooth,
            'spline_df': self.spline_df if self.smooth else None,
            'smoothing_penalty': self.smoothing_penalty if self.smooth else None,
            'effective_df': dict(self.effective_df_),
            'parameters': dict(self.parameters_),
            'training_info': dict(self.training_info),
            'residuals': self.residual_summary(),
        }

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, filepath: str) -> None:
        """
        Save the trained model to disk.

        Args:
            filepath: Path to save the model
        """
        if not self._is_fitted:
            raise ValueError("Cannot save untrained model.")

        Path(filepath).parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(self, filepath)
        logger.info(f"Model saved to {filepath}")

    @classmethod
    def load(cls, filepath: str) -> 'DistributionalRegressionModel':
        """
        Load a trained model from disk.

        Args:
            filepath: Path to the saved model

        Returns:
            Loaded DistributionalRegressionModel instance
        """
        model = joblib.load(filepath)
        if not isinstance(model, cls):
            raise ValueError(f"{filepath} does not contain a {cls.__name__}")

        logger.info(f"Model loaded from {filepath}")
        return model


def build_model(name: str, config: Dict[str, Any]) -> DistributionalRegressionModel:
    """
    Create an unfitted model for one of the four report variants.

    Args:
        name: Variant name ('model_1' ... 'model_4')
        config: Configuration dictionary

    Returns:
        Unfitted DistributionalRegressionModel
    """
    if name not in MODEL_VARIANTS:
        raise ValueError(f"Unknown model variant: {name}. Choose from: {', '.join(MODEL_VARIANTS)}")

    variant = MODEL_VARIANTS[name]
    model_config = config.get('model', {})

    return DistributionalRegressionModel(
        family=model_config.get('family', 'SHASH'),
        smooth=variant['smooth'],
        spline_df=model_config.get('spline_df', 5),
        smoothing_penalty=model_config.get('smoothing_penalty', 0.1) if variant['smooth'] else 0.0,
        max_iter=model_config.get('max_iter', 2000),
        tol=model_config.get('tol', 1e-6),
        name=name,
        feature_subset=variant['feature_subset']
    )


def train_model(
    name: str,
    partition: Dict[str, Any],
    response: str,
    config: Dict[str, Any],
    save_path: Optional[str] = None
) -> DistributionalRegressionModel:
    """
    Train one model variant on the training rows of its partition.

    Args:
        name: Variant name
        partition: Partition for the variant's feature subset
        response: Response column name
        config: Configuration dictionary
        save_path: Path to save the trained model (optional)

    Returns:
        Trained DistributionalRegressionModel
    """
    model = build_model(name, config)

    if partition['name'] != model.feature_subset:
        raise ValueError(
            f"{name} is specified on feature subset '{model.feature_subset}', "
            f"got partition '{partition['name']}'"
        )

    model.fit(partition['train'], response, partition['predictors'])

    if save_path:
        model.save(save_path)

    return model


def train_all_models(
    partitions: Dict[str, Dict[str, Any]],
    response: str,
    config: Dict[str, Any],
    model_dir: Optional[str] = None
) -> Dict[str, DistributionalRegressionModel]:
    """
    Train the four report variants, each on its own partition.

    Returns:
        Mapping of variant name to trained model
    """
    logger.info("=" * 60)
    logger.info("STARTING MODEL TRAINING (Phase 4)")
    logger.info("=" * 60)

    models = {}
    for name, variant in MODEL_VARIANTS.items():
        save_path = str(Path(model_dir) / f"{name}.joblib") if model_dir else None
        models[name] = train_model(
            name, partitions[variant['feature_subset']], response, config, save_path=save_path
        )

    logger.info("=" * 60)
    logger.info(f"MODEL TRAINING COMPLETE - {len(models)} models fitted")
    logger.info("=" * 60)

    return models


def print_model_summary(model: DistributionalRegressionModel) -> None:
    """
    Print a GAMLSS-style summary of a trained model.

    Args:
        model: Trained model instance
    """
    summary = model.summary()
    info = summary['training_info']

    print("\n" + "=" * 70)
    print(f"MODEL SUMMARY - {summary['name']}")
    print("=" * 70)
    print(f"Family: {model.family_.name} ({model.family_.description})")
    print(f"Feature subset: {summary['feature_subset']}")
    if summary['smooth']:
        print(f"Predictor form: cubic splines, {summary['spline_df']} df per term, "
              f"penalty={summary['smoothing_penalty']}")
    else:
        print("Predictor form: linear")

    print("\nCoefficients:")
    print("-" * 70)
    print(model.coefficient_table().round(5).to_string())

    if summary['effective_df']:
        print("\nEffective df per smooth term:")
        for term, edf in summary['effective_df'].items():
            print(f"  - cs({term}): {edf:.3f}")

    print("\nFitted parameters:")
    for parameter, value in summary['parameters'].items():
        print(f"  - {parameter}: {value:.6f}")

    print(f"\nNo. of observations: {info['n_samples']}")
    print(f"Degrees of freedom for the fit: {info['n_parameters']}")
    print(f"Global Deviance: {info['global_deviance']:.4f}")
    print(f"AIC: {info['aic']:.4f}")
    print(f"SBC: {info['sbc']:.4f}")
    print(f"Converged: {info['converged']} ({info['n_iterations']} iterations)")

    residuals = summary['residuals']
    print("\nSummary of the Quantile Residuals:")
    print(f"  - mean: {residuals['mean']:.6f}")
    print(f"  - variance: {residuals['variance']:.6f}")
    print(f"  - coef. of skewness: {residuals['skewness']:.6f}")
    print(f"  - coef. of kurtosis: {residuals['kurtosis']:.6f}")
    print(f"  - Filliben correlation coefficient: {residuals['filliben_correlation']:.6f}")
    print("=" * 70 + "\n")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

    np.random.seed(42)
    n_samples = 500
    x = np.random.randn(n_samples)
    sample_df = pd.DataFrame({
        'x': x,
        'y': 1.0 + 0.5 * x + 0.3 * np.sinh(np.random.randn(n_samples))
    })

    print("Testing SHASH regression...")
    model = DistributionalRegressionModel(family='SHASH', name='demo')
    model.fit(sample_df, 'y', ['x'])
    print_model_summary(model)
    print(f"Sample predictions: {model.predict(sample_df.head())}")
