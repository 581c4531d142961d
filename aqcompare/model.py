"""
Model Training Module
=====================

Four regression model families behind a common fit / predict interface.

Models:
    - Linear: ordinary least squares (scikit-learn LinearRegression)
    - Poisson: log-link Poisson GLM fit by IRLS (statsmodels GLM)
    - RandomForest: bagged regression trees (scikit-learn RandomForestRegressor)
    - MARS: multivariate adaptive regression splines with a degree x nprune
      grid search (aqcompare.mars.EarthRegressor)

Every model runs k-fold cross-validation on the training set before the
final fit. Fold assignment, the random forest and the MARS grid search all
use the seed passed in explicitly; global random state is never touched.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import joblib
from joblib import Parallel, delayed
import statsmodels.api as sm
from sklearn.ensemble import RandomForestRegressor
from sklearn.linear_model import LinearRegression
from sklearn.model_selection import KFold

from .evaluation import rmse
from .exceptions import FitError
from .mars import EarthRegressor
from .preprocessing import prepare_xy

logger = logging.getLogger(__name__)

DEFAULT_SEED = 123
DEFAULT_FOLDS = 10


class RegressionModel:
    """
    Base class for the compared model families.

    Subclasses implement ``_fit_estimator`` and ``_predict_estimator``; the
    same two hooks serve the cross-validation folds and the final fit.
    """

    name = "base"

    def __init__(self, n_folds: int = DEFAULT_FOLDS, random_state: int = DEFAULT_SEED):
        self.n_folds = n_folds
        self.random_state = random_state

        self.estimator_ = None
        self.predictors_: Optional[List[str]] = None
        self.outcome_: Optional[str] = None
        self.cv_scores_: List[float] = []
        self.cv_rmse_: Optional[float] = None
        self.training_info: Dict[str, Any] = {}
        self._is_fitted = False

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'RegressionModel':
        return cls(**cls._params_from_config(config))

    @classmethod
    def _params_from_config(cls, config: Dict[str, Any]) -> Dict[str, Any]:
        return {
            'n_folds': config.get('cross_validation', {}).get('n_folds', DEFAULT_FOLDS),
            'random_state': config.get('random_seed', DEFAULT_SEED)
        }

    def get_params(self) -> Dict[str, Any]:
        return {'n_folds': self.n_folds, 'random_state': self.random_state}

    def _fit_estimator(self, X: np.ndarray, y: np.ndarray):
        raise NotImplementedError

    def _predict_estimator(self, estimator, X: np.ndarray) -> np.ndarray:
        return np.asarray(estimator.predict(X), dtype=float)

    def _check_training_data(
        self,
        df: pd.DataFrame,
        predictors: Sequence[str],
        outcome: str
    ) -> Tuple[np.ndarray, np.ndarray]:
        if self.n_folds < 2:
            raise FitError(f"n_folds must be at least 2, got {self.n_folds}")
        X, y = prepare_xy(df, predictors, outcome)
        if len(df) < self.n_folds:
            raise FitError(
                f"{self.name}: training set has {len(df)} rows, "
                f"fewer than the {self.n_folds} cross-validation folds"
            )
        if np.isnan(X).any() or np.isnan(y).any():
            raise FitError(f"{self.name}: training data contains missing values")
        return X, y

    def folds(self, n_samples: int) -> List[Tuple[np.ndarray, np.ndarray]]:
        """Shuffled k-fold (train_idx, val_idx) pairs, fixed by random_state."""
        kfold = KFold(n_splits=self.n_folds, shuffle=True, random_state=self.random_state)
        return list(kfold.split(np.arange(n_samples)))

    def cross_validate(
        self,
        df: pd.DataFrame,
        predictors: Sequence[str],
        outcome: str
    ) -> List[float]:
        """
        Run k-fold cross-validation on the training data.

        Returns:
            RMSE of each held-out fold
        """
        X, y = self._check_training_data(df, predictors, outcome)

        scores = []
        for train_idx, val_idx in self.folds(len(y)):
            estimator = self._fit_estimator(X[train_idx], y[train_idx])
            pred = self._predict_estimator(estimator, X[val_idx])
            scores.append(rmse(y[val_idx], pred))

        self.cv_scores_ = scores
        self.cv_rmse_ = float(np.mean(scores))
        return scores

    def fit(
        self,
        df: pd.DataFrame,
        predictors: Sequence[str],
        outcome: str
    ) -> 'RegressionModel':
        """
        Cross-validate, then train on the full training set.

        Args:
            df: Training data
            predictors: Ordered predictor columns
            outcome: Outcome column

        Returns:
            Self for method chaining

        Raises:
            FitError: Too few rows for the folds or missing columns
        """
        start_time = datetime.now()

        logger.info(f"Training {self.name} model on {len(df)} rows, predictors={list(predictors)}")

        self.cross_validate(df, predictors, outcome)
        logger.info(
            f"  {self.name}: {self.n_folds}-fold CV RMSE = {self.cv_rmse_:.4f} "
            f"(± {np.std(self.cv_scores_):.4f})"
        )

        X, y = self._check_training_data(df, predictors, outcome)
        self.estimator_ = self._fit_estimator(X, y)
        self.predictors_ = list(predictors)
        self.outcome_ = outcome
        self._is_fitted = True

        end_time = datetime.now()
        training_duration = (end_time - start_time).total_seconds()

        self.training_info = {
            'model': self.name,
            'training_duration_seconds': training_duration,
            'n_samples': int(len(df)),
            'predictors': list(predictors),
            'trained_at': end_time.isoformat(),
            'hyperparameters': self.get_params(),
            'cv_rmse': self.cv_rmse_,
            'cv_scores': list(self.cv_scores_)
        }

        logger.info(f"  {self.name} trained in {training_duration:.2f} seconds")
        return self

    def predict(self, df: pd.DataFrame) -> np.ndarray:
        """
        Predict the outcome for every row of df.

        Returns:
            Array of predictions aligned 1:1 with the rows of df
        """
        if not self._is_fitted:
            raise FitError(f"{self.name} model must be trained before prediction. Call fit() first.")
        X, _ = prepare_xy(df, self.predictors_)
        return self._predict_estimator(self.estimator_, X)

    def save(self, filepath: str) -> None:
        """
        Save the trained model to disk.

        Args:
            filepath: Path to save the model
        """
        if not self._is_fitted:
            raise FitError("Cannot save untrained model.")

        fitted = {
            key: value for key, value in vars(self).items()
            if key.endswith('_') and not key.startswith('_')
        }
        state = {
            'name': self.name,
            'params': self.get_params(),
            'fitted': fitted,
            'training_info': self.training_info
        }

        Path(filepath).parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(state, filepath)
        logger.info(f"{self.name} model saved to {filepath}")

    @classmethod
    def load(cls, filepath: str) -> 'RegressionModel':
        """
        Load a trained model from disk.

        Args:
            filepath: Path to the saved model

        Returns:
            Loaded model of the class it was saved from
        """
        state = joblib.load(filepath)

        model = MODEL_REGISTRY[state['name']](**state['params'])
        for key, value in state['fitted'].items():
            setattr(model, key, value)
        model.training_info = state['training_info']
        model._is_fitted = True

        logger.info(f"{model.name} model loaded from {filepath}")
        return model


class LinearModel(RegressionModel):
    """Ordinary least squares on the predictor set."""

    name = "Linear"

    def _fit_estimator(self, X, y):
        return LinearRegression().fit(X, y)


class PoissonModel(RegressionModel):
    """
    Poisson GLM with log link.

    The outcome is rounded to the nearest non-negative integer before
    fitting and predictions are rounded to the nearest integer, so errors
    are measured on the count scale.
    """

    name = "Poisson"

    def __init__(self, max_iter: int = 100, **kwargs):
        super().__init__(**kwargs)
        self.max_iter = max_iter

    @classmethod
    def _params_from_config(cls, config):
        params = super()._params_from_config(config)
        params['max_iter'] = config.get('models', {}).get('poisson', {}).get('max_iter', 100)
        return params

    def get_params(self):
        params = super().get_params()
        params['max_iter'] = self.max_iter
        return params

    @staticmethod
    def to_counts(y: np.ndarray) -> np.ndarray:
        return np.clip(np.rint(y), 0, None)

    def _fit_estimator(self, X, y):
        design = sm.add_constant(X, has_constant='add')
        glm = sm.GLM(self.to_counts(y), design, family=sm.families.Poisson())
        return glm.fit(maxiter=self.max_iter)

    def _predict_estimator(self, estimator, X):
        design = sm.add_constant(X, has_constant='add')
        return np.rint(np.asarray(estimator.predict(design), dtype=float))


class RandomForestModel(RegressionModel):
    """Random forest regression with a fixed, recorded seed."""

    name = "RandomForest"

    def __init__(
        self,
        n_estimators: int = 500,
        max_features: float = 1.0 / 3.0,
        min_samples_leaf: int = 5,
        n_jobs: int = 1,
        **kwargs
    ):
        super().__init__(**kwargs)
        self.n_estimators = n_estimators
        self.max_features = max_features
        self.min_samples_leaf = min_samples_leaf
        self.n_jobs = n_jobs

    @classmethod
    def _params_from_config(cls, config):
        params = super()._params_from_config(config)
        rf_config = config.get('models', {}).get('random_forest', {})
        params.update({
            'n_estimators': rf_config.get('n_estimators', 500),
            'max_features': rf_config.get('max_features', 1.0 / 3.0),
            'min_samples_leaf': rf_config.get('min_samples_leaf', 5),
            'n_jobs': rf_config.get('n_jobs', 1)
        })
        return params

    def get_params(self):
        params = super().get_params()
        params.update({
            'n_estimators': self.n_estimators,
            'max_features': self.max_features,
            'min_samples_leaf': self.min_samples_leaf,
            'n_jobs': self.n_jobs
        })
        return params

    def _fit_estimator(self, X, y):
        forest = RandomForestRegressor(
            n_estimators=self.n_estimators,
            max_features=self.max_features,
            min_samples_leaf=self.min_samples_leaf,
            bootstrap=True,
            random_state=self.random_state,
            n_jobs=self.n_jobs
        )
        return forest.fit(X, y)

    def get_feature_importances(self) -> pd.Series:
        """Impurity-based importances indexed by predictor."""
        if not self._is_fitted:
            raise FitError("Model must be trained first.")
        return pd.Series(self.estimator_.feature_importances_, index=self.predictors_)


class MarsModel(RegressionModel):
    """
    MARS with the interaction degree and the number of retained terms chosen
    by cross-validated RMSE.

    nprune values count the intercept (R earth convention), so the default
    grid {2, 3, 4, 5} keeps between one and four hinge terms.

    The forward pass and pruning path depend only on the degree, so each fold
    fits one estimator per degree and scores every nprune value from it.
    """

    name = "MARS"

    def __init__(
        self,
        degrees: Sequence[int] = (1, 2),
        nprune: Sequence[int] = (2, 3, 4, 5),
        max_knots: int = 20,
        **kwargs
    ):
        super().__init__(**kwargs)
        self.degrees = tuple(degrees)
        self.nprune = tuple(nprune)
        self.max_knots = max_knots

        self.best_params_: Optional[Dict[str, int]] = None
        self.grid_results_: Optional[pd.DataFrame] = None

    @classmethod
    def _params_from_config(cls, config):
        params = super()._params_from_config(config)
        mars_config = config.get('models', {}).get('mars', {})
        params.update({
            'degrees': tuple(mars_config.get('degrees', (1, 2))),
            'nprune': tuple(mars_config.get('nprune', (2, 3, 4, 5))),
            'max_knots': mars_config.get('max_knots', 20)
        })
        return params

    def get_params(self):
        params = super().get_params()
        params.update({
            'degrees': list(self.degrees),
            'nprune': list(self.nprune),
            'max_knots': self.max_knots
        })
        return params

    def cross_validate(self, df, predictors, outcome):
        if not self.degrees or not self.nprune:
            raise FitError("MARS needs at least one degree and one nprune value")

        X, y = self._check_training_data(df, predictors, outcome)

        grid = [(degree, k) for degree in sorted(self.degrees) for k in sorted(self.nprune)]
        fold_scores: Dict[Tuple[int, int], List[float]] = {combo: [] for combo in grid}

        for train_idx, val_idx in self.folds(len(y)):
            for degree in sorted(self.degrees):
                earth = EarthRegressor(max_degree=degree, max_knots=self.max_knots)
                earth.fit(X[train_idx], y[train_idx])
                for k in sorted(self.nprune):
                    pred = earth.set_nprune(k).predict(X[val_idx])
                    fold_scores[(degree, k)].append(rmse(y[val_idx], pred))

        self.grid_results_ = pd.DataFrame([
            {
                'degree': degree,
                'nprune': k,
                'cv_rmse': float(np.mean(scores)),
                'cv_rmse_std': float(np.std(scores))
            }
            for (degree, k), scores in fold_scores.items()
        ])

        # grid is ordered by degree then nprune, so min() keeps the simpler model on ties
        best = min(grid, key=lambda combo: np.mean(fold_scores[combo]))
        self.best_params_ = {'degree': best[0], 'nprune': best[1]}
        logger.info(
            f"  MARS grid search: best degree={best[0]}, nprune={best[1]} "
            f"(CV RMSE {np.mean(fold_scores[best]):.4f})"
        )

        self.cv_scores_ = fold_scores[best]
        self.cv_rmse_ = float(np.mean(self.cv_scores_))
        return self.cv_scores_

    def _fit_estimator(self, X, y):
        if self.best_params_ is None:
            raise FitError("MARS hyperparameters are chosen by cross_validate() before the final fit")
        earth = EarthRegressor(
            max_degree=self.best_params_['degree'],
            nprune=self.best_params_['nprune'],
            max_knots=self.max_knots
        )
        return earth.fit(X, y)

    def fit(self, df, predictors, outcome):
        super().fit(df, predictors, outcome)
        self.training_info['best_params'] = dict(self.best_params_)
        return self

    def summary(self) -> str:
        if not self._is_fitted:
            raise FitError("Model must be trained first.")
        return self.estimator_.summary(self.predictors_)


MODEL_REGISTRY = {
    LinearModel.name: LinearModel,
    PoissonModel.name: PoissonModel,
    RandomForestModel.name: RandomForestModel,
    MarsModel.name: MarsModel
}


def build_model(name: str, config: Optional[Dict[str, Any]] = None) -> RegressionModel:
    """
    Create an untrained model from configuration.

    Args:
        name: One of MODEL_REGISTRY's keys
        config: Full pipeline configuration dictionary

    Returns:
        Untrained RegressionModel
    """
    if name not in MODEL_REGISTRY:
        raise ValueError(f"Unknown model: {name}. Choose from: {list(MODEL_REGISTRY)}")
    return MODEL_REGISTRY[name].from_config(config or {})


def _train_one(
    name: str,
    config: Dict[str, Any],
    train_df: pd.DataFrame,
    predictors: Sequence[str],
    outcome: str
) -> RegressionModel:
    return build_model(name, config).fit(train_df, predictors, outcome)


def train_models(
    train_df: pd.DataFrame,
    predictors: Sequence[str],
    outcome: str,
    config: Optional[Dict[str, Any]] = None,
    n_jobs: int = 1
) -> Dict[str, RegressionModel]:
    """
    Train every enabled model on the training set.

    The trainers are independent of each other; with n_jobs != 1 they run
    concurrently in joblib workers. Each carries its own seed, so the result
    does not depend on n_jobs.

    Args:
        train_df: Training data
        predictors: Ordered predictor columns
        outcome: Outcome column
        config: Full pipeline configuration dictionary
        n_jobs: Number of trainers to run at once (-1 for all cores)

    Returns:
        Dictionary mapping model name to trained model, in configured order
    """
    config = config or {}
    names = config.get('models', {}).get('enabled', list(MODEL_REGISTRY))

    logger.info("=" * 60)
    logger.info("STARTING MODEL TRAINING")
    logger.info("=" * 60)
    logger.info(f"Models: {names}, n_jobs={n_jobs}")

    if n_jobs == 1:
        trained = [_train_one(name, config, train_df, predictors, outcome) for name in names]
    else:
        trained = Parallel(n_jobs=n_jobs)(
            delayed(_train_one)(name, config, train_df, predictors, outcome)
            for name in names
        )

    logger.info("=" * 60)
    logger.info("MODEL TRAINING COMPLETE")
    logger.info("=" * 60)

    return dict(zip(names, trained))


def print_model_summary(models: Dict[str, RegressionModel]) -> None:
    """
    Print a summary of the trained models.

    Args:
        models: Dictionary of trained models
    """
    print("\n" + "=" * 60)
    print("MODEL SUMMARY")
    print("=" * 60)
    print(f"{'Model':<15} {'CV RMSE':>10} {'CV std':>10} {'Seconds':>10}")
    print("-" * 60)
    for name, model in models.items():
        info = model.training_info
        print(f"{name:<15} {model.cv_rmse_:>10.4f} {np.std(model.cv_scores_):>10.4f} "
              f"{info.get('training_duration_seconds', float('nan')):>10.2f}")

    mars = models.get(MarsModel.name)
    if mars is not None and mars.best_params_:
        print(f"\nMARS: degree={mars.best_params_['degree']}, nprune={mars.best_params_['nprune']}")
        print(mars.summary())

    forest = models.get(RandomForestModel.name)
    if forest is not None:
        print(f"\nRandom forest (seed={forest.random_state}) importances:")
        for name, value in forest.get_feature_importances().sort_values(ascending=False).items():
            print(f"  {name:<28} {value:.3f}")

    print("=" * 60 + "\n")
