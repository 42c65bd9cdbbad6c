"""
Pluggable classifiers and the fitted suitability model artifact.
"""

import numpy as np
import pandas as pd
import joblib
from pathlib import Path
from typing import Literal, Optional, Protocol

from sklearn.neighbors import KNeighborsClassifier
from sklearn.ensemble import RandomForestClassifier
from sklearn.svm import SVC
from sklearn.neural_network import MLPClassifier
from sklearn.linear_model import LogisticRegression
from sklearn.preprocessing import StandardScaler
from sklearn.pipeline import Pipeline

from .errors import MissingCovariateError


EstimatorType = Literal["rf", "knn", "svm", "mlp", "lr"]


class Classifier(Protocol):
    """The capability the pipeline needs from a statistical learner."""

    def fit(self, X: np.ndarray, y: np.ndarray) -> "Classifier": ...

    def predict_proba(self, X: np.ndarray) -> np.ndarray: ...


ESTIMATORS = {
    "rf": lambda random_state, **params: RandomForestClassifier(random_state=random_state, **params),
    "knn": lambda random_state, **params: Pipeline([
        ("scaler", StandardScaler()),
        ("knn", KNeighborsClassifier(**{"n_neighbors": 5, **params}))
    ]),
    "svm": lambda random_state, **params: Pipeline([
        ("scaler", StandardScaler()),
        ("svm", SVC(probability=True, random_state=random_state, **params))
    ]),
    "mlp": lambda random_state, **params: Pipeline([
        ("scaler", StandardScaler()),
        ("mlp", MLPClassifier(hidden_layer_sizes=(64, 32), max_iter=500, random_state=random_state, **params))
    ]),
    "lr": lambda random_state, **params: Pipeline([
        ("scaler", StandardScaler()),
        ("lr", LogisticRegression(max_iter=1000, random_state=random_state, **params))
    ]),
}


def build_estimator(estimator_type: EstimatorType = "rf", random_state: int = 42, **params) -> Classifier:
    """
    Create an unfitted estimator.

    Args:
        estimator_type: Key into ESTIMATORS
        random_state: Seed for estimators with randomness
        **params: Estimator keyword arguments (e.g. n_estimators for "rf")
    """
    if estimator_type not in ESTIMATORS:
        raise ValueError(f"Unknown estimator type: {estimator_type}. Choose from {list(ESTIMATORS.keys())}")
    return ESTIMATORS[estimator_type](random_state, **params)


class SuitabilityModel:
    """
    A fitted presence/absence classifier bound to an ordered covariate list.

    The covariate order is the column order the estimator was fitted with;
    every prediction input is reordered to match it.
    """

    def __init__(
        self,
        covariates: list[str],
        estimator_type: EstimatorType = "rf",
        random_state: int = 42,
        **params,
    ):
        self.covariates = list(covariates)
        self.estimator_type = estimator_type
        self.estimator = build_estimator(estimator_type, random_state, **params)
        self.is_trained = False
        self.config = {"estimator_type": estimator_type, "random_state": random_state, "params": params}
        self.train_stats = {}

    def fit(self, X, y: np.ndarray) -> "SuitabilityModel":
        """Fit the estimator on the covariates, in trained order."""
        self.estimator.fit(self._as_matrix(X), np.asarray(y, dtype=int))
        self.is_trained = True
        return self

    def _as_matrix(self, X) -> np.ndarray:
        if isinstance(X, pd.DataFrame):
            missing = [c for c in self.covariates if c not in X.columns]
            if missing:
                raise MissingCovariateError(missing)
            return X[self.covariates].to_numpy(dtype=np.float64)
        X = np.asarray(X, dtype=np.float64)
        if X.ndim != 2 or X.shape[1] != len(self.covariates):
            raise ValueError(f"Expected X with shape (n_samples, {len(self.covariates)}), got {X.shape}")
        return X

    def predict_proba(self, X) -> np.ndarray:
        """
        Predict presence probabilities.

        Args:
            X: DataFrame with the model covariates, or array with columns in trained order

        Returns:
            Array of probabilities for the presence class
        """
        if not self.is_trained:
            raise RuntimeError("Model has not been trained yet")
        proba = self.estimator.predict_proba(self._as_matrix(X))
        presence = list(self.estimator.classes_).index(1)
        return proba[:, presence]

    def predict(self, X, threshold: float = 0.5) -> np.ndarray:
        """Presence (1) where the probability exceeds the threshold, else absence (0)."""
        return (self.predict_proba(X) > threshold).astype(int)

    def covariate_importance(self) -> pd.Series:
        """Importance of each covariate in the fitted estimator, highest first."""
        if not self.is_trained:
            raise RuntimeError("Model has not been trained yet")
        final = self.estimator.steps[-1][1] if isinstance(self.estimator, Pipeline) else self.estimator
        if hasattr(final, "feature_importances_"):
            scores = final.feature_importances_
        elif hasattr(final, "coef_"):
            scores = np.abs(final.coef_[0])
        else:
            raise ValueError(f"Estimator type '{self.estimator_type}' does not expose covariate importance")
        importance = pd.Series(scores, index=self.covariates, name="importance")
        return importance.iloc[np.argsort(-importance.to_numpy(), kind="stable")]

    def save(self, path: str | Path) -> None:
        """Save the trained model to disk."""
        if not self.is_trained:
            raise RuntimeError("Model has not been trained yet")

        save_data = {
            "estimator": self.estimator,
            "estimator_type": self.estimator_type,
            "covariates": self.covariates,
            "config": self.config,
            "train_stats": self.train_stats,
        }
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(save_data, path)

    @classmethod
    def load(cls, path: str | Path) -> "SuitabilityModel":
        """Load a trained model from disk."""
        data = joblib.load(path)

        model = cls(covariates=data["covariates"], estimator_type=data["estimator_type"])
        model.estimator = data["estimator"]
        model.config = data["config"]
        model.train_stats = data["train_stats"]
        model.is_trained = True

        return model

    @classmethod
    def from_fitted(
        cls,
        estimator: Classifier,
        covariates: list[str],
        estimator_type: EstimatorType = "rf",
        config: Optional[dict] = None,
    ) -> "SuitabilityModel":
        """Wrap an estimator that has already been fitted on ``covariates``."""
        model = cls(covariates=covariates, estimator_type=estimator_type)
        model.estimator = estimator
        model.config = dict(config or {})
        model.is_trained = True
        return model
