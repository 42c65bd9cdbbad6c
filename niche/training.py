"""
Model training: stratified hold-out split, cross-validated grid search, refit.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd
from sklearn.model_selection import GridSearchCV, StratifiedKFold, train_test_split

from .classifier import EstimatorType, SuitabilityModel, build_estimator
from .config import CV_FOLDS, MIN_NODE_SIZES, N_TREES, SPLIT_SEED, TEST_SIZE
from .data import TrainingDataset
from .errors import ConfigurationError
from .features import require_both_classes

logger = logging.getLogger(__name__)


@dataclass
class TrainingResult:
    """The fitted model, the untouched held-out partition and the CV table."""

    model: SuitabilityModel
    held_out: TrainingDataset
    train: TrainingDataset
    cv_results: pd.DataFrame


def default_param_grid(n_covariates: int, estimator_type: EstimatorType = "rf") -> dict:
    """
    Small tuning grid for an estimator type.

    For random forests this is candidate features per split
    (sqrt(p) and p/3) crossed with the minimum leaf size.
    """
    if estimator_type == "rf":
        candidates = sorted({max(1, math.floor(math.sqrt(n_covariates))), max(1, n_covariates // 3)})
        return {"max_features": candidates, "min_samples_leaf": list(MIN_NODE_SIZES)}
    if estimator_type == "lr":
        return {"lr__C": [0.1, 1.0, 10.0]}
    if estimator_type == "knn":
        return {"knn__n_neighbors": [5, 15]}
    if estimator_type == "svm":
        return {"svm__C": [1.0, 10.0]}
    if estimator_type == "mlp":
        return {"mlp__alpha": [1e-4, 1e-3]}
    raise ValueError(f"Unknown estimator type: {estimator_type}")


def _check_fold_sizes(y: np.ndarray, cv_folds: int, partition: str) -> None:
    counts = np.bincount(y, minlength=2)
    if counts.min() < cv_folds:
        raise ConfigurationError(
            f"{partition.capitalize()} has {counts[0]} absence and {counts[1]} presence records; "
            f"each class needs at least {cv_folds} for {cv_folds}-fold cross-validation"
        )


def train_model(
    dataset: TrainingDataset,
    covariates: Optional[list[str]] = None,
    test_size: float = TEST_SIZE,
    cv_folds: int = CV_FOLDS,
    param_grid: Optional[dict] = None,
    random_state: int = SPLIT_SEED,
    estimator_type: EstimatorType = "rf",
    n_estimators: int = N_TREES,
    n_jobs: Optional[int] = None,
) -> TrainingResult:
    """
    Train the suitability classifier.

    Args:
        dataset: Labeled records
        covariates: Covariates to train on, in model order (default: all in dataset)
        test_size: Fraction held out for evaluation
        cv_folds: Number of stratified cross-validation folds
        param_grid: Hyperparameter grid (default: default_param_grid)
        random_state: Seed for the split, the folds and the estimator
        estimator_type: Classifier family
        n_estimators: Trees per forest (random forests only)
        n_jobs: Parallel jobs for the grid search

    Returns:
        TrainingResult with the refit model and the held-out partition

    Raises:
        InsufficientClassesError: if only one class is present
        ConfigurationError: if a class has fewer records than cv_folds, or
            test_size does not leave records on both sides of the split
    """
    data = dataset.restrict(covariates) if covariates is not None else dataset
    data = data.complete_cases()
    y = data.y

    require_both_classes(y)
    _check_fold_sizes(y, cv_folds, "training data")

    # A stratified hold-out needs at least one record of each class on both sides
    n_test = math.ceil(test_size * len(data)) if 0.0 < test_size < 1.0 else 0
    if n_test < 2 or len(data) - n_test < 2:
        raise ConfigurationError(
            f"test_size={test_size} leaves {n_test} of {len(data)} records for evaluation; "
            f"it must be in (0, 1) and leave at least 2 records on each side"
        )

    # Split data
    train_idx, test_idx = train_test_split(
        np.arange(len(data)), test_size=test_size, random_state=random_state, stratify=y
    )
    train, held_out = data.subset(train_idx), data.subset(test_idx)
    _check_fold_sizes(train.y, cv_folds, "training partition")

    params = {"n_estimators": n_estimators} if estimator_type == "rf" else {}
    grid = param_grid if param_grid is not None else default_param_grid(len(data.covariates), estimator_type)

    # Cross-validated grid search, refit on the full training partition
    search = GridSearchCV(
        build_estimator(estimator_type, random_state, **params),
        grid,
        scoring="roc_auc",
        cv=StratifiedKFold(n_splits=cv_folds, shuffle=True, random_state=random_state),
        refit=True,
        n_jobs=n_jobs,
    )
    search.fit(train.X.to_numpy(dtype=np.float64), train.y)

    model = SuitabilityModel.from_fitted(
        search.best_estimator_,
        data.covariates,
        estimator_type=estimator_type,
        config={
            "estimator_type": estimator_type,
            "random_state": random_state,
            "params": {**params, **search.best_params_},
            "param_grid": grid,
            "cv_folds": cv_folds,
            "test_size": test_size,
        },
    )
    model.train_stats = {
        "n_train": len(train),
        "n_test": len(held_out),
        "n_positive_train": int(train.y.sum()),
        "n_negative_train": int(len(train) - train.y.sum()),
        "cv_auc_mean": float(search.best_score_),
        "cv_auc_std": float(search.cv_results_["std_test_score"][search.best_index_]),
        "best_params": dict(search.best_params_),
    }

    logger.info(
        f"Best {estimator_type} configuration {search.best_params_}: "
        f"CV AUC {model.train_stats['cv_auc_mean']:.3f} (+/- {model.train_stats['cv_auc_std']*2:.3f})"
    )

    return TrainingResult(
        model=model,
        held_out=held_out,
        train=train,
        cv_results=pd.DataFrame(search.cv_results_),
    )
