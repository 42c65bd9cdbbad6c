"""
Covariate ranking and top-K selection with a preliminary random forest.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd
from sklearn.ensemble import RandomForestClassifier

from .config import SELECTION_SEED, SELECTION_TREES, TOP_K
from .data import TrainingDataset
from .errors import ConfigurationError, InsufficientClassesError

logger = logging.getLogger(__name__)


@dataclass
class FeatureRanking:
    """Covariate importances (highest first) and the retained top subset."""

    importances: pd.Series
    selected: list[str]

    def to_dict(self) -> dict:
        return {
            "selected": list(self.selected),
            "importances": {name: float(v) for name, v in self.importances.items()},
        }


def require_both_classes(y: np.ndarray) -> None:
    """Raise InsufficientClassesError unless both 0 and 1 labels occur."""
    present = set(np.unique(y).tolist())
    if present != {0, 1}:
        raise InsufficientClassesError(
            f"Training labels must contain presence (1) and absence (0) records, found classes {sorted(present)}"
        )


def rank_covariates(
    dataset: TrainingDataset,
    random_state: int = SELECTION_SEED,
    n_estimators: int = SELECTION_TREES,
    n_jobs: Optional[int] = None,
) -> pd.Series:
    """
    Rank every covariate by mean decrease in impurity.

    Ties keep the original column order so the ranking is deterministic.
    """
    require_both_classes(dataset.y)

    forest = RandomForestClassifier(n_estimators=n_estimators, random_state=random_state, n_jobs=n_jobs)
    forest.fit(dataset.X.to_numpy(dtype=np.float64), dataset.y)

    importances = forest.feature_importances_
    order = np.argsort(-importances, kind="stable")
    return pd.Series(
        importances[order],
        index=[dataset.covariates[i] for i in order],
        name="importance",
    )


def select_features(
    dataset: TrainingDataset,
    k: int = TOP_K,
    random_state: int = SELECTION_SEED,
    n_estimators: int = SELECTION_TREES,
    n_jobs: Optional[int] = None,
) -> FeatureRanking:
    """
    Select the k most important covariates.

    Args:
        dataset: Labeled records with all candidate covariates
        k: Number of covariates to keep (all are kept if fewer exist)
        random_state: Seed of the preliminary forest
        n_estimators: Trees in the preliminary forest
        n_jobs: Parallel jobs for fitting the forest

    Returns:
        FeatureRanking with the full ranking and the selected names

    Raises:
        InsufficientClassesError: if the labels are single-class
    """
    if k < 1:
        raise ConfigurationError(f"Number of covariates to select must be at least 1, got {k}")
    if not dataset.covariates:
        raise ConfigurationError("Training dataset has no candidate covariates")

    ranking = rank_covariates(dataset, random_state=random_state, n_estimators=n_estimators, n_jobs=n_jobs)
    selected = list(ranking.index[:k])

    if len(selected) < k:
        logger.info(f"Only {len(selected)} covariates available, keeping all of them")
    logger.info(f"Selected top {len(selected)} covariates: {', '.join(selected)}")

    return FeatureRanking(importances=ranking, selected=selected)
