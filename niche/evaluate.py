"""
Held-out evaluation of a suitability model.
"""

import logging
from dataclasses import dataclass, field

import numpy as np
from sklearn.metrics import accuracy_score, confusion_matrix, roc_auc_score, roc_curve

from .classifier import SuitabilityModel
from .data import TrainingDataset

logger = logging.getLogger(__name__)


@dataclass
class EvaluationReport:
    auc: float
    accuracy: float
    confusion: dict[str, int]
    n: int
    fpr: np.ndarray = field(repr=False, default_factory=lambda: np.array([]))
    tpr: np.ndarray = field(repr=False, default_factory=lambda: np.array([]))
    thresholds: np.ndarray = field(repr=False, default_factory=lambda: np.array([]))

    def to_dict(self) -> dict:
        return {
            "auc": None if np.isnan(self.auc) else float(self.auc),
            "accuracy": float(self.accuracy),
            "confusion": dict(self.confusion),
            "n": self.n,
        }


def evaluate_model(model: SuitabilityModel, held_out: TrainingDataset, threshold: float = 0.5) -> EvaluationReport:
    """
    Score a model on its held-out partition.

    Probabilities above ``threshold`` count as predicted presence. The
    report is informational; a single-class partition gives a NaN AUC
    rather than an error.
    """
    y_true = held_out.y
    proba = model.predict_proba(held_out.X)
    y_pred = (proba > threshold).astype(int)

    tn, fp, fn, tp = confusion_matrix(y_true, y_pred, labels=[0, 1]).ravel()
    accuracy = accuracy_score(y_true, y_pred)

    if len(np.unique(y_true)) < 2:
        logger.warning("Held-out partition contains a single class; AUC is undefined")
        auc = float("nan")
        fpr = tpr = thresholds = np.array([])
    else:
        fpr, tpr, thresholds = roc_curve(y_true, proba)
        auc = float(roc_auc_score(y_true, proba))

    logger.info(f"Model performance: AUC = {auc:.3f}, Accuracy = {accuracy:.3f} (n = {len(y_true)})")

    return EvaluationReport(
        auc=auc,
        accuracy=float(accuracy),
        confusion={"tn": int(tn), "fp": int(fp), "fn": int(fn), "tp": int(tp)},
        n=len(y_true),
        fpr=fpr,
        tpr=tpr,
        thresholds=thresholds,
    )
