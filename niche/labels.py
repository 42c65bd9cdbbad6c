"""
Presence/absence label normalization.
"""

import logging
import numbers
from typing import Iterable, Optional

import numpy as np
import pandas as pd

from .errors import MissingColumnsError

logger = logging.getLogger(__name__)

# Recognized categorical encodings: 1 = presence, 0 = absence
LABEL_TOKENS = {
    "presence": 1,
    "absence": 0,
    "y": 1,
    "n": 0,
}


def normalize_label(value) -> Optional[int]:
    """
    Map one raw label to 1 (presence), 0 (absence) or None (invalid/missing).

    Accepts the tokens in LABEL_TOKENS (case and surrounding whitespace are
    ignored), booleans, and the numbers 0 and 1 in any numeric or string form.
    """
    if value is None:
        return None
    if isinstance(value, (bool, np.bool_)):
        return int(value)
    if isinstance(value, numbers.Number):
        if pd.isna(value):
            return None
        return int(value) if value in (0, 1) else None
    if isinstance(value, str):
        token = value.strip().lower()
        if token in LABEL_TOKENS:
            return LABEL_TOKENS[token]
        try:
            number = float(token)
        except ValueError:
            return None
        return int(number) if number in (0.0, 1.0) else None
    return None


def normalize_labels(values: Iterable) -> tuple[pd.Series, int]:
    """
    Normalize a label column.

    Args:
        values: Raw labels (a Series keeps its index)

    Returns:
        Tuple of (labels, n_invalid)
        - labels: nullable Int64 Series, <NA> where the label was not recognized
        - n_invalid: number of missing or unrecognized entries
    """
    index = values.index if isinstance(values, pd.Series) else None
    labels = pd.Series([normalize_label(v) for v in values], index=index, dtype="Int64")
    return labels, int(labels.isna().sum())


def filter_occurrences(df: pd.DataFrame, label_column: str = "species") -> tuple[pd.DataFrame, int]:
    """
    Replace the label column with canonical 0/1 labels and drop unusable rows.

    Covariate columns are left untouched.

    Returns:
        Tuple of (filtered copy of df, number of dropped rows)
    """
    if label_column not in df.columns:
        raise MissingColumnsError([label_column], "occurrence table")

    labels, n_invalid = normalize_labels(df[label_column])
    keep = labels.notna().to_numpy()

    filtered = df.loc[keep].copy()
    filtered[label_column] = labels[keep].astype(int).to_numpy()

    if n_invalid > 0:
        logger.warning(f"Dropped {n_invalid} records with missing or unrecognized '{label_column}' labels")

    n_pos = int(filtered[label_column].sum())
    logger.info(f"Labels normalized: {n_pos} presence, {len(filtered) - n_pos} absence")
    return filtered, n_invalid
