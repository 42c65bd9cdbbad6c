"""
Occurrence table loading and the training dataset container.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd

from .config import LABEL_COLUMN, TableSource
from .errors import InputTableError, MissingColumnsError
from .labels import filter_occurrences

logger = logging.getLogger(__name__)

# Identifier and coordinate columns that are never covariates
EXCLUDED_COLUMNS = frozenset({
    "X", "Unnamed: 0", "id", "id1", "id2",
    "species", "species_factor",
    "Longitude", "Latitude", "Elevation",
    "lon", "lat", "elev", "x", "y",
})

COORDINATE_PAIRS = [("Longitude", "Latitude"), ("lon", "lat")]


def read_table(source: TableSource, description: str = "input table") -> pd.DataFrame:
    """Read a CSV path, or copy an in-memory DataFrame."""
    if isinstance(source, pd.DataFrame):
        return source.copy()
    path = Path(source)
    if not path.exists():
        raise InputTableError(f"{description.capitalize()} not found: {path}")
    df = pd.read_csv(path)
    logger.info(f"Read {description} {path.name}: {len(df)} rows, {len(df.columns)} columns")
    return df


def coordinate_columns(df: pd.DataFrame) -> tuple[str, str]:
    """Return the (longitude, latitude) column names used by the table."""
    for lon_col, lat_col in COORDINATE_PAIRS:
        if lon_col in df.columns and lat_col in df.columns:
            return lon_col, lat_col
    raise MissingColumnsError(["Longitude/lon", "Latitude/lat"], "occurrence table")


def covariate_columns(df: pd.DataFrame, label_column: str = LABEL_COLUMN) -> list[str]:
    """Numeric, non-identifier columns in original column order."""
    covariates = []
    for col in df.columns:
        if col in EXCLUDED_COLUMNS or col == label_column:
            continue
        if not pd.api.types.is_numeric_dtype(df[col]):
            logger.debug(f"Ignoring non-numeric column '{col}'")
            continue
        covariates.append(col)
    return covariates


@dataclass
class TrainingDataset:
    """
    Occurrence records with canonical 0/1 labels.

    Coordinates are kept in ``frame`` for traceability but are never part
    of ``X``.
    """

    frame: pd.DataFrame
    covariates: list[str]
    label_column: str = LABEL_COLUMN
    coordinates: tuple[str, str] = ("Longitude", "Latitude")
    n_dropped: int = 0
    source_rows: Optional[np.ndarray] = field(default=None, repr=False)

    def __post_init__(self):
        if self.source_rows is None:
            self.source_rows = np.arange(len(self.frame))

    def __len__(self) -> int:
        return len(self.frame)

    @property
    def X(self) -> pd.DataFrame:
        return self.frame[self.covariates]

    @property
    def y(self) -> np.ndarray:
        return self.frame[self.label_column].to_numpy(dtype=int)

    def class_counts(self) -> dict[int, int]:
        y = self.y
        return {0: int((y == 0).sum()), 1: int((y == 1).sum())}

    def restrict(self, covariates: list[str]) -> "TrainingDataset":
        """Keep only the given covariates, in the given order."""
        missing = [c for c in covariates if c not in self.covariates]
        if missing:
            raise MissingColumnsError(missing, "training dataset")
        return TrainingDataset(
            frame=self.frame[self._kept_columns(covariates)],
            covariates=list(covariates),
            label_column=self.label_column,
            coordinates=self.coordinates,
            n_dropped=self.n_dropped,
            source_rows=self.source_rows,
        )

    def subset(self, positions: np.ndarray) -> "TrainingDataset":
        """Rows at the given positional indices."""
        positions = np.asarray(positions)
        return TrainingDataset(
            frame=self.frame.iloc[positions],
            covariates=list(self.covariates),
            label_column=self.label_column,
            coordinates=self.coordinates,
            n_dropped=self.n_dropped,
            source_rows=self.source_rows[positions],
        )

    def complete_cases(self) -> "TrainingDataset":
        """Drop records with a missing or non-finite value in any covariate."""
        values = self.X.to_numpy(dtype=np.float64)
        complete = np.isfinite(values).all(axis=1)
        n_incomplete = int((~complete).sum())
        if n_incomplete == 0:
            return self
        logger.warning(f"Dropped {n_incomplete} records with missing covariate values")
        return self.subset(np.flatnonzero(complete))

    def _kept_columns(self, covariates: list[str]) -> list[str]:
        coords = [c for c in self.coordinates if c in self.frame.columns]
        extras = [c for c in ("Elevation", "elev") if c in self.frame.columns and c not in covariates]
        return [self.label_column] + coords + extras + list(covariates)


def load_occurrences(source: TableSource, label_column: str = LABEL_COLUMN) -> TrainingDataset:
    """
    Load a labeled occurrence table.

    Args:
        source: CSV path or DataFrame with a label column, coordinates and covariates
        label_column: Name of the presence/absence column

    Returns:
        TrainingDataset with every numeric non-identifier column as a candidate covariate

    Raises:
        InputTableError: if the file does not exist
        MissingColumnsError: if the label or coordinate columns are absent
    """
    df = read_table(source, "occurrence table")

    if {"x", "y"} <= set(df.columns) and not ({"lon", "lat"} & set(df.columns)):
        df = df.rename(columns={"x": "lon", "y": "lat"})

    coords = coordinate_columns(df)
    df, n_dropped = filter_occurrences(df, label_column)
    df = df.reset_index(drop=True)

    covariates = covariate_columns(df, label_column)
    logger.info(f"Occurrence table: {len(df)} records, {len(covariates)} candidate covariates")

    return TrainingDataset(
        frame=df,
        covariates=covariates,
        label_column=label_column,
        coordinates=coords,
        n_dropped=n_dropped,
    )
