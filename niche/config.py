"""
Default parameters and run configuration for the niche projection pipeline.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

import pandas as pd


# ---------- Occurrence table ----------
LABEL_COLUMN = "species"

# ---------- Feature selection ----------
TOP_K = 30
SELECTION_TREES = 100
SELECTION_SEED = 42

# ---------- Model training ----------
N_TREES = 500
SPLIT_SEED = 49
TEST_SIZE = 0.2
CV_FOLDS = 5
MIN_NODE_SIZES = (1, 5)

# ---------- Spatial prediction ----------
BLOCK_ROWS = 256
CANDIDATE_THRESHOLD = 0.7


TableSource = Union[str, Path, pd.DataFrame]


@dataclass
class Scenario:
    """
    One climate epoch to project the model onto.

    Either ``points`` (a ClimateAP-style point table, rasterized first) or
    ``raster_dir`` (a directory of ``<variable>.tif`` files already aligned
    to the template) must be given.
    """

    label: str
    points: Optional[TableSource] = None
    raster_dir: Optional[Path] = None

    def __post_init__(self):
        if self.points is None and self.raster_dir is None:
            raise ValueError(f"Scenario '{self.label}' needs either a point table or a raster directory")
        if self.raster_dir is not None:
            self.raster_dir = Path(self.raster_dir)


@dataclass
class PipelineConfig:
    """Every parameter of one pipeline run. Seeds are explicit so runs are reproducible."""

    occurrences: TableSource
    template_path: Path
    output_dir: Path
    scenarios: list[Scenario] = field(default_factory=list)
    baseline: Optional[str] = None

    label_column: str = LABEL_COLUMN
    top_k: int = TOP_K
    selection_trees: int = SELECTION_TREES
    selection_seed: int = SELECTION_SEED

    estimator_type: str = "rf"
    n_trees: int = N_TREES
    split_seed: int = SPLIT_SEED
    test_size: float = TEST_SIZE
    cv_folds: int = CV_FOLDS
    param_grid: Optional[dict] = None

    min_valid_points: int = 10
    max_interpolation_distance: Optional[float] = None
    smoothing_size: int = 3

    block_rows: int = BLOCK_ROWS
    max_workers: Optional[int] = None
    n_jobs: Optional[int] = None
    candidate_threshold: Optional[float] = CANDIDATE_THRESHOLD
    strict: bool = False

    def __post_init__(self):
        self.template_path = Path(self.template_path)
        self.output_dir = Path(self.output_dir)
        labels = [s.label for s in self.scenarios]
        if len(set(labels)) != len(labels):
            raise ValueError(f"Scenario labels must be unique, got {labels}")
        if self.baseline is None and self.scenarios:
            self.baseline = self.scenarios[0].label
        if self.baseline is not None and self.scenarios and self.baseline not in labels:
            raise ValueError(f"Baseline scenario '{self.baseline}' is not one of {labels}")
