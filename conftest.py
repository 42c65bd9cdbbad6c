"""
Shared synthetic fixtures: a 10 x 8 degree grid, a 60/40 occurrence table
with five covariates, and ClimateAP-style point tables on the grid.
"""

import numpy as np
import pandas as pd
import pytest
import rasterio

from niche.data import load_occurrences
from niche.grid import RasterTemplate

SEED = 42
COVARIATES = ["Tmax_MAM", "PPT_sm", "MAT", "MAP", "DD5"]
# Small forests keep the suite fast
TEST_TREES = 25


def make_occurrences(n_presence: int = 60, n_absence: int = 40, seed: int = SEED) -> pd.DataFrame:
    """Occurrence table where Tmax_MAM separates the classes and PPT_sm weakly does."""
    rng = np.random.default_rng(seed)
    n = n_presence + n_absence
    label = np.array([1] * n_presence + [0] * n_absence)
    return pd.DataFrame({
        "X": np.arange(1, n + 1),
        "species": np.where(label == 1, "presence", "absence"),
        "Longitude": rng.uniform(0, 10, n),
        "Latitude": rng.uniform(0, 8, n),
        "Elevation": rng.uniform(100, 900, n),
        "Tmax_MAM": np.where(label == 1, rng.normal(2.0, 0.7, n), rng.normal(-2.0, 0.7, n)),
        "PPT_sm": label * 1.0 + rng.normal(0.0, 1.0, n),
        "MAT": rng.normal(10.0, 2.0, n),
        "MAP": rng.normal(1200.0, 150.0, n),
        "DD5": rng.normal(3000.0, 300.0, n),
    })


def make_climate_points(template: RasterTemplate, shift: float = 0.0, variables=None) -> pd.DataFrame:
    """One point per cell centre: id1, id2, Latitude, Longitude, Elevation, then variables."""
    xs, ys = template.cell_centers()
    n = len(xs)
    columns = {
        "Tmax_MAM": np.linspace(-4.0, 4.0, n) + shift,
        "PPT_sm": (ys - ys.mean()) / 4.0,
        "MAT": 10.0 + xs / 10.0,
        "MAP": 1200.0 + ys * 5.0,
        "DD5": 3000.0 + xs * 20.0 - ys * 10.0,
    }
    df = pd.DataFrame({
        "id1": np.arange(n),
        "id2": np.arange(n),
        "Latitude": ys,
        "Longitude": xs,
        "Elevation": np.full(n, 500.0),
    })
    for name in variables or COVARIATES:
        df[name] = columns[name]
    return df


@pytest.fixture
def template() -> RasterTemplate:
    return RasterTemplate.from_bounds(0.0, 0.0, 10.0, 8.0, 1.0, crs="EPSG:4326")


@pytest.fixture
def template_raster(tmp_path, template):
    """A reference elevation GeoTIFF with the template geometry."""
    path = tmp_path / "areaDEM.tif"
    with rasterio.open(
        path, "w",
        driver="GTiff",
        height=template.height,
        width=template.width,
        count=1,
        dtype="float32",
        crs=template.crs,
        transform=template.transform,
    ) as dst:
        dst.write(np.arange(template.n_cells, dtype=np.float32).reshape(template.shape), 1)
    return path


@pytest.fixture
def occurrences() -> pd.DataFrame:
    return make_occurrences()


@pytest.fixture
def dataset(occurrences):
    return load_occurrences(occurrences)


@pytest.fixture
def climate_points(template) -> pd.DataFrame:
    return make_climate_points(template)
