"""
Grid geometry and flat raster surfaces.

Every raster the pipeline produces is a flat float64 array in row-major
order against a RasterTemplate: cell (row, col) lives at index
``row * width + col``. NaN is the no-data value.
"""

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd
import rasterio
from rasterio.errors import RasterioError
from rasterio.transform import Affine, from_origin

from .errors import GeometryMismatchError, InputTableError, InvalidRasterError

logger = logging.getLogger(__name__)

NODATA = np.nan


@dataclass(frozen=True)
class RasterTemplate:
    """
    Canonical grid geometry shared by every raster in a run.

    The grid is north-up: ``min_x``/``max_y`` is the top-left corner, cells
    are ``res_x`` wide and ``res_y`` tall.
    """

    min_x: float
    max_y: float
    res_x: float
    res_y: float
    width: int
    height: int
    crs: Optional[str] = None

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Template must have at least one cell, got {self.width}x{self.height}")
        if self.res_x <= 0 or self.res_y <= 0:
            raise ValueError(f"Resolution must be positive, got ({self.res_x}, {self.res_y})")

    @classmethod
    def from_bounds(
        cls,
        min_x: float,
        min_y: float,
        max_x: float,
        max_y: float,
        resolution: float | tuple[float, float],
        crs: Optional[str] = "EPSG:4326",
    ) -> "RasterTemplate":
        """
        Build a template covering a bounding box.

        Args:
            min_x, min_y, max_x, max_y: Extent of the grid
            resolution: Cell size, or (x, y) cell sizes
            crs: Coordinate reference identifier

        Returns:
            RasterTemplate whose extent is the bbox rounded to whole cells
        """
        res_x, res_y = (resolution, resolution) if np.isscalar(resolution) else resolution
        width = int(round((max_x - min_x) / res_x))
        height = int(round((max_y - min_y) / res_y))
        return cls(float(min_x), float(max_y), float(res_x), float(res_y), width, height, crs)

    @classmethod
    def from_dataset(cls, src) -> "RasterTemplate":
        """Extract geometry from an open rasterio dataset (north-up, unrotated)."""
        t = src.transform
        if t.b != 0 or t.d != 0:
            raise InvalidRasterError(f"{src.name}: rotated rasters are not supported")
        if t.a <= 0 or t.e >= 0:
            raise InvalidRasterError(f"{src.name}: raster is not north-up (transform {tuple(t)[:6]})")
        crs = src.crs.to_string() if src.crs else None
        return cls(float(t.c), float(t.f), float(t.a), float(-t.e), src.width, src.height, crs)

    @classmethod
    def from_raster(cls, path: str | Path) -> "RasterTemplate":
        """Read the template geometry from a reference (elevation) raster."""
        path = Path(path)
        if not path.exists():
            raise InputTableError(f"Template raster not found: {path}")
        try:
            with rasterio.open(path) as src:
                template = cls.from_dataset(src)
        except RasterioError as exc:
            raise InvalidRasterError(f"Cannot read template raster {path}: {exc}") from exc
        logger.info(
            f"Template from {path.name}: {template.width} x {template.height} cells, "
            f"resolution ({template.res_x}, {template.res_y}), CRS {template.crs}"
        )
        return template

    @property
    def max_x(self) -> float:
        return self.min_x + self.width * self.res_x

    @property
    def min_y(self) -> float:
        return self.max_y - self.height * self.res_y

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        return (self.min_x, self.min_y, self.max_x, self.max_y)

    @property
    def shape(self) -> tuple[int, int]:
        return (self.height, self.width)

    @property
    def n_cells(self) -> int:
        return self.width * self.height

    @property
    def transform(self) -> Affine:
        return from_origin(self.min_x, self.max_y, self.res_x, self.res_y)

    def index(self, row: int, col: int) -> int:
        """Flat index of cell (row, col)."""
        if not (0 <= row < self.height and 0 <= col < self.width):
            raise IndexError(f"Cell ({row}, {col}) outside {self.height} x {self.width} grid")
        return row * self.width + col

    def rowcol(self, index: int) -> tuple[int, int]:
        return divmod(index, self.width)

    def cell_indices(self, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
        """
        Map coordinates to flat cell indices.

        Points on the outer right/bottom edge belong to the last column/row.
        Points outside the extent (or with non-finite coordinates) get -1.
        """
        xs = np.asarray(xs, dtype=np.float64)
        ys = np.asarray(ys, dtype=np.float64)
        with np.errstate(invalid="ignore"):
            inside = (xs >= self.min_x) & (xs <= self.max_x) & (ys >= self.min_y) & (ys <= self.max_y)
        cols = np.zeros(xs.shape, dtype=np.int64)
        rows = np.zeros(ys.shape, dtype=np.int64)
        cols[inside] = np.minimum(np.floor((xs[inside] - self.min_x) / self.res_x), self.width - 1)
        rows[inside] = np.minimum(np.floor((self.max_y - ys[inside]) / self.res_y), self.height - 1)
        return np.where(inside, rows * self.width + cols, -1)

    def cell_centers(self) -> tuple[np.ndarray, np.ndarray]:
        """x and y of every cell centre, in flat order."""
        xs = self.min_x + (np.arange(self.width) + 0.5) * self.res_x
        ys = self.max_y - (np.arange(self.height) + 0.5) * self.res_y
        grid_x, grid_y = np.meshgrid(xs, ys)
        return grid_x.ravel(), grid_y.ravel()

    def same_geometry(self, other: "RasterTemplate") -> bool:
        """True if both grids have identical extent, resolution, cell count and CRS."""
        if (self.width, self.height) != (other.width, other.height):
            return False
        if self.crs != other.crs:
            return False
        return all(
            math.isclose(a, b, rel_tol=1e-9, abs_tol=1e-12)
            for a, b in [
                (self.min_x, other.min_x),
                (self.max_y, other.max_y),
                (self.res_x, other.res_x),
                (self.res_y, other.res_y),
            ]
        )

    def coordinates_table(self) -> pd.DataFrame:
        """
        Cell centres as an ``id1, id2, lat, lon, elev`` table.

        This is the input format of point-based climate extraction tools;
        ids and elevation are left empty so the tool estimates elevation itself.
        """
        xs, ys = self.cell_centers()
        return pd.DataFrame({
            "id1": pd.Series([pd.NA] * self.n_cells, dtype="object"),
            "id2": pd.Series([pd.NA] * self.n_cells, dtype="object"),
            "lat": ys,
            "lon": xs,
            "elev": np.full(self.n_cells, np.nan),
        })


@dataclass(eq=False)
class GridSurface:
    """
    A named single-band grid conforming to a RasterTemplate.

    Values are stored as a read-only flat float64 array of length
    ``template.n_cells``; NaN marks no-data cells.
    """

    name: str
    template: RasterTemplate
    values: np.ndarray

    def __post_init__(self):
        values = np.array(self.values, dtype=np.float64)
        if values.ndim == 2 and values.shape != self.template.shape:
            raise GeometryMismatchError(
                f"Grid '{self.name}' has shape {values.shape}, template is {self.template.shape}"
            )
        values = values.reshape(-1)
        if values.size != self.template.n_cells:
            raise GeometryMismatchError(
                f"Grid '{self.name}' has {values.size} cells, template has {self.template.n_cells}"
            )
        values.setflags(write=False)
        self.values = values

    def as_array(self) -> np.ndarray:
        """2-D (height, width) view of the values."""
        return self.values.reshape(self.template.shape)

    def value_at(self, row: int, col: int) -> float:
        return float(self.values[self.template.index(row, col)])

    def valid_mask(self) -> np.ndarray:
        return np.isfinite(self.values)

    @property
    def n_valid(self) -> int:
        return int(self.valid_mask().sum())

    @property
    def is_empty(self) -> bool:
        return self.n_valid == 0

    def write(self, path: str | Path) -> Path:
        """Save the grid as a single-band float32 GeoTIFF."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with rasterio.open(
            path, "w",
            driver="GTiff",
            height=self.template.height,
            width=self.template.width,
            count=1,
            dtype="float32",
            crs=self.template.crs,
            transform=self.template.transform,
            nodata=NODATA,
            compress="lzw",
        ) as dst:
            dst.write(self.as_array().astype(np.float32), 1)
        logger.info(f"Saved {self.name} to {path}")
        return path

    @classmethod
    def read(cls, path: str | Path, template: RasterTemplate, name: Optional[str] = None):
        """
        Load a single-band raster and check it against the template.

        Raises:
            InputTableError: if the file does not exist
            GeometryMismatchError: if the raster is not aligned to the template
            InvalidRasterError: if the file is not a readable north-up raster
        """
        path = Path(path)
        if not path.exists():
            raise InputTableError(f"Raster not found: {path}")
        try:
            with rasterio.open(path) as src:
                geometry = RasterTemplate.from_dataset(src)
                if not template.same_geometry(geometry):
                    raise GeometryMismatchError(f"{path.name} is not aligned to the raster template")
                data = src.read(1, masked=True).astype(np.float64).filled(np.nan)
        except RasterioError as exc:
            raise InvalidRasterError(f"Cannot read raster {path}: {exc}") from exc
        return cls(name or path.stem, template, data)


class VariableRaster(GridSurface):
    """One climate covariate rasterized onto the template for one scenario."""


class SuitabilitySurface(GridSurface):
    """Presence probability in [0, 1] per cell for one scenario."""

    def to_geojson(
        self,
        threshold: float = 0.5,
        max_points: int = 5000,
        seed: int = 42,
    ) -> dict:
        """Convert cells with probability >= threshold to a GeoJSON FeatureCollection."""
        with np.errstate(invalid="ignore"):
            indices = np.flatnonzero(self.values >= threshold)

        # Subsample if too many points
        if len(indices) > max_points:
            rng = np.random.default_rng(seed)
            indices = np.sort(rng.choice(indices, max_points, replace=False))

        xs, ys = self.template.cell_centers()
        features = [
            {
                "type": "Feature",
                "properties": {"probability": float(self.values[i])},
                "geometry": {"type": "Point", "coordinates": [float(xs[i]), float(ys[i])]},
            }
            for i in indices
        ]

        # Sort by probability (ascending, so high values rendered on top)
        features.sort(key=lambda f: f["properties"]["probability"])

        return {
            "type": "FeatureCollection",
            "features": features,
            "metadata": {
                "scenario": self.name,
                "n_candidates": len(features),
                "threshold": threshold,
                "bbox": list(self.template.bounds),
                "crs": self.template.crs,
            },
        }


class ChangeSurface(GridSurface):
    """Signed cell-wise difference between two suitability surfaces."""
