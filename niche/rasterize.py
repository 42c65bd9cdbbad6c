"""
Conversion of point-sampled climate tables into template-aligned rasters.

Points are averaged per template cell. When no point falls inside the
grid, values are filled from the nearest point instead. Each resulting
grid is lightly smoothed with a NaN-aware 3x3 mean.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd
from scipy.ndimage import uniform_filter
from scipy.spatial import cKDTree
from tqdm import tqdm

from .config import TableSource
from .data import read_table
from .errors import ConfigurationError, MissingColumnsError, VariableSkipped
from .grid import RasterTemplate, VariableRaster
from .manifest import UnitOutcome
from .stack import ScenarioRasterStack

logger = logging.getLogger(__name__)

COORDINATE_COLUMNS = ("Longitude", "Latitude")
# Climate variables start at the 6th column (after id1, id2, Latitude, Longitude, Elevation)
VARIABLE_OFFSET = 5
MIN_VALID_POINTS = 10
SMOOTHING_SIZE = 3


@dataclass
class RasterizationResult:
    """Rasters that survived for one scenario, plus one outcome per variable."""

    stack: ScenarioRasterStack
    outcomes: list[UnitOutcome] = field(default_factory=list)
    paths: dict[str, Path] = field(default_factory=dict)

    @property
    def skipped(self) -> list[UnitOutcome]:
        return [o for o in self.outcomes if o.status == "skipped"]


def load_climate_points(
    source: TableSource,
    variables: Optional[list[str]] = None,
    variable_offset: int = VARIABLE_OFFSET,
) -> tuple[pd.DataFrame, list[str]]:
    """
    Read and validate a climate point table.

    Args:
        source: CSV path or DataFrame with Longitude, Latitude and variable columns
        variables: Variable columns to use (default: every column from variable_offset on)
        variable_offset: Position of the first variable column

    Returns:
        Tuple of (table, variable names)

    Raises:
        InputTableError: if the file does not exist
        MissingColumnsError: if Longitude/Latitude or a requested variable is absent
        ConfigurationError: if the table has no variable columns
    """
    df = read_table(source, "climate point table")

    missing = [c for c in COORDINATE_COLUMNS if c not in df.columns]
    if missing:
        raise MissingColumnsError(missing, "climate point table")

    if variables is None:
        variables = [c for c in df.columns[variable_offset:] if c not in COORDINATE_COLUMNS]
    else:
        absent = [v for v in variables if v not in df.columns]
        if absent:
            raise MissingColumnsError(absent, "climate point table")

    if not variables:
        raise ConfigurationError(
            f"Climate point table has no variable columns after position {variable_offset}"
        )
    return df, list(variables)


def aggregate_mean(xs: np.ndarray, ys: np.ndarray, values: np.ndarray, template: RasterTemplate) -> np.ndarray:
    """
    Mean of all points falling in each cell; NaN for cells without points.

    Points are summed in (cell, value) order, so the result does not depend
    on the row order of the input.
    """
    idx = template.cell_indices(xs, ys)
    inside = idx >= 0
    idx, values = idx[inside], np.asarray(values, dtype=np.float64)[inside]

    order = np.lexsort((values, idx))
    idx, values = idx[order], values[order]

    sums = np.bincount(idx, weights=values, minlength=template.n_cells)
    counts = np.bincount(idx, minlength=template.n_cells)

    grid = np.full(template.n_cells, np.nan)
    filled = counts > 0
    grid[filled] = sums[filled] / counts[filled]
    return grid


def interpolate_nearest(
    xs: np.ndarray,
    ys: np.ndarray,
    values: np.ndarray,
    template: RasterTemplate,
    max_distance: Optional[float] = None,
) -> np.ndarray:
    """
    Assign each cell centre the value of its nearest point.

    Points are put in a canonical (x, y, value) order before building the
    tree so equidistant ties always resolve the same way. Cells farther than
    ``max_distance`` from every point stay NaN.
    """
    xs = np.asarray(xs, dtype=np.float64)
    ys = np.asarray(ys, dtype=np.float64)
    values = np.asarray(values, dtype=np.float64)
    order = np.lexsort((values, ys, xs))
    tree = cKDTree(np.column_stack([xs[order], ys[order]]))

    cx, cy = template.cell_centers()
    upper = np.inf if max_distance is None else max_distance
    distances, nearest = tree.query(np.column_stack([cx, cy]), k=1, distance_upper_bound=upper)

    grid = np.full(template.n_cells, np.nan)
    hit = np.isfinite(distances)
    grid[hit] = values[order][nearest[hit]]
    return grid


def smooth(grid: np.ndarray, template: RasterTemplate, size: int = SMOOTHING_SIZE) -> np.ndarray:
    """
    Focal mean over a size x size window, ignoring no-data cells.

    A no-data cell with at least one defined neighbour receives the mean of
    its defined neighbours.
    """
    values = np.asarray(grid, dtype=np.float64).reshape(template.shape)
    valid = np.isfinite(values)

    total = uniform_filter(np.where(valid, values, 0.0), size=size, mode="constant", cval=0.0)
    weight = uniform_filter(valid.astype(np.float64), size=size, mode="constant", cval=0.0)

    out = np.full(template.shape, np.nan)
    has_data = weight > 0.5 / size**2
    out[has_data] = total[has_data] / weight[has_data]
    return out.ravel()


def rasterize_variable(
    points: pd.DataFrame,
    variable: str,
    template: RasterTemplate,
    min_points: int = MIN_VALID_POINTS,
    max_distance: Optional[float] = None,
    smoothing: Optional[int] = SMOOTHING_SIZE,
) -> tuple[VariableRaster, str]:
    """
    Rasterize one climate variable onto the template.

    Returns:
        Tuple of (raster, method) where method is "mean" or "nearest"

    Raises:
        VariableSkipped: if the variable has too few valid points, or both
            aggregation and nearest-neighbour fallback give an empty grid
    """
    xs = pd.to_numeric(points[COORDINATE_COLUMNS[0]], errors="coerce").to_numpy(dtype=np.float64)
    ys = pd.to_numeric(points[COORDINATE_COLUMNS[1]], errors="coerce").to_numpy(dtype=np.float64)
    values = pd.to_numeric(points[variable], errors="coerce").to_numpy(dtype=np.float64)

    valid = np.isfinite(xs) & np.isfinite(ys) & np.isfinite(values)
    n_valid = int(valid.sum())
    if n_valid < min_points:
        raise VariableSkipped(variable, f"only {n_valid} valid points (minimum {min_points})")
    xs, ys, values = xs[valid], ys[valid], values[valid]

    grid = aggregate_mean(xs, ys, values, template)
    method = "mean"

    if not np.isfinite(grid).any():
        logger.warning(f"{variable}: no points fall inside the template, trying nearest-neighbour interpolation")
        grid = interpolate_nearest(xs, ys, values, template, max_distance=max_distance)
        method = "nearest"
        if not np.isfinite(grid).any():
            raise VariableSkipped(variable, "empty grid after mean aggregation and nearest-neighbour fallback")

    if smoothing:
        grid = smooth(grid, template, size=smoothing)

    return VariableRaster(variable, template, grid), method


def rasterize_scenario(
    points: TableSource,
    template: RasterTemplate,
    scenario: str,
    variables: Optional[list[str]] = None,
    output_dir: Optional[Path] = None,
    min_points: int = MIN_VALID_POINTS,
    max_distance: Optional[float] = None,
    smoothing: Optional[int] = SMOOTHING_SIZE,
    max_workers: Optional[int] = None,
    progress: bool = False,
) -> RasterizationResult:
    """
    Rasterize every climate variable of one scenario.

    Variables are processed concurrently; a variable that cannot be
    rasterized is skipped and reported without affecting the others.

    Args:
        points: Climate point table (path or DataFrame)
        template: Grid geometry every raster must share
        scenario: Scenario label used for the stack and outcomes
        variables: Variable columns to rasterize (default: from VARIABLE_OFFSET on)
        output_dir: If given, save each raster as ``<output_dir>/<variable>.tif``
        min_points: Minimum valid points for a variable to be rasterized
        max_distance: Search radius of the nearest-neighbour fallback
        smoothing: Focal window size, or None/0 to disable smoothing
        max_workers: Thread pool size (default: chosen by the executor)
        progress: Show a progress bar

    Returns:
        RasterizationResult with the stack and one outcome per variable
    """
    frame, variables = load_climate_points(points, variables=variables)
    logger.info(f"Rasterizing {len(variables)} climate variables for scenario '{scenario}'")

    stack = ScenarioRasterStack(scenario, template)
    result = RasterizationResult(stack=stack)

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {
            variable: executor.submit(
                rasterize_variable, frame, variable, template,
                min_points=min_points, max_distance=max_distance, smoothing=smoothing,
            )
            for variable in variables
        }

        # Merge in column order so the stack is identical across runs
        for variable in tqdm(variables, desc=f"Rasterizing {scenario}", disable=not progress):
            try:
                raster, method = futures[variable].result()
            except VariableSkipped as exc:
                logger.warning(f"Skipping {scenario}/{variable}: {exc.reason}")
                result.outcomes.append(UnitOutcome("variable", variable, "skipped", exc.reason, scenario=scenario))
                continue

            stack.add(raster)
            path = None
            if output_dir is not None:
                path = raster.write(Path(output_dir) / f"{variable}.tif")
                result.paths[variable] = path
            reason = "nearest-neighbour fallback" if method == "nearest" else None
            result.outcomes.append(
                UnitOutcome("variable", variable, "success", reason, scenario=scenario,
                            path=str(path) if path else None)
            )

    logger.info(
        f"Scenario '{scenario}': {len(stack)} rasters created, {len(result.skipped)} variables skipped"
    )
    return result
