"""
Per-scenario stacks of aligned covariate rasters.
"""

import logging
from pathlib import Path
from typing import Iterator, Optional

import numpy as np

from .errors import GeometryMismatchError, InputTableError
from .grid import RasterTemplate, VariableRaster

logger = logging.getLogger(__name__)


class ScenarioRasterStack:
    """
    Variable name -> VariableRaster for one climate epoch.

    Every raster added must share the stack's template geometry.
    """

    def __init__(self, scenario: str, template: RasterTemplate, rasters: Optional[list[VariableRaster]] = None):
        self.scenario = scenario
        self.template = template
        self._rasters: dict[str, VariableRaster] = {}
        for raster in rasters or []:
            self.add(raster)

    def add(self, raster: VariableRaster) -> None:
        if not self.template.same_geometry(raster.template):
            raise GeometryMismatchError(
                f"Raster '{raster.name}' is not aligned to the template of scenario '{self.scenario}'"
            )
        self._rasters[raster.name] = raster

    def __getitem__(self, name: str) -> VariableRaster:
        return self._rasters[name]

    def __contains__(self, name: str) -> bool:
        return name in self._rasters

    def __iter__(self) -> Iterator[str]:
        return iter(self._rasters)

    def __len__(self) -> int:
        return len(self._rasters)

    @property
    def names(self) -> list[str]:
        return list(self._rasters)

    def missing(self, required: list[str]) -> list[str]:
        """Names in ``required`` with no raster, in the order given."""
        return [name for name in required if name not in self._rasters]

    def matrix(self, names: list[str]) -> np.ndarray:
        """(n_cells, len(names)) covariate matrix with columns in the given order."""
        return np.column_stack([self._rasters[name].values for name in names])

    def save(self, directory: str | Path) -> dict[str, Path]:
        """Write every raster as ``<directory>/<variable>.tif``."""
        directory = Path(directory)
        return {name: raster.write(directory / f"{name}.tif") for name, raster in self._rasters.items()}


def load_stack(directory: str | Path, template: RasterTemplate, scenario: Optional[str] = None) -> ScenarioRasterStack:
    """
    Load every ``*.tif`` in a directory; the file stem is the variable name.

    Raises:
        InputTableError: if the directory does not exist
        GeometryMismatchError: if any raster is not aligned to the template
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise InputTableError(f"Raster directory not found: {directory}")

    stack = ScenarioRasterStack(scenario or directory.name, template)
    paths = sorted(directory.glob("*.tif"))
    for path in paths:
        stack.add(VariableRaster.read(path, template))

    logger.info(f"Loaded {len(stack)} rasters for scenario '{stack.scenario}' from {directory}")
    return stack
