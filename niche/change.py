"""
Suitability change between two epochs.
"""

from typing import Optional

import numpy as np

from .errors import GeometryMismatchError
from .grid import ChangeSurface, SuitabilitySurface


def compute_change(
    future: SuitabilitySurface,
    historical: SuitabilitySurface,
    name: Optional[str] = None,
) -> ChangeSurface:
    """
    Cell-wise ``future - historical``.

    A cell is no-data when either input is no-data there. The geometries
    must match exactly; nothing is resampled.
    """
    if not future.template.same_geometry(historical.template):
        raise GeometryMismatchError(
            f"Cannot compare '{future.name}' with '{historical.name}': grids are not aligned"
        )
    return ChangeSurface(
        name or f"{future.name}_vs_{historical.name}",
        future.template,
        future.values - historical.values,
    )


def summarize_change(change: ChangeSurface, tolerance: float = 0.0) -> dict:
    """Counts of gain, loss and stable cells and the mean change over defined cells."""
    values = change.values[change.valid_mask()]
    return {
        "n_cells": int(values.size),
        "gain": int((values > tolerance).sum()),
        "loss": int((values < -tolerance).sum()),
        "stable": int((np.abs(values) <= tolerance).sum()),
        "mean_change": float(values.mean()) if values.size else None,
    }
