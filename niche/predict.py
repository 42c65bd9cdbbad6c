"""
Pixel-wise suitability prediction over a scenario raster stack.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

import numpy as np
from tqdm import tqdm

from .classifier import SuitabilityModel
from .config import BLOCK_ROWS
from .errors import MissingCovariateError
from .grid import SuitabilitySurface
from .stack import ScenarioRasterStack

logger = logging.getLogger(__name__)


def row_blocks(height: int, width: int, block_rows: int) -> list[tuple[int, int]]:
    """Flat [start, stop) index ranges covering ``block_rows`` grid rows each."""
    if block_rows < 1:
        raise ValueError(f"block_rows must be at least 1, got {block_rows}")
    return [
        (row * width, min(row + block_rows, height) * width)
        for row in range(0, height, block_rows)
    ]


def predict_suitability(
    model: SuitabilityModel,
    stack: ScenarioRasterStack,
    block_rows: int = BLOCK_ROWS,
    max_workers: Optional[int] = None,
    progress: bool = False,
    name: Optional[str] = None,
) -> SuitabilitySurface:
    """
    Predict presence probability for every cell of a scenario.

    Cells where any model covariate is no-data stay no-data. Row blocks
    are classified concurrently and merged into a new array.

    Args:
        model: Trained SuitabilityModel
        stack: Raster stack holding every covariate the model needs
        block_rows: Grid rows per work unit
        max_workers: Thread pool size (default: chosen by the executor)
        progress: Show a progress bar
        name: Surface name (default: the scenario label)

    Returns:
        SuitabilitySurface on the stack's template, values in [0, 1] or NaN

    Raises:
        MissingCovariateError: if the stack lacks any model covariate
    """
    if not model.is_trained:
        raise RuntimeError("Model has not been trained yet")

    missing = stack.missing(model.covariates)
    if missing:
        raise MissingCovariateError(missing, scenario=stack.scenario)

    template = stack.template
    features = stack.matrix(model.covariates)
    complete = np.isfinite(features).all(axis=1)
    logger.info(
        f"Predicting scenario '{stack.scenario}': {int(complete.sum()):,} of {template.n_cells:,} cells "
        f"have all {len(model.covariates)} covariates"
    )

    def classify_block(start: int, stop: int) -> np.ndarray:
        scores = np.full(stop - start, np.nan)
        mask = complete[start:stop]
        if mask.any():
            scores[mask] = model.predict_proba(features[start:stop][mask])
        return scores

    blocks = row_blocks(template.height, template.width, block_rows)
    probabilities = np.full(template.n_cells, np.nan)

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = [executor.submit(classify_block, start, stop) for start, stop in blocks]
        for (start, stop), future in tqdm(
            zip(blocks, futures), total=len(blocks), desc="Classifying", disable=not progress
        ):
            probabilities[start:stop] = future.result()

    np.clip(probabilities, 0.0, 1.0, out=probabilities)

    valid = probabilities[np.isfinite(probabilities)]
    if valid.size:
        logger.info(f"  Score range: {valid.min():.3f} - {valid.max():.3f}")
        high_score = int((valid > 0.5).sum())
        logger.info(f"  High probability cells (>0.5): {high_score:,} ({100*high_score/valid.size:.1f}%)")

    return SuitabilitySurface(name or stack.scenario, template, probabilities)
