"""
Main pipeline: train a suitability model and project it onto climate scenarios.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Optional

import pandas as pd

from .change import compute_change, summarize_change
from .classifier import SuitabilityModel
from .config import PipelineConfig, Scenario
from .data import load_occurrences
from .errors import (
    GeometryMismatchError, InputTableError, InvalidRasterError, MissingCovariateError, NicheError,
)
from .evaluate import EvaluationReport, evaluate_model
from .features import FeatureRanking, select_features
from .grid import ChangeSurface, RasterTemplate, SuitabilitySurface
from .manifest import RunManifest, UnitOutcome
from .predict import predict_suitability
from .rasterize import load_climate_points, rasterize_scenario
from .stack import ScenarioRasterStack, load_stack
from .training import train_model

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Container for everything a run produced."""

    manifest: RunManifest
    model: Optional[SuitabilityModel] = None
    ranking: Optional[FeatureRanking] = None
    evaluation: Optional[EvaluationReport] = None
    surfaces: dict[str, SuitabilitySurface] = field(default_factory=dict)
    changes: dict[str, ChangeSurface] = field(default_factory=dict)


def _slug(label: str) -> str:
    """File-name-safe form of a scenario label."""
    return re.sub(r"[^A-Za-z0-9_.-]", "_", label)


def _validate_scenarios(scenarios: list[Scenario]) -> dict[str, pd.DataFrame]:
    """Check every scenario input before any rasterization starts."""
    tables = {}
    for scenario in scenarios:
        if scenario.points is not None:
            tables[scenario.label], _ = load_climate_points(scenario.points)
        elif not scenario.raster_dir.is_dir():
            raise InputTableError(f"Raster directory for scenario '{scenario.label}' not found: {scenario.raster_dir}")
    return tables


def _scenario_stack(
    scenario: Scenario,
    tables: dict[str, pd.DataFrame],
    template: RasterTemplate,
    config: PipelineConfig,
    manifest: RunManifest,
) -> ScenarioRasterStack:
    if scenario.label not in tables:
        return load_stack(scenario.raster_dir, template, scenario=scenario.label)

    result = rasterize_scenario(
        tables[scenario.label],
        template,
        scenario.label,
        output_dir=config.output_dir / "climate_rasters" / _slug(scenario.label),
        min_points=config.min_valid_points,
        max_distance=config.max_interpolation_distance,
        smoothing=config.smoothing_size,
        max_workers=config.max_workers,
    )
    manifest.extend(result.outcomes)
    return result.stack


def _project(
    config: PipelineConfig,
    template: RasterTemplate,
    tables: dict[str, pd.DataFrame],
    model: SuitabilityModel,
    result: PipelineResult,
) -> None:
    manifest = result.manifest
    maps_dir = config.output_dir / "maps"

    for scenario in config.scenarios:
        logger.info(f"Projecting onto scenario '{scenario.label}'...")
        try:
            stack = _scenario_stack(scenario, tables, template, config, manifest)
            surface = predict_suitability(
                model, stack, block_rows=config.block_rows, max_workers=config.max_workers,
            )
        except (MissingCovariateError, GeometryMismatchError, InvalidRasterError) as exc:
            if config.strict:
                raise
            logger.error(f"Prediction for scenario '{scenario.label}' failed: {exc}")
            manifest.record(UnitOutcome("scenario", scenario.label, "failed", str(exc), scenario=scenario.label))
            continue

        path = surface.write(maps_dir / f"suitability_{_slug(scenario.label)}.tif")
        result.surfaces[scenario.label] = surface
        manifest.record(UnitOutcome("scenario", scenario.label, "success", scenario=scenario.label, path=str(path)))

        if config.candidate_threshold is not None:
            geojson = surface.to_geojson(threshold=config.candidate_threshold)
            geojson_path = maps_dir / f"candidates_{_slug(scenario.label)}.geojson"
            with open(geojson_path, "w") as f:
                json.dump(geojson, f)
            logger.info(f"Saved {len(geojson['features'])} candidates: {geojson_path}")


def _changes(config: PipelineConfig, result: PipelineResult) -> None:
    manifest = result.manifest
    baseline = result.surfaces.get(config.baseline)
    summaries = {}

    for scenario in config.scenarios:
        if scenario.label == config.baseline:
            continue
        name = f"{_slug(scenario.label)}_vs_{_slug(config.baseline)}"
        if baseline is None or scenario.label not in result.surfaces:
            absent = config.baseline if baseline is None else scenario.label
            manifest.record(UnitOutcome(
                "change", name, "skipped", f"no suitability surface for '{absent}'", scenario=scenario.label,
            ))
            continue

        change = compute_change(result.surfaces[scenario.label], baseline, name=name)
        path = change.write(config.output_dir / "maps" / f"change_{name}.tif")
        result.changes[name] = change
        summaries[name] = summarize_change(change)
        manifest.record(UnitOutcome("change", name, "success", scenario=scenario.label, path=str(path)))

    manifest.info["changes"] = summaries


def run_pipeline(config: PipelineConfig) -> PipelineResult:
    """
    Run the full modeling and projection pipeline.

    Per-variable and per-scenario failures are recorded in the manifest and
    do not stop the run. Any other error is recorded as the abort reason;
    the manifest is saved and the error re-raised.

    Args:
        config: Run configuration

    Returns:
        PipelineResult with the model, evaluation, surfaces and manifest
    """
    config.output_dir.mkdir(parents=True, exist_ok=True)
    manifest = RunManifest(info={
        "template": str(config.template_path),
        "scenarios": [s.label for s in config.scenarios],
        "baseline": config.baseline,
        "seeds": {"selection": config.selection_seed, "split": config.split_seed},
    })
    result = PipelineResult(manifest=manifest)
    manifest_path = config.output_dir / "manifest.json"

    try:
        logger.info("=" * 60)
        logger.info("[1/5] Loading inputs...")
        template = RasterTemplate.from_raster(config.template_path)
        tables = _validate_scenarios(config.scenarios)
        dataset = load_occurrences(config.occurrences, config.label_column).complete_cases()
        manifest.info["records"] = len(dataset)
        manifest.info["dropped_labels"] = dataset.n_dropped

        logger.info("[2/5] Selecting covariates...")
        result.ranking = select_features(
            dataset,
            k=config.top_k,
            random_state=config.selection_seed,
            n_estimators=config.selection_trees,
            n_jobs=config.n_jobs,
        )
        manifest.info["selected_covariates"] = result.ranking.selected

        logger.info("[3/5] Training model...")
        training = train_model(
            dataset,
            result.ranking.selected,
            test_size=config.test_size,
            cv_folds=config.cv_folds,
            param_grid=config.param_grid,
            random_state=config.split_seed,
            estimator_type=config.estimator_type,
            n_estimators=config.n_trees,
            n_jobs=config.n_jobs,
        )
        result.model = training.model
        model_path = config.output_dir / "model.joblib"
        result.model.save(model_path)
        manifest.info["model"] = {"path": str(model_path), **result.model.train_stats}
        logger.info(f"Saved model to {model_path}")
        if config.estimator_type == "rf":
            top10 = result.model.covariate_importance().head(10)
            manifest.info["covariate_importance"] = {k: float(v) for k, v in top10.items()}
            logger.info(f"Top covariates: {', '.join(top10.index)}")

        logger.info("[4/5] Evaluating on held-out records...")
        result.evaluation = evaluate_model(result.model, training.held_out)
        manifest.info["evaluation"] = result.evaluation.to_dict()

        logger.info("[5/5] Projecting suitability...")
        _project(config, template, tables, result.model, result)
        _changes(config, result)
    except Exception as exc:
        reason = str(exc) if isinstance(exc, NicheError) else f"{type(exc).__name__}: {exc}"
        manifest.abort(reason)
        manifest.save(manifest_path)
        raise

    manifest.save(manifest_path)
    logger.info(
        f"COMPLETE: {len(manifest.succeeded)} succeeded, {len(manifest.skipped)} skipped, "
        f"{len(manifest.failed)} failed"
    )
    logger.info("=" * 60)
    return result
