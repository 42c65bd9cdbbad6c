"""
Ecological niche projection

Train a presence/absence classifier on occurrence records and climate
covariates, rasterize point-sampled climate tables onto a reference grid,
and project habitat suitability and its change across climate scenarios.
"""

from .errors import (
    NicheError, InputTableError, MissingColumnsError, InsufficientClassesError,
    ConfigurationError, MissingCovariateError, GeometryMismatchError, InvalidRasterError,
    VariableSkipped,
)
from .config import PipelineConfig, Scenario
from .grid import RasterTemplate, GridSurface, VariableRaster, SuitabilitySurface, ChangeSurface
from .labels import normalize_label, normalize_labels, filter_occurrences
from .data import TrainingDataset, load_occurrences, covariate_columns
from .classifier import SuitabilityModel, build_estimator
from .features import FeatureRanking, select_features
from .training import TrainingResult, train_model, default_param_grid
from .evaluate import EvaluationReport, evaluate_model
from .stack import ScenarioRasterStack, load_stack
from .rasterize import RasterizationResult, load_climate_points, rasterize_variable, rasterize_scenario
from .predict import predict_suitability
from .change import compute_change, summarize_change
from .manifest import UnitOutcome, RunManifest
from .pipeline import PipelineResult, run_pipeline

__all__ = [
    'NicheError',
    'InputTableError',
    'MissingColumnsError',
    'InsufficientClassesError',
    'ConfigurationError',
    'MissingCovariateError',
    'GeometryMismatchError',
    'InvalidRasterError',
    'VariableSkipped',
    'PipelineConfig',
    'Scenario',
    'RasterTemplate',
    'GridSurface',
    'VariableRaster',
    'SuitabilitySurface',
    'ChangeSurface',
    'normalize_label',
    'normalize_labels',
    'filter_occurrences',
    'TrainingDataset',
    'load_occurrences',
    'covariate_columns',
    'SuitabilityModel',
    'build_estimator',
    'FeatureRanking',
    'select_features',
    'TrainingResult',
    'train_model',
    'default_param_grid',
    'EvaluationReport',
    'evaluate_model',
    'ScenarioRasterStack',
    'load_stack',
    'RasterizationResult',
    'load_climate_points',
    'rasterize_variable',
    'rasterize_scenario',
    'predict_suitability',
    'compute_change',
    'summarize_change',
    'UnitOutcome',
    'RunManifest',
    'PipelineResult',
    'run_pipeline',
]
