import numpy as np
import pytest

from niche.change import compute_change, summarize_change
from niche.classifier import SuitabilityModel
from niche.errors import GeometryMismatchError, MissingCovariateError
from niche.grid import RasterTemplate, SuitabilitySurface, VariableRaster
from niche.predict import predict_suitability, row_blocks
from niche.rasterize import rasterize_scenario
from niche.stack import ScenarioRasterStack, load_stack
from niche.training import train_model

from conftest import SEED, TEST_TREES

COVARIATES = ["Tmax_MAM", "PPT_sm", "MAT"]


@pytest.fixture
def model(dataset):
    return train_model(dataset, COVARIATES, random_state=49, n_estimators=TEST_TREES).model


@pytest.fixture
def stack(template, climate_points):
    return rasterize_scenario(climate_points, template, "historical").stack


def test_surface_values_in_unit_interval(model, stack, template):
    surface = predict_suitability(model, stack)

    assert surface.name == "historical"
    assert surface.template.same_geometry(template)
    assert surface.values.size == template.n_cells
    defined = surface.values[surface.valid_mask()]
    assert defined.size == template.n_cells
    assert ((defined >= 0.0) & (defined <= 1.0)).all()


def test_prediction_is_deterministic_across_block_sizes(model, stack):
    first = predict_suitability(model, stack, block_rows=256)
    second = predict_suitability(model, stack, block_rows=1, max_workers=4)
    assert first.values.tobytes() == second.values.tobytes()


def test_prediction_tracks_informative_covariate(model, stack):
    surface = predict_suitability(model, stack).as_array()
    # Tmax_MAM rises from the top-left to the bottom-right cell
    assert surface[-1, -1] > surface[0, 0]


def test_missing_covariate_aborts(template, dataset):
    frame = dataset.X.rename(columns={"Tmax_MAM": "V"})
    model = SuitabilityModel(["V", "MAT"], random_state=SEED, n_estimators=TEST_TREES).fit(frame, dataset.y)
    stack = ScenarioRasterStack("far_future", template, [VariableRaster("MAT", template, np.ones(template.n_cells))])

    with pytest.raises(MissingCovariateError) as info:
        predict_suitability(model, stack)
    assert info.value.missing == ["V"]
    assert "V" in str(info.value)
    assert info.value.scenario == "far_future"


def test_nodata_cells_stay_nodata(model, stack, template):
    values = stack["MAT"].values.copy()
    values[[0, 17]] = np.nan
    stack.add(VariableRaster("MAT", template, values))

    surface = predict_suitability(model, stack)
    assert np.isnan(surface.values[[0, 17]]).all()
    assert surface.n_valid == template.n_cells - 2


def test_row_blocks_cover_grid():
    blocks = row_blocks(height=5, width=4, block_rows=2)
    assert blocks == [(0, 8), (8, 16), (16, 20)]
    with pytest.raises(ValueError):
        row_blocks(5, 4, 0)


def test_stack_rejects_misaligned_raster(template):
    stack = ScenarioRasterStack("historical", template)
    other = RasterTemplate.from_bounds(0, 0, 10, 8, 0.5)
    with pytest.raises(GeometryMismatchError):
        stack.add(VariableRaster("MAT", other, np.zeros(other.n_cells)))


def test_load_stack_from_directory(tmp_path, model, stack, template):
    stack.save(tmp_path / "Normal_1961_1990SY")
    loaded = load_stack(tmp_path / "Normal_1961_1990SY", template)

    assert loaded.scenario == "Normal_1961_1990SY"
    assert sorted(loaded.names) == sorted(stack.names)
    assert loaded.missing(COVARIATES) == []
    surface = predict_suitability(model, loaded)
    assert surface.n_valid == template.n_cells


def test_change_is_future_minus_historical(template):
    historical = np.linspace(0.0, 1.0, template.n_cells)
    future = historical[::-1].copy()
    historical[3] = np.nan
    future[10] = np.nan

    change = compute_change(
        SuitabilitySurface("2071_2100", template, future),
        SuitabilitySurface("1961_1990", template, historical),
    )

    assert change.name == "2071_2100_vs_1961_1990"
    assert change.template.same_geometry(template)
    defined = ~np.isnan(historical) & ~np.isnan(future)
    np.testing.assert_array_equal(change.values[defined], future[defined] - historical[defined])
    assert np.isnan(change.values[~defined]).all()
    assert change.n_valid == template.n_cells - 2


def test_change_requires_identical_geometry(template):
    other = RasterTemplate.from_bounds(0, 0, 10, 8, 1.0, crs="EPSG:3857")
    with pytest.raises(GeometryMismatchError):
        compute_change(
            SuitabilitySurface("future", other, np.zeros(other.n_cells)),
            SuitabilitySurface("historical", template, np.zeros(template.n_cells)),
        )


def test_summarize_change(template):
    values = np.zeros(template.n_cells)
    values[:10] = 0.2
    values[10:15] = -0.1
    values[15] = np.nan
    historical = SuitabilitySurface("h", template, np.full(template.n_cells, 0.5))
    future = SuitabilitySurface("f", template, 0.5 + values)

    summary = summarize_change(compute_change(future, historical))
    assert summary["n_cells"] == template.n_cells - 1
    assert (summary["gain"], summary["loss"]) == (10, 5)
    assert summary["stable"] == template.n_cells - 16
