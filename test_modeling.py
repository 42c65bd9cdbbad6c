import numpy as np
import pandas as pd
import pytest

from niche.classifier import SuitabilityModel, build_estimator
from niche.data import load_occurrences
from niche.errors import ConfigurationError, InsufficientClassesError, MissingCovariateError
from niche.evaluate import evaluate_model
from niche.features import select_features
from niche.training import default_param_grid, train_model

from conftest import SEED, TEST_TREES, make_occurrences

SPLIT_SEED = 49


def _train(dataset, covariates, **kwargs):
    return train_model(
        dataset, covariates, test_size=0.2, cv_folds=5,
        random_state=SPLIT_SEED, n_estimators=TEST_TREES, **kwargs,
    )


def test_select_features_ranks_informative_covariate_first(dataset):
    ranking = select_features(dataset, k=3, random_state=SEED, n_estimators=50)
    assert len(ranking.selected) == 3
    assert ranking.selected[0] == "Tmax_MAM"
    assert list(ranking.importances.index[:3]) == ranking.selected
    assert ranking.importances.is_monotonic_decreasing


def test_select_features_is_deterministic(dataset):
    first = select_features(dataset, k=3, random_state=SEED, n_estimators=50)
    second = select_features(dataset, k=3, random_state=SEED, n_estimators=50)
    assert first.selected == second.selected
    pd.testing.assert_series_equal(first.importances, second.importances)


def test_select_features_returns_all_when_k_exceeds_covariates(dataset):
    ranking = select_features(dataset, k=30, random_state=SEED, n_estimators=20)
    assert sorted(ranking.selected) == sorted(dataset.covariates)


def test_select_features_breaks_ties_by_column_order():
    df = make_occurrences()
    df["const_b"] = 1.0
    df["const_a"] = 1.0
    ranking = select_features(load_occurrences(df), k=7, random_state=SEED, n_estimators=20)
    assert ranking.selected[-2:] == ["const_b", "const_a"]


def test_select_features_requires_both_classes():
    df = make_occurrences()
    df["species"] = "presence"
    with pytest.raises(InsufficientClassesError):
        select_features(load_occurrences(df), k=3)


def test_default_param_grid():
    assert default_param_grid(30) == {"max_features": [5, 10], "min_samples_leaf": [1, 5]}
    assert default_param_grid(3) == {"max_features": [1], "min_samples_leaf": [1, 5]}
    assert "lr__C" in default_param_grid(3, "lr")


def test_train_model_holds_out_stratified_partition(dataset):
    result = _train(dataset, ["Tmax_MAM", "PPT_sm", "MAT"])

    assert result.model.covariates == ["Tmax_MAM", "PPT_sm", "MAT"]
    assert len(result.held_out) == 20
    assert result.held_out.class_counts() == {0: 8, 1: 12}
    assert len(result.train) == 80
    assert not set(result.held_out.source_rows) & set(result.train.source_rows)
    assert set(result.model.config["params"]) >= {"n_estimators", "max_features", "min_samples_leaf"}
    assert 0.0 <= result.model.train_stats["cv_auc_mean"] <= 1.0


def test_train_model_is_deterministic(dataset):
    covariates = ["Tmax_MAM", "PPT_sm", "MAT"]
    first = _train(dataset, covariates)
    second = _train(dataset, covariates)

    np.testing.assert_array_equal(first.held_out.source_rows, second.held_out.source_rows)
    assert first.model.config == second.model.config
    np.testing.assert_array_equal(
        first.model.predict_proba(dataset.X), second.model.predict_proba(dataset.X)
    )


def test_train_model_rejects_too_few_records_per_fold():
    dataset = load_occurrences(make_occurrences(n_presence=60, n_absence=4))
    with pytest.raises(ConfigurationError):
        _train(dataset, ["Tmax_MAM"])


@pytest.mark.parametrize("test_size", [0.0, 1.0, 0.01, 0.995])
def test_train_model_rejects_degenerate_test_size(dataset, test_size):
    with pytest.raises(ConfigurationError):
        train_model(dataset, ["Tmax_MAM"], test_size=test_size, n_estimators=TEST_TREES)


def test_train_model_rejects_single_class():
    dataset = load_occurrences(make_occurrences(n_presence=30, n_absence=0))
    with pytest.raises(InsufficientClassesError):
        _train(dataset, ["Tmax_MAM"])


def test_end_to_end_training_and_evaluation(dataset):
    assert len(dataset.covariates) == 5
    assert dataset.class_counts() == {0: 40, 1: 60}

    ranking = select_features(dataset, k=3, random_state=SEED, n_estimators=50)
    result = _train(dataset, ranking.selected)
    report = evaluate_model(result.model, result.held_out)

    assert 0.0 <= report.auc <= 1.0
    assert sum(report.confusion.values()) == 20
    assert report.n == 20
    assert 0.0 <= report.accuracy <= 1.0
    assert report.to_dict()["confusion"] == report.confusion
    assert len(report.fpr) == len(report.tpr)


def test_evaluate_single_class_partition_gives_nan_auc(dataset):
    result = _train(dataset, ["Tmax_MAM", "PPT_sm"])
    presence_only = result.held_out.subset(np.flatnonzero(result.held_out.y == 1))
    report = evaluate_model(result.model, presence_only)
    assert np.isnan(report.auc)
    assert report.to_dict()["auc"] is None
    assert sum(report.confusion.values()) == 12


def test_model_save_and_load(tmp_path, dataset):
    result = _train(dataset, ["Tmax_MAM", "PPT_sm"])
    path = tmp_path / "rf_model.joblib"
    result.model.save(path)

    loaded = SuitabilityModel.load(path)
    assert loaded.covariates == ["Tmax_MAM", "PPT_sm"]
    assert loaded.config == result.model.config
    np.testing.assert_array_equal(loaded.predict_proba(dataset.X), result.model.predict_proba(dataset.X))


def test_model_uses_trained_column_order(dataset):
    model = SuitabilityModel(["Tmax_MAM", "PPT_sm"], random_state=SEED, n_estimators=TEST_TREES)
    model.fit(dataset.X, dataset.y)

    reordered = dataset.X[["MAT", "PPT_sm", "Tmax_MAM"]]
    np.testing.assert_array_equal(model.predict_proba(reordered), model.predict_proba(dataset.X))
    with pytest.raises(MissingCovariateError):
        model.predict_proba(dataset.X[["MAT"]])
    with pytest.raises(ValueError):
        model.predict_proba(np.zeros((3, 5)))


def test_untrained_model_raises():
    with pytest.raises(RuntimeError):
        SuitabilityModel(["MAT"]).predict_proba(np.zeros((1, 1)))


def test_pluggable_estimators(dataset):
    model = SuitabilityModel(["Tmax_MAM", "PPT_sm"], estimator_type="lr").fit(dataset.X, dataset.y)
    proba = model.predict_proba(dataset.X)
    assert ((proba >= 0) & (proba <= 1)).all()
    assert list(model.covariate_importance().index)[0] == "Tmax_MAM"
    with pytest.raises(ValueError):
        build_estimator("gbm")
