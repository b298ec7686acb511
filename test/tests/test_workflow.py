import math

import pytest

from penalized_cv import SweepConfig, run_workflow
from penalized_cv.train.models import FittedModel, fit_lasso
from penalized_cv.train.workflow import PipelineFit, RecipeFitFn
from penalized_cv.wrangle.recipe import Recipe, default_recipe
from penalized_cv.wrangle.splits import make_folds


def test_regression_workflow(linear_dataset):
    """Split 80/20, five folds, five penalties, refit and evaluate."""
    result = run_workflow(linear_dataset)

    assert result.split.train.n_rows == 80
    assert result.split.test.n_rows == 20
    assert len(result.grid) == 5
    assert len(result.sweep) == 5
    for score in result.sweep.scores.values():
        assert score.n_folds == 5
        assert len(score.fold_scores) == 5

    selected = result.selected
    assert selected.point in result.grid
    assert len(selected.train_ids) == 80
    assert not selected.train_ids & set(result.split.test.ids)

    assert math.isfinite(result.test_score)
    assert result.test_score >= 0.0
    assert result.holdout.metrics["rmse"] == pytest.approx(result.test_score)
    # better than predicting the test mean
    assert result.test_score < result.split.test.y().std()


def test_workflow_is_reproducible(linear_dataset):
    config = SweepConfig(seed=5)
    first = run_workflow(linear_dataset, config)
    second = run_workflow(linear_dataset, config)

    assert first.selected.point == second.selected.point
    assert first.test_score == second.test_score


def test_threaded_workflow_matches_sequential(linear_dataset):
    sequential = run_workflow(linear_dataset, SweepConfig(worker_count=1))
    threaded = run_workflow(linear_dataset, SweepConfig(worker_count=3))

    assert sequential.selected.point == threaded.selected.point
    assert sequential.test_score == threaded.test_score
    assert {p: s.mean for p, s in sequential.sweep.scores.items()} == {
        p: s.mean for p, s in threaded.sweep.scores.items()
    }


def test_workflow_with_recipe(mixed_dataset):
    config = SweepConfig(strata_field="outcome", fold_count=4)
    result = run_workflow(mixed_dataset, config, recipe=default_recipe())

    assert math.isfinite(result.test_score)
    assert isinstance(result.selected.fit, PipelineFit)
    assert isinstance(result.selected.fit, FittedModel)
    names = result.selected.fit.feature_names
    assert "region_north" in names
    assert "const" not in names
    importances = result.selected.feature_importances()
    assert importances.height == len(names)


def test_recipe_prepped_on_fold_training_rows_only(mixed_dataset):
    """Per-fold prep learns imputation means from the fold's train rows."""
    fold = make_folds(mixed_dataset, k=4, seed=0)[0]
    fit_fn = RecipeFitFn(Recipe().impute_mean("x0").dummy(), fit_lasso)
    pipeline = fit_fn(fold.train, 0.01)

    means = pipeline.prepared.states[0][2]
    expected = fold.train.frame["x0"].mean()
    assert means["x0"] == pytest.approx(expected)
    assert pipeline.predict(fold.validation).shape == (
        fold.validation.n_rows,
    )


def test_classification_workflow(binary_dataset):
    config = SweepConfig(metric="auc", strata_field="target")
    result = run_workflow(binary_dataset, config)

    assert result.config.objective.value == "maximize"
    assert result.sweep.metric == "auc"
    assert 0.5 <= result.test_score <= 1.0
    assert 0.0 <= result.holdout.metrics["accuracy"] <= 1.0
    assert set(result.holdout.predictions.tolist()) <= {0, 1}
