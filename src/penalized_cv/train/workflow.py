"""End-to-end split, tune, select and evaluate workflow."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import numpy as np

from penalized_cv.core.config import SweepConfig
from penalized_cv.train.cv import TunedFitter
from penalized_cv.train.grid import HyperparameterGrid
from penalized_cv.train.metrics import make_score_fn
from penalized_cv.train.models import (
    BINOMIAL,
    GAUSSIAN,
    FitFn,
    FitResult,
    make_fit_fn,
)
from penalized_cv.train.parallel import WorkerPool
from penalized_cv.train.results import (
    HoldoutEvaluation,
    SelectedModel,
    SweepResult,
)
from penalized_cv.train.trainer import ModelSelector, refit_probe
from penalized_cv.wrangle.dataset import TabularDataset
from penalized_cv.wrangle.recipe import PreparedRecipe, Recipe
from penalized_cv.wrangle.splits import Split, make_folds, split

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineFit:
    """A `FitResult` bundled with the recipe prepared on the same rows.

    Every prediction bakes the incoming rows with the prepared recipe
    first, so held-out rows are transformed with training statistics.
    """

    fit: FitResult
    prepared: PreparedRecipe

    @property
    def family(self) -> str:
        return self.fit.family

    @property
    def penalty(self) -> float:
        return self.fit.penalty

    @property
    def intercept(self) -> float:
        return self.fit.intercept

    @property
    def feature_names(self) -> Tuple[str, ...]:
        return self.fit.feature_names

    @property
    def weights(self) -> Tuple[float, ...]:
        return self.fit.weights

    @property
    def classes(self) -> Optional[Tuple[Any, ...]]:
        return self.fit.classes

    @property
    def coefficients(self) -> Dict[str, float]:
        return self.fit.coefficients

    @property
    def n_nonzero(self) -> int:
        return self.fit.n_nonzero

    def decision_function(self, rows: TabularDataset) -> np.ndarray:
        return self.fit.decision_function(self.prepared.bake(rows))

    def predict_proba(self, rows: TabularDataset) -> np.ndarray:
        return self.fit.predict_proba(self.prepared.bake(rows))

    def predict(self, rows: TabularDataset) -> np.ndarray:
        return self.fit.predict(self.prepared.bake(rows))


@dataclass(frozen=True)
class RecipeFitFn:
    """Fit function that preps `recipe` on the rows it is asked to fit.

    Used for fold fits so imputation, encoding and filtering statistics
    come from the fold's training rows only.
    """

    recipe: Recipe
    fit_fn: FitFn

    def __call__(self, train: TabularDataset, penalty: float) -> PipelineFit:
        prepared = self.recipe.prep(train)
        fit = self.fit_fn(prepared.bake(train), penalty)
        return PipelineFit(fit=fit, prepared=prepared)


@dataclass
class WorkflowResult:
    """Everything a workflow run produced, for inspection and reporting."""

    config: SweepConfig
    split: Split
    grid: HyperparameterGrid
    sweep: SweepResult
    selected: SelectedModel
    test_score: float
    holdout: HoldoutEvaluation


def run_workflow(
    dataset: TabularDataset,
    config: Optional[SweepConfig] = None,
    recipe: Optional[Recipe] = None,
    fit_fn: Optional[FitFn] = None,
) -> WorkflowResult:
    """Split, tune, select, refit and evaluate in one call.

    Steps:
        1. Split `dataset` into train/test with the configured seed/strata.
        2. Partition the training subset into folds with the same seed.
        3. Tune every (fold, penalty) pair, prepping `recipe` per fold.
        4. Select the best penalty (ties: sparsest full-training refit).
        5. Refit on the full training subset and evaluate once on test.

    Args:
        dataset: Input dataset
        config: Sweep configuration (defaults to `SweepConfig()`)
        recipe: Preprocessing recipe (defaults to an empty recipe)
        fit_fn: Fit function; defaults to lasso for regression metrics and
            logistic lasso for classification metrics
    """
    config = config or SweepConfig()
    recipe = recipe or Recipe()
    if fit_fn is None:
        family = BINOMIAL if config.metric.is_classification else GAUSSIAN
        fit_fn = make_fit_fn(family, max_iter=config.max_iter)
    score_fn = make_score_fn(config.metric)
    pipeline_fit = RecipeFitFn(recipe=recipe, fit_fn=fit_fn)

    holdout = split(
        dataset,
        train_fraction=config.train_fraction,
        seed=config.seed,
        strata_field=config.strata_field,
        n_bins=config.strata_bins,
    )
    folds = make_folds(
        holdout.train,
        k=config.fold_count,
        seed=config.seed,
        strata_field=config.strata_field,
        n_bins=config.strata_bins,
    )
    grid = HyperparameterGrid.from_config(config)

    fitter = TunedFitter(
        pipeline_fit,
        score_fn,
        pool=WorkerPool(config.worker_count, kind=config.pool_kind),
        metric=config.metric.value,
    )
    sweep = fitter.tune(folds, grid)

    selector = ModelSelector(objective=config.objective)
    chosen = selector.select(
        sweep, grid, probe=refit_probe(holdout.train, pipeline_fit)
    )
    selected = selector.finalize(holdout.train, chosen, pipeline_fit)
    test_score = selector.evaluate(selected, holdout.test, score_fn)
    report = selector.evaluate_report(selected, holdout.test)

    logger.info(
        "Workflow finished: penalty=%g cv_%s=%.6g test_%s=%.6g",
        chosen,
        config.metric.value,
        sweep[chosen].mean,
        config.metric.value,
        test_score,
    )
    return WorkflowResult(
        config=config,
        split=holdout,
        grid=grid,
        sweep=sweep,
        selected=selected,
        test_score=test_score,
        holdout=report,
    )
