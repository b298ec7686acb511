"""Cross-validated lasso penalty sweeps on tabular data."""

from penalized_cv.core import Metric, Objective, SweepConfig
from penalized_cv.train import (
    HyperparameterGrid,
    ModelSelector,
    TunedFitter,
    WorkerPool,
    log_space,
    run_workflow,
    tune,
)
from penalized_cv.wrangle import Recipe, TabularDataset, make_folds, split

__all__ = [
    "Metric",
    "Objective",
    "SweepConfig",
    "TabularDataset",
    "Recipe",
    "split",
    "make_folds",
    "log_space",
    "HyperparameterGrid",
    "TunedFitter",
    "tune",
    "ModelSelector",
    "WorkerPool",
    "run_workflow",
]
