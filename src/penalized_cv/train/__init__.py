"""Penalty sweeps, model selection and result export."""

from .cv import TunedFitter, tune
from .grid import HyperparameterGrid, log_space
from .models import (
    FitResult,
    FittedModel,
    fit_lasso,
    fit_lasso_logistic,
    make_fit_fn,
)
from .parallel import WorkerPool
from .results import (
    GridPointScore,
    HoldoutEvaluation,
    ScoreRecord,
    SelectedModel,
    SweepResult,
    load_model,
)
from .trainer import ModelSelector, evaluate, finalize, select
from .workflow import WorkflowResult, run_workflow

__all__ = [
    "TunedFitter",
    "tune",
    "HyperparameterGrid",
    "log_space",
    "FitResult",
    "FittedModel",
    "fit_lasso",
    "fit_lasso_logistic",
    "make_fit_fn",
    "WorkerPool",
    "GridPointScore",
    "HoldoutEvaluation",
    "ScoreRecord",
    "SelectedModel",
    "SweepResult",
    "load_model",
    "ModelSelector",
    "select",
    "finalize",
    "evaluate",
    "WorkflowResult",
    "run_workflow",
]
