"""Configuration and error types shared across penalized_cv."""

from .config import Metric, Objective, PoolKind, SweepConfig
from .errors import (
    DatasetError,
    FitConvergenceError,
    InvalidFoldCountError,
    InvalidFractionError,
    InvalidGridError,
    NoValidFoldsError,
    NoValidGridPointsError,
    PenalizedCVError,
)

__all__ = [
    "Metric",
    "Objective",
    "PoolKind",
    "SweepConfig",
    "PenalizedCVError",
    "DatasetError",
    "InvalidFractionError",
    "InvalidFoldCountError",
    "InvalidGridError",
    "FitConvergenceError",
    "NoValidFoldsError",
    "NoValidGridPointsError",
]
