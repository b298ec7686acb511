"""Configuration classes for penalized-cv sweeps.

This module provides the enumerations and the sweep configuration used by
the splitting, tuning and selection steps, together with a YAML loader.
"""

import math
from dataclasses import asdict, dataclass, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml  # type: ignore

from penalized_cv.core.errors import (
    ERR_FOLD_COUNT,
    ERR_GRID_BOUNDS,
    ERR_GRID_COUNT,
    ERR_TRAIN_FRACTION,
    InvalidFoldCountError,
    InvalidFractionError,
    InvalidGridError,
)


class Objective(Enum):
    """Direction in which an aggregated metric is optimised."""

    MINIMIZE = "minimize"
    MAXIMIZE = "maximize"


class Metric(Enum):
    """Enumeration of available validation metrics."""

    RMSE = "rmse"
    MAE = "mae"
    RSQ = "rsq"
    ACCURACY = "accuracy"
    AUC = "auc"

    @property
    def default_objective(self) -> Objective:
        """Natural optimisation direction for this metric."""
        if self in (Metric.RMSE, Metric.MAE):
            return Objective.MINIMIZE
        return Objective.MAXIMIZE

    @property
    def is_classification(self) -> bool:
        return self in (Metric.ACCURACY, Metric.AUC)


class PoolKind(Enum):
    """Enumeration of worker pool backends."""

    THREAD = "thread"
    PROCESS = "process"


@dataclass
class SweepConfig:
    """Configuration for a split, tune, select and evaluate run.

    Attributes:
        train_fraction: Fraction of rows assigned to the training subset
        seed: Seed for the split and fold assignment generators
        fold_count: Number of cross-validation folds
        grid_min: Smallest penalty in the log-spaced grid
        grid_max: Largest penalty in the log-spaced grid
        grid_count: Number of penalties in the grid
        metric: Validation metric used to score every fold
        objective: Optimisation direction (defaults to the metric's own)
        worker_count: Number of workers used by the tuner
        pool_kind: Worker pool backend ("thread" or "process")
        strata_field: Optional column used to stratify split and folds
        strata_bins: Number of quantile bins for continuous strata
        max_iter: Iteration cap handed to the solver
    """

    train_fraction: float = 0.8
    seed: int = 42
    fold_count: int = 5
    grid_min: float = 1e-3
    grid_max: float = 1.0
    grid_count: int = 5
    metric: Metric = Metric.RMSE
    objective: Optional[Objective] = None
    worker_count: int = 1
    pool_kind: PoolKind = PoolKind.THREAD
    strata_field: Optional[str] = None
    strata_bins: int = 4
    max_iter: int = 10000

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if not isinstance(self.metric, Metric):
            if isinstance(self.metric, str):
                self.metric = Metric(self.metric.lower())
            else:
                raise ValueError(f"Invalid metric: {self.metric}")

        if self.objective is None:
            self.objective = self.metric.default_objective
        elif not isinstance(self.objective, Objective):
            if isinstance(self.objective, str):
                self.objective = Objective(self.objective.lower())
            else:
                raise ValueError(f"Invalid objective: {self.objective}")

        if not isinstance(self.pool_kind, PoolKind):
            if isinstance(self.pool_kind, str):
                self.pool_kind = PoolKind(self.pool_kind.lower())
            else:
                raise ValueError(f"Invalid pool kind: {self.pool_kind}")

        if not 0.0 < float(self.train_fraction) < 1.0:
            raise InvalidFractionError(
                ERR_TRAIN_FRACTION.format(self.train_fraction)
            )
        if int(self.fold_count) < 2:
            raise InvalidFoldCountError(
                ERR_FOLD_COUNT.format("unknown", self.fold_count)
            )
        if int(self.grid_count) < 2:
            raise InvalidGridError(ERR_GRID_COUNT.format(self.grid_count))
        if not (
            math.isfinite(self.grid_min)
            and math.isfinite(self.grid_max)
            and 0.0 < self.grid_min < self.grid_max
        ):
            raise InvalidGridError(
                ERR_GRID_BOUNDS.format(self.grid_min, self.grid_max)
            )
        if int(self.worker_count) < 1:
            raise ValueError(
                f"worker_count must be at least 1, got {self.worker_count}"
            )
        if int(self.strata_bins) < 1:
            raise ValueError(
                f"strata_bins must be at least 1, got {self.strata_bins}"
            )
        if int(self.max_iter) < 1:
            raise ValueError(f"max_iter must be positive, got {self.max_iter}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SweepConfig":
        """Build a configuration from a plain mapping.

        Raises:
            ValueError: If the mapping contains unknown keys
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(
                f"Unknown configuration key(s): {', '.join(unknown)}"
            )
        return cls(**data)

    @classmethod
    def from_yaml(cls, config_path: Union[str, Path]) -> "SweepConfig":
        """Load a configuration from a YAML file.

        The file may either hold the keys at top level or nest them under a
        ``sweep`` section.

        Args:
            config_path: Path to YAML configuration file
        """
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(
                f"Configuration file not found: {config_path}"
            )

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(
                f"Configuration file must contain a mapping: {config_path}"
            )
        if "sweep" in data and isinstance(data["sweep"], dict):
            data = data["sweep"]
        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert config back to a YAML-friendly dictionary."""
        out = asdict(self)
        for key, value in out.items():
            if isinstance(value, Enum):
                out[key] = value.value
        return out

    def to_yaml(self, path: Union[str, Path]) -> None:
        Path(path).write_text(yaml.safe_dump(self.to_dict(), sort_keys=False))
