"""Immutable preprocessing recipes.

A `Recipe` is an ordered tuple of named steps, each bound to the columns it
operates on. Preparing a recipe learns every step's statistics from the
training rows only; the resulting `PreparedRecipe` then bakes any dataset
with those statistics and returns a new dataset.

Usage:
    recipe = Recipe().impute_mean().dummy("region").zero_variance()
    prepared = recipe.prep(split.train)
    train = prepared.bake(split.train)
    test = prepared.bake(split.test)
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

import numpy as np
import polars as pl
from sklearn.impute import KNNImputer

from penalized_cv.core.errors import DatasetError
from penalized_cv.wrangle.dataset import TabularDataset

logger = logging.getLogger(__name__)

CATEGORICAL_DTYPES = (pl.Utf8, pl.Categorical, pl.Boolean)


@dataclass(frozen=True)
class Step(ABC):
    """Base class for recipe steps.

    Attributes:
        columns: Columns the step applies to. An empty tuple selects every
            feature column of the step's kind when the recipe is prepared.
    """

    columns: Tuple[str, ...] = ()

    name = "step"

    def resolve(self, dataset: TabularDataset) -> List[str]:
        """Columns this step will touch on `dataset`."""
        if self.columns:
            present = set(dataset.frame.columns)
            missing = [c for c in self.columns if c not in present]
            if missing:
                raise DatasetError(
                    f"Step '{self.name}' refers to unknown column(s): "
                    f"{missing}"
                )
            protected = {dataset.target, dataset.id_column}
            if protected.intersection(self.columns):
                raise DatasetError(
                    f"Step '{self.name}' cannot modify the target or id column"
                )
            return list(self.columns)
        return [c for c in dataset.feature_names if self.accepts(dataset, c)]

    def accepts(self, dataset: TabularDataset, column: str) -> bool:
        return dataset.frame.schema[column].is_numeric()

    @abstractmethod
    def fit(self, dataset: TabularDataset, columns: List[str]) -> Any:
        """Learn the step's state from training rows."""

    @abstractmethod
    def transform(self, frame: pl.DataFrame, state: Any) -> pl.DataFrame:
        """Apply a learned state to `frame`."""


@dataclass(frozen=True)
class ImputeMean(Step):
    """Replace missing numeric values with the training mean."""

    name = "impute_mean"

    def fit(self, dataset: TabularDataset, columns: List[str]) -> Any:
        means: Dict[str, float] = {}
        for col in columns:
            values = dataset.frame[col].cast(pl.Float64).fill_nan(None)
            mean = values.mean()
            means[col] = float(mean) if mean is not None else 0.0
        return means

    def transform(self, frame: pl.DataFrame, state: Any) -> pl.DataFrame:
        return frame.with_columns(
            [
                pl.col(col).cast(pl.Float64).fill_nan(None).fill_null(mean)
                for col, mean in state.items()
            ]
        )


@dataclass(frozen=True)
class ImputeKNN(Step):
    """Impute missing numeric values with scikit-learn's `KNNImputer`."""

    neighbors: int = 5

    name = "impute_knn"

    def fit(self, dataset: TabularDataset, columns: List[str]) -> Any:
        if not columns:
            return None
        imputer = KNNImputer(n_neighbors=self.neighbors)
        imputer.fit(_to_float_matrix(dataset.frame, columns))
        return columns, imputer

    def transform(self, frame: pl.DataFrame, state: Any) -> pl.DataFrame:
        if state is None:
            return frame
        columns, imputer = state
        filled = imputer.transform(_to_float_matrix(frame, columns))
        return frame.with_columns(
            [
                pl.Series(col, filled[:, i], dtype=pl.Float64)
                for i, col in enumerate(columns)
            ]
        )


@dataclass(frozen=True)
class Dummy(Step):
    """One-hot encode categorical columns, dropping the reference level.

    Levels are learned from the training rows and sorted; the first level
    is the reference. Unseen or missing values bake to all zeros.
    """

    name = "dummy"

    def accepts(self, dataset: TabularDataset, column: str) -> bool:
        return dataset.frame.schema[column] in CATEGORICAL_DTYPES

    def fit(self, dataset: TabularDataset, columns: List[str]) -> Any:
        levels: Dict[str, List[str]] = {}
        for col in columns:
            values = dataset.frame[col].cast(pl.Utf8).drop_nulls().unique()
            levels[col] = sorted(values.to_list())
        return levels

    def transform(self, frame: pl.DataFrame, state: Any) -> pl.DataFrame:
        for col, levels in state.items():
            as_text = pl.col(col).cast(pl.Utf8)
            frame = frame.with_columns(
                [
                    (as_text == level)
                    .fill_null(False)
                    .cast(pl.Float64)
                    .alias(f"{col}_{level}")
                    for level in levels[1:]
                ]
            ).drop(col)
        return frame


@dataclass(frozen=True)
class ZeroVariance(Step):
    """Drop columns holding a single distinct value in the training rows."""

    name = "zero_variance"

    def accepts(self, dataset: TabularDataset, column: str) -> bool:
        return True

    def fit(self, dataset: TabularDataset, columns: List[str]) -> Any:
        constant = [c for c in columns if dataset.frame[c].n_unique() <= 1]
        if constant:
            logger.info("Dropping zero-variance column(s): %s", constant)
        return constant

    def transform(self, frame: pl.DataFrame, state: Any) -> pl.DataFrame:
        return frame.drop([c for c in state if c in frame.columns])


@dataclass(frozen=True)
class Normalize(Step):
    """Center and scale numeric columns with training statistics."""

    name = "normalize"

    def fit(self, dataset: TabularDataset, columns: List[str]) -> Any:
        stats: Dict[str, Tuple[float, float]] = {}
        for col in columns:
            values = dataset.frame[col].cast(pl.Float64)
            mean = values.mean()
            std = values.std()
            mean = float(mean) if mean is not None else 0.0
            std = float(std) if std is not None and std > 0 else 1.0
            stats[col] = (mean, std)
        return stats

    def transform(self, frame: pl.DataFrame, state: Any) -> pl.DataFrame:
        return frame.with_columns(
            [
                ((pl.col(col).cast(pl.Float64) - mean) / std).alias(col)
                for col, (mean, std) in state.items()
            ]
        )


@dataclass(frozen=True)
class Recipe:
    """Ordered, immutable sequence of preprocessing steps."""

    steps: Tuple[Step, ...] = ()

    def add(self, step: Step) -> "Recipe":
        """Return a new recipe with `step` appended."""
        return Recipe(self.steps + (step,))

    def impute_mean(self, *columns: str) -> "Recipe":
        return self.add(ImputeMean(tuple(columns)))

    def impute_knn(self, *columns: str, neighbors: int = 5) -> "Recipe":
        return self.add(ImputeKNN(tuple(columns), neighbors=neighbors))

    def dummy(self, *columns: str) -> "Recipe":
        return self.add(Dummy(tuple(columns)))

    def zero_variance(self, *columns: str) -> "Recipe":
        return self.add(ZeroVariance(tuple(columns)))

    def normalize(self, *columns: str) -> "Recipe":
        return self.add(Normalize(tuple(columns)))

    @property
    def step_names(self) -> List[str]:
        return [step.name for step in self.steps]

    def prep(self, train: TabularDataset) -> "PreparedRecipe":
        """Learn every step's state from `train`, in order.

        Each step is fitted on the output of the previous steps, so a
        `normalize` after `dummy` sees the indicator columns.
        """
        states: List[Tuple[Step, List[str], Any]] = []
        current = train
        for step in self.steps:
            columns = step.resolve(current)
            state = step.fit(current, columns)
            states.append((step, columns, state))
            current = current.with_frame(step.transform(current.frame, state))
        return PreparedRecipe(
            recipe=self,
            states=tuple(states),
            feature_names=tuple(current.feature_names),
        )


@dataclass(frozen=True)
class PreparedRecipe:
    """A recipe whose step states were learned from training rows."""

    recipe: Recipe
    states: Tuple[Tuple[Step, List[str], Any], ...] = field(repr=False)
    feature_names: Tuple[str, ...] = ()

    def bake(self, dataset: TabularDataset) -> TabularDataset:
        """Apply the learned steps to `dataset`, returning a new dataset."""
        frame = dataset.frame
        for step, columns, state in self.states:
            if isinstance(step, ZeroVariance):
                missing = []
            else:
                missing = [c for c in columns if c not in frame.columns]
            if missing:
                raise DatasetError(
                    f"Cannot bake step '{step.name}': missing column(s) "
                    f"{missing}"
                )
            frame = step.transform(frame, state)
        return dataset.with_frame(frame)


def _to_float_matrix(frame: pl.DataFrame, columns: List[str]) -> np.ndarray:
    """Float matrix of `columns` with nulls mapped to NaN."""
    return np.asarray(
        frame.select(
            [
                pl.col(c).cast(pl.Float64).fill_null(float("nan"))
                for c in columns
            ]
        ).to_numpy(),
        dtype=float,
    )


def default_recipe() -> Recipe:
    """Mean imputation, dummy encoding and zero-variance filtering."""
    return Recipe().impute_mean().dummy().zero_variance()
