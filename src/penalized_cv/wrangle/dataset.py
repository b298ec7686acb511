"""Immutable tabular dataset wrapper used throughout the pipeline."""

import logging
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np
import polars as pl

from penalized_cv.core.errors import DatasetError

logger = logging.getLogger(__name__)

DEFAULT_ID_COLUMN = "sample"

FLOAT_DTYPES = (pl.Float32, pl.Float64)


class TabularDataset:
    """A polars frame with one designated target column and a row-id column.

    The wrapper never mutates its frame: every transformation returns a new
    ``TabularDataset``. Rows with a missing target are dropped on
    construction so every row can be used for training and evaluation.

    Attributes:
        target: Name of the target column
        id_column: Name of the unique row identifier column
    """

    def __init__(
        self,
        frame: pl.DataFrame,
        target: str,
        id_column: str = DEFAULT_ID_COLUMN,
        id_scope: Optional[str] = None,
    ) -> None:
        """Initialize the dataset.

        Args:
            frame: Rows x columns table holding features and the target
            target: Name of the target column
            id_column: Row identifier column; generated when absent
            id_scope: Token shared by datasets whose ids are comparable.
                `None` means the ids are real identifiers; generated ids
                get a fresh token unless one is inherited

        Raises:
            DatasetError: If the target is missing, ids are not unique or no
                rows remain after dropping null targets
        """
        if target not in frame.columns:
            raise DatasetError(f"Target column '{target}' not found in frame")
        if target == id_column:
            raise DatasetError("Target column cannot double as the id column")

        if id_column not in frame.columns:
            frame = frame.with_row_index(id_column)
            if id_scope is None:
                id_scope = uuid.uuid4().hex
        elif frame[id_column].n_unique() != frame.height:
            raise DatasetError(f"Id column '{id_column}' contains duplicates")

        n_null = frame[target].null_count()
        if n_null:
            logger.warning(
                "Dropping %d row(s) with a missing '%s' target", n_null, target
            )
            frame = frame.filter(pl.col(target).is_not_null())

        if frame.height == 0:
            raise DatasetError("Dataset contains no rows with a target value")

        self._frame = frame
        self._target = target
        self._id_column = id_column
        self._id_scope = id_scope

    @classmethod
    def from_csv(
        cls,
        path: Union[str, Path],
        target: str,
        id_column: str = DEFAULT_ID_COLUMN,
        **read_kwargs: Any,
    ) -> "TabularDataset":
        """Load a dataset from a CSV file with polars."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Dataset file not found: {path}")
        return cls(pl.read_csv(path, **read_kwargs), target, id_column)

    @classmethod
    def from_numpy(
        cls,
        X: np.ndarray,
        y: Sequence[Any],
        feature_names: Optional[List[str]] = None,
        target: str = "target",
    ) -> "TabularDataset":
        """Build a dataset from a feature matrix and a target vector."""
        X = np.asarray(X, dtype=float)
        if X.ndim != 2:
            raise DatasetError("X must be a 2-dimensional array")
        if feature_names is None:
            feature_names = [f"x{i}" for i in range(X.shape[1])]
        if len(feature_names) != X.shape[1]:
            raise DatasetError(
                "feature_names length does not match the number of columns"
            )
        data: Dict[str, Any] = {
            name: X[:, i] for i, name in enumerate(feature_names)
        }
        data[target] = list(y)
        return cls(pl.DataFrame(data), target)

    # ----- accessors -----

    @property
    def frame(self) -> pl.DataFrame:
        return self._frame

    @property
    def target(self) -> str:
        return self._target

    @property
    def id_column(self) -> str:
        return self._id_column

    @property
    def id_scope(self) -> Optional[str]:
        """Token of the dataset the row ids were generated for, if any.

        Generated row numbers only identify a row within datasets derived
        from the same source, so ids from different scopes never match.
        """
        return self._id_scope

    @property
    def feature_names(self) -> List[str]:
        """Feature columns in frame order (everything but id and target)."""
        return [
            c
            for c in self._frame.columns
            if c not in (self._id_column, self._target)
        ]

    @property
    def n_rows(self) -> int:
        return self._frame.height

    def __len__(self) -> int:
        return self._frame.height

    def __repr__(self) -> str:
        return (
            f"TabularDataset(n_rows={self.n_rows}, "
            f"n_features={len(self.feature_names)}, target='{self._target}')"
        )

    @property
    def ids(self) -> List[Any]:
        return self._frame[self._id_column].to_list()

    def is_continuous(self, column: str) -> bool:
        """Whether `column` holds floating point values."""
        return self._frame.schema[column] in FLOAT_DTYPES

    def X(self, features: Optional[List[str]] = None) -> np.ndarray:
        """Numeric feature matrix in `features` (default: frame) order."""
        features = self.feature_names if features is None else features
        missing = [c for c in features if c not in self._frame.columns]
        if missing:
            raise DatasetError(f"Unknown feature column(s): {missing}")
        non_numeric = [
            c
            for c in features
            if not (
                self._frame.schema[c].is_numeric()
                or self._frame.schema[c] == pl.Boolean
            )
        ]
        if non_numeric:
            raise DatasetError(
                f"Non-numeric feature column(s) {non_numeric}; "
                "encode them with a recipe 'dummy' step first"
            )
        if not features:
            return np.empty((self.n_rows, 0), dtype=float)
        return np.asarray(
            self._frame.select(features).to_numpy(), dtype=float
        )

    def y(self, dtype: Any = float) -> np.ndarray:
        values = self._frame[self._target].to_numpy()
        return np.asarray(values) if dtype is None else values.astype(dtype)

    # ----- derived datasets -----

    def with_frame(self, frame: pl.DataFrame) -> "TabularDataset":
        """Return a dataset over `frame` sharing this target and id column."""
        return TabularDataset(
            frame, self._target, self._id_column, id_scope=self._id_scope
        )

    def subset(self, ids: Sequence[Any]) -> "TabularDataset":
        """Return the rows whose id is in `ids`, in the order given.

        Raises:
            DatasetError: If `ids` repeats an id or names an unknown one
        """
        ids = list(ids)
        if len(set(ids)) != len(ids):
            raise DatasetError("subset ids must be unique")
        if not ids:
            raise DatasetError("subset ids must not be empty")

        id_dtype = self._frame.schema[self._id_column]
        order = pl.DataFrame(
            {self._id_column: pl.Series(self._id_column, ids, dtype=id_dtype)}
        ).with_row_index("_order")
        joined = order.join(self._frame, on=self._id_column, how="inner")
        if joined.height != len(ids):
            raise DatasetError(
                f"{len(ids) - joined.height} subset id(s) not in dataset"
            )
        frame = joined.sort("_order").drop("_order")
        return TabularDataset(
            frame.select(self._frame.columns),
            self._target,
            self._id_column,
            id_scope=self._id_scope,
        )
