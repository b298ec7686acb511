"""Hyperparameter grids for penalty sweeps."""

import math
from typing import Iterator, Sequence, Tuple, Union, overload

import numpy as np

from penalized_cv.core.config import SweepConfig
from penalized_cv.core.errors import (
    ERR_GRID_BOUNDS,
    ERR_GRID_COUNT,
    InvalidGridError,
)


class HyperparameterGrid(Sequence[float]):
    """Immutable, ordered sequence of candidate penalty values.

    Order only matters for reporting and tie-breaking; every value is a
    positive float.
    """

    __slots__ = ("_values",)

    def __init__(self, values: Sequence[float]) -> None:
        vals = tuple(float(v) for v in values)
        if not vals:
            raise InvalidGridError("grid must contain at least one value")
        if any(not math.isfinite(v) or v <= 0.0 for v in vals):
            raise InvalidGridError(f"grid values must be positive: {vals}")
        if len(set(vals)) != len(vals):
            raise InvalidGridError(f"grid values must be unique: {vals}")
        self._values: Tuple[float, ...] = vals

    @classmethod
    def from_config(cls, config: SweepConfig) -> "HyperparameterGrid":
        return log_space(config.grid_min, config.grid_max, config.grid_count)

    @overload
    def __getitem__(self, index: int) -> float: ...

    @overload
    def __getitem__(self, index: slice) -> Tuple[float, ...]: ...

    def __getitem__(
        self, index: Union[int, slice]
    ) -> Union[float, Tuple[float, ...]]:
        return self._values[index]

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[float]:
        return iter(self._values)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, HyperparameterGrid):
            return self._values == other._values
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._values)

    def __repr__(self) -> str:
        inner = ", ".join(f"{v:.6g}" for v in self._values)
        return f"HyperparameterGrid([{inner}])"

    @property
    def values(self) -> Tuple[float, ...]:
        return self._values

    def position(self, point: float) -> int:
        """Index of `point` in grid order."""
        return self._values.index(float(point))


def log_space(
    min_value: float, max_value: float, count: int
) -> HyperparameterGrid:
    """Return `count` values evenly spaced in log10 scale.

    Both endpoints are included exactly; ``log_space(0.001, 1.0, 5)`` gives
    ``[0.001, 0.00562, 0.0316, 0.178, 1.0]``.

    Raises:
        InvalidGridError: If count < 2 or the bounds are not finite with
            0 < min_value < max_value
    """
    if int(count) != count or count < 2:
        raise InvalidGridError(ERR_GRID_COUNT.format(count))
    if not (
        math.isfinite(min_value)
        and math.isfinite(max_value)
        and 0.0 < min_value <= max_value
    ):
        raise InvalidGridError(ERR_GRID_BOUNDS.format(min_value, max_value))
    if min_value == max_value:
        raise InvalidGridError(
            f"grid of {count} values needs min_value < max_value"
        )

    values = np.logspace(
        math.log10(min_value), math.log10(max_value), int(count)
    )
    values[0] = min_value
    values[-1] = max_value
    return HyperparameterGrid(values.tolist())
