"""Exception types raised across the penalized-cv pipeline.

Configuration problems (bad fractions, fold counts, grids) are fatal and
surface to the caller. Fit-level problems are recovered by the tuner and
reported alongside the sweep results.
"""

from typing import Any, Optional

# standardised error messages
ERR_TRAIN_FRACTION = "train_fraction must lie strictly between 0 and 1, got {}"
ERR_FOLD_COUNT = "fold count must satisfy 2 <= k <= n_rows ({}), got {}"
ERR_GRID_COUNT = "grid count must be at least 2, got {}"
ERR_GRID_BOUNDS = (
    "grid bounds must be finite with 0 < min_value < max_value, "
    "got min_value={} max_value={}"
)


class PenalizedCVError(ValueError):
    """Base class for all errors raised by penalized_cv."""


class DatasetError(PenalizedCVError):
    """Raised when a dataset is malformed (missing target, empty, ...)."""


class InvalidFractionError(PenalizedCVError):
    """Raised when a train fraction lies outside the open interval (0, 1)."""


class InvalidFoldCountError(PenalizedCVError):
    """Raised when the fold count is < 2 or larger than the number of rows."""


class InvalidGridError(PenalizedCVError):
    """Raised when a hyperparameter grid cannot be generated."""


class FitConvergenceError(PenalizedCVError):
    """Raised by a fit function when the solver does not converge."""

    def __init__(
        self, message: str, point: Optional[float] = None, n_iter: Any = None
    ) -> None:
        super().__init__(message)
        self.point = point
        self.n_iter = n_iter


class NoValidFoldsError(PenalizedCVError):
    """Raised when every fold fit for a grid point failed."""

    def __init__(self, point: float, n_folds: int) -> None:
        super().__init__(
            f"all {n_folds} fold fit(s) failed for grid point {point!r}"
        )
        self.point = point
        self.n_folds = n_folds


class NoValidGridPointsError(PenalizedCVError):
    """Raised when no grid point produced a usable aggregate score."""

    def __init__(self, excluded: Any = None) -> None:
        excluded = dict(excluded or {})
        super().__init__(
            f"sweep produced no valid grid points ({len(excluded)} excluded)"
        )
        self.excluded = excluded
