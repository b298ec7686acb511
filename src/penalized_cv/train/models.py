"""L1-penalized linear models fitted on standardized predictors.

Both fit functions learn the standardization statistics from the rows they
are given and nothing else, so a fold fit never sees validation rows and
the final refit never sees test rows. The learned statistics travel with
the `FitResult` and are reapplied at prediction time.
"""

import logging
from dataclasses import dataclass
from functools import partial
from typing import (
    Any,
    Callable,
    Dict,
    Optional,
    Protocol,
    Tuple,
    runtime_checkable,
)

import numpy as np
from sklearn.linear_model import Lasso, LogisticRegression
from sklearn.preprocessing import StandardScaler

from penalized_cv.core.errors import DatasetError, FitConvergenceError
from penalized_cv.wrangle.dataset import TabularDataset

logger = logging.getLogger(__name__)

GAUSSIAN = "gaussian"
BINOMIAL = "binomial"

DEFAULT_MAX_ITER = 10000
DEFAULT_TOL = 1e-4

FitFn = Callable[[TabularDataset, float], "FittedModel"]


@runtime_checkable
class FittedModel(Protocol):
    """Interface shared by `FitResult` and fits that carry a recipe."""

    @property
    def family(self) -> str: ...

    @property
    def penalty(self) -> float: ...

    @property
    def intercept(self) -> float: ...

    @property
    def feature_names(self) -> Tuple[str, ...]: ...

    @property
    def weights(self) -> Tuple[float, ...]: ...

    @property
    def classes(self) -> Optional[Tuple[Any, ...]]: ...

    @property
    def coefficients(self) -> Dict[str, float]: ...

    @property
    def n_nonzero(self) -> int: ...

    def decision_function(self, rows: TabularDataset) -> np.ndarray: ...

    def predict_proba(self, rows: TabularDataset) -> np.ndarray: ...

    def predict(self, rows: TabularDataset) -> np.ndarray: ...


@dataclass(frozen=True)
class FitResult:
    """Learned coefficients for one (fold, penalty) pair or a final refit.

    Coefficients are expressed on the standardized predictor scale; use
    `raw_coefficients` for the original units.
    """

    family: str
    penalty: float
    intercept: float
    feature_names: Tuple[str, ...]
    weights: Tuple[float, ...]
    means: Tuple[float, ...]
    scales: Tuple[float, ...]
    n_iter: int
    n_train: int
    classes: Optional[Tuple[Any, ...]] = None

    @property
    def coefficients(self) -> Dict[str, float]:
        """Mapping of feature name to standardized-scale weight."""
        return dict(zip(self.feature_names, self.weights))

    @property
    def n_nonzero(self) -> int:
        return int(sum(1 for w in self.weights if w != 0.0))

    def raw_coefficients(self) -> Tuple[float, Dict[str, float]]:
        """Return (intercept, weights) on the original predictor scale."""
        w = np.asarray(self.weights, dtype=float)
        mu = np.asarray(self.means, dtype=float)
        sd = np.asarray(self.scales, dtype=float)
        raw = w / sd if w.size else w
        intercept = float(self.intercept - np.sum(raw * mu))
        return intercept, dict(zip(self.feature_names, raw.tolist()))

    def decision_function(self, rows: TabularDataset) -> np.ndarray:
        """Linear predictor for `rows` using the stored training statistics."""
        X = rows.X(list(self.feature_names))
        if not self.feature_names:
            return np.full(rows.n_rows, self.intercept, dtype=float)
        X_std = (X - np.asarray(self.means)) / np.asarray(self.scales)
        return X_std @ np.asarray(self.weights) + self.intercept

    def predict_proba(self, rows: TabularDataset) -> np.ndarray:
        """Probability of the positive class (binomial fits only)."""
        if self.family != BINOMIAL:
            raise ValueError("predict_proba is only defined for binomial fits")
        return 1.0 / (1.0 + np.exp(-self.decision_function(rows)))

    def predict(self, rows: TabularDataset) -> np.ndarray:
        """Predicted target values (regression) or class labels."""
        if self.family == BINOMIAL:
            if self.classes is None:
                raise ValueError("binomial fit has no recorded classes")
            positive = self.predict_proba(rows) >= 0.5
            return np.where(positive, self.classes[1], self.classes[0])
        return self.decision_function(rows)


def fit_lasso(
    train: TabularDataset,
    penalty: float,
    max_iter: int = DEFAULT_MAX_ITER,
    tol: float = DEFAULT_TOL,
) -> FitResult:
    """Fit a lasso regression on `train` with the given L1 penalty.

    Minimizes ``mean((y - Xb - b0)^2) + penalty * sum(|b|)`` on predictors
    standardized with the training rows' own means and standard deviations.
    scikit-learn's `Lasso` halves the squared loss, so it is run with
    ``alpha = penalty / 2``.

    Raises:
        FitConvergenceError: If coordinate descent hits `max_iter`
    """
    _check_penalty(penalty)
    X, y, scaler = _standardized(train, dtype=float)

    model = Lasso(alpha=penalty / 2.0, max_iter=max_iter, tol=tol)
    model.fit(X, y)
    n_iter = int(model.n_iter_)
    if n_iter >= max_iter:
        raise FitConvergenceError(
            f"lasso did not converge within {max_iter} iterations "
            f"(penalty={penalty})",
            point=penalty,
            n_iter=n_iter,
        )

    return FitResult(
        family=GAUSSIAN,
        penalty=float(penalty),
        intercept=float(model.intercept_),
        feature_names=tuple(train.feature_names),
        weights=tuple(float(w) for w in np.ravel(model.coef_)),
        means=tuple(float(m) for m in scaler.mean_),
        scales=tuple(float(s) for s in scaler.scale_),
        n_iter=n_iter,
        n_train=train.n_rows,
    )


def fit_lasso_logistic(
    train: TabularDataset,
    penalty: float,
    max_iter: int = DEFAULT_MAX_ITER,
    tol: float = DEFAULT_TOL,
) -> FitResult:
    """Fit an L1-penalized logistic regression for a binary target.

    Minimizes ``mean(log_loss) + penalty * sum(|b|)``, which maps onto
    scikit-learn's parameterisation as ``C = 1 / (n * penalty)``.

    Raises:
        DatasetError: If the target does not hold exactly two classes
        FitConvergenceError: If the solver hits `max_iter`
    """
    _check_penalty(penalty)
    X, y, scaler = _standardized(train, dtype=None)
    classes = np.unique(y)
    if classes.size != 2:
        raise DatasetError(
            f"binary target required, found {classes.size} class(es)"
        )

    model = LogisticRegression(
        penalty="l1",
        solver="saga",
        C=1.0 / (train.n_rows * penalty),
        max_iter=max_iter,
        tol=tol,
    )
    model.fit(X, y)
    n_iter = int(np.max(model.n_iter_))
    if n_iter >= max_iter:
        raise FitConvergenceError(
            f"logistic lasso did not converge within {max_iter} iterations "
            f"(penalty={penalty})",
            point=penalty,
            n_iter=n_iter,
        )

    return FitResult(
        family=BINOMIAL,
        penalty=float(penalty),
        intercept=float(model.intercept_[0]),
        feature_names=tuple(train.feature_names),
        weights=tuple(float(w) for w in model.coef_[0]),
        means=tuple(float(m) for m in scaler.mean_),
        scales=tuple(float(s) for s in scaler.scale_),
        n_iter=n_iter,
        n_train=train.n_rows,
        classes=tuple(_to_python(c) for c in model.classes_),
    )


def make_fit_fn(
    family: str = GAUSSIAN,
    max_iter: int = DEFAULT_MAX_ITER,
    tol: float = DEFAULT_TOL,
) -> FitFn:
    """Return a picklable fit function for the requested model family."""
    if family == GAUSSIAN:
        return partial(fit_lasso, max_iter=max_iter, tol=tol)
    if family == BINOMIAL:
        return partial(fit_lasso_logistic, max_iter=max_iter, tol=tol)
    raise ValueError(f"Unknown model family: {family}")


def _check_penalty(penalty: float) -> None:
    if not np.isfinite(penalty) or penalty <= 0:
        raise ValueError(f"penalty must be a positive float, got {penalty}")


def _standardized(
    train: TabularDataset, dtype: Any
) -> Tuple[np.ndarray, np.ndarray, StandardScaler]:
    X = train.X()
    if X.shape[1] == 0:
        raise DatasetError("training rows have no feature columns")
    if np.isnan(X).any():
        raise DatasetError(
            "training rows contain missing feature values; "
            "add an imputation step to the recipe"
        )
    scaler = StandardScaler().fit(X)
    return scaler.transform(X), train.y(dtype=dtype), scaler


def _to_python(value: Any) -> Any:
    return value.item() if isinstance(value, np.generic) else value
