"""Cross-validated penalty sweeps."""

import logging
import math
from contextlib import nullcontext
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np

from penalized_cv.core.errors import (
    NoValidFoldsError,
    NoValidGridPointsError,
    PenalizedCVError,
)
from penalized_cv.train.grid import HyperparameterGrid
from penalized_cv.train.metrics import ScoreFn
from penalized_cv.train.models import FitFn
from penalized_cv.train.parallel import WorkerPool
from penalized_cv.train.results import (
    FoldFailure,
    GridPointScore,
    ScoreRecord,
    SweepResult,
)
from penalized_cv.wrangle.splits import Fold

logger = logging.getLogger(__name__)

RECOVERABLE_ERRORS = (
    PenalizedCVError,
    ValueError,
    ArithmeticError,
    np.linalg.LinAlgError,
)


@dataclass(frozen=True)
class _PairTask:
    fold: Fold
    point: float
    fit_fn: FitFn
    score_fn: ScoreFn


@dataclass(frozen=True)
class _PairOutcome:
    point: float
    fold: int
    value: Optional[float] = None
    n_nonzero: Optional[int] = None
    error_type: Optional[str] = None
    message: Optional[str] = None


def _run_pair(task: _PairTask) -> _PairOutcome:
    """Fit on the fold's training rows and score on its validation rows."""
    fold = task.fold
    try:
        fit = task.fit_fn(fold.train, task.point)
        value = float(task.score_fn(fit, fold.validation))
    except RECOVERABLE_ERRORS as e:
        return _PairOutcome(
            point=task.point,
            fold=fold.index,
            error_type=type(e).__name__,
            message=str(e),
        )
    if not math.isfinite(value):
        return _PairOutcome(
            point=task.point,
            fold=fold.index,
            error_type="NonFiniteScore",
            message=f"score is {value}",
        )
    return _PairOutcome(
        point=task.point,
        fold=fold.index,
        value=value,
        n_nonzero=getattr(fit, "n_nonzero", None),
    )


class TunedFitter:
    """Fit and score every (fold, penalty) pair and aggregate per penalty.

    Each pair gets its own fit; nothing is shared between pairs except the
    read-only fold datasets, so the pairs may run on any number of
    workers. Outcomes are collected in submission order, which makes the
    aggregate independent of the worker count.

    Failed pairs are logged, recorded on the result and left out of their
    penalty's aggregate. A penalty with no successful fold is excluded
    from the result; a sweep in which every penalty is excluded raises.
    """

    def __init__(
        self,
        fit_fn: FitFn,
        score_fn: ScoreFn,
        pool: Optional[WorkerPool] = None,
        metric: Optional[str] = None,
    ) -> None:
        """Create a fitter.

        Args:
            fit_fn: ``fit_fn(train_rows, penalty) -> FitResult``
            score_fn: ``score_fn(fit_result, validation_rows) -> float``
            pool: Worker pool; defaults to a sequential one
            metric: Name recorded on the SweepResult for reporting
        """
        self.fit_fn = fit_fn
        self.score_fn = score_fn
        self.pool = pool if pool is not None else WorkerPool(worker_count=1)
        self.metric = metric

    def tune(
        self, folds: Sequence[Fold], grid: HyperparameterGrid
    ) -> SweepResult:
        """Run the sweep over `folds` x `grid`.

        Returns:
            SweepResult holding the valid aggregates and the failure report

        Raises:
            ValueError: If `folds` is empty
            NoValidGridPointsError: If no penalty has a successful fold
        """
        folds = list(folds)
        if not folds:
            raise ValueError("tune() requires at least one fold")
        if not isinstance(grid, HyperparameterGrid):
            grid = HyperparameterGrid(grid)

        tasks = [
            _PairTask(fold, point, self.fit_fn, self.score_fn)
            for point in grid
            for fold in folds
        ]
        logger.info(
            "Tuning %d penalties x %d folds (%d fits) with %r",
            len(grid),
            len(folds),
            len(tasks),
            self.pool,
        )
        # a pool already entered by the caller stays open
        scope = nullcontext(self.pool) if self.pool.active else self.pool
        with scope:
            outcomes: List[_PairOutcome] = self.pool.map(_run_pair, tasks)

        return self._aggregate(grid, len(folds), outcomes)

    def _aggregate(
        self,
        grid: HyperparameterGrid,
        n_folds: int,
        outcomes: List[_PairOutcome],
    ) -> SweepResult:
        records: List[ScoreRecord] = []
        failures: List[FoldFailure] = []
        by_point: Dict[float, List[ScoreRecord]] = {p: [] for p in grid}
        failed: Dict[float, int] = {p: 0 for p in grid}

        for out in outcomes:
            if out.value is None:
                error_type = out.error_type or "MissingScore"
                logger.warning(
                    "Fit failed for penalty=%g fold=%d: %s: %s",
                    out.point,
                    out.fold,
                    error_type,
                    out.message,
                )
                failures.append(
                    FoldFailure(
                        point=out.point,
                        fold=out.fold,
                        error_type=error_type,
                        message=out.message or "",
                    )
                )
                failed[out.point] += 1
                continue
            logger.debug(
                "penalty=%g fold=%d score=%.6g", out.point, out.fold, out.value
            )
            record = ScoreRecord(
                point=out.point,
                fold=out.fold,
                value=out.value,
                n_nonzero=out.n_nonzero,
            )
            records.append(record)
            by_point[out.point].append(record)

        scores: Dict[float, GridPointScore] = {}
        excluded: Dict[float, str] = {}
        for point in grid:
            try:
                scores[point] = _aggregate_point(
                    point, by_point[point], failed[point], n_folds
                )
            except NoValidFoldsError as e:
                logger.warning("Excluding penalty=%g: %s", point, e)
                excluded[point] = str(e)

        if not scores:
            raise NoValidGridPointsError(excluded)

        logger.info(
            "Sweep finished: %d valid penalties, %d excluded, %d failed fits",
            len(scores),
            len(excluded),
            len(failures),
        )
        return SweepResult(
            grid=grid,
            scores=scores,
            records=records,
            failures=failures,
            excluded=excluded,
            metric=self.metric,
        )


def _aggregate_point(
    point: float,
    records: List[ScoreRecord],
    n_failed: int,
    n_folds: int,
) -> GridPointScore:
    if not records:
        raise NoValidFoldsError(point, n_folds)
    ordered = sorted(records, key=lambda r: r.fold)
    nonzero = [r.n_nonzero for r in ordered if r.n_nonzero is not None]
    return GridPointScore(
        point=point,
        fold_scores=tuple(r.value for r in ordered),
        folds=tuple(r.fold for r in ordered),
        n_failed=n_failed,
        mean_nonzero=float(np.mean(nonzero)) if nonzero else None,
    )


def tune(
    folds: Sequence[Fold],
    grid: HyperparameterGrid,
    fit_fn: FitFn,
    score_fn: ScoreFn,
    pool: Optional[WorkerPool] = None,
    metric: Optional[str] = None,
) -> SweepResult:
    """Functional shorthand for ``TunedFitter(...).tune(folds, grid)``."""
    return TunedFitter(fit_fn, score_fn, pool=pool, metric=metric).tune(
        folds, grid
    )
