from __future__ import annotations

import logging
import math
from typing import Any, Callable, Dict, Mapping, Optional, Union

import numpy as np
from scipy.stats import pearsonr
from sklearn.metrics import (
    accuracy_score,
    mean_absolute_error,
    mean_squared_error,
    r2_score,
    roc_auc_score,
)

from penalized_cv.core.config import Objective
from penalized_cv.core.errors import DatasetError, NoValidGridPointsError
from penalized_cv.train.grid import HyperparameterGrid
from penalized_cv.train.metrics import ScoreFn
from penalized_cv.train.models import BINOMIAL, FitFn
from penalized_cv.train.results import (
    GridPointScore,
    HoldoutEvaluation,
    SelectedModel,
    SweepResult,
)
from penalized_cv.wrangle.dataset import TabularDataset

logger = logging.getLogger(__name__)

Scores = Union[SweepResult, Mapping[float, GridPointScore]]
Probe = Callable[[float], int]


class ModelSelector:
    """Pick the best penalty, refit it and evaluate it once on the test set.

    The selector only ever looks at cross-validation aggregates when
    choosing a penalty. The held-out test rows enter in `evaluate`, after
    the final model exists, and are checked for overlap with the rows the
    model was refit on.

    input:
        - objective: "minimize" for error metrics, "maximize" for scores
        - tie_tolerance: relative tolerance under which two means are tied
    """

    def __init__(
        self,
        objective: Union[Objective, str] = Objective.MINIMIZE,
        tie_tolerance: float = 1e-9,
    ) -> None:
        self.objective = Objective(objective)
        self.tie_tolerance = tie_tolerance
        self._last_scores: Dict[float, GridPointScore] = {}

    def select(
        self,
        scores: Scores,
        grid: HyperparameterGrid,
        probe: Optional[Probe] = None,
    ) -> float:
        """Return the grid point with the best aggregated mean.

        Ties are broken by the fewest non-zero coefficients reported by
        `probe` (a refit of the tied penalty), then by grid order. Without
        a probe the fold fits' mean non-zero count stands in for it.

        Raises:
            NoValidGridPointsError: If no grid point has a score
        """
        score_map = _score_map(scores)
        candidates = [p for p in grid if p in score_map]
        if not candidates:
            raise NoValidGridPointsError(
                {p: "no aggregated score" for p in grid}
            )
        self._last_scores = score_map

        sign = 1.0 if self.objective is Objective.MINIMIZE else -1.0
        best_value = min(sign * score_map[p].mean for p in candidates)
        tied = [
            p
            for p in candidates
            if math.isclose(
                sign * score_map[p].mean,
                best_value,
                rel_tol=self.tie_tolerance,
                abs_tol=1e-12,
            )
        ]

        chosen = tied[0]
        if len(tied) > 1:
            sparsity = {
                p: self._sparsity(p, score_map[p], probe) for p in tied
            }
            fewest = min(sparsity.values())
            chosen = next(p for p in tied if sparsity[p] == fewest)
            logger.info(
                "Broke a %d-way tie on mean score using sparsity: %s",
                len(tied),
                sparsity,
            )

        logger.info(
            "Selected penalty=%g (mean=%.6g, objective=%s)",
            chosen,
            score_map[chosen].mean,
            self.objective.value,
        )
        return chosen

    def finalize(
        self,
        train_dataset: TabularDataset,
        chosen_point: float,
        fit_fn: FitFn,
        cv_score: Optional[GridPointScore] = None,
    ) -> SelectedModel:
        """Refit on the entire training subset with `chosen_point`."""
        if cv_score is None:
            cv_score = self._last_scores.get(chosen_point)
        fit = fit_fn(train_dataset, chosen_point)
        logger.info(
            "Refit penalty=%g on %d training rows (%d non-zero coefficients)",
            chosen_point,
            train_dataset.n_rows,
            fit.n_nonzero,
        )
        return SelectedModel(
            fit=fit,
            point=float(chosen_point),
            cv_score=cv_score,
            train_ids=frozenset(train_dataset.ids),
            train_id_scope=train_dataset.id_scope,
        )

    def evaluate(
        self,
        selected_model: SelectedModel,
        test_dataset: TabularDataset,
        score_fn: ScoreFn,
    ) -> float:
        """Score the final model once on the held-out test subset."""
        self._check_disjoint(selected_model, test_dataset)
        value = float(score_fn(selected_model.fit, test_dataset))
        logger.info(
            "Held-out score for penalty=%g on %d rows: %.6g",
            selected_model.point,
            test_dataset.n_rows,
            value,
        )
        return value

    def evaluate_report(
        self, selected_model: SelectedModel, test_dataset: TabularDataset
    ) -> HoldoutEvaluation:
        """Held-out metrics plus predictions and targets for reporting."""
        self._check_disjoint(selected_model, test_dataset)
        fit = selected_model.fit
        predictions = fit.predict(test_dataset)
        if fit.family == BINOMIAL:
            targets = test_dataset.y(dtype=None)
            metrics = _classification_metrics(
                targets, predictions, fit.predict_proba(test_dataset), fit
            )
        else:
            targets = test_dataset.y()
            metrics = _regression_metrics(targets, predictions)

        metrics.update(
            {
                "penalty": selected_model.point,
                "n_test": test_dataset.n_rows,
                "n_nonzero": fit.n_nonzero,
            }
        )
        return HoldoutEvaluation(
            metrics=metrics,
            model=selected_model,
            predictions=np.asarray(predictions),
            targets=np.asarray(targets),
            feature_names=list(fit.feature_names),
        )

    def _sparsity(
        self, point: float, score: GridPointScore, probe: Optional[Probe]
    ) -> float:
        if probe is not None:
            return float(probe(point))
        if score.mean_nonzero is not None:
            return score.mean_nonzero
        # larger penalties are the stronger regularisation
        return -point

    @staticmethod
    def _check_disjoint(
        selected_model: SelectedModel, test_dataset: TabularDataset
    ) -> None:
        # generated row numbers from unrelated datasets are not the same rows
        if selected_model.train_id_scope != test_dataset.id_scope:
            return
        overlap = selected_model.train_ids.intersection(test_dataset.ids)
        if overlap:
            raise DatasetError(
                f"{len(overlap)} test row(s) were used to fit the model"
            )


def refit_probe(train_dataset: TabularDataset, fit_fn: FitFn) -> Probe:
    """Probe returning the non-zero coefficient count of a full refit."""

    def probe(point: float) -> int:
        return fit_fn(train_dataset, point).n_nonzero

    return probe


def select(
    scores: Scores,
    grid: HyperparameterGrid,
    objective: Union[Objective, str] = Objective.MINIMIZE,
    probe: Optional[Probe] = None,
) -> float:
    return ModelSelector(objective).select(scores, grid, probe=probe)


def finalize(
    train_dataset: TabularDataset,
    chosen_point: float,
    fit_fn: FitFn,
    scores: Optional[Scores] = None,
) -> SelectedModel:
    cv_score = _score_map(scores).get(chosen_point) if scores else None
    return ModelSelector().finalize(
        train_dataset, chosen_point, fit_fn, cv_score=cv_score
    )


def evaluate(
    selected_model: SelectedModel,
    test_dataset: TabularDataset,
    score_fn: ScoreFn,
) -> float:
    return ModelSelector().evaluate(selected_model, test_dataset, score_fn)


def _score_map(scores: Scores) -> Dict[float, GridPointScore]:
    if isinstance(scores, SweepResult):
        return dict(scores.scores)
    return {float(p): s for p, s in scores.items()}


def _regression_metrics(
    y_true: np.ndarray, y_pred: np.ndarray
) -> Dict[str, Optional[float]]:
    """Compute RMSE/MAE/R² and Pearson correlation for the test set."""
    metrics: Dict[str, Optional[float]] = {}
    mse = mean_squared_error(y_true, y_pred)
    metrics["rmse"] = float(np.sqrt(mse))
    metrics["mse"] = float(mse)
    metrics["mae"] = float(mean_absolute_error(y_true, y_pred))
    metrics["r2"] = (
        float(r2_score(y_true, y_pred)) if len(y_true) > 1 else None
    )

    if len(y_true) > 1 and np.ptp(y_true) > 0 and np.ptp(y_pred) > 0:
        pcc, pval = pearsonr(y_true, y_pred)
        metrics["pcc"], metrics["pval"] = float(pcc), float(pval)
    else:
        metrics["pcc"] = None
        metrics["pval"] = None
    return metrics


def _classification_metrics(
    y_true: np.ndarray, y_pred: np.ndarray, proba: np.ndarray, fit: Any
) -> Dict[str, Optional[float]]:
    metrics: Dict[str, Optional[float]] = {
        "accuracy": float(accuracy_score(y_true, y_pred))
    }
    positive = y_true == fit.classes[1]
    if positive.all() or not positive.any():
        metrics["auc"] = None
    else:
        metrics["auc"] = float(roc_auc_score(positive, proba))
    return metrics
