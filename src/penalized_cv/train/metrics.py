"""Score functions mapping a fitted model and held-out rows to a float."""

from typing import Callable, Dict, Union

import numpy as np
from scipy.stats import pearsonr
from sklearn.metrics import (
    accuracy_score,
    mean_absolute_error,
    mean_squared_error,
    roc_auc_score,
)

from penalized_cv.core.config import Metric
from penalized_cv.train.models import BINOMIAL, FittedModel
from penalized_cv.wrangle.dataset import TabularDataset

ScoreFn = Callable[[FittedModel, TabularDataset], float]


def rmse(fit: FittedModel, rows: TabularDataset) -> float:
    """Root mean squared error between targets and predictions."""
    return float(np.sqrt(mean_squared_error(rows.y(), fit.predict(rows))))


def mae(fit: FittedModel, rows: TabularDataset) -> float:
    return float(mean_absolute_error(rows.y(), fit.predict(rows)))


def rsq(fit: FittedModel, rows: TabularDataset) -> float:
    """Squared Pearson correlation between targets and predictions.

    Returns NaN when either side is constant.
    """
    y_true = rows.y()
    y_pred = fit.predict(rows)
    if np.ptp(y_true) == 0 or np.ptp(y_pred) == 0:
        return float("nan")
    r, _ = pearsonr(y_true, y_pred)
    return float(r) ** 2


def accuracy(fit: FittedModel, rows: TabularDataset) -> float:
    return float(accuracy_score(rows.y(dtype=None), fit.predict(rows)))


def auc(fit: FittedModel, rows: TabularDataset) -> float:
    """Area under the ROC curve of the positive-class probability."""
    if fit.family != BINOMIAL or fit.classes is None:
        raise ValueError("auc requires a binomial fit")
    y_true = rows.y(dtype=None) == fit.classes[1]
    return float(roc_auc_score(y_true, fit.predict_proba(rows)))


METRIC_FUNCTIONS: Dict[Metric, ScoreFn] = {
    Metric.RMSE: rmse,
    Metric.MAE: mae,
    Metric.RSQ: rsq,
    Metric.ACCURACY: accuracy,
    Metric.AUC: auc,
}


def make_score_fn(metric: Union[Metric, str]) -> ScoreFn:
    """Look up the score function for `metric`."""
    if not isinstance(metric, Metric):
        metric = Metric(str(metric).lower())
    return METRIC_FUNCTIONS[metric]
