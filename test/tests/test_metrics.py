import math

import numpy as np
import pytest

from penalized_cv.core.config import Metric
from penalized_cv.train.metrics import (
    accuracy,
    auc,
    mae,
    make_score_fn,
    rmse,
    rsq,
)
from penalized_cv.train.models import fit_lasso, fit_lasso_logistic


def test_regression_metrics(linear_dataset):
    fit = fit_lasso(linear_dataset, 0.01)
    residual = linear_dataset.y() - fit.predict(linear_dataset)

    assert rmse(fit, linear_dataset) == pytest.approx(
        np.sqrt(np.mean(residual**2))
    )
    assert mae(fit, linear_dataset) == pytest.approx(
        np.mean(np.abs(residual))
    )
    assert 0.9 < rsq(fit, linear_dataset) <= 1.0


def test_rsq_is_nan_for_constant_predictions(linear_dataset):
    fit = fit_lasso(linear_dataset, 1e6)
    assert math.isnan(rsq(fit, linear_dataset))


def test_classification_metrics(binary_dataset):
    fit = fit_lasso_logistic(binary_dataset, 0.01)

    assert 0.7 < accuracy(fit, binary_dataset) <= 1.0
    assert 0.8 < auc(fit, binary_dataset) <= 1.0


def test_auc_requires_binomial_fit(linear_dataset):
    fit = fit_lasso(linear_dataset, 0.1)
    with pytest.raises(ValueError):
        auc(fit, linear_dataset)


def test_make_score_fn():
    assert make_score_fn(Metric.RMSE) is rmse
    assert make_score_fn("MAE") is mae
    assert make_score_fn("auc") is auc
    with pytest.raises(ValueError):
        make_score_fn("logloss")
