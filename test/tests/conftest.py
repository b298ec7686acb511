"""Shared pytest fixtures for penalized_cv tests."""

import numpy as np
import polars as pl
import pytest

from penalized_cv.wrangle.dataset import TabularDataset


# Data fixtures - small synthetic datasets

BETA = np.array([3.0, -2.0, 1.5, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.5])


@pytest.fixture
def linear_dataset():
    """100 rows, 10 numeric features and a linear target."""
    rng = np.random.default_rng(0)
    X = rng.normal(size=(100, 10))
    y = X @ BETA + 0.5 * rng.normal(size=100)
    return TabularDataset.from_numpy(X, y)


@pytest.fixture
def binary_dataset():
    """200 rows with a binary target of prevalence exactly 0.3."""
    rng = np.random.default_rng(1)
    X = rng.normal(size=(200, 5))
    y = np.zeros(200, dtype=int)
    # the positive class sits on high x0 values, 60 of them
    y[np.argsort(-X[:, 0] + 0.5 * rng.normal(size=200))[:60]] = 1
    return TabularDataset.from_numpy(X, y.tolist())


@pytest.fixture
def mixed_dataset():
    """Numeric features with gaps, a categorical column and a constant."""
    rng = np.random.default_rng(2)
    n = 120
    x0 = rng.normal(size=n)
    x1 = rng.normal(size=n)
    region = rng.choice(["east", "north", "south"], size=n)
    effect = {"east": 0.0, "north": 2.0, "south": -1.0}
    y = 2.0 * x0 - x1 + np.array([effect[r] for r in region])
    y = y + 0.3 * rng.normal(size=n)

    x0_list = x0.tolist()
    for i in range(0, n, 17):
        x0_list[i] = None

    frame = pl.DataFrame(
        {
            "x0": pl.Series("x0", x0_list, dtype=pl.Float64),
            "x1": x1,
            "region": region.tolist(),
            "const": [1.0] * n,
            "outcome": y,
        }
    )
    return TabularDataset(frame, target="outcome")


@pytest.fixture
def small_frame():
    """Tiny frame with explicit sample ids."""
    return pl.DataFrame(
        {
            "sample": ["s1", "s2", "s3", "s4", "s5"],
            "f1": [1.0, 2.0, 3.0, 4.0, 5.0],
            "f2": [0.5, 0.1, 0.4, 0.3, 0.2],
            "target": [2.0, 4.0, 6.0, 8.0, 10.0],
        }
    )
