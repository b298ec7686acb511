import numpy as np
import polars as pl
import pytest

from penalized_cv.core.errors import (
    DatasetError,
    InvalidFoldCountError,
    InvalidFractionError,
)
from penalized_cv.wrangle.dataset import TabularDataset
from penalized_cv.wrangle.splits import (
    _merge_small_strata,
    make_folds,
    split,
)


@pytest.fixture
def grouped_dataset():
    """20 rows whose 'group' column has one stratum smaller than 5 rows."""
    frame = pl.DataFrame(
        {
            "x": np.linspace(0.0, 1.0, 20),
            "group": ["a"] * 10 + ["b"] * 8 + ["c"] * 2,
            "y": np.arange(20, dtype=float),
        }
    )
    return TabularDataset(frame, target="y")


def test_split_sizes_and_disjointness(linear_dataset):
    result = split(linear_dataset, train_fraction=0.8, seed=42)

    train_ids = set(result.train.ids)
    test_ids = set(result.test.ids)
    assert len(train_ids) == 80
    assert len(test_ids) == 20
    assert not train_ids & test_ids
    assert train_ids | test_ids == set(linear_dataset.ids)


def test_split_rounds_training_size():
    ds = TabularDataset.from_numpy(np.zeros((7, 1)), list(range(7)))
    result = split(ds, train_fraction=0.5, seed=0)

    # round(3.5) rounds half up
    assert result.train.n_rows == 4
    assert result.test.n_rows == 3


def test_split_is_deterministic(linear_dataset):
    first = split(linear_dataset, 0.8, seed=7)
    second = split(linear_dataset, 0.8, seed=7)
    other = split(linear_dataset, 0.8, seed=8)

    assert first.train.ids == second.train.ids
    assert first.test.ids == second.test.ids
    assert set(first.train.ids) != set(other.train.ids)


def test_split_does_not_mutate_input(linear_dataset):
    before = linear_dataset.frame.clone()
    split(linear_dataset, 0.8, seed=1)

    assert linear_dataset.frame.equals(before)


@pytest.mark.parametrize("fraction", [0.0, 1.0, -0.2, 1.5])
def test_invalid_fraction_raises(linear_dataset, fraction):
    with pytest.raises(InvalidFractionError):
        split(linear_dataset, fraction, seed=0)


def test_split_needs_two_rows():
    ds = TabularDataset.from_numpy(np.zeros((1, 1)), [1.0])
    with pytest.raises(DatasetError):
        split(ds, 0.5, seed=0)


@pytest.mark.parametrize("seed", [0, 1, 2, 3])
def test_stratified_split_preserves_prevalence(binary_dataset, seed):
    """Class prevalence in each subset stays within 5 points of overall."""
    result = split(binary_dataset, 0.8, seed=seed, strata_field="target")

    overall = binary_dataset.y().mean()
    assert abs(result.train.y().mean() - overall) <= 0.05
    assert abs(result.test.y().mean() - overall) <= 0.05
    assert result.train.n_rows == 160


def test_stratified_split_on_continuous_target(linear_dataset):
    result = split(
        linear_dataset, 0.8, seed=3, strata_field="target", n_bins=4
    )
    assert result.train.n_rows == 80

    # every quartile of the target contributes ~80% of its rows
    edges = np.quantile(linear_dataset.y(), [0.25, 0.5, 0.75])
    train_bins = np.searchsorted(edges, result.train.y(), side="right")
    counts = np.bincount(train_bins, minlength=4)
    assert all(19 <= c <= 21 for c in counts)


def test_unknown_strata_field_raises(linear_dataset):
    with pytest.raises(DatasetError):
        split(linear_dataset, 0.8, seed=0, strata_field="missing")


def test_folds_are_disjoint_and_exhaustive(linear_dataset):
    train = split(linear_dataset, 0.8, seed=42).train
    folds = make_folds(train, k=5, seed=1)

    assert len(folds) == 5
    assert [f.index for f in folds] == [0, 1, 2, 3, 4]
    seen = []
    for fold in folds:
        assert fold.validation.n_rows == 16
        assert fold.train.n_rows == 64
        assert not set(fold.train.ids) & set(fold.validation_ids)
        seen.extend(fold.validation_ids)
    assert sorted(seen) == sorted(train.ids)


def test_fold_sizes_differ_by_at_most_one(linear_dataset):
    folds = make_folds(linear_dataset, k=7, seed=0)
    sizes = [f.validation.n_rows for f in folds]

    assert sum(sizes) == 100
    assert max(sizes) - min(sizes) <= 1


def test_folds_are_deterministic(linear_dataset):
    a = make_folds(linear_dataset, k=5, seed=11)
    b = make_folds(linear_dataset, k=5, seed=11)

    assert [f.validation_ids for f in a] == [f.validation_ids for f in b]


@pytest.mark.parametrize("k", [0, 1, 101])
def test_invalid_fold_count_raises(linear_dataset, k):
    with pytest.raises(InvalidFoldCountError):
        make_folds(linear_dataset, k=k, seed=0)


def test_leave_one_out_folds():
    ds = TabularDataset.from_numpy(np.eye(4), [1.0, 2.0, 3.0, 4.0])
    folds = make_folds(ds, k=4, seed=0)

    assert all(f.validation.n_rows == 1 for f in folds)


def test_small_strata_are_merged(grouped_dataset):
    """A stratum smaller than k is folded into its neighbour."""
    folds = make_folds(grouped_dataset, k=5, seed=2, strata_field="group")

    sizes = [f.validation.n_rows for f in folds]
    assert sizes == [4, 4, 4, 4, 4]
    seen = [i for f in folds for i in f.validation_ids]
    assert sorted(seen) == sorted(grouped_dataset.ids)


def test_stratified_folds_balance_classes(binary_dataset):
    folds = make_folds(binary_dataset, k=5, seed=0, strata_field="target")

    for fold in folds:
        assert fold.validation.y().sum() == 12


def test_integer_strata_merge_into_numeric_neighbour():
    strata = [1] * 6 + [2] * 2 + [10] * 6

    merged = _merge_small_strata(strata, min_size=3)

    assert merged == [1] * 8 + [10] * 6


def test_missing_strata_values_sort_last():
    strata = [None] * 2 + [3] * 4 + [20] * 4

    merged = _merge_small_strata(strata, min_size=3)

    assert merged == [20] * 2 + [3] * 4 + [20] * 4


def test_integer_strata_folds_follow_value_order():
    """Grade 2 joins grade 1, so the grade-10 rows are dealt on their own."""
    frame = pl.DataFrame(
        {
            "x": np.linspace(0.0, 1.0, 14),
            "grade": [1] * 6 + [2] * 2 + [10] * 6,
            "y": np.arange(14, dtype=float),
        }
    )
    ds = TabularDataset(frame, target="y")

    for seed in range(5):
        folds = make_folds(ds, k=3, seed=seed, strata_field="grade")
        for fold in folds:
            grades = fold.validation.frame["grade"].to_list()
            assert grades.count(10) == 2


def test_split_with_missing_integer_strata():
    frame = pl.DataFrame(
        {
            "x": np.linspace(0.0, 1.0, 12),
            "grade": pl.Series([None, 1, 2] * 4, dtype=pl.Int64),
            "y": np.arange(12, dtype=float),
        }
    )
    ds = TabularDataset(frame, target="y")

    result = split(ds, 0.75, seed=0, strata_field="grade")

    assert result.train.n_rows == 9
    assert result.test.n_rows == 3
    assert result.test.frame["grade"].null_count() == 1
