import numpy as np
import polars as pl
import pytest

from penalized_cv.core.errors import DatasetError
from penalized_cv.wrangle.dataset import TabularDataset


def test_dataset_basic_accessors(small_frame):
    ds = TabularDataset(small_frame, target="target")

    assert ds.n_rows == 5
    assert len(ds) == 5
    assert ds.id_column == "sample"
    assert ds.feature_names == ["f1", "f2"]
    assert ds.ids == ["s1", "s2", "s3", "s4", "s5"]
    np.testing.assert_allclose(ds.y(), [2.0, 4.0, 6.0, 8.0, 10.0])
    assert ds.X().shape == (5, 2)
    assert "n_rows=5" in repr(ds)


def test_missing_target_column_raises(small_frame):
    with pytest.raises(DatasetError):
        TabularDataset(small_frame, target="nope")


def test_target_cannot_be_id_column(small_frame):
    with pytest.raises(DatasetError):
        TabularDataset(small_frame, target="sample")


def test_duplicate_ids_raise():
    frame = pl.DataFrame({"sample": ["a", "a"], "x": [1.0, 2.0], "y": [0, 1]})
    with pytest.raises(DatasetError, match="duplicates"):
        TabularDataset(frame, target="y")


def test_row_ids_generated_when_absent():
    frame = pl.DataFrame({"x": [1.0, 2.0, 3.0], "y": [1.0, 2.0, 3.0]})
    ds = TabularDataset(frame, target="y")

    assert ds.ids == [0, 1, 2]
    assert ds.feature_names == ["x"]


def test_null_targets_are_dropped():
    """Rows with a missing target cannot be scored and are removed."""
    frame = pl.DataFrame(
        {"x": [1.0, 2.0, 3.0, 4.0], "y": [1.0, None, 3.0, None]}
    )
    ds = TabularDataset(frame, target="y")

    assert ds.n_rows == 2
    assert ds.ids == [0, 2]


def test_all_null_targets_raise():
    frame = pl.DataFrame(
        {"x": [1.0, 2.0], "y": pl.Series("y", [None, None], dtype=pl.Float64)}
    )
    with pytest.raises(DatasetError):
        TabularDataset(frame, target="y")


def test_subset_preserves_requested_order(small_frame):
    ds = TabularDataset(small_frame, target="target")
    sub = ds.subset(["s4", "s1"])

    assert sub.ids == ["s4", "s1"]
    np.testing.assert_allclose(sub.y(), [8.0, 2.0])
    # the parent dataset is untouched
    assert ds.n_rows == 5


def test_generated_ids_are_scoped_to_their_source():
    frame = pl.DataFrame({"x": [1.0, 2.0, 3.0], "y": [1.0, 2.0, 3.0]})
    ds = TabularDataset(frame, target="y")
    other = TabularDataset(frame, target="y")

    assert ds.id_scope is not None
    assert ds.id_scope != other.id_scope
    assert ds.subset([2, 0]).id_scope == ds.id_scope
    assert ds.with_frame(ds.frame).id_scope == ds.id_scope


def test_explicit_ids_are_unscoped(small_frame):
    ds = TabularDataset(small_frame, target="target")

    assert ds.id_scope is None
    assert ds.subset(["s2"]).id_scope is None


def test_subset_rejects_bad_ids(small_frame):
    ds = TabularDataset(small_frame, target="target")

    with pytest.raises(DatasetError):
        ds.subset(["s1", "s1"])
    with pytest.raises(DatasetError):
        ds.subset(["s1", "missing"])
    with pytest.raises(DatasetError):
        ds.subset([])


def test_non_numeric_features_rejected():
    frame = pl.DataFrame({"x": ["a", "b"], "y": [1.0, 2.0]})
    ds = TabularDataset(frame, target="y")

    with pytest.raises(DatasetError, match="dummy"):
        ds.X()


def test_from_numpy_default_names():
    X = np.arange(6, dtype=float).reshape(3, 2)
    ds = TabularDataset.from_numpy(X, [1.0, 2.0, 3.0])

    assert ds.feature_names == ["x0", "x1"]
    assert ds.target == "target"
    np.testing.assert_allclose(ds.X(), X)


def test_from_numpy_name_mismatch_raises():
    with pytest.raises(DatasetError):
        TabularDataset.from_numpy(np.zeros((2, 2)), [0, 1], ["only_one"])


def test_from_csv(tmp_path, small_frame):
    path = tmp_path / "data.csv"
    small_frame.write_csv(path)

    ds = TabularDataset.from_csv(path, target="target")
    assert ds.n_rows == 5
    assert ds.ids == ["s1", "s2", "s3", "s4", "s5"]

    with pytest.raises(FileNotFoundError):
        TabularDataset.from_csv(tmp_path / "missing.csv", target="target")


def test_is_continuous(mixed_dataset):
    assert mixed_dataset.is_continuous("x1")
    assert not mixed_dataset.is_continuous("region")
