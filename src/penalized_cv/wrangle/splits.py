"""Split management for train/test and cross-validation."""

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from penalized_cv.core.errors import (
    ERR_FOLD_COUNT,
    ERR_TRAIN_FRACTION,
    DatasetError,
    InvalidFoldCountError,
    InvalidFractionError,
)
from penalized_cv.wrangle.dataset import TabularDataset

logger = logging.getLogger(__name__)

BINNING_METHODS = ("quantile", "width")


@dataclass(frozen=True)
class Split:
    """Disjoint train/test partition of a dataset."""

    train: TabularDataset
    test: TabularDataset
    seed: int
    strata_field: Optional[str] = None


@dataclass(frozen=True)
class Fold:
    """One cross-validation fold: a validation subset and its complement."""

    index: int
    train: TabularDataset
    validation: TabularDataset

    @property
    def validation_ids(self) -> List[Any]:
        return self.validation.ids


def split(
    dataset: TabularDataset,
    train_fraction: float,
    seed: int,
    strata_field: Optional[str] = None,
    n_bins: int = 4,
    binning: str = "quantile",
) -> Split:
    """Partition `dataset` into train and test subsets.

    Rows are shuffled with `seed`. Without strata the first
    ``round(n * train_fraction)`` shuffled rows form the training subset.
    With strata every stratum contributes its share of training rows; the
    per-stratum quotas are allocated by largest remainder so the global
    training size is still ``round(n * train_fraction)``.

    Args:
        dataset: Dataset to partition
        train_fraction: Fraction of rows for the training subset, in (0, 1)
        seed: Random seed for reproducibility
        strata_field: Optional column to stratify on
        n_bins: Number of bins for continuous strata
        binning: "quantile" or "width" binning for continuous strata

    Returns:
        Split with new train and test datasets

    Raises:
        InvalidFractionError: If `train_fraction` is outside (0, 1)
    """
    if not 0.0 < float(train_fraction) < 1.0:
        raise InvalidFractionError(ERR_TRAIN_FRACTION.format(train_fraction))
    n_rows = dataset.n_rows
    if n_rows < 2:
        raise DatasetError("At least two rows are required to split a dataset")

    rng = np.random.default_rng(seed)
    order = rng.permutation(n_rows)
    strata = _strata_labels(dataset, strata_field, n_bins, binning)
    strata = _merge_small_strata(strata, min_size=2)

    n_train = int(math.floor(n_rows * train_fraction + 0.5))
    n_train = min(max(n_train, 1), n_rows - 1)

    # shuffled row positions per stratum, strata in sorted order
    members: Dict[Any, List[int]] = {}
    for pos in order:
        members.setdefault(strata[pos], []).append(int(pos))
    keys = sorted(members, key=_stratum_order)
    quotas = _allocate(
        [len(members[k]) for k in keys], train_fraction, n_train
    )

    train_pos: List[int] = []
    for key, quota in zip(keys, quotas):
        train_pos.extend(members[key][:quota])
    train_set = set(train_pos)
    test_pos = [p for p in range(n_rows) if p not in train_set]
    train_pos = sorted(train_set)

    ids = dataset.ids
    result = Split(
        train=dataset.subset([ids[p] for p in train_pos]),
        test=dataset.subset([ids[p] for p in test_pos]),
        seed=seed,
        strata_field=strata_field,
    )
    logger.info(
        "Split %d rows into %d train / %d test (seed=%s, strata=%s)",
        n_rows,
        result.train.n_rows,
        result.test.n_rows,
        seed,
        strata_field,
    )
    return result


def make_folds(
    train_dataset: TabularDataset,
    k: int,
    seed: int,
    strata_field: Optional[str] = None,
    n_bins: int = 4,
    binning: str = "quantile",
) -> List[Fold]:
    """Partition `train_dataset` into `k` cross-validation folds.

    Rows are shuffled with `seed` and dealt round-robin to folds inside each
    stratum. The rotation carries over from one stratum to the next, so fold
    sizes never differ by more than one row. Strata smaller than `k` are
    merged into an adjacent stratum before dealing.

    Args:
        train_dataset: Training subset to partition
        k: Number of folds (2 <= k <= n_rows)
        seed: Random seed for reproducibility
        strata_field: Optional column to stratify on
        n_bins: Number of bins for continuous strata
        binning: "quantile" or "width" binning for continuous strata

    Returns:
        k folds ordered by index

    Raises:
        InvalidFoldCountError: If k < 2 or k exceeds the number of rows
    """
    n_rows = train_dataset.n_rows
    if int(k) != k or k < 2 or k > n_rows:
        raise InvalidFoldCountError(ERR_FOLD_COUNT.format(n_rows, k))
    k = int(k)

    rng = np.random.default_rng(seed)
    order = rng.permutation(n_rows)
    strata = _strata_labels(train_dataset, strata_field, n_bins, binning)
    strata = _merge_small_strata(strata, min_size=k)

    members: Dict[Any, List[int]] = {}
    for pos in order:
        members.setdefault(strata[pos], []).append(int(pos))

    assignment = np.empty(n_rows, dtype=int)
    offset = 0
    for key in sorted(members, key=_stratum_order):
        for i, pos in enumerate(members[key]):
            assignment[pos] = (offset + i) % k
        offset = (offset + len(members[key])) % k

    ids = train_dataset.ids
    folds: List[Fold] = []
    for fold_idx in range(k):
        in_fold = assignment == fold_idx
        folds.append(
            Fold(
                index=fold_idx,
                train=train_dataset.subset(
                    [ids[p] for p in np.flatnonzero(~in_fold)]
                ),
                validation=train_dataset.subset(
                    [ids[p] for p in np.flatnonzero(in_fold)]
                ),
            )
        )
    logger.info(
        "Created %d folds over %d rows (seed=%s, strata=%s)",
        k,
        n_rows,
        seed,
        strata_field,
    )
    return folds


# ----- internal helpers -----


def _strata_labels(
    dataset: TabularDataset,
    strata_field: Optional[str],
    n_bins: int,
    binning: str,
) -> List[Any]:
    """Return one stratum label per row (row order).

    Discrete columns keep their own values so strata sort in value order;
    continuous columns are replaced by integer bin numbers.
    """
    if strata_field is None:
        return [0] * dataset.n_rows
    if strata_field not in dataset.frame.columns:
        raise DatasetError(f"Strata field '{strata_field}' not found")
    if binning not in BINNING_METHODS:
        raise ValueError(
            f"binning must be one of {BINNING_METHODS}, got '{binning}'"
        )

    column = dataset.frame[strata_field]
    if not dataset.is_continuous(strata_field):
        return column.to_list()

    values = column.to_numpy().astype(float)
    finite = values[np.isfinite(values)]
    if finite.size == 0 or n_bins <= 1:
        return [0] * dataset.n_rows

    if binning == "quantile":
        edges = np.quantile(finite, np.linspace(0.0, 1.0, n_bins + 1))
    else:
        edges = np.linspace(finite.min(), finite.max(), n_bins + 1)
    inner = np.unique(edges[1:-1])
    bins = np.searchsorted(inner, values, side="right")
    # missing values get their own stratum after the last bin
    bins[~np.isfinite(values)] = len(inner) + 1
    return [int(b) for b in bins]


def _stratum_order(label: Any) -> Tuple[bool, Any]:
    """Sort key for stratum labels: natural value order, missing last."""
    return (label is None, label if label is not None else 0)


def _merge_small_strata(strata: List[Any], min_size: int) -> List[Any]:
    """Merge strata with fewer than `min_size` rows into an adjacent one.

    Strata are ordered by label; a small stratum is folded into its
    predecessor, or into its successor when it is the first one. Merging
    repeats until every stratum is large enough or a single one remains.
    """
    counts: Dict[Any, int] = {}
    for s in strata:
        counts[s] = counts.get(s, 0) + 1
    mapping = {s: s for s in counts}
    keys = sorted(counts, key=_stratum_order)

    while len(keys) > 1:
        small = [key for key in keys if counts[key] < min_size]
        if not small:
            break
        key = small[0]
        idx = keys.index(key)
        target = keys[idx - 1] if idx > 0 else keys[idx + 1]
        logger.warning(
            "Stratum %r has %d row(s) (< %d); merging into %r",
            key,
            counts[key],
            min_size,
            target,
        )
        counts[target] += counts.pop(key)
        for original, merged in mapping.items():
            if merged == key:
                mapping[original] = target
        keys.remove(key)

    return [mapping[s] for s in strata]


def _allocate(sizes: List[int], fraction: float, total: int) -> List[int]:
    """Allocate `total` rows across strata proportionally to `sizes`.

    Uses floor quotas plus largest-remainder rounding; ties go to the
    earlier stratum. Quotas never exceed the stratum size.
    """
    raw = [size * fraction for size in sizes]
    quotas = [min(int(math.floor(r)), s) for r, s in zip(raw, sizes)]
    remainder = total - sum(quotas)
    ranked: List[Tuple[float, int]] = sorted(
        ((r - math.floor(r), i) for i, r in enumerate(raw)),
        key=lambda item: (-item[0], item[1]),
    )
    while remainder > 0:
        progressed = False
        for _, i in ranked:
            if remainder == 0:
                break
            if quotas[i] < sizes[i]:
                quotas[i] += 1
                remainder -= 1
                progressed = True
        if not progressed:
            break
    while remainder < 0:
        for i in sorted(range(len(quotas)), key=lambda j: -quotas[j]):
            if remainder == 0:
                break
            if quotas[i] > 0:
                quotas[i] -= 1
                remainder += 1
    return quotas
