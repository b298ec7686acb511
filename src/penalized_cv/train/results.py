"""Result containers for penalty sweeps and their export helpers.

Typical workflow:

    sweep = tune(folds, grid, fit_fn, score_fn)
    # flush out summary/fold tables and a manifest
    sweep.export("out/sweep")

`export(...)` writes these tabular artifacts side-by-side:
- `results.ndjson`
- `results_summary.csv`
- `results_folds.csv`
- `manifest.json`

Use `SelectedModel.save(path)` for pickling the final refit and
`load_model(path)` to restore it later.
"""

import csv
import gzip
import json
import logging
import math
import pickle
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional, Tuple, Union

import numpy as np
import polars as pl

from penalized_cv.core.config import Objective
from penalized_cv.train.grid import HyperparameterGrid
from penalized_cv.train.models import FittedModel
from penalized_cv.wrangle.dataset import TabularDataset

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoreRecord:
    """Validation score of one penalty on one fold."""

    point: float
    fold: int
    value: float
    n_nonzero: Optional[int] = None


@dataclass(frozen=True)
class FoldFailure:
    """A (penalty, fold) fit or score that raised and was excluded."""

    point: float
    fold: int
    error_type: str
    message: str


@dataclass(frozen=True)
class GridPointScore:
    """Aggregate of the successful fold scores for one penalty.

    `std` is the sample standard deviation (0.0 with a single fold).
    """

    point: float
    fold_scores: Tuple[float, ...]
    folds: Tuple[int, ...]
    n_failed: int = 0
    mean_nonzero: Optional[float] = None

    @property
    def n_folds(self) -> int:
        return len(self.fold_scores)

    @property
    def mean(self) -> float:
        return float(np.mean(self.fold_scores))

    @property
    def std(self) -> float:
        if len(self.fold_scores) < 2:
            return 0.0
        return float(np.std(self.fold_scores, ddof=1))

    @property
    def std_err(self) -> float:
        return self.std / math.sqrt(len(self.fold_scores))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "point": self.point,
            "mean": self.mean,
            "std": self.std,
            "std_err": self.std_err,
            "n_folds": self.n_folds,
            "n_failed": self.n_failed,
            "mean_nonzero": self.mean_nonzero,
            "fold_scores": list(self.fold_scores),
            "folds": list(self.folds),
        }


@dataclass
class SweepResult:
    """Scores of every penalty in a sweep plus a report of what failed.

    Attributes:
        grid: Grid the sweep ran over
        scores: Valid penalties mapped to their aggregate, in grid order
        records: Every successful (penalty, fold) score
        failures: Every (penalty, fold) pair that raised
        excluded: Penalties with no successful fold, mapped to a reason
        metric: Name of the metric the scores measure
    """

    grid: HyperparameterGrid
    scores: Dict[float, GridPointScore]
    records: List[ScoreRecord] = field(default_factory=list)
    failures: List[FoldFailure] = field(default_factory=list)
    excluded: Dict[float, str] = field(default_factory=dict)
    metric: Optional[str] = None

    def __getitem__(self, point: float) -> GridPointScore:
        return self.scores[float(point)]

    def __len__(self) -> int:
        return len(self.scores)

    def ranked(
        self, objective: Union[Objective, str] = Objective.MINIMIZE
    ) -> List[GridPointScore]:
        """Valid penalties ordered best first; ties keep grid order."""
        objective = Objective(objective)
        sign = 1.0 if objective is Objective.MINIMIZE else -1.0
        order = {p: i for i, p in enumerate(self.grid)}
        return sorted(
            self.scores.values(),
            key=lambda s: (sign * s.mean, order.get(s.point, len(order))),
        )

    def report(self) -> Dict[str, Any]:
        """Summary of excluded penalties and failed (penalty, fold) pairs."""
        return {
            "n_points": len(self.grid),
            "n_valid": len(self.scores),
            "excluded": {str(p): r for p, r in self.excluded.items()},
            "failures": [
                {
                    "point": f.point,
                    "fold": f.fold,
                    "error_type": f.error_type,
                    "message": f.message,
                }
                for f in self.failures
            ],
        }

    def to_dataframe(self) -> pl.DataFrame:
        """One row per grid point (excluded points have null scores)."""
        rows = []
        for point in self.grid:
            score = self.scores.get(point)
            rows.append(
                {
                    "point": point,
                    "metric": self.metric,
                    "mean": score.mean if score else None,
                    "std": score.std if score else None,
                    "std_err": score.std_err if score else None,
                    "n_folds": score.n_folds if score else 0,
                    "n_failed": score.n_failed
                    if score
                    else self._failures_for(point),
                    "mean_nonzero": score.mean_nonzero if score else None,
                    "status": "ok" if score else "excluded",
                }
            )
        return pl.DataFrame(
            rows,
            schema={
                "point": pl.Float64,
                "metric": pl.Utf8,
                "mean": pl.Float64,
                "std": pl.Float64,
                "std_err": pl.Float64,
                "n_folds": pl.Int64,
                "n_failed": pl.Int64,
                "mean_nonzero": pl.Float64,
                "status": pl.Utf8,
            },
        )

    def folds_dataframe(self) -> pl.DataFrame:
        """One row per successful (penalty, fold) score."""
        return pl.DataFrame(
            {
                "point": [r.point for r in self.records],
                "fold": [r.fold for r in self.records],
                "value": [r.value for r in self.records],
                "n_nonzero": [r.n_nonzero for r in self.records],
            },
            schema={
                "point": pl.Float64,
                "fold": pl.Int64,
                "value": pl.Float64,
                "n_nonzero": pl.Int64,
            },
        )

    def _failures_for(self, point: float) -> int:
        return sum(1 for f in self.failures if f.point == point)

    def export(self, path: Union[str, Path], indent: int = 2) -> Path:
        """Export sweep tables and a manifest under `path`.

        Generated files in the output directory:
        - `results.ndjson`: one JSON record per grid point
        - `results_summary.csv`: one row per grid point
        - `results_folds.csv`: one row per successful fold score
        - `manifest.json`: export metadata, failure report and inventory
        """
        out_dir = Path(path)
        if out_dir.exists() and out_dir.is_file():
            out_dir = out_dir.parent
        out_dir.mkdir(parents=True, exist_ok=True)

        with (out_dir / "results.ndjson").open("w", encoding="utf-8") as f:
            for point in self.grid:
                score = self.scores.get(point)
                record = (
                    score.to_dict()
                    if score
                    else {"point": point, "excluded": self.excluded[point]}
                )
                record["metric"] = self.metric
                f.write(json.dumps(_serialize_value(record)) + "\n")

        self.to_dataframe().write_csv(out_dir / "results_summary.csv")

        with (out_dir / "results_folds.csv").open(
            "w", encoding="utf-8", newline=""
        ) as f:
            writer = csv.writer(f)
            writer.writerow(["point", "fold", "value", "n_nonzero"])
            for r in self.records:
                writer.writerow([r.point, r.fold, r.value, r.n_nonzero])

        manifest = {
            "version": "1.0",
            "created": datetime.now().isoformat(),
            "metric": self.metric,
            "grid": list(self.grid),
            "files": [
                "results.ndjson",
                "results_summary.csv",
                "results_folds.csv",
            ],
            "report": self.report(),
        }
        (out_dir / "manifest.json").write_text(
            json.dumps(_serialize_value(manifest), indent=indent)
        )
        logger.info("Exported sweep results to %s", out_dir)
        return out_dir


@dataclass(frozen=True)
class SelectedModel:
    """Final refit on the full training subset with the chosen penalty."""

    fit: FittedModel
    point: float
    cv_score: Optional[GridPointScore] = None
    train_ids: FrozenSet[Any] = frozenset()
    train_id_scope: Optional[str] = None

    @property
    def coefficients(self) -> Dict[str, float]:
        return self.fit.coefficients

    @property
    def intercept(self) -> float:
        return self.fit.intercept

    def predict(self, rows: TabularDataset) -> np.ndarray:
        return self.fit.predict(rows)

    def feature_importances(self, drop_zero: bool = False) -> pl.DataFrame:
        """Features ranked by absolute standardized coefficient.

        Returns:
            DataFrame with {feature, coefficient, importance, sign, rank}
        """
        names = list(self.fit.feature_names)
        weights = np.asarray(self.fit.weights, dtype=float)
        df = pl.DataFrame(
            {
                "feature": names,
                "coefficient": weights,
                "importance": np.abs(weights),
            },
            schema={
                "feature": pl.Utf8,
                "coefficient": pl.Float64,
                "importance": pl.Float64,
            },
        )
        if drop_zero:
            df = df.filter(pl.col("importance") > 0)
        df = df.with_columns(
            pl.when(pl.col("coefficient") > 0)
            .then(pl.lit("POS"))
            .when(pl.col("coefficient") < 0)
            .then(pl.lit("NEG"))
            .otherwise(pl.lit("ZERO"))
            .alias("sign")
        )
        df = df.sort(["importance", "feature"], descending=[True, False])
        return df.with_columns(
            pl.int_range(1, pl.len() + 1).alias("rank")
        )

    def save(self, path: Union[str, Path], compress: bool = False) -> None:
        save_model(self, path, compress=compress)


@dataclass
class HoldoutEvaluation:
    """Held-out test results suitable for plotting/reporting.

    `feature_names` stores the model's feature order so downstream export
    utilities can map coefficients to names.
    """

    metrics: Dict[str, Any]
    model: SelectedModel
    predictions: np.ndarray
    targets: np.ndarray
    feature_names: Optional[List[str]] = None


def save_model(
    model: Any, path: Union[str, Path], compress: bool = False
) -> None:
    outp = Path(path)
    outp.parent.mkdir(parents=True, exist_ok=True)
    if compress:
        with gzip.open(str(outp), "wb") as f:
            pickle.dump(model, f, protocol=pickle.HIGHEST_PROTOCOL)
    else:
        with outp.open("wb") as f:
            pickle.dump(model, f, protocol=pickle.HIGHEST_PROTOCOL)


def load_model(path: Union[str, Path]) -> Any:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(p)
    if str(p).endswith(".gz"):
        with gzip.open(str(p), "rb") as f:
            return pickle.load(f)
    with p.open("rb") as f:
        return pickle.load(f)


def _serialize_value(v: Any) -> Any:
    """Make values JSON-friendly.

    numpy scalars/arrays are converted, containers are serialized
    recursively, non-finite floats become None and Paths become strings.
    """
    if isinstance(v, Path):
        return str(v)
    if v is None or isinstance(v, (str, bool)):
        return v
    if isinstance(v, (np.floating, float)):
        return float(v) if math.isfinite(float(v)) else None
    if isinstance(v, (np.integer, int)):
        return int(v)
    if isinstance(v, np.ndarray):
        return [_serialize_value(x) for x in v.tolist()]
    if isinstance(v, dict):
        return {str(k): _serialize_value(x) for k, x in v.items()}
    if isinstance(v, (list, tuple)):
        return [_serialize_value(x) for x in v]
    return str(v)
