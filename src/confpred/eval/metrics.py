"""Evaluation metrics for conformal classifiers.

Validity:
- Empirical coverage: fraction of examples whose true label is in its region
- Size-stratified coverage: worst coverage across groups of equal set size

Efficiency:
- Average set size, singleton and empty fractions
"""

from dataclasses import dataclass
from typing import Any, Optional, Sequence, Union

import numpy as np

from confpred.conformal.conformal_predictor import ConformalClassifier, PredictionRegion
from confpred.utils.logging import get_logger


logger = get_logger(__name__)

RegionsOrSets = Union[Sequence[PredictionRegion], np.ndarray]


@dataclass
class ConformalMetrics:
    """Container for conformal evaluation results."""

    n_samples: int
    target_coverage: float

    # Validity
    coverage: float
    size_stratified_coverage: float
    coverage_by_size: dict[int, float]

    # Efficiency
    avg_set_size: float
    singleton_fraction: float
    empty_fraction: float

    @property
    def covers_target(self) -> bool:
        return self.coverage >= self.target_coverage

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "n_samples": self.n_samples,
            "target_coverage": self.target_coverage,
            "coverage": self.coverage,
            "size_stratified_coverage": self.size_stratified_coverage,
            "coverage_by_size": self.coverage_by_size,
            "avg_set_size": self.avg_set_size,
            "singleton_fraction": self.singleton_fraction,
            "empty_fraction": self.empty_fraction,
        }


def _is_regions(regions: RegionsOrSets) -> bool:
    return len(regions) > 0 and isinstance(regions[0], PredictionRegion)


def covered(
    regions: RegionsOrSets,
    y: Any,
    classes: Optional[Sequence] = None,
) -> np.ndarray:
    """Per-example coverage indicator.

    Args:
        regions: PredictionRegion list, or a boolean (n, n_classes) membership matrix.
        y: True labels. For a membership matrix these are column indices
            unless ``classes`` is given.
        classes: Labels of the matrix columns.

    Returns:
        Boolean array, shape (n,).
    """
    y = np.asarray(y).ravel()
    if len(regions) != len(y):
        raise ValueError(f"Length mismatch: regions ({len(regions)}) vs y ({len(y)})")
    if len(y) == 0:
        return np.zeros(0, dtype=bool)

    if _is_regions(regions):
        return np.array([label in region for region, label in zip(regions, y.tolist())], dtype=bool)

    sets = np.asarray(regions, dtype=bool)
    if classes is not None:
        lookup = {label: i for i, label in enumerate(list(classes))}
        y = np.array([lookup[label] for label in y.tolist()], dtype=np.intp)
    return sets[np.arange(len(y)), y.astype(np.intp)]


def set_size(regions: RegionsOrSets) -> np.ndarray:
    """Size of each prediction region."""
    if len(regions) == 0:
        return np.zeros(0, dtype=int)
    if _is_regions(regions):
        return np.array([region.size for region in regions], dtype=int)
    return np.asarray(regions, dtype=bool).sum(axis=1).astype(int)


def empirical_coverage(
    regions: RegionsOrSets,
    y: Any,
    classes: Optional[Sequence] = None,
) -> float:
    """Fraction of examples whose true label lies inside its region."""
    hits = covered(regions, y, classes)
    if len(hits) == 0:
        return float("nan")
    return float(hits.mean())


def average_set_size(regions: RegionsOrSets) -> float:
    """Mean region size (inefficiency)."""
    sizes = set_size(regions)
    if len(sizes) == 0:
        return float("nan")
    return float(sizes.mean())


def size_stratified_coverage(
    regions: RegionsOrSets,
    y: Any,
    classes: Optional[Sequence] = None,
) -> tuple[float, dict[int, float]]:
    """Worst coverage across groups of regions with the same size.

    A method can meet marginal coverage while under-covering the examples
    that get small sets; this exposes that.

    Returns:
        min_coverage: Minimum coverage over non-empty size groups.
        coverage_by_size: Coverage per observed set size.
    """
    hits = covered(regions, y, classes)
    sizes = set_size(regions)

    coverage_by_size = {
        int(size): float(hits[sizes == size].mean())
        for size in np.unique(sizes)
    }
    if not coverage_by_size:
        return float("nan"), {}

    return min(coverage_by_size.values()), coverage_by_size


def evaluate_conformal(
    conf_model: ConformalClassifier,
    X: Any,
    y: Any,
) -> ConformalMetrics:
    """Evaluate a calibrated conformal classifier on labelled test data.

    Args:
        conf_model: Calibrated conformal classifier.
        X: Test features.
        y: Test labels.

    Returns:
        ConformalMetrics.
    """
    regions = conf_model.predict(X)
    sizes = set_size(regions)
    ssc, by_size = size_stratified_coverage(regions, y)

    metrics = ConformalMetrics(
        n_samples=len(regions),
        target_coverage=conf_model.coverage,
        coverage=empirical_coverage(regions, y),
        size_stratified_coverage=ssc,
        coverage_by_size=by_size,
        avg_set_size=float(sizes.mean()) if len(sizes) else float("nan"),
        singleton_fraction=float(np.mean(sizes == 1)) if len(sizes) else float("nan"),
        empty_fraction=float(np.mean(sizes == 0)) if len(sizes) else float("nan"),
    )

    logger.info(
        f"Coverage {metrics.coverage:.3f} (target {metrics.target_coverage:.3f}), "
        f"avg set size {metrics.avg_set_size:.2f}, SSC {metrics.size_stratified_coverage:.3f}"
    )
    if metrics.empty_fraction > 0.05:
        logger.warning(f"{metrics.empty_fraction:.1%} of prediction regions are empty")

    return metrics
