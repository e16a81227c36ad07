"""Conformal classifiers: calibration and prediction-region construction.

Given a calibration set of n nonconformity scores and a target coverage
1 - α, the threshold q̂ is the ⌈(n+1)(1-α)⌉-th smallest score. For a new
input x, the prediction region keeps every label whose score is <= q̂, so

    P(y ∈ C(x)) >= 1 - α

for exchangeable data. The wrapped model only has to follow the
scikit-learn probabilistic classifier contract: ``fit(X, y)``,
``predict_proba(X)`` and ``classes_``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union
import math

import numpy as np
from sklearn.model_selection import train_test_split

from confpred.conformal.nonconformity import (
    NonconformityScore,
    check_probabilities,
    get_score_function,
)
from confpred.utils.io import load_pickle, save_pickle
from confpred.utils.logging import get_logger
from confpred.utils.seed import get_rng


logger = get_logger(__name__)


def conformal_quantile(scores: np.ndarray, coverage: float, warn: bool = True) -> float:
    """Split-conformal threshold q̂.

    Returns the k-th smallest score with k = ⌈(n+1) * coverage⌉, i.e. the
    ⌈(n+1)(1-α)⌉/n empirical quantile. When k > n the calibration set is too
    small for a finite threshold at this coverage; the largest score is used
    and a warning is logged.

    Args:
        scores: Calibration nonconformity scores, shape (n,).
        coverage: Target coverage 1 - α in (0, 1).
        warn: Log a warning when the threshold has to be clamped.

    Returns:
        Threshold q̂.
    """
    if not 0 < coverage < 1:
        raise ValueError(f"coverage must be in (0,1), got {coverage}")

    scores = np.asarray(scores, dtype=float).ravel()
    n = len(scores)
    if n == 0:
        raise ValueError("Cannot compute a conformal quantile from zero calibration scores")

    # Guard against (n+1)*coverage landing a hair above an integer
    k = int(math.ceil((n + 1) * coverage - 1e-9))
    if k > n:
        if warn:
            logger.warning(
                f"Calibration set of {n} scores is too small for coverage {coverage:.3f} "
                f"(needs at least {min_calibration_size(coverage)}); using the maximum score"
            )
        k = n

    return float(np.sort(scores)[k - 1])


def min_calibration_size(coverage: float) -> int:
    """Smallest n with ⌈(n+1) * coverage⌉ <= n, i.e. a finite threshold."""
    return int(math.ceil(coverage / (1 - coverage) - 1e-9))


@dataclass
class PredictionRegion:
    """Conformal prediction region for a single example."""

    # Candidate labels, in model class order
    labels: np.ndarray

    # Predicted probability per candidate label
    probabilities: np.ndarray

    # Membership flag per candidate label
    included: np.ndarray

    # Threshold used to build the region
    q_hat: float

    @property
    def members(self) -> list:
        """Labels inside the region."""
        return [label for label, keep in zip(self.labels.tolist(), self.included) if keep]

    @property
    def size(self) -> int:
        return int(np.sum(self.included))

    @property
    def is_empty(self) -> bool:
        return self.size == 0

    @property
    def is_singleton(self) -> bool:
        return self.size == 1

    def __contains__(self, label: Any) -> bool:
        return label in self.members

    def __iter__(self):
        return iter(self.members)

    def as_dict(self) -> dict:
        """Label -> probability if the label is in the region, else None."""
        return {
            label: (float(p) if keep else None)
            for label, p, keep in zip(self.labels.tolist(), self.probabilities, self.included)
        }

    def to_dict(self) -> dict:
        return {
            "members": self.members,
            "size": self.size,
            "q_hat": self.q_hat,
            "probabilities": self.as_dict(),
        }


class ConformalClassifier(ABC):
    """Base class for conformal wrappers around probabilistic classifiers.

    Attributes:
        scores: Calibration scores keyed by category. ``"calibration"`` holds
            one true-label score per calibration example, ``"all"`` holds the
            (n, n_classes) scores of every candidate label.
        q_hat_: Threshold computed at the last calibration.
        labels_: Labels seen by ``fit``. Labels the fitted model never saw
            get a probability-0 column. None for a prefit model.
    """

    method: str = "base"
    default_score: str = "hinge"

    def __init__(
        self,
        model: Any,
        coverage: float = 0.95,
        train_ratio: float = 0.5,
        score_fn: Optional[Union[str, NonconformityScore]] = None,
        random_state: Optional[int] = None,
    ):
        """Initialize conformal classifier.

        Args:
            model: Probabilistic classifier with ``fit``/``predict_proba``/``classes_``.
            coverage: Target marginal coverage 1 - α in (0, 1).
            train_ratio: Fraction of data used for fitting in inductive
                methods; the rest is used for calibration.
            score_fn: Nonconformity score name or instance.
            random_state: Seed for the train/calibration split.
        """
        if not 0 < coverage < 1:
            raise ValueError(f"coverage must be in (0,1), got {coverage}")
        if not 0 < train_ratio < 1:
            raise ValueError(f"train_ratio must be in (0,1), got {train_ratio}")
        if not (hasattr(model, "fit") and hasattr(model, "predict_proba")):
            raise ValueError(
                f"model must implement fit() and predict_proba(), got {type(model).__name__}"
            )

        self.model = model
        self.coverage = coverage
        self.train_ratio = train_ratio
        self.score_fn = get_score_function(score_fn or self.default_score)
        self.random_state = random_state

        self.scores: Optional[dict[str, np.ndarray]] = None
        self.q_hat_: Optional[float] = None
        self.labels_: Optional[np.ndarray] = None

    @property
    def alpha(self) -> float:
        """Miscoverage rate α = 1 - coverage."""
        return 1.0 - self.coverage

    @property
    def classes_(self) -> np.ndarray:
        if self.labels_ is not None:
            return self.labels_
        return np.asarray(self.model.classes_)

    @property
    def is_calibrated(self) -> bool:
        return self.scores is not None

    @abstractmethod
    def fit(self, X: Any, y: Any) -> "ConformalClassifier":
        """Fit the underlying model and calibrate."""

    def predict_proba(self, X: Any) -> np.ndarray:
        """Underlying model's class probabilities, one column per ``classes_``."""
        probs = check_probabilities(self.model.predict_proba(X))
        if self.labels_ is None:
            return probs

        model_classes = np.asarray(self.model.classes_).tolist()
        labels = self.labels_.tolist()
        if model_classes == labels:
            return probs

        lookup = {label: i for i, label in enumerate(labels)}
        full = np.zeros((probs.shape[0], len(labels)))
        full[:, [lookup[c] for c in model_classes]] = probs
        return full

    def encode_labels(self, y: Any) -> np.ndarray:
        """Map raw labels to column indices of ``predict_proba``."""
        lookup = {label: i for i, label in enumerate(self.classes_.tolist())}
        y = np.asarray(y).ravel()
        try:
            return np.array([lookup[label] for label in y.tolist()], dtype=np.intp)
        except KeyError as e:
            raise ValueError(f"Label {e.args[0]!r} not among model classes {list(lookup)}") from e

    def score(self, X: Any, y: Any) -> tuple[np.ndarray, np.ndarray]:
        """Nonconformity scores for labelled data.

        Args:
            X: Features.
            y: True labels.

        Returns:
            cal_scores: True-label scores, shape (n,).
            all_scores: Scores of every candidate label, shape (n, n_classes).
        """
        probs = self.predict_proba(X)
        y_idx = self.encode_labels(y)
        cal_scores = self.score_fn.compute(probs, y_idx)
        all_scores = self.score_fn.compute_all(probs)
        return cal_scores, all_scores

    def calibrate(self, X: Any, y: Any) -> "ConformalClassifier":
        """Compute calibration scores with the already fitted model."""
        cal_scores, all_scores = self.score(X, y)
        self.scores = {
            "calibration": cal_scores,
            "all": all_scores,
        }
        self.q_hat_ = self.quantile()

        logger.info(
            f"Calibrated {self.method} conformal classifier: "
            f"n_cal={len(cal_scores)}, coverage={self.coverage:.3f}, q_hat={self.q_hat_:.4f}"
        )
        return self

    def quantile(self, coverage: Optional[float] = None) -> float:
        """Threshold q̂ from the stored calibration scores."""
        if self.scores is None:
            raise RuntimeError("Conformal classifier not calibrated. Call fit() or calibrate() first.")
        return conformal_quantile(
            self.scores["calibration"],
            self.coverage if coverage is None else coverage,
        )

    def predict_sets(self, X: Any, q_hat: Optional[float] = None) -> np.ndarray:
        """Boolean region membership, shape (n_samples, n_classes)."""
        if q_hat is None:
            q_hat = self.quantile()
        return self.score_fn.region_mask(self.predict_proba(X), q_hat)

    def prediction_region(self, X: Any, q_hat: Optional[float] = None) -> list[PredictionRegion]:
        """Build one prediction region per row of ``X``.

        Args:
            X: Features.
            q_hat: Threshold override; defaults to the calibrated quantile
                at the current coverage.

        Returns:
            List of PredictionRegion.
        """
        if q_hat is None:
            q_hat = self.quantile()

        probs = self.predict_proba(X)
        mask = self.score_fn.region_mask(probs, q_hat)
        labels = self.classes_

        return [
            PredictionRegion(
                labels=labels,
                probabilities=probs[i],
                included=mask[i],
                q_hat=float(q_hat),
            )
            for i in range(len(probs))
        ]

    def predict(self, X: Any) -> list[PredictionRegion]:
        """Prediction regions at the configured coverage."""
        return self.prediction_region(X)

    def get_info(self) -> dict[str, Any]:
        info = {
            "method": self.method,
            "score_fn": self.score_fn.name,
            "coverage": self.coverage,
            "train_ratio": self.train_ratio,
            "is_calibrated": self.is_calibrated,
        }
        if self.scores is not None:
            info["n_cal"] = len(self.scores["calibration"])
            info["q_hat"] = self.quantile()
        return info

    def save(self, path: Union[str, Path]) -> None:
        """Pickle the wrapper together with its fitted model."""
        if self.scores is None:
            raise RuntimeError("Conformal classifier not calibrated. Call fit() or calibrate() first.")
        save_pickle(self, path)
        logger.info(f"Saved {self.method} conformal classifier to {path}")

    @classmethod
    def load(cls, path: Union[str, Path]) -> "ConformalClassifier":
        obj = load_pickle(path)
        if not isinstance(obj, ConformalClassifier):
            raise ValueError(f"{path} does not contain a conformal classifier")
        return obj


class NaiveClassifier(ConformalClassifier):
    """Naive transductive conformal classifier.

    Fits the model on all data and computes hinge scores on that same data.
    No data is held out, so scores are optimistic and coverage is not
    guaranteed; it is the simplest baseline. An already fitted model can be
    wrapped and calibrated directly with ``calibrate``.
    """

    method = "naive"

    def fit(self, X: Any, y: Any) -> "NaiveClassifier":
        self.model.fit(X, y)
        return self.calibrate(X, y)


class SimpleInductiveClassifier(ConformalClassifier):
    """Split (inductive) conformal classifier with hinge scores.

    A seeded shuffle, stratified by label where possible, sends
    ``train_ratio`` of the data to model fitting and the remainder to
    calibration.
    """

    method = "simple_inductive"

    def split(self, n_samples: int, y: Optional[Any] = None) -> tuple[np.ndarray, np.ndarray]:
        """Seeded (train_idx, calibration_idx) partition of ``n_samples``.

        With labels ``y`` the split is stratified whenever every class has at
        least two examples and both parts can hold one of each; otherwise it
        is a plain shuffle.
        """
        if n_samples < 2:
            raise ValueError(f"Need at least 2 samples to split, got {n_samples}")

        rng = get_rng(self.random_state)
        n_train = int(round(self.train_ratio * n_samples))
        n_train = min(max(n_train, 1), n_samples - 1)

        if y is not None:
            _, counts = np.unique(np.asarray(y).ravel(), return_counts=True)
            n_classes = len(counts)
            if counts.min() >= 2 and min(n_train, n_samples - n_train) >= n_classes:
                train_idx, cal_idx = train_test_split(
                    np.arange(n_samples),
                    train_size=n_train,
                    stratify=y,
                    random_state=int(rng.integers(2**31 - 1)),
                )
                return train_idx, cal_idx

        perm = rng.permutation(n_samples)
        return perm[:n_train], perm[n_train:]

    def fit(self, X: Any, y: Any) -> "SimpleInductiveClassifier":
        X = _as_indexable(X)
        y = np.asarray(y).ravel()
        if len(X) != len(y):
            raise ValueError(f"Length mismatch: X ({len(X)}) vs y ({len(y)})")

        train_idx, cal_idx = self.split(len(y), y)
        logger.debug(f"Split {len(y)} samples into {len(train_idx)} train / {len(cal_idx)} calibration")

        self.model.fit(_take(X, train_idx), y[train_idx])

        # Classes that only landed in the calibration part get zero probability
        self.labels_ = np.union1d(np.unique(y), np.asarray(self.model.classes_))
        missing = np.setdiff1d(self.labels_, np.asarray(self.model.classes_))
        if len(missing):
            logger.warning(f"Classes {missing.tolist()} missing from the training part; scored as probability 0")

        return self.calibrate(_take(X, cal_idx), y[cal_idx])


class AdaptiveInductiveClassifier(SimpleInductiveClassifier):
    """Split conformal classifier with adaptive (APS) scores.

    Region size adapts to how spread out the predicted distribution is, and
    the most likely label is always included.
    """

    method = "adaptive_inductive"
    default_score = "adaptive"


def _as_indexable(X: Any) -> Any:
    if hasattr(X, "iloc"):
        return X
    return np.asarray(X)


def _take(X: Any, idx: np.ndarray) -> Any:
    if hasattr(X, "iloc"):
        return X.iloc[idx]
    return X[idx]


CONFORMAL_METHODS: dict[str, type[ConformalClassifier]] = {
    NaiveClassifier.method: NaiveClassifier,
    SimpleInductiveClassifier.method: SimpleInductiveClassifier,
    AdaptiveInductiveClassifier.method: AdaptiveInductiveClassifier,
}


def available_methods() -> list[str]:
    """Names accepted by ``conformal_model``."""
    return sorted(CONFORMAL_METHODS)


def conformal_model(
    model: Any,
    method: str = "simple_inductive",
    coverage: float = 0.95,
    **kwargs: Any,
) -> ConformalClassifier:
    """Wrap ``model`` in the conformal classifier named by ``method``.

    Args:
        model: Probabilistic classifier.
        method: One of ``available_methods()``.
        coverage: Target coverage.
        **kwargs: Passed to the conformal classifier (train_ratio, score_fn, ...).

    Returns:
        Unfitted conformal classifier.
    """
    if method not in CONFORMAL_METHODS:
        raise ValueError(f"Unknown conformal method: {method}. Available: {available_methods()}")
    return CONFORMAL_METHODS[method](model, coverage=coverage, **kwargs)
