"""Nonconformity score functions for conformal classification.

A score measures how strange a label looks for an input given the model's
class-probability vector. Higher means less conforming. Every score here
maps probabilities to [0, 1], and inverting it at threshold q̂ gives a
prediction region: the labels whose score does not exceed q̂.
"""

from abc import ABC, abstractmethod

import numpy as np


# Tolerance for probabilities drifting outside [0, 1] from float error
_PROB_TOL = 1e-6


def check_probabilities(probs: np.ndarray) -> np.ndarray:
    """Validate a (n_samples, n_classes) probability matrix.

    Values within 1e-6 of [0, 1] are clipped, anything further out raises.

    Args:
        probs: Class probabilities, one row per example.

    Returns:
        Float array of shape (n_samples, n_classes).
    """
    probs = np.asarray(probs, dtype=float)
    if probs.ndim == 1:
        probs = probs.reshape(1, -1)
    if probs.ndim != 2:
        raise ValueError(f"probs must be 2-D (n_samples, n_classes), got shape {probs.shape}")

    if probs.size and not np.all((probs >= 0) & (probs <= 1)):
        lo, hi = probs.min(), probs.max()
        if lo < -_PROB_TOL or hi > 1 + _PROB_TOL:
            raise ValueError(
                f"probabilities must be in [0,1], got range [{lo:.10f}, {hi:.10f}]"
            )
        probs = np.clip(probs, 0.0, 1.0)

    return probs


def check_label_indices(y_idx: np.ndarray, n_samples: int, n_classes: int) -> np.ndarray:
    """Validate encoded labels against a probability matrix."""
    y_idx = np.asarray(y_idx)
    if y_idx.ndim != 1 or len(y_idx) != n_samples:
        raise ValueError(
            f"Length mismatch: labels ({y_idx.shape}) vs probabilities ({n_samples} rows)"
        )
    if not np.issubdtype(y_idx.dtype, np.integer):
        raise ValueError(f"label indices must be integers, got dtype {y_idx.dtype}")
    if len(y_idx) and (y_idx.min() < 0 or y_idx.max() >= n_classes):
        raise ValueError(f"label indices must be in [0, {n_classes}), got [{y_idx.min()}, {y_idx.max()}]")
    return y_idx


class NonconformityScore(ABC):
    """Abstract base class for classification nonconformity scores."""

    name: str = "base"

    @abstractmethod
    def compute_all(self, probs: np.ndarray) -> np.ndarray:
        """Score every candidate label.

        Args:
            probs: Class probabilities, shape (n_samples, n_classes).

        Returns:
            Scores, shape (n_samples, n_classes).
        """

    def compute(self, probs: np.ndarray, y_idx: np.ndarray) -> np.ndarray:
        """Score the true label of each example.

        Args:
            probs: Class probabilities, shape (n_samples, n_classes).
            y_idx: Encoded true labels, shape (n_samples,).

        Returns:
            Scores, shape (n_samples,).
        """
        probs = check_probabilities(probs)
        y_idx = check_label_indices(y_idx, probs.shape[0], probs.shape[1])
        all_scores = self.compute_all(probs)
        return all_scores[np.arange(len(y_idx)), y_idx]

    def region_mask(self, probs: np.ndarray, q_hat: float) -> np.ndarray:
        """Boolean membership of each label at threshold ``q_hat``."""
        return self.compute_all(probs) <= q_hat


class HingeScore(NonconformityScore):
    """Hinge score: s(x, y) = 1 - p̂(y | x).

    Label l enters the region iff 1 - p̂(l | x) <= q̂. Regions may be empty
    when the model is unsure about every class at a tight threshold.
    """

    name = "hinge"

    def compute_all(self, probs: np.ndarray) -> np.ndarray:
        probs = check_probabilities(probs)
        return 1.0 - probs


class AdaptiveScore(NonconformityScore):
    """Adaptive prediction sets (APS) score.

    Classes are sorted by decreasing probability; the score of a label is
    the cumulative probability mass up to and including it. The top label
    is always kept, so regions are never empty.
    """

    name = "adaptive"

    def compute_all(self, probs: np.ndarray) -> np.ndarray:
        probs = check_probabilities(probs)
        order = np.argsort(-probs, axis=1, kind="stable")
        sorted_probs = np.take_along_axis(probs, order, axis=1)
        cumulative = np.minimum(np.cumsum(sorted_probs, axis=1), 1.0)

        scores = np.empty_like(probs)
        np.put_along_axis(scores, order, cumulative, axis=1)
        return scores

    def region_mask(self, probs: np.ndarray, q_hat: float) -> np.ndarray:
        probs = check_probabilities(probs)
        mask = self.compute_all(probs) <= q_hat
        if mask.size:
            top = np.argmax(probs, axis=1)
            mask[np.arange(len(top)), top] = True
        return mask


SCORE_FUNCTIONS = {
    HingeScore.name: HingeScore,
    AdaptiveScore.name: AdaptiveScore,
}


def get_score_function(name: str | NonconformityScore) -> NonconformityScore:
    """Resolve a score function from its name or pass an instance through."""
    if isinstance(name, NonconformityScore):
        return name
    if name not in SCORE_FUNCTIONS:
        raise ValueError(
            f"Unknown score function: {name}. Available: {sorted(SCORE_FUNCTIONS)}"
        )
    return SCORE_FUNCTIONS[name]()
