"""Shared fixtures for confpred tests."""

import numpy as np
import pytest
from sklearn.datasets import make_blobs


class FixedProbaClassifier:
    """Classifier whose features are its own predicted probabilities.

    Makes nonconformity scores and regions fully predictable in tests.
    """

    def __init__(self, classes=("a", "b", "c")):
        self.classes_ = np.asarray(classes)
        self.n_fit_calls = 0

    def fit(self, X, y):
        self.n_fit_calls += 1
        return self

    def predict_proba(self, X):
        return np.asarray(X, dtype=float)


@pytest.fixture
def proba_model():
    return FixedProbaClassifier()


@pytest.fixture
def calibration_probs():
    """Probabilities and labels with known hinge scores 0.1 .. 1.0."""
    rng = np.random.default_rng(0)
    true_probs = np.linspace(0.9, 0.0, 10)
    probs = np.zeros((10, 3))
    labels = rng.integers(0, 3, size=10)
    for i, (p, label) in enumerate(zip(true_probs, labels)):
        others = [c for c in range(3) if c != label]
        probs[i, label] = p
        probs[i, others[0]] = (1 - p) / 2
        probs[i, others[1]] = (1 - p) / 2
    return probs, np.array(["a", "b", "c"])[labels]


@pytest.fixture
def blobs():
    """Three well separated Gaussian blobs."""
    X, y = make_blobs(
        n_samples=300,
        centers=3,
        n_features=4,
        cluster_std=0.8,
        random_state=0,
    )
    return X.astype(np.float32), y
