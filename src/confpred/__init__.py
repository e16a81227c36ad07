"""
confpred: Conformal Prediction for Probabilistic Classifiers
=============================================================

Turns class-probability predictions into prediction regions, sets of
plausible labels, with a guaranteed marginal coverage level:

    P(y ∈ C(x)) >= 1 - α

Core Features:
- Nonconformity scoring (hinge 1 - p̂(y|x), adaptive/APS)
- Split-conformal quantile calibration
- Naive transductive, simple inductive and adaptive inductive classifiers
  around any scikit-learn style probabilistic classifier

Conformal Training:
- ConformalNNClassifier, a PyTorch classifier following the scikit-learn
  estimator contract
- Training loop that calibrates on part of each batch and adds a smooth
  prediction-set size loss to the cross-entropy
"""

__version__ = "0.1.0"
__author__ = "confpred developers"

from confpred.conformal import (
    ConformalClassifier,
    NaiveClassifier,
    SimpleInductiveClassifier,
    AdaptiveInductiveClassifier,
    PredictionRegion,
    HingeScore,
    AdaptiveScore,
    available_methods,
    conformal_model,
    conformal_quantile,
)
from confpred.model import ConformalNNClassifier, MLP, Linear
from confpred.train import ConformalTrainer, SmoothSizeLoss
from confpred.eval import evaluate_conformal, empirical_coverage, average_set_size

__all__ = [
    "__version__",
    "ConformalClassifier",
    "NaiveClassifier",
    "SimpleInductiveClassifier",
    "AdaptiveInductiveClassifier",
    "PredictionRegion",
    "HingeScore",
    "AdaptiveScore",
    "available_methods",
    "conformal_model",
    "conformal_quantile",
    "ConformalNNClassifier",
    "MLP",
    "Linear",
    "ConformalTrainer",
    "SmoothSizeLoss",
    "evaluate_conformal",
    "empirical_coverage",
    "average_set_size",
]
