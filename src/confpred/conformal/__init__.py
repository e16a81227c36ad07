"""Conformal prediction for classifiers.

Nonconformity scoring, split-conformal quantile calibration and
prediction-region construction on top of any probabilistic classifier.
"""

from confpred.conformal.conformal_predictor import (
    ConformalClassifier,
    NaiveClassifier,
    SimpleInductiveClassifier,
    AdaptiveInductiveClassifier,
    PredictionRegion,
    available_methods,
    conformal_model,
    conformal_quantile,
)
from confpred.conformal.nonconformity import (
    NonconformityScore,
    HingeScore,
    AdaptiveScore,
    get_score_function,
)

__all__ = [
    "ConformalClassifier",
    "NaiveClassifier",
    "SimpleInductiveClassifier",
    "AdaptiveInductiveClassifier",
    "PredictionRegion",
    "available_methods",
    "conformal_model",
    "conformal_quantile",
    "NonconformityScore",
    "HingeScore",
    "AdaptiveScore",
    "get_score_function",
]
