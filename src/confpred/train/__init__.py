"""Conformal training for neural classifiers."""

from confpred.train.losses import (
    ConformalTrainingLoss,
    ElasticNetPenalty,
    SmoothSizeLoss,
    soft_assignment,
)
from confpred.train.trainer import ConformalTrainer, EarlyStopping

__all__ = [
    "ConformalTrainingLoss",
    "ElasticNetPenalty",
    "SmoothSizeLoss",
    "soft_assignment",
    "ConformalTrainer",
    "EarlyStopping",
]
