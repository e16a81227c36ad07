"""Neural-network classifier adapter and network builders."""

from confpred.model.builders import MLP, Linear, builder_from_config
from confpred.model.classifier import ConformalNNClassifier

__all__ = [
    "MLP",
    "Linear",
    "builder_from_config",
    "ConformalNNClassifier",
]
