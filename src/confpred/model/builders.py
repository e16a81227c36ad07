"""Network builders.

A builder is a callable ``builder(n_input, n_output) -> nn.Module`` that
returns the body of a classifier, producing unnormalized class scores. The
classifier appends its finaliser (softmax by default) to turn those scores
into probabilities.
"""

from typing import Callable, Sequence

import torch.nn as nn


class Linear:
    """Single affine layer, i.e. multinomial logistic regression."""

    def __call__(self, n_input: int, n_output: int) -> nn.Module:
        return nn.Linear(n_input, n_output)

    def __repr__(self) -> str:
        return "Linear()"


class MLP:
    """Fully connected network with configurable hidden layers.

    Args:
        hidden: Width of each hidden layer.
        activation: Activation module class placed after each hidden layer.
        dropout: Dropout probability after each activation (0 disables).
    """

    def __init__(
        self,
        hidden: Sequence[int] = (32, 32, 32),
        activation: Callable[[], nn.Module] = nn.ReLU,
        dropout: float = 0.0,
    ):
        if any(int(h) < 1 for h in hidden):
            raise ValueError(f"hidden layer widths must be >= 1, got {tuple(hidden)}")
        if not 0 <= dropout < 1:
            raise ValueError(f"dropout must be in [0,1), got {dropout}")

        self.hidden = tuple(int(h) for h in hidden)
        self.activation = activation
        self.dropout = dropout

    def __call__(self, n_input: int, n_output: int) -> nn.Module:
        layers: list[nn.Module] = []
        width = n_input
        for h in self.hidden:
            layers.append(nn.Linear(width, h))
            layers.append(self.activation())
            if self.dropout > 0:
                layers.append(nn.Dropout(self.dropout))
            width = h
        layers.append(nn.Linear(width, n_output))
        return nn.Sequential(*layers)

    def __repr__(self) -> str:
        return f"MLP(hidden={self.hidden}, activation={self.activation.__name__}, dropout={self.dropout})"


ACTIVATIONS = {
    "relu": nn.ReLU,
    "tanh": nn.Tanh,
    "sigmoid": nn.Sigmoid,
    "gelu": nn.GELU,
}


def builder_from_config(model_cfg: dict) -> Callable[[int, int], nn.Module]:
    """Build a network builder from the ``model`` section of a run config."""
    kind = model_cfg.get("builder", "mlp")
    if kind == "linear":
        return Linear()
    if kind != "mlp":
        raise ValueError(f"Unknown builder: {kind}. Available: ['linear', 'mlp']")

    activation = model_cfg.get("activation", "relu")
    if activation not in ACTIVATIONS:
        raise ValueError(f"Unknown activation: {activation}. Available: {sorted(ACTIVATIONS)}")

    return MLP(
        hidden=model_cfg.get("hidden", (32, 32, 32)),
        activation=ACTIVATIONS[activation],
        dropout=float(model_cfg.get("dropout", 0.0)),
    )
