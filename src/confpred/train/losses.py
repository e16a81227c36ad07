"""Loss functions for conformal training.

Conformal training adds a differentiable surrogate of prediction-set size
to the usual classification loss:

    L = CE(p̂, y) + penalty(θ) / n_batches + w * mean(Ω)

with soft set membership C_l(x) = sigmoid((q̂ - s_l(x)) / T) over hinge
scores s_l(x) = 1 - p̂(l | x), and size loss Ω(x) = max(0, Σ_l C_l(x) - κ).
q̂ comes from an on-the-fly calibration on part of each batch and is
treated as a constant; gradients flow through the scores.
"""

from typing import Iterable, Optional

import torch
import torch.nn as nn
import torch.nn.functional as F


def soft_assignment(
    scores: torch.Tensor,
    q_hat: float | torch.Tensor,
    temperature: float = 0.1,
) -> torch.Tensor:
    """Smooth label membership sigmoid((q̂ - s) / T).

    Args:
        scores: Nonconformity scores, shape (batch, n_classes).
        q_hat: Calibrated threshold.
        temperature: Sigmoid temperature; smaller is closer to the hard set.

    Returns:
        Membership in (0, 1), shape (batch, n_classes).
    """
    return torch.sigmoid((q_hat - scores) / temperature)


class SmoothSizeLoss(nn.Module):
    """Differentiable prediction-set size penalty.

    Ω = max(0, Σ_l C_l - κ), which is zero for sets no larger than κ.
    """

    def __init__(
        self,
        temperature: float = 0.1,
        kappa: float = 1.0,
        reduction: str = "mean",
    ):
        """Initialize smooth size loss.

        Args:
            temperature: Soft assignment temperature (> 0).
            kappa: Target set size that is not penalized.
            reduction: Reduction method ('mean', 'sum', 'none').
        """
        super().__init__()

        if temperature <= 0:
            raise ValueError(f"temperature must be > 0, got {temperature}")

        self.temperature = temperature
        self.kappa = kappa
        self.reduction = reduction

    def forward(self, probs: torch.Tensor, q_hat: float | torch.Tensor) -> torch.Tensor:
        """Compute size loss.

        Args:
            probs: Predicted probabilities, shape (batch, n_classes).
            q_hat: Threshold from the calibration part of the batch.

        Returns:
            Loss value (or per-example values for reduction='none').
        """
        scores = 1.0 - probs
        membership = soft_assignment(scores, q_hat, self.temperature)
        omega = F.relu(membership.sum(dim=-1) - self.kappa)

        if self.reduction == "mean":
            return omega.mean()
        elif self.reduction == "sum":
            return omega.sum()
        else:
            return omega


class ElasticNetPenalty(nn.Module):
    """Elastic-net weight penalty λ(r·Σ|w| + (1 - r)·Σw²)."""

    def __init__(self, lambda_: float = 0.0, l1_ratio: float = 0.0):
        super().__init__()

        if lambda_ < 0:
            raise ValueError(f"lambda_ must be >= 0, got {lambda_}")
        if not 0 <= l1_ratio <= 1:
            raise ValueError(f"l1_ratio must be in [0,1], got {l1_ratio}")

        self.lambda_ = lambda_
        self.l1_ratio = l1_ratio

    def forward(self, parameters: Iterable[torch.Tensor]) -> torch.Tensor:
        params = [p for p in parameters if p.requires_grad]
        if self.lambda_ == 0 or not params:
            device = params[0].device if params else None
            return torch.zeros((), device=device)

        l1 = sum(p.abs().sum() for p in params)
        l2 = sum(p.pow(2).sum() for p in params)
        return self.lambda_ * (self.l1_ratio * l1 + (1 - self.l1_ratio) * l2)


class ConformalTrainingLoss(nn.Module):
    """Cross-entropy + weight penalty + smooth set-size loss."""

    def __init__(
        self,
        size_weight: float = 1.0,
        temperature: float = 0.1,
        kappa: float = 1.0,
        lambda_: float = 0.0,
        l1_ratio: float = 0.0,
    ):
        """Initialize conformal training loss.

        Args:
            size_weight: Weight of the size term (0 disables it).
            temperature: Soft assignment temperature.
            kappa: Set size that is not penalized.
            lambda_: Weight penalty strength.
            l1_ratio: L1 share of the weight penalty.
        """
        super().__init__()

        self.size_weight = size_weight
        self.size_loss = SmoothSizeLoss(temperature=temperature, kappa=kappa)
        self.penalty = ElasticNetPenalty(lambda_=lambda_, l1_ratio=l1_ratio)

    def forward(
        self,
        probs: torch.Tensor,
        targets: torch.Tensor,
        parameters: Optional[Iterable[torch.Tensor]] = None,
        n_batches: int = 1,
        pred_probs: Optional[torch.Tensor] = None,
        q_hat: Optional[float] = None,
    ) -> tuple[torch.Tensor, dict[str, torch.Tensor]]:
        """Compute combined loss.

        Args:
            probs: Probabilities for the whole batch, shape (batch, n_classes).
            targets: Encoded labels, shape (batch,).
            parameters: Model parameters for the weight penalty.
            n_batches: Batches per epoch; the penalty is spread over them.
            pred_probs: Probabilities of the prediction part of the batch.
            q_hat: Threshold from the calibration part; None skips the size term.

        Returns:
            total_loss: Scalar loss.
            loss_dict: Individual components (detached).
        """
        ce = F.nll_loss(torch.log(probs.clamp_min(1e-7)), targets)
        total_loss = ce

        penalty = torch.zeros((), device=probs.device)
        if parameters is not None:
            penalty = self.penalty(parameters).to(probs.device) / max(n_batches, 1)
            total_loss = total_loss + penalty

        size = torch.zeros((), device=probs.device)
        if self.size_weight > 0 and pred_probs is not None and q_hat is not None:
            size = self.size_loss(pred_probs, q_hat)
            total_loss = total_loss + self.size_weight * size

        loss_dict = {
            "ce_loss": ce.detach(),
            "penalty": penalty.detach(),
            "size_loss": size.detach(),
        }

        return total_loss, loss_dict
