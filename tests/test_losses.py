"""Tests for conformal training losses."""

import pytest
import torch
import torch.nn.functional as F

from confpred.train.losses import (
    ConformalTrainingLoss,
    ElasticNetPenalty,
    SmoothSizeLoss,
    soft_assignment,
)


class TestSoftAssignment:
    """Smooth set membership."""

    def test_half_membership_at_threshold(self):
        scores = torch.tensor([[0.3, 0.7]])

        membership = soft_assignment(scores, q_hat=0.3, temperature=0.1)

        assert membership[0, 0].item() == pytest.approx(0.5)
        assert membership[0, 1].item() < 0.5

    def test_low_temperature_approaches_hard_set(self):
        scores = torch.tensor([[0.1, 0.5, 0.9]])

        membership = soft_assignment(scores, q_hat=0.6, temperature=1e-3)

        assert torch.allclose(membership, torch.tensor([[1.0, 1.0, 0.0]]), atol=1e-4)


class TestSmoothSizeLoss:
    """Ω = max(0, Σ C - κ)."""

    def test_uniform_probabilities_give_full_sets(self):
        probs = torch.full((4, 3), 1 / 3)
        loss_fn = SmoothSizeLoss(temperature=0.01, kappa=1.0)

        loss = loss_fn(probs, q_hat=1.0)

        assert loss.item() == pytest.approx(2.0, abs=1e-3)

    def test_confident_predictions_are_not_penalized(self):
        probs = torch.tensor([[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])
        loss_fn = SmoothSizeLoss(temperature=0.01, kappa=1.0)

        loss = loss_fn(probs, q_hat=0.5)

        assert loss.item() == pytest.approx(0.0, abs=1e-4)

    def test_reduction_none(self):
        probs = torch.full((5, 3), 1 / 3)

        loss = SmoothSizeLoss(reduction="none")(probs, q_hat=0.9)

        assert loss.shape == (5,)
        assert torch.all(loss >= 0)

    def test_gradients_flow_to_logits(self):
        logits = torch.randn(8, 4, requires_grad=True)
        probs = F.softmax(logits, dim=-1)

        loss = SmoothSizeLoss(temperature=0.1)(probs, q_hat=0.8)
        loss.backward()

        assert logits.grad is not None
        assert torch.any(logits.grad != 0)

    def test_invalid_temperature_raises(self):
        with pytest.raises(ValueError, match="temperature"):
            SmoothSizeLoss(temperature=0.0)


class TestElasticNetPenalty:
    """λ(r·L1 + (1 - r)·L2)."""

    @pytest.fixture
    def weights(self):
        return [torch.nn.Parameter(torch.tensor([1.0, -2.0]))]

    def test_pure_l1(self, weights):
        assert ElasticNetPenalty(lambda_=0.5, l1_ratio=1.0)(weights).item() == pytest.approx(1.5)

    def test_pure_l2(self, weights):
        assert ElasticNetPenalty(lambda_=0.5, l1_ratio=0.0)(weights).item() == pytest.approx(2.5)

    def test_mixed(self, weights):
        assert ElasticNetPenalty(lambda_=1.0, l1_ratio=0.5)(weights).item() == pytest.approx(4.0)

    def test_zero_lambda(self, weights):
        assert ElasticNetPenalty(lambda_=0.0)(weights).item() == 0.0

    @pytest.mark.parametrize("kwargs", [{"lambda_": -1.0}, {"l1_ratio": 1.5}])
    def test_invalid_arguments_raise(self, kwargs):
        with pytest.raises(ValueError):
            ElasticNetPenalty(**kwargs)


class TestConformalTrainingLoss:
    """Combined loss."""

    @pytest.fixture
    def batch(self):
        torch.manual_seed(0)
        probs = F.softmax(torch.randn(6, 3), dim=-1)
        targets = torch.tensor([0, 1, 2, 0, 1, 2])
        return probs, targets

    def test_cross_entropy_only(self, batch):
        probs, targets = batch

        total, parts = ConformalTrainingLoss()(probs, targets)

        expected = F.nll_loss(torch.log(probs), targets)
        assert total.item() == pytest.approx(expected.item(), rel=1e-5)
        assert parts["size_loss"].item() == 0.0
        assert parts["penalty"].item() == 0.0

    def test_size_term_added(self, batch):
        probs, targets = batch
        loss_fn = ConformalTrainingLoss(size_weight=2.0, kappa=0.0)

        total, parts = loss_fn(probs, targets, pred_probs=probs[:3], q_hat=0.9)

        assert parts["size_loss"].item() > 0
        expected = parts["ce_loss"] + 2.0 * parts["size_loss"]
        assert total.item() == pytest.approx(expected.item(), rel=1e-5)

    def test_zero_size_weight_skips_size_term(self, batch):
        probs, targets = batch

        _, parts = ConformalTrainingLoss(size_weight=0.0)(
            probs, targets, pred_probs=probs, q_hat=0.9
        )

        assert parts["size_loss"].item() == 0.0

    def test_penalty_spread_over_batches(self, batch):
        probs, targets = batch
        params = [torch.nn.Parameter(torch.tensor([2.0]))]
        loss_fn = ConformalTrainingLoss(lambda_=1.0, l1_ratio=0.0)

        _, parts = loss_fn(probs, targets, parameters=params, n_batches=4)

        assert parts["penalty"].item() == pytest.approx(1.0)
