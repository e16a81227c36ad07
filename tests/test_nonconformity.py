"""Tests for nonconformity score functions."""

import numpy as np
import pytest

from confpred.conformal.nonconformity import (
    AdaptiveScore,
    HingeScore,
    check_probabilities,
    get_score_function,
)


@pytest.fixture
def probs():
    return np.array([
        [0.7, 0.2, 0.1],
        [0.1, 0.6, 0.3],
    ])


class TestHingeScore:
    """Hinge score s = 1 - p(y|x)."""

    def test_true_label_scores(self, probs):
        scores = HingeScore().compute(probs, np.array([0, 2]))

        assert np.allclose(scores, [0.3, 0.7])

    def test_all_label_scores(self, probs):
        scores = HingeScore().compute_all(probs)

        assert scores.shape == probs.shape
        assert np.allclose(scores, 1.0 - probs)

    def test_region_mask_thresholds_scores(self, probs):
        """Label kept iff 1 - p <= q_hat."""
        mask = HingeScore().region_mask(probs, q_hat=0.75)

        assert mask.tolist() == [[True, False, False], [False, True, True]]

    def test_region_can_be_empty(self, probs):
        mask = HingeScore().region_mask(probs, q_hat=0.1)

        assert not mask.any()


class TestAdaptiveScore:
    """APS cumulative-mass score."""

    def test_cumulative_scores(self, probs):
        scores = AdaptiveScore().compute_all(probs)

        assert np.allclose(scores[0], [0.7, 0.9, 1.0])
        assert np.allclose(scores[1], [1.0, 0.6, 0.9])

    def test_scores_in_unit_interval(self):
        rng = np.random.default_rng(1)
        probs = rng.dirichlet(np.ones(5), size=50)

        scores = AdaptiveScore().compute_all(probs)

        assert np.all(scores >= 0)
        assert np.all(scores <= 1)

    def test_top_label_always_included(self, probs):
        mask = AdaptiveScore().region_mask(probs, q_hat=0.0)

        assert mask.tolist() == [[True, False, False], [False, True, False]]

    def test_true_label_score(self, probs):
        scores = AdaptiveScore().compute(probs, np.array([1, 0]))

        assert np.allclose(scores, [0.9, 1.0])


class TestValidation:
    """Input checks shared by all scores."""

    def test_small_numerical_error_is_clipped(self):
        probs = check_probabilities(np.array([[1.0 + 1e-9, -1e-9]]))

        assert probs.max() == 1.0
        assert probs.min() == 0.0

    def test_out_of_range_probabilities_raise(self):
        with pytest.raises(ValueError, match="must be in"):
            check_probabilities(np.array([[1.2, -0.2]]))

    def test_label_out_of_range_raises(self, probs):
        with pytest.raises(ValueError):
            HingeScore().compute(probs, np.array([0, 3]))

    def test_length_mismatch_raises(self, probs):
        with pytest.raises(ValueError, match="Length mismatch"):
            HingeScore().compute(probs, np.array([0]))

    def test_get_score_function(self):
        assert isinstance(get_score_function("hinge"), HingeScore)
        assert isinstance(get_score_function("adaptive"), AdaptiveScore)

        score = AdaptiveScore()
        assert get_score_function(score) is score

    def test_unknown_score_function_raises(self):
        with pytest.raises(ValueError, match="Unknown score function"):
            get_score_function("raps")
