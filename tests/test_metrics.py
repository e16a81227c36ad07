"""Tests for conformal evaluation metrics."""

import numpy as np
import pytest

from confpred.conformal import NaiveClassifier
from confpred.eval import (
    average_set_size,
    covered,
    empirical_coverage,
    evaluate_conformal,
    set_size,
    size_stratified_coverage,
)


@pytest.fixture
def sets():
    return np.array([
        [True, False, False],
        [True, True, False],
        [False, False, False],
    ])


class TestSetMetrics:
    """Metrics on boolean membership matrices."""

    def test_covered(self, sets):
        assert covered(sets, [0, 2, 1]).tolist() == [True, False, False]

    def test_coverage_and_size(self, sets):
        assert empirical_coverage(sets, [0, 2, 1]) == pytest.approx(1 / 3)
        assert set_size(sets).tolist() == [1, 2, 0]
        assert average_set_size(sets) == pytest.approx(1.0)

    def test_size_stratified_coverage(self, sets):
        ssc, by_size = size_stratified_coverage(sets, [0, 0, 1])

        assert by_size == {0: 0.0, 1: 1.0, 2: 1.0}
        assert ssc == 0.0

    def test_labels_mapped_through_classes(self, sets):
        coverage = empirical_coverage(sets, ["a", "c", "b"], classes=["a", "b", "c"])

        assert coverage == pytest.approx(1 / 3)

    def test_length_mismatch_raises(self, sets):
        with pytest.raises(ValueError, match="Length mismatch"):
            covered(sets, [0, 1])

    def test_empty_regions(self):
        assert covered([], []).shape == (0,)
        assert set_size([]).shape == (0,)
        assert np.isnan(empirical_coverage([], []))
        assert np.isnan(average_set_size([]))

        ssc, by_size = size_stratified_coverage([], [])

        assert np.isnan(ssc)
        assert by_size == {}


class TestRegionMetrics:
    """Metrics on PredictionRegion lists."""

    @pytest.fixture
    def conf(self, proba_model, calibration_probs):
        probs, labels = calibration_probs
        return NaiveClassifier(proba_model, coverage=0.5).fit(probs, labels)

    def test_region_coverage(self, conf):
        regions = conf.predict(np.array([[0.5, 0.45, 0.05], [0.2, 0.3, 0.5]]))

        assert empirical_coverage(regions, ["b", "a"]) == pytest.approx(0.5)
        assert set_size(regions).tolist() == [2, 1]

    def test_evaluate_conformal(self, conf, calibration_probs):
        probs, labels = calibration_probs

        metrics = evaluate_conformal(conf, probs, labels)
        result = metrics.to_dict()

        assert set(result) == {
            "n_samples",
            "target_coverage",
            "coverage",
            "size_stratified_coverage",
            "coverage_by_size",
            "avg_set_size",
            "singleton_fraction",
            "empty_fraction",
        }
        assert metrics.n_samples == 10
        assert metrics.target_coverage == 0.5
        assert 0 <= metrics.coverage <= 1
        assert metrics.size_stratified_coverage <= metrics.coverage
        assert metrics.empty_fraction + metrics.singleton_fraction <= 1
