"""Evaluation modules for conformal classifiers."""

from confpred.eval.metrics import (
    ConformalMetrics,
    average_set_size,
    covered,
    empirical_coverage,
    evaluate_conformal,
    set_size,
    size_stratified_coverage,
)

__all__ = [
    "ConformalMetrics",
    "average_set_size",
    "covered",
    "empirical_coverage",
    "evaluate_conformal",
    "set_size",
    "size_stratified_coverage",
]
