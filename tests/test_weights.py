"""
Unit tests for confidence-to-weight conversion in motifseek/weights.py.
"""

import numpy as np
import pytest

from motifseek.errors import ConfigurationError
from motifseek.weights import (
    competition_ranks,
    foreground_weights,
    is_sd_factor,
    parse_weighting_factor,
    weight_matrix,
)
from motifseek.weights import registry as interpolation_registry


def test_competition_ranks_ties_share_best_rank():
    """Tied values get the same rank and the next rank is skipped"""
    ranks = competition_ranks(np.array([5.0, 3.0, 5.0, 1.0]))
    np.testing.assert_array_equal(ranks, [0, 2, 0, 3])


def test_rank_log_extremes_and_monotonicity():
    """Best value gets weight 1, worst weight 0, and weights decrease with the value"""
    values = np.array([10.0, 8.0, 6.0, 4.0, 2.0])
    weights = foreground_weights(values, 0.2, "rank_log")

    assert weights[0] == pytest.approx(1.0)
    assert weights[-1] == pytest.approx(0.0)
    assert np.all(np.diff(weights) <= 0)
    assert np.all((weights >= 0) & (weights <= 1))


def test_rank_log_all_equal_values():
    """Equal values all share the best rank"""
    weights = foreground_weights(np.full(4, 3.0), 0.3)
    np.testing.assert_allclose(weights, 1.0)


def test_linear_interpolation_crosses_half_at_threshold():
    """Linear weights are 0.5 at the (1 - factor) quantile and span [0, 1]"""
    values = np.arange(11, dtype=float)
    weights = foreground_weights(values, 0.5, "linear")

    assert weights[6] == pytest.approx(0.5)
    assert weights[10] == pytest.approx(1.0)
    assert weights[0] == pytest.approx(0.0)


def test_parse_weighting_factor_numeric():
    """Numbers and numeric strings in (0, 1) are accepted"""
    assert parse_weighting_factor(0.2, np.empty(0)) == pytest.approx(0.2)
    assert parse_weighting_factor("0.35", np.empty(0)) == pytest.approx(0.35)


@pytest.mark.parametrize("factor", ["1.5", "0", "abc", -0.1])
def test_parse_weighting_factor_invalid(factor):
    """Factors outside (0, 1) or unparsable strings are configuration errors"""
    with pytest.raises(ConfigurationError):
        parse_weighting_factor(factor, np.empty(0))


def test_parse_weighting_factor_sd_form():
    """'+Nsd' counts values above mean + N sd, with at least 50 sequences"""
    values = np.zeros(200)
    values[:3] = 100.0
    assert is_sd_factor("+4sd")
    assert parse_weighting_factor("+4sd", values) == pytest.approx(50 / 200)


def test_parse_weighting_factor_sd_form_too_few_sequences():
    """With fewer than 50 sequences the '+Nsd' form falls back to 0.5"""
    assert parse_weighting_factor("+2sd", np.arange(20, dtype=float)) == pytest.approx(0.5)


def test_foreground_weights_rejects_non_finite():
    """NaN confidence values are rejected"""
    with pytest.raises(ConfigurationError):
        foreground_weights(np.array([1.0, np.nan]), 0.2)


def test_weight_matrix_columns_sum_to_one():
    """Background weights complement the foreground weights"""
    weights = weight_matrix(np.array([0.0, 0.25, 1.0]))
    assert weights.shape == (2, 3)
    np.testing.assert_allclose(weights.sum(axis=0), 1.0)


def test_interpolation_registry():
    """Registered interpolations are listed and unknown keys are rejected"""
    assert {"rank_log", "linear", "log_linear", "percentile_logistic"} <= set(interpolation_registry.keys())
    with pytest.raises(ConfigurationError):
        interpolation_registry.get("nonexistent")
