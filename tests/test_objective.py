"""
Unit tests for the training objective (motifseek/objective.py), the worker
pool (motifseek/workers.py) and the optimizer wrapper (motifseek/optimize.py).
"""

import numpy as np
import pytest

from motifseek.models import StrandScoreModel
from motifseek.objective import MCL, ML, MSP, GenDisMixObjective
from motifseek.optimize import (
    CombinedCondition,
    IterationCondition,
    MultipleIterationsCondition,
    SmallDifferenceCondition,
    TimeCondition,
    default_condition,
    maximize,
)
from motifseek.prior import annotate
from motifseek.sequences import SequenceSet
from motifseek.submodels import HomogeneousBackground, MarkovMotifModel
from motifseek.weights import weight_matrix
from motifseek.workers import WorkerPool

STRINGS = [
    "ACGTTGCAAGGCTTAC",
    "TTGACGCATGCAGT",
    "GGGATTACAGGATT",
    "CATCATCATGGA",
    "ACGTNACGTACG",
    "TTAGGCATCGATCGA",
    "AC",
    "GCGCGATATATCGC",
]


def build_objective(beta=MSP, prune_threshold=1.0, pool=None, seed=0):
    rng = np.random.default_rng(seed)
    motif = MarkovMotifModel(4, order=1, ess=3.0)
    motif.set_parameters(rng.normal(0.0, 1.0, motif.num_parameters))
    foreground = StrandScoreModel(motif, prune_threshold=prune_threshold)
    foreground.mixing = -0.5
    background = HomogeneousBackground(order=0, ess=2.0)
    background.set_parameters(rng.normal(0.0, 0.5, background.num_parameters))

    anchors = [3.0, 5.0, np.nan, 2.0, 6.0, 1.0, 0.0, 7.0]
    sequence_set = SequenceSet.from_strings(STRINGS, anchors=anchors)
    weights = weight_matrix(np.array([0.9, 0.1, 0.6, 0.0, 1.0, 0.3, 0.5, 0.75]))
    data = annotate(sequence_set, weights, 3.0)
    objective = GenDisMixObjective(foreground, background, data, weights, beta=beta, pool=pool)
    objective.class_parameter = 0.2
    return objective


@pytest.mark.parametrize("beta", [MSP, MCL, ML])
def test_objective_gradient_matches_finite_differences(beta):
    """Analytic gradient agrees with central differences of the exact value"""
    objective = build_objective(beta)
    x0 = objective.get_parameters()
    _, grad = objective.value_and_gradient(x0)

    eps = 1e-6
    expected = np.zeros_like(x0)
    for k in range(x0.size):
        step = np.zeros_like(x0)
        step[k] = eps
        expected[k] = (objective.evaluate(x0 + step, exact=True) - objective.evaluate(x0 - step, exact=True)) / (2 * eps)

    np.testing.assert_allclose(grad, expected, atol=1e-5)


def test_pruned_evaluation_reuses_kept_positions():
    """Evaluation after a pruned gradient uses the same kept positions"""
    objective = build_objective(MCL, prune_threshold=0.5)
    x0 = objective.get_parameters()
    value, _ = objective.value_and_gradient(x0)

    assert np.isfinite(value)
    assert objective.evaluate(x0) == pytest.approx(value, rel=1e-12)
    objective.reset()
    assert objective.foreground.kept_positions(objective.data, 0) is None


def test_sharded_evaluation_matches_single_thread():
    """Sharding over worker threads gives the same value and gradient"""
    single = build_objective()
    expected_value, expected_grad = single.value_and_gradient()

    with WorkerPool(3) as pool:
        sharded = build_objective(pool=pool)
        value, grad = sharded.value_and_gradient()

    assert value == pytest.approx(expected_value, rel=1e-12)
    np.testing.assert_allclose(grad, expected_grad, rtol=1e-10, atol=1e-12)


def test_effective_sample_size_skips_short_sequences():
    """Sequences shorter than the motif do not count as effective"""
    objective = build_objective()
    objective.evaluate(exact=True)
    assert objective.effective_sample_size == len(STRINGS) - 1


def test_parameter_layout():
    """Parameters are the class parameter, then foreground, then background"""
    objective = build_objective()
    params = objective.get_parameters()

    assert params.size == objective.dimension
    assert params[0] == pytest.approx(0.2)
    objective.add_to_class_parameter(0.3)
    assert objective.class_parameter == pytest.approx(0.5)
    with pytest.raises(ValueError):
        objective.set_parameters(params[:-1])


def test_objective_rejects_bad_weights():
    """Weights must have shape (2, n) and be non-negative"""
    objective = build_objective()
    with pytest.raises(ValueError):
        objective.set_data(objective.data, np.ones((2, 3)))
    with pytest.raises(ValueError):
        objective.set_data(objective.data, -np.ones((2, len(STRINGS))))


def test_worker_pool_shards_and_map():
    """Shards cover every index once and map preserves order"""
    pool = WorkerPool(3)
    shards = pool.shards(10)
    assert len(shards) == 3
    np.testing.assert_array_equal(np.concatenate(shards), np.arange(10))

    with pool:
        assert pool.running
        assert pool.map(lambda x: x * 2, [1, 2, 3]) == [2, 4, 6]
    assert not pool.running


def test_worker_pool_rejects_zero_jobs():
    with pytest.raises(ValueError):
        WorkerPool(0)


def test_iteration_condition():
    """Stops once the iteration cap is reached"""
    condition = IterationCondition(3)
    assert not condition.should_stop(2, 0.0, 1.0)
    assert condition.should_stop(3, 0.0, 1.0)


def test_multiple_iterations_condition_needs_a_streak():
    """Small differences must hold for n consecutive iterations"""
    condition = MultipleIterationsCondition(2, SmallDifferenceCondition(0.1))
    assert not condition.should_stop(1, 0.0, 0.01)
    assert not condition.should_stop(2, 0.0, 1.0)
    assert not condition.should_stop(3, 1.0, 1.01)
    assert condition.should_stop(4, 1.01, 1.02)
    assert condition.converging


def test_combined_condition_reports_trigger():
    """Combined conditions record which condition stopped the run"""
    iterations = IterationCondition(2)
    condition = CombinedCondition(SmallDifferenceCondition(1e-6), iterations)

    assert not condition.should_stop(1, 0.0, 1.0)
    assert condition.should_stop(2, 1.0, 2.0)
    assert condition.triggered is iterations
    assert not condition.converging

    condition.reset()
    assert condition.should_stop(3, 2.0, 2.0)
    assert condition.converging


def test_time_condition():
    """A tiny time budget is used up immediately"""
    condition = TimeCondition(1e-9)
    condition.reset()
    assert condition.should_stop(1, 0.0, 1.0)


def test_default_condition_with_time_budget():
    assert len(default_condition(10, 1e-3, time_budget=5.0).conditions) == 3
    assert len(default_condition(10, 1e-3).conditions) == 2


class Quadratic:
    """Concave test objective with its maximum at ``center``."""

    def __init__(self, center):
        self.center = np.asarray(center, dtype=float)
        self.loaded = None

    def value_and_gradient(self, x):
        self.loaded = np.array(x, dtype=float)
        diff = x - self.center
        return -float(diff @ diff), -2.0 * diff


@pytest.mark.parametrize("method", ["CG", "BFGS", "L-BFGS-B"])
def test_maximize_finds_quadratic_maximum(method):
    """The optimizer reaches the maximum and loads it into the objective"""
    objective = Quadratic([1.0, -2.0, 0.5])
    result = maximize(objective, np.zeros(3), default_condition(100, 1e-10), method)

    np.testing.assert_allclose(result.x, objective.center, atol=1e-5)
    np.testing.assert_allclose(objective.loaded, result.x)
    assert result.value == pytest.approx(0.0, abs=1e-8)
    assert result.converged


def test_maximize_stops_on_iteration_budget():
    """An exhausted budget returns the last iterate without convergence"""
    objective = Quadratic(np.arange(1.0, 21.0))
    scales = np.linspace(1.0, 50.0, 20)

    class Stretched(Quadratic):
        def value_and_gradient(self, x):
            self.loaded = np.array(x, dtype=float)
            diff = x - self.center
            return -float(scales @ diff**2), -2.0 * scales * diff

    stretched = Stretched(objective.center)
    result = maximize(stretched, np.zeros(20), IterationCondition(1), "CG")

    assert result.iterations == 1
    assert not result.converged
