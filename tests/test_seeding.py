"""
Unit tests for start generation (motifseek/seeding.py) and the redundancy
filter (motifseek/redundancy.py).
"""

import numpy as np
import pytest

from motifseek.models import StrandScoreModel
from motifseek.objective import GenDisMixObjective
from motifseek.optimize import default_condition
from motifseek.prior import annotate
from motifseek.redundancy import RedundancyFilter, post_filter, profile_correlation
from motifseek.seeding import (
    Candidate,
    SeedingManager,
    consensus_weight,
    initialize_from_kmer,
    kmer_statistic,
    min_hamming_distance,
    plugin_class_parameter,
    plugin_initialization,
    subsample,
)
from motifseek.sequences import SequenceSet, encode
from motifseek.submodels import MarkovMotifModel, UniformBackground
from motifseek.weights import weight_matrix


def planted_objective(planted_set, width=6):
    sequence_set, fg_weights = planted_set
    weights = weight_matrix(fg_weights)
    data = annotate(sequence_set, weights, 2.0)
    foreground = StrandScoreModel(MarkovMotifModel(width, order=0, ess=4.0))
    objective = GenDisMixObjective(foreground, UniformBackground(ess=4.0), data, weights)
    return objective, data, weights


def test_subsample_follows_weight_order():
    """Foreground-heavy sequences come first, background ones keep pace"""
    fg = np.array([1.0] * 10 + [0.0] * 10)
    indices, small = subsample(weight_matrix(fg), percent=0.3, max_n=1000)

    np.testing.assert_array_equal(indices, [0, 1, 10])
    assert small.shape == (2, 3)
    np.testing.assert_allclose(small.sum(axis=0), 1.0)


def test_subsample_limits_and_fallback():
    """The size cap holds and at least one sequence is always chosen"""
    fg = np.linspace(1.0, 0.0, 30)
    indices, _ = subsample(weight_matrix(fg), percent=0.9, max_n=4)
    assert indices.size == 4
    assert len(set(indices.tolist())) == 4

    indices, _ = subsample(weight_matrix(np.zeros(5)), percent=0.3)
    assert indices.size == 1


def test_min_hamming_distance_shifts_and_strands():
    """Shifted and reverse complement k-mers are close"""
    assert min_hamming_distance(encode("GATTACA"), encode("GATTACA")) == 0
    assert min_hamming_distance(encode("GATTACA"), encode("TGTAATC")) == 0
    assert min_hamming_distance(encode("AACGTTG"), encode("ACGTTGC")) == 0
    assert min_hamming_distance(encode("AAAAAAA"), encode("CCCCCCC")) == 5


def test_kmer_statistic_prefers_planted_kmer_and_stays_diverse(sequence_factory):
    """The enriched k-mer ranks first and selected k-mers differ in at least two positions"""
    forbidden = ("GATTACA", "TGTAATC")
    fg = [sequence_factory(8, forbidden) + "GATTACA" + sequence_factory(8, forbidden) for _ in range(20)]
    bg = [sequence_factory(23, forbidden) for _ in range(20)]
    sequence_set = SequenceSet.from_strings(fg + bg)
    kmers = kmer_statistic(sequence_set.sequences, np.array([1.0] * 20 + [0.0] * 20), k=7, num_wanted=30)

    assert kmers[0][0] == "GATTACA"
    assert len(kmers) <= 30
    scores = [score for _, score in kmers]
    assert scores == sorted(scores, reverse=True)
    codes = [encode(kmer) for kmer, _ in kmers]
    for a in range(len(codes)):
        for b in range(a + 1, len(codes)):
            assert min_hamming_distance(codes[a], codes[b]) >= 2


def test_kmer_statistic_skips_unknown_symbols():
    """Windows with N are not counted"""
    sequence_set = SequenceSet.from_strings(["NNNNNNNNN"])
    assert kmer_statistic(sequence_set.sequences, np.ones(1), k=7) == []


def test_consensus_weight_gives_probability_09():
    """A consensus site gives its symbols probability 0.9"""
    assert consensus_weight(4.0, 4) == pytest.approx(26.0)
    model = StrandScoreModel(MarkovMotifModel(7, ess=4.0))
    initialize_from_kmer(model, encode("GATTACA"), 7, 4.0)
    np.testing.assert_allclose(model.motif.pwm().max(axis=1), 0.9)


def test_initialize_from_kmer_centers_with_extra_position_right():
    """A shorter k-mer is centered with uniform flanks, the extra flank position on the right"""
    model = StrandScoreModel(MarkovMotifModel(10, ess=4.0))
    initialize_from_kmer(model, encode("GATTACA"), 10, 4.0)
    pwm = model.motif.pwm()

    assert model.width == 10
    np.testing.assert_allclose(pwm[0], 0.25)
    np.testing.assert_allclose(pwm[8:], 0.25)
    np.testing.assert_array_equal(pwm[1:8].argmax(axis=1), encode("GATTACA"))
    assert model.present_probability() == pytest.approx(0.5)


def test_initialize_from_kmer_trims_longer_kmer():
    """A longer k-mer keeps its central positions"""
    model = StrandScoreModel(MarkovMotifModel(5, ess=4.0))
    initialize_from_kmer(model, encode("GATTACA"), 5, 4.0)
    np.testing.assert_array_equal(model.motif.pwm().argmax(axis=1), encode("ATTAC"))


def test_plugin_initialization_draws_foreground_site(rng):
    """Plug-in starts come from sequences with foreground weight"""
    sequence_set = SequenceSet.from_strings(["CCCCCCCCCC", "GATTACAGAT"], anchors=[4.0, 4.0])
    fg_weights = np.array([1.0, 0.0])
    data = annotate(sequence_set, weight_matrix(fg_weights), 2.0)
    model = StrandScoreModel(MarkovMotifModel(5, ess=4.0))

    plugin_initialization(model, data, fg_weights, rng, 4.0)

    np.testing.assert_array_equal(model.motif.pwm().argmax(axis=1), np.ones(5))


def test_plugin_initialization_without_eligible_sequence(rng):
    """Without foreground weight the start is drawn around the uniform model"""
    sequence_set = SequenceSet.from_strings(["ACGTACGTAC"])
    data = annotate(sequence_set, weight_matrix(np.zeros(1)), 2.0)
    model = StrandScoreModel(MarkovMotifModel(5, ess=4.0))

    plugin_initialization(model, data, np.zeros(1), rng, 4.0)

    assert model.width == 5
    assert np.abs(model.motif.get_parameters()).max() < 1.0
    assert model.present_probability() == pytest.approx(0.5)


def test_plugin_class_parameter():
    assert plugin_class_parameter(weight_matrix(np.array([1.0, 1.0, 0.0, 0.0]))) == pytest.approx(0.0)
    assert plugin_class_parameter(weight_matrix(np.array([1.0, 1.0, 1.0, 0.0]))) == pytest.approx(np.log(3.0))
    assert plugin_class_parameter(weight_matrix(np.ones(3))) == 0.0


def test_seeding_manager_generates_sorted_candidates(planted_set):
    """Pre-optimized candidates are sorted by their score on the complete data"""
    objective, data, weights = planted_objective(planted_set)
    manager = SeedingManager(
        objective,
        data,
        weights,
        restarts=3,
        kmer_length=5,
        condition=default_condition(max_iterations=5),
        rng=np.random.default_rng(1),
    )
    candidates = manager.generate()

    assert len(candidates) == 3
    assert all(c.parameters.shape == (objective.dimension,) for c in candidates)
    scores = [c.score for c in candidates]
    assert scores == sorted(scores, reverse=True)
    assert objective.data is data
    assert manager.small_data.num_sequences == manager.small_indices.size


def kmer_candidate(objective, kmer, score):
    initialize_from_kmer(objective.foreground, encode(kmer), objective.foreground.width, 4.0)
    return Candidate(parameters=objective.get_parameters(), width=objective.foreground.width, score=score)


def test_profile_correlation_with_itself(planted_set):
    objective, data, _ = planted_objective(planted_set)
    kmer_candidate(objective, "AAAAAA", 0.0)
    profile = objective.foreground.profile(data)
    assert profile_correlation(profile, profile, 6) == pytest.approx(1.0)


def test_redundancy_filter_is_idempotent(planted_set):
    """Duplicates are removed and filtering the accepted candidates changes nothing"""
    objective, data, _ = planted_objective(planted_set)
    candidates = [
        kmer_candidate(objective, "AAAAAA", -1.0),
        kmer_candidate(objective, "AAAAAA", -2.0),
        kmer_candidate(objective, "CGTGCG", -3.0),
    ]

    accepted = RedundancyFilter(0.3, 6).filter(objective, candidates, data)
    again = RedundancyFilter(0.3, 6).filter(objective, accepted, data)

    assert accepted[0].score == -1.0
    assert -2.0 not in [c.score for c in accepted]
    assert [c.score for c in again] == [c.score for c in accepted]
    assert all(c.profile is not None for c in accepted)


def test_redundancy_filter_accepts_best_candidate_first(planted_set):
    """The best-scoring candidate is accepted first even when its motif is nearly uniform"""
    objective, data, _ = planted_objective(planted_set)
    flat = Candidate(np.random.default_rng(3).normal(0.0, 0.01, objective.dimension), 6, 10.0)
    strong = kmer_candidate(objective, "AAAAAA", 1.0)
    assert objective.foreground.motif.pwm().max() > 0.4

    accepted = RedundancyFilter(0.3, 6).filter(objective, [strong, flat], data)

    assert accepted[0].score == 10.0
    assert accepted[0].profile is not None


def test_post_filter_drops_duplicate_models(planted_set):
    """The final pass keeps the first of two identical models"""
    objective, data, _ = planted_objective(planted_set)
    kmer_candidate(objective, "AAAAAA", 0.0)
    models = [objective.foreground.clone(), objective.foreground.clone()]

    use = post_filter(models, [1, 0], data, 0.3, 6)

    np.testing.assert_array_equal(use, [False, True])
