"""
seeding
=======

Start points for the multi-restart search.

Distinctive k-mers of a weight-ordered subsample are turned into motif models
with a strong consensus; plug-in starts drawn from the data fill up the list
when there are too few distinct k-mers. All starts are ranked by the
conditional likelihood on the subsample, the best ``restarts`` are
pre-optimized there and finally re-scored on the complete data.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from motifseek.models import StrandScoreModel
from motifseek.objective import MCL, GenDisMixObjective
from motifseek.optimize import TerminationCondition, default_condition, maximize
from motifseek.prior import log_position_prior
from motifseek.ragged import RaggedData
from motifseek.sequences import UNKNOWN, AnnotatedData, decode, encode, reverse_complement
from motifseek.significance import consensus

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class Candidate:
    """A start or optimized parameter vector of the full objective."""

    parameters: np.ndarray
    width: int
    score: float
    profile: Optional[RaggedData] = None


def subsample(weights: np.ndarray, percent: float = 0.3, max_n: int = 1000) -> Tuple[np.ndarray, np.ndarray]:
    """Select a small data set for cheap scoring and pre-optimization.

    Foreground-heavy sequences are taken in order of decreasing foreground
    weight until ``percent`` of the total foreground weight is reached; after
    every foreground pick, background-heavy sequences are added until the same
    fraction of the background weight is covered.

    Returns
    -------
    indices : np.ndarray
        Indices of the selected sequences (at least one for non-empty input).
    small_weights : np.ndarray
        ``(2, k)`` weights of the selection with ``wBg = 1 - wFg``.
    """
    fg, bg = np.asarray(weights[0], dtype=np.float64), np.asarray(weights[1], dtype=np.float64)
    n = fg.size
    if n == 0:
        return np.empty(0, dtype=np.int64), np.empty((2, 0))

    order_fg = np.argsort(-fg, kind="stable")
    order_bg = np.argsort(-bg, kind="stable")
    sum_fg, sum_bg = fg.sum(), bg.sum()

    used = np.zeros(n, dtype=bool)
    chosen: List[int] = []
    cur_fg = cur_bg = 0.0
    i_fg = i_bg = 0
    while len(chosen) < max_n and i_fg < n and cur_fg + fg[order_fg[i_fg]] < sum_fg * percent:
        idx = order_fg[i_fg]
        cur_fg += fg[idx]
        if not used[idx]:
            used[idx] = True
            chosen.append(int(idx))
        i_fg += 1
        fraction = cur_fg / sum_fg
        while len(chosen) < max_n and i_bg < n and cur_bg + bg[order_bg[i_bg]] < sum_bg * fraction:
            idx = order_bg[i_bg]
            cur_bg += bg[idx]
            if not used[idx]:
                used[idx] = True
                chosen.append(int(idx))
            i_bg += 1

    if not chosen:
        chosen.append(int(order_fg[0]))

    indices = np.asarray(chosen, dtype=np.int64)
    small_fg = fg[indices]
    return indices, np.vstack([small_fg, 1.0 - small_fg])


def _kmer_ids(codes: np.ndarray, k: int) -> np.ndarray:
    """Distinct canonical k-mer ids of one sequence (base-4, first symbol most significant)."""
    if codes.size < k:
        return np.empty(0, dtype=np.int64)
    windows = sliding_window_view(codes, k)
    windows = windows[np.all(windows < UNKNOWN, axis=1)].astype(np.int64)
    if windows.shape[0] == 0:
        return np.empty(0, dtype=np.int64)
    powers = 4 ** np.arange(k - 1, -1, -1, dtype=np.int64)
    fwd = windows @ powers
    rev = (3 - windows[:, ::-1]) @ powers
    return np.unique(np.minimum(fwd, rev))


def _decode_kmer(kmer_id: int, k: int) -> np.ndarray:
    codes = np.empty(k, dtype=np.int8)
    for j in range(k - 1, -1, -1):
        codes[j] = kmer_id % 4
        kmer_id //= 4
    return codes


def min_hamming_distance(first: np.ndarray, second: np.ndarray) -> int:
    """Smallest Hamming distance of two k-mers over shifts up to ``k // 3`` and both strands."""
    first, second = np.asarray(first), np.asarray(second)
    k = first.size
    if second.size != k:
        raise ValueError("k-mers must have the same length")
    rc = reverse_complement(first)
    best = k
    for shift in range(k // 3 + 1):
        for candidate in (first, rc):
            best = min(best, int(np.count_nonzero(candidate[shift:] != second[: k - shift])))
            if shift:
                best = min(best, int(np.count_nonzero(candidate[: k - shift] != second[shift:])))
    return best


def kmer_statistic(
    sequences: RaggedData, fg_weights: np.ndarray, k: int = 7, num_wanted: int = 50
) -> List[Tuple[str, float]]:
    """Distinctive, mutually diverse canonical k-mers.

    Every k-mer is counted once per sequence with the sequence's foreground
    weight ``w`` and background weight ``1 - w``. K-mers are ranked by
    ``log(fg + 1) * (fg + 1) / (bg + 1)`` and taken greedily while their
    minimum Hamming distance to every k-mer already taken is at least 2.
    """
    fg_weights = np.asarray(fg_weights, dtype=np.float64)
    ids, owners = [], []
    for i in range(sequences.num_sequences):
        found = _kmer_ids(sequences.get_slice(i), k)
        ids.append(found)
        owners.append(np.full(found.size, i, dtype=np.int64))
    if not ids or sum(a.size for a in ids) == 0:
        return []

    all_ids = np.concatenate(ids)
    all_owners = np.concatenate(owners)
    unique, inverse = np.unique(all_ids, return_inverse=True)
    fg = np.bincount(inverse, weights=fg_weights[all_owners], minlength=unique.size)
    bg = np.bincount(inverse, weights=1.0 - fg_weights[all_owners], minlength=unique.size)
    score = np.log(fg + 1.0) * (fg + 1.0) / (bg + 1.0)

    selected: List[Tuple[str, float]] = []
    kept_codes: List[np.ndarray] = []
    for idx in np.lexsort((unique, -score)):
        codes = _decode_kmer(int(unique[idx]), k)
        if any(min_hamming_distance(codes, other) < 2 for other in kept_codes):
            continue
        kept_codes.append(codes)
        selected.append((decode(codes), float(score[idx])))
        if len(selected) >= num_wanted:
            break
    logger.debug(f"Selected {len(selected)} diverse {k}-mers out of {unique.size}")
    return selected


def consensus_weight(ess: float, alphabet_size: int) -> float:
    """Site weight that gives the consensus symbol probability 0.9 on top of the model's pseudo-counts."""
    d0 = 0.1 / (alphabet_size - 1)
    d = (1.0 - alphabet_size * d0) / (alphabet_size * d0)
    return d * ess


def _center(model: StrandScoreModel, width: int) -> None:
    diff = width - model.width
    if diff > 0:
        left = diff // 2
        model.motif.resize(-left, diff - left)
    elif diff < 0:
        cut = -diff
        model.motif.resize(cut // 2, -(cut - cut // 2))


def _initialize_from_site(model: StrandScoreModel, site: np.ndarray, ess: float) -> None:
    motif = model.motif
    seed_ess = ess if ess > 0 else 1.0
    model_ess = motif.ess
    motif.ess = seed_ess
    try:
        motif.initialize_from_sites([site], [consensus_weight(seed_ess, motif.alphabet_size)])
    finally:
        motif.ess = model_ess


def initialize_from_kmer(model: StrandScoreModel, kmer: np.ndarray, width: int, ess: float) -> None:
    """Seed the model with a k-mer centered in a window of ``width`` positions.

    Flanking positions are uniform; when the k-mer and the width differ by an
    odd number, the extra position is on the right.
    """
    kmer = np.asarray(kmer, dtype=np.int8)
    model.reshape(kmer.size)
    _initialize_from_site(model, kmer, ess)
    _center(model, width)
    model.reset()
    model.initialize_mixing_uniformly()


def plugin_initialization(
    model: StrandScoreModel, data: AnnotatedData, fg_weights: np.ndarray, rng: np.random.Generator, ess: float
) -> None:
    """Seed the model with one window drawn from the data.

    The sequence is drawn by foreground weight and the start position from its
    positional prior. Without any usable sequence the parameters are drawn
    around the uniform model.
    """
    width = model.width
    lengths = data.lengths()
    fg_weights = np.asarray(fg_weights, dtype=np.float64)
    eligible = np.where((lengths >= width) & (fg_weights > 0))[0]
    if eligible.size == 0:
        model.motif.set_parameters(rng.normal(0.0, 0.1, size=model.motif.num_parameters))
        model.reset()
        model.initialize_mixing_uniformly()
        return

    probs = fg_weights[eligible] / fg_weights[eligible].sum()
    i = int(rng.choice(eligible, p=probs))
    log_prior = log_position_prior(data.reference.get_slice(i), width)
    if np.isfinite(log_prior).any():
        prior = np.exp(log_prior - np.max(log_prior))
        start = int(rng.choice(prior.size, p=prior / prior.sum()))
    else:
        start = int(rng.integers(lengths[i] - width + 1))
    site = data.sequences.get_slice(i)[start : start + width]
    _initialize_from_site(model, site, ess)
    model.reset()
    model.initialize_mixing_uniformly()


def plugin_class_parameter(weights: np.ndarray) -> float:
    """Log ratio of the class weight sums, 0 if a class has no weight."""
    sum_fg, sum_bg = float(weights[0].sum()), float(weights[1].sum())
    if sum_fg <= 0 or sum_bg <= 0:
        return 0.0
    return float(np.log(sum_fg) - np.log(sum_bg))


class SeedingManager:
    """Produce pre-optimized start candidates for the final optimization.

    Parameters
    ----------
    objective : GenDisMixObjective
        Final objective; its foreground model is re-seeded for every start.
    data : AnnotatedData
        Complete annotated data.
    weights : np.ndarray
        ``(2, n)`` weights of the complete data.
    restarts : int
        Number of candidates to pre-optimize.
    kmer_length : int
        Length of seeding k-mers.
    ess : float
        Equivalent sample size used for seeding pseudo-counts.
    condition : TerminationCondition, optional
        Loose termination condition of the pre-optimization.
    """

    def __init__(
        self,
        objective: GenDisMixObjective,
        data: AnnotatedData,
        weights: np.ndarray,
        restarts: int = 20,
        kmer_length: int = 7,
        ess: float = 4.0,
        subsample_fraction: float = 0.3,
        subsample_max: int = 1000,
        condition: Optional[TerminationCondition] = None,
        method: str = "CG",
        rng: Optional[np.random.Generator] = None,
    ):
        self.objective = objective
        self.data = data
        self.weights = np.asarray(weights, dtype=np.float64)
        self.restarts = restarts
        self.kmer_length = kmer_length
        self.ess = ess
        self.method = method
        self.condition = condition if condition is not None else default_condition(max_iterations=25)
        self.rng = rng if rng is not None else np.random.default_rng()

        indices, self.small_weights = subsample(self.weights, subsample_fraction, subsample_max)
        self.small_indices = indices
        self.small_data = data.subset(indices)
        logger.info(f"Subsample for seeding: {indices.size} of {data.num_sequences} sequences")

    def _score_start(self, scorer: GenDisMixObjective, class_parameter: float) -> Tuple[float, np.ndarray]:
        scorer.class_parameter = class_parameter
        scorer.reset()
        return scorer.evaluate(), scorer.get_parameters()

    def kmer_starts(self, scorer: GenDisMixObjective, class_parameter: float) -> List[Tuple[float, np.ndarray]]:
        width = self.objective.foreground.width
        kmers = kmer_statistic(
            self.small_data.sequences, self.small_weights[0], self.kmer_length, max(50, self.restarts)
        )
        starts = []
        for kmer, _ in kmers:
            initialize_from_kmer(self.objective.foreground, encode(kmer), width, self.ess)
            starts.append(self._score_start(scorer, class_parameter))
        return starts

    def plugin_starts(
        self, scorer: GenDisMixObjective, class_parameter: float, n: int
    ) -> List[Tuple[float, np.ndarray]]:
        fg = self.objective.foreground
        starts = []
        for _ in range(n):
            plugin_initialization(fg, self.small_data, self.small_weights[0], self.rng, self.ess)
            starts.append(self._score_start(scorer, class_parameter))
        return starts

    def generate(self) -> List[Candidate]:
        """Return ``restarts`` pre-optimized candidates sorted by descending score on the complete data."""
        objective = self.objective
        width = objective.foreground.width
        scorer = GenDisMixObjective(
            objective.foreground,
            objective.background,
            self.small_data,
            self.small_weights,
            beta=MCL,
            norm=objective.norm,
            pool=objective.pool,
        )
        class_parameter = plugin_class_parameter(self.small_weights)

        starts = sorted(self.kmer_starts(scorer, class_parameter), key=lambda s: -s[0])
        starts = starts[: self.restarts]
        logger.info(f"Seeding: {len(starts)} k-mer starts")
        if len(starts) < self.restarts:
            fill = sorted(
                self.plugin_starts(scorer, class_parameter, max(100, self.restarts)), key=lambda s: -s[0]
            )
            starts.extend(fill[: self.restarts - len(starts)])
            starts.sort(key=lambda s: -s[0])

        candidates = []
        for r, (_, params) in enumerate(starts):
            objective.set_data(self.small_data, self.small_weights)
            result = maximize(objective, params, self.condition, self.method)
            objective.set_data(self.data, self.weights)
            score = objective.evaluate(result.x)
            candidates.append(Candidate(parameters=result.x.copy(), width=width, score=score))
            label = consensus(objective.foreground.motif.pwm())
            logger.info(
                f"Pre-optimization {r}: {label} score={score:.6f} "
                f"({result.iterations} iterations, converged={result.converged})"
            )

        candidates.sort(key=lambda c: -c.score)
        return candidates

