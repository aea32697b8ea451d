"""Redundancy filtering of candidate motifs by correlation of their score profiles."""

from __future__ import annotations

import dataclasses
import logging
from typing import List, Sequence

import numpy as np

from motifseek.functions import max_shift_correlation
from motifseek.models import StrandScoreModel
from motifseek.ragged import RaggedData
from motifseek.seeding import Candidate
from motifseek.sequences import AnnotatedData

logger = logging.getLogger(__name__)


def profile_correlation(profile1: RaggedData, profile2: RaggedData, max_shift: int) -> float:
    """Maximal mean per-sequence Pearson correlation over relative shifts below ``max_shift``."""
    correlation, _ = max_shift_correlation(profile1, profile2, max_shift)
    return float(correlation)


class RedundancyFilter:
    """Keep candidates whose profiles do not correlate with an already accepted one.

    Parameters
    ----------
    threshold : float
        Candidates correlating at least this much with an accepted profile are rejected.
    width : int
        Largest shift (exclusive) between two profiles.
    """

    def __init__(self, threshold: float = 0.3, width: int = 15):
        if not 0.0 < threshold <= 1.0:
            raise ValueError(f"threshold must be in (0, 1], got {threshold}")
        self.threshold = threshold
        self.width = width
        self.accepted_profiles: List[RaggedData] = []

    def is_redundant(self, profile: RaggedData) -> bool:
        for other in self.accepted_profiles:
            if profile_correlation(other, profile, self.width) >= self.threshold:
                return True
        return False

    @staticmethod
    def _load(objective, candidate: Candidate) -> StrandScoreModel:
        fg = objective.foreground
        if fg.width != candidate.width:
            fg.reshape(candidate.width)
        objective.set_parameters(candidate.parameters)
        objective.reset()
        return fg

    def filter(self, objective, candidates: Sequence[Candidate], data: AnnotatedData) -> List[Candidate]:
        """Accepted candidates, best score first.

        ``data`` is the sequence set the profiles are computed on. The best
        candidate is always accepted, as nothing has been accepted before it.
        """
        self.accepted_profiles = []
        ordered = sorted(candidates, key=lambda c: -c.score)
        accepted = []
        for candidate in ordered:
            fg = self._load(objective, candidate)
            profile = fg.profile(data)
            if self.is_redundant(profile):
                logger.debug(f"Rejecting redundant candidate with score {candidate.score:.6f}")
                continue
            self.accepted_profiles.append(profile)
            accepted.append(dataclasses.replace(candidate, profile=profile))

        logger.info(f"Number of motifs after redundancy filter: {len(accepted)}")
        return accepted


def post_filter(
    models: Sequence[StrandScoreModel], order: Sequence[int], data: AnnotatedData, threshold: float, width: int
) -> np.ndarray:
    """Final redundancy pass over refined models visited in ``order``.

    Returns a boolean array indexed like ``models``.
    """
    rfilter = RedundancyFilter(threshold, width)
    use = np.zeros(len(models), dtype=bool)
    for index in order:
        profile = models[index].profile(data)
        if rfilter.is_redundant(profile):
            logger.info(f"Motif {index} is redundant with a better motif")
            continue
        rfilter.accepted_profiles.append(profile)
        use[index] = True
    return use
