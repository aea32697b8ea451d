"""
Discovery loop
==============

Drives one complete motif discovery run:

1. confidence values are turned into foreground/background weights and the
   positional priors are built;
2. the seeding manager produces pre-optimized candidates;
3. redundant candidates are removed;
4. every surviving candidate is optimized on the complete data, its width is
   refined, the spread of the positional prior is re-estimated and the model
   is optimized once more;
5. significant occurrences are reported and optionally masked for the
   following motifs;
6. the refined motifs are ranked and filtered once more for redundancy.

All work is done on the calling thread; the worker pool only parallelizes
single objective evaluations.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional

import numpy as np
import pandas as pd

from motifseek.errors import InputError
from motifseek.models import StrandScoreModel
from motifseek.objective import MSP, GenDisMixObjective
from motifseek.optimize import default_condition, maximize
from motifseek.prior import annotate, initial_allowed, mask_occurrences
from motifseek.redundancy import RedundancyFilter, post_filter
from motifseek.seeding import Candidate, SeedingManager
from motifseek.sequences import SequenceSet
from motifseek.significance import OccurrenceFinder, WidthHeuristic, consensus, update_spread
from motifseek.submodels import create_background, create_motif
from motifseek.weights import foreground_weights, parse_weighting_factor, weight_matrix
from motifseek.workers import WorkerPool

if TYPE_CHECKING:
    from motifseek.api import DiscoveryConfig


@dataclass
class DiscoveredMotif:
    """A refined motif together with its occurrences."""

    name: str
    consensus: str
    pfm: np.ndarray
    width: int
    score: float
    parameters: np.ndarray
    model: StrandScoreModel
    occurrences: pd.DataFrame
    spread: float
    class_parameter: float = 0.0

    def summary(self) -> dict:
        return {
            "name": self.name,
            "consensus": self.consensus,
            "width": self.width,
            "score": float(self.score),
            "spread": float(self.spread),
            "occurrences": int(len(self.occurrences)),
        }


@dataclass
class DiscoveryResult:
    """Motifs of one run, best first."""

    motifs: List[DiscoveredMotif] = field(default_factory=list)
    weights: Optional[np.ndarray] = None
    num_candidates: int = 0
    num_accepted: int = 0

    def summary(self) -> dict:
        return {
            "candidates": self.num_candidates,
            "accepted": self.num_accepted,
            "motifs": [motif.summary() for motif in self.motifs],
        }


class MotifDiscovery:
    """Multi-restart motif discovery on weighted, anchored sequences."""

    def __init__(self, config: "DiscoveryConfig"):
        self.config = config
        self.logger = logging.getLogger(__name__)

    def _weights(self, sequence_set: SequenceSet, fg_weights: Optional[np.ndarray]):
        cfg = self.config
        factor = parse_weighting_factor(cfg.weighting_factor, sequence_set.values)
        if fg_weights is None:
            fg_weights = foreground_weights(sequence_set.values, factor, cfg.interpolation)
        else:
            fg_weights = np.asarray(fg_weights, dtype=np.float64)
            if fg_weights.shape != (len(sequence_set),):
                raise InputError(f"expected {len(sequence_set)} foreground weights, got {fg_weights.shape}")
            if np.any(fg_weights < 0) or np.any(fg_weights > 1) or not np.all(np.isfinite(fg_weights)):
                raise InputError("foreground weights must be in [0, 1]")
        return weight_matrix(fg_weights), factor

    def _build_models(self, data, weights: np.ndarray, factor: float):
        cfg = self.config
        motif = create_motif(cfg.width, cfg.motif_order, cfg.ess)
        foreground = StrandScoreModel(motif, prune_threshold=cfg.prune_threshold)
        background = create_background(cfg.background_order, cfg.ess * (1.0 - factor) / factor)
        background.initialize_from_data(data.sequences, weights[1])
        return foreground, background

    def run(self, sequence_set: SequenceSet, fg_weights: Optional[np.ndarray] = None) -> DiscoveryResult:
        """Discover motifs in ``sequence_set``.

        Parameters
        ----------
        sequence_set : SequenceSet
            Sequences with anchors and confidence values.
        fg_weights : np.ndarray, optional
            Explicit foreground weights in ``[0, 1]``; computed from the
            confidence values when omitted.
        """
        cfg = self.config
        if len(sequence_set) == 0:
            raise InputError("no sequences to search")

        weights, factor = self._weights(sequence_set, fg_weights)
        self.logger.info(
            f"Starting discovery on {len(sequence_set)} sequences "
            f"(foreground weight {weights[0].sum():.2f}, weighting factor {factor:.4f})"
        )
        allowed = initial_allowed(sequence_set.lengths())
        data = annotate(sequence_set, weights, cfg.sd, allowed)
        foreground, background = self._build_models(data, weights, factor)
        rng = np.random.default_rng(cfg.seed)

        with WorkerPool(cfg.threads) as pool:
            objective = GenDisMixObjective(foreground, background, data, weights, beta=MSP, pool=pool)
            seeding = SeedingManager(
                objective,
                data,
                weights,
                restarts=cfg.restarts,
                kmer_length=cfg.kmer_length,
                ess=cfg.ess,
                subsample_fraction=cfg.subsample_fraction,
                subsample_max=cfg.subsample_max,
                condition=default_condition(cfg.pre_iterations, cfg.epsilon, time_budget=cfg.time_budget),
                method=cfg.optimizer,
                rng=rng,
            )
            self.logger.info("Seeding and pre-optimization")
            candidates = seeding.generate()

            accepted = RedundancyFilter(cfg.filter_threshold, cfg.width).filter(
                objective, candidates, seeding.small_data
            )

            refined: List[DiscoveredMotif] = []
            for m, candidate in enumerate(accepted):
                self.logger.info(f"Final optimization of motif {m + 1} of {len(accepted)}")
                motif = self._refine(objective, candidate, sequence_set, weights, allowed)
                refined.append(motif)
                if cfg.delete and m + 1 < len(accepted):
                    allowed = mask_occurrences(allowed, motif.occurrences, motif.width)

        order = sorted(range(len(refined)), key=lambda k: -refined[k].score)
        use = post_filter(
            [motif.model for motif in refined], order, seeding.small_data, cfg.final_filter_threshold, cfg.width
        )
        motifs = []
        for k in order:
            if use[k]:
                motif = refined[k]
                motif.name = f"motif_{len(motifs) + 1}"
                motifs.append(motif)
                self.logger.info(f"{motif.name}: {motif.consensus} score={motif.score:.6f}")

        return DiscoveryResult(
            motifs=motifs, weights=weights, num_candidates=len(candidates), num_accepted=len(accepted)
        )

    def _refine(
        self,
        objective: GenDisMixObjective,
        candidate: Candidate,
        sequence_set: SequenceSet,
        weights: np.ndarray,
        allowed: List[np.ndarray],
    ) -> DiscoveredMotif:
        cfg = self.config
        foreground = objective.foreground
        condition = default_condition(cfg.max_iterations, cfg.epsilon, time_budget=cfg.time_budget)

        if foreground.width != candidate.width:
            foreground.reshape(candidate.width)
        foreground.reset_positions()
        data = annotate(sequence_set, weights, cfg.sd, allowed)
        objective.set_data(data, weights)
        objective.set_parameters(candidate.parameters)
        result = maximize(objective, candidate.parameters, condition, cfg.optimizer)
        self.logger.info(f"Optimized on complete data: {consensus(foreground.motif.pwm())} value={result.value:.6f}")

        spread = WidthHeuristic().apply(
            objective, data, weights, sequence_set.anchors, alpha=cfg.alpha, adjust=cfg.adjust_width
        )
        sd = update_spread(spread, cfg.sd)
        self.logger.info(f"Spread of positional prior: {sd:.4f} (estimated {spread:.4f})")

        data = annotate(sequence_set, weights, sd, allowed)
        foreground.reset_positions()
        objective.set_data(data, weights)
        result = maximize(objective, objective.get_parameters(), condition, cfg.optimizer)
        score = objective.evaluate(result.x)
        if not result.converged:
            self.logger.info(f"Final optimization stopped before convergence: {result.message}")

        finder = OccurrenceFinder(foreground, data, weights[1], cfg.alpha)
        occurrences = finder.find()
        pfm = finder.pwm_and_spread(weights[0], sequence_set.anchors, occurrences=occurrences).pfm
        label = consensus(foreground.motif.pwm())
        self.logger.info(f"Refined motif {label}: score={score:.6f}, {len(occurrences)} occurrences")

        return DiscoveredMotif(
            name="",
            consensus=label,
            pfm=pfm if len(occurrences) else foreground.motif.pwm(),
            width=foreground.width,
            score=score,
            parameters=objective.get_parameters(),
            model=foreground.clone(),
            occurrences=occurrences,
            spread=sd,
            class_parameter=objective.class_parameter,
        )
