"""
significance
============

Occurrence calling and width refinement of an optimized motif.

The null distribution of occurrence scores is built from the unnormalized
joint profile scores of every window of the data, each weighted by the
background weight of its sequence. The p-value of a score is the weighted
fraction of null scores at least as large.

The width heuristic looks at the columns of a flanked position frequency
matrix of the significant occurrences and trims or extends the motif at both
edges, subject to a symmetry rule on the two offsets.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
import pandas as pd

from motifseek.functions import max_pairwise_mutual_information
from motifseek.models import StrandScoreModel
from motifseek.sequences import ALPHABET_SIZE, UNKNOWN, AnnotatedData, decode, reverse_complement

logger = logging.getLogger(__name__)

OCCURRENCE_COLUMNS = ["seq_index", "position", "strand", "p_value", "score", "site", "adjusted_site"]


def consensus(pfm: np.ndarray) -> str:
    """Consensus string of a position frequency matrix.

    A column gives its most frequent symbol in uppercase if that symbol has a
    probability above 0.4 and leads the runner-up by more than 0.1, in
    lowercase if it only passes 0.4, and ``N`` otherwise.
    """
    symbols = []
    for column in np.asarray(pfm, dtype=np.float64):
        order = np.argsort(-column, kind="stable")
        best, second = column[order[0]], column[order[1]]
        if best > 0.4:
            symbol = decode(np.array([order[0]], dtype=np.int8))
            symbols.append(symbol if best - second > 0.1 else symbol.lower())
        else:
            symbols.append("N")
    return "".join(symbols)


@dataclass
class BindingSites:
    """Significant occurrences summarized for the width heuristic."""

    pfm: np.ndarray
    spread: float
    sites: np.ndarray
    weights: np.ndarray
    scores: np.ndarray


class OccurrenceFinder:
    """Find significant motif occurrences.

    Parameters
    ----------
    model : StrandScoreModel
        Optimized foreground model.
    data : AnnotatedData
        Sequences to scan; they also provide the null distribution.
    bg_weights : np.ndarray
        Background weight per sequence, used to weight null scores.
    alpha : float
        Significance cutoff.
    """

    def __init__(self, model: StrandScoreModel, data: AnnotatedData, bg_weights: np.ndarray, alpha: float = 1e-3):
        if not 0.0 < alpha < 1.0:
            raise ValueError(f"alpha must be in (0, 1), got {alpha}")
        self.model = model
        self.data = data
        self.alpha = alpha
        self.profile = model.profile(data)
        self.forward, self.reverse = model.strand_scores(data)

        lengths = self.profile.lengths()
        null_weights = np.repeat(np.asarray(bg_weights, dtype=np.float64), lengths)
        if null_weights.sum() <= 0:
            logger.warning("No background weight for the null distribution, weighting all windows equally")
            null_weights = np.ones_like(null_weights)
        order = np.argsort(self.profile.data, kind="stable")
        self._null_scores = self.profile.data[order]
        self._null_cumulative = np.concatenate([[0.0], np.cumsum(null_weights[order])])
        self._null_total = self._null_cumulative[-1]

    def p_values(self, scores: np.ndarray) -> np.ndarray:
        """Weighted fraction of null scores greater than or equal to each score."""
        scores = np.asarray(scores, dtype=np.float64)
        if self._null_total <= 0:
            return np.ones_like(scores)
        idx = np.searchsorted(self._null_scores, scores, side="left")
        return (self._null_total - self._null_cumulative[idx]) / self._null_total

    def find(self) -> pd.DataFrame:
        """Occurrences with ``p < alpha`` sorted by p-value."""
        p_values = self.p_values(self.profile.data)
        hits = np.where(p_values < self.alpha)[0]
        if hits.size == 0:
            return pd.DataFrame(columns=OCCURRENCE_COLUMNS)

        owners = np.repeat(np.arange(self.profile.num_sequences), self.profile.lengths())[hits]
        positions = hits - self.profile.offsets[owners]
        reverse = self.reverse.data[hits] > self.forward.data[hits]
        width = self.model.width

        sites, adjusted = [], []
        for i, pos, rc in zip(owners, positions, reverse):
            codes = self.data.sequences.get_slice(int(i))[pos : pos + width]
            sites.append(decode(codes))
            adjusted.append(decode(reverse_complement(codes)) if rc else sites[-1])

        df = pd.DataFrame(
            {
                "seq_index": owners.astype(np.int64),
                "position": positions.astype(np.int64),
                "strand": np.where(reverse, "-", "+"),
                "p_value": p_values[hits],
                "score": np.where(reverse, self.reverse.data[hits], self.forward.data[hits]),
                "site": sites,
                "adjusted_site": adjusted,
            }
        )
        return df.sort_values(["p_value", "seq_index", "position"], kind="stable").reset_index(drop=True)

    def pwm_and_spread(
        self, fg_weights: np.ndarray, anchors: np.ndarray, flank: int = 0, occurrences: Optional[pd.DataFrame] = None
    ) -> BindingSites:
        """Flanked PFM of the occurrences and their weighted spread around the anchors.

        Every occurrence of sequence ``i`` gets weight ``fg_weights[i] / n_i``
        where ``n_i`` is the number of occurrences in that sequence. Only
        sequences with a finite anchor contribute to the spread.
        """
        if occurrences is None:
            occurrences = self.find()
        width = self.model.width
        span = width + 2 * flank
        pfm = np.zeros((span, ALPHABET_SIZE))
        if occurrences.empty:
            return BindingSites(pfm, float("nan"), np.empty((0, span), dtype=np.int8), np.empty(0), np.empty(0))

        occurrences = occurrences.sort_values("score", ascending=False, kind="stable")
        owners = occurrences["seq_index"].to_numpy()
        counts = np.bincount(owners, minlength=self.data.num_sequences)
        fg_weights = np.asarray(fg_weights, dtype=np.float64)
        anchors = np.asarray(anchors, dtype=np.float64)

        sites = np.full((len(occurrences), span), UNKNOWN, dtype=np.int8)
        weights = np.empty(len(occurrences))
        squares = total = 0.0
        for k, (i, pos, strand) in enumerate(
            zip(owners, occurrences["position"].to_numpy(), occurrences["strand"].to_numpy())
        ):
            seq = self.data.sequences.get_slice(int(i))
            start = int(pos) - flank
            lo, hi = max(start, 0), min(start + span, seq.size)
            sites[k, lo - start : hi - start] = seq[lo:hi]
            if strand == "-":
                sites[k] = reverse_complement(sites[k])
            w = fg_weights[i] / counts[i]
            weights[k] = w
            valid = sites[k] < ALPHABET_SIZE
            pfm[np.nonzero(valid)[0], sites[k][valid]] += w
            if np.isfinite(anchors[i]):
                # motif start inside the flanked site, not the flanked start
                squares += w * (start + flank - anchors[i]) ** 2
                total += w

        rows = pfm.sum(axis=1, keepdims=True)
        pfm = np.divide(pfm, rows, out=np.zeros_like(pfm), where=rows > 0)
        spread = float(np.sqrt(squares / total)) if total > 0 else float("nan")
        return BindingSites(pfm, spread, sites, weights, occurrences["score"].to_numpy())


def symmetric_offsets(left: int, right: int) -> Tuple[int, int]:
    """Make the left and right width changes agree in direction.

    Both offsets are in resize convention: positive ``left`` and negative
    ``right`` remove positions.
    """
    if left <= 0 and right < 0:
        if left <= right:
            left = right
        else:
            left = right = int((left + right) / 2)
    elif right >= 0 and left > 0:
        if right >= left:
            right = left
        else:
            left = right = int((left + right) / 2)
    else:
        left = right = 0
    return left, right


def update_spread(spread: float, sd: float) -> float:
    """Geometric mean of the estimated and the current spread, ``sd`` if that is not usable."""
    with np.errstate(invalid="ignore"):
        new_sd = float(np.sqrt(spread * sd))
    if not np.isfinite(new_sd) or new_sd <= 0:
        logger.info(f"Did not adjust spread to {new_sd} using {spread} and {sd}")
        return sd
    return new_sd


def background_composition(data: AnnotatedData, bg_weights: np.ndarray) -> np.ndarray:
    """Symbol distribution weighted by background weight and positional reference."""
    owners = np.repeat(np.arange(data.num_sequences), data.lengths())
    codes = data.sequences.data
    valid = codes < ALPHABET_SIZE
    weights = np.asarray(bg_weights, dtype=np.float64)[owners] * data.reference.data
    counts = np.bincount(codes[valid].astype(np.int64), weights=weights[valid], minlength=ALPHABET_SIZE)
    if counts.sum() <= 0:
        return np.full(ALPHABET_SIZE, 1.0 / ALPHABET_SIZE)
    return counts / counts.sum()


def column_divergence(pfm: np.ndarray, background: np.ndarray) -> np.ndarray:
    """Kullback-Leibler divergence (nats) of every PFM column from the background."""
    with np.errstate(divide="ignore", invalid="ignore"):
        terms = np.where(pfm > 0, pfm * np.log(pfm / background), 0.0)
    return terms.sum(axis=1)


class WidthHeuristic:
    """Trim uninformative edge columns and extend informative ones.

    Parameters
    ----------
    threshold : float
        Columns whose information statistic stays below this value are low.
    """

    def __init__(self, threshold: float = 0.2):
        self.threshold = threshold

    @staticmethod
    def flank_size(average_length: float, width: int) -> int:
        add = 5
        if average_length - width < 20:
            add = int((average_length - width) / 4.0)
        return max(add, 0)

    def column_statistic(self, sites: BindingSites, background: np.ndarray, order: int) -> np.ndarray:
        """Per-column divergence, raised to the largest mutual information with columns within ``order``."""
        stat = column_divergence(sites.pfm, background)
        if order > 0 and sites.sites.shape[0] > 0:
            mi = max_pairwise_mutual_information(sites.sites, sites.weights, order, ALPHABET_SIZE)
            length = stat.size
            for i in range(length):
                for j in range(max(0, i - order), min(length, i + order + 1)):
                    if i != j and mi[i, j] > stat[i]:
                        stat[i] = mi[i, j]
        return stat

    def offsets(self, stat: np.ndarray, add: int) -> Tuple[int, int]:
        """Raw left/right offsets counted from the flanked window edges."""
        length = stat.size
        left, right = -add, add
        while left + add < length and stat[left + add] < self.threshold:
            left += 1
        while right - add > -length and stat[length - 1 + right - add] < self.threshold:
            right -= 1
        return left, right

    def apply(
        self,
        objective,
        data: AnnotatedData,
        weights: np.ndarray,
        anchors: np.ndarray,
        alpha: float = 1e-3,
        adjust: bool = True,
    ) -> float:
        """Adjust the width of the objective's foreground motif and return the estimated spread."""
        model: StrandScoreModel = objective.foreground
        add = self.flank_size(float(np.mean(data.lengths())) if data.num_sequences else 0.0, model.width)
        finder = OccurrenceFinder(model, data, weights[1], alpha)
        sites = finder.pwm_and_spread(weights[0], anchors, flank=add)
        if sites.sites.shape[0] == 0:
            logger.info("No significant occurrences, keeping the motif width")
            return sites.spread

        stat = self.column_statistic(sites, background_composition(data, weights[1]), model.motif.order)
        left, right = self.offsets(stat, add)
        logger.debug(f"Raw width offsets: left={left}, right={right}")
        left, right = symmetric_offsets(left, right)
        logger.debug(f"Symmetric width offsets: left={left}, right={right}")

        if left + add == stat.size or right - add == -stat.size:
            logger.info("Width heuristic tried to remove the complete motif, no modifications")
        elif not adjust or not model.motif.supports_resize:
            logger.debug("Width adjustment disabled")
        elif left != 0 or right != 0:
            delta = model.resize(left, right)
            objective.add_to_class_parameter(-delta)
            logger.info(f"Modified motif of width {model.width} (left={left}, right={right})")
        else:
            logger.info("No width modification for the motif")
        return sites.spread
