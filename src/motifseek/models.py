"""
Strand score model
==================

Foreground class of the discovery objective. A sequence either contains one
motif occurrence at some position on either strand ("present" branch) or it
does not ("absent" branch, scored uniformly). The position of the occurrence is
weighted by the sequence's positional prior.

For every feasible start ``p``::

    logOdds(p, strand) = logPrior(p) - log(2) + motif(p, strand) - m * logUniform

    present = mixing + logSumExp(logOdds)
    absent  = 0
    total   = logSumExp(present, absent) + L * logUniform

Per-sequence state that is expensive to rebuild lives in two cache objects
owned by the model instance, keyed by the identity of the annotated data set
and the motif width: log positional priors and kept-position masks of the
thresholded gradient.
"""

from __future__ import annotations

import copy
import logging
import threading
from typing import Dict, Optional, Tuple

import numpy as np

from motifseek.functions import strand_mixture
from motifseek.prior import log_position_priors
from motifseek.ragged import RaggedData
from motifseek.sequences import AnnotatedData
from motifseek.submodels import MotifSubModel

logger = logging.getLogger(__name__)

LOG2 = float(np.log(2.0))

MODE_ALL = 0
MODE_KEPT = 1
MODE_THRESHOLD = 2


def _window_offsets(lengths: np.ndarray, width: int, factor: int) -> np.ndarray:
    offsets = np.zeros(lengths.size + 1, dtype=np.int64)
    offsets[1:] = np.cumsum(np.maximum(lengths - width + 1, 0) * factor)
    return offsets


class PositionCache:
    """Log positional priors per data set and width."""

    def __init__(self):
        self._entries: Dict[Tuple[int, int], RaggedData] = {}
        self._lock = threading.Lock()

    def get(self, data: AnnotatedData, width: int) -> RaggedData:
        key = (data.uid, width)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                entry = log_position_priors(data, width)
                self._entries[key] = entry
            return entry

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class KeptPositionCache:
    """Kept-position masks of the thresholded gradient, per data set and width.

    Each sequence owns a disjoint slice of the mask, so shards evaluated on
    different threads never write to the same entries.
    """

    def __init__(self):
        self._entries: Dict[Tuple[int, int], Tuple[np.ndarray, np.ndarray, np.ndarray]] = {}
        self._lock = threading.Lock()

    def get(self, data: AnnotatedData, width: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Return ``(kept, valid, offsets)`` for the data set, creating empty entries if needed."""
        key = (data.uid, width)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                offsets = _window_offsets(data.lengths(), width, 2)
                entry = (
                    np.zeros(offsets[-1], dtype=np.bool_),
                    np.zeros(data.num_sequences, dtype=np.bool_),
                    offsets,
                )
                self._entries[key] = entry
            return entry

    def kept_positions(self, data: AnnotatedData, width: int, index: int) -> Optional[np.ndarray]:
        """Kept mask of one sequence (forward windows then reverse windows), None if not computed yet."""
        kept, valid, offsets = self.get(data, width)
        if not valid[index]:
            return None
        return kept[offsets[index] : offsets[index + 1]].copy()

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class StrandScoreModel:
    """Two-branch (motif present / absent) model over both strands.

    Parameters
    ----------
    motif : MotifSubModel
        Sub-model scoring motif windows.
    prune_threshold : float
        Posterior mass kept by the thresholded gradient; 1 keeps every position.
    """

    def __init__(self, motif: MotifSubModel, prune_threshold: float = 0.5):
        if not 0.0 < prune_threshold <= 1.0:
            raise ValueError(f"prune_threshold must be in (0, 1], got {prune_threshold}")
        self.motif = motif
        self.prune_threshold = float(prune_threshold)
        self.mixing = 0.0
        self.log_uniform = -float(np.log(motif.alphabet_size))
        self.positions = PositionCache()
        self.kept = KeptPositionCache()

    @property
    def width(self) -> int:
        return self.motif.width

    @property
    def ess(self) -> float:
        return self.motif.ess

    @property
    def num_parameters(self) -> int:
        return self.motif.num_parameters + 1

    def get_parameters(self) -> np.ndarray:
        """Motif parameters followed by the mixing parameter."""
        return np.concatenate([self.motif.get_parameters(), [self.mixing]])

    def set_parameters(self, params: np.ndarray) -> None:
        params = np.asarray(params, dtype=np.float64)
        if params.shape != (self.num_parameters,):
            raise ValueError(f"expected {self.num_parameters} parameters, got {params.shape}")
        self.motif.set_parameters(params[:-1])
        self.mixing = float(params[-1])

    def reset(self) -> None:
        """Forget kept positions of the thresholded gradient."""
        self.kept.clear()

    def reset_positions(self) -> None:
        """Forget cached positional priors."""
        self.positions.clear()

    def clone(self) -> "StrandScoreModel":
        """Deep copy with empty caches."""
        twin = copy.copy(self)
        twin.motif = copy.deepcopy(self.motif)
        twin.positions = PositionCache()
        twin.kept = KeptPositionCache()
        return twin

    def __getstate__(self):
        state = self.__dict__.copy()
        state["positions"] = None
        state["kept"] = None
        return state

    def __setstate__(self, state):
        self.__dict__.update(state)
        self.positions = PositionCache()
        self.kept = KeptPositionCache()

    # normalization and prior

    def log_normalization_constant(self) -> float:
        """Log of the total mass of both branches."""
        return float(np.logaddexp(self.mixing + self.motif.log_normalization_constant(), 0.0))

    def present_probability(self) -> float:
        """Prior probability of the motif-present branch."""
        logit = self.mixing + self.motif.log_normalization_constant()
        return float(np.exp(logit - np.logaddexp(logit, 0.0)))

    def log_normalization_gradient(self) -> np.ndarray:
        p = self.present_probability()
        return np.concatenate([p * self.motif.log_normalization_gradient(), [p]])

    def log_prior(self) -> float:
        """Motif prior plus a symmetric Beta prior on the branch probabilities."""
        value = self.motif.log_prior()
        if self.ess > 0:
            logit = self.mixing + self.motif.log_normalization_constant()
            norm = np.logaddexp(logit, 0.0)
            value += 0.5 * self.ess * ((logit - norm) + (0.0 - norm))
        return float(value)

    def log_prior_gradient(self) -> np.ndarray:
        grad = np.concatenate([self.motif.log_prior_gradient(), [0.0]])
        if self.ess > 0:
            p = self.present_probability()
            factor = 0.5 * self.ess - self.ess * p
            grad[:-1] += factor * self.motif.log_normalization_gradient()
            grad[-1] += factor
        return grad

    def initialize_mixing_uniformly(self) -> None:
        """Set the mixing parameter so that both branches are equally likely a priori."""
        self.mixing = -self.motif.log_normalization_constant()

    # scoring

    def window_scores(self, data: AnnotatedData, indices: np.ndarray):
        return self.motif.window_scores(data.sequences, indices)

    def present_scores(self, data: AnnotatedData, indices: np.ndarray, mode: int = MODE_ALL):
        """Log-mass of the present branch for the selected sequences.

        Returns ``(present, posteriors, win_offsets)``; posteriors are only
        filled in ``MODE_THRESHOLD``.
        """
        indices = np.asarray(indices, dtype=np.int64)
        width = self.width
        log_prior = self.positions.get(data, width)
        kept, valid, kept_offsets = self.kept.get(data, width)
        windows, win_offsets = self.motif.window_scores(data.sequences, indices)
        present, post = strand_mixture(
            windows,
            win_offsets,
            indices,
            log_prior.data,
            log_prior.offsets,
            self.mixing,
            -LOG2 - width * self.log_uniform,
            self.prune_threshold,
            kept,
            valid,
            kept_offsets,
            mode,
        )
        return present, post, win_offsets

    def score(self, data: AnnotatedData, indices: Optional[np.ndarray] = None, mode: int = MODE_ALL) -> np.ndarray:
        """Total log-probability of the selected sequences (all positions by default)."""
        if indices is None:
            indices = np.arange(data.num_sequences, dtype=np.int64)
        present, _, _ = self.present_scores(data, indices, mode)
        lengths = data.lengths()[np.asarray(indices, dtype=np.int64)]
        return np.logaddexp(present, 0.0) + lengths * self.log_uniform

    def branch_scores(self, data: AnnotatedData, index: int) -> Tuple[float, float, float]:
        """Present branch, absent branch and total score of one sequence, all including the background term."""
        indices = np.array([index], dtype=np.int64)
        present, _, _ = self.present_scores(data, indices, MODE_ALL)
        rest = data.sequences.get_length(index) * self.log_uniform
        total = float(np.logaddexp(present[0], 0.0) + rest)
        return float(present[0] + rest), rest, total

    def accumulate_gradient(
        self,
        data: AnnotatedData,
        indices: np.ndarray,
        post: np.ndarray,
        win_offsets: np.ndarray,
        coef: np.ndarray,
        grad: np.ndarray,
    ) -> None:
        """Add ``coef``-weighted score gradients to ``grad`` (motif parameters then mixing).

        ``coef`` must already include the posterior probability of the present branch.
        """
        self.motif.accumulate_window_gradient(data.sequences, indices, post, win_offsets, coef, grad[:-1])
        grad[-1] += coef.sum()

    def score_and_gradient(self, data: AnnotatedData, index: int) -> Tuple[float, np.ndarray]:
        """Thresholded score of one sequence and its gradient; updates the kept-position cache."""
        indices = np.array([index], dtype=np.int64)
        present, post, win_offsets = self.present_scores(data, indices, MODE_THRESHOLD)
        branch = np.logaddexp(present, 0.0)
        total = float(branch[0] + data.sequences.get_length(index) * self.log_uniform)
        grad = np.zeros(self.num_parameters)
        self.accumulate_gradient(data, indices, post, win_offsets, np.exp(present - branch), grad)
        return total, grad

    def kept_positions(self, data: AnnotatedData, index: int) -> Optional[np.ndarray]:
        return self.kept.kept_positions(data, self.width, index)

    def strand_scores(self, data: AnnotatedData, indices: Optional[np.ndarray] = None):
        """Forward and reverse motif window scores per sequence as two RaggedData."""
        if indices is None:
            indices = np.arange(data.num_sequences, dtype=np.int64)
        indices = np.asarray(indices, dtype=np.int64)
        windows, win_offsets = self.motif.window_scores(data.sequences, indices)
        half = np.diff(win_offsets) // 2
        offsets = np.zeros(indices.size + 1, dtype=np.int64)
        offsets[1:] = np.cumsum(half)
        fwd = np.empty(offsets[-1])
        rev = np.empty(offsets[-1])
        for k in range(indices.size):
            o, n = win_offsets[k], half[k]
            fwd[offsets[k] : offsets[k + 1]] = windows[o : o + n]
            rev[offsets[k] : offsets[k + 1]] = windows[o + n : o + 2 * n]
        return RaggedData(fwd, offsets), RaggedData(rev, offsets.copy())

    def profile(self, data: AnnotatedData, indices: Optional[np.ndarray] = None) -> RaggedData:
        """Unnormalized joint score per start position, both strands combined, without positional prior."""
        fwd, rev = self.strand_scores(data, indices)
        offset = self.mixing - LOG2 - self.width * self.log_uniform
        joined = np.logaddexp(fwd.data, rev.data) + offset
        return RaggedData(joined, fwd.offsets)

    # structure

    def resize(self, left: int, right: int) -> float:
        """Resize the motif and shift the mixing parameter by the normalization delta.

        Returns the change of the model's total normalization constant.
        """
        before = self.log_normalization_constant()
        log_z_old = self.motif.log_normalization_constant()
        self.motif.resize(left, right)
        log_z_new = self.motif.log_normalization_constant()
        self.mixing += log_z_old - log_z_new
        self.reset()
        return self.log_normalization_constant() - before

    def reshape(self, width: int) -> None:
        """Set a new width, discarding motif parameters."""
        if width != self.width:
            self.motif.reshape(width)
            self.reset()
