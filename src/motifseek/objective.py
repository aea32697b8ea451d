"""
objective
=========

Generalized (hybrid generative-discriminative) training objective for the
two-class mixture {foreground strand model, background model}.

For sequence ``i`` with class weights ``w_fg(i)``, ``w_bg(i)`` and
``help_c = logClass_c + score_c(x_i)``::

    LL  = sum_i sum_c w_c(i) * help_c - W * logSumExp_c(logClass_c + logZ_c)
    CLL = sum_i sum_c w_c(i) * (help_c - logSumExp_c(help_c))

    f = (beta_ML * LL + beta_CL * CLL + beta_prior * logPrior) / W

``logClass = [b, 0]`` with a single free class parameter ``b``. The sequences
are split into shards evaluated on the worker pool; partial sums are reduced
on the calling thread.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence, Tuple

import numpy as np

from motifseek.models import MODE_ALL, MODE_KEPT, MODE_THRESHOLD, StrandScoreModel
from motifseek.sequences import AnnotatedData
from motifseek.submodels import BackgroundModel
from motifseek.workers import WorkerPool

logger = logging.getLogger(__name__)

#: maximum supervised posterior: conditional likelihood plus prior
MSP = (0.0, 1.0, 1.0)
#: maximum conditional likelihood
MCL = (0.0, 1.0, 0.0)
#: maximum likelihood
ML = (1.0, 0.0, 0.0)


class GenDisMixObjective:
    """Weighted hybrid objective over an annotated data set.

    Parameters
    ----------
    foreground : StrandScoreModel
        Foreground class model.
    background : BackgroundModel
        Background class model.
    data : AnnotatedData
        Sequences with reference profiles.
    weights : np.ndarray
        Array of shape ``(2, n)``: foreground and background weight per sequence.
    beta : sequence of float
        Weights of the likelihood, conditional likelihood and prior terms.
    norm : bool
        Divide value and gradient by the total weight.
    pool : WorkerPool, optional
        Pool used to evaluate sequence shards.
    """

    def __init__(
        self,
        foreground: StrandScoreModel,
        background: BackgroundModel,
        data: AnnotatedData,
        weights: np.ndarray,
        beta: Sequence[float] = MSP,
        norm: bool = True,
        pool: Optional[WorkerPool] = None,
    ):
        beta = tuple(float(b) for b in beta)
        if len(beta) != 3 or any(b < 0 for b in beta):
            raise ValueError(f"beta must hold three non-negative weights, got {beta}")
        self.foreground = foreground
        self.background = background
        self.beta = beta
        self.norm = norm
        self.pool = pool if pool is not None else WorkerPool(1)
        self.class_parameter = 0.0
        self.effective_sample_size: Optional[int] = None
        self.set_data(data, weights)

    def set_data(self, data: AnnotatedData, weights: np.ndarray) -> None:
        weights = np.asarray(weights, dtype=np.float64)
        if weights.shape != (2, data.num_sequences):
            raise ValueError(f"weights must have shape (2, {data.num_sequences}), got {weights.shape}")
        if np.any(weights < 0) or not np.all(np.isfinite(weights)):
            raise ValueError("weights must be finite and non-negative")
        self.data = data
        self.weights = weights
        self.total_weight = float(weights.sum())
        self.reset()

    # parameters

    @property
    def dimension(self) -> int:
        return 1 + self.foreground.num_parameters + self.background.num_parameters

    def get_parameters(self) -> np.ndarray:
        """Class parameter, foreground parameters, background parameters."""
        return np.concatenate(
            [[self.class_parameter], self.foreground.get_parameters(), self.background.get_parameters()]
        )

    def set_parameters(self, params: np.ndarray) -> None:
        params = np.asarray(params, dtype=np.float64)
        if params.shape != (self.dimension,):
            raise ValueError(f"expected {self.dimension} parameters, got {params.shape}")
        n_fg = self.foreground.num_parameters
        self.class_parameter = float(params[0])
        self.foreground.set_parameters(params[1 : 1 + n_fg])
        self.background.set_parameters(params[1 + n_fg :])

    def add_to_class_parameter(self, delta: float) -> None:
        self.class_parameter += delta

    def reset(self) -> None:
        """Invalidate kept positions (new width, new weights or new start)."""
        self.foreground.reset()

    def reset_positions(self) -> None:
        """Invalidate cached positional priors."""
        self.foreground.reset_positions()

    # evaluation

    def evaluate(self, params: Optional[np.ndarray] = None, exact: bool = False) -> float:
        """Objective value; reuses the kept positions of the last gradient unless ``exact``."""
        value, _ = self._evaluate(params, MODE_ALL if exact else MODE_KEPT, with_gradient=False)
        return value

    def value_and_gradient(self, params: Optional[np.ndarray] = None) -> Tuple[float, np.ndarray]:
        """Objective value and gradient over freshly thresholded positions."""
        return self._evaluate(params, MODE_THRESHOLD, with_gradient=True)

    def _class_prior(self) -> Tuple[float, float]:
        alpha_fg, alpha_bg = self.foreground.ess, self.background.ess
        b = self.class_parameter
        log_p_fg = -np.logaddexp(0.0, -b)
        log_p_bg = -np.logaddexp(0.0, b)
        p_fg = np.exp(log_p_fg)
        return alpha_fg * log_p_fg + alpha_bg * log_p_bg, alpha_fg * (1.0 - p_fg) - alpha_bg * p_fg

    def _shard(self, indices: np.ndarray, mode: int, with_gradient: bool):
        fg, bg = self.foreground, self.background
        present, post, win_offsets = fg.present_scores(self.data, indices, mode)
        fg_branch = np.logaddexp(present, 0.0)
        help_fg = self.class_parameter + fg_branch + self.data.lengths()[indices] * fg.log_uniform
        help_bg = bg.sequence_scores(self.data.sequences, indices)
        w_fg = self.weights[0, indices]
        w_bg = self.weights[1, indices]

        log_sum = np.logaddexp(help_fg, help_bg)
        ll = float(np.dot(w_fg, help_fg) + np.dot(w_bg, help_bg))
        cll = float(np.dot(w_fg, help_fg - log_sum) + np.dot(w_bg, help_bg - log_sum))
        effective = int(np.count_nonzero(np.isfinite(present)))
        if not with_gradient:
            return ll, cll, effective, None

        beta_ml, beta_cl, _ = self.beta
        p_fg = np.exp(help_fg - log_sum)
        total = w_fg + w_bg
        coef_fg = beta_ml * w_fg + beta_cl * (w_fg - total * p_fg)
        coef_bg = beta_ml * w_bg + beta_cl * (w_bg - total * (1.0 - p_fg))

        grad = np.zeros(self.dimension)
        n_fg = fg.num_parameters
        grad[0] = coef_fg.sum()
        fg.accumulate_gradient(
            self.data, indices, post, win_offsets, coef_fg * np.exp(present - fg_branch), grad[1 : 1 + n_fg]
        )
        bg.accumulate_gradient(self.data.sequences, indices, coef_bg, grad[1 + n_fg :])
        return ll, cll, effective, grad

    def _evaluate(self, params: Optional[np.ndarray], mode: int, with_gradient: bool):
        if params is not None:
            self.set_parameters(params)
        fg = self.foreground
        # cache entries are created here so that shards only read the dictionaries
        fg.positions.get(self.data, fg.width)
        fg.kept.get(self.data, fg.width)

        shards = self.pool.shards(self.data.num_sequences)
        results = self.pool.map(lambda idx: self._shard(idx, mode, with_gradient), shards)

        ll = sum(r[0] for r in results)
        cll = sum(r[1] for r in results)
        self.effective_sample_size = sum(r[2] for r in results)
        grad = np.sum([r[3] for r in results], axis=0) if with_gradient else None
        if self.effective_sample_size < self.data.num_sequences:
            logger.debug(
                f"Motif fits in {self.effective_sample_size} of {self.data.num_sequences} sequences"
            )

        beta_ml, beta_cl, beta_prior = self.beta
        value = beta_cl * cll
        if beta_ml > 0:
            n_fg = fg.num_parameters
            b = self.class_parameter
            log_z_fg = fg.log_normalization_constant()
            log_norm = np.logaddexp(b + log_z_fg, self.background.log_normalization_constant())
            value += beta_ml * (ll - self.total_weight * log_norm)
            if with_gradient:
                pi_fg = np.exp(b + log_z_fg - log_norm)
                grad[0] -= beta_ml * self.total_weight * pi_fg
                grad[1 : 1 + n_fg] -= beta_ml * self.total_weight * pi_fg * fg.log_normalization_gradient()

        if beta_prior > 0:
            class_value, class_grad = self._class_prior()
            value += beta_prior * (class_value + fg.log_prior() + self.background.log_prior())
            if with_gradient:
                grad += beta_prior * np.concatenate(
                    [[class_grad], fg.log_prior_gradient(), self.background.log_prior_gradient()]
                )

        if self.norm and self.total_weight > 0:
            value /= self.total_weight
            if with_gradient:
                grad /= self.total_weight
        return float(value), grad
