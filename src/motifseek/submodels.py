"""
Sub-models
==========

Statistical building blocks of the foreground and background classes.

Motif sub-models score fixed-width windows and expose the capability
interface the strand model and the discovery loop rely on: window scores and
gradients, normalization constant, prior, plug-in initialization and elastic
resizing. Background models score whole sequences.

Models are registered by key, so that the discovery loop can build them from
configuration values without knowing the concrete classes.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Sequence

import numpy as np
from scipy.special import logsumexp

from motifseek.functions import (
    accumulate_markov_gradient,
    accumulate_slim_gradient,
    homogeneous_counts,
    homogeneous_scores,
    markov_site_gradient,
    markov_site_score,
    markov_window_scores,
    slim_site_gradient,
    slim_site_score,
    slim_window_scores,
)
from motifseek.ragged import RaggedData
from motifseek.sequences import ALPHABET_SIZE

logger = logging.getLogger(__name__)

_TINY = np.finfo(np.float64).tiny


class SubModelRegistry:
    """Registry for sub-model classes using decorator pattern."""

    def __init__(self):
        self._models: Dict[str, type] = {}

    def register(self, key: str):
        """Decorator to register a sub-model class."""

        def decorator(model_cls):
            self._models[key] = model_cls
            logger.debug(f"Registered sub-model: {key} -> {model_cls.__name__}")
            return model_cls

        return decorator

    def get(self, key: str) -> type:
        if key not in self._models:
            available = list(self._models.keys())
            raise ValueError(f"Sub-model '{key}' not found. Available: {available}")
        return self._models[key]


registry = SubModelRegistry()


def _log_normalize(counts: np.ndarray) -> np.ndarray:
    """Row-wise log of normalized counts; empty rows become uniform."""
    rows = counts.sum(axis=-1, keepdims=True)
    uniform = np.full_like(counts, 1.0 / counts.shape[-1])
    with np.errstate(invalid="ignore", divide="ignore"):
        probs = np.where(rows > 0, counts / rows, uniform)
    return np.log(np.maximum(probs, _TINY))


def _context_index(symbols: np.ndarray, alphabet_size: int) -> int:
    ctx = 0
    for sym in symbols:
        ctx = ctx * alphabet_size + int(sym)
    return ctx


class MotifSubModel(ABC):
    """Interface of fixed-width motif models used inside the strand model."""

    alphabet_size: int
    ess: float
    supports_resize = False

    @property
    @abstractmethod
    def width(self) -> int:
        pass

    @property
    @abstractmethod
    def order(self) -> int:
        """Longest dependency distance between positions."""

    @property
    @abstractmethod
    def num_parameters(self) -> int:
        pass

    @abstractmethod
    def get_parameters(self) -> np.ndarray:
        pass

    @abstractmethod
    def set_parameters(self, params: np.ndarray) -> None:
        pass

    @abstractmethod
    def log_score_for(self, codes: np.ndarray, start: int, reverse: bool = False) -> float:
        pass

    @abstractmethod
    def gradient_for(self, codes: np.ndarray, start: int, reverse: bool = False) -> np.ndarray:
        pass

    @abstractmethod
    def window_scores(self, sequences: RaggedData, indices: np.ndarray):
        pass

    @abstractmethod
    def accumulate_window_gradient(self, sequences, indices, post, win_offsets, coef, grad) -> None:
        pass

    @abstractmethod
    def log_normalization_constant(self) -> float:
        pass

    @abstractmethod
    def log_normalization_gradient(self) -> np.ndarray:
        pass

    @abstractmethod
    def log_prior(self) -> float:
        pass

    @abstractmethod
    def log_prior_gradient(self) -> np.ndarray:
        pass

    @abstractmethod
    def initialize_from_sites(self, sites: Sequence[np.ndarray], weights: Sequence[float]) -> None:
        pass

    @abstractmethod
    def pwm(self) -> np.ndarray:
        """Symbol distribution per position, shape ``(width, alphabet_size)``."""

    @abstractmethod
    def reshape(self, width: int) -> None:
        """Change the width, discarding parameters."""

    def resize(self, left: int, right: int) -> None:
        raise NotImplementedError(f"{type(self).__name__} does not support resizing")


@registry.register("markov")
class MarkovMotifModel(MotifSubModel):
    """Inhomogeneous Markov model of fixed width.

    Parameters are unnormalized log-potentials ``lambda[j][ctx][x]``; position
    ``j`` conditions on the ``min(j, order)`` preceding symbols of the window.
    Contexts are encoded base ``alphabet_size`` with the oldest symbol as the
    most significant digit.
    """

    supports_resize = True

    def __init__(self, width: int, order: int = 0, ess: float = 4.0, alphabet_size: int = ALPHABET_SIZE):
        if width <= 0:
            raise ValueError(f"width must be positive, got {width}")
        if order < 0:
            raise ValueError(f"order must be non-negative, got {order}")
        if ess < 0:
            raise ValueError(f"ess must be non-negative, got {ess}")
        self.alphabet_size = alphabet_size
        self.ess = float(ess)
        self._order = order
        self.reshape(width)

    @property
    def width(self) -> int:
        return self._width

    @property
    def order(self) -> int:
        return self._order

    @property
    def num_parameters(self) -> int:
        return int(self.pos_offsets[-1])

    def _layout(self, width: int):
        orders = np.minimum(np.arange(width), self._order).astype(np.int64)
        pos_offsets = np.zeros(width + 1, dtype=np.int64)
        pos_offsets[1:] = np.cumsum(self.alphabet_size ** (orders + 1))
        return orders, pos_offsets

    def reshape(self, width: int) -> None:
        if width <= 0:
            raise ValueError(f"width must be positive, got {width}")
        self._width = int(width)
        self.orders, self.pos_offsets = self._layout(self._width)
        self.params = np.zeros(self.num_parameters, dtype=np.float64)

    def get_parameters(self) -> np.ndarray:
        return self.params.copy()

    def set_parameters(self, params: np.ndarray) -> None:
        params = np.asarray(params, dtype=np.float64)
        if params.shape != (self.num_parameters,):
            raise ValueError(f"expected {self.num_parameters} parameters, got {params.shape}")
        self.params = params.copy()

    def blocks(self, params: np.ndarray = None) -> List[np.ndarray]:
        """Per-position parameter tables of shape ``(contexts, alphabet_size)`` (views)."""
        params = self.params if params is None else params
        a = self.alphabet_size
        return [
            params[self.pos_offsets[j] : self.pos_offsets[j + 1]].reshape(a ** int(self.orders[j]), a)
            for j in range(self._width)
        ]

    # scoring

    def log_score_for(self, codes: np.ndarray, start: int, reverse: bool = False) -> float:
        """Score the window of ``codes`` starting at ``start`` on the given strand."""
        return float(
            markov_site_score(
                codes, start, self._width, reverse, self.params, self.pos_offsets, self.orders, self.alphabet_size
            )
        )

    def gradient_for(self, codes: np.ndarray, start: int, reverse: bool = False) -> np.ndarray:
        return markov_site_gradient(
            codes, start, self._width, reverse, self.params, self.pos_offsets, self.orders, self.alphabet_size
        )

    def window_scores(self, sequences: RaggedData, indices: np.ndarray):
        return markov_window_scores(
            sequences.data,
            sequences.offsets,
            indices,
            self._width,
            self.params,
            self.pos_offsets,
            self.orders,
            self.alphabet_size,
        )

    def accumulate_window_gradient(self, sequences, indices, post, win_offsets, coef, grad) -> None:
        accumulate_markov_gradient(
            sequences.data,
            sequences.offsets,
            indices,
            post,
            win_offsets,
            coef,
            self._width,
            self.pos_offsets,
            self.orders,
            self.alphabet_size,
            grad,
        )

    # normalization

    def _next_index(self, j: int) -> np.ndarray:
        a = self.alphabet_size
        n_ctx = a ** int(self.orders[j])
        n_next = a ** int(self.orders[j + 1])
        return (np.arange(n_ctx)[:, None] * a + np.arange(a)[None, :]) % n_next

    def _forward(self, blocks: List[np.ndarray]) -> List[np.ndarray]:
        log_alpha = [np.zeros(1)]
        for j in range(self._width - 1):
            values = log_alpha[j][:, None] + blocks[j]
            nxt = np.full(self.alphabet_size ** int(self.orders[j + 1]), -np.inf)
            np.logaddexp.at(nxt, self._next_index(j).ravel(), values.ravel())
            log_alpha.append(nxt)
        return log_alpha

    def log_normalization_constant(self) -> float:
        """Log of the sum of ``exp(score)`` over all windows."""
        blocks = self.blocks()
        log_alpha = self._forward(blocks)
        return float(logsumexp(log_alpha[-1][:, None] + blocks[-1]))

    def log_normalization_gradient(self) -> np.ndarray:
        """Expected parameter usage under the normalized model (forward-backward)."""
        blocks = self.blocks()
        log_alpha = self._forward(blocks)
        log_z = logsumexp(log_alpha[-1][:, None] + blocks[-1])

        grad = np.empty(self.num_parameters)
        last = log_alpha[-1][:, None] + blocks[-1]
        grad[self.pos_offsets[-2] : self.pos_offsets[-1]] = np.exp(last - log_z).ravel()
        log_beta = logsumexp(blocks[-1], axis=1)
        for j in range(self._width - 2, -1, -1):
            ahead = blocks[j] + log_beta[self._next_index(j)]
            expected = np.exp(log_alpha[j][:, None] + ahead - log_z)
            grad[self.pos_offsets[j] : self.pos_offsets[j + 1]] = expected.ravel()
            log_beta = logsumexp(ahead, axis=1)
        return grad

    # prior

    def _hyperparameters(self) -> np.ndarray:
        a = self.alphabet_size
        return np.concatenate(
            [np.full(a ** int(c + 1), self.ess / a ** int(c + 1)) for c in self.orders]
        )

    def log_prior(self) -> float:
        """Product-Dirichlet prior on the conditional distributions."""
        if self.ess == 0:
            return 0.0
        hyper = self._hyperparameters()
        value = float(np.dot(hyper, self.params))
        for block, h in zip(self.blocks(), self.blocks(hyper)):
            value -= float(np.dot(h.sum(axis=1), logsumexp(block, axis=1)))
        return value

    def log_prior_gradient(self) -> np.ndarray:
        if self.ess == 0:
            return np.zeros(self.num_parameters)
        hyper = self._hyperparameters()
        grad = hyper.copy()
        for j, (block, h) in enumerate(zip(self.blocks(), self.blocks(hyper))):
            softmax = np.exp(block - logsumexp(block, axis=1, keepdims=True))
            grad[self.pos_offsets[j] : self.pos_offsets[j + 1]] -= (h.sum(axis=1, keepdims=True) * softmax).ravel()
        return grad

    # distributions

    def conditional_log_probabilities(self) -> List[np.ndarray]:
        return [block - logsumexp(block, axis=1, keepdims=True) for block in self.blocks()]

    def _context_marginals(self, cond: List[np.ndarray]) -> List[np.ndarray]:
        marginals = [np.ones(1)]
        for j in range(self._width - 1):
            joint = marginals[j][:, None] * np.exp(cond[j])
            nxt = np.zeros(self.alphabet_size ** int(self.orders[j + 1]))
            np.add.at(nxt, self._next_index(j).ravel(), joint.ravel())
            marginals.append(nxt)
        return marginals

    def pwm(self) -> np.ndarray:
        cond = self.conditional_log_probabilities()
        marginals = self._context_marginals(cond)
        return np.array([(mu[:, None] * np.exp(c)).sum(axis=0) for mu, c in zip(marginals, cond)])

    # initialization and structure

    def initialize_from_sites(self, sites: Sequence[np.ndarray], weights: Sequence[float]) -> None:
        """Plug-in (MAP) estimate from weighted sites of the model's width."""
        a = self.alphabet_size
        counts = [np.full((a ** int(c), a), self.ess / a ** int(c + 1)) for c in self.orders]
        for site, weight in zip(sites, weights):
            site = np.asarray(site)
            if site.size != self._width:
                raise ValueError(f"site of length {site.size} does not match width {self._width}")
            for j in range(self._width):
                c = int(self.orders[j])
                window = site[j - c : j + 1]
                if np.any(window >= a):
                    continue
                counts[j][_context_index(window[:-1], a), int(window[-1])] += weight
        self.params = np.concatenate([_log_normalize(block).ravel() for block in counts])

    def resize(self, left: int, right: int) -> None:
        """Remove (``left > 0``, ``right < 0``) or add (``left < 0``, ``right > 0``) edge positions.

        Kept positions keep their conditional distributions, with dropped
        context marginalized out; added positions are uniform.
        """
        old_width = self._width
        new_width = old_width - left + right
        if new_width <= 0:
            raise ValueError(f"cannot resize width {old_width} by ({left}, {right})")
        a = self.alphabet_size
        cond = self.conditional_log_probabilities()
        marginals = self._context_marginals(cond)
        old_orders = self.orders

        new_orders, _ = self._layout(new_width)
        blocks = []
        for i in range(new_width):
            j = i + left
            c_new = int(new_orders[i])
            if j < 0 or j >= old_width:
                blocks.append(np.zeros((a**c_new, a)))
                continue
            c_old = int(old_orders[j])
            block = cond[j]
            if c_new < c_old:
                joint = (marginals[j][:, None] * np.exp(block)).reshape(a ** (c_old - c_new), a**c_new, a)
                block = _log_normalize(joint.sum(axis=0))
            elif c_new > c_old:
                block = np.tile(block, (a ** (c_new - c_old), 1))
            blocks.append(block)

        self.reshape(new_width)
        self.params = np.concatenate([block.ravel() for block in blocks])
        logger.debug(f"Resized motif model from {old_width} to {new_width} (left={left}, right={right})")


class _SlimLayout:
    """Parameter layout of a sparse local mixture model of a given width.

    Per position ``j`` the parameters are the component logits, then for each
    component ``c`` its ancestor logits (none for ``c == 0``) and its
    conditional tables of shape ``(alphabet_size ** c, alphabet_size)``.
    Every softmax group is contiguous; ``group_starts``/``group_sizes`` list
    them in order and ``group_shares`` holds the fraction of the equivalent
    sample size each group receives under the BDeu prior.
    """

    def __init__(self, width: int, components: int, distance: int, alphabet_size: int):
        a = alphabet_size
        self.n_comp = np.minimum(np.arange(width), components).astype(np.int64) + 1
        shape = (width, components + 1)
        self.comp_offsets = np.zeros(width, dtype=np.int64)
        self.n_anc = np.zeros(shape, dtype=np.int64)
        self.anc_offsets = np.full(shape, -1, dtype=np.int64)
        self.dep_offsets = np.full(shape, -1, dtype=np.int64)
        starts, sizes, shares = [], [], []

        total = 0
        for j in range(width):
            n = int(self.n_comp[j])
            self.comp_offsets[j] = total
            starts.append(total)
            sizes.append(n)
            shares.append(1.0)
            total += n
            for c in range(n):
                if c > 0:
                    k = min(j - c + 1, distance)
                    self.n_anc[j, c] = k
                    self.anc_offsets[j, c] = total
                    starts.append(total)
                    sizes.append(k)
                    shares.append(1.0 / n)
                    total += k
                self.dep_offsets[j, c] = total
                for _ in range(a**c):
                    starts.append(total)
                    sizes.append(a)
                    shares.append(1.0 / n / a**c)
                    total += a

        self.num_parameters = total
        self.group_starts = np.array(starts, dtype=np.int64)
        self.group_sizes = np.array(sizes, dtype=np.int64)
        self.group_shares = np.array(shares, dtype=np.float64)

    def arrays(self):
        """Index arrays in the order the numba kernels unpack them."""
        return self.n_comp, self.comp_offsets, self.n_anc, self.anc_offsets, self.dep_offsets

    def comp_slice(self, j: int) -> slice:
        return slice(int(self.comp_offsets[j]), int(self.comp_offsets[j] + self.n_comp[j]))

    def anc_slice(self, j: int, c: int) -> slice:
        return slice(int(self.anc_offsets[j, c]), int(self.anc_offsets[j, c] + self.n_anc[j, c]))

    def dep_slice(self, j: int, c: int, alphabet_size: int) -> slice:
        return slice(int(self.dep_offsets[j, c]), int(self.dep_offsets[j, c] + alphabet_size ** (c + 1)))


@registry.register("slim")
class SparseLocalMixtureModel(MotifSubModel):
    """Limited sparse local inhomogeneous mixture (LSlim) model.

    The symbol at position ``j`` is drawn from a mixture of components. The
    component ``c == 0`` ignores the context; component ``c > 0`` conditions on
    ``c`` consecutive symbols that end ``m + 1`` positions before ``j``, where
    the offset ``m < distance`` is itself a mixture. Every distribution is a
    softmax over its own logits, so the model is normalized by construction.

    Parameters
    ----------
    width : int
        Number of motif positions.
    components : int
        Largest number of context symbols a component conditions on.
    distance : int
        Number of candidate offsets of the context.
    ess : float
        Equivalent sample size of the BDeu prior.
    q : float
        Initial probability of the context-dependent components.
    """

    supports_resize = True

    def __init__(
        self,
        width: int,
        components: int = 1,
        distance: int = 3,
        ess: float = 4.0,
        q: float = 0.9,
        alphabet_size: int = ALPHABET_SIZE,
    ):
        if width <= 0:
            raise ValueError(f"width must be positive, got {width}")
        if components < 0:
            raise ValueError(f"components must be non-negative, got {components}")
        if distance < 1:
            raise ValueError(f"distance must be positive, got {distance}")
        if ess < 0:
            raise ValueError(f"ess must be non-negative, got {ess}")
        if not 0.0 < q < 1.0:
            raise ValueError(f"q must be in (0, 1), got {q}")
        self.alphabet_size = alphabet_size
        self.ess = float(ess)
        self.components = components
        self.distance = distance
        self.q = q
        self.reshape(width)

    @property
    def width(self) -> int:
        return self._width

    @property
    def order(self) -> int:
        if self.components == 0:
            return 0
        return self.distance + self.components - 1

    @property
    def num_parameters(self) -> int:
        return self.layout.num_parameters

    def reshape(self, width: int) -> None:
        if width <= 0:
            raise ValueError(f"width must be positive, got {width}")
        self._width = int(width)
        self.layout = _SlimLayout(self._width, self.components, self.distance, self.alphabet_size)
        self._set(np.zeros(self.num_parameters, dtype=np.float64))

    def _set(self, params: np.ndarray) -> None:
        self.params = params
        starts, sizes = self.layout.group_starts, self.layout.group_sizes
        peak = np.maximum.reduceat(params, starts)
        mass = np.add.reduceat(np.exp(params - np.repeat(peak, sizes)), starts)
        self.logp = params - np.repeat(peak + np.log(mass), sizes)

    def get_parameters(self) -> np.ndarray:
        return self.params.copy()

    def set_parameters(self, params: np.ndarray) -> None:
        params = np.asarray(params, dtype=np.float64)
        if params.shape != (self.num_parameters,):
            raise ValueError(f"expected {self.num_parameters} parameters, got {params.shape}")
        self._set(params.copy())

    def _kernel_args(self):
        return self.logp, self.layout.arrays(), self.alphabet_size

    # scoring

    def log_score_for(self, codes: np.ndarray, start: int, reverse: bool = False) -> float:
        return float(slim_site_score(codes, start, self._width, reverse, *self._kernel_args()))

    def gradient_for(self, codes: np.ndarray, start: int, reverse: bool = False) -> np.ndarray:
        return slim_site_gradient(codes, start, self._width, reverse, *self._kernel_args())

    def window_scores(self, sequences: RaggedData, indices: np.ndarray):
        return slim_window_scores(sequences.data, sequences.offsets, indices, self._width, *self._kernel_args())

    def accumulate_window_gradient(self, sequences, indices, post, win_offsets, coef, grad) -> None:
        accumulate_slim_gradient(
            sequences.data, sequences.offsets, indices, post, win_offsets, coef, self._width, *self._kernel_args(), grad
        )

    # normalization

    def log_normalization_constant(self) -> float:
        return 0.0

    def log_normalization_gradient(self) -> np.ndarray:
        return np.zeros(self.num_parameters)

    # prior

    def _group_hyper(self) -> np.ndarray:
        return self.ess * self.layout.group_shares

    def _hyperparameters(self) -> np.ndarray:
        sizes = self.layout.group_sizes
        return np.repeat(self._group_hyper() / sizes, sizes)

    def log_prior(self) -> float:
        """BDeu prior: Dirichlet densities of every softmax group."""
        if self.ess == 0:
            return 0.0
        return float(np.dot(self._hyperparameters(), self.logp))

    def log_prior_gradient(self) -> np.ndarray:
        if self.ess == 0:
            return np.zeros(self.num_parameters)
        totals = np.repeat(self._group_hyper(), self.layout.group_sizes)
        return self._hyperparameters() - totals * np.exp(self.logp)

    # distributions

    def pwm(self) -> np.ndarray:
        """Symbol distributions of the context-free component."""
        a = self.alphabet_size
        return np.array([np.exp(self.logp[self.layout.dep_slice(j, 0, a)]) for j in range(self._width)])

    def mixture_probabilities(self) -> List[np.ndarray]:
        return [np.exp(self.logp[self.layout.comp_slice(j)]) for j in range(self._width)]

    # initialization and structure

    def _initial_component_logits(self, n: int) -> np.ndarray:
        if n == 1:
            return np.zeros(1)
        logits = np.full(n, np.log(self.q / (n - 1)))
        logits[0] = np.log(1.0 - self.q)
        return logits

    def initialize_from_sites(self, sites: Sequence[np.ndarray], weights: Sequence[float]) -> None:
        """Plug-in estimate of the conditional tables from weighted sites.

        Tables start from the BDeu pseudo-counts, every candidate context offset
        of a site adds its weight, and the component logits start at ``1 - q``
        for the context-free component.
        """
        a = self.alphabet_size
        lay = self.layout
        counts = self._hyperparameters()
        for site, weight in zip(sites, weights):
            site = np.asarray(site)
            if site.size != self._width:
                raise ValueError(f"site of length {site.size} does not match width {self._width}")
            for j in range(self._width):
                x = int(site[j])
                if x >= a:
                    continue
                counts[lay.dep_offsets[j, 0] + x] += weight
                for c in range(1, int(lay.n_comp[j])):
                    for m in range(int(lay.n_anc[j, c])):
                        window = site[j - m - c : j - m]
                        if np.any(window >= a):
                            continue
                        counts[lay.dep_offsets[j, c] + _context_index(window, a) * a + x] += weight

        params = np.zeros(self.num_parameters)
        for j in range(self._width):
            params[lay.comp_slice(j)] = self._initial_component_logits(int(lay.n_comp[j]))
            for c in range(int(lay.n_comp[j])):
                span = lay.dep_slice(j, c, a)
                params[span] = _log_normalize(counts[span].reshape(-1, a)).ravel()
        self._set(params)

    def resize(self, left: int, right: int) -> None:
        """Shift the motif window; kept positions keep their distributions where the structure allows.

        Components and context offsets that no longer fit are dropped and the
        remaining mixture weights rescaled. New components copy the tables of
        the next smaller one and get probability ``1 / n``; new positions are
        uniform.
        """
        old_width = self._width
        new_width = old_width - left + right
        if new_width <= 0:
            raise ValueError(f"cannot resize width {old_width} by ({left}, {right})")
        a = self.alphabet_size
        old_layout, old_logp = self.layout, self.logp

        layout = _SlimLayout(new_width, self.components, self.distance, a)
        params = np.zeros(layout.num_parameters)
        for i in range(new_width):
            j = i + left
            if j < 0 or j >= old_width:
                continue
            n_new = int(layout.n_comp[i])
            n_old = int(old_layout.n_comp[j])
            n = min(n_new, n_old)

            comp = np.full(n_new, -np.log(n_new))
            probs = np.exp(old_logp[old_layout.comp_slice(j)][:n])
            comp[:n] = np.log(probs / probs.sum() * n / n_new)
            params[layout.comp_slice(i)] = comp

            for c in range(n_new):
                if c < n:
                    table = old_logp[old_layout.dep_slice(j, c, a)]
                else:
                    table = np.tile(params[layout.dep_slice(i, c - 1, a)].reshape(-1, a), (a, 1)).ravel()
                params[layout.dep_slice(i, c, a)] = table
                if c == 0:
                    continue
                k = int(layout.n_anc[i, c])
                anc = np.full(k, -np.log(k))
                if c < n_old:
                    h = min(k, int(old_layout.n_anc[j, c]))
                    probs = np.exp(old_logp[old_layout.anc_slice(j, c)][:h])
                    anc[:h] = np.log(probs / probs.sum() * h / k)
                params[layout.anc_slice(i, c)] = anc

        self._width = new_width
        self.layout = layout
        self._set(params)
        logger.debug(f"Resized sparse motif model from {old_width} to {new_width} (left={left}, right={right})")


class BackgroundModel(ABC):
    """Interface of whole-sequence background models."""

    alphabet_size: int
    ess: float

    @property
    @abstractmethod
    def order(self) -> int:
        pass

    @property
    def num_parameters(self) -> int:
        return 0

    def get_parameters(self) -> np.ndarray:
        return np.empty(0)

    def set_parameters(self, params: np.ndarray) -> None:
        if np.asarray(params).size:
            raise ValueError(f"{type(self).__name__} has no parameters")

    @abstractmethod
    def sequence_scores(self, sequences: RaggedData, indices: np.ndarray) -> np.ndarray:
        pass

    def accumulate_gradient(self, sequences: RaggedData, indices: np.ndarray, coef: np.ndarray, grad) -> None:
        pass

    def log_normalization_constant(self) -> float:
        return 0.0

    def log_prior(self) -> float:
        return 0.0

    def log_prior_gradient(self) -> np.ndarray:
        return np.zeros(self.num_parameters)

    def initialize_from_data(self, sequences: RaggedData, weights: np.ndarray) -> None:
        pass


@registry.register("uniform")
class UniformBackground(BackgroundModel):
    """Every symbol has probability ``1 / alphabet_size``."""

    def __init__(self, ess: float = 0.0, alphabet_size: int = ALPHABET_SIZE):
        self.alphabet_size = alphabet_size
        self.ess = float(ess)

    @property
    def order(self) -> int:
        return -1

    def sequence_scores(self, sequences: RaggedData, indices: np.ndarray) -> np.ndarray:
        return sequences.lengths()[indices] * -np.log(self.alphabet_size)


@registry.register("homogeneous")
class HomogeneousBackground(BackgroundModel):
    """Homogeneous Markov model with separate start tables for the first ``order`` positions."""

    def __init__(self, order: int = 0, ess: float = 4.0, alphabet_size: int = ALPHABET_SIZE):
        if order < 0:
            raise ValueError(f"order must be non-negative, got {order}")
        self.alphabet_size = alphabet_size
        self.ess = float(ess)
        self._order = order
        self.ctx_offsets = np.zeros(order + 2, dtype=np.int64)
        self.ctx_offsets[1:] = np.cumsum(alphabet_size ** (np.arange(order + 1) + 1))
        self.params = np.zeros(int(self.ctx_offsets[-1]))

    @property
    def order(self) -> int:
        return self._order

    @property
    def num_parameters(self) -> int:
        return self.params.size

    def get_parameters(self) -> np.ndarray:
        return self.params.copy()

    def set_parameters(self, params: np.ndarray) -> None:
        params = np.asarray(params, dtype=np.float64)
        if params.shape != self.params.shape:
            raise ValueError(f"expected {self.params.size} parameters, got {params.shape}")
        self.params = params.copy()

    def _tables(self, values: np.ndarray) -> List[np.ndarray]:
        a = self.alphabet_size
        return [
            values[self.ctx_offsets[c] : self.ctx_offsets[c + 1]].reshape(a**c, a) for c in range(self._order + 1)
        ]

    def log_probabilities(self) -> np.ndarray:
        return np.concatenate(
            [(table - logsumexp(table, axis=1, keepdims=True)).ravel() for table in self._tables(self.params)]
        )

    def sequence_scores(self, sequences: RaggedData, indices: np.ndarray) -> np.ndarray:
        return homogeneous_scores(
            sequences.data,
            sequences.offsets,
            indices,
            self.log_probabilities(),
            self.ctx_offsets,
            self._order,
            self.alphabet_size,
        )

    def _counts(self, sequences: RaggedData, indices: np.ndarray, coef: np.ndarray) -> np.ndarray:
        counts = np.zeros(self.params.size)
        homogeneous_counts(
            sequences.data,
            sequences.offsets,
            indices,
            np.asarray(coef, dtype=np.float64),
            self.ctx_offsets,
            self._order,
            self.alphabet_size,
            counts,
        )
        return counts

    def _softmax_tables(self) -> List[np.ndarray]:
        return [np.exp(t) for t in self._tables(self.log_probabilities())]

    def accumulate_gradient(self, sequences: RaggedData, indices: np.ndarray, coef: np.ndarray, grad) -> None:
        counts = self._counts(sequences, indices, coef)
        for c, (table, probs) in enumerate(zip(self._tables(counts), self._softmax_tables())):
            grad[self.ctx_offsets[c] : self.ctx_offsets[c + 1]] += (
                table - table.sum(axis=1, keepdims=True) * probs
            ).ravel()

    def _hyper(self) -> List[float]:
        a = self.alphabet_size
        return [self.ess / a ** (c + 1) for c in range(self._order + 1)]

    def log_prior(self) -> float:
        if self.ess == 0:
            return 0.0
        value = 0.0
        for table, h in zip(self._tables(self.params), self._hyper()):
            value += h * table.sum() - h * self.alphabet_size * logsumexp(table, axis=1).sum()
        return float(value)

    def log_prior_gradient(self) -> np.ndarray:
        grad = np.zeros(self.params.size)
        if self.ess == 0:
            return grad
        for c, (probs, h) in enumerate(zip(self._softmax_tables(), self._hyper())):
            grad[self.ctx_offsets[c] : self.ctx_offsets[c + 1]] = (h - h * self.alphabet_size * probs).ravel()
        return grad

    def initialize_from_data(self, sequences: RaggedData, weights: np.ndarray) -> None:
        """Plug-in estimate from weighted sequences."""
        indices = np.arange(sequences.num_sequences, dtype=np.int64)
        counts = self._counts(sequences, indices, weights)
        tables = [t + h for t, h in zip(self._tables(counts), self._hyper())]
        self.params = np.concatenate([_log_normalize(t).ravel() for t in tables])


def create_background(order: int, ess: float, alphabet_size: int = ALPHABET_SIZE) -> BackgroundModel:
    """Uniform background for order -1, homogeneous Markov background otherwise."""
    if order < -1:
        raise ValueError(f"background order must be >= -1, got {order}")
    if order == -1:
        return registry.get("uniform")(ess=ess, alphabet_size=alphabet_size)
    return registry.get("homogeneous")(order=order, ess=ess, alphabet_size=alphabet_size)


def create_motif(width: int, order: int, ess: float, alphabet_size: int = ALPHABET_SIZE) -> MotifSubModel:
    """Markov motif model for ``order >= 0``, sparse local mixture with distance ``-order`` otherwise."""
    if order >= 0:
        return registry.get("markov")(width, order=order, ess=ess, alphabet_size=alphabet_size)
    return registry.get("slim")(width, components=1, distance=-order, ess=ess, alphabet_size=alphabet_size)
