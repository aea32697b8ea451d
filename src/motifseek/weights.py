"""
weights
=======

Conversion of raw per-sequence confidence values (peak statistics, signal
intensities) into soft foreground weights in ``[0, 1]``.

The weighting factor is the a-priori fraction of sequences expected to hold the
motif. It can be given as a number or in the form ``"+Nsd"``, meaning that the
fraction is estimated from the number of values at least ``N`` standard
deviations above the mean.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Callable, Dict, Union

import numpy as np

from motifseek.errors import ConfigurationError

logger = logging.getLogger(__name__)

_SD_PATTERN = re.compile(r"^\+\s*([0-9]*\.?[0-9]+)\s*sd$", re.IGNORECASE)
_MIN_SD_SEQUENCES = 50

InterpolationFunc = Callable[[np.ndarray, float], np.ndarray]


class InterpolationRegistry:
    """Registry of value-to-weight interpolation schemes."""

    def __init__(self):
        self._methods: Dict[str, InterpolationFunc] = {}

    def register(self, key: str):
        """Decorator to register an interpolation function."""

        def decorator(func):
            self._methods[key] = func
            logger.debug(f"Registered interpolation: {key} -> {func.__name__}")
            return func

        return decorator

    def get(self, key: str) -> InterpolationFunc:
        if key not in self._methods:
            available = sorted(self._methods.keys())
            raise ConfigurationError(f"Interpolation '{key}' not found. Available: {available}")
        return self._methods[key]

    def keys(self):
        return sorted(self._methods.keys())


registry = InterpolationRegistry()


def competition_ranks(values: np.ndarray) -> np.ndarray:
    """Rank values in descending order with tied values sharing the best rank (0 = largest)."""
    values = np.asarray(values, dtype=np.float64)
    ordered = np.sort(values)[::-1]
    # number of values strictly greater than each value
    return np.searchsorted(-ordered, -values, side="left")


def _threshold(values: np.ndarray, factor: float) -> float:
    ordered = np.sort(values)
    idx = min(int(math.ceil((1.0 - factor) * ordered.size)), ordered.size - 1)
    return float(ordered[idx])


@registry.register("rank_log")
def rank_log(values: np.ndarray, factor: float) -> np.ndarray:
    """Logistic weights on relative competition ranks; the best-ranked value gets weight 1."""
    ranks = competition_ranks(values).astype(np.float64)
    max_rank = ranks.max() if ranks.size else 0.0
    if max_rank == 0:
        return np.ones_like(ranks)
    h = ranks / max_rank
    with np.errstate(divide="ignore"):
        odds = h / (1.0 - h)
    return 1.0 / (1.0 + odds * (1.0 - factor) / factor)


@registry.register("linear")
def linear(values: np.ndarray, factor: float) -> np.ndarray:
    """Piecewise linear weights that cross 0.5 at the ``1 - factor`` quantile."""
    lo, hi = float(values.min()), float(values.max())
    thresh = _threshold(values, factor)
    above, below = hi - thresh, thresh - lo
    weights = np.empty_like(values)
    upper = values >= thresh
    weights[upper] = 0.5 + 0.5 * (values[upper] - thresh) / above if above > 0 else 1.0
    weights[~upper] = 0.5 - 0.5 * (thresh - values[~upper]) / below if below > 0 else 0.0
    return weights


@registry.register("log_linear")
def log_linear(values: np.ndarray, factor: float) -> np.ndarray:
    """Linear interpolation of log values between ``factor`` and ``1 - factor``."""
    if np.any(values <= 0):
        raise ConfigurationError("log_linear interpolation needs strictly positive values")
    logs = np.log(values)
    span = logs.max() - logs.min()
    if span == 0:
        return np.full_like(values, 0.5)
    return factor + (1.0 - 2.0 * factor) * (logs - logs.min()) / span


@registry.register("percentile_logistic")
def percentile_logistic(values: np.ndarray, factor: float) -> np.ndarray:
    """Logistic curve through the 10% and 90% percentiles (weights 0.1 and 0.9)."""
    p1, p2 = 0.1, 0.9
    x1, x2 = np.quantile(values, [p1, p2])
    if x1 == x2:
        return np.full_like(values, 0.5)
    a = (math.log(p1 / (1 - p1)) - math.log(p2 / (1 - p2))) / (x1 - x2)
    b = math.log(p1 / (1 - p1)) - a * x1
    return 1.0 / (1.0 + np.exp(-(a * values + b)))


def is_sd_factor(factor) -> bool:
    """True for weighting factors of the form ``"+Nsd"``."""
    return isinstance(factor, str) and _SD_PATTERN.match(factor.strip()) is not None


def parse_weighting_factor(factor: Union[str, float], values: np.ndarray) -> float:
    """Resolve a weighting factor given as a number or as ``"+Nsd"``."""
    if isinstance(factor, str):
        match = _SD_PATTERN.match(factor.strip())
        if match is None:
            try:
                factor = float(factor)
            except ValueError:
                raise ConfigurationError(f"Invalid weighting factor: {factor!r}") from None
        else:
            n_sd = float(match.group(1))
            values = np.asarray(values, dtype=np.float64)
            cutoff = values.mean() + n_sd * values.std()
            count = max(_MIN_SD_SEQUENCES, int(np.count_nonzero(values >= cutoff)))
            resolved = count / values.size
            if resolved >= 1.0:
                logger.warning(f"Only {values.size} sequences for '{factor}', using weighting factor 0.5")
                resolved = 0.5
            logger.info(f"Weighting factor from '{factor}': {resolved:.4f}")
            return resolved

    factor = float(factor)
    if not 0.0 < factor < 1.0:
        raise ConfigurationError(f"weighting factor must be in (0, 1), got {factor}")
    return factor


def foreground_weights(values: np.ndarray, factor: Union[str, float], method: str = "rank_log") -> np.ndarray:
    """Compute foreground weights from raw values."""
    values = np.asarray(values, dtype=np.float64)
    if values.size == 0:
        return values.copy()
    if not np.all(np.isfinite(values)):
        raise ConfigurationError("confidence values must be finite")
    resolved = parse_weighting_factor(factor, values)
    return np.clip(registry.get(method)(values, resolved), 0.0, 1.0)


def background_weights(fg_weights: np.ndarray) -> np.ndarray:
    """Background weights complementary to the foreground weights."""
    return 1.0 - np.asarray(fg_weights, dtype=np.float64)


def weight_matrix(fg_weights: np.ndarray) -> np.ndarray:
    """Stack foreground and background weights into the ``(2, n)`` layout used by the objective."""
    fg = np.asarray(fg_weights, dtype=np.float64)
    return np.vstack([fg, background_weights(fg)])
