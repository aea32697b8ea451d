"""
prior
=====

Positional prior builder.

Every sequence carries an approximate anchor (e.g. a peak summit). The reference
profile of a sequence is a Gaussian kernel around the anchor, restricted to the
positions that are still allowed, blended with its normalized complement. The
blend uses the sequence's foreground and background weights, so confident
sequences concentrate the motif near the anchor while weak ones spread it out.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from motifseek.errors import ConfigurationError, DegeneratePriorError
from motifseek.ragged import RaggedData, ragged_from_list
from motifseek.sequences import AnnotatedData, SequenceSet

logger = logging.getLogger(__name__)


def reference_profile(
    length: int,
    anchor: float,
    sd: float,
    w_fg: float,
    w_bg: float,
    allowed: Optional[np.ndarray] = None,
) -> np.ndarray:
    """Build the blended positional reference profile of one sequence.

    Parameters
    ----------
    length : int
        Sequence length.
    anchor : float
        Anchor position; NaN gives a flat kernel.
    sd : float
        Spread of the Gaussian kernel.
    w_fg, w_bg : float
        Mixing coefficients of the kernel and its complement.
    allowed : np.ndarray, optional
        Boolean mask of positions that may still hold the motif.

    Raises
    ------
    ConfigurationError
        If ``sd`` is not a positive finite number.
    DegeneratePriorError
        If no allowed position has positive prior mass.
    """
    if not np.isfinite(sd) or sd <= 0:
        raise ConfigurationError(f"spread must be positive, got {sd}")

    if allowed is None:
        allowed = np.ones(length, dtype=bool)
    elif allowed.shape != (length,):
        raise ValueError(f"allowed mask has shape {allowed.shape}, expected ({length},)")

    if not allowed.any():
        raise DegeneratePriorError("no allowed positions left")

    positions = np.arange(length, dtype=np.float64)
    if np.isnan(anchor):
        kernel = allowed.astype(np.float64)
    else:
        kernel = np.where(allowed, np.exp(-0.5 * ((positions - anchor) / sd) ** 2), 0.0)

    total = kernel.sum()
    if total <= 0:
        raise DegeneratePriorError(f"Gaussian kernel around anchor {anchor} has no mass on allowed positions")
    kernel /= total

    complement = np.where(allowed, kernel.max() - kernel, 0.0)
    complement_total = complement.sum()
    if complement_total > 0:
        complement /= complement_total
    else:
        complement = allowed / allowed.sum()

    profile = w_fg * kernel + w_bg * complement
    profile[~allowed] = 0.0
    if not np.any(profile > 0):
        raise DegeneratePriorError("blended profile has no positive mass")
    return profile


def initial_allowed(lengths: Sequence[int]) -> List[np.ndarray]:
    """All positions allowed."""
    return [np.ones(int(n), dtype=bool) for n in lengths]


def annotate(
    sequence_set: SequenceSet,
    weights: np.ndarray,
    sd: float,
    allowed: Optional[List[np.ndarray]] = None,
) -> AnnotatedData:
    """Attach reference profiles to all sequences.

    Sequences without any prior mass get an all-zero profile and are moot for
    the current motif.
    """
    if not np.isfinite(sd) or sd <= 0:
        raise ConfigurationError(f"spread must be positive, got {sd}")

    lengths = sequence_set.lengths()
    if allowed is None:
        allowed = initial_allowed(lengths)

    profiles = []
    moot = 0
    for i, length in enumerate(lengths):
        try:
            profile = reference_profile(
                int(length), sequence_set.anchors[i], sd, weights[0, i], weights[1, i], allowed[i]
            )
        except DegeneratePriorError as exc:
            logger.debug(f"Sequence {i} is moot for this motif: {exc}")
            profile = np.zeros(int(length), dtype=np.float64)
            moot += 1
        profiles.append(profile)

    if moot:
        logger.info(f"{moot} of {len(lengths)} sequences have no positional prior mass left")

    return AnnotatedData(sequence_set.sequences, ragged_from_list(profiles, dtype=np.float64))


def log_position_prior(reference: np.ndarray, width: int) -> np.ndarray:
    """Log prior over motif start positions ``0..L-width``, normalized over them."""
    n_starts = reference.size - width + 1
    if n_starts <= 0:
        return np.empty(0, dtype=np.float64)
    window = reference[:n_starts]
    total = window.sum()
    if total <= 0:
        return np.full(n_starts, -np.inf)
    with np.errstate(divide="ignore"):
        return np.log(window / total)


def log_position_priors(data: AnnotatedData, width: int) -> RaggedData:
    """Log positional priors of all sequences for a given motif width."""
    return ragged_from_list(
        [log_position_prior(data.reference.get_slice(i), width) for i in range(data.num_sequences)],
        dtype=np.float64,
    )


def mask_occurrences(allowed: List[np.ndarray], occurrences: pd.DataFrame, width: int) -> List[np.ndarray]:
    """Return new masks with the windows of reported occurrences disallowed.

    Every occurrence masks ``[position - width // 2, position + width // 2)``,
    clipped to the sequence.
    """
    masks = [mask.copy() for mask in allowed]
    half = width // 2
    for seq_index, position in zip(occurrences["seq_index"].to_numpy(), occurrences["position"].to_numpy()):
        mask = masks[int(seq_index)]
        start = max(0, int(position) - half)
        end = min(mask.size, int(position) + half)
        mask[start:end] = False
    return masks
