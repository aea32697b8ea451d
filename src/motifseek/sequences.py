"""
sequences
=========

Integer-encoded DNA sequences and the containers the discovery loop works on.

``SequenceSet`` is what the input side delivers: decoded symbols together with
an anchor position and a confidence value per sequence. ``AnnotatedData`` adds
the blended positional reference profile for every sequence and carries a
unique ``uid`` so that score-model caches can be keyed by data identity.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import numpy as np

from motifseek.ragged import RaggedData, ragged_from_list

ALPHABET = "ACGT"
ALPHABET_SIZE = 4
UNKNOWN = 4

_DECODER = np.array(["A", "C", "G", "T", "N"], dtype="U1")
_RC_TABLE = np.array([3, 2, 1, 0, 4], dtype=np.int8)
_ENCODE_TABLE = bytearray([UNKNOWN] * 256)
for _char, _code in zip(b"ACGTacgt", [0, 1, 2, 3] * 2):
    _ENCODE_TABLE[_char] = _code

_uid_counter = itertools.count()


def encode(seq: str) -> np.ndarray:
    """Encode a nucleotide string into int8 codes (A=0, C=1, G=2, T=3, other=4)."""
    return np.frombuffer(seq.encode("ascii", errors="replace").translate(_ENCODE_TABLE), dtype=np.int8).copy()


def decode(codes: np.ndarray) -> str:
    """Decode int8 codes back into a nucleotide string."""
    return "".join(_DECODER[np.clip(codes, 0, UNKNOWN)])


def reverse_complement(codes: np.ndarray) -> np.ndarray:
    """Return the reverse complement of an encoded sequence."""
    return _RC_TABLE[codes[::-1]]


@dataclass
class SequenceSet:
    """Decoded input sequences with their numeric annotations.

    Attributes
    ----------
    sequences : RaggedData
        int8 encoded sequences.
    anchors : np.ndarray
        Approximate motif position per sequence, NaN when unknown.
    values : np.ndarray
        Raw confidence value per sequence (e.g. peak signal).
    names : list of str
        Sequence identifiers.
    annotations : list of dict
        Remaining header annotations, kept for reporting.
    """

    sequences: RaggedData
    anchors: np.ndarray
    values: np.ndarray
    names: List[str] = field(default_factory=list)
    annotations: List[Dict[str, str]] = field(default_factory=list)

    def __post_init__(self):
        n = self.sequences.num_sequences
        self.anchors = np.asarray(self.anchors, dtype=np.float64)
        self.values = np.asarray(self.values, dtype=np.float64)
        if self.anchors.shape != (n,) or self.values.shape != (n,):
            raise ValueError(
                f"anchors and values must have one entry per sequence ({n}), "
                f"got {self.anchors.shape} and {self.values.shape}"
            )
        if not self.names:
            self.names = [str(i) for i in range(n)]
        if not self.annotations:
            self.annotations = [{} for _ in range(n)]

    @classmethod
    def from_strings(
        cls,
        sequences: Sequence[str],
        anchors: Optional[Sequence[float]] = None,
        values: Optional[Sequence[float]] = None,
        names: Optional[Sequence[str]] = None,
    ) -> "SequenceSet":
        """Build a set from plain strings; missing anchors are NaN and missing values are 1."""
        n = len(sequences)
        codes = ragged_from_list([encode(s) for s in sequences], dtype=np.int8)
        return cls(
            sequences=codes,
            anchors=np.full(n, np.nan) if anchors is None else np.asarray(anchors, dtype=np.float64),
            values=np.ones(n) if values is None else np.asarray(values, dtype=np.float64),
            names=list(names) if names is not None else [],
        )

    def __len__(self) -> int:
        return self.sequences.num_sequences

    def lengths(self) -> np.ndarray:
        return self.sequences.lengths()

    def sequence(self, i: int) -> str:
        return decode(self.sequences.get_slice(i))


@dataclass(frozen=True)
class AnnotatedData:
    """Sequences paired with their reference (positional prior) profiles.

    Immutable: a new object, with a new ``uid``, is built whenever the spread or
    the allowed masks change.
    """

    sequences: RaggedData
    reference: RaggedData
    uid: int = field(default_factory=lambda: next(_uid_counter))

    def __post_init__(self):
        if not np.array_equal(self.sequences.offsets, self.reference.offsets):
            raise ValueError("reference profiles must have one value per sequence position")

    @property
    def num_sequences(self) -> int:
        return self.sequences.num_sequences

    def lengths(self) -> np.ndarray:
        return self.sequences.lengths()

    def subset(self, indices: Sequence[int]) -> "AnnotatedData":
        """Return the selected sequences as a new data set."""
        return AnnotatedData(self.sequences.subset(indices), self.reference.subset(indices))
