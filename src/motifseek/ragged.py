from typing import List, Sequence

import numpy as np


class RaggedData:
    """
    Rows of different lengths stored as one flat array plus row offsets.

    Sequences, positional reference profiles and score profiles all use this
    layout so that numba kernels can walk them without padding.
    """

    def __init__(self, data: np.ndarray, offsets: np.ndarray):
        self.data = data
        self.offsets = offsets

    def get_length(self, i: int) -> int:
        return int(self.offsets[i + 1] - self.offsets[i])

    def get_slice(self, i: int) -> np.ndarray:
        """Row ``i`` as a view into the flat array."""
        return self.data[self.offsets[i] : self.offsets[i + 1]]

    def lengths(self) -> np.ndarray:
        return np.diff(self.offsets)

    def subset(self, indices: Sequence[int]) -> "RaggedData":
        """Copy of the selected rows, in the given order."""
        return ragged_from_list([self.get_slice(int(i)) for i in indices], dtype=self.data.dtype)

    @property
    def num_sequences(self) -> int:
        return self.offsets.size - 1


def ragged_from_list(rows: List[np.ndarray], dtype=None) -> RaggedData:
    """Pack a list of 1-D arrays; ``dtype`` defaults to that of the first row (float64 if empty)."""
    offsets = np.zeros(len(rows) + 1, dtype=np.int64)
    if not rows:
        return RaggedData(np.empty(0, dtype=np.float64 if dtype is None else dtype), offsets)
    if dtype is None:
        dtype = rows[0].dtype
    offsets[1:] = np.cumsum([len(row) for row in rows])
    data = np.concatenate([np.asarray(row) for row in rows]).astype(dtype, copy=False)
    return RaggedData(data, offsets)
