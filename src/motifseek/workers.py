"""Worker pool for sharded objective evaluation."""

from __future__ import annotations

import logging
from typing import Callable, Iterable, List, Optional

import numpy as np
from joblib import Parallel, delayed

logger = logging.getLogger(__name__)


class WorkerPool:
    """Thread pool with an explicit lifecycle.

    The pool is started once per discovery run and stopped at its end. With a
    single job, work runs inline on the calling thread.

    Examples
    --------
    >>> with WorkerPool(4) as pool:
    ...     results = pool.map(sum, [[1, 2], [3, 4]])
    """

    def __init__(self, n_jobs: int = 1):
        if n_jobs < 1:
            raise ValueError(f"n_jobs must be >= 1, got {n_jobs}")
        self.n_jobs = int(n_jobs)
        self._parallel: Optional[Parallel] = None

    @property
    def running(self) -> bool:
        return self._parallel is not None

    def start(self) -> "WorkerPool":
        if self._parallel is None and self.n_jobs > 1:
            self._parallel = Parallel(n_jobs=self.n_jobs, backend="threading")
            self._parallel.__enter__()
            logger.debug(f"Started worker pool with {self.n_jobs} threads")
        return self

    def stop(self) -> None:
        if self._parallel is not None:
            self._parallel.__exit__(None, None, None)
            self._parallel = None
            logger.debug("Stopped worker pool")

    def __enter__(self) -> "WorkerPool":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def shards(self, n_items: int) -> List[np.ndarray]:
        """Split ``range(n_items)`` into at most ``n_jobs`` contiguous index shards."""
        n_shards = max(1, min(self.n_jobs, n_items))
        return [s.astype(np.int64) for s in np.array_split(np.arange(n_items), n_shards)]

    def map(self, func: Callable, items: Iterable) -> list:
        items = list(items)
        if self._parallel is None or len(items) <= 1:
            return [func(item) for item in items]
        return self._parallel(delayed(func)(item) for item in items)
