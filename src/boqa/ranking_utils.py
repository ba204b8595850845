"""
Shared utilities for parallel ranking.

This module provides reusable components used by the scoring engine and the
similarity measures:
1. Parallel scatter/gather - ThreadPoolExecutor with fail-fast error handling
2. Guarded caches - get-or-insert maps that build each entry exactly once
3. Efficient top-k - np.argpartition for O(n) selection

Usage:
    from boqa.ranking_utils import GuardedCache, run_parallel, select_top_k
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Hashable, Iterator, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import TYPE_CHECKING, Generic, TypeVar

import numpy as np

from boqa.errors import WorkerError

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")
K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


# =============================================================================
# Parallel Scatter/Gather
# =============================================================================


def run_parallel(
    fn: Callable[[T], R],
    tasks: Sequence[T],
    num_workers: int,
    timeout: float | None = None,
) -> list[R]:
    """
    Apply ``fn`` to every task on a thread pool.

    Results are written by task index, so the output order matches
    ``tasks`` regardless of completion order. The first failing task
    cancels everything not yet started.

    Args:
        fn: Unit of work
        tasks: Inputs, one per unit
        num_workers: Thread pool size (1 runs inline)
        timeout: Seconds to wait for all units (None waits forever)

    Returns:
        List of results aligned with ``tasks``

    Raises:
        WorkerError: A unit raised, or the pool did not finish in time.
    """
    if num_workers <= 1 or len(tasks) <= 1:
        return [fn(task) for task in tasks]

    results: list[R | None] = [None] * len(tasks)
    executor = ThreadPoolExecutor(max_workers=num_workers)
    futures = {executor.submit(fn, task): i for i, task in enumerate(tasks)}
    try:
        for future in as_completed(futures, timeout=timeout):
            results[futures[future]] = future.result()
    except Exception as exc:
        # Do not wait for units that are still running
        executor.shutdown(wait=False, cancel_futures=True)
        raise WorkerError(f"Parallel unit failed: {exc!r}") from exc
    executor.shutdown(wait=True)
    return results  # type: ignore[return-value]


# =============================================================================
# Guarded Caches
# =============================================================================


class GuardedCache(Generic[K, V]):
    """
    Map whose entries are built at most once, even under concurrent access.

    Hits are lock-free. On a miss the first caller registers a pending
    future under the lock and builds the value outside of it; concurrent
    callers for the same key wait on that future, while other keys build in
    parallel. A failed build is removed so a later call can retry.
    """

    def __init__(self):
        self._entries: dict[K, Future] = {}
        self._lock = threading.Lock()

    def get_or_insert(self, key: K, factory: Callable[[], V]) -> V:
        future = self._entries.get(key)
        owner = False
        if future is None:
            with self._lock:
                # Double-check after acquiring lock
                future = self._entries.get(key)
                if future is None:
                    future = Future()
                    self._entries[key] = future
                    owner = True

        if not owner:
            return future.result()

        try:
            value = factory()
        except BaseException as exc:
            with self._lock:
                self._entries.pop(key, None)
            future.set_exception(exc)
            raise
        future.set_result(value)
        return value

    def insert(self, key: K, value: V) -> None:
        """Store a ready value, replacing any finished entry."""
        future: Future = Future()
        future.set_result(value)
        with self._lock:
            self._entries[key] = future

    def items(self) -> Iterator[tuple[K, V]]:
        """Finished entries."""
        with self._lock:
            entries = list(self._entries.items())
        for key, future in entries:
            if future.done() and future.exception() is None:
                yield key, future.result()

    def __len__(self) -> int:
        return len(self._entries)


# =============================================================================
# Efficient Top-K Selection
# =============================================================================


def select_top_k(
    scores: NDArray[np.float64],
    top_k: int | None,
) -> tuple[NDArray[np.int64], NDArray[np.float64]]:
    """
    Select top-k items efficiently.

    Uses np.argpartition for O(n) selection when k << n,
    falling back to a stable full sort when k is large.

    Args:
        scores: Score array for all items (N,)
        top_k: Number of top results (None for all)

    Returns:
        (sorted_indices, sorted_scores) in descending order
    """
    n = len(scores)

    if top_k is not None and top_k < n:
        # Sorted first so ties keep index order like the full sort
        top_k_indices = np.sort(np.argpartition(-scores, top_k)[:top_k])
        sorted_top_k = top_k_indices[np.argsort(-scores[top_k_indices], kind="stable")]
        return sorted_top_k.astype(np.int64), scores[sorted_top_k]
    sorted_indices = np.argsort(-scores, kind="stable").astype(np.int64)
    return sorted_indices, scores[sorted_indices]


__all__ = [
    "GuardedCache",
    "run_parallel",
    "select_top_k",
]
