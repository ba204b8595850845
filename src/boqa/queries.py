"""
Random query generation for empirical score distributions.

A random query is a set of distinct terms. Legal queries never contain a
term together with one of its ancestors, matching queries reduced to their
most specific terms.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

from boqa.ranking_utils import GuardedCache

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from boqa.ontology import TermDAG

logger = logging.getLogger(__name__)


def choose(rng: np.random.Generator, size: int, storage: NDArray[np.int64]) -> NDArray[np.int64]:
    """
    Draw ``size`` distinct elements by a partial Fisher-Yates shuffle.

    Chosen elements are swapped to the tail of ``storage``, which is
    modified in place and can be reused for the next draw.

    Args:
        rng: Random generator
        size: Number of elements to draw
        storage: Pool of candidate elements

    Returns:
        Copy of the chosen elements
    """
    n = len(storage)
    if size > n:
        raise ValueError(f"Cannot choose {size} elements from {n}")
    for i in range(size):
        last = n - 1 - i
        j = int(rng.integers(last + 1))
        storage[j], storage[last] = storage[last], storage[j]
    return storage[n - size :].copy()


class QueryGenerator:
    """Draws random queries over the terms of a graph."""

    def __init__(self, dag: TermDAG, forbid_illegal_queries: bool = True, max_tries: int = 512):
        self.dag = dag
        self.forbid_illegal_queries = forbid_illegal_queries
        self.max_tries = max_tries

    def is_legal(self, query: NDArray[np.int64]) -> bool:
        """True if no query term is an ancestor of another query term."""
        terms = {int(t) for t in query}
        ancestor_sets = self.dag.ancestor_sets
        return all(len(ancestor_sets[t] & terms) == 1 for t in terms)

    def choose_terms(
        self,
        rng: np.random.Generator,
        size: int,
        storage: NDArray[np.int64] | None = None,
    ) -> NDArray[np.int64]:
        """One random query; the last draw is returned if no legal one is found."""
        if storage is None:
            storage = np.arange(self.dag.num_terms, dtype=np.int64)
        query = choose(rng, size, storage)
        if not self.forbid_illegal_queries:
            return query
        for _ in range(self.max_tries - 1):
            if self.is_legal(query):
                return query
            query = choose(rng, size, storage)
        if not self.is_legal(query):
            logger.debug("No legal query of size %d after %d tries", size, self.max_tries)
        return query

    def random_queries(self, rng: np.random.Generator, size: int, count: int) -> NDArray[np.int64]:
        """(count, size) matrix of random queries."""
        storage = np.arange(self.dag.num_terms, dtype=np.int64)
        queries = np.empty((count, size), dtype=np.int64)
        for i in range(count):
            queries[i] = self.choose_terms(rng, size, storage)
        return queries


class QueryCache:
    """Random queries shared by all items, generated once per query size."""

    def __init__(self, generator: QueryGenerator, queries_per_size: int):
        self.generator = generator
        self.queries_per_size = queries_per_size
        self._queries: GuardedCache[int, NDArray[np.int64]] = GuardedCache()

    def get(self, query_size: int, rng: np.random.Generator) -> NDArray[np.int64]:
        """Queries of the given size; ``rng`` is only used on the first request."""
        return self._queries.get_or_insert(
            query_size,
            lambda: self.generator.random_queries(rng, query_size, self.queries_per_size),
        )

    def __len__(self) -> int:
        return len(self._queries)


__all__ = ["QueryCache", "QueryGenerator", "choose"]
