"""
Term DAG index.

Flattens an "is-a" hierarchy into index-addressed numpy arrays: parents,
children, reflexive ancestor and descendant sets, and a topological order.
Term indices follow the enumeration order of the input mapping.

Usage:
    from boqa.ontology import TermDAG

    dag = TermDAG.from_parents({"root": [], "a": ["root"], "b": ["a"]})
    dag.closure_indices([dag.index("b")])  # -> array([0, 1, 2])
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable, Mapping, Sequence
from functools import cached_property
from typing import TYPE_CHECKING

import numpy as np
from scipy.sparse import csr_matrix

from boqa.errors import CyclicGraphError, UnknownTermError

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)


def _as_index_array(values: Iterable[int]) -> NDArray[np.int64]:
    return np.array(sorted(values), dtype=np.int64)


class TermDAG:
    """Immutable, index-based view of a term hierarchy.

    Ancestor and descendant sets are reflexive, i.e. they contain the term
    itself.
    """

    def __init__(
        self,
        term_ids: Sequence[str],
        parents: Sequence[Iterable[int]],
        names: Sequence[str] | None = None,
    ):
        self.term_ids: list[str] = list(term_ids)
        self.names: list[str] = list(names) if names is not None else list(self.term_ids)
        self._index = {term_id: i for i, term_id in enumerate(self.term_ids)}
        if len(self._index) != len(self.term_ids):
            raise ValueError("Term ids must be unique")
        if len(self.names) != len(self.term_ids):
            raise ValueError("Names must align with term ids")

        n = len(self.term_ids)
        self.parents: list[NDArray[np.int64]] = [_as_index_array(set(p)) for p in parents]
        if len(self.parents) != n:
            raise ValueError("Parent lists must align with term ids")

        children: list[list[int]] = [[] for _ in range(n)]
        for t, term_parents in enumerate(self.parents):
            for p in term_parents:
                if p < 0 or p >= n:
                    raise UnknownTermError(f"Parent index {p} of {self.term_ids[t]} is out of range")
                children[p].append(t)
        self.children: list[NDArray[np.int64]] = [_as_index_array(c) for c in children]

        self.topological_order = self._topological_sort()
        self.topological_rank = np.empty(n, dtype=np.int64)
        self.topological_rank[self.topological_order] = np.arange(n, dtype=np.int64)

        ancestors: list[set[int]] = [set() for _ in range(n)]
        for t in self.topological_order:
            anc = ancestors[t]
            anc.add(int(t))
            for p in self.parents[t]:
                anc |= ancestors[p]
        descendants: list[list[int]] = [[] for _ in range(n)]
        for t, anc in enumerate(ancestors):
            for a in anc:
                descendants[a].append(t)

        self.ancestors: list[NDArray[np.int64]] = [_as_index_array(a) for a in ancestors]
        self.descendants: list[NDArray[np.int64]] = [_as_index_array(d) for d in descendants]

    @classmethod
    def from_parents(
        cls,
        parents: Mapping[str, Iterable[str]],
        names: Mapping[str, str] | None = None,
    ) -> TermDAG:
        """Build the index from a ``term id -> parent ids`` mapping.

        Args:
            parents: Ordered mapping; its iteration order fixes term indices.
            names: Optional human readable names per term id.

        Raises:
            UnknownTermError: A parent id is not a key of ``parents``.
            CyclicGraphError: The graph is not acyclic.
        """
        term_ids = list(parents)
        index = {term_id: i for i, term_id in enumerate(term_ids)}
        parent_indices = []
        for term_id in term_ids:
            row = []
            for parent_id in parents[term_id]:
                if parent_id not in index:
                    raise UnknownTermError(f"Term {term_id} names unknown parent {parent_id}")
                row.append(index[parent_id])
            parent_indices.append(row)

        term_names = None
        if names is not None:
            term_names = [names.get(term_id, term_id) for term_id in term_ids]
        return cls(term_ids, parent_indices, term_names)

    def _topological_sort(self) -> NDArray[np.int64]:
        n = len(self.term_ids)
        in_degree = np.array([len(p) for p in self.parents], dtype=np.int64)
        queue = deque(int(t) for t in np.flatnonzero(in_degree == 0))
        order: list[int] = []
        while queue:
            t = queue.popleft()
            order.append(t)
            for c in self.children[t]:
                in_degree[c] -= 1
                if in_degree[c] == 0:
                    queue.append(int(c))
        if len(order) != n:
            stuck = [self.term_ids[t] for t in np.flatnonzero(in_degree > 0)[:5]]
            raise CyclicGraphError(
                f"Term graph contains a cycle; {n - len(order)} terms cannot be ordered (e.g. {stuck})"
            )
        return np.array(order, dtype=np.int64)

    # =========================================================================
    # Lookup
    # =========================================================================

    def __len__(self) -> int:
        return len(self.term_ids)

    @property
    def num_terms(self) -> int:
        return len(self.term_ids)

    def index(self, term_id: str) -> int:
        try:
            return self._index[term_id]
        except KeyError:
            raise UnknownTermError(f"Unknown term {term_id}") from None

    def __contains__(self, term_id: str) -> bool:
        return term_id in self._index

    # =========================================================================
    # Sparse relation matrices
    # =========================================================================

    @cached_property
    def ancestor_matrix(self) -> csr_matrix:
        """(T, T) matrix with entry [t, a] set when a is an ancestor of t."""
        return self._relation_matrix(self.ancestors)

    @cached_property
    def parent_matrix(self) -> csr_matrix:
        """(T, T) matrix with entry [t, p] set when p is a parent of t."""
        return self._relation_matrix(self.parents)

    @cached_property
    def child_matrix(self) -> csr_matrix:
        """(T, T) matrix with entry [t, c] set when c is a child of t."""
        return self._relation_matrix(self.children)

    def _relation_matrix(self, rows: list[NDArray[np.int64]]) -> csr_matrix:
        n = len(rows)
        indptr = np.zeros(n + 1, dtype=np.int64)
        indptr[1:] = np.cumsum([len(r) for r in rows])
        indices = np.concatenate(rows) if n else np.array([], dtype=np.int64)
        data = np.ones(len(indices), dtype=np.int32)
        return csr_matrix((data, indices, indptr), shape=(n, n))

    @cached_property
    def ancestor_sets(self) -> list[frozenset[int]]:
        return [frozenset(a.tolist()) for a in self.ancestors]

    # =========================================================================
    # Closure and specificity
    # =========================================================================

    def closure(self, terms: Iterable[int]) -> NDArray[np.bool_]:
        """Boolean vector of the given terms together with all their ancestors."""
        indices = np.asarray(list(terms), dtype=np.int64)
        result = np.zeros(self.num_terms, dtype=bool)
        if indices.size == 0:
            return result
        covered = np.asarray(self.ancestor_matrix[indices].sum(axis=0)).ravel()
        result[covered > 0] = True
        return result

    def closure_indices(self, terms: Iterable[int]) -> NDArray[np.int64]:
        return np.flatnonzero(self.closure(terms)).astype(np.int64)

    def activate_ancestors(self, vector: NDArray[np.bool_]) -> None:
        """Switch on all ancestors of every active term, in place."""
        vector |= self.closure(np.flatnonzero(vector))

    def deactivate_descendants(self, vector: NDArray[np.bool_], term: int) -> None:
        vector[self.descendants[term]] = False

    def is_descendant(self, term: int, other: int) -> bool:
        """True if ``term`` is a proper descendant of ``other``."""
        return term != other and other in self.ancestor_sets[term]

    def most_specific_terms(self, terms: Iterable[int]) -> NDArray[np.int64]:
        """Leaves of the sub-DAG induced by ``terms``.

        A term is kept when no other member of the set is one of its
        descendants.
        """
        term_set = {int(t) for t in terms}
        specific = []
        for t in term_set:
            if not any(d != t and d in term_set for d in self.descendants[t].tolist()):
                specific.append(t)
        return _as_index_array(specific)

    def induced(self, terms: Iterable[int]) -> TermDAG:
        """Sub-DAG restricted to ``terms``, re-indexed in enumeration order.

        Edges to terms outside the subset are dropped.
        """
        keep = _as_index_array({int(t) for t in terms})
        remap = {int(old): new for new, old in enumerate(keep)}
        parents = [[remap[int(p)] for p in self.parents[old] if int(p) in remap] for old in keep]
        return TermDAG(
            [self.term_ids[old] for old in keep],
            parents,
            [self.names[old] for old in keep],
        )


__all__ = ["TermDAG"]
