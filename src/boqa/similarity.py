"""
Information-content based term similarity.

Provides the MICA (most informative common ancestor) of two terms, the
Resnik, Lin and Jiang-Conrath term similarities built on it, the Jaccard
overlap of the items annotated to two terms, the Mathur-Dinakarpandian
measures that combine both, and max-average aggregation of term
similarities into query-vs-item scores. Each similarity measure also owns
the empirical score distributions used to turn its scores into p-values.

Usage:
    index = SemanticIndex(dag, items)
    resnik = ResnikSimilarity(index)
    resnik.term_sim(7, 8)
    resnik.score_vs_item(query_terms, item)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import TYPE_CHECKING, ClassVar

import numpy as np

from boqa.distribution import (
    ApproximatedEmpiricalDistribution,
    DistributionStore,
    EmpiricalDistribution,
)
from boqa.ranking_utils import GuardedCache, run_parallel

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from boqa.items import ItemIndex
    from boqa.ontology import TermDAG
    from boqa.queries import QueryCache

logger = logging.getLogger(__name__)


def _packed_index(i: int, j: int, n: int) -> int:
    """Position of pair (i, j), i < j, in a row-major strict upper triangle."""
    return i * n - i * (i + 1) // 2 + (j - i - 1)


# =============================================================================
# Semantic Index
# =============================================================================


class SemanticIndex:
    """MICA and Jaccard lookups over a term graph and its item annotations."""

    def __init__(self, dag: TermDAG, items: ItemIndex):
        self.dag = dag
        self.items = items
        self.ic = items.ic
        self._mica_matrix: NDArray[np.int32] | None = None
        self._jaccard_matrix: NDArray[np.float64] | None = None
        # Ancestors of each term, most informative first (ties: lowest index)
        self._ancestors_by_ic = [
            anc[np.lexsort((anc, -self.ic[anc]))] for anc in dag.ancestors
        ]

    # -------------------------------------------------------------------------
    # MICA
    # -------------------------------------------------------------------------

    def mica(self, t1: int, t2: int) -> int:
        """Common ancestor with maximal IC (lowest index on ties), -1 if none."""
        if t1 == t2:
            return t1
        if self._mica_matrix is not None:
            i, j = (t1, t2) if t1 < t2 else (t2, t1)
            return int(self._mica_matrix[_packed_index(i, j, self.dag.num_terms)])
        common = np.intersect1d(self.dag.ancestors[t1], self.dag.ancestors[t2], assume_unique=True)
        if common.size == 0:
            return -1
        return int(common[np.argmax(self.ic[common])])

    def mica_row(self, t: int) -> NDArray[np.int64]:
        """MICA of ``t`` with every term (-1 where no common ancestor exists)."""
        row = np.full(self.dag.num_terms, -1, dtype=np.int64)
        for a in self._ancestors_by_ic[t]:
            desc = self.dag.descendants[a]
            unset = desc[row[desc] < 0]
            row[unset] = a
        return row

    def mica_ic(self, t1: int, t2: int) -> float:
        m = self.mica(t1, t2)
        return float(self.ic[m]) if m >= 0 else 0.0

    def mica_ic_row(self, t: int) -> NDArray[np.float64]:
        row = self.mica_row(t)
        return np.where(row >= 0, self.ic[np.maximum(row, 0)], 0.0)

    def precalculate_mica(self) -> None:
        n = self.dag.num_terms
        packed = np.empty(n * (n - 1) // 2, dtype=np.int32)
        for t in range(n - 1):
            start = _packed_index(t, t + 1, n)
            packed[start : start + n - t - 1] = self.mica_row(t)[t + 1 :]
        self._mica_matrix = packed
        logger.info("Precalculated MICA for %d term pairs", len(packed))

    # -------------------------------------------------------------------------
    # Jaccard
    # -------------------------------------------------------------------------

    def jaccard(self, t1: int, t2: int) -> float:
        """Overlap of the item sets annotated to two terms."""
        if t1 == t2:
            return 1.0
        if self._jaccard_matrix is not None:
            i, j = (t1, t2) if t1 < t2 else (t2, t1)
            return float(self._jaccard_matrix[_packed_index(i, j, self.dag.num_terms)])
        a = self.items.term_items[t1]
        b = self.items.term_items[t2]
        intersection = np.intersect1d(a, b, assume_unique=True).size
        union = a.size + b.size - intersection
        return intersection / union if union else 0.0

    def precalculate_jaccard(self) -> None:
        n = self.dag.num_terms
        membership = self.items.membership.tocsc().astype(np.int64)
        intersections = (membership.T @ membership).tocsr()
        counts = self.items.term_item_counts
        packed = np.empty(n * (n - 1) // 2, dtype=np.float64)
        for t in range(n - 1):
            inter = intersections[t].toarray().ravel()[t + 1 :]
            union = counts[t] + counts[t + 1 :] - inter
            start = _packed_index(t, t + 1, n)
            with np.errstate(divide="ignore", invalid="ignore"):
                packed[start : start + n - t - 1] = np.where(union > 0, inter / union, 0.0)
        self._jaccard_matrix = packed
        logger.info("Precalculated Jaccard for %d term pairs", len(packed))

    # -------------------------------------------------------------------------
    # Mathur-Dinakarpandian
    # -------------------------------------------------------------------------

    def mb_term_sim(self, t1: int, t2: int) -> float:
        return self.jaccard(t1, t2) * (self.ic[t1] + self.ic[t2]) / 2

    def msim(self, t1: int, terms: Sequence[int]) -> float:
        """Best match of ``t1`` in ``terms`` (never below zero)."""
        best = 0.0
        for t2 in terms:
            best = max(best, self.mb_term_sim(t1, int(t2)))
        return best

    def mbsim_unsym(self, tl1: Sequence[int], tl2: Sequence[int]) -> float:
        if len(tl1) == 0:
            return 0.0
        return sum(self.msim(int(t1), tl2) for t1 in tl1) / len(tl1)

    def mbsim(self, tl1: Sequence[int], tl2: Sequence[int]) -> float:
        return (self.mbsim_unsym(tl1, tl2) + self.mbsim_unsym(tl2, tl1)) / 2


# =============================================================================
# Term Similarity Measures
# =============================================================================


class TermSimilarity(ABC):
    """
    MICA-based term similarity with max-average aggregation.

    Subclasses define the similarity as a function of the two terms' IC and
    the IC of their MICA; the function must broadcast over numpy arrays so
    that whole rows can be computed at once.
    """

    name: ClassVar[str]

    def __init__(
        self,
        index: SemanticIndex,
        size_of_score_distribution: int = 250_000,
        num_bins: int = 10_000,
        cache_score_distribution: bool = True,
    ):
        self.index = index
        self.size_of_score_distribution = size_of_score_distribution
        self.num_bins = num_bins
        self.cache_score_distribution = cache_score_distribution
        self.distributions: GuardedCache[tuple[int, int], ApproximatedEmpiricalDistribution] = (
            GuardedCache()
        )
        self._item_rows: NDArray[np.float64] | None = None

    @abstractmethod
    def from_ic(self, ic1, ic2, ic_mica):
        """Similarity from (broadcastable) information contents."""

    def term_sim(self, t1: int, t2: int) -> float:
        ic = self.index.ic
        return float(self.from_ic(ic[t1], ic[t2], self.index.mica_ic(t1, t2)))

    def term_sim_row(self, t: int) -> NDArray[np.float64]:
        """Similarity of ``t`` with every term."""
        ic = self.index.ic
        return np.asarray(self.from_ic(ic[t], ic, self.index.mica_ic_row(t)), dtype=np.float64)

    # -------------------------------------------------------------------------
    # Aggregation
    # -------------------------------------------------------------------------

    def score_max_avg(self, tl1: Sequence[int], tl2: Sequence[int]) -> float:
        """Average over ``tl1`` of the best similarity found in ``tl2`` (0 if either is empty)."""
        if len(tl1) == 0 or len(tl2) == 0:
            return 0.0
        total = 0.0
        for t1 in tl1:
            total += max((self.term_sim(int(t1), int(t2)) for t2 in tl2))
        return total / len(tl1)

    def item_row(self, item: int) -> NDArray[np.float64]:
        """Best similarity of every term with the item's direct terms (zeros without any)."""
        if self._item_rows is not None:
            return self._item_rows[item]
        direct = self.index.items.direct_terms[item]
        if direct.size == 0:
            return np.zeros(self.index.dag.num_terms, dtype=np.float64)
        row = self.term_sim_row(int(direct[0]))
        for t in direct[1:]:
            np.maximum(row, self.term_sim_row(int(t)), out=row)
        return row

    def precalculate_item_rows(self, num_workers: int = 1, timeout: float | None = None) -> None:
        rows = run_parallel(self.item_row, range(self.index.items.num_items), num_workers, timeout)
        self._item_rows = np.vstack(rows) if rows else np.empty((0, self.index.dag.num_terms))
        logger.info("Precalculated %s item rows for %d items", self.name, len(rows))

    def score_vs_item(self, query: Sequence[int], item: int) -> float:
        """Max-average score of a query against an item's direct terms."""
        if len(query) == 0:
            return 0.0
        if self._item_rows is not None:
            return float(self._item_rows[item][np.asarray(query, dtype=np.int64)].mean())
        return self.score_max_avg(query, self.index.items.direct_terms[item])

    # -------------------------------------------------------------------------
    # Score Distributions
    # -------------------------------------------------------------------------

    def random_scores(
        self,
        item: int,
        query_size: int,
        query_cache: QueryCache,
        rng: np.random.Generator,
        row: NDArray[np.float64] | None = None,
    ) -> NDArray[np.float64]:
        """Scores of the item for the shared random queries of one size."""
        queries = query_cache.get(query_size, rng)
        if row is None:
            row = self.item_row(item)
        return row[queries].mean(axis=1)

    def build_distribution(
        self,
        item: int,
        query_size: int,
        query_cache: QueryCache,
        rng: np.random.Generator,
        row: NDArray[np.float64] | None = None,
    ) -> ApproximatedEmpiricalDistribution:
        """Histogram of the item's score under random queries of one size."""
        scores = self.random_scores(item, query_size, query_cache, rng, row)
        return ApproximatedEmpiricalDistribution(scores, self.num_bins)

    def score_distribution(
        self,
        item: int,
        query_size: int,
        query_cache: QueryCache,
        rng: np.random.Generator,
    ) -> ApproximatedEmpiricalDistribution | EmpiricalDistribution:
        """Cached histogram, or the exact distribution when caching is off."""
        if not self.cache_score_distribution:
            return EmpiricalDistribution(self.random_scores(item, query_size, query_cache, rng))
        return self.distributions.get_or_insert(
            (item, query_size),
            lambda: self.build_distribution(item, query_size, query_cache, rng),
        )

    def precalculate_distributions(
        self,
        query_cache: QueryCache,
        max_query_size: int,
        seed: int,
        num_workers: int = 1,
        timeout: float | None = None,
    ) -> None:
        """Build distributions for every item and query size 1..max_query_size."""
        rng = np.random.default_rng(seed)
        max_query_size = min(max_query_size, self.index.dag.num_terms)
        # Queries are shared by all items; draw them before fanning out
        for query_size in range(1, max_query_size + 1):
            query_cache.get(query_size, rng)
        item_seeds = rng.integers(np.iinfo(np.int64).max, size=self.index.items.num_items)

        def build_item(item: int) -> None:
            item_rng = np.random.default_rng(int(item_seeds[item]))
            row = self.item_row(item)
            for query_size in range(1, max_query_size + 1):
                self.distributions.get_or_insert(
                    (item, query_size),
                    lambda: self.build_distribution(item, query_size, query_cache, item_rng, row),
                )

        run_parallel(build_item, range(self.index.items.num_items), num_workers, timeout)
        logger.info(
            "Precalculated %d %s score distributions", len(self.distributions), self.name
        )

    def load_distributions(self, store: DistributionStore, fingerprint: int) -> bool:
        entries = store.load(fingerprint)
        if entries is None:
            return False
        for key, dist in entries.items():
            self.distributions.insert(key, dist)
        return True

    def store_distributions(self, store: DistributionStore, fingerprint: int) -> bool:
        return store.save(fingerprint, sorted(self.distributions.items(), key=lambda kv: kv[0]))


class ResnikSimilarity(TermSimilarity):
    """IC of the MICA."""

    name = "resnik"

    def from_ic(self, ic1, ic2, ic_mica):
        return np.asarray(ic_mica, dtype=np.float64)


class LinSimilarity(TermSimilarity):
    """2 * IC(MICA) / (IC(t1) + IC(t2)), 1 when both numerator and denominator vanish."""

    name = "lin"

    def from_ic(self, ic1, ic2, ic_mica):
        numerator = 2.0 * np.asarray(ic_mica, dtype=np.float64)
        denominator = np.asarray(ic1, dtype=np.float64) + np.asarray(ic2, dtype=np.float64)
        with np.errstate(divide="ignore", invalid="ignore"):
            return np.where(
                (numerator <= 0) & (denominator <= 0), 1.0, numerator / denominator
            )


class JiangConrathSimilarity(TermSimilarity):
    """1 / (1 + IC(t1) + IC(t2) - 2 * IC(MICA))."""

    name = "jc"

    def from_ic(self, ic1, ic2, ic_mica):
        distance = (
            np.asarray(ic1, dtype=np.float64)
            + np.asarray(ic2, dtype=np.float64)
            - 2.0 * np.asarray(ic_mica, dtype=np.float64)
        )
        return 1.0 / (1.0 + distance)


SIMILARITY_MEASURES: dict[str, type[TermSimilarity]] = {
    cls.name: cls for cls in (ResnikSimilarity, LinSimilarity, JiangConrathSimilarity)
}


__all__ = [
    "JiangConrathSimilarity",
    "LinSimilarity",
    "ResnikSimilarity",
    "SIMILARITY_MEASURES",
    "SemanticIndex",
    "TermSimilarity",
]
