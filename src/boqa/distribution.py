"""
Empirical score distributions and their persistence.

Similarity p-values compare an item's score for the actual query with the
scores of the same item for random queries of the same size. The random
scores are summarized either exactly (``EmpiricalDistribution``) or as a
histogram (``ApproximatedEmpiricalDistribution``). Histograms are cached per
(item, query size) and can be persisted to a msgpack file whose fingerprint
ties it to the term graph and item universe it was computed for.
"""

from __future__ import annotations

import hashlib
import logging
import os
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING, Any

import msgpack
import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from boqa.items import ItemIndex
    from boqa.ontology import TermDAG

logger = logging.getLogger(__name__)

_FORMAT_VERSION = 1


class EmpiricalDistribution:
    """Exact empirical distribution, optionally with per-value counts."""

    def __init__(self, observations: Iterable[float], counts: Iterable[int] | None = None):
        observations = np.asarray(list(observations), dtype=np.float64)
        if counts is None:
            self.observations = np.sort(observations)
            self.cum_counts = None
        else:
            counts = np.asarray(list(counts), dtype=np.int64)
            if len(counts) != len(observations):
                raise ValueError("Length of observations and counts does not match")
            order = np.argsort(observations, kind="stable")
            self.observations = observations[order]
            self.cum_counts = np.cumsum(counts[order])

    def cdf(self, x: float) -> float:
        """P(X <= x)."""
        if len(self.observations) == 0:
            return 0.0
        idx = int(np.searchsorted(self.observations, x, side="right"))
        if self.cum_counts is None:
            return idx / len(self.observations)
        if idx == 0:
            return 0.0
        return float(self.cum_counts[idx - 1] / self.cum_counts[-1])

    def prob(self, x: float) -> float:
        """P(X == x)."""
        lo = int(np.searchsorted(self.observations, x, side="left"))
        hi = int(np.searchsorted(self.observations, x, side="right"))
        if lo == hi:
            return 0.0
        if self.cum_counts is None:
            return (hi - lo) / len(self.observations)
        below = self.cum_counts[lo - 1] if lo > 0 else 0
        return float((self.cum_counts[hi - 1] - below) / self.cum_counts[-1])

    def upper_tail(self, x: float) -> float:
        """P(X >= x), counted exactly."""
        if len(self.observations) == 0:
            return 0.0
        lo = int(np.searchsorted(self.observations, x, side="left"))
        if self.cum_counts is None:
            return (len(self.observations) - lo) / len(self.observations)
        below = self.cum_counts[lo - 1] if lo > 0 else 0
        return float((self.cum_counts[-1] - below) / self.cum_counts[-1])


class ApproximatedEmpiricalDistribution:
    """Equal-width histogram over [min, max] of the observed values."""

    def __init__(self, observations: NDArray[np.float64], num_bins: int):
        observations = np.asarray(observations, dtype=np.float64)
        if observations.size == 0:
            raise ValueError("Cannot build a distribution without observations")
        if not np.all(np.isfinite(observations)):
            raise ValueError("Cannot build a distribution from non-finite observations")
        self.min = float(observations.min())
        self.max = float(observations.max())
        self.num_bins = num_bins
        upper = self.max if self.max > self.min else self.min + 1.0
        counts, _ = np.histogram(observations, bins=num_bins, range=(self.min, upper))
        self.counts = counts.astype(np.int64)
        self.cum_counts = np.cumsum(self.counts)

    @classmethod
    def from_state(cls, state: dict[str, Any]) -> ApproximatedEmpiricalDistribution:
        dist = cls.__new__(cls)
        dist.min = float(state["min"])
        dist.max = float(state["max"])
        dist.counts = np.asarray(state["counts"], dtype=np.int64)
        dist.num_bins = len(dist.counts)
        dist.cum_counts = np.cumsum(dist.counts)
        return dist

    def to_state(self) -> dict[str, Any]:
        return {"min": self.min, "max": self.max, "counts": self.counts.tolist()}

    def _bin(self, x: float) -> int:
        if self.max <= self.min:
            return 0
        idx = int((x - self.min) / (self.max - self.min) * self.num_bins)
        return min(max(idx, 0), self.num_bins - 1)

    @property
    def total(self) -> int:
        return int(self.cum_counts[-1])

    def cdf(self, x: float) -> float:
        """P(X <= x), resolved to bin granularity."""
        if x < self.min:
            return 0.0
        if x >= self.max:
            return 1.0
        return float(self.cum_counts[self._bin(x)] / self.total)

    def prob(self, x: float) -> float:
        """Mass of the bin containing x."""
        if x < self.min or x > self.max:
            return 0.0
        return float(self.counts[self._bin(x)] / self.total)

    def upper_tail(self, x: float) -> float:
        """P(X >= x): 1 - (cdf(x) - prob(x))."""
        return 1.0 - (self.cdf(x) - self.prob(x))


# =============================================================================
# Persistence
# =============================================================================


def structure_fingerprint(
    dag: TermDAG,
    items: ItemIndex,
    size_of_score_distribution: int,
    max_query_size: int,
    num_bins: int,
    forbid_illegal_queries: bool,
    max_query_tries: int,
) -> int:
    """Hash of everything a persisted distribution table depends on.

    Covers the items with their annotated terms, the term graph, and the
    settings that shape the random queries and the histograms.
    """
    h = hashlib.sha256()
    for item_id, direct in zip(items.item_ids, items.direct_terms):
        h.update(item_id.encode("utf-8"))
        h.update(b"\0")
        for t in np.sort(direct):
            h.update(dag.term_ids[t].encode("utf-8"))
            h.update(b"\0")
        h.update(b"\2")
    h.update(b"\1")
    for term_id, name in zip(dag.term_ids, dag.names):
        h.update(term_id.encode("utf-8"))
        h.update(b"\0")
        h.update(name.encode("utf-8"))
        h.update(b"\0")
    h.update(
        f"{size_of_score_distribution}:{max_query_size}:{num_bins}:"
        f"{int(forbid_illegal_queries)}:{max_query_tries}:{_FORMAT_VERSION}".encode()
    )
    return int.from_bytes(h.digest()[:8], "big")


class DistributionStore:
    """Score distribution table of one similarity measure on disk."""

    def __init__(
        self,
        directory: Path,
        measure: str,
        num_items: int,
        consider_frequencies_only: bool,
        size_of_score_distribution: int,
    ):
        self.path = Path(directory) / (
            f"scoreDistributions-{measure}-{num_items}-"
            f"{str(consider_frequencies_only).lower()}-{size_of_score_distribution}.msgpack"
        )

    def load(self, fingerprint: int) -> dict[tuple[int, int], ApproximatedEmpiricalDistribution] | None:
        """Stored table, or None if it is missing, unreadable, or stale."""
        if not self.path.exists():
            return None
        try:
            with open(self.path, "rb") as f:
                stored_fingerprint, table = msgpack.unpackb(f.read(), raw=False)
            if stored_fingerprint != fingerprint:
                logger.warning("Ignoring %s: fingerprint does not match current data", self.path)
                return None
            entries = {
                (int(item), int(query_size)): ApproximatedEmpiricalDistribution.from_state(state)
                for item, query_size, state in table
            }
        except (OSError, ValueError, TypeError, KeyError, msgpack.UnpackException) as exc:
            logger.warning("Ignoring unreadable score distributions in %s: %s", self.path, exc)
            return None
        logger.info("Loaded %d score distributions from %s", len(entries), self.path)
        return entries

    def save(
        self,
        fingerprint: int,
        entries: Iterable[tuple[tuple[int, int], ApproximatedEmpiricalDistribution]],
    ) -> bool:
        """Write the table atomically; failures are logged, not raised."""
        table = [[item, query_size, dist.to_state()] for (item, query_size), dist in entries]
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "wb") as f:
                f.write(msgpack.packb([fingerprint, table], use_bin_type=True))
            os.replace(tmp_path, self.path)
        except OSError as exc:
            logger.warning("Could not store score distributions to %s: %s", self.path, exc)
            return False
        logger.info("Stored %d score distributions to %s", len(table), self.path)
        return True


__all__ = [
    "ApproximatedEmpiricalDistribution",
    "DistributionStore",
    "EmpiricalDistribution",
    "structure_fingerprint",
]
