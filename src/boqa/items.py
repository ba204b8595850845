"""
Item index.

Items are the things being ranked (e.g. diseases). Each item carries direct
term annotations with frequencies; its closure is the set of annotated terms
together with their ancestors. Term information content (IC) is derived from
how many items carry a term in their closure.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from functools import cached_property
from typing import TYPE_CHECKING, Union

import numpy as np
from scipy.sparse import csr_matrix

from boqa.errors import EmptyItemUniverseError
from boqa.frequency import parse_frequency
from boqa.ontology import TermDAG

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

# A plain term id, or a (term id, frequency string) pair
AnnotationEntry = Union[str, tuple[str, Union[str, None]]]


class ItemIndex:
    """Per-item annotation arrays over a fixed term graph.

    ``direct_terms[i]`` is sorted by ascending frequency (stable with
    respect to annotation order) and ``frequencies[i]`` is aligned with it.
    """

    def __init__(
        self,
        dag: TermDAG,
        item_ids: Sequence[str],
        direct_terms: Sequence[Sequence[int]],
        frequencies: Sequence[Sequence[float]],
    ):
        self.dag = dag
        self.item_ids: list[str] = list(item_ids)
        self._index = {item_id: i for i, item_id in enumerate(self.item_ids)}

        self.direct_terms: list[NDArray[np.int64]] = []
        self.frequencies: list[NDArray[np.float64]] = []
        for terms, freqs in zip(direct_terms, frequencies, strict=True):
            terms_arr = np.asarray(terms, dtype=np.int64)
            freqs_arr = np.asarray(freqs, dtype=np.float64)
            order = np.argsort(freqs_arr, kind="stable")
            self.direct_terms.append(terms_arr[order])
            self.frequencies.append(freqs_arr[order])

        self.has_frequencies = np.array(
            [bool(np.any(f < 1.0)) for f in self.frequencies], dtype=bool
        )
        self.closures: list[NDArray[np.int64]] = [dag.closure_indices(t) for t in self.direct_terms]

    def __len__(self) -> int:
        return len(self.item_ids)

    @property
    def num_items(self) -> int:
        return len(self.item_ids)

    def index(self, item_id: str) -> int:
        return self._index[item_id]

    @cached_property
    def membership(self) -> csr_matrix:
        """(N, T) indicator of terms in each item's closure."""
        n, t = self.num_items, self.dag.num_terms
        indptr = np.zeros(n + 1, dtype=np.int64)
        indptr[1:] = np.cumsum([len(c) for c in self.closures])
        indices = np.concatenate(self.closures) if n else np.array([], dtype=np.int64)
        data = np.ones(len(indices), dtype=np.int32)
        return csr_matrix((data, indices, indptr), shape=(n, t))

    @cached_property
    def term_item_counts(self) -> NDArray[np.int64]:
        """Number of items annotated to each term (through the closure)."""
        return np.asarray(self.membership.sum(axis=0)).ravel().astype(np.int64)

    @cached_property
    def term_items(self) -> list[NDArray[np.int64]]:
        """Sorted item indices annotated to each term (through the closure)."""
        csc = self.membership.tocsc()
        csc.sort_indices()
        return [
            csc.indices[csc.indptr[t] : csc.indptr[t + 1]].astype(np.int64)
            for t in range(self.dag.num_terms)
        ]

    @cached_property
    def ic(self) -> NDArray[np.float64]:
        """Information content -ln(p) with p the fraction of annotated items."""
        with np.errstate(divide="ignore"):
            return -np.log(self.term_item_counts / self.num_items)


def parse_annotations(
    dag: TermDAG,
    annotations: Mapping[str, Iterable[AnnotationEntry]],
) -> dict[str, list[tuple[int, float]]]:
    """Resolve term ids and frequencies of raw annotations.

    Repeated terms keep their first frequency. Terms missing from the graph
    are logged and skipped.
    """
    parsed: dict[str, list[tuple[int, float]]] = {}
    skipped = 0
    for item_id, entries in annotations.items():
        seen: set[int] = set()
        rows: list[tuple[int, float]] = []
        for entry in entries:
            if isinstance(entry, str):
                term_id, frequency = entry, None
            else:
                term_id, frequency = entry
            if term_id not in dag:
                skipped += 1
                continue
            t = dag.index(term_id)
            if t in seen:
                continue
            seen.add(t)
            rows.append((t, parse_frequency(frequency)))
        parsed[item_id] = rows
    if skipped:
        logger.warning("Skipped %d annotations to terms missing from the term graph", skipped)
    return parsed


def build_item_universe(
    dag: TermDAG,
    annotations: Mapping[str, Iterable[AnnotationEntry]],
    consider_frequencies_only: bool = False,
) -> tuple[TermDAG, ItemIndex]:
    """
    Select the item universe and induce the term graph on its annotations.

    Only terms that occur in the closure of at least one considered item are
    kept, so every retained term has a finite information content.

    Args:
        dag: Complete term graph.
        annotations: Ordered mapping ``item id -> annotation entries``.
        consider_frequencies_only: Keep only items with an explicit
            frequency below one.

    Returns:
        (induced term graph, item index over it)

    Raises:
        EmptyItemUniverseError: No item survives the selection.
    """
    parsed = parse_annotations(dag, annotations)
    if consider_frequencies_only:
        parsed = {
            item_id: rows for item_id, rows in parsed.items() if any(f < 1.0 for _, f in rows)
        }
        logger.info("Considering %d items with explicit frequencies", len(parsed))
    if not parsed:
        raise EmptyItemUniverseError("No items to rank after filtering annotations")

    annotated: set[int] = set()
    for rows in parsed.values():
        for t, _ in rows:
            annotated.update(dag.ancestors[t].tolist())
    induced = dag.induced(annotated)
    if len(induced) < len(dag):
        logger.info("Restricted term graph from %d to %d annotated terms", len(dag), len(induced))

    remap = {dag.term_ids[t]: induced.index(dag.term_ids[t]) for t in annotated}
    item_ids = list(parsed)
    direct_terms = [[remap[dag.term_ids[t]] for t, _ in parsed[i]] for i in item_ids]
    frequencies = [[f for _, f in parsed[i]] for i in item_ids]
    items = ItemIndex(induced, item_ids, direct_terms, frequencies)
    logger.info("Indexed %d items over %d terms", len(items), len(induced))
    return induced, items


__all__ = ["AnnotationEntry", "ItemIndex", "build_item_universe", "parse_annotations"]
