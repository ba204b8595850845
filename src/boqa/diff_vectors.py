"""
Diff vectors between consecutive hidden states.

Scoring walks items in a fixed order and, within an item, walks all
combinations of its uncertain annotations. Consecutive hidden states differ
in few terms, so only those differences are stored and replayed.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from boqa.items import ItemIndex
    from boqa.ontology import TermDAG

logger = logging.getLogger(__name__)

_EMPTY = np.array([], dtype=np.int64)


def stepwise_subsets(n: int, max_size: int | None = None) -> Iterator[tuple[int, ...]]:
    """
    Enumerate subsets of ``range(n)`` so that neighbours differ little.

    The empty subset comes first; the rest follow in lexicographic
    depth-first order: extend by the next element while possible, otherwise
    drop the last element when it cannot grow and advance the new last one.

    >>> list(stepwise_subsets(2))
    [(), (0,), (0, 1), (1,)]
    """
    m = n if max_size is None else min(max_size, n)
    yield ()
    if n == 0 or m == 0:
        return
    j = [0]
    while True:
        yield tuple(j)
        if j[-1] < n - 1 and len(j) < m:
            j.append(j[-1] + 1)
        else:
            if j[-1] >= n - 1:
                j.pop()
            if not j:
                return
            j[-1] += 1


def _set_diff(a: NDArray[np.int64], b: NDArray[np.int64]) -> NDArray[np.int64]:
    return np.setdiff1d(a, b, assume_unique=True).astype(np.int64)


@dataclass
class DiffVectors:
    """Replayable hidden-state changes.

    Attributes:
        on_terms: Terms switched on when moving from item i-1 to item i.
        off_terms: Terms switched off when moving from item i-1 to item i.
        freq_on_terms: Per item and hidden configuration, terms switched on
            relative to the previous configuration of the same item (the
            first configuration is relative to the empty state).
        freq_off_terms: Counterpart of ``freq_on_terms``.
        factors: Per item and configuration, log prior of the configuration.
    """

    on_terms: list[NDArray[np.int64]]
    off_terms: list[NDArray[np.int64]]
    freq_on_terms: list[list[NDArray[np.int64]]]
    freq_off_terms: list[list[NDArray[np.int64]]]
    factors: list[NDArray[np.float64]]

    @classmethod
    def build(cls, dag: TermDAG, items: ItemIndex, max_frequency_terms: int) -> DiffVectors:
        on_terms: list[NDArray[np.int64]] = []
        off_terms: list[NDArray[np.int64]] = []
        previous = _EMPTY
        for closure in items.closures:
            on_terms.append(_set_diff(closure, previous))
            off_terms.append(_set_diff(previous, closure))
            previous = closure

        freq_on_terms = []
        freq_off_terms = []
        factors = []
        for i in range(items.num_items):
            on, off, weights = _frequency_chain(
                dag, items.direct_terms[i], items.frequencies[i], max_frequency_terms
            )
            freq_on_terms.append(on)
            freq_off_terms.append(off)
            factors.append(weights)

        logger.info(
            "Built diff vectors for %d items (%d hidden configurations, %d items capped at %d)",
            items.num_items,
            sum(len(f) for f in factors),
            int(np.count_nonzero(
                [np.sum(f < 1.0) > max_frequency_terms for f in items.frequencies]
            )),
            max_frequency_terms,
        )
        return cls(on_terms, off_terms, freq_on_terms, freq_off_terms, factors)

    def num_configurations(self, item: int) -> int:
        return len(self.factors[item])


def _frequency_chain(
    dag: TermDAG,
    direct_terms: NDArray[np.int64],
    frequencies: NDArray[np.float64],
    max_frequency_terms: int,
) -> tuple[list[NDArray[np.int64]], list[NDArray[np.int64]], NDArray[np.float64]]:
    """Diffs and log priors of all hidden configurations of one item.

    Direct terms are sorted by ascending frequency, so the uncertain ones
    lead. Only the first ``max_frequency_terms`` of them are expanded; the
    remaining terms are always on.
    """
    k = min(int(np.count_nonzero(frequencies < 1.0)), max_frequency_terms)
    ambiguous = direct_terms[:k]
    mandatory = direct_terms[k:]
    with np.errstate(divide="ignore"):
        log_taken = np.log(frequencies[:k])
        log_skipped = np.log1p(-frequencies[:k])
    mandatory_ancestors = [dag.ancestors[t] for t in mandatory]

    on_list: list[NDArray[np.int64]] = []
    off_list: list[NDArray[np.int64]] = []
    weights: list[float] = []
    previous = _EMPTY
    for subset in stepwise_subsets(k):
        chosen = np.zeros(k, dtype=bool)
        chosen[list(subset)] = True
        parts = [dag.ancestors[t] for t in ambiguous[chosen]] + mandatory_ancestors
        hidden = np.unique(np.concatenate(parts)) if parts else _EMPTY
        on_list.append(_set_diff(hidden, previous))
        off_list.append(_set_diff(previous, hidden))
        weights.append(float(log_taken[chosen].sum() + log_skipped[~chosen].sum()))
        previous = hidden
    return on_list, off_list, np.asarray(weights, dtype=np.float64)


__all__ = ["DiffVectors", "stepwise_subsets"]
