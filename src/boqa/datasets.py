"""
Built-in datasets.

``internal_dataset`` is a 15-term ontology with 5 items whose ranking
results are known exactly; ``random_dataset`` generates seeded synthetic
ontologies of arbitrary size for benchmarking.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from boqa.frequency import FREQUENCY_LABELS


@dataclass
class Dataset:
    """Term graph and item annotations in the form accepted by ``BOQA``."""

    parents: dict[str, list[str]]
    annotations: dict[str, list[str | tuple[str, str | None]]]
    names: dict[str, str] = field(default_factory=dict)


def _go_id(i: int) -> str:
    return f"GO:{i:07d}"


def internal_dataset() -> Dataset:
    """
    The C1..C15 toy ontology.

    Term indices follow C1..C15 (index = number - 1). Items are listed in
    the order item2, item4, item1, item3, item5.
    """
    edges = {
        1: [],
        2: [1],
        3: [1],
        4: [2],
        5: [2],
        6: [3, 2],
        7: [5, 6],
        8: [7],
        9: [7],
        10: [9],
        11: [9],
        12: [8],
        13: [8],
        14: [4],
        15: [4],
    }
    parents = {_go_id(c): [_go_id(p) for p in ps] for c, ps in edges.items()}
    names = {_go_id(c): f"C{c}" for c in edges}
    items = {
        "item2": [10, 13],
        "item4": [12, 13, 14],
        "item1": [4, 11],
        "item3": [7, 15],
        "item5": [6, 14],
    }
    annotations = {item: [_go_id(c) for c in terms] for item, terms in items.items()}
    return Dataset(parents=parents, annotations=annotations, names=names)


def random_dataset(
    num_terms: int,
    num_items: int,
    rng: np.random.Generator,
    max_parents: int = 2,
    max_terms_per_item: int = 6,
    frequency_probability: float = 0.5,
) -> Dataset:
    """
    Seeded synthetic ontology and annotations.

    Term i picks up to ``max_parents`` parents among terms 0..i-1, so the
    graph is acyclic with the single root term 0. Each annotation carries a
    random frequency label or percentage with ``frequency_probability``.

    Args:
        num_terms: Number of terms (at least 1).
        num_items: Number of items.
        rng: Random generator.
        max_parents: Upper bound of parents per non-root term.
        max_terms_per_item: Upper bound of direct annotations per item.
        frequency_probability: Chance that an annotation has a frequency.

    Returns:
        Dataset with term ids ``T:0000000``... and item ids ``item0``...
    """
    term_ids = [f"T:{i:07d}" for i in range(num_terms)]
    parents: dict[str, list[str]] = {term_ids[0]: []}
    for i in range(1, num_terms):
        k = int(rng.integers(1, min(max_parents, i) + 1))
        chosen = rng.choice(i, size=k, replace=False)
        parents[term_ids[i]] = [term_ids[p] for p in sorted(chosen.tolist())]

    labels = sorted(FREQUENCY_LABELS)
    annotations: dict[str, list[str | tuple[str, str | None]]] = {}
    for item in range(num_items):
        k = int(rng.integers(1, min(max_terms_per_item, num_terms) + 1))
        chosen = rng.choice(num_terms, size=k, replace=False)
        entries: list[str | tuple[str, str | None]] = []
        for t in chosen.tolist():
            if rng.random() < frequency_probability:
                if rng.random() < 0.5:
                    frequency = labels[int(rng.integers(len(labels)))]
                else:
                    frequency = f"{int(rng.integers(1, 100))}%"
                entries.append((term_ids[t], frequency))
            else:
                entries.append(term_ids[t])
        annotations[f"item{item}"] = entries
    return Dataset(parents=parents, annotations=annotations)


__all__ = ["Dataset", "internal_dataset", "random_dataset"]
