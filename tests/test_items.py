import numpy as np
import pytest

from boqa.datasets import internal_dataset
from boqa.errors import EmptyItemUniverseError
from boqa.items import build_item_universe
from boqa.ontology import TermDAG


@pytest.fixture
def toy_universe():
    dataset = internal_dataset()
    dag = TermDAG.from_parents(dataset.parents, dataset.names)
    return build_item_universe(dag, dataset.annotations)


def test_item_order_follows_annotations(toy_universe):
    _, items = toy_universe
    assert items.item_ids == ["item2", "item4", "item1", "item3", "item5"]
    assert items.index("item1") == 2


def test_closures(toy_universe):
    _, items = toy_universe
    # item5 is annotated to C6 and C14
    assert items.closures[4].tolist() == [0, 1, 2, 3, 5, 13]


def test_information_content(toy_universe):
    _, items = toy_universe
    counts = items.term_item_counts
    assert counts.tolist() == [5, 5, 5, 4, 4, 5, 4, 2, 2, 1, 1, 1, 2, 2, 1]
    assert items.ic[6] == pytest.approx(-np.log(4 / 5))
    assert items.ic[0] == 0.0


def test_term_items(toy_universe):
    _, items = toy_universe
    assert items.term_items[12].tolist() == [0, 1]
    assert items.term_items[10].tolist() == [2]


def test_direct_terms_sorted_by_frequency():
    dag = TermDAG.from_parents({"r": [], "a": ["r"], "b": ["r"], "c": ["r"]})
    annotations = {"x": [("a", None), ("b", "rare"), ("c", "50%"), ("a", "1%")]}
    _, items = build_item_universe(dag, annotations)
    assert [items.dag.term_ids[t] for t in items.direct_terms[0]] == ["b", "c", "a"]
    assert items.frequencies[0].tolist() == [0.05, 0.5, 1.0]
    assert items.has_frequencies.tolist() == [True]


def test_unannotated_terms_are_dropped():
    dag = TermDAG.from_parents({"r": [], "a": ["r"], "b": ["r"], "c": ["a"]})
    induced, items = build_item_universe(dag, {"x": ["a"], "y": ["r"]})
    assert induced.term_ids == ["r", "a"]
    assert np.all(np.isfinite(items.ic))


def test_unknown_annotation_terms_are_skipped():
    dag = TermDAG.from_parents({"r": [], "a": ["r"]})
    _, items = build_item_universe(dag, {"x": ["a", "unknown"]})
    assert items.direct_terms[0].tolist() == [1]


def test_consider_frequencies_only():
    dag = TermDAG.from_parents({"r": [], "a": ["r"], "b": ["r"]})
    annotations = {"x": ["a"], "y": [("b", "1/2")]}
    induced, items = build_item_universe(dag, annotations, consider_frequencies_only=True)
    assert items.item_ids == ["y"]
    assert induced.term_ids == ["r", "b"]


def test_consider_frequencies_only_without_frequencies():
    dag = TermDAG.from_parents({"r": [], "a": ["r"]})
    with pytest.raises(EmptyItemUniverseError):
        build_item_universe(dag, {"x": ["a"]}, consider_frequencies_only=True)
