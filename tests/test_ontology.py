import numpy as np
import pytest

from boqa.datasets import internal_dataset
from boqa.errors import CyclicGraphError, UnknownTermError
from boqa.ontology import TermDAG


@pytest.fixture
def toy_dag():
    dataset = internal_dataset()
    return TermDAG.from_parents(dataset.parents, dataset.names)


def test_term_indices_follow_enumeration_order(toy_dag):
    assert toy_dag.num_terms == 15
    assert toy_dag.names[:3] == ["C1", "C2", "C3"]
    assert toy_dag.index("GO:0000007") == 6


def test_topological_order_respects_edges(toy_dag):
    rank = toy_dag.topological_rank
    for t in range(toy_dag.num_terms):
        for p in toy_dag.parents[t]:
            assert rank[p] < rank[t]
    assert sorted(toy_dag.topological_order.tolist()) == list(range(15))


def test_ancestors_and_descendants_are_reflexive(toy_dag):
    # C7 has parents C5 and C6; C6 hangs below C3 and C2
    assert toy_dag.ancestors[6].tolist() == [0, 1, 2, 4, 5, 6]
    assert toy_dag.descendants[8].tolist() == [8, 9, 10]
    for t in range(toy_dag.num_terms):
        assert t in toy_dag.ancestors[t]
        assert t in toy_dag.descendants[t]


def test_children_mirror_parents(toy_dag):
    assert toy_dag.children[0].tolist() == [1, 2]
    assert toy_dag.children[6].tolist() == [7, 8]


def test_cycle_is_rejected():
    with pytest.raises(CyclicGraphError, match="cycle"):
        TermDAG.from_parents({"a": ["c"], "b": ["a"], "c": ["b"], "d": []})


def test_unknown_parent_is_rejected():
    with pytest.raises(UnknownTermError):
        TermDAG.from_parents({"a": [], "b": ["missing"]})


def test_closure(toy_dag):
    closure = toy_dag.closure([3, 10])
    assert np.flatnonzero(closure).tolist() == [0, 1, 2, 3, 4, 5, 6, 8, 10]
    assert not toy_dag.closure([]).any()


@pytest.mark.parametrize(
    "terms, expected",
    [
        ([0, 1, 2], [1, 2]),
        (list(range(15)), [9, 10, 11, 12, 13, 14]),
        ([6], [6]),
        ([], []),
    ],
)
def test_most_specific_terms(toy_dag, terms, expected):
    assert toy_dag.most_specific_terms(terms).tolist() == expected


def test_most_specific_terms_idempotent_under_closure(toy_dag):
    rng = np.random.default_rng(0)
    for _ in range(50):
        terms = rng.choice(15, size=int(rng.integers(1, 6)), replace=False)
        closure = toy_dag.closure_indices(terms)
        specific = toy_dag.most_specific_terms(closure)
        assert np.array_equal(toy_dag.closure_indices(specific), closure)
        assert np.array_equal(toy_dag.most_specific_terms(specific), specific)


def test_is_descendant(toy_dag):
    assert toy_dag.is_descendant(9, 0)
    assert not toy_dag.is_descendant(0, 9)
    assert not toy_dag.is_descendant(4, 4)


def test_induced_subgraph_reindexes(toy_dag):
    induced = toy_dag.induced([0, 1, 3, 13])
    assert induced.term_ids == ["GO:0000001", "GO:0000002", "GO:0000004", "GO:0000014"]
    assert induced.parents[3].tolist() == [2]
    assert induced.ancestors[3].tolist() == [0, 1, 2, 3]


def test_deactivate_descendants(toy_dag):
    vector = np.ones(15, dtype=bool)
    toy_dag.deactivate_descendants(vector, 8)
    assert np.flatnonzero(~vector).tolist() == [8, 9, 10]
