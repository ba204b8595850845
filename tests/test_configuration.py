import math

import numpy as np
import pytest

from boqa.configuration import (
    CaseTable,
    Configuration,
    HiddenStateTracker,
    NodeCase,
    WeightedConfigurationList,
    resolve_node_case,
)
from boqa.datasets import internal_dataset
from boqa.ontology import TermDAG


@pytest.fixture
def toy_dag():
    dataset = internal_dataset()
    return TermDAG.from_parents(dataset.parents, dataset.names)


@pytest.mark.parametrize(
    "hidden, observed, child_obs, parent_unobs, fp, fn, expected",
    [
        (True, True, False, False, False, False, NodeCase.TRUE_POSITIVE),
        (True, False, False, False, False, False, NodeCase.FALSE_NEGATIVE),
        (False, True, False, False, False, False, NodeCase.FALSE_POSITIVE),
        (False, False, False, False, False, False, NodeCase.TRUE_NEGATIVE),
        # Bottom-up inheritance
        (False, True, True, False, True, False, NodeCase.INHERIT_TRUE),
        (True, False, True, False, True, False, NodeCase.FAULT),
        (False, True, True, False, False, False, NodeCase.FALSE_POSITIVE),
        # Top-down inheritance
        (True, False, False, True, False, True, NodeCase.INHERIT_FALSE),
        (True, True, False, True, False, True, NodeCase.FAULT),
        # Bottom-up takes precedence
        (False, True, True, True, True, True, NodeCase.INHERIT_TRUE),
    ],
)
def test_resolve_node_case(hidden, observed, child_obs, parent_unobs, fp, fn, expected):
    assert resolve_node_case(hidden, observed, child_obs, parent_unobs, fp, fn) == expected


@pytest.mark.parametrize("fp, fn", [(True, False), (False, True), (False, False), (True, True)])
def test_case_table_agrees_with_resolver(toy_dag, fp, fn):
    rng = np.random.default_rng(1)
    for _ in range(20):
        observed = rng.random(15) < 0.4
        table = CaseTable(toy_dag, observed, fp, fn)
        for t in range(15):
            any_child = bool(observed[toy_dag.children[t]].any())
            any_parent_unobserved = bool((~observed[toy_dag.parents[t]]).any())
            for hidden in (False, True):
                expected = resolve_node_case(hidden, observed[t], any_child, any_parent_unobserved, fp, fn)
                assert table.case(t, hidden) == expected


def test_scan_counts_every_term(toy_dag):
    observed = toy_dag.closure([3, 10])
    config = CaseTable(toy_dag, observed).scan(toy_dag.closure([3, 10]))
    assert config.total() == 15
    assert config.get_cases(NodeCase.TRUE_POSITIVE) == 2
    assert config.get_cases(NodeCase.TRUE_NEGATIVE) == 6
    assert config.get_cases(NodeCase.INHERIT_TRUE) == 7


def test_incremental_update_matches_scan(toy_dag):
    rng = np.random.default_rng(7)
    observed = toy_dag.closure([4, 11, 13])
    table = CaseTable(toy_dag, observed)
    tracker = HiddenStateTracker(table)
    for _ in range(100):
        target = rng.random(15) < 0.5
        on = np.flatnonzero(target & ~tracker.hidden)
        off = np.flatnonzero(~target & tracker.hidden)
        tracker.apply(on, off)
        assert np.array_equal(tracker.hidden, target)
        assert tracker.configuration == table.scan(target)


def test_configuration_score():
    config = Configuration()
    config.increment(NodeCase.FALSE_NEGATIVE, 2)
    config.increment(NodeCase.FALSE_POSITIVE)
    config.increment(NodeCase.TRUE_POSITIVE, 3)
    config.increment(NodeCase.TRUE_NEGATIVE, 4)
    config.increment(NodeCase.INHERIT_TRUE, 5)
    expected = 2 * math.log(0.2) + math.log(0.1) + 3 * math.log(0.8) + 4 * math.log(0.9)
    assert config.score(0.1, 0.2) == pytest.approx(expected)
    config.decrement(NodeCase.FALSE_POSITIVE)
    assert config.score(0.0, 0.2) == pytest.approx(2 * math.log(0.2) + 3 * math.log(0.8))


def test_configuration_rates():
    config = Configuration()
    assert math.isnan(config.false_positive_rate())
    config.increment(NodeCase.FALSE_POSITIVE)
    config.increment(NodeCase.TRUE_NEGATIVE, 3)
    config.increment(NodeCase.FALSE_NEGATIVE)
    config.increment(NodeCase.TRUE_POSITIVE)
    assert config.false_positive_rate() == 0.25
    assert config.false_negative_rate() == 0.5


def test_configuration_copy_is_independent():
    config = Configuration()
    copy = config.copy()
    copy.increment(NodeCase.FAULT)
    assert config.get_cases(NodeCase.FAULT) == 0
    assert copy != config


def test_weighted_list_grid_matches_pointwise():
    configurations = WeightedConfigurationList()
    for counts, weight in [([0, 1, 2, 3, 4, 0, 0], math.log(0.3)), ([1, 0, 0, 5, 2, 2, 0], math.log(0.7))]:
        configurations.add(Configuration(np.array(counts)), weight)
    alphas = np.array([0.01, 0.1])
    betas = np.array([0.05, 0.5, 0.9])
    grid = configurations.score_grid(alphas, betas)
    for i, a in enumerate(alphas):
        for j, b in enumerate(betas):
            assert grid[i, j] == pytest.approx(configurations.score(a, b))


def test_weighted_list_most_probable():
    configurations = WeightedConfigurationList()
    first, second = Configuration(), Configuration()
    second.increment(NodeCase.TRUE_POSITIVE)
    configurations.add(first, math.log(0.2))
    configurations.add(second, math.log(0.8))
    assert configurations.most_probable() is second
    assert len(configurations) == 2


def test_fault_is_logged(toy_dag, caplog):
    # C9 observed without its parent C7 is impossible when unobserved parents propagate
    observed = np.zeros(15, dtype=bool)
    observed[8] = True
    table = CaseTable(toy_dag, observed, propagate_false_positives=False, propagate_false_negatives=True)
    assert table.case(8, True) == NodeCase.FAULT
    assert "inconsistent" in caplog.text
