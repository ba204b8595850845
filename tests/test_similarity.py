import math

import numpy as np
import pytest

from boqa.datasets import internal_dataset
from boqa.engine import BOQA


@pytest.fixture(scope="module")
def precalculated_boqa(toy_config):
    dataset = internal_dataset()
    config = toy_config.replace(
        precalculate_mica=True, precalculate_jaccard=True, precalculate_item_maxs=True
    )
    return BOQA(dataset.parents, dataset.annotations, config)


def test_resnik_lin_jc(toy_boqa):
    resnik = toy_boqa.term_similarity("resnik")
    lin = toy_boqa.term_similarity("lin")
    jc = toy_boqa.term_similarity("jc")
    assert resnik.term_sim(7, 8) == pytest.approx(0.223144, abs=1e-6)
    assert lin.term_sim(7, 8) == pytest.approx(0.243529, abs=1e-6)
    assert jc.term_sim(7, 8) == pytest.approx(0.419, abs=1e-3)


@pytest.mark.parametrize("term", [0, 12])
def test_self_similarity(toy_boqa, term):
    assert toy_boqa.term_similarity("lin").term_sim(term, term) == 1.0
    assert toy_boqa.term_similarity("jc").term_sim(term, term) == 1.0
    assert toy_boqa.term_similarity("lin").score_max_avg([term], [term]) == 1.0
    assert toy_boqa.term_similarity("jc").score_max_avg([term], [term]) == 1.0


def test_mica(toy_boqa):
    semantics = toy_boqa.semantics
    assert semantics.mica(11, 12) == 7
    assert semantics.mica(9, 11) in (4, 6)
    assert semantics.mica(5, 5) == 5


def test_mica_row_matches_pairwise(toy_boqa):
    semantics = toy_boqa.semantics
    for t1 in range(15):
        row = semantics.mica_row(t1)
        for t2 in range(15):
            if t1 != t2:
                assert row[t2] == semantics.mica(t1, t2)


@pytest.mark.parametrize(
    "query, item, expected",
    [
        ([3, 10], 2, 0.9163),
        ([9, 10], 2, 1.26286),
        ([12, 9], 0, 1.26286),
        ([10], 0, 0.91629),
        ([9, 10, 12], 0, 1.14734),
    ],
)
def test_resnik_score_vs_item(toy_boqa, precalculated_boqa, query, item, expected):
    assert toy_boqa.term_similarity("resnik").score_vs_item(query, item) == pytest.approx(expected, abs=1e-4)
    assert precalculated_boqa.term_similarity("resnik").score_vs_item(query, item) == pytest.approx(
        expected, abs=1e-4
    )


@pytest.mark.parametrize(
    "t1, t2, expected",
    [
        (0, 0, 1.0),
        (0, 1, 1.0),
        (1, 1, 1.0),
        (9, 12, 0.5),
        (9, 10, 0.0),
        (6, 14, 0.25),
        (3, 4, 0.6),
        (10, 3, 0.25),
        (3, 11, 0.25),
        (3, 12, 0.2),
        (3, 13, 0.5),
        (10, 11, 0.0),
        (10, 12, 0.0),
        (10, 13, 0.0),
    ],
)
def test_jaccard(toy_boqa, precalculated_boqa, t1, t2, expected):
    assert toy_boqa.semantics.jaccard(t1, t2) == pytest.approx(expected)
    assert toy_boqa.semantics.jaccard(t2, t1) == pytest.approx(expected)
    assert precalculated_boqa.semantics.jaccard(t1, t2) == pytest.approx(expected)


def test_precalculated_mica_matches_on_demand(toy_boqa, precalculated_boqa):
    for t1 in range(15):
        for t2 in range(15):
            assert precalculated_boqa.semantics.mica(t1, t2) == toy_boqa.semantics.mica(t1, t2)


def test_mbsim(toy_boqa):
    semantics = toy_boqa.semantics
    expected = 0.5 * (-math.log(4 / 5) - math.log(2 / 5)) / 2
    assert semantics.mb_term_sim(3, 13) == pytest.approx(expected)
    assert semantics.msim(3, [11, 12, 13]) == pytest.approx(expected)
    assert semantics.msim(10, [11, 12, 13]) == 0.0
    assert semantics.mbsim_unsym([3, 10], [11, 12, 13]) == pytest.approx(0.1424293, abs=1e-7)
    assert semantics.mbsim([11, 12, 13], [3, 10]) == pytest.approx(
        (0.1424292853985456 + 0.20929156069482216) / 2
    )


@pytest.mark.parametrize(
    "measure, expected",
    [
        ("resnik", [0.45815, 0.22314, 0.91629, 0.22314, 0.11157]),
        ("lin", [0.284662, 0.284185, 1.0, 0.243529, 0.195837]),
        ("jc", [0.443237, 0.457675, 1.0, 0.555243, 0.600395]),
    ],
)
def test_sim_score(toy_boqa, measure, expected):
    observations = toy_boqa.observations_from_terms([3, 10])
    result = toy_boqa.sim_score(observations, measure, rng=np.random.default_rng(1))
    assert result.scores == pytest.approx(expected, abs=1e-4)
    assert np.all((result.marginals >= 0) & (result.marginals <= 1))
    # The annotated item is the best match and hard to beat by chance
    assert int(np.argmax(result.scores)) == 2
    assert result.marginals[2] == result.marginals.min()


def test_sim_score_without_pvalues(toy_boqa):
    result = toy_boqa.sim_score(toy_boqa.observations_from_terms([12]), "lin", pval=False)
    assert np.all(np.isnan(result.marginals))


def test_sim_score_parallel(toy_boqa):
    observations = toy_boqa.observations_from_terms([6, 14])
    sequential = toy_boqa.sim_score(observations, "resnik", rng=np.random.default_rng(3))
    parallel = toy_boqa.sim_score(observations, "resnik", rng=np.random.default_rng(3), num_workers=3)
    assert parallel.scores == pytest.approx(sequential.scores)
    assert parallel.marginals == pytest.approx(sequential.marginals)


def test_unknown_measure(toy_boqa):
    with pytest.raises(ValueError, match="Unknown similarity measure"):
        toy_boqa.sim_score(toy_boqa.observations_from_terms([3]), "cosine")


def test_mb_score(toy_boqa):
    result = toy_boqa.mb_score(toy_boqa.observations_from_terms([3, 10]))
    assert int(np.argmax(result.scores)) == 2
    assert result.scores[2] == pytest.approx(
        toy_boqa.semantics.mbsim([3, 10], toy_boqa.items.direct_terms[2])
    )


def test_item_rows_match_max_avg(random_boqa):
    resnik = random_boqa.term_similarity("resnik")
    rng = np.random.default_rng(0)
    for item in range(random_boqa.num_items):
        row = resnik.item_row(item)
        query = rng.choice(random_boqa.num_terms, size=3, replace=False)
        direct = random_boqa.items.direct_terms[item]
        assert row[query].mean() == pytest.approx(resnik.score_max_avg(query, direct))


@pytest.mark.parametrize("precalculate", [False, True])
def test_item_without_known_terms(toy_config, precalculate):
    config = toy_config.replace(
        precalculate_score_distribution=precalculate,
        precalculate_item_maxs=precalculate,
        size_of_score_distribution=100,
    )
    boqa = BOQA({"r": [], "a": ["r"], "b": ["r"]}, {"x": ["a"], "y": ["b"], "z": ["missing"]}, config)
    assert boqa.items.direct_terms[2].size == 0
    observations = boqa.observations_from_terms(["a"])
    for measure in ("resnik", "lin", "jc"):
        result = boqa.sim_score(observations, measure, rng=np.random.default_rng(0))
        assert np.all(np.isfinite(result.scores))
        assert result.scores[2] == 0.0
        assert result.marginals[2] == 1.0
        assert int(np.argmax(result.scores)) == 0
        assert boqa.term_similarity(measure).item_row(2).tolist() == [0.0, 0.0, 0.0]
