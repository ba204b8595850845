import itertools

import numpy as np
import pytest

from boqa.queries import QueryCache, QueryGenerator, choose


def test_choose_draws_distinct_elements(rng):
    storage = np.arange(10, dtype=np.int64)
    for size in range(11):
        chosen = choose(rng, size, storage)
        assert len(chosen) == size
        assert len(set(chosen.tolist())) == size
        # The pool is permuted, never changed
        assert sorted(storage.tolist()) == list(range(10))


def test_choose_too_many(rng):
    with pytest.raises(ValueError):
        choose(rng, 4, np.arange(3, dtype=np.int64))


def test_is_legal(toy_boqa):
    generator = QueryGenerator(toy_boqa.dag)
    assert generator.is_legal(np.array([3, 10]))
    assert generator.is_legal(np.array([12]))
    # C7 is an ancestor of C11
    assert not generator.is_legal(np.array([6, 10]))
    assert not generator.is_legal(np.array([0, 14]))


def test_legal_pairs_in_toy_ontology(toy_boqa):
    generator = QueryGenerator(toy_boqa.dag)
    legal = [p for p in itertools.combinations(range(15), 2) if generator.is_legal(np.array(p))]
    assert len(legal) == 45


def test_random_queries_are_legal(random_boqa, rng):
    generator = QueryGenerator(random_boqa.dag)
    queries = generator.random_queries(rng, 3, 1000)
    assert queries.shape == (1000, 3)
    for query in queries:
        assert len(set(query.tolist())) == 3
        assert generator.is_legal(query)


def test_random_queries_are_uniform_over_legal_pairs(toy_boqa, rng):
    generator = QueryGenerator(toy_boqa.dag)
    queries = generator.random_queries(rng, 2, 4500)
    seen = {tuple(sorted(q.tolist())) for q in queries}
    assert len(seen) == 45


def test_illegal_queries_allowed_when_not_forbidden(toy_boqa, rng):
    generator = QueryGenerator(toy_boqa.dag, forbid_illegal_queries=False)
    queries = generator.random_queries(rng, 2, 500)
    assert not all(generator.is_legal(q) for q in queries)


def test_exhausted_tries_return_last_draw(toy_boqa, rng):
    # Every term is an ancestor or descendant of C1, so no legal query of size 15 exists
    generator = QueryGenerator(toy_boqa.dag, max_tries=3)
    query = generator.choose_terms(rng, 15)
    assert sorted(query.tolist()) == list(range(15))


def test_query_cache_reuses_queries(toy_boqa):
    cache = QueryCache(QueryGenerator(toy_boqa.dag), queries_per_size=50)
    first = cache.get(2, np.random.default_rng(0))
    second = cache.get(2, np.random.default_rng(1))
    assert first is second
    assert first.shape == (50, 2)
    assert cache.get(3, np.random.default_rng(0)).shape == (50, 3)
    assert len(cache) == 2
