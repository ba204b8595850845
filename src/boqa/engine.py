"""
Bayesian ontology query ranking.

Every item is treated as a hypothesis about which terms are truly present
(the hidden state). An observed query is explained by each hypothesis under
a noise model with false-positive rate alpha and false-negative rate beta.
Scores are marginalized over a grid of (alpha, beta) pairs and normalized
over all items into posterior marginals.

Items are scored in a fixed order. Consecutive hidden states differ in few
terms, so with a single worker the node-case counts are carried from one
item to the next and only the differences are applied. With several
workers each item starts from a fresh state.

Usage:
    from boqa.config import BOQAConfig
    from boqa.engine import BOQA

    boqa = BOQA(parents, annotations, BOQAConfig(num_workers=4))
    query = boqa.observations_from_terms(["HP:0001250", "HP:0001263"])
    result = boqa.assign_marginals(query)
    top_items, top_marginals = result.ranking(top_k=10)
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING

import numpy as np
from scipy.special import logsumexp

from boqa.config import BOQAConfig, default_alpha_grid
from boqa.configuration import CaseTable, HiddenStateTracker, WeightedConfigurationList
from boqa.diff_vectors import DiffVectors
from boqa.distribution import DistributionStore, structure_fingerprint
from boqa.items import build_item_universe
from boqa.ontology import TermDAG
from boqa.queries import QueryCache, QueryGenerator
from boqa.ranking_utils import run_parallel
from boqa.results import Observations, Result
from boqa.similarity import SIMILARITY_MEASURES, SemanticIndex, TermSimilarity

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from boqa.configuration import Configuration
    from boqa.items import AnnotationEntry

logger = logging.getLogger(__name__)

# Attempts to simulate a non-empty query before giving up
MAX_OBSERVATION_RETRIES = 50

_EMPTY = np.array([], dtype=np.int64)


def _clamp_rate(rate: float) -> float:
    if math.isnan(rate):
        return 0.5
    if rate <= 0.0:
        return 1e-7
    if rate >= 1.0:
        return 0.999999
    return rate


def _normalize(scores: NDArray[np.float64]) -> NDArray[np.float64]:
    """exp(score - logsumexp(scores)), capped at one."""
    return np.minimum(np.exp(scores - logsumexp(scores)), 1.0)


class BOQA:
    """
    Ranks items against term observations.

    Args:
        terms: Term graph, or an ordered ``term id -> parent ids`` mapping.
        annotations: Ordered ``item id -> [term id | (term id, frequency)]``.
        config: Engine tunables (defaults when None).
        names: Optional term names, used when ``terms`` is a mapping.

    Raises:
        CyclicGraphError: The term graph has a cycle.
        EmptyItemUniverseError: No item is left to rank.
    """

    def __init__(
        self,
        terms: TermDAG | Mapping[str, Iterable[str]],
        annotations: Mapping[str, Iterable[AnnotationEntry]],
        config: BOQAConfig | None = None,
        names: Mapping[str, str] | None = None,
    ):
        self.config = config if config is not None else BOQAConfig()
        start = time.perf_counter()

        full_dag = terms if isinstance(terms, TermDAG) else TermDAG.from_parents(terms, names)
        self.dag, self.items = build_item_universe(
            full_dag, annotations, self.config.consider_frequencies_only
        )

        alpha_grid = self.config.alpha_grid or default_alpha_grid(self.dag.num_terms)
        self.alpha_grid = np.asarray(alpha_grid, dtype=np.float64)
        self.beta_grid = np.asarray(self.config.beta_grid, dtype=np.float64)

        self.diffs = DiffVectors.build(self.dag, self.items, self.config.max_frequency_terms)

        self.semantics = SemanticIndex(self.dag, self.items)
        self.similarities: dict[str, TermSimilarity] = {
            name: cls(
                self.semantics,
                size_of_score_distribution=self.config.size_of_score_distribution,
                num_bins=self.config.num_bins,
                cache_score_distribution=self.config.cache_score_distribution,
            )
            for name, cls in SIMILARITY_MEASURES.items()
        }
        self.query_cache = QueryCache(
            QueryGenerator(
                self.dag, self.config.forbid_illegal_queries, self.config.max_query_tries
            ),
            self.config.size_of_score_distribution,
        )

        self._precalculate()
        logger.info(
            "Set up %d items over %d terms in %.2fs",
            self.num_items,
            self.num_terms,
            time.perf_counter() - start,
        )

    def _precalculate(self) -> None:
        config = self.config
        if config.precalculate_mica:
            self.semantics.precalculate_mica()
        if config.precalculate_jaccard:
            self.semantics.precalculate_jaccard()
        if config.precalculate_item_maxs:
            for sim in self.similarities.values():
                sim.precalculate_item_rows(config.num_workers, config.worker_timeout)

        if not config.cache_score_distribution:
            return
        fingerprint = structure_fingerprint(
            self.dag,
            self.items,
            config.size_of_score_distribution,
            config.max_query_size_for_cached_distribution,
            config.num_bins,
            config.forbid_illegal_queries,
            config.max_query_tries,
        )
        for sim in self.similarities.values():
            store = self.distribution_store(sim.name)
            if store is not None and config.try_loading_score_distribution:
                if sim.load_distributions(store, fingerprint):
                    continue
            if config.precalculate_score_distribution:
                sim.precalculate_distributions(
                    self.query_cache,
                    config.max_query_size_for_cached_distribution,
                    config.seed,
                    config.num_workers,
                    config.worker_timeout,
                )
                if store is not None and config.store_score_distribution:
                    sim.store_distributions(store, fingerprint)

    def distribution_store(self, measure: str) -> DistributionStore | None:
        """On-disk store of a measure's distributions, None without ``cache_dir``."""
        if self.config.cache_dir is None:
            return None
        return DistributionStore(
            self.config.cache_dir,
            measure,
            self.num_items,
            self.config.consider_frequencies_only,
            self.config.size_of_score_distribution,
        )

    # =========================================================================
    # Accessors
    # =========================================================================

    @property
    def num_items(self) -> int:
        return self.items.num_items

    @property
    def num_terms(self) -> int:
        return self.dag.num_terms

    def term_similarity(self, measure: str) -> TermSimilarity:
        try:
            return self.similarities[measure]
        except KeyError:
            raise ValueError(
                f"Unknown similarity measure {measure!r}, expected one of {sorted(self.similarities)}"
            ) from None

    def observations_from_terms(self, terms: Iterable[int | str]) -> Observations:
        """Query of the given terms (indices or ids) and all their ancestors."""
        indices = [self.dag.index(t) if isinstance(t, str) else int(t) for t in terms]
        return Observations(self.dag.closure(indices))

    def _as_observations(self, observations: Observations | NDArray[np.bool_]) -> Observations:
        if isinstance(observations, Observations):
            return observations
        return Observations(np.asarray(observations, dtype=bool))

    def case_table(self, observed: NDArray[np.bool_]) -> CaseTable:
        return CaseTable(
            self.dag,
            observed,
            self.config.propagate_false_positives,
            self.config.propagate_false_negatives,
        )

    # =========================================================================
    # Hidden Configurations
    # =========================================================================

    def _item_configurations(
        self,
        item: int,
        tracker: HiddenStateTracker,
        use_frequencies: bool,
    ) -> WeightedConfigurationList:
        """Configurations of ``item``, advancing ``tracker`` along the diff chain.

        Without frequencies the tracker must hold the hidden state of the
        previous item (or be fresh for item 0).
        """
        configurations = WeightedConfigurationList()
        if use_frequencies:
            if tracker.hidden.any():
                tracker.reset()
            for on, off, weight in zip(
                self.diffs.freq_on_terms[item],
                self.diffs.freq_off_terms[item],
                self.diffs.factors[item],
            ):
                tracker.apply(on, off)
                configurations.add(tracker.configuration.copy(), weight)
        else:
            tracker.apply(self.diffs.on_terms[item], self.diffs.off_terms[item])
            configurations.add(tracker.configuration.copy(), 0.0)
        return configurations

    def _fresh_item_configurations(
        self,
        item: int,
        table: CaseTable,
        use_frequencies: bool,
    ) -> WeightedConfigurationList:
        tracker = HiddenStateTracker(table)
        if use_frequencies:
            return self._item_configurations(item, tracker, True)
        tracker.apply(self.items.closures[item], _EMPTY)
        configurations = WeightedConfigurationList()
        configurations.add(tracker.configuration.copy(), 0.0)
        return configurations

    def item_configurations(
        self,
        item: int,
        observations: Observations | NDArray[np.bool_],
        use_frequencies: bool = False,
    ) -> WeightedConfigurationList:
        """Weighted hidden configurations of one item, built from scratch."""
        obs = self._as_observations(observations)
        return self._fresh_item_configurations(item, self.case_table(obs.observed), use_frequencies)

    # =========================================================================
    # Scoring
    # =========================================================================

    def score(
        self,
        item: int,
        alpha: float,
        beta: float,
        observations: Observations | NDArray[np.bool_],
        use_frequencies: bool = False,
    ) -> float:
        """Log likelihood of the observations under ``item`` for fixed rates."""
        return self.item_configurations(item, observations, use_frequencies).score(alpha, beta)

    def assign_marginals(
        self,
        observations: Observations | NDArray[np.bool_],
        use_frequencies: bool = False,
        num_workers: int = 1,
    ) -> Result:
        """
        Posterior marginals of all items given the observations.

        Args:
            observations: Observed term vector, optionally with the simulated
                ground truth (item and node-case counts) for ideal marginals.
            use_frequencies: Mix over hidden configurations weighted by the
                annotation frequencies.
            num_workers: Thread pool size; 1 reuses state across items.

        Returns:
            Result with grid-marginalized log scores, marginals summing to 1,
            per-item configurations, and ideal marginals if ground truth is
            attached.

        Raises:
            WorkerError: Scoring of some item failed in a worker.
        """
        obs = self._as_observations(observations)
        table = self.case_table(obs.observed)
        start = time.perf_counter()

        with_ideal = obs.stats is not None and obs.item is not None
        ideal_alpha = ideal_beta = math.nan
        if with_ideal:
            ideal_alpha = _clamp_rate(obs.stats.false_positive_rate())
            ideal_beta = _clamp_rate(obs.stats.false_negative_rate())

        def score_configurations(
            configurations: WeightedConfigurationList,
        ) -> tuple[float, float, Configuration]:
            score = float(logsumexp(configurations.score_grid(self.alpha_grid, self.beta_grid)))
            ideal = configurations.score(ideal_alpha, ideal_beta) if with_ideal else math.nan
            return score, ideal, configurations.most_probable()

        if num_workers <= 1:
            tracker = HiddenStateTracker(table)
            outputs = [
                score_configurations(self._item_configurations(item, tracker, use_frequencies))
                for item in range(self.num_items)
            ]
        else:
            outputs = run_parallel(
                lambda item: score_configurations(
                    self._fresh_item_configurations(item, table, use_frequencies)
                ),
                range(self.num_items),
                num_workers,
                self.config.worker_timeout,
            )

        scores = np.array([o[0] for o in outputs], dtype=np.float64)
        result = Result(scores=scores, marginals=_normalize(scores), stats=[o[2] for o in outputs])

        if with_ideal:
            ideal_marginals = _normalize(np.array([o[1] for o in outputs], dtype=np.float64))
            # Never report an ideal marginal below the estimated one for the true item
            if ideal_marginals[obs.item] < result.marginals[obs.item]:
                ideal_marginals = result.marginals.copy()
            result.marginals_ideal = ideal_marginals

        logger.debug(
            "Assigned marginals for %d items in %.3fs (%d workers)",
            self.num_items,
            time.perf_counter() - start,
            num_workers,
        )
        return result

    # =========================================================================
    # Simulation
    # =========================================================================

    def generate_observations(self, item: int, rng: np.random.Generator) -> Observations:
        """
        Simulate a query for ``item`` under the configured noise model.

        The hidden state is the closure of the item's direct terms (each kept
        with its annotation frequency if frequencies are respected). Observed
        terms are dropped with probability ``simulation_beta`` and unobserved
        terms are added with probability ``simulation_alpha``; the propagation
        variants decide how the result is made consistent with the graph.

        Returns:
            Observations carrying the item and the node-case counts of the
            simulated noise.
        """
        config = self.config
        dag = self.dag
        n = dag.num_terms
        direct = self.items.direct_terms[item]
        frequencies = self.items.frequencies[item]
        ancestor_counts = np.diff(dag.ancestor_matrix.indptr)

        observed = hidden = np.zeros(n, dtype=bool)
        for _ in range(MAX_OBSERVATION_RETRIES + 1):
            if config.respect_frequencies:
                active = direct[rng.random(len(direct)) < frequencies]
            else:
                active = direct
            hidden = dag.closure(active)
            observed = hidden.copy()

            draws = rng.random(n)
            false_negatives = np.flatnonzero(observed & (draws < config.simulation_beta))
            false_positives = np.flatnonzero(~observed & (draws < config.simulation_alpha))

            observed[false_negatives] = False
            if config.propagate_false_negatives:
                for t in false_negatives:
                    dag.deactivate_descendants(observed, t)
            else:
                dag.activate_ancestors(observed)

            observed[false_positives] = True
            if config.propagate_false_positives:
                observed |= dag.closure(false_positives)
            else:
                # Keep only terms whose ancestors are all observed
                observed_ancestors = dag.ancestor_matrix @ observed.astype(np.int64)
                observed &= observed_ancestors == ancestor_counts

            if config.simulation_max_terms is not None:
                specific = dag.most_specific_terms(np.flatnonzero(observed))
                if len(specific) > config.simulation_max_terms:
                    kept = rng.choice(specific, size=config.simulation_max_terms, replace=False)
                    observed = dag.closure(kept)

            if observed.any() or config.allow_empty_observations:
                break
        else:
            logger.warning("Simulated query for item %d is empty", item)

        stats = self.case_table(observed).scan(hidden)
        logger.debug(
            "Simulated item %d: %d hidden, %d observed, %s", item, hidden.sum(), observed.sum(), stats
        )
        return Observations(observed=observed, item=item, stats=stats)

    # =========================================================================
    # Similarity Ranking
    # =========================================================================

    def sim_score(
        self,
        observations: Observations | NDArray[np.bool_],
        measure: str = "resnik",
        pval: bool = True,
        rng: np.random.Generator | None = None,
        num_workers: int = 1,
    ) -> Result:
        """
        Rank items by max-average term similarity to the query.

        The query is reduced to its most specific terms first. With ``pval``
        the marginals hold right-tail p-values of each item's score against
        its distribution for random queries of the same size (capped at
        ``max_query_size_for_cached_distribution``); otherwise they are NaN.
        """
        sim = self.term_similarity(measure)
        obs = self._as_observations(observations)
        query = self.dag.most_specific_terms(obs.terms)
        query_size = min(len(query), self.config.max_query_size_for_cached_distribution)
        if rng is None:
            rng = np.random.default_rng(self.config.seed)

        def score_item(item: int) -> tuple[float, float]:
            score = sim.score_vs_item(query, item)
            if not pval:
                return score, math.nan
            # Items whose annotations all missed the graph cannot match anything
            if query_size == 0 or self.items.direct_terms[item].size == 0:
                return score, 1.0
            dist = sim.score_distribution(item, query_size, self.query_cache, rng)
            return score, dist.upper_tail(score)

        outputs = run_parallel(
            score_item, range(self.num_items), num_workers, self.config.worker_timeout
        )
        return Result(
            scores=np.array([o[0] for o in outputs], dtype=np.float64),
            marginals=np.array([o[1] for o in outputs], dtype=np.float64),
        )

    def mb_score(self, observations: Observations | NDArray[np.bool_]) -> Result:
        """Rank items by symmetric Mathur-Dinakarpandian similarity."""
        obs = self._as_observations(observations)
        query = self.dag.most_specific_terms(obs.terms)
        scores = np.array(
            [self.semantics.mbsim(query, self.items.direct_terms[i]) for i in range(self.num_items)],
            dtype=np.float64,
        )
        return Result(scores=scores, marginals=np.full(self.num_items, np.nan))


__all__ = ["BOQA", "MAX_OBSERVATION_RETRIES"]
