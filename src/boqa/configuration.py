"""
Node cases, configurations and their incremental bookkeeping.

A configuration counts how many terms fall into each node case for a given
hidden state (the item's true terms) and a fixed observation. Its log score
under false-positive rate alpha and false-negative rate beta is

    FN*log(beta) + FP*log(alpha) + TP*log(1-beta) + TN*log(1-alpha)

Inherited cases contribute nothing. Since the observation is fixed while the
hidden state changes, the case of every term is tabulated once per
observation for both hidden values (``CaseTable``), and hidden-state changes
are applied as diffs (``HiddenStateTracker``).
"""

from __future__ import annotations

import logging
import math
from enum import IntEnum
from typing import TYPE_CHECKING

import numpy as np
from scipy.special import logsumexp

if TYPE_CHECKING:
    from collections.abc import Iterator

    from numpy.typing import NDArray

    from boqa.ontology import TermDAG

logger = logging.getLogger(__name__)


class NodeCase(IntEnum):
    """Classification of a term for a (hidden, observed) pair.

    FAULT marks an observation that is impossible under the active
    propagation variant. It is counted but does not contribute to scores.
    """

    FAULT = 0
    FALSE_NEGATIVE = 1
    FALSE_POSITIVE = 2
    TRUE_POSITIVE = 3
    TRUE_NEGATIVE = 4
    INHERIT_TRUE = 5
    INHERIT_FALSE = 6


NUM_CASES = len(NodeCase)


def resolve_node_case(
    hidden: bool,
    observed: bool,
    any_child_observed: bool,
    any_parent_unobserved: bool,
    propagate_false_positives: bool,
    propagate_false_negatives: bool,
) -> NodeCase:
    """
    Classify a single term.

    Bottom-up inheritance takes precedence over top-down inheritance, which
    takes precedence over the direct hidden/observed comparison.

    Args:
        hidden: Whether the term is on in the hidden state.
        observed: Whether the term is observed.
        any_child_observed: Whether at least one child term is observed.
        any_parent_unobserved: Whether at least one parent term is unobserved.
        propagate_false_positives: Observed children explain the term.
        propagate_false_negatives: Unobserved parents explain the term.

    Returns:
        The node case.
    """
    if propagate_false_positives and any_child_observed:
        return NodeCase.INHERIT_TRUE if observed else NodeCase.FAULT
    if propagate_false_negatives and any_parent_unobserved:
        return NodeCase.INHERIT_FALSE if not observed else NodeCase.FAULT
    if hidden:
        return NodeCase.TRUE_POSITIVE if observed else NodeCase.FALSE_NEGATIVE
    return NodeCase.FALSE_POSITIVE if observed else NodeCase.TRUE_NEGATIVE


# =============================================================================
# Case table
# =============================================================================


class CaseTable:
    """Node case of every term for hidden off (row 0) and hidden on (row 1)."""

    def __init__(
        self,
        dag: TermDAG,
        observed: NDArray[np.bool_],
        propagate_false_positives: bool = True,
        propagate_false_negatives: bool = False,
    ):
        observed = np.asarray(observed, dtype=bool)
        if observed.shape != (dag.num_terms,):
            raise ValueError(
                f"Observation has shape {observed.shape}, expected ({dag.num_terms},)"
            )
        self.observed = observed

        obs = observed.astype(np.int32)
        any_child_observed = np.asarray(dag.child_matrix @ obs).ravel() > 0
        any_parent_unobserved = np.asarray(dag.parent_matrix @ (1 - obs)).ravel() > 0

        inherited = np.full(dag.num_terms, -1, dtype=np.int8)
        bottom_up = any_child_observed if propagate_false_positives else np.zeros_like(observed)
        inherited[bottom_up] = np.where(
            observed[bottom_up], NodeCase.INHERIT_TRUE, NodeCase.FAULT
        )
        top_down = (
            any_parent_unobserved & ~bottom_up
            if propagate_false_negatives
            else np.zeros_like(observed)
        )
        inherited[top_down] = np.where(
            observed[top_down], NodeCase.FAULT, NodeCase.INHERIT_FALSE
        )

        is_inherited = inherited >= 0
        off = np.where(observed, NodeCase.FALSE_POSITIVE, NodeCase.TRUE_NEGATIVE)
        on = np.where(observed, NodeCase.TRUE_POSITIVE, NodeCase.FALSE_NEGATIVE)
        self.cases = np.stack(
            [np.where(is_inherited, inherited, off), np.where(is_inherited, inherited, on)]
        ).astype(np.int8)

        num_faults = int(np.count_nonzero(inherited == NodeCase.FAULT))
        if num_faults:
            logger.error(
                "Observation is inconsistent with the propagation variant at %d terms", num_faults
            )

    def lookup(self, hidden: NDArray[np.bool_], terms: NDArray[np.int64]) -> NDArray[np.int8]:
        return self.cases[hidden.astype(np.intp), terms]

    def case(self, term: int, hidden: bool) -> NodeCase:
        return NodeCase(int(self.cases[int(hidden), term]))

    def scan(self, hidden: NDArray[np.bool_]) -> Configuration:
        """Configuration of a complete hidden state, built from scratch."""
        terms = np.arange(len(hidden), dtype=np.int64)
        config = Configuration()
        config.add_cases(self.lookup(hidden, terms))
        return config


# =============================================================================
# Configurations
# =============================================================================


def _weighted_log(count: int, p: float) -> float:
    if count == 0:
        return 0.0
    if p <= 0.0:
        return -math.inf
    return count * math.log(p)


class Configuration:
    """Counts of terms per node case."""

    __slots__ = ("counts",)

    def __init__(self, counts: NDArray[np.int64] | None = None):
        if counts is None:
            self.counts = np.zeros(NUM_CASES, dtype=np.int64)
        else:
            self.counts = np.array(counts, dtype=np.int64)

    def increment(self, case: NodeCase, n: int = 1) -> None:
        self.counts[case] += n

    def decrement(self, case: NodeCase, n: int = 1) -> None:
        self.counts[case] -= n

    def add_cases(self, cases: NDArray[np.int8]) -> None:
        self.counts += np.bincount(cases, minlength=NUM_CASES)

    def remove_cases(self, cases: NDArray[np.int8]) -> None:
        self.counts -= np.bincount(cases, minlength=NUM_CASES)

    def get_cases(self, case: NodeCase) -> int:
        return int(self.counts[case])

    def total(self) -> int:
        return int(self.counts.sum())

    def clear(self) -> None:
        self.counts[:] = 0

    def copy(self) -> Configuration:
        return Configuration(self.counts)

    def score(self, alpha: float, beta: float) -> float:
        """Log likelihood of the configuration."""
        c = self.counts
        return (
            _weighted_log(c[NodeCase.FALSE_NEGATIVE], beta)
            + _weighted_log(c[NodeCase.FALSE_POSITIVE], alpha)
            + _weighted_log(c[NodeCase.TRUE_POSITIVE], 1.0 - beta)
            + _weighted_log(c[NodeCase.TRUE_NEGATIVE], 1.0 - alpha)
        )

    def false_positive_rate(self) -> float:
        """FP / (FP + TN), NaN when undefined."""
        fp = self.counts[NodeCase.FALSE_POSITIVE]
        tn = self.counts[NodeCase.TRUE_NEGATIVE]
        return float(fp / (fp + tn)) if fp + tn else math.nan

    def false_negative_rate(self) -> float:
        """FN / (FN + TP), NaN when undefined."""
        fn = self.counts[NodeCase.FALSE_NEGATIVE]
        tp = self.counts[NodeCase.TRUE_POSITIVE]
        return float(fn / (fn + tp)) if fn + tp else math.nan

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Configuration):
            return NotImplemented
        return bool(np.array_equal(self.counts, other.counts))

    def __repr__(self) -> str:
        fields = ", ".join(f"{case.name}={int(self.counts[case])}" for case in NodeCase)
        return f"Configuration({fields})"


class WeightedConfigurationList:
    """Mixture of configurations with log prior weights."""

    def __init__(self):
        self._configs: list[Configuration] = []
        self._weights: list[float] = []

    def add(self, config: Configuration, log_weight: float) -> None:
        self._configs.append(config)
        self._weights.append(float(log_weight))

    def __len__(self) -> int:
        return len(self._configs)

    def __iter__(self) -> Iterator[tuple[Configuration, float]]:
        return iter(zip(self._configs, self._weights))

    def score(self, alpha: float, beta: float) -> float:
        """log sum_c exp(score_c(alpha, beta) + weight_c)."""
        if not self._configs:
            return -math.inf
        values = [c.score(alpha, beta) + w for c, w in zip(self._configs, self._weights)]
        return float(logsumexp(values))

    def score_grid(
        self,
        alphas: NDArray[np.float64],
        betas: NDArray[np.float64],
    ) -> NDArray[np.float64]:
        """
        Mixture scores for every (alpha, beta) pair at once.

        Args:
            alphas: False-positive rates in (0, 1), shape (A,)
            betas: False-negative rates in (0, 1), shape (B,)

        Returns:
            Scores of shape (A, B)
        """
        alphas = np.asarray(alphas, dtype=np.float64)
        betas = np.asarray(betas, dtype=np.float64)
        if not self._configs:
            return np.full((len(alphas), len(betas)), -np.inf)

        counts = np.stack([c.counts for c in self._configs]).astype(np.float64)
        weights = np.asarray(self._weights, dtype=np.float64)

        # (K, A, 1) + (K, 1, B)
        alpha_part = (
            counts[:, NodeCase.FALSE_POSITIVE, None] * np.log(alphas)[None, :]
            + counts[:, NodeCase.TRUE_NEGATIVE, None] * np.log1p(-alphas)[None, :]
        )
        beta_part = (
            counts[:, NodeCase.FALSE_NEGATIVE, None] * np.log(betas)[None, :]
            + counts[:, NodeCase.TRUE_POSITIVE, None] * np.log1p(-betas)[None, :]
        )
        scores = alpha_part[:, :, None] + beta_part[:, None, :] + weights[:, None, None]
        return logsumexp(scores, axis=0)

    def most_probable(self) -> Configuration:
        """Configuration with the highest prior weight."""
        return self._configs[int(np.argmax(self._weights))]


# =============================================================================
# Incremental hidden state
# =============================================================================


class HiddenStateTracker:
    """Hidden state plus its configuration, kept in sync under diffs."""

    def __init__(self, table: CaseTable):
        self.table = table
        self.hidden = np.zeros(len(table.observed), dtype=bool)
        self.configuration = table.scan(self.hidden)

    def reset(self) -> None:
        self.hidden[:] = False
        self.configuration = self.table.scan(self.hidden)

    def apply(self, on: NDArray[np.int64], off: NDArray[np.int64]) -> None:
        """Switch ``on`` terms on and ``off`` terms off, updating the counts."""
        touched = np.concatenate([on, off])
        if touched.size == 0:
            return
        self.configuration.remove_cases(self.table.lookup(self.hidden[touched], touched))
        self.hidden[on] = True
        self.hidden[off] = False
        self.configuration.add_cases(self.table.lookup(self.hidden[touched], touched))


__all__ = [
    "CaseTable",
    "Configuration",
    "HiddenStateTracker",
    "NUM_CASES",
    "NodeCase",
    "WeightedConfigurationList",
    "resolve_node_case",
]
