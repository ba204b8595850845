"""
Engine configuration.

All tunables of the ranking engine live in one immutable object that is
passed at construction time. Derive variants with ``BOQAConfig.replace``.

Usage:
    from boqa.config import BOQAConfig

    config = BOQAConfig(num_workers=4, cache_dir=Path("cache"))
    fast = config.replace(size_of_score_distribution=10_000)
"""

from __future__ import annotations

import dataclasses
import math
import os
from dataclasses import dataclass
from pathlib import Path

from boqa.errors import ConfigurationError

# =============================================================================
# Defaults
# =============================================================================

# Default number of workers for parallel item scoring
DEFAULT_NUM_WORKERS = min(int(os.environ.get("BOQA_WORKERS", os.cpu_count() or 1)), 64)

# Noise rates used when simulating queries
DEFAULT_SIMULATION_ALPHA = 0.002
DEFAULT_SIMULATION_BETA = 0.10

# Inference grid for the false-negative rate; the false-positive grid depends
# on the number of terms and is built by ``default_alpha_grid``
DEFAULT_BETA_GRID = (0.05, 0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 0.95)

# Number of lowest-frequency annotations expanded into hidden configurations
DEFAULT_MAX_FREQUENCY_TERMS = 10

MAX_QUERY_SIZE_FOR_CACHED_DISTRIBUTION = 20


def default_alpha_grid(num_terms: int) -> tuple[float, ...]:
    """False-positive rates 1e-10, 1/T, ..., 6/T for a graph with T terms."""
    if num_terms <= 0:
        raise ConfigurationError("Cannot derive an alpha grid for an empty term graph")
    return (1e-10,) + tuple(i / num_terms for i in range(1, 7))


@dataclass(frozen=True)
class BOQAConfig:
    """Immutable set of engine tunables.

    Attributes:
        simulation_alpha: False-positive rate used by ``generate_observations``.
        simulation_beta: False-negative rate used by ``generate_observations``.
        simulation_max_terms: Keep at most this many most specific terms in
            simulated queries (None keeps all).
        allow_empty_observations: Accept simulated queries without any term.
        alpha_grid: False-positive rates marginalized over during inference.
            None means ``default_alpha_grid`` of the induced graph.
        beta_grid: False-negative rates marginalized over during inference.
        propagate_false_positives: An observed child forces its ancestors to
            be explained by inheritance (bottom-up propagation).
        propagate_false_negatives: An unobserved parent forces its
            descendants to be explained by inheritance (top-down propagation).
        respect_frequencies: Honour annotation frequencies when simulating.
        consider_frequencies_only: Restrict the item universe to items that
            carry at least one explicit frequency.
        max_frequency_terms: Cap on the number of uncertain annotations per
            item that are expanded combinatorially.
        size_of_score_distribution: Random queries per (item, query size).
        num_bins: Bins of the approximated score distributions.
        max_query_size_for_cached_distribution: Largest query size with its
            own distribution; larger queries share this one.
        forbid_illegal_queries: Reject random queries in which one term is an
            ancestor of another.
        max_query_tries: Rejection sampling attempts per random query.
        cache_score_distribution: Keep score distributions in memory.
        precalculate_score_distribution: Build all distributions at setup.
        try_loading_score_distribution: Load persisted distributions.
        store_score_distribution: Persist distributions after precalculation.
        cache_dir: Directory of persisted distributions (None disables
            persistence).
        precalculate_jaccard: Materialize the term-pair Jaccard matrix.
        precalculate_mica: Materialize the term-pair MICA matrix.
        precalculate_item_maxs: Materialize per-item best-match rows.
        num_workers: Thread pool size for parallel work.
        worker_timeout: Seconds to wait for all parallel units before
            giving up.
        seed: Seed for precalculation randomness.
    """

    simulation_alpha: float = DEFAULT_SIMULATION_ALPHA
    simulation_beta: float = DEFAULT_SIMULATION_BETA
    simulation_max_terms: int | None = None
    allow_empty_observations: bool = False

    alpha_grid: tuple[float, ...] | None = None
    beta_grid: tuple[float, ...] = DEFAULT_BETA_GRID

    propagate_false_positives: bool = True
    propagate_false_negatives: bool = False
    respect_frequencies: bool = True
    consider_frequencies_only: bool = False
    max_frequency_terms: int = DEFAULT_MAX_FREQUENCY_TERMS

    size_of_score_distribution: int = 250_000
    num_bins: int = 10_000
    max_query_size_for_cached_distribution: int = MAX_QUERY_SIZE_FOR_CACHED_DISTRIBUTION
    forbid_illegal_queries: bool = True
    max_query_tries: int = 512

    cache_score_distribution: bool = True
    precalculate_score_distribution: bool = False
    try_loading_score_distribution: bool = True
    store_score_distribution: bool = True
    cache_dir: Path | None = None

    precalculate_jaccard: bool = False
    precalculate_mica: bool = False
    precalculate_item_maxs: bool = False

    num_workers: int = DEFAULT_NUM_WORKERS
    worker_timeout: float = 1800.0
    seed: int = 9

    def __post_init__(self) -> None:
        for name in ("simulation_alpha", "simulation_beta"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{name} must lie in [0, 1], got {value}")

        if self.alpha_grid is not None:
            object.__setattr__(self, "alpha_grid", _validate_grid("alpha_grid", self.alpha_grid))
        object.__setattr__(self, "beta_grid", _validate_grid("beta_grid", self.beta_grid))

        if self.cache_dir is not None and not isinstance(self.cache_dir, Path):
            object.__setattr__(self, "cache_dir", Path(self.cache_dir))

        positive = {
            "max_frequency_terms": self.max_frequency_terms,
            "size_of_score_distribution": self.size_of_score_distribution,
            "num_bins": self.num_bins,
            "max_query_size_for_cached_distribution": self.max_query_size_for_cached_distribution,
            "max_query_tries": self.max_query_tries,
            "num_workers": self.num_workers,
        }
        for name, value in positive.items():
            if value < 1:
                raise ConfigurationError(f"{name} must be at least 1, got {value}")
        if self.simulation_max_terms is not None and self.simulation_max_terms < 1:
            raise ConfigurationError("simulation_max_terms must be at least 1 or None")
        if self.worker_timeout <= 0:
            raise ConfigurationError("worker_timeout must be positive")

    def replace(self, **changes) -> BOQAConfig:
        """Return a copy with the given fields changed."""
        return dataclasses.replace(self, **changes)


def _validate_grid(name: str, grid) -> tuple[float, ...]:
    values = tuple(float(v) for v in grid)
    if not values:
        raise ConfigurationError(f"{name} must not be empty")
    for v in values:
        if math.isnan(v) or not 0.0 < v < 1.0:
            raise ConfigurationError(f"{name} values must lie in (0, 1), got {v}")
    return values


__all__ = [
    "BOQAConfig",
    "DEFAULT_BETA_GRID",
    "DEFAULT_NUM_WORKERS",
    "DEFAULT_MAX_FREQUENCY_TERMS",
    "MAX_QUERY_SIZE_FOR_CACHED_DISTRIBUTION",
    "default_alpha_grid",
]
