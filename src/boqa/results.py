"""Query and result containers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np

from boqa.ranking_utils import select_top_k

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from boqa.configuration import Configuration


@dataclass
class Observations:
    """A query: the observed term vector.

    Simulated queries also record the item they were drawn from and the
    node-case counts of the simulation, which enable ideal marginals.
    """

    observed: NDArray[np.bool_]
    item: int | None = None
    stats: Configuration | None = None

    @property
    def terms(self) -> NDArray[np.int64]:
        return np.flatnonzero(self.observed).astype(np.int64)


@dataclass
class Result:
    """Per-item output of a ranking run.

    For BOQA, ``marginals`` are posterior probabilities. For similarity
    measures they hold p-values (NaN when not computed).
    """

    scores: NDArray[np.float64]
    marginals: NDArray[np.float64]
    marginals_ideal: NDArray[np.float64] | None = None
    stats: list[Configuration] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.scores)

    def ranking(self, top_k: int | None = None) -> tuple[NDArray[np.int64], NDArray[np.float64]]:
        """Items ordered by descending score."""
        return select_top_k(self.scores, top_k)


__all__ = ["Observations", "Result"]
