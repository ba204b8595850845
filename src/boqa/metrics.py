import numpy as np


def rank_of_item(scores: np.ndarray, item: int) -> float:
    """
    Computes the 1-based rank of an item when sorting by descending score.

    Ties share the mean of the ranks they span.

    Args:
        scores: 1D array of item scores.
        item: Index of the item of interest.

    Returns:
        Rank of the item (1.0 is best).
    """
    score = scores[item]
    if np.isnan(score):
        return float(len(scores))
    better = np.count_nonzero(scores > score)
    tied = np.count_nonzero(scores == score)
    return better + (tied + 1) / 2


def reciprocal_rank(scores: np.ndarray, item: int) -> float:
    """
    Computes the reciprocal rank of the item.

    Args:
        scores: 1D array of item scores.
        item: Index of the item of interest.

    Returns:
        1 / rank.
    """
    return 1.0 / rank_of_item(scores, item)


def hits_at_k(scores: np.ndarray, item: int, k: int) -> float:
    """1.0 if the item ranks within the top k, else 0.0."""
    if k <= 0:
        return 0.0
    return float(rank_of_item(scores, item) <= k)


def mean_reciprocal_rank(runs: list[tuple[np.ndarray, int]]) -> float:
    """
    Computes Mean Reciprocal Rank (MRR) over multiple queries.

    Args:
        runs: List of (scores, true item) tuples.

    Returns:
        Mean reciprocal rank.
    """
    if not runs:
        return 0.0
    return float(np.mean([reciprocal_rank(scores, item) for scores, item in runs]))


def marginal_log_loss(marginals: np.ndarray, item: int, epsilon: float = 1e-12) -> float:
    """Negative log of the probability assigned to the true item."""
    return float(-np.log(max(float(marginals[item]), epsilon)))
