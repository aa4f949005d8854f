"""
Ranking and classification metrics for match evaluation.

Implements standard IR metrics over ranked ``Match`` lists. Relevance is
binary by default: a match is relevant when its hybrid score is at least 70.
"""

import math
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from autoapply.libs.matching.models import Match

RELEVANCE_SCORE_THRESHOLD = 70

RelevanceFn = Callable[[Match], float]
PredicateFn = Callable[[Match], bool]


def is_relevant(match: Match) -> bool:
    return match.match_score >= RELEVANCE_SCORE_THRESHOLD


def binary_relevance(match: Match) -> float:
    return 1.0 if is_relevant(match) else 0.0


def compute_precision(matches: Sequence[Match], threshold: int = RELEVANCE_SCORE_THRESHOLD) -> float:
    """Fraction of matches with a score of at least ``threshold``; 0 for no matches."""
    if not matches:
        return 0.0
    return sum(1 for m in matches if m.match_score >= threshold) / len(matches)


def compute_recall(found: Iterable[Match], golden: Iterable[Match]) -> float:
    """
    Share of golden (candidate, job) pairs present in ``found``.

    Returns 1.0 when the golden set is empty.
    """
    golden_keys = {m.key for m in golden}
    if not golden_keys:
        return 1.0
    found_keys = {m.key for m in found}
    return len(golden_keys & found_keys) / len(golden_keys)


def compute_dcg(relevances: Sequence[float], k: Optional[int] = None) -> float:
    """
    Compute Discounted Cumulative Gain.

    DCG = sum(rel_i / log2(i + 2)) for 0-indexed position i

    Args:
        relevances: Relevance per ranked position
        k: Number of positions to consider, all when None
    """
    if k is not None:
        relevances = relevances[:k]
    return sum(rel / math.log2(i + 2) for i, rel in enumerate(relevances))


def compute_ndcg(ranked: Sequence[Match], relevance_fn: Optional[RelevanceFn] = None) -> float:
    """
    Compute Normalized Discounted Cumulative Gain.

    The ideal ordering is the same relevances sorted descending. Returns 0
    when the ideal DCG is 0, including for an empty list.
    """
    relevance_fn = relevance_fn or binary_relevance
    relevances = [relevance_fn(m) for m in ranked]
    idcg = compute_dcg(sorted(relevances, reverse=True))
    if idcg <= 0:
        return 0.0
    return compute_dcg(relevances) / idcg


def compute_mrr(ranked: Sequence[Match], relevance_fn: Optional[PredicateFn] = None) -> float:
    """Reciprocal rank of the first relevant match; 0 if none is relevant."""
    relevance_fn = relevance_fn or is_relevant
    for i, match in enumerate(ranked):
        if relevance_fn(match):
            return 1.0 / (i + 1)
    return 0.0


def compute_average_precision(matches: Sequence[Match], relevance_fn: Optional[PredicateFn] = None) -> float:
    """
    Mean of precision@k over the relevant positions.

    Returns 0 when no match is relevant.
    """
    relevance_fn = relevance_fn or is_relevant
    hits = 0
    sum_precision = 0.0
    for i, match in enumerate(matches):
        if relevance_fn(match):
            hits += 1
            sum_precision += hits / (i + 1)
    return sum_precision / hits if hits else 0.0


def compute_f1(precision: float, recall: float) -> float:
    if precision + recall == 0:
        return 0.0
    return 2 * precision * recall / (precision + recall)


def compute_accuracy(predictions: Sequence[Tuple[bool, bool]]) -> float:
    """
    Fraction of (predicted, actual) pairs that agree; 0 for no predictions.
    """
    if not predictions:
        return 0.0
    return sum(1 for predicted, actual in predictions if predicted == actual) / len(predictions)


def relevance_from_keys(keys: Iterable[Tuple[str, str]]) -> PredicateFn:
    """Build a predicate that marks matches whose pair is in ``keys`` as relevant."""
    key_set = set(keys)
    return lambda match: match.key in key_set


__all__: List[str] = [
    "RELEVANCE_SCORE_THRESHOLD",
    "binary_relevance",
    "compute_accuracy",
    "compute_average_precision",
    "compute_dcg",
    "compute_f1",
    "compute_mrr",
    "compute_ndcg",
    "compute_precision",
    "compute_recall",
    "is_relevant",
    "relevance_from_keys",
]
