"""Reciprocal Rank Fusion (RRF).

Combines several ranked result lists into one ranking using only the rank
position of each item, never its raw score, so lists with incomparable
score scales (cosine similarity vs. text-search rank) fuse fairly.

    score(item) = sum over lists L containing item of 1 / (k + rank_L(item))

with ranks starting at 1. Based on Cormack, Clarke and Buettcher,
"Reciprocal Rank Fusion outperforms Condorcet and individual Rank Learning
Methods" (SIGIR 2009).
"""

from collections.abc import Sequence
from dataclasses import dataclass, replace
from typing import Generic, Protocol, TypeVar

DEFAULT_RRF_K = 60


class RankedItem(Protocol):
    id: str
    score: float


T = TypeVar("T", bound=RankedItem)


@dataclass
class FusedItem(Generic[T]):
    """An item of the fused ranking with its summed RRF score."""

    item_id: str
    item: T  # first occurrence across the input lists
    score: float


def fuse_ranked_lists(lists: Sequence[Sequence[T]], k: int = DEFAULT_RRF_K) -> list[FusedItem[T]]:
    """Fuse best-first ranked lists into a single best-first ranking.

    Items are merged by id. Ties keep the order in which items were first
    encountered, scanning the lists in the order given.
    """
    if k < 0:
        raise ValueError("k must not be negative")

    scores: dict[str, float] = {}
    items: dict[str, T] = {}

    for ranked in lists:
        for rank, item in enumerate(ranked, start=1):
            if item.id not in items:
                items[item.id] = item
                scores[item.id] = 0.0
            scores[item.id] += 1.0 / (k + rank)

    # sorted() is stable and dicts keep insertion order, which gives the
    # first-encountered tie-break.
    ordered = sorted(scores, key=lambda item_id: scores[item_id], reverse=True)
    return [FusedItem(item_id=i, item=items[i], score=scores[i]) for i in ordered]


def max_fused_score(list_count: int, k: int = DEFAULT_RRF_K) -> float:
    """Highest possible fused score: rank 1 in every list."""
    return list_count / (k + 1)


def normalize_fused_scores(
    fused: list[FusedItem[T]], list_count: int, k: int = DEFAULT_RRF_K
) -> list[FusedItem[T]]:
    """Scale fused scores into [0, 1] by the theoretical maximum.

    A fixed denominator keeps the order and keeps scores comparable across
    queries, unlike min-max scaling.
    """
    if list_count <= 0 or not fused:
        return list(fused)
    ceiling = max_fused_score(list_count, k)
    return [replace(f, score=min(f.score / ceiling, 1.0)) for f in fused]
