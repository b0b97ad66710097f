# similarity.py — String similarity + candidate ranking
#
# The scorer is deliberately simple and ordered: exact match, then
# substring containment, then normalized Levenshtein. "chen" against
# "Send Chen change order" is a substring hit (0.9) even though the edit
# distance is large, which is exactly what a spoken reference looks like.

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, Iterable, TypeVar

from rapidfuzz.distance import Levenshtein

T = TypeVar("T")

EXACT_SCORE = 1.0
QUERY_IN_CANDIDATE_SCORE = 0.9
CANDIDATE_IN_QUERY_SCORE = 0.85
DEFAULT_THRESHOLD = 0.5


def similarity(query: str, candidate: str) -> float:
    """Score how well `candidate` matches `query`, in [0, 1].

    Rules, first match wins (all case-insensitive):
        equal                    → 1.0
        candidate contains query → 0.9
        query contains candidate → 0.85
        otherwise                → 1 - levenshtein / max(len)
    Two empty strings are an exact match; exactly one empty string scores 0.
    """
    q = query.lower()
    c = candidate.lower()

    if q == c:
        return EXACT_SCORE
    if not q or not c:
        return 0.0

    if q in c:
        return QUERY_IN_CANDIDATE_SCORE
    if c in q:
        return CANDIDATE_IN_QUERY_SCORE

    distance = Levenshtein.distance(q, c)
    return 1.0 - distance / max(len(q), len(c))


@dataclass
class MatchCandidate(Generic[T]):
    item: T
    score: float


def rank_candidates(
    query: str,
    candidates: Iterable[T],
    label: Callable[[T], str],
    threshold: float = DEFAULT_THRESHOLD,
) -> list[MatchCandidate[T]]:
    """Score every candidate's label against query, keep those >= threshold.

    Sorted by score descending; ties keep encounter order.
    """
    matches: list[MatchCandidate[T]] = []
    for candidate in candidates:
        score = similarity(query, label(candidate))
        if score >= threshold:
            matches.append(MatchCandidate(item=candidate, score=score))

    matches.sort(key=lambda m: m.score, reverse=True)
    return matches
