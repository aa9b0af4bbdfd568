"""
Fuzzy Matching Layer.

Pure helpers shared by the knowledge store, the extraction engine and the
ambiguity resolvers:

* ``edit_distance`` / ``is_pattern_match``: does a learned pattern apply to a
  token? Containment either way, or Levenshtein distance within the limit.
* ``reinforce_confidence`` / ``running_success_rate``: the weighted updates
  applied to knowledge entries.
* ``CandidateRanker``: ``rapidfuzz``-ranked candidate lists for the resolver.

Note that an edit distance of 2 is permissive for very short tokens ("EDT"
and "EDP" are one edit apart); learned entries for short tokens should be
stored with the exact spelling that was corrected.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, List, Optional

from rapidfuzz import fuzz, process
from rapidfuzz.distance import Levenshtein

from product_mapper.logging_setup import get_logger

logger = get_logger("fuzzy_matcher")

DEFAULT_MAX_DISTANCE = 2


# ---------------------------------------------------------------------------
# Pure functions
# ---------------------------------------------------------------------------

def normalize_pattern(text: str) -> str:
    """Canonical form for learned patterns: trimmed and lowercased."""
    return " ".join(str(text).split()).lower()


def edit_distance(a: str, b: str) -> int:
    """Levenshtein distance between *a* and *b*."""
    return Levenshtein.distance(a, b)


def is_pattern_match(
    pattern: str,
    context: str,
    max_distance: int = DEFAULT_MAX_DISTANCE,
) -> bool:
    """True when *pattern* applies to *context*.

    Comparison is case-insensitive. Empty strings never match.
    """
    p = normalize_pattern(pattern)
    c = normalize_pattern(context)
    if not p or not c:
        return False
    if p in c or c in p:
        return True
    return edit_distance(p, c) <= max_distance


def reinforce_confidence(current: float, delta: float = 0.1) -> float:
    """Raise *current* by *delta*, capped at 1.0."""
    return min(1.0, current + delta)


def running_success_rate(rate: float, usage_count: int, was_successful: bool) -> float:
    """Weighted running average after the ``usage_count``-th application.

    ``usage_count`` must already include the application being recorded.
    """
    if usage_count <= 0:
        raise ValueError("usage_count must be positive")
    return ((usage_count - 1) * rate + (1.0 if was_successful else 0.0)) / usage_count


# ---------------------------------------------------------------------------
# Candidate ranking
# ---------------------------------------------------------------------------

@dataclass
class Candidate:
    """One option offered to an ambiguity resolver."""

    value: Any
    score: float  # 0-1
    reason: str = ""
    label: str = ""

    def __post_init__(self) -> None:
        if not self.label:
            self.label = str(getattr(self.value, "value", self.value))


class CandidateRanker:
    """Rank dictionary keywords against a token with ``rapidfuzz``.

    Parameters
    ----------
    limit:
        Maximum number of candidates returned.
    min_score:
        Candidates scoring below this (0-100 scale) are dropped.
    """

    def __init__(self, limit: int = 5, min_score: float = 40.0) -> None:
        self._limit = limit
        self._min_score = min_score

    def rank(
        self,
        token: str,
        choices: Iterable[str],
        resolve: Optional[Any] = None,
        reason: str = "similar keyword",
    ) -> List[Candidate]:
        """Return candidates for *token*, best first.

        Parameters
        ----------
        token:
            Text to match (e.g. the raw brand token).
        choices:
            Keywords to match against.
        resolve:
            Optional callable turning a keyword into the candidate value
            (e.g. a dictionary lookup). Defaults to the keyword itself.
        """
        pool = list(dict.fromkeys(c for c in choices if c))
        if not token or not pool:
            return []

        results = process.extract(
            token.upper(),
            [c.upper() for c in pool],
            scorer=fuzz.WRatio,
            limit=self._limit,
        )

        candidates: List[Candidate] = []
        seen_values = set()
        for _, score, index in results:
            if score < self._min_score:
                continue
            keyword = pool[index]
            value = resolve(keyword) if resolve else keyword
            if value is None or value in seen_values:
                continue
            seen_values.add(value)
            candidates.append(
                Candidate(
                    value=value,
                    score=round(score / 100.0, 3),
                    reason=f"{reason} '{keyword}'",
                    label=f"{keyword} -> {getattr(value, 'value', value)}",
                )
            )

        logger.debug("Ranked %d candidate(s) for %r", len(candidates), token)
        return candidates
