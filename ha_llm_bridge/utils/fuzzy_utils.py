"""Fuzzy matching utilities for entity search.

Provides the additive relevance scoring used by the search capability.
Bounded near-matching is delegated to the rapidfuzz library.
"""

from typing import Iterable, List

from rapidfuzz.distance import Hamming

from .name_utils import split_words


# Whole-string signals
SCORE_EXACT = 1000
SCORE_PREFIX = 500
SCORE_NAME_CONTAINS = 250
SCORE_ID_CONTAINS = 200

# Per-word signals: (name weight, identifier weight)
SCORE_WORD_EXACT = (100, 80)
SCORE_WORD_PREFIX = (50, 40)
SCORE_WORD_CONTAINS = (25, 20)
SCORE_WORD_NEAR = (15, 10)

# Context
SCORE_DOMAIN_HINT = 150
SCORE_AREA_HINT = 150
PENALTY_UNAVAILABLE = 50

RELEVANCE_HIGH = 500
RELEVANCE_MEDIUM = 100

MAX_NEAR_DIFFERENCES = 2


def is_near_match(word: str, other: str, max_diff: int = MAX_NEAR_DIFFERENCES) -> bool:
    """Check whether two words differ in at most `max_diff` character positions.

    Words whose lengths differ by more than `max_diff` are rejected without
    comparing characters. Otherwise positions are compared over the longer
    length (the shorter word is padded), so "ligt" vs "light" counts the
    t/h mismatch plus the missing trailing character.

    Examples:
        is_near_match("ligt", "light") -> True
        is_near_match("light", "television") -> False
    """
    if abs(len(word) - len(other)) > max_diff:
        return False
    distance = Hamming.distance(word, other, pad=True, score_cutoff=max_diff)
    return distance <= max_diff


def score_words(query_words: Iterable[str], candidate_words: List[str], weights_index: int) -> int:
    """Score each query word against each candidate word.

    Per pair only the strongest applicable signal counts (exact, then prefix,
    then contains, then near-match).

    Args:
        query_words: Normalized query words
        candidate_words: Normalized words of the name or identifier
        weights_index: 0 for name weights, 1 for identifier weights

    Returns:
        Summed word-level score
    """
    score = 0
    for q_word in query_words:
        for c_word in candidate_words:
            if c_word == q_word:
                score += SCORE_WORD_EXACT[weights_index]
            elif c_word.startswith(q_word):
                score += SCORE_WORD_PREFIX[weights_index]
            elif q_word in c_word:
                score += SCORE_WORD_CONTAINS[weights_index]
            elif is_near_match(c_word, q_word):
                score += SCORE_WORD_NEAR[weights_index]
    return score


def score_text(normalized_query: str, normalized_name: str, normalized_id: str) -> int:
    """Score the text signals of one candidate (no context bonuses)."""
    if not normalized_query:
        return 0

    score = 0
    if normalized_name == normalized_query or normalized_id == normalized_query:
        score += SCORE_EXACT
    if normalized_name.startswith(normalized_query) or normalized_id.startswith(normalized_query):
        score += SCORE_PREFIX
    if normalized_query in normalized_name:
        score += SCORE_NAME_CONTAINS
    if normalized_query in normalized_id:
        score += SCORE_ID_CONTAINS

    query_words = split_words(normalized_query)
    score += score_words(query_words, split_words(normalized_name), 0)
    score += score_words(query_words, split_words(normalized_id), 1)
    return score


def relevance_label(score: int) -> str:
    """Map a score to "high", "medium" or "low"."""
    if score >= RELEVANCE_HIGH:
        return "high"
    if score >= RELEVANCE_MEDIUM:
        return "medium"
    return "low"
