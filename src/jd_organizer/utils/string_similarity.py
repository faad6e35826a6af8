"""String similarity utilities for heuristic filename/folder matching."""

from __future__ import annotations

import re
from collections.abc import Iterable

_TOKEN_SPLIT = re.compile(r"[-_.\s]+")
_EXTENSION = re.compile(r"\.[^.]+$")

EXACT_SCORE = 1.0
CONTAINMENT_SCORE = 0.8


class StringSimilarity:
    """Cheap similarity measures for short keyword tokens."""

    @staticmethod
    def keyword_similarity(s1: str, s2: str) -> float:
        """Score two tokens between 0.0 and 1.0.

        Identical strings score 1.0 and substring containment scores 0.8;
        otherwise the score is the Jaccard overlap of the character sets.
        """
        a = s1.lower()
        b = s2.lower()

        if a == b:
            return EXACT_SCORE
        if a in b or b in a:
            return CONTAINMENT_SCORE

        set_a = set(a)
        set_b = set(b)
        union = set_a | set_b
        if not union:
            return 0.0
        return len(set_a & set_b) / len(union)

    @staticmethod
    def best_match(token: str, candidates: Iterable[str],
                   threshold: float) -> tuple[str, float] | None:
        """Return the first candidate whose score exceeds ``threshold``."""
        for candidate in candidates:
            score = StringSimilarity.keyword_similarity(token, candidate)
            if score > threshold:
                return candidate, score
        return None


def split_tokens(text: str) -> list[str]:
    """Split on common filename separators, lowercased."""
    return [t for t in _TOKEN_SPLIT.split(text.lower()) if t]


def extract_keywords(filename: str, min_length: int = 3) -> list[str]:
    """Extract lowercase keywords from a filename, dropping the extension.

    Tokens shorter than ``min_length`` characters are discarded.
    """
    stem = _EXTENSION.sub("", filename)
    return [word for word in split_tokens(stem) if len(word) >= min_length]
