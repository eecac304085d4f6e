"""Keyword extraction and Jaccard similarity for short statements"""

import re
from typing import Iterable, List

STOP_WORDS = frozenset({
    "the", "is", "at", "which", "on", "a", "an", "and", "or", "but", "in",
    "with", "to", "for", "of", "as", "by", "that", "this", "it", "from", "be",
    "are", "was", "were", "been", "have", "has", "had", "do", "does", "did",
    "will", "would", "should", "could", "may", "might", "can", "not", "our",
    "their", "they", "them", "its", "all", "any", "more", "most", "than",
})

_NON_WORD = re.compile(r"[^\w\s]")


def extract_keywords(text: str) -> List[str]:
    """Significant lower-cased words, in first-seen order

    Examples:
        >>> extract_keywords("The city should fund public transit.")
        ['city', 'fund', 'public', 'transit']
    """
    words = _NON_WORD.sub(" ", text.lower()).split()
    seen = []
    for word in words:
        if len(word) > 2 and word not in STOP_WORDS and word not in seen:
            seen.append(word)
    return seen


def jaccard_similarity(first: Iterable[str], second: Iterable[str]) -> float:
    """|A & B| / |A | B|, 0 when either side is empty"""
    a, b = set(first), set(second)
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)
