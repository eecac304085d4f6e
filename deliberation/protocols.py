"""Injected capabilities - interfaces the engine depends on without owning

The engine never measures meaning itself. Callers pass a SemanticDistance
(embedding-based, lexical, or anything else) into each run.
"""

from typing import Protocol

from deliberation.keywords import extract_keywords, jaccard_similarity


class SemanticDistance(Protocol):
    """Distance between two definition texts, normalized to [0, 1]

    0 means identical meaning, 1 means unrelated. Must be deterministic and
    symmetric for results to be reproducible.
    """

    def distance(self, a: str, b: str) -> float: ...


class KeywordDistance:
    """Lexical reference implementation: 1 - keyword Jaccard similarity

    Useful for tests and for running without an embedding service. Texts
    without keywords are compared by exact lower-cased equality.
    """

    def distance(self, a: str, b: str) -> float:
        keywords_a = extract_keywords(a)
        keywords_b = extract_keywords(b)
        if not keywords_a or not keywords_b:
            return 0.0 if a.strip().lower() == b.strip().lower() else 1.0
        return 1.0 - jaccard_similarity(keywords_a, keywords_b)
