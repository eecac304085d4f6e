"""
Deterministic ID generation for analysis output

Output entities are recomputed wholesale on every run, so their IDs are
derived from content rather than assigned: the same snapshot always yields
the same IDs, and the result of a retried run compares equal to the first.
"""

import hashlib
import re
from typing import Iterable

_WHITESPACE = re.compile(r"\s+")

# Prefixes of generated area ids; explicit area ids may not use them
DERIVED_AREA_PREFIX = "area-"
TOPIC_AREA_PREFIX = "topic:"
RESERVED_AREA_PREFIXES = (DERIVED_AREA_PREFIX, TOPIC_AREA_PREFIX)


def normalize_term(term: str) -> str:
    """Normalize a term for grouping (case-insensitive, trimmed)

    Examples:
        >>> normalize_term("  Freedom ")
        'freedom'
        >>> normalize_term("Free  Speech")
        'free speech'
    """
    return _WHITESPACE.sub(" ", term.strip().lower())


def normalize_definition(text: str) -> str:
    """Normalize definition text so trivially different spellings merge"""
    return _WHITESPACE.sub(" ", text.strip().lower()).rstrip(".")


def topic_area_id(topic_id: str) -> str:
    """Area id for term observations not tied to a proposition"""
    return f"{TOPIC_AREA_PREFIX}{topic_id}"


def derived_area_id(proposition_ids: Iterable[str]) -> str:
    """Area id for propositions grouped by keyword similarity

    Named after the lowest proposition id in the group.
    """
    ids = sorted(proposition_ids)
    if not ids:
        raise ValueError("A discussion area needs at least one proposition")
    return f"{DERIVED_AREA_PREFIX}{ids[0]}"


def _hash_suffix(*parts: str) -> str:
    stable_key = "\x1f".join(parts)
    return hashlib.sha256(stable_key.encode("utf-8")).hexdigest()[:12]


def generate_zone_id(topic_id: str, area_id: str) -> str:
    return f"zone_{_hash_suffix(topic_id, area_id)}"


def generate_misunderstanding_id(topic_id: str, area_id: str, term: str) -> str:
    return f"mis_{_hash_suffix(topic_id, area_id, normalize_term(term))}"


def generate_disagreement_id(topic_id: str, area_id: str, term: str = "") -> str:
    """Disagreement id; term-escalated points hash the term in as well"""
    return f"dis_{_hash_suffix(topic_id, area_id, normalize_term(term))}"
