"""Discussion areas - which propositions are analyzed together

Propositions with an explicit area_id are grouped by it. The rest are grouped
by keyword overlap: average-linkage agglomerative merging on Jaccard
similarity, merging the most similar pair while its similarity is at least
area_similarity_threshold. Ties go to the pair with the lowest combined
proposition ids, so grouping does not depend on input order. A proposition
that never merges is an area of its own.
"""

from collections import Counter
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from config import get_logger
from deliberation.ids import derived_area_id
from deliberation.keywords import extract_keywords, jaccard_similarity
from deliberation.models import AnalysisConfig, PropositionInput

logger = get_logger(__name__).bind(component="area_builder")

_THEME_KEYWORDS = 3


@dataclass
class DiscussionArea:
    """A set of related propositions analyzed as one unit"""
    area_id: str
    title: str
    propositions: List[PropositionInput]
    derived: bool = False

    @property
    def proposition_ids(self) -> Tuple[str, ...]:
        return tuple(p.id for p in self.propositions)

    @property
    def moral_foundations(self) -> Tuple[str, ...]:
        tags = set()
        for proposition in self.propositions:
            tags.update(proposition.moral_foundations)
        return tuple(sorted(tags))


def area_title(propositions: Sequence[PropositionInput]) -> str:
    """Single proposition: its text. Several: their most shared keywords."""
    if len(propositions) == 1:
        return propositions[0].text

    frequency: Counter = Counter()
    for proposition in propositions:
        frequency.update(set(extract_keywords(proposition.text)))

    keywords = sorted(frequency, key=lambda word: (-frequency[word], word))[:_THEME_KEYWORDS]
    if not keywords:
        return "Related propositions"
    return f"Propositions about {', '.join(keywords)}"


def _similarity_matrix(keyword_sets: Sequence[List[str]]) -> np.ndarray:
    n = len(keyword_sets)
    matrix = np.eye(n)
    for i in range(n):
        for j in range(i + 1, n):
            matrix[i, j] = matrix[j, i] = jaccard_similarity(keyword_sets[i], keyword_sets[j])
    return matrix


def _average_linkage(clusters: Sequence[List[int]], similarity: np.ndarray, a: int, b: int) -> float:
    return float(similarity[np.ix_(clusters[a], clusters[b])].mean())


def group_by_keywords(
    propositions: Sequence[PropositionInput],
    threshold: float,
) -> List[List[PropositionInput]]:
    """Agglomerate propositions by keyword similarity

    Args:
        propositions: Propositions without an explicit area
        threshold: Minimum average-linkage similarity for a merge (inclusive)

    Returns:
        Groups of propositions, each sorted by id, groups ordered by first id
    """
    ordered = sorted(propositions, key=lambda p: p.id)
    if not ordered:
        return []

    similarity = _similarity_matrix([extract_keywords(p.text) for p in ordered])
    clusters: List[List[int]] = [[i] for i in range(len(ordered))]

    while True:
        best: Optional[Tuple[float, List[str], int, int]] = None
        for a in range(len(clusters)):
            for b in range(a + 1, len(clusters)):
                score = _average_linkage(clusters, similarity, a, b)
                if score < threshold:
                    continue
                combined = sorted(ordered[i].id for i in clusters[a] + clusters[b])
                candidate = (-score, combined, a, b)
                if best is None or candidate[:2] < best[:2]:
                    best = candidate
        if best is None:
            break

        _, _, a, b = best
        clusters[a] = sorted(clusters[a] + clusters[b])
        del clusters[b]

    groups = [[ordered[i] for i in cluster] for cluster in clusters]
    groups.sort(key=lambda group: group[0].id)
    return groups


def build_areas(
    propositions: Sequence[PropositionInput],
    options: AnalysisConfig,
) -> List[DiscussionArea]:
    """Partition a topic's propositions into discussion areas, ordered by area id"""
    explicit: Dict[str, List[PropositionInput]] = {}
    implicit: List[PropositionInput] = []
    for proposition in propositions:
        if proposition.area_id:
            explicit.setdefault(proposition.area_id, []).append(proposition)
        else:
            implicit.append(proposition)

    areas = []
    for area_id, members in explicit.items():
        members = sorted(members, key=lambda p: p.id)
        areas.append(DiscussionArea(area_id=area_id, title=area_title(members), propositions=members))

    for group in group_by_keywords(implicit, options.area_similarity_threshold):
        areas.append(
            DiscussionArea(
                area_id=derived_area_id(p.id for p in group),
                title=area_title(group),
                propositions=group,
                derived=True,
            )
        )

    areas.sort(key=lambda area: area.area_id)

    logger.debug(
        "built discussion areas",
        n_propositions=len(propositions),
        n_explicit=len(explicit),
        n_areas=len(areas),
    )
    return areas
