"""Viewpoint clustering - participants grouped by stance pattern

Clusters participants by their stances on the propositions of one discussion
area, then surfaces the clusters large enough to be visible as viewpoints.

Algorithm:
1. Build stance matrix (participants x propositions), both sorted by id
2. Impute missing stances with column averages
3. Cosine distance between participants
4. Single-linkage agglomerative clustering, cut at 1 - cohesion_threshold
5. Drop clusters below the visibility threshold into the unclassified bucket
6. Label each surviving cluster (stance, reasoning, underlying value)

Single linkage cut at a fixed threshold yields the connected components of
the "similarity above threshold" graph, so the final membership does not
depend on merge order or on input order. Clusters are listed largest first,
ties broken by lowest participant id.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from sklearn.cluster import AgglomerativeClustering

from config import get_logger
from deliberation.models import AnalysisConfig, Viewpoint, VoteInput

logger = get_logger(__name__).bind(component="viewpoint_clusterer")

# Guard for share comparisons like 3/15 >= 0.2
_SHARE_EPSILON = 1e-9

_DEFAULT_REASONING = {
    "Support": "Supports {target}",
    "Oppose": "Opposes {target}",
    "Neutral": "Undecided on {target}",
    "Mixed": "Supports some and opposes others of {target}",
}


@dataclass
class ClusteringOutcome:
    """Result of clustering one area's participants"""
    viewpoints: List[Viewpoint]
    unclassified: Tuple[str, ...]
    cluster_sizes: List[int]
    total_participants: int
    centroids: List[np.ndarray] = field(default_factory=list)


def build_stance_matrix(
    proposition_ids: Sequence[str],
    votes: Sequence[VoteInput],
) -> Tuple[np.ndarray, List[str], List[str]]:
    """Build a participants x propositions stance matrix

    Args:
        proposition_ids: Propositions of the area
        votes: Votes on those propositions, at most one per participant each

    Returns:
        Tuple of (matrix with NaN for unvoted cells, participant ids, proposition ids),
        with rows and columns sorted by id
    """
    columns = sorted(set(proposition_ids))
    rows = sorted({vote.participant_id for vote in votes if vote.proposition_id in columns})
    row_index = {pid: i for i, pid in enumerate(rows)}
    col_index = {pid: j for j, pid in enumerate(columns)}

    matrix = np.full((len(rows), len(columns)), np.nan)
    for vote in votes:
        j = col_index.get(vote.proposition_id)
        if j is None:
            continue
        matrix[row_index[vote.participant_id], j] = vote.stance_value

    return matrix, rows, columns


def _impute_missing_stances(matrix: np.ndarray) -> np.ndarray:
    """Impute missing stances (NaN) with column averages.

    Args:
        matrix: Stance matrix with NaN for missing votes

    Returns:
        Matrix with NaN replaced by column averages
    """
    voted = ~np.isnan(matrix)
    counts = voted.sum(axis=0)
    sums = np.nansum(matrix, axis=0)

    # Columns with no votes at all average to neutral
    col_means = np.divide(sums, counts, out=np.zeros(matrix.shape[1]), where=counts > 0)

    result = matrix.copy()
    nan_mask = np.isnan(result)
    for j in range(result.shape[1]):
        result[nan_mask[:, j], j] = col_means[j]

    return result


def _cosine_distances(matrix: np.ndarray) -> np.ndarray:
    """Pairwise cosine distance (1 - cosine similarity)

    Two all-neutral (zero) rows count as identical; a zero row against a
    non-zero row counts as orthogonal.
    """
    norms = np.linalg.norm(matrix, axis=1)
    zero = norms == 0.0
    safe_norms = np.where(zero, 1.0, norms)
    unit = matrix / safe_norms[:, None]

    similarity = np.clip(unit @ unit.T, -1.0, 1.0)
    similarity[np.outer(zero, zero)] = 1.0

    distances = 1.0 - similarity
    distances = (distances + distances.T) / 2.0
    np.fill_diagonal(distances, 0.0)
    return np.clip(distances, 0.0, 2.0)


def _single_linkage_labels(distances: np.ndarray, cohesion_threshold: float) -> np.ndarray:
    """Single-linkage clustering that merges only pairs with similarity above the threshold

    Args:
        distances: Precomputed cosine distance matrix
        cohesion_threshold: Minimum cosine similarity for a merge (exclusive)

    Returns:
        Cluster label for each row
    """
    n = distances.shape[0]
    if n < 2:
        return np.zeros(n, dtype=int)

    model = AgglomerativeClustering(
        n_clusters=None,
        metric="precomputed",
        linkage="single",
        # Merges happen strictly below this distance, i.e. strictly above the similarity
        distance_threshold=1.0 - cohesion_threshold,
    )
    return model.fit_predict(distances)


def _canonical_clusters(labels: np.ndarray, participant_ids: Sequence[str]) -> List[List[int]]:
    """Group row indices by label, largest first, ties by lowest participant id"""
    groups: Dict[int, List[int]] = {}
    for index, label in enumerate(labels):
        groups.setdefault(int(label), []).append(index)

    clusters = list(groups.values())
    clusters.sort(key=lambda rows: (-len(rows), min(participant_ids[i] for i in rows)))
    return clusters


def _plurality_text(candidates: Sequence[Tuple[str, datetime]]) -> Optional[str]:
    """Most frequent text; ties go to the most recent, then lexically first

    Args:
        candidates: (text, timestamp) pairs, one per vote carrying the text
    """
    if not candidates:
        return None

    counts = Counter(text for text, _ in candidates)
    latest: Dict[str, datetime] = {}
    for text, timestamp in candidates:
        if text not in latest or timestamp > latest[text]:
            latest[text] = timestamp

    ranked = sorted(counts, key=lambda text: (-counts[text], -latest[text].timestamp(), text))
    return ranked[0]


def stance_label(centroid: np.ndarray, neutral_band: float) -> str:
    """Label a cluster from its mean stance on each proposition"""
    if centroid.size == 0:
        return "Neutral"
    if np.all(centroid > neutral_band):
        return "Support"
    if np.all(centroid < -neutral_band):
        return "Oppose"
    if np.all(np.abs(centroid) <= neutral_band):
        return "Neutral"
    return "Mixed"


def _build_viewpoint(
    members: Sequence[str],
    centroid: np.ndarray,
    proposition_ids: Sequence[str],
    votes_by_participant: Dict[str, List[VoteInput]],
    total_participants: int,
    options: AnalysisConfig,
) -> Viewpoint:
    member_votes = [vote for pid in members for vote in votes_by_participant.get(pid, [])]

    label = stance_label(centroid, options.neutral_band)
    reasoning = _plurality_text(
        [(v.justification_text, v.timestamp) for v in member_votes if v.justification_text]
    )
    if reasoning is None:
        target = "this proposition" if len(proposition_ids) == 1 else "these propositions"
        reasoning = _DEFAULT_REASONING[label].format(target=target)

    underlying_value = _plurality_text(
        [(v.underlying_value, v.timestamp) for v in member_votes if v.underlying_value]
    )
    underlying_assumption = _plurality_text(
        [(v.underlying_assumption, v.timestamp) for v in member_votes if v.underlying_assumption]
    )

    return Viewpoint(
        stance=label,
        reasoning=reasoning,
        participants=tuple(sorted(members)),
        share=round(len(members) / total_participants, 4),
        underlying_value=underlying_value,
        underlying_assumption=underlying_assumption,
        mean_stance={
            pid: round(float(value), 4) for pid, value in zip(proposition_ids, centroid)
        },
    )


def is_visible(size: int, total: int, visibility_threshold: float) -> bool:
    """True if a group of `size` out of `total` participants may be surfaced"""
    if total <= 0 or size <= 0:
        return False
    return size / total + _SHARE_EPSILON >= visibility_threshold


def cluster_viewpoints(
    proposition_ids: Sequence[str],
    votes: Sequence[VoteInput],
    options: AnalysisConfig,
    area_id: str = "",
) -> ClusteringOutcome:
    """Cluster an area's voters and surface visible viewpoints

    Args:
        proposition_ids: Propositions of the area
        votes: All votes on those propositions
        options: Run options (cohesion/visibility thresholds, neutral band)
        area_id: Area id for logging

    Returns:
        ClusteringOutcome; viewpoints sorted largest first, participants of
        dropped clusters in `unclassified`
    """
    matrix, participant_ids, columns = build_stance_matrix(proposition_ids, votes)
    total = len(participant_ids)

    if total == 0:
        return ClusteringOutcome(viewpoints=[], unclassified=(), cluster_sizes=[], total_participants=0)

    imputed = _impute_missing_stances(matrix)
    labels = _single_linkage_labels(_cosine_distances(imputed), options.cohesion_threshold)
    clusters = _canonical_clusters(labels, participant_ids)

    votes_by_participant: Dict[str, List[VoteInput]] = {}
    for vote in votes:
        votes_by_participant.setdefault(vote.participant_id, []).append(vote)

    viewpoints = []
    centroids = []
    unclassified = []
    for rows in clusters:
        members = [participant_ids[i] for i in rows]
        if not is_visible(len(members), total, options.visibility_threshold):
            unclassified.extend(members)
            continue

        centroid = imputed[rows].mean(axis=0)
        centroids.append(centroid)
        viewpoints.append(
            _build_viewpoint(members, centroid, columns, votes_by_participant, total, options)
        )

    logger.debug(
        "clustered participants",
        area_id=area_id,
        n_participants=total,
        n_propositions=len(columns),
        n_clusters=len(clusters),
        n_viewpoints=len(viewpoints),
        n_unclassified=len(unclassified),
    )

    return ClusteringOutcome(
        viewpoints=viewpoints,
        unclassified=tuple(sorted(unclassified)),
        cluster_sizes=[len(rows) for rows in clusters],
        total_participants=total,
        centroids=centroids,
    )
