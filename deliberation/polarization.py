"""Polarization scoring and qualitative bands

score = clamp01(1 - largest_share + 0.3 * avg_pairwise_stance_distance)

largest_share is the biggest viewpoint's share of all classified participants.
Scores are reported to two decimals and banded on the reported value, so a
displayed score and its band never disagree.

Band cut points are fixed:
- polarization: > 0.70 high, 0.40-0.70 moderate, < 0.40 low
- consensus (agreement percentage): >= 70 high, 40-69 medium, < 40 low
"""

from itertools import combinations
from typing import Iterable, Mapping, Sequence

from deliberation.models import Disagreement, Viewpoint

HIGH_POLARIZATION = 0.70
MODERATE_POLARIZATION = 0.40

HIGH_CONSENSUS = 70.0
MEDIUM_CONSENSUS = 40.0

# Weight of inter-cluster stance distance in the score
DISTANCE_WEIGHT = 0.3


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def stance_distance(a: Mapping[str, float], b: Mapping[str, float]) -> float:
    """Normalized distance between two mean-stance vectors

    Mean absolute difference over shared propositions, halved so full support
    against full opposition is 1.0.
    """
    shared = sorted(set(a) & set(b))
    if not shared:
        return 0.0
    total = sum(abs(a[key] - b[key]) for key in shared)
    return clamp01(total / len(shared) / 2.0)


def average_pairwise_distance(distances: Iterable[float]) -> float:
    values = list(distances)
    if not values:
        return 0.0
    return sum(values) / len(values)


def polarization_score(participant_counts: Sequence[int], avg_pairwise_distance: float) -> float:
    """Score a grouping of viewpoints

    Args:
        participant_counts: Size of each viewpoint
        avg_pairwise_distance: Mean stance distance between viewpoints, in [0, 1]

    Returns:
        Score in [0, 1], rounded to two decimals

    Examples:
        >>> polarization_score([45, 55], 0.9)
        0.72
    """
    total = sum(participant_counts)
    if total <= 0:
        return 0.0
    largest_share = max(participant_counts) / total
    raw = 1.0 - largest_share + DISTANCE_WEIGHT * avg_pairwise_distance
    return round(clamp01(raw), 2)


def score_viewpoints(viewpoints: Sequence[Viewpoint]) -> float:
    """Polarization score of stance-derived viewpoints"""
    distances = [
        stance_distance(first.mean_stance, second.mean_stance)
        for first, second in combinations(viewpoints, 2)
    ]
    return polarization_score(
        [len(v.participants) for v in viewpoints],
        average_pairwise_distance(distances),
    )


def polarization_band(score: float) -> str:
    """Map a polarization score to high / moderate / low

    Bands the reported score, already rounded to two decimals by
    polarization_score: a raw 0.7004 is reported as 0.70 and is "moderate".
    """
    if score > HIGH_POLARIZATION:
        return "high"
    if score >= MODERATE_POLARIZATION:
        return "moderate"
    return "low"


def consensus_level(agreement_percentage: float) -> str:
    """Map an agreement percentage to high / medium / low"""
    if agreement_percentage >= HIGH_CONSENSUS:
        return "high"
    if agreement_percentage >= MEDIUM_CONSENSUS:
        return "medium"
    return "low"


def overall_polarization(disagreements: Sequence[Disagreement]) -> float:
    """Participant-weighted mean polarization across disagreements, 0 if none"""
    weighted_sum = 0.0
    total_weight = 0
    for point in disagreements:
        weight = point.participant_count
        weighted_sum += point.polarization_score * weight
        total_weight += weight

    if total_weight == 0:
        return 0.0
    return round(weighted_sum / total_weight, 2)
