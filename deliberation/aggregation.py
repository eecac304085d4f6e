"""Stance aggregation - proposition-level summaries from raw votes

Each vote falls into one of three bands around zero:
- support: stance > +band
- oppose: stance < -band
- neutral: |stance| <= band (closed, so boundary values are neutral)

agreement_percentage = 100 * (support + neutral_weight * neutral) / total
"""

from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np

from config import get_logger
from deliberation.models import AnalysisConfig, Proposition, PropositionInput, VoteInput
from exceptions import PartitionInvariantViolation

logger = get_logger(__name__).bind(component="stance_aggregator")

# Allowed drift between a stored percentage and one recomputed from sizes
_PERCENTAGE_TOLERANCE = 0.01


def classify_stance(stance_value: float, neutral_band: float = 0.15) -> str:
    """Map a stance value onto support / oppose / neutral

    Examples:
        >>> classify_stance(0.6)
        'support'
        >>> classify_stance(0.15)
        'neutral'
        >>> classify_stance(-0.16)
        'oppose'
    """
    if abs(stance_value) <= neutral_band:
        return "neutral"
    return "support" if stance_value > 0 else "oppose"


def compute_agreement_percentage(
    support_count: int,
    neutral_count: int,
    total_votes: int,
    neutral_weight: float = 0.5,
) -> Optional[float]:
    """Agreement percentage from partition sizes, None with zero votes"""
    if total_votes <= 0:
        return None
    value = 100.0 * (support_count + neutral_weight * neutral_count) / total_votes
    return round(value, 2)


def aggregate_proposition(
    proposition: PropositionInput,
    votes: Sequence[VoteInput],
    options: AnalysisConfig,
) -> Proposition:
    """Reduce one proposition's votes to a Proposition summary

    Args:
        proposition: Proposition metadata
        votes: Votes on this proposition, at most one per participant
        options: Run options (neutral_band, neutral_weight)

    Returns:
        Proposition with partitions sorted by participant id. Zero votes give
        agreement_percentage=None and empty partitions.
    """
    if not votes:
        return Proposition(id=proposition.id, text=proposition.text, agreement_percentage=None)

    participant_ids = np.array([vote.participant_id for vote in votes], dtype=object)
    stances = np.array([vote.stance_value for vote in votes], dtype=float)

    neutral_mask = np.abs(stances) <= options.neutral_band
    support_mask = (stances > 0) & ~neutral_mask
    oppose_mask = (stances < 0) & ~neutral_mask

    supporting = tuple(sorted(participant_ids[support_mask]))
    opposing = tuple(sorted(participant_ids[oppose_mask]))
    neutral = tuple(sorted(participant_ids[neutral_mask]))

    return Proposition(
        id=proposition.id,
        text=proposition.text,
        agreement_percentage=compute_agreement_percentage(
            len(supporting), len(neutral), len(votes), options.neutral_weight
        ),
        supporting_participants=supporting,
        opposing_participants=opposing,
        neutral_participants=neutral,
    )


def verify_partition(
    summary: Proposition,
    voters: Iterable[str],
    area_id: str,
    neutral_weight: float = 0.5,
) -> None:
    """Check that a summary partitions its voters and matches its percentage

    Raises:
        PartitionInvariantViolation: on overlap, missing or extra participants,
            or an agreement_percentage inconsistent with the partition sizes
    """
    support = set(summary.supporting_participants)
    oppose = set(summary.opposing_participants)
    neutral = set(summary.neutral_participants)
    expected = set(voters)

    if support & oppose or support & neutral or oppose & neutral:
        raise PartitionInvariantViolation(
            "participant appears in more than one stance set",
            area_id=area_id,
            proposition_id=summary.id,
        )

    if support | oppose | neutral != expected:
        raise PartitionInvariantViolation(
            "stance sets do not cover exactly the voting population",
            area_id=area_id,
            proposition_id=summary.id,
        )

    recomputed = compute_agreement_percentage(
        len(support), len(neutral), summary.total_votes, neutral_weight
    )
    if recomputed is None or summary.agreement_percentage is None:
        if recomputed != summary.agreement_percentage:
            raise PartitionInvariantViolation(
                "agreement_percentage set without votes (or missing with votes)",
                area_id=area_id,
                proposition_id=summary.id,
            )
        return

    if abs(recomputed - summary.agreement_percentage) > _PERCENTAGE_TOLERANCE:
        raise PartitionInvariantViolation(
            f"agreement_percentage {summary.agreement_percentage} does not match "
            f"partition sizes ({recomputed})",
            area_id=area_id,
            proposition_id=summary.id,
        )


def aggregate_area(
    propositions: Sequence[PropositionInput],
    votes_by_proposition: Dict[str, List[VoteInput]],
    options: AnalysisConfig,
    area_id: str,
) -> List[Proposition]:
    """Summarize and verify every proposition in an area"""
    summaries = []
    for proposition in propositions:
        votes = votes_by_proposition.get(proposition.id, [])
        summary = aggregate_proposition(proposition, votes, options)
        verify_partition(
            summary,
            (vote.participant_id for vote in votes),
            area_id,
            options.neutral_weight,
        )
        summaries.append(summary)

    logger.debug(
        "aggregated area",
        area_id=area_id,
        n_propositions=len(summaries),
        n_with_votes=sum(1 for s in summaries if s.has_votes),
    )
    return summaries


def pooled_agreement_percentage(
    summaries: Iterable[Proposition],
    neutral_weight: float = 0.5,
) -> Optional[float]:
    """Agreement percentage over every vote in a set of propositions"""
    support = neutral = total = 0
    for summary in summaries:
        support += len(summary.supporting_participants)
        neutral += len(summary.neutral_participants)
        total += summary.total_votes
    return compute_agreement_percentage(support, neutral, total, neutral_weight)


def overall_consensus_score(summaries: Iterable[Proposition]) -> Optional[float]:
    """Mean agreement percentage over propositions that received votes"""
    values = [s.agreement_percentage for s in summaries if s.agreement_percentage is not None]
    if not values:
        return None
    return round(float(np.mean(values)), 2)
