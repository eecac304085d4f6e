"""Misunderstanding detection - talking past each other vs actually disagreeing

Term observations are grouped by normalized term. Within a group the
definitions are compared pairwise with the injected SemanticDistance:

- max distance < nuance_threshold: the group is a Misunderstanding
  (same underlying idea, different wording)
- max distance >= nuance_threshold: the group is escalated into a
  Disagreement (a genuine value split) and is never also a Misunderstanding

A participant who used more than one distinct definition of the same term is
removed from all of them, keeping definitions (and escalated positions)
disjoint. Groups with fewer than two definitions left are dropped.
"""

import math
from dataclasses import dataclass
from itertools import combinations
from typing import Dict, List, Optional, Sequence, Tuple

from config import get_logger
from deliberation.clustering import is_visible
from deliberation.ids import (
    generate_disagreement_id,
    generate_misunderstanding_id,
    normalize_definition,
    normalize_term,
)
from deliberation.models import (
    AnalysisConfig,
    Disagreement,
    Misunderstanding,
    TermDefinition,
    TermObservation,
    Viewpoint,
)
from deliberation.polarization import (
    average_pairwise_distance,
    polarization_band,
    polarization_score,
)
from deliberation.protocols import SemanticDistance
from exceptions import InvalidDistanceError

logger = get_logger(__name__).bind(component="misunderstanding_detector")

MISUNDERSTANDING = "misunderstanding"
ESCALATED = "disagreement"
INSUFFICIENT = "insufficient"


@dataclass
class TermGroupOutcome:
    """Classification of one term group"""
    term: str
    classification: str
    definitions: List[TermDefinition]
    max_distance: Optional[float] = None
    misunderstanding: Optional[Misunderstanding] = None
    disagreement: Optional[Disagreement] = None


def group_observations(observations: Sequence[TermObservation]) -> Dict[str, List[TermObservation]]:
    """Group observations by normalized term, in term order"""
    groups: Dict[str, List[TermObservation]] = {}
    for observation in observations:
        groups.setdefault(normalize_term(observation.term), []).append(observation)
    return {term: groups[term] for term in sorted(groups)}


def display_term(observations: Sequence[TermObservation]) -> str:
    """Most common spelling of the term, ties to the lexically first"""
    counts: Dict[str, int] = {}
    for observation in observations:
        spelling = " ".join(observation.term.split())
        counts[spelling] = counts.get(spelling, 0) + 1
    return sorted(counts, key=lambda spelling: (-counts[spelling], spelling))[0]


def merge_definitions(observations: Sequence[TermObservation]) -> List[TermDefinition]:
    """Merge identical definitions and make participant sets disjoint

    Returns:
        Definitions sorted by participant count (desc), then text
    """
    texts: Dict[str, List[str]] = {}
    members: Dict[str, set] = {}
    for observation in observations:
        key = normalize_definition(observation.definition_text)
        texts.setdefault(key, []).append(observation.definition_text)
        members.setdefault(key, set()).update(observation.participants)

    claims: Dict[str, int] = {}
    for participants in members.values():
        for pid in participants:
            claims[pid] = claims.get(pid, 0) + 1
    ambiguous = {pid for pid, count in claims.items() if count > 1}

    definitions = []
    for key in members:
        participants = members[key] - ambiguous
        if not participants:
            continue
        definitions.append(
            TermDefinition(definition=sorted(texts[key])[0], participants=tuple(sorted(participants)))
        )

    definitions.sort(key=lambda d: (-len(d.participants), d.definition))
    return definitions


def pairwise_distances(
    definitions: Sequence[TermDefinition],
    distance: SemanticDistance,
    area_id: str,
    term: str,
) -> List[float]:
    """Distances for every definition pair, clamped to [0, 1]

    Raises:
        InvalidDistanceError: if the injected distance fails or returns a
            non-finite value
    """
    ordered = sorted(d.definition for d in definitions)
    values = []
    for first, second in combinations(ordered, 2):
        try:
            raw = distance.distance(first, second)
        except Exception as e:
            raise InvalidDistanceError(
                f"semantic distance failed: {e}", area_id=area_id, term=term
            ) from e
        try:
            value = float(raw)
        except (TypeError, ValueError):
            raise InvalidDistanceError(
                f"semantic distance returned {raw!r}", area_id=area_id, term=term
            )
        if not math.isfinite(value):
            raise InvalidDistanceError(
                f"semantic distance returned {value}", area_id=area_id, term=term
            )
        values.append(max(0.0, min(1.0, value)))
    return values


def _clarification(term: str, definitions: Sequence[TermDefinition]) -> str:
    senses = " / ".join(f'"{d.definition}"' for d in definitions[:3])
    return (
        f'Participants use "{term}" in {len(definitions)} closely related senses ({senses}). '
        f"Agreeing on a shared definition first may show that these positions are closer than they seem."
    )


def _escalate(
    term: str,
    definitions: Sequence[TermDefinition],
    distance: SemanticDistance,
    max_distance: float,
    participant_total: int,
    options: AnalysisConfig,
    topic_id: str,
    area_id: str,
    moral_foundations: Tuple[str, ...],
    proposition_ids: Tuple[str, ...],
) -> Optional[Disagreement]:
    """Turn a term group with a genuine split into a Disagreement"""
    visible = [
        d for d in definitions
        if is_visible(len(d.participants), participant_total, options.visibility_threshold)
    ]
    if len(visible) < 2:
        return None

    positions = tuple(
        Viewpoint(
            stance=d.definition,
            reasoning=f'Understands "{term}" as: {d.definition}',
            participants=d.participants,
            share=round(len(d.participants) / participant_total, 4),
        )
        for d in visible
    )
    score = polarization_score(
        [len(p.participants) for p in positions],
        average_pairwise_distance(pairwise_distances(visible, distance, area_id, term)),
    )
    return Disagreement(
        id=generate_disagreement_id(topic_id, area_id, term),
        area_id=area_id,
        topic=f'Meaning of "{term}"',
        description=(
            f'Participants hold substantively different conceptions of "{term}" '
            f"(definition distance {max_distance:.2f}), reflecting a difference in values "
            f"rather than wording."
        ),
        positions=positions,
        polarization_score=score,
        polarization_band=polarization_band(score),
        moral_foundations=moral_foundations,
        proposition_ids=proposition_ids,
        source="term",
        term=term,
    )


def classify_term_group(
    observations: Sequence[TermObservation],
    distance: SemanticDistance,
    options: AnalysisConfig,
    topic_id: str,
    area_id: str,
    participant_total: int,
    moral_foundations: Tuple[str, ...] = (),
    proposition_ids: Tuple[str, ...] = (),
) -> TermGroupOutcome:
    """Classify the observations of one term

    Args:
        observations: Observations sharing one normalized term
        distance: Injected semantic distance
        options: Run options (nuance and visibility thresholds)
        topic_id: Topic id, for output ids
        area_id: Area the observations belong to
        participant_total: Denominator for position visibility
        moral_foundations: Tags attached to an escalated Disagreement
        proposition_ids: Area propositions attached to an escalated Disagreement

    Returns:
        TermGroupOutcome with exactly one of misunderstanding / disagreement set,
        or neither (insufficient data, or an escalated group without two
        visible positions)
    """
    term = display_term(observations)
    definitions = merge_definitions(observations)

    if len(definitions) < 2:
        return TermGroupOutcome(term=term, classification=INSUFFICIENT, definitions=definitions)

    max_distance = max(pairwise_distances(definitions, distance, area_id, term))

    if max_distance < options.nuance_threshold:
        misunderstanding = Misunderstanding(
            id=generate_misunderstanding_id(topic_id, area_id, term),
            area_id=area_id,
            term=term,
            definitions=tuple(definitions),
            clarification_suggestion=_clarification(term, definitions),
        )
        return TermGroupOutcome(
            term=term,
            classification=MISUNDERSTANDING,
            definitions=definitions,
            max_distance=max_distance,
            misunderstanding=misunderstanding,
        )

    disagreement = _escalate(
        term,
        definitions,
        distance,
        max_distance,
        participant_total,
        options,
        topic_id,
        area_id,
        moral_foundations,
        proposition_ids,
    )
    if disagreement is None:
        logger.debug(
            "escalated term has fewer than two visible positions",
            area_id=area_id,
            term=term,
            n_definitions=len(definitions),
        )
    return TermGroupOutcome(
        term=term,
        classification=ESCALATED,
        definitions=definitions,
        max_distance=max_distance,
        disagreement=disagreement,
    )


def detect_misunderstandings(
    observations: Sequence[TermObservation],
    distance: SemanticDistance,
    options: AnalysisConfig,
    topic_id: str,
    area_id: str,
    participant_total: int,
    moral_foundations: Tuple[str, ...] = (),
    proposition_ids: Tuple[str, ...] = (),
) -> List[TermGroupOutcome]:
    """Classify every term group in an area, in normalized term order"""
    outcomes = [
        classify_term_group(
            group,
            distance,
            options,
            topic_id,
            area_id,
            participant_total,
            moral_foundations,
            proposition_ids,
        )
        for group in group_observations(observations).values()
    ]

    logger.debug(
        "classified term groups",
        area_id=area_id,
        n_groups=len(outcomes),
        n_misunderstandings=sum(1 for o in outcomes if o.misunderstanding),
        n_escalated=sum(1 for o in outcomes if o.classification == ESCALATED),
    )
    return outcomes
