"""Common ground assembly - one analysis run over a topic snapshot

Flow:
1. Validate records (bad records are rejected and reported, not fatal)
2. Partition propositions into discussion areas
3. Fan out per-area work: aggregate stances, cluster viewpoints, score
   polarization, classify term groups
4. Join in area order, drop misunderstandings for terms that escalated
   anywhere in the topic, compute topic-level scores

The run is a pure function of its inputs. Area failures are scoped to the
area and reported in skipped_areas; only malformed top-level input (missing
topic id, no propositions) fails the call.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError

from config import get_logger
from deliberation.aggregation import aggregate_area, overall_consensus_score, pooled_agreement_percentage
from deliberation.areas import DiscussionArea, build_areas
from deliberation.clustering import cluster_viewpoints, is_visible
from deliberation.ids import generate_disagreement_id, generate_zone_id, normalize_term, topic_area_id
from deliberation.misunderstanding import ESCALATED, detect_misunderstandings
from deliberation.models import (
    AgreementZone,
    AnalysisConfig,
    AnalysisResult,
    Disagreement,
    Misunderstanding,
    Proposition,
    PropositionInput,
    RecordFailure,
    SkippedArea,
    TermObservation,
    TopicSnapshot,
    VoteInput,
)
from deliberation.polarization import consensus_level, overall_polarization, polarization_band, score_viewpoints
from deliberation.protocols import KeywordDistance, SemanticDistance
from exceptions import AreaError, InputValidationError, InsufficientDataError, PartitionInvariantViolation

logger = get_logger(__name__).bind(component="common_ground_assembler")

RecordT = TypeVar("RecordT", bound=BaseModel)


@dataclass
class AreaTask:
    """Inputs for one area, prepared before fan-out"""
    area: DiscussionArea
    votes: List[VoteInput]
    observations: List[TermObservation]
    participant_total: int


@dataclass
class AreaOutcome:
    area_id: str
    summaries: List[Proposition] = field(default_factory=list)
    zones: List[AgreementZone] = field(default_factory=list)
    misunderstandings: List[Misunderstanding] = field(default_factory=list)
    disagreements: List[Disagreement] = field(default_factory=list)
    escalated_terms: List[str] = field(default_factory=list)
    skipped: List[SkippedArea] = field(default_factory=list)


# -----------------------------------------------------------------------------
# Record validation
# -----------------------------------------------------------------------------


def _describe_validation_error(error: ValidationError) -> str:
    parts = []
    for detail in error.errors():
        location = ".".join(str(p) for p in detail.get("loc", ())) or "record"
        parts.append(f"{location}: {detail.get('msg', 'invalid')}")
    return "; ".join(parts)


def _record_id(record: Any, id_field: str) -> Optional[str]:
    value = getattr(record, id_field, None)
    if value is None and isinstance(record, dict):
        value = record.get(id_field)
    return str(value) if value is not None else None


def parse_records(
    records: Iterable[Any],
    model: Type[RecordT],
    kind: str,
    id_field: str,
) -> Tuple[List[Tuple[int, RecordT]], List[RecordFailure]]:
    """Parse records one at a time, collecting failures instead of raising

    Returns:
        Tuple of ([(input index, parsed record)], [RecordFailure])
    """
    parsed = []
    failures = []
    for index, record in enumerate(records):
        if isinstance(record, model):
            parsed.append((index, record))
            continue
        try:
            parsed.append((index, model.model_validate(record)))
        except ValidationError as e:
            failures.append(
                RecordFailure(
                    kind=kind,
                    index=index,
                    record_id=_record_id(record, id_field),
                    reason=_describe_validation_error(e),
                )
            )
    return parsed, failures


def _vote_rank(vote: VoteInput) -> Tuple:
    return (vote.timestamp, vote.stance_value, vote.justification_text or "")


def validate_snapshot(
    topic_id: Any,
    propositions: Sequence[Any],
    votes: Sequence[Any],
    term_observations: Sequence[Any],
    participant_total: Optional[int],
) -> Tuple[List[PropositionInput], List[VoteInput], List[TermObservation], int, List[RecordFailure]]:
    """Validate a snapshot, rejecting malformed records

    Raises:
        InputValidationError: missing topic id, or no valid proposition

    Returns:
        (propositions, votes, term observations, participant total, failures)
    """
    if not isinstance(topic_id, str) or not topic_id.strip():
        failure = RecordFailure(kind="topic", reason="topic id is required")
        raise InputValidationError("Topic id is required", failures=[failure])

    if not propositions:
        failure = RecordFailure(kind="topic", record_id=topic_id, reason="propositions list is empty")
        raise InputValidationError("Propositions list is empty", failures=[failure])

    parsed_props, failures = parse_records(propositions, PropositionInput, "proposition", "id")

    valid_props: Dict[str, PropositionInput] = {}
    for index, proposition in parsed_props:
        if proposition.id in valid_props:
            failures.append(
                RecordFailure(
                    kind="proposition", index=index, record_id=proposition.id,
                    reason="duplicate proposition id",
                )
            )
            continue
        valid_props[proposition.id] = proposition

    if not valid_props:
        raise InputValidationError("No valid propositions in snapshot", failures=failures)

    parsed_votes, vote_failures = parse_records(votes, VoteInput, "vote", "participant_id")
    failures.extend(vote_failures)

    latest: Dict[Tuple[str, str], Tuple[int, VoteInput]] = {}
    for index, vote in parsed_votes:
        if vote.proposition_id not in valid_props:
            failures.append(
                RecordFailure(
                    kind="vote", index=index, record_id=vote.participant_id,
                    reason=f"unknown proposition {vote.proposition_id!r}",
                )
            )
            continue
        key = (vote.participant_id, vote.proposition_id)
        current = latest.get(key)
        if current is None:
            latest[key] = (index, vote)
            continue
        # Keep the latest vote; the other one is rejected
        keep, drop = (current, (index, vote)) if _vote_rank(current[1]) >= _vote_rank(vote) else ((index, vote), current)
        latest[key] = keep
        failures.append(
            RecordFailure(
                kind="vote", index=drop[0], record_id=drop[1].participant_id,
                reason=f"superseded duplicate vote on {drop[1].proposition_id!r}",
            )
        )

    valid_votes = [vote for _, vote in sorted(latest.values(), key=lambda item: item[0])]

    parsed_terms, term_failures = parse_records(term_observations, TermObservation, "term_observation", "term")
    failures.extend(term_failures)
    valid_terms = []
    for index, observation in parsed_terms:
        if observation.proposition_id and observation.proposition_id not in valid_props:
            failures.append(
                RecordFailure(
                    kind="term_observation", index=index, record_id=observation.term,
                    reason=f"unknown proposition {observation.proposition_id!r}",
                )
            )
            continue
        valid_terms.append(observation)

    known_participants = {vote.participant_id for vote in valid_votes}
    for observation in valid_terms:
        known_participants.update(observation.participants)
    known_count = len(known_participants)

    if participant_total is None:
        total = known_count
    elif participant_total < known_count:
        failures.append(
            RecordFailure(
                kind="participant_total", record_id=topic_id,
                reason=(
                    f"participant total {participant_total} is below the {known_count} "
                    f"distinct participants named in votes and term observations"
                ),
            )
        )
        total = known_count
    else:
        total = participant_total

    return list(valid_props.values()), valid_votes, valid_terms, total, failures


# -----------------------------------------------------------------------------
# Per-area analysis
# -----------------------------------------------------------------------------


def _enforce_disagreement_invariants(point: Disagreement, total: int, options: AnalysisConfig) -> None:
    """Positions: at least two, pairwise disjoint, each visible"""
    if len(point.positions) < 2:
        raise PartitionInvariantViolation("disagreement has fewer than two positions", area_id=point.area_id)

    seen = set()
    for position in point.positions:
        members = set(position.participants)
        if seen & members:
            raise PartitionInvariantViolation(
                "participant appears in more than one position", area_id=point.area_id
            )
        seen |= members
        if not is_visible(len(members), total, options.visibility_threshold):
            raise PartitionInvariantViolation(
                "position below visibility threshold", area_id=point.area_id
            )

    if len(seen) > total:
        raise PartitionInvariantViolation(
            "positions claim more participants than the area has", area_id=point.area_id
        )


def _stance_results(
    topic_id: str,
    task: AreaTask,
    summaries: List[Proposition],
    options: AnalysisConfig,
    outcome: AreaOutcome,
) -> None:
    area = task.area
    voted = [summary for summary in summaries if summary.has_votes]
    voted_ids = [summary.id for summary in voted]

    clustering = cluster_viewpoints(voted_ids, task.votes, options, area.area_id)
    if clustering.total_participants < options.min_area_participants:
        raise InsufficientDataError(
            f"{clustering.total_participants} voters, need {options.min_area_participants}",
            area_id=area.area_id,
        )

    agreement = pooled_agreement_percentage(voted, options.neutral_weight)
    level = consensus_level(agreement)

    if len(clustering.viewpoints) >= 2:
        positions = tuple(clustering.viewpoints)
        score = score_viewpoints(positions)
        unclassified = len(clustering.unclassified)
        description = (
            f"Participants split into {len(positions)} distinct viewpoints across "
            f"{len(voted)} proposition{'s' if len(voted) != 1 else ''}."
        )
        if unclassified:
            description += f" {unclassified} participant{'s' if unclassified != 1 else ''} did not fit a visible viewpoint."
        point = Disagreement(
            id=generate_disagreement_id(topic_id, area.area_id),
            area_id=area.area_id,
            topic=area.title,
            description=description,
            positions=positions,
            polarization_score=score,
            polarization_band=polarization_band(score),
            moral_foundations=area.moral_foundations,
            proposition_ids=tuple(voted_ids),
        )
        _enforce_disagreement_invariants(point, clustering.total_participants, options)
        outcome.disagreements.append(point)
        return

    if not clustering.viewpoints and level != "high":
        logger.debug(
            "area has no visible viewpoint and no high consensus",
            area_id=area.area_id,
            agreement_percentage=agreement,
        )
        return

    outcome.zones.append(
        AgreementZone(
            id=generate_zone_id(topic_id, area.area_id),
            area_id=area.area_id,
            title=area.title,
            description=(
                f"{clustering.total_participants} participants reached {level} consensus "
                f"({agreement:.0f}% agreement) across {len(voted)} "
                f"proposition{'s' if len(voted) != 1 else ''}."
            ),
            consensus_level=level,
            agreement_percentage=agreement,
            participant_count=clustering.total_participants,
            propositions=tuple(voted),
        )
    )


def _term_results(topic_id: str, task: AreaTask, distance: SemanticDistance, options: AnalysisConfig, outcome: AreaOutcome) -> None:
    area = task.area
    for group in detect_misunderstandings(
        task.observations,
        distance,
        options,
        topic_id,
        area.area_id,
        task.participant_total,
        area.moral_foundations,
        area.proposition_ids,
    ):
        if group.classification == ESCALATED:
            outcome.escalated_terms.append(normalize_term(group.term))
        if group.misunderstanding:
            outcome.misunderstandings.append(group.misunderstanding)
        if group.disagreement:
            _enforce_disagreement_invariants(group.disagreement, task.participant_total, options)
            outcome.disagreements.append(group.disagreement)


def analyze_area(
    topic_id: str,
    task: AreaTask,
    distance: SemanticDistance,
    options: AnalysisConfig,
) -> AreaOutcome:
    """Analyze one discussion area; area-scoped errors become diagnostics"""
    area = task.area
    area_logger = logger.bind(topic_id=topic_id, area_id=area.area_id)
    outcome = AreaOutcome(area_id=area.area_id)

    try:
        if area.propositions:
            votes_by_proposition: Dict[str, List[VoteInput]] = {}
            for vote in task.votes:
                votes_by_proposition.setdefault(vote.proposition_id, []).append(vote)
            outcome.summaries = aggregate_area(area.propositions, votes_by_proposition, options, area.area_id)

            if task.votes:
                try:
                    _stance_results(topic_id, task, outcome.summaries, options, outcome)
                except InsufficientDataError as e:
                    outcome.skipped.append(
                        SkippedArea(area_id=area.area_id, reason=e.reason, detail=str(e), silent=True)
                    )
            else:
                outcome.skipped.append(
                    SkippedArea(area_id=area.area_id, reason=InsufficientDataError.reason, detail="no votes", silent=True)
                )

        if task.observations:
            _term_results(topic_id, task, distance, options, outcome)

    except AreaError as e:
        area_logger.warning("skipping area", reason=e.reason, error=str(e))
        outcome = AreaOutcome(area_id=area.area_id)
        outcome.skipped.append(
            SkippedArea(
                area_id=area.area_id,
                reason=e.reason,
                detail=str(e),
                silent=isinstance(e, InsufficientDataError),
            )
        )
        return outcome

    area_logger.debug(
        "analyzed area",
        n_zones=len(outcome.zones),
        n_disagreements=len(outcome.disagreements),
        n_misunderstandings=len(outcome.misunderstandings),
    )
    return outcome


# -----------------------------------------------------------------------------
# Topic analysis
# -----------------------------------------------------------------------------


def _prepare_tasks(
    topic_id: str,
    areas: List[DiscussionArea],
    votes: List[VoteInput],
    observations: List[TermObservation],
    participant_total: int,
) -> List[AreaTask]:
    area_of: Dict[str, str] = {}
    for area in areas:
        for proposition in area.propositions:
            area_of[proposition.id] = area.area_id

    votes_by_area: Dict[str, List[VoteInput]] = {}
    for vote in votes:
        votes_by_area.setdefault(area_of[vote.proposition_id], []).append(vote)

    terms_by_area: Dict[str, List[TermObservation]] = {}
    topic_terms = []
    for observation in observations:
        if observation.proposition_id:
            terms_by_area.setdefault(area_of[observation.proposition_id], []).append(observation)
        else:
            topic_terms.append(observation)

    tasks = []
    for area in areas:
        area_votes = votes_by_area.get(area.area_id, [])
        area_terms = terms_by_area.get(area.area_id, [])
        members = {vote.participant_id for vote in area_votes}
        for observation in area_terms:
            members.update(observation.participants)
        tasks.append(AreaTask(area=area, votes=area_votes, observations=area_terms, participant_total=len(members)))

    if topic_terms:
        topic_area = DiscussionArea(area_id=topic_area_id(topic_id), title="Topic-wide terms", propositions=[])
        tasks.append(
            AreaTask(area=topic_area, votes=[], observations=topic_terms, participant_total=participant_total)
        )
    return tasks


def _fan_out(func: Callable[[Any], Any], items: Sequence[Any], max_workers: int) -> List[Any]:
    """Map func over items, in parallel when allowed, preserving item order"""
    if max_workers <= 1 or len(items) <= 1:
        return [func(item) for item in items]
    with ThreadPoolExecutor(max_workers=min(max_workers, len(items))) as executor:
        return list(executor.map(func, items))


def analyze_topic(
    topic_id: str,
    propositions: Sequence[Any],
    votes: Sequence[Any],
    term_observations: Sequence[Any] = (),
    participant_total: Optional[int] = None,
    distance: Optional[SemanticDistance] = None,
    options: Optional[AnalysisConfig] = None,
) -> AnalysisResult:
    """Produce the common ground analysis for one topic snapshot

    Args:
        topic_id: Topic being analyzed
        propositions: PropositionInput records (or mappings)
        votes: VoteInput records (or mappings)
        term_observations: TermObservation records (or mappings)
        participant_total: Distinct participants in the topic; defaults to
            everyone seen in votes and term observations
        distance: Semantic distance for term definitions (KeywordDistance if omitted)
        options: Run options (AnalysisConfig defaults if omitted)

    Returns:
        AnalysisResult; identical inputs always give an equal result

    Raises:
        InputValidationError: missing topic id, empty propositions, or any
            rejected record when options.strict is set
    """
    options = options or AnalysisConfig()
    distance = distance or KeywordDistance()

    props, valid_votes, observations, total, failures = validate_snapshot(
        topic_id, propositions, votes, term_observations, participant_total
    )
    topic_id = topic_id.strip()
    run_logger = logger.bind(topic_id=topic_id)

    if failures:
        if options.strict:
            raise InputValidationError(f"{len(failures)} invalid record(s) in snapshot", failures=failures)
        run_logger.warning("rejected input records", n_rejected=len(failures))

    areas = build_areas(props, options)
    tasks = _prepare_tasks(topic_id, areas, valid_votes, observations, total)
    outcomes: List[AreaOutcome] = _fan_out(
        lambda task: analyze_area(topic_id, task, distance, options), tasks, options.max_workers
    )

    escalated = {term for outcome in outcomes for term in outcome.escalated_terms}
    zones, misunderstandings, disagreements, skipped, summaries = [], [], [], [], []
    for outcome in outcomes:
        zones.extend(outcome.zones)
        disagreements.extend(outcome.disagreements)
        skipped.extend(outcome.skipped)
        summaries.extend(outcome.summaries)
        misunderstandings.extend(
            m for m in outcome.misunderstandings if normalize_term(m.term) not in escalated
        )

    result = AnalysisResult(
        topic_id=topic_id,
        participant_count=total,
        agreement_zones=tuple(zones),
        misunderstandings=tuple(misunderstandings),
        disagreements=tuple(disagreements),
        skipped_areas=tuple(skipped),
        rejected_records=tuple(failures),
        overall_consensus_score=overall_consensus_score(summaries),
        overall_polarization=overall_polarization(disagreements),
    )

    run_logger.info(
        "analyzed topic",
        n_areas=len(tasks),
        n_participants=total,
        n_zones=len(zones),
        n_misunderstandings=len(misunderstandings),
        n_disagreements=len(disagreements),
        n_skipped=len(skipped),
    )
    return result


def analyze_snapshot(
    snapshot: TopicSnapshot,
    distance: Optional[SemanticDistance] = None,
    options: Optional[AnalysisConfig] = None,
) -> AnalysisResult:
    return analyze_topic(
        snapshot.topic_id,
        snapshot.propositions,
        snapshot.votes,
        snapshot.term_observations,
        snapshot.participant_total,
        distance=distance,
        options=options,
    )


def analyze_topics(
    snapshots: Sequence[TopicSnapshot],
    distance: Optional[SemanticDistance] = None,
    options: Optional[AnalysisConfig] = None,
) -> List[AnalysisResult]:
    """Analyze independent topics in parallel, results in snapshot order

    Topic runs share no state; a malformed snapshot raises as it would alone.
    """
    options = options or AnalysisConfig()
    return _fan_out(lambda snapshot: analyze_snapshot(snapshot, distance, options), snapshots, options.max_workers)
