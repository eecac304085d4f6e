"""
Common Ground Models - Pydantic value objects for engine input and output

Inputs are validated at the engine boundary (one record at a time, so a bad
record can be rejected without losing the rest of the snapshot). Outputs are
frozen, produced fresh per analysis run, and serialize to a stable JSON schema:
participant collections are sorted tuples, never sets.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from config import config as settings
from deliberation.ids import RESERVED_AREA_PREFIXES

MORAL_FOUNDATIONS = (
    "care-harm",
    "fairness-cheating",
    "loyalty-betrayal",
    "authority-subversion",
    "sanctity-degradation",
    "liberty-oppression",
)

# Discrete alignment stances from the discussion service
ALIGNMENT_STANCE_VALUES = {
    "SUPPORT": 1.0,
    "OPPOSE": -1.0,
    "NUANCED": 0.0,
}

ConsensusLevel = Literal["high", "medium", "low"]
PolarizationBand = Literal["high", "moderate", "low"]


def _sorted_ids(values: Any) -> Tuple[str, ...]:
    """Strip, dedupe and sort participant ids"""
    if isinstance(values, str):
        raise ValueError("Expected a collection of participant ids, got a string")
    cleaned = set()
    for value in values:
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"Participant id must be a non-empty string, got {value!r}")
        cleaned.add(value.strip())
    return tuple(sorted(cleaned))


def _optional_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


# ========== Run Options ==========


class AnalysisConfig(BaseModel):
    """Per-run options, passed explicitly into every engine call

    Defaults are contractual: 0.75 cohesion, 0.20 visibility, 0.35 nuance and
    a +/-0.15 neutral band.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    cohesion_threshold: float = Field(0.75, ge=0.0, le=1.0)
    visibility_threshold: float = Field(0.20, ge=0.0, le=1.0)
    nuance_threshold: float = Field(0.35, ge=0.0, le=1.0)
    neutral_band: float = Field(0.15, ge=0.0, lt=1.0)
    # Weight of neutral votes in agreement_percentage (0 = support share only)
    neutral_weight: float = Field(0.5, ge=0.0, le=1.0)
    area_similarity_threshold: float = Field(0.2, ge=0.0, le=1.0)
    min_area_participants: int = Field(1, ge=1)
    max_workers: int = Field(4, ge=1)
    strict: bool = False

    @classmethod
    def from_settings(cls, **overrides: Any) -> "AnalysisConfig":
        """Build run options from environment defaults, with explicit overrides"""
        values = {
            "cohesion_threshold": settings.COHESION_THRESHOLD,
            "visibility_threshold": settings.VISIBILITY_THRESHOLD,
            "nuance_threshold": settings.NUANCE_THRESHOLD,
            "neutral_band": settings.NEUTRAL_BAND,
            "neutral_weight": settings.NEUTRAL_WEIGHT,
            "area_similarity_threshold": settings.AREA_SIMILARITY_THRESHOLD,
            "max_workers": settings.MAX_WORKERS,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


# ========== Inputs ==========


class PropositionInput(BaseModel):
    """Proposition metadata owned by the caller"""
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    text: str
    area_id: Optional[str] = None
    moral_foundations: Tuple[str, ...] = ()

    @field_validator("id", "text")
    @classmethod
    def validate_non_empty(cls, v: str) -> str:
        """Ensure required strings are non-empty"""
        if not v or not v.strip():
            raise ValueError("Field cannot be empty")
        return v.strip()

    @field_validator("area_id")
    @classmethod
    def validate_area_id(cls, v: Optional[str]) -> Optional[str]:
        """Explicit areas must not collide with derived or topic-wide area ids"""
        v = _optional_text(v)
        if v is not None and v.startswith(RESERVED_AREA_PREFIXES):
            raise ValueError(f"area_id {v!r} uses a reserved prefix ({', '.join(RESERVED_AREA_PREFIXES)})")
        return v

    @field_validator("moral_foundations", mode="before")
    @classmethod
    def validate_moral_foundations(cls, v: Any) -> Tuple[str, ...]:
        if v is None:
            return ()
        tags = set()
        for tag in v:
            normalized = str(tag).strip().lower()
            if normalized not in MORAL_FOUNDATIONS:
                raise ValueError(f"Unknown moral foundation: {tag!r}")
            tags.add(normalized)
        return tuple(sorted(tags))


class VoteInput(BaseModel):
    """One participant's stance on one proposition

    stance_value runs from -1 (strongly oppose) to +1 (strongly support).
    """
    model_config = ConfigDict(frozen=True, extra="ignore")

    participant_id: str
    proposition_id: str
    stance_value: float = Field(ge=-1.0, le=1.0, allow_inf_nan=False)
    timestamp: datetime
    justification_text: Optional[str] = None
    underlying_value: Optional[str] = None
    underlying_assumption: Optional[str] = None

    @field_validator("participant_id", "proposition_id")
    @classmethod
    def validate_non_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Field cannot be empty")
        return v.strip()

    @field_validator("justification_text", "underlying_value", "underlying_assumption")
    @classmethod
    def validate_optional_text(cls, v: Optional[str]) -> Optional[str]:
        return _optional_text(v)

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, v: datetime) -> datetime:
        """Naive timestamps are taken as UTC so all votes compare"""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @classmethod
    def from_likert(cls, value: int, scale: int = 5, **fields: Any) -> "VoteInput":
        """Build a vote from a 1..scale rating mapped linearly onto [-1, 1]

        A rating of 1 is -1.0, the midpoint is 0.0 and `scale` is +1.0.
        Remaining fields (participant_id, proposition_id, timestamp, ...)
        are passed through.
        """
        if scale < 2:
            raise ValueError("scale must be at least 2")
        if not 1 <= value <= scale:
            raise ValueError(f"Rating must be between 1 and {scale}, got {value}")
        stance = -1.0 + 2.0 * (value - 1) / (scale - 1)
        return cls(stance_value=stance, **fields)

    @classmethod
    def from_alignment(cls, stance: str, **fields: Any) -> "VoteInput":
        """Build a vote from a SUPPORT / OPPOSE / NUANCED alignment"""
        key = stance.strip().upper()
        if key not in ALIGNMENT_STANCE_VALUES:
            raise ValueError(f"Unknown alignment stance: {stance!r}")
        return cls(stance_value=ALIGNMENT_STANCE_VALUES[key], **fields)


class TermObservation(BaseModel):
    """Pre-extracted usage of a term: who used it, and in which sense"""
    model_config = ConfigDict(frozen=True, extra="ignore")

    term: str
    definition_text: str
    participants: Tuple[str, ...]
    proposition_id: Optional[str] = None

    @field_validator("term", "definition_text")
    @classmethod
    def validate_non_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Field cannot be empty")
        return v.strip()

    @field_validator("participants", mode="before")
    @classmethod
    def validate_participants(cls, v: Any) -> Tuple[str, ...]:
        ids = _sorted_ids(v)
        if not ids:
            raise ValueError("Term observation needs at least one participant")
        return ids

    @field_validator("proposition_id")
    @classmethod
    def validate_proposition_id(cls, v: Optional[str]) -> Optional[str]:
        return _optional_text(v)


class TopicSnapshot(BaseModel):
    """Everything one analysis run reads, as handed over by the caller

    Records stay unparsed here so that analyze_topic can reject malformed
    ones individually instead of failing the whole snapshot.
    """
    model_config = ConfigDict(frozen=True, extra="ignore")

    topic_id: Optional[str] = None
    propositions: List[Any] = Field(default_factory=list)
    votes: List[Any] = Field(default_factory=list)
    term_observations: List[Any] = Field(default_factory=list)
    participant_total: Optional[int] = None


# ========== Outputs ==========


class Proposition(BaseModel):
    """Proposition-level stance summary

    The three participant tuples partition everyone who voted on the
    proposition. agreement_percentage is None when nobody voted.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    text: str
    agreement_percentage: Optional[float]
    supporting_participants: Tuple[str, ...] = ()
    opposing_participants: Tuple[str, ...] = ()
    neutral_participants: Tuple[str, ...] = ()

    @property
    def total_votes(self) -> int:
        return (
            len(self.supporting_participants)
            + len(self.opposing_participants)
            + len(self.neutral_participants)
        )

    @property
    def has_votes(self) -> bool:
        return self.agreement_percentage is not None


class Viewpoint(BaseModel):
    """A surfaced cluster of participants sharing a stance pattern"""
    model_config = ConfigDict(frozen=True)

    stance: str
    reasoning: str
    participants: Tuple[str, ...]
    share: float
    underlying_value: Optional[str] = None
    underlying_assumption: Optional[str] = None
    mean_stance: Dict[str, float] = Field(default_factory=dict)

    @field_validator("participants")
    @classmethod
    def validate_participants(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        if not v:
            raise ValueError("Viewpoint needs at least one participant")
        return v


class AgreementZone(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    area_id: str
    title: str
    description: str
    consensus_level: ConsensusLevel
    agreement_percentage: float
    participant_count: int
    propositions: Tuple[Proposition, ...]


class TermDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    definition: str
    participants: Tuple[str, ...]


class Misunderstanding(BaseModel):
    """Participants using one term in close but different senses"""
    model_config = ConfigDict(frozen=True)

    id: str
    area_id: str
    term: str
    definitions: Tuple[TermDefinition, ...]
    clarification_suggestion: Optional[str] = None


class Disagreement(BaseModel):
    """A divergence point: two or more disjoint, visible positions"""
    model_config = ConfigDict(frozen=True)

    id: str
    area_id: str
    topic: str
    description: str
    positions: Tuple[Viewpoint, ...]
    polarization_score: float = Field(ge=0.0, le=1.0)
    polarization_band: PolarizationBand
    moral_foundations: Tuple[str, ...] = ()
    proposition_ids: Tuple[str, ...] = ()
    source: Literal["stances", "term"] = "stances"
    term: Optional[str] = None

    @property
    def participant_count(self) -> int:
        return sum(len(position.participants) for position in self.positions)


class SkippedArea(BaseModel):
    """Diagnostic for an area left out of the analysis"""
    model_config = ConfigDict(frozen=True)

    area_id: str
    reason: str
    detail: str
    # True for expected exclusions (no data), False for real failures
    silent: bool = False


class RecordFailure(BaseModel):
    """One rejected input record"""
    model_config = ConfigDict(frozen=True)

    kind: Literal["topic", "proposition", "vote", "term_observation", "participant_total"]
    reason: str
    index: Optional[int] = None
    record_id: Optional[str] = None


class AnalysisResult(BaseModel):
    """Complete common ground analysis for one topic snapshot"""
    model_config = ConfigDict(frozen=True)

    topic_id: str
    participant_count: int
    agreement_zones: Tuple[AgreementZone, ...] = ()
    misunderstandings: Tuple[Misunderstanding, ...] = ()
    disagreements: Tuple[Disagreement, ...] = ()
    skipped_areas: Tuple[SkippedArea, ...] = ()
    rejected_records: Tuple[RecordFailure, ...] = ()
    overall_consensus_score: Optional[float] = None
    overall_polarization: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the transport schema"""
        return self.model_dump(mode="json")

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @property
    def failed_areas(self) -> List[SkippedArea]:
        """Skipped areas that represent failures rather than missing data"""
        return [area for area in self.skipped_areas if not area.silent]
