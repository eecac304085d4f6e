"""Shared fixtures for common ground engine tests"""

from datetime import datetime, timedelta, timezone

import pytest

from deliberation.models import AnalysisConfig, PropositionInput, TermObservation, VoteInput

BASE_TIME = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class FixedDistance:
    """Semantic distance returning preset values per definition pair"""

    def __init__(self, distances=None, default=0.0):
        self.distances = {frozenset(pair): value for pair, value in (distances or {}).items()}
        self.default = default
        self.calls = []

    def distance(self, a, b):
        self.calls.append((a, b))
        return self.distances.get(frozenset((a, b)), self.default)


@pytest.fixture
def options():
    return AnalysisConfig(max_workers=1)


@pytest.fixture
def make_vote():
    """Factory: make_vote("u1", "p1", 0.8, text="because", minutes=5)"""
    def _make(participant_id, proposition_id, stance, text=None, minutes=0, **fields):
        return VoteInput(
            participant_id=participant_id,
            proposition_id=proposition_id,
            stance_value=stance,
            justification_text=text,
            timestamp=BASE_TIME + timedelta(minutes=minutes),
            **fields,
        )
    return _make


@pytest.fixture
def make_proposition():
    def _make(proposition_id, text=None, **fields):
        return PropositionInput(id=proposition_id, text=text or f"Proposition {proposition_id}", **fields)
    return _make


@pytest.fixture
def make_observation():
    def _make(term, definition, participants, **fields):
        return TermObservation(term=term, definition_text=definition, participants=participants, **fields)
    return _make


@pytest.fixture
def block_votes(make_vote):
    """Factory for blocks of participants voting the same stance vector

    block_votes("s", 45, {"p1": 1.0, "p2": 0.9}) -> 90 votes from s00..s44
    """
    def _make(prefix, count, stances, text=None):
        votes = []
        for i in range(count):
            pid = f"{prefix}{i:02d}"
            for proposition_id, stance in stances.items():
                votes.append(make_vote(pid, proposition_id, stance, text=text, minutes=i))
        return votes
    return _make


@pytest.fixture
def fixed_distance():
    return FixedDistance
