"""
Tests for misunderstanding detection

A term group is either a misunderstanding (close definitions), an escalated
disagreement (distant definitions), or nothing (too little data). Never both.
"""

import math

import pytest

from deliberation.misunderstanding import (
    ESCALATED,
    INSUFFICIENT,
    MISUNDERSTANDING,
    classify_term_group,
    detect_misunderstandings,
    display_term,
    group_observations,
    merge_definitions,
)
from deliberation.protocols import KeywordDistance
from exceptions import InvalidDistanceError

FREEDOM_A = "Freedom means absence of government interference"
FREEDOM_B = "Freedom means having real opportunities to act"


def _classify(observations, distance, options, participant_total=10):
    return classify_term_group(
        observations, distance, options, "topic-1", "area-p1", participant_total
    )


class TestMergeDefinitions:
    """Definition merging and participant disjointness"""

    def test_identical_definitions_merge(self, make_observation):
        observations = [
            make_observation("freedom", "No coercion.", ["a"]),
            make_observation("Freedom", "no  coercion", ["b"]),
        ]
        definitions = merge_definitions(observations)
        assert len(definitions) == 1
        assert definitions[0].participants == ("a", "b")

    def test_participant_with_two_definitions_is_removed(self, make_observation):
        observations = [
            make_observation("freedom", FREEDOM_A, ["a", "b", "x"]),
            make_observation("freedom", FREEDOM_B, ["c", "x"]),
        ]
        definitions = merge_definitions(observations)
        members = [set(d.participants) for d in definitions]
        assert {"a", "b"} in members
        assert {"c"} in members
        assert all("x" not in m for m in members)

    def test_ordered_by_size_then_text(self, make_observation):
        observations = [
            make_observation("freedom", "zeta sense", ["a"]),
            make_observation("freedom", "alpha sense", ["b"]),
            make_observation("freedom", "mid sense", ["c", "d"]),
        ]
        assert [d.definition for d in merge_definitions(observations)] == [
            "mid sense", "alpha sense", "zeta sense"
        ]


class TestGrouping:

    def test_terms_normalized(self, make_observation):
        observations = [
            make_observation("Freedom", FREEDOM_A, ["a"]),
            make_observation(" freedom ", FREEDOM_B, ["b"]),
            make_observation("equity", "fair shares", ["c"]),
        ]
        groups = group_observations(observations)
        assert list(groups) == ["equity", "freedom"]
        assert len(groups["freedom"]) == 2

    def test_display_term_most_common_spelling(self, make_observation):
        observations = [
            make_observation("Freedom", FREEDOM_A, ["a"]),
            make_observation("freedom", FREEDOM_B, ["b"]),
            make_observation("freedom", FREEDOM_B, ["c"]),
        ]
        assert display_term(observations) == "freedom"


class TestClassifyTermGroup:
    """Misunderstanding vs escalation"""

    def test_close_definitions_are_a_misunderstanding(self, make_observation, fixed_distance, options):
        """Two senses of 'freedom' at distance 0.20"""
        observations = [
            make_observation("freedom", FREEDOM_A, ["a", "b"]),
            make_observation("freedom", FREEDOM_B, ["c", "d"]),
        ]
        outcome = _classify(observations, fixed_distance({(FREEDOM_A, FREEDOM_B): 0.20}), options)

        assert outcome.classification == MISUNDERSTANDING
        assert outcome.disagreement is None
        misunderstanding = outcome.misunderstanding
        assert misunderstanding.term == "freedom"
        assert len(misunderstanding.definitions) == 2
        assert "freedom" in misunderstanding.clarification_suggestion
        assert misunderstanding.id.startswith("mis_")

    def test_distant_definitions_escalate(self, make_observation, fixed_distance, options):
        observations = [
            make_observation("freedom", FREEDOM_A, ["a", "b", "c", "d", "e"]),
            make_observation("freedom", FREEDOM_B, ["f", "g", "h", "i", "j"]),
        ]
        outcome = _classify(observations, fixed_distance({(FREEDOM_A, FREEDOM_B): 0.6}), options)

        assert outcome.classification == ESCALATED
        assert outcome.misunderstanding is None
        point = outcome.disagreement
        assert point.source == "term"
        assert point.term == "freedom"
        assert len(point.positions) == 2
        # 1 - 0.5 + 0.3 * 0.6
        assert point.polarization_score == pytest.approx(0.68)
        assert point.polarization_band == "moderate"

    def test_threshold_itself_escalates(self, make_observation, fixed_distance, options):
        """Distance exactly at the nuance threshold is a genuine split"""
        observations = [
            make_observation("freedom", FREEDOM_A, ["a", "b"]),
            make_observation("freedom", FREEDOM_B, ["c", "d"]),
        ]
        outcome = _classify(observations, fixed_distance(default=0.35), options, participant_total=4)
        assert outcome.classification == ESCALATED
        assert outcome.misunderstanding is None

    def test_max_distance_decides(self, make_observation, fixed_distance, options):
        observations = [
            make_observation("freedom", "sense one", ["a", "b"]),
            make_observation("freedom", "sense two", ["c", "d"]),
            make_observation("freedom", "sense three", ["e", "f"]),
        ]
        distance = fixed_distance({("sense one", "sense three"): 0.5}, default=0.1)
        outcome = _classify(observations, distance, options, participant_total=6)
        assert outcome.classification == ESCALATED
        assert outcome.max_distance == pytest.approx(0.5)
        assert len(outcome.disagreement.positions) == 3

    def test_escalated_without_visible_positions(self, make_observation, fixed_distance, options):
        """A 9/1 split escalates but the 10% side is not visible: no output"""
        observations = [
            make_observation("freedom", FREEDOM_A, [f"u{i}" for i in range(9)]),
            make_observation("freedom", FREEDOM_B, ["z"]),
        ]
        outcome = _classify(observations, fixed_distance(default=0.9), options)
        assert outcome.classification == ESCALATED
        assert outcome.disagreement is None
        assert outcome.misunderstanding is None

    def test_single_definition_is_insufficient(self, make_observation, fixed_distance, options):
        observations = [make_observation("freedom", FREEDOM_A, ["a", "b"])]
        distance = fixed_distance()
        outcome = _classify(observations, distance, options)
        assert outcome.classification == INSUFFICIENT
        assert distance.calls == []

    @pytest.mark.parametrize("bad", [math.nan, math.inf, "far"])
    def test_invalid_distance_raises(self, make_observation, fixed_distance, options, bad):
        observations = [
            make_observation("freedom", FREEDOM_A, ["a"]),
            make_observation("freedom", FREEDOM_B, ["b"]),
        ]
        with pytest.raises(InvalidDistanceError) as exc:
            _classify(observations, fixed_distance(default=bad), options)
        assert exc.value.area_id == "area-p1"

    def test_distance_error_becomes_invalid_distance(self, make_observation, options):
        class BrokenDistance:
            def distance(self, a, b):
                raise ConnectionError("embedding service unavailable")

        observations = [
            make_observation("freedom", FREEDOM_A, ["a"]),
            make_observation("freedom", FREEDOM_B, ["b"]),
        ]
        with pytest.raises(InvalidDistanceError) as exc:
            _classify(observations, BrokenDistance(), options)
        assert exc.value.term == "freedom"
        assert isinstance(exc.value.__cause__, ConnectionError)

    def test_out_of_range_distance_clamped(self, make_observation, fixed_distance, options):
        observations = [
            make_observation("freedom", FREEDOM_A, ["a"]),
            make_observation("freedom", FREEDOM_B, ["b"]),
        ]
        outcome = _classify(observations, fixed_distance(default=-0.4), options)
        assert outcome.max_distance == 0.0
        assert outcome.classification == MISUNDERSTANDING

    def test_detect_misunderstandings_per_term(self, make_observation, fixed_distance, options):
        observations = [
            make_observation("freedom", FREEDOM_A, ["a"]),
            make_observation("freedom", FREEDOM_B, ["b"]),
            make_observation("equity", "fair shares", ["c"]),
        ]
        outcomes = detect_misunderstandings(
            observations, fixed_distance(default=0.1), options, "topic-1", "area-p1", 3
        )
        assert [o.term for o in outcomes] == ["equity", "freedom"]
        assert [o.classification for o in outcomes] == [INSUFFICIENT, MISUNDERSTANDING]


class TestKeywordDistance:

    def test_shared_keywords(self):
        distance = KeywordDistance()
        assert distance.distance("public transit funding", "public transit funding") == 0.0
        assert distance.distance("public transit", "transit expansion") == pytest.approx(1 - 1 / 3)

    def test_keywordless_texts(self):
        distance = KeywordDistance()
        assert distance.distance("it is", "It is ") == 0.0
        assert distance.distance("it is", "was it") == 1.0
