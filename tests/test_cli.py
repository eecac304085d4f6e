"""
Tests for the analyze_topic command line script
"""

import importlib.util
import json
from pathlib import Path

import pytest

SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "analyze_topic.py"


@pytest.fixture
def cli():
    spec = importlib.util.spec_from_file_location("analyze_topic_script", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def snapshot_file(tmp_path):
    snapshot = {
        "topic_id": "city-budget",
        "propositions": [{"id": "p1", "text": "Expand bus rapid transit"}],
        "votes": [
            {"participant_id": "a", "proposition_id": "p1", "stance_value": 0.9,
             "timestamp": "2025-03-01T12:00:00Z", "justification_text": "Faster commutes"},
            {"participant_id": "b", "proposition_id": "p1", "stance_value": 0.7,
             "timestamp": "2025-03-01T12:01:00Z"},
            {"participant_id": "c", "proposition_id": "p1", "stance_value": 7,
             "timestamp": "2025-03-01T12:02:00Z"},
        ],
    }
    path = tmp_path / "snapshot.json"
    path.write_text(json.dumps(snapshot))
    return path


class TestAnalyzeTopicScript:

    def test_json_output(self, cli, snapshot_file, capsys):
        assert cli.main([str(snapshot_file)]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["topic_id"] == "city-budget"
        assert data["agreement_zones"][0]["consensus_level"] == "high"
        assert data["rejected_records"][0]["kind"] == "vote"

    def test_markdown_output(self, cli, snapshot_file, capsys):
        assert cli.main([str(snapshot_file), "--format", "markdown"]) == 0
        assert "# Common Ground Analysis" in capsys.readouterr().out

    def test_strict_fails_on_rejected_record(self, cli, snapshot_file, capsys):
        assert cli.main([str(snapshot_file), "--strict"]) == 1
        assert "Invalid snapshot" in capsys.readouterr().err

    def test_invalid_threshold(self, cli, snapshot_file, capsys):
        assert cli.main([str(snapshot_file), "--nuance-threshold", "2"]) == 2
        assert "Cannot start analysis" in capsys.readouterr().err

    def test_missing_file(self, cli, tmp_path, capsys):
        assert cli.main([str(tmp_path / "missing.json")]) == 2
