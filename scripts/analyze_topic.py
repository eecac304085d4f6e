#!/usr/bin/env python3
"""
Run the common ground engine on a topic snapshot file.

The snapshot is a JSON object with topic_id, propositions, votes,
term_observations and (optionally) participant_total. Definition distances
use the keyword reference implementation.

Usage:
    python scripts/analyze_topic.py snapshot.json --format markdown
"""

import argparse
import json
import os
import sys

from pydantic import ValidationError

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import get_logger
from deliberation.assembler import analyze_snapshot
from deliberation.export import EXPORT_FORMATS, export_analysis
from deliberation.models import AnalysisConfig, TopicSnapshot
from deliberation.protocols import KeywordDistance
from exceptions import InputValidationError

logger = get_logger(__name__).bind(component="analyze_topic_cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Common ground analysis for one topic snapshot")
    parser.add_argument("snapshot", help="Path to a topic snapshot JSON file")
    parser.add_argument("--format", choices=EXPORT_FORMATS, default="json",
                        help="Output format (default: json)")
    parser.add_argument("--cohesion-threshold", type=float,
                        help="Minimum cosine similarity to merge participants")
    parser.add_argument("--visibility-threshold", type=float,
                        help="Minimum participant share for a viewpoint")
    parser.add_argument("--nuance-threshold", type=float,
                        help="Definition distance separating misunderstandings from disagreements")
    parser.add_argument("--neutral-band", type=float,
                        help="Half-width of the neutral stance band")
    parser.add_argument("--strict", action="store_true",
                        help="Fail on any malformed record instead of skipping it")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        with open(args.snapshot, "r") as f:
            snapshot = TopicSnapshot.model_validate(json.load(f))
        options = AnalysisConfig.from_settings(
            cohesion_threshold=args.cohesion_threshold,
            visibility_threshold=args.visibility_threshold,
            nuance_threshold=args.nuance_threshold,
            neutral_band=args.neutral_band,
            strict=args.strict or None,
        )
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        print(f"Cannot start analysis: {e}", file=sys.stderr)
        return 2

    try:
        result = analyze_snapshot(snapshot, distance=KeywordDistance(), options=options)
    except InputValidationError as e:
        print(f"Invalid snapshot: {e}", file=sys.stderr)
        for failure in e.failures:
            print(f"  [{failure.kind} #{failure.index}] {failure.record_id}: {failure.reason}", file=sys.stderr)
        return 1

    for failure in result.rejected_records:
        logger.warning("rejected record", kind=failure.kind, index=failure.index, reason=failure.reason)

    print(export_analysis(result, args.format).data)
    return 0


if __name__ == "__main__":
    sys.exit(main())
