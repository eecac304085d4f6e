"""Deliberation module - common ground analysis engine

Pure computation over a topic snapshot:
- Stance aggregation per proposition (support/oppose/neutral partitions)
- Viewpoint clustering per discussion area (single linkage on cosine similarity)
- Polarization scoring and consensus levels
- Misunderstanding detection (terminology vs genuine value splits)
- Assembly into agreement zones, misunderstandings and disagreements
"""

from deliberation.assembler import analyze_snapshot, analyze_topic, analyze_topics
from deliberation.export import export_analysis
from deliberation.models import (
    AgreementZone,
    AnalysisConfig,
    AnalysisResult,
    Disagreement,
    Misunderstanding,
    Proposition,
    PropositionInput,
    TermObservation,
    TopicSnapshot,
    Viewpoint,
    VoteInput,
)
from deliberation.protocols import KeywordDistance, SemanticDistance

__all__ = [
    "analyze_topic",
    "analyze_topics",
    "analyze_snapshot",
    "export_analysis",
    "AgreementZone",
    "AnalysisConfig",
    "AnalysisResult",
    "Disagreement",
    "Misunderstanding",
    "Proposition",
    "PropositionInput",
    "TermObservation",
    "TopicSnapshot",
    "Viewpoint",
    "VoteInput",
    "KeywordDistance",
    "SemanticDistance",
]
