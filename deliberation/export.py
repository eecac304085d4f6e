"""Export common ground analysis as JSON or Markdown"""

from dataclasses import dataclass

from deliberation.models import AnalysisResult
from exceptions import InputValidationError

EXPORT_FORMATS = ("json", "markdown")


@dataclass
class ExportResult:
    data: str
    mime_type: str
    filename: str


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


def export_json(result: AnalysisResult) -> ExportResult:
    return ExportResult(
        data=result.to_json(indent=2),
        mime_type="application/json",
        filename=f"common-ground-{result.topic_id}.json",
    )


def export_markdown(result: AnalysisResult) -> ExportResult:
    """Human-readable report for sharing outside the platform"""
    lines = ["# Common Ground Analysis", ""]
    lines.append(f"**Topic:** {result.topic_id}")
    lines.append(f"**Participants:** {result.participant_count}")
    if result.overall_consensus_score is not None:
        lines.append(f"**Overall Consensus Score:** {result.overall_consensus_score:.0f}%")
    lines.append(f"**Overall Polarization:** {result.overall_polarization:.2f}")
    lines += ["", "---", ""]

    if result.agreement_zones:
        lines += [f"## Agreement Zones ({len(result.agreement_zones)})", ""]
        for index, zone in enumerate(result.agreement_zones, 1):
            lines += [f"### {index}. {zone.title}", "", zone.description, ""]
            lines.append(f"- **Consensus Level:** {zone.consensus_level}")
            lines.append(f"- **Participants:** {zone.participant_count}")
            lines.append(f"- **Propositions:** {len(zone.propositions)} included")
            lines.append("")

    if result.misunderstandings:
        lines += [f"## Identified Misunderstandings ({len(result.misunderstandings)})", ""]
        for index, item in enumerate(result.misunderstandings, 1):
            lines += [f'### {index}. Term: "{item.term}"', ""]
            lines.append("**Different Definitions:**")
            for definition in item.definitions:
                lines.append(
                    f'- "{definition.definition}" ({_plural(len(definition.participants), "participant")})'
                )
            lines.append("")
            if item.clarification_suggestion:
                lines += [f"*{item.clarification_suggestion}*", ""]

    if result.disagreements:
        lines += [f"## Genuine Disagreements ({len(result.disagreements)})", ""]
        for index, point in enumerate(result.disagreements, 1):
            lines += [f"### {index}. {point.topic}", "", point.description, ""]
            lines.append(
                f"**Polarization:** {point.polarization_score:.2f} ({point.polarization_band})"
            )
            lines.append("")
            for position in point.positions:
                lines.append(
                    f"- **{position.stance}** ({_plural(len(position.participants), 'participant')}): "
                    f"{position.reasoning}"
                )
                if position.underlying_value:
                    lines.append(f"  - Underlying value: {position.underlying_value}")
                if position.underlying_assumption:
                    lines.append(f"  - Underlying assumption: {position.underlying_assumption}")
            lines.append("")
            if point.moral_foundations:
                lines += [f"**Moral Foundations:** {', '.join(point.moral_foundations)}", ""]

    failed = result.failed_areas
    if failed:
        lines += [f"## Skipped Areas ({len(failed)})", ""]
        for area in failed:
            lines.append(f"- `{area.area_id}`: {area.reason} ({area.detail})")
        lines.append("")

    return ExportResult(
        data="\n".join(lines),
        mime_type="text/markdown",
        filename=f"common-ground-{result.topic_id}.md",
    )


def export_analysis(result: AnalysisResult, fmt: str) -> ExportResult:
    """Export an analysis in one of EXPORT_FORMATS

    Raises:
        InputValidationError: for an unsupported format
    """
    if fmt == "json":
        return export_json(result)
    if fmt == "markdown":
        return export_markdown(result)
    raise InputValidationError(f"Unsupported export format: {fmt}")
