"""Rich console output and markdown file save for committee decisions."""

import logging
import re
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from committee.models import AgentProposal, CommitteeDecision, DeliberationInput

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def _rationale_preview(proposal: AgentProposal, words: int = 50) -> str:
    """Return first N words of a rationale."""
    all_words = proposal.rationale.split()
    preview = " ".join(all_words[:words])
    if len(all_words) > words:
        preview += "..."
    return preview


def _party_label(choice: str, deliberation: DeliberationInput | None) -> str:
    if deliberation is None:
        return choice
    if choice == deliberation.party_a.id:
        return f"{deliberation.party_a.name} (A)"
    if choice == deliberation.party_b.id:
        return f"{deliberation.party_b.name} (B)"
    return choice


def print_proposals(proposals: list[AgentProposal], deliberation: DeliberationInput | None = None) -> None:
    """Print one panel per proposal."""
    console.print(Rule("[bold cyan]Proposals[/bold cyan]"))
    for p in proposals:
        console.print(
            Panel(
                _rationale_preview(p),
                title=f"[bold]{p.rater_name}[/bold] -> {_party_label(p.winner_choice, deliberation)}",
                subtitle=f"confidence {p.confidence:.2f} | {p.metadata.latency_ms / 1000:.1f}s",
                border_style="dim",
            )
        )


def print_evaluations(decision: CommitteeDecision) -> None:
    """Print the judge scores as a table."""
    by_id = {p.id: p for p in decision.proposals}
    table = Table(title="Evaluations", show_lines=False)
    table.add_column("Rater")
    table.add_column("Choice")
    table.add_column("Overall", justify="right")
    table.add_column("Completeness", justify="right")
    table.add_column("Consistency", justify="right")
    table.add_column("Evidence", justify="right")
    for e in decision.evaluations:
        proposal = by_id.get(e.proposal_id)
        table.add_row(
            proposal.rater_name if proposal else e.proposal_id,
            proposal.winner_choice if proposal else "-",
            f"{e.overall:.3f}",
            f"{e.completeness:.3f}",
            f"{e.consistency:.3f}",
            f"{e.evidence_quality:.3f}",
        )
    console.print(table)


def print_decision(decision: CommitteeDecision, deliberation: DeliberationInput | None = None) -> None:
    """Print the final decision panel and the reasoning text."""
    consensus = decision.consensus
    flags = consensus.quality_flags
    console.print(Rule("[bold green]Committee Decision[/bold green]"))
    console.print(
        Panel(
            f"Winner: [bold]{_party_label(decision.final_winner, deliberation)}[/bold]\n"
            f"Confidence: {consensus.confidence_level:.4f} | "
            f"Uncertainty: {consensus.residual_uncertainty:.4f} | "
            f"Strength: {consensus.consensus_strength()}\n"
            f"Method: {decision.method} | Unanimity: {consensus.metrics.unanimity_level:.2f}",
            border_style="green" if not flags.requires_human_review else "yellow",
        )
    )
    console.print(
        Text(
            f"Proposals: {decision.metrics.total_proposals} | "
            f"Duration: {decision.metrics.deliberation_time_ms / 1000:.1f}s | "
            f"Cost: ${decision.metrics.cost.total_cost_usd:.4f}"
            + (" | Escalated to jury" if decision.metrics.escalated_to_jury else ""),
            style="dim",
        )
    )
    if flags.requires_human_review:
        console.print("[yellow]Flagged for human review[/yellow]")
    console.print(Markdown(consensus.synthesized_reasoning))


def render_markdown(decision: CommitteeDecision) -> str:
    """Render a full decision report as markdown."""
    consensus = decision.consensus
    metrics = decision.metrics
    flags = consensus.quality_flags

    lines: list[str] = [
        f"# Committee Decision: {decision.subject_id}",
        "",
        f"**Date:** {decision.created_at.strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Winner:** {decision.final_winner}",
        f"**Method:** {decision.method}",
        f"**Confidence:** {consensus.confidence_level:.4f}",
        f"**Residual uncertainty:** {consensus.residual_uncertainty:.4f}",
        f"**Proposals:** {metrics.total_proposals}",
        f"**Duration:** {metrics.deliberation_time_ms / 1000:.1f}s",
        f"**Estimated cost:** ${metrics.cost.total_cost_usd:.4f}",
        "",
        "---",
        "",
        "## Proposals",
        "",
    ]
    for p in decision.proposals:
        lines.append(f"### {p.rater_name}: {p.winner_choice} ({p.confidence:.2f})")
        lines.append("")
        lines.append(p.rationale)
        lines.append("")
        if p.evidence:
            lines.extend(f"- {item}" for item in p.evidence)
            lines.append("")
        lines.append(
            f"*Model: {p.metadata.model} | Latency: {p.metadata.latency_ms / 1000:.2f}s"
            + (f" | Tokens: {p.metadata.token_usage.total}" if p.metadata.token_usage.total else "")
            + "*"
        )
        lines.append("")

    lines += [
        "## Evaluations",
        "",
        "| Proposal | Overall | Completeness | Consistency | Evidence |",
        "|---|---|---|---|---|",
    ]
    lines += [
        f"| {e.proposal_id} | {e.overall:.3f} | {e.completeness:.3f} "
        f"| {e.consistency:.3f} | {e.evidence_quality:.3f} |"
        for e in decision.evaluations
    ]
    lines.append("")

    lines += ["## Consensus", "", consensus.synthesized_reasoning, ""]
    if consensus.merged_evidence:
        lines += ["### Evidence", ""]
        lines += [
            f"- {e.snippet} (relevance {e.relevance:.2f}, credibility {e.credibility:.2f})"
            for e in consensus.merged_evidence
        ]
        lines.append("")
    if consensus.alternative_choices:
        lines += ["### Alternatives", ""]
        lines += [f"- {alt.choice}: {alt.reasoning}" for alt in consensus.alternative_choices]
        lines.append("")

    raised = [name for name, value in vars(flags).items() if value]
    lines += ["### Quality flags", "", ", ".join(raised) if raised else "none", ""]

    if decision.jury_result is not None:
        jury = decision.jury_result
        lines += [
            f"## Jury ({jury.decision.value}, confidence {jury.confidence:.2f})",
            "",
            jury.reasoning,
            "",
        ]
        for d in jury.dissent or []:
            lines.append(f"- Dissent from {d.name} ({d.position.value}): {d.reasoning}")
        lines.append("")

    return "\n".join(lines)


def save_to_file(decision: CommitteeDecision, output_dir: Path, slug_override: str | None = None) -> Path:
    """Save the decision report as a markdown file.

    Returns:
        Path to the saved file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    slug = slug_override if slug_override is not None else _slug(decision.subject_id)
    filepath = output_dir / f"{timestamp}_{slug}.md"

    filepath.write_text(render_markdown(decision), encoding="utf-8")
    logger.info("Decision saved to: %s", filepath)
    return filepath
