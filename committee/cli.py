"""Click CLI: loads config, checks providers, runs one committee deliberation."""

import asyncio
import logging
import sys
from dataclasses import replace
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from config.config_loader import JUDGE_MODES, AppConfig, load_config, validate_committee_config
from committee.builder import build_all_providers, build_orchestrator
from committee.errors import CommitteeError, ValidationError
from committee.events import DeliberationEvent
from committee.healthcheck import run_health_checks
from committee.models import CONSENSUS_METHODS, CommitteeDecision, DeliberationInput, Party
from committee.output import print_decision, print_evaluations, print_proposals
from committee.providers.base import AIProvider
from committee.repository import MarkdownDecisionWriter

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _check_and_filter_providers(all_providers: dict[str, AIProvider]) -> dict[str, AIProvider]:
    """Run health checks, print results, and ask user what to do on failures.

    Returns the filtered dict of working providers. Exits if the user
    declines to continue or no providers pass.
    """
    console.print("\n[bold]Checking providers...[/bold]")
    results: dict[str, tuple[bool, str]] = asyncio.run(run_health_checks(all_providers))

    failed_names: list[str] = []
    for name in sorted(results):
        ok, err = results[name]
        if ok:
            console.print(f"  [green]OK  [/green] {name}")
        else:
            short_err = err.splitlines()[0][:120] if err else "unknown error"
            console.print(f"  [red]FAIL[/red] {name}: {short_err}")
            failed_names.append(name)

    if not failed_names:
        console.print()
        return all_providers

    working = {n: p for n, p in all_providers.items() if n not in failed_names}
    if not working:
        console.print("\n[bold red]Error:[/bold red] No providers passed the health check.")
        sys.exit(1)

    console.print(f"\n[yellow]{len(failed_names)} provider(s) failed:[/yellow] {', '.join(failed_names)}")
    console.print(f"Working providers: {', '.join(sorted(working))}")

    if not click.confirm("Continue with working providers only?", default=True):
        sys.exit(0)

    console.print()
    return working


def _apply_overrides(
    config: AppConfig,
    method: str | None,
    judge_mode: str | None,
    proposals: int | None,
    output_path: str | None,
    no_jury: bool,
) -> AppConfig:
    committee = config.committee
    if method:
        committee = replace(committee, consensus_method=method)
    if judge_mode:
        committee = replace(committee, judge_mode=judge_mode)
    if proposals is not None:
        committee = replace(committee, max_proposals_per_agent=proposals)
    if output_path:
        committee = replace(committee, output_dir=Path(output_path))
    validate_committee_config(committee)

    jury = replace(config.jury, enabled=False) if no_jury else config.jury
    return replace(config, committee=committee, jury=jury)


async def _run(
    config: AppConfig,
    providers: dict[str, AIProvider],
    deliberation: DeliberationInput,
    writer: MarkdownDecisionWriter,
) -> CommitteeDecision:
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("Collecting proposals...", total=None)

        class _ProgressSink:
            def emit(self, event: DeliberationEvent) -> None:
                if event.message_type == "progress":
                    progress.update(task, description=f"{event.content}...")
                elif event.message_type == "proposal":
                    progress.print(f"[green]OK[/green] {event.content}")

        orchestrator = build_orchestrator(config, providers, repository=writer, sink=_ProgressSink())
        return await orchestrator.deliberate_and_decide(deliberation)


@click.command()
@click.option("--subject-id", required=True, help="Identifier of the disputed subject")
@click.option("--party-a", required=True, help="Name of the first party")
@click.option("--party-b", required=True, help="Name of the second party")
@click.option("--party-a-description", default="", help="Short description of party A")
@click.option("--party-b-description", default="", help="Short description of party B")
@click.option("--context", "context_text", default=None, help="Free-text context for the raters")
@click.option("--context-file", type=click.Path(exists=True), help="Read context from a text/markdown file")
@click.option("--method", type=click.Choice(CONSENSUS_METHODS), default=None,
              help="Consensus method (default: from config)")
@click.option("--judge-mode", type=click.Choice(JUDGE_MODES), default=None,
              help="Judge mode (default: from config)")
@click.option("--proposals", type=int, default=None, help="Proposals per rater (default: from config)")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.option("--no-jury", is_flag=True, default=False, help="Never escalate to jury deliberation")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.option("--skip-health-check", is_flag=True, default=False,
              help="Skip the API connectivity check at startup")
def main(
    subject_id: str,
    party_a: str,
    party_b: str,
    party_a_description: str,
    party_b_description: str,
    context_text: str | None,
    context_file: str | None,
    method: str | None,
    judge_mode: str | None,
    proposals: int | None,
    output_path: str | None,
    no_jury: bool,
    verbose: bool,
    skip_health_check: bool,
) -> None:
    """Committee -- multi-rater deliberation on a two-party dispute.

    \b
    Examples:
      python -m committee.cli --subject-id c-42 --party-a Alice --party-b Bob
      python -m committee.cli --subject-id c-42 --party-a Alice --party-b Bob --method borda
      python -m committee.cli --subject-id c-42 --party-a Alice --party-b Bob \\
          --context-file dispute.md --judge-mode both --no-jury
    """
    load_dotenv()
    _setup_logging(verbose)

    try:
        config = load_config()
        config = _apply_overrides(config, method, judge_mode, proposals, output_path, no_jury)
    except (FileNotFoundError, ValidationError) as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)

    context: dict[str, str] = {}
    if context_file:
        context["notes"] = Path(context_file).read_text(encoding="utf-8").strip()
    elif context_text:
        context["notes"] = context_text

    all_providers = build_all_providers(config)
    if not all_providers:
        console.print("[bold red]Error:[/bold red] No providers available. Check API keys in .env.")
        sys.exit(1)

    if not skip_health_check:
        all_providers = _check_and_filter_providers(all_providers)

    deliberation = DeliberationInput(
        subject_id=subject_id,
        party_a=Party(id="partyA", name=party_a, description=party_a_description),
        party_b=Party(id="partyB", name=party_b, description=party_b_description),
        context=context,
    )

    console.print(
        f"\n[bold cyan]Committee[/bold cyan] -- {subject_id}: {party_a} vs {party_b} "
        f"[{config.committee.consensus_method}, judge={config.committee.judge_mode}]\n"
    )

    writer = MarkdownDecisionWriter(config.committee.output_dir)
    try:
        decision = asyncio.run(_run(config, all_providers, deliberation, writer))
    except CommitteeError as exc:
        console.print(f"[bold red]Deliberation failed:[/bold red] {exc}")
        sys.exit(1)

    print_proposals(decision.proposals, deliberation)
    print_evaluations(decision)
    print_decision(decision, deliberation)

    if writer.last_path is not None:
        console.print(f"\n[dim]Saved to: {writer.last_path}[/dim]")


if __name__ == "__main__":
    main()
