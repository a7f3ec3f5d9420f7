"""Multi-round jury deliberation: parallel juror calls, anonymized peer review rounds."""

import asyncio
import logging
import random
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from config.config_loader import JuryConfig, PromptsConfig
from committee.events import EventSink, emit_safely
from committee.jury import UnanimousConsensus, plurality_position
from committee.models import (
    AgentProposal,
    DeliberationInput,
    DeliberationRound,
    JurorOpinion,
    JuryConsensusResult,
    JuryDeliberation,
    JuryStatement,
    Party,
    TokenUsage,
    Verdict,
)
from committee.proposers import extract_json, format_context, normalize_confidence
from committee.providers.base import AIProvider, GenerationRequest, GenerationResponse, ProviderError

logger = logging.getLogger(__name__)

_STATEMENT_KINDS = ("statement", "challenge", "question", "concession")

JuryRunner = Callable[
    [DeliberationInput, list[AgentProposal], EventSink | None],
    Awaitable[tuple[JuryConsensusResult, TokenUsage]],
]


@dataclass
class Juror:
    id: str
    name: str
    provider: AIProvider


def _anonymize_positions(
    opinions: list[JurorOpinion],
    exclude_juror_id: str,
    rng: random.Random,
) -> tuple[str, dict[str, str]]:
    """Shuffle peer opinions and label them anonymously.

    Returns:
        (anonymized_block, label→juror_id mapping)
    """
    peers = [o for o in opinions if o.juror_id != exclude_juror_id]
    rng.shuffle(peers)
    labels = [f"Juror {chr(ord('A') + i)}" for i in range(len(peers))]
    parts = [
        f"--- {label} ---\nPosition: {o.position.value} (confidence {o.confidence:.2f})\n{o.reasoning}"
        for label, o in zip(labels, peers)
    ]
    mapping = {label: o.juror_id for label, o in zip(labels, peers)}
    return "\n\n".join(parts) or "(no other jurors)", mapping


def _proposal_digest(proposals: list[AgentProposal], deliberation: DeliberationInput) -> str:
    names = {
        deliberation.party_a.id: "A",
        deliberation.party_b.id: "B",
    }
    lines = [
        f"- Proposal {i}: party {names.get(p.winner_choice, p.winner_choice)} "
        f"(confidence {p.confidence:.2f}): {p.rationale[:300]}"
        for i, p in enumerate(proposals, 1)
    ]
    return "\n".join(lines) or "(none)"


def parse_position(raw: object, party_a: Party, party_b: Party) -> Verdict:
    token = str(raw or "").strip().lower().replace(" ", "").replace("_", "")
    if token in ("a", "partya", party_a.id.lower(), party_a.name.lower().replace(" ", "")):
        return Verdict.A
    if token in ("b", "partyb", party_b.id.lower(), party_b.name.lower().replace(" ", "")):
        return Verdict.B
    return Verdict.UNDECIDED


def parse_juror_response(
    content: str,
    juror: Juror,
    previous: JurorOpinion,
    party_a: Party,
    party_b: Party,
) -> tuple[JurorOpinion, list[JuryStatement]]:
    """Parse one juror turn. Raises ValueError when no JSON object is present."""
    data = extract_json(content)
    reasoning = str(data.get("reasoning") or previous.reasoning)
    opinion = JurorOpinion(
        juror_id=juror.id,
        name=juror.name,
        position=parse_position(data.get("position"), party_a, party_b),
        confidence=normalize_confidence(data.get("confidence"), previous.confidence),
        reasoning=reasoning,
        key_arguments=[str(a) for a in data.get("key_arguments") or []],
        concerns=[str(c) for c in data.get("concerns") or []],
    )

    statements: list[JuryStatement] = []
    for raw in data.get("statements") or []:
        if not isinstance(raw, dict) or not str(raw.get("content", "")).strip():
            continue
        kind = str(raw.get("type", "statement")).lower()
        statements.append(
            JuryStatement(
                juror_id=juror.id,
                kind=kind if kind in _STATEMENT_KINDS else "statement",  # type: ignore[arg-type]
                content=str(raw["content"]).strip(),
            )
        )
    if not statements and reasoning:
        statements.append(JuryStatement(juror_id=juror.id, kind="statement", content=reasoning))
    return opinion, statements


async def _call_juror(
    juror: Juror,
    request: GenerationRequest,
    round_number: int,
    timeout_sec: float | None,
) -> GenerationResponse | ProviderError:
    """Call a single juror. Never raises; returns ProviderError on failure."""
    try:
        return await asyncio.wait_for(juror.provider.generate(request), timeout=timeout_sec)
    except TimeoutError:
        logger.warning("Juror %s timed out in round %d", juror.name, round_number)
        return ProviderError(juror.provider.name(), f"Timed out after {timeout_sec}s", timed_out=True)
    except ProviderError as exc:
        logger.warning("Juror %s failed in round %d: %s", juror.name, round_number, exc)
        return exc
    except Exception as exc:
        logger.warning("Juror %s unexpected failure in round %d: %s", juror.name, round_number, exc)
        return ProviderError(juror.provider.name(), f"Unexpected error: {exc}")


async def run_jury_deliberation(
    deliberation: DeliberationInput,
    proposals: list[AgentProposal],
    jurors: list[Juror],
    prompts: PromptsConfig,
    max_rounds: int = 5,
    temperature: float = 0.5,
    timeout_sec: float | None = None,
    sink: EventSink | None = None,
    rng: random.Random | None = None,
) -> tuple[JuryDeliberation, TokenUsage]:
    """Run jury rounds until the panel is unanimous or max_rounds is reached.

    Round 1 asks each juror for an initial position. Later rounds show each
    juror the other jurors' positions under shuffled labels. A juror whose turn
    fails or cannot be parsed keeps its previous opinion.

    Raises:
        ValueError: If no jurors are given.
    """
    if not jurors:
        raise ValueError("Jury deliberation needs at least one juror")
    rng = rng or random.Random()
    a, b = deliberation.party_a, deliberation.party_b
    start = time.monotonic()
    usage = TokenUsage()

    opinions = {
        j.id: JurorOpinion(juror_id=j.id, name=j.name, position=Verdict.UNDECIDED, confidence=0.0)
        for j in jurors
    }
    rounds: list[DeliberationRound] = []
    initial: list[JurorOpinion] | None = None

    for round_number in range(1, max_rounds + 1):
        requests: dict[str, GenerationRequest] = {}
        for juror in jurors:
            persona = prompts.personas.get(juror.id, "")
            if round_number == 1:
                user_prompt = prompts.juror_initial.format(
                    persona=persona,
                    party_a_name=a.name,
                    party_a_description=a.description or "n/a",
                    party_b_name=b.name,
                    party_b_description=b.description or "n/a",
                    context=format_context(deliberation.context),
                    proposal_digest=_proposal_digest(proposals, deliberation),
                )
            else:
                peer_block, label_map = _anonymize_positions(list(opinions.values()), juror.id, rng)
                logger.debug("Round %d anonymization map for %s: %s", round_number, juror.id, label_map)
                own = opinions[juror.id]
                user_prompt = prompts.juror_followup.format(
                    round=round_number,
                    persona=persona,
                    party_a_name=a.name,
                    party_a_description=a.description or "n/a",
                    party_b_name=b.name,
                    party_b_description=b.description or "n/a",
                    own_position=f"{own.position.value} (confidence {own.confidence:.2f})",
                    peer_positions=peer_block,
                )
            requests[juror.id] = GenerationRequest(
                system_prompt="",
                user_prompt=user_prompt,
                temperature=temperature,
            )

        logger.info("Starting jury round %d with %d jurors", round_number, len(jurors))
        results = await asyncio.gather(
            *(_call_juror(j, requests[j.id], round_number, timeout_sec) for j in jurors)
        )

        statements: list[JuryStatement] = []
        answered = 0
        for juror, result in zip(jurors, results):
            if isinstance(result, ProviderError):
                continue
            usage = usage + result.token_usage
            try:
                opinion, juror_statements = parse_juror_response(
                    result.content, juror, opinions[juror.id], a, b
                )
            except ValueError as exc:
                logger.warning("Juror %s gave an unparseable turn in round %d: %s", juror.name, round_number, exc)
                continue
            opinions[juror.id] = opinion
            statements.extend(juror_statements)
            answered += 1
            emit_safely(
                sink,
                "jury",
                "vote",
                f"{juror.name}: {opinion.position.value} (confidence {opinion.confidence:.2f})",
                token_usage=result.token_usage,
                round_number=round_number,
                juror_id=juror.id,
                position=opinion.position.value,
            )

        snapshot = list(opinions.values())
        positions = {o.position for o in snapshot}
        unanimous = len(positions) == 1 and Verdict.UNDECIDED not in positions
        rounds.append(
            DeliberationRound(number=round_number, statements=statements, jurors=snapshot, unanimous=unanimous)
        )
        if initial is None:
            initial = snapshot

        logger.info(
            "Jury round %d complete: %d/%d jurors answered, votes %s",
            round_number, answered, len(jurors),
            {k.value: v for k, v in rounds[-1].votes().items()},
        )
        if unanimous:
            logger.info("Jury unanimous after round %d", round_number)
            break

    final = rounds[-1].jurors
    unanimous = rounds[-1].unanimous
    return (
        JuryDeliberation(
            id=f"jury_{deliberation.subject_id}_{uuid.uuid4().hex[:8]}",
            subject_id=deliberation.subject_id,
            initial_jurors=initial or final,
            unanimous_decision=unanimous,
            rounds=rounds,
            final_verdict=final[0].position if unanimous else plurality_position(final),
            final_jurors=final,
            elapsed_ms=(time.monotonic() - start) * 1000,
        ),
        usage,
    )


def make_jury_runner(
    jurors: list[Juror],
    prompts: PromptsConfig,
    config: JuryConfig,
    timeout_sec: float | None = None,
    evaluator: UnanimousConsensus | None = None,
) -> JuryRunner:
    """Bind a panel to a callable: (input, proposals, sink) -> (result, tokens)."""
    evaluator = evaluator or UnanimousConsensus()

    async def _run(
        deliberation: DeliberationInput,
        proposals: list[AgentProposal],
        sink: EventSink | None = None,
    ) -> tuple[JuryConsensusResult, TokenUsage]:
        jury, usage = await run_jury_deliberation(
            deliberation,
            proposals,
            jurors,
            prompts,
            max_rounds=config.max_rounds,
            temperature=config.temperature,
            timeout_sec=timeout_sec,
            sink=sink,
        )
        return evaluator.reach_consensus(jury), usage

    return _run
