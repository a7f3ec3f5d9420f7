"""Proposer pool: independent raters producing candidate decisions."""

import asyncio
import json
import logging
import math
import re
import time
from dataclasses import dataclass, field

from config.config_loader import PromptsConfig, RaterConfig
from committee.errors import RaterFailure
from committee.events import EventSink, emit_safely
from committee.models import AgentProposal, DeliberationInput, GenerationMetadata, Party
from committee.providers.base import AIProvider, GenerationRequest, ProviderError

logger = logging.getLogger(__name__)

_MIN_WEIGHT = 0.1
_MAX_WEIGHT = 1.0
_TEMPERATURE_STEP = 0.1
_FALLBACK_RATIONALE_CHARS = 1000

_JSON_BLOCK = re.compile(r"\{.*\}", re.DOTALL)
_CONFIDENCE_PATTERN = re.compile(r"confidence[:\s]+([0-9]*\.?[0-9]+)", re.IGNORECASE)


def extract_json(text: str) -> dict:
    """Return the first {...} object found in text.

    Raises:
        ValueError: If no JSON object can be decoded.
    """
    match = _JSON_BLOCK.search(text)
    if not match:
        raise ValueError("No JSON object found in response")
    parsed = json.loads(match.group(0))
    if not isinstance(parsed, dict):
        raise ValueError("Response JSON is not an object")
    return parsed


def normalize_confidence(value: object, default: float) -> float:
    """Coerce a model-reported confidence into [0, 1]. Percentages are accepted."""
    try:
        confidence = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    if not math.isfinite(confidence):
        return default
    if 1.0 < confidence <= 100.0:
        confidence /= 100.0
    return min(max(confidence, 0.0), 1.0)


def format_context(context: dict) -> str:
    if not context:
        return "(none)"
    return json.dumps(context, indent=2, ensure_ascii=False, default=str)


@dataclass
class ParsedProposal:
    winner_choice: str
    confidence: float
    rationale: str
    evidence: list[str] = field(default_factory=list)
    structured: bool = True


def _resolve_party(token: str, party_a: Party, party_b: Party) -> str | None:
    """Map a symbolic or literal winner token to a real party id."""
    normalized = re.sub(r"[\s_-]+", "", token).lower()
    if normalized in ("partya", "a", party_a.id.lower(), re.sub(r"\s+", "", party_a.name).lower()):
        return party_a.id
    if normalized in ("partyb", "b", party_b.id.lower(), re.sub(r"\s+", "", party_b.name).lower()):
        return party_b.id
    return None


def _count_mentions(text: str, party: Party, label: str) -> int:
    count = len(re.findall(rf"\bparty\s*{label}\b", text))
    name = party.name.strip().lower()
    if name and name not in (f"party {label}", f"party{label}"):
        count += len(re.findall(rf"\b{re.escape(name)}\b", text))
    return count


def parse_proposal_response(content: str, party_a: Party, party_b: Party) -> ParsedProposal:
    """Parse a rater response, falling back to heuristics on free text."""
    try:
        parsed = extract_json(content)
        raw_winner = parsed.get("winner") or parsed.get("winnerId") or parsed.get("winner_id")
        if raw_winner:
            winner = _resolve_party(str(raw_winner), party_a, party_b)
            if winner is None:
                raise ValueError(f"Unrecognised winner {raw_winner!r}")
        else:
            winner = party_a.id
        evidence = parsed.get("evidence")
        if not isinstance(evidence, list):
            evidence = parsed.get("citations") if isinstance(parsed.get("citations"), list) else []
        return ParsedProposal(
            winner_choice=winner,
            confidence=normalize_confidence(parsed.get("confidence"), 0.5),
            rationale=str(parsed.get("rationale") or parsed.get("reasoning") or "No rationale provided"),
            evidence=[str(item) for item in evidence if str(item).strip()],
        )
    except (ValueError, json.JSONDecodeError) as exc:
        logger.warning("Structured parse failed, using keyword fallback: %s", exc)
        return _fallback_parse(content, party_a, party_b)


def _fallback_parse(content: str, party_a: Party, party_b: Party) -> ParsedProposal:
    lowered = content.lower()
    a_mentions = _count_mentions(lowered, party_a, "a")
    b_mentions = _count_mentions(lowered, party_b, "b")
    winner = party_b.id if b_mentions > a_mentions else party_a.id

    match = _CONFIDENCE_PATTERN.search(content)
    confidence = normalize_confidence(match.group(1), 0.6) if match else 0.6

    return ParsedProposal(
        winner_choice=winner,
        confidence=confidence,
        rationale=content.strip()[:_FALLBACK_RATIONALE_CHARS],
        evidence=[],
        structured=False,
    )


class Proposer:
    """One rater: a provider plus persona, base temperature and voting weight."""

    def __init__(
        self,
        config: RaterConfig,
        provider: AIProvider,
        prompts: PromptsConfig,
        max_tokens: int | None = None,
    ) -> None:
        self._config = config
        self._provider = provider
        self._prompts = prompts
        self._max_tokens = max_tokens
        self._weight = min(max(config.weight, _MIN_WEIGHT), _MAX_WEIGHT)

    @property
    def rater_id(self) -> str:
        return self._config.id

    @property
    def name(self) -> str:
        return self._config.display_name

    @property
    def weight(self) -> float:
        return self._weight

    def update_weight(self, new_weight: float) -> None:
        old_weight = self._weight
        self._weight = min(max(new_weight, _MIN_WEIGHT), _MAX_WEIGHT)
        logger.info("Rater %s weight %.2f -> %.2f", self.rater_id, old_weight, self._weight)

    def temperature_for(self, index: int) -> float:
        return min(self._config.temperature + _TEMPERATURE_STEP * index, 1.0)

    def build_request(self, deliberation: DeliberationInput, temperature: float) -> GenerationRequest:
        a, b = deliberation.party_a, deliberation.party_b
        return GenerationRequest(
            system_prompt=self._prompts.proposer_system.format(
                persona=self._prompts.personas.get(self.rater_id, ""),
            ),
            user_prompt=self._prompts.proposer_user.format(
                subject_id=deliberation.subject_id,
                party_a_name=a.name,
                party_a_address=a.address or "n/a",
                party_a_description=a.description or "n/a",
                party_b_name=b.name,
                party_b_address=b.address or "n/a",
                party_b_description=b.description or "n/a",
                context=format_context(deliberation.context),
            ),
            temperature=temperature,
            max_tokens=self._max_tokens,
        )

    async def generate_proposals(
        self,
        deliberation: DeliberationInput,
        count: int,
        timeout_sec: float | None = None,
        sink: EventSink | None = None,
    ) -> list[AgentProposal]:
        """Generate up to `count` proposals. Failed attempts are logged and skipped."""
        proposals: list[AgentProposal] = []
        for index in range(count):
            try:
                proposal = await self._generate_single(deliberation, index, timeout_sec)
            except RaterFailure as exc:
                logger.warning(
                    "%s failed to generate proposal %d/%d: %s", self.name, index + 1, count, exc
                )
                continue
            proposals.append(proposal)
            logger.debug(
                "%s generated proposal %d/%d: %s (%.2f)",
                self.name, index + 1, count, proposal.winner_choice, proposal.confidence,
            )
            emit_safely(
                sink,
                "proposing",
                "proposal",
                proposal.summary(),
                token_usage=proposal.metadata.token_usage,
                processing_time_ms=proposal.metadata.latency_ms,
                proposal_id=proposal.id,
                rater_id=self.rater_id,
                winner=proposal.winner_choice,
                confidence=proposal.confidence,
            )
        return proposals

    async def _generate_single(
        self,
        deliberation: DeliberationInput,
        index: int,
        timeout_sec: float | None,
    ) -> AgentProposal:
        temperature = self.temperature_for(index)
        request = self.build_request(deliberation, temperature)
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(self._provider.generate(request), timeout=timeout_sec)
        except TimeoutError as exc:
            raise RaterFailure(self.rater_id, f"Timed out after {timeout_sec}s") from exc
        except ProviderError as exc:
            raise RaterFailure(self.rater_id, str(exc)) from exc
        except Exception as exc:
            raise RaterFailure(self.rater_id, f"Unexpected error: {exc}") from exc
        latency_ms = (time.monotonic() - start) * 1000

        parsed = parse_proposal_response(response.content, deliberation.party_a, deliberation.party_b)
        metadata = GenerationMetadata(
            temperature=temperature,
            max_tokens=request.max_tokens or 0,
            token_usage=response.token_usage,
            latency_ms=latency_ms,
            model=response.model,
        )
        try:
            return AgentProposal(
                id=f"{self.rater_id}_{deliberation.subject_id}_{int(time.time() * 1000)}_{index}",
                rater_id=self.rater_id,
                rater_name=self.name,
                subject_id=deliberation.subject_id,
                winner_choice=parsed.winner_choice,
                confidence=parsed.confidence,
                rationale=parsed.rationale,
                evidence=tuple(parsed.evidence),
                metadata=metadata,
            )
        except ValueError as exc:
            raise RaterFailure(self.rater_id, f"Invalid proposal: {exc}") from exc


class ProposerPool:
    """Fans proposal generation out across all raters in parallel."""

    def __init__(self, proposers: list[Proposer]) -> None:
        self._proposers = list(proposers)

    @property
    def proposers(self) -> list[Proposer]:
        return list(self._proposers)

    def weights(self) -> dict[str, float]:
        return {p.rater_id: p.weight for p in self._proposers}

    def get(self, rater_id: str) -> Proposer | None:
        return next((p for p in self._proposers if p.rater_id == rater_id), None)

    async def _run_one(
        self,
        proposer: Proposer,
        deliberation: DeliberationInput,
        per_agent: int,
        timeout_sec: float | None,
        sink: EventSink | None,
    ) -> list[AgentProposal]:
        try:
            return await proposer.generate_proposals(deliberation, per_agent, timeout_sec, sink)
        except Exception as exc:
            logger.warning("Rater %s failed entirely: %s", proposer.rater_id, exc)
            return []

    async def generate_all(
        self,
        deliberation: DeliberationInput,
        per_agent: int,
        timeout_sec: float | None = None,
        sink: EventSink | None = None,
    ) -> list[AgentProposal]:
        logger.info("Generating proposals from %d raters (%d each)", len(self._proposers), per_agent)
        groups = await asyncio.gather(
            *(self._run_one(p, deliberation, per_agent, timeout_sec, sink) for p in self._proposers)
        )
        proposals = [proposal for group in groups for proposal in group]
        logger.info(
            "Proposal phase complete: %d proposals from %d raters",
            len(proposals),
            sum(1 for g in groups if g),
        )
        return proposals
