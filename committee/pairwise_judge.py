"""Head-to-head proposal judging by a model, with position/length/identity bias controls."""

import asyncio
import itertools
import logging
import random
from collections import Counter

from config.config_loader import JudgeConfig, PromptsConfig
from committee.errors import JudgeParseFailure
from committee.events import EventSink, emit_safely
from committee.models import (
    CRITERIA,
    AgentProposal,
    CriterionScores,
    Evaluation,
    PairwiseComparison,
    PairwiseJudgment,
    PairwiseResult,
    SideScores,
    TokenUsage,
)
from committee.proposers import extract_json, normalize_confidence
from committee.providers.base import AIProvider, GenerationRequest, ProviderError

logger = logging.getLogger(__name__)

MAX_RATIONALE_CHARS = 500
TRUNCATION_MARKER = "... [truncated for length normalization]"
_MASKED_NAMES = ("Agent Alpha", "Agent Beta")
_SAMPLE_REASONS = 5


def neutral_judgment(reason: str) -> PairwiseJudgment:
    return PairwiseJudgment(
        winner="tie",
        confidence=0.5,
        reasoning=[reason, "Defaulting to tie"],
        scores=SideScores(),
        criteria=CriterionScores(),
    )


def _side_scores(raw: object) -> SideScores:
    if not isinstance(raw, dict):
        return SideScores()
    return SideScores(
        A=normalize_confidence(raw.get("A", 0.5), 0.5),
        B=normalize_confidence(raw.get("B", 0.5), 0.5),
    )


def parse_judgment(content: str) -> PairwiseJudgment:
    """Parse one round's JSON verdict.

    Raises:
        JudgeParseFailure: If the response carries no usable JSON object, or
            its fields have the wrong shape.
    """
    try:
        return _judgment_from(extract_json(content))
    except (AttributeError, TypeError, ValueError) as exc:
        raise JudgeParseFailure(f"Unparseable judgment: {exc}") from exc


def _judgment_from(data: dict) -> PairwiseJudgment:
    winner = str(data.get("winner", "tie")).strip()
    winner = {"a": "A", "b": "B"}.get(winner.lower(), "tie")

    reasoning = data.get("reasoning")
    if isinstance(reasoning, str):
        reasoning = [reasoning]
    elif not isinstance(reasoning, list):
        reasoning = [str(data["key_differences"])] if data.get("key_differences") else ["Analysis completed"]

    criteria_raw = data.get("criteria_scores")
    if not isinstance(criteria_raw, dict):
        criteria_raw = {}
    criteria = CriterionScores(**{name: _side_scores(criteria_raw.get(name)) for name in CRITERIA})

    return PairwiseJudgment(
        winner=winner,  # type: ignore[arg-type]
        confidence=normalize_confidence(data.get("confidence"), 0.5),
        reasoning=[str(r) for r in reasoning],
        scores=_side_scores(data.get("overall_scores")),
        criteria=criteria,
    )


def aggregate_judgments(
    proposal_a_id: str,
    proposal_b_id: str,
    judgments: list[PairwiseJudgment],
) -> PairwiseComparison:
    """Plurality across rounds. Confidence is discounted by round disagreement."""
    if not judgments:
        return PairwiseComparison(
            proposal_a_id=proposal_a_id,
            proposal_b_id=proposal_b_id,
            winner="tie",
            scores=SideScores(),
            criteria=CriterionScores(),
            reasoning=["No rounds could be judged"],
            confidence=0.0,
            consensus_strength=0.0,
            rounds=0,
            win_counts={"A": 0, "B": 0, "tie": 0},
        )

    counts = Counter(j.winner for j in judgments)
    wins = {"A": counts["A"], "B": counts["B"], "tie": counts["tie"]}
    winner = "tie"
    if wins["A"] > wins["B"] and wins["A"] > wins["tie"]:
        winner = "A"
    elif wins["B"] > wins["A"] and wins["B"] > wins["tie"]:
        winner = "B"

    n = len(judgments)
    consensus_strength = max(wins.values()) / n
    mean_confidence = sum(j.confidence for j in judgments) / n

    def _mean(sides: list[SideScores]) -> SideScores:
        return SideScores(A=sum(s.A for s in sides) / n, B=sum(s.B for s in sides) / n)

    criteria = CriterionScores(
        **{name: _mean([getattr(j.criteria, name) for j in judgments]) for name in CRITERIA}
    )
    samples = [reason for j in judgments for reason in j.reasoning][:_SAMPLE_REASONS]
    token_usage = TokenUsage()
    for j in judgments:
        token_usage = token_usage + j.token_usage

    return PairwiseComparison(
        proposal_a_id=proposal_a_id,
        proposal_b_id=proposal_b_id,
        winner=winner,  # type: ignore[arg-type]
        scores=_mean([j.scores for j in judgments]),
        criteria=criteria,
        reasoning=[
            f"Aggregated {n} rounds of judgment",
            f"Win distribution: A={wins['A']}, B={wins['B']}, tie={wins['tie']}",
            f"Consensus strength: {consensus_strength:.2f}",
            *samples,
        ],
        confidence=mean_confidence * consensus_strength,
        consensus_strength=consensus_strength,
        rounds=n,
        win_counts=wins,
        token_usage=token_usage,
    )


class PairwiseJudge:
    """Runs repeated judgments of a proposal pair and aggregates them."""

    name = "pairwise"

    def __init__(
        self,
        provider: AIProvider,
        prompts: PromptsConfig,
        config: JudgeConfig | None = None,
        rng: random.Random | None = None,
        timeout_sec: float | None = None,
    ) -> None:
        self._provider = provider
        self._prompts = prompts
        self._config = config or JudgeConfig()
        self._rng = rng or random.Random()
        self._timeout_sec = timeout_sec

    def rounds_for(self, rounds: int | None) -> int:
        if not self._config.multiple_rounds:
            return 1
        return max(1, rounds if rounds is not None else self._config.rounds)

    def _rationale(self, proposal: AgentProposal) -> str:
        if self._config.normalize_length and len(proposal.rationale) > MAX_RATIONALE_CHARS:
            return proposal.rationale[:MAX_RATIONALE_CHARS] + TRUNCATION_MARKER
        return proposal.rationale

    def build_request(self, first: AgentProposal, second: AgentProposal) -> GenerationRequest:
        if self._config.mask_agent_names:
            label_a, label_b = _MASKED_NAMES
        else:
            label_a, label_b = first.rater_name, second.rater_name
        return GenerationRequest(
            system_prompt=self._prompts.judge_system,
            user_prompt=self._prompts.judge_user.format(
                label_a=label_a,
                winner_a=first.winner_choice,
                confidence_a=f"{first.confidence:.2f}",
                rationale_a=self._rationale(first),
                evidence_a="; ".join(first.evidence) or "none",
                label_b=label_b,
                winner_b=second.winner_choice,
                confidence_b=f"{second.confidence:.2f}",
                rationale_b=self._rationale(second),
                evidence_b="; ".join(second.evidence) or "none",
            ),
            temperature=self._config.temperature,
            max_tokens=self._config.max_tokens,
        )

    async def _judge_round(
        self, a: AgentProposal, b: AgentProposal, round_number: int
    ) -> PairwiseJudgment:
        swapped = self._config.randomize_order and self._rng.random() > 0.5
        first, second = (b, a) if swapped else (a, b)

        response = await asyncio.wait_for(
            self._provider.generate(self.build_request(first, second)),
            timeout=self._timeout_sec,
        )
        try:
            judgment = parse_judgment(response.content)
        except JudgeParseFailure as exc:
            logger.warning("Round %d judgment unparseable, counting as tie: %s", round_number, exc)
            judgment = neutral_judgment("Failed to parse structured judgment")
        judgment.token_usage = response.token_usage

        if swapped:
            judgment = judgment.swapped()
        return judgment

    async def compare(
        self,
        a: AgentProposal,
        b: AgentProposal,
        rounds: int | None = None,
        sink: EventSink | None = None,
    ) -> PairwiseComparison:
        total_rounds = self.rounds_for(rounds)
        logger.info("Pairwise comparison %s vs %s (%d rounds)", a.id, b.id, total_rounds)

        judgments: list[PairwiseJudgment] = []
        for round_number in range(1, total_rounds + 1):
            try:
                judgment = await self._judge_round(a, b, round_number)
            except TimeoutError:
                logger.warning("Judge round %d timed out after %ss, skipping", round_number, self._timeout_sec)
                continue
            except ProviderError as exc:
                logger.warning("Judge round %d failed, skipping: %s", round_number, exc)
                continue
            except Exception as exc:
                logger.warning("Judge round %d unexpected failure, skipping: %s", round_number, exc)
                continue
            judgments.append(judgment)
            logger.debug(
                "Round %d: winner=%s confidence=%.2f A=%.2f B=%.2f",
                round_number, judgment.winner, judgment.confidence,
                judgment.scores.A, judgment.scores.B,
            )

        comparison = aggregate_judgments(a.id, b.id, judgments)
        emit_safely(
            sink,
            "judging",
            "comparison",
            f"{a.rater_name} vs {b.rater_name}: {comparison.winner} "
            f"(confidence {comparison.confidence:.2f})",
            token_usage=comparison.token_usage,
            proposal_a_id=a.id,
            proposal_b_id=b.id,
            winner=comparison.winner,
        )
        return comparison

    async def compare_all(
        self,
        proposals: list[AgentProposal],
        rounds: int | None = None,
        sink: EventSink | None = None,
    ) -> list[PairwiseComparison]:
        """Judge every unordered pair. Independent pairs run concurrently."""
        semaphore = asyncio.Semaphore(max(1, self._config.max_concurrent_pairs))

        async def _bounded(a: AgentProposal, b: AgentProposal) -> PairwiseComparison:
            async with semaphore:
                return await self.compare(a, b, rounds, sink)

        pairs = list(itertools.combinations(proposals, 2))
        logger.info("Judging %d proposal pairs", len(pairs))
        return list(await asyncio.gather(*(_bounded(a, b) for a, b in pairs)))


def build_pairwise_evaluations(
    proposals: list[AgentProposal],
    comparisons: list[PairwiseComparison],
    rule_evaluations: list[Evaluation] | None = None,
) -> list[Evaluation]:
    """Turn pair outcomes into per-proposal evaluations.

    With rule evaluations: overall = 0.4 * rule overall + 0.6 * pairwise win rate.
    Without: overall is the win rate and the sub-scores come from the mean
    per-criterion scores the judge gave the proposal.
    """
    results: dict[str, list[PairwiseResult]] = {p.id: [] for p in proposals}
    criteria_seen: dict[str, list[tuple[float, float, float]]] = {p.id: [] for p in proposals}
    usage: dict[str, TokenUsage] = {p.id: TokenUsage() for p in proposals}

    for c in comparisons:
        outcome_a = {"A": "win", "B": "lose", "tie": "tie"}[c.winner]
        outcome_b = {"A": "lose", "B": "win", "tie": "tie"}[c.winner]
        results[c.proposal_a_id].append(PairwiseResult(c.proposal_b_id, outcome_a, c.scores.A))
        results[c.proposal_b_id].append(PairwiseResult(c.proposal_a_id, outcome_b, c.scores.B))
        criteria_seen[c.proposal_a_id].append(
            (c.criteria.reasoning.A, c.criteria.accuracy.A, c.criteria.evidence.A)
        )
        criteria_seen[c.proposal_b_id].append(
            (c.criteria.reasoning.B, c.criteria.accuracy.B, c.criteria.evidence.B)
        )
        # Split the pair's token cost across both sides.
        half = TokenUsage(
            prompt=c.token_usage.prompt // 2,
            completion=c.token_usage.completion // 2,
            total=c.token_usage.total // 2,
        )
        usage[c.proposal_a_id] = usage[c.proposal_a_id] + half
        usage[c.proposal_b_id] = usage[c.proposal_b_id] + half

    rule_by_id = {e.proposal_id: e for e in rule_evaluations or []}
    evaluations: list[Evaluation] = []
    for proposal in proposals:
        pair_results = results[proposal.id]
        wins = sum(1 for r in pair_results if r.result == "win")
        ties = sum(1 for r in pair_results if r.result == "tie")
        win_rate = (wins + 0.5 * ties) / len(pair_results) if pair_results else 0.5

        rule = rule_by_id.get(proposal.id)
        if rule is not None:
            evaluations.append(
                Evaluation(
                    proposal_id=proposal.id,
                    overall=min(1.0, 0.4 * rule.overall + 0.6 * win_rate),
                    completeness=rule.completeness,
                    consistency=rule.consistency,
                    evidence_quality=rule.evidence_quality,
                    judge="rule_based+pairwise",
                    rule_based_score=rule.overall,
                    pairwise_results=pair_results,
                    token_usage=usage[proposal.id],
                )
            )
            continue

        seen = criteria_seen[proposal.id]
        if seen:
            completeness, consistency, evidence_quality = (
                sum(values) / len(seen) for values in zip(*seen)
            )
        else:
            completeness = consistency = evidence_quality = 0.5
        evaluations.append(
            Evaluation(
                proposal_id=proposal.id,
                overall=win_rate,
                completeness=completeness,
                consistency=consistency,
                evidence_quality=evidence_quality,
                judge="pairwise",
                pairwise_results=pair_results,
                token_usage=usage[proposal.id],
            )
        )
    return evaluations
