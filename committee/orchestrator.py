"""Committee orchestration: propose, judge, synthesize, escalate, record."""

import asyncio
import logging
import time
from dataclasses import dataclass

from config.config_loader import CommitteeConfig, validate_committee_config
from committee.consensus import ConsensusSynthesizer
from committee.coordinator import DecisionCoordinator
from committee.errors import (
    DeliberationInProgress,
    DeliberationTimeout,
    InsufficientProposals,
    ValidationError,
)
from committee.events import EventSink, emit_safely
from committee.jury_panel import JuryRunner
from committee.models import (
    AgentProposal,
    CommitteeDecision,
    ConsensusResult,
    CostBreakdown,
    DeliberationInput,
    DeliberationMetrics,
    Evaluation,
    JuryConsensusResult,
    TokenUsage,
    Verdict,
    token_cost,
)
from committee.pairwise_judge import PairwiseJudge, build_pairwise_evaluations
from committee.proposers import ProposerPool
from committee.repository import DecisionRepository
from committee.rule_judge import RuleJudge

logger = logging.getLogger(__name__)

AGREEMENT_REWARD = 0.05
DISAGREEMENT_PENALTY = 0.02


@dataclass
class _RunSettings:
    min_proposals: int
    per_agent: int
    consensus_threshold: float
    enable_early_exit: bool


def _sum_usage(usages: list[TokenUsage]) -> TokenUsage:
    total = TokenUsage()
    for usage in usages:
        total = total + usage
    return total


class CommitteeOrchestrator:
    """Runs one full deliberation per subject, gated by the coordinator."""

    def __init__(
        self,
        pool: ProposerPool,
        synthesizer: ConsensusSynthesizer,
        config: CommitteeConfig,
        rule_judge: RuleJudge | None = None,
        pairwise_judge: PairwiseJudge | None = None,
        jury_runner: JuryRunner | None = None,
        coordinator: DecisionCoordinator | None = None,
        repository: DecisionRepository | None = None,
        sink: EventSink | None = None,
        judge_rounds: int | None = None,
    ) -> None:
        self._pool = pool
        self._synthesizer = synthesizer
        self._config = config
        self._rule_judge = rule_judge or RuleJudge()
        self._pairwise_judge = pairwise_judge
        self._jury_runner = jury_runner
        self._coordinator = coordinator or DecisionCoordinator()
        self._repository = repository
        self._sink = sink
        self._judge_rounds = judge_rounds

    @property
    def coordinator(self) -> DecisionCoordinator:
        return self._coordinator

    def _resolve(self, deliberation: DeliberationInput) -> _RunSettings:
        """Merge per-call overrides with the committee config and validate both.

        Raises:
            ValidationError: Before any external call is made.
        """
        validate_committee_config(self._config)

        if not deliberation.subject_id.strip():
            raise ValidationError("subject_id cannot be empty")
        a, b = deliberation.party_a, deliberation.party_b
        if not a.id.strip() or not b.id.strip():
            raise ValidationError("Both parties need an id")
        if a.id == b.id:
            raise ValidationError(f"Parties must be distinct, both are {a.id!r}")
        if not self._pool.proposers:
            raise ValidationError("No raters configured")
        if self._config.judge_mode in ("pairwise", "both") and self._pairwise_judge is None:
            raise ValidationError(f"Judge mode {self._config.judge_mode!r} needs a pairwise judge")

        def _pick(override, default):
            return default if override is None else override

        settings = _RunSettings(
            min_proposals=_pick(deliberation.min_proposals, self._config.min_proposals),
            per_agent=_pick(deliberation.max_proposals_per_agent, self._config.max_proposals_per_agent),
            consensus_threshold=_pick(deliberation.consensus_threshold, self._config.consensus_threshold),
            enable_early_exit=_pick(deliberation.enable_early_exit, self._config.enable_early_exit),
        )
        if settings.min_proposals < 1:
            raise ValidationError(f"min_proposals must be >= 1, got {settings.min_proposals}")
        if settings.per_agent < 1:
            raise ValidationError(f"max_proposals_per_agent must be >= 1, got {settings.per_agent}")
        if not 0.0 <= settings.consensus_threshold <= 1.0:
            raise ValidationError(
                f"consensus_threshold must be within [0, 1], got {settings.consensus_threshold}"
            )
        return settings

    async def deliberate_and_decide(self, deliberation: DeliberationInput) -> CommitteeDecision:
        """Run a full deliberation for one subject.

        Raises:
            ValidationError: Invalid configuration or input.
            DeliberationInProgress: The subject is in flight or cooling down.
            InsufficientProposals: Too few proposals survived.
            SynthesisFailure: Consensus arithmetic failed.
            DeliberationTimeout: The run exceeded deliberation_timeout_sec.
        """
        settings = self._resolve(deliberation)
        subject_id = deliberation.subject_id

        if not self._coordinator.try_start(subject_id):
            raise DeliberationInProgress(subject_id)

        timeout = self._config.deliberation_timeout_sec
        decision: CommitteeDecision | None = None
        try:
            if timeout:
                decision = await asyncio.wait_for(self._run(deliberation, settings), timeout=timeout)
            else:
                decision = await self._run(deliberation, settings)
        except TimeoutError as exc:
            logger.error("Deliberation for %s timed out after %ss", subject_id, timeout)
            raise DeliberationTimeout(f"Deliberation for {subject_id} exceeded {timeout}s") from exc
        except Exception as exc:
            logger.error("Deliberation for %s failed: %s", subject_id, exc)
            raise
        finally:
            # Cancellation lands here too; the subject must never stay in flight.
            if decision is None:
                self._coordinator.set_cooldown(subject_id, self._config.failure_cooldown_ms)
            else:
                self._coordinator.finish(subject_id, self._config.cooldown_ms)
        return decision

    async def _run(self, deliberation: DeliberationInput, settings: _RunSettings) -> CommitteeDecision:
        start = time.monotonic()
        subject_id = deliberation.subject_id
        logger.info("Starting deliberation for %s", subject_id)

        emit_safely(self._sink, "proposing", "progress", "Collecting proposals")
        proposals = await self._pool.generate_all(
            deliberation, settings.per_agent, self._config.call_timeout_sec, self._sink
        )
        if len(proposals) < settings.min_proposals:
            raise InsufficientProposals(len(proposals), settings.min_proposals)

        emit_safely(self._sink, "judging", "progress", f"Judging {len(proposals)} proposals")
        evaluations, judge_usage = await self._judge(proposals)

        emit_safely(self._sink, "synthesizing", "progress", "Synthesizing consensus")
        consensus, synth_usage = await self._synthesizer.synthesize_with_usage(
            proposals, evaluations, self._sink
        )

        final_winner = consensus.winner_choice
        jury_result: JuryConsensusResult | None = None
        jury_usage = TokenUsage()
        below_threshold = consensus.confidence_level < settings.consensus_threshold
        early_exit = below_threshold and settings.enable_early_exit

        jury_runner = self._jury_runner
        if below_threshold and not settings.enable_early_exit and jury_runner is not None:
            jury_result, jury_usage, final_winner = await self._escalate(
                jury_runner, deliberation, proposals, consensus, final_winner
            )

        proposer_usage = _sum_usage([p.metadata.token_usage for p in proposals])
        cost = CostBreakdown(
            proposer_tokens=proposer_usage.total,
            judge_tokens=judge_usage.total,
            synthesizer_tokens=synth_usage.total,
            jury_tokens=jury_usage.total,
            total_cost_usd=(
                sum(p.metadata.cost_estimate() for p in proposals)
                + token_cost(judge_usage)
                + token_cost(synth_usage)
                + token_cost(jury_usage)
            ),
        )
        metrics = DeliberationMetrics(
            total_proposals=len(proposals),
            total_evaluations=len(evaluations),
            deliberation_time_ms=(time.monotonic() - start) * 1000,
            consensus_level=consensus.metrics.unanimity_level,
            average_proposal_confidence=sum(p.confidence for p in proposals) / len(proposals),
            cost=cost,
            early_exit_triggered=early_exit,
            escalated_to_jury=jury_result is not None,
        )
        decision = CommitteeDecision(
            id=deliberation.deliberation_id or f"committee_{subject_id}_{int(time.time() * 1000)}",
            subject_id=subject_id,
            final_winner=final_winner,
            proposals=proposals,
            evaluations=evaluations,
            consensus=consensus,
            method=self._synthesizer.method,
            metrics=metrics,
            jury_result=jury_result,
        )

        if self._repository is not None:
            try:
                self._repository.save(decision)
            except Exception as exc:
                logger.warning("Could not save decision %s: %s", decision.id, exc)

        self._update_weights(proposals, final_winner)
        logger.info(
            "Deliberation for %s complete: %s (confidence %.4f) in %.1fs",
            subject_id, final_winner, consensus.confidence_level, metrics.deliberation_time_ms / 1000,
        )
        return decision

    async def _judge(self, proposals: list[AgentProposal]) -> tuple[list[Evaluation], TokenUsage]:
        mode = self._config.judge_mode
        rule_evaluations = self._rule_judge.evaluate_all(proposals) if mode in ("rule", "both") else None
        usage = TokenUsage()

        if mode == "rule":
            evaluations = rule_evaluations or []
        elif self._pairwise_judge is None:
            raise ValidationError(f"Judge mode {mode!r} needs a pairwise judge")
        else:
            comparisons = await self._pairwise_judge.compare_all(proposals, self._judge_rounds, self._sink)
            usage = _sum_usage([c.token_usage for c in comparisons])
            evaluations = build_pairwise_evaluations(proposals, comparisons, rule_evaluations)

        for e in evaluations:
            emit_safely(
                self._sink,
                "judging",
                "evaluation",
                f"Proposal {e.proposal_id} scored {e.overall:.3f}",
                proposal_id=e.proposal_id,
                score=e.overall,
                judge=e.judge,
            )
        return evaluations, usage

    async def _escalate(
        self,
        jury_runner: JuryRunner,
        deliberation: DeliberationInput,
        proposals: list[AgentProposal],
        consensus: ConsensusResult,
        final_winner: str,
    ) -> tuple[JuryConsensusResult | None, TokenUsage, str]:
        logger.info(
            "Consensus confidence %.4f below threshold, escalating %s to jury",
            consensus.confidence_level, deliberation.subject_id,
        )
        emit_safely(self._sink, "jury", "progress", "Escalating to jury deliberation")
        try:
            jury_result, usage = await jury_runner(deliberation, proposals, self._sink)
        except Exception as exc:
            logger.warning("Jury deliberation failed, keeping committee winner: %s", exc)
            return None, TokenUsage(), final_winner

        verdict_party = {
            Verdict.A: deliberation.party_a.id,
            Verdict.B: deliberation.party_b.id,
        }.get(jury_result.decision)
        if verdict_party is not None and verdict_party in {p.winner_choice for p in proposals}:
            if verdict_party != final_winner:
                logger.info("Jury verdict overrides committee winner: %s -> %s", final_winner, verdict_party)
            final_winner = verdict_party
        return jury_result, usage, final_winner

    def _update_weights(self, proposals: list[AgentProposal], final_winner: str) -> None:
        for proposal in proposals:
            proposer = self._pool.get(proposal.rater_id)
            if proposer is None:
                continue
            if proposal.winner_choice == final_winner:
                proposer.update_weight(proposer.weight + AGREEMENT_REWARD)
            else:
                proposer.update_weight(proposer.weight - DISAGREEMENT_PENALTY)
        self._synthesizer.update_agent_weights(self._pool.weights())
