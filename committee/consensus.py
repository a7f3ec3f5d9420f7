"""Consensus synthesis: one decision with calibrated confidence from many proposals.

Everything that bears on the decision (winner, confidence, uncertainty,
metrics, flags, alternatives) is plain arithmetic over the inputs. The only
model call is the optional reasoning text, which never feeds back into those
fields.
"""

import asyncio
import logging
import re
from collections import Counter
from collections.abc import Mapping

from config.config_loader import PromptsConfig, SynthesizerConfig
from committee.errors import SynthesisFailure
from committee.events import EventSink, emit_safely
from committee.models import (
    CONSENSUS_METHODS,
    AgentProposal,
    AlternativeChoice,
    ConsensusMetrics,
    ConsensusResult,
    Evaluation,
    EvidenceSource,
    QualityFlags,
    TokenUsage,
)
from committee.providers.base import AIProvider, GenerationRequest, ProviderError

logger = logging.getLogger(__name__)

APPROVAL_THRESHOLD = 0.7
MAX_MERGED_EVIDENCE = 10

_SNIPPET_CHARS = 100
_CONTRAST_MARKERS = ("however", "but", "although", "despite", "contrary")
_OPPOSITE_ADJECTIVES = (
    ("strong", "weak"),
    ("clear", "unclear"),
    ("reliable", "unreliable"),
    ("complete", "incomplete"),
    ("valid", "invalid"),
)
_SENTENCE_SPLIT = re.compile(r"[.!?]")


def _sentences(text: str) -> list[str]:
    return [s.strip() for s in _SENTENCE_SPLIT.split(text) if s.strip()]


def _has_word(text: str, word: str) -> bool:
    return re.search(rf"\b{re.escape(word)}\b", text) is not None


def _top(scores: dict[str, float]) -> tuple[str, float]:
    """Highest score; ties go to the choice seen first."""
    winner = max(scores, key=lambda choice: scores[choice])
    return winner, scores[winner]


def majority_vote(proposals: list[AgentProposal]) -> tuple[str, float]:
    votes: dict[str, float] = {}
    for p in proposals:
        votes[p.winner_choice] = votes.get(p.winner_choice, 0) + 1
    winner, count = _top(votes)
    logger.debug("Majority vote: %s (distribution %s)", winner, votes)
    return winner, count / len(proposals)


def borda_count(
    proposals: list[AgentProposal], evaluations: Mapping[str, Evaluation]
) -> tuple[str, float]:
    def _score(p: AgentProposal) -> float:
        evaluation = evaluations.get(p.id)
        return evaluation.overall if evaluation else 0.0

    n = len(proposals)
    ranked = sorted(proposals, key=_score, reverse=True)
    points: dict[str, float] = {p.winner_choice: 0.0 for p in proposals}
    for rank, p in enumerate(ranked):
        points[p.winner_choice] += n - 1 - rank

    winner, winner_points = _top(points)
    max_possible = n * (n - 1) / 2
    confidence = winner_points / max_possible if max_possible > 0 else 1.0
    logger.debug("Borda count: %s (%s of %s points)", winner, winner_points, max_possible)
    return winner, confidence


def weighted_vote(
    proposals: list[AgentProposal],
    evaluations: Mapping[str, Evaluation],
    rater_weights: Mapping[str, float],
) -> tuple[str, float]:
    scores: dict[str, float] = {}
    total = 0.0
    for p in proposals:
        evaluation = evaluations.get(p.id)
        evaluation_score = evaluation.overall if evaluation else 0.5
        weight = rater_weights.get(p.rater_id, 1.0) * evaluation_score * p.confidence
        scores[p.winner_choice] = scores.get(p.winner_choice, 0.0) + weight
        total += weight

    winner, winner_weight = _top(scores)
    confidence = winner_weight / total if total > 0 else 0.5
    logger.debug("Weighted vote: %s (%.3f of %.3f)", winner, winner_weight, total)
    return winner, confidence


def approval_vote(
    proposals: list[AgentProposal], evaluations: Mapping[str, Evaluation]
) -> tuple[str, float]:
    """Falls back to majority_vote when no proposal clears the threshold."""
    approvals: dict[str, float] = {}
    for p in proposals:
        evaluation = evaluations.get(p.id)
        score = evaluation.overall if evaluation else 0.0
        if score >= APPROVAL_THRESHOLD or p.confidence >= APPROVAL_THRESHOLD:
            approvals[p.winner_choice] = approvals.get(p.winner_choice, 0) + 1

    if not approvals:
        logger.warning("No proposals met the approval threshold, falling back to majority vote")
        return majority_vote(proposals)

    winner, count = _top(approvals)
    bonus = 0.2 if count >= 2 else 0.0
    return winner, min(1.0, count / len(proposals) + bonus)


def merge_evidence(proposals: list[AgentProposal], winner: str) -> list[EvidenceSource]:
    merged: dict[str, EvidenceSource] = {}
    for p in proposals:
        if p.winner_choice != winner:
            continue
        quality = p.quality_score()
        for item in p.evidence:
            source = merged.get(item)
            if source is None:
                snippet = item if len(item) <= _SNIPPET_CHARS else item[: _SNIPPET_CHARS - 3] + "..."
                source = merged[item] = EvidenceSource(item, 0.0, 0.0, snippet)
            source.relevance += p.confidence * 0.3
            source.credibility += quality * 0.3

    for source in merged.values():
        source.relevance = min(1.0, source.relevance)
        source.credibility = min(1.0, source.credibility)

    ranked = sorted(merged.values(), key=lambda s: s.relevance + s.credibility, reverse=True)
    return ranked[:MAX_MERGED_EVIDENCE]


def _conflicting_points(proposals: list[AgentProposal]) -> list[str]:
    conflicts: list[str] = []
    for p in proposals:
        sentences = _sentences(p.rationale)
        for marker in _CONTRAST_MARKERS:
            hit = next((s for s in sentences if _has_word(s.lower(), marker)), None)
            if hit and hit not in conflicts:
                conflicts.append(hit)
        for positive, negative in _OPPOSITE_ADJECTIVES:
            hit = next(
                (s for s in sentences
                 if _has_word(s.lower(), positive) and _has_word(s.lower(), negative)),
                None,
            )
            if hit and hit not in conflicts:
                conflicts.append(hit)
    return conflicts[:3]


def compute_metrics(proposals: list[AgentProposal], winner: str) -> ConsensusMetrics:
    n = len(proposals)
    unanimity = sum(1 for p in proposals if p.winner_choice == winner) / n

    mean_confidence = sum(p.confidence for p in proposals) / n
    variance = sum((p.confidence - mean_confidence) ** 2 for p in proposals) / n

    seen: set[str] = set()
    shared: set[str] = set()
    for p in proposals:
        for item in p.evidence:
            if item in seen:
                shared.add(item)
            seen.add(item)
    overlap = len(shared) / len(seen) if seen else 0.0

    sentence_counts = Counter(
        s.lower() for p in proposals for s in _sentences(p.rationale) if len(s) > 10
    )
    shared_points = [s for s, count in sentence_counts.items() if count >= 2][:5]
    unique_insights = [s for s, count in sentence_counts.items() if count == 1 and len(s) > 20][:3]

    return ConsensusMetrics(
        unanimity_level=unanimity,
        confidence_variance=variance,
        evidence_overlap=overlap,
        shared_points=shared_points,
        conflicting_points=_conflicting_points(proposals),
        unique_insights=unique_insights,
    )


def calibrate(base_confidence: float, metrics: ConsensusMetrics) -> tuple[float, float]:
    """Return (adjusted_confidence, residual_uncertainty); the pair sums to exactly 1."""
    adjustment = (
        0.1 * (1 - metrics.unanimity_level)
        + 0.1 * metrics.confidence_variance
        - 0.05 * metrics.evidence_overlap
        + min(0.1, 0.02 * len(metrics.conflicting_points))
    )
    adjustment = max(-0.2, min(0.2, adjustment))
    adjusted = round(max(0.1, min(0.9, base_confidence - adjustment)), 4)
    residual = round(1 - adjusted, 4)
    logger.debug(
        "Calibration: base=%.4f adjustment=%.4f adjusted=%.4f residual=%.4f",
        base_confidence, adjustment, adjusted, residual,
    )
    return adjusted, residual


def alternative_choices(proposals: list[AgentProposal], winner: str) -> list[AlternativeChoice]:
    alternatives: list[AlternativeChoice] = []
    for choice in dict.fromkeys(p.winner_choice for p in proposals if p.winner_choice != winner):
        supporters = [p for p in proposals if p.winner_choice == choice]
        mean_confidence = sum(p.confidence for p in supporters) / len(supporters)
        alternatives.append(
            AlternativeChoice(
                choice=choice,
                support=len(supporters) / len(proposals),
                mean_confidence=mean_confidence,
                reasoning=(
                    f"{len(supporters)} raters supported this choice "
                    f"with average confidence {mean_confidence:.2f}"
                ),
            )
        )
    return alternatives


class ConsensusSynthesizer:
    """Runs the five synthesis steps for a configured voting method."""

    def __init__(
        self,
        method: str = "weighted_voting",
        config: SynthesizerConfig | None = None,
        agent_weights: Mapping[str, float] | None = None,
        provider: AIProvider | None = None,
        prompts: PromptsConfig | None = None,
        timeout_sec: float | None = None,
    ) -> None:
        if method not in CONSENSUS_METHODS:
            raise ValueError(f"Unknown consensus method: {method}")
        self.method = method
        self._config = config or SynthesizerConfig()
        self._agent_weights = dict(agent_weights or {})
        self._provider = provider
        self._prompts = prompts
        self._timeout_sec = timeout_sec

    @property
    def agent_weights(self) -> dict[str, float]:
        return dict(self._agent_weights)

    def update_agent_weights(self, weights: Mapping[str, float]) -> None:
        self._agent_weights.update(weights)
        logger.debug("Agent weights now %s", self._agent_weights)

    def determine_winner(
        self, proposals: list[AgentProposal], evaluations: Mapping[str, Evaluation]
    ) -> tuple[str, float]:
        if self.method == "majority":
            return majority_vote(proposals)
        if self.method == "borda":
            return borda_count(proposals, evaluations)
        if self.method == "approval":
            return approval_vote(proposals, evaluations)
        return weighted_vote(proposals, evaluations, self._agent_weights)

    async def synthesize(
        self,
        proposals: list[AgentProposal],
        evaluations: list[Evaluation],
        sink: EventSink | None = None,
    ) -> ConsensusResult:
        result, _ = await self.synthesize_with_usage(proposals, evaluations, sink)
        return result

    async def synthesize_with_usage(
        self,
        proposals: list[AgentProposal],
        evaluations: list[Evaluation],
        sink: EventSink | None = None,
    ) -> tuple[ConsensusResult, TokenUsage]:
        """Synthesize and also report tokens spent on the reasoning text.

        Raises:
            SynthesisFailure: On an empty proposal list or any unexpected error.
        """
        if not proposals:
            raise SynthesisFailure("Cannot synthesize consensus from zero proposals")

        logger.info(
            "Synthesizing consensus over %d proposals (%s)", len(proposals), self.method
        )
        try:
            by_id = {e.proposal_id: e for e in evaluations}
            winner, base_confidence = self.determine_winner(proposals, by_id)
            evidence = merge_evidence(proposals, winner)
            metrics = compute_metrics(proposals, winner)
            reasoning, usage = await self._reasoning(proposals, winner, evidence)
            confidence, uncertainty = calibrate(base_confidence, metrics)
            flags = QualityFlags(
                minority_dissent=metrics.unanimity_level < 0.8,
                insufficient_evidence=any(len(p.evidence) < 2 for p in proposals),
                conflicting_evidence=len(metrics.conflicting_points) > 2,
                requires_human_review=(
                    uncertainty > self._config.uncertainty_threshold
                    or metrics.unanimity_level < 0.6
                ),
            )
            result = ConsensusResult(
                winner_choice=winner,
                confidence_level=confidence,
                residual_uncertainty=uncertainty,
                merged_evidence=evidence,
                synthesized_reasoning=reasoning,
                method=self.method,
                metrics=metrics,
                alternative_choices=alternative_choices(proposals, winner),
                quality_flags=flags,
            )
        except SynthesisFailure:
            raise
        except Exception as exc:
            logger.error("Consensus synthesis failed: %s", exc)
            raise SynthesisFailure(f"Consensus synthesis failed: {exc}") from exc

        logger.info(
            "Consensus: %s (confidence %.4f, uncertainty %.4f, %s)",
            result.winner_choice, result.confidence_level,
            result.residual_uncertainty, result.consensus_strength(),
        )
        emit_safely(
            sink,
            "synthesizing",
            "synthesis",
            f"Consensus reached on {result.winner_choice} "
            f"(confidence {result.confidence_level:.2f})",
            token_usage=usage,
            winner=result.winner_choice,
            confidence=result.confidence_level,
            method=self.method,
        )
        return result, usage

    def template_reasoning(
        self, proposals: list[AgentProposal], winner: str, evidence: list[EvidenceSource]
    ) -> str:
        supporters = [p for p in proposals if p.winner_choice == winner]
        mean_confidence = sum(p.confidence for p in supporters) / len(supporters)
        return (
            f"Committee consensus analysis determined {winner} as the winner using the "
            f"{self.method} consensus method. {len(supporters)} out of {len(proposals)} "
            f"raters supported this decision with average confidence {mean_confidence:.2f}. "
            f"The decision is supported by {len(evidence)} merged pieces of evidence."
        )

    async def _reasoning(
        self, proposals: list[AgentProposal], winner: str, evidence: list[EvidenceSource]
    ) -> tuple[str, TokenUsage]:
        if not (self._config.enable_ai_synthesis and self._provider and self._prompts):
            return self.template_reasoning(proposals, winner, evidence), TokenUsage()

        summaries = "\n".join(
            f"{i}. {p.rater_name}: chose {p.winner_choice} (confidence: {p.confidence:.2f})\n"
            f"   Rationale excerpt: {p.rationale[:200]}"
            for i, p in enumerate(proposals, 1)
        )
        evidence_summary = "\n".join(
            f"{i}. {e.source} (relevance: {e.relevance:.2f}, credibility: {e.credibility:.2f})"
            for i, e in enumerate(evidence[:5], 1)
        ) or "(none)"
        request = GenerationRequest(
            system_prompt="",
            user_prompt=self._prompts.synthesis.format(
                winner=winner,
                method=self.method,
                proposal_summaries=summaries,
                evidence_summary=evidence_summary,
            ),
            temperature=0.3,
        )
        try:
            response = await asyncio.wait_for(self._provider.generate(request), timeout=self._timeout_sec)
        except (ProviderError, TimeoutError) as exc:
            logger.warning("AI reasoning synthesis failed, using template: %s", exc)
            return self.template_reasoning(proposals, winner, evidence), TokenUsage()
        except Exception as exc:
            logger.warning("Unexpected AI reasoning failure, using template: %s", exc)
            return self.template_reasoning(proposals, winner, evidence), TokenUsage()

        text = response.content.strip()
        if not text:
            return self.template_reasoning(proposals, winner, evidence), response.token_usage
        return text, response.token_usage
