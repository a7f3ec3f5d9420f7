"""Dataclasses for the committee pipeline.

Construction-time invariants are enforced in ``__post_init__``; everything
else is plain data plus small derived helpers.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

Side = Literal["A", "B", "tie"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- Input ---------------------------------------------------------------


@dataclass(frozen=True)
class Party:
    id: str
    name: str
    description: str = ""
    address: str = ""


@dataclass
class DeliberationInput:
    subject_id: str
    party_a: Party
    party_b: Party
    context: dict[str, Any] = field(default_factory=dict)
    deliberation_id: str | None = None
    # Per-call overrides; None means "use the committee config".
    min_proposals: int | None = None
    max_proposals_per_agent: int | None = None
    consensus_threshold: float | None = None
    enable_early_exit: bool | None = None


# --- Proposals -----------------------------------------------------------


@dataclass(frozen=True)
class TokenUsage:
    prompt: int = 0
    completion: int = 0
    total: int = 0

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            prompt=self.prompt + other.prompt,
            completion=self.completion + other.completion,
            total=self.total + other.total,
        )


# USD per 1K tokens: (prompt, completion)
_COST_PER_1K: dict[str, tuple[float, float]] = {
    "gpt-5": (0.01, 0.03),
    "claude-sonnet-4-20250514": (0.003, 0.015),
    "gemini-2.5-pro": (0.0005, 0.0015),
}
_DEFAULT_COST_PER_1K = (0.002, 0.006)


def token_cost(usage: TokenUsage, model: str = "") -> float:
    """Approximate USD cost of the given usage; unknown models use a default rate."""
    prompt_rate, completion_rate = _COST_PER_1K.get(model.lower(), _DEFAULT_COST_PER_1K)
    return usage.prompt / 1000 * prompt_rate + usage.completion / 1000 * completion_rate


@dataclass(frozen=True)
class GenerationMetadata:
    temperature: float
    max_tokens: int
    token_usage: TokenUsage
    latency_ms: float
    model: str

    def cost_estimate(self) -> float:
        return token_cost(self.token_usage, self.model)


@dataclass(frozen=True)
class AgentProposal:
    id: str
    rater_id: str
    rater_name: str
    subject_id: str
    winner_choice: str
    confidence: float
    rationale: str
    evidence: tuple[str, ...]
    metadata: GenerationMetadata
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence must be between 0 and 1, got {self.confidence}")
        if not self.winner_choice or not self.winner_choice.strip():
            raise ValueError("Winner choice cannot be empty")
        if not self.rationale or not self.rationale.strip():
            raise ValueError("Rationale cannot be empty")
        # Accept any sequence but store an immutable tuple.
        object.__setattr__(self, "evidence", tuple(self.evidence))

    def is_high_confidence(self) -> bool:
        return self.confidence >= 0.8

    def quality_score(self) -> float:
        """Blend of evidence count, rationale length and confidence, in [0, 1]."""
        evidence_score = min(len(self.evidence) * 0.1, 0.3)
        rationale_score = min(len(self.rationale) / 500, 0.5)
        return evidence_score + rationale_score + self.confidence * 0.2

    def has_sufficient_evidence(self) -> bool:
        return len(self.evidence) >= 2 and len(self.rationale) >= 100

    def summary(self) -> str:
        return f"{self.rater_name}: {self.winner_choice} (confidence: {self.confidence:.2f})"


# --- Judging -------------------------------------------------------------


@dataclass(frozen=True)
class PairwiseResult:
    opponent_proposal_id: str
    result: Literal["win", "lose", "tie"]
    score: float


@dataclass
class Evaluation:
    proposal_id: str
    overall: float
    completeness: float
    consistency: float
    evidence_quality: float
    judge: str = "rule_based"
    rule_based_score: float | None = None
    pairwise_results: list[PairwiseResult] = field(default_factory=list)
    confidence: float = 1.0
    token_usage: TokenUsage = field(default_factory=TokenUsage)

    def __post_init__(self) -> None:
        for name in ("overall", "completeness", "consistency", "evidence_quality"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be between 0 and 1, got {value}")

    def pairwise_win_rate(self) -> float:
        """Wins count 1, ties 0.5. Zero when there are no pairwise results."""
        if not self.pairwise_results:
            return 0.0
        wins = sum(1 for r in self.pairwise_results if r.result == "win")
        ties = sum(1 for r in self.pairwise_results if r.result == "tie")
        return (wins + ties * 0.5) / len(self.pairwise_results)


@dataclass
class SideScores:
    A: float = 0.5
    B: float = 0.5

    def swapped(self) -> "SideScores":
        return SideScores(A=self.B, B=self.A)


CRITERIA = ("accuracy", "reasoning", "evidence", "clarity")


@dataclass
class CriterionScores:
    accuracy: SideScores = field(default_factory=SideScores)
    reasoning: SideScores = field(default_factory=SideScores)
    evidence: SideScores = field(default_factory=SideScores)
    clarity: SideScores = field(default_factory=SideScores)

    def swapped(self) -> "CriterionScores":
        return CriterionScores(**{name: getattr(self, name).swapped() for name in CRITERIA})


@dataclass
class PairwiseJudgment:
    """One round of head-to-head judgment."""

    winner: Side
    confidence: float
    reasoning: list[str]
    scores: SideScores
    criteria: CriterionScores
    token_usage: TokenUsage = field(default_factory=TokenUsage)

    def swapped(self) -> "PairwiseJudgment":
        flipped: Side = {"A": "B", "B": "A", "tie": "tie"}[self.winner]  # type: ignore[assignment]
        return PairwiseJudgment(
            winner=flipped,
            confidence=self.confidence,
            reasoning=list(self.reasoning),
            scores=self.scores.swapped(),
            criteria=self.criteria.swapped(),
            token_usage=self.token_usage,
        )


@dataclass
class PairwiseComparison:
    proposal_a_id: str
    proposal_b_id: str
    winner: Side
    scores: SideScores
    criteria: CriterionScores
    reasoning: list[str]
    confidence: float
    consensus_strength: float
    rounds: int
    win_counts: dict[str, int] = field(default_factory=dict)
    token_usage: TokenUsage = field(default_factory=TokenUsage)


# --- Consensus -----------------------------------------------------------


@dataclass
class EvidenceSource:
    source: str
    relevance: float
    credibility: float
    snippet: str


@dataclass
class ConsensusMetrics:
    unanimity_level: float
    confidence_variance: float
    evidence_overlap: float
    shared_points: list[str] = field(default_factory=list)
    conflicting_points: list[str] = field(default_factory=list)
    unique_insights: list[str] = field(default_factory=list)


@dataclass
class AlternativeChoice:
    choice: str
    support: float
    mean_confidence: float
    reasoning: str


@dataclass
class QualityFlags:
    minority_dissent: bool = False
    insufficient_evidence: bool = False
    conflicting_evidence: bool = False
    requires_human_review: bool = False


ConsensusMethod = Literal["majority", "borda", "weighted_voting", "approval"]
CONSENSUS_METHODS: tuple[str, ...] = ("majority", "borda", "weighted_voting", "approval")


@dataclass
class ConsensusResult:
    winner_choice: str
    confidence_level: float
    residual_uncertainty: float
    merged_evidence: list[EvidenceSource]
    synthesized_reasoning: str
    method: str
    metrics: ConsensusMetrics
    alternative_choices: list[AlternativeChoice] = field(default_factory=list)
    quality_flags: QualityFlags = field(default_factory=QualityFlags)

    def __post_init__(self) -> None:
        if not self.winner_choice or not self.winner_choice.strip():
            raise ValueError("Winner choice cannot be empty")
        if not 0.0 <= self.confidence_level <= 1.0:
            raise ValueError("Confidence level must be between 0 and 1")
        if not 0.0 <= self.residual_uncertainty <= 1.0:
            raise ValueError("Residual uncertainty must be between 0 and 1")
        if round(self.confidence_level + self.residual_uncertainty, 4) != 1.0:
            raise ValueError("Confidence level and residual uncertainty must sum to 1")
        if len(self.merged_evidence) > 10:
            raise ValueError("At most 10 merged evidence sources are kept")

    def consensus_strength(self) -> Literal["strong", "moderate", "weak"]:
        if self.confidence_level >= 0.8 and self.metrics.unanimity_level >= 0.8:
            return "strong"
        if self.confidence_level >= 0.6 and self.metrics.unanimity_level >= 0.6:
            return "moderate"
        return "weak"

    def decision_fields(self) -> dict[str, Any]:
        """Everything that bears on the decision; excludes the reasoning text."""
        return {
            "winner_choice": self.winner_choice,
            "confidence_level": self.confidence_level,
            "residual_uncertainty": self.residual_uncertainty,
            "merged_evidence": self.merged_evidence,
            "method": self.method,
            "metrics": self.metrics,
            "alternative_choices": self.alternative_choices,
            "quality_flags": self.quality_flags,
        }


# --- Jury ----------------------------------------------------------------


class Verdict(str, Enum):
    A = "A"
    B = "B"
    UNDECIDED = "UNDECIDED"


StatementKind = Literal["statement", "challenge", "question", "concession"]


@dataclass
class JurorOpinion:
    juror_id: str
    name: str
    position: Verdict
    confidence: float
    reasoning: str = ""
    key_arguments: list[str] = field(default_factory=list)
    concerns: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError("Juror confidence must be between 0 and 1")
        self.position = Verdict(self.position)


@dataclass
class JuryStatement:
    juror_id: str
    kind: StatementKind
    content: str


@dataclass
class DeliberationRound:
    number: int
    statements: list[JuryStatement]
    jurors: list[JurorOpinion]
    unanimous: bool = False

    def votes(self) -> dict[Verdict, int]:
        counts = {Verdict.A: 0, Verdict.B: 0, Verdict.UNDECIDED: 0}
        for juror in self.jurors:
            counts[juror.position] += 1
        return counts

    @property
    def vote_margin(self) -> int:
        counts = self.votes()
        return abs(counts[Verdict.A] - counts[Verdict.B])

    def count(self, kind: StatementKind) -> int:
        return sum(1 for s in self.statements if s.kind == kind)


@dataclass
class DeliberationStatistics:
    total_rounds: int
    total_discussions: int
    total_questions: int
    total_challenges: int
    total_concessions: int
    average_final_confidence: float
    unanimity_achieved: bool


@dataclass
class JuryDeliberation:
    id: str
    subject_id: str
    initial_jurors: list[JurorOpinion]
    unanimous_decision: bool
    rounds: list[DeliberationRound] = field(default_factory=list)
    final_verdict: Verdict | None = None
    final_jurors: list[JurorOpinion] | None = None
    elapsed_ms: float = 0.0

    def __post_init__(self) -> None:
        if not self.initial_jurors:
            raise ValueError("A jury needs at least one juror")
        if self.unanimous_decision and self.final_verdict is None:
            raise ValueError("Unanimous decision requires a final verdict")

    @property
    def total_rounds(self) -> int:
        return len(self.rounds)

    @property
    def jurors(self) -> list[JurorOpinion]:
        """Final juror state, falling back to the initial panel."""
        return self.final_jurors or self.initial_jurors

    @property
    def convergence_rate(self) -> float:
        if not self.rounds:
            return 0.0
        panel_size = len(self.rounds[-1].jurors) or len(self.initial_jurors)
        initial_margin = self.rounds[0].vote_margin
        final_margin = self.rounds[-1].vote_margin
        if initial_margin == 0:
            return 1.0 if final_margin == panel_size else 0.0
        return min(1.0, final_margin / panel_size)

    def statistics(self) -> DeliberationStatistics:
        jurors = self.jurors
        return DeliberationStatistics(
            total_rounds=self.total_rounds,
            total_discussions=sum(len(r.statements) for r in self.rounds),
            total_questions=sum(r.count("question") for r in self.rounds),
            total_challenges=sum(r.count("challenge") for r in self.rounds),
            total_concessions=sum(r.count("concession") for r in self.rounds),
            average_final_confidence=sum(j.confidence for j in jurors) / len(jurors),
            unanimity_achieved=self.unanimous_decision,
        )


@dataclass
class DissentingOpinion:
    juror_id: str
    name: str
    position: Verdict
    reasoning: str


@dataclass
class JuryMetrics:
    unanimity_achieved: bool
    convergence_rate: float
    average_confidence: float
    deliberation_quality: float
    rounds_to_consensus: int


@dataclass
class JuryConsensusResult:
    decision: Verdict
    confidence: float
    reasoning: str
    dissent: list[DissentingOpinion] | None
    metrics: JuryMetrics


# --- Decision ------------------------------------------------------------


@dataclass
class CostBreakdown:
    proposer_tokens: int = 0
    judge_tokens: int = 0
    synthesizer_tokens: int = 0
    jury_tokens: int = 0
    total_cost_usd: float = 0.0


@dataclass
class DeliberationMetrics:
    total_proposals: int
    total_evaluations: int
    deliberation_time_ms: float
    consensus_level: float
    average_proposal_confidence: float
    cost: CostBreakdown
    early_exit_triggered: bool = False
    escalated_to_jury: bool = False


@dataclass
class CommitteeDecision:
    id: str
    subject_id: str
    final_winner: str
    proposals: list[AgentProposal]
    evaluations: list[Evaluation]
    consensus: ConsensusResult
    method: str
    metrics: DeliberationMetrics
    jury_result: JuryConsensusResult | None = None
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        if not self.proposals:
            raise ValueError("Committee decision must have at least one proposal")
        if self.final_winner not in {p.winner_choice for p in self.proposals}:
            raise ValueError(f"Final winner {self.final_winner!r} is not one of the proposed choices")

    def winning_proposals(self) -> list[AgentProposal]:
        return [p for p in self.proposals if p.winner_choice == self.final_winner]

    def proposals_by_winner(self) -> dict[str, list[AgentProposal]]:
        grouped: dict[str, list[AgentProposal]] = {}
        for proposal in self.proposals:
            grouped.setdefault(proposal.winner_choice, []).append(proposal)
        return grouped
