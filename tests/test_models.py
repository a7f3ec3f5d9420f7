"""Tests for committee/models.py dataclasses."""

import pytest

from committee.models import (
    AgentProposal,
    CommitteeDecision,
    ConsensusMetrics,
    ConsensusResult,
    CostBreakdown,
    DeliberationMetrics,
    DeliberationRound,
    Evaluation,
    GenerationMetadata,
    JurorOpinion,
    JuryDeliberation,
    JuryStatement,
    PairwiseJudgment,
    PairwiseResult,
    SideScores,
    CriterionScores,
    TokenUsage,
    Verdict,
    token_cost,
)
from tests.conftest import make_proposal


def _metrics(unanimity: float = 1.0) -> ConsensusMetrics:
    return ConsensusMetrics(unanimity_level=unanimity, confidence_variance=0.0, evidence_overlap=0.0)


def _consensus(winner: str = "partyA", confidence: float = 0.7) -> ConsensusResult:
    return ConsensusResult(
        winner_choice=winner,
        confidence_level=confidence,
        residual_uncertainty=round(1 - confidence, 4),
        merged_evidence=[],
        synthesized_reasoning="text",
        method="majority",
        metrics=_metrics(),
    )


def _juror(juror_id: str, position: Verdict, confidence: float = 0.8) -> JurorOpinion:
    return JurorOpinion(juror_id=juror_id, name=juror_id, position=position, confidence=confidence)


def test_token_usage_addition():
    total = TokenUsage(1, 2, 3) + TokenUsage(10, 20, 30)
    assert total == TokenUsage(11, 22, 33)


def test_token_cost_uses_default_rate_for_unknown_model():
    usage = TokenUsage(prompt=1000, completion=1000, total=2000)
    assert token_cost(usage, "unknown") == pytest.approx(0.002 + 0.006)


def test_generation_metadata_cost_estimate_known_model():
    meta = GenerationMetadata(0.7, 100, TokenUsage(1000, 1000, 2000), 10.0, "gpt-5")
    assert meta.cost_estimate() == pytest.approx(0.04)


@pytest.mark.parametrize("confidence", [-0.1, 1.1])
def test_proposal_rejects_confidence_out_of_range(confidence):
    with pytest.raises(ValueError, match="Confidence"):
        make_proposal(confidence=confidence)


def test_proposal_rejects_empty_rationale():
    with pytest.raises(ValueError, match="Rationale"):
        make_proposal(rationale="   ")


def test_proposal_rejects_empty_winner():
    with pytest.raises(ValueError, match="Winner"):
        make_proposal(winner="")


def test_proposal_evidence_stored_as_tuple():
    proposal = make_proposal(evidence=["one", "two"])  # type: ignore[arg-type]
    assert proposal.evidence == ("one", "two")


def test_proposal_helpers():
    proposal = make_proposal(confidence=0.85, rationale="x" * 120)
    assert proposal.is_high_confidence()
    assert proposal.has_sufficient_evidence()
    assert 0.0 <= proposal.quality_score() <= 1.0
    assert "0.85" in proposal.summary()


def test_evaluation_validates_range():
    with pytest.raises(ValueError, match="overall"):
        Evaluation(proposal_id="p", overall=1.5, completeness=0.5, consistency=0.5, evidence_quality=0.5)


def test_evaluation_pairwise_win_rate():
    evaluation = Evaluation(
        proposal_id="p",
        overall=0.5,
        completeness=0.5,
        consistency=0.5,
        evidence_quality=0.5,
        pairwise_results=[
            PairwiseResult("q", "win", 0.8),
            PairwiseResult("r", "tie", 0.5),
            PairwiseResult("s", "lose", 0.2),
            PairwiseResult("t", "win", 0.9),
        ],
    )
    assert evaluation.pairwise_win_rate() == pytest.approx(2.5 / 4)


def test_pairwise_judgment_swapped_flips_sides():
    judgment = PairwiseJudgment(
        winner="A",
        confidence=0.9,
        reasoning=["r"],
        scores=SideScores(A=0.8, B=0.3),
        criteria=CriterionScores(accuracy=SideScores(A=0.9, B=0.1)),
    )
    swapped = judgment.swapped()
    assert swapped.winner == "B"
    assert swapped.scores == SideScores(A=0.3, B=0.8)
    assert swapped.criteria.accuracy == SideScores(A=0.1, B=0.9)
    assert swapped.confidence == 0.9


def test_consensus_result_requires_complement():
    with pytest.raises(ValueError, match="sum to 1"):
        ConsensusResult(
            winner_choice="partyA",
            confidence_level=0.7,
            residual_uncertainty=0.2,
            merged_evidence=[],
            synthesized_reasoning="",
            method="majority",
            metrics=_metrics(),
        )


@pytest.mark.parametrize(
    "confidence,unanimity,expected",
    [(0.85, 0.9, "strong"), (0.65, 0.7, "moderate"), (0.85, 0.5, "weak")],
)
def test_consensus_strength(confidence, unanimity, expected):
    result = ConsensusResult(
        winner_choice="partyA",
        confidence_level=confidence,
        residual_uncertainty=round(1 - confidence, 4),
        merged_evidence=[],
        synthesized_reasoning="",
        method="majority",
        metrics=_metrics(unanimity),
    )
    assert result.consensus_strength() == expected


def test_decision_fields_exclude_reasoning():
    assert "synthesized_reasoning" not in _consensus().decision_fields()


def test_juror_opinion_coerces_position():
    opinion = JurorOpinion(juror_id="j", name="J", position="B", confidence=0.5)  # type: ignore[arg-type]
    assert opinion.position is Verdict.B


def test_deliberation_round_votes_and_margin():
    rnd = DeliberationRound(
        number=1,
        statements=[JuryStatement("a", "question", "why?"), JuryStatement("b", "statement", "because")],
        jurors=[_juror("a", Verdict.A), _juror("b", Verdict.A), _juror("c", Verdict.B)],
    )
    assert rnd.votes()[Verdict.A] == 2
    assert rnd.vote_margin == 1
    assert rnd.count("question") == 1


def test_jury_deliberation_requires_verdict_when_unanimous():
    with pytest.raises(ValueError, match="verdict"):
        JuryDeliberation(id="j", subject_id="s", initial_jurors=[_juror("a", Verdict.A)], unanimous_decision=True)


def test_convergence_rate_from_split_to_unanimous():
    split = [_juror("a", Verdict.A), _juror("b", Verdict.B), _juror("c", Verdict.UNDECIDED)]
    agreed = [_juror("a", Verdict.A), _juror("b", Verdict.A), _juror("c", Verdict.A)]
    jury = JuryDeliberation(
        id="j",
        subject_id="s",
        initial_jurors=split,
        unanimous_decision=True,
        rounds=[
            DeliberationRound(1, [], split),
            DeliberationRound(2, [], agreed, unanimous=True),
        ],
        final_verdict=Verdict.A,
        final_jurors=agreed,
    )
    assert jury.convergence_rate == 1.0
    assert jury.total_rounds == 2
    stats = jury.statistics()
    assert stats.unanimity_achieved is True
    assert stats.average_final_confidence == pytest.approx(0.8)


def test_convergence_rate_zero_without_rounds():
    jury = JuryDeliberation(id="j", subject_id="s", initial_jurors=[_juror("a", Verdict.A)], unanimous_decision=False)
    assert jury.convergence_rate == 0.0


def test_committee_decision_rejects_unknown_winner():
    proposals = [make_proposal(winner="partyA")]
    metrics = DeliberationMetrics(1, 1, 10.0, 1.0, 0.7, CostBreakdown())
    with pytest.raises(ValueError, match="not one of the proposed choices"):
        CommitteeDecision(
            id="d",
            subject_id="subject-1",
            final_winner="partyB",
            proposals=proposals,
            evaluations=[],
            consensus=_consensus(),
            method="majority",
            metrics=metrics,
        )


def test_committee_decision_groups_proposals():
    proposals = [
        make_proposal("claude", "partyA", index=0),
        make_proposal("openai", "partyB", index=1),
        make_proposal("gemini", "partyA", index=2),
    ]
    decision = CommitteeDecision(
        id="d",
        subject_id="subject-1",
        final_winner="partyA",
        proposals=proposals,
        evaluations=[],
        consensus=_consensus(),
        method="majority",
        metrics=DeliberationMetrics(3, 0, 10.0, 2 / 3, 0.7, CostBreakdown()),
    )
    assert len(decision.winning_proposals()) == 2
    assert set(decision.proposals_by_winner()) == {"partyA", "partyB"}
    assert isinstance(proposals[0], AgentProposal)
