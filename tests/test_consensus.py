"""Tests for committee/consensus.py."""

import pytest

from config.config_loader import SynthesizerConfig
from committee.consensus import (
    ConsensusSynthesizer,
    alternative_choices,
    approval_vote,
    borda_count,
    calibrate,
    compute_metrics,
    majority_vote,
    merge_evidence,
    weighted_vote,
)
from committee.errors import SynthesisFailure
from committee.events import CollectingSink
from committee.models import ConsensusMetrics
from committee.providers.base import ProviderError
from tests.conftest import MockProvider, make_evaluation, make_proposal


def _proposals(*rows: tuple[str, str, float]):
    return [
        make_proposal(rater, winner, confidence, index=i)
        for i, (rater, winner, confidence) in enumerate(rows)
    ]


def _evals(proposals, *scores: float):
    return {p.id: make_evaluation(p.id, s) for p, s in zip(proposals, scores)}


def _flat_metrics(unanimity: float = 1.0, variance: float = 0.0) -> ConsensusMetrics:
    return ConsensusMetrics(unanimity_level=unanimity, confidence_variance=variance, evidence_overlap=0.0)


# --- Voting methods --------------------------------------------------------


def test_majority_three_to_two():
    proposals = _proposals(
        ("claude", "partyA", 0.7), ("openai", "partyA", 0.7), ("gemini", "partyA", 0.7),
        ("grok", "partyB", 0.7), ("extra", "partyB", 0.7),
    )
    assert majority_vote(proposals) == ("partyA", pytest.approx(0.6))


def test_majority_tie_goes_to_first_seen():
    proposals = _proposals(("claude", "partyB", 0.7), ("openai", "partyA", 0.7))
    assert majority_vote(proposals) == ("partyB", 0.5)


def test_borda_winner_takes_all_points():
    proposals = _proposals(("claude", "partyA", 0.7), ("openai", "partyA", 0.7), ("gemini", "partyB", 0.7))
    winner, confidence = borda_count(proposals, _evals(proposals, 0.9, 0.8, 0.5))
    assert winner == "partyA"
    assert confidence == pytest.approx(1.0)


def test_borda_top_ranked_minority_can_win():
    proposals = _proposals(("claude", "partyB", 0.7), ("openai", "partyA", 0.7), ("gemini", "partyA", 0.7))
    winner, confidence = borda_count(proposals, _evals(proposals, 0.9, 0.8, 0.1))
    # B: 2 points, A: 1 + 0 points, max possible 3
    assert winner == "partyB"
    assert confidence == pytest.approx(2 / 3)


def test_borda_single_proposal():
    proposals = _proposals(("claude", "partyA", 0.7))
    assert borda_count(proposals, {}) == ("partyA", 1.0)


def test_weighted_vote_uses_rater_weights():
    proposals = _proposals(("claude", "partyA", 0.8), ("openai", "partyB", 0.9), ("gemini", "partyB", 0.5))
    evaluations = _evals(proposals, 1.0, 1.0, 1.0)
    winner, confidence = weighted_vote(proposals, evaluations, {"openai": 0.5})
    assert winner == "partyB"
    assert confidence == pytest.approx(0.95 / 1.75)


def test_weighted_vote_defaults_missing_evaluation_to_half():
    proposals = _proposals(("claude", "partyA", 0.8), ("openai", "partyB", 0.8))
    evaluations = _evals(proposals[:1], 0.4)
    winner, confidence = weighted_vote(proposals, evaluations, {})
    assert winner == "partyB"
    assert confidence == pytest.approx(0.4 / 0.72)


def test_approval_falls_back_to_majority():
    proposals = _proposals(("claude", "partyB", 0.5), ("openai", "partyA", 0.5), ("gemini", "partyB", 0.4))
    evaluations = _evals(proposals, 0.3, 0.3, 0.3)
    assert approval_vote(proposals, evaluations) == majority_vote(proposals)


def test_approval_bonus_for_multiple_approvals():
    proposals = _proposals(("claude", "partyA", 0.9), ("openai", "partyA", 0.5), ("gemini", "partyB", 0.5))
    evaluations = _evals(proposals, 0.2, 0.8, 0.1)
    winner, confidence = approval_vote(proposals, evaluations)
    assert winner == "partyA"
    assert confidence == pytest.approx(2 / 3 + 0.2)


# --- Evidence and metrics --------------------------------------------------


def test_merge_evidence_only_from_winners_and_capped():
    winners = [
        make_proposal("claude", "partyA", evidence=tuple(f"Item {i}" for i in range(8)), index=0),
        make_proposal("openai", "partyA", evidence=tuple(f"Item {i}" for i in range(4, 12)), index=1),
    ]
    loser = make_proposal("gemini", "partyB", evidence=("Losing item",), index=2)

    merged = merge_evidence(winners + [loser], "partyA")

    assert len(merged) == 10
    assert "Losing item" not in {e.source for e in merged}
    # items cited twice rank first
    assert {e.source for e in merged[:4]} == {"Item 4", "Item 5", "Item 6", "Item 7"}
    assert all(0.0 <= e.relevance <= 1.0 and 0.0 <= e.credibility <= 1.0 for e in merged)


def test_merge_evidence_truncates_long_snippets():
    proposal = make_proposal(evidence=("e" * 150,))
    snippet = merge_evidence([proposal], "partyA")[0].snippet
    assert len(snippet) == 100
    assert snippet.endswith("...")


def test_compute_metrics():
    proposals = [
        make_proposal("claude", "partyA", 0.8, rationale="The contract was signed. However the invoice is late.", index=0),
        make_proposal("openai", "partyA", 0.6, index=1),
        make_proposal("gemini", "partyB", 0.7, evidence=("Unrelated",), index=2),
    ]
    metrics = compute_metrics(proposals, "partyA")

    assert metrics.unanimity_level == pytest.approx(2 / 3)
    assert metrics.confidence_variance == pytest.approx(((0.1) ** 2 + (0.1) ** 2 + 0) / 3)
    assert metrics.evidence_overlap == pytest.approx(2 / 3)
    assert metrics.conflicting_points == ["However the invoice is late"]


@pytest.mark.parametrize("base,expected", [(0.95, 0.9), (0.05, 0.1), (0.7, 0.7)])
def test_calibrate_clamps_and_sums_to_one(base, expected):
    confidence, uncertainty = calibrate(base, _flat_metrics())
    assert confidence == pytest.approx(expected)
    assert round(confidence + uncertainty, 4) == 1.0


def test_calibrate_discounts_disagreement():
    confidence, uncertainty = calibrate(0.6, _flat_metrics(unanimity=0.6))
    assert confidence == pytest.approx(0.56)
    assert uncertainty == pytest.approx(0.44)


def test_alternative_choices():
    proposals = _proposals(("claude", "partyA", 0.8), ("openai", "partyB", 0.6), ("gemini", "partyB", 0.4))
    alternatives = alternative_choices(proposals, "partyA")
    assert len(alternatives) == 1
    assert alternatives[0].choice == "partyB"
    assert alternatives[0].support == pytest.approx(2 / 3)
    assert alternatives[0].mean_confidence == pytest.approx(0.5)


# --- Synthesizer -----------------------------------------------------------


def test_unknown_method_rejected():
    with pytest.raises(ValueError, match="Unknown consensus method"):
        ConsensusSynthesizer(method="plurality")


async def test_synthesize_empty_raises():
    with pytest.raises(SynthesisFailure):
        await ConsensusSynthesizer().synthesize([], [])


async def test_synthesize_majority_result():
    proposals = _proposals(
        ("claude", "partyA", 0.8), ("openai", "partyA", 0.7), ("gemini", "partyB", 0.6)
    )
    synthesizer = ConsensusSynthesizer(method="majority")
    sink = CollectingSink()

    result = await synthesizer.synthesize(proposals, list(_evals(proposals, 0.8, 0.7, 0.6).values()), sink)

    assert result.winner_choice == "partyA"
    assert result.method == "majority"
    assert round(result.confidence_level + result.residual_uncertainty, 4) == 1.0
    assert 0.1 <= result.confidence_level <= 0.9
    assert result.quality_flags.minority_dissent is True
    assert [a.choice for a in result.alternative_choices] == ["partyB"]
    assert "partyA" in result.synthesized_reasoning
    assert "2 out of 3" in result.synthesized_reasoning
    assert len(sink.of_type("synthesis")) == 1


async def test_synthesize_flags_human_review_on_high_uncertainty():
    proposals = _proposals(("claude", "partyA", 0.6), ("openai", "partyB", 0.6))
    result = await ConsensusSynthesizer(method="majority").synthesize(proposals, [])
    assert result.residual_uncertainty > 0.3
    assert result.quality_flags.requires_human_review is True


async def test_synthesis_is_deterministic():
    proposals = _proposals(
        ("claude", "partyA", 0.8), ("openai", "partyB", 0.7), ("gemini", "partyA", 0.65)
    )
    evaluations = list(_evals(proposals, 0.7, 0.6, 0.5).values())
    synthesizer = ConsensusSynthesizer(method="weighted_voting", agent_weights={"claude": 0.9})

    first = await synthesizer.synthesize(proposals, evaluations)
    second = await synthesizer.synthesize(proposals, evaluations)

    assert first.decision_fields() == second.decision_fields()


async def test_ai_reasoning_does_not_change_decision(sample_prompts_config):
    proposals = _proposals(("claude", "partyA", 0.8), ("openai", "partyA", 0.7), ("gemini", "partyB", 0.6))
    evaluations = list(_evals(proposals, 0.8, 0.7, 0.6).values())
    provider = MockProvider("claude", "  The committee found for Acme Builders.  ")
    with_ai = ConsensusSynthesizer(
        method="borda",
        config=SynthesizerConfig(enable_ai_synthesis=True),
        provider=provider,
        prompts=sample_prompts_config,
    )
    template_only = ConsensusSynthesizer(method="borda")

    ai_result, usage = await with_ai.synthesize_with_usage(proposals, evaluations)
    template_result = await template_only.synthesize(proposals, evaluations)

    assert ai_result.synthesized_reasoning == "The committee found for Acme Builders."
    assert usage.total == 10
    assert ai_result.decision_fields() == template_result.decision_fields()


async def test_ai_reasoning_failure_falls_back_to_template(sample_prompts_config):
    proposals = _proposals(("claude", "partyA", 0.8), ("openai", "partyA", 0.7))
    provider = MockProvider("claude")
    provider.generate.side_effect = ProviderError("claude", "overloaded")
    synthesizer = ConsensusSynthesizer(
        method="majority",
        config=SynthesizerConfig(enable_ai_synthesis=True),
        provider=provider,
        prompts=sample_prompts_config,
    )

    result, usage = await synthesizer.synthesize_with_usage(proposals, [])

    assert result.synthesized_reasoning == synthesizer.template_reasoning(
        proposals, "partyA", result.merged_evidence
    )
    assert usage.total == 0


def test_update_agent_weights():
    synthesizer = ConsensusSynthesizer(agent_weights={"claude": 1.0})
    synthesizer.update_agent_weights({"claude": 0.7, "openai": 0.4})
    assert synthesizer.agent_weights == {"claude": 0.7, "openai": 0.4}
