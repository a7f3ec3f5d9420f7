"""Shared pytest fixtures."""

import json
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from config.config_loader import (
    AppConfig,
    CommitteeConfig,
    JudgeConfig,
    JuryConfig,
    ModelConfig,
    PromptsConfig,
    RaterConfig,
    RuleCriteria,
    SynthesizerConfig,
)
from committee.models import (
    AgentProposal,
    DeliberationInput,
    Evaluation,
    GenerationMetadata,
    Party,
    TokenUsage,
)
from committee.providers.base import AIProvider, GenerationRequest, GenerationResponse

PARTY_A = Party(id="partyA", name="Acme Builders", description="Contractor", address="0xA")
PARTY_B = Party(id="partyB", name="Blue Harbor", description="Client", address="0xB")

LONG_RATIONALE = (
    "The delivery records show the milestones were met on schedule and the client signed "
    "off on each stage. The invoices match the contract terms and the inspection report "
    "confirms the work quality. Nothing in the correspondence suggests a material breach "
    "by the contractor, and the client raised no written objection within the notice period."
)


def make_proposal(
    rater_id: str = "claude",
    winner: str = "partyA",
    confidence: float = 0.7,
    rationale: str = "The contractor delivered the agreed work on time according to the records.",
    evidence: tuple[str, ...] = ("Delivery record dated 2024-03-01", "Signed acceptance document"),
    index: int = 0,
    latency_ms: float = 1500.0,
    total_tokens: int = 400,
) -> AgentProposal:
    return AgentProposal(
        id=f"{rater_id}_subject-1_{index}",
        rater_id=rater_id,
        rater_name=rater_id.title(),
        subject_id="subject-1",
        winner_choice=winner,
        confidence=confidence,
        rationale=rationale,
        evidence=evidence,
        metadata=GenerationMetadata(
            temperature=0.7,
            max_tokens=1024,
            token_usage=TokenUsage(prompt=total_tokens // 2, completion=total_tokens // 2, total=total_tokens),
            latency_ms=latency_ms,
            model="mock-model",
        ),
    )


def make_evaluation(proposal_id: str, overall: float) -> Evaluation:
    return Evaluation(
        proposal_id=proposal_id,
        overall=overall,
        completeness=overall,
        consistency=overall,
        evidence_quality=overall,
    )


def proposal_json(
    winner: str = "partyA",
    confidence: float = 0.8,
    rationale: str = LONG_RATIONALE,
    evidence: list[str] | None = None,
) -> str:
    return json.dumps(
        {
            "winner": winner,
            "confidence": confidence,
            "rationale": rationale,
            "evidence": evidence if evidence is not None else ["Delivery record", "Inspection report"],
        }
    )


def response(content: str, provider: str = "mock", tokens: int = 10) -> GenerationResponse:
    return GenerationResponse(
        provider=provider,
        model="mock-model",
        content=content,
        latency_sec=0.1,
        token_usage=TokenUsage(prompt=tokens // 2, completion=tokens - tokens // 2, total=tokens),
    )


class MockProvider(AIProvider):
    """Test double AIProvider."""

    def __init__(self, provider_name: str = "mock", response_content: str = "Mock response") -> None:
        self._name = provider_name
        self._response_content = response_content
        # Shadow the class method with an AsyncMock at the instance level.
        # ABC check passes because generate is defined in the class body below.
        self.generate = AsyncMock(  # type: ignore[assignment]
            return_value=response(response_content, provider_name)
        )

    def name(self) -> str:
        return self._name

    def model_string(self) -> str:
        return "mock-model"

    async def generate(self, request: GenerationRequest) -> GenerationResponse:  # type: ignore[override]
        """Default implementation; replaced by AsyncMock in __init__."""
        return response(self._response_content, self._name)


@pytest.fixture
def sample_model_config() -> ModelConfig:
    return ModelConfig(
        name="test_model",
        sdk="test",
        model="test-model-1",
        api_key_env="TEST_API_KEY",
        timeout_sec=30,
        max_tokens=1024,
        base_url=None,
    )


@pytest.fixture
def sample_prompts_config() -> PromptsConfig:
    return PromptsConfig(
        proposer_system="You are a committee member. {persona}",
        proposer_user=(
            "Dispute {subject_id}\nA: {party_a_name} {party_a_address} {party_a_description}\n"
            "B: {party_b_name} {party_b_address} {party_b_description}\nContext: {context}"
        ),
        judge_system="Compare two analyses.",
        judge_user=(
            "A ({label_a}): {winner_a} {confidence_a} {rationale_a} {evidence_a}\n"
            "B ({label_b}): {winner_b} {confidence_b} {rationale_b} {evidence_b}"
        ),
        synthesis="Explain {winner} ({method}).\n{proposal_summaries}\n{evidence_summary}",
        juror_initial=(
            "{persona}\nA: {party_a_name} {party_a_description}\nB: {party_b_name} {party_b_description}\n"
            "{context}\n{proposal_digest}"
        ),
        juror_followup=(
            "Round {round}. {persona}\nA: {party_a_name} {party_a_description}\n"
            "B: {party_b_name} {party_b_description}\nYou: {own_position}\nOthers:\n{peer_positions}"
        ),
        personas={"claude": "Be fair.", "openai": "Be literal."},
    )


@pytest.fixture
def sample_input() -> DeliberationInput:
    return DeliberationInput(
        subject_id="subject-1",
        party_a=PARTY_A,
        party_b=PARTY_B,
        context={"contract": "Build a warehouse by March"},
    )


@pytest.fixture
def sample_app_config(tmp_path: Path, sample_prompts_config: PromptsConfig) -> AppConfig:
    models = {
        name: ModelConfig(
            name=name,
            sdk="test",
            model=f"{name}-model",
            api_key_env=f"{name.upper()}_API_KEY",
            timeout_sec=60,
            max_tokens=1024,
        )
        for name in ("claude", "openai", "gemini")
    }
    return AppConfig(
        committee=CommitteeConfig(min_proposals=2, max_proposals_per_agent=1, output_dir=tmp_path / "output"),
        raters={
            name: RaterConfig(id=name, provider=name, display_name=name.title())
            for name in ("claude", "openai", "gemini")
        },
        judge=JudgeConfig(provider="openai", rounds=1),
        rule_criteria=RuleCriteria(),
        synthesizer=SynthesizerConfig(),
        jury=JuryConfig(enabled=False, jurors=["claude", "openai", "gemini"], max_rounds=2),
        models=models,
        prompts=sample_prompts_config,
        available_providers={"claude", "openai", "gemini"},
    )


@pytest.fixture
def mock_provider() -> MockProvider:
    return MockProvider()


@pytest.fixture
def three_mock_providers() -> dict[str, MockProvider]:
    return {
        "claude": MockProvider("claude", proposal_json("partyA", 0.8)),
        "openai": MockProvider("openai", proposal_json("partyA", 0.7)),
        "gemini": MockProvider("gemini", proposal_json("partyB", 0.6)),
    }
