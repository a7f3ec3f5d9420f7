"""Tests for committee/jury_panel.py."""

import json
import random

import pytest

from config.config_loader import JuryConfig
from committee.events import CollectingSink
from committee.jury_panel import (
    Juror,
    _anonymize_positions,
    make_jury_runner,
    parse_juror_response,
    parse_position,
    run_jury_deliberation,
)
from committee.models import JurorOpinion, Verdict
from committee.providers.base import ProviderError
from tests.conftest import PARTY_A, PARTY_B, MockProvider, make_proposal, response


def juror_json(position: str, confidence: float = 0.8, reasoning: str = "The records support this.") -> str:
    return json.dumps(
        {
            "position": position,
            "confidence": confidence,
            "reasoning": reasoning,
            "key_arguments": ["Signed acceptance"],
            "concerns": [],
            "statements": [{"type": "statement", "content": reasoning}],
        }
    )


def _panel(*contents: str) -> list[Juror]:
    names = ("claude", "openai", "gemini")
    return [
        Juror(id=name, name=name.title(), provider=MockProvider(name, content))
        for name, content in zip(names, contents)
    ]


def _opinion(juror_id: str, position: Verdict, confidence: float = 0.7, reasoning: str = "") -> JurorOpinion:
    return JurorOpinion(juror_id=juror_id, name=juror_id.title(), position=position,
                        confidence=confidence, reasoning=reasoning)


@pytest.mark.parametrize(
    "raw,expected",
    [("A", Verdict.A), ("party_b", Verdict.B), ("Blue Harbor", Verdict.B), ("unsure", Verdict.UNDECIDED), (None, Verdict.UNDECIDED)],
)
def test_parse_position(raw, expected):
    assert parse_position(raw, PARTY_A, PARTY_B) is expected


def test_parse_juror_response_keeps_previous_confidence():
    juror = _panel("")[0]
    previous = _opinion("claude", Verdict.B, 0.65, "Earlier view")
    content = json.dumps({"position": "A", "statements": [{"type": "challenge", "content": "Why?"}, {"type": "x"}]})

    opinion, statements = parse_juror_response(content, juror, previous, PARTY_A, PARTY_B)

    assert opinion.position is Verdict.A
    assert opinion.confidence == 0.65
    assert opinion.reasoning == "Earlier view"
    assert [(s.kind, s.content) for s in statements] == [("challenge", "Why?")]


def test_parse_juror_response_raises_without_json():
    juror = _panel("")[0]
    with pytest.raises(ValueError):
        parse_juror_response("I think A", juror, _opinion("claude", Verdict.UNDECIDED), PARTY_A, PARTY_B)


def test_anonymize_positions_hides_identity():
    opinions = [
        _opinion("claude", Verdict.A, reasoning="first view"),
        _opinion("openai", Verdict.B, reasoning="second view"),
        _opinion("gemini", Verdict.A, reasoning="third view"),
    ]
    block, mapping = _anonymize_positions(opinions, "claude", random.Random(3))

    assert "first view" not in block
    assert "openai" not in block.lower()
    assert "gemini" not in block.lower()
    assert set(mapping) == {"Juror A", "Juror B"}
    assert set(mapping.values()) == {"openai", "gemini"}


async def test_unanimous_first_round_stops(sample_input, sample_prompts_config):
    jurors = _panel(juror_json("A"), juror_json("partyA"), juror_json("Acme Builders"))
    sink = CollectingSink()

    jury, usage = await run_jury_deliberation(
        sample_input, [make_proposal()], jurors, sample_prompts_config, max_rounds=3, sink=sink
    )

    assert jury.total_rounds == 1
    assert jury.unanimous_decision is True
    assert jury.final_verdict is Verdict.A
    assert usage.total == 30
    assert all(j.provider.generate.await_count == 1 for j in jurors)  # type: ignore[attr-defined]
    assert len(sink.of_type("vote")) == 3
    first_prompt = jurors[0].provider.generate.call_args.args[0].user_prompt  # type: ignore[attr-defined]
    assert "Acme Builders" in first_prompt
    assert "Proposal 1: party A" in first_prompt


async def test_followup_round_converges(sample_input, sample_prompts_config):
    jurors = _panel(juror_json("A"), juror_json("A"), juror_json("B", 0.6, "Invoice is unpaid."))
    jurors[2].provider.generate.side_effect = [  # type: ignore[attr-defined]
        response(juror_json("B", 0.6, "Invoice is unpaid.")),
        response(juror_json("A", 0.7, "Persuaded by the acceptance record.")),
    ]

    jury, _ = await run_jury_deliberation(
        sample_input, [], jurors, sample_prompts_config, max_rounds=4, rng=random.Random(1)
    )

    assert jury.total_rounds == 2
    assert jury.unanimous_decision is True
    assert [r.unanimous for r in jury.rounds] == [False, True]
    assert jury.initial_jurors[2].position is Verdict.B
    followup = jurors[0].provider.generate.call_args.args[0].user_prompt  # type: ignore[attr-defined]
    assert "Round 2" in followup
    assert "Juror A" in followup
    assert "Gemini" not in followup
    assert "Invoice is unpaid." in followup


async def test_failed_juror_keeps_previous_opinion(sample_input, sample_prompts_config):
    jurors = _panel(juror_json("A"), juror_json("B"), juror_json("B"))
    jurors[1].provider.generate.side_effect = [  # type: ignore[attr-defined]
        response(juror_json("B", 0.9)),
        ProviderError("openai", "rate limited"),
    ]

    jury, _ = await run_jury_deliberation(sample_input, [], jurors, sample_prompts_config, max_rounds=2)

    assert jury.total_rounds == 2
    assert jury.unanimous_decision is False
    openai_final = next(j for j in jury.jurors if j.juror_id == "openai")
    assert openai_final.position is Verdict.B
    assert openai_final.confidence == 0.9
    assert jury.final_verdict is Verdict.B


async def test_unparseable_juror_stays_undecided(sample_input, sample_prompts_config):
    jurors = _panel(juror_json("A"), "no json", juror_json("A"))

    jury, _ = await run_jury_deliberation(sample_input, [], jurors, sample_prompts_config, max_rounds=1)

    assert jury.unanimous_decision is False
    assert jury.final_verdict is Verdict.A
    assert next(j for j in jury.jurors if j.juror_id == "openai").position is Verdict.UNDECIDED


async def test_run_jury_needs_jurors(sample_input, sample_prompts_config):
    with pytest.raises(ValueError):
        await run_jury_deliberation(sample_input, [], [], sample_prompts_config)


async def test_make_jury_runner_evaluates_result(sample_input, sample_prompts_config):
    jurors = _panel(juror_json("B"), juror_json("B"), juror_json("B"))
    runner = make_jury_runner(jurors, sample_prompts_config, JuryConfig(enabled=True, max_rounds=2))

    result, usage = await runner(sample_input, [make_proposal()], None)

    assert result.decision is Verdict.B
    assert result.dissent is None
    assert usage.total == 30
