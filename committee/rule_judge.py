"""Deterministic quality scoring of a single proposal. No external calls."""

import logging
import re

from config.config_loader import RuleCriteria
from committee.models import AgentProposal, Evaluation

logger = logging.getLogger(__name__)

_CONTRADICTION_PAIRS = (
    ("definitely", "uncertain"),
    ("clear", "unclear"),
    ("strong", "weak"),
    ("certain", "possibly"),
    ("always", "sometimes"),
    ("never", "occasionally"),
)
_MAX_INCONSISTENCY_PENALTY = 0.3

# category -> keywords that put an evidence item in it
_EVIDENCE_CATEGORIES = {
    "url": ("http",),
    "contract": ("contract",),
    "historical": ("history", "historical"),
    "technical": ("technical", "specification"),
    "performance": ("performance", "metrics"),
}
_SPECIFIC_MARKERS = ("data", "record", "document")
_STRUCTURE_MARKERS = (":", "=", "{")

_PARTY_A = re.compile(r"party\s*a\b")
_PARTY_B = re.compile(r"party\s*b\b")


def _has_word(text: str, word: str) -> bool:
    return re.search(rf"\b{re.escape(word)}\b", text) is not None


class RuleJudge:
    """Scores proposals on completeness, consistency and evidence quality.

    overall = 0.35 * completeness + 0.35 * consistency + 0.30 * evidence_quality
    """

    name = "rule_based"

    def __init__(self, criteria: RuleCriteria | None = None) -> None:
        self.criteria = criteria or RuleCriteria()

    def evaluate_all(self, proposals: list[AgentProposal]) -> list[Evaluation]:
        logger.info("Rule-based evaluation of %d proposals", len(proposals))
        return [self.evaluate(p) for p in proposals]

    def evaluate(self, proposal: AgentProposal) -> Evaluation:
        completeness = self.completeness(proposal)
        consistency = self.consistency(proposal)
        evidence_quality = self.evidence_quality(proposal)
        overall = min(1.0, 0.35 * completeness + 0.35 * consistency + 0.30 * evidence_quality)

        logger.debug(
            "Proposal %s: overall=%.3f completeness=%.3f consistency=%.3f evidence=%.3f",
            proposal.id, overall, completeness, consistency, evidence_quality,
        )
        return Evaluation(
            proposal_id=proposal.id,
            overall=overall,
            completeness=completeness,
            consistency=consistency,
            evidence_quality=evidence_quality,
            judge=self.name,
            rule_based_score=overall,
        )

    def completeness(self, proposal: AgentProposal) -> float:
        c = self.criteria
        score = 0.0

        if proposal.confidence >= c.min_confidence:
            score += 0.3
        elif proposal.confidence >= c.min_confidence * 0.8:
            score += 0.2
        elif proposal.confidence >= c.min_confidence * 0.6:
            score += 0.1

        evidence_count = len(proposal.evidence)
        if evidence_count >= c.min_evidence_count:
            score += 0.3
        elif evidence_count >= c.min_evidence_count * 0.5:
            score += 0.15

        rationale_length = len(proposal.rationale)
        if rationale_length >= c.min_rationale_length:
            score += 0.25
        elif rationale_length >= c.min_rationale_length * 0.7:
            score += 0.15
        elif rationale_length >= c.min_rationale_length * 0.4:
            score += 0.05

        if proposal.winner_choice.strip() and proposal.rationale.strip():
            score += 0.15

        return min(1.0, score)

    def consistency(self, proposal: AgentProposal) -> float:
        score = 1.0
        high_confidence = proposal.confidence >= 0.8
        strong_evidence = len(proposal.evidence) >= 3

        if high_confidence and not strong_evidence:
            score -= 0.2
        if not high_confidence and strong_evidence:
            score -= 0.1
        if high_confidence and len(proposal.rationale) < 300:
            score -= 0.15

        if self.criteria.penalize_inconsistency:
            score -= self.inconsistency_penalty(proposal.rationale)

        latency_ms = proposal.metadata.latency_ms
        tokens = proposal.metadata.token_usage.total
        if latency_ms < 100 and tokens > 500:
            score -= 0.1
        if latency_ms > 30000 and tokens < 200:
            score -= 0.1

        return max(0.0, score)

    @staticmethod
    def inconsistency_penalty(rationale: str) -> float:
        """Penalty for contradictory wording, capped at 0.3."""
        text = rationale.lower()
        penalty = 0.0

        for positive, negative in _CONTRADICTION_PAIRS:
            if _has_word(text, positive) and _has_word(text, negative):
                penalty += 0.05

        if _has_word(text, "definitely") and _has_word(text, "however"):
            penalty += 0.05

        a_mentions = len(_PARTY_A.findall(text))
        b_mentions = len(_PARTY_B.findall(text))
        if abs(a_mentions - b_mentions) > 3 and min(a_mentions, b_mentions) > 0:
            penalty += 0.1

        return min(_MAX_INCONSISTENCY_PENALTY, penalty)

    def evidence_quality(self, proposal: AgentProposal) -> float:
        evidence = [item.lower() for item in proposal.evidence]
        if not evidence:
            return 0.1

        score = 0.0
        factors = 0

        categories = {
            category
            for item in evidence
            for category, keywords in _EVIDENCE_CATEGORIES.items()
            if any(k in item for k in keywords)
        }
        if len(categories) >= 3:
            score += 0.3
            factors += 1
        elif len(categories) >= 2:
            score += 0.2
            factors += 1

        specific = [
            item for item in evidence
            if len(item) > 20 and any(m in item for m in _SPECIFIC_MARKERS)
        ]
        if len(specific) >= len(evidence) * 0.7:
            score += 0.25
            factors += 1
        elif len(specific) >= len(evidence) * 0.4:
            score += 0.15
            factors += 1

        if self.criteria.requires_structured_evidence:
            if any(any(m in item for m in _STRUCTURE_MARKERS) for item in evidence):
                score += 0.2
                factors += 1

        average_length = sum(len(item) for item in evidence) / len(evidence)
        if average_length >= 50:
            score += 0.15
            factors += 1
        elif average_length >= 25:
            score += 0.1
            factors += 1

        if factors >= 3:
            score += 0.1

        return min(1.0, score)
