"""Turns a finished jury deliberation into a decision with confidence and dissent."""

import logging

from committee.errors import JuryDeliberationFailure
from committee.models import (
    DissentingOpinion,
    JurorOpinion,
    JuryConsensusResult,
    JuryDeliberation,
    JuryMetrics,
    Verdict,
)

logger = logging.getLogger(__name__)

_UNANIMITY_BONUS = 0.2
_ROUND_PENALTY_STEP = 0.05
_MAX_ROUND_PENALTY = 0.3
_CONVERGENCE_WEIGHT = 0.1


def vote_distribution(jurors: list[JurorOpinion]) -> dict[Verdict, int]:
    counts = {Verdict.A: 0, Verdict.B: 0, Verdict.UNDECIDED: 0}
    for juror in jurors:
        counts[juror.position] += 1
    return counts


def plurality_position(jurors: list[JurorOpinion]) -> Verdict:
    counts = vote_distribution(jurors)
    if counts[Verdict.A] > counts[Verdict.B]:
        return Verdict.A
    if counts[Verdict.B] > counts[Verdict.A]:
        return Verdict.B
    return Verdict.UNDECIDED


def majority_decision(jurors: list[JurorOpinion]) -> Verdict:
    """Strict majority with at least two votes; a tie is broken by summed confidence."""
    counts = vote_distribution(jurors)
    a, b = counts[Verdict.A], counts[Verdict.B]
    if a > b and a >= 2:
        return Verdict.A
    if b > a and b >= 2:
        return Verdict.B
    if a == b and a > 0:
        confidence_a = sum(j.confidence for j in jurors if j.position is Verdict.A)
        confidence_b = sum(j.confidence for j in jurors if j.position is Verdict.B)
        if confidence_a > confidence_b:
            return Verdict.A
        if confidence_b > confidence_a:
            return Verdict.B
    return Verdict.UNDECIDED


def _disagreement_reasons(jurors: list[JurorOpinion]) -> list[str]:
    reasons = []
    if len({j.position for j in jurors}) > 1:
        reasons.append("Jurors read the core dispute differently")
    confidences = [j.confidence for j in jurors]
    if max(confidences) - min(confidences) > 0.5:
        reasons.append("Large gap in how confident jurors are in the evidence")
    if sum(len(j.concerns) for j in jurors) > 5:
        reasons.append("Several concerns were left unresolved")
    if any(j.position is Verdict.UNDECIDED for j in jurors):
        reasons.append("Some jurors withheld judgment")
    return reasons or ["Complex issues allowed more than one reasonable reading"]


class UnanimousConsensus:
    """Evaluates a JuryDeliberation. Always returns a result."""

    def reach_consensus(self, deliberation: JuryDeliberation) -> JuryConsensusResult:
        logger.info(
            "Evaluating jury deliberation %s (unanimous=%s, rounds=%d)",
            deliberation.id, deliberation.unanimous_decision, deliberation.total_rounds,
        )
        try:
            if (
                deliberation.unanimous_decision
                and deliberation.final_verdict is not None
                and deliberation.final_verdict is not Verdict.UNDECIDED
            ):
                return self._unanimous(deliberation)
            return self._divided(deliberation)
        except Exception as exc:
            failure = JuryDeliberationFailure(f"Jury evaluation failed for {deliberation.id}: {exc}")
            logger.error("%s", failure)
            return self._failure(deliberation)

    def confidence(self, deliberation: JuryDeliberation, unanimous: bool) -> float:
        jurors = deliberation.jurors
        mean_confidence = sum(j.confidence for j in jurors) / len(jurors)
        round_penalty = min(_MAX_ROUND_PENALTY, deliberation.total_rounds * _ROUND_PENALTY_STEP)
        unanimity_bonus = _UNANIMITY_BONUS if unanimous else 0.0
        convergence_bonus = deliberation.convergence_rate * _CONVERGENCE_WEIGHT
        return max(0.1, min(1.0, mean_confidence - round_penalty + unanimity_bonus + convergence_bonus))

    def metrics(self, deliberation: JuryDeliberation, unanimous: bool) -> JuryMetrics:
        stats = deliberation.statistics()
        quality = (
            min(1.0, stats.total_discussions / 30)
            + min(1.0, stats.total_questions / 10)
            + min(1.0, stats.total_challenges / 5)
        ) / 3
        return JuryMetrics(
            unanimity_achieved=unanimous,
            convergence_rate=deliberation.convergence_rate,
            average_confidence=stats.average_final_confidence,
            deliberation_quality=quality,
            rounds_to_consensus=deliberation.total_rounds if unanimous else -1,
        )

    def _unanimous(self, deliberation: JuryDeliberation) -> JuryConsensusResult:
        verdict = deliberation.final_verdict
        if verdict is None:
            raise ValueError("Unanimous deliberation has no final verdict")
        confidence = self.confidence(deliberation, unanimous=True)
        stats = deliberation.statistics()
        arguments = list(dict.fromkeys(a for j in deliberation.jurors for a in j.key_arguments))[:5]

        lines = [
            f"Unanimous jury decision: position {verdict.value}",
            "",
            "Deliberation:",
            f"- {deliberation.total_rounds} rounds of discussion",
            f"- {stats.total_discussions} statements exchanged",
            f"- {stats.total_questions} questions and {stats.total_challenges} challenges",
            "",
            "Key points of agreement:",
            *(f"- {a}" for a in arguments),
            "",
            f"Average final confidence: {stats.average_final_confidence * 100:.1f}%",
        ]
        logger.info(
            "Unanimous jury verdict %s (confidence %.2f, %d rounds)",
            verdict.value, confidence, deliberation.total_rounds,
        )
        return JuryConsensusResult(
            decision=verdict,
            confidence=confidence,
            reasoning="\n".join(lines),
            dissent=None,
            metrics=self.metrics(deliberation, unanimous=True),
        )

    def _divided(self, deliberation: JuryDeliberation) -> JuryConsensusResult:
        jurors = deliberation.jurors
        decision = majority_decision(jurors)
        plurality = plurality_position(jurors)
        dissent = [
            DissentingOpinion(juror_id=j.juror_id, name=j.name, position=j.position, reasoning=j.reasoning)
            for j in jurors
            if j.position is not plurality
        ]
        counts = vote_distribution(jurors)
        confidence = self.confidence(deliberation, unanimous=False)

        if decision is Verdict.UNDECIDED:
            outcome = "The jury could not reach a clear conclusion."
        else:
            outcome = f"Position {decision.value} is taken by majority, without full agreement."
        lines = [
            f"Divided jury decision: {decision.value}",
            "",
            f"Votes: A={counts[Verdict.A]}, B={counts[Verdict.B]}, undecided={counts[Verdict.UNDECIDED]}",
            f"Rounds: {deliberation.total_rounds}",
            "",
            "Reasons for disagreement:",
            *(f"- {r}" for r in _disagreement_reasons(jurors)),
            "",
            outcome,
        ]
        logger.info(
            "Divided jury verdict %s (confidence %.2f, %d dissenting)",
            decision.value, confidence, len(dissent),
        )
        return JuryConsensusResult(
            decision=decision,
            confidence=confidence,
            reasoning="\n".join(lines),
            dissent=dissent,
            metrics=self.metrics(deliberation, unanimous=False),
        )

    def _failure(self, deliberation: JuryDeliberation) -> JuryConsensusResult:
        return JuryConsensusResult(
            decision=Verdict.UNDECIDED,
            confidence=0.0,
            reasoning="Consensus could not be derived: the jury did not reach a conclusion.",
            dissent=None,
            metrics=JuryMetrics(
                unanimity_achieved=False,
                convergence_rate=0.0,
                average_confidence=0.0,
                deliberation_quality=0.0,
                rounds_to_consensus=deliberation.total_rounds,
            ),
        )
