"""Wires providers, raters, judges, synthesizer and jury into an orchestrator."""

import logging
from dataclasses import replace

from config.config_loader import AppConfig
from committee.consensus import ConsensusSynthesizer
from committee.coordinator import DecisionCoordinator
from committee.errors import ValidationError
from committee.events import EventSink
from committee.jury_panel import Juror, make_jury_runner
from committee.orchestrator import CommitteeOrchestrator
from committee.pairwise_judge import PairwiseJudge
from committee.proposers import Proposer, ProposerPool
from committee.providers.anthropic import AnthropicProvider
from committee.providers.base import AIProvider
from committee.providers.gemini import GeminiProvider
from committee.providers.openai_provider import OpenAIProvider
from committee.providers.xai import XAIProvider
from committee.repository import DecisionRepository
from committee.rule_judge import RuleJudge

logger = logging.getLogger(__name__)

PROVIDER_CLASSES: dict[str, type[AIProvider]] = {
    "gemini": GeminiProvider,
    "openai": OpenAIProvider,
    "claude": AnthropicProvider,
    "grok": XAIProvider,
}


def build_all_providers(config: AppConfig) -> dict[str, AIProvider]:
    """Build all available providers. Returns dict keyed by name."""
    providers: dict[str, AIProvider] = {}
    for name in sorted(config.available_providers):
        if name not in PROVIDER_CLASSES:
            logger.warning("Provider '%s' unknown, skipping", name)
            continue
        try:
            providers[name] = PROVIDER_CLASSES[name](config.models[name])
        except Exception as exc:
            logger.warning("Failed to instantiate provider '%s': %s", name, exc)
    return providers


def _pick_provider(
    providers: dict[str, AIProvider], preferred: str | None, role: str
) -> AIProvider:
    if preferred and preferred in providers:
        return providers[preferred]
    if not providers:
        raise ValidationError(f"No provider available for the {role}")
    fallback = next(iter(providers.values()))
    logger.warning("%s provider %r unavailable, using %s", role.capitalize(), preferred, fallback.name())
    return fallback


def build_pool(config: AppConfig, providers: dict[str, AIProvider]) -> ProposerPool:
    proposers = []
    for rater in config.raters.values():
        provider = providers.get(rater.provider)
        if provider is None:
            logger.info("Rater %s skipped (provider %s unavailable)", rater.id, rater.provider)
            continue
        weight = config.committee.agent_weights.get(rater.id, rater.weight)
        proposers.append(Proposer(replace(rater, weight=weight), provider, config.prompts))
    return ProposerPool(proposers)


def build_jurors(config: AppConfig, providers: dict[str, AIProvider]) -> list[Juror]:
    jurors = []
    for juror_id in config.jury.jurors:
        rater = config.raters.get(juror_id)
        provider_name = rater.provider if rater else juror_id
        provider = providers.get(provider_name)
        if provider is None:
            logger.info("Juror %s skipped (provider %s unavailable)", juror_id, provider_name)
            continue
        jurors.append(Juror(id=juror_id, name=rater.display_name if rater else juror_id, provider=provider))
    return jurors


def build_orchestrator(
    config: AppConfig,
    providers: dict[str, AIProvider],
    repository: DecisionRepository | None = None,
    sink: EventSink | None = None,
    coordinator: DecisionCoordinator | None = None,
) -> CommitteeOrchestrator:
    """Assemble an orchestrator from config and already-built providers.

    Raises:
        ValidationError: If no rater can be served or a required judge has no provider.
    """
    committee = config.committee
    timeout = committee.call_timeout_sec

    pool = build_pool(config, providers)
    if not pool.proposers:
        raise ValidationError("No raters have an available provider")

    pairwise_judge = None
    if committee.judge_mode in ("pairwise", "both"):
        pairwise_judge = PairwiseJudge(
            _pick_provider(providers, config.judge.provider, "judge"),
            config.prompts,
            config.judge,
            timeout_sec=timeout,
        )

    synthesis_provider = None
    if config.synthesizer.enable_ai_synthesis and providers:
        synthesis_provider = _pick_provider(providers, config.synthesizer.provider, "synthesizer")
    synthesizer = ConsensusSynthesizer(
        method=committee.consensus_method,
        config=config.synthesizer,
        agent_weights=pool.weights(),
        provider=synthesis_provider,
        prompts=config.prompts,
        timeout_sec=timeout,
    )

    jury_runner = None
    if config.jury.enabled:
        jurors = build_jurors(config, providers)
        if jurors:
            jury_runner = make_jury_runner(jurors, config.prompts, config.jury, timeout_sec=timeout)
        else:
            logger.warning("Jury enabled but no juror has an available provider")

    logger.info(
        "Committee ready: %d raters, judge=%s, method=%s, jury=%s",
        len(pool.proposers), committee.judge_mode, committee.consensus_method,
        "on" if jury_runner else "off",
    )
    return CommitteeOrchestrator(
        pool=pool,
        synthesizer=synthesizer,
        config=committee,
        rule_judge=RuleJudge(config.rule_criteria),
        pairwise_judge=pairwise_judge,
        jury_runner=jury_runner,
        coordinator=coordinator,
        repository=repository,
        sink=sink,
        judge_rounds=config.judge.rounds,
    )
