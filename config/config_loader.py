"""Load settings.yaml into typed dataclasses. Validates API keys at startup."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from committee.errors import ValidationError
from committee.models import CONSENSUS_METHODS

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"

JUDGE_MODES = ("rule", "pairwise", "both")


@dataclass
class ModelConfig:
    name: str
    sdk: str
    model: str
    api_key_env: str
    timeout_sec: int
    max_tokens: int
    base_url: str | None = None


@dataclass
class RaterConfig:
    id: str
    provider: str
    display_name: str
    temperature: float = 0.7
    weight: float = 1.0


@dataclass
class CommitteeConfig:
    consensus_method: str = "weighted_voting"
    judge_mode: str = "rule"
    min_proposals: int = 3
    max_proposals_per_agent: int = 2
    consensus_threshold: float = 0.6
    enable_early_exit: bool = False
    cooldown_ms: int = 15000
    failure_cooldown_ms: int = 60000
    call_timeout_sec: float = 90.0
    deliberation_timeout_sec: float | None = None
    agent_weights: dict[str, float] = field(default_factory=dict)
    output_dir: Path = Path("./output")


@dataclass
class JudgeConfig:
    provider: str | None = None
    temperature: float = 0.3
    max_tokens: int = 1500
    rounds: int = 3
    max_concurrent_pairs: int = 2
    randomize_order: bool = True
    mask_agent_names: bool = False
    normalize_length: bool = False
    multiple_rounds: bool = True


@dataclass
class RuleCriteria:
    min_confidence: float = 0.6
    min_evidence_count: int = 2
    min_rationale_length: int = 100
    requires_structured_evidence: bool = False
    penalize_inconsistency: bool = True


@dataclass
class SynthesizerConfig:
    uncertainty_threshold: float = 0.3
    enable_ai_synthesis: bool = False
    provider: str | None = None


@dataclass
class JuryConfig:
    enabled: bool = False
    jurors: list[str] = field(default_factory=list)
    max_rounds: int = 5
    temperature: float = 0.5


@dataclass
class PromptsConfig:
    proposer_system: str
    proposer_user: str
    judge_system: str
    judge_user: str
    synthesis: str
    juror_initial: str
    juror_followup: str
    personas: dict[str, str] = field(default_factory=dict)


@dataclass
class AppConfig:
    committee: CommitteeConfig
    raters: dict[str, RaterConfig]
    judge: JudgeConfig
    rule_criteria: RuleCriteria
    synthesizer: SynthesizerConfig
    jury: JuryConfig
    models: dict[str, ModelConfig]
    prompts: PromptsConfig
    available_providers: set[str] = field(default_factory=set)


def validate_committee_config(config: CommitteeConfig) -> None:
    """Raise ValidationError when the committee settings cannot be run."""
    if config.min_proposals < 1:
        raise ValidationError(f"min_proposals must be >= 1, got {config.min_proposals}")
    if config.max_proposals_per_agent < 1:
        raise ValidationError(
            f"max_proposals_per_agent must be >= 1, got {config.max_proposals_per_agent}"
        )
    if not 0.0 <= config.consensus_threshold <= 1.0:
        raise ValidationError(
            f"consensus_threshold must be within [0, 1], got {config.consensus_threshold}"
        )
    if config.consensus_method not in CONSENSUS_METHODS:
        raise ValidationError(f"Unknown consensus method: {config.consensus_method}")
    if config.judge_mode not in JUDGE_MODES:
        raise ValidationError(f"Unknown judge mode: {config.judge_mode}")
    for rater_id, weight in config.agent_weights.items():
        if not 0.1 <= weight <= 1.0:
            raise ValidationError(f"Weight for {rater_id} must be within [0.1, 1.0], got {weight}")


def _load_committee(raw: dict) -> CommitteeConfig:
    timeout = raw.get("deliberation_timeout_sec")
    return CommitteeConfig(
        consensus_method=str(raw.get("consensus_method", "weighted_voting")),
        judge_mode=str(raw.get("judge_mode", "rule")),
        min_proposals=int(raw.get("min_proposals", 3)),
        max_proposals_per_agent=int(raw.get("max_proposals_per_agent", 2)),
        consensus_threshold=float(raw.get("consensus_threshold", 0.6)),
        enable_early_exit=bool(raw.get("enable_early_exit", False)),
        cooldown_ms=int(raw.get("cooldown_ms", 15000)),
        failure_cooldown_ms=int(raw.get("failure_cooldown_ms", 60000)),
        call_timeout_sec=float(raw.get("call_timeout_sec", 90)),
        deliberation_timeout_sec=float(timeout) if timeout is not None else None,
        agent_weights={k: float(v) for k, v in (raw.get("agent_weights") or {}).items()},
        output_dir=Path(raw.get("output_dir", "./output")),
    )


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing, ValidationError if the
    committee section is invalid.
    Logs missing API keys but does not raise; callers check
    available_providers count.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    committee = _load_committee(raw.get("committee", {}))
    validate_committee_config(committee)

    raters = {
        rater_id: RaterConfig(
            id=rater_id,
            provider=str(rater_raw.get("provider", rater_id)),
            display_name=str(rater_raw.get("display_name", rater_id)),
            temperature=float(rater_raw.get("temperature", 0.7)),
            weight=float(rater_raw.get("weight", 1.0)),
        )
        for rater_id, rater_raw in (raw.get("raters") or {}).items()
    }

    judge = JudgeConfig(**(raw.get("judge") or {}))
    rule_criteria = RuleCriteria(**(raw.get("rule_criteria") or {}))
    synthesizer = SynthesizerConfig(**(raw.get("synthesizer") or {}))
    jury = JuryConfig(**(raw.get("jury") or {}))

    prompts_raw = raw["prompts"]
    personas_raw = raw.get("personas", {})
    prompts = PromptsConfig(
        proposer_system=prompts_raw["proposer_system"],
        proposer_user=prompts_raw["proposer_user"],
        judge_system=prompts_raw["judge_system"],
        judge_user=prompts_raw["judge_user"],
        synthesis=prompts_raw["synthesis"],
        juror_initial=prompts_raw["juror_initial"],
        juror_followup=prompts_raw["juror_followup"],
        personas={k: str(v) for k, v in personas_raw.items()},
    )

    models: dict[str, ModelConfig] = {}
    available_providers: set[str] = set()

    for provider_name, model_raw in raw["models"].items():
        model_cfg = ModelConfig(
            name=provider_name,
            sdk=model_raw["sdk"],
            model=model_raw["model"],
            api_key_env=model_raw["api_key_env"],
            timeout_sec=int(model_raw["timeout_sec"]),
            max_tokens=int(model_raw["max_tokens"]),
            base_url=model_raw.get("base_url"),
        )
        models[provider_name] = model_cfg

        api_key = os.environ.get(model_raw["api_key_env"], "").strip()
        if api_key:
            available_providers.add(provider_name)
            logger.info("Provider available: %s", provider_name)
        else:
            logger.info(
                "Provider skipped (no API key): %s - set %s in .env",
                provider_name,
                model_raw["api_key_env"],
            )

    for rater in raters.values():
        if rater.provider not in models:
            raise ValidationError(f"Rater {rater.id} references unknown provider {rater.provider}")

    return AppConfig(
        committee=committee,
        raters=raters,
        judge=judge,
        rule_criteria=rule_criteria,
        synthesizer=synthesizer,
        jury=jury,
        models=models,
        prompts=prompts,
        available_providers=available_providers,
    )
