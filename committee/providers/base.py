"""Generative-text capability shared by all model providers."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from committee.models import TokenUsage


class ProviderError(Exception):
    """Raised when a provider call fails or times out."""

    def __init__(self, provider_name: str, message: str, timed_out: bool = False) -> None:
        self.provider_name = provider_name
        self.timed_out = timed_out
        super().__init__(f"[{provider_name}] {message}")


@dataclass
class GenerationRequest:
    system_prompt: str
    user_prompt: str
    temperature: float = 0.7
    max_tokens: int | None = None  # None: use the provider's configured limit


@dataclass
class GenerationResponse:
    provider: str
    model: str
    content: str
    latency_sec: float
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    raw: Any = None


class AIProvider(ABC):
    """Abstract base for all AI model providers."""

    @abstractmethod
    def name(self) -> str:
        """Return the short provider name (e.g. 'gemini', 'claude')."""
        ...

    @abstractmethod
    def model_string(self) -> str:
        """Return the actual model identifier string."""
        ...

    @abstractmethod
    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        """Generate a completion for the given request.

        Args:
            request: System and user prompt plus sampling parameters.

        Returns:
            GenerationResponse with content, token usage and latency.

        Raises:
            ProviderError: On API failure, timeout, or empty response.
        """
        ...
