"""OpenAI provider using openai SDK with native async."""

import asyncio
import logging
import os
import time

from openai import AsyncOpenAI

from config.config_loader import ModelConfig
from committee.models import TokenUsage
from committee.providers.base import AIProvider, GenerationRequest, GenerationResponse, ProviderError

logger = logging.getLogger(__name__)


def chat_messages(request: GenerationRequest) -> list[dict[str, str]]:
    """Build the chat-completions message list for a request."""
    messages = []
    if request.system_prompt:
        messages.append({"role": "system", "content": request.system_prompt})
    messages.append({"role": "user", "content": request.user_prompt})
    return messages


def usage_from_completion(response) -> TokenUsage:
    if not response.usage:
        return TokenUsage()
    return TokenUsage(
        prompt=response.usage.prompt_tokens or 0,
        completion=response.usage.completion_tokens or 0,
        total=response.usage.total_tokens or 0,
    )


class OpenAIProvider(AIProvider):
    """OpenAI provider via openai SDK."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise ProviderError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = AsyncOpenAI(api_key=api_key)

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=self._config.model,
                    messages=chat_messages(request),
                    max_tokens=request.max_tokens or self._config.max_tokens,
                    temperature=request.temperature,
                ),
                timeout=self._config.timeout_sec,
            )
        except TimeoutError as exc:
            raise ProviderError(
                self._config.name, f"Request timed out after {self._config.timeout_sec}s", timed_out=True
            ) from exc
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        choice = response.choices[0] if response.choices else None
        if not choice or not choice.message.content:
            raise ProviderError(self._config.name, "Empty response content")

        usage = usage_from_completion(response)
        logger.info("OpenAI call: %.2fs, %d tokens", latency, usage.total)

        return GenerationResponse(
            provider=self._config.name,
            model=self._config.model,
            content=choice.message.content,
            latency_sec=latency,
            token_usage=usage,
            raw=response,
        )
