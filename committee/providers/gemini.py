"""Gemini provider using google-genai SDK with native async."""

import asyncio
import logging
import os
import time

from google import genai
from google.genai import types as genai_types

from config.config_loader import ModelConfig
from committee.models import TokenUsage
from committee.providers.base import AIProvider, GenerationRequest, GenerationResponse, ProviderError

logger = logging.getLogger(__name__)


class GeminiProvider(AIProvider):
    """Google Gemini provider via google-genai SDK."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise ProviderError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = genai.Client(api_key=api_key)

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.aio.models.generate_content(
                    model=self._config.model,
                    contents=request.user_prompt,
                    config=genai_types.GenerateContentConfig(
                        system_instruction=request.system_prompt or None,
                        max_output_tokens=request.max_tokens or self._config.max_tokens,
                        temperature=request.temperature,
                    ),
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

        if not response.text:
            raise ProviderError(self._config.name, "Empty response text")

        usage = TokenUsage()
        meta = response.usage_metadata
        if meta:
            usage = TokenUsage(
                prompt=meta.prompt_token_count or 0,
                completion=meta.candidates_token_count or 0,
                total=meta.total_token_count or 0,
            )

        logger.info("Gemini call: %.2fs, %d tokens", latency, usage.total)

        return GenerationResponse(
            provider=self._config.name,
            model=self._config.model,
            content=response.text,
            latency_sec=latency,
            token_usage=usage,
            raw=response,
        )
