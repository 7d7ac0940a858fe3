"""OpenAI-compatible endpoints (xAI Grok, DeepSeek) using the openai SDK with a base_url."""

import asyncio
import logging
import os
import time

from openai import AsyncOpenAI

from config.config_loader import ModelConfig
from ensemble.models import OracleResponse, Usage
from ensemble.providers.base import AIProvider, ProviderError

logger = logging.getLogger(__name__)


class OpenAICompatibleProvider(AIProvider):
    """Any chat-completions API reachable through AsyncOpenAI(base_url=...)."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise ProviderError(config.name, f"Missing API key: {config.api_key_env}")
        if not config.base_url:
            raise ProviderError(config.name, "base_url is required for OpenAI-compatible providers")
        self._client = AsyncOpenAI(api_key=api_key, base_url=config.base_url)

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    async def generate(
        self,
        prompt: str,
        system: str = "",
        max_tokens: int | None = None,
        temperature: float = 0.7,
    ) -> OracleResponse:
        start = time.monotonic()
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=self._config.model,
                    messages=messages,
                    max_tokens=max_tokens or self._config.max_tokens,
                    temperature=temperature,
                ),
                timeout=self._config.timeout_sec,
            )
        except TimeoutError as exc:
            raise ProviderError(self._config.name, f"Request timed out after {self._config.timeout_sec}s") from exc
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        choice = response.choices[0] if response.choices else None
        if not choice or not choice.message.content:
            raise ProviderError(self._config.name, "Empty response content")

        usage = Usage()
        if response.usage:
            usage = Usage(response.usage.prompt_tokens, response.usage.completion_tokens)

        logger.debug("%s: %.2fs, %s tokens", self._config.name, latency, usage)

        return OracleResponse(
            content=choice.message.content,
            model=self._config.model,
            provider=self._config.provider or "openai-compatible",
            usage=usage,
            cost=(usage.prompt_tokens + usage.completion_tokens) * self._config.cost_per_token,
            latency_sec=latency,
        )
