"""Language model oracle: the model catalog plus a generate() that never raises."""

import logging
from dataclasses import dataclass

from config.config_loader import AppConfig, ModelConfig
from ensemble.models import GenerationOptions, ModelDescriptor, OracleResponse
from ensemble.prompts import system_prompt
from ensemble.providers.anthropic import AnthropicProvider
from ensemble.providers.base import AIProvider, ProviderError
from ensemble.providers.compatible import OpenAICompatibleProvider
from ensemble.providers.gemini import GeminiProvider
from ensemble.providers.openai_provider import OpenAIProvider

logger = logging.getLogger(__name__)

FALLBACK_PROVIDER = "fallback"

PROVIDER_CLASSES: dict[str, type[AIProvider]] = {
    "anthropic": AnthropicProvider,
    "openai": OpenAIProvider,
    "gemini": GeminiProvider,
    "openai_compatible": OpenAICompatibleProvider,
}


class NoProvidersError(RuntimeError):
    """Raised when the oracle is built with zero usable models."""


@dataclass
class OracleStats:
    calls: int = 0
    failures: int = 0
    retries: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost: float = 0.0


def build_providers(config: AppConfig) -> dict[str, AIProvider]:
    """Build all available providers. Returns dict keyed by catalog id."""
    providers: dict[str, AIProvider] = {}
    for model_id in sorted(config.available_providers):
        model_cfg = config.models[model_id]
        provider_cls = PROVIDER_CLASSES.get(model_cfg.sdk)
        if provider_cls is None:
            logger.warning("SDK '%s' for model '%s' unknown, skipping", model_cfg.sdk, model_id)
            continue
        try:
            providers[model_id] = provider_cls(model_cfg)
        except ProviderError as exc:
            logger.warning("Failed to instantiate provider '%s': %s", model_id, exc)
    return providers


def describe(model_cfg: ModelConfig) -> ModelDescriptor:
    """Project a catalog entry onto the read-only descriptor the core works with."""
    return ModelDescriptor(
        id=model_cfg.name,
        name=model_cfg.display_name or model_cfg.name,
        provider=model_cfg.provider or model_cfg.sdk,
        model=model_cfg.model,
        quality_score=model_cfg.quality_score,
        speed_score=model_cfg.speed_score,
        cost_per_token=model_cfg.cost_per_token,
        capabilities=tuple(model_cfg.capabilities),
        is_latest=model_cfg.is_latest,
        is_newest=model_cfg.is_newest,
    )


def is_fallback(response: OracleResponse) -> bool:
    return response.provider == FALLBACK_PROVIDER


class Oracle:
    """Stateless text generation over every configured model.

    generate() converts every provider failure into fallback content tagged
    provider="fallback"; callers decide whether to trust it via is_fallback().
    """

    def __init__(
        self,
        providers: dict[str, AIProvider],
        descriptors: dict[str, ModelDescriptor],
    ) -> None:
        if not providers:
            raise NoProvidersError("No model providers available. Check API keys in .env.")
        self._providers = providers
        self._descriptors = {k: v for k, v in descriptors.items() if k in providers}
        self.stats = OracleStats()

    @classmethod
    def from_config(cls, config: AppConfig, providers: dict[str, AIProvider] | None = None) -> "Oracle":
        if providers is None:
            providers = build_providers(config)
        descriptors = {name: describe(config.models[name]) for name in providers if name in config.models}
        return cls(providers, descriptors)

    def model_ids(self) -> list[str]:
        return list(self._providers)

    def catalog(self) -> list[ModelDescriptor]:
        return list(self._descriptors.values())

    def descriptor(self, model_id: str) -> ModelDescriptor | None:
        return self._descriptors.get(model_id)

    def restrict(self, model_ids: list[str]) -> None:
        """Drop every model not in model_ids (e.g. after a failed health check)."""
        keep = [m for m in model_ids if m in self._providers]
        if not keep:
            raise NoProvidersError("No model providers left after filtering.")
        self._providers = {m: self._providers[m] for m in keep}
        self._descriptors = {m: d for m, d in self._descriptors.items() if m in self._providers}

    def _resolve(self, model_id: str, options: GenerationOptions) -> AIProvider:
        wanted = options.specific_model or model_id
        provider = self._providers.get(wanted)
        if provider is None:
            provider = next(iter(self._providers.values()))
            logger.debug("Model '%s' not configured, using %s", wanted, provider.name())
        return provider

    async def _call_provider(
        self,
        provider: AIProvider,
        prompt: str,
        options: GenerationOptions,
    ) -> OracleResponse | ProviderError:
        """Call a single provider, retrying once on timeout with 1.5x the timeout.

        Never raises; returns ProviderError on permanent failure.
        """
        system = system_prompt(options.agent_type)
        try:
            return await provider.generate(prompt, system, options.max_tokens, options.temperature)
        except ProviderError as exc:
            if "timed out" not in str(exc).lower():
                logger.warning("Model %s failed: %s", provider.name(), exc)
                return exc

            # Retry once with 1.5x timeout by temporarily patching provider config
            cfg = getattr(provider, "_config", None)
            original_timeout: int | None = None
            if cfg is not None and hasattr(cfg, "timeout_sec"):
                original_timeout = cfg.timeout_sec
                cfg.timeout_sec = int(original_timeout * 1.5)
                logger.warning("Model %s timed out, retrying with %ds (1.5x)", provider.name(), cfg.timeout_sec)
            else:
                logger.warning("Model %s timed out, retrying", provider.name())
            self.stats.retries += 1
            try:
                return await provider.generate(prompt, system, options.max_tokens, options.temperature)
            except ProviderError as retry_exc:
                logger.warning("Model %s failed after retry: %s", provider.name(), retry_exc)
                return retry_exc
            except Exception as retry_exc:
                logger.warning("Model %s unexpected failure after retry: %s", provider.name(), retry_exc)
                return ProviderError(provider.name(), f"Unexpected error on retry: {retry_exc}")
            finally:
                if cfg is not None and original_timeout is not None:
                    cfg.timeout_sec = original_timeout
        except Exception as exc:
            logger.warning("Model %s unexpected failure: %s", provider.name(), exc)
            return ProviderError(provider.name(), f"Unexpected error: {exc}")

    async def generate(
        self,
        model_id: str,
        prompt: str,
        options: GenerationOptions | None = None,
    ) -> OracleResponse:
        options = options or GenerationOptions()
        provider = self._resolve(model_id, options)
        self.stats.calls += 1

        result = await self._call_provider(provider, prompt, options)
        if isinstance(result, ProviderError):
            self.stats.failures += 1
            return self._fallback(provider.name(), options.agent_type, result)

        self.stats.prompt_tokens += result.usage.prompt_tokens
        self.stats.completion_tokens += result.usage.completion_tokens
        self.stats.cost += result.cost
        return result

    @staticmethod
    def _fallback(model_id: str, agent_type: str, error: ProviderError) -> OracleResponse:
        content = (
            f"As the {agent_type} agent I could not reach {model_id} for this step. "
            "Proceeding with the information already gathered; "
            "the team should revisit this point in the next round."
        )
        logger.debug("Fallback content for %s: %s", model_id, error)
        return OracleResponse(content=content, model=FALLBACK_PROVIDER, provider=FALLBACK_PROVIDER)
