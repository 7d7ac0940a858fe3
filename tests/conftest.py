"""Shared pytest fixtures."""

import json
from collections.abc import Callable
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from config.config_loader import (
    AppConfig,
    DefaultsConfig,
    ModelConfig,
    OrchestratorConfig,
    TiersConfig,
)
from ensemble.models import ModelDescriptor, OracleResponse, SearchResult, Usage
from ensemble.oracle import Oracle
from ensemble.providers.base import AIProvider
from ensemble.search import KnowledgeSearch


def make_descriptor(
    model_id: str,
    provider: str = "mock",
    quality: float = 8.0,
    speed: float = 7.0,
    cost: float = 0.000001,
    **flags: bool,
) -> ModelDescriptor:
    return ModelDescriptor(
        id=model_id,
        name=model_id,
        provider=provider,
        model=f"{model_id}-model",
        quality_score=quality,
        speed_score=speed,
        cost_per_token=cost,
        is_latest=flags.get("is_latest", False),
        is_newest=flags.get("is_newest", False),
    )


# opus is PREMIUM; gpt-5 and flash are BALANCED; flash is also FAST and
# ECONOMICAL; llama is ECONOMICAL only, through its free provider.
CATALOG: list[ModelDescriptor] = [
    make_descriptor("claude-opus", "anthropic", quality=10, speed=6, cost=0.000015, is_newest=True),
    make_descriptor("gpt-5", "openai", quality=9, speed=7, cost=0.000003),
    make_descriptor("gemini-flash", "google", quality=8, speed=10, cost=0.0000003),
    make_descriptor("llama", "ollama", quality=6, speed=6, cost=0.000001),
]


class MockProvider(AIProvider):
    """Test double AIProvider."""

    def __init__(self, model_id: str = "mock", response_content: str = "Mock response") -> None:
        self._name = model_id
        self._response_content = response_content
        # Shadow the class method with an AsyncMock at the instance level.
        # ABC check passes because generate is defined in the class body below.
        self.generate = AsyncMock(  # type: ignore[assignment]
            return_value=OracleResponse(
                content=response_content,
                model=model_id,
                provider="mock",
                usage=Usage(prompt_tokens=10, completion_tokens=5),
            )
        )

    def name(self) -> str:
        return self._name

    def model_string(self) -> str:
        return f"{self._name}-model"

    async def generate(  # type: ignore[override]
        self,
        prompt: str,
        system: str = "",
        max_tokens: int | None = None,
        temperature: float = 0.7,
    ) -> OracleResponse:
        """Default implementation; replaced by AsyncMock in __init__."""
        return OracleResponse(content=self._response_content, model=self._name, provider="mock")


def scripted_reply(prompt: str) -> str:
    """Canned answers keyed on the wording of each prompt template."""
    if "Analyze this request" in prompt:
        return json.dumps({
            "complexity": 6,
            "mainObjective": "Design a rate limiter for a public API",
            "requiredCapabilities": ["architecture", "security"],
            "suggestedAgents": ["architect"],
            "estimatedScope": "medium",
            "keyQuestions": ["Which limiting algorithm fits?"],
        })
    if "what expertise is needed" in prompt:
        return json.dumps({
            "primaryExpertise": ["architecture", "security"],
            "secondaryExpertise": ["testing"],
            "technicalDepth": "medium",
            "creativityNeeded": False,
            "analyticalDepth": "medium",
            "domainSpecific": False,
            "suggestedAgentTypes": ["architect", "security"],
        })
    if "plan the focus for round" in prompt:
        return json.dumps({
            "primaryFocus": "Token bucket versus sliding window",
            "objectives": ["compare algorithms", "pick storage"],
            "suggestedApproach": "analysis",
            "keyQuestions": ["Where is state kept?"],
        })
    if "determine what should happen next" in prompt:
        return json.dumps({
            "type": "agent_discussion",
            "description": "Compare token bucket and sliding window limiting",
            "priority": 7,
            "reasoning": "Core design choice",
            "requiredAgents": [],
        })
    if "should continue or conclude" in prompt:
        return json.dumps({
            "shouldContinue": False,
            "confidence": 0.9,
            "reasoning": "Objective covered",
            "completionPercentage": 90,
        })
    if "specialized sub-agents" in prompt:
        return json.dumps([
            {"type": "security-auditor", "specialization": "abuse prevention", "task": "Review bypass vectors"}
        ])
    if "Synthesize a comprehensive conclusion" in prompt:
        return (
            "The team successfully designed a token bucket limiter backed by Redis. "
            "A key insight is that burst capacity must be tuned per client tier. "
            "We recommend starting with conservative limits and monitoring rejections."
        )
    return (
        "I agree with the token bucket approach for burst tolerance. "
        "We decided to keep counters in Redis with a short TTL. "
        "However, the sliding window gives fairer limits under steady load. "
        "How should limits differ per client tier?"
    )


class ScriptedProvider(MockProvider):
    """MockProvider whose reply depends on the prompt."""

    def __init__(self, model_id: str, reply: Callable[[str], str] = scripted_reply) -> None:
        super().__init__(model_id)

        async def _generate(prompt: str, system: str = "", max_tokens: int | None = None,
                            temperature: float = 0.7) -> OracleResponse:
            return OracleResponse(content=reply(prompt), model=model_id, provider="mock")

        self.generate = AsyncMock(side_effect=_generate)  # type: ignore[assignment]


def make_oracle(
    catalog: list[ModelDescriptor] | None = None,
    reply: Callable[[str], str] = scripted_reply,
) -> Oracle:
    catalog = catalog if catalog is not None else CATALOG
    providers: dict[str, AIProvider] = {m.id: ScriptedProvider(m.id, reply) for m in catalog}
    return Oracle(providers, {m.id: m for m in catalog})


class StaticKnowledgeSearch(KnowledgeSearch):
    """Returns the same canned results for every query and records the queries."""

    def __init__(self, results: list[SearchResult] | None = None) -> None:
        self.results = results if results is not None else [
            SearchResult("Rate limiting patterns", "https://example.com/rl", "Token bucket allows bursts."),
            SearchResult("Redis counters", "https://example.com/redis", "INCR with EXPIRE is atomic."),
            SearchResult("API gateways", "https://example.com/gw", "Gateways often enforce quotas."),
        ]
        self.queries: list[str] = []

    async def search(self, query: str, max_results: int = 5) -> list[SearchResult]:
        self.queries.append(query)
        return self.results[:max_results]


@pytest.fixture
def catalog() -> list[ModelDescriptor]:
    return list(CATALOG)


@pytest.fixture
def oracle() -> Oracle:
    return make_oracle()


@pytest.fixture
def search() -> StaticKnowledgeSearch:
    return StaticKnowledgeSearch()


@pytest.fixture
def sample_model_config() -> ModelConfig:
    return ModelConfig(
        name="test_model",
        sdk="anthropic",
        model="test-model-1",
        api_key_env="TEST_API_KEY",
        timeout_sec=30,
        max_tokens=1024,
        base_url=None,
    )


@pytest.fixture
def sample_app_config(tmp_path: Path) -> AppConfig:
    models = {
        m.id: ModelConfig(
            name=m.id,
            sdk="anthropic",
            model=m.model,
            api_key_env="TEST_API_KEY",
            timeout_sec=30,
            max_tokens=1024,
            display_name=m.name,
            provider=m.provider,
            quality_score=m.quality_score,
            speed_score=m.speed_score,
            cost_per_token=m.cost_per_token,
            is_newest=m.is_newest,
        )
        for m in CATALOG
    }
    return AppConfig(
        defaults=DefaultsConfig(output_dir=tmp_path / "output", memory_dir=tmp_path / "memory", seed=7),
        models=models,
        orchestrator=OrchestratorConfig(max_iterations=6, newest_models=["claude-opus", "gpt-5"]),
        tiers=TiersConfig(),
        available_providers=set(models),
    )


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
