"""Unit tests for ensemble/healthcheck.py. No real API calls."""

import asyncio
from unittest.mock import AsyncMock

from ensemble.healthcheck import HealthStatus, healthy_ids, run_health_checks
from ensemble.models import OracleResponse
from ensemble.providers.base import ProviderError

from tests.conftest import MockProvider


async def test_all_providers_pass():
    """All providers succeed -> all marked ok, no errors."""
    providers = {"claude-opus": MockProvider("claude-opus", "OK"), "gemini-flash": MockProvider("gemini-flash", "OK")}

    results = await run_health_checks(providers)

    assert results["claude-opus"].ok and results["claude-opus"].error == ""
    assert results["gemini-flash"].ok
    assert results["gemini-flash"].latency_sec >= 0.0


async def test_ping_uses_small_deterministic_request():
    provider = MockProvider("gpt-5", "OK")
    await run_health_checks({"gpt-5": provider})
    kwargs = provider.generate.call_args.kwargs
    assert kwargs["max_tokens"] == 16
    assert kwargs["temperature"] == 0.0


async def test_one_provider_fails():
    """A provider that raises returns ok=False with the error message."""
    providers = {"claude-opus": MockProvider("claude-opus"), "grok": MockProvider("grok")}
    providers["grok"].generate = AsyncMock(side_effect=ProviderError("grok", "403 Forbidden"))

    results = await run_health_checks(providers)

    assert results["claude-opus"].ok
    assert results["grok"].ok is False
    assert "403" in results["grok"].error
    assert healthy_ids(results) == ["claude-opus"]


async def test_empty_reply_is_unhealthy():
    provider = MockProvider("llama")
    provider.generate = AsyncMock(return_value=OracleResponse(content="  ", model="llama", provider="ollama"))
    results = await run_health_checks({"llama": provider})
    assert results["llama"] == HealthStatus(False, "empty reply", results["llama"].latency_sec)


async def test_all_providers_fail():
    """All fail -> all marked False."""
    providers = {"gpt-5": MockProvider("gpt-5"), "llama": MockProvider("llama")}
    for name, p in providers.items():
        p.generate = AsyncMock(side_effect=Exception(f"{name} down"))

    results = await run_health_checks(providers)

    for name in providers:
        assert results[name].ok is False
        assert name in results[name].error
    assert healthy_ids(results) == []


async def test_empty_providers():
    """Empty provider dict returns empty results."""
    assert await run_health_checks({}) == {}


async def test_timeout_counts_as_failure(monkeypatch):
    """A provider that hangs past the timeout is marked as failed."""
    providers = {"slow": MockProvider("slow")}

    async def hang(*args, **kwargs):
        await asyncio.sleep(9999)

    providers["slow"].generate = AsyncMock(side_effect=hang)
    monkeypatch.setattr("ensemble.healthcheck._TIMEOUT_SEC", 0.05)

    results = await run_health_checks(providers)

    assert results["slow"].ok is False
    assert results["slow"].error == "TimeoutError"
