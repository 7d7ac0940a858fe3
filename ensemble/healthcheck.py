"""Ping every configured model before a conversation starts.

A model counts as healthy when it answers the ping within the timeout with
non-empty content. Checks run in parallel; one slow model does not delay
the verdict on the others beyond the timeout.
"""

import asyncio
import logging
import time
from dataclasses import dataclass

from ensemble.providers.base import AIProvider

logger = logging.getLogger(__name__)

_PING_PROMPT = "Reply with the word OK only."
_TIMEOUT_SEC = 15.0


@dataclass
class HealthStatus:
    ok: bool
    error: str = ""
    latency_sec: float = 0.0


async def _ping(provider: AIProvider) -> HealthStatus:
    start = time.monotonic()
    try:
        response = await asyncio.wait_for(
            provider.generate(_PING_PROMPT, max_tokens=16, temperature=0.0),
            timeout=_TIMEOUT_SEC,
        )
    except Exception as exc:
        logger.debug("Health check failed for %s: %s", provider.name(), exc)
        return HealthStatus(False, str(exc) or type(exc).__name__, time.monotonic() - start)
    if not response.content.strip():
        return HealthStatus(False, "empty reply", time.monotonic() - start)
    return HealthStatus(True, "", time.monotonic() - start)


async def run_health_checks(providers: dict[str, AIProvider]) -> dict[str, HealthStatus]:
    """Ping all providers in parallel, keyed by catalog id."""
    names = list(providers)
    statuses = await asyncio.gather(*(_ping(providers[n]) for n in names))
    return dict(zip(names, statuses))


def healthy_ids(results: dict[str, HealthStatus]) -> list[str]:
    return sorted(name for name, status in results.items() if status.ok)
