"""Knowledge search collaborator used for research actions and fact verification."""

import logging
from abc import ABC, abstractmethod

from ensemble.models import SearchResult

logger = logging.getLogger(__name__)


class KnowledgeSearch(ABC):
    """Implementations return an empty list rather than raising on failure."""

    @abstractmethod
    async def search(self, query: str, max_results: int = 5) -> list[SearchResult]:
        ...


class NullKnowledgeSearch(KnowledgeSearch):
    """Default when no search backend is configured."""

    async def search(self, query: str, max_results: int = 5) -> list[SearchResult]:
        logger.debug("No knowledge search configured, skipping query: %s", query)
        return []


def format_results(results: list[SearchResult], limit: int = 3) -> str:
    return "\n".join(f"- {r.title}: {r.snippet} ({r.url})" for r in results[:limit])
