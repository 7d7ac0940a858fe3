"""Run several conversations side by side and stop them by id."""

import asyncio
import logging
import random
from collections.abc import Callable
from dataclasses import dataclass

from config.config_loader import AppConfig
from ensemble.cancellation import CancellationToken
from ensemble.events import EventQueue
from ensemble.models import ConversationResult
from ensemble.oracle import Oracle
from ensemble.orchestrator import ConversationOrchestrator
from ensemble.search import KnowledgeSearch
from ensemble.selector import DynamicAgentSelector
from ensemble.storage import MemoryStore

logger = logging.getLogger(__name__)


@dataclass
class Session:
    orchestrator: ConversationOrchestrator
    task: asyncio.Task
    cancel: CancellationToken


class ConversationManager:
    """Owns the running conversations. Each gets its own orchestrator and token.

    The agent selector is shared so template performance carries over from
    one conversation to the next.
    """

    def __init__(
        self,
        oracle: Oracle,
        config: AppConfig,
        *,
        store: MemoryStore | None = None,
        search: KnowledgeSearch | None = None,
        events_factory: Callable[[], EventQueue] | None = None,
    ) -> None:
        self._oracle = oracle
        self._config = config
        self._store = store
        self._search = search
        self._events_factory = events_factory
        self.selector = DynamicAgentSelector(oracle, config.selector)
        self.sessions: dict[str, Session] = {}

    def start_conversation(
        self,
        objective: str,
        mode: str = "autonomous",
        complexity: int | None = None,
        seed: int | None = None,
    ) -> str:
        """Schedule a conversation on the running loop and return its id."""
        cancel = CancellationToken()
        seed = seed if seed is not None else self._config.defaults.seed
        orchestrator = ConversationOrchestrator(
            self._oracle,
            self._config,
            store=self._store,
            search=self._search,
            events=self._events_factory() if self._events_factory else None,
            rng=random.Random(seed),
            selector=self.selector,
            cancel=cancel,
            mode=mode,
        )
        task = asyncio.create_task(orchestrator.run(objective, complexity))
        self.sessions[orchestrator.conversation_id] = Session(orchestrator, task, cancel)
        logger.info("Started conversation %s (%s mode)", orchestrator.conversation_id, mode)
        return orchestrator.conversation_id

    def stop_conversation(self, conversation_id: str) -> bool:
        """Request cancellation. The run ends at its next checkpoint with status 'cancelled'."""
        session = self.sessions.get(conversation_id)
        if session is None or session.task.done():
            return False
        session.cancel.cancel()
        logger.info("Stop requested for conversation %s", conversation_id)
        return True

    async def wait(self, conversation_id: str) -> ConversationResult:
        session = self.sessions.get(conversation_id)
        if session is None:
            raise KeyError(conversation_id)
        return await session.task

    def result(self, conversation_id: str) -> ConversationResult | None:
        session = self.sessions.get(conversation_id)
        if session is None or not session.task.done():
            return None
        return session.task.result()

    def active(self) -> list[str]:
        return [cid for cid, s in self.sessions.items() if not s.task.done()]

    async def shutdown(self) -> None:
        for conversation_id in self.active():
            self.stop_conversation(conversation_id)
        await asyncio.gather(*(s.task for s in self.sessions.values()), return_exceptions=True)
