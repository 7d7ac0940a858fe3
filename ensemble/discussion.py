"""Multi-agent discussion: rotating turns, knowledge verification and sub-agent delegation."""

import datetime
import logging
import random
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from config.config_loader import OrchestratorConfig
from ensemble.cancellation import CancellationToken
from ensemble.events import EventQueue
from ensemble.memory import AgentMemoryBank
from ensemble.models import Agent, EventKind, Exchange, GenerationOptions, MemoryKind, SearchResult
from ensemble.oracle import Oracle, is_fallback
from ensemble.prompts import DISCUSSION_TURN, SUB_AGENT_SPECS, SUB_AGENT_TASK
from ensemble.registry import AgentRegistry
from ensemble.search import KnowledgeSearch, format_results
from ensemble.selector import DynamicAgentSelector
from ensemble.text import TextAnalyzer, parse_json_block
from ensemble.tiers import TieredModelSelector

logger = logging.getLogger(__name__)

TOPIC_VARIATIONS = (
    "Brainstorming innovative approaches for: {}",
    "Exploring cutting-edge solutions to: {}",
    "Collaborative problem-solving session: {}",
    "Multi-perspective analysis of: {}",
    "Creative workshop on: {}",
)

FOCUS_AREAS = (
    "technical implementation and architecture",
    "innovative solutions and creative approaches",
    "practical applications and real-world impact",
    "theoretical foundations and future implications",
    "optimization strategies and best practices",
)

MODES = ("brainstorm", "analyze", "challenge", "synthesize")

MODE_INSTRUCTIONS = {
    "brainstorm": (
        "- Propose innovative ideas and creative approaches\n"
        '- Say things like "What if we..." or "Building on that idea..."\n'
        '- Acknowledge previous contributions with "Great point about..."\n'
        "- Suggest complementary perspectives"
    ),
    "analyze": (
        "- Examine the topic from your specialized perspective\n"
        '- Say things like "From a {agent_type} perspective..." or "The data suggests..."\n'
        "- Reference specific insights from previous discussions\n"
        "- Identify patterns and connections"
    ),
    "challenge": (
        '- Respectfully question assumptions with "Have we considered..."\n'
        '- Propose alternative viewpoints with "Another angle might be..."\n'
        "- Identify potential issues or gaps\n"
        "- Keep a constructive tone"
    ),
    "synthesize": (
        "- Combine the best ideas discussed so far\n"
        '- Say things like "Bringing together our insights..." or "The consensus seems to be..."\n'
        "- Highlight key takeaways and actionable items\n"
        "- Propose next steps or conclusions"
    ),
}

VERIFICATION_CHANCE = {"research": 0.9, "analyst": 0.8, "specialist": 0.7, "coordinator": 0.5, "general": 0.4}
SUB_AGENT_CHANCE = {
    "coordinator": 0.8,
    "research": 0.7,
    "architect": 0.8,
    "analyst": 0.6,
    "specialist": 0.5,
    "developer": 0.6,
    "manager": 0.9,
}

DEFAULT_SUB_AGENT_SPECS: dict[str, list[dict[str, str]]] = {
    "coordinator": [
        {"type": "research-specialist", "specialization": "data gathering", "task": "Research topic background"},
        {"type": "technical-analyst", "specialization": "technical analysis", "task": "Analyze technical aspects"},
    ],
    "research": [
        {"type": "data-researcher", "specialization": "data collection", "task": "Gather current data"},
        {"type": "market-researcher", "specialization": "market analysis", "task": "Analyze market trends"},
    ],
    "analyst": [
        {"type": "technical-analyst", "specialization": "deep analysis", "task": "Perform detailed analysis"},
        {"type": "performance-optimizer", "specialization": "optimization", "task": "Identify improvements"},
    ],
    "developer": [
        {"type": "implementation-specialist", "specialization": "coding", "task": "Plan implementation"},
        {"type": "testing-specialist", "specialization": "testing", "task": "Design test strategy"},
    ],
}
_GENERAL_SPEC = {"type": "general-specialist", "specialization": "support", "task": "Provide specialized support"}

TYPE_CAPABILITIES: dict[str, list[str]] = {
    "research-specialist": ["web-research", "academic-research"],
    "technical-analyst": ["code-generation", "data-analysis"],
    "data-researcher": ["data-analysis", "web-research"],
    "market-researcher": ["financial-analysis", "web-research"],
    "security-auditor": ["code-generation"],
    "implementation-specialist": ["code-generation"],
    "testing-specialist": ["code-generation"],
    "devops-specialist": ["code-generation"],
    "financial-analyst": ["financial-analysis"],
    "ml-specialist": ["data-analysis"],
}

_SPECIALIZATION_CAPABILITIES = (
    (("web", "research"), "web-research"),
    (("code", "programming"), "code-generation"),
    (("data", "analysis"), "data-analysis"),
    (("financial", "market"), "financial-analysis"),
    (("social", "media"), "social-media"),
    (("location", "geo"), "location-services"),
    (("academic", "scientific"), "academic-research"),
)


def infer_capabilities(agent_type: str, specialization: str) -> list[str]:
    capabilities = list(TYPE_CAPABILITIES.get(agent_type, []))
    lowered = specialization.lower()
    for keywords, capability in _SPECIALIZATION_CAPABILITIES:
        if any(k in lowered for k in keywords):
            capabilities.append(capability)
    return list(dict.fromkeys(capabilities))


def collaboration_mode(turn: int, agent_type: str, target_type: str) -> str:
    if agent_type == "research" and target_type == "analyst":
        return "brainstorm" if turn < 2 else "analyze"
    if turn == 0:
        return "brainstorm"
    if turn >= 4:
        return "synthesize"
    return MODES[turn % len(MODES)]


@dataclass
class DiscussionTopic:
    title: str
    focus: str
    participants: list[str] = field(default_factory=list)


@dataclass
class SubAgentSpec:
    type: str
    specialization: str
    task: str
    reasoning: str = ""


@dataclass
class TurnResult:
    exchange: Exchange
    verified: bool = False
    used_tools: bool = False
    sub_agent_results: dict[str, str] = field(default_factory=dict)
    fallback: bool = False


def _spec_from(raw: Any) -> SubAgentSpec | None:
    if not isinstance(raw, dict) or not raw.get("type"):
        return None
    return SubAgentSpec(
        type=str(raw["type"]).lower().replace(" ", "-"),
        specialization=str(raw.get("specialization") or "general support"),
        task=str(raw.get("task") or "Provide specialized support"),
        reasoning=str(raw.get("reasoning", "")),
    )


def default_specs(parent_type: str) -> list[SubAgentSpec]:
    return [SubAgentSpec(**s) for s in DEFAULT_SUB_AGENT_SPECS.get(parent_type, [_GENERAL_SPEC])]


class DiscussionRunner:
    """Runs agent discussions for one conversation.

    Shares the orchestrator's registry, tier selector and memory banks; every
    random choice goes through the injected rng.
    """

    def __init__(
        self,
        oracle: Oracle,
        tiers: TieredModelSelector,
        registry: AgentRegistry,
        memory_for: Callable[[str], AgentMemoryBank],
        search: KnowledgeSearch,
        events: EventQueue,
        rng: random.Random,
        config: OrchestratorConfig,
        analyzer: TextAnalyzer | None = None,
        selector: DynamicAgentSelector | None = None,
        cancel: CancellationToken | None = None,
    ) -> None:
        self._oracle = oracle
        self._tiers = tiers
        self._registry = registry
        self._memory_for = memory_for
        self._search = search
        self._events = events
        self._rng = rng
        self._config = config
        self._text = analyzer or TextAnalyzer()
        self._selector = selector
        self._cancel = cancel or CancellationToken()

    # --- topic ------------------------------------------------------------

    def make_topic(self, description: str, agents: list[Agent]) -> DiscussionTopic:
        return DiscussionTopic(
            title=self._rng.choice(TOPIC_VARIATIONS).format(description),
            focus=self._rng.choice(FOCUS_AREAS),
            participants=[a.type for a in agents],
        )

    # --- verification and tools -------------------------------------------

    def should_verify(self, topic: str, agent_type: str) -> bool:
        if self._text.needs_verification(topic):
            return True
        return self._rng.random() < VERIFICATION_CHANCE.get(agent_type, 0.3)

    def verification_queries(self, topic: str, agent_type: str) -> list[str]:
        year = datetime.date.today().year
        queries = [f'"{topic}" {year}', f"{topic} latest information facts", f"{topic} current status updates"]
        specific = {
            "research": f"{topic} research papers recent study",
            "analyst": f"{topic} market analysis data statistics",
            "specialist": f"{topic} technical specifications documentation",
            "coordinator": f"{topic} project status current development",
        }
        if agent_type in specific:
            queries.append(specific[agent_type])
        return queries

    async def verify(self, topic: str, agent: Agent) -> list[SearchResult]:
        results: list[SearchResult] = []
        for query in self.verification_queries(topic, agent.type)[:2]:
            self._cancel.raise_if_cancelled()
            found = await self._search.search(query, max_results=3)
            results.extend(found)
            self._events.emit(
                EventKind.TOOL_USAGE,
                {"tool": "knowledge-search", "query": query, "results": len(found)},
                {"agent_id": agent.id, "purpose": "verification"},
            )
        if results:
            await self._memory_for(agent.id).store(
                MemoryKind.SEMANTIC,
                f"verification {topic}: " + "; ".join(r.snippet for r in results[:3]),
                {"source": "knowledge-search", "confidence": 0.9},
            )
        return results

    def should_use_tools(self, agent: Agent, topic: DiscussionTopic, iteration: int) -> bool:
        title = topic.title.lower()
        if "research" in agent.type or "research" in title:
            return True
        if "analysis" in agent.type or "analysis" in title:
            return True
        if "web" in title or "search" in title:
            return True
        if agent.type in ("coordinator", "specialist"):
            return True
        if iteration % 2 == 0 or len(topic.title) > 50:
            return True
        return self._rng.random() < 0.8

    async def tool_context(self, agent: Agent, topic: DiscussionTopic, verified: list[SearchResult]) -> str:
        parts = []
        recall = await self._memory_for(agent.id).retrieve(topic.title, limit=3)
        if recall.found:
            parts.append("Relevant memories:\n" + "\n".join(f"- {m.item.content}" for m in recall.memories))
            self._events.emit(
                EventKind.TOOL_USAGE,
                {"tool": "memory", "query": topic.title, "results": len(recall.memories)},
                {"agent_id": agent.id},
            )
        if verified:
            parts.append("VERIFIED FACTS (use these for accuracy):\n" + format_results(verified))
        return "\n".join(parts) + "\n" if parts else ""

    # --- sub-agents -------------------------------------------------------

    def should_create_sub_agents(self, agent: Agent, topic: DiscussionTopic, turn: int) -> bool:
        if self._text.suggests_sub_agents(topic.title):
            return True
        chance = SUB_AGENT_CHANCE.get(agent.type, 0.4)
        if turn <= 2:
            chance += 0.2
        elif len(topic.title) > 50:
            chance += 0.1
        return self._rng.random() < chance

    async def sub_agent_specs(self, parent: Agent, topic: DiscussionTopic, partner: Agent) -> list[SubAgentSpec]:
        self._cancel.raise_if_cancelled()
        prompt = SUB_AGENT_SPECS.format(
            parent_type=parent.type,
            topic=topic.title,
            partner_type=partner.type,
            purpose=parent.purpose,
            max_specs=self._config.max_sub_agents,
        )
        response = await self._oracle.generate(
            parent.assigned_model or "",
            prompt,
            GenerationOptions(agent_type="strategic-planner", max_tokens=500, temperature=0.6),
        )
        data = None if is_fallback(response) else parse_json_block(response.content)
        raw_specs = data if isinstance(data, list) else [data]
        specs = [s for s in (_spec_from(r) for r in raw_specs) if s is not None]
        return specs or default_specs(parent.type)

    def create_sub_agent(self, parent: Agent, spec: SubAgentSpec) -> Agent:
        sub_agent = Agent(
            id=f"sub-{parent.id}-{spec.type}-{uuid.uuid4().hex[:6]}",
            type=spec.type,
            specialization=spec.specialization,
            capabilities=infer_capabilities(spec.type, spec.specialization),
            purpose=spec.task,
            is_sub_agent=True,
            parent_agent_id=parent.id,
            task=spec.task,
        )
        model = self._tiers.assign(sub_agent, self._text.task_complexity(spec.task))
        if model is None:
            raise RuntimeError(f"no model available for sub-agent {spec.type}")
        return self._registry.add(sub_agent)

    async def run_sub_agent(self, sub_agent: Agent, parent: Agent, topic: DiscussionTopic) -> str:
        self._cancel.raise_if_cancelled()
        tool_context = ""
        if self._rng.random() < 0.8:
            query = self._text.search_query(sub_agent.task)
            results = await self._search.search(query, max_results=3)
            self._events.emit(
                EventKind.TOOL_USAGE,
                {"tool": "knowledge-search", "query": query, "results": len(results)},
                {"agent_id": sub_agent.id},
            )
            if results:
                tool_context = "Search results:\n" + format_results(results) + "\n"

        prompt = SUB_AGENT_TASK.format(
            agent_type=sub_agent.type,
            parent_type=parent.type,
            task=sub_agent.task,
            topic=topic.title,
            specialization=sub_agent.specialization,
            tool_context=tool_context,
        )
        response = await self._oracle.generate(
            sub_agent.assigned_model or "",
            prompt,
            GenerationOptions(agent_type=sub_agent.type, max_tokens=400, temperature=0.7),
        )
        await self._memory_for(sub_agent.id).store(
            MemoryKind.PROCEDURAL, f"{sub_agent.task}: {response.content}", {"source": parent.id}
        )
        return response.content

    async def spawn_sub_agents(self, parent: Agent, topic: DiscussionTopic, partner: Agent) -> dict[str, str]:
        """Create up to max_sub_agents helpers and collect their results by type."""
        specs = await self.sub_agent_specs(parent, topic, partner)
        results: dict[str, str] = {}
        for spec in specs[: self._config.max_sub_agents]:
            try:
                sub_agent = self.create_sub_agent(parent, spec)
                results[sub_agent.type] = await self.run_sub_agent(sub_agent, parent, topic)
            except Exception as exc:
                if self._cancel.cancelled:
                    raise
                logger.warning("Sub-agent %s for %s skipped: %s", spec.type, parent.type, exc)
                continue
            logger.info("%s delegated to sub-agent %s (%s)", parent.type, sub_agent.type, sub_agent.assigned_model)
            self._events.emit(
                EventKind.SYSTEM,
                {"message": f"{parent.type} created sub-agent {sub_agent.type}", "task": spec.task},
                {"parent_id": parent.id, "agent_id": sub_agent.id},
            )
        return results

    # --- turns ------------------------------------------------------------

    async def agent_turn(
        self,
        agent: Agent,
        target: Agent,
        topic: DiscussionTopic,
        turn: int,
        history: list[Exchange],
        iteration: int,
        round_focus: str = "",
    ) -> TurnResult:
        verified: list[SearchResult] = []
        needs_verification = self.should_verify(topic.title, agent.type)

        sub_agent_results: dict[str, str] = {}
        if self.should_create_sub_agents(agent, topic, turn):
            sub_agent_results = await self.spawn_sub_agents(agent, topic, target)

        used_tools = needs_verification or self.should_use_tools(agent, topic, iteration)
        tool_context = ""
        if used_tools:
            if needs_verification:
                verified = await self.verify(topic.title, agent)
            tool_context = await self.tool_context(agent, topic, verified)

        sub_agent_context = ""
        if sub_agent_results:
            sub_agent_context = "SUB-AGENT INSIGHTS (incorporate these):\n" + "\n".join(
                f"- {t}: {r[:300]}" for t, r in sub_agent_results.items()
            ) + "\n"

        mode = collaboration_mode(turn, agent.type, target.type)
        recent = "\n".join(f"{e.agent_type}: {e.content[:150]}..." for e in history[-5:])
        prompt = DISCUSSION_TURN.format(
            agent_type=agent.type,
            target_type=target.type,
            topic=topic.title,
            turn=turn + 1,
            mode=mode,
            round_focus=round_focus or topic.focus,
            purpose=agent.purpose,
            tool_context=tool_context,
            sub_agent_context=sub_agent_context,
            history=recent or "Starting fresh discussion",
            instructions=MODE_INSTRUCTIONS[mode].format(agent_type=agent.type),
        )

        self._cancel.raise_if_cancelled()
        response = await self._oracle.generate(
            agent.assigned_model or "",
            prompt,
            GenerationOptions(
                agent_type=agent.type,
                max_tokens=600,
                temperature=0.7,
                specific_model=agent.assigned_model,
            ),
        )
        content = response.content
        exchange = Exchange(
            agent_id=agent.id,
            agent_type=agent.type,
            content=content,
            iteration=iteration,
            model=response.model,
            target_agent_id=target.id,
            mode=mode,
            has_follow_up=self._text.has_follow_up(content),
            agreements=self._text.agreements(content),
            disagreements=self._text.disagreements(content),
            new_insights=self._text.insights(content),
        )
        fallback = is_fallback(response)
        if self._selector is not None and agent.template_id:
            self._selector.record_performance(agent.template_id, not fallback)

        await self._memory_for(agent.id).store(
            MemoryKind.SHORT_TERM,
            content,
            {
                "source": "discussion",
                "type": "decision" if self._text.decisions(content) else None,
                "tags": [mode],
                "confidence": 0.5 if fallback else 0.8,
            },
        )
        return TurnResult(
            exchange=exchange,
            verified=bool(verified),
            used_tools=used_tools,
            sub_agent_results=sub_agent_results,
            fallback=fallback,
        )

    async def run(
        self,
        participants: list[Agent],
        description: str,
        history: list[Exchange],
        iteration: int,
        round_focus: str = "",
    ) -> list[Exchange]:
        """Run a full discussion and return its exchanges in speaking order."""
        if not participants:
            return []
        topic = self.make_topic(description, participants)
        logger.info("Discussion: %s | participants: %s", topic.title, ", ".join(topic.participants))
        for agent in participants:
            await self._memory_for(agent.id).store(
                MemoryKind.WORKING, topic.title, {"source": "orchestrator", "tags": ["topic"]}
            )

        exchanges: list[Exchange] = []
        turns = min(len(participants) * 2, self._config.discussion_max_turns)
        for turn in range(turns):
            speaker = participants[turn % len(participants)]
            target = participants[(turn + 1) % len(participants)]
            result = await self.agent_turn(
                speaker, target, topic, turn, history + exchanges, iteration, round_focus
            )
            exchanges.append(result.exchange)
            logger.info(
                "Turn %d: %s -> %s (%s, %s)%s%s",
                turn + 1,
                speaker.type,
                target.type,
                result.exchange.mode,
                result.exchange.model,
                " [verified]" if result.verified else "",
                f" [{len(result.sub_agent_results)} sub-agents]" if result.sub_agent_results else "",
            )
            self._events.emit(
                EventKind.AGENT_RESPONSE,
                {"content": result.exchange.content, "mode": result.exchange.mode},
                {
                    "agent_id": speaker.id,
                    "agent_type": speaker.type,
                    "target_id": target.id,
                    "model": result.exchange.model,
                    "iteration": iteration,
                    "turn": turn + 1,
                    "topic": topic.title,
                    "used_tools": result.used_tools,
                    "knowledge_verified": result.verified,
                    "sub_agents": list(result.sub_agent_results),
                },
            )

        self._events.emit(EventKind.SYSTEM, {"message": f"Completed discussion on: {topic.title}"})
        return exchanges
