"""Conversation orchestrator: objective analysis, the round loop, consensus stop, conclusion."""

import asyncio
import logging
import math
import random
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from config.config_loader import AppConfig
from ensemble.cancellation import CancellationToken, ConversationCancelled
from ensemble.consensus import poll_consensus
from ensemble.discussion import DiscussionRunner
from ensemble.events import EventQueue
from ensemble.memory import AgentMemoryBank
from ensemble.models import (
    ActionKind,
    ActionSuggestion,
    Agent,
    ConsensusOutcome,
    ConversationContext,
    ConversationResult,
    EventKind,
    Exchange,
    GenerationOptions,
    MemoryKind,
    Objective,
    RoundPlan,
    TransitionDecision,
)
from ensemble.oracle import Oracle, is_fallback
from ensemble.prompts import ACTION_BRIEFS, CONSENSUS_VOTE, FOCUSED_ACTION, NEXT_ACTION, OBJECTIVE_ANALYSIS
from ensemble.registry import AgentRegistry
from ensemble.rounds import RoundTransitionManager
from ensemble.search import KnowledgeSearch, NullKnowledgeSearch, format_results
from ensemble.selector import DynamicAgentSelector
from ensemble.storage import InMemoryStore, MemoryStore
from ensemble.synthesis import conclude, fallback_summary
from ensemble.text import TextAnalyzer, parse_json_block
from ensemble.tiers import TieredModelSelector

logger = logging.getLogger(__name__)

_SCOPES = ("small", "medium", "large")

# Preferred agent types, in order, for each focused action
_ACTION_AGENT_TYPES: dict[ActionKind, tuple[str, ...]] = {
    ActionKind.DEEP_ANALYSIS: ("researcher", "data-science", "architect"),
    ActionKind.REQUIREMENT_GATHERING: ("business", "coordinator", "researcher"),
    ActionKind.SOLUTION_DESIGN: ("architect", "developer"),
    ActionKind.IMPLEMENTATION_PLANNING: ("developer", "devops", "architect"),
    ActionKind.RISK_ASSESSMENT: ("security", "qa", "architect"),
    ActionKind.INTEGRATION_DESIGN: ("architect", "developer", "devops"),
    ActionKind.TESTING_STRATEGY: ("qa", "developer"),
    ActionKind.DEPLOYMENT_PLANNING: ("devops", "developer", "architect"),
    ActionKind.OTHER: ("coordinator",),
}


class State(str, Enum):
    ANALYZING_OBJECTIVE = "analyzing_objective"
    SELECTING_AGENTS = "selecting_agents"
    PLANNING = "planning"
    ACTING = "acting"
    EVALUATING = "evaluating"
    CONCLUDING = "concluding"
    DONE = "done"
    CANCELLED = "cancelled"


@dataclass
class IterationReport:
    iteration: int
    plan: RoundPlan
    action: ActionSuggestion
    exchanges: list[Exchange]
    transition: TransitionDecision
    consensus: ConsensusOutcome | None = None


def complexity_label(complexity: int) -> str:
    if complexity > 7:
        return "high"
    if complexity > 4:
        return "medium"
    return "low"


def fallback_analysis(prompt: str) -> dict[str, Any]:
    return {
        "complexity": 5,
        "mainObjective": prompt,
        "requiredCapabilities": ["general"],
        "suggestedAgents": ["coordinator"],
        "estimatedScope": "medium",
        "keyQuestions": [],
    }


def _as_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v]


def parse_analysis(content: str, prompt: str) -> dict[str, Any]:
    data = parse_json_block(content)
    if not isinstance(data, dict):
        return fallback_analysis(prompt)
    analysis = fallback_analysis(prompt)
    try:
        analysis["complexity"] = min(max(int(float(data.get("complexity", 5))), 1), 10)
    except (TypeError, ValueError):
        pass
    analysis["mainObjective"] = str(data.get("mainObjective") or prompt)
    analysis["requiredCapabilities"] = _as_list(data.get("requiredCapabilities")) or ["general"]
    analysis["suggestedAgents"] = _as_list(data.get("suggestedAgents")) or ["coordinator"]
    scope = str(data.get("estimatedScope", "medium")).lower()
    analysis["estimatedScope"] = scope if scope in _SCOPES else "medium"
    analysis["keyQuestions"] = _as_list(data.get("keyQuestions"))
    return analysis


def synthesize_analyses(analyses: list[dict[str, Any]]) -> Objective:
    """Merge per-model analyses. The main objective comes from the first analysis."""
    mean = sum(a["complexity"] for a in analyses) / len(analyses)
    scopes = {a["estimatedScope"] for a in analyses}
    scope = "large" if "large" in scopes else "medium" if "medium" in scopes else "small"
    return Objective(
        main_objective=analyses[0]["mainObjective"],
        complexity=math.floor(mean + 0.5),
        required_capabilities=tuple(dict.fromkeys(c for a in analyses for c in a["requiredCapabilities"])),
        suggested_agents=tuple(dict.fromkeys(s for a in analyses for s in a["suggestedAgents"])),
        estimated_scope=scope,
        key_questions=tuple(dict.fromkeys(q for a in analyses for q in a["keyQuestions"])),
    )


def default_action() -> ActionSuggestion:
    return ActionSuggestion(
        kind=ActionKind.AGENT_DISCUSSION,
        description="Continue agent discussion",
        priority=5,
        reasoning="Default next step",
    )


def parse_suggestion(content: str, model_name: str) -> ActionSuggestion:
    data = parse_json_block(content)
    if not isinstance(data, dict):
        suggestion = default_action()
        suggestion.model_name = model_name
        return suggestion
    try:
        kind = ActionKind(str(data.get("type", "")).lower())
    except ValueError:
        kind = ActionKind.OTHER
    try:
        priority = min(max(int(float(data.get("priority", 5))), 1), 10)
    except (TypeError, ValueError):
        priority = 5
    return ActionSuggestion(
        kind=kind,
        description=str(data.get("description") or "Continue agent discussion"),
        priority=priority,
        reasoning=str(data.get("reasoning", "")),
        required_agents=_as_list(data.get("requiredAgents")),
        model_name=model_name,
    )


def select_best_action(suggestions: list[ActionSuggestion]) -> ActionSuggestion:
    """Highest priority wins; ties go to the earliest suggestion."""
    if not suggestions:
        return default_action()
    best = suggestions[0]
    for suggestion in suggestions[1:]:
        if suggestion.priority > best.priority:
            best = suggestion
    return best


class ConversationOrchestrator:
    """Drives one conversation from objective analysis to conclusion.

    Owns the agent registry, the model-assignment table (via the tier
    selector) and one memory bank per agent; nothing is shared between
    orchestrator instances except the agent selector's performance history
    when a selector is passed in.
    """

    def __init__(
        self,
        oracle: Oracle,
        config: AppConfig,
        *,
        store: MemoryStore | None = None,
        search: KnowledgeSearch | None = None,
        events: EventQueue | None = None,
        rng: random.Random | None = None,
        analyzer: TextAnalyzer | None = None,
        selector: DynamicAgentSelector | None = None,
        cancel: CancellationToken | None = None,
        mode: str = "autonomous",
        clock: Callable[[], float] = time.time,
        on_iteration: Callable[[IterationReport], None] | None = None,
    ) -> None:
        self.conversation_id = uuid.uuid4().hex[:12]
        self.oracle = oracle
        self.config = config
        self.mode = mode
        self.cancel = cancel or CancellationToken()
        self._owns_events = events is None
        self.events = events or EventQueue()
        self._store = store or InMemoryStore()
        self._search = search or NullKnowledgeSearch()
        self._rng = rng or random.Random(config.defaults.seed)
        self._text = analyzer or TextAnalyzer()
        self._clock = clock
        self._on_iteration = on_iteration

        self.registry = AgentRegistry()
        self.tiers = TieredModelSelector(oracle.catalog(), config.tiers, self._rng, clock)
        self.selector = selector or DynamicAgentSelector(oracle, config.selector)
        self.rounds = RoundTransitionManager(oracle, config.rounds, self._text, clock)
        self.memory_banks: dict[str, AgentMemoryBank] = {}
        self.discussion = DiscussionRunner(
            oracle,
            self.tiers,
            self.registry,
            self.memory_for,
            self._search,
            self.events,
            self._rng,
            config.orchestrator,
            analyzer=self._text,
            selector=self.selector,
            cancel=self.cancel,
        )

        self.state = State.ANALYZING_OBJECTIVE
        self.objective: Objective | None = None
        self.context = ConversationContext()
        self.memory: list[Exchange] = []
        self.transcript: list[Exchange] = []
        self.actions: list[ActionSuggestion] = []
        self.consensus_history: list[ConsensusOutcome] = []
        self.iteration = 0

        self._handlers: dict[ActionKind, Callable[[ActionSuggestion, RoundPlan], Awaitable[list[Exchange]]]] = {
            ActionKind.CREATE_AGENT: self._create_agent,
            ActionKind.AGENT_DISCUSSION: self._agent_discussion,
            ActionKind.WEB_RESEARCH: self._web_research,
            ActionKind.DEEP_ANALYSIS: self._focused_action,
            ActionKind.REQUIREMENT_GATHERING: self._focused_action,
            ActionKind.SOLUTION_DESIGN: self._focused_action,
            ActionKind.IMPLEMENTATION_PLANNING: self._focused_action,
            ActionKind.RISK_ASSESSMENT: self._focused_action,
            ActionKind.INTEGRATION_DESIGN: self._focused_action,
            ActionKind.TESTING_STRATEGY: self._focused_action,
            ActionKind.DEPLOYMENT_PLANNING: self._focused_action,
            ActionKind.OTHER: self._focused_action,
        }
        missing = set(ActionKind) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for action kinds: {sorted(k.value for k in missing)}")

    # --- memory banks -----------------------------------------------------

    def memory_for(self, agent_id: str) -> AgentMemoryBank:
        bank = self.memory_banks.get(agent_id)
        if bank is None:
            bank = AgentMemoryBank(agent_id, self.config.memory, self._store, self._text, self._clock)
            self.memory_banks[agent_id] = bank
        return bank

    async def _register(self, agent: Agent, complexity: str) -> Agent:
        self.tiers.assign(agent, complexity)
        self.registry.add(agent)
        bank = self.memory_for(agent.id)
        await bank.load()
        if self.objective is not None:
            await bank.store(
                MemoryKind.EPISODIC,
                f"Objective: {self.objective.main_objective}",
                {"source": "user", "tags": ["objective"]},
            )
        return agent

    # --- objective and agents ---------------------------------------------

    def _require_objective(self) -> Objective:
        if self.objective is None:
            raise RuntimeError("objective has not been analyzed; call analyze_objective() first")
        return self.objective

    async def analyze_objective(self, prompt: str, complexity: int | None = None) -> Objective:
        """Ask every model in parallel and merge their analyses."""
        self.cancel.raise_if_cancelled()
        models = self.oracle.catalog()
        options = GenerationOptions(agent_type="analyzer", max_tokens=600, temperature=0.3)
        request = OBJECTIVE_ANALYSIS.format(objective=prompt)
        results = await asyncio.gather(
            *(self.oracle.generate(m.id, request, options) for m in models),
            return_exceptions=True,
        )
        analyses = []
        for model, result in zip(models, results):
            if isinstance(result, BaseException):
                logger.warning("Objective analysis from %s failed: %s", model.name, result)
                continue
            analyses.append(parse_analysis(result.content, prompt))
        if not analyses:
            analyses = [fallback_analysis(prompt)]

        objective = synthesize_analyses(analyses)
        if complexity is not None:
            objective = Objective(
                main_objective=objective.main_objective,
                complexity=min(max(complexity, 1), 10),
                required_capabilities=objective.required_capabilities,
                suggested_agents=objective.suggested_agents,
                estimated_scope=objective.estimated_scope,
                key_questions=objective.key_questions,
            )
        logger.info(
            "Objective: complexity %d/10, scope %s, capabilities: %s",
            objective.complexity,
            objective.estimated_scope,
            ", ".join(objective.required_capabilities),
        )
        return objective

    async def setup_agents(self) -> list[Agent]:
        objective = self._require_objective()
        self.cancel.raise_if_cancelled()
        topic = objective.main_objective
        if self.mode == "fixed":
            agents = self.selector.default_agents(topic)
        else:
            agents = await self.selector.select_agents(
                topic,
                {
                    "complexity": objective.complexity,
                    "capabilities": list(objective.required_capabilities),
                    "suggested_agents": list(objective.suggested_agents),
                },
            )
        label = complexity_label(objective.complexity)
        for agent in agents:
            await self._register(agent, label)
        return agents

    # --- next action ------------------------------------------------------

    async def choose_action(self, plan: RoundPlan) -> ActionSuggestion:
        objective = self._require_objective()
        self.cancel.raise_if_cancelled()
        models = self.oracle.catalog()[: self.config.orchestrator.action_models]
        prompt = NEXT_ACTION.format(
            objective=objective.main_objective,
            iteration=self.iteration,
            round_number=plan.round_number,
            phase=plan.phase.value,
            focus=plan.focus,
            round_objectives=", ".join(plan.objectives),
            approach=plan.approach,
            agents=", ".join(f"{a.type} ({a.id})" for a in self.registry.main_agents()),
            recent_actions=", ".join(a.kind.value for a in self.actions[-3:]) or "none",
            open_questions=", ".join(self.context.open_questions[-3:]) or "none",
            kinds="|".join(k.value for k in ActionKind),
        )
        options = GenerationOptions(agent_type="strategic-planner", max_tokens=400, temperature=0.6)
        results = await asyncio.gather(
            *(self.oracle.generate(m.id, prompt, options) for m in models),
            return_exceptions=True,
        )
        suggestions = []
        for model, result in zip(models, results):
            if isinstance(result, BaseException):
                logger.warning("Action suggestion from %s failed: %s", model.name, result)
                continue
            suggestions.append(parse_suggestion(result.content, model.name))
        return select_best_action(suggestions)

    async def execute(self, action: ActionSuggestion, plan: RoundPlan) -> list[Exchange]:
        """Run the handler for the action. A failing handler yields no exchanges."""
        handler = self._handlers[action.kind]
        try:
            return await handler(action, plan)
        except ConversationCancelled:
            raise
        except Exception as exc:
            logger.error("Action %s failed: %s", action.kind.value, exc)
            self.events.emit(EventKind.SYSTEM, {"message": f"Action {action.kind.value} failed: {exc}"})
            return []

    # --- handlers ---------------------------------------------------------

    async def _create_agent(self, action: ActionSuggestion, plan: RoundPlan) -> list[Exchange]:
        agent = Agent(
            id=f"dynamic-specialist-{uuid.uuid4().hex[:8]}",
            type="specialist",
            specialization=action.description,
            capabilities=["analysis", "implementation", "coordination"],
            purpose=action.description,
        )
        objective = self._require_objective()
        await self._register(agent, complexity_label(objective.complexity))
        logger.info("Created dynamic agent %s using %s", agent.id, agent.assigned_model)
        self.events.emit(
            EventKind.SYSTEM,
            {"message": f"Created dynamic agent: {agent.type} specialized in {agent.specialization}"},
            {"agent_id": agent.id, "model": agent.assigned_model},
        )
        return []

    def _participants(self, required: list[str]) -> list[Agent]:
        chosen: list[Agent] = []
        for key in required:
            agent = self.registry.find(key)
            if agent is not None and agent not in chosen:
                chosen.append(agent)
        if len(chosen) >= 2:
            return chosen
        for agent in self.registry.main_agents():
            if len(chosen) >= 3:
                break
            if agent not in chosen:
                chosen.append(agent)
        return chosen

    async def _agent_discussion(self, action: ActionSuggestion, plan: RoundPlan) -> list[Exchange]:
        participants = self._participants(action.required_agents)
        return await self.discussion.run(participants, action.description, self.memory[-5:], self.iteration, plan.focus)

    def _lead_agent(self) -> Agent | None:
        return self.registry.find("coordinator") or next(iter(self.registry.main_agents()), None)

    async def _web_research(self, action: ActionSuggestion, plan: RoundPlan) -> list[Exchange]:
        query = self._text.search_query(action.description)
        self.cancel.raise_if_cancelled()
        results = await self._search.search(query, max_results=5)
        lead = self._lead_agent()
        self.events.emit(
            EventKind.TOOL_USAGE,
            {"tool": "knowledge-search", "query": query, "results": len(results)},
            {"agent_id": lead.id if lead else None},
        )
        if lead is not None:
            bank = self.memory_for(lead.id)
            for result in results[:3]:
                await bank.store(
                    MemoryKind.SEMANTIC,
                    f"{result.title}: {result.snippet}",
                    {"source": "knowledge-search", "tags": ["web-research"], "confidence": 0.9},
                )
        self.context.completed_tasks.append(f"web_research: {query}")
        self.events.emit(
            EventKind.SYSTEM,
            {"message": f'Web research completed: found {len(results)} results for "{query}"'},
        )
        logger.info("Web research for %r returned %d results", query, len(results))
        return []

    def _agent_for(self, action: ActionSuggestion) -> Agent | None:
        for key in action.required_agents:
            agent = self.registry.find(key)
            if agent is not None:
                return agent
        for agent_type in _ACTION_AGENT_TYPES[action.kind]:
            agent = self.registry.find(agent_type)
            if agent is not None:
                return agent
        return next(iter(self.registry.main_agents()), None)

    async def _focused_action(self, action: ActionSuggestion, plan: RoundPlan) -> list[Exchange]:
        """Run one of the analysis kinds through the best-suited agent."""
        agent = self._agent_for(action)
        if agent is None or self.objective is None:
            logger.warning("No agent available for %s", action.kind.value)
            return []

        tool_parts = []
        if action.kind is ActionKind.DEEP_ANALYSIS:
            query = self._text.search_query(action.description)
            results = await self._search.search(query, max_results=3)
            self.events.emit(
                EventKind.TOOL_USAGE,
                {"tool": "knowledge-search", "query": query, "results": len(results)},
                {"agent_id": agent.id},
            )
            if results:
                tool_parts.append("Research context:\n" + format_results(results))
        recall = await self.memory_for(agent.id).retrieve(action.description, limit=3)
        if recall.found:
            tool_parts.append("From your memory:\n" + "\n".join(f"- {m.item.content}" for m in recall.memories))

        prompt = FOCUSED_ACTION.format(
            agent_type=agent.type,
            objective=self.objective.main_objective,
            kind=action.kind.value,
            description=action.description,
            round_focus=plan.focus,
            brief=ACTION_BRIEFS[action.kind.value],
            tool_context="\n".join(tool_parts),
            decisions="; ".join(self.context.decisions[-5:]) or "none",
            open_questions="; ".join(self.context.open_questions[-5:]) or "none",
        )
        self.cancel.raise_if_cancelled()
        response = await self.oracle.generate(
            agent.assigned_model or self.oracle.model_ids()[0],
            prompt,
            GenerationOptions(agent_type=agent.type, max_tokens=900, temperature=0.5, specific_model=agent.assigned_model),
        )
        content = response.content
        fallback = is_fallback(response)
        if agent.template_id:
            self.selector.record_performance(agent.template_id, not fallback)

        exchange = Exchange(
            agent_id=agent.id,
            agent_type=agent.type,
            content=content,
            iteration=self.iteration,
            model=response.model,
            mode=action.kind.value,
            has_follow_up=self._text.has_follow_up(content),
            agreements=self._text.agreements(content),
            disagreements=self._text.disagreements(content),
            new_insights=self._text.insights(content),
        )
        if action.kind is ActionKind.RISK_ASSESSMENT:
            for sentence in self._text.sentences(content):
                if "risk" in sentence.lower() and sentence not in self.context.open_questions:
                    self.context.open_questions.append(sentence)
        if not fallback:
            self.context.completed_tasks.append(f"{action.kind.value}: {action.description}")

        await self.memory_for(agent.id).store(
            MemoryKind.EPISODIC,
            content,
            {
                "source": action.kind.value,
                "type": "decision" if self._text.decisions(content) else None,
                "confidence": 0.5 if fallback else 0.8,
            },
        )
        self.events.emit(
            EventKind.AGENT_RESPONSE,
            {"content": content, "mode": action.kind.value},
            {"agent_id": agent.id, "agent_type": agent.type, "model": response.model, "iteration": self.iteration},
        )
        logger.info("%s handled %s via %s", agent.type, action.kind.value, response.model)
        return [exchange]

    # --- bookkeeping ------------------------------------------------------

    def _remember(self, action: ActionSuggestion, exchanges: list[Exchange]) -> None:
        self.actions.append(action)
        if action.description not in self.context.topics:
            self.context.topics.append(action.description)
        for exchange in exchanges:
            for decision in self._text.decisions(exchange.content):
                if decision not in self.context.decisions:
                    self.context.decisions.append(decision)
            for question in self._text.questions(exchange.content):
                if question not in self.context.open_questions:
                    self.context.open_questions.append(question)

        self.transcript.extend(exchanges)
        self.memory.extend(exchanges)
        limits = self.config.orchestrator
        if len(self.memory) > limits.conversation_memory_limit:
            self.memory = self.memory[-limits.conversation_memory_keep:]

    def _consensus_prompt(self) -> str:
        objective = self._require_objective()
        return CONSENSUS_VOTE.format(
            iteration=self.iteration,
            max_iterations=self.config.orchestrator.max_iterations,
            objective=objective.main_objective,
            agent_count=len(self.registry),
            recent_actions=", ".join(a.kind.value for a in self.actions[-3:]) or "none",
            decisions=len(self.context.decisions),
            open_questions=len(self.context.open_questions),
            interactions=len(self.transcript),
        )

    def _log_hierarchy(self) -> None:
        logger.info("Agent hierarchy:\n%s", "\n".join(self.registry.hierarchy()))

    async def shutdown(self) -> None:
        """Final memory consolidation for every agent, then release all model assignments."""
        for bank in self.memory_banks.values():
            await bank.shutdown()
        self.tiers.release_all()

    # --- main loop --------------------------------------------------------

    async def run(self, prompt: str, complexity: int | None = None) -> ConversationResult:
        start = time.monotonic()
        limits = self.config.orchestrator
        status = "completed"
        stop_reason = "max_iterations"
        conclusion = ""
        if self._owns_events:
            self.events.start()
        self.events.emit(EventKind.SYSTEM, {"message": f"Starting conversation {self.conversation_id}"})

        try:
            self.state = State.ANALYZING_OBJECTIVE
            self.objective = await self.analyze_objective(prompt, complexity)
            self.context.open_questions.extend(self.objective.key_questions)

            self.state = State.SELECTING_AGENTS
            await self.setup_agents()
            self.events.emit(
                EventKind.SYSTEM,
                {"message": f"Objective: {self.objective.main_objective}"},
                {"agents": [a.type for a in self.registry.main_agents()], "complexity": self.objective.complexity},
            )

            suggested_focus = ""
            while self.iteration < limits.max_iterations:
                self.cancel.raise_if_cancelled()
                self.iteration += 1

                self.state = State.PLANNING
                self.rounds.advance_round()
                plan = await self.rounds.plan_round(self.objective.main_objective, self.context, suggested_focus)
                self.context.current_focus = plan.focus
                logger.info("Iteration %d, round %d: %s", self.iteration, plan.round_number, plan.focus)

                self.state = State.ACTING
                action = await self.choose_action(plan)
                logger.info("Next action: %s (priority %d) %s", action.kind.value, action.priority, action.description)
                exchanges = await self.execute(action, plan)
                self._remember(action, exchanges)

                self.state = State.EVALUATING
                transition = self.rounds.evaluate(exchanges, self.context)
                self.rounds.record_round(action.description, exchanges)
                suggested_focus = transition.next_focus
                if self.iteration % limits.hierarchy_log_interval == 0:
                    self._log_hierarchy()

                report = IterationReport(self.iteration, plan, action, exchanges, transition)

                self.cancel.raise_if_cancelled()
                outcome = await poll_consensus(self.oracle, self._consensus_prompt(), self.iteration, limits)
                self.consensus_history.append(outcome)
                report.consensus = outcome
                self._report(report)
                if not outcome.should_continue:
                    stop_reason = outcome.reason
                    self.events.emit(
                        EventKind.SYSTEM,
                        {"message": f"Multi-model consensus reached: {outcome.reason}. Concluding conversation."},
                        {"weighted_ratio": outcome.weighted_ratio, "average_completion": outcome.average_completion},
                    )
                    break

            self.state = State.CONCLUDING
            self.cancel.raise_if_cancelled()
            conclusion = await conclude(
                self.oracle,
                self.objective,
                self.iteration,
                self.registry.all(),
                self.transcript,
                self.context,
                self._text,
            )
            self.state = State.DONE
        except ConversationCancelled:
            logger.warning("Conversation %s cancelled at iteration %d", self.conversation_id, self.iteration)
            self.state = State.CANCELLED
            status = "cancelled"
            stop_reason = "cancelled"
            conclusion = fallback_summary(
                self.objective, self.registry.all(), self.transcript, self.context, self.iteration
            )
        finally:
            await self.shutdown()

        self.events.emit(EventKind.SYSTEM, {"message": f"Conversation {status}: {stop_reason}"})
        if self._owns_events:
            await self.events.aclose()
        return ConversationResult(
            conversation_id=self.conversation_id,
            objective=self.objective or Objective(main_objective=prompt, complexity=complexity or 5),
            iterations=self.iteration,
            rounds=self.rounds.current_round,
            agents=self.registry.all(),
            conclusion=conclusion,
            stop_reason=stop_reason,
            status=status,
            duration_sec=time.monotonic() - start,
            exchanges=list(self.transcript),
            decisions=list(self.context.decisions),
            open_questions=list(self.context.open_questions),
        )

    def _report(self, report: IterationReport) -> None:
        if self._on_iteration is not None:
            self._on_iteration(report)
