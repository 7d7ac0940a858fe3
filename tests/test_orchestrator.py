"""Tests for ensemble/orchestrator.py."""

import dataclasses
import json
import logging
from unittest.mock import AsyncMock

import pytest

from config.config_loader import RoundsConfig
from ensemble.events import EventCollector, EventQueue
from ensemble.models import (
    ActionKind,
    ActionSuggestion,
    EventKind,
    Exchange,
    Objective,
    Phase,
    RoundPlan,
    TransitionReason,
)
from ensemble.orchestrator import (
    ConversationOrchestrator,
    State,
    complexity_label,
    default_action,
    fallback_analysis,
    parse_analysis,
    parse_suggestion,
    select_best_action,
    synthesize_analyses,
)
from tests.conftest import StaticKnowledgeSearch, make_oracle, scripted_reply

PROMPT = "Design a rate limiter for our public API"


def prompts_sent(oracle) -> list[str]:
    return [c.args[0] for p in oracle._providers.values() for c in p.generate.call_args_list]


def build(config, oracle=None, **kwargs):
    collector = EventCollector()
    orchestrator = ConversationOrchestrator(
        oracle or make_oracle(),
        config,
        events=EventQueue([collector]),
        search=kwargs.pop("search", StaticKnowledgeSearch()),
        **kwargs,
    )
    return orchestrator, collector


def plan() -> RoundPlan:
    return RoundPlan(1, Phase.EXPLORATION, "Explore limiter designs", objectives=["compare algorithms"])


def keep_talking(prompt: str) -> str:
    if "should continue or conclude" in prompt:
        return json.dumps({"shouldContinue": True, "confidence": 0.8, "completionPercentage": 20})
    return scripted_reply(prompt)


def risky(prompt: str) -> str:
    if "Analyze this request" in prompt or "plan the focus for round" in prompt:
        return scripted_reply(prompt)
    return "The main risk is counter key exhaustion. We decided to shard counters by client."


# --- pure helpers -------------------------------------------------------------


@pytest.mark.parametrize("complexity,label", [(1, "low"), (4, "low"), (5, "medium"), (7, "medium"), (8, "high")])
def test_complexity_label(complexity, label):
    assert complexity_label(complexity) == label


def test_parse_analysis_clamps_and_validates():
    analysis = parse_analysis('{"complexity": 14, "estimatedScope": "huge", "mainObjective": "X"}', PROMPT)
    assert analysis["complexity"] == 10
    assert analysis["estimatedScope"] == "medium"
    assert analysis["mainObjective"] == "X"
    assert analysis["suggestedAgents"] == ["coordinator"]


def test_parse_analysis_garbage():
    assert parse_analysis("no idea", PROMPT) == fallback_analysis(PROMPT)


def test_synthesize_analyses_merges_in_order():
    first = dict(fallback_analysis("First"), complexity=6, requiredCapabilities=["security", "testing"],
                 estimatedScope="small", keyQuestions=["Q1"])
    second = dict(fallback_analysis("Second"), complexity=7, requiredCapabilities=["testing", "architecture"],
                  estimatedScope="large", keyQuestions=["Q1", "Q2"])
    objective = synthesize_analyses([first, second])
    assert objective.main_objective == "First"
    assert objective.complexity == 7
    assert objective.required_capabilities == ("security", "testing", "architecture")
    assert objective.estimated_scope == "large"
    assert objective.key_questions == ("Q1", "Q2")


def test_parse_suggestion():
    suggestion = parse_suggestion('{"type": "Teleport", "priority": 42, "description": "Go"}', "gpt-5")
    assert suggestion.kind is ActionKind.OTHER
    assert suggestion.priority == 10
    assert suggestion.model_name == "gpt-5"
    fallback = parse_suggestion("nothing useful", "llama")
    assert fallback.kind is ActionKind.AGENT_DISCUSSION
    assert fallback.model_name == "llama"


def test_select_best_action_ties_go_to_first():
    a = ActionSuggestion(ActionKind.WEB_RESEARCH, "a", priority=8)
    b = ActionSuggestion(ActionKind.RISK_ASSESSMENT, "b", priority=8)
    c = ActionSuggestion(ActionKind.CREATE_AGENT, "c", priority=3)
    assert select_best_action([c, a, b]) is a
    assert select_best_action([]) == default_action()


def test_every_action_kind_has_a_handler(sample_app_config):
    orchestrator, _ = build(sample_app_config)
    assert set(orchestrator._handlers) == set(ActionKind)


# --- full runs ----------------------------------------------------------------


async def test_run_stops_on_consensus(sample_app_config):
    orchestrator, collector = build(sample_app_config)
    reports = []
    orchestrator._on_iteration = reports.append

    result = await orchestrator.run(PROMPT)

    assert result.status == "completed"
    assert result.stop_reason == "consensus_to_conclude"
    assert result.iterations == 1
    assert result.rounds == 1
    assert orchestrator.state is State.DONE
    assert result.objective.main_objective == "Design a rate limiter for a public API"
    assert result.objective.complexity == 6
    assert "Which limiting algorithm fits?" in result.open_questions
    assert "How should limits differ per client tier?" in result.open_questions
    assert any("counters in Redis" in d for d in result.decisions)
    assert result.exchanges
    assert result.conclusion.startswith("## Autonomous Conversation Synthesis")
    assert len(reports) == 1
    assert reports[0].consensus is not None and not reports[0].consensus.should_continue

    assert len(orchestrator.registry.main_agents()) >= 2
    assert all(a.assigned_model for a in result.agents)
    assert not any(a.active for a in orchestrator.tiers.assignments.values())

    orchestrator.events.drain_nowait()
    messages = [e.payload.get("message", "") for e in collector.of_kind(EventKind.SYSTEM)]
    assert messages[0].startswith("Starting conversation")
    assert messages[-1] == "Conversation completed: consensus_to_conclude"
    assert collector.of_kind(EventKind.AGENT_RESPONSE)


async def test_run_hits_iteration_limit(sample_app_config):
    oracle = make_oracle(reply=keep_talking)
    orchestrator, _ = build(sample_app_config, oracle)
    result = await orchestrator.run(PROMPT)
    assert result.stop_reason == "iteration_limit"
    assert result.iterations == sample_app_config.orchestrator.max_iterations - 2


async def test_run_continues_past_round_ceiling(sample_app_config):
    config = dataclasses.replace(
        sample_app_config,
        rounds=RoundsConfig(min_rounds=50, max_rounds=1, optimal_rounds=50, redundancy_threshold=1.01),
    )
    orchestrator, _ = build(config, make_oracle(reply=keep_talking))
    reports = []
    orchestrator._on_iteration = reports.append

    result = await orchestrator.run(PROMPT)

    assert result.stop_reason == "iteration_limit"
    assert result.iterations == config.orchestrator.max_iterations - 2
    assert all(r.transition.reason is TransitionReason.MAX_ROUNDS_REACHED for r in reports)
    assert all(r.consensus is not None for r in reports)
    assert len(orchestrator.consensus_history) == result.iterations


async def test_setup_agents_requires_objective(sample_app_config):
    orchestrator, _ = build(sample_app_config)
    with pytest.raises(RuntimeError, match="analyze_objective"):
        await orchestrator.setup_agents()


async def test_fixed_mode_skips_topic_analysis(sample_app_config):
    oracle = make_oracle()
    orchestrator, _ = build(sample_app_config, oracle, mode="fixed")
    await orchestrator.run(PROMPT)
    assert [a.type for a in orchestrator.registry.main_agents()] == ["coordinator", "architect", "researcher"]
    assert not any("what expertise is needed" in p for p in prompts_sent(oracle))


async def test_complexity_override(sample_app_config):
    orchestrator, _ = build(sample_app_config, mode="fixed")
    result = await orchestrator.run(PROMPT, complexity=12)
    assert result.objective.complexity == 10


async def test_failing_handler_does_not_abort(sample_app_config, caplog):
    orchestrator, collector = build(sample_app_config)
    orchestrator._handlers[ActionKind.AGENT_DISCUSSION] = AsyncMock(side_effect=RuntimeError("boom"))
    with caplog.at_level(logging.ERROR, logger="ensemble.orchestrator"):
        result = await orchestrator.run(PROMPT)
    assert result.status == "completed"
    assert result.exchanges == []
    assert "Action agent_discussion failed: boom" in caplog.text
    orchestrator.events.drain_nowait()
    assert any("failed: boom" in e.payload.get("message", "") for e in collector.of_kind(EventKind.SYSTEM))


async def test_cancel_before_start(sample_app_config):
    orchestrator, _ = build(sample_app_config)
    orchestrator.cancel.cancel()
    result = await orchestrator.run(PROMPT)
    assert result.status == "cancelled"
    assert result.stop_reason == "cancelled"
    assert result.objective == Objective(PROMPT, 5)
    assert result.conclusion.startswith("## Conversation Summary")
    assert orchestrator.state is State.CANCELLED


async def test_cancel_mid_run(sample_app_config):
    oracle = make_oracle(reply=keep_talking)
    orchestrator, _ = build(sample_app_config, oracle)
    orchestrator._on_iteration = lambda report: orchestrator.cancel.cancel()
    result = await orchestrator.run(PROMPT)
    assert result.status == "cancelled"
    assert result.iterations == 1
    assert result.exchanges
    assert not any(a.active for a in orchestrator.tiers.assignments.values())


# --- handlers -----------------------------------------------------------------


async def _ready(orchestrator) -> None:
    orchestrator.objective = Objective("Design a rate limiter", 6)
    orchestrator.mode = "fixed"
    await orchestrator.setup_agents()


async def test_web_research_stores_results(sample_app_config):
    search = StaticKnowledgeSearch()
    orchestrator, collector = build(sample_app_config, search=search)
    await _ready(orchestrator)
    action = ActionSuggestion(ActionKind.WEB_RESEARCH, "Research rate limiting algorithms for public APIs")

    assert await orchestrator.execute(action, plan()) == []

    assert search.queries == ["research rate limiting algorithms public"]
    coordinator = orchestrator.registry.find("coordinator")
    stored = [m for items in orchestrator.memory_for(coordinator.id).semantic.values() for m in items]
    assert len(stored) == 3
    assert orchestrator.context.completed_tasks == ["web_research: research rate limiting algorithms public"]
    orchestrator.events.drain_nowait()
    assert collector.of_kind(EventKind.TOOL_USAGE)[0].payload["results"] == 3


async def test_create_agent(sample_app_config):
    orchestrator, _ = build(sample_app_config)
    await _ready(orchestrator)
    action = ActionSuggestion(ActionKind.CREATE_AGENT, "Caching expert")
    assert await orchestrator.execute(action, plan()) == []
    (created,) = [a for a in orchestrator.registry.all() if a.type == "specialist"]
    assert created.id.startswith("dynamic-specialist-")
    assert created.assigned_model is not None
    assert created.specialization == "Caching expert"


async def test_risk_assessment_records_risks(sample_app_config):
    orchestrator, _ = build(sample_app_config, make_oracle(reply=risky))
    await _ready(orchestrator)
    action = ActionSuggestion(ActionKind.RISK_ASSESSMENT, "Assess abuse risks")

    (exchange,) = await orchestrator.execute(action, plan())

    assert exchange.agent_type == "architect"
    assert exchange.mode == "risk_assessment"
    assert "The main risk is counter key exhaustion." in orchestrator.context.open_questions
    assert orchestrator.context.completed_tasks == ["risk_assessment: Assess abuse risks"]
    assert orchestrator.memory_for(exchange.agent_id).episodic


async def test_focused_action_prefers_required_agent(sample_app_config):
    orchestrator, _ = build(sample_app_config)
    await _ready(orchestrator)
    action = ActionSuggestion(ActionKind.SOLUTION_DESIGN, "Design storage", required_agents=["researcher"])
    (exchange,) = await orchestrator.execute(action, plan())
    assert exchange.agent_type == "researcher"


async def test_deep_analysis_uses_search(sample_app_config):
    search = StaticKnowledgeSearch()
    orchestrator, _ = build(sample_app_config, search=search)
    await _ready(orchestrator)
    await orchestrator.execute(ActionSuggestion(ActionKind.DEEP_ANALYSIS, "Analyze burst behaviour"), plan())
    assert search.queries == ["analyze burst behaviour"]


async def test_discussion_participants_top_up(sample_app_config):
    orchestrator, _ = build(sample_app_config)
    await _ready(orchestrator)
    assert [a.type for a in orchestrator._participants(["architect"])] == ["architect", "coordinator", "researcher"]
    assert [a.type for a in orchestrator._participants(["researcher", "architect"])] == ["researcher", "architect"]


def test_conversation_memory_is_bounded(sample_app_config):
    orchestrator, _ = build(sample_app_config)
    exchanges = [Exchange("a", "qa", f"point {i}", 1) for i in range(60)]
    orchestrator._remember(ActionSuggestion(ActionKind.AGENT_DISCUSSION, "talk"), exchanges)
    assert len(orchestrator.memory) == sample_app_config.orchestrator.conversation_memory_keep
    assert orchestrator.memory[-1].content == "point 59"
    assert len(orchestrator.transcript) == 60
    assert orchestrator.context.topics == ["talk"]
