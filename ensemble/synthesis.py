"""Final conclusion: ask every model for a narrative, merge the narratives."""

import asyncio
import logging
from dataclasses import dataclass

from ensemble.models import Agent, ConversationContext, Exchange, GenerationOptions, Objective
from ensemble.oracle import Oracle, is_fallback
from ensemble.prompts import CONCLUSION
from ensemble.text import TextAnalyzer

logger = logging.getLogger(__name__)


@dataclass
class Narrative:
    model_name: str
    content: str


def build_final_context(
    exchanges: list[Exchange],
    agents: list[Agent],
    context: ConversationContext,
) -> str:
    """Curate what the synthesizers see: substantive exchanges, contributions, decisions, questions."""
    parts: list[str] = []

    substantive = [e for e in exchanges if len(e.content) > 50][-10:]
    if substantive:
        parts.append("Recent substantive exchanges:")
        parts.extend(f"- {e.agent_type}: {e.content[:300]}" for e in substantive)

    contributions: dict[str, int] = {}
    for e in exchanges:
        contributions[e.agent_id] = contributions.get(e.agent_id, 0) + 1
    if agents:
        parts.append("\nAgent contributions:")
        for agent in agents:
            role = f"sub-agent of {agent.parent_agent_id}" if agent.is_sub_agent else "main agent"
            parts.append(f"- {agent.type} ({role}): {contributions.get(agent.id, 0)} messages")

    if context.decisions:
        parts.append("\nDecisions:")
        parts.extend(f"- {d}" for d in context.decisions[-10:])
    if context.open_questions:
        parts.append("\nOpen questions:")
        parts.extend(f"- {q}" for q in context.open_questions[-10:])
    if context.completed_tasks:
        parts.append("\nCompleted tasks:")
        parts.extend(f"- {t}" for t in context.completed_tasks[-10:])

    return "\n".join(parts) or "No substantive discussion recorded."


def merge_narratives(narratives: list[Narrative], analyzer: TextAnalyzer | None = None) -> str | None:
    """Merge model narratives by extracted sentence class. Returns None when there is nothing to merge."""
    narratives = [n for n in narratives if n.content]
    if not narratives:
        return None
    text = analyzer or TextAnalyzer()

    accomplishments: list[str] = []
    insights: list[str] = []
    recommendations: list[str] = []
    for narrative in narratives:
        accomplishments.extend(text.accomplishments(narrative.content))
        insights.extend(text.key_points(narrative.content))
        recommendations.extend(text.recommendations(narrative.content))

    sections = ["## Autonomous Conversation Synthesis", ""]
    for title, items, limit in (
        ("Key Accomplishments", accomplishments, 3),
        ("Critical Insights", insights, 4),
        ("Recommendations", recommendations, 3),
    ):
        unique = list(dict.fromkeys(items))[:limit]
        if unique:
            sections.append(f"### {title}:")
            sections.extend(f"- {item}" for item in unique)
            sections.append("")

    if len(narratives[0].content) > 100:
        sections.append("### Detailed Analysis:")
        sections.append(narratives[0].content)
        sections.append("")

    sections.append("---")
    sections.append(
        f"[This conclusion synthesized from {len(narratives)} different AI models: "
        f"{', '.join(n.model_name for n in narratives)}]"
    )
    return "\n".join(sections)


def fallback_summary(
    objective: Objective | None,
    agents: list[Agent],
    exchanges: list[Exchange],
    context: ConversationContext,
    iterations: int,
) -> str:
    """Summary built straight from conversation memory when no model produced a narrative."""
    main_objective = objective.main_objective if objective else "Autonomous discussion and problem-solving"
    lines = ["## Conversation Summary", "", "### Objective:", main_objective, "", "### Participants:"]
    lines.extend(
        f"- **{a.type}** ({a.assigned_model or 'Unknown Model'}): {a.purpose or 'Specialized agent'}"
        for a in agents
    )
    lines.extend(["", "### Key Discussion Points:"])
    recent = exchanges[-20:]
    for exchange in [e for e in recent if len(e.content) > 100][-5:]:
        preview = exchange.content[:200].replace("\n", " ")
        lines.append(f"- {preview}...")
    lines.extend([
        "",
        "### Conversation Metrics:",
        f"- Total iterations: {iterations}",
        f"- Agents created: {len(agents)}",
        f"- Messages exchanged: {len(recent)}",
        f"- Decisions made: {len(context.decisions)}",
        "",
        "### Conclusion:",
    ])
    closing = (
        f"The autonomous conversation explored {main_objective} through {iterations} iterations "
        f"of multi-agent discussion. The system created {len(agents)} specialized agents who "
        "collaboratively analyzed the problem space."
    )
    if context.decisions:
        closing += f" Key decisions included: {', '.join(context.decisions[:3])}."
    lines.append(closing)
    return "\n".join(lines)


async def conclude(
    oracle: Oracle,
    objective: Objective,
    iterations: int,
    agents: list[Agent],
    exchanges: list[Exchange],
    context: ConversationContext,
    analyzer: TextAnalyzer | None = None,
) -> str:
    """Query all models in parallel and merge their narratives, falling back to a memory summary."""
    prompt = CONCLUSION.format(
        objective=objective.main_objective,
        iterations=iterations,
        agent_count=len(agents),
        decision_count=len(context.decisions),
        complexity=objective.complexity,
        context=build_final_context(exchanges, agents, context),
    )
    models = oracle.catalog()
    logger.info("Generating conclusion from %d models", len(models))
    options = GenerationOptions(agent_type="synthesizer", max_tokens=1500, temperature=0.5)
    results = await asyncio.gather(
        *(oracle.generate(m.id, prompt, options) for m in models),
        return_exceptions=True,
    )

    narratives = []
    for model, result in zip(models, results):
        if isinstance(result, BaseException):
            logger.warning("Conclusion from %s failed: %s", model.name, result)
        elif not is_fallback(result) and result.content.strip():
            narratives.append(Narrative(model.name, result.content))

    merged = merge_narratives(narratives, analyzer)
    if merged is None:
        logger.warning("No model produced a conclusion, summarizing from memory")
        return fallback_summary(objective, agents, exchanges, context, iterations)
    return merged
