"""Rich console output and markdown transcript for conversation results."""

import logging
import re
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.text import Text

from ensemble.models import ConversationResult, Exchange
from ensemble.orchestrator import IterationReport

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def _preview(exchange: Exchange, words: int = 50) -> str:
    """Return first N words of an exchange."""
    all_words = exchange.content.split()
    preview = " ".join(all_words[:words])
    if len(all_words) > words:
        preview += "..."
    return preview


def print_iteration(report: IterationReport) -> None:
    """Print a brief summary of one iteration to the console."""
    console.print(
        Rule(
            f"[bold cyan]Iteration {report.iteration} | Round {report.plan.round_number} "
            f"({report.plan.phase.value})[/bold cyan]"
        )
    )
    console.print(
        Text(
            f"Focus: {report.plan.focus} | Action: {report.action.kind.value} "
            f"(priority {report.action.priority}) | Transition: {report.transition.reason.value}",
            style="dim",
        )
    )
    for exchange in report.exchanges:
        console.print(
            Panel(
                _preview(exchange),
                title=f"[bold]{exchange.agent_type}[/bold] ({exchange.model})",
                subtitle=exchange.mode or None,
                border_style="dim",
            )
        )
    if report.consensus is not None and report.consensus.votes:
        console.print(
            f"Consensus: weighted {report.consensus.weighted_ratio:.0%} continue, "
            f"completion {report.consensus.average_completion:.0f}%"
        )


def print_conclusion(result: ConversationResult) -> None:
    """Print the conclusion using Rich markdown."""
    console.print(Rule("[bold green]Conclusion[/bold green]"))
    console.print(
        Text(
            f"Status: {result.status} ({result.stop_reason}) | "
            f"Iterations: {result.iterations} | "
            f"Agents: {len(result.agents)} | "
            f"Duration: {result.duration_sec:.1f}s",
            style="dim",
        )
    )
    console.print(Markdown(result.conclusion))


def save_to_file(result: ConversationResult, output_dir: Path) -> Path:
    """Save the full conversation transcript as a markdown file.

    Returns:
        Path to the saved file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    filepath = output_dir / f"{timestamp}_{_slug(result.objective.main_objective)}.md"

    lines: list[str] = [
        f"# Ensemble Conversation: {result.objective.main_objective[:80]}",
        "",
        f"**Date:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Conversation:** {result.conversation_id}",
        f"**Status:** {result.status} ({result.stop_reason})",
        f"**Complexity:** {result.objective.complexity}/10 ({result.objective.estimated_scope} scope)",
        f"**Iterations:** {result.iterations}",
        f"**Rounds:** {result.rounds}",
        f"**Duration:** {result.duration_sec:.1f}s",
        "",
        "## Agents",
        "",
    ]
    for agent in result.agents:
        role = f"sub-agent of {agent.parent_agent_id}" if agent.is_sub_agent else "main"
        tier = agent.model_tier.value if agent.model_tier else "unassigned"
        lines.append(f"- **{agent.type}** ({role}): {agent.specialization} [{agent.assigned_model}, {tier}]")
    lines += ["", "---", ""]

    current = None
    for exchange in result.exchanges:
        if exchange.iteration != current:
            current = exchange.iteration
            lines += [f"## Iteration {current}", ""]
        target = f" -> {exchange.target_agent_id}" if exchange.target_agent_id else ""
        lines += [
            f"### {exchange.agent_type}{target} ({exchange.model}, {exchange.mode})",
            "",
            exchange.content,
            "",
        ]

    if result.decisions:
        lines += ["## Decisions", ""] + [f"- {d}" for d in result.decisions] + [""]
    if result.open_questions:
        lines += ["## Open Questions", ""] + [f"- {q}" for q in result.open_questions] + [""]
    lines += ["## Conclusion", "", result.conclusion, ""]

    filepath.write_text("\n".join(lines), encoding="utf-8")
    logger.info("Conversation saved to: %s", filepath)
    return filepath
