"""Click CLI: loads config, checks providers, runs one conversation and saves the transcript."""

import asyncio
import logging
import random
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler

from config.config_loader import AppConfig, load_config
from ensemble.events import EventQueue, LoggingSink
from ensemble.healthcheck import healthy_ids, run_health_checks
from ensemble.models import ConversationResult
from ensemble.oracle import NoProvidersError, Oracle, build_providers
from ensemble.orchestrator import ConversationOrchestrator
from ensemble.output import print_conclusion, print_iteration, save_to_file
from ensemble.providers.base import AIProvider
from ensemble.storage import JsonFileStore

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _check_and_filter_providers(providers: dict[str, AIProvider]) -> dict[str, AIProvider]:
    """Run health checks, print results, and ask user what to do on failures.

    Returns the filtered dict of working providers. Exits if the user
    declines to continue or no providers pass.
    """
    console.print("\n[bold]Checking models...[/bold]")
    results = asyncio.run(run_health_checks(providers))

    for name in sorted(results):
        status = results[name]
        if status.ok:
            console.print(f"  [green]OK  [/green] {name} [dim]({status.latency_sec:.1f}s)[/dim]")
        else:
            short_err = status.error.splitlines()[0][:120] if status.error else "unknown error"
            console.print(f"  [red]FAIL[/red] {name}: {short_err}")

    keep = healthy_ids(results)
    failed_names = sorted(set(results) - set(keep))
    if not failed_names:
        console.print()
        return providers

    working = {n: providers[n] for n in keep}

    if not working:
        console.print("\n[bold red]Error:[/bold red] No models passed the health check.")
        sys.exit(1)

    console.print(f"\n[yellow]{len(failed_names)} model(s) failed:[/yellow] {', '.join(failed_names)}")
    console.print(f"Working models: {', '.join(sorted(working))}")

    if not click.confirm("Continue with working models only?", default=True):
        sys.exit(0)

    console.print()
    return working


async def _run_conversation(
    objective: str,
    config: AppConfig,
    oracle: Oracle,
    mode: str,
    complexity: int | None,
    memory_dir: Path,
) -> ConversationResult:
    events = EventQueue([LoggingSink()])
    events.start()
    orchestrator = ConversationOrchestrator(
        oracle,
        config,
        store=JsonFileStore(memory_dir),
        events=events,
        rng=random.Random(config.defaults.seed),
        mode=mode,
        on_iteration=print_iteration,
    )
    try:
        return await orchestrator.run(objective, complexity)
    finally:
        await events.aclose()


@click.command()
@click.argument("objective", required=False)
@click.option("--file", "objective_file", type=click.Path(exists=True), help="Read objective from a text/.md file")
@click.option("--mode", type=click.Choice(["autonomous", "fixed"]), default=None,
              help="autonomous selects agents per objective; fixed uses coordinator, architect, researcher")
@click.option("--complexity", type=click.IntRange(1, 10), default=None,
              help="Override the analyzed objective complexity (1-10)")
@click.option("--max-iterations", type=click.IntRange(1), default=None, help="Hard iteration ceiling")
@click.option("--seed", type=int, default=None, help="Seed for reproducible random choices")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.option("--memory-dir", default=None, help="Agent memory directory (default: from config)")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.option("--skip-health-check", is_flag=True, default=False,
              help="Skip the API connectivity check at startup")
def main(
    objective: str | None,
    objective_file: str | None,
    mode: str | None,
    complexity: int | None,
    max_iterations: int | None,
    seed: int | None,
    output_path: str | None,
    memory_dir: str | None,
    verbose: bool,
    skip_health_check: bool,
) -> None:
    """Ensemble -- autonomous multi-agent conversation over several language models.

    \b
    Examples:
      ensemble "Design a rate limiter for a public API"
      ensemble "Plan a data warehouse migration" --mode fixed --max-iterations 10
      ensemble --file objective.md --complexity 8 --seed 42
    """
    load_dotenv()
    _setup_logging(verbose)

    try:
        config = load_config()
    except FileNotFoundError as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)

    if objective_file:
        objective_text = Path(objective_file).read_text(encoding="utf-8").strip()
    elif objective:
        objective_text = objective
    else:
        console.print("[bold red]Error:[/bold red] Provide an OBJECTIVE argument or --file.")
        sys.exit(1)

    if max_iterations is not None:
        config.orchestrator.max_iterations = max_iterations
    if seed is not None:
        config.defaults.seed = seed
    effective_mode = mode or config.defaults.mode
    effective_output = Path(output_path) if output_path else config.defaults.output_dir
    effective_memory = Path(memory_dir) if memory_dir else config.defaults.memory_dir

    providers = build_providers(config)
    if not providers:
        console.print("[bold red]Error:[/bold red] No models available. Check API keys in .env.")
        sys.exit(1)

    if not skip_health_check:
        providers = _check_and_filter_providers(providers)

    try:
        oracle = Oracle.from_config(config, providers)
    except NoProvidersError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        sys.exit(1)

    console.print(
        f"\n[bold cyan]Ensemble[/bold cyan] | {len(oracle.model_ids())} models, "
        f"mode {effective_mode}, up to {config.orchestrator.max_iterations} iterations"
    )
    console.print(f"Objective: [italic]{objective_text[:80]}{'...' if len(objective_text) > 80 else ''}[/italic]\n")

    result = asyncio.run(
        _run_conversation(objective_text, config, oracle, effective_mode, complexity, effective_memory)
    )

    print_conclusion(result)
    saved_path = save_to_file(result, effective_output)
    console.print(f"\n[dim]Saved to: {saved_path}[/dim]")


if __name__ == "__main__":
    main()
