"""Multi-model vote on whether the conversation should continue."""

import asyncio
import logging

from config.config_loader import OrchestratorConfig
from ensemble.models import ConsensusOutcome, ConsensusVote, GenerationOptions, ModelDescriptor
from ensemble.oracle import Oracle, is_fallback
from ensemble.text import parse_json_block

logger = logging.getLogger(__name__)

_FAST_MARKERS = ("fast", "mini", "flash", "nano", "haiku")


def _is_fast(model: ModelDescriptor) -> bool:
    name = f"{model.name} {model.id}".lower()
    return any(m in name for m in _FAST_MARKERS)


def select_voters(
    catalog: list[ModelDescriptor],
    newest_ids: list[str],
    max_models: int = 8,
    min_models: int = 4,
) -> list[ModelDescriptor]:
    """Pick a diverse voting panel, newest models first.

    Falls back to one model per provider when the priority list yields fewer
    than min_models, and makes room for a fast model when none is present.
    """
    by_id = {m.id: m for m in catalog}
    selected: list[ModelDescriptor] = []
    for model_id in newest_ids:
        model = by_id.get(model_id)
        if model is not None and model not in selected:
            selected.append(model)
            if len(selected) >= max_models:
                break

    if len(selected) < min_models:
        for provider in dict.fromkeys(m.provider for m in catalog):
            remaining = [m for m in catalog if m.provider == provider and m not in selected]
            if remaining:
                remaining.sort(key=lambda m: (not m.is_newest, not m.is_latest, -m.quality_score))
                selected.append(remaining[0])

    selected = selected[:max_models]
    if selected and not any(_is_fast(m) for m in selected):
        fast = next((m for m in catalog if _is_fast(m) and m not in selected), None)
        if fast is not None:
            if len(selected) >= max_models:
                selected[-1] = fast
            else:
                selected.append(fast)
    return selected


def fallback_vote(model_name: str, iteration: int) -> ConsensusVote:
    return ConsensusVote(
        model_name=model_name,
        should_continue=iteration < 20,
        confidence=0.5,
        completion_percentage=50.0,
        reasoning="Fallback decision",
    )


def parse_vote(model_name: str, content: str, iteration: int) -> ConsensusVote:
    data = parse_json_block(content)
    if not isinstance(data, dict) or not isinstance(data.get("shouldContinue"), bool):
        logger.debug("Unparseable vote from %s, using fallback vote", model_name)
        return fallback_vote(model_name, iteration)
    try:
        confidence = float(data.get("confidence", 0.5))
        completion = float(data.get("completionPercentage", 50))
    except (TypeError, ValueError):
        return fallback_vote(model_name, iteration)
    return ConsensusVote(
        model_name=model_name,
        should_continue=data["shouldContinue"],
        confidence=min(max(confidence, 0.0), 1.0),
        completion_percentage=min(max(completion, 0.0), 100.0),
        reasoning=str(data.get("reasoning", "")),
    )


def tally(
    votes: list[ConsensusVote],
    iteration: int,
    max_iterations: int,
    continue_threshold: float = 0.6,
    completion_threshold: float = 85.0,
) -> ConsensusOutcome:
    """Combine votes. Only the confidence-weighted ratio and completion gate the result."""
    if votes:
        total = sum(v.confidence for v in votes)
        weighted = sum(v.confidence for v in votes if v.should_continue) / total if total > 0 else 1.0
        simple = sum(1 for v in votes if v.should_continue) / len(votes)
        completion = sum(v.completion_percentage for v in votes) / len(votes)
    else:
        weighted, simple, completion = 1.0, 1.0, 0.0

    if iteration >= max_iterations - 2:
        should_continue, reason = False, "iteration_limit"
    elif weighted < continue_threshold:
        should_continue, reason = False, "consensus_to_conclude"
    elif completion >= completion_threshold:
        should_continue, reason = False, "objective_complete"
    else:
        should_continue, reason = True, ""

    return ConsensusOutcome(
        votes=votes,
        weighted_ratio=weighted,
        simple_ratio=simple,
        average_completion=completion,
        should_continue=should_continue,
        reason=reason,
    )


async def collect_votes(
    oracle: Oracle,
    voters: list[ModelDescriptor],
    prompt: str,
    iteration: int,
) -> list[ConsensusVote]:
    """Ask every voter in parallel; failed calls are left out of the result."""
    options = GenerationOptions(agent_type="decision-maker", max_tokens=300, temperature=0.4)
    results = await asyncio.gather(
        *(oracle.generate(m.id, prompt, options) for m in voters),
        return_exceptions=True,
    )
    votes = []
    for model, result in zip(voters, results):
        if isinstance(result, BaseException):
            logger.warning("Vote from %s failed: %s", model.name, result)
            continue
        if is_fallback(result):
            logger.debug("Vote from %s excluded (fallback response)", model.name)
            continue
        vote = parse_vote(model.name, result.content, iteration)
        logger.info(
            "%s votes %s (confidence %.0f%%, completion %.0f%%)",
            model.name,
            "CONTINUE" if vote.should_continue else "CONCLUDE",
            vote.confidence * 100,
            vote.completion_percentage,
        )
        votes.append(vote)
    return votes


async def poll_consensus(
    oracle: Oracle,
    prompt: str,
    iteration: int,
    config: OrchestratorConfig,
) -> ConsensusOutcome:
    if iteration >= config.max_iterations - 2:
        return tally([], iteration, config.max_iterations)
    voters = select_voters(
        oracle.catalog(),
        config.newest_models,
        config.consensus_max_models,
        config.consensus_min_models,
    )
    logger.info("Polling %d models for consensus: %s", len(voters), ", ".join(m.name for m in voters))
    votes = await collect_votes(oracle, voters, prompt, iteration)
    outcome = tally(votes, iteration, config.max_iterations, config.continue_threshold, config.completion_threshold)
    logger.info(
        "Consensus: %d/%d continue (simple %.1f%%), weighted %.1f%%, completion %.1f%%",
        sum(1 for v in votes if v.should_continue),
        len(votes),
        outcome.simple_ratio * 100,
        outcome.weighted_ratio * 100,
        outcome.average_completion,
    )
    return outcome
