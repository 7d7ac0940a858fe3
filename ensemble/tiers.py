"""Tiered model assignment: classify the catalog, bind one model per agent under usage caps."""

import logging
import random
import threading
import time
from collections.abc import Callable

from config.config_loader import TiersConfig
from ensemble.models import Agent, ModelAssignment, ModelDescriptor, ModelTier

logger = logging.getLogger(__name__)

TIER_ORDER: list[ModelTier] = [ModelTier.PREMIUM, ModelTier.BALANCED, ModelTier.FAST, ModelTier.ECONOMICAL]

AGENT_TIER_TABLE: dict[str, ModelTier] = {
    "coordinator": ModelTier.PREMIUM,
    "architect": ModelTier.PREMIUM,
    "strategic-planner": ModelTier.PREMIUM,
    "decision-maker": ModelTier.PREMIUM,
    "security": ModelTier.PREMIUM,
    "data-science": ModelTier.PREMIUM,
    "researcher": ModelTier.BALANCED,
    "analyst": ModelTier.BALANCED,
    "developer": ModelTier.BALANCED,
    "qa": ModelTier.FAST,
    "documentation": ModelTier.FAST,
    "helper": ModelTier.ECONOMICAL,
}

_FLAGSHIP_KEYWORDS = ("opus", "flagship", "advanced", "o3", "thinking", "reasoner", "2.5")
_FAST_KEYWORDS = ("mini", "flash", "haiku", "nano", "fast")

_COMPLEXITY_WEIGHT = {"high": 3, "medium": 2}


def _names(model: ModelDescriptor) -> str:
    return f"{model.name} {model.id}".lower()


def is_premium(model: ModelDescriptor) -> bool:
    flagged = model.is_latest or model.is_newest or any(k in _names(model) for k in _FLAGSHIP_KEYWORDS)
    return model.quality_score >= 10 and flagged


def is_balanced(model: ModelDescriptor) -> bool:
    return 8 <= model.quality_score < 10 and model.cost_per_token <= 0.000005


def is_fast(model: ModelDescriptor) -> bool:
    return model.speed_score >= 9 and any(k in _names(model) for k in _FAST_KEYWORDS)


def is_economical(model: ModelDescriptor, free_providers: list[str]) -> bool:
    return (
        model.cost_per_token <= 0.0000005
        or model.cost_per_token == 0
        or model.provider.lower() in free_providers
    )


def dynamic_tier_score(agent: Agent, complexity: str = "medium") -> int:
    """Score used for sub-agents and agent types missing from AGENT_TIER_TABLE."""
    score = _COMPLEXITY_WEIGHT.get(complexity, 1)
    capabilities = agent.capabilities
    if "reasoning" in capabilities:
        score += 2
    if "analysis" in capabilities:
        score += 1
    if "code-generation" in capabilities:
        score += 1
    if "simple-task" in capabilities:
        score -= 1
    specialization = agent.specialization.lower()
    if "strategic" in specialization:
        score += 2
    if "critical" in specialization:
        score += 2
    if "support" in specialization:
        score -= 1
    return score


def tier_for_score(score: int) -> ModelTier:
    if score >= 6:
        return ModelTier.PREMIUM
    if score >= 4:
        return ModelTier.BALANCED
    if score >= 2:
        return ModelTier.FAST
    return ModelTier.ECONOMICAL


class TieredModelSelector:
    """Owns the model-assignment table for one conversation.

    Selection and tracking happen under a single lock so the per-model and
    premium caps hold even when agents are assigned from several threads.
    """

    def __init__(
        self,
        catalog: list[ModelDescriptor],
        config: TiersConfig | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or TiersConfig()
        self._rng = rng or random.Random()
        self._clock = clock
        self._lock = threading.Lock()
        self._catalog: list[ModelDescriptor] = []
        self._rosters: dict[ModelTier, list[ModelDescriptor]] = {t: [] for t in TIER_ORDER}
        self.assignments: dict[str, ModelAssignment] = {}
        self.total_assignments: dict[str, int] = {}
        self.recategorize(catalog)

    def recategorize(self, catalog: list[ModelDescriptor] | None = None) -> None:
        """Rebuild every tier roster, optionally from a new catalog."""
        with self._lock:
            if catalog is not None:
                self._catalog = list(catalog)
            free = [p.lower() for p in self.config.free_providers]
            rosters: dict[ModelTier, list[ModelDescriptor]] = {t: [] for t in TIER_ORDER}
            for model in self._catalog:
                if is_premium(model):
                    rosters[ModelTier.PREMIUM].append(model)
                if is_balanced(model):
                    rosters[ModelTier.BALANCED].append(model)
                if is_fast(model):
                    rosters[ModelTier.FAST].append(model)
                if is_economical(model, free):
                    rosters[ModelTier.ECONOMICAL].append(model)
            for roster in rosters.values():
                roster.sort(key=lambda m: m.quality_score + m.speed_score * 0.5, reverse=True)
            self._rosters = rosters

        logger.info(
            "Model tiers: %s",
            ", ".join(f"{t.value}={len(r)}" for t, r in self._rosters.items()),
        )

    def roster(self, tier: ModelTier) -> list[ModelDescriptor]:
        return list(self._rosters[tier])

    def tier_of(self, model_id: str) -> ModelTier | None:
        for tier in TIER_ORDER:
            if any(m.id == model_id for m in self._rosters[tier]):
                return tier
        return None

    def determine_tier(self, agent: Agent, complexity: str = "medium") -> ModelTier:
        if agent.is_sub_agent:
            return tier_for_score(dynamic_tier_score(agent, complexity))
        if agent.preferred_tier is not None:
            return agent.preferred_tier
        tier = AGENT_TIER_TABLE.get(agent.type)
        if tier is None:
            tier = tier_for_score(dynamic_tier_score(agent, complexity))
        return tier

    # --- usage (callers hold the lock) ------------------------------------

    def current_usage(self, model_id: str) -> int:
        return sum(1 for a in self.assignments.values() if a.active and a.model_id == model_id)

    def premium_usage(self) -> int:
        premium_ids = {m.id for m in self._rosters[ModelTier.PREMIUM]}
        return sum(1 for a in self.assignments.values() if a.active and a.model_id in premium_ids)

    def _pick_in_tier(self, tier: ModelTier) -> ModelDescriptor | None:
        if tier is ModelTier.PREMIUM and self.premium_usage() >= self.config.max_concurrent_premium:
            return None

        candidates = []
        for model in self._rosters[tier]:
            usage = self.current_usage(model.id)
            if usage < self.config.max_concurrent_per_model:
                candidates.append((usage, model))
        if not candidates:
            return None

        candidates.sort(key=lambda c: (c[0], -c[1].quality_score))
        if len(candidates) > 1:
            roll = self._rng.random()
            if roll < 0.2 and len(candidates) > 2:
                return candidates[2][1]
            if roll < 0.4:
                return candidates[1][1]
        return candidates[0][1]

    def _select(self, tier: ModelTier) -> tuple[ModelDescriptor | None, ModelTier | None]:
        for candidate_tier in TIER_ORDER[TIER_ORDER.index(tier):]:
            model = self._pick_in_tier(candidate_tier)
            if model is not None:
                if candidate_tier is not tier:
                    logger.info("Falling back from %s to %s tier", tier.value, candidate_tier.value)
                return model, candidate_tier
        if not self._catalog:
            return None, None
        model = min(self._catalog, key=lambda m: (self.current_usage(m.id), -m.quality_score))
        logger.warning("All tiers at capacity for %s, using least-loaded model %s", tier.value, model.name)
        return model, self.tier_of(model.id)

    def assign(self, agent: Agent, complexity: str = "medium") -> ModelDescriptor | None:
        """Bind a model to the agent and record the assignment.

        Returns None only when the catalog is empty.
        """
        tier = self.determine_tier(agent, complexity)
        with self._lock:
            model, actual_tier = self._select(tier)
            if model is None:
                logger.warning("No model available for %s agent", agent.type)
                return None
            self.assignments[agent.id] = ModelAssignment(
                agent_id=agent.id,
                agent_type=agent.type,
                model_id=model.id,
                model_name=model.name,
                tier=actual_tier or tier,
                assigned_at=self._clock(),
            )
            self.total_assignments[model.id] = self.total_assignments.get(model.id, 0) + 1

        agent.assigned_model = model.id
        agent.model_tier = actual_tier or tier
        logger.info("Assigned %s (%s) to %s agent", model.name, agent.model_tier.value, agent.type)
        return model

    def release(self, agent_id: str) -> bool:
        with self._lock:
            assignment = self.assignments.get(agent_id)
            if assignment is None or not assignment.active:
                return False
            assignment.active = False
            assignment.released_at = self._clock()
        logger.debug("Released %s from agent %s", assignment.model_name, agent_id)
        return True

    def release_all(self) -> None:
        for agent_id in list(self.assignments):
            self.release(agent_id)

    def tier_statistics(self) -> dict[str, dict]:
        with self._lock:
            stats = {}
            for tier, roster in self._rosters.items():
                ids = {m.id for m in roster}
                stats[tier.value] = {
                    "models": [m.name for m in roster],
                    "active": sum(1 for a in self.assignments.values() if a.active and a.model_id in ids),
                    "total": sum(self.total_assignments.get(i, 0) for i in ids),
                }
            return stats

    def summary(self) -> dict[str, list[str]]:
        """Active assignments grouped by tier: tier -> ["agent_type: model", ...]."""
        grouped: dict[str, list[str]] = {t.value: [] for t in TIER_ORDER}
        with self._lock:
            for assignment in self.assignments.values():
                if assignment.active:
                    grouped[assignment.tier.value].append(f"{assignment.agent_type}: {assignment.model_name}")
        return grouped
