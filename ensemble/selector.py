"""Compose the working set of agents for a topic by scoring role templates."""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from config.config_loader import SelectorConfig
from ensemble.models import Agent, GenerationOptions, ModelTier
from ensemble.oracle import Oracle, is_fallback
from ensemble.prompts import TOPIC_ANALYSIS
from ensemble.text import parse_json_block

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE_IDS = ("strategic-coordinator", "technical-architect", "research-analyst")


@dataclass(frozen=True)
class AgentTemplate:
    type: str
    specialization: str
    capabilities: tuple[str, ...]
    required_for_topics: tuple[str, ...] = ()
    preferred_tier: ModelTier = ModelTier.BALANCED


AGENT_TEMPLATES: dict[str, AgentTemplate] = {
    "strategic-coordinator": AgentTemplate(
        "coordinator", "Strategic planning and orchestration",
        ("planning", "coordination", "synthesis", "decision-making"),
        ("strategy", "planning", "architecture", "system-design"),
        ModelTier.PREMIUM,
    ),
    "technical-architect": AgentTemplate(
        "architect", "System architecture and technical design",
        ("system-design", "architecture", "technical-analysis", "integration"),
        ("architecture", "design", "infrastructure", "integration"),
        ModelTier.PREMIUM,
    ),
    "research-analyst": AgentTemplate(
        "researcher", "Research and data analysis",
        ("research", "data-analysis", "investigation", "fact-checking"),
        ("research", "analysis", "data", "investigation"),
    ),
    "implementation-specialist": AgentTemplate(
        "developer", "Implementation and coding",
        ("coding", "implementation", "debugging", "optimization"),
        ("implementation", "coding", "development", "programming"),
    ),
    "security-auditor": AgentTemplate(
        "security", "Security analysis and auditing",
        ("security-analysis", "vulnerability-assessment", "compliance", "risk-assessment"),
        ("security", "vulnerability", "compliance", "risk"),
        ModelTier.PREMIUM,
    ),
    "quality-engineer": AgentTemplate(
        "qa", "Quality assurance and testing",
        ("testing", "quality-assurance", "validation", "verification"),
        ("testing", "quality", "validation", "qa"),
    ),
    "devops-engineer": AgentTemplate(
        "devops", "DevOps and deployment",
        ("deployment", "ci-cd", "infrastructure", "monitoring"),
        ("deployment", "devops", "ci-cd", "operations"),
    ),
    "business-analyst": AgentTemplate(
        "business", "Business analysis and requirements",
        ("requirements-analysis", "business-logic", "process-design", "stakeholder-management"),
        ("business", "requirements", "process", "stakeholder"),
    ),
    "data-scientist": AgentTemplate(
        "data-science", "Data science and machine learning",
        ("machine-learning", "data-science", "statistics", "predictive-modeling"),
        ("ml", "ai", "data-science", "statistics"),
        ModelTier.PREMIUM,
    ),
    "ui-ux-designer": AgentTemplate(
        "design", "UI/UX design and user experience",
        ("ui-design", "ux-design", "user-research", "prototyping"),
        ("ui", "ux", "design", "user-experience"),
    ),
    "domain-expert": AgentTemplate(
        "expert", "Domain-specific expertise",
        ("domain-knowledge", "best-practices", "industry-standards", "compliance"),
        ("domain", "industry", "compliance", "standards"),
    ),
    "creative-innovator": AgentTemplate(
        "innovator", "Creative problem solving and innovation",
        ("brainstorming", "innovation", "creative-thinking", "ideation"),
        ("innovation", "creativity", "brainstorming", "ideation"),
        ModelTier.FAST,
    ),
}


@dataclass
class TopicNeeds:
    primary: list[str] = field(default_factory=list)
    secondary: list[str] = field(default_factory=list)
    technical_depth: str = "medium"
    creativity_needed: bool = False
    analytical_depth: str = "medium"
    domain_specific: bool = False
    suggested_types: list[str] = field(default_factory=list)


@dataclass
class TemplateScore:
    template_id: str
    score: float
    expertise: float
    performance: float
    diversity: float


@dataclass
class PerformanceRecord:
    total: int = 0
    successful: int = 0

    @property
    def success_rate(self) -> float:
        return self.successful / self.total if self.total else 0.0


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v).lower() for v in value if v]


def needs_from_json(data: dict[str, Any]) -> TopicNeeds:
    return TopicNeeds(
        primary=_str_list(data.get("primaryExpertise")),
        secondary=_str_list(data.get("secondaryExpertise")),
        technical_depth=str(data.get("technicalDepth", "medium")).lower(),
        creativity_needed=bool(data.get("creativityNeeded", False)),
        analytical_depth=str(data.get("analyticalDepth", "medium")).lower(),
        domain_specific=bool(data.get("domainSpecific", False)),
        suggested_types=_str_list(data.get("suggestedAgentTypes")),
    )


def fallback_needs(topic: str) -> TopicNeeds:
    """Keyword analysis used when the oracle reply is unusable."""
    lowered = topic.lower()
    needs = TopicNeeds()
    if "architect" in lowered or "design" in lowered:
        needs.primary.append("architecture")
        needs.suggested_types.append("architect")
    if "secur" in lowered:
        needs.primary.append("security")
        needs.suggested_types.append("security")
    if "test" in lowered or "qa" in lowered:
        needs.primary.append("testing")
        needs.suggested_types.append("qa")
    if "data" in lowered or "ml" in lowered:
        needs.primary.append("data-science")
        needs.suggested_types.append("data-science")
    if not needs.suggested_types:
        needs.suggested_types = ["coordinator", "researcher", "developer"]
    return needs


class DynamicAgentSelector:
    """Scores templates by expertise, past performance and diversity.

    Performance is tracked per template id across every conversation the
    selector serves; feed results back with record_performance().
    """

    def __init__(
        self,
        oracle: Oracle | None = None,
        config: SelectorConfig | None = None,
        templates: dict[str, AgentTemplate] | None = None,
    ) -> None:
        self._oracle = oracle
        self.config = config or SelectorConfig()
        self.templates = templates if templates is not None else dict(AGENT_TEMPLATES)
        self.performance: dict[str, PerformanceRecord] = {}
        self.last_scores: list[TemplateScore] = []

    async def analyze_topic(self, topic: str, requirements: dict[str, Any] | None = None) -> TopicNeeds:
        if self._oracle is None:
            return fallback_needs(topic)
        prompt = TOPIC_ANALYSIS.format(topic=topic, requirements=requirements or {})
        response = await self._oracle.generate(
            self._oracle.model_ids()[0],
            prompt,
            GenerationOptions(agent_type="agent-selector", max_tokens=400, temperature=0.6),
        )
        data = None if is_fallback(response) else parse_json_block(response.content)
        if not isinstance(data, dict):
            logger.debug("Topic analysis unusable, using keyword analysis")
            return fallback_needs(topic)
        return needs_from_json(data)

    # --- scoring ----------------------------------------------------------

    def expertise_match(self, template: AgentTemplate, needs: TopicNeeds) -> float:
        total_needed = len(needs.primary) + len(needs.secondary)
        if total_needed == 0:
            return 0.5
        score = 0.0
        for expertise in needs.primary:
            if any(expertise in cap for cap in template.capabilities):
                score += 2
        for expertise in needs.secondary:
            if any(expertise in cap for cap in template.capabilities):
                score += 1
        if template.type in needs.suggested_types:
            score += 1.5
        return min(score / (total_needed * 1.5), 1.0)

    def performance_score(self, template_id: str) -> float:
        record = self.performance.get(template_id)
        if record is None or record.total == 0:
            return 0.7
        return record.success_rate

    def diversity(self, template: AgentTemplate, selected_ids: list[str]) -> float:
        chosen = [self.templates[i] for i in selected_ids if i in self.templates]
        if not chosen:
            return 1.0
        if any(c.type == template.type for c in chosen):
            return 0.2
        overlap = sum(
            len([cap for cap in template.capabilities if cap in c.capabilities]) / len(template.capabilities)
            for c in chosen
        )
        return 1 - overlap / len(chosen)

    def score_templates(self, needs: TopicNeeds) -> list[TemplateScore]:
        scores: list[TemplateScore] = []
        for template_id, template in self.templates.items():
            expertise = self.expertise_match(template, needs)
            performance = self.performance_score(template_id)
            diversity = self.diversity(template, [s.template_id for s in scores])
            total = (
                expertise * self.config.expertise_weight
                + performance * self.config.performance_weight
                + diversity * self.config.diversity_weight
            )
            scores.append(TemplateScore(template_id, total, expertise, performance, diversity))
        return scores

    def target_count(self, needs: TopicNeeds) -> int:
        count = self.config.optimal_agents
        if needs.technical_depth == "high":
            count += 1
        elif needs.technical_depth == "low":
            count -= 1
        if needs.analytical_depth == "high":
            count += 1
        return max(self.config.min_agents, min(self.config.max_agents, count))

    def compose(self, scores: list[TemplateScore], needs: TopicNeeds) -> list[str]:
        ranked = sorted(scores, key=lambda s: s.score, reverse=True)
        target = self.target_count(needs)
        selected: list[str] = []
        if ranked:
            selected.append(ranked[0].template_id)

        for candidate in ranked[1:]:
            if len(selected) >= target:
                break
            diversity = self.diversity(self.templates[candidate.template_id], selected)
            if diversity > 0.3 or candidate.expertise > 0.8:
                selected.append(candidate.template_id)

        for candidate in ranked:
            if len(selected) >= self.config.min_agents:
                break
            if candidate.template_id not in selected:
                selected.append(candidate.template_id)
        return selected

    # --- instantiation ----------------------------------------------------

    def instantiate(self, template_ids: list[str], topic: str) -> list[Agent]:
        agents = []
        for template_id in template_ids:
            template = self.templates.get(template_id)
            if template is None:
                continue
            agents.append(
                Agent(
                    id=f"{template.type}-{uuid.uuid4().hex[:8]}",
                    type=template.type,
                    specialization=template.specialization,
                    capabilities=list(template.capabilities),
                    purpose=f"Contribute {template.specialization} perspective to: {topic}",
                    template_id=template_id,
                    preferred_tier=template.preferred_tier,
                )
            )
        return agents

    def default_agents(self, topic: str = "General discussion") -> list[Agent]:
        return self.instantiate([t for t in DEFAULT_TEMPLATE_IDS if t in self.templates], topic)

    async def select_agents(self, topic: str, requirements: dict[str, Any] | None = None) -> list[Agent]:
        """Return the agent composition for a topic, or the default trio on failure."""
        logger.info("Selecting agents for: %.80s", topic)
        try:
            needs = await self.analyze_topic(topic, requirements)
            self.last_scores = self.score_templates(needs)
            agents = self.instantiate(self.compose(self.last_scores, needs), topic)
        except Exception as exc:
            logger.error("Agent selection failed, using defaults: %s", exc)
            return self.default_agents(topic)
        if not agents:
            return self.default_agents(topic)
        logger.info("Selected %d agents: %s", len(agents), ", ".join(a.type for a in agents))
        return agents

    def record_performance(self, template_id: str, success: bool) -> None:
        record = self.performance.setdefault(template_id, PerformanceRecord())
        record.total += 1
        if success:
            record.successful += 1

    @staticmethod
    def summarize(agents: list[Agent]) -> dict[str, Any]:
        return {
            "count": len(agents),
            "types": [a.type for a in agents],
            "specializations": [a.specialization for a in agents],
            "capabilities": list(dict.fromkeys(c for a in agents for c in a.capabilities)),
            "model_tiers": [a.preferred_tier.value if a.preferred_tier else None for a in agents],
        }
