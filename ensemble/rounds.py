"""Round planning and round-transition policy."""

import logging
import math
import time
from collections.abc import Callable
from typing import Any

from config.config_loader import RoundsConfig
from ensemble.models import (
    ConversationContext,
    Exchange,
    GenerationOptions,
    Phase,
    RoundMetrics,
    RoundPlan,
    RoundRecord,
    TransitionCriteria,
    TransitionDecision,
    TransitionReason,
)
from ensemble.oracle import Oracle, is_fallback
from ensemble.prompts import ROUND_PLAN
from ensemble.text import TextAnalyzer, parse_json_block

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 10

_DEPTH_THRESHOLDS = {"shallow": 0.4, "medium": 0.6, "deep": 0.8, "adaptive": 0.4}

NEXT_FOCUS: dict[TransitionReason, str] = {
    TransitionReason.REDUNDANCY: "Break new ground with unexplored aspects",
    TransitionReason.OBJECTIVES_ACHIEVED: "Synthesize findings and draw conclusions",
    TransitionReason.INSUFFICIENT_PROGRESS: "Approach from different angle with new perspectives",
    TransitionReason.CONSENSUS_ACHIEVED: "Explore edge cases and potential challenges",
    TransitionReason.MAX_ROUNDS_REACHED: "Final synthesis and actionable recommendations",
    TransitionReason.CONTINUE_EXPLORATION: "Deepen analysis of current topics",
}

FALLBACK_PLANS: dict[Phase, dict[str, Any]] = {
    Phase.EXPLORATION: {
        "focus": "Explore problem space and identify key challenges",
        "objectives": ["Identify main components", "Understand constraints", "Map dependencies"],
        "approach": "discussion",
        "questions": ["What are the key challenges?", "What resources are needed?"],
    },
    Phase.ANALYSIS: {
        "focus": "Deep dive into technical details and requirements",
        "objectives": ["Analyze technical requirements", "Evaluate solutions", "Identify risks"],
        "approach": "analysis",
        "questions": ["What are the technical implications?", "What are the trade-offs?"],
    },
    Phase.SYNTHESIS: {
        "focus": "Combine insights and develop comprehensive solution",
        "objectives": ["Integrate findings", "Develop solution", "Create action plan"],
        "approach": "synthesis",
        "questions": ["How do components fit together?", "What is the optimal approach?"],
    },
    Phase.CONVERGENCE: {
        "focus": "Reach consensus and finalize decisions",
        "objectives": ["Resolve disagreements", "Finalize decisions", "Confirm approach"],
        "approach": "debate",
        "questions": ["Are all concerns addressed?", "Is the solution complete?"],
    },
    Phase.CONCLUSION: {
        "focus": "Summarize outcomes and define next steps",
        "objectives": ["Summarize decisions", "Define action items", "Assign responsibilities"],
        "approach": "synthesis",
        "questions": ["What are the next steps?", "Who is responsible for what?"],
    },
}


def phase_for_round(round_number: int) -> Phase:
    if round_number <= 2:
        return Phase.EXPLORATION
    if round_number <= 5:
        return Phase.ANALYSIS
    if round_number <= 7:
        return Phase.SYNTHESIS
    if round_number <= 9:
        return Phase.CONVERGENCE
    return Phase.CONCLUSION


def fallback_plan(round_number: int) -> RoundPlan:
    phase = phase_for_round(round_number)
    plan = FALLBACK_PLANS[phase]
    return RoundPlan(
        round_number=round_number,
        phase=phase,
        focus=plan["focus"],
        objectives=list(plan["objectives"]),
        approach=plan["approach"],
        questions=list(plan["questions"]),
    )


def _strings(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v]


class RoundTransitionManager:
    """Tracks the current round, its plan, and a bounded history of finished rounds."""

    def __init__(
        self,
        oracle: Oracle | None = None,
        config: RoundsConfig | None = None,
        analyzer: TextAnalyzer | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._oracle = oracle
        self.config = config or RoundsConfig()
        self._text = analyzer or TextAnalyzer()
        self._clock = clock
        self.current_round = 0
        self.history: list[RoundRecord] = []
        self.plans: list[RoundPlan] = []
        self.progress_metrics: dict[str, float] = {}

    @property
    def phase(self) -> Phase:
        return phase_for_round(self.current_round)

    def advance_round(self) -> int:
        self.current_round += 1
        logger.info("Advanced to round %d (%s)", self.current_round, self.phase.value)
        return self.current_round

    async def plan_round(
        self,
        objective: str,
        context: ConversationContext,
        suggested_focus: str = "",
    ) -> RoundPlan:
        """Plan the current round. Falls back to the phase's static plan."""
        round_number = self.current_round
        phase = phase_for_round(round_number)
        plan = None
        if self._oracle is not None:
            prompt = ROUND_PLAN.format(
                round_number=round_number,
                objective=objective,
                phase=phase.value,
                previous_topics=", ".join(r.topic for r in self.history[-3:]) or "none",
                open_questions=", ".join(context.open_questions[:5]) or "none",
                suggested_focus=suggested_focus or "none",
            )
            response = await self._oracle.generate(
                self._oracle.model_ids()[0],
                prompt,
                GenerationOptions(agent_type="round-planner", max_tokens=500, temperature=0.7),
            )
            data = None if is_fallback(response) else parse_json_block(response.content)
            if isinstance(data, dict) and data.get("primaryFocus") and _strings(data.get("objectives")):
                plan = RoundPlan(
                    round_number=round_number,
                    phase=phase,
                    focus=str(data["primaryFocus"]),
                    objectives=_strings(data.get("objectives")),
                    approach=str(data.get("suggestedApproach") or "discussion"),
                    questions=_strings(data.get("keyQuestions")),
                    required_expertise=_strings(data.get("requiredExpertise")),
                    expected_outcomes=_strings(data.get("expectedOutcomes")),
                )
        if plan is None:
            logger.debug("Using %s fallback plan for round %d", phase.value, round_number)
            plan = fallback_plan(round_number)
        self.plans.append(plan)
        return plan

    # --- criteria ---------------------------------------------------------

    def objectives_complete(self, exchanges: list[Exchange]) -> bool:
        if not self.plans or not self.plans[-1].objectives:
            return False
        objectives = self.plans[-1].objectives
        addressed = [
            o for o in objectives
            if any(o.lower() in e.content.lower() for e in exchanges)
        ]
        return len(addressed) / len(objectives) >= 0.7

    def depth_score(self, exchanges: list[Exchange]) -> float:
        if not exchanges:
            return 0.0
        average_length = sum(len(e.content) for e in exchanges) / len(exchanges)
        follow_up = any(e.has_follow_up for e in exchanges)
        disagreement = any(e.disagreements for e in exchanges)
        return (
            min(len(exchanges) / 5, 1.0) * 0.3
            + min(average_length / 200, 1.0) * 0.2
            + (0.25 if follow_up else 0.0)
            + (0.25 if disagreement else 0.0)
        )

    def sufficient_depth(self, exchanges: list[Exchange]) -> bool:
        required = _DEPTH_THRESHOLDS.get(self.config.depth_requirement, 0.4)
        return self.depth_score(exchanges) >= required

    def new_insights(self, exchanges: list[Exchange]) -> bool:
        current = {i for e in exchanges for i in e.new_insights}
        if not current:
            return False
        seen = {i for r in self.history for e in r.exchanges for i in e.new_insights}
        return bool(current - seen)

    def consensus_reached(self, exchanges: list[Exchange]) -> bool:
        agreements = sum(len(e.agreements) for e in exchanges)
        disagreements = sum(len(e.disagreements) for e in exchanges)
        if agreements + disagreements == 0:
            return False
        return agreements / (agreements + disagreements) >= self.config.consensus_threshold

    def redundant(self, exchanges: list[Exchange]) -> bool:
        if not exchanges:
            return False
        current = " ".join(e.content for e in exchanges)
        for record in self.history[-2:]:
            previous = " ".join(e.content for e in record.exchanges)
            if previous and self._text.word_similarity(current, previous) >= self.config.redundancy_threshold:
                return True
        return False

    def progress_made(self, context: ConversationContext) -> bool:
        """Compare the context against the previous call, then remember it."""
        metrics = self.progress_metrics
        indicators = [
            len(context.decisions) > metrics.get("decisions", 0),
            len(context.open_questions) < metrics.get("questions", math.inf),
            len(context.completed_tasks) > metrics.get("tasks", 0),
            len(context.topics) > metrics.get("topics", 0),
        ]
        self.progress_metrics = {
            "decisions": len(context.decisions),
            "questions": len(context.open_questions),
            "tasks": len(context.completed_tasks),
            "topics": len(context.topics),
        }
        return sum(indicators) / len(indicators) >= self.config.progress_threshold

    # --- decision ---------------------------------------------------------

    def evaluate(self, exchanges: list[Exchange], context: ConversationContext) -> TransitionDecision:
        criteria = TransitionCriteria(
            objectives_complete=self.objectives_complete(exchanges),
            sufficient_depth=self.sufficient_depth(exchanges),
            new_insights=self.new_insights(exchanges),
            consensus_reached=self.consensus_reached(exchanges),
            redundancy_detected=self.redundant(exchanges),
            progress_made=self.progress_made(context),
        )
        should_transition = True
        if criteria.redundancy_detected and not criteria.new_insights:
            reason, confidence = TransitionReason.REDUNDANCY, 0.9
        elif criteria.objectives_complete and criteria.sufficient_depth:
            reason, confidence = TransitionReason.OBJECTIVES_ACHIEVED, 0.95
        elif not criteria.progress_made and self.current_round > self.config.min_rounds:
            reason, confidence = TransitionReason.INSUFFICIENT_PROGRESS, 0.7
        elif criteria.consensus_reached and self.current_round >= self.config.optimal_rounds:
            reason, confidence = TransitionReason.CONSENSUS_ACHIEVED, 0.85
        elif self.current_round >= self.config.max_rounds:
            reason, confidence = TransitionReason.MAX_ROUNDS_REACHED, 1.0
            should_transition = False
        else:
            reason, confidence = TransitionReason.CONTINUE_EXPLORATION, 0.6

        logger.info("Round %d evaluation: %s (confidence %.2f)", self.current_round, reason.value, confidence)
        logger.debug("Round %d criteria: %s", self.current_round, criteria)
        return TransitionDecision(
            should_transition=should_transition,
            reason=reason,
            confidence=confidence,
            next_focus=NEXT_FOCUS[reason],
            criteria=criteria,
        )

    def record_round(self, topic: str, exchanges: list[Exchange]) -> RoundRecord:
        record = RoundRecord(
            round=self.current_round,
            topic=topic,
            exchanges=list(exchanges),
            metrics=RoundMetrics(
                depth=self.sufficient_depth(exchanges),
                consensus=self.consensus_reached(exchanges),
                insight_count=sum(len(e.new_insights) for e in exchanges),
            ),
            timestamp=self._clock(),
        )
        self.history.append(record)
        del self.history[:-HISTORY_LIMIT]
        return record

    def summary(self) -> dict[str, Any]:
        return {
            "current_round": self.current_round,
            "recorded_rounds": len(self.history),
            "phase": self.phase.value,
            "average_depth": (
                sum(1 for r in self.history if r.metrics.depth) / len(self.history) if self.history else 0.0
            ),
            "progress_metrics": dict(self.progress_metrics),
        }

    def reset(self) -> None:
        self.current_round = 0
        self.history = []
        self.plans = []
        self.progress_metrics = {}
