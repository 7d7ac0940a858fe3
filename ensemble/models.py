"""Pure dataclasses for the orchestration core. No logic here."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ModelTier(str, Enum):
    PREMIUM = "premium"
    BALANCED = "balanced"
    FAST = "fast"
    ECONOMICAL = "economical"


class Phase(str, Enum):
    EXPLORATION = "exploration"
    ANALYSIS = "analysis"
    SYNTHESIS = "synthesis"
    CONVERGENCE = "convergence"
    CONCLUSION = "conclusion"


class MemoryKind(str, Enum):
    SHORT_TERM = "short-term"
    LONG_TERM = "long-term"
    EPISODIC = "episodic"
    SEMANTIC = "semantic"
    WORKING = "working"
    PROCEDURAL = "procedural"


class ActionKind(str, Enum):
    CREATE_AGENT = "create_agent"
    AGENT_DISCUSSION = "agent_discussion"
    WEB_RESEARCH = "web_research"
    DEEP_ANALYSIS = "deep_analysis"
    REQUIREMENT_GATHERING = "requirement_gathering"
    SOLUTION_DESIGN = "solution_design"
    IMPLEMENTATION_PLANNING = "implementation_planning"
    RISK_ASSESSMENT = "risk_assessment"
    INTEGRATION_DESIGN = "integration_design"
    TESTING_STRATEGY = "testing_strategy"
    DEPLOYMENT_PLANNING = "deployment_planning"
    OTHER = "other"


class TransitionReason(str, Enum):
    REDUNDANCY = "redundancy"
    OBJECTIVES_ACHIEVED = "objectives_achieved"
    INSUFFICIENT_PROGRESS = "insufficient_progress"
    CONSENSUS_ACHIEVED = "consensus_achieved"
    MAX_ROUNDS_REACHED = "max_rounds_reached"
    CONTINUE_EXPLORATION = "continue_exploration"


class EventKind(str, Enum):
    SYSTEM = "system"
    AGENT_RESPONSE = "agent-response"
    TOOL_USAGE = "tool-usage"


@dataclass(frozen=True)
class Objective:
    main_objective: str
    complexity: int
    required_capabilities: tuple[str, ...] = ()
    suggested_agents: tuple[str, ...] = ()
    estimated_scope: str = "medium"
    key_questions: tuple[str, ...] = ()


@dataclass(frozen=True)
class ModelDescriptor:
    id: str
    name: str
    provider: str
    model: str
    quality_score: float
    speed_score: float
    cost_per_token: float
    capabilities: tuple[str, ...] = ()
    is_latest: bool = False
    is_newest: bool = False


@dataclass
class Agent:
    id: str
    type: str
    specialization: str
    capabilities: list[str] = field(default_factory=list)
    purpose: str = ""
    assigned_model: str | None = None
    model_tier: ModelTier | None = None
    is_sub_agent: bool = False
    parent_agent_id: str | None = None
    template_id: str | None = None
    preferred_tier: ModelTier | None = None
    task: str = ""


@dataclass
class ModelAssignment:
    agent_id: str
    agent_type: str
    model_id: str
    model_name: str
    tier: ModelTier
    assigned_at: float
    active: bool = True
    released_at: float | None = None


@dataclass
class RoundPlan:
    round_number: int
    phase: Phase
    focus: str
    objectives: list[str] = field(default_factory=list)
    approach: str = "discussion"
    questions: list[str] = field(default_factory=list)
    required_expertise: list[str] = field(default_factory=list)
    expected_outcomes: list[str] = field(default_factory=list)


@dataclass
class Exchange:
    agent_id: str
    agent_type: str
    content: str
    iteration: int
    model: str = ""
    target_agent_id: str | None = None
    mode: str = ""
    has_follow_up: bool = False
    agreements: list[str] = field(default_factory=list)
    disagreements: list[str] = field(default_factory=list)
    new_insights: list[str] = field(default_factory=list)


@dataclass
class RoundMetrics:
    depth: bool
    consensus: bool
    insight_count: int


@dataclass
class RoundRecord:
    round: int
    topic: str
    exchanges: list[Exchange]
    metrics: RoundMetrics
    timestamp: float = 0.0


@dataclass
class MemoryMetadata:
    timestamp: float
    last_accessed: float | None = None
    access_count: int = 0
    importance: float = 0.5
    decay: float = 1.0
    associations: list[str] = field(default_factory=list)
    source: str = "unknown"
    type: str | None = None
    confidence: float = 0.8
    promoted: bool = False
    promotion_time: float | None = None
    tags: list[str] = field(default_factory=list)


@dataclass
class MemoryItem:
    id: str
    kind: MemoryKind
    content: Any
    metadata: MemoryMetadata


@dataclass
class ConsensusVote:
    model_name: str
    should_continue: bool
    confidence: float
    completion_percentage: float
    reasoning: str = ""


@dataclass
class ConsensusOutcome:
    votes: list[ConsensusVote]
    weighted_ratio: float
    simple_ratio: float
    average_completion: float
    should_continue: bool
    reason: str = ""


@dataclass
class TransitionCriteria:
    objectives_complete: bool = False
    sufficient_depth: bool = False
    new_insights: bool = True
    consensus_reached: bool = False
    redundancy_detected: bool = False
    progress_made: bool = True


@dataclass
class TransitionDecision:
    should_transition: bool
    reason: TransitionReason
    confidence: float
    next_focus: str
    criteria: TransitionCriteria


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0


@dataclass
class GenerationOptions:
    agent_type: str = "general"
    max_tokens: int | None = None
    temperature: float = 0.7
    specific_model: str | None = None


@dataclass
class OracleResponse:
    content: str
    model: str
    provider: str
    usage: Usage = field(default_factory=Usage)
    cost: float = 0.0
    latency_sec: float = 0.0


@dataclass
class ActionSuggestion:
    kind: ActionKind
    description: str
    priority: int = 5
    reasoning: str = ""
    required_agents: list[str] = field(default_factory=list)
    model_name: str = ""


@dataclass
class SearchResult:
    title: str
    url: str
    snippet: str


@dataclass
class ConversationContext:
    topics: list[str] = field(default_factory=list)
    decisions: list[str] = field(default_factory=list)
    open_questions: list[str] = field(default_factory=list)
    completed_tasks: list[str] = field(default_factory=list)
    current_focus: str = ""


@dataclass
class Event:
    kind: EventKind
    payload: dict[str, Any]
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: float = 0.0


@dataclass
class ConversationResult:
    conversation_id: str
    objective: Objective
    iterations: int
    rounds: int
    agents: list[Agent]
    conclusion: str
    stop_reason: str
    status: str
    duration_sec: float
    exchanges: list[Exchange] = field(default_factory=list)
    decisions: list[str] = field(default_factory=list)
    open_questions: list[str] = field(default_factory=list)
