"""Prompt templates for every oracle request the orchestrator makes.

Templates are str.format strings; literal JSON braces are doubled.
"""

_SYSTEM_PROMPTS: dict[str, str] = {
    "analyzer": "You analyze requests and break them into objectives. Reply with JSON only.",
    "strategic-planner": "You are a strategic planner deciding the next step of a multi-agent discussion. Reply with JSON only.",
    "round-planner": "You plan the focus of the next discussion round. Reply with JSON only.",
    "agent-selector": "You decide which expertise a discussion needs. Reply with JSON only.",
    "decision-maker": "You judge whether a multi-agent discussion should continue. Be critical. Reply with JSON only.",
    "synthesizer": "You synthesize multi-agent discussions into concrete, specific conclusions.",
    "coordinator": "You are the coordinator of a team of AI specialists. Keep the team focused and decisive.",
    "architect": "You are a systems architect. Reason about structure, boundaries and trade-offs.",
    "researcher": "You are a research analyst. Ground claims in evidence and flag uncertainty.",
    "developer": "You are an implementation specialist. Be concrete about code and delivery.",
    "security": "You are a security auditor. Look for threats, weaknesses and compliance gaps.",
    "qa": "You are a quality engineer. Think about validation, test coverage and failure modes.",
}


def system_prompt(agent_type: str) -> str:
    """Return the persona instruction for an agent type, with a generic default."""
    if agent_type in _SYSTEM_PROMPTS:
        return _SYSTEM_PROMPTS[agent_type]
    return (
        f"You are a {agent_type} specialist collaborating with other AI agents. "
        "Contribute your specific expertise concisely."
    )


OBJECTIVE_ANALYSIS = """Analyze this request and determine what needs to be accomplished: "{objective}"

Provide a JSON response with:
{{
  "complexity": 1-10,
  "mainObjective": "brief description",
  "requiredCapabilities": ["cap1", "cap2"],
  "suggestedAgents": ["agent1", "agent2"],
  "estimatedScope": "small|medium|large",
  "keyQuestions": ["question1", "question2"]
}}"""

NEXT_ACTION = """Based on the current conversation context, determine what should happen next.

Context:
- Current objective: {objective}
- Iteration: {iteration}
- Round {round_number} ({phase}) focus: {focus}
- Round objectives: {round_objectives}
- Suggested approach: {approach}
- Active agents: {agents}
- Recent actions: {recent_actions}
- Open questions: {open_questions}

Suggest the next action as JSON:
{{
  "type": "{kinds}",
  "description": "what to do next",
  "priority": 1-10,
  "reasoning": "why this is needed now",
  "requiredAgents": ["agent type or id"]
}}"""

ROUND_PLAN = """Based on the current discussion state, plan the focus for round {round_number}.

Objective: {objective}
Current Phase: {phase}
Previous Round Topics: {previous_topics}
Open Questions: {open_questions}
Suggested focus from last evaluation: {suggested_focus}

Generate a focused plan for this round as JSON:
{{
  "primaryFocus": "main topic or question to address",
  "objectives": ["objective1", "objective2", "objective3"],
  "expectedOutcomes": ["outcome1", "outcome2"],
  "suggestedApproach": "discussion|debate|analysis|synthesis|brainstorming",
  "keyQuestions": ["question1", "question2"],
  "requiredExpertise": ["expertise1", "expertise2"]
}}"""

TOPIC_ANALYSIS = """Analyze this discussion topic and determine what expertise is needed.

Topic: "{topic}"
Requirements: {requirements}

Identify the key areas of expertise needed as JSON:
{{
  "primaryExpertise": ["expertise1", "expertise2"],
  "secondaryExpertise": ["expertise3", "expertise4"],
  "technicalDepth": "low|medium|high",
  "creativityNeeded": true,
  "analyticalDepth": "low|medium|high",
  "domainSpecific": false,
  "suggestedAgentTypes": ["type1", "type2", "type3"]
}}"""

SUB_AGENT_SPECS = """As a {parent_type}, analyze this discussion topic and determine what specialized sub-agents you need to create to provide a comprehensive response.

Topic: "{topic}"
Discussion partner: {partner_type}
Your role: {purpose}

Determine 1-{max_specs} specialized sub-agents needed. Return as JSON array:
[
  {{
    "type": "data-researcher|technical-analyst|implementation-specialist|security-auditor|performance-optimizer|integration-expert|testing-specialist|documentation-writer|market-researcher|other",
    "specialization": "specific area of expertise",
    "task": "specific task to perform",
    "reasoning": "why this sub-agent is needed"
  }}
]"""

SUB_AGENT_TASK = """You are a specialized {agent_type} sub-agent working for a {parent_type} agent.

Your specific task: {task}
Topic context: "{topic}"
Your specialization: {specialization}
{tool_context}
Perform your specialized task and provide focused results (2-3 sentences). Be specific and technical in your area of expertise:"""

DISCUSSION_TURN = """As a {agent_type} specialist in collaborative discussion with {target_type} about: "{topic}"

Turn {turn} - Mode: {mode}
Round focus: {round_focus}
Your role: {purpose}
{tool_context}{sub_agent_context}
Previous Discussion Points:
{history}

COLLABORATION INSTRUCTIONS for {mode}:
{instructions}

Respond in a collaborative manner that builds on the {target_type}'s contributions.
If you agree or disagree with a point, say so explicitly. End with a follow-up question when something is unresolved.

Your response (2-4 sentences):"""

FOCUSED_ACTION = """You are the {agent_type} on a multi-agent team working toward: "{objective}"

Task ({kind}): {description}
Round focus: {round_focus}
{brief}
{tool_context}
Known decisions: {decisions}
Open questions: {open_questions}

Respond with concrete findings. State decisions as "We decided ..." or "Decision: ...". List any unresolved questions ending with "?"."""

ACTION_BRIEFS: dict[str, str] = {
    "deep_analysis": "Perform a step-by-step analysis: break the problem down, examine each part, then state conclusions.",
    "requirement_gathering": "List the functional and non-functional requirements, constraints and acceptance criteria.",
    "solution_design": "Propose a solution design: components, responsibilities, data flow and the key trade-offs.",
    "implementation_planning": "Lay out an implementation plan: ordered milestones, dependencies and effort estimates.",
    "risk_assessment": "Identify the main risks. For each give likelihood, impact and a mitigation. Phrase each open risk as a question.",
    "integration_design": "Describe how the parts integrate: interfaces, protocols, data contracts and failure handling.",
    "testing_strategy": "Define a testing strategy: levels of testing, critical scenarios, tooling and exit criteria.",
    "deployment_planning": "Plan the rollout: environments, release steps, monitoring and rollback.",
    "other": "Carry out the task as described and report the outcome.",
}

CONSENSUS_VOTE = """You are evaluating whether this autonomous AI conversation should continue or conclude.

CURRENT STATUS:
- Iteration: {iteration}/{max_iterations}
- Main Objective: {objective}
- Active Agents: {agent_count}
- Recent Actions: {recent_actions}
- Decisions So Far: {decisions}
- Open Questions: {open_questions}
- Progress Made: {interactions} total interactions

EVALUATION CRITERIA:
1. Are there unresolved questions or tasks?
2. Is meaningful progress still being made?
3. Have we achieved sufficient depth and breadth?
4. Are the agents producing new insights or just repeating?
5. Is the objective substantially completed?

CONFIDENCE SCORING:
- 0.9-1.0: Very confident in decision
- 0.7-0.8: Moderately confident
- 0.5-0.6: Somewhat confident
- 0.0-0.4: Low confidence

Be CRITICAL and realistic. If agents are just repeating ideas or the objective is largely complete, vote to CONCLUDE.

Respond with JSON:
{{
  "shouldContinue": true,
  "confidence": 0.0-1.0,
  "reasoning": "short explanation of your decision",
  "completionPercentage": 0-100
}}"""

CONCLUSION = """Synthesize a comprehensive conclusion for this autonomous multi-agent conversation.

CONVERSATION OVERVIEW:
- Primary Objective: {objective}
- Total Iterations: {iterations}
- Agents Deployed: {agent_count} agents
- Key Decisions Made: {decision_count}
- Conversation Complexity: {complexity}/10

DETAILED CONTEXT:
{context}

INSTRUCTIONS: Write a detailed conclusion that covers:
1. ACCOMPLISHMENTS: what was achieved, developed or completed.
2. KEY DECISIONS and points of agreement or disagreement.
3. TECHNICAL DETAILS: approaches, strategies, challenges and solutions.
4. ACTIONABLE RECOMMENDATIONS: what the team should do next.
5. SYNTHESIS: the overall assessment.

Provide specific, concrete details from the actual conversation in 4-5 substantial paragraphs:"""
