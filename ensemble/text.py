"""Keyword and overlap heuristics used to steer orchestration decisions.

Everything that reads free text lives here so a smarter analyzer can be
swapped in by subclassing TextAnalyzer and passing the instance to the
components that take an ``analyzer`` argument.
"""

import json
import logging
import math
import re
from typing import Any

logger = logging.getLogger(__name__)

_IMPORTANT_KEYWORDS = ("critical", "important", "essential", "key", "main", "primary")
_PROCEDURE_VERBS = ("create", "build", "implement", "design", "analyze", "process")

_AGREEMENT_MARKERS = (
    "i agree", "agree with", "great point", "good point", "building on", "exactly",
    "consensus", "aligns with", "well said", "that makes sense",
)
_DISAGREEMENT_MARKERS = (
    "disagree", "however", "have we considered", "another angle", "on the contrary",
    "not convinced", "i'm concerned", "i am concerned", "push back", "counterpoint",
)
_INSIGHT_MARKERS = (
    "insight", "found that", "discovered", "realize", "suggests that", "key ", "important",
    "critical", "what if we", "propose",
)
_DECISION_PATTERN = re.compile(
    r"\b(we decided|decision:|we will|we'll|agreed to|let's go with|we should adopt|the team will)\b",
    re.IGNORECASE,
)

_VERIFY_PATTERNS = (
    "latest", "recent", "current", "new", "updated",
    "api", "framework", "library", "version", "release", "update",
    "price", "market", "stock", "crypto", "exchange rate", "inflation",
    "statistics", "data", "report", "study", "research", "survey",
    "company", "startup", "acquisition", "merger", "ipo", "funding",
)
_YEAR_PATTERN = re.compile(r"\b(19|20)\d{2}\b")

_SUB_AGENT_PATTERNS = (
    "complex", "comprehensive", "detailed analysis", "full stack", "end-to-end",
    "architecture", "system design", "implementation", "deployment", "integration",
)

_ACCOMPLISHMENT_RE = re.compile(r"(?:accomplished|achieved|completed|developed|created|implemented)[^.]+\.", re.IGNORECASE)
_RECOMMENDATION_RE = re.compile(r"(?:recommend|suggest|propose|should|would benefit)[^.]+\.", re.IGNORECASE)
_KEY_POINT_RE = re.compile(r"(?:key|important|critical|essential|found that|discovered)[^.]+\.", re.IGNORECASE)

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")


def parse_json_block(content: str) -> Any | None:
    """Parse the first JSON object or array embedded in model output.

    Handles bare JSON, ```json fences and prose around the payload.
    Returns None when nothing parses; callers substitute their own fallback.
    """
    if not content:
        return None
    text = content.strip()
    fence = re.search(r"```(?:json)?\s*(.*?)```", text, re.DOTALL)
    if fence:
        text = fence.group(1).strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    for pattern in (r"\{.*\}", r"\[.*\]"):
        match = re.search(pattern, text, re.DOTALL)
        if match:
            try:
                return json.loads(match.group(0))
            except json.JSONDecodeError:
                continue
    logger.debug("No JSON found in model output: %.80s", content)
    return None


def as_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    return json.dumps(content, sort_keys=True, default=str)


class TextAnalyzer:
    """Naive keyword/overlap implementation of every text heuristic."""

    # --- similarity -------------------------------------------------------

    def word_similarity(self, text1: str, text2: str) -> float:
        """Jaccard similarity over lowercase whitespace-separated words."""
        words1 = set(text1.lower().split())
        words2 = set(text2.lower().split())
        union = words1 | words2
        if not union:
            return 0.0
        return len(words1 & words2) / len(union)

    def concept_similarity(self, concept1: str, concept2: str) -> float:
        c1, c2 = concept1.lower(), concept2.lower()
        if c1 == c2:
            return 1.0
        if c1 in c2 or c2 in c1:
            return 0.7
        chars1, chars2 = set(c1), set(c2)
        union = chars1 | chars2
        return len(chars1 & chars2) / len(union) if union else 0.0

    def word_overlap_ratio(self, query: str, text: str) -> float:
        query_words = query.lower().split()
        if not query_words:
            return 0.0
        text_words = set(text.lower().split())
        return sum(1 for w in query_words if w in text_words) / len(query_words)

    def matches_query(self, text: str, query: str, associations: list[str] | None = None) -> bool:
        query_lower = query.lower()
        if query_lower in text.lower():
            return True
        for association in associations or []:
            if query_lower in association.lower():
                return True
        query_words = query_lower.split()
        if not query_words:
            return False
        text_words = set(text.lower().split())
        overlap = sum(1 for w in query_words if w in text_words)
        return overlap >= math.ceil(len(query_words) * 0.5)

    # --- concepts ---------------------------------------------------------

    def extract_concept(self, text: str) -> str:
        for word in text.lower().split():
            if len(word) > 4:
                return word
        return "general"

    def query_concepts(self, text: str, limit: int = 3) -> list[str]:
        return [w for w in text.lower().split() if len(w) > 3][:limit]

    def procedure_name(self, text: str) -> str:
        lowered = text.lower()
        for verb in _PROCEDURE_VERBS:
            if verb in lowered:
                return verb
        return "general-procedure"

    def has_important_keyword(self, text: str) -> bool:
        lowered = text.lower()
        return any(k in lowered for k in _IMPORTANT_KEYWORDS)

    # --- discussion signals ----------------------------------------------

    def sentences(self, text: str) -> list[str]:
        return [s.strip() for s in _SENTENCE_SPLIT.split(text.strip()) if s.strip()]

    def has_follow_up(self, text: str) -> bool:
        return "?" in text

    def agreements(self, text: str) -> list[str]:
        return [s for s in self.sentences(text) if any(m in s.lower() for m in _AGREEMENT_MARKERS)]

    def disagreements(self, text: str) -> list[str]:
        return [s for s in self.sentences(text) if any(m in s.lower() for m in _DISAGREEMENT_MARKERS)]

    def insights(self, text: str) -> list[str]:
        """Return normalized insight tags, comparable across rounds."""
        tags = []
        for sentence in self.sentences(text):
            lowered = sentence.lower()
            if any(m in lowered for m in _INSIGHT_MARKERS):
                tags.append(" ".join(re.sub(r"[^a-z0-9\s]", " ", lowered).split())[:80])
        return tags

    def decisions(self, text: str) -> list[str]:
        return [s for s in self.sentences(text) if _DECISION_PATTERN.search(s)]

    def questions(self, text: str) -> list[str]:
        return [s for s in self.sentences(text) if s.endswith("?")]

    # --- conclusion mining -----------------------------------------------

    def accomplishments(self, text: str) -> list[str]:
        return [m.strip() for m in _ACCOMPLISHMENT_RE.findall(text)]

    def recommendations(self, text: str) -> list[str]:
        return [m.strip() for m in _RECOMMENDATION_RE.findall(text)]

    def key_points(self, text: str) -> list[str]:
        return [m.strip() for m in _KEY_POINT_RE.findall(text)]

    # --- triggers ---------------------------------------------------------

    def search_query(self, text: str, max_words: int = 5) -> str:
        words = re.sub(r"[^a-z0-9\s]", " ", text.lower()).split()
        return " ".join([w for w in words if len(w) > 3][:max_words])

    def needs_verification(self, topic: str) -> bool:
        """Time-sensitive topics whose facts should be checked against search."""
        lowered = topic.lower()
        if _YEAR_PATTERN.search(lowered):
            return True
        return any(re.search(rf"\b{re.escape(p)}", lowered) for p in _VERIFY_PATTERNS)

    def suggests_sub_agents(self, topic: str) -> bool:
        lowered = topic.lower()
        return any(p in lowered for p in _SUB_AGENT_PATTERNS)

    def task_complexity(self, task: str) -> str:
        lowered = task.lower()
        if "complex" in lowered or "critical" in lowered:
            return "high"
        if "simple" in lowered or "basic" in lowered:
            return "low"
        return "medium"
