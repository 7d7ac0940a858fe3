"""Tests for ensemble/text.py."""

import pytest

from ensemble.text import TextAnalyzer, as_text, parse_json_block


@pytest.fixture
def text() -> TextAnalyzer:
    return TextAnalyzer()


def test_parse_json_bare():
    assert parse_json_block('{"a": 1}') == {"a": 1}


def test_parse_json_fenced():
    assert parse_json_block('Here:\n```json\n{"complexity": 7}\n```') == {"complexity": 7}


def test_parse_json_with_prose():
    assert parse_json_block('Sure! {"type": "other", "priority": 3} Hope that helps.') == {"type": "other", "priority": 3}


def test_parse_json_array():
    assert parse_json_block('[{"type": "qa"}]') == [{"type": "qa"}]


@pytest.mark.parametrize("content", ["", "no json here", "{broken: yes"])
def test_parse_json_returns_none(content):
    assert parse_json_block(content) is None


def test_as_text():
    assert as_text("plain") == "plain"
    assert as_text({"b": 1, "a": 2}) == '{"a": 2, "b": 1}'


def test_word_similarity(text):
    assert text.word_similarity("a b c", "a b c") == 1.0
    assert text.word_similarity("a b", "c d") == 0.0
    assert text.word_similarity("", "") == 0.0
    assert text.word_similarity("a b c", "a b d") == pytest.approx(0.5)


def test_concept_similarity(text):
    assert text.concept_similarity("redis", "Redis") == 1.0
    assert text.concept_similarity("cache", "caching") < 1.0
    assert text.concept_similarity("limit", "limiter") == 0.7


def test_matches_query(text):
    assert text.matches_query("Token bucket limits bursts", "token bucket")
    assert text.matches_query("Token bucket limits bursts", "bursts matter")
    assert not text.matches_query("Token bucket", "kubernetes autoscaling")
    assert text.matches_query("unrelated", "redis", associations=["redis-cluster"])


def test_concepts_and_procedures(text):
    assert text.extract_concept("A big Redis cluster") == "redis"
    assert text.extract_concept("a b c") == "general"
    assert text.query_concepts("the rate limiter design review") == ["rate", "limiter", "design"]
    assert text.procedure_name("We should build the thing") == "build"
    assert text.procedure_name("Just talk") == "general-procedure"


def test_discussion_signals(text):
    content = (
        "I agree with the token bucket idea. However, fairness matters. "
        "We decided to use Redis. The key insight is burst control. What about quotas?"
    )
    assert text.agreements(content) == ["I agree with the token bucket idea."]
    assert text.disagreements(content) == ["However, fairness matters."]
    assert text.decisions(content) == ["We decided to use Redis."]
    assert text.questions(content) == ["What about quotas?"]
    assert text.has_follow_up(content)
    assert text.insights(content) == ["the key insight is burst control"]


def test_conclusion_mining(text):
    narrative = "We implemented a limiter. The key risk is abuse. We recommend monitoring."
    assert text.accomplishments(narrative) == ["implemented a limiter."]
    assert text.key_points(narrative) == ["key risk is abuse."]
    assert text.recommendations(narrative) == ["recommend monitoring."]


def test_search_query(text):
    assert text.search_query("Research the latest API gateway pricing, 2025 edition!") == "research latest gateway pricing 2025"


@pytest.mark.parametrize(
    "topic,expected",
    [
        ("What changed in 2024?", True),
        ("Compare the latest frameworks", True),
        ("Pick an API style", True),
        ("Naming conventions for modules", False),
    ],
)
def test_needs_verification(text, topic, expected):
    assert text.needs_verification(topic) is expected


def test_sub_agent_and_complexity_triggers(text):
    assert text.suggests_sub_agents("End-to-end system design review")
    assert not text.suggests_sub_agents("Lunch options")
    assert text.task_complexity("A complex migration") == "high"
    assert text.task_complexity("A basic check") == "low"
    assert text.task_complexity("A review") == "medium"
