"""Tests for ensemble/events.py."""

import logging

from ensemble.events import EventCollector, EventQueue, LoggingSink
from ensemble.models import EventKind


async def test_consumer_delivers_in_order():
    collector = EventCollector()
    queue = EventQueue([collector])
    queue.start()
    for i in range(3):
        queue.emit(EventKind.AGENT_RESPONSE, {"content": f"turn {i}"}, {"turn": i})
    await queue.aclose()
    assert [e.metadata["turn"] for e in collector.events] == [0, 1, 2]


def test_emit_never_blocks_when_full():
    collector = EventCollector()
    queue = EventQueue([collector], maxsize=2)
    for i in range(5):
        queue.emit(EventKind.SYSTEM, {"message": str(i)})
    assert queue.dropped == 3
    queue.drain_nowait()
    assert [e.payload["message"] for e in collector.events] == ["0", "1"]


def test_failing_sink_is_skipped(caplog):
    collector = EventCollector()

    def broken(event):
        raise RuntimeError("sink down")

    queue = EventQueue([broken, collector])
    queue.emit(EventKind.TOOL_USAGE, {"tool": "knowledge-search"})
    with caplog.at_level(logging.WARNING, logger="ensemble.events"):
        queue.drain_nowait()
    assert len(collector.of_kind(EventKind.TOOL_USAGE)) == 1
    assert "sink down" in caplog.text


async def test_aclose_without_start_drains():
    collector = EventCollector()
    queue = EventQueue()
    queue.add_sink(collector)
    queue.emit(EventKind.SYSTEM, {"message": "hello"})
    await queue.aclose()
    assert collector.events[0].payload == {"message": "hello"}
    assert collector.events[0].created_at > 0


def test_logging_sink_levels(caplog):
    sink = LoggingSink()
    queue = EventQueue([sink])
    queue.emit(EventKind.SYSTEM, {"message": "Starting conversation"})
    queue.emit(EventKind.AGENT_RESPONSE, {"content": "I agree."})
    with caplog.at_level(logging.DEBUG, logger="ensemble.events"):
        queue.drain_nowait()
    levels = {r.getMessage(): r.levelno for r in caplog.records}
    assert levels["[system] Starting conversation"] == logging.INFO
    assert levels["[agent-response] I agree."] == logging.DEBUG
